"""
Document fetchers for the ingestion pipeline.

Each fetcher implements the DocumentFetcher interface and returns raw
per-page text.
"""

from loremaster.rag.loaders.pdf_loader import PDFLoader, PDFLoadError

__all__ = ["PDFLoader", "PDFLoadError"]
