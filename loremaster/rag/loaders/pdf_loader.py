"""
PDF document fetcher with optional OCR fallback for scanned pages.

Extracts per-page text with PyMuPDF. Every page is returned, blank ones as
empty strings, so page numbers in chunks match the printed rulebook.

A page is treated as scanned when its extracted text is under 50
characters AND it contains at least one image; such pages are sent
through Tesseract via PyMuPDF's OCR integration if Tesseract is installed.
OCR or per-page failures leave that page empty instead of aborting the load.
"""

import subprocess
from pathlib import Path

import fitz  # PyMuPDF

from loremaster.config.logging import get_logger
from loremaster.rag.base import DocumentFetcher, DocumentPages

logger = get_logger(__name__)

_OCR_TEXT_THRESHOLD = 50


class PDFLoadError(Exception):
    """Raised when a PDF cannot be opened or read."""


class PDFLoader(DocumentFetcher):
    """
    DocumentFetcher for .pdf files.

    Args:
        ocr_enabled: Attempt OCR on pages that look scanned (default: True)

    Example:
        >>> pages = await PDFLoader().fetch("uploads/players-guide.pdf")
        >>> pages.total_pages
        320
    """

    def __init__(self, *, ocr_enabled: bool = True):
        self._ocr_enabled = ocr_enabled
        self._ocr_available: bool | None = None

    def _check_ocr_available(self) -> bool:
        """Probe for a tesseract binary once per loader."""
        if self._ocr_available is None:
            try:
                result = subprocess.run(["tesseract", "--version"], capture_output=True, timeout=5)
                self._ocr_available = result.returncode == 0
            except (FileNotFoundError, subprocess.TimeoutExpired):
                self._ocr_available = False
                logger.warning("Tesseract not found, OCR disabled for scanned pages")
        return self._ocr_available

    @staticmethod
    def _page_needs_ocr(page: fitz.Page, extracted_text: str) -> bool:
        if len(extracted_text.strip()) >= _OCR_TEXT_THRESHOLD:
            return False
        return bool(page.get_images(0))

    def _extract_page(self, page: fitz.Page, page_num: int, name: str) -> str:
        text = page.get_text()
        if self._ocr_enabled and self._page_needs_ocr(page, text) and self._check_ocr_available():
            try:
                textpage = page.get_textpage_ocr(dpi=300, full=True)
                text = page.get_text(textpage=textpage)
            except Exception as e:
                logger.warning(f"OCR failed for page {page_num} of {name}: {e}")
        return text

    async def fetch(self, path: str | Path) -> DocumentPages:
        """
        Extract the text of every page.

        Raises:
            FileNotFoundError: If the file doesn't exist
            PDFLoadError: If the PDF is encrypted, corrupted or unreadable
            ValueError: If no page yields any text
        """
        file_path = Path(path)
        if not file_path.is_file():
            raise FileNotFoundError(f"PDF file not found: {file_path}")

        logger.info(f"Loading PDF file: {file_path}")

        try:
            pdf_doc = fitz.open(str(file_path))
        except fitz.FileDataError as e:
            logger.error(f"Invalid or corrupted PDF file: {file_path}")
            raise PDFLoadError(f"Invalid or corrupted PDF: {file_path}") from e
        except Exception as e:
            logger.error(f"Failed to open PDF: {e}")
            raise PDFLoadError(f"Could not load PDF '{file_path}': {e}") from e

        with pdf_doc:
            if pdf_doc.is_encrypted:
                raise PDFLoadError(f"PDF is encrypted and cannot be read: {file_path}")

            pages: list[str] = []
            failed_pages: list[int] = []
            for index in range(len(pdf_doc)):
                page_num = index + 1
                try:
                    pages.append(self._extract_page(pdf_doc[index], page_num, file_path.name))
                except Exception as e:
                    failed_pages.append(page_num)
                    pages.append("")
                    logger.warning(f"Failed to extract text from page {page_num} of {file_path.name}: {e}")

        if not any(page.strip() for page in pages):
            message = f"PDF has no extractable text: {file_path}"
            if failed_pages:
                message += f" (failed pages: {failed_pages})"
            raise ValueError(message)

        if failed_pages:
            logger.warning(
                f"Loaded {len(pages)} pages from {file_path.name}, "
                f"but {len(failed_pages)} pages failed: {failed_pages}"
            )
        else:
            logger.info(f"Loaded PDF: {file_path.name} ({len(pages)} pages)")

        return DocumentPages(file_name=file_path.name, pages=pages)
