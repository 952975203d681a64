"""
Loremaster - rulebook retrieval for LLM-driven tabletop campaigns.

This package chunks uploaded player and GM manuals, indexes them for
keyword and embedding search, and lets a tool-calling LLM consult them
mid-answer through a bounded RAG loop.
"""

__version__ = "0.1.0"
