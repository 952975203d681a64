"""
Heading-aware chunking for rulebook PDFs.

Rulebooks arrive as plain per-page text with no outline, so structure has to
be inferred from the text itself. The chunker:

1. Scans every line for heading-like patterns (chapter markers, numbered
   sections, Roman numerals, ALL-CAPS and Title Case lines, and common
   tabletop section names).
2. Drops near-duplicate headings on nearby pages (running headers).
3. Builds a heading hierarchy so each chunk knows its ancestor path.
4. Slices the document into page ranges, one per heading.
5. Splits any chunk above the token budget into one chunk per page.

Heading Filter Pipeline
-----------------------
A line that matches a heading pattern still has to pass a list of filter
functions. Each filter has the signature::

    (title: str, lines: list[str], index: int) -> bool

Returning ``True`` keeps the candidate. ``DEFAULT_HEADING_FILTERS`` holds the
built-in set; pass ``heading_filters`` to the constructor to replace it.

Example:
    >>> chunker = DocumentChunker()
    >>> chunks = chunker.chunk(pages, source_file="players-guide.pdf")
    >>> for chunk in chunks:
    ...     print(chunk.id, " > ".join(chunk.path), chunk.start_page, chunk.end_page)
"""

from __future__ import annotations

import math
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from loremaster.config.logging import get_logger
from loremaster.rag.base import ChunkedManual, ChunkedManualMetadata, DocumentPages, PdfChunk

logger = get_logger(__name__)

DEFAULT_MAX_TOKENS = 2500
FALLBACK_TITLE = "Document"

_MIN_HEADING_LENGTH = 3
_MAX_HEADING_LENGTH = 100


# ---------------------------------------------------------------------------
# Heading patterns
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class HeadingRule:
    """A line pattern and the heading level it implies. Group 1 is the title."""
    pattern: re.Pattern[str]
    level: int


def _rule(pattern: str, level: int, flags: int = 0) -> HeadingRule:
    return HeadingRule(re.compile(pattern, flags), level)


# Order matters: the first matching rule decides the level.
DEFAULT_HEADING_RULES: list[HeadingRule] = [
    # Chapter markers
    _rule(r"^\s*(Chapter\s+\d+[:\s].*?)$", 1, re.IGNORECASE),
    # Numbered sections
    _rule(r"^\s*(\d+\.\d+\.\d+\s+.*?)$", 3),
    _rule(r"^\s*(\d+\.\d+\s+.*?)$", 2),
    _rule(r"^\s*(\d+\.\s+.*?)$", 2),
    # Roman numerals ("IV. Magic", "II Combat")
    _rule(r"^\s*((?:[IVXLCDM]+\.?)\s+.+?)$", 2),
    # ALL CAPS lines
    _rule(r"^([A-Z][A-Z\s&'’\-:()]{4,80})$", 1),
    # Title Case lines with 2-9 words
    _rule(r"^([A-Z][a-z]+(?:\s+[A-Z][a-z]+){1,8})$", 2),
    # Common tabletop section names
    _rule(r"^(Creating\s+Characters?|Character\s+Creation|Building\s+Characters?)$", 2, re.IGNORECASE),
    _rule(r"^(Combat|Fighting|Battle\s+Rules?)$", 2, re.IGNORECASE),
    _rule(r"^(Magic|Spellcasting|Spells?)$", 2, re.IGNORECASE),
    _rule(r"^(Equipment|Gear|Items?)$", 2, re.IGNORECASE),
    _rule(r"^(Skills?\s+and\s+Abilities?|Abilities?)$", 2, re.IGNORECASE),
    _rule(r"^(Game\s+Master|GM|Running\s+the\s+Game)$", 1, re.IGNORECASE),
    _rule(r"^(NPCs?|Non-Player\s+Characters?)$", 2, re.IGNORECASE),
    _rule(r"^(Adventures?|Scenarios?)$", 2, re.IGNORECASE),
    _rule(r"^(Introduction|Getting\s+Started|Overview)$", 1, re.IGNORECASE),
]


# ---------------------------------------------------------------------------
# Built-in heading filters
# ---------------------------------------------------------------------------

_RE_DATE = re.compile(r"^\d{1,2}[/-]\d{1,2}[/-]\d{2,4}")
_RE_NUMBER_RUN = re.compile(r"^\d+[\s\-]*\d+[\s\-]*\d+")
_RE_NUMBERS_ONLY = re.compile(r"^[\d\s\-.:]+$")
_CROSS_REFERENCES = [
    re.compile(r"^page\s+\d+", re.IGNORECASE),
    re.compile(r"^table\s+\d+", re.IGNORECASE),
    re.compile(r"^figure\s+\d+", re.IGNORECASE),
    re.compile(r"^see\s+(page|chapter)", re.IGNORECASE),
    re.compile(r"^continued\s+(on|from)", re.IGNORECASE),
]


def filter_has_capitalized_word(title: str, lines: list[str], index: int) -> bool:
    """Reject candidates with no capitalised word."""
    return any(word[:1].isupper() for word in title.split())


def filter_not_numeric(title: str, lines: list[str], index: int) -> bool:
    """Reject dates, number runs, and lines made only of digits and punctuation."""
    return not (
        _RE_DATE.match(title)
        or _RE_NUMBER_RUN.match(title)
        or _RE_NUMBERS_ONLY.match(title)
    )


def filter_not_cross_reference(title: str, lines: list[str], index: int) -> bool:
    """Reject 'Page 12', 'Table 3', 'See chapter 4' and similar references."""
    return not any(pattern.match(title) for pattern in _CROSS_REFERENCES)


def filter_not_isolated(title: str, lines: list[str], index: int) -> bool:
    """Reject short candidates sandwiched between two very short lines (dense layouts)."""
    if len(title) >= 20:
        return True
    prev_line = lines[index - 1].strip() if index > 0 else ""
    next_line = lines[index + 1].strip() if index + 1 < len(lines) else ""
    return not (len(prev_line) < 10 and len(next_line) < 10)


DEFAULT_HEADING_FILTERS: list[Callable[[str, list[str], int], bool]] = [
    filter_has_capitalized_word,
    filter_not_numeric,
    filter_not_cross_reference,
    filter_not_isolated,
]


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------

def estimate_tokens(text: str) -> int:
    """Rough token estimate: whitespace-delimited words x 1.3, rounded half up."""
    words = len(re.findall(r"\S+", text))
    return math.floor(words * 1.3 + 0.5)


def normalize_whitespace(text: str) -> str:
    """Normalise PDF-extraction whitespace before line-based heading detection."""
    text = text.replace("\u00a0", " ")
    text = re.sub(r"[ \t]+\n", "\n", text)
    return re.sub(r"[ \t]{2,}", " ", text)


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance between two strings (insert, delete, substitute)."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(
                previous[j - 1] + cost,
                current[j - 1] + 1,
                previous[j] + 1,
            ))
        previous = current
    return previous[-1]


def string_similarity(a: str, b: str) -> float:
    """Normalised Levenshtein similarity in [0, 1]; 1.0 for two empty strings."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return (longest - levenshtein_distance(a, b)) / longest


@dataclass
class HeadingCandidate:
    """A detected heading with its page and (after hierarchy) ancestor path."""
    title: str
    level: int
    page: int
    path: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Chunker
# ---------------------------------------------------------------------------

class DocumentChunker:
    """
    Splits per-page document text into titled, page-bounded chunks.

    Attributes:
        max_tokens: Chunks whose estimate exceeds this are split per page
        similarity_threshold: Headings more similar than this are duplicates
        min_page_distance: Duplicates are only suppressed within this many pages
        heading_rules: Ordered heading patterns
        heading_filters: Validation filters; all must pass
    """

    def __init__(
        self,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        similarity_threshold: float = 0.8,
        min_page_distance: int = 2,
        heading_rules: list[HeadingRule] | None = None,
        heading_filters: list[Callable[[str, list[str], int], bool]] | None = None,
    ) -> None:
        self.max_tokens = max_tokens
        self.similarity_threshold = similarity_threshold
        self.min_page_distance = min_page_distance
        self.heading_rules = (
            list(heading_rules) if heading_rules is not None
            else list(DEFAULT_HEADING_RULES)
        )
        self.heading_filters = (
            list(heading_filters) if heading_filters is not None
            else list(DEFAULT_HEADING_FILTERS)
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def chunk(self, pages: list[str], source_file: str) -> list[PdfChunk]:
        """
        Partition pages into hierarchical, size-bounded chunks.

        Every page of the input is covered exactly once by the returned
        chunks, in order. Never raises for documents without headings: those
        come back as a single chunk titled "Document".

        Args:
            pages: Extracted text, one string per page, in page order
            source_file: Originating filename recorded on every chunk

        Returns:
            Chunks with ``chunk_index`` numbered sequentially from 0
        """
        if not pages:
            return []

        headings = self.detect_headings(pages)
        logger.info(f"Detected {len(headings)} headings in {source_file} ({len(pages)} pages)")

        sections = self._slice_into_chunks(pages, headings, source_file)
        final = self._split_large_chunks(sections, pages)
        return [chunk.model_copy(update={"chunk_index": i}) for i, chunk in enumerate(final)]

    def build_manual(self, document: DocumentPages) -> ChunkedManual:
        """Chunk a fetched document into a complete ChunkedManual record."""
        chunks = self.chunk(document.pages, document.file_name)
        return ChunkedManual(
            file_name=document.file_name,
            total_pages=document.total_pages,
            chunks=chunks,
            metadata=ChunkedManualMetadata(
                extracted_at=datetime.now(UTC).isoformat(),
                total_chunks=len(chunks),
            ),
        )

    def detect_headings(self, pages: list[str]) -> list[HeadingCandidate]:
        """
        Find heading candidates, deduplicate them, and assign hierarchy paths.

        Returns candidates in page order with ``path`` filled in.
        """
        candidates: list[HeadingCandidate] = []

        for page_index, page_text in enumerate(pages):
            lines = re.split(r"\n+", normalize_whitespace(page_text))
            for line_index, raw_line in enumerate(lines):
                candidate = self._match_line(raw_line, lines, line_index, page_index + 1)
                if candidate is not None:
                    candidates.append(candidate)

        headings = self._deduplicate(candidates)
        self._assign_paths(headings)
        return headings

    # ------------------------------------------------------------------
    # Heading detection
    # ------------------------------------------------------------------

    def _match_line(
        self,
        raw_line: str,
        lines: list[str],
        index: int,
        page: int,
    ) -> HeadingCandidate | None:
        line = raw_line.strip()
        if not _MIN_HEADING_LENGTH <= len(line) <= _MAX_HEADING_LENGTH:
            return None
        # Sentences, not headings
        if re.search(r"\.\s*$", line):
            return None
        # Lowercase start continues the previous line
        if index > 0 and re.match(r"^[a-z]", line):
            return None

        for rule in self.heading_rules:
            match = rule.pattern.search(line)
            if match is None:
                continue
            title = match.group(1) or match.group(0)
            if not all(f(title, lines, index) for f in self.heading_filters):
                return None
            return HeadingCandidate(
                title=re.sub(r"\s+", " ", title).strip(),
                level=rule.level,
                page=page,
            )
        return None

    def _deduplicate(self, candidates: list[HeadingCandidate]) -> list[HeadingCandidate]:
        """Drop repeated or near-identical headings within ``min_page_distance`` pages."""
        kept: list[HeadingCandidate] = []

        for candidate in candidates:
            if not any(self._is_duplicate(existing, candidate) for existing in kept):
                kept.append(candidate)

        # Stable sort keeps in-page order
        return sorted(kept, key=lambda c: c.page)

    def _is_duplicate(self, existing: HeadingCandidate, candidate: HeadingCandidate) -> bool:
        if abs(existing.page - candidate.page) >= self.min_page_distance:
            return False
        if existing.title.lower() == candidate.title.lower():
            return True
        return string_similarity(existing.title, candidate.title) > self.similarity_threshold

    @staticmethod
    def _assign_paths(headings: list[HeadingCandidate]) -> None:
        stack: list[HeadingCandidate] = []
        for heading in headings:
            while stack and stack[-1].level >= heading.level:
                stack.pop()
            parent_path = stack[-1].path if stack else []
            heading.path = [*parent_path, heading.title]
            stack.append(heading)

    # ------------------------------------------------------------------
    # Slicing
    # ------------------------------------------------------------------

    def _slice_into_chunks(
        self,
        pages: list[str],
        headings: list[HeadingCandidate],
        source_file: str,
    ) -> list[PdfChunk]:
        total_pages = len(pages)

        # One boundary per starting page; the first heading on a page wins
        boundaries: list[HeadingCandidate] = []
        seen_pages: set[int] = set()
        for heading in headings:
            if not 1 <= heading.page <= total_pages or heading.page in seen_pages:
                continue
            seen_pages.add(heading.page)
            boundaries.append(heading)

        if not boundaries:
            return [self._make_chunk(
                index=0,
                title=FALLBACK_TITLE,
                level=1,
                path=[FALLBACK_TITLE],
                start=1,
                end=total_pages,
                pages=pages,
                source_file=source_file,
            )]

        # Pages ahead of the first heading (covers, credits) get their own chunk
        if boundaries[0].page > 1:
            boundaries.insert(0, HeadingCandidate(
                title=FALLBACK_TITLE, level=1, page=1, path=[FALLBACK_TITLE],
            ))

        chunks: list[PdfChunk] = []
        for i, boundary in enumerate(boundaries):
            start = boundary.page
            if i + 1 < len(boundaries):
                end = max(start, boundaries[i + 1].page - 1)
            else:
                end = total_pages
            title = boundary.title or f"Section {i + 1}"
            chunks.append(self._make_chunk(
                index=i,
                title=title,
                level=boundary.level,
                path=boundary.path or [title],
                start=start,
                end=end,
                pages=pages,
                source_file=source_file,
            ))
        return chunks

    @staticmethod
    def _make_chunk(
        index: int,
        title: str,
        level: int,
        path: list[str],
        start: int,
        end: int,
        pages: list[str],
        source_file: str,
    ) -> PdfChunk:
        text = "\n\n".join(pages[start - 1:end]).strip()
        return PdfChunk(
            id=f"section:{index}",
            title=title,
            content=text,
            level=level,
            path=list(path),
            start_page=start,
            end_page=end,
            token_estimate=estimate_tokens(text),
            chunk_index=index,
            source_file=source_file,
        )

    def _split_large_chunks(self, chunks: list[PdfChunk], pages: list[str]) -> list[PdfChunk]:
        """Replace over-budget chunks with one chunk per page. Split chunks are final."""
        final: list[PdfChunk] = []

        for chunk in chunks:
            if chunk.token_estimate <= self.max_tokens:
                final.append(chunk)
                continue

            logger.debug(
                f"Splitting '{chunk.title}' ({chunk.token_estimate} tokens, "
                f"pages {chunk.start_page}-{chunk.end_page}) by page"
            )
            for page in range(chunk.start_page, chunk.end_page + 1):
                page_text = pages[page - 1].strip()
                final.append(PdfChunk(
                    id=f"{chunk.id}:p{page}",
                    title=f"{chunk.title} (p.{page})",
                    content=page_text,
                    level=chunk.level,
                    path=[*chunk.path, f"(p.{page})"],
                    start_page=page,
                    end_page=page,
                    token_estimate=estimate_tokens(page_text),
                    chunk_index=len(final),
                    source_file=chunk.source_file,
                ))

        return final
