"""Split raw document text into page-sized chunks.

Text handed over by the document-to-text step rarely carries reliable page
metadata.  The segmenter looks for the page delimiters most commonly left
behind by PDF text extraction and, when none are present, cuts long text
into evenly sized chunks so later per-page work stays bounded.  Chunks
produced by the size fallback are *not* real pages; callers should treat
their numbers as approximate.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional, Pattern, Tuple

from config.settings import settings

logger = logging.getLogger(__name__)

PAGE_BREAK_PATTERNS: Tuple[Tuple[str, Pattern[str]], ...] = (
    ("page_markers", re.compile(r"\n\s*Page\s+\d+\s*\n", re.IGNORECASE)),
    ("footer_markers", re.compile(r"\n\s*-\s*\d+\s*-\s*\n")),
    ("form_feed", re.compile(r"\f")),
)


@dataclass(frozen=True)
class PageChunk:
    number: int
    start: int
    end: int
    text: str


@dataclass
class PageSegmentation:
    chunks: List[PageChunk] = field(default_factory=list)
    method: str = "single"

    @property
    def approximate(self) -> bool:
        return self.method == "fixed_size"

    @property
    def page_count(self) -> int:
        return len(self.chunks)


def _split_on(text: str, pattern: Pattern[str]) -> List[PageChunk]:
    chunks: List[PageChunk] = []
    cursor = 0
    for match in pattern.finditer(text):
        chunks.append(PageChunk(len(chunks) + 1, cursor, match.start(), text[cursor:match.start()]))
        cursor = match.end()
    chunks.append(PageChunk(len(chunks) + 1, cursor, len(text), text[cursor:]))
    return chunks


def _split_fixed(text: str, chunk_target: int) -> List[PageChunk]:
    chunk_size = math.ceil(len(text) / math.ceil(len(text) / chunk_target))
    chunks: List[PageChunk] = []
    for start in range(0, len(text), chunk_size):
        end = min(len(text), start + chunk_size)
        chunks.append(PageChunk(len(chunks) + 1, start, end, text[start:end]))
    return chunks


def segment_pages(
    text: Any,
    *,
    size_threshold: Optional[int] = None,
    chunk_target: Optional[int] = None,
) -> PageSegmentation:
    """Return the page chunks for ``text``.

    Never raises; empty or non-string input yields a single empty chunk.
    """

    if not isinstance(text, str) or not text:
        return PageSegmentation([PageChunk(1, 0, 0, "")], "single")

    threshold = size_threshold if size_threshold is not None else settings.page_split_threshold
    target = chunk_target if chunk_target is not None else settings.page_chunk_size

    for method, pattern in PAGE_BREAK_PATTERNS:
        if pattern.search(text):
            chunks = _split_on(text, pattern)
            logger.debug("Segmented text on %s into %d chunk(s)", method, len(chunks))
            return PageSegmentation(chunks, method)

    if len(text) > threshold and target > 0:
        chunks = _split_fixed(text, target)
        logger.debug(
            "No page delimiters found; split %d chars into %d fixed-size chunk(s)",
            len(text),
            len(chunks),
        )
        return PageSegmentation(chunks, "fixed_size")

    return PageSegmentation([PageChunk(1, 0, len(text), text)], "single")


__all__ = ["PAGE_BREAK_PATTERNS", "PageChunk", "PageSegmentation", "segment_pages"]
