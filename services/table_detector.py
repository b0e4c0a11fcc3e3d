"""Locate grid-shaped regions inside a page of extracted text.

Three independent strategies feed one page's candidate list:

* **delimiter**: consecutive lines that split into cells on the same
  delimiter kind (pipe, tab, or runs of three or more spaces);
* **alignment**: column alignment from layout coordinates.  Plain text
  carries no coordinates, so the default implementation finds nothing and a
  layout-aware callable can be plugged in instead;
* **keyword**: the delimiter scan repeated inside a window that follows a
  table-introducing phrase, with a small confidence boost.

The same physical table is usually reported by more than one strategy, so
:func:`deduplicate_spans` keeps the first candidate of every overlapping
cluster.  Execution order therefore decides which detection survives.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from typing import Callable, Iterable, List, Optional, Pattern, Sequence, Tuple

from config.settings import settings
from utils.table_profiles import TABLE_INTRODUCING_PHRASES

logger = logging.getLogger(__name__)

PIPE = "pipe"
TAB = "tab"
SPACES = "spaces"

_SPACE_RUN = re.compile(r"\s{3,}")
_SPLITTERS: Tuple[Tuple[str, Callable[[str], List[str]]], ...] = (
    (PIPE, lambda line: line.split("|")),
    (TAB, lambda line: line.split("\t")),
    (SPACES, _SPACE_RUN.split),
)

LONG_TABLE_CONFIDENCE = 0.8
SHORT_TABLE_CONFIDENCE = 0.5
KEYWORD_BOOST = 0.1


@dataclass(frozen=True)
class RawSpan:
    start: int
    end: int

    @property
    def length(self) -> int:
        return max(0, self.end - self.start)

    def overlap(self, other: "RawSpan") -> int:
        return max(0, min(self.end, other.end) - max(self.start, other.start))

    def shifted(self, offset: int) -> "RawSpan":
        return RawSpan(self.start + offset, self.end + offset)


@dataclass(frozen=True)
class CandidateTable:
    span: RawSpan
    grid: Tuple[Tuple[str, ...], ...]
    detection_confidence: float
    strategy: str = "delimiter"

    @property
    def row_count(self) -> int:
        """Number of data rows (the first grid row is the header)."""

        return max(0, len(self.grid) - 1)


AlignmentDetector = Callable[[str], List[CandidateTable]]


def split_line(line: str) -> Tuple[Optional[str], List[str]]:
    """Return the first delimiter kind splitting ``line`` into two or more cells."""

    for kind, splitter in _SPLITTERS:
        if kind == TAB and "\t" not in line:
            continue
        parts = splitter(line)
        # A single stray pipe is prose, not a column separator.
        if kind == PIPE and len(parts) < 3:
            continue
        cells = [cell.strip() for cell in parts if cell.strip()]
        if len(cells) >= 2:
            return kind, cells
    return None, []


def _build_candidate(
    rows: List[List[str]], start: int, end: int, strategy: str
) -> CandidateTable:
    confidence = LONG_TABLE_CONFIDENCE if len(rows) >= 3 else SHORT_TABLE_CONFIDENCE
    return CandidateTable(
        span=RawSpan(start, end),
        grid=tuple(tuple(row) for row in rows),
        detection_confidence=confidence,
        strategy=strategy,
    )


def detect_delimiter_tables(text: str, *, strategy: str = "delimiter") -> List[CandidateTable]:
    """Scan ``text`` line by line for delimiter-aligned runs."""

    candidates: List[CandidateTable] = []
    if not text:
        return candidates

    rows: List[List[str]] = []
    locked: Optional[str] = None
    start = end = 0
    offset = 0

    for raw in text.split("\n"):
        line_start = offset
        offset += len(raw) + 1
        line = raw.strip()

        kind, cells = split_line(line) if line else (None, [])
        if rows and kind != locked:
            candidates.append(_build_candidate(rows, start, end, strategy))
            rows, locked = [], None
        if kind is None:
            continue

        if not rows:
            locked = kind
            start = line_start + (len(raw) - len(raw.lstrip()))
        rows.append(cells)
        end = line_start + len(raw.rstrip())

    if rows:
        candidates.append(_build_candidate(rows, start, end, strategy))
    return candidates


def detect_keyword_tables(
    text: str,
    *,
    phrases: Sequence[Pattern[str]] = TABLE_INTRODUCING_PHRASES,
    window: Optional[int] = None,
    boost: float = KEYWORD_BOOST,
) -> List[CandidateTable]:
    """Run the delimiter scan inside the window following each table phrase."""

    size = window if window is not None else settings.keyword_window_chars
    candidates: List[CandidateTable] = []
    if not text:
        return candidates

    for pattern in phrases:
        for match in pattern.finditer(text):
            section_start = match.start()
            section = text[section_start:section_start + size]
            for found in detect_delimiter_tables(section, strategy="keyword"):
                candidates.append(
                    replace(
                        found,
                        span=found.span.shifted(section_start),
                        detection_confidence=min(1.0, found.detection_confidence + boost),
                    )
                )
    return candidates


def detect_alignment_tables(text: str) -> List[CandidateTable]:
    """Column-alignment detection; plain text carries no coordinates, so this finds nothing.

    Pass a layout-aware callable as ``alignment_detector`` to replace it.
    """

    return []


def overlap_ratio(first: RawSpan, second: RawSpan) -> float:
    shorter = min(first.length, second.length)
    if shorter <= 0:
        return 1.0 if first.overlap(second) or first == second else 0.0
    return first.overlap(second) / shorter


def deduplicate_spans(
    candidates: Iterable[CandidateTable], threshold: Optional[float] = None
) -> List[CandidateTable]:
    """Keep the first candidate of every cluster of overlapping spans."""

    limit = threshold if threshold is not None else settings.span_overlap_threshold
    kept: List[CandidateTable] = []
    for candidate in candidates:
        duplicate = next(
            (existing for existing in kept if overlap_ratio(existing.span, candidate.span) > limit),
            None,
        )
        if duplicate is not None:
            logger.debug(
                "Dropping %s candidate %s-%s; overlaps %s candidate %s-%s",
                candidate.strategy,
                candidate.span.start,
                candidate.span.end,
                duplicate.strategy,
                duplicate.span.start,
                duplicate.span.end,
            )
            continue
        kept.append(candidate)
    return kept


class TableCandidateDetector:
    """Run every detection strategy over one page and deduplicate the results."""

    def __init__(
        self,
        *,
        alignment_detector: Optional[AlignmentDetector] = None,
        phrases: Sequence[Pattern[str]] = TABLE_INTRODUCING_PHRASES,
        keyword_window: Optional[int] = None,
        overlap_threshold: Optional[float] = None,
    ) -> None:
        self.alignment_detector = alignment_detector
        self.phrases = tuple(phrases)
        self.keyword_window = keyword_window
        self.overlap_threshold = overlap_threshold

    @property
    def layout_aware(self) -> bool:
        return self.alignment_detector is not None

    def candidates(self, page_text: str) -> List[CandidateTable]:
        """Return every raw detection in strategy execution order."""

        alignment = self.alignment_detector or detect_alignment_tables
        found: List[CandidateTable] = []
        found.extend(detect_delimiter_tables(page_text))
        found.extend(alignment(page_text))
        found.extend(
            detect_keyword_tables(page_text, phrases=self.phrases, window=self.keyword_window)
        )
        return found

    def detect(self, page_text: str) -> List[CandidateTable]:
        return deduplicate_spans(self.candidates(page_text), self.overlap_threshold)


__all__ = [
    "AlignmentDetector",
    "CandidateTable",
    "RawSpan",
    "TableCandidateDetector",
    "deduplicate_spans",
    "detect_alignment_tables",
    "detect_delimiter_tables",
    "detect_keyword_tables",
    "overlap_ratio",
    "split_line",
]
