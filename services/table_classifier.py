"""Assign a semantic type to detected tables.

Classification is a weighted keyword vote against the immutable profiles in
:mod:`utils.table_profiles`.  Profiles are tried in their declared order and
the first one whose score reaches the threshold wins, so the order doubles as
the tie-break rule.  Nothing here reads the clock or a random source; the same
candidate and page text always produce the same classification.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from config.settings import settings
from services.table_detector import CandidateTable, RawSpan
from utils.table_profiles import (
    CLASSIFICATION_PROFILES,
    UNKNOWN_CONFIDENCE,
    TableProfile,
    TableType,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TableContext:
    before_text: str = ""
    after_text: str = ""


@dataclass(frozen=True)
class ClassifiedTable(CandidateTable):
    table_index: int = 0
    page: int = 1
    type: TableType = TableType.UNKNOWN
    confidence: float = UNKNOWN_CONFIDENCE
    headers: Tuple[str, ...] = ()
    context: TableContext = field(default_factory=TableContext)

    @property
    def rows(self) -> Tuple[Tuple[str, ...], ...]:
        return self.grid[1:]

    @property
    def column_count(self) -> int:
        return len(self.headers)

    def cell_text(self) -> str:
        return " ".join(cell for row in self.grid for cell in row)

    def to_dataframe(self):
        """Return the data rows as a ``pandas.DataFrame`` keyed by header."""

        import pandas as pd

        width = max((len(row) for row in self.grid), default=0)
        columns = [
            self.headers[i] if i < len(self.headers) and self.headers[i] else f"col_{i}"
            for i in range(width)
        ]
        data = [list(row) + [""] * (width - len(row)) for row in self.rows]
        return pd.DataFrame(data, columns=columns)


def table_context(page_text: str, span: RawSpan, chars: Optional[int] = None) -> TableContext:
    """Return the trimmed text immediately before and after ``span``."""

    size = chars if chars is not None else settings.table_context_chars
    before = page_text[max(0, span.start - size):span.start]
    after = page_text[span.end:min(len(page_text), span.end + size)]
    return TableContext(before_text=before.strip(), after_text=after.strip())


def score_profile(
    profile: TableProfile,
    headers: Sequence[str],
    content: str,
    context: str,
) -> float:
    """Return the weighted keyword score of one profile against one table."""

    score = 0.0
    header_hits = sum(
        1 for keyword in profile.header_keywords if any(keyword in header for header in headers)
    )
    score += header_hits * profile.header_weight

    content_hits = sum(1 for keyword in profile.content_keywords if keyword in content)
    score += content_hits * profile.content_weight

    context_hits = sum(1 for keyword in profile.context_keywords if keyword in context)
    score += context_hits * profile.context_weight

    if profile.code_pattern is not None and profile.code_pattern.search(content):
        score += profile.code_weight

    number_hits = sum(1 for pattern in profile.number_patterns if pattern.search(content))
    score += number_hits * profile.number_weight
    return score


def _normalised_inputs(
    grid: Sequence[Sequence[str]], context: TableContext
) -> Tuple[List[str], str, str]:
    headers = [str(cell).lower() for cell in (grid[0] if grid else ())]
    content = " ".join(str(cell) for row in grid for cell in row).lower()
    surrounding = f"{context.before_text} {context.after_text}".lower()
    return headers, content, surrounding


def score_profiles(
    grid: Sequence[Sequence[str]],
    context: TableContext,
    profiles: Sequence[TableProfile] = CLASSIFICATION_PROFILES,
) -> Dict[TableType, float]:
    """Return every profile's score, mainly for diagnostics."""

    headers, content, surrounding = _normalised_inputs(grid, context)
    return {
        profile.table_type: score_profile(profile, headers, content, surrounding)
        for profile in profiles
    }


def classify_grid(
    grid: Sequence[Sequence[str]],
    context: TableContext,
    *,
    profiles: Sequence[TableProfile] = CLASSIFICATION_PROFILES,
    threshold: Optional[float] = None,
) -> Tuple[TableType, float]:
    """Return ``(type, confidence)`` for a grid and its surrounding text."""

    limit = threshold if threshold is not None else settings.classification_threshold
    headers, content, surrounding = _normalised_inputs(grid, context)
    for profile in profiles:
        score = score_profile(profile, headers, content, surrounding)
        if score >= limit:
            return profile.table_type, min(1.0, max(0.0, profile.base_confidence))
    return TableType.UNKNOWN, UNKNOWN_CONFIDENCE


def classify_table(
    candidate: CandidateTable,
    page_text: str,
    *,
    table_index: int = 0,
    page: int = 1,
    page_offset: int = 0,
    profiles: Sequence[TableProfile] = CLASSIFICATION_PROFILES,
    threshold: Optional[float] = None,
    context_chars: Optional[int] = None,
) -> ClassifiedTable:
    """Promote ``candidate`` (page-relative span) to a :class:`ClassifiedTable`.

    ``page_offset`` moves the span into document coordinates.
    """

    context = table_context(page_text, candidate.span, context_chars)
    table_type, confidence = classify_grid(
        candidate.grid, context, profiles=profiles, threshold=threshold
    )
    logger.debug(
        "Table %d on page %d classified as %s (%.2f)",
        table_index,
        page,
        table_type.value,
        confidence,
    )
    return ClassifiedTable(
        span=candidate.span.shifted(page_offset),
        grid=candidate.grid,
        detection_confidence=candidate.detection_confidence,
        strategy=candidate.strategy,
        table_index=table_index,
        page=page,
        type=table_type,
        confidence=confidence,
        headers=candidate.grid[0] if candidate.grid else (),
        context=context,
    )


__all__ = [
    "ClassifiedTable",
    "TableContext",
    "classify_grid",
    "classify_table",
    "score_profile",
    "score_profiles",
    "table_context",
]
