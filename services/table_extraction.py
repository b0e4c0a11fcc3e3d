"""Text to classified tables: segment, detect, deduplicate, classify.

Pages share no mutable state, so detection and classification are mapped
over a thread pool; ``executor.map`` keeps page order, and table indices are
assigned sequentially afterwards so a run is reproducible regardless of how
the pool schedules work.
"""

from __future__ import annotations

import concurrent.futures
import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple

from config.settings import settings
from services.page_segmenter import PageChunk, segment_pages
from services.table_classifier import ClassifiedTable, classify_table
from services.table_detector import TableCandidateDetector
from utils.table_profiles import CLASSIFICATION_PROFILES, TableProfile, TableType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TableExtractionResult:
    tables: Tuple[ClassifiedTable, ...] = ()
    full_text: str = ""
    page_count: int = 0
    extraction_method: str = "pattern_based"
    processing_time_ms: int = 0
    segmentation_method: str = "single"

    def tables_of_type(self, table_type: TableType | str) -> List[ClassifiedTable]:
        value = table_type.value if isinstance(table_type, TableType) else str(table_type)
        return [table for table in self.tables if table.type.value == value]

    def summary(self) -> Dict[str, Any]:
        counts: Dict[str, int] = {}
        for table in self.tables:
            counts[table.type.value] = counts.get(table.type.value, 0) + 1
        return {
            "table_count": len(self.tables),
            "types": counts,
            "page_count": self.page_count,
            "extraction_method": self.extraction_method,
            "processing_time_ms": self.processing_time_ms,
        }


def _process_page(
    page: PageChunk,
    detector: TableCandidateDetector,
    profiles: Sequence[TableProfile],
) -> List[ClassifiedTable]:
    return [
        classify_table(
            candidate,
            page.text,
            page=page.number,
            page_offset=page.start,
            profiles=profiles,
        )
        for candidate in detector.detect(page.text)
    ]


def extract_tables(
    text: Any,
    *,
    page_count: Optional[int] = None,
    max_workers: Optional[int] = None,
    detector: Optional[TableCandidateDetector] = None,
    profiles: Sequence[TableProfile] = CLASSIFICATION_PROFILES,
) -> TableExtractionResult:
    """Detect and classify every table in ``text``."""

    started = time.perf_counter()
    full_text = text if isinstance(text, str) else ""
    detector = detector or TableCandidateDetector()
    segmentation = segment_pages(full_text)
    pages = segmentation.chunks

    workers = max_workers if max_workers is not None else settings.table_detection_workers
    if len(pages) <= 1 or workers <= 1:
        per_page = [_process_page(page, detector, profiles) for page in pages]
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
            per_page = list(
                executor.map(lambda page: _process_page(page, detector, profiles), pages)
            )

    tables: List[ClassifiedTable] = []
    for page_tables in per_page:
        for classified in page_tables:
            tables.append(replace(classified, table_index=len(tables)))

    elapsed_ms = int((time.perf_counter() - started) * 1000)
    result = TableExtractionResult(
        tables=tuple(tables),
        full_text=full_text,
        page_count=page_count if page_count else segmentation.page_count,
        extraction_method="hybrid" if detector.layout_aware else "pattern_based",
        processing_time_ms=elapsed_ms,
        segmentation_method=segmentation.method,
    )
    logger.info(
        "Extracted %d table(s) from %d page chunk(s) (%s) in %dms",
        len(tables),
        len(pages),
        segmentation.method,
        elapsed_ms,
    )
    for table in tables:
        logger.debug(
            "  - Table %d: %s (%d rows, confidence: %.0f%%)",
            table.table_index,
            table.type.value,
            table.row_count,
            table.confidence * 100,
        )
    return result


def format_table_for_prompt(table: ClassifiedTable, *, include_context: bool = False) -> str:
    """Render ``table`` as pipe-joined text for the extraction collaborator."""

    lines: List[str] = []
    if include_context:
        if table.context.before_text:
            lines.append(f'Context before table: "{table.context.before_text[-100:]}"')
            lines.append("")
        lines.append(
            f"Table {table.table_index} (Page {table.page}, Type: {table.type.value})"
        )
        lines.append("=" * 80)
    if table.headers:
        lines.append(" | ".join(table.headers))
        lines.append("-" * 80)
    for row in table.rows:
        lines.append(" | ".join(row))
    if include_context and table.context.after_text:
        lines.append(f'Context after table: "{table.context.after_text[:100]}"')
    return "\n".join(lines)


__all__ = ["TableExtractionResult", "extract_tables", "format_table_for_prompt"]
