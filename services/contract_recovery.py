"""End-to-end recovery: contract text in, tables and typed records out."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from services.extraction_collaborator import ExtractionCollaborator, build_collaborator
from services.record_recovery import (
    RECOVERY_PROFILES,
    ExtractionResult,
    RecordRecoveryOrchestrator,
    RecoveryLimits,
)
from services.table_detector import TableCandidateDetector
from services.table_extraction import TableExtractionResult, extract_tables
from utils.record_schemas import Record

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContractRecoveryResult:
    tables: TableExtractionResult
    results: Dict[str, ExtractionResult] = field(default_factory=dict)
    processing_time_ms: int = 0

    def records(self, record_type: str) -> List[Record]:
        result = self.results.get(record_type)
        return list(result.records) if result else []

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tables": self.tables.summary(),
            "results": {name: result.to_dict() for name, result in self.results.items()},
            "processing_time_ms": self.processing_time_ms,
        }


class ContractRecordRecovery:
    """Detect tables once, then run the recovery cascade per record type."""

    def __init__(
        self,
        collaborator: Optional[ExtractionCollaborator] = None,
        *,
        record_types: Iterable[str] = ("products",),
        detector: Optional[TableCandidateDetector] = None,
        limits: Optional[RecoveryLimits] = None,
    ) -> None:
        self.record_types: Sequence[str] = tuple(record_types)
        unknown = [name for name in self.record_types if name not in RECOVERY_PROFILES]
        if unknown:
            raise ValueError(f"Unsupported record type(s): {', '.join(unknown)}")
        self.collaborator = collaborator or build_collaborator()
        self.detector = detector
        self.limits = limits

    def process(self, text: Any, page_count: Optional[int] = None) -> ContractRecoveryResult:
        started = time.perf_counter()
        tables = extract_tables(text, page_count=page_count, detector=self.detector)

        results: Dict[str, ExtractionResult] = {}
        for record_type in self.record_types:
            orchestrator = RecordRecoveryOrchestrator(
                self.collaborator,
                profile=RECOVERY_PROFILES[record_type],
                limits=self.limits,
            )
            results[record_type] = orchestrator.recover(tables.full_text, tables.tables)

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        logger.info(
            "Processed contract: %d table(s), %s in %dms",
            len(tables.tables),
            ", ".join(f"{name}={len(result.records)}" for name, result in results.items()),
            elapsed_ms,
        )
        return ContractRecoveryResult(tables=tables, results=results, processing_time_ms=elapsed_ms)


__all__ = ["ContractRecordRecovery", "ContractRecoveryResult"]
