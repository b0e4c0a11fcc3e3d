"""Cascading record recovery for contract text.

Given the full text of a contract and its classified tables, the
orchestrator tries five increasingly aggressive strategies and keeps the
records of the first one that produces any:

1. ``table_based``: submit tables of the relevant type; failing that, any
   other table that contains an identity code;
2. ``code_pattern_scan``: a window of text around every identity code;
3. ``section_scan``: the text following section-introducing phrases;
4. ``line_scan``: lines that look like entries, submitted as one batch;
5. ``aggressive_fallback``: a prefix of the whole document with a relaxed
   temperature.

Every strategy is a plain function ``(RecoveryContext) -> ExtractionAttempt``
and reports success through ``ExtractionAttempt.succeeded``.  Collaborator
calls inside a stage run concurrently, but a stage is fully resolved before
the next one is considered.  A failing call contributes zero records; a stage
that overruns its time budget counts as a failed stage.  Exhausting the
cascade is a valid outcome reported as ``method="none"``.
"""

from __future__ import annotations

import concurrent.futures
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Pattern, Sequence, Tuple, Type

from pydantic import BaseModel

from config.settings import settings
from services.extraction_collaborator import (
    ExtractionCollaborator,
    TargetShape,
    build_collaborator,
)
from services.record_merger import merge_records
from services.table_classifier import ClassifiedTable
from services.table_extraction import format_table_for_prompt
from utils.extraction_prompts import render_instructions
from utils.record_schemas import (
    BundleRecord,
    FacilityRecord,
    ProductRecord,
    TierRecord,
    identity_key,
    records_to_dicts,
)
from utils.table_profiles import NDC_HYPHENATED_PATTERN, TableType

logger = logging.getLogger(__name__)

METHOD_CONFIDENCE: Dict[str, float] = {
    "table-based": 0.95,
    "table-code-scan": 0.9,
    "code-pattern": 0.85,
    "section-based": 0.8,
    "line-by-line": 0.7,
    "aggressive-ai": 0.6,
    "none": 0.0,
}


def _phrases(*patterns: str) -> Tuple[Pattern[str], ...]:
    return tuple(re.compile(pattern, re.IGNORECASE) for pattern in patterns)


# NDC layouts: 5-4-2, 5-3-2, and the unhyphenated 11- and 10-digit forms.
NDC_PATTERNS: Tuple[Pattern[str], ...] = (
    re.compile(r"\b\d{5}-\d{4}-\d{2}\b"),
    re.compile(r"\b\d{5}-\d{3}-\d{2}\b"),
    re.compile(r"\b\d{11}\b"),
    re.compile(r"\b\d{10}\b"),
)
FACILITY_ID_PATTERN = re.compile(r"\b(?:DSH|CAH|CAN|CH|PED|RRC|SCH|FQHC|STD)\d{4,6}[A-Z]?\b")


@dataclass(frozen=True)
class RecoveryProfile:
    record_type: str
    record_model: Type[BaseModel]
    table_types: Tuple[TableType, ...]
    code_patterns: Tuple[Pattern[str], ...] = ()
    line_patterns: Tuple[Pattern[str], ...] = ()
    line_keywords: Optional[Pattern[str]] = None
    section_phrases: Tuple[Pattern[str], ...] = ()
    min_name_length: int = 0

    def shape(self, *, many: bool = True) -> TargetShape:
        return TargetShape(self.record_model, many=many)

    def contains_code(self, text: str) -> bool:
        return any(pattern.search(text) for pattern in self.code_patterns)


PRODUCT_PROFILE = RecoveryProfile(
    record_type="products",
    record_model=ProductRecord,
    table_types=(TableType.PRODUCTS,),
    code_patterns=NDC_PATTERNS,
    line_patterns=(NDC_HYPHENATED_PATTERN,),
    line_keywords=re.compile(r"\d+mg|\d+ml|tablet|capsule|vial|bottle"),
    section_phrases=_phrases(
        r"product\s+list",
        r"eligible\s+products",
        r"covered\s+products",
        r"ndc\s+list",
        r"exhibit\s+a",
    ),
    min_name_length=3,
)

TIER_PROFILE = RecoveryProfile(
    record_type="tiers",
    record_model=TierRecord,
    table_types=(TableType.TIERS,),
    line_keywords=re.compile(r"tier\s*\d|\d+(?:\.\d+)?\s?%"),
    section_phrases=_phrases(r"rebate\s+tier", r"tier\s+structure", r"rebate\s+schedule"),
)

FACILITY_PROFILE = RecoveryProfile(
    record_type="facilities",
    record_model=FacilityRecord,
    table_types=(TableType.FACILITIES,),
    code_patterns=(FACILITY_ID_PATTERN,),
    line_patterns=(FACILITY_ID_PATTERN,),
    line_keywords=re.compile(r"hospital|clinic|medical center|health system"),
    section_phrases=_phrases(
        r"facility\s+list",
        r"eligible\s+facilities",
        r"covered\s+entities",
        r"exhibit\s+b",
    ),
    min_name_length=3,
)

BUNDLE_PROFILE = RecoveryProfile(
    record_type="bundles",
    record_model=BundleRecord,
    table_types=(TableType.BUNDLES,),
    line_keywords=re.compile(r"minimum spend|compliance|therapeutic (?:class|category)"),
    section_phrases=_phrases(
        r"category\s+requirements?",
        r"bundle(?:d)?\s+(?:pricing|requirements?)",
        r"therapeutic\s+class",
    ),
)

RECOVERY_PROFILES: Dict[str, RecoveryProfile] = {
    profile.record_type: profile
    for profile in (PRODUCT_PROFILE, TIER_PROFILE, FACILITY_PROFILE, BUNDLE_PROFILE)
}


@dataclass(frozen=True)
class RecoveryLimits:
    code_scan_limit: int = 50
    code_context_chars: int = 200
    section_window_chars: int = 2000
    line_scan_limit: int = 100
    line_min_length: int = 20
    aggressive_prefix_chars: int = 30000
    aggressive_temperature: float = 0.2
    stage_timeout: Optional[float] = None
    max_workers: int = 4

    @classmethod
    def from_settings(cls, source: Any = None) -> "RecoveryLimits":
        source = source or settings
        return cls(
            code_scan_limit=source.code_scan_limit,
            code_context_chars=source.code_context_chars,
            section_window_chars=source.section_window_chars,
            line_scan_limit=source.line_scan_limit,
            line_min_length=source.line_min_length,
            aggressive_prefix_chars=source.aggressive_prefix_chars,
            aggressive_temperature=source.aggressive_temperature,
            stage_timeout=source.recovery_stage_timeout,
            max_workers=source.recovery_max_workers,
        )


@dataclass(frozen=True)
class RecoveryUnit:
    """One collaborator call: instructions plus the text it applies to."""

    scope: str
    instructions: str
    text: str
    shape: TargetShape
    temperature: Optional[float] = None
    defaults: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StageCalls:
    records: List[BaseModel] = field(default_factory=list)
    calls: int = 0
    failures: int = 0
    timed_out: bool = False


@dataclass(frozen=True)
class ExtractionAttempt:
    strategy_name: str
    input_scope: Tuple[str, ...] = ()
    records: Tuple[BaseModel, ...] = ()
    succeeded: bool = False
    method: Optional[str] = None
    calls: int = 0
    failures: int = 0
    timed_out: bool = False
    notes: str = ""
    elapsed_ms: int = 0

    def summary(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy_name,
            "ran": True,
            "succeeded": self.succeeded,
            "method": self.method,
            "records": len(self.records),
            "calls": self.calls,
            "failures": self.failures,
            "timed_out": self.timed_out,
            "notes": self.notes,
            "elapsed_ms": self.elapsed_ms,
        }


@dataclass(frozen=True)
class ExtractionResult:
    records: Tuple[BaseModel, ...] = ()
    method: str = "none"
    confidence: float = 0.0
    notes: str = ""
    record_type: str = "products"
    attempts: Tuple[ExtractionAttempt, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "records": records_to_dicts(list(self.records)),
            "method": self.method,
            "confidence": self.confidence,
            "notes": self.notes,
            "record_type": self.record_type,
            "attempts": [attempt.summary() for attempt in self.attempts],
        }

    def to_dataframe(self):
        import pandas as pd

        return pd.DataFrame(records_to_dicts(list(self.records)))


class RecoveryContext:
    """Inputs shared by every strategy of one cascade run."""

    def __init__(
        self,
        full_text: str,
        tables: Sequence[ClassifiedTable],
        profile: RecoveryProfile,
        collaborator: ExtractionCollaborator,
        limits: RecoveryLimits,
    ) -> None:
        self.full_text = full_text
        self.tables = tuple(tables)
        self.profile = profile
        self.collaborator = collaborator
        self.limits = limits

    def instructions(self, stage: str, **values: str) -> str:
        return render_instructions(self.profile.record_type, stage, **values)

    def _call(self, stage: str, unit: RecoveryUnit) -> Tuple[List[BaseModel], Optional[str]]:
        try:
            records = self.collaborator.extract(
                unit.instructions,
                unit.text,
                unit.shape,
                temperature=unit.temperature,
            )
        except Exception as exc:
            logger.warning(
                "[%s] Collaborator call for %s failed; counting zero records: %s",
                stage,
                unit.scope,
                exc,
            )
            return [], str(exc)
        return [_apply_defaults(record, unit.defaults) for record in records or []], None

    def run_units(self, stage: str, units: Sequence[RecoveryUnit]) -> StageCalls:
        """Issue every unit concurrently and wait for all of them."""

        if not units:
            return StageCalls()

        workers = max(1, min(self.limits.max_workers, len(units)))
        executor = concurrent.futures.ThreadPoolExecutor(max_workers=workers)
        try:
            futures = [executor.submit(self._call, stage, unit) for unit in units]
            _done, pending = concurrent.futures.wait(futures, timeout=self.limits.stage_timeout)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        if pending:
            logger.warning(
                "[%s] Stage exceeded its %.0fs budget with %d of %d call(s) outstanding; "
                "treating the stage as failed",
                stage,
                self.limits.stage_timeout or 0,
                len(pending),
                len(units),
            )
            return StageCalls(calls=len(units), failures=len(units), timed_out=True)

        batch = StageCalls(calls=len(units))
        unkeyed = 0
        for future in futures:
            records, error = future.result()
            if error is not None:
                batch.failures += 1
            for record in records:
                if identity_key(record):
                    batch.records.append(record)
                else:
                    unkeyed += 1
        if unkeyed:
            logger.debug("[%s] Ignoring %d record(s) with neither code nor name", stage, unkeyed)
        return batch


Strategy = Callable[[RecoveryContext], ExtractionAttempt]


def _apply_defaults(record: BaseModel, defaults: Dict[str, Any]) -> BaseModel:
    missing = {
        key: value
        for key, value in defaults.items()
        if value is not None and getattr(record, key, None) in (None, "")
    }
    return record.model_copy(update=missing) if missing else record


def _finish(
    strategy_name: str,
    started: float,
    batch: StageCalls,
    scope: Sequence[str],
    *,
    method: str,
    notes: str,
) -> ExtractionAttempt:
    succeeded = bool(batch.records) and not batch.timed_out
    return ExtractionAttempt(
        strategy_name=strategy_name,
        input_scope=tuple(scope),
        records=tuple(batch.records) if succeeded else (),
        succeeded=succeeded,
        method=method if succeeded else None,
        calls=batch.calls,
        failures=batch.failures,
        timed_out=batch.timed_out,
        notes=notes,
        elapsed_ms=int((time.perf_counter() - started) * 1000),
    )


def _table_unit(ctx: RecoveryContext, table: ClassifiedTable) -> RecoveryUnit:
    return RecoveryUnit(
        scope=f"table:{table.table_index}",
        instructions=ctx.instructions("table_based"),
        text=format_table_for_prompt(table),
        shape=ctx.profile.shape(),
        defaults={"source_page": table.page},
    )


def table_based(ctx: RecoveryContext) -> ExtractionAttempt:
    started = time.perf_counter()
    noun = ctx.profile.record_type
    if not ctx.tables:
        return _finish("table_based", started, StageCalls(), (), method="table-based",
                       notes="No tables supplied")

    matching = [table for table in ctx.tables if table.type in ctx.profile.table_types]
    logger.info("[table_based] %d %s table(s) of %d", len(matching), noun, len(ctx.tables))
    batch = ctx.run_units("table_based", [_table_unit(ctx, table) for table in matching])
    scope = [f"table:{table.table_index}" for table in matching]
    if batch.records and not batch.timed_out:
        return _finish("table_based", started, batch, scope, method="table-based",
                       notes=f"Found {len(batch.records)} {noun} in {len(matching)} table(s)")

    submitted = {table.table_index for table in matching}
    coded = [
        table
        for table in ctx.tables
        if table.table_index not in submitted and ctx.profile.contains_code(table.cell_text())
    ]
    if coded:
        logger.info(
            "[table_based] Identity codes found in %d table(s) typed %s",
            len(coded),
            sorted({table.type.value for table in coded}),
        )
        rescue = ctx.run_units("table_based", [_table_unit(ctx, table) for table in coded])
        rescue.calls += batch.calls
        rescue.failures += batch.failures
        scope += [f"table:{table.table_index}" for table in coded]
        types = ", ".join(sorted({table.type.value for table in coded}))
        return _finish("table_based", started, rescue, scope, method="table-code-scan",
                       notes=f"Found {len(rescue.records)} {noun} in table(s) classified as '{types}'")

    return _finish("table_based", started, batch, scope, method="table-based",
                   notes=f"{len(matching)} {noun} table(s) yielded no records")


def find_identity_codes(text: str, patterns: Sequence[Pattern[str]]) -> List[str]:
    """Return unique code matches, ordered by pattern then by position."""

    found: Dict[str, None] = {}
    for pattern in patterns:
        for match in pattern.finditer(text or ""):
            found.setdefault(match.group(0), None)
    return list(found)


def code_pattern_scan(ctx: RecoveryContext) -> ExtractionAttempt:
    started = time.perf_counter()
    profile = ctx.profile
    codes = find_identity_codes(ctx.full_text, profile.code_patterns)
    selected = codes[: ctx.limits.code_scan_limit]
    logger.info("[code_pattern_scan] %d identity code(s) found, submitting %d", len(codes), len(selected))

    radius = ctx.limits.code_context_chars
    units = []
    for code in selected:
        index = ctx.full_text.find(code)
        window = ctx.full_text[max(0, index - radius):index + len(code) + radius]
        defaults = {profile.record_model.identity_field: code} if profile.record_model.identity_field else {}
        units.append(
            RecoveryUnit(
                scope=f"span:{max(0, index - radius)}-{min(len(ctx.full_text), index + len(code) + radius)}",
                instructions=ctx.instructions("code_pattern_scan", code=code),
                text=window,
                shape=profile.shape(many=False),
                defaults=defaults,
            )
        )
    batch = ctx.run_units("code_pattern_scan", units)
    batch.records = [
        record for record in batch.records
        if len(getattr(record, "display_name", "")) >= profile.min_name_length
    ]
    return _finish("code_pattern_scan", started, batch, [unit.scope for unit in units],
                   method="code-pattern",
                   notes=f"Extracted {len(batch.records)} {profile.record_type} from "
                         f"{len(selected)} identity code(s)")


def find_sections(text: str, phrases: Sequence[Pattern[str]], window: int) -> List[Tuple[int, int]]:
    """Return ``(start, end)`` of each phrase plus the ``window`` chars after it."""

    sections: List[Tuple[int, int]] = []
    for pattern in phrases:
        covered = -1
        for match in pattern.finditer(text or ""):
            if match.start() < covered:
                continue
            end = min(len(text), match.end() + window)
            sections.append((match.start(), end))
            covered = end
    return sections


def section_scan(ctx: RecoveryContext) -> ExtractionAttempt:
    started = time.perf_counter()
    sections = find_sections(
        ctx.full_text, ctx.profile.section_phrases, ctx.limits.section_window_chars
    )
    logger.info("[section_scan] Found %d %s section(s)", len(sections), ctx.profile.record_type)
    units = [
        RecoveryUnit(
            scope=f"span:{start}-{end}",
            instructions=ctx.instructions("section_scan"),
            text=ctx.full_text[start:end],
            shape=ctx.profile.shape(),
        )
        for start, end in sections
    ]
    batch = ctx.run_units("section_scan", units)
    return _finish("section_scan", started, batch, [unit.scope for unit in units],
                   method="section-based",
                   notes=f"Extracted from {len(sections)} {ctx.profile.record_type} section(s)")


def candidate_lines(
    text: str, profile: RecoveryProfile, *, min_length: int, limit: int
) -> List[str]:
    """Return up to ``limit`` lines that look like single entries."""

    lines: List[str] = []
    for raw in (text or "").split("\n"):
        line = raw.strip()
        if not line:
            continue
        coded = any(pattern.search(line) for pattern in profile.line_patterns)
        keyword = (
            profile.line_keywords is not None
            and profile.line_keywords.search(line.lower()) is not None
            and len(line) > min_length
        )
        if coded or keyword:
            lines.append(line)
            if len(lines) >= limit:
                break
    return lines


def line_scan(ctx: RecoveryContext) -> ExtractionAttempt:
    started = time.perf_counter()
    lines = candidate_lines(
        ctx.full_text,
        ctx.profile,
        min_length=ctx.limits.line_min_length,
        limit=ctx.limits.line_scan_limit,
    )
    logger.info("[line_scan] Found %d %s-like line(s)", len(lines), ctx.profile.record_type)
    units = []
    if lines:
        units.append(
            RecoveryUnit(
                scope=f"lines:{len(lines)}",
                instructions=ctx.instructions("line_scan"),
                text="\n".join(lines),
                shape=ctx.profile.shape(),
            )
        )
    batch = ctx.run_units("line_scan", units)
    return _finish("line_scan", started, batch, [unit.scope for unit in units],
                   method="line-by-line",
                   notes=f"Parsed {len(batch.records)} {ctx.profile.record_type} from {len(lines)} line(s)")


def aggressive_fallback(ctx: RecoveryContext) -> ExtractionAttempt:
    started = time.perf_counter()
    prefix = ctx.full_text[: ctx.limits.aggressive_prefix_chars]
    units = []
    if prefix.strip():
        units.append(
            RecoveryUnit(
                scope=f"prefix:0-{len(prefix)}",
                instructions=ctx.instructions("aggressive_fallback"),
                text=prefix,
                shape=ctx.profile.shape(),
                temperature=ctx.limits.aggressive_temperature,
            )
        )
    batch = ctx.run_units("aggressive_fallback", units)
    return _finish("aggressive_fallback", started, batch, [unit.scope for unit in units],
                   method="aggressive-ai",
                   notes=f"AI extracted {len(batch.records)} {ctx.profile.record_type} "
                         "from unstructured text")


CASCADE: Tuple[Tuple[str, Strategy], ...] = (
    ("table_based", table_based),
    ("code_pattern_scan", code_pattern_scan),
    ("section_scan", section_scan),
    ("line_scan", line_scan),
    ("aggressive_fallback", aggressive_fallback),
)


class RecordRecoveryOrchestrator:
    """Run the recovery cascade for one record type."""

    def __init__(
        self,
        collaborator: Optional[ExtractionCollaborator] = None,
        *,
        profile: RecoveryProfile = PRODUCT_PROFILE,
        limits: Optional[RecoveryLimits] = None,
        strategies: Sequence[Tuple[str, Strategy]] = CASCADE,
    ) -> None:
        self.collaborator = collaborator or build_collaborator()
        self.profile = profile
        self.limits = limits or RecoveryLimits.from_settings()
        self.strategies = tuple(strategies)

    def _run_strategy(self, name: str, strategy: Strategy, ctx: RecoveryContext) -> ExtractionAttempt:
        try:
            return strategy(ctx)
        except Exception:
            logger.exception("[%s] Strategy raised; treating it as zero records", name)
            return ExtractionAttempt(strategy_name=name, notes="strategy raised an error")

    def recover(
        self, full_text: Any, tables: Sequence[ClassifiedTable] = ()
    ) -> ExtractionResult:
        text = full_text if isinstance(full_text, str) else ""
        ctx = RecoveryContext(text, tables, self.profile, self.collaborator, self.limits)
        record_type = self.profile.record_type
        logger.info(
            "Recovering %s from %d chars and %d table(s)", record_type, len(text), len(ctx.tables)
        )

        attempts: List[ExtractionAttempt] = []
        winner: Optional[ExtractionAttempt] = None
        for name, strategy in self.strategies:
            attempt = self._run_strategy(name, strategy, ctx)
            attempts.append(attempt)
            logger.info(
                "[%s] ran: %d call(s), %d failure(s), %d record(s)",
                name,
                attempt.calls,
                attempt.failures,
                len(attempt.records),
            )
            if attempt.succeeded:
                winner = attempt
                break

        if winner is None:
            tried = ", ".join(attempt.strategy_name for attempt in attempts)
            logger.info("No strategy recovered %s (tried: %s)", record_type, tried)
            return ExtractionResult(
                records=(),
                method="none",
                confidence=METHOD_CONFIDENCE["none"],
                notes=f"No extraction strategy produced {record_type} (tried: {tried})",
                record_type=record_type,
                attempts=tuple(attempts),
            )

        unique = merge_records(winner.records)
        method = winner.method or "none"
        confidence = METHOD_CONFIDENCE.get(method, 0.0)
        notes = winner.notes
        if len(unique) != len(winner.records):
            notes += f"; {len(winner.records)} -> {len(unique)} after deduplication"
        logger.info(
            "Recovered %d %s via %s (confidence %.0f%%)",
            len(unique),
            record_type,
            method,
            confidence * 100,
        )
        return ExtractionResult(
            records=tuple(unique),
            method=method,
            confidence=confidence,
            notes=notes,
            record_type=record_type,
            attempts=tuple(attempts),
        )


__all__ = [
    "BUNDLE_PROFILE",
    "CASCADE",
    "ExtractionAttempt",
    "ExtractionResult",
    "FACILITY_PROFILE",
    "METHOD_CONFIDENCE",
    "NDC_PATTERNS",
    "PRODUCT_PROFILE",
    "RECOVERY_PROFILES",
    "RecordRecoveryOrchestrator",
    "RecoveryContext",
    "RecoveryLimits",
    "RecoveryProfile",
    "RecoveryUnit",
    "TIER_PROFILE",
    "aggressive_fallback",
    "candidate_lines",
    "code_pattern_scan",
    "find_identity_codes",
    "find_sections",
    "line_scan",
    "section_scan",
    "table_based",
]
