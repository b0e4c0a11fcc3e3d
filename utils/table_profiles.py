"""Static classification rules for tables found in rebate contracts.

Each :class:`TableProfile` describes how a semantic table type announces
itself: words that appear in its header row, words that appear anywhere in
its cells, phrases that usually surround it and numeric patterns that are
typical for its content.  Profiles are immutable and evaluated in the order
of :data:`CLASSIFICATION_PROFILES`; that order is the tie-break rule when
several profiles clear the threshold for the same table.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Pattern, Tuple


class TableType(str, Enum):
    PRODUCTS = "products"
    TIERS = "tiers"
    FACILITIES = "facilities"
    BUNDLES = "bundles"
    PAYMENT_SCHEDULE = "payment_schedule"
    EXCLUSIONS = "exclusions"
    PRICING = "pricing"
    VOLUME_COMMITMENTS = "volume_commitments"
    UNKNOWN = "unknown"


UNKNOWN_CONFIDENCE = 0.5

# Hyphenated National Drug Code layouts (5-4-2 and 5-3-2).
NDC_HYPHENATED_PATTERN = re.compile(r"\d{5}-\d{3,4}-\d{2}")
CURRENCY_PATTERN = re.compile(r"\$[\d,]+")
PERCENTAGE_PATTERN = re.compile(r"\d+\.\d+%")

# Phrases that usually introduce a table in a contract body.
TABLE_INTRODUCING_PHRASES: Tuple[Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"product\s+list",
        r"rebate\s+tier",
        r"tier\s+structure",
        r"facility\s+list",
        r"eligible\s+products",
        r"pricing\s+schedule",
        r"payment\s+schedule",
    )
)


@dataclass(frozen=True)
class TableProfile:
    table_type: TableType
    header_keywords: Tuple[str, ...]
    content_keywords: Tuple[str, ...]
    context_keywords: Tuple[str, ...]
    base_confidence: float
    code_pattern: Pattern[str] | None = None
    number_patterns: Tuple[Pattern[str], ...] = ()
    header_weight: float = 2.0
    content_weight: float = 1.0
    context_weight: float = 1.5
    code_weight: float = 3.0
    number_weight: float = 1.5


CLASSIFICATION_PROFILES: Tuple[TableProfile, ...] = (
    TableProfile(
        table_type=TableType.PRODUCTS,
        header_keywords=("ndc", "product", "sku", "item", "drug", "name", "strength", "package"),
        content_keywords=("ndc", "mg", "ml", "tablet", "capsule", "injection"),
        context_keywords=("product list", "eligible products", "covered products"),
        base_confidence=0.9,
        code_pattern=NDC_HYPHENATED_PATTERN,
    ),
    TableProfile(
        table_type=TableType.TIERS,
        header_keywords=("tier", "level", "threshold", "rebate", "volume", "percentage", "%"),
        content_keywords=("tier", "%", "rebate", "volume", "purchase"),
        context_keywords=("rebate tier", "tier structure", "volume tier", "pricing tier"),
        base_confidence=0.9,
        number_patterns=(CURRENCY_PATTERN, PERCENTAGE_PATTERN),
    ),
    TableProfile(
        table_type=TableType.FACILITIES,
        header_keywords=("facility", "location", "site", "340b", "address", "id"),
        content_keywords=("340b", "hospital", "clinic", "medical center", "health"),
        context_keywords=("facility list", "340b", "eligible facilities", "covered entities"),
        base_confidence=0.85,
    ),
    TableProfile(
        table_type=TableType.BUNDLES,
        header_keywords=("category", "class", "therapeutic", "minimum", "requirement", "bundle"),
        content_keywords=("cardiovascular", "diabetes", "oncology", "minimum spend", "category"),
        context_keywords=("category requirement", "bundle", "cross-category", "therapeutic class"),
        base_confidence=0.85,
    ),
    TableProfile(
        table_type=TableType.PAYMENT_SCHEDULE,
        header_keywords=("date", "payment", "quarter", "period", "due"),
        content_keywords=("payment", "quarter", "q1", "q2", "q3", "q4", "due"),
        context_keywords=("payment schedule", "payment terms", "due dates"),
        base_confidence=0.8,
    ),
    TableProfile(
        table_type=TableType.EXCLUSIONS,
        header_keywords=("exclusion", "excluded", "carve-out", "not eligible"),
        content_keywords=("medicaid", "medicare", "exclude", "not eligible", "carve-out"),
        context_keywords=("exclusion", "excluded", "not eligible", "carve-out"),
        base_confidence=0.8,
    ),
    TableProfile(
        table_type=TableType.PRICING,
        header_keywords=("price", "wac", "cost", "contract price", "unit price"),
        content_keywords=("wac", "price", "per unit", "each"),
        context_keywords=("pricing schedule", "price list", "contract pricing"),
        base_confidence=0.75,
        number_patterns=(CURRENCY_PATTERN,),
    ),
    TableProfile(
        table_type=TableType.VOLUME_COMMITMENTS,
        header_keywords=("commitment", "committed", "annual volume", "units", "market share"),
        content_keywords=("commit", "units", "annual", "market share", "compliance"),
        context_keywords=("volume commitment", "purchase commitment", "minimum volume"),
        base_confidence=0.75,
    ),
)


def profile_for(table_type: TableType | str) -> TableProfile | None:
    """Return the profile registered for ``table_type`` if any."""

    value = table_type.value if isinstance(table_type, TableType) else str(table_type)
    for profile in CLASSIFICATION_PROFILES:
        if profile.table_type.value == value:
            return profile
    return None


__all__ = [
    "CLASSIFICATION_PROFILES",
    "CURRENCY_PATTERN",
    "NDC_HYPHENATED_PATTERN",
    "PERCENTAGE_PATTERN",
    "TABLE_INTRODUCING_PHRASES",
    "TableProfile",
    "TableType",
    "UNKNOWN_CONFIDENCE",
    "profile_for",
]
