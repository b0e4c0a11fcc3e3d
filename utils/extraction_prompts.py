"""Instruction templates handed to the extraction collaborator.

Templates are plain ``str.format`` strings.  Each record type provides the
same five entries, one per recovery stage, so the cascade can look them up
by stage name without special-casing the record type.
"""

from __future__ import annotations

from typing import Dict

SYSTEM_PROMPT = (
    "You are an expert contract analyst. Always respond with valid JSON when asked "
    "to extract structured data. Never include markdown formatting or code blocks "
    "in your response."
)

JSON_SUFFIX = (
    "\n\nRespond with ONLY valid JSON. Return a raw JSON object matching the "
    "requested shape; use null for fields that are not present and never invent data."
)

_PRODUCT_FIELDS = (
    '{{"productName": "...", "ndc": "12345-6789-01", "sku": null, "strength": "25mg", '
    '"packageSize": "100 tablets", "unitOfMeasure": "bottle", "manufacturer": null, '
    '"category": null, "rebateEligible": true, "sourceQuote": "exact text"}}'
)

_TIER_FIELDS = (
    '{{"tierName": "Tier 1", "tierLevel": 1, "minThreshold": 0, "maxThreshold": 750000, '
    '"rebatePercentage": 4.5, "rebateAmount": null, "calculationMethod": "...", '
    '"sourceQuote": "exact text"}}'
)

_FACILITY_FIELDS = (
    '{{"facilityName": "...", "facilityId": "DSH123456", "address": null, "city": null, '
    '"state": null, "facilityType": "hospital", "is340B": true, "sourceQuote": "exact text"}}'
)

_BUNDLE_FIELDS = (
    '{{"categoryName": "Cardiovascular", "minimumSpend": 250000, '
    '"minimumCompliancePercent": 80, "includedProducts": "...", "requirement": "...", '
    '"sourceQuote": "exact text"}}'
)


def _templates(noun: str, fields: str, code_label: str) -> Dict[str, str]:
    return {
        "table_based": (
            f"Extract ALL {noun} from this table. Each row is one entry; extract every "
            "row and do not combine rows.\n"
            f'Return {{{{"records": [{fields}]}}}}'
        ),
        "code_pattern_scan": (
            f"Extract the single entry identified by {code_label} {{code}} from the text "
            "below. Copy the identifier exactly as written.\n"
            f"Return {fields}"
        ),
        "section_scan": (
            f"Extract ALL {noun} listed in this contract section.\n"
            f'Return {{{{"records": [{fields}]}}}}'
        ),
        "line_scan": (
            f"Parse these lines into structured {noun}; one line usually holds one entry.\n"
            f'Return {{{{"records": [{fields}]}}}}'
        ),
        "aggressive_fallback": (
            f"Extract ANY and ALL {noun} mentioned in this contract, even if the "
            "formatting is poor. Favour recall: include every plausible entry.\n"
            f'Return {{{{"records": [{fields}]}}}}'
        ),
    }


INSTRUCTIONS: Dict[str, Dict[str, str]] = {
    "products": _templates("products", _PRODUCT_FIELDS, "NDC"),
    "tiers": _templates("rebate tiers", _TIER_FIELDS, "tier"),
    "facilities": _templates("facilities", _FACILITY_FIELDS, "340B identifier"),
    "bundles": _templates("bundle category requirements", _BUNDLE_FIELDS, "category"),
}


def render_instructions(record_type: str, stage: str, **values: str) -> str:
    """Return the instructions for ``record_type`` at ``stage``."""

    template = INSTRUCTIONS[record_type][stage]
    return template.format(**values)


__all__ = ["INSTRUCTIONS", "JSON_SUFFIX", "SYSTEM_PROMPT", "render_instructions"]
