"""Collapse records that describe the same real-world entity."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List

from pydantic import BaseModel

from utils.record_schemas import count_populated_fields, identity_key

logger = logging.getLogger(__name__)


def merge_records(records: Iterable[BaseModel]) -> List[BaseModel]:
    """Return one record per identity key, in first-seen key order.

    When two records share a key the one with more populated fields wins;
    ties keep the record seen first.  Records without any identity (no code
    and no name) cannot be keyed and are dropped.
    """

    merged: Dict[str, BaseModel] = {}
    seen = dropped = 0
    for record in records:
        seen += 1
        key = identity_key(record)
        if not key:
            dropped += 1
            continue
        existing = merged.get(key)
        if existing is None:
            merged[key] = record
        elif count_populated_fields(record) > count_populated_fields(existing):
            merged[key] = record

    if dropped:
        logger.debug("Dropped %d record(s) without an identity key", dropped)
    logger.debug("Merged %d record(s) into %d unique record(s)", seen, len(merged))
    return list(merged.values())


__all__ = ["merge_records"]
