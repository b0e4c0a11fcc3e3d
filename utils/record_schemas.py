"""Pydantic shapes for records recovered from contract text.

Every variant carries a ``record_type`` literal so mixed collections can be
validated as a discriminated union, and declares which of its fields act as
identity (a code first, a name second) and which count towards completeness
when two records describe the same entity.
"""

from __future__ import annotations

import re
from typing import Annotated, Any, ClassVar, Dict, List, Literal, Optional, Tuple, Type, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _RecordBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    identity_field: ClassVar[Optional[str]] = None
    name_field: ClassVar[str] = "name"
    completeness_fields: ClassVar[Tuple[str, ...]] = ()

    source_quote: Optional[str] = Field(None, alias='sourceQuote')
    source_page: Optional[int] = Field(None, alias='sourcePage')

    @field_validator("source_page", mode="before")
    @classmethod
    def _coerce_page(cls, value: Any) -> Any:
        if value in (None, ""):
            return None
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return None

    @property
    def display_name(self) -> str:
        value = getattr(self, self.name_field, None)
        return str(value or "").strip()


class ProductRecord(_RecordBase):
    identity_field: ClassVar[Optional[str]] = "ndc"
    name_field: ClassVar[str] = "product_name"
    completeness_fields: ClassVar[Tuple[str, ...]] = (
        "product_name",
        "ndc",
        "strength",
        "package_size",
        "manufacturer",
        "category",
    )

    record_type: Literal["products"] = Field("products", alias='recordType')
    product_name: str = Field("", alias='productName')
    ndc: Optional[str] = None
    sku: Optional[str] = None
    strength: Optional[str] = None
    package_size: Optional[str] = Field(None, alias='packageSize')
    unit_of_measure: Optional[str] = Field(None, alias='unitOfMeasure')
    manufacturer: Optional[str] = None
    category: Optional[str] = None
    rebate_eligible: Optional[bool] = Field(None, alias='rebateEligible')


class TierRecord(_RecordBase):
    identity_field: ClassVar[Optional[str]] = "tier_level"
    name_field: ClassVar[str] = "tier_name"
    completeness_fields: ClassVar[Tuple[str, ...]] = (
        "tier_name",
        "tier_level",
        "min_threshold",
        "max_threshold",
        "rebate_percentage",
        "rebate_amount",
        "calculation_method",
    )

    record_type: Literal["tiers"] = Field("tiers", alias='recordType')
    tier_name: str = Field("", alias='tierName')
    tier_level: Optional[int] = Field(None, alias='tierLevel')
    min_threshold: Optional[float] = Field(None, alias='minThreshold')
    max_threshold: Optional[float] = Field(None, alias='maxThreshold')
    rebate_percentage: Optional[float] = Field(None, alias='rebatePercentage')
    rebate_amount: Optional[float] = Field(None, alias='rebateAmount')
    calculation_method: Optional[str] = Field(None, alias='calculationMethod')
    applicable_products: Optional[str] = Field(None, alias='applicableProducts')
    is_retroactive: Optional[bool] = Field(None, alias='isRetroactive')

    @field_validator(
        "min_threshold",
        "max_threshold",
        "rebate_percentage",
        "rebate_amount",
        mode="before",
    )
    @classmethod
    def _coerce_number(cls, value: Any) -> Any:
        return _coerce_float(value)

    @field_validator("tier_level", mode="before")
    @classmethod
    def _coerce_level(cls, value: Any) -> Any:
        number = _coerce_float(value)
        return None if number is None else int(number)


class FacilityRecord(_RecordBase):
    identity_field: ClassVar[Optional[str]] = "facility_id"
    name_field: ClassVar[str] = "facility_name"
    completeness_fields: ClassVar[Tuple[str, ...]] = (
        "facility_name",
        "facility_id",
        "address",
        "city",
        "state",
        "facility_type",
    )

    record_type: Literal["facilities"] = Field("facilities", alias='recordType')
    facility_name: str = Field("", alias='facilityName')
    facility_id: Optional[str] = Field(None, alias='facilityId')
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    facility_type: Optional[str] = Field(None, alias='facilityType')
    is_340b: Optional[bool] = Field(None, alias='is340B')


class BundleRecord(_RecordBase):
    name_field: ClassVar[str] = "category_name"
    completeness_fields: ClassVar[Tuple[str, ...]] = (
        "category_name",
        "minimum_spend",
        "minimum_compliance_percent",
        "included_products",
        "requirement",
    )

    record_type: Literal["bundles"] = Field("bundles", alias='recordType')
    category_name: str = Field("", alias='categoryName')
    minimum_spend: Optional[float] = Field(None, alias='minimumSpend')
    minimum_compliance_percent: Optional[float] = Field(
        None, alias='minimumCompliancePercent'
    )
    included_products: Optional[str] = Field(None, alias='includedProducts')
    requirement: Optional[str] = None

    @field_validator("minimum_spend", "minimum_compliance_percent", mode="before")
    @classmethod
    def _coerce_number(cls, value: Any) -> Any:
        return _coerce_float(value)


Record = Annotated[
    Union[ProductRecord, TierRecord, FacilityRecord, BundleRecord],
    Field(discriminator="record_type"),
]

RECORD_MODELS: Dict[str, Type[_RecordBase]] = {
    "products": ProductRecord,
    "tiers": TierRecord,
    "facilities": FacilityRecord,
    "bundles": BundleRecord,
}

_NUMERIC_CODE = re.compile(r"^[\d\-\s]+$")


def _coerce_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    cleaned = re.sub(r"[^0-9.\-]", "", str(value))
    if cleaned in ("", "-", ".", "-."):
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


def _is_populated(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def normalise_code(value: Any) -> str:
    """Return a comparable form of an identity code.

    Purely numeric codes lose their hyphens and spaces so ``12345-6789-01``
    and ``12345678901`` collapse to the same key; other codes are upper-cased
    with whitespace removed.
    """

    if value is None:
        return ""
    text = str(value).strip()
    if not text:
        return ""
    if _NUMERIC_CODE.match(text):
        return re.sub(r"\D", "", text)
    return re.sub(r"\s+", "", text).upper()


def identity_key(record: _RecordBase) -> str:
    """Return the deduplication key for ``record`` or ``""`` if it has none."""

    if record.identity_field:
        code = normalise_code(getattr(record, record.identity_field, None))
        if code:
            return code
    return record.display_name.lower()


def count_populated_fields(record: _RecordBase) -> int:
    return sum(
        1 for name in record.completeness_fields if _is_populated(getattr(record, name, None))
    )


def record_model_for(record_type: str) -> Type[_RecordBase]:
    try:
        return RECORD_MODELS[record_type]
    except KeyError as exc:
        raise ValueError(f"Unsupported record type: {record_type!r}") from exc


def records_to_dicts(records: List[_RecordBase]) -> List[Dict[str, Any]]:
    return [record.model_dump(by_alias=False) for record in records]


__all__ = [
    "BundleRecord",
    "FacilityRecord",
    "ProductRecord",
    "RECORD_MODELS",
    "Record",
    "TierRecord",
    "count_populated_fields",
    "identity_key",
    "normalise_code",
    "record_model_for",
    "records_to_dicts",
]
