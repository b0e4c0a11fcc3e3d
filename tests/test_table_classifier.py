import os
import sys

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from services.table_classifier import (
    TableContext,
    classify_grid,
    classify_table,
    score_profiles,
    table_context,
)
from services.table_detector import RawSpan, detect_delimiter_tables
from services.table_extraction import extract_tables
from utils.table_profiles import TableType


def test_rebate_tier_table_is_classified_as_tiers():
    grid = (
        ("Tier", "Volume Threshold", "Rebate %"),
        ("Tier 1", "$0 - $500,000", "2.0%"),
        ("Tier 2", "$500,001 - $1,000,000", "3.5%"),
    )
    table_type, confidence = classify_grid(grid, TableContext(before_text="Rebate Tier Schedule"))

    assert table_type is TableType.TIERS
    assert confidence >= 0.8


def test_tab_delimited_tier_schedule_is_detected_and_classified_from_text():
    text = (
        "Rebate Tier Schedule\n"
        "Tier\tVolume Threshold\tRebate %\n"
        "Tier 1\t$0 - $500,000\t2.0%\n"
        "Tier 2\t$500,001 - $1,000,000\t3.5%\n"
    )

    tables = extract_tables(text).tables

    assert len(tables) == 1
    table = tables[0]
    assert table.type is TableType.TIERS
    assert table.confidence >= 0.8
    assert table.row_count == 2
    assert table.headers == ("Tier", "Volume Threshold", "Rebate %")
    assert table.context.before_text == "Rebate Tier Schedule"


def test_ndc_table_is_classified_as_products():
    grid = (("NDC", "Product Name", "Strength"), ("12345-6789-01", "CardioCare", "25mg"))
    table_type, confidence = classify_grid(grid, TableContext())

    assert table_type is TableType.PRODUCTS
    assert confidence == pytest.approx(0.9)


def test_facility_table_is_not_taken_by_products_on_a_name_header_alone():
    grid = (
        ("Facility ID", "Facility Name", "340B ID"),
        ("F-001", "General Hospital", "340B-123"),
    )
    table_type, _ = classify_grid(grid, TableContext())

    assert table_type is TableType.FACILITIES


def test_unmatched_table_is_unknown_with_half_confidence():
    table_type, confidence = classify_grid((("Alpha", "Beta"), ("one", "two")), TableContext())

    assert table_type is TableType.UNKNOWN
    assert confidence == 0.5


def test_empty_grid_is_unknown():
    assert classify_grid((), TableContext()) == (TableType.UNKNOWN, 0.5)


def test_profile_order_breaks_ties():
    grid = (("Product", "Rebate %"), ("CardioCare 10mg", "2.5%"))
    scores = score_profiles(grid, TableContext())

    assert scores[TableType.PRODUCTS] >= 3
    assert scores[TableType.TIERS] > scores[TableType.PRODUCTS]
    assert classify_grid(grid, TableContext())[0] is TableType.PRODUCTS


def test_threshold_can_be_raised():
    grid = (("NDC", "Product Name"), ("12345-6789-01", "CardioCare"))
    assert classify_grid(grid, TableContext(), threshold=100)[0] is TableType.UNKNOWN


def test_confidence_stays_within_unit_interval():
    grids = [
        (("NDC", "Product", "SKU", "Item", "Drug", "Name"), ("12345-6789-01 25mg tablet",) * 6),
        (("Tier", "Rebate %"), ("Tier 1", "2.0%")),
        (("Date", "Payment Due"), ("Q1", "April 30")),
        (("Alpha",), ("beta",)),
    ]
    for grid in grids:
        _, confidence = classify_grid(grid, TableContext())
        assert 0.0 <= confidence <= 1.0


def test_table_context_is_trimmed_and_bounded():
    text = "x" * 500 + "  Rebate Tier Schedule\n" + "TABLE" + "\nFootnote text." + "y" * 500
    start = text.index("TABLE")
    context = table_context(text, RawSpan(start, start + 5), chars=30)

    assert context.before_text.endswith("Rebate Tier Schedule")
    assert len(context.before_text) <= 30
    assert context.after_text.startswith("Footnote text.")
    assert len(context.after_text) <= 30


def test_classify_table_moves_span_into_document_coordinates():
    page_text = (
        "Rebate Tier Schedule\n\n"
        "Tier\tRebate\n"
        "Tier 1\t2.0%\n"
        "Tier 2\t3.5%\n"
        "\n"
        "Payments are made quarterly."
    )
    candidate = detect_delimiter_tables(page_text)[0]

    classified = classify_table(candidate, page_text, table_index=3, page=2, page_offset=1000)

    assert classified.type is TableType.TIERS
    assert classified.table_index == 3
    assert classified.page == 2
    assert classified.span == candidate.span.shifted(1000)
    assert classified.headers == ("Tier", "Rebate")
    assert classified.rows == (("Tier 1", "2.0%"), ("Tier 2", "3.5%"))
    assert classified.column_count == 2
    assert classified.context.before_text == "Rebate Tier Schedule"
    assert classified.context.after_text == "Payments are made quarterly."
    assert classified.detection_confidence == pytest.approx(0.8)


def test_classification_is_deterministic():
    grid = (("Tier", "Rebate %"), ("Tier 1", "2.0%"))
    context = TableContext(before_text="volume tier")
    assert classify_grid(grid, context) == classify_grid(grid, context)
