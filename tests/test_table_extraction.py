import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from services.table_detector import CandidateTable, RawSpan, TableCandidateDetector
from services.table_extraction import extract_tables, format_table_for_prompt
from utils.table_profiles import TableType

CONTRACT_TEXT = (
    "Product List\n"
    "| NDC | Product | Strength |\n"
    "| 12345-6789-01 | CardioCare | 25mg |\n"
    "| 12345-6789-02 | GlucoFix | 500mg |\n"
    "Page 1\n"
    "Rebate Tier Schedule\n"
    "Tier\tRebate\n"
    "Tier 1\t2.0%\n"
    "Tier 2\t3.5%\n"
)


def test_tables_are_detected_classified_and_indexed_per_page():
    result = extract_tables(CONTRACT_TEXT, max_workers=1)

    assert result.segmentation_method == "page_markers"
    assert result.page_count == 2
    assert result.extraction_method == "pattern_based"
    assert [table.table_index for table in result.tables] == [0, 1]
    assert [table.page for table in result.tables] == [1, 2]
    assert [table.type for table in result.tables] == [TableType.PRODUCTS, TableType.TIERS]
    assert result.full_text == CONTRACT_TEXT


def test_spans_are_document_absolute():
    result = extract_tables(CONTRACT_TEXT, max_workers=1)
    products, tiers = result.tables

    assert CONTRACT_TEXT[products.span.start:products.span.end].startswith("| NDC |")
    assert CONTRACT_TEXT[tiers.span.start:tiers.span.end] == "Tier\tRebate\nTier 1\t2.0%\nTier 2\t3.5%"


def test_worker_count_does_not_change_the_result():
    serial = extract_tables(CONTRACT_TEXT, max_workers=1)
    pooled = extract_tables(CONTRACT_TEXT, max_workers=4)

    assert serial.tables == pooled.tables


def test_page_count_hint_is_reported():
    assert extract_tables(CONTRACT_TEXT, page_count=7).page_count == 7


def test_empty_or_missing_text_yields_no_tables():
    for value in ("", None):
        result = extract_tables(value)
        assert result.tables == ()
        assert result.full_text == ""
        assert result.page_count == 1


def test_layout_aware_detector_reports_hybrid_method():
    detector = TableCandidateDetector(alignment_detector=lambda text: [])
    assert extract_tables(CONTRACT_TEXT, detector=detector).extraction_method == "hybrid"


def test_alignment_candidates_are_classified_like_the_rest():
    def alignment(text):
        if "Rebate" not in text:
            return []
        return [CandidateTable(RawSpan(0, 5), (("Facility", "340B ID"), ("Clinic", "X1")), 0.7, "alignment")]

    result = extract_tables(CONTRACT_TEXT, detector=TableCandidateDetector(alignment_detector=alignment))

    facilities = result.tables_of_type("facilities")
    assert len(facilities) == 1
    assert facilities[0].strategy == "alignment"
    assert facilities[0].page == 2


def test_summary_counts_tables_by_type():
    summary = extract_tables(CONTRACT_TEXT).summary()

    assert summary["table_count"] == 2
    assert summary["types"] == {"products": 1, "tiers": 1}
    assert summary["page_count"] == 2


def test_format_table_for_prompt():
    products = extract_tables(CONTRACT_TEXT).tables[0]

    assert format_table_for_prompt(products) == "\n".join(
        [
            "NDC | Product | Strength",
            "-" * 80,
            "12345-6789-01 | CardioCare | 25mg",
            "12345-6789-02 | GlucoFix | 500mg",
        ]
    )


def test_format_table_for_prompt_with_context():
    products = extract_tables(CONTRACT_TEXT).tables[0]
    rendered = format_table_for_prompt(products, include_context=True)

    lines = rendered.split("\n")
    assert lines[0] == 'Context before table: "Product List"'
    assert lines[2] == "Table 0 (Page 1, Type: products)"
    assert lines[3] == "=" * 80
    assert lines[4] == "NDC | Product | Strength"


def test_table_converts_to_dataframe():
    tiers = extract_tables(CONTRACT_TEXT).tables_of_type(TableType.TIERS)[0]
    frame = tiers.to_dataframe()

    assert list(frame.columns) == ["Tier", "Rebate"]
    assert frame.shape == (2, 2)
    assert frame.iloc[1]["Rebate"] == "3.5%"
