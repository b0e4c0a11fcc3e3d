import inspect
import os
import sys

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from services.table_detector import (
    CandidateTable,
    RawSpan,
    TableCandidateDetector,
    deduplicate_spans,
    detect_alignment_tables,
    detect_delimiter_tables,
    detect_keyword_tables,
    split_line,
)

PIPE_TABLE = (
    "The following products are covered.\n"
    "\n"
    "| NDC | Product | Strength | Package |\n"
    "| 12345-6789-01 | CardioCare | 25mg | 100 tablets |\n"
    "| 12345-6789-02 | GlucoFix | 500mg | 60 tablets |\n"
    "\n"
    "Pricing is described in Section 4."
)


def test_pipe_table_surrounded_by_blank_lines():
    candidates = detect_delimiter_tables(PIPE_TABLE)

    assert len(candidates) == 1
    table = candidates[0]
    assert table.row_count == 2
    assert table.detection_confidence == pytest.approx(0.8)
    assert table.grid[0] == ("NDC", "Product", "Strength", "Package")
    assert table.grid[2] == ("12345-6789-02", "GlucoFix", "500mg", "60 tablets")
    covered = PIPE_TABLE[table.span.start:table.span.end]
    assert covered.startswith("| NDC |")
    assert covered.endswith("| 60 tablets |")


def test_short_table_gets_lower_confidence_and_trailing_table_is_captured():
    text = "Facility list\n\nFacility\tCity\nGeneral Hospital\tSpringfield"
    candidates = detect_delimiter_tables(text)

    assert len(candidates) == 1
    assert candidates[0].detection_confidence == pytest.approx(0.5)
    assert candidates[0].grid == (("Facility", "City"), ("General Hospital", "Springfield"))
    assert candidates[0].span.end == len(text)


def test_whitespace_runs_act_as_delimiter():
    text = (
        "Tier      Volume         Rebate\n"
        "Tier 1    $0             2.0%\n"
        "Tier 2    $500,000       3.5%\n"
    )
    candidates = detect_delimiter_tables(text)

    assert len(candidates) == 1
    assert candidates[0].grid[1] == ("Tier 1", "$0", "2.0%")
    assert candidates[0].detection_confidence == pytest.approx(0.8)


def test_changing_delimiter_closes_the_table():
    text = "a | b | c\nd | e | f\nx\ty\nz\tw"
    candidates = detect_delimiter_tables(text)

    assert [len(candidate.grid) for candidate in candidates] == [2, 2]
    assert candidates[0].grid[0] == ("a", "b", "c")
    assert candidates[1].grid[0] == ("x", "y")


def test_plain_prose_is_not_a_table():
    text = "This Agreement is entered into by and between the parties.\nNo tables here."
    assert detect_delimiter_tables(text) == []
    assert split_line("plain words only") == (None, [])


def test_keyword_window_boosts_confidence():
    text = "Product List\n| NDC | Name |\n| 12345-6789-01 | Alpha |"
    candidates = detect_keyword_tables(text)

    assert len(candidates) == 1
    assert candidates[0].strategy == "keyword"
    assert candidates[0].detection_confidence == pytest.approx(0.6)
    assert text[candidates[0].span.start:candidates[0].span.end].startswith("| NDC |")


def test_keyword_boost_is_capped():
    body = "\n".join(f"| Tier {i} | {i}.0% |" for i in range(1, 5))
    candidates = detect_keyword_tables("Rebate tier\n" + body, boost=0.5)

    assert candidates[0].detection_confidence == pytest.approx(1.0)


def test_keyword_spans_are_shifted_into_page_coordinates():
    prefix = "Preamble text. " * 10
    text = prefix + "Payment Schedule\nQuarter\tDue\nQ1\tApril 30\n"
    candidates = detect_keyword_tables(text)

    assert len(candidates) == 1
    span = candidates[0].span
    assert text[span.start:span.end] == "Quarter\tDue\nQ1\tApril 30"


def test_alignment_strategy_is_a_no_op_without_layout():
    assert detect_alignment_tables(PIPE_TABLE) == []


def _candidate(start, end, strategy="delimiter"):
    return CandidateTable(RawSpan(start, end), (("a", "b"),), 0.5, strategy)


def test_deduplicate_keeps_one_of_heavily_overlapping_spans():
    kept = deduplicate_spans([_candidate(0, 100), _candidate(10, 110, "keyword")])

    assert len(kept) == 1
    assert kept[0].strategy == "delimiter"


def test_deduplicate_keeps_moderately_overlapping_and_disjoint_spans():
    candidates = [_candidate(0, 100), _candidate(50, 150), _candidate(200, 260)]
    assert deduplicate_spans(candidates) == candidates


def test_deduplicate_measures_overlap_against_shorter_span():
    kept = deduplicate_spans([_candidate(0, 1000), _candidate(100, 180)])
    assert len(kept) == 1


def test_detector_prefers_delimiter_detection_over_keyword_detection():
    text = "Product List\n| NDC | Name |\n| 12345-6789-01 | Alpha |"
    detector = TableCandidateDetector()

    raw = detector.candidates(text)
    kept = detector.detect(text)

    assert [candidate.strategy for candidate in raw] == ["delimiter", "keyword"]
    assert len(kept) == 1
    assert kept[0].strategy == "delimiter"
    assert kept[0].detection_confidence == pytest.approx(0.5)


def test_detector_uses_pluggable_alignment_strategy():
    found = _candidate(500, 600, "alignment")
    seen = []

    def alignment(text):
        seen.append(text)
        return [found]

    detector = TableCandidateDetector(alignment_detector=alignment)

    assert detector.layout_aware
    assert found in detector.detect(PIPE_TABLE)
    assert seen == [PIPE_TABLE]


def test_default_alignment_strategy_takes_only_page_text():
    detector = TableCandidateDetector()

    assert not detector.layout_aware
    assert list(inspect.signature(detect_alignment_tables).parameters) == ["text"]
    assert [c.strategy for c in detector.candidates(PIPE_TABLE)] == ["delimiter"]


def test_detection_is_deterministic():
    detector = TableCandidateDetector()
    assert detector.detect(PIPE_TABLE) == detector.detect(PIPE_TABLE)


def test_single_pipe_is_not_a_column_separator():
    assert split_line("either this | or that") == (None, [])
    assert split_line("a | b | c") == ("pipe", ["a", "b", "c"])
