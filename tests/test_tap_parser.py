from __future__ import annotations

from conftest import make_sheet

from dashboard import compute_stats
from tap_parser import (
    HeaderIndex,
    find_header_row,
    normalize_label,
    parse_records,
    split_cells,
    split_rows,
    tokenize,
)


def test_quoted_comma_stays_in_one_cell():
    assert split_cells('SDO-X,"Improve reading, writing",Partial') == [
        "SDO-X",
        "Improve reading, writing",
        "Partial",
    ]


def test_doubled_quotes_collapse_to_literal_quote():
    assert split_cells('a,"say ""hi"" now",b') == ["a", 'say "hi" now', "b"]


def test_cells_are_trimmed_and_trailing_empty_cell_kept():
    assert split_cells("  a ,b  ,") == ["a", "b", ""]


def test_newline_inside_quotes_does_not_split_row():
    text = 'h1,h2\r\n"line one\nline two",x\r\n'
    rows = split_rows(text)
    assert len(rows) == 2
    assert split_cells(rows[1]) == ["line one\nline two", "x"]


def test_blank_rows_and_carriage_returns_are_dropped():
    rows = split_rows("a,b\r\n\r\n   \r\nc,d\r\n")
    assert rows == ["a,b", "c,d"]


def test_unterminated_quote_degrades_without_error():
    rows = tokenize('a,b\n"open,never closed\nc,d')
    assert rows[0] == ["a", "b"]
    assert len(rows) == 2
    assert rows[1][0].startswith("open,never closed")


def test_normalize_label_loose_and_strict():
    assert normalize_label(" ta needed/help needed 1 ") == "TANEEDEDHELPNEEDED1"
    assert normalize_label("Division_School") == "DIVISIONSCHOOL"
    assert normalize_label("TAP Due-Date (1)") == "TAPDUE-DATE(1)"
    assert normalize_label("TAP Due-Date (1)", strict=True) == "TAPDUEDATE1"


def test_find_header_row_needs_office_and_division():
    rows = [
        ["Report"],
        ["OFFICE", "DISTRICT"],
        ["office", "Division/School"],
    ]
    assert find_header_row(rows) == 2


def test_find_header_row_only_scans_first_25_rows():
    rows = [["filler"] for _ in range(25)] + [["OFFICE", "DIVISION"]]
    assert find_header_row(rows) is None


def test_header_index_exact_then_substring_then_missing():
    index = HeaderIndex(["OFFICE", "SPECIFIC OFFICE 1", "TAP STATUS COMPLETION 1", "DIVISION/SCHOOL"])
    assert index.find("office") == 0
    assert index.find("STATUS COMPLETION 1") == 2
    assert index.find("REASON 1") == -1


def test_header_index_resolve_prefers_any_exact_candidate():
    index = HeaderIndex(["OBJECTIVE OF THE TARGET 1 (REVISED)", "OBJECTIVE 1"])
    assert index.resolve(("OBJECTIVE OF THE TARGET 1", "OBJECTIVE 1")) == 1


def test_missing_header_yields_empty_result():
    assert parse_records("a,b,c\n1,2,3\n") == []
    assert parse_records("") == []


def test_sample_sheet_records(sample_sheet_text):
    records = parse_records(sample_sheet_text)

    assert [r["id"] for r in records] == ["row-4", "row-6"]
    first = records[0]
    assert first["office"] == "SDO Caloocan"
    assert first["division_school"] == "Bagong Silang ES"
    assert first["period"] == "Q1 2025"
    assert first["ta_receiver"] == "School Head"
    assert first["reasons"] == ["Funding"]
    assert first["access"] == [{"status": "Issue found", "issue": "Low enrolment"}]
    assert first["equity"] == []
    assert first["agreements"] == [
        {"agree": "Yes", "specific_office": "CID", "due_date": "04/15/2025", "status": "Accomplished"}
    ]
    assert first["receiver_signatories"] == [{"name": "Juan Dela Cruz", "position": "Principal II"}]
    assert first["misc"]["ta_team_date"] == "01/10/2025"
    assert first["misc"]["dept_name_5"] == ""
    assert first["raw"][0] == "SDO Caloocan"


def test_empty_objective_slots_are_omitted(sample_sheet_text):
    first, second = parse_records(sample_sheet_text)

    assert [t["slot"] for t in first["targets"]] == [1, 3]
    assert first["targets"][0]["objective"] == "Improve reading, writing scores"
    assert first["targets"][0]["planned_action"] == "Reading camp"
    assert first["targets"][0]["help_needed"] == "Materials"
    assert first["targets"][0]["tap_status"] == "Accomplished"
    assert first["targets"][1]["objective"] == 'Train "master" teachers'
    assert first["targets"][1]["status"] == "Not yet met"
    assert [t["slot"] for t in second["targets"]] == [2]
    assert second["targets"][0]["planned_action"] == "Home visits"


def test_objective_label_variants_resolve_to_same_field():
    old = make_sheet(
        [{"OFFICE": "SDO-A", "DIVISION": "D", "X": "", "Y": "", "OBJECT OF THE TARGET RECIPIENT 1": "Goal"}],
        headers=["OFFICE", "DIVISION", "X", "Y", "OBJECT OF THE TARGET RECIPIENT 1"],
    )
    new = make_sheet(
        [{"OFFICE": "SDO-A", "DIVISION": "D", "X": "", "Y": "", "OBJECTIVE OF THE TARGET 1": "Goal"}],
        headers=["OFFICE", "DIVISION", "X", "Y", "OBJECTIVE OF THE TARGET 1"],
    )
    assert parse_records(old)[0]["targets"][0]["objective"] == "Goal"
    assert parse_records(new)[0]["targets"][0]["objective"] == "Goal"


def test_divider_short_and_empty_office_rows_are_skipped():
    headers = ["OFFICE", "DIVISION", "PERIOD", "DISTRICT", "OBJECTIVE 1", "STATUS COMPLETION 1"]
    text = "\n".join(
        [
            ",".join(headers),
            "• Section A,,,,,",
            "SDO-Short,x",
            ",D,P,Dist,Goal,Done",
            "SDO-Kept,D,P,Dist,Goal,Done",
        ]
    )
    records = parse_records(text)
    assert [r["office"] for r in records] == ["SDO-Kept"]


def test_end_to_end_narrow_sheet():
    text = "\n".join(
        [
            "Monitoring",
            "Region",
            "Generated",
            "OFFICE, DIVISION/SCHOOL, OBJECTIVE1, STATUSCOMPLETION1",
            "SDO-X, , Improve reading scores, Partial",
        ]
    )
    records = parse_records(text)
    assert len(records) == 1
    assert records[0]["office"] == "SDO-X"
    assert records[0]["targets"] == [
        {
            "objective": "Improve reading scores",
            "planned_action": "",
            "due_date": "",
            "status": "Partial",
            "help_needed": "",
            "agree": "",
            "specific_office": "",
            "tap_due_date": "",
            "tap_status": "",
            "slot": 1,
        }
    ]

    stats = compute_stats(records)
    assert stats["total_ta_requests"] == 1
    assert stats["partial"] == 1
    assert stats["pending"] == 0
