from __future__ import annotations

from iamp.records import (
    MISSING,
    NOT_ASSESSED,
    NOT_RECORDED,
    NUM_FIELDS,
    normalize_row,
    record_columns,
)


def test_assessed_site_keeps_its_status(two_records):
    first, second = two_records
    assert first.assessed is True
    assert first.site_status == "Active"
    assert first.phone_status == "Answer"
    assert second.assessed is False
    assert second.site_status == NOT_ASSESSED
    assert second.phone_status == NOT_ASSESSED


def test_assessed_without_status_is_not_recorded():
    rec = normalize_row({"Phone call status": "No answer"})
    assert rec.site_status == NOT_RECORDED
    assert rec.district == MISSING
    assert rec.cadaster == MISSING


def test_numeric_fields_are_coerced(two_records):
    first, second = two_records
    assert first.values["Total number of Individuals"] == 12.0
    assert second.values["Total number of Households"] == 0.0
    # absent numeric columns are filled in as zero
    assert all(col in second.values for col in NUM_FIELDS)
    assert first.number("Number of Latrines") == 1.0


def test_qc_summary_fields(two_records):
    first, second = two_records
    assert first.qc_any == "Yes" and first.has_qc_issue
    assert first.qc_issue_count == 1.0
    assert first.qc_flags == ("Totals mismatch (structures/HH/IND vs components)",)
    assert second.qc_any == "No" and not second.has_qc_issue
    assert second.qc_flags == ()


def test_qc_any_requires_exact_yes():
    assert normalize_row({"QC - Any issue": " Yes "}).qc_any == "Yes"
    for value in ("yes", "YES", 1, True, "TRUE", "", None, "No"):
        assert normalize_row({"QC - Any issue": value}).qc_any == "No", value


def test_normalizing_is_deterministic(two_rows):
    for row in two_rows:
        assert normalize_row(row) == normalize_row(row)


def test_search_blob_is_lowercase(two_records):
    blob = two_records[0].search_blob
    assert "0001-01-001" in blob
    assert "camp north" in blob
    assert "bar elias" in blob
    assert blob == blob.lower()


def test_raw_values_are_kept(two_rows, two_records):
    assert two_records[0].pcode == "0001-01-001"
    assert two_records[0].get("Current Shawish Name") == "Abu Ali"
    # normalizing does not mutate the input row
    assert two_rows[1]["Total number of Households"] == ""


def test_record_columns_union_in_first_seen_order(two_records):
    cols = record_columns(two_records)
    assert cols[0] == "PCode"
    assert "Current Shawish Phone" in cols
    assert len(cols) == len(set(cols))
