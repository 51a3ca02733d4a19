from __future__ import annotations

import pytest

from iamp.aggregations import format_pct
from iamp.coords import LatLng
from iamp.data import IngestionError, fetch_bytes, pick_sheet, read_workbook
from iamp.export import export_csv
from iamp.metrics_overview import compute_overview
from iamp.pipeline import DashboardState


def test_two_row_workbook_end_to_end(two_rows, workbook_bytes):
    state = DashboardState()
    assert state.load_bytes(workbook_bytes(two_rows), "sites.xlsx")
    snap = state.snapshot()

    assert snap.source_label == "File: sites.xlsx"
    assert snap.sheet_name == "IAMP sites mapping"
    assert [r.assessed for r in snap.records] == [True, False]
    assert [r.site_status for r in snap.records] == ["Active", "Not assessed"]
    assert snap.coords.coords == {"0001-01-001": LatLng(33.5, 35.5)}

    kpis = compute_overview(snap)["kpis"]
    assert format_pct(kpis["assessed_pct"]) == "50.0%"
    assert kpis["individuals"] == 12


def test_preferred_sheet_wins_over_first(two_rows, workbook_bytes):
    payload = workbook_bytes(**{"Read me": [{"Note": "ignore"}], "IAMP sites mapping": two_rows})
    rows, sheet = read_workbook(payload)
    assert sheet == "IAMP sites mapping"
    assert len(rows) == 2


def test_first_sheet_used_when_preferred_missing(workbook_bytes):
    payload = workbook_bytes(**{"Export": [{"PCode": "A"}, {"PCode": "B"}]})
    rows, sheet = read_workbook(payload)
    assert sheet == "Export"
    assert [r["PCode"] for r in rows] == ["A", "B"]


def test_blank_cells_become_empty_strings(two_rows, workbook_bytes):
    rows, _ = read_workbook(workbook_bytes(two_rows))
    assert rows[1]["Phone call status"] == ""
    assert rows[1]["Latitude"] == ""


def test_pick_sheet_case_insensitive():
    assert pick_sheet(["Summary", "iamp SITES mapping"]) == "iamp SITES mapping"
    assert pick_sheet([]) is None


def test_file_path_source(tmp_path, two_rows, workbook_bytes):
    path = tmp_path / "IAMP.xlsx"
    path.write_bytes(workbook_bytes(two_rows))
    state = DashboardState()
    assert state.load_file(path)
    assert state.snapshot().source_label == "File: IAMP.xlsx"
    assert "0001-01-001" in export_csv(state.snapshot().filtered, "qc")


def test_missing_file_is_reported(tmp_path):
    state = DashboardState()
    assert not state.load_file(tmp_path / "nope.xlsx")
    assert state.snapshot().health.error_count == 1


def test_url_source_uses_fetcher(two_rows, workbook_bytes):
    payload = workbook_bytes(two_rows)
    calls = []

    def fetch(url, timeout=None):
        calls.append((url, timeout))
        return payload

    state = DashboardState(http_timeout=7, fetch=fetch)
    assert state.load_url("https://example.org/sites.xlsx")
    assert calls == [("https://example.org/sites.xlsx", 7)]
    snap = state.snapshot()
    assert snap.source_label == "URL: https://example.org/sites.xlsx"
    assert snap.source_url == "https://example.org/sites.xlsx"


def test_fetch_bytes_reports_http_status():
    class Resp:
        ok = False
        status_code = 503
        content = b""

    class Session:
        def get(self, url, **kwargs):
            return Resp()

    with pytest.raises(IngestionError, match=r"Failed to fetch \(503\)"):
        fetch_bytes("https://example.org/x.xlsx", session=Session())
