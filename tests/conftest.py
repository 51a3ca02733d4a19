# Shared pytest fixtures
from __future__ import annotations

import io
from typing import Any, Dict, List, Optional

import pandas as pd
import pytest

from api.graph import reset_token_cache
from iamp.pipeline import DashboardState
from iamp.records import normalize_rows


@pytest.fixture(autouse=True)
def clear_token_cache():
    reset_token_cache()
    yield
    reset_token_cache()


@pytest.fixture()
def two_rows() -> List[Dict[str, Any]]:
    """One assessed active site with coordinates, one untouched site without."""
    return [
        {
            "PCode": "0001-01-001",
            "PCode Name": "Camp North",
            "Local Name": "Haouch",
            "District": "Zahle",
            "Cadaster": "Bar Elias",
            "Site Status": "Active",
            "Phone call status": "Answer",
            "Latitude": 33.5,
            "Longitude": 35.5,
            "Total number of Households": 3,
            "Total number of Individuals": "12",
            "Total number of Structures": 2,
            "Number of Latrines": 1,
            "A- Number of Tents": 2,
            "QC - Any issue": "Yes",
            "QC - Issue count": 1,
            "QC - Totals mismatch": "Yes",
            "Current Shawish Name": "Abu Ali",
            "Current Shawish Phone": "03123456",
        },
        {
            "PCode": "0002-01-002",
            "PCode Name": "Camp South",
            "Local Name": "",
            "District": "Baalbek",
            "Cadaster": "Arsal",
            "Site Status": "",
            "Phone call status": "",
            "Latitude": "",
            "Longitude": "",
            "Total number of Households": "",
            "Total number of Individuals": "",
            "QC - Any issue": "No",
            "QC - Issue count": 0,
        },
    ]


@pytest.fixture()
def two_records(two_rows):
    return normalize_rows(two_rows)


@pytest.fixture()
def loaded_state(two_rows) -> DashboardState:
    state = DashboardState(fetch=lambda url, timeout=None: b"")
    assert state.load_rows(two_rows, "Test rows", "IAMP sites mapping")
    yield state
    state.close()


@pytest.fixture()
def workbook_bytes():
    """Build an in-memory .xlsx from row dicts, one sheet per keyword."""

    def build(rows: Optional[List[Dict[str, Any]]] = None, **sheets: List[Dict[str, Any]]) -> bytes:
        if rows is not None:
            sheets = {"IAMP sites mapping": rows, **sheets}
        buf = io.BytesIO()
        with pd.ExcelWriter(buf, engine="openpyxl") as writer:
            for name, sheet_rows in sheets.items():
                blanked = [{k: (None if v == "" else v) for k, v in r.items()} for r in sheet_rows]
                df = pd.DataFrame(blanked)
                df.to_excel(writer, sheet_name=name, index=False)
        return buf.getvalue()

    return build
