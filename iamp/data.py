from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import pandas as pd
import requests

from iamp.config import PREFERRED_SHEET_NAME

logger = logging.getLogger(__name__)

WorkbookSource = Union[str, Path, bytes, io.BytesIO]


class IngestionError(ValueError):
    """A workbook could not be fetched, opened or read."""


def pick_sheet(sheet_names: Sequence[str], preferred: str = PREFERRED_SHEET_NAME) -> Optional[str]:
    names = list(sheet_names)
    if preferred in names:
        return preferred
    lowered = [str(n).lower() for n in names]
    if preferred.lower() in lowered:
        return names[lowered.index(preferred.lower())]
    return names[0] if names else None


def frame_to_rows(df: pd.DataFrame) -> List[Dict[str, Any]]:
    """Header-keyed row dicts; blank rows dropped and blank cells set to ""."""
    if df.empty:
        return []
    df = df.dropna(how="all")
    df.columns = [str(c) for c in df.columns]
    df = df.astype(object).where(df.notna(), "")
    return df.to_dict(orient="records")


def read_workbook(source: WorkbookSource, *, preferred_sheet: str = PREFERRED_SHEET_NAME) -> Tuple[List[Dict[str, Any]], str]:
    if isinstance(source, bytes):
        source = io.BytesIO(source)
    try:
        with pd.ExcelFile(source) as xls:
            sheet_name = pick_sheet(xls.sheet_names, preferred_sheet)
            if sheet_name is None:
                raise IngestionError("Workbook has no sheets.")
            df = xls.parse(sheet_name, dtype=object)
    except IngestionError:
        raise
    except Exception as exc:
        raise IngestionError(f"Could not read spreadsheet: {exc}") from exc
    rows = frame_to_rows(df)
    logger.info("Read %d rows from sheet %r", len(rows), sheet_name)
    return rows, sheet_name


def fetch_bytes(url: str, *, timeout: float = 60.0, session: Optional[requests.Session] = None) -> bytes:
    http = session or requests
    try:
        resp = http.get(url, timeout=timeout, headers={"Cache-Control": "no-store"})
    except requests.RequestException as exc:
        raise IngestionError(f"Failed to fetch ({exc})") from exc
    if not resp.ok:
        raise IngestionError(f"Failed to fetch ({resp.status_code})")
    return resp.content


def is_url(source: str) -> bool:
    return str(source).lower().startswith(("http://", "https://"))
