from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from iamp.export import QC_FLAGS_COL, sanitize_for_export
from iamp.pipeline import DashboardSnapshot
from iamp.records import NormalizedRecord

TABLE_COLUMNS = [
    ("PCode", "PCode"),
    ("PCode Name", "PCode Name"),
    ("District", "District"),
    ("Cadaster", "Cadaster"),
    ("Site Status", "Site Status"),
    ("Phone status", "Phone call status"),
    ("Record status", "Record status"),
    ("HH", "Total number of Households"),
    ("IND", "Total number of Individuals"),
    ("QC issues", "QC - Issue count"),
    ("QC flags", QC_FLAGS_COL),
]

PII_COLUMNS = [
    ("Current Shawish Name", "Current Shawish Name"),
    ("Current Shawish Phone", "Current Shawish Phone"),
    ("New focal point name", "Name of the new focal point in the site"),
    ("New focal point phone", "Phone number of the new focal point in the site"),
]

PII_FIELDS = {
    "Current Shawish Name",
    "Current Shawish Phone",
    "Available contact in the sites",
    "Name of the new focal point in the site",
    "Phone number of the new focal point in the site",
    "Shawish Name",
    "Shawish Phone",
    "Shawish Name2",
    "Shawish Phone 2",
    "Landlord Name",
    "Landlord Phone",
}


def records_frame(rows: Sequence[NormalizedRecord], *, show_pii: bool = False) -> pd.DataFrame:
    columns = TABLE_COLUMNS + (PII_COLUMNS if show_pii else [])
    data = [sanitize_for_export(r) for r in rows]
    return pd.DataFrame({title: [d.get(field, "") for d in data] for title, field in columns})


def compute_records(
    snapshot: DashboardSnapshot,
    *,
    show_pii: bool = False,
    page: int = 1,
    page_size: Optional[int] = 50,
) -> Dict[str, Any]:
    df = records_frame(snapshot.filtered, show_pii=show_pii)
    total = len(df)
    if page_size:
        page = max(1, int(page))
        df = df.iloc[(page - 1) * page_size : page * page_size]
    return {
        "filters": asdict(snapshot.filters),
        "total": total,
        "page": page,
        "page_size": page_size,
        "columns": list(df.columns),
        "rows": df.to_dict(orient="records"),
    }


def pii_fields_present(rows: Sequence[NormalizedRecord]) -> List[str]:
    present = {c for r in rows for c in r.values if c in PII_FIELDS}
    return sorted(present)
