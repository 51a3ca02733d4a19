from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import pandas as pd

from iamp.coercion import is_blank, to_text
from iamp.records import NormalizedRecord

QC_FLAGS_COL = "QC flags"

# Conservative, mostly non-PII column set shared by every CSV export.
EXPORT_COLUMNS: List[str] = [
    "PCode",
    "PCode Name",
    "Governorate",
    "District",
    "Cadaster",
    "Local Name",
    "Site Status",
    "Phone call status",
    "No response details",
    "Are you still living in this site",
    "Record status",
    "Total number of Structures",
    "Total number of Households",
    "Total number of Individuals",
    "Number of Latrines",
    "QC - Any issue",
    "QC - Issue count",
    QC_FLAGS_COL,
]

EXPORT_KINDS = ("qc", "filtered", "table")
_EXPORT_PREFIX = {"qc": "qc_records", "filtered": "filtered", "table": "records"}


def cell_text(value: Any) -> str:
    if is_blank(value):
        return ""
    if isinstance(value, str):
        return value
    return to_text(value)


def sanitize_for_export(record: NormalizedRecord) -> Dict[str, Any]:
    out = dict(record.values)
    out[QC_FLAGS_COL] = "; ".join(record.qc_flags)
    return out


def to_csv(rows: Iterable[Mapping[str, Any]], columns: Sequence[str] = EXPORT_COLUMNS) -> str:
    """Header plus one line per row; fields with a quote, comma or newline are quoted."""
    data = [[cell_text(r.get(c)) for c in columns] for r in rows]
    df = pd.DataFrame(data, columns=list(columns), dtype=object)
    return df.to_csv(index=False, lineterminator="\n")


def export_records(records: Sequence[NormalizedRecord], kind: str) -> List[NormalizedRecord]:
    if kind not in EXPORT_KINDS:
        raise ValueError(f"Unknown export kind: {kind!r}")
    if kind == "qc":
        return [r for r in records if r.has_qc_issue]
    return list(records)


def export_csv(records: Sequence[NormalizedRecord], kind: str, columns: Sequence[str] = EXPORT_COLUMNS) -> str:
    return to_csv((sanitize_for_export(r) for r in export_records(records, kind)), columns)


def stamp_file(now: Optional[datetime] = None) -> str:
    return (now or datetime.now()).strftime("%Y%m%d_%H%M")


def export_filename(kind: str, now: Optional[datetime] = None) -> str:
    return f"{_EXPORT_PREFIX[kind]}_{stamp_file(now)}.csv"
