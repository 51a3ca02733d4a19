from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple

from iamp.coercion import to_number, to_text
from iamp.qc import QC_RULES, QCRule, evaluate_qc_flags

MISSING = "—"
NOT_ASSESSED = "Not assessed"
NOT_RECORDED = "Not recorded"

PCODE_COL = "PCode"
PCODE_NAME_COL = "PCode Name"
LOCAL_NAME_COL = "Local Name"
DISTRICT_COL = "District"
CADASTER_COL = "Cadaster"
SITE_STATUS_COL = "Site Status"
PHONE_STATUS_COL = "Phone call status"
QC_ANY_COL = "QC - Any issue"
QC_COUNT_COL = "QC - Issue count"

HOUSEHOLDS_COL = "Total number of Households"
INDIVIDUALS_COL = "Total number of Individuals"
STRUCTURES_COL = "Total number of Structures"
LATRINES_COL = "Number of Latrines"

NUM_FIELDS: Tuple[str, ...] = (
    "A- Number of Tents",
    "A1- Number of Households in Tents",
    "A2- Number of Individuals in Tents",
    "B- Number of Self-built Structures with Non-Concrete Roof",
    "B1- Number of Households in Self-built Structures with Non-Concrete Roof",
    "B2- Number of Individuals in Self-built Structures with Non-Concrete Roof",
    "C- Number of Prefab Structure",
    "C1- Number of Households in Prefab Structure",
    "C2- Number of Individuals in Prefab Structure",
    "D- Number of Self-built Structures with Concrete Roof",
    "D1- Number of Households in Self-built Structures with Concrete Roof",
    "D2- Number of Individuals in Self-built Structures with Concrete Roof",
    STRUCTURES_COL,
    HOUSEHOLDS_COL,
    INDIVIDUALS_COL,
    LATRINES_COL,
    "E1- Number of Households came from Syria",
    "E2- Number of Individuals came from Syria",
    "F1- Number of Households came from Lebanon",
    "F2- Number of Individuals came from Lebanon",
    "G1- Number of Households left to Syria",
    "G2- Number of Individuals left to Syria",
    QC_COUNT_COL,
)


@dataclass(frozen=True)
class NormalizedRecord:
    values: Dict[str, Any]
    assessed: bool
    site_status: str
    district: str
    cadaster: str
    phone_status: str
    qc_any: str
    qc_issue_count: float
    qc_flags: Tuple[str, ...] = field(default_factory=tuple)
    search_blob: str = ""

    def get(self, column: str, default: Any = "") -> Any:
        return self.values.get(column, default)

    def number(self, column: str) -> float:
        return to_number(self.values.get(column))

    @property
    def pcode(self) -> str:
        return to_text(self.values.get(PCODE_COL))

    @property
    def has_qc_issue(self) -> bool:
        return self.qc_any == "Yes"


def normalize_row(
    raw: Mapping[str, Any],
    numeric_fields: Sequence[str] = NUM_FIELDS,
    rules: Sequence[QCRule] = QC_RULES,
) -> NormalizedRecord:
    values = dict(raw)
    for col in numeric_fields:
        values[col] = to_number(values.get(col))

    phone_status = to_text(values.get(PHONE_STATUS_COL))
    site_status = to_text(values.get(SITE_STATUS_COL))
    district = to_text(values.get(DISTRICT_COL))
    cadaster = to_text(values.get(CADASTER_COL))
    assessed = phone_status != ""

    if site_status:
        site_status_display = site_status
    elif assessed:
        site_status_display = NOT_RECORDED
    else:
        site_status_display = NOT_ASSESSED

    search_blob = " ".join(
        [
            to_text(values.get(PCODE_COL)),
            to_text(values.get(PCODE_NAME_COL)),
            to_text(values.get(LOCAL_NAME_COL)),
            district,
            cadaster,
        ]
    ).lower()

    return NormalizedRecord(
        values=values,
        assessed=assessed,
        site_status=site_status_display,
        district=district or MISSING,
        cadaster=cadaster or MISSING,
        phone_status=phone_status if assessed else NOT_ASSESSED,
        qc_any="Yes" if to_text(values.get(QC_ANY_COL)) == "Yes" else "No",
        qc_issue_count=to_number(values.get(QC_COUNT_COL)),
        qc_flags=evaluate_qc_flags(values, rules),
        search_blob=search_blob,
    )


def normalize_rows(rows: Iterable[Mapping[str, Any]]) -> List[NormalizedRecord]:
    return [normalize_row(r) for r in rows]


def record_columns(records: Sequence[NormalizedRecord]) -> List[str]:
    """Column names in first-seen order across all records."""
    seen: Dict[str, None] = {}
    for r in records:
        for col in r.values:
            seen.setdefault(col, None)
    return list(seen)
