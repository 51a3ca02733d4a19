from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, List, Sequence

import pandas as pd

from iamp.charts import bar_chart, to_vega_spec
from iamp.pipeline import DashboardSnapshot
from iamp.qc import QC_RULES, qc_rule_counts
from iamp.records import PCODE_COL, PCODE_NAME_COL, NormalizedRecord

QC_PREVIEW_LIMIT = 250

QC_TABLE_COLUMNS = [
    "PCode",
    "PCode Name",
    "District",
    "Cadaster",
    "Site Status",
    "Phone call status",
    "QC - Issue count",
    "QC flags",
]


def qc_table_rows(rows: Sequence[NormalizedRecord], limit: int = QC_PREVIEW_LIMIT) -> List[Dict[str, Any]]:
    flagged = [r for r in rows if r.has_qc_issue][:limit]
    return [
        {
            "PCode": r.get(PCODE_COL),
            "PCode Name": r.get(PCODE_NAME_COL),
            "District": r.district,
            "Cadaster": r.cadaster,
            "Site Status": r.site_status,
            "Phone call status": r.phone_status,
            "QC - Issue count": r.qc_issue_count,
            "QC flags": "; ".join(r.qc_flags),
        }
        for r in flagged
    ]


def compute_quality(snapshot: DashboardSnapshot) -> Dict[str, Any]:
    rows = snapshot.filtered
    counts = qc_rule_counts(rows, QC_RULES)
    rules = [
        {"column": rule.column, "label": rule.label, "help": rule.help, "count": count}
        for rule, count in counts
    ]

    charts: Dict[str, Any] = {}
    if rows:
        chart = bar_chart([(rule.label, count) for rule, count in counts], height=420)
        charts["qc_by_type"] = to_vega_spec(chart)

    preview = pd.DataFrame(qc_table_rows(rows), columns=QC_TABLE_COLUMNS)
    return {
        "filters": asdict(snapshot.filters),
        "qc_records": sum(1 for r in rows if r.has_qc_issue),
        "rules": rules,
        "preview": preview.to_dict(orient="records"),
        "charts": charts,
    }
