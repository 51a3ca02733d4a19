from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, List, Sequence

from iamp.aggregations import count_by, format_int, format_pct, group_sum, ratio, top_items
from iamp.charts import bar_chart, donut_chart, to_vega_spec
from iamp.pipeline import DashboardSnapshot
from iamp.records import (
    HOUSEHOLDS_COL,
    INDIVIDUALS_COL,
    LATRINES_COL,
    STRUCTURES_COL,
    NormalizedRecord,
)

ACTIVE = "Active"

STRUCTURE_FIELDS = [
    ("A- Number of Tents", "Tents"),
    ("B- Number of Self-built Structures with Non-Concrete Roof", "Self-built (non-concrete roof)"),
    ("C- Number of Prefab Structure", "Prefab"),
    ("D- Number of Self-built Structures with Concrete Roof", "Self-built (concrete roof)"),
]

TOP_CADASTERS = 10


def _active(rows: Sequence[NormalizedRecord]) -> List[NormalizedRecord]:
    return [r for r in rows if r.site_status == ACTIVE]


def compute_kpis(rows: Sequence[NormalizedRecord], all_rows: Sequence[NormalizedRecord]) -> Dict[str, Any]:
    total = len(rows)
    assessed = sum(1 for r in rows if r.assessed)
    active_rows = _active(rows)
    active = len(active_rows)
    qc_records = sum(1 for r in rows if r.has_qc_issue)

    def active_sum(col: str) -> float:
        return sum(r.number(col) for r in active_rows)

    households = active_sum(HOUSEHOLDS_COL)
    individuals = active_sum(INDIVIDUALS_COL)
    structures = active_sum(STRUCTURES_COL)
    latrines = active_sum(LATRINES_COL)

    def per_site(value: float) -> Any:
        return value / active if active else None

    pending = total - assessed
    return {
        "total": total,
        "total_all": len(all_rows),
        "is_filtered": total != len(all_rows),
        "assessed": assessed,
        "assessed_pct": ratio(assessed, total),
        "assessed_all": sum(1 for r in all_rows if r.assessed),
        "not_assessed": pending,
        "not_assessed_pct": ratio(pending, total),
        "active": active,
        "active_pct": ratio(active, total),
        "qc_records": qc_records,
        "qc_pct": ratio(qc_records, total),
        "households": households,
        "households_per_site": per_site(households),
        "individuals": individuals,
        "individuals_per_site": per_site(individuals),
        "structures": structures,
        "structures_per_site": per_site(structures),
        "latrines": latrines,
        "latrines_per_site": per_site(latrines),
    }


def assessment_note(kpis: Dict[str, Any]) -> str:
    return (
        f"{format_int(kpis['assessed'])} assessed • {format_int(kpis['not_assessed'])} not assessed "
        f"({format_pct(kpis['not_assessed_pct'])})."
    )


def chart_data(rows: Sequence[NormalizedRecord]) -> Dict[str, Any]:
    assessed = sum(1 for r in rows if r.assessed)
    active_rows = _active(rows)
    by_cadaster = group_sum(active_rows, lambda r: r.cadaster, lambda r: r.number(INDIVIDUALS_COL))
    return {
        "assessment": {"Assessed": assessed, "Not assessed": len(rows) - assessed},
        "site_status": count_by(rows, lambda r: r.site_status),
        "phone_outcomes": top_items(count_by([r for r in rows if r.assessed], lambda r: r.phone_status)),
        "structures": [(label, sum(r.number(col) for r in active_rows)) for col, label in STRUCTURE_FIELDS],
        "top_cadasters": top_items(by_cadaster, TOP_CADASTERS),
    }


def compute_overview(snapshot: DashboardSnapshot) -> Dict[str, Any]:
    rows = snapshot.filtered
    kpis = compute_kpis(rows, snapshot.records)
    data = chart_data(rows)

    charts: Dict[str, Any] = {}
    if rows:
        charts = {
            "assessment": to_vega_spec(donut_chart(data["assessment"], inner_radius=70)),
            "site_status": to_vega_spec(donut_chart(data["site_status"])),
            "phone_outcomes": to_vega_spec(bar_chart(data["phone_outcomes"])),
            "structures": to_vega_spec(
                bar_chart(data["structures"], value_title="Structures", horizontal=False, multicolor=True)
            ),
            "top_cadasters": to_vega_spec(bar_chart(data["top_cadasters"], value_title="Individuals")),
        }

    return {
        "filters": asdict(snapshot.filters),
        "kpis": kpis,
        "assessment_note": assessment_note(kpis),
        "chart_data": data,
        "charts": charts,
    }
