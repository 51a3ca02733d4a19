from __future__ import annotations

import html
from dataclasses import dataclass
from typing import Iterable, List, Mapping, Optional, Sequence, Union
from urllib.parse import parse_qs, urlencode

from iamp.coercion import to_text
from iamp.records import MISSING, NormalizedRecord

ALL = "All"
QC_ANY_ISSUE = "Any issue"
QC_NO_ISSUES = "No issues"
QC_OPTIONS = (ALL, QC_ANY_ISSUE, QC_NO_ISSUES)

# SiteFilters attribute -> URL query parameter
QUERY_PARAMS = {
    "q": "q",
    "district": "district",
    "cadaster": "cadaster",
    "site_status": "siteStatus",
    "phone_status": "phoneStatus",
    "qc": "qc",
}


@dataclass(frozen=True)
class SiteFilters:
    q: str = ""
    district: str = ALL
    cadaster: str = ALL
    site_status: str = ALL
    phone_status: str = ALL
    qc: str = ALL

    @property
    def is_default(self) -> bool:
        return self == SiteFilters()


def _selector(value: object) -> str:
    text = to_text(value)
    return text or ALL


def normalize_filters(raw: Optional[Mapping[str, object]]) -> SiteFilters:
    raw = raw or {}
    qc = _selector(raw.get("qc"))
    if qc not in QC_OPTIONS:
        qc = ALL
    q = raw.get("q")
    return SiteFilters(
        q=q if isinstance(q, str) else to_text(q),
        district=_selector(raw.get("district")),
        cadaster=_selector(raw.get("cadaster")),
        site_status=_selector(raw.get("site_status")),
        phone_status=_selector(raw.get("phone_status")),
        qc=qc,
    )


def record_matches(record: NormalizedRecord, filters: SiteFilters, query: Optional[str] = None) -> bool:
    if filters.district != ALL and record.district != filters.district:
        return False
    if filters.cadaster != ALL and record.cadaster != filters.cadaster:
        return False
    if filters.site_status != ALL and record.site_status != filters.site_status:
        return False
    if filters.phone_status != ALL and record.phone_status != filters.phone_status:
        return False
    if filters.qc == QC_ANY_ISSUE and record.qc_any != "Yes":
        return False
    if filters.qc == QC_NO_ISSUES and record.qc_any != "No":
        return False
    q = filters.q.strip().lower() if query is None else query
    if q and q not in record.search_blob:
        return False
    return True


def apply_filters(records: Iterable[NormalizedRecord], filters: SiteFilters) -> List[NormalizedRecord]:
    """Records passing every active criterion, in their original order."""
    q = filters.q.strip().lower()
    return [r for r in records if record_matches(r, filters, q)]


def _uniq_sorted(values: Iterable[str]) -> List[str]:
    return sorted({v for v in values if v and v != MISSING}, key=lambda s: (s.casefold(), s))


def filter_options(records: Sequence[NormalizedRecord]) -> dict:
    """Selectable values for each dropdown ("All" is implied)."""
    return {
        "district": _uniq_sorted(r.district for r in records),
        "cadaster": _uniq_sorted(r.cadaster for r in records),
        "site_status": _uniq_sorted(r.site_status for r in records),
        "phone_status": _uniq_sorted(r.phone_status for r in records),
        "qc": list(QC_OPTIONS),
    }


def filters_to_query(filters: SiteFilters) -> str:
    """Encode non-default criteria as a URL query string (no leading '?')."""
    if filters.is_default:
        return ""
    params = []
    for attr, name in QUERY_PARAMS.items():
        value = getattr(filters, attr)
        if attr == "q":
            if value:
                params.append((name, value))
        elif value != ALL:
            params.append((name, value))
    return urlencode(params)


def filters_from_query(query: Union[str, Mapping[str, object]]) -> SiteFilters:
    """Inverse of filters_to_query. Also accepts an already-parsed mapping such as st.query_params."""
    if isinstance(query, str):
        parsed = parse_qs(query.lstrip("?"), keep_blank_values=True)
        params = {k: v[0] for k, v in parsed.items() if v}
    else:
        params = {}
        for k, v in query.items():
            if isinstance(v, (list, tuple)):
                v = v[0] if v else ""
            params[k] = v
    raw = {attr: params.get(name) for attr, name in QUERY_PARAMS.items()}
    if raw["q"] is None:
        raw["q"] = ""
    return normalize_filters(raw)


def filter_summary_html(filters: SiteFilters) -> str:
    """Active criteria as escaped chip spans for the dashboard header."""
    chips = [
        f"Search: {filters.q}" if filters.q else "Search: —",
        f"District: {filters.district}",
        f"Cadaster: {filters.cadaster}",
        f"Site status: {filters.site_status}",
        f"Phone status: {filters.phone_status}",
        f"QC: {filters.qc}",
    ]
    return "".join(f"<span class='chip'>{html.escape(txt)}</span>" for txt in chips)
