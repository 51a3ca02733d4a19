import logging
from contextlib import contextmanager
from typing import Dict, List, Optional
from urllib.parse import parse_qsl

import pandas as pd
import streamlit as st

from api.live import LIVE_LABEL, LIVE_SOURCE, live_status, make_fetcher
from iamp.aggregations import format_int, format_pct
from iamp.config import get_settings
from iamp.data import IngestionError
from iamp.export import export_csv, export_filename
from iamp.filters import (
    ALL,
    QC_OPTIONS,
    SiteFilters,
    filter_options,
    filter_summary_html,
    filters_from_query,
    filters_to_query,
)
from iamp.geo import load_geojson
from iamp.metrics_map import COLOR_MODES, compute_map, legend_html
from iamp.metrics_overview import compute_overview
from iamp.metrics_quality import QC_TABLE_COLUMNS, compute_quality
from iamp.metrics_records import pii_fields_present, records_frame
from iamp.pipeline import DashboardSnapshot, DashboardState

logger = logging.getLogger(__name__)
settings = get_settings()

FILTER_KEYS = {
    "q": "f_q",
    "district": "f_district",
    "cadaster": "f_cadaster",
    "site_status": "f_site_status",
    "phone_status": "f_phone_status",
    "qc": "f_qc",
}


# ---------- UI / layout helpers ----------
def inject_base_styles():
    st.markdown(
        """
        <style>
        .card {border: 1px solid #e5e7eb;border-radius: 12px;padding: 16px;background: #ffffff;
               box-shadow: 0 1px 2px rgba(0,0,0,0.04); margin-bottom: 12px;}
        .card-title {font-weight: 600;font-size: 1.0rem;color: #111827;}
        .chip-row {display: flex;flex-wrap: wrap;gap: 6px;margin-top: 6px;}
        .chip {background: #f3f4f6;border: 1px solid #e5e7eb;border-radius: 14px;padding: 4px 10px;font-size: 0.85rem;color: #374151;}
        .legend-swatch {display:inline-block;width:10px;height:10px;border-radius:50%;margin-right:6px;}
        </style>
        """,
        unsafe_allow_html=True,
    )


@contextmanager
def card(title: str):
    container = st.container(border=True)
    container.markdown(f"<div class='card-title'>{title}</div>", unsafe_allow_html=True)
    with container:
        yield container


@st.cache_resource
def get_state() -> DashboardState:
    # one dataset and one refresh timer for every browser session
    return DashboardState(http_timeout=settings.http_timeout, fetch=make_fetcher(settings))


def report_failure(state: DashboardState, prefix: str, exc: Exception) -> None:
    logger.exception(prefix)
    state.record_error(f"{prefix}: {exc}")


# ---------- Data loading callbacks ----------
def on_file_picked():
    upload = st.session_state.get("file_input")
    if upload is None:
        return
    state = get_state()
    if state.load_bytes(upload.getvalue(), upload.name):
        # A manual file turns live mode and auto-refresh off.
        st.session_state["live_mode"] = False
        state.configure_refresh("", 0)


def on_load_url():
    url = (st.session_state.get("url_input") or "").strip()
    if not url:
        return
    state = get_state()
    if state.load_url(url):
        st.session_state["live_mode"] = False
        state.configure_refresh(url, st.session_state.get("refresh_minutes", 5))


def on_load_sample():
    if settings.data_source:
        get_state().load_source(settings.data_source)


def on_live_toggle():
    state = get_state()
    if not st.session_state.get("live_mode"):
        st.session_state["api_status"] = ("Live mode off. Use Load File or Load URL.", True)
        state.configure_refresh("", 0)
        return
    try:
        meta = live_status(settings)
    except Exception as exc:
        logger.exception("Live status check failed")
        st.session_state["api_status"] = (f"Live mode failed: {exc}", False)
        st.session_state["live_mode"] = False
        return
    st.session_state["api_status"] = (f"API connected • {meta.get('name') or ''}".strip(" •"), True)
    if state.load_url(LIVE_SOURCE, LIVE_LABEL):
        state.configure_refresh(LIVE_SOURCE, st.session_state.get("refresh_minutes", 5))
    else:
        st.session_state["api_status"] = (f"Live load failed: {state.snapshot().health.message}", False)


def on_apply_refresh():
    state = get_state()
    state.configure_refresh(state.snapshot().source_url, st.session_state.get("refresh_minutes", 5))


def on_reset_filters():
    for key in FILTER_KEYS.values():
        st.session_state[key] = "" if key == FILTER_KEYS["q"] else ALL


def init_filters_from_query():
    if st.session_state.get("_filters_initialised"):
        return
    f = filters_from_query(st.query_params.to_dict())
    for attr, key in FILTER_KEYS.items():
        st.session_state[key] = getattr(f, attr)
    st.session_state["_filters_initialised"] = True


def autoload(state: DashboardState):
    if st.session_state.get("_autoloaded"):
        return
    st.session_state["_autoloaded"] = True
    params = st.query_params
    if params.get("noLive") != "1" and params.get("live") == "1" and settings.live_configured:
        st.session_state["live_mode"] = True
        on_live_toggle()
        if state.snapshot().loaded:
            return
    if params.get("noSample") != "1" and settings.data_source and not state.snapshot().loaded:
        state.load_source(settings.data_source)


def select_filter(label: str, key: str, options: List[str]):
    choices = [ALL] + options
    if st.session_state.get(key) not in choices:
        st.session_state[key] = ALL
    st.selectbox(label, choices, key=key)


# ---------- UI setup ----------
st.set_page_config(page_title="IAMP Sites Mapping Dashboard", layout="wide")
inject_base_styles()
st.title("IAMP Sites Mapping Dashboard")
st.caption("Site assessment progress, data quality and locations from the IAMP sites mapping workbook.")

state = get_state()
init_filters_from_query()
autoload(state)

# ----- Sidebar: data panel + filters -----
with st.sidebar:
    st.markdown("### Data")
    st.file_uploader("Load file (.xlsx)", type=["xlsx"], key="file_input", on_change=on_file_picked)
    st.text_input("Workbook URL", key="url_input", placeholder="https://…/sites.xlsx")
    c1, c2 = st.columns(2)
    c1.button("Load URL", on_click=on_load_url, use_container_width=True)
    c2.button("Load sample", on_click=on_load_sample, use_container_width=True)
    if settings.live_configured:
        st.toggle("Live mode (SharePoint)", key="live_mode", on_change=on_live_toggle)
        msg, ok = st.session_state.get("api_status", ("Live mode off.", True))
        (st.caption if ok else st.error)(msg)
    st.number_input("Auto-refresh (minutes)", min_value=1, max_value=1440, value=5, step=1, key="refresh_minutes")
    st.button("Apply refresh", on_click=on_apply_refresh)
    st.caption(state.refresh_status())

    st.markdown("---")
    st.markdown("### Filters")
    snap = state.snapshot()
    options = filter_options(snap.records)
    st.text_input("Search (PCode, name, district, cadaster)", key=FILTER_KEYS["q"])
    select_filter("District", FILTER_KEYS["district"], options["district"])
    select_filter("Cadaster", FILTER_KEYS["cadaster"], options["cadaster"])
    select_filter("Site Status", FILTER_KEYS["site_status"], options["site_status"])
    select_filter("Phone call status", FILTER_KEYS["phone_status"], options["phone_status"])
    st.selectbox("QC", list(QC_OPTIONS), key=FILTER_KEYS["qc"])
    st.button("Reset filters", on_click=on_reset_filters)

filters = SiteFilters(**{attr: st.session_state.get(key, ALL) for attr, key in FILTER_KEYS.items()})
snap: DashboardSnapshot = state.snapshot().with_filters(filters)

share_query = filters_to_query(snap.filters)
st.query_params.from_dict(dict(parse_qsl(share_query)))

with st.sidebar:
    st.markdown("---")
    st.markdown("### Share & export")
    st.code("(no filters)" if snap.filters.is_default else "?" + share_query, language=None)
    st.download_button(
        "Download filtered CSV",
        data=export_csv(snap.filtered, "filtered").encode("utf-8"),
        file_name=export_filename("filtered"),
        mime="text/csv",
        disabled=not snap.loaded,
    )

    st.markdown("---")
    st.markdown("### Health")
    health = snap.health
    (st.success if health.ok else st.error)(health.message)
    st.caption(
        f"Last load: {health.last_load_at or '—'}  \n"
        f"Last success: {health.last_success_at or '—'}  \n"
        f"Errors: {health.error_count}"
    )

badge = f"{snap.source_label} • {snap.sheet_name}" if snap.sheet_name else snap.source_label
st.markdown(f"**Dataset:** {badge}")
st.markdown(f"<div class='chip-row'>{filter_summary_html(snap.filters)}</div>", unsafe_allow_html=True)

if not snap.loaded:
    st.info("No data loaded. Load a file, a URL or the sample from the Data panel.")
    st.stop()


def render_kpis(kpis: Dict):
    def avg(value: Optional[float]) -> str:
        return f"{value:.1f} avg/site" if value is not None else "—"

    row1 = st.columns(4)
    row1[0].metric(
        "Records",
        format_int(kpis["total"]),
        help="All records" if not kpis["is_filtered"] else f"Filtered from {format_int(kpis['total_all'])}",
    )
    row1[1].metric("Assessed", format_int(kpis["assessed"]), f"{format_pct(kpis['assessed_pct'])} of filtered", delta_color="off")
    row1[2].metric("Active sites", format_int(kpis["active"]), f"{format_pct(kpis['active_pct'])} of filtered", delta_color="off")
    row1[3].metric("Records with QC issues", format_int(kpis["qc_records"]), f"{format_pct(kpis['qc_pct'])} of filtered", delta_color="off")

    row2 = st.columns(4)
    row2[0].metric("Households (active)", format_int(kpis["households"]), avg(kpis["households_per_site"]), delta_color="off")
    row2[1].metric("Individuals (active)", format_int(kpis["individuals"]), avg(kpis["individuals_per_site"]), delta_color="off")
    row2[2].metric("Structures (active)", format_int(kpis["structures"]), avg(kpis["structures_per_site"]), delta_color="off")
    row2[3].metric("Latrines (active)", format_int(kpis["latrines"]), avg(kpis["latrines_per_site"]), delta_color="off")


def render_overview_tab(s: DashboardSnapshot):
    payload = compute_overview(s)
    render_kpis(payload["kpis"])
    st.caption(payload["assessment_note"])
    charts = payload["charts"]
    if not charts:
        st.info("No records match the current filters.")
        return
    c1, c2 = st.columns(2)
    with c1, card("Assessment progress"):
        st.vega_lite_chart(charts["assessment"], use_container_width=True)
    with c2, card("Site status"):
        st.vega_lite_chart(charts["site_status"], use_container_width=True)
    c3, c4 = st.columns(2)
    with c3, card("Phone call outcomes (assessed)"):
        st.vega_lite_chart(charts["phone_outcomes"], use_container_width=True)
    with c4, card("Structure composition (active)"):
        st.vega_lite_chart(charts["structures"], use_container_width=True)
    with card("Top cadasters by individuals (active)"):
        st.vega_lite_chart(charts["top_cadasters"], use_container_width=True)


def render_quality_tab(s: DashboardSnapshot):
    payload = compute_quality(s)
    if payload["charts"]:
        with card("QC issues by type"):
            st.vega_lite_chart(payload["charts"]["qc_by_type"], use_container_width=True)
    st.markdown("#### How to resolve")
    for rule in payload["rules"]:
        with st.expander(f"{rule['label']} ({format_int(rule['count'])})"):
            st.markdown(rule["help"])
            st.caption(f"QC column: {rule['column']}")
    st.markdown(f"#### Records with QC issues ({format_int(payload['qc_records'])})")
    st.dataframe(pd.DataFrame(payload["preview"], columns=QC_TABLE_COLUMNS), hide_index=True, use_container_width=True)
    st.download_button(
        "Download QC records (CSV)",
        data=export_csv(s.filtered, "qc").encode("utf-8"),
        file_name=export_filename("qc"),
        mime="text/csv",
    )


def render_records_tab(s: DashboardSnapshot):
    pii_cols = pii_fields_present(s.records)
    show_pii = st.toggle("Show contact (PII) columns", value=False, disabled=not pii_cols)
    st.dataframe(records_frame(s.filtered, show_pii=show_pii), hide_index=True, use_container_width=True, height=520)
    st.download_button(
        "Download table (CSV)",
        data=export_csv(s.filtered, "table").encode("utf-8"),
        file_name=export_filename("table"),
        mime="text/csv",
    )


def render_map_tab(s: DashboardSnapshot):
    c1, c2 = st.columns([2, 3])
    mode = c1.selectbox("Color by", list(COLOR_MODES), key="map_color_by")
    boundary_file = c2.file_uploader("Boundary overlay (GeoJSON)", type=["geojson", "json"], key="boundary_input")
    boundary = None
    if boundary_file is not None:
        try:
            boundary = load_geojson(boundary_file.getvalue())
        except IngestionError as exc:
            if st.session_state.get("_boundary_error_for") != boundary_file.file_id:
                st.session_state["_boundary_error_for"] = boundary_file.file_id
                report_failure(state, "Boundary load failed", exc)
            st.error(f"Boundary load failed: {exc}")

    payload = compute_map(s, mode=mode, boundary=boundary)
    st.caption(payload["coords_text"])
    st.markdown(payload["status"])
    left, right = st.columns([4, 1])
    with left:
        st.vega_lite_chart(payload["charts"]["map"], use_container_width=True)
    with right:
        if not payload["legend"]:
            st.caption("No mapped points (after filters).")
        for item in payload["legend"]:
            st.markdown(legend_html(item), unsafe_allow_html=True)
    if payload["unmapped"] and not s.coords.is_empty:
        with st.expander(f"Sites without coordinates ({format_int(len(payload['unmapped']))})"):
            st.dataframe(pd.DataFrame({"PCode": payload["unmapped"]}), hide_index=True, use_container_width=True)


tab_overview, tab_quality, tab_records, tab_map = st.tabs(["Overview", "Data quality", "Records", "Map"])
with tab_overview:
    render_overview_tab(snap)
with tab_quality:
    render_quality_tab(snap)
with tab_records:
    render_records_tab(snap)
with tab_map:
    render_map_tab(snap)
