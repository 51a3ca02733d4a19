from __future__ import annotations

from datetime import datetime, timezone
from functools import lru_cache
import logging
import math
from typing import Literal

import numpy as np
import pandas as pd
import uvicorn
from fastapi import FastAPI, Query
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.live import LIVE_LABEL, LIVE_SOURCE, fetch_live_workbook, live_status, make_fetcher
from api.schemas import ErrorResponse, FilterOptionsResponse, ReloadRequest, SiteFiltersModel
from iamp.config import XLSX_MEDIA_TYPE, get_settings
from iamp.data import is_url
from iamp.export import EXPORT_KINDS, export_csv, export_filename
from iamp.filters import SiteFilters, filter_options, filters_to_query, normalize_filters
from iamp.metrics_map import compute_map
from iamp.metrics_overview import compute_overview
from iamp.metrics_quality import compute_quality
from iamp.metrics_records import compute_records
from iamp.pipeline import DashboardSnapshot, DashboardState


app = FastAPI(title="IAMP Sites Dashboard API", version="0.1.0")
logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:8501", "http://127.0.0.1:8501"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

NO_STORE = {"cache-control": "no-store"}


def _json(data: object, status_code: int = 200) -> JSONResponse:
    """Return JSON with safe encoding for pandas/numpy objects."""

    def _safe_float(value: object) -> float | None:
        try:
            out = float(value)  # type: ignore[arg-type]
        except Exception:
            return None
        if math.isnan(out) or math.isinf(out):
            return None
        return out

    return JSONResponse(
        status_code=status_code,
        headers=NO_STORE,
        content=jsonable_encoder(
            data,
            custom_encoder={
                type(pd.NA): lambda _: None,
                np.integer: int,
                float: _safe_float,
                np.floating: _safe_float,
                np.bool_: bool,
                np.ndarray: lambda arr: arr.tolist(),
                pd.Timestamp: lambda ts: ts.isoformat(),
            },
        ),
    )


def _error(exc: Exception, status_code: int = 500) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        headers=NO_STORE,
        content=ErrorResponse(error=str(exc) or type(exc).__name__).model_dump(exclude_none=True),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request, exc: StarletteHTTPException):
    headers = dict(exc.headers or {})
    headers.update(NO_STORE)
    if exc.status_code == 405:
        return JSONResponse(status_code=405, headers=headers, content={"ok": False, "error": "Method not allowed"})
    return JSONResponse(status_code=exc.status_code, headers=headers, content={"ok": False, "error": str(exc.detail)})


# ---------------- Live workbook proxy ----------------
@app.get("/api/health")
def health():
    return _json({"ok": True, "now": datetime.now(timezone.utc).isoformat()})


@app.get("/api/status")
def status():
    try:
        return _json(live_status(get_settings()))
    except Exception as exc:
        logger.exception("status failed")
        return _error(exc)


@app.get("/api/xlsx")
def xlsx():
    try:
        book = fetch_live_workbook(get_settings())
    except Exception as exc:
        logger.exception("xlsx failed")
        return _error(exc)
    return Response(
        content=book.content,
        media_type=XLSX_MEDIA_TYPE,
        headers={
            "content-disposition": f'inline; filename="{book.filename}"',
            "cache-control": "no-store",
            "x-iamp-last-modified": book.last_modified,
        },
    )


# ---------------- Dashboard payloads ----------------
def _load_source(state: DashboardState, source: str) -> bool:
    if source == LIVE_SOURCE:
        return state.load_url(LIVE_SOURCE, LIVE_LABEL)
    return state.load_source(source)


@lru_cache(maxsize=1)
def get_state() -> DashboardState:
    settings = get_settings()
    state = DashboardState(http_timeout=settings.http_timeout, fetch=make_fetcher(settings))
    if settings.data_source:
        _load_source(state, settings.data_source)
        if settings.refresh_minutes and (is_url(settings.data_source) or settings.data_source == LIVE_SOURCE):
            state.configure_refresh(settings.data_source, settings.refresh_minutes)
    return state


def _filters_from_model(model: SiteFiltersModel) -> SiteFilters:
    return normalize_filters(model.model_dump())


def _snapshot(filters: SiteFiltersModel) -> DashboardSnapshot:
    return get_state().snapshot().with_filters(_filters_from_model(filters))


@app.get("/meta/options")
def meta_options():
    try:
        snap = get_state().snapshot()
        options = FilterOptionsResponse(**filter_options(snap.records))
        return _json(options.model_dump())
    except Exception as exc:
        logger.exception("meta_options failed")
        return _error(exc)


@app.get("/meta/summary")
def meta_summary():
    try:
        return _json(get_state().summary())
    except Exception as exc:
        logger.exception("meta_summary failed")
        return _error(exc)


@app.post("/share")
def share(filters: SiteFiltersModel):
    return _json({"query": filters_to_query(_filters_from_model(filters))})


@app.post("/overview")
def overview(filters: SiteFiltersModel):
    try:
        return _json(compute_overview(_snapshot(filters)))
    except Exception as exc:
        logger.exception("overview failed")
        return _error(exc)


@app.post("/quality")
def quality(filters: SiteFiltersModel):
    try:
        return _json(compute_quality(_snapshot(filters)))
    except Exception as exc:
        logger.exception("quality failed")
        return _error(exc)


@app.post("/records")
def records(
    filters: SiteFiltersModel,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=1000),
    show_pii: bool = Query(default=False),
):
    try:
        return _json(compute_records(_snapshot(filters), show_pii=show_pii, page=page, page_size=page_size))
    except Exception as exc:
        logger.exception("records failed")
        return _error(exc)


@app.post("/map")
def site_map(
    filters: SiteFiltersModel,
    mode: Literal["Site Status", "Phone call status", "QC"] = Query(default="Site Status"),
):
    try:
        return _json(compute_map(_snapshot(filters), mode=mode))
    except Exception as exc:
        logger.exception("map failed")
        return _error(exc)


@app.post("/export/{kind}")
def export(kind: str, filters: SiteFiltersModel):
    if kind not in EXPORT_KINDS:
        return _error(ValueError(f"Unknown export: {kind}"), status_code=404)
    snap = _snapshot(filters)
    csv_bytes = export_csv(snap.filtered, kind).encode("utf-8")
    return Response(
        content=csv_bytes,
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={export_filename(kind)}"},
    )


@app.post("/reload")
def reload(request: ReloadRequest):
    settings = get_settings()
    state = get_state()
    if request.source and request.source not in (settings.data_source, LIVE_SOURCE):
        logger.warning("Rejected reload from unconfigured source %r", request.source)
        return _error(ValueError("Reload source must be the configured data source or live"), status_code=400)
    source = request.source or state.snapshot().source_url or settings.data_source
    ok = _load_source(state, source)
    if request.refresh_minutes is not None:
        refreshable = is_url(source) or source == LIVE_SOURCE
        state.configure_refresh(source if refreshable else "", request.refresh_minutes)
    summary = state.summary()
    summary["ok"] = ok
    summary["refresh"] = state.refresh_status()
    return _json(summary, status_code=200 if ok else 500)


def run(host: str = "127.0.0.1", port: int = 8000) -> None:
    uvicorn.run("api.main:app", host=host, port=port)


if __name__ == "__main__":
    run()
