from __future__ import annotations

import html
from dataclasses import asdict
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote

import altair as alt
import pandas as pd

from iamp.aggregations import top_items
from iamp.charts import color_for_key, to_vega_spec
from iamp.coords import CoordinateIndex, missing_coordinates
from iamp.geo import as_features
from iamp.pipeline import DashboardSnapshot
from iamp.records import (
    HOUSEHOLDS_COL,
    INDIVIDUALS_COL,
    LOCAL_NAME_COL,
    MISSING,
    PCODE_NAME_COL,
    NormalizedRecord,
)

COLOR_MODES = ("Site Status", "Phone call status", "QC")
LEGEND_LIMIT = 18

LEBANON_BOUNDS = ((33.0, 35.0), (34.75, 36.7))

NO_COORDS_TEXT = "No usable Latitude/Longitude values detected in the spreadsheet."


def category_for(record: NormalizedRecord, mode: str) -> str:
    if mode == "QC":
        return "QC issue" if record.has_qc_issue else "No QC issue"
    if mode == "Phone call status":
        return record.phone_status or MISSING
    return record.site_status or MISSING


def map_points(rows: Sequence[NormalizedRecord], index: CoordinateIndex, mode: str = "Site Status") -> List[Dict[str, Any]]:
    points = []
    for r in rows:
        coord = index.lookup(r)
        if coord is None:
            continue
        category = category_for(r, mode)
        points.append(
            {
                "pcode": r.pcode or "Site",
                "name": r.get(LOCAL_NAME_COL) or r.get(PCODE_NAME_COL) or "",
                "district": r.get("District"),
                "cadaster": r.get("Cadaster"),
                "site_status": r.get("Site Status"),
                "phone_status": r.get("Phone call status"),
                "households": r.get(HOUSEHOLDS_COL),
                "individuals": r.get(INDIVIDUALS_COL),
                "lat": coord.lat,
                "lng": coord.lng,
                "category": category,
                "color": color_for_key(category),
                "maps_url": "https://www.google.com/maps?q=" + quote(f"{coord.lat},{coord.lng}"),
            }
        )
    return points


def legend(points: Sequence[Dict[str, Any]], limit: int = LEGEND_LIMIT) -> List[Dict[str, Any]]:
    counts: Dict[str, int] = {}
    for p in points:
        counts[p["category"]] = counts.get(p["category"], 0) + 1
    return [{"category": cat, "count": n, "color": color_for_key(cat)} for cat, n in top_items(counts, limit)]


def legend_html(item: Dict[str, Any]) -> str:
    color, category, count = (html.escape(str(item[k])) for k in ("color", "category", "count"))
    return (
        f"<span class='legend-swatch' style='background:{color}'></span>"
        f"{category} <span style='color:#6b7280'>{count}</span>"
    )


def map_status_text(total: int, shown: int, index: CoordinateIndex) -> str:
    if index.is_empty:
        return NO_COORDS_TEXT
    missing = total - shown
    text = f"Showing {shown:,} mapped site(s) out of {total:,} filtered. "
    if missing:
        text += f"{missing:,} site(s) have no matching coordinates. "
    return text + f"Coordinates mapped: {len(index):,}."


def coords_detected_text(index: CoordinateIndex) -> str:
    if not index.mapped:
        return "No usable Latitude/Longitude columns detected (or values are empty)."
    return f"Detected: {index.lat_key} / {index.lng_key}. Mapped {index.mapped:,} of {index.total:,} records."


def map_chart(points: Sequence[Dict[str, Any]], boundary: Optional[Dict[str, Any]] = None, *, height: int = 520) -> alt.TopLevelMixin:
    layers = []
    if boundary is not None:
        layers.append(
            alt.Chart(alt.Data(values=as_features(boundary)))
            .mark_geoshape(fill="#6c757d", fillOpacity=0.05, stroke="#6c757d", strokeWidth=2)
        )
    if points:
        df = pd.DataFrame(points)
        cats = list(dict.fromkeys(df["category"]))
        layers.append(
            alt.Chart(df)
            .mark_circle(size=70, opacity=0.9, stroke="white", strokeWidth=1)
            .encode(
                longitude="lng:Q",
                latitude="lat:Q",
                color=alt.Color(
                    "category:N",
                    scale=alt.Scale(domain=cats, range=[color_for_key(c) for c in cats]),
                    legend=alt.Legend(title=None, orient="bottom"),
                ),
                tooltip=[
                    alt.Tooltip("pcode:N", title="PCode"),
                    alt.Tooltip("name:N", title="Name"),
                    alt.Tooltip("district:N", title="District"),
                    alt.Tooltip("cadaster:N", title="Cadaster"),
                    alt.Tooltip("site_status:N", title="Site Status"),
                    alt.Tooltip("phone_status:N", title="Phone status"),
                    alt.Tooltip("households:Q", title="HH", format=","),
                    alt.Tooltip("individuals:Q", title="IND", format=","),
                ],
                href="maps_url:N",
            )
        )
    if not layers:
        (lat0, lng0), (lat1, lng1) = LEBANON_BOUNDS
        frame = pd.DataFrame({"lat": [lat0, lat1], "lng": [lng0, lng1]})
        layers.append(alt.Chart(frame).mark_point(opacity=0).encode(longitude="lng:Q", latitude="lat:Q"))
    return alt.layer(*layers).project(type="mercator").properties(height=height)


def compute_map(
    snapshot: DashboardSnapshot,
    *,
    mode: str = "Site Status",
    boundary: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    if mode not in COLOR_MODES:
        mode = COLOR_MODES[0]
    rows = snapshot.filtered
    index = snapshot.coords
    points = [] if index.is_empty else map_points(rows, index, mode)
    return {
        "filters": asdict(snapshot.filters),
        "mode": mode,
        "coords": index.meta(),
        "coords_text": coords_detected_text(index),
        "status": map_status_text(len(rows), len(points), index),
        "legend": legend(points),
        "points": points,
        "unmapped": [r.pcode or MISSING for r in missing_coordinates(rows, index)],
        "charts": {"map": to_vega_spec(map_chart(points, boundary))},
    }
