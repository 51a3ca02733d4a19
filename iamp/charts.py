from __future__ import annotations

from typing import Any, Dict, List, Mapping, Sequence, Tuple

import altair as alt
import pandas as pd

alt.data_transformers.disable_max_rows()

PALETTE = [
    "#2563eb",  # blue
    "#10b981",  # emerald
    "#8b5cf6",  # violet
    "#f59e0b",  # amber
    "#ef4444",  # red
    "#06b6d4",  # cyan
    "#f97316",  # orange
    "#14b8a6",  # teal
    "#a3e635",  # lime
    "#e11d48",  # rose
]

FIXED_COLORS = {
    "Active": "#10b981",
    "Inactive": "#f59e0b",
    "Fully Demolished": "#ef4444",
    "Not assessed": "#94a3b8",
    "Not recorded": "#8b5cf6",
    "QC issue": "#ef4444",
    "No QC issue": "#10b981",
    "—": "#94a3b8",
}


def to_vega_spec(chart: alt.TopLevelMixin) -> Dict[str, Any]:
    """Convert an Altair chart into a Vega-Lite spec dict (JSON-serializable)."""
    return chart.to_dict()


def palette(n: int) -> List[str]:
    return [PALETTE[i % len(PALETTE)] for i in range(n)]


def _hash_code(text: str) -> int:
    h = 0
    for ch in text:
        h = ((h << 5) - h + ord(ch)) & 0xFFFFFFFF
    return h - 0x100000000 if h & 0x80000000 else h


def color_for_key(key: object) -> str:
    """Stable colour per category so markers keep their colour between reloads."""
    k = str(key if key is not None else "").strip()
    if k in FIXED_COLORS:
        return FIXED_COLORS[k]
    hue = abs(_hash_code(k)) % 360
    return f"hsl({hue}, 72%, 46%)"


def donut_chart(counts: Mapping[str, float], *, inner_radius: int = 60, height: int = 260) -> alt.Chart:
    df = pd.DataFrame({"label": list(counts.keys()), "value": list(counts.values())})
    return (
        alt.Chart(df)
        .mark_arc(innerRadius=inner_radius)
        .encode(
            theta=alt.Theta("value:Q"),
            color=alt.Color(
                "label:N",
                sort=list(counts.keys()),
                scale=alt.Scale(domain=list(counts.keys()), range=palette(len(counts))),
                legend=alt.Legend(orient="bottom", title=None),
            ),
            tooltip=[alt.Tooltip("label:N", title="Category"), alt.Tooltip("value:Q", title="Records", format=",")],
        )
        .properties(height=height)
    )


def bar_chart(
    items: Sequence[Tuple[str, float]],
    *,
    value_title: str = "Records",
    horizontal: bool = True,
    multicolor: bool = False,
    height: int = 260,
) -> alt.Chart:
    df = pd.DataFrame(list(items), columns=["label", "value"])
    order = df["label"].tolist()
    color: Any = alt.value(PALETTE[0])
    if multicolor:
        color = alt.Color("label:N", scale=alt.Scale(domain=order, range=palette(len(order))), legend=None)
    if horizontal:
        x = alt.X("value:Q", title=value_title, axis=alt.Axis(format="~s", tickMinStep=1))
        y = alt.Y("label:N", sort=order, title=None, axis=alt.Axis(labelLimit=320))
    else:
        x = alt.X("label:N", sort=order, title=None, axis=alt.Axis(labelAngle=0, labelLimit=200))
        y = alt.Y("value:Q", title=value_title, axis=alt.Axis(format="~s", tickMinStep=1))
    return (
        alt.Chart(df)
        .mark_bar(cornerRadius=6)
        .encode(
            x=x,
            y=y,
            color=color,
            tooltip=[alt.Tooltip("label:N", title="Category"), alt.Tooltip("value:Q", title=value_title, format=",")],
        )
        .properties(height=height)
    )
