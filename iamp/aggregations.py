from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, TypeVar

from iamp.records import MISSING

T = TypeVar("T")


def count_by(records: Iterable[T], key_fn: Callable[[T], Any]) -> Dict[Any, int]:
    out: Dict[Any, int] = {}
    for r in records:
        k = key_fn(r) or MISSING
        out[k] = out.get(k, 0) + 1
    return out


def group_sum(records: Iterable[T], key_fn: Callable[[T], Any], value_fn: Callable[[T], Any]) -> Dict[Any, float]:
    out: Dict[Any, float] = {}
    for r in records:
        k = key_fn(r) or MISSING
        out[k] = out.get(k, 0) + (value_fn(r) or 0)
    return out


def top_items(mapping: Mapping[Any, float], n: Optional[int] = None) -> List[Tuple[Any, float]]:
    """Entries sorted by value, largest first; ties keep insertion order."""
    ranked = sorted(mapping.items(), key=lambda kv: kv[1], reverse=True)
    return ranked if n is None else ranked[:n]


def ratio(part: float, whole: float) -> float:
    return part / whole if whole else 0.0


def format_pct(value: Optional[float]) -> str:
    if value is None or value != value or value in (float("inf"), float("-inf")):
        return "—"
    return f"{value * 100:.1f}%"


def format_int(value: Optional[float]) -> str:
    return f"{(value or 0):,.0f}"
