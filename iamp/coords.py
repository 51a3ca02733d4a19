"""Latitude/longitude column detection and the PCode -> coordinate index.

Exports are hand-maintained spreadsheets, so the coordinate columns are
found by name *and* by how many of their values land inside the regional
bounding box. A column literally called "Latitude" only needs a modest
in-band fraction; an anonymous column has to clear a much higher bar.
"""

from __future__ import annotations

import logging
import math
import numbers
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple

import pandas as pd

from iamp.coercion import is_blank, to_text
from iamp.records import PCODE_COL, NormalizedRecord, record_columns

logger = logging.getLogger(__name__)

SAMPLE_LIMIT = 1200
LAT_BAND: Tuple[float, float] = (32.0, 35.9)
LNG_BAND: Tuple[float, float] = (34.0, 37.9)
NAME_MATCH_MIN_SCORE = 0.25
STAT_MATCH_MIN_SCORE = 0.65

_DMS_RE = re.compile(
    r"(\d+(?:\.\d+)?)\D+(\d+(?:\.\d+)?)\D+(\d+(?:\.\d+)?)(?:\D*([NSEW]))?",
    re.IGNORECASE | re.ASCII,
)
_LAT_NAME_RE = re.compile(r"lat|latitude", re.IGNORECASE)
_LATRINE_RE = re.compile(r"latrine", re.IGNORECASE)
_LNG_NAME_RE = re.compile(r"lon|lng|longitude", re.IGNORECASE)
_PCODE_RE = re.compile(r"p\s*code", re.IGNORECASE)


class LatLng(NamedTuple):
    lat: float
    lng: float


def parse_coordinate(value: Any) -> float:
    """Parse decimal or DMS text into degrees. Returns NaN when nothing usable is found."""
    if is_blank(value):
        return math.nan
    if isinstance(value, numbers.Real) and not isinstance(value, bool):
        out = float(value)
        return out if math.isfinite(out) else math.nan

    raw = str(value).strip()
    if not raw:
        return math.nan

    # 33°54'12.3"N or 35 52 10 E
    dms = _DMS_RE.search(raw)
    if dms:
        deg, minutes, sec = (float(dms.group(i)) for i in (1, 2, 3))
        out = deg + minutes / 60 + sec / 3600
        if (dms.group(4) or "").upper() in {"S", "W"}:
            out = -out
        return out

    # 33,875 -> 33.875
    cleaned = raw.replace(",", ".")
    cleaned = re.sub(r"[^0-9.+\-]", "", cleaned)
    cleaned = re.sub(r"\+(?=.)", "", cleaned)
    if not cleaned:
        return math.nan
    try:
        out = float(cleaned)
    except ValueError:
        return math.nan
    return out if math.isfinite(out) else math.nan


def infer_pcode_key(keys: Sequence[str]) -> str:
    for k in keys:
        if str(k).strip().lower() == "pcode":
            return k
    for k in keys:
        if _PCODE_RE.search(str(k)):
            return k
    return PCODE_COL


def score_in_range(parsed: pd.Series, low: float, high: float) -> float:
    """Fraction of successfully parsed values inside [low, high]."""
    valid = parsed.dropna()
    if valid.empty:
        return 0.0
    return float(valid.between(low, high).mean())


def sample_column(records: Sequence[NormalizedRecord], key: str, limit: int = SAMPLE_LIMIT) -> pd.Series:
    return pd.Series([parse_coordinate(r.values.get(key)) for r in records[:limit]], dtype=float)


@dataclass(frozen=True)
class CoordinateKeys:
    pcode_key: str = PCODE_COL
    lat_key: Optional[str] = None
    lng_key: Optional[str] = None
    scores: Dict[str, Tuple[float, float]] = field(default_factory=dict)


def _best_named(candidates: Iterable[str], scores: Dict[str, float]) -> Optional[str]:
    ranked = sorted(candidates, key=lambda k: scores.get(k, 0.0), reverse=True)
    if ranked and scores.get(ranked[0], 0.0) >= NAME_MATCH_MIN_SCORE:
        return ranked[0]
    return None


def _best_scored(scores: Dict[str, float], exclude: Optional[str] = None) -> Optional[str]:
    for key in sorted(scores, key=lambda k: scores[k], reverse=True):
        if key == exclude:
            continue
        if scores[key] >= STAT_MATCH_MIN_SCORE:
            return key
        break
    return None


def infer_lat_lng_keys(records: Sequence[NormalizedRecord]) -> CoordinateKeys:
    if not records:
        return CoordinateKeys()
    keys = record_columns(records)
    pcode_key = infer_pcode_key(keys)

    lat_scores: Dict[str, float] = {}
    lng_scores: Dict[str, float] = {}
    for key in keys:
        parsed = sample_column(records, key)
        lat_scores[key] = score_in_range(parsed, *LAT_BAND)
        lng_scores[key] = score_in_range(parsed, *LNG_BAND)

    named_lat = [k for k in keys if _LAT_NAME_RE.search(str(k)) and not _LATRINE_RE.search(str(k))]
    lat_key = _best_named(named_lat, lat_scores) or _best_scored(lat_scores)

    named_lng = [k for k in keys if _LNG_NAME_RE.search(str(k)) and k != lat_key]
    lng_key = _best_named(named_lng, lng_scores) or _best_scored(lng_scores, exclude=lat_key)

    return CoordinateKeys(
        pcode_key=pcode_key,
        lat_key=lat_key,
        lng_key=lng_key,
        scores={k: (lat_scores[k], lng_scores[k]) for k in keys},
    )


@dataclass(frozen=True)
class CoordinateIndex:
    coords: Dict[str, LatLng] = field(default_factory=dict)
    pcode_key: str = PCODE_COL
    lat_key: Optional[str] = None
    lng_key: Optional[str] = None
    mapped: int = 0
    total: int = 0

    def __len__(self) -> int:
        return len(self.coords)

    @property
    def is_empty(self) -> bool:
        return not self.coords

    def get(self, pcode: str) -> Optional[LatLng]:
        return self.coords.get(pcode)

    def lookup(self, record: NormalizedRecord) -> Optional[LatLng]:
        pcode = _record_pcode(record, self.pcode_key)
        if pcode and pcode in self.coords:
            return self.coords[pcode]
        if self.lat_key and self.lng_key:
            lat = parse_coordinate(record.values.get(self.lat_key))
            lng = parse_coordinate(record.values.get(self.lng_key))
            if math.isfinite(lat) and math.isfinite(lng):
                return LatLng(lat, lng)
        return None

    def meta(self) -> Dict[str, Any]:
        return {
            "pcode_key": self.pcode_key,
            "lat_key": self.lat_key,
            "lng_key": self.lng_key,
            "mapped": self.mapped,
            "total": self.total,
            "points": len(self.coords),
        }


def _record_pcode(record: NormalizedRecord, pcode_key: str) -> str:
    value = record.values.get(pcode_key)
    if is_blank(value):
        value = record.values.get(PCODE_COL)
    return to_text(value)


def build_coordinate_index(records: Sequence[NormalizedRecord]) -> CoordinateIndex:
    keys = infer_lat_lng_keys(records)
    total = len(records)
    if not keys.lat_key or not keys.lng_key:
        logger.info("No latitude/longitude columns detected in %d records", total)
        return CoordinateIndex(pcode_key=keys.pcode_key, lat_key=keys.lat_key, lng_key=keys.lng_key, total=total)

    coords: Dict[str, LatLng] = {}
    mapped = 0
    for r in records:
        pcode = _record_pcode(r, keys.pcode_key)
        if not pcode:
            continue
        lat = parse_coordinate(r.values.get(keys.lat_key))
        lng = parse_coordinate(r.values.get(keys.lng_key))
        if not (math.isfinite(lat) and math.isfinite(lng)):
            continue
        coords[pcode] = LatLng(lat, lng)
        mapped += 1

    logger.info(
        "Coordinates from %r/%r: mapped %d of %d records (%d sites)",
        keys.lat_key,
        keys.lng_key,
        mapped,
        total,
        len(coords),
    )
    return CoordinateIndex(
        coords=coords,
        pcode_key=keys.pcode_key,
        lat_key=keys.lat_key,
        lng_key=keys.lng_key,
        mapped=mapped,
        total=total,
    )


def missing_coordinates(records: Iterable[NormalizedRecord], index: CoordinateIndex) -> List[NormalizedRecord]:
    return [r for r in records if index.lookup(r) is None]
