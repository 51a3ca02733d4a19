from __future__ import annotations

import json
from typing import Any, Dict, Union

from iamp.data import IngestionError

GEOJSON_TYPES = {
    "FeatureCollection",
    "Feature",
    "GeometryCollection",
    "Point",
    "MultiPoint",
    "LineString",
    "MultiLineString",
    "Polygon",
    "MultiPolygon",
}


def load_geojson(payload: Union[str, bytes]) -> Dict[str, Any]:
    """Parse a boundary overlay. Raises IngestionError for anything that is not a GeoJSON object."""
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8-sig")
    try:
        doc = json.loads(payload)
    except ValueError as exc:
        raise IngestionError(f"Invalid GeoJSON file: {exc}") from exc
    if not isinstance(doc, dict) or not doc.get("type"):
        raise IngestionError("Invalid GeoJSON file.")
    if doc["type"] not in GEOJSON_TYPES:
        raise IngestionError(f"Unsupported GeoJSON type: {doc['type']}")
    return doc


def as_features(doc: Dict[str, Any]) -> list:
    if doc.get("type") == "FeatureCollection":
        return list(doc.get("features") or [])
    if doc.get("type") == "Feature":
        return [doc]
    return [{"type": "Feature", "properties": {}, "geometry": doc}]
