from __future__ import annotations

import json

import pytest

from iamp.charts import FIXED_COLORS, _hash_code, bar_chart, color_for_key, donut_chart, palette, to_vega_spec
from iamp.data import IngestionError
from iamp.geo import as_features, load_geojson


def test_hash_code_matches_32bit_string_hash():
    assert _hash_code("") == 0
    assert _hash_code("a") == 97
    assert _hash_code("ab") == 97 * 31 + 98
    # wraps to a signed 32-bit integer
    assert -(2**31) <= _hash_code("a fairly long category name") < 2**31


def test_colors_are_stable():
    assert color_for_key("Active") == FIXED_COLORS["Active"]
    assert color_for_key(" Active ") == FIXED_COLORS["Active"]
    first = color_for_key("Need Follow-up")
    assert first == color_for_key("Need Follow-up")
    assert first.startswith("hsl(") and first.endswith(", 72%, 46%)")


def test_palette_cycles():
    colors = palette(12)
    assert len(colors) == 12
    assert colors[10] == colors[0]


def test_chart_specs_are_json_serializable():
    donut = to_vega_spec(donut_chart({"Assessed": 1, "Not assessed": 1}))
    bars = to_vega_spec(bar_chart([("Answer", 3), ("No answer", 1)], horizontal=False, multicolor=True))
    for spec in (donut, bars):
        assert "$schema" in spec
        json.dumps(spec)
    assert donut["mark"]["type"] == "arc"


def test_load_geojson_feature_collection():
    doc = load_geojson(b'{"type": "FeatureCollection", "features": [{"type": "Feature", "geometry": null}]}')
    assert len(as_features(doc)) == 1


def test_bare_geometry_is_wrapped():
    doc = load_geojson('{"type": "Point", "coordinates": [35.5, 33.8]}')
    (feature,) = as_features(doc)
    assert feature["type"] == "Feature"
    assert feature["geometry"] == doc


@pytest.mark.parametrize("payload", ["not json", "[1, 2]", '{"foo": 1}', '{"type": "Circle"}'])
def test_invalid_geojson_rejected(payload):
    with pytest.raises(IngestionError):
        load_geojson(payload)
