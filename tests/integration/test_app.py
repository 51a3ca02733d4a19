from __future__ import annotations

from pathlib import Path

import pytest
from streamlit.testing.v1 import AppTest

from iamp.config import get_settings

APP_PATH = Path(__file__).resolve().parents[2] / "app.py"


@pytest.fixture()
def app(monkeypatch, tmp_path):
    monkeypatch.setenv("IAMP_DATA_SOURCE", str(tmp_path / "missing.xlsx"))
    get_settings.cache_clear()
    yield AppTest.from_file(str(APP_PATH), default_timeout=60)
    get_settings.cache_clear()


def _has_base_styles(at: AppTest) -> bool:
    return any(".chip-row" in md.value for md in at.markdown)


def test_base_styles_injected_on_every_run(app):
    app.run()
    assert _has_base_styles(app)
    app.run()
    assert _has_base_styles(app)


def test_missing_sample_reports_health_error(app):
    app.run()
    assert not app.exception
    assert any("No data loaded" in info.value for info in app.info)
