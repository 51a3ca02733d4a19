from __future__ import annotations

import base64
import json

from iamp.config import DEFAULT_SAMPLE_PATH, Settings, settings_from_env


def test_defaults():
    s = settings_from_env({})
    assert s == Settings()
    assert s.data_source == str(DEFAULT_SAMPLE_PATH)
    assert not s.live_configured
    assert not s.graph_configured


def test_direct_url_enables_live_mode():
    s = settings_from_env({"LIVE_XLSX_URL": " https://example.org/sites.xlsx "})
    assert s.live_xlsx_url == "https://example.org/sites.xlsx"
    assert s.live_configured
    assert not s.graph_configured


def test_graph_settings_from_json_blob():
    blob = {"MS_TENANT_ID": "tenant", "MS_CLIENT_ID": "client", "MS_CLIENT_SECRET": "secret", "SP_SHARE_LINK": "https://x"}
    s = settings_from_env({"IAMP_GRAPH_CONFIG": json.dumps(blob)})
    assert s.graph_configured
    assert s.sp_share_link == "https://x"


def test_base64_blob_and_env_precedence():
    blob = {"MS_TENANT_ID": "from-blob", "MS_CLIENT_ID": "c", "MS_CLIENT_SECRET": "s"}
    encoded = base64.b64encode(json.dumps(blob).encode("utf-8")).decode("ascii")
    s = settings_from_env({"IAMP_GRAPH_CONFIG_B64": encoded, "MS_TENANT_ID": "from-env"})
    assert s.ms_tenant_id == "from-env"
    assert s.ms_client_id == "c"


def test_bad_values_fall_back():
    s = settings_from_env({"IAMP_GRAPH_CONFIG": "{nope", "IAMP_REFRESH_MINUTES": "soon", "IAMP_HTTP_TIMEOUT": "15"})
    assert s.refresh_minutes == 0.0
    assert s.http_timeout == 15.0
    assert not s.graph_configured
