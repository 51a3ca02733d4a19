from __future__ import annotations

import base64
import json
import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

PROJECT_DIR = Path(__file__).resolve().parents[1]
DEFAULT_SAMPLE_PATH = PROJECT_DIR / "assets" / "data" / "IAMP_sites_mapping_SAMPLE_REDACTED.xlsx"
PREFERRED_SHEET_NAME = "IAMP sites mapping"
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
DEFAULT_FILE_NAME = "iamp_sites_mapping.xlsx"


def _read_json_config(environ: Mapping[str, str]) -> Dict[str, Any]:
    """Optional JSON blob holding the Graph settings (plain or base64)."""
    raw = (environ.get("IAMP_GRAPH_CONFIG") or environ.get("IAMP_CONFIG") or "").strip()
    b64 = (environ.get("IAMP_GRAPH_CONFIG_B64") or environ.get("IAMP_CONFIG_B64") or "").strip()
    if raw:
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("IAMP_GRAPH_CONFIG is not valid JSON; ignoring it")
    if b64:
        try:
            return json.loads(base64.b64decode(b64).decode("utf-8"))
        except ValueError:
            logger.warning("IAMP_GRAPH_CONFIG_B64 could not be decoded; ignoring it")
    return {}


@dataclass(frozen=True)
class Settings:
    live_xlsx_url: str = ""
    ms_tenant_id: str = ""
    ms_client_id: str = ""
    ms_client_secret: str = ""
    sp_drive_id: str = ""
    sp_item_id: str = ""
    sp_share_link: str = ""
    sp_file_name: str = ""
    data_source: str = str(DEFAULT_SAMPLE_PATH)
    refresh_minutes: float = 0.0
    http_timeout: float = 60.0

    @property
    def graph_configured(self) -> bool:
        return bool(self.ms_tenant_id and self.ms_client_id and self.ms_client_secret)

    @property
    def live_configured(self) -> bool:
        return bool(self.live_xlsx_url) or self.graph_configured


def _float(value: str, default: float) -> float:
    try:
        return float(value) if value.strip() else default
    except ValueError:
        return default


def settings_from_env(environ: Optional[Mapping[str, str]] = None) -> Settings:
    environ = os.environ if environ is None else environ
    blob = _read_json_config(environ)

    def env(name: str, fallback: str = "") -> str:
        value = environ.get(name)
        if value is None:
            value = blob.get(name, blob.get(name.lower(), fallback))
        return str(value if value is not None else fallback).strip()

    return Settings(
        live_xlsx_url=env("LIVE_XLSX_URL"),
        ms_tenant_id=env("MS_TENANT_ID"),
        ms_client_id=env("MS_CLIENT_ID"),
        ms_client_secret=env("MS_CLIENT_SECRET"),
        sp_drive_id=env("SP_DRIVE_ID"),
        sp_item_id=env("SP_ITEM_ID"),
        sp_share_link=env("SP_SHARE_LINK"),
        sp_file_name=env("SP_FILE_NAME"),
        data_source=env("IAMP_DATA_SOURCE", str(DEFAULT_SAMPLE_PATH)),
        refresh_minutes=_float(env("IAMP_REFRESH_MINUTES"), 0.0),
        http_timeout=_float(env("IAMP_HTTP_TIMEOUT"), 60.0),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return settings_from_env()
