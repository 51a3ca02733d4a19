"""Live workbook source: a direct URL or a SharePoint file via Graph."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import requests

from api.graph import (
    GraphError,
    download_drive_item,
    get_access_token,
    get_drive_item_meta,
    resolve_drive_item,
)
from iamp.config import DEFAULT_FILE_NAME, Settings
from iamp.data import fetch_bytes

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LiveWorkbook:
    content: bytes
    filename: str
    last_modified: str = ""


def live_status(settings: Settings, *, session: Optional[requests.Session] = None) -> Dict[str, Any]:
    http = session or requests
    if settings.live_xlsx_url:
        # HEAD avoids downloading the whole file just for metadata.
        last_modified = size = None
        try:
            head = http.head(settings.live_xlsx_url, allow_redirects=True, timeout=settings.http_timeout)
            last_modified = head.headers.get("last-modified")
            size = head.headers.get("content-length")
        except requests.RequestException:
            logger.warning("HEAD request failed for %s", settings.live_xlsx_url)
        return {
            "ok": True,
            "mode": "direct-url",
            "url": settings.live_xlsx_url,
            "name": DEFAULT_FILE_NAME,
            "lastModifiedDateTime": last_modified,
            "size": size,
        }

    token = get_access_token(settings, session=session)
    ref = resolve_drive_item(settings, token, session=session)
    meta = get_drive_item_meta(settings, token, ref, session=session)
    return {
        "ok": True,
        "mode": "graph",
        "name": meta.get("name"),
        "lastModifiedDateTime": meta.get("lastModifiedDateTime"),
        "size": meta.get("size"),
        "webUrl": meta.get("webUrl"),
        "driveId": ref.drive_id,
        "itemId": ref.item_id,
    }


def fetch_live_workbook(settings: Settings, *, session: Optional[requests.Session] = None) -> LiveWorkbook:
    http = session or requests
    if settings.live_xlsx_url:
        try:
            resp = http.get(settings.live_xlsx_url, allow_redirects=True, timeout=settings.http_timeout)
        except requests.RequestException as exc:
            raise GraphError(f"Direct URL fetch failed ({exc}).") from exc
        if not resp.ok:
            details = (resp.text or "").strip()
            msg = f"Direct URL fetch failed (HTTP {resp.status_code})."
            raise GraphError(f"{msg} Details: {details}" if details else msg)
        return LiveWorkbook(resp.content, DEFAULT_FILE_NAME, resp.headers.get("last-modified", ""))

    token = get_access_token(settings, session=session)
    ref = resolve_drive_item(settings, token, session=session)
    try:
        meta = get_drive_item_meta(settings, token, ref, session=session)
    except GraphError:
        logger.warning("Metadata lookup failed for %s/%s; downloading anyway", ref.drive_id, ref.item_id)
        meta = {}
    content = download_drive_item(settings, token, ref, session=session)
    filename = (meta.get("name") or ref.name or DEFAULT_FILE_NAME).replace('"', "")
    return LiveWorkbook(content, filename, meta.get("lastModifiedDateTime") or "")


LIVE_SOURCE = "live"
LIVE_LABEL = "LIVE: SharePoint"


def make_fetcher(settings: Settings) -> Callable[..., bytes]:
    """Fetch callable for DashboardState: the "live" pseudo-URL goes through the proxy source."""

    def fetch(url: str, *, timeout: float = settings.http_timeout) -> bytes:
        if url == LIVE_SOURCE:
            return fetch_live_workbook(settings).content
        return fetch_bytes(url, timeout=timeout)

    return fetch
