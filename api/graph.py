"""Microsoft Graph helpers for the live workbook proxy.

- OAuth2 client credentials for the access token (cached while valid)
- Drive item lookup by drive/item id or by share link
"""

from __future__ import annotations

import base64
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import quote

import requests

from iamp.config import Settings

logger = logging.getLogger(__name__)

GRAPH_ROOT = "https://graph.microsoft.com/v1.0"
TOKEN_URL = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"
TOKEN_EXPIRY_MARGIN_S = 60


class GraphError(RuntimeError):
    pass


@dataclass(frozen=True)
class DriveItemRef:
    drive_id: str
    item_id: str
    name: Optional[str] = None


_token_lock = threading.Lock()
_token_cache: Dict[str, Any] = {"access_token": None, "expires_at": 0.0}


def require(settings: Settings, attr: str, env_name: str) -> str:
    value = getattr(settings, attr)
    if not value:
        raise GraphError(f"Missing environment variable: {env_name}")
    return value


def _failure(what: str, resp: requests.Response) -> GraphError:
    details = (resp.text or "").strip()
    msg = f"{what} failed (HTTP {resp.status_code})."
    return GraphError(f"{msg} Details: {details}" if details else msg)


def reset_token_cache() -> None:
    with _token_lock:
        _token_cache.update(access_token=None, expires_at=0.0)


def get_access_token(settings: Settings, *, session: Optional[requests.Session] = None) -> str:
    tenant = require(settings, "ms_tenant_id", "MS_TENANT_ID")
    client_id = require(settings, "ms_client_id", "MS_CLIENT_ID")
    client_secret = require(settings, "ms_client_secret", "MS_CLIENT_SECRET")

    now = time.time()
    with _token_lock:
        if _token_cache["access_token"] and now < _token_cache["expires_at"] - TOKEN_EXPIRY_MARGIN_S:
            return _token_cache["access_token"]

    http = session or requests
    resp = http.post(
        TOKEN_URL.format(tenant=quote(tenant, safe="")),
        data={
            "client_id": client_id,
            "client_secret": client_secret,
            "grant_type": "client_credentials",
            "scope": GRAPH_SCOPE,
        },
        headers={"Content-Type": "application/x-www-form-urlencoded"},
        timeout=settings.http_timeout,
    )
    if not resp.ok:
        raise _failure("Token request", resp)
    payload = resp.json()
    token = payload.get("access_token")
    if not token:
        raise GraphError("Token response missing access_token.")

    with _token_lock:
        _token_cache["access_token"] = token
        _token_cache["expires_at"] = now + float(payload.get("expires_in") or 3600)
    return token


def encode_share_link(share_link: str) -> str:
    """Graph sharing token: u!<base64url(url)> without padding."""
    raw = (share_link or "").strip()
    if not raw:
        return ""
    b64 = base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii").rstrip("=")
    return f"u!{b64}"


def _auth(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}", "Accept": "application/json"}


def resolve_drive_item(settings: Settings, token: str, *, session: Optional[requests.Session] = None) -> DriveItemRef:
    if settings.sp_drive_id and settings.sp_item_id:
        return DriveItemRef(settings.sp_drive_id, settings.sp_item_id, settings.sp_file_name or None)

    if settings.sp_share_link:
        share_id = encode_share_link(settings.sp_share_link)
        http = session or requests
        resp = http.get(
            f"{GRAPH_ROOT}/shares/{quote(share_id, safe='')}/driveItem",
            headers=_auth(token),
            timeout=settings.http_timeout,
        )
        if not resp.ok:
            raise _failure("Share link lookup", resp)
        item = resp.json()
        drive_id = (item.get("parentReference") or {}).get("driveId")
        item_id = item.get("id")
        if not drive_id or not item_id:
            raise GraphError("Share link lookup succeeded but did not return driveId/itemId.")
        return DriveItemRef(drive_id, item_id, item.get("name"))

    raise GraphError(
        "No SharePoint file configured. Provide either (SP_DRIVE_ID + SP_ITEM_ID) or SP_SHARE_LINK."
    )


def _item_url(ref: DriveItemRef) -> str:
    return f"{GRAPH_ROOT}/drives/{quote(ref.drive_id, safe='')}/items/{quote(ref.item_id, safe='')}"


def get_drive_item_meta(settings: Settings, token: str, ref: DriveItemRef, *, session: Optional[requests.Session] = None) -> Dict[str, Any]:
    http = session or requests
    resp = http.get(
        _item_url(ref),
        params={"$select": "name,lastModifiedDateTime,size,webUrl"},
        headers=_auth(token),
        timeout=settings.http_timeout,
    )
    if not resp.ok:
        raise _failure("Metadata request", resp)
    return resp.json()


def download_drive_item(settings: Settings, token: str, ref: DriveItemRef, *, session: Optional[requests.Session] = None) -> bytes:
    http = session or requests
    resp = http.get(
        f"{_item_url(ref)}/content",
        headers={"Authorization": f"Bearer {token}"},
        timeout=settings.http_timeout,
        allow_redirects=True,
    )
    if not resp.ok:
        raise _failure("Download", resp)
    return resp.content
