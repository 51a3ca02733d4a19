from __future__ import annotations

import base64
from typing import Any, Dict, List, Optional

import pytest
import requests

import api.live as live
from api.graph import (
    DriveItemRef,
    GraphError,
    encode_share_link,
    get_access_token,
    resolve_drive_item,
)
from api.live import LIVE_SOURCE, fetch_live_workbook, live_status, make_fetcher
from iamp.config import Settings

GRAPH = Settings(ms_tenant_id="tenant", ms_client_id="client", ms_client_secret="secret", sp_share_link="https://contoso/s/x")


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, content=b"", text="", headers=None):
        self.status_code = status_code
        self._json = json_data or {}
        self.content = content
        self.text = text
        self.headers = headers or {}

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400

    def json(self) -> Dict[str, Any]:
        return self._json


class FakeSession:
    """Records calls and replays canned responses keyed by (method, url prefix)."""

    def __init__(self, routes: Dict[tuple, FakeResponse]):
        self.routes = routes
        self.calls: List[tuple] = []

    def _reply(self, method: str, url: str) -> FakeResponse:
        self.calls.append((method, url))
        for (m, prefix), resp in self.routes.items():
            if m == method and url.startswith(prefix):
                return resp
        raise AssertionError(f"unexpected {method} {url}")

    def post(self, url, **kwargs):
        return self._reply("POST", url)

    def get(self, url, **kwargs):
        return self._reply("GET", url)

    def head(self, url, **kwargs):
        return self._reply("HEAD", url)


TOKEN_OK = FakeResponse(json_data={"access_token": "tok", "expires_in": 3600})


def test_encode_share_link():
    link = "https://contoso.sharepoint.com/:x:/s/site/EabC?e=1"
    token = encode_share_link(link)
    assert token.startswith("u!")
    body = token[2:]
    assert "=" not in body and "+" not in body and "/" not in body
    padded = body + "=" * (-len(body) % 4)
    assert base64.urlsafe_b64decode(padded).decode("utf-8") == link
    assert encode_share_link("  ") == ""


def test_token_is_cached():
    session = FakeSession({("POST", "https://login.microsoftonline.com/tenant/"): TOKEN_OK})
    assert get_access_token(GRAPH, session=session) == "tok"
    assert get_access_token(GRAPH, session=session) == "tok"
    assert len(session.calls) == 1


def test_token_failure_message():
    session = FakeSession({("POST", "https://login"): FakeResponse(401, text="invalid_client")})
    with pytest.raises(GraphError, match=r"Token request failed \(HTTP 401\)\. Details: invalid_client"):
        get_access_token(GRAPH, session=session)


def test_missing_credentials():
    with pytest.raises(GraphError, match="Missing environment variable: MS_TENANT_ID"):
        get_access_token(Settings())


def test_resolve_uses_ids_without_http():
    s = Settings(sp_drive_id="d1", sp_item_id="i1", sp_file_name="sites.xlsx")
    session = FakeSession({})
    assert resolve_drive_item(s, "tok", session=session) == DriveItemRef("d1", "i1", "sites.xlsx")
    assert session.calls == []


def test_resolve_share_link():
    item = {"id": "i9", "name": "IAMP.xlsx", "parentReference": {"driveId": "d9"}}
    session = FakeSession({("GET", "https://graph.microsoft.com/v1.0/shares/u%21"): FakeResponse(json_data=item)})
    assert resolve_drive_item(GRAPH, "tok", session=session) == DriveItemRef("d9", "i9", "IAMP.xlsx")


def test_resolve_without_configuration():
    with pytest.raises(GraphError, match="No SharePoint file configured"):
        resolve_drive_item(Settings(ms_tenant_id="t"), "tok", session=FakeSession({}))


def test_live_status_direct_url():
    s = Settings(live_xlsx_url="https://files.example/sites.xlsx")
    session = FakeSession(
        {("HEAD", s.live_xlsx_url): FakeResponse(headers={"last-modified": "Tue, 01 Oct 2024", "content-length": "2048"})}
    )
    status = live_status(s, session=session)
    assert status["mode"] == "direct-url"
    assert status["lastModifiedDateTime"] == "Tue, 01 Oct 2024"
    assert status["size"] == "2048"


def test_live_status_survives_failed_head():
    class Broken(FakeSession):
        def head(self, url, **kwargs):
            raise requests.ConnectionError("down")

    s = Settings(live_xlsx_url="https://files.example/sites.xlsx")
    status = live_status(s, session=Broken({}))
    assert status["ok"] is True
    assert status["lastModifiedDateTime"] is None


def test_live_status_graph():
    item = {"id": "i9", "name": "IAMP.xlsx", "parentReference": {"driveId": "d9"}}
    meta = {"name": "IAMP.xlsx", "lastModifiedDateTime": "2024-10-01T10:00:00Z", "size": 99, "webUrl": "https://w"}
    session = FakeSession(
        {
            ("POST", "https://login"): TOKEN_OK,
            ("GET", "https://graph.microsoft.com/v1.0/shares/"): FakeResponse(json_data=item),
            ("GET", "https://graph.microsoft.com/v1.0/drives/d9/items/i9"): FakeResponse(json_data=meta),
        }
    )
    status = live_status(GRAPH, session=session)
    assert status["mode"] == "graph"
    assert (status["driveId"], status["itemId"]) == ("d9", "i9")
    assert status["webUrl"] == "https://w"


def test_fetch_live_workbook_direct_url():
    s = Settings(live_xlsx_url="https://files.example/sites.xlsx")
    session = FakeSession(
        {("GET", s.live_xlsx_url): FakeResponse(content=b"PK\x03\x04", headers={"last-modified": "yesterday"})}
    )
    book = fetch_live_workbook(s, session=session)
    assert book.content == b"PK\x03\x04"
    assert book.last_modified == "yesterday"


def test_fetch_live_workbook_direct_url_error():
    s = Settings(live_xlsx_url="https://files.example/sites.xlsx")
    session = FakeSession({("GET", s.live_xlsx_url): FakeResponse(404, text="gone")})
    with pytest.raises(GraphError, match=r"HTTP 404\)\. Details: gone"):
        fetch_live_workbook(s, session=session)


def test_fetcher_routes_live_source(monkeypatch):
    seen: List[Optional[str]] = []

    def fake_live(settings, session=None):
        seen.append("live")
        return live.LiveWorkbook(b"live-bytes", "x.xlsx")

    def fake_fetch(url, timeout=None, session=None):
        seen.append(url)
        return b"url-bytes"

    monkeypatch.setattr(live, "fetch_live_workbook", fake_live)
    monkeypatch.setattr(live, "fetch_bytes", fake_fetch)
    fetch = make_fetcher(Settings())
    assert fetch(LIVE_SOURCE) == b"live-bytes"
    assert fetch("https://example.org/a.xlsx", timeout=5) == b"url-bytes"
    assert seen == ["live", "https://example.org/a.xlsx"]
