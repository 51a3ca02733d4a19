"""Dashboard state: the single owner of the loaded dataset.

Every load replaces the normalized records, rebuilds the coordinate index
from the full set and refilters, all before views are notified. Filter
changes only recompute the filtered list. Loads are tagged with a
monotonically increasing token; a result whose token is older than the
newest started load is discarded instead of overwriting newer data.
"""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from iamp.coords import CoordinateIndex, build_coordinate_index
from iamp.data import WorkbookSource, fetch_bytes, is_url, read_workbook
from iamp.filters import SiteFilters, apply_filters
from iamp.records import NormalizedRecord, normalize_rows

logger = logging.getLogger(__name__)

MIN_REFRESH_MINUTES = 1.0
TIMER_JOIN_TIMEOUT_S = 5.0


@dataclass(frozen=True)
class HealthStatus:
    message: str = "No data loaded"
    ok: bool = True
    last_load_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    error_count: int = 0


@dataclass(frozen=True)
class DashboardSnapshot:
    records: Tuple[NormalizedRecord, ...] = ()
    filtered: Tuple[NormalizedRecord, ...] = ()
    coords: CoordinateIndex = field(default_factory=CoordinateIndex)
    filters: SiteFilters = field(default_factory=SiteFilters)
    source_label: str = "No data loaded"
    source_url: str = ""
    sheet_name: str = ""
    health: HealthStatus = field(default_factory=HealthStatus)

    @property
    def loaded(self) -> bool:
        return bool(self.records)

    def with_filters(self, filters: SiteFilters) -> "DashboardSnapshot":
        """Same dataset seen through different criteria; coordinates are untouched."""
        return replace(self, filters=filters, filtered=tuple(apply_filters(self.records, filters)))


View = Callable[[DashboardSnapshot], Any]


class RefreshTimer:
    """Repeating background reload of one URL. Never reconfigured: cancel it and build a new one."""

    def __init__(self, url: str, interval_s: float, callback: Callable[[str], Any]):
        self.url = url
        self.interval_s = interval_s
        self._callback = callback
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name="iamp-refresh", daemon=True)

    def start(self) -> "RefreshTimer":
        self._thread.start()
        return self

    def cancel(self) -> None:
        self._stop.set()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(TIMER_JOIN_TIMEOUT_S)

    @property
    def active(self) -> bool:
        return self._thread.is_alive() and not self._stop.is_set()

    def _run(self) -> None:
        while not self._stop.wait(self.interval_s):
            try:
                self._callback(self.url)
            except Exception:
                logger.exception("Auto-refresh tick failed for %s", self.url)


class DashboardState:
    def __init__(self, *, http_timeout: float = 60.0, fetch: Callable[..., bytes] = fetch_bytes):
        self._lock = threading.RLock()
        self._seq = itertools.count(1)
        self._latest_token = 0
        self._http_timeout = http_timeout
        self._fetch = fetch
        self._views: List[View] = []
        self._snapshot = DashboardSnapshot()
        self._refresh: Optional[RefreshTimer] = None

    # ----- views -----
    def subscribe(self, view: View) -> None:
        self._views.append(view)

    def snapshot(self) -> DashboardSnapshot:
        return self._snapshot

    def _publish(self, snap: DashboardSnapshot) -> None:
        self._snapshot = snap
        for view in list(self._views):
            try:
                view(snap)
            except Exception:
                logger.exception("View %r failed to render", view)

    # ----- loading -----
    def begin_load(self) -> int:
        with self._lock:
            token = next(self._seq)
            self._latest_token = token
            health = replace(self._snapshot.health, last_load_at=datetime.now(), message="Loading…")
            self._snapshot = replace(self._snapshot, health=health)
            return token

    def is_current(self, token: int) -> bool:
        return token == self._latest_token

    def complete_load(
        self,
        token: int,
        rows: Sequence[Mapping[str, Any]],
        label: str,
        sheet_name: str = "",
        source_url: str = "",
    ) -> bool:
        """Replace the dataset with `rows`. Returns False when a newer load has superseded this one."""
        records = tuple(normalize_rows(rows))
        coords = build_coordinate_index(records)
        with self._lock:
            if not self.is_current(token):
                logger.info("Discarding stale load #%d (latest is #%d)", token, self._latest_token)
                return False
            filters = self._snapshot.filters
            health = replace(
                self._snapshot.health,
                message="Loaded successfully.",
                ok=True,
                last_success_at=datetime.now(),
                error_count=0,
            )
            snap = DashboardSnapshot(
                records=records,
                filtered=tuple(apply_filters(records, filters)),
                coords=coords,
                filters=filters,
                source_label=label,
                source_url=source_url,
                sheet_name=sheet_name,
                health=health,
            )
            logger.info("Loaded %d records from %s (%d after filters)", len(records), label, len(snap.filtered))
            self._publish(snap)
            return True

    def fail_load(self, token: int, message: str) -> bool:
        """Record a failed load. A superseded load leaves health untouched."""
        with self._lock:
            if not self.is_current(token):
                logger.info("Ignoring failure of stale load #%d (latest is #%d): %s", token, self._latest_token, message)
                return False
            health = self._snapshot.health
            health = replace(health, message=message, ok=False, error_count=health.error_count + 1)
            self._publish(replace(self._snapshot, health=health))
            return True

    def record_error(self, message: str) -> None:
        """Count a failure that is not tied to a dataset load (e.g. a bad boundary file)."""
        with self._lock:
            health = self._snapshot.health
            health = replace(health, message=message, ok=False, error_count=health.error_count + 1)
            self._publish(replace(self._snapshot, health=health))

    def load_rows(self, rows: Sequence[Mapping[str, Any]], label: str, sheet_name: str = "") -> bool:
        return self.complete_load(self.begin_load(), rows, label, sheet_name)

    def load_workbook(self, source: WorkbookSource, label: str, *, source_url: str = "") -> bool:
        token = self.begin_load()
        try:
            rows, sheet_name = read_workbook(source)
        except Exception as exc:
            logger.exception("Load failed for %s", label)
            self.fail_load(token, f"Load error: {exc}")
            return False
        return self.complete_load(token, rows, label, sheet_name, source_url=source_url)

    def load_file(self, path: Path) -> bool:
        path = Path(path)
        return self.load_workbook(path, f"File: {path.name}")

    def load_bytes(self, data: bytes, name: str) -> bool:
        return self.load_workbook(data, f"File: {name}")

    def load_url(self, url: str, label: Optional[str] = None) -> bool:
        if not url:
            return False
        token = self.begin_load()
        try:
            payload = self._fetch(url, timeout=self._http_timeout)
            rows, sheet_name = read_workbook(payload)
        except Exception as exc:
            logger.exception("Load URL failed for %s", url)
            self.fail_load(token, f"Load URL error: {exc}")
            return False
        return self.complete_load(token, rows, label or f"URL: {url}", sheet_name, source_url=url)

    def load_source(self, source: str) -> bool:
        """Load a configured source, which may be an http(s) URL or a local path."""
        if is_url(source):
            return self.load_url(source)
        return self.load_file(Path(source))

    # ----- filters -----
    def set_filters(self, filters: SiteFilters) -> DashboardSnapshot:
        with self._lock:
            snap = self._snapshot
            if filters != snap.filters:
                snap = snap.with_filters(filters)
                self._publish(snap)
            return snap

    # ----- auto refresh -----
    @property
    def refresh(self) -> Optional[RefreshTimer]:
        return self._refresh

    def configure_refresh(self, url: str, minutes: float) -> Optional[RefreshTimer]:
        """Cancel the current timer and, when a URL is given, start a fresh one."""
        if self._refresh is not None:
            self._refresh.cancel()
            self._refresh = None
        if not url:
            return None
        interval_s = max(MIN_REFRESH_MINUTES, float(minutes or 0)) * 60
        self._refresh = RefreshTimer(url, interval_s, self._refresh_tick).start()
        logger.info("Auto-refresh every %.0f s from %s", interval_s, url)
        return self._refresh

    def _refresh_tick(self, url: str) -> None:
        label = self._snapshot.source_label if self._snapshot.source_url == url else None
        self.load_url(url, label)

    def refresh_status(self) -> str:
        timer = self._refresh
        if timer is None or not timer.active:
            return "Auto-refresh: off (no URL loaded)"
        return f"Auto-refresh: every {timer.interval_s / 60:g} min"

    def close(self) -> None:
        self.configure_refresh("", 0)

    def summary(self) -> Dict[str, Any]:
        snap = self._snapshot
        return {
            "source": snap.source_label,
            "sheet": snap.sheet_name,
            "records": len(snap.records),
            "filtered": len(snap.filtered),
            "coords": snap.coords.meta(),
            "health": {
                "message": snap.health.message,
                "ok": snap.health.ok,
                "last_load_at": snap.health.last_load_at,
                "last_success_at": snap.health.last_success_at,
                "error_count": snap.health.error_count,
            },
        }
