"""Session status: connection, restart sequence and save pipeline.

:class:`SessionStatus` is what a configuration UI needs to render the sync
banner: whether the link is up, where a restart sequence stands, which
domains still hold unsaved changes and how the last save ended.
:class:`StatusServer` optionally exposes the same snapshot over HTTP for
tools that watch a running session.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, Optional

from aiohttp import web

from .reconfig import ReconfigSession, ReconfigState
from .sync_state import (
    ConfigDomain,
    SaveOutcome,
    SavePartialFailure,
    SaveSuccess,
    SaveTransportError,
)

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _save_kind(outcome: SaveOutcome) -> str:
    if isinstance(outcome, SaveSuccess):
        return "ok"
    if isinstance(outcome, SavePartialFailure):
        return "partial_failure"
    return "transport_error"


@dataclass(slots=True)
class SessionStatus:
    target: str
    connected: bool = False
    reconfiguration: ReconfigState = ReconfigState.IDLE
    reconfiguration_target: Optional[str] = None
    reconfiguration_error: Optional[str] = None
    dirty_domains: list[ConfigDomain] = field(default_factory=list)
    last_save: Optional[str] = None
    last_save_domain: Optional[ConfigDomain] = None
    last_save_error: Optional[str] = None
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def healthy(self) -> bool:
        if not self.connected:
            return False
        if self.reconfiguration is ReconfigState.ERROR:
            return False
        return self.last_save in (None, "ok")

    def as_dict(self) -> Dict[str, object]:
        return {
            "status": "ok" if self.healthy else "degraded",
            "target": self.target,
            "connected": self.connected,
            "reconfiguration": {
                "state": self.reconfiguration.value,
                "target": self.reconfiguration_target,
                "error": self.reconfiguration_error,
            },
            "sync": {
                "dirty": [domain.value for domain in self.dirty_domains],
                "lastSave": self.last_save,
                "failedDomain": (
                    self.last_save_domain.value if self.last_save_domain else None
                ),
                "error": self.last_save_error,
            },
            "updatedAt": self.updated_at.isoformat(timespec="seconds"),
        }


class StatusReporter:
    """Collects status updates from the session's components."""

    def __init__(
        self,
        target: str,
        *,
        dirty_domains: Optional[Callable[[], Iterable[ConfigDomain]]] = None,
    ) -> None:
        self._status = SessionStatus(target=target)
        self._dirty_domains = dirty_domains
        self._lock = asyncio.Lock()

    @property
    def status(self) -> SessionStatus:
        return self._status

    async def record_connection(self, connected: bool) -> None:
        async with self._lock:
            self._status.connected = connected
            self._status.updated_at = _utcnow()

    async def record_reconfiguration(self, session: Optional[ReconfigSession]) -> None:
        async with self._lock:
            status = self._status
            if session is None:
                status.reconfiguration = ReconfigState.IDLE
                status.reconfiguration_target = None
                status.reconfiguration_error = None
            else:
                status.reconfiguration = session.state
                status.reconfiguration_target = session.target_description
                status.reconfiguration_error = (
                    session.error if session.state is ReconfigState.ERROR else None
                )
            status.updated_at = _utcnow()

    async def record_save(self, outcome: SaveOutcome) -> None:
        async with self._lock:
            status = self._status
            status.last_save = _save_kind(outcome)
            if isinstance(outcome, (SavePartialFailure, SaveTransportError)):
                status.last_save_domain = outcome.domain
                status.last_save_error = outcome.message
            else:
                status.last_save_domain = None
                status.last_save_error = None
            status.updated_at = _utcnow()

    async def snapshot(self) -> Dict[str, object]:
        async with self._lock:
            if self._dirty_domains is not None:
                self._status.dirty_domains = list(self._dirty_domains())
            return self._status.as_dict()


class StatusServer:
    """Serves the session snapshot at `/healthz` (200 when healthy, else 503)."""

    def __init__(self, reporter: StatusReporter, host: str, port: int) -> None:
        self._reporter = reporter
        self._host = host
        self._port = port
        self._runner: Optional[web.AppRunner] = None

    async def start(self) -> None:
        app = web.Application()
        app.router.add_get("/healthz", self._handle_status)

        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._host, self._port)
        await site.start()
        LOGGER.info("Session status at http://%s:%s/healthz", self._host, self._port)

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None

    async def _handle_status(self, request: web.Request) -> web.Response:
        snapshot = await self._reporter.snapshot()
        code = 200 if snapshot["status"] == "ok" else 503
        return web.json_response(snapshot, status=code)


__all__ = ["SessionStatus", "StatusReporter", "StatusServer"]
