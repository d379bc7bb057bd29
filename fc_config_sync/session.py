"""Per-connection state: the dispatcher, drafts, save pipeline and restarts."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from .config import SyncConfig
from .core.protocols import DeviceChannel
from .dispatcher import SettingsBackendDispatcher
from .health import StatusReporter, StatusServer
from .rates import apply_preset
from .reconfig import (
    PlatformType,
    ReconfigSession,
    ReconfigurationOrchestrator,
    requires_restart,
)
from .sync_state import ConfigDomain, ConfigSyncState, SaveOutcome, SaveSuccess
from .telemetry import TelemetryPoller
from .tuning import (
    SETTING_NAMES,
    RawRcTuning,
    UnifiedTuningRecord,
    changed_settings,
    detect_legacy,
    expand,
    reports_combined,
)

LOGGER = logging.getLogger(__name__)


class DeviceSession:
    """Everything tied to one open connection, discarded on disconnect.

    The session wires a :class:`SettingsBackendDispatcher`, an optional
    :class:`TelemetryPoller`, a :class:`ConfigSyncState` and a
    :class:`ReconfigurationOrchestrator` around the channel, and keeps the
    editable drafts:

    - the unified tuning record plus the snapshot it was loaded as;
    - pending mode and safety setting values.
    """

    def __init__(
        self,
        channel: DeviceChannel,
        config: SyncConfig,
        *,
        fetch_telemetry: Optional[Callable[[], Awaitable[Any]]] = None,
        telemetry_sink: Optional[Callable[[Any], Awaitable[None] | None]] = None,
        modes_changed: Optional[Callable[[], bool]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._dispatcher = SettingsBackendDispatcher(
            channel, timing=config.timing, sleep=sleep
        )
        self._poller: Optional[TelemetryPoller] = None
        if fetch_telemetry is not None:
            self._poller = TelemetryPoller(
                fetch=fetch_telemetry,
                sink=telemetry_sink or (lambda payload: None),
                interval_seconds=config.telemetry.interval_seconds,
                exclusive=self._dispatcher.exclusive,
            )
            self._dispatcher.attach_poller(self._poller)

        self._sync = ConfigSyncState(self._dispatcher, modes_changed=modes_changed)
        self._sync.register(ConfigDomain.TUNING, self._tuning_changes)
        self._sync.register(ConfigDomain.MODES, lambda: dict(self._mode_drafts))
        self._sync.register(ConfigDomain.SAFETY, lambda: dict(self._safety_drafts))

        self._orchestrator = ReconfigurationOrchestrator(
            self._dispatcher,
            target=config.device.target,
            reload=self.reload,
            poller=self._poller,
            timing=config.timing,
        )
        self._orchestrator.add_listener(self._on_reconfig_state)

        self._status = StatusReporter(
            config.device.target, dirty_domains=self._sync.dirty_domains
        )
        self._status_server: Optional[StatusServer] = None

        self._tuning: Optional[UnifiedTuningRecord] = None
        self._original: Optional[UnifiedTuningRecord] = None
        self._legacy = False
        self._combined = True
        self._mode_drafts: Dict[str, Any] = {}
        self._safety_drafts: Dict[str, Any] = {}
        self._closed = False

    @property
    def dispatcher(self) -> SettingsBackendDispatcher:
        return self._dispatcher

    @property
    def sync_state(self) -> ConfigSyncState:
        return self._sync

    @property
    def orchestrator(self) -> ReconfigurationOrchestrator:
        return self._orchestrator

    @property
    def poller(self) -> Optional[TelemetryPoller]:
        return self._poller

    @property
    def status(self) -> StatusReporter:
        return self._status

    @property
    def legacy(self) -> bool:
        return self._legacy

    @property
    def tuning(self) -> UnifiedTuningRecord:
        if self._tuning is None:
            raise RuntimeError("Tuning has not been loaded; call reload() first")
        return self._tuning

    @property
    def modified(self) -> bool:
        return self._sync.is_modified()

    async def start(self) -> None:
        """Load configuration, then start telemetry and the optional health endpoint."""
        if self._config.health.enabled:
            self._status_server = StatusServer(
                self._status, self._config.health.host, self._config.health.port
            )
            await self._status_server.start()

        await self._status.record_connection(True)
        await self._status.record_reconfiguration(None)
        await self.reload()
        if self._poller is not None:
            self._poller.start()

    async def reload(self) -> None:
        """Read the tuning settings and discard every draft."""
        values = await self._dispatcher.read_fields(SETTING_NAMES.values())
        raw = RawRcTuning.from_settings(values)
        self._legacy = detect_legacy(raw)
        self._combined = self._legacy or reports_combined(values)
        self._tuning = expand(raw)
        self._original = self._tuning.snapshot()
        self._mode_drafts.clear()
        self._safety_drafts.clear()
        self._sync.reset()
        LOGGER.info(
            "Loaded tuning (%s layout, %s rates)",
            "legacy" if self._legacy else "per-axis",
            self._tuning.algorithm.name.lower(),
        )

    def update_tuning(self) -> bool:
        """Recompute the tuning dirty flag after the record was edited in place."""
        dirty = bool(self._tuning_changes())
        if dirty:
            self._sync.mark_dirty(ConfigDomain.TUNING)
        else:
            self._sync.clear(ConfigDomain.TUNING)
        return dirty

    def apply_rate_preset(self, key: str) -> None:
        apply_preset(self.tuning, key)
        self.update_tuning()

    def stage_setting(self, domain: ConfigDomain, name: str, value: Any) -> None:
        """Record a pending mode or safety value and mark its domain dirty."""
        if domain is ConfigDomain.MODES:
            self._mode_drafts[name] = value
        elif domain is ConfigDomain.SAFETY:
            self._safety_drafts[name] = value
        else:
            raise ValueError("Tuning changes are edited on the tuning record")
        self._sync.mark_dirty(domain)

    async def change_setting(
        self, domain: ConfigDomain, name: str, value: Any
    ) -> Optional[ReconfigSession]:
        """Stage a setting, or run the restart sequence when it needs one."""
        if requires_restart([name], simulated=self._config.device.simulated):
            return await self.apply_restart_change(f"Set {name}", {name: value})
        self.stage_setting(domain, name, value)
        return None

    async def apply_restart_change(
        self, description: str, values: Mapping[str, Any]
    ) -> ReconfigSession:
        return await self._orchestrator.run(description, values)

    async def change_platform(self, platform: PlatformType) -> ReconfigSession:
        return await self._orchestrator.change_platform(platform)

    async def dismiss_reconfiguration(self) -> None:
        await self._orchestrator.dismiss()
        await self._status.record_reconfiguration(None)

    async def save(self, *, resume_from: Optional[ConfigDomain] = None) -> SaveOutcome:
        outcome = await self._sync.save_all(resume_from=resume_from)
        if isinstance(outcome, SaveSuccess):
            if self._tuning is not None:
                self._original = self._tuning.snapshot()
            self._mode_drafts.clear()
            self._safety_drafts.clear()
        await self._status.record_save(outcome)
        return outcome

    async def close(self) -> None:
        """Stop background work, close the channel and drop per-connection state."""
        if self._closed:
            return
        self._closed = True
        self._orchestrator.notify_disconnected()

        if self._poller is not None:
            await self._poller.stop()

        try:
            await self._dispatcher.channel.disconnect()
        except (ConnectionError, OSError) as exc:
            LOGGER.debug("Channel already closed: %s", exc)

        await self._status.record_connection(False)
        if self._status_server is not None:
            await self._status_server.stop()
            self._status_server = None

        self._tuning = None
        self._original = None
        self._mode_drafts.clear()
        self._safety_drafts.clear()
        self._sync.reset()
        LOGGER.info("Session for %s closed", self._config.device.target)

    def _tuning_changes(self) -> Dict[str, int]:
        if self._tuning is None or self._original is None:
            return {}
        return changed_settings(
            self._original, self._tuning, legacy=self._legacy, combined=self._combined
        )

    async def _on_reconfig_state(self, session: ReconfigSession) -> None:
        await self._status.record_reconfiguration(session)


__all__ = ["DeviceSession"]
