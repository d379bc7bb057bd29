"""Restart-requiring configuration changes.

Some settings only take effect after the firmware restarts (the platform
type, and failsafe/arming settings on a simulated target). Applying one is a
fixed sequence: write the settings, commit them, request a reboot, wait out
the boot, reconnect and reload everything. :class:`ReconfigurationOrchestrator`
runs that sequence as an explicit state machine so every step and every wait
is named and observable:

    IDLE -> WRITING -> COMMITTING -> REBOOTING -> RECONNECTING -> IDLE

Any active step may fail into ERROR, and ERROR only returns to IDLE through
:meth:`ReconfigurationOrchestrator.dismiss`.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Awaitable, Callable, Dict, Iterable, Mapping, Optional

from .config import TimingConfig
from .core.protocols import TelemetryControl
from .dispatcher import SettingsBackendDispatcher

LOGGER = logging.getLogger(__name__)

RECONNECT_FAILED_MESSAGE = (
    "Failed to reconnect after restart. Please reconnect manually and try again."
)
DISCONNECTED_MESSAGE = "Connection was closed during restart. Please reconnect manually."


class ReconfigState(str, Enum):
    """Position of the restart sequence."""

    IDLE = "idle"
    """Nothing in flight."""

    WRITING = "writing"
    """Dispatching the changed settings."""

    COMMITTING = "committing"
    """Writing the configuration to persistent storage."""

    REBOOTING = "rebooting"
    """Reboot requested; waiting for the device to boot."""

    RECONNECTING = "reconnecting"
    """Reopening the link and reloading configuration."""

    ERROR = "error"
    """A step failed; waiting for the user to dismiss."""


_TRANSITIONS: Dict[ReconfigState, frozenset[ReconfigState]] = {
    ReconfigState.IDLE: frozenset({ReconfigState.WRITING}),
    ReconfigState.WRITING: frozenset({ReconfigState.COMMITTING, ReconfigState.ERROR}),
    ReconfigState.COMMITTING: frozenset({ReconfigState.REBOOTING, ReconfigState.ERROR}),
    ReconfigState.REBOOTING: frozenset({ReconfigState.RECONNECTING, ReconfigState.ERROR}),
    ReconfigState.RECONNECTING: frozenset({ReconfigState.IDLE, ReconfigState.ERROR}),
    ReconfigState.ERROR: frozenset({ReconfigState.IDLE}),
}


class ReconfigurationError(RuntimeError):
    """Raised when a restart sequence cannot proceed."""

    code = "reconfiguration"


class ReconfigurationBusyError(ReconfigurationError):
    """A restart sequence is already in flight on this connection."""

    code = "busy"


class InvalidTransitionError(ReconfigurationError):
    code = "invalid_transition"


class RestartTimeoutError(ReconfigurationError):
    """The device did not come back within the reconnect window."""

    code = "restart_timeout"


class _Disconnected(ReconfigurationError):
    code = "disconnected"


class PlatformType(IntEnum):
    MULTIROTOR = 0
    AIRPLANE = 1
    HELICOPTER = 2
    TRICOPTER = 3
    ROVER = 4
    BOAT = 5


# Settings the firmware only applies after a restart.
RESTART_SETTINGS = frozenset({"platform_type"})

# On a simulated target the console ``save`` of these also restarts the process.
SIMULATED_RESTART_SETTINGS = frozenset(
    {
        "failsafe_delay",
        "failsafe_off_delay",
        "failsafe_throttle",
        "failsafe_procedure",
        "receiver_type",
        "nav_extra_arming_safety",
        "gps_min_sats",
    }
)


def requires_restart(names: Iterable[str], *, simulated: bool = False) -> bool:
    """Return True when writing any of ``names`` needs the restart sequence."""
    for name in names:
        if name in RESTART_SETTINGS:
            return True
        if simulated and name in SIMULATED_RESTART_SETTINGS:
            return True
    return False


def platform_change_fields(platform: PlatformType) -> Dict[str, Any]:
    return {"platform_type": PlatformType(platform)}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class ReconfigSession:
    """State of one restart-requiring change, kept until the UI dismisses it."""

    target_description: str
    state: ReconfigState = ReconfigState.IDLE
    error: Optional[str] = None
    started_at: datetime = field(default_factory=_utcnow)
    history: list[ReconfigState] = field(default_factory=list)


StateListener = Callable[[ReconfigSession], Awaitable[None] | None]


class ReconfigurationOrchestrator:
    """Drives write -> commit -> reboot -> reconnect for one connection.

    Only one sequence may be in flight per connection: overlapping reboot
    and reconnect cycles would race on the same channel. While a sequence
    runs the orchestrator owns the channel, so the telemetry poller stays
    paused until it ends.
    """

    def __init__(
        self,
        dispatcher: SettingsBackendDispatcher,
        *,
        target: str,
        reload: Callable[[], Awaitable[None]],
        poller: Optional[TelemetryControl] = None,
        timing: Optional[TimingConfig] = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._target = target
        self._reload = reload
        self._poller = poller
        self._timing = timing or TimingConfig()
        self._session: Optional[ReconfigSession] = None
        self._disconnect_event = asyncio.Event()
        self._listeners: list[StateListener] = []

    @property
    def session(self) -> Optional[ReconfigSession]:
        return self._session

    @property
    def state(self) -> ReconfigState:
        if self._session is None:
            return ReconfigState.IDLE
        return self._session.state

    @property
    def in_flight(self) -> bool:
        return self.state is not ReconfigState.IDLE

    def add_listener(self, listener: StateListener) -> None:
        """Register a callback invoked with the session after every transition."""
        self._listeners.append(listener)

    def notify_disconnected(self) -> None:
        """Record that the user closed the link; an active sequence ends in ERROR."""
        if self.in_flight:
            LOGGER.info("Disconnect requested during %s", self.state.value)
            self._disconnect_event.set()

    async def change_platform(self, platform: PlatformType) -> ReconfigSession:
        platform = PlatformType(platform)
        return await self.run(
            f"Change platform to {platform.name}", platform_change_fields(platform)
        )

    async def run(
        self, target_description: str, values: Mapping[str, Any]
    ) -> ReconfigSession:
        """Apply ``values`` through the full restart sequence.

        Returns the session, which ends either IDLE (success) or ERROR.

        Raises:
            ReconfigurationBusyError: another sequence is in flight or awaiting dismissal.
        """
        if self.in_flight:
            raise ReconfigurationBusyError(
                f"Restart already in progress ({self.state.value})"
            )

        session = ReconfigSession(target_description=target_description)
        self._session = session
        self._disconnect_event.clear()
        # Enter WRITING before the first await so a concurrent caller sees us busy.
        self._apply(session, ReconfigState.WRITING)
        LOGGER.info("Starting restart sequence: %s", target_description)

        steps: tuple[tuple[ReconfigState, Callable[[], Awaitable[None]]], ...] = (
            (ReconfigState.WRITING, lambda: self._write(values)),
            (ReconfigState.COMMITTING, self._commit),
            (ReconfigState.REBOOTING, self._reboot),
            (ReconfigState.RECONNECTING, self._reconnect),
        )

        if self._poller is not None:
            self._poller.pause()
        try:
            await self._notify(session)
            for step_state, step in steps:
                if session.state is not step_state:
                    await self._transition(session, step_state)
                await step()
        except asyncio.CancelledError:
            await self._fail(session, "Restart sequence was cancelled")
            raise
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            await self._fail(session, message)
        else:
            await self._transition(session, ReconfigState.IDLE)
            LOGGER.info("Restart sequence complete: %s", target_description)
        finally:
            if self._poller is not None:
                self._poller.resume()

        return session

    async def dismiss(self) -> None:
        """Acknowledge a finished sequence; the only way out of ERROR."""
        session = self._session
        if session is None:
            return
        if session.state is ReconfigState.ERROR:
            await self._transition(session, ReconfigState.IDLE)
        elif session.state is not ReconfigState.IDLE:
            raise InvalidTransitionError(
                f"Cannot dismiss while {session.state.value}; wait for it to finish"
            )
        self._session = None

    async def _write(self, values: Mapping[str, Any]) -> None:
        await self._dispatcher.set_fields(values)

    async def _commit(self) -> None:
        await self._dispatcher.commit()
        await self._wait(self._timing.commit_settle_seconds)

    async def _reboot(self) -> None:
        await self._dispatcher.reboot()
        # The device cannot be queried while booting, so wait a fixed window.
        await self._wait(self._timing.reboot_grace_seconds)

    async def _reconnect(self) -> None:
        channel = self._dispatcher.channel
        attempts = max(1, self._timing.reconnect_attempts)

        for attempt in range(1, attempts + 1):
            self._check_disconnected()
            try:
                connected = await asyncio.wait_for(
                    channel.reconnect(self._target),
                    timeout=self._timing.reconnect_attempt_timeout_seconds,
                )
            except Exception as exc:
                LOGGER.warning("Reconnect attempt %d/%d failed: %s", attempt, attempts, exc)
                connected = False

            if connected:
                LOGGER.info("Reconnected to %s after restart", self._target)
                break

            LOGGER.debug("Reconnect attempt %d/%d unsuccessful", attempt, attempts)
            if attempt < attempts:
                await self._wait(self._timing.reconnect_interval_seconds)
        else:
            raise RestartTimeoutError(RECONNECT_FAILED_MESSAGE)

        self._check_disconnected()
        try:
            await self._reload()
        except Exception as exc:
            raise ReconfigurationError(
                f"Reconnected but configuration reload failed: {exc}"
            ) from exc

    def _check_disconnected(self) -> None:
        if self._disconnect_event.is_set():
            raise _Disconnected(DISCONNECTED_MESSAGE)

    async def _wait(self, seconds: float) -> None:
        if seconds <= 0:
            self._check_disconnected()
            return
        try:
            await asyncio.wait_for(self._disconnect_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise _Disconnected(DISCONNECTED_MESSAGE)

    def _apply(self, session: ReconfigSession, new_state: ReconfigState) -> None:
        if new_state not in _TRANSITIONS[session.state]:
            raise InvalidTransitionError(
                f"{session.state.value} -> {new_state.value} is not allowed"
            )
        session.state = new_state
        session.history.append(new_state)

    async def _transition(self, session: ReconfigSession, new_state: ReconfigState) -> None:
        self._apply(session, new_state)
        LOGGER.debug("Restart sequence -> %s", new_state.value)
        await self._notify(session)

    async def _fail(self, session: ReconfigSession, message: str) -> None:
        LOGGER.error("Restart sequence failed during %s: %s", session.state.value, message)
        session.error = message
        await self._transition(session, ReconfigState.ERROR)

    async def _notify(self, session: ReconfigSession) -> None:
        for listener in self._listeners:
            try:
                result = listener(session)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                LOGGER.warning("Restart state listener failed", exc_info=True)


__all__ = [
    "DISCONNECTED_MESSAGE",
    "InvalidTransitionError",
    "PlatformType",
    "RECONNECT_FAILED_MESSAGE",
    "RESTART_SETTINGS",
    "ReconfigSession",
    "ReconfigState",
    "ReconfigurationBusyError",
    "ReconfigurationError",
    "ReconfigurationOrchestrator",
    "RestartTimeoutError",
    "SIMULATED_RESTART_SETTINGS",
    "platform_change_fields",
    "requires_restart",
]
