"""Settings writes through the structured protocol with a text-console fallback.

Every settings change goes out as a structured request first. When the
firmware answers that it does not implement the request, the same change is
replayed as ``set`` lines on the text console followed by ``save``. The
console shares the channel with telemetry and is not reentrant, so the
telemetry poller is paused for the whole console session and each line is
followed by a fixed settle delay. A console session that does not end in
``save`` is closed with ``exit``, including when a line fails.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import re
from enum import Enum
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
)

from . import constants
from .config import TimingConfig
from .core.models import CommitSettings, GetSetting, Reboot, SetSetting, is_unsupported
from .core.protocols import DeviceChannel, TelemetryControl

LOGGER = logging.getLogger(__name__)

TRANSPORT_ERRORS = (ConnectionError, OSError, asyncio.TimeoutError)

_ASSIGNMENT_RE = re.compile(r"^(?:set\s+)?([A-Za-z0-9_]+)\s*=\s*(.*)$")


class DispatchError(RuntimeError):
    """Raised when a settings request could not be applied."""

    code = "dispatch"

    def __init__(self, message: str, *, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class DispatchUnsupportedError(DispatchError):
    """Neither the structured request nor the console fallback was accepted."""

    code = "unsupported"


class DispatchTransportError(DispatchError):
    """The channel itself failed."""

    code = "transport"


def format_cli_value(value: Any) -> str:
    """Render a Python value the way the firmware console expects it."""
    if isinstance(value, bool):
        return "ON" if value else "OFF"
    if isinstance(value, Enum):
        return value.name
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def cli_reply_failed(reply: str) -> bool:
    return any(marker in reply for marker in constants.CLI_ERROR_MARKERS)


def parse_cli_assignments(text: str) -> Dict[str, str]:
    """Parse ``name = value`` lines from console output (``get`` replies or a dump)."""
    values: Dict[str, str] = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        match = _ASSIGNMENT_RE.match(line)
        if match:
            values[match.group(1)] = match.group(2).strip()
    return values


class SettingsBackendDispatcher:
    """Routes named-field writes to the structured API or the text console.

    One dispatcher exists per connection. All channel traffic it issues is
    serialised by a single lock; other users of the channel (the telemetry
    poller) should take the same lock via :meth:`exclusive`.
    """

    def __init__(
        self,
        channel: DeviceChannel,
        *,
        poller: Optional[TelemetryControl] = None,
        timing: Optional[TimingConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._channel = channel
        self._poller = poller
        self._timing = timing or TimingConfig()
        self._sleep = sleep
        self._lock = asyncio.Lock()

    @property
    def channel(self) -> DeviceChannel:
        return self._channel

    def attach_poller(self, poller: Optional[TelemetryControl]) -> None:
        self._poller = poller

    @contextlib.asynccontextmanager
    async def exclusive(self) -> AsyncIterator[DeviceChannel]:
        """Hold the channel for one request made outside the dispatcher."""
        async with self._lock:
            yield self._channel

    async def set_field(self, name: str, value: Any) -> None:
        """Write one named setting.

        Raises:
            DispatchUnsupportedError: both the structured and console paths refused it.
            DispatchTransportError: the channel failed.
        """
        await self.set_fields({name: value})

    async def set_fields(self, values: Mapping[str, Any]) -> None:
        """Write several settings; all structured refusals share one console session."""
        if not values:
            return

        async with self._lock:
            rejected: Dict[str, Any] = {}
            for name, value in values.items():
                response = await self._structured(SetSetting(name, value), field=name)
                if is_unsupported(response):
                    rejected[name] = value

            if not rejected:
                LOGGER.debug("Wrote %d setting(s) via structured API", len(values))
                return

            LOGGER.info(
                "Structured settings not supported for %s, falling back to text console",
                ", ".join(rejected),
            )
            commands: List[Tuple[str, Optional[str]]] = [
                (f"set {name} = {format_cli_value(value)}", name)
                for name, value in rejected.items()
            ]
            commands.append((constants.CLI_SAVE, constants.CLI_SAVE))
            await self._run_console(commands)
            LOGGER.info("Wrote %d setting(s) via text console", len(rejected))

    async def read_fields(self, names: Iterable[str]) -> Dict[str, Any]:
        """Read settings by name. Settings neither path could read come back as None."""
        names = list(names)
        async with self._lock:
            values: Dict[str, Any] = {}
            missing: List[str] = []
            for name in names:
                response = await self._structured(GetSetting(name), field=name)
                if is_unsupported(response):
                    missing.append(name)
                else:
                    values[name] = response

            if missing:
                LOGGER.info(
                    "Structured reads not supported for %d setting(s), using text console",
                    len(missing),
                )
                replies = await self._run_console(
                    [(f"get {name}", name) for name in missing], strict=False
                )
                parsed = parse_cli_assignments("\n".join(replies))
                for name in missing:
                    values[name] = parsed.get(name)

        return {name: values.get(name) for name in names}

    async def commit(self) -> None:
        """Persist the firmware's in-memory configuration."""
        async with self._lock:
            response = await self._structured(CommitSettings(), field=constants.CLI_SAVE)
            if is_unsupported(response):
                LOGGER.info("Structured commit not supported, using text console")
                await self._run_console([(constants.CLI_SAVE, constants.CLI_SAVE)])
            LOGGER.info("Configuration committed to persistent storage")

    async def reboot(self) -> None:
        """Ask the firmware to restart without waiting for it to come back."""
        async with self._lock:
            try:
                response = await self._channel.send_structured(Reboot())
            except TRANSPORT_ERRORS as exc:
                # The device may drop the link as soon as it accepts the reboot.
                LOGGER.debug("Link closed while requesting reboot: %s", exc)
                return
            if is_unsupported(response):
                raise DispatchUnsupportedError(
                    "Firmware does not accept reboot requests", field=None
                )
            LOGGER.info("Reboot requested")

    async def _structured(self, request: Any, *, field: Optional[str]) -> Any:
        try:
            return await self._channel.send_structured(request)
        except TRANSPORT_ERRORS as exc:
            raise DispatchTransportError(
                f"Channel failed during {type(request).__name__}: {exc}", field=field
            ) from exc

    async def _send_line(self, line: str, *, field: Optional[str]) -> str:
        try:
            reply = await self._channel.send_text_line(line)
        except TRANSPORT_ERRORS as exc:
            raise DispatchTransportError(
                f"Channel failed while sending '{line}': {exc}", field=field
            ) from exc
        return reply or ""

    async def _run_console(
        self, commands: Sequence[Tuple[str, Optional[str]]], *, strict: bool = True
    ) -> List[str]:
        """Run console lines with telemetry paused for the whole session."""
        replies: List[str] = []
        if self._poller is not None:
            self._poller.pause()
        try:
            await self._sleep(self._timing.telemetry_pause_seconds)
            await self._send_line(constants.CLI_ENTER, field=None)
            await self._sleep(self._timing.cli_entry_seconds)

            for line, field_name in commands:
                reply = await self._send_line(line, field=field_name)
                await self._sleep(self._timing.cli_settle_seconds)
                if strict and cli_reply_failed(reply):
                    first_line = reply.strip().splitlines()[0] if reply.strip() else ""
                    LOGGER.warning("Text console rejected '%s': %s", line, first_line)
                    raise DispatchUnsupportedError(
                        f"Text console rejected '{line}': {first_line}",
                        field=field_name,
                    )
                replies.append(reply)
        except Exception:
            await self._exit_console(quiet=True)
            raise
        else:
            if not commands or commands[-1][0] != constants.CLI_SAVE:
                await self._exit_console(quiet=False)
        finally:
            if self._poller is not None:
                self._poller.resume()
        return replies

    async def _exit_console(self, *, quiet: bool) -> None:
        # `save` reboots out of the console on its own; anything else must leave it
        # explicitly before telemetry frames are sent again.
        try:
            await self._send_line(constants.CLI_EXIT, field=None)
        except DispatchTransportError as exc:
            if not quiet:
                raise
            LOGGER.debug("Could not leave the text console: %s", exc)
            return
        await self._sleep(self._timing.cli_exit_seconds)


__all__ = [
    "DispatchError",
    "DispatchTransportError",
    "DispatchUnsupportedError",
    "SettingsBackendDispatcher",
    "cli_reply_failed",
    "format_cli_value",
    "parse_cli_assignments",
]
