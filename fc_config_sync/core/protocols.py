"""Protocol definitions for the collaborators the sync core consumes."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class DeviceChannel(Protocol):
    """Already-open duplex link to the flight controller.

    Transport failures are raised as exceptions (``ConnectionError``,
    ``OSError`` or ``asyncio.TimeoutError``). A request the firmware does not
    implement is not a failure: ``send_structured`` returns
    :data:`~fc_config_sync.core.models.UNSUPPORTED` instead.
    """

    async def send_structured(self, request: Any) -> Any:
        """Send a structured request and return its decoded response."""
        ...

    async def send_text_line(self, line: str) -> str:
        """Write one console line and return the text the firmware echoed back."""
        ...

    async def disconnect(self) -> None:
        """Close the link."""
        ...

    async def reconnect(self, target: str) -> bool:
        """Reopen the link to ``target``; return False when it could not."""
        ...


@runtime_checkable
class TelemetryControl(Protocol):
    """Anything that streams telemetry over the shared channel."""

    def pause(self) -> None:
        """Stop issuing requests until :meth:`resume` is called."""
        ...

    def resume(self) -> None:
        """Restart issuing requests."""
        ...
