"""Periodic telemetry polling over the shared device channel.

The poller is the default owner of the channel between configuration
operations. It has to stop issuing requests whenever the text console is in
use, so it exposes :meth:`TelemetryPoller.pause` and
:meth:`TelemetryPoller.resume`; pauses nest, and polling restarts only when
every pause has been matched by a resume.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, AsyncContextManager, Awaitable, Callable, Optional

LOGGER = logging.getLogger(__name__)

_SKIPPED = object()


class TelemetryPoller:
    """Runs one fetch per interval and hands each payload to a sink."""

    def __init__(
        self,
        *,
        fetch: Callable[[], Awaitable[Any]],
        sink: Callable[[Any], Awaitable[None] | None],
        interval_seconds: float,
        exclusive: Optional[Callable[[], AsyncContextManager[Any]]] = None,
    ) -> None:
        """Initialize the poller.

        Args:
            fetch: Async function returning one telemetry payload.
            sink: Called with every payload; may be sync or async.
            interval_seconds: Seconds between polls.
            exclusive: Optional factory for a context that serialises channel
                access with other users, typically ``dispatcher.exclusive``.
        """
        self._fetch = fetch
        self._sink = sink
        self._interval = max(interval_seconds, 0.01)
        self._exclusive = exclusive
        self._pause_depth = 0
        self._running = asyncio.Event()
        self._running.set()
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task[None]] = None
        self._failures = 0

    @property
    def paused(self) -> bool:
        return self._pause_depth > 0

    @property
    def failures(self) -> int:
        return self._failures

    def pause(self) -> None:
        self._pause_depth += 1
        if self._pause_depth == 1:
            LOGGER.debug("Telemetry polling paused")
        self._running.clear()

    def resume(self) -> None:
        if self._pause_depth == 0:
            LOGGER.warning("Telemetry resume without matching pause")
            return
        self._pause_depth -= 1
        if self._pause_depth == 0:
            LOGGER.debug("Telemetry polling resumed")
            self._running.set()

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._poll_loop())

    async def stop(self) -> None:
        self._stop_event.set()
        self._running.set()  # wake a paused loop so it can exit
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _poll_once(self) -> Any:
        if self._exclusive is None:
            return await self._fetch()
        async with self._exclusive():
            if self.paused:
                return _SKIPPED
            return await self._fetch()

    async def _poll_loop(self) -> None:
        while not self._stop_event.is_set():
            await self._running.wait()
            if self._stop_event.is_set():
                break

            try:
                payload = await self._poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._failures += 1
                LOGGER.debug("Telemetry poll failed: %s", exc)
            else:
                # The console may have taken over while the fetch was queued.
                if payload is not _SKIPPED and not self.paused:
                    result = self._sink(payload)
                    if asyncio.iscoroutine(result):
                        await result

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
                break
            except asyncio.TimeoutError:
                continue
