import asyncio
from typing import Any, Dict, Iterable, Optional

import pytest

from fc_config_sync.config import TimingConfig
from fc_config_sync.core.models import (
    UNSUPPORTED,
    CommitSettings,
    GetSetting,
    Reboot,
    SetSetting,
)


class FakeChannel:
    """In-memory flight controller that records every request it sees."""

    def __init__(
        self,
        *,
        settings: Optional[Dict[str, Any]] = None,
        unsupported_fields: Iterable[str] = (),
        commit_supported: bool = True,
        events: Optional[list] = None,
    ):
        self.settings: Dict[str, Any] = dict(settings or {})
        self.unsupported_fields = set(unsupported_fields)
        self.commit_supported = commit_supported
        self.reboot_supported = True
        self.events = events if events is not None else []
        self.structured: list = []
        self.lines: list[str] = []
        self.text_replies: Dict[str, str] = {}
        self.fail_structured_on: Optional[str] = None
        self.fail_reboot_with: Optional[BaseException] = None
        self.reconnect_results: list[bool] = []
        self.reconnect_calls = 0
        self.reconnect_delay = 0.0
        self.reconnect_error: Optional[BaseException] = None
        self.disconnect_calls = 0

    async def send_structured(self, request: Any) -> Any:
        self.structured.append(request)
        self.events.append(("structured", request))
        name = getattr(request, "name", None)
        if self.fail_structured_on is not None and name == self.fail_structured_on:
            raise ConnectionError("link lost")

        if isinstance(request, SetSetting):
            if name in self.unsupported_fields:
                return UNSUPPORTED
            self.settings[name] = request.value
            return None
        if isinstance(request, GetSetting):
            if name in self.unsupported_fields:
                return UNSUPPORTED
            return self.settings.get(name)
        if isinstance(request, CommitSettings):
            return None if self.commit_supported else UNSUPPORTED
        if isinstance(request, Reboot):
            if self.fail_reboot_with is not None:
                raise self.fail_reboot_with
            return None if self.reboot_supported else UNSUPPORTED
        return UNSUPPORTED

    async def send_text_line(self, line: str) -> str:
        self.lines.append(line)
        self.events.append(("text", line))
        for prefix, reply in self.text_replies.items():
            if line.startswith(prefix):
                return reply
        if line.startswith("set "):
            name, _, value = line[4:].partition("=")
            self.settings[name.strip()] = value.strip()
            return ""
        if line.startswith("get "):
            name = line[4:].strip()
            if name in self.settings:
                return f"{name} = {self.settings[name]}"
            return f"Invalid name: {name}"
        return ""

    async def disconnect(self) -> None:
        self.disconnect_calls += 1

    async def reconnect(self, target: str) -> bool:
        self.reconnect_calls += 1
        if self.reconnect_delay:
            await asyncio.sleep(self.reconnect_delay)
        if self.reconnect_error is not None:
            raise self.reconnect_error
        if self.reconnect_results:
            return self.reconnect_results.pop(0)
        return True


class FakePoller:
    def __init__(self, events: Optional[list] = None):
        self.events = events if events is not None else []
        self.pause_calls = 0
        self.resume_calls = 0

    def pause(self) -> None:
        self.pause_calls += 1
        self.events.append(("pause",))

    def resume(self) -> None:
        self.resume_calls += 1
        self.events.append(("resume",))


@pytest.fixture
def zero_timing() -> TimingConfig:
    return TimingConfig(
        cli_entry_seconds=0.0,
        cli_settle_seconds=0.0,
        cli_exit_seconds=0.0,
        telemetry_pause_seconds=0.0,
        commit_settle_seconds=0.0,
        reboot_grace_seconds=0.0,
        reconnect_attempts=3,
        reconnect_interval_seconds=0.0,
        reconnect_attempt_timeout_seconds=1.0,
    )


@pytest.fixture
def channel_factory():
    def _create(**kwargs) -> FakeChannel:
        return FakeChannel(**kwargs)

    return _create


@pytest.fixture
def poller_factory():
    def _create(events: Optional[list] = None) -> FakePoller:
        return FakePoller(events)

    return _create
