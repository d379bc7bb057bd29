"""Tests for SettingsBackendDispatcher."""

import enum

import pytest

from fc_config_sync.core.models import CommitSettings, Reboot, SetSetting
from fc_config_sync.dispatcher import (
    DispatchTransportError,
    DispatchUnsupportedError,
    SettingsBackendDispatcher,
    format_cli_value,
    parse_cli_assignments,
)


@pytest.fixture
def dispatcher_setup(channel_factory, poller_factory, zero_timing):
    def _create(**channel_kwargs):
        events: list = []
        channel = channel_factory(events=events, **channel_kwargs)
        poller = poller_factory(events)
        dispatcher = SettingsBackendDispatcher(channel, poller=poller, timing=zero_timing)
        return dispatcher, channel, poller, events

    return _create


@pytest.mark.asyncio
async def test_structured_write_does_not_touch_console(dispatcher_setup):
    dispatcher, channel, poller, _ = dispatcher_setup()

    await dispatcher.set_field("rc_rate", 120)

    assert channel.settings["rc_rate"] == 120
    assert channel.lines == []
    assert poller.pause_calls == 0
    assert poller.resume_calls == 0


@pytest.mark.asyncio
async def test_unsupported_write_falls_back_to_console(dispatcher_setup):
    dispatcher, channel, poller, events = dispatcher_setup(unsupported_fields={"rc_rate"})

    await dispatcher.set_field("rc_rate", 120)

    assert channel.lines == ["#", "set rc_rate = 120", "save"]
    assert poller.pause_calls == 1
    assert poller.resume_calls == 1

    kinds = [event[0] for event in events]
    assert kinds.index("pause") < kinds.index("text")
    assert len(kinds) - 1 - kinds[::-1].index("text") < kinds.index("resume")
    assert kinds[-1] == "resume"


@pytest.mark.asyncio
async def test_batch_fallback_uses_one_console_session(dispatcher_setup):
    dispatcher, channel, poller, _ = dispatcher_setup(
        unsupported_fields={"failsafe_delay", "failsafe_procedure"}
    )

    await dispatcher.set_fields(
        {"failsafe_delay": 5, "rc_rate": 100, "failsafe_procedure": "RTH"}
    )

    assert channel.settings["rc_rate"] == 100
    assert channel.lines == [
        "#",
        "set failsafe_delay = 5",
        "set failsafe_procedure = RTH",
        "save",
    ]
    assert poller.pause_calls == 1


@pytest.mark.asyncio
async def test_console_rejection_raises_with_field(dispatcher_setup):
    dispatcher, channel, poller, _ = dispatcher_setup(unsupported_fields={"bogus"})
    channel.text_replies["set bogus"] = "Invalid name"

    with pytest.raises(DispatchUnsupportedError) as excinfo:
        await dispatcher.set_field("bogus", 1)

    assert excinfo.value.field == "bogus"
    assert excinfo.value.code == "unsupported"
    assert "save" not in channel.lines
    assert poller.resume_calls == 1


@pytest.mark.asyncio
async def test_transport_error_is_not_retried_on_console(dispatcher_setup):
    dispatcher, channel, poller, _ = dispatcher_setup()
    channel.fail_structured_on = "rc_rate"

    with pytest.raises(DispatchTransportError) as excinfo:
        await dispatcher.set_field("rc_rate", 120)

    assert excinfo.value.field == "rc_rate"
    assert channel.lines == []
    assert poller.pause_calls == 0


@pytest.mark.asyncio
async def test_commit_prefers_structured(dispatcher_setup):
    dispatcher, channel, _, _ = dispatcher_setup()

    await dispatcher.commit()

    assert isinstance(channel.structured[-1], CommitSettings)
    assert channel.lines == []


@pytest.mark.asyncio
async def test_commit_falls_back_to_console_save(dispatcher_setup):
    dispatcher, channel, poller, _ = dispatcher_setup(commit_supported=False)

    await dispatcher.commit()

    assert channel.lines == ["#", "save"]
    assert poller.pause_calls == 1


@pytest.mark.asyncio
async def test_read_fields_mixes_structured_and_console(dispatcher_setup):
    dispatcher, channel, _, _ = dispatcher_setup(
        settings={"rc_rate": 110, "roll_pitch_rate": 70},
        unsupported_fields={"roll_pitch_rate", "roll_rate"},
    )

    values = await dispatcher.read_fields(["rc_rate", "roll_pitch_rate", "roll_rate"])

    assert values == {"rc_rate": 110, "roll_pitch_rate": "70", "roll_rate": None}
    assert channel.lines == ["#", "get roll_pitch_rate", "get roll_rate", "exit"]



@pytest.mark.asyncio
async def test_console_read_exits_before_resuming_telemetry(dispatcher_setup):
    dispatcher, channel, _, events = dispatcher_setup(
        settings={"roll_pitch_rate": 70}, unsupported_fields={"roll_pitch_rate"}
    )

    await dispatcher.read_fields(["roll_pitch_rate"])

    assert events[-2:] == [("text", "exit"), ("resume",)]


@pytest.mark.asyncio
async def test_rejected_console_write_still_exits(dispatcher_setup):
    dispatcher, channel, _, events = dispatcher_setup(unsupported_fields={"bogus"})
    channel.text_replies["set bogus"] = "Invalid name"

    with pytest.raises(DispatchUnsupportedError):
        await dispatcher.set_field("bogus", 1)

    assert channel.lines == ["#", "set bogus = 1", "exit"]
    assert events[-2:] == [("text", "exit"), ("resume",)]


@pytest.mark.asyncio
async def test_console_write_ending_in_save_does_not_exit(dispatcher_setup):
    dispatcher, channel, _, _ = dispatcher_setup(unsupported_fields={"rc_rate"})

    await dispatcher.set_field("rc_rate", 120)
    await dispatcher.commit()

    assert "exit" not in channel.lines

@pytest.mark.asyncio
async def test_reboot_tolerates_dropped_link(dispatcher_setup):
    dispatcher, channel, _, _ = dispatcher_setup()
    channel.fail_reboot_with = ConnectionError("reset by peer")

    await dispatcher.reboot()

    assert isinstance(channel.structured[-1], Reboot)


@pytest.mark.asyncio
async def test_reboot_unsupported_raises(dispatcher_setup):
    dispatcher, channel, _, _ = dispatcher_setup()
    channel.reboot_supported = False

    with pytest.raises(DispatchUnsupportedError):
        await dispatcher.reboot()


@pytest.mark.asyncio
async def test_set_fields_with_nothing_is_noop(dispatcher_setup):
    dispatcher, channel, _, _ = dispatcher_setup()

    await dispatcher.set_fields({})

    assert channel.structured == []


@pytest.mark.asyncio
async def test_exclusive_yields_channel(dispatcher_setup):
    dispatcher, channel, _, _ = dispatcher_setup()

    async with dispatcher.exclusive() as held:
        assert held is channel
        await held.send_structured(SetSetting("rc_rate", 90))

    assert channel.settings["rc_rate"] == 90


class _Procedure(enum.Enum):
    DROP = 0
    RTH = 1


def test_format_cli_value():
    assert format_cli_value(True) == "ON"
    assert format_cli_value(False) == "OFF"
    assert format_cli_value(_Procedure.RTH) == "RTH"
    assert format_cli_value(5.0) == "5"
    assert format_cli_value(0.25) == "0.25"
    assert format_cli_value(7) == "7"


def test_parse_cli_assignments():
    text = "# dump\nset rc_rate = 110\nroll_rate = 70\n\nsome banner\n"
    assert parse_cli_assignments(text) == {"rc_rate": "110", "roll_rate": "70"}
