"""Tests for ConfigSyncState dirty tracking and the coalesced save."""

import pytest

from fc_config_sync.core.models import CommitSettings, SetSetting
from fc_config_sync.dispatcher import SettingsBackendDispatcher
from fc_config_sync.sync_state import (
    ConfigDomain,
    ConfigSyncState,
    SavePartialFailure,
    SaveSuccess,
    SaveTransportError,
)


@pytest.fixture
def sync_setup(channel_factory, poller_factory, zero_timing):
    def _create(*, modes_changed=None, **channel_kwargs):
        channel = channel_factory(**channel_kwargs)
        dispatcher = SettingsBackendDispatcher(
            channel, poller=poller_factory(), timing=zero_timing
        )
        state = ConfigSyncState(dispatcher, modes_changed=modes_changed)
        state.register(ConfigDomain.TUNING, lambda: {"rc_rate": 120})
        state.register(ConfigDomain.MODES, lambda: {"mode_angle": 1})
        state.register(ConfigDomain.SAFETY, lambda: {"failsafe_delay": 5})
        return state, channel

    return _create


def _writes(channel):
    return [request.name for request in channel.structured if isinstance(request, SetSetting)]


def _commits(channel):
    return sum(1 for request in channel.structured if isinstance(request, CommitSettings))


@pytest.mark.asyncio
async def test_save_writes_in_order_and_commits_once(sync_setup):
    state, channel = sync_setup()
    state.mark_dirty(ConfigDomain.SAFETY)
    state.mark_dirty(ConfigDomain.TUNING)
    state.mark_dirty(ConfigDomain.MODES)

    outcome = await state.save_all()

    assert isinstance(outcome, SaveSuccess)
    assert _writes(channel) == ["rc_rate", "mode_angle", "failsafe_delay"]
    assert _commits(channel) == 1
    assert isinstance(channel.structured[-1], CommitSettings)
    assert state.is_modified() is False


@pytest.mark.asyncio
async def test_clean_domains_are_skipped(sync_setup):
    state, channel = sync_setup()
    state.mark_dirty(ConfigDomain.SAFETY)

    await state.save_all()

    assert _writes(channel) == ["failsafe_delay"]


@pytest.mark.asyncio
async def test_nothing_dirty_skips_commit(sync_setup):
    state, channel = sync_setup()

    outcome = await state.save_all()

    assert isinstance(outcome, SaveSuccess)
    assert channel.structured == []


@pytest.mark.asyncio
async def test_failed_domain_stops_save_and_keeps_flags(sync_setup):
    state, channel = sync_setup(unsupported_fields={"rc_rate"})
    channel.text_replies["set rc_rate"] = "Invalid setting"
    for domain in ConfigDomain:
        state.mark_dirty(domain)

    outcome = await state.save_all()

    assert isinstance(outcome, SavePartialFailure)
    assert outcome.domain is ConfigDomain.TUNING
    assert outcome.field_name == "rc_rate"
    assert outcome.ok is False
    assert "mode_angle" not in _writes(channel)
    assert "failsafe_delay" not in _writes(channel)
    assert _commits(channel) == 0
    assert all(state.is_dirty(domain) for domain in ConfigDomain)


@pytest.mark.asyncio
async def test_resume_from_skips_earlier_domains(sync_setup):
    state, channel = sync_setup()
    for domain in ConfigDomain:
        state.mark_dirty(domain)

    outcome = await state.save_all(resume_from=ConfigDomain.MODES)

    assert isinstance(outcome, SaveSuccess)
    assert _writes(channel) == ["mode_angle", "failsafe_delay"]
    assert _commits(channel) == 1
    assert state.is_modified() is False


@pytest.mark.asyncio
async def test_transport_error_reports_domain(sync_setup):
    state, channel = sync_setup()
    channel.fail_structured_on = "mode_angle"
    state.mark_dirty(ConfigDomain.TUNING)
    state.mark_dirty(ConfigDomain.MODES)

    outcome = await state.save_all()

    assert isinstance(outcome, SaveTransportError)
    assert outcome.domain is ConfigDomain.MODES
    assert _commits(channel) == 0
    assert state.is_dirty(ConfigDomain.TUNING)


@pytest.mark.asyncio
async def test_commit_failure_is_partial_without_domain(sync_setup):
    state, channel = sync_setup(commit_supported=False)
    channel.text_replies["save"] = "error: eeprom busy"
    state.mark_dirty(ConfigDomain.TUNING)

    outcome = await state.save_all()

    assert isinstance(outcome, SavePartialFailure)
    assert outcome.domain is None
    assert state.is_dirty(ConfigDomain.TUNING)


@pytest.mark.asyncio
async def test_external_modes_predicate_counts_as_dirty(sync_setup):
    changed = {"value": True}
    state, channel = sync_setup(modes_changed=lambda: changed["value"])

    assert state.is_modified() is True
    assert state.dirty_domains() == [ConfigDomain.MODES]

    changed["value"] = False
    assert state.is_modified() is False


def test_clear_and_reset(sync_setup):
    state, _ = sync_setup()
    state.mark_dirty(ConfigDomain.TUNING)
    state.mark_dirty(ConfigDomain.SAFETY)

    state.clear(ConfigDomain.TUNING)
    assert state.dirty_domains() == [ConfigDomain.SAFETY]

    state.reset()
    assert state.is_modified() is False
