"""Per-domain dirty tracking and the coalesced save.

One :class:`ConfigSyncState` is owned by a connection session. Editors mark
their domain dirty; :meth:`ConfigSyncState.save_all` writes the dirty domains
in a fixed order through the settings dispatcher and finishes with a single
commit, because firmware serialises commits and each one is slow.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Union

from .dispatcher import DispatchError, DispatchTransportError, SettingsBackendDispatcher

LOGGER = logging.getLogger(__name__)


class ConfigDomain(str, Enum):
    """Independently tracked configuration areas, in save order."""

    TUNING = "tuning"
    MODES = "modes"
    SAFETY = "safety"


DOMAIN_ORDER: tuple[ConfigDomain, ...] = tuple(ConfigDomain)


@dataclass(frozen=True, slots=True)
class SaveSuccess:
    ok = True


@dataclass(frozen=True, slots=True)
class SavePartialFailure:
    """A domain failed; it and every later domain were left unsaved.

    ``domain`` is None when every domain was written but the final commit
    failed.
    """

    domain: Optional[ConfigDomain]
    field_name: Optional[str]
    message: str
    ok = False


@dataclass(frozen=True, slots=True)
class SaveTransportError:
    message: str
    domain: Optional[ConfigDomain] = None
    ok = False


SaveOutcome = Union[SaveSuccess, SavePartialFailure, SaveTransportError]

FieldProvider = Callable[[], Mapping[str, Any]]


class ConfigSyncState:
    """Dirty flags for each :class:`ConfigDomain` plus the save pipeline."""

    def __init__(
        self,
        dispatcher: SettingsBackendDispatcher,
        *,
        modes_changed: Optional[Callable[[], bool]] = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._modes_changed = modes_changed or (lambda: False)
        self._dirty: Dict[ConfigDomain, bool] = {domain: False for domain in DOMAIN_ORDER}
        self._providers: Dict[ConfigDomain, FieldProvider] = {}

    def register(self, domain: ConfigDomain, provider: FieldProvider) -> None:
        """Set the callable returning the setting values to write for ``domain``."""
        self._providers[domain] = provider

    def mark_dirty(self, domain: ConfigDomain) -> None:
        self._dirty[domain] = True

    def clear(self, domain: ConfigDomain) -> None:
        self._dirty[domain] = False

    def reset(self) -> None:
        for domain in DOMAIN_ORDER:
            self._dirty[domain] = False

    def is_dirty(self, domain: ConfigDomain) -> bool:
        if domain is ConfigDomain.MODES and self._modes_changed():
            return True
        return self._dirty[domain]

    def is_modified(self) -> bool:
        return any(self._dirty.values()) or bool(self._modes_changed())

    def dirty_domains(self) -> list[ConfigDomain]:
        return [domain for domain in DOMAIN_ORDER if self.is_dirty(domain)]

    async def save_all(self, *, resume_from: Optional[ConfigDomain] = None) -> SaveOutcome:
        """Write every dirty domain in order, then commit once.

        Stops at the first failing domain. Dirty flags are cleared only when
        every domain and the commit succeeded. ``resume_from`` skips domains
        ordered before it, for retrying after a partial failure.
        """
        pending = self.dirty_domains()
        if resume_from is not None:
            start = DOMAIN_ORDER.index(resume_from)
            pending = [domain for domain in pending if DOMAIN_ORDER.index(domain) >= start]

        if not pending:
            LOGGER.debug("Nothing to save")
            return SaveSuccess()

        for domain in pending:
            provider = self._providers.get(domain)
            values = dict(provider()) if provider is not None else {}
            LOGGER.info("Saving %s (%d setting(s))", domain.value, len(values))
            try:
                await self._dispatcher.set_fields(values)
            except DispatchTransportError as exc:
                LOGGER.error("Transport failure while saving %s: %s", domain.value, exc)
                return SaveTransportError(message=str(exc), domain=domain)
            except DispatchError as exc:
                LOGGER.warning("Saving %s failed at %s: %s", domain.value, exc.field, exc)
                return SavePartialFailure(
                    domain=domain, field_name=exc.field, message=str(exc)
                )

        try:
            await self._dispatcher.commit()
        except DispatchTransportError as exc:
            LOGGER.error("Transport failure during commit: %s", exc)
            return SaveTransportError(message=str(exc))
        except DispatchError as exc:
            LOGGER.warning("Commit failed: %s", exc)
            return SavePartialFailure(domain=None, field_name=exc.field, message=str(exc))

        self.reset()
        LOGGER.info("Saved %s", ", ".join(domain.value for domain in pending))
        return SaveSuccess()


__all__ = [
    "ConfigDomain",
    "ConfigSyncState",
    "DOMAIN_ORDER",
    "SaveOutcome",
    "SavePartialFailure",
    "SaveSuccess",
    "SaveTransportError",
]
