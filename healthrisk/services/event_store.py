"""
Read-only access to persisted checks and health events.

The stacking detector depends on the EventStore protocol only; the real
store (a hosted database) lives outside this package. InMemoryEventStore
backs replay tooling and tests.
"""

from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Protocol

import structlog

from healthrisk.domain.models import CheckRecord, HealthEventRecord
from healthrisk.services.result import Result

logger = structlog.get_logger(__name__)


class EventStore(Protocol):
    """
    Protocol for the two queries the stacking detector issues.

    Expected failures (store unreachable, query rejected) come back as
    ``Result.err`` rather than exceptions.
    """

    async def fetch_checks(
        self, profile_id: str, since: datetime
    ) -> Result[list[CheckRecord], Exception]:
        """Checks for a profile with ``created_at >= since``, oldest first."""
        ...

    async def fetch_health_events(
        self, check_ids: Sequence[str]
    ) -> Result[list[HealthEventRecord], Exception]:
        """All health events whose ``check_id`` is in ``check_ids``."""
        ...


class InMemoryEventStore:
    """EventStore over in-memory rows, with the same filtering and ordering rules."""

    def __init__(
        self,
        checks: Iterable[CheckRecord] = (),
        events: Iterable[HealthEventRecord] = (),
    ) -> None:
        self.checks: list[CheckRecord] = list(checks)
        self.events: list[HealthEventRecord] = list(events)
        self.logger = logger.bind(component="in_memory_event_store")

    def add_check(self, check: CheckRecord, events: Iterable[HealthEventRecord] = ()) -> None:
        self.checks.append(check)
        self.events.extend(events)

    async def fetch_checks(
        self, profile_id: str, since: datetime
    ) -> Result[list[CheckRecord], Exception]:
        rows = [c for c in self.checks if c.profile_id == profile_id and c.created_at >= since]
        rows.sort(key=lambda c: c.created_at)
        self.logger.debug("checks_fetched", profile_id=profile_id, count=len(rows))
        return Result.ok(rows)

    async def fetch_health_events(
        self, check_ids: Sequence[str]
    ) -> Result[list[HealthEventRecord], Exception]:
        wanted = set(check_ids)
        rows = [e for e in self.events if e.check_id in wanted]
        self.logger.debug("health_events_fetched", check_count=len(wanted), count=len(rows))
        return Result.ok(rows)
