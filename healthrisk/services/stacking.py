"""
Functional stacking detection.

Flags a check whenever two or more distinct ingestibles in it belong to the
same functional class (e.g. ibuprofen + naproxen, both NSAIDs). Emits
deterministic ``functional_stacking`` insights for the downstream feed,
which merges, scores and ranks them.

Matching scope:
- medication events -> event_data.medication
- supplement events -> event_data.supplement, else event_data.name
- meal events and everything else -> ignored

Stacking is co-occurrence within one check. Items from different checks in
the same window are never combined.
"""

from collections.abc import Awaitable, Callable, Mapping, Sequence
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog

from healthrisk.config import AppConfig, get_config
from healthrisk.domain.models import (
    CheckRecord,
    EventType,
    HealthEventRecord,
    StackingInsight,
    StackingMeta,
)
from healthrisk.errors import StoreQueryError
from healthrisk.services.event_store import EventStore
from healthrisk.services.matcher import TaxonomyMatcher, normalize_term
from healthrisk.services.result import Result

logger = structlog.get_logger(__name__)

MIN_DISTINCT_ITEMS = 2


def utc_now() -> datetime:
    return datetime.now(UTC)


def extract_ingestible_name(event_type: str, event_data: Mapping[str, Any]) -> str | None:
    """Display name of the ingestible an event refers to, or None for non-ingestibles."""
    if event_type == EventType.MEDICATION.value:
        keys: tuple[str, ...] = ("medication",)
    elif event_type == EventType.SUPPLEMENT.value:
        keys = ("supplement", "name")
    else:
        return None

    for key in keys:
        value = event_data.get(key)
        if value is not None and str(value).strip():
            return str(value)
    return None


def insight_fingerprint(
    insight_type: str, priority_hints: Mapping[str, Any], supporting_events: Sequence[str]
) -> str:
    """
    Stable identity of an insight across feed calls.

    ``<type>:<triggerValue>:<symptomValue>:<sorted check ids>``, lowercased
    and trimmed. Score and wording changes do not affect it.
    """

    def _part(value: Any) -> str:
        return str(value if value is not None else "").lower().strip()

    events = ",".join(sorted(supporting_events))
    return (
        f"{_part(insight_type)}:{_part(priority_hints.get('triggerValue'))}:"
        f"{_part(priority_hints.get('symptomValue'))}:{events}"
    )


class FunctionalStackingDetector:
    """
    Detects functional stacking over a profile's recent checks.

    The only component that performs I/O: two sequential read-only queries
    per call (checks, then their events). No retries and no timeout here;
    callers wrap ``detect`` with their own policy.
    """

    def __init__(
        self,
        store: EventStore,
        matcher: TaxonomyMatcher,
        clock: Callable[[], datetime] = utc_now,
        config: AppConfig | None = None,
    ) -> None:
        self.store = store
        self.matcher = matcher
        self.clock = clock
        self.window_hours = (config or get_config()).stacking.window_hours
        self.logger = logger.bind(component="functional_stacking_detector")

    async def detect(
        self, profile_id: str, window_hours: float | None = None
    ) -> list[StackingInsight]:
        """
        Stacking insights for checks created within the last ``window_hours``.

        The window defaults to the configured ``stacking.window_hours``.

        Raises:
            StoreQueryError: if either store query fails, naming which one.
        """
        if window_hours is None:
            window_hours = self.window_hours
        cutoff = self.cutoff_for(window_hours)

        checks = await self._run_query(
            "checks", lambda: self.store.fetch_checks(profile_id, cutoff)
        )
        if not checks:
            self.logger.debug("no_checks_in_window", profile_id=profile_id)
            return []

        check_ids = [check.id for check in checks]
        events = await self._run_query(
            "health_events", lambda: self.store.fetch_health_events(check_ids)
        )
        if not events:
            self.logger.debug("no_events_for_checks", profile_id=profile_id, checks=len(checks))
            return []

        insights = self.detect_in_checks(checks, events)
        self.logger.info(
            "stacking_detected",
            profile_id=profile_id,
            window_hours=window_hours,
            checks=len(checks),
            events=len(events),
            insights=len(insights),
        )
        return insights

    def cutoff_for(self, window_hours: float) -> datetime:
        """Oldest creation time inside the window; clamped to the earliest datetime."""
        now = self.clock()
        try:
            return now - timedelta(hours=window_hours)
        except OverflowError:
            return datetime.min.replace(tzinfo=now.tzinfo or UTC)

    async def _run_query(
        self, query: str, fetch: Callable[[], Awaitable[Result[list[Any], Exception]]]
    ) -> list[Any]:
        try:
            result = await fetch()
        except Exception as e:
            self.logger.error("store_query_failed", query=query, error=str(e))
            raise StoreQueryError(query, e) from e

        if result.is_err():
            error = result.unwrap_err()
            self.logger.error("store_query_failed", query=query, error=str(error))
            raise StoreQueryError(query, error) from error
        return result.unwrap()

    def detect_in_checks(
        self, checks: Sequence[CheckRecord], events: Sequence[HealthEventRecord]
    ) -> list[StackingInsight]:
        """Pure part of detection: group by check and apply the stacking rule."""
        events_by_check: dict[str, list[HealthEventRecord]] = {}
        for event in events:
            events_by_check.setdefault(event.check_id, []).append(event)

        insights: list[StackingInsight] = []
        for check in checks:
            check_events = events_by_check.get(check.id)
            if not check_events:
                continue
            insights.extend(self._insights_for_check(check.id, check_events))
        return insights

    def _insights_for_check(
        self, check_id: str, events: Sequence[HealthEventRecord]
    ) -> list[StackingInsight]:
        # class key -> normalized name -> first display name seen
        class_items: dict[str, dict[str, str]] = {}

        for event in events:
            name = extract_ingestible_name(event.event_type, event.event_data)
            if name is None:
                continue
            for class_key in sorted(self.matcher.match_functional_classes(name)):
                class_items.setdefault(class_key, {}).setdefault(normalize_term(name), name)

        insights = []
        for class_key, items_by_norm in class_items.items():
            if len(items_by_norm) < MIN_DISTINCT_ITEMS:
                continue
            insights.append(self._build_insight(check_id, class_key, list(items_by_norm.values())))
        return insights

    def _build_insight(self, check_id: str, class_key: str, items: list[str]) -> StackingInsight:
        label = self.matcher.class_label(class_key)
        example_a, example_b = items[0], items[1]

        return StackingInsight(
            label=f"Functional Stack Detected: {label}",
            description=(
                f"Multiple items with {label} properties taken together "
                f"(e.g., {example_a} + {example_b})."
            ),
            supporting_events=[check_id],
            supporting_event_count=1,
            meta=StackingMeta(class_key=class_key, items=items),
            priority_hints={"classKey": class_key, "items": list(items)},
            why_included=[f"functional_stack_{class_key}_{len(items)}_items"],
        )
