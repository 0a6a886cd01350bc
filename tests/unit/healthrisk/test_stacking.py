"""
Tests for functional stacking detection in `healthrisk/services/stacking.py`.

Covers:
- End-to-end stacking of two NSAIDs in one check
- Distinct-item threshold and per-check grouping
- Ingestible name extraction per event type
- Window cutoff passed to the store (explicit, configured, clamped)
- Store failures naming the failed query (err results and raised exceptions)
- Insight fingerprints
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

import pytest

from healthrisk.config import AppConfig, StackingConfig, get_config
from healthrisk.domain.models import CheckRecord, HealthEventRecord
from healthrisk.errors import StoreQueryError
from healthrisk.knowledge.store import KnowledgeStore
from healthrisk.services.event_store import InMemoryEventStore
from healthrisk.services.matcher import TaxonomyMatcher
from healthrisk.services.result import Result
from healthrisk.services.stacking import (
    FunctionalStackingDetector,
    extract_ingestible_name,
    insight_fingerprint,
)

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)
PROFILE_ID = "profile-1"


@pytest.fixture(scope="module")
def matcher() -> TaxonomyMatcher:
    return TaxonomyMatcher(KnowledgeStore.default())


def med(check_id: str, name: str) -> HealthEventRecord:
    return HealthEventRecord(
        check_id=check_id, event_type="medication", event_data={"medication": name}
    )


def supplement(check_id: str, name: str, key: str = "supplement") -> HealthEventRecord:
    return HealthEventRecord(check_id=check_id, event_type="supplement", event_data={key: name})


def check(check_id: str, hours_ago: float = 1.0, profile_id: str = PROFILE_ID) -> CheckRecord:
    return CheckRecord(
        id=check_id, profile_id=profile_id, created_at=NOW - timedelta(hours=hours_ago)
    )


def detector_for(
    store: object, matcher: TaxonomyMatcher, config: AppConfig | None = None
) -> FunctionalStackingDetector:
    return FunctionalStackingDetector(  # type: ignore[arg-type]
        store, matcher, clock=lambda: NOW, config=config or AppConfig()
    )


class TestDetection:
    async def test_two_nsaids_in_one_check(self, matcher: TaxonomyMatcher) -> None:
        store = InMemoryEventStore()
        store.add_check(check("c1"), [med("c1", "ibuprofen"), supplement("c1", "naproxen")])

        insights = await detector_for(store, matcher).detect(PROFILE_ID)

        assert len(insights) == 1
        insight = insights[0]
        assert insight.type == "functional_stacking"
        assert insight.meta.items == ["ibuprofen", "naproxen"]
        assert insight.meta.class_key == "nsaids"
        assert insight.meta.matched_by == "registry"
        assert insight.supporting_events == ["c1"]
        assert insight.supporting_event_count == 1
        assert insight.label == "Functional Stack Detected: NSAID"
        assert insight.description == (
            "Multiple items with NSAID properties taken together (e.g., ibuprofen + naproxen)."
        )
        assert insight.why_included == ["functional_stack_nsaids_2_items"]
        assert insight.score is None

    async def test_brand_and_generic_are_distinct_items(self, matcher: TaxonomyMatcher) -> None:
        store = InMemoryEventStore()
        store.add_check(check("c1"), [med("c1", "Advil"), med("c1", "Aleve")])

        insights = await detector_for(store, matcher).detect(PROFILE_ID)

        assert [i.meta.items for i in insights] == [["Advil", "Aleve"]]

    async def test_same_item_twice_does_not_stack(self, matcher: TaxonomyMatcher) -> None:
        store = InMemoryEventStore()
        store.add_check(check("c1"), [med("c1", "Ibuprofen"), med("c1", " ibuprofen ")])

        insights = await detector_for(store, matcher).detect(PROFILE_ID)

        assert insights == []

    async def test_items_in_different_checks_do_not_stack(self, matcher: TaxonomyMatcher) -> None:
        store = InMemoryEventStore()
        store.add_check(check("c1", hours_ago=2), [med("c1", "ibuprofen")])
        store.add_check(check("c2", hours_ago=1), [med("c2", "naproxen")])

        insights = await detector_for(store, matcher).detect(PROFILE_ID)

        assert insights == []

    async def test_meals_are_ignored(self, matcher: TaxonomyMatcher) -> None:
        store = InMemoryEventStore()
        store.add_check(
            check("c1"),
            [
                med("c1", "ibuprofen"),
                HealthEventRecord(
                    check_id="c1", event_type="meal", event_data={"meal": "naproxen"}
                ),
            ],
        )

        insights = await detector_for(store, matcher).detect(PROFILE_ID)

        assert insights == []

    async def test_checks_outside_window_are_skipped(self, matcher: TaxonomyMatcher) -> None:
        store = InMemoryEventStore()
        store.add_check(check("old", hours_ago=72), [med("old", "warfarin"), med("old", "aspirin")])
        store.add_check(check("new", hours_ago=1), [med("new", "warfarin"), med("new", "eliquis")])

        insights = await detector_for(store, matcher).detect(PROFILE_ID, window_hours=48)

        assert [i.supporting_events for i in insights] == [["new"]]

    async def test_other_profiles_are_ignored(self, matcher: TaxonomyMatcher) -> None:
        store = InMemoryEventStore()
        store.add_check(
            check("c1", profile_id="someone-else"),
            [med("c1", "ibuprofen"), med("c1", "naproxen")],
        )

        insights = await detector_for(store, matcher).detect(PROFILE_ID)

        assert insights == []

    async def test_one_insight_per_check_and_class(self, matcher: TaxonomyMatcher) -> None:
        store = InMemoryEventStore()
        store.add_check(
            check("c1", hours_ago=3),
            [med("c1", "ibuprofen"), med("c1", "naproxen"), med("c1", "omeprazole")],
        )
        store.add_check(
            check("c2", hours_ago=2),
            [med("c2", "omeprazole"), med("c2", "nexium"), med("c2", "aspirin")],
        )

        insights = await detector_for(store, matcher).detect(PROFILE_ID)

        assert [(i.supporting_events[0], i.meta.class_key) for i in insights] == [
            ("c1", "nsaids"),
            ("c2", "proton_pump_inhibitors"),
        ]

    async def test_detection_is_deterministic(self, matcher: TaxonomyMatcher) -> None:
        store = InMemoryEventStore()
        store.add_check(check("c1"), [med("c1", "ibuprofen"), supplement("c1", "naproxen")])
        detector = detector_for(store, matcher)

        first = await detector.detect(PROFILE_ID)
        second = await detector.detect(PROFILE_ID)

        assert [i.model_dump_json() for i in first] == [i.model_dump_json() for i in second]


class TestIngestibleNames:
    def test_medication_field(self) -> None:
        assert extract_ingestible_name("medication", {"medication": "Advil"}) == "Advil"

    def test_supplement_falls_back_to_name(self) -> None:
        assert extract_ingestible_name("supplement", {"name": "senna"}) == "senna"
        assert (
            extract_ingestible_name("supplement", {"supplement": "cascara", "name": "x"})
            == "cascara"
        )

    def test_blank_and_other_types(self) -> None:
        assert extract_ingestible_name("medication", {"medication": "  "}) is None
        assert extract_ingestible_name("meal", {"meal": "ibuprofen"}) is None
        assert extract_ingestible_name("symptom", {}) is None


class RecordingStore:
    """Mock store that records the cutoff and can fail either query."""

    def __init__(self, fail: str | None = None, raise_instead: bool = False) -> None:
        self.fail = fail
        self.raise_instead = raise_instead
        self.since: datetime | None = None
        self.requested_ids: list[str] = []

    def _failure(self, query: str) -> Result[list, Exception] | None:
        if self.fail != query:
            return None
        error = ConnectionError(f"{query} unavailable")
        if self.raise_instead:
            raise error
        return Result.err(error)

    async def fetch_checks(self, profile_id: str, since: datetime) -> Result[list, Exception]:
        self.since = since
        failure = self._failure("checks")
        if failure is not None:
            return failure
        return Result.ok([check("c1")])

    async def fetch_health_events(self, check_ids: Sequence[str]) -> Result[list, Exception]:
        self.requested_ids = list(check_ids)
        failure = self._failure("health_events")
        if failure is not None:
            return failure
        return Result.ok([med("c1", "ibuprofen"), med("c1", "naproxen")])


class TestStoreInteraction:
    async def test_cutoff_is_window_before_now(self, matcher: TaxonomyMatcher) -> None:
        store = RecordingStore()

        await detector_for(store, matcher).detect(PROFILE_ID, window_hours=6)

        assert store.since == NOW - timedelta(hours=6)
        assert store.requested_ids == ["c1"]

    async def test_default_cutoff_uses_configured_window(self, matcher: TaxonomyMatcher) -> None:
        store = RecordingStore()
        config = AppConfig(stacking=StackingConfig(window_hours=12))

        await detector_for(store, matcher, config).detect(PROFILE_ID)

        assert store.since == NOW - timedelta(hours=12)

    def test_window_read_from_environment(
        self, matcher: TaxonomyMatcher, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("STACKING_WINDOW_HOURS", "3")
        get_config.cache_clear()
        try:
            detector = FunctionalStackingDetector(RecordingStore(), matcher, clock=lambda: NOW)
        finally:
            get_config.cache_clear()

        assert detector.window_hours == 3.0
        assert detector.cutoff_for(detector.window_hours) == NOW - timedelta(hours=3)

    async def test_huge_window_clamps_to_earliest_datetime(
        self, matcher: TaxonomyMatcher
    ) -> None:
        store = RecordingStore()

        await detector_for(store, matcher).detect(PROFILE_ID, window_hours=24 * 365 * 3000)

        assert store.since == datetime.min.replace(tzinfo=UTC)
        assert store.requested_ids == ["c1"]

    @pytest.mark.parametrize("query", ["checks", "health_events"])
    @pytest.mark.parametrize("raise_instead", [False, True])
    async def test_failures_name_the_query(
        self, matcher: TaxonomyMatcher, query: str, raise_instead: bool
    ) -> None:
        store = RecordingStore(fail=query, raise_instead=raise_instead)

        with pytest.raises(StoreQueryError) as exc_info:
            await detector_for(store, matcher).detect(PROFILE_ID)

        assert exc_info.value.query == query
        assert f"{query} query failed" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, ConnectionError)

    async def test_no_checks_skips_event_query(self, matcher: TaxonomyMatcher) -> None:
        store = InMemoryEventStore()

        insights = await detector_for(store, matcher).detect(PROFILE_ID)

        assert insights == []


class TestFingerprint:
    def test_fingerprint_sorts_events_and_lowercases(self) -> None:
        fp = insight_fingerprint(
            "Functional_Stacking", {"triggerValue": " NSAIDs "}, ["c2", "c1"]
        )

        assert fp == "functional_stacking:nsaids::c1,c2"

    def test_fingerprint_ignores_score_fields(self) -> None:
        a = insight_fingerprint("x", {"triggerValue": "a", "symptomValue": "b"}, ["1"])
        b = insight_fingerprint(
            "x", {"triggerValue": "a", "symptomValue": "b", "score": 0.9}, ["1"]
        )

        assert a == b
