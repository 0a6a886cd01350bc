"""
Replay of risk verdicts under two knowledge snapshots.

Used when evaluating a knowledge-base update: the same scenarios are scored
with the baseline and the candidate knowledge, and the verdicts are
condensed and diffed. Pure and deterministic; every list is sorted.
"""

from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from healthrisk.domain.models import HealthEvent, Profile, RiskLevel, Verdict
from healthrisk.domain.rules import RULE_ALLERGY_MATCH, RULE_CROSS_REACTIVE
from healthrisk.knowledge.store import KnowledgeStore
from healthrisk.services.risk_engine import RiskRuleEngine


class ReplayScenario(BaseModel):
    scenario_id: str
    profile: Profile
    events: list[HealthEvent | dict[str, Any]] = Field(default_factory=list)


class ReplayVerdict(BaseModel):
    """Verdict reduced to the parts that matter when comparing snapshots."""

    model_config = ConfigDict(frozen=True)

    risk_level: RiskLevel
    severity: int = 0
    matched_terms: list[str] = Field(default_factory=list)
    matched_categories: list[str] = Field(default_factory=list)
    cross_reactive: bool = False
    taxonomy_version: str | None = None


class ReplayChanges(BaseModel):
    risk_level_changed: bool
    severity_changed: bool
    added_matches: list[str] = Field(default_factory=list)
    removed_matches: list[str] = Field(default_factory=list)
    notes: str | None = None


class ReplayDiff(BaseModel):
    scenario_id: str
    baseline: ReplayVerdict
    candidate: ReplayVerdict
    changes: ReplayChanges


class ReplaySummary(BaseModel):
    total_scenarios: int = 0
    risk_level_changes_up: int = 0
    risk_level_changes_down: int = 0
    total_added_matches: int = 0
    total_removed_matches: int = 0


class ReplayReport(BaseModel):
    baseline_taxonomy_version: str | None = None
    candidate_taxonomy_version: str | None = None
    scenarios: list[ReplayDiff] = Field(default_factory=list)
    summary: ReplaySummary = Field(default_factory=ReplaySummary)


def _sorted_unique(values: Iterable[str]) -> list[str]:
    return sorted(set(values))


def normalize_verdict(verdict: Verdict, taxonomy_version: str | None = None) -> ReplayVerdict:
    terms: list[str] = []
    categories: list[str] = []
    cross_reactive = False

    for match in verdict.matched or []:
        details: Mapping[str, Any] = match.details
        if match.rule == RULE_ALLERGY_MATCH:
            if details.get("allergen"):
                terms.append(details["allergen"])
            if details.get("matchedCategory"):
                categories.append(details["matchedCategory"])
        elif match.rule == RULE_CROSS_REACTIVE:
            cross_reactive = True
            if details.get("matchedTerm"):
                terms.append(details["matchedTerm"])
            if details.get("source"):
                categories.append(details["source"])

    return ReplayVerdict(
        risk_level=verdict.risk_level,
        severity=verdict.meta.severity if verdict.meta else 0,
        matched_terms=_sorted_unique(terms),
        matched_categories=_sorted_unique(categories),
        cross_reactive=cross_reactive,
        taxonomy_version=taxonomy_version,
    )


def compute_replay_diff(
    scenario_id: str, baseline: ReplayVerdict, candidate: ReplayVerdict
) -> ReplayDiff:
    risk_level_changed = baseline.risk_level != candidate.risk_level
    baseline_terms = set(baseline.matched_terms)
    candidate_terms = set(candidate.matched_terms)

    notes = None
    if risk_level_changed:
        direction = "up" if candidate.risk_level.rank > baseline.risk_level.rank else "down"
        notes = (
            f"riskLevel {baseline.risk_level.value} -> {candidate.risk_level.value} ({direction})"
        )

    return ReplayDiff(
        scenario_id=scenario_id,
        baseline=baseline,
        candidate=candidate,
        changes=ReplayChanges(
            risk_level_changed=risk_level_changed,
            severity_changed=baseline.severity != candidate.severity,
            added_matches=sorted(candidate_terms - baseline_terms),
            removed_matches=sorted(baseline_terms - candidate_terms),
            notes=notes,
        ),
    )


def build_replay_report(
    diffs: Iterable[ReplayDiff],
    baseline_taxonomy_version: str | None = None,
    candidate_taxonomy_version: str | None = None,
) -> ReplayReport:
    diffs = list(diffs)
    summary = ReplaySummary(total_scenarios=len(diffs))

    for diff in diffs:
        if diff.changes.risk_level_changed:
            if diff.candidate.risk_level.rank > diff.baseline.risk_level.rank:
                summary.risk_level_changes_up += 1
            else:
                summary.risk_level_changes_down += 1
        summary.total_added_matches += len(diff.changes.added_matches)
        summary.total_removed_matches += len(diff.changes.removed_matches)

    return ReplayReport(
        baseline_taxonomy_version=baseline_taxonomy_version,
        candidate_taxonomy_version=candidate_taxonomy_version,
        scenarios=diffs,
        summary=summary,
    )


def replay_verdicts(
    scenarios: Iterable[ReplayScenario],
    baseline: KnowledgeStore,
    candidate: KnowledgeStore,
) -> ReplayReport:
    """Score every scenario under both snapshots and diff the results, sorted by scenario id."""
    baseline_engine = RiskRuleEngine.from_knowledge(baseline)
    candidate_engine = RiskRuleEngine.from_knowledge(candidate)
    baseline_version = baseline.taxonomy.version
    candidate_version = candidate.taxonomy.version

    diffs = []
    for scenario in sorted(scenarios, key=lambda s: s.scenario_id):
        before = baseline_engine.check_risk(scenario.profile, scenario.events)
        after = candidate_engine.check_risk(scenario.profile, scenario.events)
        diffs.append(
            compute_replay_diff(
                scenario.scenario_id,
                normalize_verdict(before, baseline_version),
                normalize_verdict(after, candidate_version),
            )
        )

    return build_replay_report(diffs, baseline_version, candidate_version)
