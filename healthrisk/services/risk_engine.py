"""
Deterministic risk interpretation.

Evaluates extracted health events against a user's profile and produces a
single auditable verdict. Purely rules-based: the same profile and events
always give the same verdict.

Rules:
  A) HIGH   - a meal mentions one of the profile's allergens (parent
              categories also expand to their taxonomy children).
  C) MEDIUM - a meal without a direct hit mentions a food that is
              cross-reactive with one of the profile's allergies.
  B) MEDIUM - a medication event conflicts with a current medication,
              per a small fixed interaction map.

The highest severity observed wins (high > medium > none); high is never
downgraded. Every match is kept as evidence.
"""

import re
from collections.abc import Iterable, Mapping, Sequence
from types import MappingProxyType
from typing import Any

import structlog

from healthrisk.domain.models import (
    EventType,
    HealthEvent,
    Medication,
    Profile,
    RiskLevel,
    RuleMatch,
    Verdict,
    VerdictMeta,
)
from healthrisk.domain.rules import (
    RULE_ALLERGY_MATCH,
    RULE_CROSS_REACTIVE,
    RULE_MEDICATION_INTERACTION,
    rule_code_for,
)
from healthrisk.knowledge.store import KnowledgeStore
from healthrisk.services.matcher import (
    AllergenCandidate,
    TaxonomyMatcher,
    normalize,
    strip_plural,
)
from healthrisk.services.result import Result

logger = structlog.get_logger(__name__)

# Bidirectional: b in INTERACTION_MAP[a] implies a in INTERACTION_MAP[b]
INTERACTION_MAP: Mapping[str, frozenset[str]] = MappingProxyType(
    {
        "ibuprofen": frozenset({"aspirin", "warfarin", "naproxen"}),
        "aspirin": frozenset({"ibuprofen", "warfarin"}),
        "warfarin": frozenset({"ibuprofen", "aspirin"}),
        "naproxen": frozenset({"ibuprofen"}),
    }
)

NO_RISK_REASONING = "No known risks detected."
FAILED_VERDICT_REASONING = "Verdict computation failed"

FAILED_VERDICT = Verdict(risk_level=RiskLevel.NONE, reasoning=FAILED_VERDICT_REASONING)

_TRAILING_PERIODS = re.compile(r"\.+$")


def _read_event(event: Any) -> tuple[str, Mapping[str, Any]]:
    """Event type and field mapping from a HealthEvent, a dict, or a replay row."""
    if isinstance(event, HealthEvent):
        return event.type, event.fields
    if isinstance(event, Mapping):
        event_type = event.get("type")
        fields = event.get("fields")
        if not isinstance(fields, Mapping):
            fields = event.get("event_data")
        return (
            event_type if isinstance(event_type, str) else "",
            fields if isinstance(fields, Mapping) else {},
        )
    return "", {}


def _text_field(fields: Mapping[str, Any], key: str) -> str:
    value = fields.get(key)
    return value if isinstance(value, str) else ""


def _coerce_profile(profile: Profile | Mapping[str, Any]) -> Profile:
    if isinstance(profile, Profile):
        return profile
    return Profile.model_validate(profile)


def medication_interacts(
    extracted_med: str, current_meds: Sequence[Medication]
) -> dict[str, str] | None:
    """First current medication that interacts with the extracted one, if any."""
    interactions = INTERACTION_MAP.get(normalize(extracted_med))
    if not interactions:
        return None

    for current in current_meds:
        if normalize(current.name) in interactions:
            return {"extracted": extracted_med, "conflictsWith": current.name}
    return None


def _reasoning_for(match: RuleMatch) -> str:
    details = match.details
    if match.rule == RULE_ALLERGY_MATCH:
        sentence = f'Meal "{details["meal"]}" contains known allergen "{details["allergen"]}"'
        if details.get("expandedFrom"):
            sentence += f" ({details['expandedFrom']} allergy)"
        return sentence
    if match.rule == RULE_CROSS_REACTIVE:
        return (
            f'"{details["matchedTerm"]}" is associated with {details["source"]} '
            "allergies (cross-reactive)"
        )
    if match.rule == RULE_MEDICATION_INTERACTION:
        return (
            f"{details['extracted']} may interact with current medication "
            f"{details['conflictsWith']}"
        )
    return match.model_dump_json()


class RiskRuleEngine:
    """
    Rule engine bound to one knowledge snapshot.

    Pure and synchronous: no I/O, no shared mutable state, safe to call
    concurrently.
    """

    def __init__(self, matcher: TaxonomyMatcher) -> None:
        self.matcher = matcher
        self.taxonomy_version = matcher.knowledge.taxonomy.version
        self.logger = logger.bind(component="risk_engine")

    @classmethod
    def from_knowledge(cls, knowledge: KnowledgeStore) -> "RiskRuleEngine":
        return cls(TaxonomyMatcher(knowledge))

    def check_risk(
        self,
        profile: Profile | Mapping[str, Any],
        events: Iterable[HealthEvent | Mapping[str, Any]] | None,
    ) -> Verdict:
        """Evaluate events in order and return the severity-ranked verdict."""
        profile = _coerce_profile(profile)
        candidates = self.matcher.expand_allergies(profile.known_allergies)

        highest = RiskLevel.NONE
        matched: list[RuleMatch] = []
        best_meta: VerdictMeta | None = None

        for event in events or ():
            event_type, fields = _read_event(event)

            if event_type == EventType.MEAL.value:
                meal = _text_field(fields, "meal")
                if not meal.strip():
                    continue

                candidate = self._match_allergy(meal, candidates)
                if candidate is not None:
                    match, meta = self._allergy_match(meal, candidate)
                    highest = RiskLevel.HIGH
                else:
                    hit = self._cross_reactive(meal, profile.known_allergies)
                    if hit is None:
                        continue
                    match, meta = hit
                    if highest != RiskLevel.HIGH:
                        highest = RiskLevel.MEDIUM

                matched.append(match)
                if best_meta is None or meta.severity > best_meta.severity:
                    best_meta = meta

            elif event_type == EventType.MEDICATION.value:
                med_name = _text_field(fields, "medication")
                if not med_name.strip():
                    continue

                conflict = medication_interacts(med_name, profile.current_medications)
                if conflict is None:
                    continue
                if highest != RiskLevel.HIGH:
                    highest = RiskLevel.MEDIUM
                matched.append(
                    RuleMatch(
                        rule=RULE_MEDICATION_INTERACTION,
                        code=rule_code_for(RULE_MEDICATION_INTERACTION),
                        details=conflict,
                    )
                )

        if not matched:
            self.logger.debug("verdict_computed", risk_level=RiskLevel.NONE.value, match_count=0)
            return Verdict(risk_level=RiskLevel.NONE, reasoning=NO_RISK_REASONING)

        joined = "; ".join(_reasoning_for(m) for m in matched)
        reasoning = _TRAILING_PERIODS.sub("", joined) + "."

        self.logger.debug(
            "verdict_computed",
            risk_level=highest.value,
            match_count=len(matched),
            rules=[m.rule for m in matched],
        )
        return Verdict(risk_level=highest, reasoning=reasoning, matched=matched, meta=best_meta)

    @staticmethod
    def _match_allergy(
        meal: str, candidates: Sequence[AllergenCandidate]
    ) -> AllergenCandidate | None:
        """First candidate contained in the meal text, as written or singularized."""
        text = normalize(meal)
        for candidate in candidates:
            if candidate.term in text or strip_plural(candidate.term) in text:
                return candidate
        return None

    def _allergy_match(
        self, meal: str, candidate: AllergenCandidate
    ) -> tuple[RuleMatch, VerdictMeta]:
        category = self.matcher.resolve_category_for_severity(candidate.term)
        severity = self.matcher.severity_for(category)

        details: dict[str, Any] = {
            "meal": meal,
            "allergen": candidate.term,
            "matchedCategory": category,
            "severity": severity,
        }
        if candidate.parent_key:
            details["parentKey"] = candidate.parent_key
        if candidate.expanded_from:
            details["expandedFrom"] = candidate.expanded_from

        match = RuleMatch(
            rule=RULE_ALLERGY_MATCH, code=rule_code_for(RULE_ALLERGY_MATCH), details=details
        )
        meta = VerdictMeta(
            taxonomy_version=self.taxonomy_version,
            severity=severity,
            matched_category=category,
            matched_child=candidate.term,
            cross_reactive=False,
        )
        return match, meta

    def _cross_reactive(
        self, meal: str, allergies: Sequence[str]
    ) -> tuple[RuleMatch, VerdictMeta] | None:
        hit = self.matcher.cross_reactive_match(allergies, meal)
        if hit is None:
            return None

        severity = int(round(self.matcher.severity_for(hit.source) + hit.modifier))
        match = RuleMatch(
            rule=RULE_CROSS_REACTIVE,
            code=rule_code_for(RULE_CROSS_REACTIVE),
            details={
                "meal": meal,
                "source": hit.source,
                "matchedTerm": hit.matched_term,
                "severity": severity,
            },
        )
        meta = VerdictMeta(
            taxonomy_version=self.taxonomy_version,
            severity=severity,
            cross_reactive=True,
            source=hit.source,
            matched_term=hit.matched_term,
        )
        return match, meta

    def try_check_risk(
        self,
        profile: Profile | Mapping[str, Any],
        events: Iterable[HealthEvent | Mapping[str, Any]] | None,
    ) -> Result[Verdict, Exception]:
        """check_risk with failures captured in a Result instead of raised."""
        try:
            return Result.ok(self.check_risk(profile, events))
        except Exception as e:
            self.logger.exception("verdict_computation_failed", error=str(e))
            return Result.err(e)


def check_risk(
    profile: Profile | Mapping[str, Any],
    events: Iterable[HealthEvent | Mapping[str, Any]] | None,
    knowledge: KnowledgeStore,
) -> Verdict:
    """Evaluate events against a profile using the given knowledge snapshot."""
    return RiskRuleEngine.from_knowledge(knowledge).check_risk(profile, events)


def compute_verdict_safely(
    engine: RiskRuleEngine,
    profile: Profile | Mapping[str, Any],
    events: Iterable[HealthEvent | Mapping[str, Any]] | None,
) -> Verdict:
    """
    Best-effort verdict: the safe default replaces any internal failure.

    Event capture must never be blocked by risk scoring, so persistence
    flows call this instead of check_risk.
    """
    return engine.try_check_risk(profile, events).unwrap_or(FAILED_VERDICT)
