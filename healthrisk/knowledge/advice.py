"""
Actionable advice registry.

Pure data shown alongside risk verdicts. Term advice overrides parent
advice. Does not affect verdicts; every target must resolve to a taxonomy
node, which the orphan-advice validator enforces.
"""

from collections.abc import Callable, Iterable, Mapping
from types import MappingProxyType
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from healthrisk.domain.models import Verdict
from healthrisk.domain.rules import RULE_ALLERGY_MATCH, RULE_CROSS_REACTIVE

ADVICE_REGISTRY_VERSION = "14a.1"

# Most entries shown for one verdict
ADVICE_CAP = 3

GENERAL_TARGET = "general"

_EMERGENCY = "If trouble breathing, seek emergency care immediately."
_NOT_MEDICAL_ADVICE = "This is general guidance, not medical advice. Follow your allergist's plan."


class AdviceEntry(BaseModel):
    """Guidance for one taxonomy node (a parent category or a single term)."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description='Stable key, e.g. "term:mango" or "parent:tree_nut"')
    level: Literal["term", "parent"]
    target: str
    title: str
    symptoms_to_watch: tuple[str, ...] = ()
    immediate_actions: tuple[str, ...] = ()
    education: tuple[str, ...] = ()
    disclaimers: tuple[str, ...] = ()


class MatchedForAdvice(BaseModel):
    matched_term: str
    matched_category: str | None = None


GENERAL_SAFETY_FALLBACK = AdviceEntry(
    id="fallback:general_safety",
    level="parent",
    target=GENERAL_TARGET,
    title="General Safety",
    symptoms_to_watch=(
        "Hives, itching, or swelling",
        "Tingling in mouth or throat",
        "Difficulty breathing or wheezing",
        "Stomach upset or vomiting",
    ),
    immediate_actions=(
        "Stop eating immediately",
        "Rinse mouth with water",
        "Use epinephrine auto-injector if prescribed",
        "Seek emergency care for severe symptoms",
    ),
    education=(
        "When in doubt, avoid the food until you can confirm with your allergist.",
        "Check labels and ask about ingredients when dining out.",
    ),
    disclaimers=(
        _EMERGENCY,
        "Standard guidance only. Consult a professional in emergencies.",
    ),
)

_ENTRIES = (
    AdviceEntry(
        id="parent:tree_nut",
        level="parent",
        target="tree_nut",
        title="Tree Nut Allergy",
        symptoms_to_watch=(
            "Hives, itching, or swelling",
            "Tingling in mouth or throat",
            "Stomach pain, nausea, or vomiting",
            "Difficulty breathing or wheezing",
            "Dizziness or lightheadedness",
        ),
        immediate_actions=(
            "Stop eating immediately",
            "Rinse mouth with water",
            "Use epinephrine auto-injector if prescribed",
            "Call 911 if severe symptoms develop",
        ),
        education=(
            "Tree nuts include almond, walnut, cashew, pistachio, pecan, hazelnut, "
            "Brazil nut, pine nut, macadamia.",
            'Check labels for "may contain" or "processed in facility with tree nuts."',
            "Cross-contamination is common in bakeries and ice cream shops.",
        ),
        disclaimers=(_EMERGENCY, _NOT_MEDICAL_ADVICE),
    ),
    AdviceEntry(
        id="parent:shellfish",
        level="parent",
        target="shellfish",
        title="Shellfish Allergy",
        symptoms_to_watch=(
            "Hives or skin rash",
            "Swelling of lips, face, or throat",
            "Stomach cramps or diarrhea",
            "Wheezing or difficulty breathing",
            "Anaphylaxis (severe allergic reaction)",
        ),
        immediate_actions=(
            "Stop eating immediately",
            "Use epinephrine auto-injector if prescribed",
            "Seek emergency care for severe reactions",
            "Antihistamines may help mild symptoms only",
        ),
        education=(
            "Shellfish includes shrimp, crab, lobster, scallop, oyster, mussel.",
            "Crustaceans and mollusks may differ in reactivity.",
            "Avoid fish sauce, surimi, and some Asian sauces that may contain shellfish.",
        ),
        disclaimers=(_EMERGENCY, _NOT_MEDICAL_ADVICE),
    ),
    AdviceEntry(
        id="parent:peanut",
        level="parent",
        target="peanut",
        title="Peanut Allergy",
        symptoms_to_watch=(
            "Skin reactions (hives, redness, swelling)",
            "Itching or tingling in mouth",
            "Digestive upset",
            "Shortness of breath or throat tightness",
            "Anaphylaxis",
        ),
        immediate_actions=(
            "Stop eating immediately",
            "Use epinephrine auto-injector if prescribed",
            "Call 911 for severe reactions",
            "Stay calm; lying flat can worsen blood pressure drop",
        ),
        education=(
            "Peanuts are legumes, not tree nuts. Many people allergic to peanuts can "
            "safely eat tree nuts.",
            "Cross-contamination is common. Avoid shared equipment and bulk bins.",
            "Refined peanut oil may be tolerated by some; cold-pressed oils may contain protein.",
        ),
        disclaimers=(_EMERGENCY, _NOT_MEDICAL_ADVICE),
    ),
    AdviceEntry(
        id="parent:fish",
        level="parent",
        target="fish",
        title="Fish Allergy",
        symptoms_to_watch=(
            "Hives or eczema flare",
            "Swelling of lips or face",
            "Nausea, vomiting, or diarrhea",
            "Wheezing or difficulty breathing",
            "Anaphylaxis",
        ),
        immediate_actions=(
            "Stop eating immediately",
            "Use epinephrine auto-injector if prescribed",
            "Seek emergency care for severe reactions",
        ),
        education=(
            "Fish allergy is distinct from shellfish allergy. Some people are allergic to "
            "one or both.",
            "Fish can be hidden in Worcestershire sauce, Caesar dressing, and some Asian dishes.",
            "Fish gelatin and fish oil supplements may contain fish protein.",
        ),
        disclaimers=(_EMERGENCY, _NOT_MEDICAL_ADVICE),
    ),
    AdviceEntry(
        id="parent:sesame",
        level="parent",
        target="sesame",
        title="Sesame Allergy",
        symptoms_to_watch=(
            "Hives or rash",
            "Swelling of face or throat",
            "Stomach pain or vomiting",
            "Wheezing or difficulty breathing",
            "Anaphylaxis",
        ),
        immediate_actions=(
            "Stop eating immediately",
            "Use epinephrine auto-injector if prescribed",
            "Seek emergency care for severe reactions",
        ),
        education=(
            "Sesame is a major allergen requiring labeling in the US.",
            "Found in tahini, hummus, bagels, crackers, and many cuisines.",
            "Sesame oil, especially toasted, can contain protein and trigger reactions.",
        ),
        disclaimers=(_EMERGENCY, _NOT_MEDICAL_ADVICE),
    ),
    AdviceEntry(
        id="term:mango",
        level="term",
        target="mango",
        title="Mango (Cross-Reactive with Latex/Tree Nut)",
        symptoms_to_watch=(
            "Itching or tingling in mouth (OAS)",
            "Hives or rash, especially around mouth",
            "Swelling of lips or throat",
            "Stomach upset",
        ),
        immediate_actions=(
            "Stop eating immediately",
            "Rinse mouth with water",
            "Use epinephrine if prescribed and symptoms are severe",
        ),
        education=(
            "Mango can cross-react with latex or certain tree nuts due to similar proteins.",
            "Oral allergy syndrome may cause mild mouth itching without full anaphylaxis.",
            "Peeling mango may reduce contact with allergenic compounds in the skin.",
        ),
        disclaimers=(_EMERGENCY, _NOT_MEDICAL_ADVICE),
    ),
    AdviceEntry(
        id="term:almond",
        level="term",
        target="almond",
        title="Almond Allergy",
        symptoms_to_watch=(
            "Hives, itching, or swelling",
            "Tingling in mouth or throat",
            "Stomach pain or vomiting",
            "Difficulty breathing",
        ),
        immediate_actions=(
            "Stop eating immediately",
            "Rinse mouth with water",
            "Use epinephrine auto-injector if prescribed",
            "Call 911 if severe symptoms develop",
        ),
        education=(
            "Almond is a tree nut. Almond milk, marzipan, and many baked goods contain almond.",
            "Almond extract and almond oil may contain protein; check with your allergist.",
            "Cross-contamination is common in facilities that also process almonds.",
        ),
        disclaimers=(_EMERGENCY, _NOT_MEDICAL_ADVICE),
    ),
)

ADVICE_REGISTRY: Mapping[str, AdviceEntry] = MappingProxyType({e.id: e for e in _ENTRIES})


def resolve_advice_for_matched(
    matched: Iterable[MatchedForAdvice],
    parent_for_term: Callable[[str], str | None] | None = None,
    registry: Mapping[str, AdviceEntry] = ADVICE_REGISTRY,
) -> list[AdviceEntry]:
    """
    Advice entries for matched terms.

    Term advice wins over the term's parent category. Results are
    de-duplicated by id and sorted term-level first, then by target.
    """
    seen: set[str] = set()
    out: list[AdviceEntry] = []

    for m in matched:
        term = m.matched_term.lower().strip()
        category = m.matched_category or (parent_for_term(term) if parent_for_term else None)

        term_entry = registry.get(f"term:{term}") if term else None
        if term_entry is not None and term_entry.id not in seen:
            seen.add(term_entry.id)
            out.append(term_entry)
            continue

        parent_entry = registry.get(f"parent:{category}") if category else None
        if parent_entry is not None and parent_entry.id not in seen:
            seen.add(parent_entry.id)
            out.append(parent_entry)

    out.sort(key=lambda e: (0 if e.level == "term" else 1, e.target))
    return out


def advice_for_verdict(
    verdict: Verdict,
    parent_for_term: Callable[[str], str | None] | None = None,
    registry: Mapping[str, AdviceEntry] = ADVICE_REGISTRY,
) -> list[AdviceEntry]:
    """
    Advice block for a verdict's allergen matches, capped at ADVICE_CAP.

    Medication interactions carry no advice. When allergens matched but the
    registry has nothing for them, the general safety entry is returned.
    """
    matched = []
    for match in verdict.matched or []:
        if match.rule == RULE_ALLERGY_MATCH and match.details.get("allergen"):
            matched.append(
                MatchedForAdvice(
                    matched_term=match.details["allergen"],
                    matched_category=match.details.get("matchedCategory"),
                )
            )
        elif match.rule == RULE_CROSS_REACTIVE and match.details.get("matchedTerm"):
            matched.append(
                MatchedForAdvice(
                    matched_term=match.details["matchedTerm"],
                    matched_category=match.details.get("source"),
                )
            )

    if not matched:
        return []

    items = resolve_advice_for_matched(matched, parent_for_term, registry)
    return items[:ADVICE_CAP] if items else [GENERAL_SAFETY_FALLBACK]
