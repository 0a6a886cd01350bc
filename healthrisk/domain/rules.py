"""Rule names recorded in verdict evidence, and their stable audit codes."""

from collections.abc import Mapping
from types import MappingProxyType

RULE_ALLERGY_MATCH = "allergy_match"
RULE_CROSS_REACTIVE = "cross_reactive"
RULE_MEDICATION_INTERACTION = "medication_interaction"

# Stable identifiers shown in audit trails
RULE_CODES: Mapping[str, str] = MappingProxyType(
    {
        RULE_ALLERGY_MATCH: "AA-RULE-AL-001",
        RULE_CROSS_REACTIVE: "AA-RULE-CR-001",
        RULE_MEDICATION_INTERACTION: "AA-RULE-MI-001",
    }
)


def rule_code_for(rule: str) -> str | None:
    return RULE_CODES.get(rule)
