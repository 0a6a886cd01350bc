"""
Domain models for health-risk classification and insight detection.

These models represent the core business concepts and are framework-agnostic.
They use Pydantic for validation; external contracts are camelCase
(``riskLevel``, ``knownAllergies``) while Python code uses snake_case names.
"""

from collections.abc import Mapping
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class RiskLevel(str, Enum):
    """Verdict severity levels, ordered none < medium < high."""

    NONE = "none"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]


_RISK_RANK = {RiskLevel.NONE: 0, RiskLevel.MEDIUM: 1, RiskLevel.HIGH: 2}


class EventType(str, Enum):
    """Health event types the engine knows how to read."""

    MEAL = "meal"
    MEDICATION = "medication"
    SUPPLEMENT = "supplement"
    SYMPTOM = "symptom"


class _FrozenCamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class Medication(_FrozenCamelModel):
    """A medication the user currently takes."""

    name: str
    dosage: str | int | float | None = None

    @field_validator("dosage", mode="before")
    @classmethod
    def drop_unreadable_dosage(cls, v):
        if isinstance(v, bool) or not isinstance(v, (str, int, float)):
            return None
        return v


class Profile(_FrozenCamelModel):
    """
    Read-only snapshot of a user profile, supplied per invocation.

    Lenient on input: a missing or null list reads as empty, and entries
    that cannot take part in matching are dropped instead of rejected.
    """

    known_allergies: list[str] = Field(default_factory=list)
    current_medications: list[Medication] = Field(default_factory=list)

    @field_validator("known_allergies", mode="before")
    @classmethod
    def keep_text_allergies(cls, v):
        if not isinstance(v, (list, tuple)):
            return []
        return [item for item in v if isinstance(item, str)]

    @field_validator("current_medications", mode="before")
    @classmethod
    def keep_named_medications(cls, v):
        if not isinstance(v, (list, tuple)):
            return []
        return [
            item
            for item in v
            if isinstance(item, Medication)
            or (isinstance(item, Mapping) and isinstance(item.get("name"), str))
        ]


class HealthEvent(_FrozenCamelModel):
    """Structured fact extracted from a check's raw text."""

    type: str
    fields: dict[str, Any] = Field(default_factory=dict)
    confidence: float | None = Field(None, ge=0.0, le=1.0)
    provenance: str | None = None
    needs_clarification: bool | None = None


class RuleMatch(_FrozenCamelModel):
    """One rule firing, with the evidence that made it fire."""

    rule: str
    code: str | None = Field(None, description="Stable audit code for the rule")
    details: dict[str, Any] = Field(default_factory=dict)


class VerdictMeta(_FrozenCamelModel):
    """Strongest allergen match, persisted next to the verdict for auditing."""

    taxonomy_version: str
    severity: int
    matched_category: str | None = None
    matched_child: str | None = None
    cross_reactive: bool = False
    source: str | None = None
    matched_term: str | None = None


class Verdict(_FrozenCamelModel):
    """Risk verdict for a single extraction run. Never mutated after creation."""

    risk_level: RiskLevel
    reasoning: str
    matched: list[RuleMatch] | None = None
    meta: VerdictMeta | None = None

    def to_record(self) -> dict[str, Any]:
        """Serialize the way the persistence collaborator stores it."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class CheckRecord(_FrozenCamelModel):
    """A persisted check row, as read back from the event store."""

    id: str
    profile_id: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class HealthEventRecord(_FrozenCamelModel):
    """A persisted health event row, keyed by its owning check."""

    check_id: str
    event_type: str
    event_data: dict[str, Any] = Field(default_factory=dict)


class StackingMeta(_FrozenCamelModel):
    class_key: str
    items: list[str]
    matched_by: Literal["registry"] = "registry"


class StackingInsight(_FrozenCamelModel):
    """Two or more distinct items of one functional class within one check."""

    type: Literal["functional_stacking"] = "functional_stacking"
    label: str
    description: str
    supporting_events: list[str]
    supporting_event_count: int = Field(ge=0)
    meta: StackingMeta
    priority_hints: dict[str, Any] = Field(default_factory=dict)
    why_included: list[str] = Field(default_factory=list)

    # Filled in by the downstream feed scorer
    score: float | None = None
