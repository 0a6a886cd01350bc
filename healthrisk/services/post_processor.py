"""
Fixed-rule post-processing of extraction output.

Applied to heuristic or model-driven extraction results before they are
persisted or scored. Deterministic and idempotent; never changes schemas.

Rule A (meal clarification): a meal event with a non-blank meal name never
asks for clarification. Optional fields such as carbs must not trigger it.

Rule B (carb follow-up suppression): when the raw text already carries a
carb cue and some meal captured carbs, drop follow-up questions about carbs.
"""

import re
from collections.abc import Mapping, MutableMapping
from typing import Any

import structlog

from healthrisk.domain.models import EventType

logger = structlog.get_logger(__name__)

# "carb", "carbs", or "<number> g|gram|grams"
CARB_CUE_REGEX = re.compile(r"(carb|carbs|\b\d+(\.\d+)?\s*(g|gram|grams)\b)", re.IGNORECASE)

CARB_FOLLOWUP_REGEX = re.compile(r"(carb|carbohydrate)", re.IGNORECASE)


def _is_meal(event: Any) -> bool:
    return isinstance(event, Mapping) and event.get("type") == EventType.MEAL.value


def _fields(event: Mapping[str, Any]) -> Mapping[str, Any]:
    fields = event.get("fields")
    return fields if isinstance(fields, Mapping) else {}


def has_carb_cue(raw_text: str | None) -> bool:
    return bool(CARB_CUE_REGEX.search(raw_text or ""))


def post_process_extraction_result(raw_text: str | None, result: MutableMapping[str, Any]) -> None:
    """
    Apply both rules to ``result`` in place.

    ``result`` is the extraction collaborator's output:
    ``{"events": [...], "followUpQuestions": [...], "warnings": [...]}``.
    Does nothing when ``events`` is missing or not a list.
    """
    events = result.get("events")
    if not isinstance(events, list):
        return

    # Rule A
    for event in events:
        if not _is_meal(event):
            continue
        meal_name = _fields(event).get("meal")
        if isinstance(meal_name, str) and meal_name.strip() and isinstance(event, MutableMapping):
            event["needsClarification"] = False

    # Rule B
    any_carbs_captured = any(
        _is_meal(event) and _fields(event).get("carbs") is not None for event in events
    )
    follow_ups = result.get("followUpQuestions")
    if has_carb_cue(raw_text) and any_carbs_captured and isinstance(follow_ups, list):
        kept = [q for q in follow_ups if not (isinstance(q, str) and CARB_FOLLOWUP_REGEX.search(q))]
        if len(kept) != len(follow_ups):
            logger.debug("carb_follow_ups_suppressed", removed=len(follow_ups) - len(kept))
        result["followUpQuestions"] = kept
