"""
Best-effort scoring around extraction results.

Extraction and persistence results are always returned to the caller. When
risk scoring or stacking detection fails, the failure becomes a warning on
the result instead of a rejected request.
"""

from collections.abc import Mapping, MutableMapping
from typing import Any

import structlog

from healthrisk.domain.models import Profile, StackingInsight, Verdict
from healthrisk.errors import StoreQueryError
from healthrisk.services.post_processor import post_process_extraction_result
from healthrisk.services.risk_engine import FAILED_VERDICT, RiskRuleEngine
from healthrisk.services.stacking import FunctionalStackingDetector

logger = structlog.get_logger(__name__)

RISK_SCORING_FAILED_WARNING = "Risk scoring failed; verdict defaulted to none"


def _append_warning(warnings: Any, message: str) -> list[str]:
    if not isinstance(warnings, list):
        warnings = []
    warnings.append(message)
    return warnings


def score_extraction(
    raw_text: str | None,
    result: MutableMapping[str, Any],
    profile: Profile | Mapping[str, Any],
    engine: RiskRuleEngine,
) -> Verdict:
    """
    Post-process ``result`` in place and compute its verdict.

    Never raises for scoring failures: the safe default verdict is returned
    and a warning is appended to ``result["warnings"]``.
    """
    post_process_extraction_result(raw_text, result)

    events = result.get("events")
    outcome = engine.try_check_risk(profile, events if isinstance(events, list) else [])
    if outcome.is_ok():
        return outcome.unwrap()

    result["warnings"] = _append_warning(result.get("warnings"), RISK_SCORING_FAILED_WARNING)
    return FAILED_VERDICT


async def collect_stacking_insights(
    detector: FunctionalStackingDetector,
    profile_id: str,
    warnings: list[str],
    window_hours: float | None = None,
) -> list[StackingInsight]:
    """Stacking insights for the feed, or [] with a warning if the store failed."""
    try:
        return await detector.detect(profile_id, window_hours)
    except StoreQueryError as e:
        logger.warning("stacking_skipped", profile_id=profile_id, query=e.query, error=str(e))
        warnings.append(f"Stacking detection skipped: {e.query} query failed")
        return []
