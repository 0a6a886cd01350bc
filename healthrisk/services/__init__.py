"""
Core services for the application.

This package contains the main service implementations: taxonomy matching,
risk rules, functional stacking detection, extraction post-processing and
knowledge validation.
"""

from .event_store import EventStore, InMemoryEventStore
from .matcher import TaxonomyMatcher
from .result import Result
from .risk_engine import RiskRuleEngine, check_risk, compute_verdict_safely
from .stacking import FunctionalStackingDetector

__all__ = [
    "EventStore",
    "InMemoryEventStore",
    "TaxonomyMatcher",
    "Result",
    "RiskRuleEngine",
    "check_risk",
    "compute_verdict_safely",
    "FunctionalStackingDetector",
]
