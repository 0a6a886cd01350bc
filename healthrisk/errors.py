"""Exception hierarchy for the health-risk engine."""

from pathlib import Path


class HealthRiskError(Exception):
    """Base class for all engine errors."""


class KnowledgeLoadError(HealthRiskError):
    """A knowledge override file is missing, unreadable or malformed.

    Raised instead of falling back to the bundled default: once an override
    path is requested, a broken file is a configuration error.
    """

    def __init__(self, message: str, path: Path | None = None) -> None:
        super().__init__(message)
        self.path = path


class StoreQueryError(HealthRiskError):
    """A read query against the external event store failed."""

    def __init__(self, query: str, cause: BaseException | str) -> None:
        super().__init__(f"detect_functional_stacking: {query} query failed: {cause}")
        self.query = query
