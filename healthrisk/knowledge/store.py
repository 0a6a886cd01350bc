"""
Versioned knowledge store: allergen taxonomy + functional-class registry.

Loaded once per process configuration and treated as immutable afterwards.
A new load fully replaces the previous value; there is no incremental update.

Source resolution for each loader:
1. explicit ``override_path`` argument
2. environment variable (``ALLERGEN_TAXONOMY_PATH`` / ``FUNCTIONAL_REGISTRY_PATH``)
3. bundled default from ``healthrisk.knowledge.defaults`` (no file I/O)

No network, no randomness: two loads of the same source compare equal and
serialize to identical JSON.
"""

import json
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from healthrisk.errors import KnowledgeLoadError
from healthrisk.knowledge.defaults import (
    ALLERGEN_ALIASES,
    ALLERGEN_SEVERITY,
    ALLERGEN_TAXONOMY,
    ALLERGEN_TAXONOMY_VERSION,
    CROSS_REACTIVE_REGISTRY,
    DEFAULT_SEVERITY_WEIGHT,
    FUNCTIONAL_CLASS_REGISTRY,
    FUNCTIONAL_REGISTRY_VERSION,
)

if TYPE_CHECKING:
    from healthrisk.config import KnowledgeConfig

logger = structlog.get_logger(__name__)

ALLERGEN_TAXONOMY_PATH_ENV = "ALLERGEN_TAXONOMY_PATH"
FUNCTIONAL_REGISTRY_PATH_ENV = "FUNCTIONAL_REGISTRY_PATH"

UNKNOWN_VERSION = "unknown"


class TaxonomyNode(BaseModel):
    """Parent allergen category and its child terms."""

    model_config = ConfigDict(frozen=True)

    label: str = ""
    children: list[str] = Field(default_factory=list)


class CrossReactiveRelation(BaseModel):
    """Graded association between an allergy source and related foods."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    source: str
    related: list[str] = Field(default_factory=list)
    risk_modifier: float = Field(default=0, alias="riskModifier")


class AllergenTaxonomy(BaseModel):
    """Allergen hierarchy with severities, cross-reactivity and aliases."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    version: str = UNKNOWN_VERSION
    taxonomy: dict[str, TaxonomyNode] = Field(default_factory=dict)
    severity: dict[str, int] = Field(default_factory=dict)
    cross_reactive: list[CrossReactiveRelation] = Field(
        default_factory=list, alias="crossReactive"
    )
    aliases: dict[str, list[str]] = Field(default_factory=dict)

    def severity_for(self, key: str) -> int:
        """Severity weight (0-100) for a category key; 50 when unknown."""
        return self.severity.get(key.lower().strip(), DEFAULT_SEVERITY_WEIGHT)


class FunctionalClassEntry(BaseModel):
    """A drug/supplement class and the canonical names that belong to it."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    key: str
    label: str = ""
    members: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("members", "terms")
    )
    # member -> alternative names (brands, spellings)
    aliases: dict[str, list[str]] = Field(default_factory=dict)
    examples: list[str] = Field(default_factory=list)


class FunctionalRegistry(BaseModel):
    """Functional-class registry, versioned as a whole."""

    model_config = ConfigDict(frozen=True)

    version: str = UNKNOWN_VERSION
    classes: dict[str, FunctionalClassEntry] = Field(default_factory=dict)

    def get(self, class_key: str) -> FunctionalClassEntry | None:
        return self.classes.get(class_key)


class KnowledgeStore(BaseModel):
    """
    One loaded knowledge snapshot, passed explicitly to every component.

    Holding the snapshot as a value (instead of a module-level singleton) lets
    replay tooling evaluate the same inputs against two snapshots side by side.
    """

    model_config = ConfigDict(frozen=True)

    taxonomy: AllergenTaxonomy
    registry: FunctionalRegistry

    @classmethod
    def default(cls) -> "KnowledgeStore":
        """Bundled default knowledge, ignoring environment overrides."""
        return cls(taxonomy=default_allergen_taxonomy(), registry=default_functional_registry())


def default_allergen_taxonomy() -> AllergenTaxonomy:
    severity = dict(ALLERGEN_SEVERITY)
    for key in ALLERGEN_TAXONOMY:
        severity.setdefault(key, DEFAULT_SEVERITY_WEIGHT)

    return AllergenTaxonomy(
        version=ALLERGEN_TAXONOMY_VERSION,
        taxonomy={key: TaxonomyNode(**node) for key, node in ALLERGEN_TAXONOMY.items()},
        severity=severity,
        cross_reactive=[CrossReactiveRelation(**rel) for rel in CROSS_REACTIVE_REGISTRY],
        aliases={canonical: list(aliases) for canonical, aliases in ALLERGEN_ALIASES.items()},
    )


def default_functional_registry() -> FunctionalRegistry:
    return FunctionalRegistry(
        version=FUNCTIONAL_REGISTRY_VERSION,
        classes={
            key: FunctionalClassEntry(key=key, **entry)
            for key, entry in FUNCTIONAL_CLASS_REGISTRY.items()
        },
    )


def _resolve_source(override_path: str | os.PathLike[str] | None, env_var: str) -> Path | None:
    path_to_use = override_path or os.getenv(env_var)
    if not path_to_use:
        return None
    return Path(path_to_use).expanduser().resolve()


def _read_json_object(path: Path, loader_name: str) -> dict[str, Any]:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise KnowledgeLoadError(f"{loader_name}: failed to read {path}: {e}", path=path) from e

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise KnowledgeLoadError(f"{loader_name}: invalid JSON in {path}: {e}", path=path) from e

    if not isinstance(parsed, dict):
        raise KnowledgeLoadError(f"{loader_name}: expected object in {path}", path=path)
    return parsed


def load_allergen_taxonomy(
    override_path: str | os.PathLike[str] | None = None,
) -> AllergenTaxonomy:
    """
    Load the allergen taxonomy from a file override or the bundled default.

    Missing sub-fields fall back to empty values; ``version`` falls back to
    ``"unknown"``. Anything that cannot be coerced raises KnowledgeLoadError.
    """
    path = _resolve_source(override_path, ALLERGEN_TAXONOMY_PATH_ENV)
    if path is None:
        taxonomy = default_allergen_taxonomy()
        logger.debug(
            "knowledge_loaded", kind="taxonomy", source="default", version=taxonomy.version
        )
        return taxonomy

    obj = _read_json_object(path, "load_allergen_taxonomy")
    version = obj.get("version")
    fields = {
        "version": version if isinstance(version, str) else UNKNOWN_VERSION,
        "taxonomy": obj.get("taxonomy") if isinstance(obj.get("taxonomy"), dict) else {},
        "severity": obj.get("severity") if isinstance(obj.get("severity"), dict) else {},
        "crossReactive": (
            obj.get("crossReactive") if isinstance(obj.get("crossReactive"), list) else []
        ),
        "aliases": obj.get("aliases") if isinstance(obj.get("aliases"), dict) else {},
    }

    try:
        taxonomy = AllergenTaxonomy.model_validate(fields)
    except ValidationError as e:
        raise KnowledgeLoadError(
            f"load_allergen_taxonomy: invalid taxonomy in {path}: {e}", path=path
        ) from e

    logger.info("knowledge_loaded", kind="taxonomy", source=str(path), version=taxonomy.version)
    return taxonomy


def load_functional_registry(
    override_path: str | os.PathLike[str] | None = None,
) -> FunctionalRegistry:
    """
    Load the functional-class registry from a file override or the bundled default.

    The file is either a bare ``classKey -> {label, members}`` mapping or an
    envelope ``{"version": ..., "classes": {...}}``.
    """
    path = _resolve_source(override_path, FUNCTIONAL_REGISTRY_PATH_ENV)
    if path is None:
        registry = default_functional_registry()
        logger.debug(
            "knowledge_loaded", kind="registry", source="default", version=registry.version
        )
        return registry

    obj = _read_json_object(path, "load_functional_registry")
    if isinstance(obj.get("classes"), dict):
        version = obj.get("version")
        raw_classes: dict[str, Any] = obj["classes"]
    else:
        version = None
        raw_classes = obj

    classes: dict[str, FunctionalClassEntry] = {}
    for key, entry in raw_classes.items():
        if not isinstance(entry, dict):
            raise KnowledgeLoadError(
                f"load_functional_registry: entry {key!r} in {path} is not an object", path=path
            )
        try:
            classes[key] = FunctionalClassEntry.model_validate({**entry, "key": key})
        except ValidationError as e:
            raise KnowledgeLoadError(
                f"load_functional_registry: invalid entry {key!r} in {path}: {e}", path=path
            ) from e

    registry = FunctionalRegistry(
        version=version if isinstance(version, str) else UNKNOWN_VERSION,
        classes=classes,
    )
    logger.info(
        "knowledge_loaded",
        kind="registry",
        source=str(path),
        version=registry.version,
        class_count=len(classes),
    )
    return registry


def load_knowledge_store(config: "KnowledgeConfig | None" = None) -> KnowledgeStore:
    """Load both knowledge structures, honoring configured override paths."""
    taxonomy_path = config.allergen_taxonomy_path if config else None
    registry_path = config.functional_registry_path if config else None
    return KnowledgeStore(
        taxonomy=load_allergen_taxonomy(taxonomy_path),
        registry=load_functional_registry(registry_path),
    )
