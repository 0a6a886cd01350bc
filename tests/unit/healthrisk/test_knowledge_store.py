"""
Tests for the knowledge store and loaders in `healthrisk/knowledge/store.py`.

Covers:
- Bundled defaults (versions, severity fill-in, registry classes)
- Source resolution order: explicit path > environment variable > default
- Partial files fall back to empty sub-fields and an "unknown" version
- Configuration errors name the offending path and never fall back
- Registry envelope and "terms" synonym
- Load determinism
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from healthrisk.config import KnowledgeConfig
from healthrisk.errors import KnowledgeLoadError
from healthrisk.knowledge.defaults import (
    ALLERGEN_TAXONOMY_VERSION,
    DEFAULT_SEVERITY_WEIGHT,
    FUNCTIONAL_REGISTRY_VERSION,
)
from healthrisk.knowledge.store import (
    ALLERGEN_TAXONOMY_PATH_ENV,
    FUNCTIONAL_REGISTRY_PATH_ENV,
    UNKNOWN_VERSION,
    KnowledgeStore,
    load_allergen_taxonomy,
    load_functional_registry,
    load_knowledge_store,
)


@pytest.fixture(autouse=True)
def no_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    """Loaders read the environment; start every test from the bundled default."""
    monkeypatch.delenv(ALLERGEN_TAXONOMY_PATH_ENV, raising=False)
    monkeypatch.delenv(FUNCTIONAL_REGISTRY_PATH_ENV, raising=False)


def _write_json(path: Path, payload: Any) -> Path:
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


SMALL_TAXONOMY = {
    "version": "test.1",
    "taxonomy": {"tree_nut": {"label": "Tree Nut", "children": ["almond", "walnut"]}},
    "severity": {"tree_nut": 90},
    "crossReactive": [{"source": "tree_nut", "related": ["mango"], "riskModifier": 10}],
    "aliases": {"mango": ["mangoes"]},
}


class TestDefaults:
    """Bundled knowledge needs no file I/O."""

    def test_default_taxonomy_versions(self) -> None:
        taxonomy = load_allergen_taxonomy()
        registry = load_functional_registry()

        assert taxonomy.version == ALLERGEN_TAXONOMY_VERSION
        assert registry.version == FUNCTIONAL_REGISTRY_VERSION

    def test_every_parent_has_a_severity(self) -> None:
        taxonomy = load_allergen_taxonomy()

        for key in taxonomy.taxonomy:
            assert key in taxonomy.severity

    def test_severity_for_unknown_key_is_default_weight(self) -> None:
        taxonomy = load_allergen_taxonomy()

        assert taxonomy.severity_for("tree_nut") == 90
        assert taxonomy.severity_for("Shellfish ") == 95
        assert taxonomy.severity_for("latex") == DEFAULT_SEVERITY_WEIGHT

    def test_default_registry_has_nsaids(self) -> None:
        registry = load_functional_registry()

        nsaids = registry.get("nsaids")
        assert nsaids is not None
        assert {"ibuprofen", "naproxen"} <= set(nsaids.members)
        assert "advil" in nsaids.aliases["ibuprofen"]

    def test_knowledge_store_default_matches_loaders(self) -> None:
        store = KnowledgeStore.default()

        assert store == load_knowledge_store()

    def test_loads_are_deterministic(self) -> None:
        first = load_knowledge_store()
        second = load_knowledge_store()

        assert first.model_dump_json() == second.model_dump_json()


class TestResolutionOrder:
    """Explicit path beats environment variable beats bundled default."""

    def test_env_variable_used_when_no_explicit_path(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        path = _write_json(tmp_path / "taxonomy.json", SMALL_TAXONOMY)
        monkeypatch.setenv(ALLERGEN_TAXONOMY_PATH_ENV, str(path))

        taxonomy = load_allergen_taxonomy()

        assert taxonomy.version == "test.1"
        assert list(taxonomy.taxonomy) == ["tree_nut"]

    def test_explicit_path_beats_env_variable(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        env_path = _write_json(tmp_path / "env.json", {**SMALL_TAXONOMY, "version": "env.1"})
        explicit = _write_json(tmp_path / "explicit.json", {**SMALL_TAXONOMY, "version": "arg.1"})
        monkeypatch.setenv(ALLERGEN_TAXONOMY_PATH_ENV, str(env_path))

        taxonomy = load_allergen_taxonomy(explicit)

        assert taxonomy.version == "arg.1"

    def test_knowledge_config_paths_are_honored(self, tmp_path: Path) -> None:
        taxonomy_path = _write_json(tmp_path / "taxonomy.json", SMALL_TAXONOMY)
        registry_path = _write_json(
            tmp_path / "registry.json", {"nsaids": {"label": "NSAID", "members": ["ibuprofen"]}}
        )

        store = load_knowledge_store(
            KnowledgeConfig(
                allergen_taxonomy_path=str(taxonomy_path),
                functional_registry_path=str(registry_path),
            )
        )

        assert store.taxonomy.version == "test.1"
        assert list(store.registry.classes) == ["nsaids"]


class TestTaxonomyFiles:
    """Override files are coerced field by field."""

    def test_cross_reactive_and_aliases_are_parsed(self, tmp_path: Path) -> None:
        taxonomy = load_allergen_taxonomy(_write_json(tmp_path / "t.json", SMALL_TAXONOMY))

        relation = taxonomy.cross_reactive[0]
        assert relation.source == "tree_nut"
        assert relation.related == ["mango"]
        assert relation.risk_modifier == 10
        assert taxonomy.aliases == {"mango": ["mangoes"]}

    def test_missing_fields_fall_back_to_empty(self, tmp_path: Path) -> None:
        taxonomy = load_allergen_taxonomy(
            _write_json(tmp_path / "t.json", {"taxonomy": "not-a-mapping", "severity": []})
        )

        assert taxonomy.version == UNKNOWN_VERSION
        assert taxonomy.taxonomy == {}
        assert taxonomy.severity == {}
        assert taxonomy.cross_reactive == []
        assert taxonomy.aliases == {}

    def test_missing_file_raises_with_path(self, tmp_path: Path) -> None:
        missing = tmp_path / "nope.json"

        with pytest.raises(KnowledgeLoadError, match="failed to read") as exc_info:
            load_allergen_taxonomy(missing)

        assert str(missing.resolve()) in str(exc_info.value)
        assert exc_info.value.path == missing.resolve()

    def test_invalid_json_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(KnowledgeLoadError, match="invalid JSON"):
            load_allergen_taxonomy(path)

    def test_non_object_root_raises(self, tmp_path: Path) -> None:
        path = _write_json(tmp_path / "list.json", ["tree_nut"])

        with pytest.raises(KnowledgeLoadError, match="expected object"):
            load_allergen_taxonomy(path)

    def test_bad_env_path_does_not_fall_back_to_default(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv(ALLERGEN_TAXONOMY_PATH_ENV, str(tmp_path / "missing.json"))

        with pytest.raises(KnowledgeLoadError):
            load_allergen_taxonomy()


class TestRegistryFiles:
    """Registry files: bare mapping or versioned envelope."""

    def test_bare_mapping_has_unknown_version(self, tmp_path: Path) -> None:
        path = _write_json(
            tmp_path / "r.json", {"nsaids": {"label": "NSAID", "members": ["ibuprofen"]}}
        )

        registry = load_functional_registry(path)

        assert registry.version == UNKNOWN_VERSION
        assert registry.classes["nsaids"].key == "nsaids"
        assert registry.classes["nsaids"].members == ["ibuprofen"]

    def test_envelope_with_terms_synonym(self, tmp_path: Path) -> None:
        path = _write_json(
            tmp_path / "r.json",
            {
                "version": "reg.2",
                "classes": {"ppis": {"label": "PPI", "terms": ["omeprazole", "pantoprazole"]}},
            },
        )

        registry = load_functional_registry(path)

        assert registry.version == "reg.2"
        assert registry.classes["ppis"].members == ["omeprazole", "pantoprazole"]

    def test_non_object_entry_raises(self, tmp_path: Path) -> None:
        path = _write_json(tmp_path / "r.json", {"nsaids": ["ibuprofen"]})

        with pytest.raises(KnowledgeLoadError, match="'nsaids'"):
            load_functional_registry(path)

    def test_invalid_entry_field_raises(self, tmp_path: Path) -> None:
        path = _write_json(tmp_path / "r.json", {"nsaids": {"members": "ibuprofen"}})

        with pytest.raises(KnowledgeLoadError, match="invalid entry"):
            load_functional_registry(path)
