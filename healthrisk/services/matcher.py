"""
Taxonomy and functional-class matching.

Resolves free-text ingestible names to functional classes and allergen
taxonomy nodes. Matching is deterministic: normalization, exact lookup,
alias lookup and simple plural handling. Nothing fuzzy.
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass
from functools import lru_cache

import structlog

from healthrisk.knowledge.store import KnowledgeStore

logger = structlog.get_logger(__name__)

_SURROUNDING_QUOTES = re.compile(r"^[\"'(]+|[\"')]+$")
_SURROUNDING_PUNCT = re.compile(r"^['\"(\[{]+|['\")\]}]+$")
_WHITESPACE = re.compile(r"\s+")
_NON_WORD = re.compile(r"[^\w\s]")


def normalize(text: str) -> str:
    """Lowercase and trim."""
    return text.lower().strip()


def normalize_term(name: str) -> str:
    """Normalize an ingestible name: lowercase, trim, strip surrounding quotes/parens."""
    return _SURROUNDING_QUOTES.sub("", name.lower().strip())


def normalize_token(text: str) -> str:
    """Lowercase, trim, collapse whitespace and strip surrounding punctuation."""
    token = _WHITESPACE.sub(" ", text.lower().strip())
    return _SURROUNDING_PUNCT.sub("", token).strip()


def strip_plural(term: str) -> str:
    """Drop one trailing ``s``: almonds -> almond. Single characters are kept."""
    if term.endswith("s") and len(term) > 1:
        return term[:-1]
    return term


def category_key(text: str) -> str:
    """Profile spelling of a category to its taxonomy key: 'Tree Nut' -> 'tree_nut'."""
    return _WHITESPACE.sub("_", normalize_token(text))


@lru_cache(maxsize=512)
def _term_pattern(term: str) -> re.Pattern[str]:
    plural = term[:-1] if term.endswith("s") else f"{term}s"
    return re.compile(rf"\b({re.escape(term)}|{re.escape(plural)})\b", re.IGNORECASE)


@lru_cache(maxsize=512)
def _alias_pattern(alias: str) -> re.Pattern[str]:
    return re.compile(rf"\b{re.escape(alias)}\b", re.IGNORECASE)


@dataclass(frozen=True)
class AllergenCandidate:
    """An allergen term to look for in meal text, with its taxonomy parent if any."""

    term: str
    parent_key: str | None = None
    expanded_from: str | None = None


@dataclass(frozen=True)
class CrossReactiveHit:
    source: str
    matched_term: str
    modifier: float


class TaxonomyMatcher:
    """
    Lookup layer over one KnowledgeStore snapshot.

    Indices are built once at construction; the matcher holds no mutable
    state afterwards and is safe to share between callers.
    """

    def __init__(self, knowledge: KnowledgeStore) -> None:
        self.knowledge = knowledge
        self.logger = logger.bind(component="taxonomy_matcher")

        self._class_index: dict[str, frozenset[str]] = self._build_class_index()
        self._canonical_index: dict[str, str] = self._build_canonical_index()
        self._parent_index: dict[str, str] = self._build_parent_index()

        self.logger.debug(
            "matcher_indices_built",
            class_terms=len(self._class_index),
            aliases=len(self._canonical_index),
            taxonomy_children=len(self._parent_index),
        )

    def _build_class_index(self) -> dict[str, frozenset[str]]:
        index: dict[str, set[str]] = {}
        for class_key, entry in self.knowledge.registry.classes.items():
            names = list(entry.members)
            for member in entry.members:
                names.extend(entry.aliases.get(member, []))
            for name in names:
                norm = normalize_term(name)
                if norm:
                    index.setdefault(norm, set()).add(class_key)
        return {name: frozenset(keys) for name, keys in index.items()}

    def _build_canonical_index(self) -> dict[str, str]:
        index: dict[str, str] = {}
        for canonical, aliases in sorted(self.knowledge.taxonomy.aliases.items()):
            for alias in aliases:
                index.setdefault(normalize_token(alias), canonical)
        return index

    def _build_parent_index(self) -> dict[str, str]:
        index: dict[str, str] = {}
        for parent_key, node in self.knowledge.taxonomy.taxonomy.items():
            for child in node.children:
                index.setdefault(normalize_token(child), parent_key)
        return index

    # ── Functional classes ───────────────────────────────────────────

    def match_functional_classes(self, name: str) -> frozenset[str]:
        """
        All functional classes a name belongs to.

        Exact match after normalization against members and member aliases.
        A name can sit in several classes, so callers get a set.
        """
        return self._class_index.get(normalize_term(name), frozenset())

    def class_label(self, class_key: str) -> str:
        entry = self.knowledge.registry.get(class_key)
        return entry.label if entry and entry.label else class_key

    # ── Allergen taxonomy ────────────────────────────────────────────

    def resolve_to_canonical(self, term: str) -> str:
        """Map an alias (mangoes) to its canonical id (mango); other terms pass through."""
        norm = normalize_token(term)
        return self._canonical_index.get(norm, norm)

    def parent_key_for_term(self, term: str) -> str | None:
        return self._parent_index.get(normalize_token(term))

    def severity_for(self, key: str) -> int:
        return self.knowledge.taxonomy.severity_for(key)

    def resolve_category_for_severity(self, term: str) -> str:
        """Category used for severity: explicit weight first, else taxonomy parent."""
        norm = normalize_token(term)
        severity = self.knowledge.taxonomy.severity
        for candidate in (norm, strip_plural(norm)):
            if candidate in severity:
                return candidate
        parent = self.parent_key_for_term(norm) or self.parent_key_for_term(strip_plural(norm))
        return parent or norm

    def expand_allergies(self, allergies: Iterable[str]) -> list[AllergenCandidate]:
        """
        Turn profile allergies into ordered, de-duplicated candidate terms.

        Every allergy is kept as its normalized text. A parent category
        (``tree_nut``, ``Tree Nut``) is additionally followed by its children
        in taxonomy order.
        """
        taxonomy = self.knowledge.taxonomy.taxonomy
        candidates: list[AllergenCandidate] = []
        seen: set[str] = set()

        for allergy in allergies:
            if not isinstance(allergy, str):
                continue
            term = normalize(allergy)
            if not term:
                continue

            if term not in seen:
                seen.add(term)
                parent = self.parent_key_for_term(term) or self.parent_key_for_term(
                    strip_plural(term)
                )
                candidates.append(AllergenCandidate(term, parent))

            key = category_key(term)
            if key in taxonomy:
                for child in taxonomy[key].children:
                    child_term = normalize(child)
                    if child_term and child_term not in seen:
                        seen.add(child_term)
                        candidates.append(AllergenCandidate(child_term, key, expanded_from=key))

        return candidates

    def cross_reactive_match(
        self, allergies: Iterable[str], text: str
    ) -> CrossReactiveHit | None:
        """
        First cross-reactive term found in ``text`` for any allergy source.

        Word-boundary matching of the related term, its simple plural and its
        aliases, longest terms first so phrases win over single words.
        """
        haystack = _NON_WORD.sub(" ", normalize_token(text))
        if not haystack.strip():
            return None

        user_keys = {category_key(a) for a in allergies if isinstance(a, str) and a.strip()}
        if not user_keys:
            return None

        for relation in self.knowledge.taxonomy.cross_reactive:
            source = relation.source.lower()
            if not (
                source in user_keys
                or f"{source}s" in user_keys
                or any(strip_plural(key) == source for key in user_keys)
            ):
                continue

            for term in sorted(relation.related, key=len, reverse=True):
                canonical = normalize_token(term)
                if canonical and _term_pattern(canonical).search(haystack):
                    return CrossReactiveHit(relation.source, term, relation.risk_modifier)

                # Aliases match as written, without plural variants
                aliases = self.knowledge.taxonomy.aliases.get(term, [])
                if any(_alias_pattern(normalize_token(a)).search(haystack) for a in aliases if a):
                    return CrossReactiveHit(relation.source, term, relation.risk_modifier)

        return None
