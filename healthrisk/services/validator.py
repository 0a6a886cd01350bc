"""
Knowledge consistency checks, run at build/CI time.

Every advice entry must target a node that exists in the allergen taxonomy:
a parent key, a child term, a cross-reactive related term, or the
``general`` fallback. Child terms may sit under two parents only when the
pairing is explicitly allowed (soy is both a legume and its own category).
"""

from collections.abc import Iterable, Mapping

from healthrisk.knowledge.advice import ADVICE_REGISTRY, GENERAL_TARGET, AdviceEntry
from healthrisk.knowledge.defaults import ALLOWED_OVERLAPS
from healthrisk.knowledge.store import KnowledgeStore
from healthrisk.services.matcher import normalize


def valid_advice_targets(knowledge: KnowledgeStore) -> frozenset[str]:
    taxonomy = knowledge.taxonomy
    targets = {GENERAL_TARGET}
    targets.update(normalize(key) for key in taxonomy.taxonomy)
    for node in taxonomy.taxonomy.values():
        targets.update(normalize(child) for child in node.children)
    for relation in taxonomy.cross_reactive:
        targets.update(normalize(term) for term in relation.related)
    return frozenset(targets)


def validate_no_orphan_advice(
    knowledge: KnowledgeStore,
    registry: Mapping[str, AdviceEntry] = ADVICE_REGISTRY,
) -> list[str]:
    """Orphan advice targets, alphabetically sorted. Empty means consistent."""
    valid = valid_advice_targets(knowledge)
    orphans = [
        entry.target for entry in registry.values() if normalize(entry.target) not in valid
    ]
    return sorted(orphans, key=lambda target: (target.lower(), target))


def find_disallowed_overlaps(
    knowledge: KnowledgeStore,
    allowed: Iterable[tuple[str, str]] = ALLOWED_OVERLAPS,
) -> dict[str, list[str]]:
    """
    Child terms listed under more than one parent without an allowed pairing.

    Returns ``child -> sorted parent keys``. Empty means the taxonomy is clean.
    """
    allowed_pairs = {tuple(sorted(pair)) for pair in allowed}
    parents_by_child: dict[str, list[str]] = {}
    for parent_key, node in knowledge.taxonomy.taxonomy.items():
        for child in node.children:
            parents = parents_by_child.setdefault(normalize(child), [])
            if parent_key not in parents:
                parents.append(parent_key)

    overlaps: dict[str, list[str]] = {}
    for child, parents in sorted(parents_by_child.items()):
        if len(parents) < 2:
            continue
        if len(parents) == 2 and tuple(sorted(parents)) in allowed_pairs:
            continue
        overlaps[child] = sorted(parents)
    return overlaps
