"""
Knowledge-base command line tools.

Usage:
    healthrisk validate            # fail (exit 1) on orphan advice targets
    healthrisk summary             # versions and counts of the loaded knowledge
    healthrisk --taxonomy path/to/taxonomy.json validate
"""

import argparse
import sys

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from healthrisk.config import KnowledgeConfig, configure_logging, get_config
from healthrisk.errors import KnowledgeLoadError
from healthrisk.knowledge.advice import ADVICE_REGISTRY, ADVICE_REGISTRY_VERSION
from healthrisk.knowledge.store import KnowledgeStore, load_knowledge_store
from healthrisk.services.validator import find_disallowed_overlaps, validate_no_orphan_advice

console = Console()


def setup_parser() -> argparse.ArgumentParser:
    """Set up argument parser."""
    parser = argparse.ArgumentParser(
        prog="healthrisk",
        description="Health risk knowledge-base tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--taxonomy", help="Allergen taxonomy JSON (overrides config)")
    parser.add_argument("--registry", help="Functional class registry JSON (overrides config)")

    subparsers = parser.add_subparsers(dest="command", help="Commands")
    subparsers.add_parser("validate", help="Check advice targets against the taxonomy")
    subparsers.add_parser("summary", help="Show loaded knowledge versions and counts")
    return parser


def _load_knowledge(args: argparse.Namespace) -> KnowledgeStore:
    configured = get_config().knowledge
    knowledge_config = KnowledgeConfig(
        allergen_taxonomy_path=args.taxonomy or configured.allergen_taxonomy_path,
        functional_registry_path=args.registry or configured.functional_registry_path,
    )
    return load_knowledge_store(knowledge_config)


def run_validate(knowledge: KnowledgeStore) -> int:
    console.print(Panel("🔎 Validating knowledge base", style="blue"))
    orphans = validate_no_orphan_advice(knowledge)
    overlaps = find_disallowed_overlaps(knowledge)

    if orphans:
        table = Table(title="Orphan Advice Targets")
        table.add_column("Target", style="red")
        table.add_column("Advice Id", style="cyan")
        for target in orphans:
            ids = sorted(e.id for e in ADVICE_REGISTRY.values() if e.target == target)
            table.add_row(target, ", ".join(ids))
        console.print(table)
        console.print(f"❌ {len(orphans)} orphan advice target(s)", style="red")
    else:
        console.print(
            f"✅ All {len(ADVICE_REGISTRY)} advice entries resolve to taxonomy nodes",
            style="green",
        )

    if overlaps:
        table = Table(title="Duplicate Taxonomy Children")
        table.add_column("Child", style="red")
        table.add_column("Parents", style="cyan")
        for child, parents in overlaps.items():
            table.add_row(child, ", ".join(parents))
        console.print(table)
        console.print(f"❌ {len(overlaps)} child term(s) under disallowed parents", style="red")
    else:
        console.print("✅ No disallowed taxonomy overlaps", style="green")

    return 1 if orphans or overlaps else 0


def run_summary(knowledge: KnowledgeStore) -> int:
    taxonomy = knowledge.taxonomy
    table = Table(title="Knowledge Summary")
    table.add_column("Item", style="cyan")
    table.add_column("Value", style="white")

    table.add_row("Taxonomy Version", taxonomy.version)
    table.add_row("Parent Categories", str(len(taxonomy.taxonomy)))
    table.add_row("Child Terms", str(sum(len(n.children) for n in taxonomy.taxonomy.values())))
    table.add_row("Severity Entries", str(len(taxonomy.severity)))
    table.add_row("Cross-Reactive Sources", str(len(taxonomy.cross_reactive)))
    table.add_row("Registry Version", knowledge.registry.version)
    table.add_row("Functional Classes", str(len(knowledge.registry.classes)))
    table.add_row("Advice Registry Version", ADVICE_REGISTRY_VERSION)
    table.add_row("Advice Entries", str(len(ADVICE_REGISTRY)))
    console.print(table)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = setup_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 2

    configure_logging(get_config())
    try:
        knowledge = _load_knowledge(args)
    except KnowledgeLoadError as e:
        console.print(f"❌ {e}", style="red", markup=False, soft_wrap=True)
        return 1

    if args.command == "validate":
        return run_validate(knowledge)
    return run_summary(knowledge)


if __name__ == "__main__":
    sys.exit(main())
