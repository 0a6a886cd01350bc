"""
Bundled default knowledge: allergen taxonomy and functional-class registry.

Pure data. Bump the version stamps whenever an entry changes so verdicts and
replay reports can be traced back to the knowledge that produced them.
"""

from types import MappingProxyType
from typing import Any

ALLERGEN_TAXONOMY_VERSION = "10i.1"
FUNCTIONAL_REGISTRY_VERSION = "10g.1"

# Severity for any taxonomy key without an explicit weight
DEFAULT_SEVERITY_WEIGHT = 50

ALLERGEN_SEVERITY: MappingProxyType[str, int] = MappingProxyType(
    {
        "tree_nut": 90,
        "peanut": 95,
        "shellfish": 95,
        "fish": 90,
        "egg": 85,
        "dairy": 80,
        "legume": 60,
        "sesame": 85,
        "wheat": 70,
        "soy": 65,
    }
)

ALLERGEN_TAXONOMY: MappingProxyType[str, dict[str, Any]] = MappingProxyType(
    {
        "tree_nut": {
            "label": "Tree Nut",
            "children": [
                "almond",
                "walnut",
                "cashew",
                "pistachio",
                "pecan",
                "hazelnut",
                "brazil nut",
                "pine nut",
                "macadamia",
            ],
        },
        "shellfish": {
            "label": "Shellfish",
            "children": ["shrimp", "crab", "lobster", "scallop", "oyster", "mussel"],
        },
        "legume": {
            "label": "Legume",
            "children": ["peanut", "soy", "lentil", "chickpea", "pea"],
        },
        "fish": {
            "label": "Fish",
            "children": ["salmon", "tuna", "cod", "tilapia", "haddock", "anchovy", "sardine"],
        },
        "sesame": {"label": "Sesame", "children": ["sesame", "tahini"]},
        "egg": {"label": "Egg", "children": ["egg", "eggs", "egg white", "egg yolk"]},
        "dairy": {
            "label": "Dairy",
            "children": ["milk", "cheese", "butter", "yogurt", "whey", "casein"],
        },
        "wheat": {
            "label": "Wheat",
            "children": ["wheat", "flour", "bread", "pasta", "gluten"],
        },
        "soy": {
            "label": "Soy",
            "children": ["soy", "soya", "soybean", "tofu", "edamame", "tempeh", "soy sauce"],
        },
    }
)

# Parent pairs allowed to share a child token
ALLOWED_OVERLAPS: tuple[tuple[str, str], ...] = (("legume", "soy"),)

CROSS_REACTIVE_REGISTRY: tuple[dict[str, Any], ...] = (
    {"source": "tree_nut", "related": ["mango", "pink peppercorn", "coconut"], "riskModifier": 10},
    {"source": "latex", "related": ["banana", "avocado", "kiwi"], "riskModifier": 15},
    {"source": "birch_pollen", "related": ["apple", "carrot"], "riskModifier": 10},
)

# Canonical id -> aliases. Lowercase, unique, alphabetically sorted.
ALLERGEN_ALIASES: MappingProxyType[str, list[str]] = MappingProxyType(
    {
        "mango": ["mangoes", "mangos"],
        "shrimp": ["prawn", "prawns"],
        "tahini": ["tahina"],
    }
)

FUNCTIONAL_CLASS_REGISTRY: MappingProxyType[str, dict[str, Any]] = MappingProxyType(
    {
        "anticoagulants": {
            "label": "Anticoagulant / Blood Thinner",
            "members": [
                "aspirin",
                "warfarin",
                "clopidogrel",
                "apixaban",
                "rivaroxaban",
                "heparin",
                "enoxaparin",
                # herbal hint, flagged but not pharma-grade
                "ashwagandha",
            ],
            "aliases": {
                "warfarin": ["coumadin"],
                "clopidogrel": ["plavix"],
                "apixaban": ["eliquis"],
                "rivaroxaban": ["xarelto"],
                "enoxaparin": ["lovenox"],
            },
            "examples": ["aspirin", "warfarin", "eliquis", "plavix"],
        },
        "nsaids": {
            "label": "NSAID",
            "members": [
                "ibuprofen",
                "naproxen",
                "celecoxib",
                "diclofenac",
                "meloxicam",
                "indomethacin",
            ],
            "aliases": {
                "ibuprofen": ["advil", "motrin"],
                "naproxen": ["aleve"],
                "celecoxib": ["celebrex"],
                "diclofenac": ["voltaren"],
                "meloxicam": ["mobic"],
                "indomethacin": ["indocin"],
            },
            "examples": ["ibuprofen", "naproxen", "advil", "aleve"],
        },
        "proton_pump_inhibitors": {
            "label": "Proton Pump Inhibitor",
            "members": [
                "omeprazole",
                "esomeprazole",
                "lansoprazole",
                "pantoprazole",
                "rabeprazole",
            ],
            "aliases": {
                "omeprazole": ["prilosec"],
                "esomeprazole": ["nexium"],
                "lansoprazole": ["prevacid"],
                "pantoprazole": ["protonix"],
                "rabeprazole": ["aciphex"],
            },
            "examples": ["omeprazole", "nexium", "prilosec"],
        },
        "stimulant_laxatives": {
            "label": "Stimulant Laxative",
            "members": ["bisacodyl", "sennosides", "cascara"],
            "aliases": {
                "bisacodyl": ["dulcolax"],
                "sennosides": ["senna", "senokot"],
            },
            "examples": ["bisacodyl", "senna", "dulcolax"],
        },
    }
)
