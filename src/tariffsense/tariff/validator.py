"""Rule-based semantic checks on a selected candidate.

This deliberately does not consult the reasoning oracle: it exists to catch
the oracle's misclassifications (a finger ring filed under motor-vehicle
seals) and must not share its failure mode.

Rules are rows in :data:`DEFAULT_RULES`.  Each row pairs a predicate over a
:class:`ConflictContext` with a message and the chapters a re-search should
be restricted to; :func:`validate` evaluates every row the same way.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, List, Literal, Sequence, Tuple

from tariffsense.tariff import chapter_guide
from tariffsense.tariff.models import Candidate, ProductUnderstanding

logger = logging.getLogger(__name__)

Severity = Literal["critical", "warning"]


# ---------------------------------------------------------------------------
# Category vocabularies
# ---------------------------------------------------------------------------
PRODUCT_CATEGORY_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "personal_wearable": (
        "finger", "wrist", "neck", "ear", "ankle", "ring", "bracelet", "necklace", "earring",
        "pendant", "jewelry", "jewellery", "wear", "worn", "wearable", "clothing", "apparel",
        "shirt", "watch",
    ),
    "personal_care": (
        "shampoo", "soap", "lotion", "cosmetic", "makeup", "toothbrush", "razor", "deodorant",
        "perfume", "skincare", "hair",
    ),
    "household": (
        "kitchen", "mug", "cup", "plate", "bowl", "tableware", "cookware", "furniture", "chair",
        "sofa", "household", "home", "decor", "kettle",
    ),
    "food": (
        "food", "snack", "edible", "beverage", "candy", "chocolate", "sauce", "fruit", "meat",
    ),
    "electronics": (
        "electronic", "battery", "charger", "phone", "headphone", "earbud", "speaker", "cable",
        "usb", "laptop",
    ),
    "toys": ("toy", "doll", "game", "puzzle", "plush", "child", "kid"),
    "office": ("pen", "pencil", "stapler", "notebook", "office", "desk"),
}

HTS_CATEGORY_TERMS: Dict[str, Tuple[str, ...]] = {
    "motor_vehicle": (
        "motor vehicle", "automobile", "automotive", "motor car", "truck", "tractor",
        "motorcycle", "brake", "chassis",
    ),
    "aircraft": ("aircraft", "airplane", "aeroplane", "helicopter", "spacecraft", "aviation"),
    "railway": ("railway", "tramway", "locomotive", "rolling stock"),
    "marine": ("ship", "boat", "vessel", "yacht"),
    "industrial": ("industrial", "machinery", "machine tool", "boiler", "turbine", "compressor"),
    "military": ("military", "weapon", "ammunition", "firearm", "armored"),
    "nuclear": ("nuclear", "reactor", "radioactive", "isotope"),
    "chemical_industrial": ("chemical", "reagent", "solvent"),
}

_HTS_PATTERNS: Dict[str, re.Pattern[str]] = {
    category: re.compile(r"\b(?:" + "|".join(re.escape(term) for term in terms) + r")s?\b")
    for category, terms in HTS_CATEGORY_TERMS.items()
}

MIN_CATEGORY_SCORE = 2


def product_categories(understanding: ProductUnderstanding) -> FrozenSet[str]:
    """Best-scoring product categories; long keywords count double."""

    tokens = set(chapter_guide.tokenize(understanding.text))
    scores: Dict[str, int] = {}
    for category, keywords in PRODUCT_CATEGORY_KEYWORDS.items():
        score = sum(2 if len(keyword) > 4 else 1 for keyword in keywords if keyword in tokens)
        if score >= MIN_CATEGORY_SCORE:
            scores[category] = score
    if not scores:
        return frozenset()
    best = max(scores.values())
    return frozenset(category for category, score in scores.items() if score == best)


def hts_categories(text: str) -> FrozenSet[str]:
    lowered = text.lower()
    return frozenset(category for category, pattern in _HTS_PATTERNS.items() if pattern.search(lowered))


# ---------------------------------------------------------------------------
# Rule table
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class ConflictContext:
    product: FrozenSet[str]
    hts: FrozenSet[str]
    product_tokens: FrozenSet[str]
    candidate: Candidate


@dataclass(frozen=True)
class ConflictRule:
    name: str
    predicate: Callable[[ConflictContext], bool]
    message: str
    suggested_branches: Tuple[str, ...] = ()
    severity: Severity = "critical"
    penalty: int = 40


def _pair(product: str, *hts: str) -> Callable[[ConflictContext], bool]:
    def predicate(ctx: ConflictContext) -> bool:
        return product in ctx.product and any(category in ctx.hts for category in hts)

    return predicate


def _finger_on_vehicle(ctx: ConflictContext) -> bool:
    return "finger" in ctx.product_tokens and "motor_vehicle" in ctx.hts


_WEARABLE_BRANCHES = ("71", "61", "62", "64", "65")
_TRANSPORT = ("motor_vehicle", "aircraft", "railway", "marine")

DEFAULT_RULES: Tuple[ConflictRule, ...] = (
    ConflictRule(
        name="finger_worn_vs_motor_vehicle",
        predicate=_finger_on_vehicle,
        message="Finger-worn product matched to a motor vehicle code; this is jewelry, not a vehicle part.",
        suggested_branches=("71",),
        penalty=50,
    ),
    ConflictRule(
        name="wearable_vs_transport",
        predicate=_pair("personal_wearable", *_TRANSPORT),
        message="Personal wearable product matched to a motor vehicle or transport equipment code.",
        suggested_branches=_WEARABLE_BRANCHES,
    ),
    ConflictRule(
        name="wearable_vs_industrial",
        predicate=_pair("personal_wearable", "industrial", "military"),
        message="Personal wearable product matched to an industrial or military code.",
        suggested_branches=_WEARABLE_BRANCHES,
    ),
    ConflictRule(
        name="personal_care_vs_vehicle",
        predicate=_pair("personal_care", "motor_vehicle", "industrial"),
        message="Personal care product matched to a vehicle or industrial code.",
        suggested_branches=("33", "34", "96"),
    ),
    ConflictRule(
        name="household_vs_vehicle",
        predicate=_pair("household", "motor_vehicle", "aircraft"),
        message="Household article matched to a vehicle code.",
        suggested_branches=("39", "69", "70", "73", "94"),
    ),
    ConflictRule(
        name="household_vs_military",
        predicate=_pair("household", "military"),
        message="Household article matched to a military code.",
        suggested_branches=("39", "69", "73", "94"),
    ),
    ConflictRule(
        name="food_vs_vehicle",
        predicate=_pair("food", "motor_vehicle", "industrial"),
        message="Food product matched to a vehicle or industrial code.",
        suggested_branches=("16", "17", "18", "19", "20", "21"),
    ),
    ConflictRule(
        name="food_vs_chemical",
        predicate=_pair("food", "chemical_industrial"),
        message="Food product matched to an industrial chemical code; confirm it is not a food preparation.",
        suggested_branches=("21", "22"),
        severity="warning",
        penalty=20,
    ),
    ConflictRule(
        name="toys_vs_military",
        predicate=_pair("toys", "military"),
        message="Toy matched to a military code; replicas and toy weapons belong in chapter 95.",
        suggested_branches=("95",),
        severity="warning",
        penalty=20,
    ),
    ConflictRule(
        name="consumer_vs_nuclear",
        predicate=lambda ctx: bool(
            ctx.product & {"personal_wearable", "personal_care", "household", "food"} and "nuclear" in ctx.hts
        ),
        message="Consumer product matched to a nuclear equipment code.",
        suggested_branches=(),
        penalty=50,
    ),
)


@dataclass(frozen=True)
class ValidationOutcome:
    is_valid: bool
    warnings: Tuple[str, ...] = ()
    suggested_branches: Tuple[str, ...] = ()
    penalty: int = 0
    rules: Tuple[str, ...] = ()


def validate(
    understanding: ProductUnderstanding,
    candidate: Candidate,
    rules: Sequence[ConflictRule] = DEFAULT_RULES,
) -> ValidationOutcome:
    """Run every rule against ``candidate``.

    ``suggested_branches`` comes from the heaviest critical rule that fired,
    so the most specific redirect wins.
    """

    ctx = ConflictContext(
        product=product_categories(understanding),
        hts=hts_categories(candidate.path_text),
        product_tokens=frozenset(chapter_guide.tokenize(understanding.text)),
        candidate=candidate,
    )
    fired: List[ConflictRule] = [rule for rule in rules if rule.predicate(ctx)]
    if not fired:
        return ValidationOutcome(is_valid=True)

    critical = sorted((rule for rule in fired if rule.severity == "critical"), key=lambda r: -r.penalty)
    warnings = tuple(f"{rule.message} ({candidate.formatted_code})" for rule in fired)
    suggested = critical[0].suggested_branches if critical else ()
    penalty = max(rule.penalty for rule in fired)
    logger.info(
        "Semantic conflict for %s: %s (product=%s, hts=%s)",
        candidate.formatted_code,
        ", ".join(rule.name for rule in fired),
        sorted(ctx.product),
        sorted(ctx.hts),
    )
    return ValidationOutcome(
        is_valid=not critical,
        warnings=warnings,
        suggested_branches=suggested,
        penalty=penalty,
        rules=tuple(rule.name for rule in fired),
    )
