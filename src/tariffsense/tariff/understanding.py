"""Turn a raw product description into a :class:`ProductUnderstanding`."""

from __future__ import annotations

import logging
from typing import Dict, Mapping, Optional, Set

from tariffsense.tariff.errors import OracleError
from tariffsense.tariff.models import ATTRIBUTE_KEYS, ProductUnderstanding
from tariffsense.tariff.oracle import HeuristicOracle, ReasoningOracle, UnderstandingPayload

logger = logging.getLogger(__name__)

HEURISTIC_CONFIDENCE_CAP = 0.5

# Question ids and loose answer keys -> canonical fact keys.
_KEY_ALIASES: Dict[str, str] = {
    "gender": "audience",
    "fiber": "material",
    "fibre": "material",
    "fiber_composition": "material",
    "composition": "material",
    "use": "function",
    "purpose": "function",
    "knit_or_woven": "construction",
}


def canonical_key(key: str) -> str:
    cleaned = key.strip().lower().replace("-", "_").replace(" ", "_")
    return _KEY_ALIASES.get(cleaned, cleaned)


def _normalize(
    payload: UnderstandingPayload,
    *,
    description: str,
    hints: Mapping[str, str],
    source: str,
    notes: tuple[str, ...] = (),
) -> ProductUnderstanding:
    stated = {canonical_key(k): v.strip() for k, v in payload.stated.items() if v.strip()}
    inferred = {canonical_key(k): v.strip() for k, v in payload.inferred.items() if v.strip()}

    # Attribute fields the oracle filled without saying where they came from.
    for key in ATTRIBUTE_KEYS:
        value = getattr(payload, key)
        if value and key not in stated and key not in inferred:
            inferred[key] = value.strip()

    # Caller hints are statements, whatever the oracle thought.
    for key, value in hints.items():
        if value:
            stated[key] = value.strip().lower() if key == "material" else value.strip()

    for key in list(inferred):
        if key in stated:
            del inferred[key]

    unknowns: Set[str] = {canonical_key(item) for item in payload.unknowns if item.strip()}
    unknowns -= set(stated) | set(inferred)
    if "material" not in stated and "material" not in inferred:
        unknowns.add("material")

    confidence = payload.confidence
    if source == "heuristic":
        confidence = min(confidence, HEURISTIC_CONFIDENCE_CAP)

    return ProductUnderstanding(
        raw_description=description,
        product_type=stated.get("product_type") or inferred.get("product_type") or payload.product_type,
        material=stated.get("material") or inferred.get("material"),
        function=stated.get("function") or inferred.get("function"),
        construction=stated.get("construction") or inferred.get("construction"),
        audience=stated.get("audience") or inferred.get("audience"),
        stated=stated,
        inferred=inferred,
        unknowns=frozenset(unknowns),
        confidence=confidence,
        source="heuristic" if source == "heuristic" else "oracle",
        notes=notes,
    )


def understand_product(
    description: str,
    *,
    oracle: ReasoningOracle,
    material: Optional[str] = None,
    use: Optional[str] = None,
) -> ProductUnderstanding:
    """Extract stated, inferred and unknown facts from ``description``.

    Oracle failures never propagate: the heuristic oracle answers instead
    and the resulting understanding is capped at
    :data:`HEURISTIC_CONFIDENCE_CAP`.
    """

    text = (description or "").strip()
    if not text:
        raise ValueError("description must not be empty")

    hints = {key: value for key, value in (("material", material), ("function", use)) if value and value.strip()}
    notes: tuple[str, ...] = ()
    source = "heuristic" if oracle.name == HeuristicOracle.name else "oracle"
    try:
        payload = oracle.understand(text, hints)
    except OracleError as exc:
        logger.warning("Product understanding fell back to heuristics: %s", exc)
        payload = HeuristicOracle().understand(text, hints)
        source = "heuristic"
        notes = (f"Reasoning service unavailable for product understanding ({exc}); keyword heuristics used.",)

    understanding = _normalize(payload, description=text, hints=hints, source=source, notes=notes)
    logger.debug(
        "Understanding (%s): type=%s stated=%s unknowns=%s",
        understanding.source,
        understanding.product_type,
        sorted(understanding.stated),
        sorted(understanding.unknowns),
    )
    return understanding


def apply_answer(understanding: ProductUnderstanding, key: str, answer: str) -> ProductUnderstanding:
    """Record a user answer as a stated fact; ``unknowns`` never grows."""

    fact = canonical_key(key)
    value = answer.strip()
    if not value:
        return understanding
    if fact == "material":
        value = value.lower()
    stated = dict(understanding.stated)
    inferred = dict(understanding.inferred)
    stated[fact] = value
    inferred.pop(fact, None)
    changes = {fact: value} if fact in ATTRIBUTE_KEYS else {}
    return ProductUnderstanding(
        raw_description=understanding.raw_description,
        product_type=changes.get("product_type", understanding.product_type),
        material=changes.get("material", understanding.material),
        function=changes.get("function", understanding.function),
        construction=changes.get("construction", understanding.construction),
        audience=changes.get("audience", understanding.audience),
        stated=stated,
        inferred=inferred,
        unknowns=understanding.unknowns - {fact},
        confidence=understanding.confidence,
        source=understanding.source,
        notes=understanding.notes,
    )


def apply_answers(understanding: ProductUnderstanding, answers: Mapping[str, str]) -> ProductUnderstanding:
    for key, answer in answers.items():
        understanding = apply_answer(understanding, key, answer)
    return understanding
