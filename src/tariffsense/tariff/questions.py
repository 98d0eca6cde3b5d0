"""Disambiguation questions built from the surviving candidates.

Options are read off the candidates themselves (the materials, audiences
and constructions their descriptions name), so every option a caller picks
removes at least one candidate.  The generic material list is only offered
when no candidate names a material at all.

A value question is asked whenever sibling codes split on a declared value
("Valued not over $18 per dozen"), whether or not value is among the
understanding's unknowns.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from tariffsense.tariff import chapter_guide
from tariffsense.tariff.models import Candidate, CandidateBucket, NarrowingQuestion, ProductUnderstanding
from tariffsense.tariff.scoring import ConfidenceScorer, audience_of, construction_of, value_condition

logger = logging.getLogger(__name__)

MATERIAL_PRIORITY = 100
ATTRIBUTE_PRIORITY = 50
VALUE_PRIORITY = 40

_AUDIENCE_LABELS = {"men": "Men's or boys'", "women": "Women's or girls'"}
_CONSTRUCTION_LABELS = {"knitted": "Knitted or crocheted", "woven": "Woven"}


def _material_labels(candidate: Candidate) -> Set[str]:
    return chapter_guide.materials_in(candidate.path_text)


def _audience_labels(candidate: Candidate) -> Set[str]:
    found = audience_of(candidate.path_text)
    return {_AUDIENCE_LABELS[found]} if found else set()


def _construction_labels(candidate: Candidate) -> Set[str]:
    found = construction_of(candidate.path_text, candidate.chapter)
    return {_CONSTRUCTION_LABELS[found]} if found else set()


def _value_labels(candidate: Candidate) -> Set[str]:
    condition = value_condition(candidate.path_text)
    return {condition.label} if condition else set()


# fact -> (question text, priority, label extractor)
_QUESTION_TABLE: Dict[str, Tuple[str, int, Callable[[Candidate], Set[str]]]] = {
    "material": ("What is the product primarily made of?", MATERIAL_PRIORITY, _material_labels),
    "audience": ("Is the product for men/boys or women/girls?", ATTRIBUTE_PRIORITY, _audience_labels),
    "construction": ("Is the fabric knitted/crocheted or woven?", ATTRIBUTE_PRIORITY, _construction_labels),
    "value": ("What is the declared customs value?", VALUE_PRIORITY, _value_labels),
}


def _options(candidates: Sequence[Candidate], labels: Callable[[Candidate], Set[str]]) -> List[str]:
    """Distinct labels in candidate order (highest confidence first)."""

    seen: List[str] = []
    for candidate in candidates:
        for label in sorted(labels(candidate)):
            if label not in seen:
                seen.append(label)
    return seen


def _least_eliminated(
    scorer: ConfidenceScorer,
    candidates: Sequence[Candidate],
    fact: str,
    options: Sequence[str],
) -> int:
    """Candidates removed by the least selective option."""

    counts = [
        sum(1 for candidate in candidates if scorer.verdict(candidate, fact, option) == "contradicts")
        for option in options
    ]
    return min(counts) if counts else 0


def build_question(
    fact: str,
    bucket: CandidateBucket,
    *,
    scorer: Optional[ConfidenceScorer] = None,
) -> Optional[NarrowingQuestion]:
    """Question for ``fact``, or ``None`` when no answer would narrow the set."""

    if fact not in _QUESTION_TABLE:
        return None
    text, priority, labels = _QUESTION_TABLE[fact]
    scorer = scorer or ConfidenceScorer()
    candidates = bucket.candidates
    options = _options(candidates, labels)

    if len(options) < 2:
        if fact == "material" and not options and len(candidates) > 1:
            logger.debug("No material named by %d candidates; offering the generic list", len(candidates))
            return NarrowingQuestion(
                id=fact,
                question_text=text,
                options=chapter_guide.GENERIC_MATERIAL_OPTIONS,
                impact_estimate=f"Confirms the material for {len(candidates)} candidates",
                eliminates=0,
                priority=priority,
            )
        return None

    eliminates = _least_eliminated(scorer, candidates, fact, options)
    if eliminates == 0:
        return None
    return NarrowingQuestion(
        id=fact,
        question_text=text,
        options=tuple(options),
        impact_estimate=f"Eliminates at least {eliminates} of {len(candidates)} candidates",
        eliminates=eliminates,
        priority=priority,
    )


def generate_questions(
    understanding: ProductUnderstanding,
    bucket: CandidateBucket,
    *,
    max_questions: int = 3,
    scorer: Optional[ConfidenceScorer] = None,
) -> List[NarrowingQuestion]:
    """Prioritised questions for the open facts, plus value when siblings split on it."""

    if len(bucket) < 2:
        return []
    facts = set(understanding.unknowns)
    if not understanding.is_known("value") and any(_value_labels(c) for c in bucket.candidates):
        facts.add("value")
    questions = []
    for fact in sorted(facts):
        question = build_question(fact, bucket, scorer=scorer)
        if question is not None:
            questions.append(question)
    questions.sort(key=lambda q: (-q.priority, -q.eliminates, q.id))
    return questions[:max_questions]
