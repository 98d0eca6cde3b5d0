"""Narrowing controller: answer now, ask, or give up.

The bounds are explicit so a session can never loop on questions:

* :data:`MAX_ROUNDS` caps how many answered rounds a session accepts; a
  classifier that still cannot decide after three answers needs a broker,
  not a fourth question.
* :data:`MAX_QUESTIONS` caps one round's question set so a caller is never
  handed a form.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import List, Tuple

from tariffsense.tariff.models import Candidate, CandidateBucket, NarrowingQuestion, ProductUnderstanding

logger = logging.getLogger(__name__)

MAX_ROUNDS = 3
MAX_QUESTIONS = 3
CONFIDENT_THRESHOLD = 0.8
CONFIDENT_MARGIN = 0.3


class NarrowingState(str, enum.Enum):
    SEARCHING = "searching"
    CONFIDENT = "confident"
    NEEDS_INPUT = "needs_input"
    AMBIGUOUS = "ambiguous"


@dataclass(frozen=True)
class NarrowingDecision:
    state: NarrowingState
    questions: Tuple[NarrowingQuestion, ...] = ()
    reason: str = ""


def holds_lead(selected: Candidate, bucket: CandidateBucket) -> bool:
    """Does ``selected``, at its own confidence, clear the bar against every other candidate?"""

    if selected.confidence <= CONFIDENT_THRESHOLD:
        return False
    rivals = [candidate.confidence for candidate in bucket.candidates if candidate.code != selected.code]
    return not rivals or selected.confidence - max(rivals) >= CONFIDENT_MARGIN


def is_confident(bucket: CandidateBucket) -> bool:
    top = bucket.top
    return top is not None and holds_lead(top, bucket)


def decide(
    understanding: ProductUnderstanding,
    bucket: CandidateBucket,
    questions: List[NarrowingQuestion],
    *,
    rounds: int,
) -> NarrowingDecision:
    """Pick the next state from the current bucket.

    ``rounds`` is the number of answered rounds already applied.
    """

    if not bucket.candidates:
        return NarrowingDecision(NarrowingState.AMBIGUOUS, reason="no candidates")
    if is_confident(bucket):
        return NarrowingDecision(NarrowingState.CONFIDENT, reason="clear leader")

    if rounds >= MAX_ROUNDS:
        reason = f"round limit {MAX_ROUNDS} reached"
    elif not understanding.unknowns and not questions:
        reason = "no open facts to ask about"
    elif len(bucket) < 2:
        reason = "single low-confidence candidate"
    elif not questions:
        reason = "no discriminating question"
    else:
        return NarrowingDecision(
            NarrowingState.NEEDS_INPUT,
            questions=tuple(questions[:MAX_QUESTIONS]),
            reason=f"{len(bucket)} candidates, unknowns {sorted(understanding.unknowns)}",
        )
    logger.info("Narrowing stopped as ambiguous: %s", reason)
    return NarrowingDecision(NarrowingState.AMBIGUOUS, reason=reason)
