"""Classification engine: description in, one defensible code out.

Control flow for one session::

    understand -> apply answers -> search -> rescore -> select
        -> validate (one bounded re-search on a critical conflict)
        -> narrowing decision -> duty -> ClassificationResult

The engine is stateless between calls.  A multi-round conversation is
replayed by passing every earlier answer back in ``previous_answers``.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from tariffsense.observability import log_event, session_scope
from tariffsense.settings import EngineSettings
from tariffsense.tariff.candidate_search import CandidateSearch
from tariffsense.tariff.duty_resolver import DutyResolver
from tariffsense.tariff.errors import OracleError
from tariffsense.tariff.models import (
    Candidate,
    CandidateBucket,
    ClassificationResult,
    ProductUnderstanding,
    candidate_model,
    hierarchy_model,
    question_model,
    understanding_model,
)
from tariffsense.tariff.narrowing import MAX_QUESTIONS, MAX_ROUNDS, NarrowingState, decide, holds_lead
from tariffsense.tariff.oracle import HeuristicOracle, OracleCircuit, ReasoningOracle
from tariffsense.tariff.programs import ProgramTable, load_program_table
from tariffsense.tariff.questions import generate_questions
from tariffsense.tariff.scoring import ConfidenceScorer
from tariffsense.tariff.taxonomy import TaxonomyStore, load_default_store
from tariffsense.tariff.understanding import apply_answers, canonical_key, understand_product
from tariffsense.tariff.validator import validate

logger = logging.getLogger(__name__)

NO_MATCH_MESSAGE = "No match found — please provide more detail about the product."
DEGRADED_CONFIDENCE_CAP = 0.5
UNRANKED_SELECTION_FACTOR = 0.8
MAX_ALTERNATIVES = 4


def build_oracle(settings: EngineSettings) -> ReasoningOracle:
    if settings.oracle == "openai":
        from tariffsense.tariff.openai_oracle import OpenAIOracle

        return OpenAIOracle.from_settings(settings)
    return HeuristicOracle()


def build_store(settings: EngineSettings) -> TaxonomyStore:
    """Taxonomy for ``settings``; shares path chains through Redis when configured."""

    if settings.redis_url:
        from tariffsense.caching import RedisPathCache, get_redis_client

        client = get_redis_client(settings.redis_url)
        if client.ping():
            return TaxonomyStore.from_jsonl(settings.taxonomy_path, path_cache=RedisPathCache(client))
        logger.warning("Redis at %s is unreachable; using the in-process path cache", settings.redis_url)
    return load_default_store(str(settings.taxonomy_path))


@dataclass
class _Session:
    circuit: OracleCircuit
    deadline: float
    clock: Callable[[], float]
    warnings: List[str] = field(default_factory=list)
    timed_out: bool = False

    def warn(self, message: str) -> None:
        if message not in self.warnings:
            self.warnings.append(message)

    def out_of_time(self) -> bool:
        if not self.timed_out and self.clock() >= self.deadline:
            self.timed_out = True
            logger.warning("Session deadline exceeded; returning best result so far")
        return self.timed_out


class ClassificationEngine:
    def __init__(
        self,
        store: Optional[TaxonomyStore] = None,
        oracle: Optional[ReasoningOracle] = None,
        *,
        settings: Optional[EngineSettings] = None,
        scorer: Optional[ConfidenceScorer] = None,
        programs: Optional[ProgramTable] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or EngineSettings.from_env()
        self.store = store if store is not None else build_store(self.settings)
        self.oracle = oracle if oracle is not None else build_oracle(self.settings)
        self.scorer = scorer or ConfidenceScorer()
        self.search = CandidateSearch(self.store, scorer=self.scorer, max_workers=self.settings.search_workers)
        table = programs if programs is not None else load_program_table(str(self.settings.programs_path))
        self.resolver = DutyResolver(self.store, table)
        self.clock = clock

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _answers(
        self,
        previous_answers: Optional[Mapping[str, str]],
        answered_rounds: Optional[int],
        session: _Session,
    ) -> Tuple[Dict[str, str], int]:
        """Return the answers to apply and how many rounds they came from.

        One round answers up to :data:`MAX_QUESTIONS` questions, so a caller
        that does not say how many rounds it has run is credited with the
        fewest rounds that could have produced its answers.
        """

        answers: Dict[str, str] = {}
        for key, value in (previous_answers or {}).items():
            if value is None or not str(value).strip():
                continue
            answers[canonical_key(key)] = str(value).strip()
        limit = MAX_QUESTIONS * MAX_ROUNDS
        if len(answers) > limit:
            session.warn(f"Only the first {limit} answers were applied.")
            answers = dict(list(answers.items())[:limit])
        if answered_rounds is None:
            rounds = math.ceil(len(answers) / MAX_QUESTIONS)
        else:
            rounds = max(answered_rounds, 1 if answers else 0)
        return answers, min(rounds, MAX_ROUNDS)

    def _search(
        self,
        understanding: ProductUnderstanding,
        facts: Mapping[str, str],
        session: _Session,
        *,
        scope: ProductUnderstanding,
        branches: Optional[Tuple[str, ...]] = None,
    ) -> CandidateBucket:
        bucket, warnings = self.search.search(
            understanding, oracle=session.circuit, branches=branches, scope=scope
        )
        for warning in warnings:
            session.warn(warning)
        for key, value in facts.items():
            bucket = self.scorer.rescore(bucket, key, value)
        return bucket

    def _select(
        self,
        understanding: ProductUnderstanding,
        bucket: CandidateBucket,
        session: _Session,
    ) -> Tuple[Candidate, str]:
        """Return the provisional pick and the rationale behind it."""

        top = bucket.candidates[0]
        if session.out_of_time():
            return top, top.reasoning
        try:
            payload = session.circuit.select_code(understanding, bucket.candidates)
        except OracleError as exc:
            logger.warning("Code selection fell back to ranking: %s", exc)
            session.warn("Code selection used the top-ranked candidate; reasoning service unavailable.")
            return top, top.reasoning

        chosen = bucket.find(payload.code)
        if chosen is not None:
            return chosen, payload.rationale or chosen.reasoning
        rescued = self.search.rescue(payload.code, understanding, branches=bucket.branches)
        if rescued is not None:
            session.warn(f"Selected code {rescued.formatted_code} was not among the ranked candidates.")
            return rescued, payload.rationale or rescued.reasoning
        session.warn(
            f"Selected code {payload.code!r} is not a valid code in the searched chapters; "
            f"using the top-ranked candidate {top.formatted_code}."
        )
        demoted = top.rescored(top.confidence * UNRANKED_SELECTION_FACTOR)
        return demoted, top.reasoning

    def _validate(
        self,
        understanding: ProductUnderstanding,
        scope: ProductUnderstanding,
        facts: Mapping[str, str],
        bucket: CandidateBucket,
        selected: Candidate,
        rationale: str,
        session: _Session,
    ) -> Tuple[CandidateBucket, Candidate, str]:
        outcome = validate(understanding, selected)
        for warning in outcome.warnings:
            session.warn(warning)
        if outcome.is_valid or not outcome.suggested_branches or session.out_of_time():
            return bucket, selected, rationale

        retry_bucket = self._search(
            understanding, facts, session, scope=scope, branches=outcome.suggested_branches
        )
        if not retry_bucket.candidates:
            session.warn("Re-search after the semantic conflict found no candidates; keeping the original code.")
            return bucket, selected, rationale
        retry_selected, retry_rationale = self._select(understanding, retry_bucket, session)
        retry_outcome = validate(understanding, retry_selected)
        if not retry_outcome.is_valid:
            for warning in retry_outcome.warnings:
                session.warn(warning)
            session.warn("Semantic conflict persisted after re-search; keeping the original code.")
            return bucket, selected, rationale
        session.warn(
            f"Re-searched chapters {', '.join(outcome.suggested_branches)} after the semantic conflict; "
            f"replaced {selected.formatted_code} with {retry_selected.formatted_code}."
        )
        return retry_bucket, retry_selected, retry_rationale

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def classify(
        self,
        description: str,
        material: Optional[str] = None,
        origin: Optional[str] = None,
        previous_answers: Optional[Mapping[str, str]] = None,
        *,
        answered_rounds: Optional[int] = None,
    ) -> ClassificationResult:
        """Classify ``description``; see the module docstring for the flow.

        ``answered_rounds`` is how many question rounds produced
        ``previous_answers``; when omitted it is inferred from their count.
        Raises ``ValueError`` for an empty description.  Oracle failures,
        empty searches and semantic conflicts surface as warnings.
        """

        if not description or not description.strip():
            raise ValueError("description must not be empty")

        with session_scope() as run_id:
            session = _Session(
                circuit=OracleCircuit(self.oracle),
                deadline=self.clock() + self.settings.session_deadline,
                clock=self.clock,
            )
            result = self._classify(description, material, origin, previous_answers, answered_rounds, session)
            result = result.model_copy(update={"run_id": run_id})
            log_event(
                "classification finished",
                status=result.status,
                code=result.selected_code,
                confidence=result.confidence,
                rounds=result.rounds,
            )
            return result

    def _classify(
        self,
        description: str,
        material: Optional[str],
        origin: Optional[str],
        previous_answers: Optional[Mapping[str, str]],
        answered_rounds: Optional[int],
        session: _Session,
    ) -> ClassificationResult:
        # Chapters and admitted leaves come from the unanswered understanding;
        # answers only filter and rescore within that set.
        scope = understand_product(description, oracle=session.circuit, material=material)
        for note in scope.notes:
            session.warn(note)
        answers, rounds = self._answers(previous_answers, answered_rounds, session)
        understanding = apply_answers(scope, answers)
        # A caller-supplied material narrows the same way an answer does.
        facts = dict(answers)
        if material and material.strip():
            facts.setdefault("material", material.strip())

        bucket = self._search(understanding, facts, session, scope=scope)
        if not bucket.candidates:
            session.warn(NO_MATCH_MESSAGE)
            return ClassificationResult(
                status="ambiguous",
                confidence=0.0,
                rationale=NO_MATCH_MESSAGE,
                warnings=list(session.warnings),
                understanding=understanding_model(understanding),
                rounds=rounds,
            )

        selected, rationale = self._select(understanding, bucket, session)
        bucket, selected, rationale = self._validate(
            understanding, scope, facts, bucket, selected, rationale, session
        )

        questions = generate_questions(understanding, bucket, max_questions=MAX_QUESTIONS, scorer=self.scorer)
        decision = decide(understanding, bucket, questions, rounds=rounds)
        state = decision.state
        if session.out_of_time():
            session.warn(
                f"Session deadline of {self.settings.session_deadline:g}s exceeded; returning the best result so far."
            )
            state = NarrowingState.AMBIGUOUS
        leader = bucket.top
        if state is NarrowingState.CONFIDENT and leader is not None and leader.code != selected.code:
            check = validate(understanding, leader)
            if check.is_valid:
                logger.info("Clear leader %s replaces selection %s", leader.formatted_code, selected.formatted_code)
                selected, rationale = leader, leader.reasoning
            else:
                for warning in check.warnings:
                    session.warn(warning)
                session.warn(
                    f"Kept {selected.formatted_code}: the higher-ranked {leader.formatted_code} fails semantic validation."
                )
        if state is NarrowingState.CONFIDENT and not holds_lead(selected, bucket):
            logger.info("%s does not hold a confident lead; reporting as ambiguous", selected.formatted_code)
            state = NarrowingState.AMBIGUOUS

        confidence = selected.confidence
        if session.circuit.is_open:
            session.warn(
                "Reasoning service returned unusable responses; result is based on keyword heuristics only."
            )
            confidence = min(confidence, DEGRADED_CONFIDENCE_CAP)
            if state is NarrowingState.CONFIDENT:
                state = NarrowingState.AMBIGUOUS

        duty = self.resolver.resolve(selected.code, origin)
        alternatives = [candidate_model(c) for c in bucket.candidates if c.code != selected.code][:MAX_ALTERNATIVES]
        logger.info(
            "Classified %r as %s (%s, confidence %.2f, %d candidates)",
            description[:60],
            selected.formatted_code,
            state.value,
            confidence,
            len(bucket),
        )
        return ClassificationResult(
            status=state.value,
            selected_code=selected.code,
            formatted_code=selected.formatted_code,
            description=selected.description,
            full_description=selected.full_description,
            hierarchy_path=hierarchy_model(selected.hierarchy_path),
            confidence=round(confidence, 4),
            duty_rate=duty,
            rationale=rationale,
            warnings=list(session.warnings),
            questions=[question_model(q) for q in decision.questions] if state is NarrowingState.NEEDS_INPUT else [],
            alternatives=alternatives,
            understanding=understanding_model(understanding),
            rounds=rounds,
        )


@lru_cache(maxsize=1)
def default_engine() -> ClassificationEngine:
    return ClassificationEngine()


def classify(
    description: str,
    material: Optional[str] = None,
    origin: Optional[str] = None,
    previous_answers: Optional[Mapping[str, str]] = None,
    *,
    answered_rounds: Optional[int] = None,
    engine: Optional[ClassificationEngine] = None,
) -> ClassificationResult:
    """Classify one product description with the default (or given) engine."""

    return (engine or default_engine()).classify(
        description,
        material=material,
        origin=origin,
        previous_answers=previous_answers,
        answered_rounds=answered_rounds,
    )
