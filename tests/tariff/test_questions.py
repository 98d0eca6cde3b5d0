from __future__ import annotations

import pytest

from tariffsense.tariff import chapter_guide
from tariffsense.tariff.candidate_search import CandidateSearch
from tariffsense.tariff.models import CandidateBucket
from tariffsense.tariff.narrowing import MAX_ROUNDS, NarrowingState, decide, is_confident
from tariffsense.tariff.oracle import HeuristicOracle
from tariffsense.tariff.questions import build_question, generate_questions
from tariffsense.tariff.scoring import ConfidenceScorer
from tariffsense.tariff.understanding import apply_answer, understand_product


def _search(store, description, **hints):
    understanding = understand_product(description, oracle=HeuristicOracle(), **hints)
    bucket, _ = CandidateSearch(store, max_workers=2).search(understanding, oracle=HeuristicOracle())
    return understanding, bucket


def test_material_question_for_mug(store):
    understanding, bucket = _search(store, "ceramic coffee mug")

    questions = generate_questions(understanding, bucket)

    assert [q.id for q in questions] == ["material"]
    question = questions[0]
    assert set(question.options) == {"Ceramic", "Porcelain/China", "Plastic", "Metal"}
    assert question.eliminates == 3
    assert question.impact_estimate == "Eliminates at least 3 of 4 candidates"
    assert question.priority == 100


def test_apparel_questions_are_read_off_the_candidates(store):
    understanding, bucket = _search(store, "t-shirt made of cotton")

    questions = generate_questions(understanding, bucket)

    assert [q.id for q in questions] == ["audience", "construction"]
    audience, construction = questions
    assert set(audience.options) == {"Men's or boys'", "Women's or girls'"}
    assert set(construction.options) == {"Knitted or crocheted", "Woven"}
    assert all(q.eliminates >= 1 for q in questions)


def test_generic_material_list_is_a_last_resort(store):
    understanding = understand_product("plush toy", oracle=HeuristicOracle())
    scorer = ConfidenceScorer()
    candidates = tuple(
        scorer.score(store.path(code), understanding, in_shortlist=True) for code in ("9503000071", "9503000090")
    )

    question = build_question("material", CandidateBucket(candidates, total_found=2))

    assert question is not None
    assert question.options == chapter_guide.GENERIC_MATERIAL_OPTIONS
    assert question.eliminates == 0


def test_no_questions_for_a_single_candidate(store):
    understanding, bucket = _search(store, "ceramic coffee mug")
    single = CandidateBucket(bucket.candidates[:1], total_found=1)
    assert generate_questions(understanding, single) == []


def test_fact_without_question_template(store):
    _, bucket = _search(store, "ceramic coffee mug")
    assert build_question("function", bucket) is None


class TestDecide:
    def test_needs_input_with_open_material(self, store):
        understanding, bucket = _search(store, "ceramic coffee mug")
        questions = generate_questions(understanding, bucket)

        decision = decide(understanding, bucket, questions, rounds=0)

        assert decision.state is NarrowingState.NEEDS_INPUT
        assert [q.id for q in decision.questions] == ["material"]

    def test_round_limit_stops_asking(self, store):
        understanding, bucket = _search(store, "ceramic coffee mug")
        questions = generate_questions(understanding, bucket)

        decision = decide(understanding, bucket, questions, rounds=MAX_ROUNDS)

        assert decision.state is NarrowingState.AMBIGUOUS
        assert decision.questions == ()

    def test_empty_bucket_is_ambiguous(self, store):
        understanding, _ = _search(store, "ceramic coffee mug")
        decision = decide(understanding, CandidateBucket(), [], rounds=0)
        assert decision.state is NarrowingState.AMBIGUOUS

    def test_clear_leader_is_confident(self, store):
        understanding, bucket = _search(store, "ceramic coffee mug")
        narrowed = ConfidenceScorer().rescore(bucket, "material", "ceramic")

        decision = decide(understanding, narrowed, [], rounds=1)

        assert decision.state is NarrowingState.CONFIDENT


@pytest.mark.parametrize(
    "scores, expected",
    [
        ((0.9,), True),
        ((0.8,), False),
        ((0.95, 0.6), True),
        ((0.95, 0.7), False),
    ],
)
def test_confidence_threshold_and_margin(store, scores, expected):
    understanding = understand_product("ceramic coffee mug", oracle=HeuristicOracle())
    scorer = ConfidenceScorer()
    base = scorer.score(store.path("6912004400"), understanding, in_shortlist=True)
    bucket = CandidateBucket(tuple(base.rescored(score) for score in scores), total_found=len(scores))
    assert is_confident(bucket) is expected


def test_value_question_for_split_siblings(store):
    understanding = understand_product("silver ring", oracle=HeuristicOracle())
    scorer = ConfidenceScorer()
    candidates = tuple(
        scorer.score(store.path(code), understanding, in_shortlist=True)
        for code in ("7113112000", "7113115000", "7113195010")
    )

    questions = generate_questions(understanding, CandidateBucket(candidates, total_found=3))

    value = next(q for q in questions if q.id == "value")
    assert value.question_text == "What is the declared customs value?"
    assert set(value.options) == {"Not over $18 per dozen pieces or parts", "Over $18 per dozen pieces or parts"}
    assert value.eliminates == 1
    assert value.priority == 40


def test_no_value_question_once_value_is_stated(store):
    understanding = apply_answer(understand_product("silver ring", oracle=HeuristicOracle()), "value", "$25")
    scorer = ConfidenceScorer()
    candidates = tuple(
        scorer.score(store.path(code), understanding, in_shortlist=True) for code in ("7113112000", "7113115000")
    )

    questions = generate_questions(understanding, CandidateBucket(candidates, total_found=2))

    assert "value" not in [q.id for q in questions]


def test_value_question_keeps_narrowing_open(store):
    understanding = understand_product("silver ring", oracle=HeuristicOracle(), material="silver")
    scorer = ConfidenceScorer()
    candidates = tuple(
        scorer.score(store.path(code), understanding, in_shortlist=True).rescored(0.5)
        for code in ("7113112000", "7113115000")
    )
    bucket = CandidateBucket(candidates, total_found=2)
    questions = generate_questions(understanding, bucket)

    decision = decide(understanding, bucket, questions, rounds=0)

    assert decision.state is NarrowingState.NEEDS_INPUT
    assert [q.id for q in decision.questions] == ["value"]
