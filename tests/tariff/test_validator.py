from __future__ import annotations

from tariffsense.tariff.oracle import HeuristicOracle
from tariffsense.tariff.scoring import ConfidenceScorer
from tariffsense.tariff.understanding import understand_product
from tariffsense.tariff.validator import ConflictRule, hts_categories, product_categories, validate


def _candidate(store, code, understanding):
    return ConfidenceScorer().score(store.path(code), understanding, in_shortlist=True)


def test_finger_ring_on_vehicle_seal_is_critical(store):
    understanding = understand_product("rubber ring worn on finger", oracle=HeuristicOracle())
    candidate = _candidate(store, "4016931010", understanding)

    outcome = validate(understanding, candidate)

    assert not outcome.is_valid
    assert outcome.suggested_branches == ("71",)
    assert outcome.penalty == 50
    assert "finger_worn_vs_motor_vehicle" in outcome.rules
    assert "wearable_vs_transport" in outcome.rules
    assert all(warning.endswith("(4016.93.10.10)") for warning in outcome.warnings)


def test_household_article_on_vehicle_part(store):
    understanding = understand_product("kitchen mug", oracle=HeuristicOracle())
    assert product_categories(understanding) == frozenset({"household"})

    outcome = validate(understanding, _candidate(store, "8708998180", understanding))

    assert not outcome.is_valid
    assert outcome.rules == ("household_vs_vehicle",)
    assert outcome.suggested_branches == ("39", "69", "70", "73", "94")


def test_consistent_pair_is_valid(store):
    understanding = understand_product("kitchen mug", oracle=HeuristicOracle())
    outcome = validate(understanding, _candidate(store, "6912004400", understanding))
    assert outcome.is_valid
    assert outcome.warnings == ()
    assert outcome.penalty == 0


def test_warning_rules_do_not_invalidate(store):
    understanding = understand_product("kitchen mug", oracle=HeuristicOracle())
    rules = (ConflictRule(name="always", predicate=lambda ctx: True, message="Check the heading", severity="warning", penalty=5),)

    outcome = validate(understanding, _candidate(store, "6912004400", understanding), rules)

    assert outcome.is_valid
    assert outcome.warnings == ("Check the heading (6912.00.44.00)",)
    assert outcome.suggested_branches == ()
    assert outcome.penalty == 5


def test_weak_product_signal_has_no_category():
    understanding = understand_product("ceramic coffee mug", oracle=HeuristicOracle())
    assert product_categories(understanding) == frozenset()


def test_hts_categories_use_word_boundaries():
    assert hts_categories("Parts for railway locomotives and aircraft") == frozenset({"railway", "aircraft"})
    assert hts_categories("Brakes and servo-brakes") == frozenset({"motor_vehicle"})
    assert hts_categories("Relationship counselling guides") == frozenset()
