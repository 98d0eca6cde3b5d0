from __future__ import annotations

import pytest

from tariffsense.tariff.models import ProductUnderstanding
from tariffsense.tariff.oracle import HeuristicOracle, UnderstandingPayload
from tariffsense.tariff.understanding import apply_answer, apply_answers, canonical_key, understand_product


class PayloadOracle:
    name = "scripted"

    def __init__(self, payload: UnderstandingPayload) -> None:
        self.payload = payload

    def understand(self, description, hints):
        return self.payload


def _assert_disjoint(understanding: ProductUnderstanding) -> None:
    stated, inferred = set(understanding.stated), set(understanding.inferred)
    assert not stated & inferred
    assert not (stated | inferred) & understanding.unknowns


def test_bare_material_modifier_is_not_a_statement():
    understanding = understand_product("ceramic coffee mug", oracle=HeuristicOracle())

    assert understanding.product_type == "mug"
    assert understanding.stated["product_type"] == "mug"
    assert "material" in understanding.unknowns
    assert understanding.material is None
    assert understanding.source == "heuristic"
    assert understanding.confidence <= 0.5
    _assert_disjoint(understanding)


def test_material_hint_is_stated():
    understanding = understand_product("coffee mug", oracle=HeuristicOracle(), material="Ceramic")

    assert understanding.stated["material"] == "ceramic"
    assert understanding.material == "ceramic"
    assert "material" not in understanding.unknowns
    _assert_disjoint(understanding)


def test_composition_phrase_states_material():
    understanding = understand_product("travel mug made of stainless steel", oracle=HeuristicOracle())
    assert understanding.stated["material"] == "stainless steel"
    assert not understanding.unknowns


def test_apparel_asks_for_audience_and_construction():
    understanding = understand_product("t-shirt made of cotton", oracle=HeuristicOracle())
    assert understanding.product_type == "t-shirt"
    assert understanding.stated["material"] == "cotton"
    assert understanding.unknowns == frozenset({"audience", "construction"})


def test_oracle_failure_falls_back_to_heuristics(failing_oracle):
    understanding = understand_product("ceramic coffee mug", oracle=failing_oracle)

    assert failing_oracle.calls == 1
    assert understanding.source == "heuristic"
    assert understanding.confidence <= 0.5
    assert understanding.notes
    assert "material" in understanding.unknowns


def test_oracle_payload_is_normalized_into_disjoint_buckets():
    payload = UnderstandingPayload(
        product_type="mug",
        stated={"product_type": "mug", "material": "ceramic"},
        inferred={"material": "porcelain", "function": "drinking"},
        unknowns=["material", "Gender"],
        confidence=0.8,
    )
    understanding = understand_product("ceramic mug", oracle=PayloadOracle(payload))

    assert understanding.source == "oracle"
    assert understanding.confidence == pytest.approx(0.8)
    assert dict(understanding.stated) == {"product_type": "mug", "material": "ceramic"}
    assert dict(understanding.inferred) == {"function": "drinking"}
    assert understanding.unknowns == frozenset({"audience"})


def test_empty_description_rejected():
    with pytest.raises(ValueError):
        understand_product("   ", oracle=HeuristicOracle())


def test_overlapping_buckets_rejected():
    with pytest.raises(ValueError, match="more than one bucket"):
        ProductUnderstanding(
            raw_description="mug",
            product_type="mug",
            stated={"material": "ceramic"},
            unknowns=frozenset({"material"}),
        )


class TestAnswers:
    def test_answer_moves_fact_into_stated(self):
        understanding = understand_product("ceramic coffee mug", oracle=HeuristicOracle())
        answered = apply_answer(understanding, "Material", "Ceramic")

        assert answered.stated["material"] == "ceramic"
        assert answered.material == "ceramic"
        assert "material" not in answered.unknowns
        assert understanding.material is None
        _assert_disjoint(answered)

    def test_unknowns_never_grow(self):
        understanding = understand_product("t-shirt made of cotton", oracle=HeuristicOracle())
        before = understanding.unknowns
        after = apply_answers(understanding, {"gender": "Women's or girls'", "colour": "red"})

        assert after.unknowns <= before
        assert after.stated["audience"] == "Women's or girls'"
        assert after.audience == "Women's or girls'"
        assert after.unknowns == frozenset({"construction"})

    def test_blank_answer_is_ignored(self):
        understanding = understand_product("ceramic coffee mug", oracle=HeuristicOracle())
        assert apply_answer(understanding, "material", "  ") is understanding


def test_canonical_key_aliases():
    assert canonical_key("Gender") == "audience"
    assert canonical_key("knit-or-woven") == "construction"
    assert canonical_key("fiber composition") == "material"
