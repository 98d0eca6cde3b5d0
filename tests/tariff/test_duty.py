from __future__ import annotations

import itertools
import json

import pytest

from tariffsense.tariff.duty_rate import parse_duty_rate
from tariffsense.tariff.duty_resolver import DutyResolver, stack_rates
from tariffsense.tariff.errors import ProgramTableError
from tariffsense.tariff.programs import ProgramTable, country_duty_summary
from tariffsense.tariff.taxonomy import TaxonomyStore

EMPTY_PROGRAMS = {"programs": [], "countries": []}


def _write_jsonl(path, rows):
    path.write_text("\n".join(json.dumps(row) for row in rows) + "\n", encoding="utf-8")
    return path


@pytest.fixture
def bowl_store(tmp_path):
    rows = [
        {"hts_code": "39", "description": "Plastics and articles thereof"},
        {"hts_code": "3924", "description": "Tableware and kitchenware, of plastics"},
        {"hts_code": "3924.10", "description": "Tableware and kitchenware", "general": "5%"},
        {"hts_code": "3924.10.20", "description": "Salad bowls"},
        {"hts_code": "3924.10.20.00", "description": "Salad bowls"},
        {"hts_code": "3924.90", "description": "Other"},
        {"hts_code": "3924.90.10", "description": "Bottles", "general": "4.4¢/kg"},
        {"hts_code": "40", "description": "Rubber and articles thereof"},
        {"hts_code": "4016", "description": "Other articles of vulcanized rubber"},
    ]
    return TaxonomyStore.from_jsonl(_write_jsonl(tmp_path / "bowls.jsonl", rows))


class TestRateInheritance:
    def test_leaf_inherits_from_six_digit_ancestor(self, bowl_store):
        duty = DutyResolver(bowl_store, ProgramTable.from_payload(EMPTY_PROGRAMS)).resolve("3924.10.20.00")

        assert duty.general_rate == "5%"
        assert duty.general_ad_valorem == pytest.approx(5.0)
        assert duty.inherited is True
        assert duty.rate_source_code == "392410"
        assert duty.effective_rate == pytest.approx(5.0)
        assert any("inherited from 3924.10" in note for note in duty.notes)

    def test_missing_rate_defaults_to_free(self, bowl_store):
        duty = DutyResolver(bowl_store, ProgramTable.from_payload(EMPTY_PROGRAMS)).resolve("4016")

        assert duty.general_rate == "Free"
        assert duty.rate_source_code is None
        assert duty.effective_rate == 0.0
        assert any("defaulting to Free" in note for note in duty.notes)

    def test_specific_rate_is_noted_not_summed(self, bowl_store):
        duty = DutyResolver(bowl_store, ProgramTable.from_payload(EMPTY_PROGRAMS)).resolve("39249010")

        assert duty.general_rate == "4.4¢/kg"
        assert duty.inherited is False
        assert duty.general_ad_valorem is None
        assert duty.effective_rate == 0.0
        assert any("not included" in note for note in duty.notes)

    def test_unknown_code_raises(self, store, programs):
        with pytest.raises(KeyError):
            DutyResolver(store, programs).resolve("9999.99.99.99")


def _two_program_table(order):
    programs = [
        {"id": "p20", "name": "Program Twenty", "rate": 20, "product_scope": "all"},
        {"id": "p25", "name": "Program Twenty-Five", "rate": 25, "product_scope": "all"},
    ]
    return ProgramTable.from_payload({"programs": programs, "countries": [{"code": "XX", "programs": list(order)}]})


def test_stacking_is_additive_in_either_order(store):
    forward = DutyResolver(store, _two_program_table(["p20", "p25"])).resolve("6912004400", "XX")
    reverse = DutyResolver(store, _two_program_table(["p25", "p20"])).resolve("6912004400", "XX")

    assert forward.effective_rate == pytest.approx(10 + 45)
    assert forward.effective_rate == reverse.effective_rate
    assert {p.program for p in forward.additional_programs} == {"Program Twenty", "Program Twenty-Five"}


def test_stack_rates_is_order_independent():
    rates = [0.1, 0.2, 0.3, 7.5]
    totals = {stack_rates(1.0, list(order)) for order in itertools.permutations(rates)}
    assert len(totals) == 1


def test_resolution_is_idempotent(store, programs):
    resolver = DutyResolver(store, programs)
    assert resolver.resolve("6912004400", "CN") == resolver.resolve("6912.00.44.00", "cn")


class TestShippedPrograms:
    def test_china_stacks_ieepa_and_flags_section_301(self, store, programs):
        duty = DutyResolver(store, programs).resolve("6912004400", "CN")

        assert duty.general_rate == "10%"
        assert duty.rate_source_code == "69120044"
        assert {p.program for p in duty.additional_programs} == {
            "IEEPA Fentanyl Emergency (China)",
            "IEEPA Universal Baseline Tariff",
        }
        assert len(duty.conditional_programs) == 4
        assert all(p.program.startswith("Section 301") for p in duty.conditional_programs)
        assert duty.effective_rate == pytest.approx(40.0)

    def test_mexico_reports_usmca_special_rate(self, store, programs):
        duty = DutyResolver(store, programs).resolve("6912004400", "MX")

        assert [s.program for s in duty.special_programs] == ["USMCA (S)"]
        assert duty.special_programs[0].rate == "Free"
        assert duty.effective_rate == pytest.approx(35.0)

    def test_unlisted_country_gets_default_profile(self, store, programs):
        duty = DutyResolver(store, programs).resolve("6912004400", "ZZ")
        assert [p.program for p in duty.additional_programs] == ["IEEPA Universal Baseline Tariff"]
        assert duty.effective_rate == pytest.approx(20.0)

    def test_no_origin_means_general_rate_only(self, store, programs):
        duty = DutyResolver(store, programs).resolve("6912004400")
        assert duty.additional_programs == []
        assert duty.effective_rate == pytest.approx(10.0)


class TestScopedPrograms:
    def _table(self, program):
        return ProgramTable.from_payload({"programs": [program], "countries": [{"code": "XX", "programs": [program["id"]]}]})

    def test_prefix_scope(self, store):
        table = self._table({"id": "ceramics", "name": "Ceramics duty", "rate": 15, "product_scope": "specific", "hts_prefixes": ["6912"]})
        resolver = DutyResolver(store, table)

        assert resolver.resolve("6912004400", "XX").effective_rate == pytest.approx(25.0)
        assert resolver.resolve("3924103000", "XX").effective_rate == pytest.approx(6.5)

    def test_exclusion_is_noted(self, store):
        table = self._table({"id": "broad", "name": "Broad duty", "rate": 10, "product_scope": "all", "exclusions": ["6912.00.44"]})
        duty = DutyResolver(store, table).resolve("6912004400", "XX")

        assert duty.additional_programs == []
        assert any("excluded" in note for note in duty.notes)


class TestProgramTableErrors:
    def test_duplicate_program(self):
        entry = {"id": "p", "rate": 1}
        with pytest.raises(ProgramTableError, match="duplicate"):
            ProgramTable.from_payload({"programs": [entry, entry]})

    def test_unknown_program_reference(self):
        with pytest.raises(ProgramTableError, match="unknown programs"):
            ProgramTable.from_payload({"programs": [], "countries": [{"code": "CN", "programs": ["missing"]}]})

    @pytest.mark.parametrize("rate", [-1, "abc", float("nan")])
    def test_bad_rate(self, rate):
        with pytest.raises(ProgramTableError):
            ProgramTable.from_payload({"programs": [{"id": "p", "rate": rate}]})

    def test_unreadable_file(self, tmp_path):
        with pytest.raises(ProgramTableError):
            ProgramTable.from_json(tmp_path / "missing.json")


def test_country_summary(programs):
    china = country_duty_summary("cn", programs)
    assert china.country == "CN"
    assert china.name == "China"
    assert len(china.programs) == 9
    assert china.unconditional_total == pytest.approx(30.0)

    mexico = country_duty_summary("MX", programs)
    assert mexico.special is not None and mexico.special.code == "S"

    other = country_duty_summary("ZZ", programs)
    assert other.name == "ZZ"
    assert other.unconditional_total == pytest.approx(10.0)


@pytest.mark.parametrize(
    "raw, kind, percent",
    [
        ("Free", "free", 0.0),
        ("6.5%", "ad_valorem", 6.5),
        ("4.4¢/kg", "specific", None),
        ("$1.20/doz + 3%", "compound", 3.0),
        ("2.4 cents/kg + 5.6%", "compound", 5.6),
        ("25 + see note", "unknown", None),
        ("", "unknown", None),
        ("see note 3", "unknown", None),
    ],
)
def test_parse_duty_rate(raw, kind, percent):
    parsed = parse_duty_rate(raw)
    assert parsed.type == kind
    assert parsed.percent == (pytest.approx(percent) if percent is not None else None)


def test_parse_specific_components():
    cents = parse_duty_rate("4.4¢/kg")
    assert cents.specific == pytest.approx(0.044)
    assert cents.specific_unit == "kg"
    dollars = parse_duty_rate("$1.20/doz + 3%")
    assert dollars.specific == pytest.approx(1.2)
    assert dollars.specific_unit == "doz"


def test_spelled_out_cents_are_converted_to_dollars():
    parsed = parse_duty_rate("2.4 cents/kg + 5.6%")
    assert parsed.specific == pytest.approx(0.024)
    assert parsed.specific_unit == "kg"
    assert parsed.raw == "2.4 cents/kg + 5.6%"
