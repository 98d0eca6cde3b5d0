from __future__ import annotations

import json
from concurrent.futures import ThreadPoolExecutor

import pytest

from tariffsense.tariff.errors import TaxonomyError
from tariffsense.tariff.taxonomy import InMemoryPathCache, TaxonomyStore, format_code, normalize_code


def test_format_and_normalize_codes():
    assert normalize_code("6912.00.44.00") == "6912004400"
    assert format_code("6912004400") == "6912.00.44.00"
    assert format_code("691200") == "6912.00"
    assert format_code("69") == "69"


def test_sample_store_levels(store):
    assert len(store) == 122
    assert [node.code for node in store.chapters()] == [
        "39", "40", "61", "62", "69", "71", "73", "85", "87", "94", "95",
    ]
    node = store.get("6912.00.44.00")
    assert node.level == "statistical"
    assert node.parent_code == "69120044"
    assert node.base_rate is None
    assert store.get("69120044").base_rate == "10%"


def test_path_walks_from_chapter_to_leaf(store):
    assert store.path_codes("6912004400") == ("69", "6912", "691200", "69120044", "6912004400")
    levels = [node.level for node in store.path("6912004400")]
    assert levels == ["chapter", "heading", "subheading", "tariff_line", "statistical"]
    assert store.path("9999999999") == ()


def test_full_description_skips_chapter_by_default(store):
    text = store.full_description("6912004400")
    assert text.endswith("Mugs and other steins")
    assert not text.startswith("Ceramic products")
    assert store.full_description("6912004400", include_chapter=True).startswith("Ceramic products > ")


def test_prefix_and_text_queries(store):
    assert [node.code for node in store.leaves("6912")] == [
        "6912004400", "6912004810", "6912004890", "6912005000",
    ]
    assert not store.is_leaf("691200")
    assert store.is_leaf("6912004400")
    found = {node.code for node in store.search("MUGS", prefix="69")}
    assert found == {"6911108010", "69120044", "6912004400"}
    headings = store.by_prefix("39", levels=["heading"])
    assert [node.code for node in headings] == ["3924", "3926"]


class TestIngestValidation:
    def test_orphan_rejected(self):
        with pytest.raises(TaxonomyError, match="no parent"):
            TaxonomyStore.from_records(
                [
                    {"hts_code": "69", "description": "Ceramic products"},
                    {"hts_code": "6912.00.44", "description": "Mugs and other steins"},
                ]
            )

    def test_malformed_code_rejected(self):
        with pytest.raises(TaxonomyError, match="malformed"):
            TaxonomyStore.from_records([{"hts_code": "123", "description": "Odd"}])

    def test_duplicate_rejected(self):
        with pytest.raises(TaxonomyError, match="duplicate"):
            TaxonomyStore.from_records(
                [
                    {"hts_code": "69", "description": "Ceramic products"},
                    {"hts_code": "69", "description": "Ceramic products again"},
                ]
            )

    def test_missing_description_rejected(self):
        with pytest.raises(TaxonomyError):
            TaxonomyStore.from_records([{"hts_code": "69", "description": "  "}])

    def test_bad_jsonl_line_reports_position(self, tmp_path):
        path = tmp_path / "broken.jsonl"
        path.write_text(json.dumps({"hts_code": "69", "description": "Ceramic products"}) + "\n{oops\n")
        with pytest.raises(TaxonomyError, match="broken.jsonl:2"):
            TaxonomyStore.from_jsonl(path)


def test_path_cache_is_consistent_under_concurrent_lookups(store):
    cache = InMemoryPathCache()
    fresh = TaxonomyStore(list(store), path_cache=cache)
    codes = [node.code for node in fresh.leaves()] * 8

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(fresh.path_codes, codes))

    for code, chain in zip(codes, results):
        assert chain[-1] == code
        assert chain == store.path_codes(code)
    assert len(cache) == len(set(codes))


def test_path_cache_first_writer_wins():
    cache = InMemoryPathCache()
    first = cache.put("6912", ("69", "6912"))
    second = cache.put("6912", ("69",))
    assert first == second == ("69", "6912")
    assert cache.get("6912") == ("69", "6912")
