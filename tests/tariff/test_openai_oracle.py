from __future__ import annotations

from types import SimpleNamespace
from unittest import mock

import httpx
import pytest
from openai import APITimeoutError

from tariffsense.settings import EngineSettings
from tariffsense.tariff.errors import OracleError, OracleResponseError, OracleTimeoutError
from tariffsense.tariff.models import ProductUnderstanding
from tariffsense.tariff.openai_oracle import OpenAIOracle, extract_json


def _completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def _oracle(*contents, **kwargs):
    client = mock.MagicMock()
    client.chat.completions.create.side_effect = [_completion(text) for text in contents]
    return OpenAIOracle(client=client, retry_backoff=0, **kwargs), client


@pytest.fixture
def mug():
    return ProductUnderstanding(
        raw_description="ceramic coffee mug",
        product_type="mug",
        stated={"product_type": "mug"},
        unknowns=frozenset({"material"}),
    )


class TestExtractJson:
    def test_bare_object(self):
        assert extract_json('{"code": "6912004400"}') == {"code": "6912004400"}

    def test_fenced_object(self):
        assert extract_json('```json\n{"chapters": ["69"]}\n```') == {"chapters": ["69"]}

    def test_embedded_object(self):
        assert extract_json('Sure! Here you go: {"a": 1} Hope that helps.') == {"a": 1}

    def test_garbage_raises(self):
        with pytest.raises(ValueError):
            extract_json("not json")


def test_understand_decodes_payload():
    oracle, client = _oracle(
        '{"product_type": "mug", "stated": {"material": "ceramic"}, "unknowns": [], "confidence": 0.9}'
    )

    payload = oracle.understand("ceramic mug", {"material": "ceramic"})

    assert payload.product_type == "mug"
    assert payload.stated == {"material": "ceramic"}
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "gpt-4o-mini"
    assert kwargs["temperature"] == 0.1
    assert kwargs["response_format"] == {"type": "json_object"}
    assert kwargs["messages"][0]["role"] == "system"
    assert "ceramic mug" in kwargs["messages"][1]["content"]


def test_select_code_strips_formatting(mug):
    oracle, _ = _oracle('{"code": "6912.00.44.00", "confidence": 0.9, "rationale": "stoneware mug"}')
    payload = oracle.select_code(mug, [mock.MagicMock(code="6912004400", formatted_code="6912.00.44.00", path_text="Mugs", confidence=0.75)])
    assert payload.code == "6912004400"
    assert payload.rationale == "stoneware mug"


def test_shortlist_drops_unavailable_chapters(mug):
    oracle, _ = _oracle('{"chapters": ["69", "99", "3924"], "reasoning": "tableware"}')
    payload = oracle.shortlist_branches(mug, [("69", "Ceramic products"), ("39", "Plastics")], 5)
    assert payload.chapters == ["69", "39"]


def test_shortlist_with_no_available_chapter_fails(mug):
    oracle, _ = _oracle('{"chapters": ["99"]}')
    with pytest.raises(OracleError):
        oracle.shortlist_branches(mug, [("69", "Ceramic products")], 5)


def test_retry_recovers_after_malformed_response(mug):
    oracle, client = _oracle("I think it is a mug", '{"code": "6912004400"}')
    assert oracle.select_code(mug, [mock.MagicMock(code="6912004400", formatted_code="6912.00.44.00", path_text="Mugs", confidence=0.75)]).code == "6912004400"
    assert client.chat.completions.create.call_count == 2


def test_exhausted_retries_report_attempts():
    oracle, client = _oracle("not json", "not json", "not json")

    with pytest.raises(OracleResponseError) as excinfo:
        oracle.understand("ceramic coffee mug", {})

    assert excinfo.value.attempts == 3
    assert client.chat.completions.create.call_count == 3


def test_schema_violation_is_a_response_error():
    oracle, _ = _oracle('{"stated": {}}', retry_attempts=1)
    with pytest.raises(OracleResponseError):
        oracle.understand("ceramic coffee mug", {})


def test_timeout_maps_to_oracle_timeout():
    client = mock.MagicMock()
    client.chat.completions.create.side_effect = APITimeoutError(
        request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    )
    oracle = OpenAIOracle(client=client, retry_attempts=2, retry_backoff=0)

    with pytest.raises(OracleTimeoutError) as excinfo:
        oracle.understand("ceramic coffee mug", {})

    assert excinfo.value.attempts == 2


def test_from_settings_builds_client():
    settings = EngineSettings(openai_api_key="sk-test", openai_model="gpt-4o", openai_timeout=12.0, retry_attempts=5)
    with mock.patch("tariffsense.tariff.openai_oracle.OpenAI") as openai_cls:
        oracle = OpenAIOracle.from_settings(settings)

    openai_cls.assert_called_once_with(api_key="sk-test", timeout=12.0)
    assert oracle.model == "gpt-4o"
    assert oracle.retry_attempts == 5
    assert oracle.client is openai_cls.return_value
