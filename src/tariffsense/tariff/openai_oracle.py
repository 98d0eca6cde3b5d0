"""Reasoning oracle backed by the OpenAI chat completions API.

Each call asks for a JSON object, extracts it from whatever text comes back
and decodes it through the schemas in :mod:`tariffsense.tariff.oracle`.  A
call is retried up to ``retry_attempts`` times; when every attempt fails the
raised :class:`OracleError` carries the number of attempts so the session
circuit can count every unusable response.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, List, Mapping, Optional, Sequence, Tuple, Type

from openai import APIError, APITimeoutError, OpenAI
from pydantic import BaseModel

from tariffsense.observability import redact_api_key
from tariffsense.settings import EngineSettings
from tariffsense.tariff.errors import OracleError, OracleResponseError, OracleTimeoutError
from tariffsense.tariff.models import Candidate, ProductUnderstanding
from tariffsense.tariff.oracle import (
    SelectionPayload,
    ShortlistPayload,
    UnderstandingPayload,
    decode_payload,
)

logger = logging.getLogger(__name__)

MAX_PROMPT_CANDIDATES = 15

SYSTEM_PROMPT = """You are a licensed U.S. customs broker classifying products in the
Harmonized Tariff Schedule of the United States (HTSUS).

Rules:
1. Classify by what the product IS (material, construction, function), not by
   words that happen to appear in a tariff description.
2. Never invent facts. If a fact the schedule depends on (material, gender,
   knit or woven) is not in the description, list it as unknown.
3. Return exactly one JSON object and nothing else."""

UNDERSTAND_PROMPT = """Product description: {description}
Caller-provided facts: {hints}

Return JSON:
{{
  "product_type": "what the product is, singular noun phrase",
  "material": "primary material or null",
  "function": "what it is used for or null",
  "construction": "knitted, woven, molded, etc. or null",
  "audience": "men's, women's, children's or null",
  "stated": {{"fact": "value explicitly present in the description"}},
  "inferred": {{"fact": "value you deduced with high confidence"}},
  "unknowns": ["facts needed for classification that are missing"],
  "confidence": 0.0
}}
A fact may appear in only one of stated, inferred or unknowns."""

SHORTLIST_PROMPT = """Product: {product}
Known facts: {facts}

Available HTS chapters:
{chapters}

Pick at most {limit} chapters most likely to contain this product, best first.
Return JSON: {{"chapters": ["69", "39"], "reasoning": "one sentence"}}"""

SELECT_PROMPT = """Product: {product}
Known facts: {facts}

Candidate HTS codes:
{candidates}

Choose the single most accurate code from the list.
Return JSON: {{"code": "6912004400", "confidence": 0.0, "rationale": "one or two sentences"}}"""


def extract_json(response_text: str) -> Any:
    """Parse a JSON object out of model text (bare, fenced, or embedded)."""

    if not response_text:
        raise ValueError("No response text to parse.")
    text = response_text.strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    text = text.strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        try:
            return json.loads(text[start : end + 1])
        except json.JSONDecodeError:
            pass
    raise ValueError("Failed to extract valid JSON from model response.")


def _facts(understanding: ProductUnderstanding) -> str:
    facts = {**dict(understanding.inferred), **dict(understanding.stated)}
    return json.dumps(facts, sort_keys=True) if facts else "none"


class OpenAIOracle:
    name = "openai"

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        model: str = "gpt-4o-mini",
        timeout: float = 30.0,
        retry_attempts: int = 3,
        retry_backoff: float = 1.0,
        temperature: float = 0.1,
        client: Optional[Any] = None,
    ) -> None:
        self.model = model
        self.timeout = timeout
        self.retry_attempts = max(1, retry_attempts)
        self.retry_backoff = max(0.0, retry_backoff)
        self.temperature = temperature
        self.client = client if client is not None else OpenAI(api_key=api_key, timeout=timeout)

    @classmethod
    def from_settings(cls, settings: EngineSettings) -> "OpenAIOracle":
        logger.info(
            "OpenAI oracle: model=%s key=%s retries=%d",
            settings.openai_model,
            redact_api_key(settings.openai_api_key),
            settings.retry_attempts,
        )
        return cls(
            settings.openai_api_key,
            model=settings.openai_model,
            timeout=settings.openai_timeout,
            retry_attempts=settings.retry_attempts,
        )

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _request(self, prompt: str, schema: Type[BaseModel]) -> BaseModel:
        attempt = 0
        last_error: Optional[Exception] = None
        timed_out = False
        while attempt < self.retry_attempts:
            attempt += 1
            try:
                completion = self.client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {"role": "user", "content": prompt},
                    ],
                    temperature=self.temperature,
                    response_format={"type": "json_object"},
                )
                content = completion.choices[0].message.content or ""
                return decode_payload(schema, extract_json(content), attempts=attempt)
            except APITimeoutError as exc:
                last_error, timed_out = exc, True
            except (APIError, ValueError, OracleResponseError) as exc:
                last_error, timed_out = exc, False
            logger.warning(
                "%s request attempt %d/%d failed: %s", schema.__name__, attempt, self.retry_attempts, last_error
            )
            if attempt < self.retry_attempts and self.retry_backoff:
                time.sleep(min(self.retry_backoff * 2 ** (attempt - 1), 4))

        message = f"{schema.__name__} request failed after {attempt} attempts: {last_error}"
        if timed_out:
            raise OracleTimeoutError(message, attempts=attempt) from last_error
        raise OracleResponseError(message, attempts=attempt) from last_error

    # ------------------------------------------------------------------
    # ReasoningOracle
    # ------------------------------------------------------------------

    def understand(self, description: str, hints: Mapping[str, str]) -> UnderstandingPayload:
        prompt = UNDERSTAND_PROMPT.format(
            description=description,
            hints=json.dumps(dict(hints), sort_keys=True) if hints else "none",
        )
        return self._request(prompt, UnderstandingPayload)  # type: ignore[return-value]

    def shortlist_branches(
        self,
        understanding: ProductUnderstanding,
        chapters: Sequence[Tuple[str, str]],
        limit: int,
    ) -> ShortlistPayload:
        listing = "\n".join(f"{code}: {title}" for code, title in chapters)
        prompt = SHORTLIST_PROMPT.format(
            product=understanding.raw_description,
            facts=_facts(understanding),
            chapters=listing,
            limit=limit,
        )
        payload: ShortlistPayload = self._request(prompt, ShortlistPayload)  # type: ignore[assignment]
        available = {code for code, _ in chapters}
        kept = [chapter for chapter in payload.chapters if not available or chapter in available]
        if not kept:
            raise OracleError(f"shortlist named no available chapter: {payload.chapters}")
        return ShortlistPayload(chapters=kept[:limit], reasoning=payload.reasoning)

    def select_code(self, understanding: ProductUnderstanding, candidates: Sequence[Candidate]) -> SelectionPayload:
        if not candidates:
            raise OracleResponseError("no candidates to select from")
        lines: List[str] = []
        for candidate in candidates[:MAX_PROMPT_CANDIDATES]:
            lines.append(
                f"- {candidate.code} ({candidate.formatted_code}): {candidate.path_text} "
                f"[score {candidate.confidence:.2f}]"
            )
        prompt = SELECT_PROMPT.format(
            product=understanding.raw_description,
            facts=_facts(understanding),
            candidates="\n".join(lines),
        )
        return self._request(prompt, SelectionPayload)  # type: ignore[return-value]
