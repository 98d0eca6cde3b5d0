"""Reasoning oracle interface and its deterministic implementation.

The engine asks an oracle three questions: what is this product
(``understand``), which chapters should be searched (``shortlist_branches``)
and which candidate is right (``select_code``).  Oracle output is untrusted:
every response is decoded through a pydantic schema and anything that does
not conform raises :class:`OracleResponseError`, which the callers recover
from with the heuristic path.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from tariffsense.tariff import chapter_guide
from tariffsense.tariff.errors import OracleError, OracleResponseError
from tariffsense.tariff.models import Candidate, ProductUnderstanding

logger = logging.getLogger(__name__)

MAX_ORACLE_FAILURES = 3


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------
class UnderstandingPayload(BaseModel):
    product_type: str = Field(min_length=1)
    material: Optional[str] = None
    function: Optional[str] = None
    construction: Optional[str] = None
    audience: Optional[str] = None
    stated: Dict[str, str] = Field(default_factory=dict)
    inferred: Dict[str, str] = Field(default_factory=dict)
    unknowns: List[str] = Field(default_factory=list)
    confidence: float = Field(default=0.7, ge=0.0, le=1.0)

    model_config = ConfigDict(extra="ignore")

    @field_validator("stated", "inferred", mode="before")
    @classmethod
    def _drop_empty_facts(cls, value: object) -> object:
        if isinstance(value, dict):
            return {str(k): str(v) for k, v in value.items() if v not in (None, "")}
        return value


class ShortlistPayload(BaseModel):
    chapters: List[str] = Field(min_length=1)
    reasoning: str = ""

    model_config = ConfigDict(extra="ignore")

    @field_validator("chapters", mode="before")
    @classmethod
    def _normalize_chapters(cls, value: object) -> object:
        if not isinstance(value, list):
            return value
        chapters: List[str] = []
        for item in value:
            digits = re.sub(r"\D", "", str(item))
            if not digits:
                continue
            chapter = digits.zfill(2)[:2]
            if chapter not in chapters:
                chapters.append(chapter)
        return chapters


class SelectionPayload(BaseModel):
    code: str = Field(min_length=2)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    rationale: str = ""

    model_config = ConfigDict(extra="ignore")

    @field_validator("code", mode="before")
    @classmethod
    def _digits_only(cls, value: object) -> object:
        if isinstance(value, str):
            return re.sub(r"\D", "", value)
        return value


def decode_payload(schema: type[BaseModel], data: object, *, attempts: int = 1) -> BaseModel:
    """Validate ``data`` against ``schema`` or raise :class:`OracleResponseError`."""

    if not isinstance(data, dict):
        raise OracleResponseError(f"expected a JSON object for {schema.__name__}", attempts=attempts)
    try:
        return schema.model_validate(data)
    except ValidationError as exc:
        raise OracleResponseError(
            f"{schema.__name__} rejected: {exc.error_count()} validation error(s)",
            attempts=attempts,
        ) from exc


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------
class ReasoningOracle(Protocol):
    name: str

    def understand(self, description: str, hints: Mapping[str, str]) -> UnderstandingPayload:
        ...

    def shortlist_branches(
        self,
        understanding: ProductUnderstanding,
        chapters: Sequence[Tuple[str, str]],
        limit: int,
    ) -> ShortlistPayload:
        ...

    def select_code(self, understanding: ProductUnderstanding, candidates: Sequence[Candidate]) -> SelectionPayload:
        ...


# ---------------------------------------------------------------------------
# Heuristic oracle
# ---------------------------------------------------------------------------
_MATERIAL_PHRASE_RE = re.compile(
    r"\b(?:made\s+(?:of|from)|of|in)\s+(?:solid\s+|genuine\s+|pure\s+|100%\s+)?([a-z][a-z\- ]{1,30})"
)
_MATERIAL_NOUN_RE = re.compile(r"\b([a-z][a-z\-]+)\s+material\b")
_FUNCTION_RE = re.compile(
    r"\b((?:used|designed|intended)\s+for|worn\s+(?:on|around|in)|for)\s+([a-z0-9][a-z0-9' \-]*)"
)
_AUDIENCE_PATTERNS: Tuple[Tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\b(?:women|womens|women's|ladies|girls|girls')\b"), "Women's or girls'"),
    (re.compile(r"\b(?:men|mens|men's|boys|boys')\b"), "Men's or boys'"),
    (re.compile(r"\b(?:baby|babies|infant|infants|toddler)\b"), "Babies'"),
)
_CONSTRUCTION_PATTERNS: Tuple[Tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\b(?:knit|knitted|crocheted|jersey)\b"), "Knitted or crocheted"),
    (re.compile(r"\bwoven\b"), "Woven"),
)


def _explicit_material(text: str) -> Optional[str]:
    """Material named by a composition phrase ("made of", "of", "X material").

    A bare modifier ("ceramic coffee mug") is not treated as a statement of
    composition; the caller is asked to confirm it.
    """

    for match in _MATERIAL_PHRASE_RE.finditer(text):
        found = chapter_guide.detect_materials(match.group(1))
        if found:
            return found[0]
    for match in _MATERIAL_NOUN_RE.finditer(text):
        found = chapter_guide.detect_materials(match.group(1))
        if found:
            return found[0]
    return None


def _fallback_product_type(text: str) -> str:
    materials = set()
    for word in chapter_guide.detect_materials(text):
        materials.update(word.split())
    tokens = [tok for tok in chapter_guide.tokenize(text) if tok not in materials]
    if not tokens:
        return text.strip().lower()
    return " ".join(tokens[-2:])


class HeuristicOracle:
    """Keyword-table oracle; deterministic and offline."""

    name = "heuristic"

    def understand(self, description: str, hints: Mapping[str, str]) -> UnderstandingPayload:
        text = description.lower()
        stated: Dict[str, str] = {}
        inferred: Dict[str, str] = {}

        product_type = chapter_guide.detect_product_type(text)
        if product_type:
            stated["product_type"] = product_type
        else:
            product_type = _fallback_product_type(text)
            inferred["product_type"] = product_type

        material = (hints.get("material") or "").strip().lower() or _explicit_material(text)
        if material:
            stated["material"] = material

        function = (hints.get("function") or "").strip().lower() or None
        if not function:
            match = _FUNCTION_RE.search(text)
            if match:
                function = f"{match.group(1)} {match.group(2)}".strip()
        if function:
            stated["function"] = function

        audience = next((label for pattern, label in _AUDIENCE_PATTERNS if pattern.search(text)), None)
        if audience:
            stated["audience"] = audience
        construction = next((label for pattern, label in _CONSTRUCTION_PATTERNS if pattern.search(text)), None)
        if construction:
            stated["construction"] = construction

        unknowns = [] if material else ["material"]
        if product_type in chapter_guide.APPAREL_PRODUCT_TYPES:
            unknowns.extend(key for key in ("audience", "construction") if key not in stated)

        confidence = 0.5 if "product_type" in stated else 0.3
        return UnderstandingPayload(
            product_type=product_type,
            material=material,
            function=function,
            construction=construction,
            audience=audience,
            stated=stated,
            inferred=inferred,
            unknowns=unknowns,
            confidence=confidence,
        )

    def shortlist_branches(
        self,
        understanding: ProductUnderstanding,
        chapters: Sequence[Tuple[str, str]],
        limit: int,
    ) -> ShortlistPayload:
        available = [code for code, _ in chapters]
        branches = chapter_guide.static_branches(
            material=understanding.fact("material"),
            product_type=understanding.product_type,
            description=understanding.raw_description,
            limit=len(chapter_guide.CHAPTER_DESCRIPTIONS),
        )
        if available:
            branches = [chapter for chapter in branches if chapter in available]
        if not branches:
            wanted = chapter_guide.token_set(understanding.text)
            scored = sorted(
                (
                    (-len(wanted & chapter_guide.token_set(title)), code)
                    for code, title in chapters
                    if wanted & chapter_guide.token_set(title)
                ),
            )
            branches = [code for _, code in scored]
        if not branches:
            raise OracleResponseError("no chapter matches the product vocabulary")
        return ShortlistPayload(chapters=branches[:limit], reasoning="static material and product-type lookup")

    def select_code(self, understanding: ProductUnderstanding, candidates: Sequence[Candidate]) -> SelectionPayload:
        if not candidates:
            raise OracleResponseError("no candidates to select from")
        best = candidates[0]
        return SelectionPayload(
            code=best.code,
            confidence=best.confidence,
            rationale="highest scoring candidate",
        )


# ---------------------------------------------------------------------------
# Session circuit
# ---------------------------------------------------------------------------
class OracleCircuit:
    """Counts consecutive oracle failures within one session.

    Once ``max_failures`` unusable responses have been seen in a row, the
    circuit opens and every further call fails fast so the caller takes its
    heuristic path without another round trip.
    """

    def __init__(self, oracle: ReasoningOracle, *, max_failures: int = MAX_ORACLE_FAILURES) -> None:
        self.oracle = oracle
        self.name = oracle.name
        self.max_failures = max(1, max_failures)
        self.consecutive_failures = 0
        self.total_failures = 0
        self.is_open = False

    def _call(self, label: str, func, *args):
        if self.is_open:
            raise OracleError(f"{self.name} oracle disabled after {self.consecutive_failures} failures", attempts=0)
        try:
            result = func(*args)
        except OracleError as exc:
            self.consecutive_failures += max(exc.attempts, 1)
            self.total_failures += max(exc.attempts, 1)
            if self.consecutive_failures >= self.max_failures:
                self.is_open = True
                logger.warning(
                    "%s oracle disabled for this session after %d consecutive failures (last: %s)",
                    self.name,
                    self.consecutive_failures,
                    exc,
                )
            else:
                logger.warning("%s oracle %s failed: %s", self.name, label, exc)
            raise
        self.consecutive_failures = 0
        return result

    def understand(self, description: str, hints: Mapping[str, str]) -> UnderstandingPayload:
        return self._call("understand", self.oracle.understand, description, hints)

    def shortlist_branches(
        self,
        understanding: ProductUnderstanding,
        chapters: Sequence[Tuple[str, str]],
        limit: int,
    ) -> ShortlistPayload:
        return self._call("shortlist", self.oracle.shortlist_branches, understanding, chapters, limit)

    def select_code(self, understanding: ProductUnderstanding, candidates: Sequence[Candidate]) -> SelectionPayload:
        return self._call("select", self.oracle.select_code, understanding, candidates)
