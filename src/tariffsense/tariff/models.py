from __future__ import annotations

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Dict, FrozenSet, List, Literal, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from tariffsense.tariff.taxonomy import TaxonomyNode

UnderstandingSource = Literal["oracle", "heuristic"]
ClassificationStatus = Literal["confident", "ambiguous", "needs_input"]

ATTRIBUTE_KEYS: Tuple[str, ...] = ("product_type", "material", "function", "construction", "audience")


# ---------------------------------------------------------------------------
# Session values (internal, immutable)
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class ProductUnderstanding:
    """Structured reading of a product description.

    Every fact key lives in exactly one of ``stated``, ``inferred`` or
    ``unknowns``.  Answering a question produces a new value with the key
    moved into ``stated``.
    """

    raw_description: str
    product_type: str
    material: Optional[str] = None
    function: Optional[str] = None
    construction: Optional[str] = None
    audience: Optional[str] = None
    stated: Mapping[str, str] = field(default_factory=dict)
    inferred: Mapping[str, str] = field(default_factory=dict)
    unknowns: FrozenSet[str] = frozenset()
    confidence: float = 0.5
    source: UnderstandingSource = "heuristic"
    notes: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "stated", MappingProxyType(dict(self.stated)))
        object.__setattr__(self, "inferred", MappingProxyType(dict(self.inferred)))
        object.__setattr__(self, "unknowns", frozenset(self.unknowns))
        overlap = (set(self.stated) & set(self.inferred)) | (
            (set(self.stated) | set(self.inferred)) & self.unknowns
        )
        if overlap:
            raise ValueError(f"facts present in more than one bucket: {sorted(overlap)}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError("confidence must be within [0, 1]")

    def fact(self, key: str) -> Optional[str]:
        return self.stated.get(key) or self.inferred.get(key)

    def is_known(self, key: str) -> bool:
        return key in self.stated or key in self.inferred

    @property
    def text(self) -> str:
        """Description plus every known fact, for keyword-based checks."""

        parts = [self.raw_description]
        parts.extend(value for _, value in sorted(self.stated.items()))
        parts.extend(value for _, value in sorted(self.inferred.items()))
        return " ".join(parts)


@dataclass(frozen=True)
class Candidate:
    code: str
    formatted_code: str
    description: str
    hierarchy_path: Tuple[TaxonomyNode, ...]
    confidence: float
    reasoning: str = ""
    required_info: Tuple[str, ...] = ()
    eliminating_info: Tuple[str, ...] = ()
    in_shortlist: bool = True
    score_history: Tuple[float, ...] = ()

    @property
    def chapter(self) -> str:
        return self.code[:2]

    @property
    def path_text(self) -> str:
        """Descriptions from heading to leaf; the chapter title is too broad to score on."""

        return " > ".join(node.description for node in self.hierarchy_path if node.level != "chapter")

    @property
    def full_description(self) -> str:
        return " > ".join(node.description for node in self.hierarchy_path)

    def rescored(self, confidence: float, reasoning: Optional[str] = None) -> "Candidate":
        return replace(
            self,
            confidence=max(0.0, min(1.0, confidence)),
            reasoning=reasoning if reasoning is not None else self.reasoning,
            score_history=self.score_history + (self.confidence,),
        )


@dataclass(frozen=True)
class CandidateBucket:
    candidates: Tuple[Candidate, ...] = ()
    total_found: int = 0
    narrowed_by: Tuple[str, ...] = ()
    branches: Tuple[str, ...] = ()

    @property
    def top(self) -> Optional[Candidate]:
        return self.candidates[0] if self.candidates else None

    def __len__(self) -> int:
        return len(self.candidates)

    def find(self, code: str) -> Optional[Candidate]:
        for candidate in self.candidates:
            if candidate.code == code:
                return candidate
        return None


@dataclass(frozen=True)
class NarrowingQuestion:
    id: str
    question_text: str
    options: Tuple[str, ...]
    impact_estimate: str
    eliminates: int
    priority: int


# ---------------------------------------------------------------------------
# Caller-facing models
# ---------------------------------------------------------------------------
class HierarchyNodeModel(BaseModel):
    code: str
    formatted_code: str
    level: str
    description: str

    model_config = ConfigDict(extra="forbid")


class SpecialProgramModel(BaseModel):
    """Preferential (special column) rate available for the origin."""

    program: str
    rate: str

    model_config = ConfigDict(extra="forbid")


class ProgramRateModel(BaseModel):
    """Additional duty program contributing to the stacked rate."""

    program: str
    rate: float = Field(ge=0.0)
    code: Optional[str] = None
    reason: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class DutyRateModel(BaseModel):
    general_rate: str
    general_ad_valorem: Optional[float] = None
    rate_source_code: Optional[str] = None
    inherited: bool = False
    special_programs: List[SpecialProgramModel] = Field(default_factory=list)
    additional_programs: List[ProgramRateModel] = Field(default_factory=list)
    conditional_programs: List[ProgramRateModel] = Field(default_factory=list)
    effective_rate: float = Field(ge=0.0)
    notes: List[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid", frozen=True)


class QuestionModel(BaseModel):
    id: str
    question_text: str
    options: List[str]
    impact_estimate: str
    eliminates: int = Field(ge=0)
    priority: int

    model_config = ConfigDict(extra="forbid")


class CandidateModel(BaseModel):
    code: str
    formatted_code: str
    description: str
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""

    model_config = ConfigDict(extra="forbid")


class UnderstandingModel(BaseModel):
    product_type: str
    material: Optional[str] = None
    function: Optional[str] = None
    construction: Optional[str] = None
    audience: Optional[str] = None
    stated: Dict[str, str] = Field(default_factory=dict)
    inferred: Dict[str, str] = Field(default_factory=dict)
    unknowns: List[str] = Field(default_factory=list)
    source: UnderstandingSource = "heuristic"

    model_config = ConfigDict(extra="forbid")


class ClassificationResult(BaseModel):
    """Terminal artifact of one classification session."""

    status: ClassificationStatus
    selected_code: Optional[str] = None
    formatted_code: Optional[str] = None
    description: Optional[str] = None
    full_description: Optional[str] = None
    hierarchy_path: List[HierarchyNodeModel] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=1.0)
    duty_rate: Optional[DutyRateModel] = None
    rationale: str = ""
    warnings: List[str] = Field(default_factory=list)
    questions: List[QuestionModel] = Field(default_factory=list)
    alternatives: List[CandidateModel] = Field(default_factory=list)
    understanding: Optional[UnderstandingModel] = None
    rounds: int = Field(default=0, ge=0)
    run_id: Optional[str] = None

    model_config = ConfigDict(extra="forbid", frozen=True)


class ClassifyRequestModel(BaseModel):
    description: str = Field(min_length=1)
    material: Optional[str] = None
    origin: Optional[str] = Field(default=None, min_length=2, max_length=2)
    previous_answers: Dict[str, str] = Field(default_factory=dict)
    answered_rounds: Optional[int] = Field(default=None, ge=0)

    model_config = ConfigDict(extra="forbid")


def hierarchy_model(nodes: Tuple[TaxonomyNode, ...]) -> List[HierarchyNodeModel]:
    return [
        HierarchyNodeModel(
            code=node.code,
            formatted_code=node.formatted_code,
            level=node.level,
            description=node.description,
        )
        for node in nodes
    ]


def candidate_model(candidate: Candidate) -> CandidateModel:
    return CandidateModel(
        code=candidate.code,
        formatted_code=candidate.formatted_code,
        description=candidate.description,
        confidence=round(candidate.confidence, 4),
        reasoning=candidate.reasoning,
    )


def question_model(question: NarrowingQuestion) -> QuestionModel:
    return QuestionModel(
        id=question.id,
        question_text=question.question_text,
        options=list(question.options),
        impact_estimate=question.impact_estimate,
        eliminates=question.eliminates,
        priority=question.priority,
    )


def understanding_model(understanding: ProductUnderstanding) -> UnderstandingModel:
    return UnderstandingModel(
        product_type=understanding.product_type,
        material=understanding.material,
        function=understanding.function,
        construction=understanding.construction,
        audience=understanding.audience,
        stated=dict(understanding.stated),
        inferred=dict(understanding.inferred),
        unknowns=sorted(understanding.unknowns),
        source=understanding.source,
    )
