"""Confidence scoring and answer-driven re-scoring of candidates.

The weights below are the historical hand-tuned values.  They have no
empirical derivation, which is why they live in :class:`ScoringWeights`
rather than inline: recalibrate them against labelled rulings before
treating any threshold as meaningful.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import List, Literal, Optional, Sequence, Tuple

from tariffsense.tariff import chapter_guide
from tariffsense.tariff.models import Candidate, CandidateBucket, ProductUnderstanding
from tariffsense.tariff.taxonomy import TaxonomyNode
from tariffsense.tariff.understanding import canonical_key

logger = logging.getLogger(__name__)

Verdict = Literal["consistent", "neutral", "contradicts"]

_WOMEN_RE = re.compile(r"\b(?:women's|girls'|women|girls|ladies)")
_MEN_RE = re.compile(r"\b(?:men's|boys'|men|boys)\b")
# "Valued not over $18 per dozen pieces or parts", "valued over $5 each"
_VALUED_RE = re.compile(r"\bvalued\s+((not\s+)?(over|under)\s+\$\s?(\d[\d,]*(?:\.\d+)?)[^>;]*)")
_QUALIFIER_RE = re.compile(r"\b(not\s+)?(over|under|above|below|more\s+than|less\s+than)\b")
_AMOUNT_RE = re.compile(r"\$?\s?(\d[\d,]*(?:\.\d+)?)")


@dataclass(frozen=True)
class ScoringWeights:
    keyword: float = 0.6
    material_phrase: float = 0.3
    material_substring: float = 0.2
    coherence: float = 0.1
    specificity: float = 0.05
    other_penalty: float = 0.05
    answer_boost: float = 1.2
    fallback_confidence: float = 0.3
    initial_cap: float = 0.95


def search_terms(understanding: ProductUnderstanding) -> List[str]:
    """Keyword terms from product type and function, in first-seen order."""

    terms: List[str] = []
    for source in (understanding.product_type, understanding.function or ""):
        for token in chapter_guide.tokenize(source):
            if token not in terms:
                terms.append(token)
    return terms


def _material_terms(material: str) -> List[str]:
    found = chapter_guide.detect_materials(material)
    return found or [material.strip().lower()]


def audience_of(text: str) -> Optional[str]:
    lowered = text.lower()
    women = bool(_WOMEN_RE.search(lowered))
    men = bool(_MEN_RE.search(lowered))
    if women and not men:
        return "women"
    if men and not women:
        return "men"
    return None


def construction_of(text: str, chapter: str) -> Optional[str]:
    lowered = text.lower()
    if "not knitted" in lowered:
        return "woven"
    if "knitted or crocheted" in lowered or "knit" in lowered.split():
        return "knitted"
    if "woven" in lowered:
        return "woven"
    if chapter == "61":
        return "knitted"
    if chapter == "62":
        return "woven"
    return None


@dataclass(frozen=True)
class ValueCondition:
    """A "Valued over/not over $N ..." split between sibling codes."""

    over: bool
    threshold: float
    label: str


def value_condition(text: str) -> Optional[ValueCondition]:
    """The value split nearest the leaf in ``text``, if any."""

    matches = list(_VALUED_RE.finditer(text.lower()))
    if not matches:
        return None
    match = matches[-1]
    negated, direction = bool(match.group(2)), match.group(3)
    over = (direction == "over") != negated
    label = match.group(1).strip()
    threshold = float(match.group(4).replace(",", ""))
    return ValueCondition(over=over, threshold=threshold, label=label[0].upper() + label[1:])


def value_side(answer: str, threshold: float) -> Optional[bool]:
    """True when ``answer`` puts the value over ``threshold``; None if it cannot tell."""

    lowered = answer.lower()
    qualifier = _QUALIFIER_RE.search(lowered)
    if qualifier is not None:
        upward = qualifier.group(2) in ("over", "above") or qualifier.group(2).startswith("more")
        return upward != bool(qualifier.group(1))
    amount = _AMOUNT_RE.search(lowered)
    if amount is None:
        return None
    return float(amount.group(1).replace(",", "")) > threshold


class ConfidenceScorer:
    def __init__(self, weights: Optional[ScoringWeights] = None) -> None:
        self.weights = weights or ScoringWeights()

    # -- initial scoring ---------------------------------------------------

    def material_bonus(self, path: Sequence[TaxonomyNode], material: Optional[str]) -> Tuple[float, str]:
        if not material:
            return 0.0, ""
        descriptions = [node.description.lower() for node in path if node.level != "chapter"]
        text = " > ".join(descriptions)
        best = 0.0
        how = ""
        for term in _material_terms(material):
            escaped = re.escape(term)
            phrase = re.search(r"\bof\s+" + escaped, text) or any(
                re.match(escaped + r"\b", description) for description in descriptions
            )
            if phrase and self.weights.material_phrase > best:
                best, how = self.weights.material_phrase, f"material phrase '{term}'"
            elif term in text and self.weights.material_substring > best:
                best, how = self.weights.material_substring, f"material mention '{term}'"
        return best, how

    def score(
        self,
        path: Sequence[TaxonomyNode],
        understanding: ProductUnderstanding,
        *,
        in_shortlist: bool,
        terms: Optional[Sequence[str]] = None,
    ) -> Candidate:
        """Build a fresh :class:`Candidate` for the leaf at the end of ``path``."""

        w = self.weights
        leaf = path[-1]
        path_text = " > ".join(node.description for node in path if node.level != "chapter")
        terms = list(terms) if terms is not None else search_terms(understanding)

        matched = [term for term in terms if term in chapter_guide.token_set(path_text)]
        overlap = len(matched) / len(terms) if terms else 0.0
        material_score, material_note = self.material_bonus(path, understanding.fact("material"))
        coherence = w.coherence if in_shortlist else 0.0
        specificity = w.specificity * min(len(leaf.code), 10) / 10
        penalty = w.other_penalty if leaf.description.lower().startswith("other") else 0.0

        raw = w.keyword * overlap + material_score + coherence + specificity - penalty
        confidence = max(0.0, min(w.initial_cap, raw))

        reasons = []
        if terms:
            reasons.append(f"matched {len(matched)}/{len(terms)} terms" + (f" ({', '.join(matched)})" if matched else ""))
        if material_note:
            reasons.append(material_note)
        if in_shortlist:
            reasons.append(f"in shortlisted chapter {leaf.chapter}")

        named = sorted(chapter_guide.materials_in(path_text))
        required: List[str] = []
        if "material" in understanding.unknowns and named:
            required.append("material")
        if "audience" in understanding.unknowns and audience_of(path_text):
            required.append("audience")
        if "construction" in understanding.unknowns and leaf.chapter in chapter_guide.APPAREL_CHAPTERS:
            required.append("construction")

        return Candidate(
            code=leaf.code,
            formatted_code=leaf.formatted_code,
            description=leaf.description,
            hierarchy_path=tuple(path),
            confidence=confidence,
            reasoning="; ".join(reasons),
            required_info=tuple(required),
            eliminating_info=tuple(f"material: {label}" for label in named),
            in_shortlist=in_shortlist,
        )

    # -- narrowing ---------------------------------------------------------

    def verdict(self, candidate: Candidate, fact: str, answer: str) -> Verdict:
        """Is ``candidate`` consistent with a definitive ``fact = answer``?"""

        text = candidate.path_text
        if fact == "material":
            family = chapter_guide.material_family(answer)
            if family is None:
                return "neutral"
            named = chapter_guide.materials_in(text)
            if family in named:
                return "consistent"
            if named and not any(chapter_guide.materials_compatible(family, other) for other in named):
                return "contradicts"
            return "neutral"
        if fact == "audience":
            wanted = audience_of(answer)
            found = audience_of(text)
            if wanted is None or found is None:
                return "neutral"
            return "consistent" if wanted == found else "contradicts"
        if fact == "construction":
            wanted = construction_of(answer, "")
            found = construction_of(text, candidate.chapter)
            if wanted is None or found is None:
                return "neutral"
            return "consistent" if wanted == found else "contradicts"
        if fact == "value":
            condition = value_condition(text)
            side = value_side(answer, condition.threshold) if condition is not None else None
            if side is None:
                return "neutral"
            return "consistent" if side == condition.over else "contradicts"
        if chapter_guide.token_set(answer) & chapter_guide.token_set(text):
            return "consistent"
        return "neutral"

    def rescore(self, bucket: CandidateBucket, key: str, answer: str) -> CandidateBucket:
        """Apply one narrowing answer.

        Contradicting candidates are removed, consistent ones boosted.  If
        eliminations leave the new leader below the old one, survivors are
        scaled back up: removing rivals never makes the leader less likely.
        """

        fact = canonical_key(key)
        entry = f"{fact}: {answer}"
        if not bucket.candidates:
            return CandidateBucket((), bucket.total_found, bucket.narrowed_by + (entry,), bucket.branches)

        verdicts = [(candidate, self.verdict(candidate, fact, answer)) for candidate in bucket.candidates]
        survivors = [(candidate, verdict) for candidate, verdict in verdicts if verdict != "contradicts"]
        if not survivors:
            logger.info("Answer %r contradicts every candidate; keeping %d candidates", entry, len(bucket))
            return CandidateBucket(
                bucket.candidates,
                bucket.total_found,
                bucket.narrowed_by + (f"{entry} (no candidate matched)",),
                bucket.branches,
            )

        rescored: List[Candidate] = []
        for candidate, verdict in survivors:
            if verdict == "consistent":
                boosted = min(1.0, candidate.confidence * self.weights.answer_boost)
                rescored.append(candidate.rescored(boosted, f"{candidate.reasoning}; consistent with {entry}"))
            else:
                rescored.append(candidate)

        previous_top = max(candidate.confidence for candidate in bucket.candidates)
        new_top = max(candidate.confidence for candidate in rescored)
        if 0.0 < new_top < previous_top:
            # Pin the leader to previous_top exactly; only the rest are scaled.
            factor = previous_top / new_top
            rescored = [
                candidate.rescored(
                    previous_top if candidate.confidence == new_top else min(previous_top, candidate.confidence * factor)
                )
                for candidate in rescored
            ]

        ordered = tuple(sort_candidates(rescored))
        logger.debug("Narrowed by %s: %d -> %d candidates", entry, len(bucket), len(ordered))
        return CandidateBucket(ordered, bucket.total_found, bucket.narrowed_by + (entry,), bucket.branches)


def sort_candidates(candidates: Sequence[Candidate]) -> List[Candidate]:
    """Confidence desc, shortlisted branch first, longer description, then code."""

    return sorted(
        candidates,
        key=lambda c: (-round(c.confidence, 6), not c.in_shortlist, -len(c.full_description), c.code),
    )
