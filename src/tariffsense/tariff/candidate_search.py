"""Wide-net candidate search across shortlisted chapters.

1. Shortlist at most :data:`MAX_BRANCHES` chapters (oracle suggestion merged
   with the static lookup in :mod:`chapter_guide`).
2. Keyword-match leaf codes inside each chapter; the chapters are searched
   concurrently since each lookup only reads the store.
3. A chapter with no keyword hit contributes a small low-confidence sample
   instead of nothing.
4. If no chapter yields anything, search the whole taxonomy once with the
   raw description before giving up.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Sequence, Tuple

from tariffsense.tariff import chapter_guide
from tariffsense.tariff.errors import OracleError
from tariffsense.tariff.models import Candidate, CandidateBucket, ProductUnderstanding
from tariffsense.tariff.oracle import ReasoningOracle
from tariffsense.tariff.scoring import ConfidenceScorer, search_terms, sort_candidates
from tariffsense.tariff.taxonomy import TaxonomyStore, chapter_of, normalize_code

logger = logging.getLogger(__name__)

MAX_BRANCHES = 5
FALLBACK_SAMPLE_SIZE = 5
MAX_CANDIDATES = 50


def retrieval_terms(understanding: ProductUnderstanding) -> List[str]:
    """Tokens that admit a leaf into the candidate set: search terms plus material."""

    terms = search_terms(understanding)
    material = understanding.fact("material")
    if material:
        for token in chapter_guide.tokenize(material):
            if token not in terms:
                terms.append(token)
    return terms


class CandidateSearch:
    def __init__(
        self,
        store: TaxonomyStore,
        *,
        scorer: Optional[ConfidenceScorer] = None,
        max_workers: int = 4,
    ) -> None:
        self.store = store
        self.scorer = scorer or ConfidenceScorer()
        self.max_workers = max(1, max_workers)

    # -- shortlist ---------------------------------------------------------

    def shortlist(self, understanding: ProductUnderstanding, oracle: ReasoningOracle) -> Tuple[List[str], List[str]]:
        """Return ``(branches, warnings)`` with at most :data:`MAX_BRANCHES` chapters."""

        available = {node.code for node in self.store.chapters()}
        chapter_rows = [
            (code, chapter_guide.CHAPTER_DESCRIPTIONS.get(code, self.store.get(code).description))
            for code in sorted(available)
        ]
        warnings: List[str] = []
        suggested: List[str] = []
        try:
            suggested = list(oracle.shortlist_branches(understanding, chapter_rows, MAX_BRANCHES).chapters)
        except OracleError as exc:
            warnings.append("Chapter shortlist used static lookup only; reasoning service unavailable.")
            logger.warning("Shortlist fell back to static lookup: %s", exc)

        static = chapter_guide.static_branches(
            material=understanding.fact("material"),
            product_type=understanding.product_type,
            description=understanding.raw_description,
            limit=MAX_BRANCHES,
        )
        merged: List[str] = []
        for chapter in suggested + static:
            if chapter in available and chapter not in merged:
                merged.append(chapter)
        return merged[:MAX_BRANCHES], warnings

    # -- search ------------------------------------------------------------

    def _search_branch(
        self,
        chapter: str,
        understanding: ProductUnderstanding,
        terms: Sequence[str],
        admit: Sequence[str],
    ) -> List[Candidate]:
        wanted = set(admit)
        matched: List[Candidate] = []
        leaves = self.store.leaves(chapter)
        for leaf in leaves:
            path = self.store.path(leaf.code)
            path_text = " ".join(node.description for node in path if node.level != "chapter")
            if wanted & chapter_guide.token_set(path_text):
                matched.append(self.scorer.score(path, understanding, in_shortlist=True, terms=terms))
        if matched or not leaves:
            return matched

        sample = sorted(leaves, key=lambda node: (node.description.lower().startswith("other"), node.code))
        fallback = self.scorer.weights.fallback_confidence
        logger.debug("No keyword match in chapter %s; sampling %d leaves", chapter, FALLBACK_SAMPLE_SIZE)
        return [
            self.scorer.score(self.store.path(leaf.code), understanding, in_shortlist=True, terms=terms).rescored(
                fallback, f"General category in chapter {chapter}"
            )
            for leaf in sample[:FALLBACK_SAMPLE_SIZE]
        ]

    def _unscoped(self, understanding: ProductUnderstanding, scope: ProductUnderstanding) -> List[Candidate]:
        tokens = retrieval_terms(scope)
        for token in chapter_guide.tokenize(scope.raw_description):
            if token not in tokens:
                tokens.append(token)
        wanted = set(tokens)
        found: List[Candidate] = []
        for leaf in self.store.leaves():
            path = self.store.path(leaf.code)
            path_text = " ".join(node.description for node in path if node.level != "chapter")
            if wanted & chapter_guide.token_set(path_text):
                found.append(self.scorer.score(path, understanding, in_shortlist=False, terms=tokens))
        return found

    def search(
        self,
        understanding: ProductUnderstanding,
        *,
        oracle: ReasoningOracle,
        branches: Optional[Sequence[str]] = None,
        scope: Optional[ProductUnderstanding] = None,
    ) -> Tuple[CandidateBucket, List[str]]:
        """Cast the net; returns the bucket and any warnings raised on the way.

        ``branches`` bypasses the shortlist (used for the semantic re-search).
        ``scope`` decides which chapters are shortlisted and which leaves are
        admitted, and defaults to ``understanding``.  Candidates are always
        scored against ``understanding``.  Passing the understanding from
        before any answers keeps an answered round inside the set the
        earlier rounds saw.
        """

        scope = scope if scope is not None else understanding
        warnings: List[str] = []
        if branches is None:
            chosen, warnings = self.shortlist(scope, oracle)
        else:
            chosen = [chapter_of(branch) for branch in branches][:MAX_BRANCHES]

        terms = search_terms(understanding)
        admit = retrieval_terms(scope)
        per_branch: List[List[Candidate]] = []
        if chosen:
            with ThreadPoolExecutor(max_workers=min(self.max_workers, len(chosen))) as pool:
                per_branch = list(
                    pool.map(lambda chapter: self._search_branch(chapter, understanding, terms, admit), chosen)
                )

        by_code: Dict[str, Candidate] = {}
        for results in per_branch:
            for candidate in results:
                current = by_code.get(candidate.code)
                if current is None or candidate.confidence > current.confidence:
                    by_code[candidate.code] = candidate

        if not by_code:
            logger.info("No candidates in chapters %s; searching the full taxonomy", chosen)
            warnings.append("No match in the likely chapters; searched the full schedule.")
            for candidate in self._unscoped(understanding, scope):
                current = by_code.get(candidate.code)
                if current is None or candidate.confidence > current.confidence:
                    by_code[candidate.code] = candidate

        ordered = sort_candidates(list(by_code.values()))
        logger.info(
            "Candidate search: %d candidates from chapters %s (terms=%s)",
            len(ordered),
            ",".join(chosen) or "-",
            ",".join(admit),
        )
        bucket = CandidateBucket(
            candidates=tuple(ordered[:MAX_CANDIDATES]),
            total_found=len(ordered),
            branches=tuple(chosen),
        )
        return bucket, warnings

    def rescue(
        self,
        code: str,
        understanding: ProductUnderstanding,
        *,
        branches: Sequence[str] = (),
    ) -> Optional[Candidate]:
        """Look up an oracle-selected code that the search did not surface."""

        digits = normalize_code(code)
        if not self.store.is_leaf(digits):
            return None
        if branches and chapter_of(digits) not in branches:
            return None
        candidate = self.scorer.score(
            self.store.path(digits), understanding, in_shortlist=bool(branches), terms=search_terms(understanding)
        )
        return candidate.rescored(candidate.confidence, f"selected by reasoning oracle; {candidate.reasoning}")
