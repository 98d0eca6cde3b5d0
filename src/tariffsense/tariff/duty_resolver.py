"""Cumulative duty for a code and country of origin.

The general rate is read from the code itself or, failing that, the nearest
ancestor that carries one (statistical suffixes rarely repeat the rate of
their 8-digit line).  Additional programs for the origin are stacked on top
additively.
"""

from __future__ import annotations

import logging
import math
from typing import List, Optional, Tuple

from tariffsense.tariff.duty_rate import parse_duty_rate
from tariffsense.tariff.models import DutyRateModel, ProgramRateModel, SpecialProgramModel
from tariffsense.tariff.programs import DutyProgram, ProgramTable, load_program_table
from tariffsense.tariff.taxonomy import TaxonomyStore, format_code, normalize_code

logger = logging.getLogger(__name__)

DEFAULT_GENERAL_RATE = "Free"


def stack_rates(base: Optional[float], additional: List[float]) -> float:
    """Additive stacking; ``math.fsum`` keeps the total independent of order."""

    return math.fsum([base or 0.0, *additional])


class DutyResolver:
    def __init__(self, store: TaxonomyStore, programs: Optional[ProgramTable] = None) -> None:
        self.store = store
        self.programs = programs if programs is not None else load_program_table()

    def general_rate(self, code: str) -> Tuple[str, Optional[str], bool]:
        """Return ``(rate_text, source_code, inherited)`` for ``code``."""

        digits = normalize_code(code)
        for node in reversed(self.store.path(digits)):
            if node.base_rate:
                return node.base_rate, node.code, node.code != digits
        return DEFAULT_GENERAL_RATE, None, False

    def _classify_programs(
        self, code: str, origin: Optional[str]
    ) -> Tuple[List[DutyProgram], List[DutyProgram], List[str]]:
        applied: List[DutyProgram] = []
        conditional: List[DutyProgram] = []
        notes: List[str] = []
        for program in self.programs.programs_for(origin):
            if program.is_excluded(code):
                notes.append(f"{program.name} does not apply: {format_code(code)} is excluded.")
            elif program.is_conditional:
                conditional.append(program)
            elif program.covers(code):
                applied.append(program)
        return applied, conditional, notes

    def resolve(self, code: str, origin: Optional[str] = None) -> DutyRateModel:
        """Resolve the stacked duty for ``code`` from ``origin``.

        Pure over the store and program table, so repeated calls return equal
        results.
        """

        digits = normalize_code(code)
        if digits not in self.store:
            raise KeyError(f"unknown HTS code {code!r}")

        notes: List[str] = []
        rate_text, source, inherited = self.general_rate(digits)
        if source is None:
            notes.append(f"No general rate found for {format_code(digits)} or its ancestors; defaulting to Free.")
        elif inherited:
            notes.append(f"General rate inherited from {format_code(source)}.")

        parsed = parse_duty_rate(rate_text)
        ad_valorem = parsed.percent
        if parsed.type in ("specific", "compound"):
            notes.append(
                f"Specific component of {parsed.raw} ({parsed.specific} per {parsed.specific_unit}) "
                "is not included in the percentage total."
            )
        elif parsed.type == "unknown":
            notes.append(f"General rate {rate_text!r} could not be parsed; treated as 0%.")

        applied, conditional, program_notes = self._classify_programs(digits, origin)
        notes.extend(program_notes)
        for program in conditional:
            notes.append(f"{program.name} may apply; coverage depends on the published product list.")

        profile = self.programs.profile(origin)
        special: List[SpecialProgramModel] = []
        if profile is not None and profile.special is not None:
            special.append(
                SpecialProgramModel(
                    program=f"{profile.special.name} ({profile.special.code})",
                    rate=profile.special.rate,
                )
            )
            notes.append(
                f"{profile.special.name} special rate {profile.special.rate} is available for qualifying goods; "
                "the effective rate assumes the general rate."
            )

        effective = stack_rates(ad_valorem, [program.rate for program in applied])
        logger.debug(
            "Duty %s origin=%s general=%s applied=%s effective=%.2f",
            format_code(digits),
            origin or "-",
            rate_text,
            [program.id for program in applied],
            effective,
        )
        return DutyRateModel(
            general_rate=rate_text,
            general_ad_valorem=ad_valorem,
            rate_source_code=source,
            inherited=inherited,
            special_programs=special,
            additional_programs=[_program_model(program, "applies to this code") for program in applied],
            conditional_programs=[_program_model(program, "product-specific list") for program in conditional],
            effective_rate=effective,
            notes=notes,
        )


def _program_model(program: DutyProgram, reason: str) -> ProgramRateModel:
    return ProgramRateModel(program=program.name, rate=program.rate, code=program.chapter99_code, reason=reason)
