"""Additional-duty program tables keyed by country of origin.

Programs and country profiles are read from ``programs.json``.  A program
is either product-wide (``product_scope: all``) or limited to HTS prefixes
(``specific``).  A ``specific`` program that ships without a prefix list
cannot be decided from the code alone and is reported as conditional.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple

from tariffsense.settings import default_programs_path
from tariffsense.tariff.errors import ProgramTableError

logger = logging.getLogger(__name__)

ProductScope = Literal["all", "specific"]
DEFAULT_PROFILE = "DEFAULT"


@dataclass(frozen=True)
class DutyProgram:
    id: str
    name: str
    rate: float
    product_scope: ProductScope = "all"
    chapter99_code: Optional[str] = None
    hts_prefixes: Tuple[str, ...] = ()
    exclusions: Tuple[str, ...] = ()
    notes: Tuple[str, ...] = ()

    @property
    def is_conditional(self) -> bool:
        return self.product_scope == "specific" and not self.hts_prefixes

    def covers(self, code: str) -> bool:
        if any(_matches_prefix(code, prefix) for prefix in self.exclusions):
            return False
        if self.product_scope == "all":
            return True
        return any(_matches_prefix(code, prefix) for prefix in self.hts_prefixes)

    def is_excluded(self, code: str) -> bool:
        return any(_matches_prefix(code, prefix) for prefix in self.exclusions)


@dataclass(frozen=True)
class SpecialProgram:
    code: str
    name: str
    rate: str = "Free"


@dataclass(frozen=True)
class CountryProfile:
    code: str
    name: str
    trade_status: str = "normal"
    program_ids: Tuple[str, ...] = ()
    special: Optional[SpecialProgram] = None
    notes: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CountryDutySummary:
    country: str
    name: str
    trade_status: str
    programs: Tuple[DutyProgram, ...]
    unconditional_total: float
    special: Optional[SpecialProgram] = None
    notes: Tuple[str, ...] = field(default_factory=tuple)


def _digits(value: str) -> str:
    return "".join(ch for ch in value if ch.isdigit())


def _matches_prefix(code: str, prefix: str) -> bool:
    prefix_digits = _digits(prefix)
    return bool(prefix_digits) and _digits(code).startswith(prefix_digits)


def _normalize_country(value: Optional[str]) -> Optional[str]:
    return value.strip().upper() if isinstance(value, str) and value.strip() else None


def _build_program(entry: Mapping[str, Any]) -> DutyProgram:
    program_id = str(entry.get("id") or "").strip()
    if not program_id:
        raise ProgramTableError("program entry without an id")
    try:
        rate = float(entry.get("rate"))
    except (TypeError, ValueError) as exc:
        raise ProgramTableError(f"program {program_id} has a non-numeric rate") from exc
    if not math.isfinite(rate) or rate < 0:
        raise ProgramTableError(f"program {program_id} has an invalid rate {rate}")
    scope = str(entry.get("product_scope") or "all")
    if scope not in ("all", "specific"):
        raise ProgramTableError(f"program {program_id} has unknown product_scope {scope!r}")
    return DutyProgram(
        id=program_id,
        name=str(entry.get("name") or program_id),
        rate=rate,
        product_scope=scope,  # type: ignore[arg-type]
        chapter99_code=entry.get("chapter99_code"),
        hts_prefixes=tuple(str(prefix) for prefix in entry.get("hts_prefixes") or ()),
        exclusions=tuple(str(prefix) for prefix in entry.get("exclusions") or ()),
        notes=tuple(str(note) for note in entry.get("notes") or ()),
    )


def _build_profile(entry: Mapping[str, Any], known: Mapping[str, DutyProgram]) -> CountryProfile:
    code = _normalize_country(entry.get("code"))
    if not code:
        raise ProgramTableError("country profile without a code")
    program_ids = tuple(str(pid) for pid in entry.get("programs") or ())
    missing = [pid for pid in program_ids if pid not in known]
    if missing:
        raise ProgramTableError(f"country {code} references unknown programs: {', '.join(missing)}")
    special_entry = entry.get("special_program")
    special = None
    if isinstance(special_entry, dict):
        special = SpecialProgram(
            code=str(special_entry.get("code") or ""),
            name=str(special_entry.get("name") or special_entry.get("code") or ""),
            rate=str(special_entry.get("rate") or "Free"),
        )
    return CountryProfile(
        code=code,
        name=str(entry.get("name") or code),
        trade_status=str(entry.get("trade_status") or "normal"),
        program_ids=program_ids,
        special=special,
        notes=tuple(str(note) for note in entry.get("notes") or ()),
    )


class ProgramTable:
    """Lookup over programs and the per-country profiles that reference them."""

    def __init__(self, programs: List[DutyProgram], profiles: List[CountryProfile]) -> None:
        self._programs: Dict[str, DutyProgram] = {}
        for program in programs:
            if program.id in self._programs:
                raise ProgramTableError(f"duplicate program id {program.id}")
            self._programs[program.id] = program
        self._profiles: Dict[str, CountryProfile] = {profile.code: profile for profile in profiles}

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ProgramTable":
        if not isinstance(payload, Mapping):
            raise ProgramTableError("program table must be a JSON object")
        programs = [_build_program(entry) for entry in payload.get("programs") or [] if isinstance(entry, dict)]
        known = {program.id: program for program in programs}
        profiles = [_build_profile(entry, known) for entry in payload.get("countries") or [] if isinstance(entry, dict)]
        return cls(programs, profiles)

    @classmethod
    def from_json(cls, path: Path | str) -> "ProgramTable":
        target = Path(path)
        try:
            payload = json.loads(target.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ProgramTableError(f"cannot read program table {target}: {exc}") from exc
        table = cls.from_payload(payload)
        logger.info("Loaded %d duty programs for %d countries from %s", len(table._programs), len(table._profiles), target)
        return table

    def program(self, program_id: str) -> DutyProgram:
        return self._programs[program_id]

    def profile(self, origin: Optional[str]) -> Optional[CountryProfile]:
        """Profile for ``origin``; unlisted countries get the ``DEFAULT`` profile."""

        country = _normalize_country(origin)
        if country is None:
            return None
        return self._profiles.get(country) or self._profiles.get(DEFAULT_PROFILE)

    def programs_for(self, origin: Optional[str]) -> Tuple[DutyProgram, ...]:
        profile = self.profile(origin)
        if profile is None:
            return ()
        return tuple(self._programs[pid] for pid in profile.program_ids)

    def countries(self) -> List[str]:
        return sorted(code for code in self._profiles if code != DEFAULT_PROFILE)


@lru_cache(maxsize=None)
def load_program_table(path: Optional[str] = None) -> ProgramTable:
    return ProgramTable.from_json(path or default_programs_path())


def country_duty_summary(origin: str, table: Optional[ProgramTable] = None) -> CountryDutySummary:
    """Programs that apply to goods from ``origin`` and their product-wide total."""

    table = table or load_program_table()
    profile = table.profile(origin)
    country = _normalize_country(origin) or ""
    if profile is None:
        return CountryDutySummary(country=country, name=country, trade_status="unknown", programs=(), unconditional_total=0.0)
    programs = table.programs_for(origin)
    total = math.fsum(program.rate for program in programs if program.product_scope == "all")
    return CountryDutySummary(
        country=country,
        name=profile.name if profile.code != DEFAULT_PROFILE else country,
        trade_status=profile.trade_status,
        programs=programs,
        unconditional_total=total,
        special=profile.special,
        notes=profile.notes,
    )
