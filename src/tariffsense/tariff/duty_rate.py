from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Literal, Optional, Tuple

RateType = Literal["ad_valorem", "free", "compound", "specific", "unknown"]

# One "+"-separated term: "6.5%", "4.4¢/kg", "2.4 cents/kg", "$1.20/doz"
_TERM_RE = re.compile(
    r"\s*(?P<dollar>\$)?\s*(?P<amount>\d+(?:\.\d+)?)\s*"
    r"(?:(?P<percent>%)|(?P<cents>¢|cents?\b))?\s*(?:/\s*(?P<unit>[a-z.]+))?",
    re.IGNORECASE,
)
_FREE_TEXT = frozenset({"free", "0", "0%", "0.0%"})
_KINDS: Dict[Tuple[bool, bool], RateType] = {
    (True, True): "compound",
    (True, False): "ad_valorem",
    (False, True): "specific",
    (False, False): "unknown",
}


@dataclass(frozen=True)
class DutyRate:
    """Parsed general-column rate text."""

    type: RateType
    ad_valorem: Optional[float] = None
    specific: Optional[float] = None
    specific_unit: Optional[str] = None
    raw: str = ""

    @property
    def is_free(self) -> bool:
        return self.type == "free"

    @property
    def percent(self) -> Optional[float]:
        """Ad valorem component in percent; ``None`` for specific-only or unknown rates."""

        if self.type == "free":
            return 0.0
        return self.ad_valorem


def _specific_term(match: re.Match) -> Optional[Tuple[float, str]]:
    """``(dollars, unit)`` for a per-unit term; bare numbers are not rates."""

    unit = match["unit"]
    if not unit or not (match["cents"] or match["dollar"]):
        return None
    amount = float(match["amount"])
    return (amount / 100 if match["cents"] else amount), unit.lower().rstrip(".")


def parse_duty_rate(raw: Optional[str]) -> DutyRate:
    """Parse rate text such as ``"Free"``, ``"6.5%"``, ``"4.4¢/kg"`` or ``"$1.20/doz + 3%"``.

    Each ``+`` term is read on its own; the first percentage and the first
    per-unit amount win, and terms that read as neither are ignored.
    """

    text = (raw or "").strip()
    if text.lower() in _FREE_TEXT:
        return DutyRate(type="free", ad_valorem=0.0, raw=text)

    ad_valorem: Optional[float] = None
    specific: Optional[Tuple[float, str]] = None
    for term in text.split("+"):
        match = _TERM_RE.match(term)
        if match is None:
            continue
        if match["percent"]:
            ad_valorem = float(match["amount"]) if ad_valorem is None else ad_valorem
        elif specific is None:
            specific = _specific_term(match)

    kind = _KINDS[(ad_valorem is not None, specific is not None)]
    amount, unit = specific if specific is not None else (None, None)
    return DutyRate(type=kind, ad_valorem=ad_valorem, specific=amount, specific_unit=unit, raw=text)
