"""Exception hierarchy for the classification engine.

None of these escape :func:`tariffsense.tariff.engine.classify`; they mark
the recovery points inside the pipeline.
"""

from __future__ import annotations


class TariffSenseError(Exception):
    """Base class for engine errors."""


class TaxonomyError(TariffSenseError, ValueError):
    """Raised when taxonomy rows are malformed or break the nesting rules."""


class ProgramTableError(TariffSenseError, ValueError):
    """Raised when a duty program table cannot be decoded."""


class OracleError(TariffSenseError):
    """The reasoning oracle could not produce a usable answer.

    ``attempts`` counts the raw responses consumed before giving up.
    """

    def __init__(self, message: str, *, attempts: int = 1) -> None:
        super().__init__(message)
        self.attempts = attempts


class OracleTimeoutError(OracleError):
    """The oracle did not answer within its timeout."""


class OracleResponseError(OracleError):
    """The oracle answered with an empty, non-JSON or non-conforming payload."""
