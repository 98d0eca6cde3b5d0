from __future__ import annotations

import pytest

from tariffsense.settings import EngineSettings
from tariffsense.tariff.engine import ClassificationEngine
from tariffsense.tariff.errors import OracleResponseError
from tariffsense.tariff.oracle import HeuristicOracle
from tariffsense.tariff.programs import ProgramTable, load_program_table
from tariffsense.tariff.taxonomy import TaxonomyStore, load_default_store


class FailingOracle:
    """Oracle whose every call comes back malformed."""

    name = "flaky"

    def __init__(self, attempts: int = 1) -> None:
        self.attempts = attempts
        self.calls = 0

    def _fail(self):
        self.calls += 1
        raise OracleResponseError("malformed response", attempts=self.attempts)

    def understand(self, description, hints):
        self._fail()

    def shortlist_branches(self, understanding, chapters, limit):
        self._fail()

    def select_code(self, understanding, candidates):
        self._fail()


@pytest.fixture(scope="session")
def store() -> TaxonomyStore:
    return load_default_store()


@pytest.fixture(scope="session")
def programs() -> ProgramTable:
    return load_program_table()


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings(session_deadline=60.0, search_workers=2)


@pytest.fixture
def failing_oracle() -> FailingOracle:
    return FailingOracle()


@pytest.fixture
def make_engine(store, programs, settings):
    def _make(oracle=None, **kwargs) -> ClassificationEngine:
        return ClassificationEngine(
            store,
            oracle if oracle is not None else HeuristicOracle(),
            settings=kwargs.pop("settings", settings),
            programs=kwargs.pop("programs", programs),
            **kwargs,
        )

    return _make
