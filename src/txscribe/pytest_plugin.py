"""pytest integration: per-test scenarios, snapshot assertions and narratives.

All session state lives in ``config.stash``, so several pytest sessions in one
process (``pytester`` runs, for instance) never see each other's scenarios.
"""

from __future__ import annotations

import dataclasses
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import pytest

from .chain import Web3Chain
from .config import get_config
from .errors import ScenarioUsageError
from .narrative import write_human_snapshot
from .recorder import Scenario, ScenarioBook
from .snapshots import assert_matches_snapshot, snapshot_path
from .types import ScenarioConfig, ScenarioRecord

logger = logging.getLogger(__name__)

book_key = pytest.StashKey[ScenarioBook]()
finished_key = pytest.StashKey[Dict[str, List[ScenarioRecord]]]()
names_key = pytest.StashKey[Dict[str, Set[str]]]()


def pytest_addoption(parser):
    group = parser.getgroup("txscribe", "smart-contract scenario recording")
    group.addoption(
        "--txscribe-update",
        action="store_true",
        default=False,
        help="Rewrite stored scenario snapshots with the recorded behavior.",
    )


def pytest_configure(config):
    config.stash[book_key] = ScenarioBook()
    config.stash[finished_key] = {}
    config.stash[names_key] = {}


def pytest_sessionfinish(session, exitstatus):
    finished = session.config.stash.get(finished_key, {})
    if not finished or not get_config().human_snapshots:
        return
    for test_file, records in sorted(finished.items()):
        write_human_snapshot(test_file, records)


def default_scenario_name(nodeid: str) -> str:
    """``tests/test_pool.py::TestSwap::test_exact_in`` -> ``TestSwap > test_exact_in``."""
    parts = nodeid.split("::")
    return " > ".join(parts[1:]) if len(parts) > 1 else Path(parts[0]).stem


def _as_chain(value: Any) -> Any:
    if hasattr(value, "submission_point"):
        return value
    return Web3Chain(value)


class ScenarioHandle:
    """What a test receives from the ``txscribe`` fixture."""

    def __init__(self, node: Any, chain: Any):
        self.node = node
        self.chain = _as_chain(chain)
        self.test_id: str = node.nodeid
        self.test_file = str(node.path)
        stash = node.config.stash
        self._book = stash[book_key]
        self._finished = stash[finished_key]
        self._names = stash[names_key].setdefault(self.test_file, set())
        self._update = bool(node.config.getoption("txscribe_update", False))
        self.scenario: Optional[Scenario] = None

    async def start(self, config: Optional[ScenarioConfig] = None, **kwargs) -> Scenario:
        if self._book.is_open(self.test_id):
            return self._book.current(self.test_id)
        config = config or ScenarioConfig()
        if kwargs:
            config = dataclasses.replace(config, **kwargs)
        name = config.name or default_scenario_name(self.test_id)
        if name in self._names:
            raise ScenarioUsageError(f"Scenario name '{name}' is already used in {self.test_file}")
        self.scenario = await self._book.start(self.test_id, self.chain, config, default_name=name)
        self._names.add(name)
        return self.scenario

    async def end(self) -> ScenarioRecord:
        scenario = await self._book.end(self.test_id)
        record = scenario.record()
        self._finished.setdefault(self.test_file, []).append(record)
        assert_matches_snapshot(snapshot_path(self.test_file), record, update=self._update)
        return record


@pytest.fixture
def txscribe_chain():
    """Chain provider (or web3 instance) scenarios record from; projects override this."""
    raise ScenarioUsageError(
        "Define a 'txscribe_chain' fixture returning a txscribe ChainProvider or a web3 instance"
    )


@pytest.fixture
def txscribe(request, txscribe_chain):
    handle = ScenarioHandle(request.node, txscribe_chain)
    yield handle
    scenario = handle._book.abort(handle.test_id)
    if scenario is not None:
        pytest.fail(f"txscribe: scenario '{scenario.name}' was started but never ended", pytrace=False)
