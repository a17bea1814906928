"""Scenario lifecycle: interception, per-call resolution and the ordered log.

Lifecycle guarantees:
- ``Idle -> Recording -> Finalizing -> Closed``, each transition at most once;
- entries are appended in resolution-completion order, never reordered;
- ``end`` awaits every in-flight resolution, so nothing is logged after ``Closed``.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .config import Config, get_config
from .errors import ScenarioFinalizationError, ScenarioUsageError
from .intercept import SubmissionInterceptor
from .interfaces import ChainProvider
from .registry import AddressRegistry
from .resolver import EffectResolver
from .types import LogEntry, PendingCall, ScenarioConfig, ScenarioRecord

logger = logging.getLogger(__name__)

__all__ = ["Scenario", "ScenarioBook", "ScenarioState"]


class ScenarioState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    FINALIZING = "finalizing"
    CLOSED = "closed"


class Scenario:
    def __init__(
        self,
        chain: ChainProvider,
        config: ScenarioConfig,
        *,
        name: Optional[str] = None,
        settings: Optional[Config] = None,
    ):
        self.chain = chain
        self.config = config
        self.name = config.name or name or "scenario"
        self.settings = settings or get_config()
        self.state = ScenarioState.IDLE
        self.registry: Optional[AddressRegistry] = None
        self._resolver: Optional[EffectResolver] = None
        self._interceptor: Optional[SubmissionInterceptor] = None
        self._entries: List[LogEntry] = []
        self._tasks: List[asyncio.Task] = []
        self._deferred: List[PendingCall] = []

    @property
    def entries(self) -> Tuple[LogEntry, ...]:
        return tuple(self._entries)

    async def start(self) -> "Scenario":
        if self.state is ScenarioState.RECORDING:
            return self
        if self.state is not ScenarioState.IDLE:
            raise ScenarioUsageError(f"Scenario '{self.name}' cannot be restarted once it has ended")

        self.registry = await AddressRegistry.build(self.config.accounts, self.config.contracts, self.config.tokens)
        self._resolver = EffectResolver(
            self.chain,
            self.registry,
            self.config.custom_state,
            strict_receipts=self.settings.strict_receipts,
            match_event_emitter=self.settings.match_event_emitter,
        )
        block_hash = await self.chain.latest_block_hash()
        await self._resolver.prime_decimals(block_hash)
        if self.settings.record_initial_state:
            self._entries.append(await self._resolver.initial_state(block_hash))

        self._interceptor = SubmissionInterceptor(self.chain.submission_point(), self._on_submit)
        self._interceptor.install()
        self.state = ScenarioState.RECORDING
        logger.debug("txscribe: Scenario '%s' recording", self.name)
        return self

    def _on_submit(self, pending: PendingCall) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._deferred.append(pending)
            return
        self._tasks.append(loop.create_task(self._resolve(pending)))

    async def _resolve(self, pending: PendingCall) -> None:
        entry = await self._resolver.resolve(pending)
        if self.state is ScenarioState.CLOSED:
            logger.debug("txscribe: Scenario '%s' is closed; dropping %s", self.name, pending.tx_hash)
            return
        if entry is not None:
            self._entries.append(entry)

    async def end(self) -> Tuple[LogEntry, ...]:
        if self.state is ScenarioState.IDLE:
            raise ScenarioUsageError(f"Scenario '{self.name}' was never started")
        if self.state is not ScenarioState.RECORDING:
            raise ScenarioUsageError(f"Scenario '{self.name}' has already ended")

        self.state = ScenarioState.FINALIZING
        self._interceptor.uninstall()
        failures: List[BaseException] = []

        # Submissions made without a running loop were confirmed one after another.
        for pending in self._deferred:
            try:
                await self._resolve(pending)
            except Exception as exc:
                failures.append(exc)
        self._deferred = []

        results = await asyncio.gather(*self._tasks, return_exceptions=True)
        failures.extend(result for result in results if isinstance(result, BaseException))
        self._tasks = []
        self.state = ScenarioState.CLOSED

        if failures:
            for failure in failures:
                logger.error("txscribe: Scenario '%s' resolution failed: %s", self.name, failure)
            raise ScenarioFinalizationError(self.name, failures) from failures[0]
        logger.debug("txscribe: Scenario '%s' closed with %d entries", self.name, len(self._entries))
        return self.entries

    def abort(self) -> None:
        """Stop intercepting and cancel unfinished resolutions; used when a test never ended its scenario."""
        self.state = ScenarioState.CLOSED
        if self._interceptor is not None:
            self._interceptor.uninstall()
        pending = [task for task in self._tasks if not task.done()]
        for task in pending:
            if not task.get_loop().is_closed():
                task.cancel()
        for task in self._tasks:
            if task.done() and not task.cancelled() and task.exception() is not None:
                logger.warning("txscribe: Scenario '%s' resolution failed before abort: %s", self.name, task.exception())
        if pending or self._deferred:
            logger.warning(
                "txscribe: Scenario '%s' aborted with %d unresolved call(s)",
                self.name,
                len(pending) + len(self._deferred),
            )
        self._deferred = []
        self._tasks = []

    def record(self) -> ScenarioRecord:
        if self.state is not ScenarioState.CLOSED:
            raise ScenarioUsageError(f"Scenario '{self.name}' is still {self.state.value}")
        return ScenarioRecord(
            name=self.name,
            entries=self.entries,
            tokens=self.registry.token_names if self.registry else (),
            decimals=self.registry.decimals_by_token() if self.registry else {},
        )


class ScenarioBook:
    """Open scenarios keyed by test identity.

    Owned by the test-harness adapter, so concurrently running test sessions never
    share scenario state.
    """

    def __init__(self, settings: Optional[Config] = None):
        self.settings = settings
        self._open: Dict[str, Scenario] = {}

    def is_open(self, test_id: str) -> bool:
        return test_id in self._open

    def open_tests(self) -> List[str]:
        return sorted(self._open)

    def current(self, test_id: str) -> Optional[Scenario]:
        return self._open.get(test_id)

    async def start(
        self,
        test_id: str,
        chain: ChainProvider,
        config: ScenarioConfig,
        *,
        default_name: Optional[str] = None,
    ) -> Scenario:
        if test_id in self._open:
            return self._open[test_id]
        scenario = Scenario(chain, config, name=default_name, settings=self.settings)
        await scenario.start()
        self._open[test_id] = scenario
        return scenario

    async def end(self, test_id: str, scenario: Optional[Scenario] = None) -> Scenario:
        current = self._open.get(test_id)
        if current is None:
            raise ScenarioUsageError(f"No scenario is open for test '{test_id}'; start one before ending it")
        if scenario is not None and scenario is not current:
            raise ScenarioUsageError(
                f"Cannot end scenario '{scenario.name}' while scenario '{current.name}' is still open for test '{test_id}'"
            )
        del self._open[test_id]
        await current.end()
        return current

    def abort(self, test_id: str) -> Optional[Scenario]:
        scenario = self._open.pop(test_id, None)
        if scenario is not None:
            scenario.abort()
        return scenario
