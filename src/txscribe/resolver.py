"""Turn one intercepted call into an immutable log entry.

Resolution guarantees:
- the call intent is decoded against the tracked contracts before anything is
  awaited, so an unrecordable call fails loudly;
- balances and events are read at the block that included the transaction,
  addressed by block hash;
- an unobtainable receipt drops the call unless strict receipts are requested.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from eth_abi import decode as abi_decode

from .errors import CallDecodeError, ExtractorError, ReceiptUnavailableError
from .interfaces import CallMatch, ChainProvider, EventMatch, log_emitter
from .registry import AddressRegistry
from .types import Balances, EntryKind, EventRecord, Extractor, LogEntry, MethodDescriptor, PendingCall, Receipt
from .values import DecodedValue, Struct, from_native

logger = logging.getLogger(__name__)

__all__ = ["EffectResolver"]


def _decode_uint(raw: bytes) -> int:
    return int(abi_decode(["uint256"], bytes(raw))[0])


class EffectResolver:
    def __init__(
        self,
        chain: ChainProvider,
        registry: AddressRegistry,
        extractors: Optional[Mapping[str, Extractor]] = None,
        *,
        strict_receipts: bool = False,
        match_event_emitter: bool = False,
    ):
        self.chain = chain
        self.registry = registry
        self.extractors = dict(extractors or {})
        self.strict_receipts = strict_receipts
        self.match_event_emitter = match_event_emitter

    def decode_intent(self, pending: PendingCall) -> Tuple[MethodDescriptor, Tuple[DecodedValue, ...], str, str]:
        """Return (method, alias-resolved args, caller alias, target alias)."""
        if pending.to is None:
            raise CallDecodeError(f"Transaction {pending.tx_hash} has no recipient", tx_hash=pending.tx_hash)
        caller = self.registry.resolve(pending.sender) if pending.sender else ""
        target = self.registry.resolve(pending.to)
        interface = self.registry.contract_named(target)
        if interface is None:
            raise CallDecodeError(
                f"Transaction {pending.tx_hash} targets untracked address {target}; "
                "add it to the scenario contracts or tokens",
                tx_hash=pending.tx_hash,
            )
        decoded = interface.decode_call(pending.data)
        if not isinstance(decoded, CallMatch):
            raise CallDecodeError(
                f"Failed to decode call to {target} in transaction {pending.tx_hash}: no matching method",
                tx_hash=pending.tx_hash,
            )
        args = tuple(self.registry.resolve_deep(from_native(arg)) for arg in decoded.args)
        return decoded.method, args, caller, target

    async def await_receipt(self, tx_hash: str) -> Optional[Receipt]:
        receipt = await self.chain.get_receipt(tx_hash)
        if receipt is None:
            if self.strict_receipts:
                raise ReceiptUnavailableError(f"Receipt for transaction {tx_hash} is unavailable", tx_hash=tx_hash)
            logger.warning("txscribe: Receipt for transaction %s is unavailable; dropping it from the log", tx_hash)
        return receipt

    async def decimals(self, token_name: str, address: str, interface: Any, block_hash: str) -> Optional[int]:
        known, cached = self.registry.cached_decimals(address)
        if known:
            return cached
        try:
            raw = await self.chain.historical_call(address, interface.encode_call("decimals", []), block_hash)
            value: Optional[int] = _decode_uint(raw)
        except Exception as exc:
            logger.warning("txscribe: Could not read decimals of token %s: %s", token_name, exc)
            value = None
        self.registry.remember_decimals(address, value)
        return self.registry.cached_decimals(address)[1]

    async def prime_decimals(self, block_hash: str) -> Dict[str, Optional[int]]:
        tokens = self.registry.tokens()
        values = await asyncio.gather(
            *(self.decimals(name, address, interface, block_hash) for name, address, interface in tokens)
        )
        return {name: value for (name, _, _), value in zip(tokens, values)}

    async def snapshot_balances(self, block_hash: str) -> Balances:
        holders = self.registry.holders()
        balances: Balances = {}
        for token_name, token_address, interface in self.registry.tokens():

            async def _balance(holder_address: str, token_address=token_address, interface=interface) -> int:
                payload = interface.encode_call("balanceOf", [holder_address])
                return _decode_uint(await self.chain.historical_call(token_address, payload, block_hash))

            amounts = await asyncio.gather(*(_balance(address) for address in holders.values()))
            balances[token_name] = dict(zip(holders.keys(), amounts))
        return balances

    def _candidates(self, log: Any) -> List[Tuple[str, Any]]:
        candidates = self.registry.interfaces()
        if not self.match_event_emitter:
            return candidates
        emitter = self.registry.interface_at(log_emitter(log))
        if emitter is None:
            return candidates
        return [emitter] + [candidate for candidate in candidates if candidate[0] != emitter[0]]

    def decode_event(self, log: Any) -> Optional[EventRecord]:
        for name, interface in self._candidates(log):
            decoded = interface.decode_event(log)
            if isinstance(decoded, EventMatch):
                fields = Struct(tuple((str(key), from_native(value)) for key, value in decoded.args.items()))
                args = self.registry.resolve_deep(fields)
                return EventRecord(contract=name, name=decoded.name, args=args)  # type: ignore[arg-type]
        return None

    def decode_events(self, receipt: Receipt) -> Tuple[EventRecord, ...]:
        events = []
        for log in receipt.logs:
            event = self.decode_event(log)
            if event is None:
                logger.debug("txscribe: Skipping log from untracked emitter %s", log_emitter(log))
                continue
            events.append(event)
        return tuple(events)

    async def custom_state(self, receipt: Receipt) -> Optional[Dict[str, Any]]:
        if not self.extractors:
            return None

        async def _run(name: str, extractor: Extractor) -> Any:
            try:
                value = extractor(receipt)
                if inspect.isawaitable(value):
                    value = await value
                return value
            except Exception as exc:
                raise ExtractorError(name, f"Custom state extractor '{name}' failed: {exc}") from exc

        names = list(self.extractors)
        values = await asyncio.gather(*(_run(name, self.extractors[name]) for name in names))
        return dict(zip(names, values))

    async def initial_state(self, block_hash: str) -> LogEntry:
        return LogEntry(
            kind=EntryKind.INITIAL_STATE,
            method=None,
            caller="",
            contract="",
            balances=await self.snapshot_balances(block_hash),
        )

    async def resolve(self, pending: PendingCall) -> Optional[LogEntry]:
        method, args, caller, target = self.decode_intent(pending)
        receipt = await self.await_receipt(pending.tx_hash)
        if receipt is None:
            return None
        logger.debug("txscribe: Resolving %s.%s at block %s", target, method.name, receipt.block_hash)
        balances, custom_state = await asyncio.gather(
            self.snapshot_balances(receipt.block_hash), self.custom_state(receipt)
        )
        return LogEntry(
            kind=EntryKind.METHOD_CALL,
            method=method,
            caller=caller,
            contract=target,
            args=args,
            balances=balances,
            events=self.decode_events(receipt),
            custom_state=custom_state,
            tx_hash=pending.tx_hash,
        )
