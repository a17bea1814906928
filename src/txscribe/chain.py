"""web3.py adapters for the chain provider and contract interface boundaries.

Outgoing transactions are observed at the request manager rather than the
provider: web3 caches the provider's middleware-wrapped request function, so a
patched ``make_request`` would be bypassed once the cache is warm. Both
``Web3`` and ``AsyncWeb3`` instances are supported; blocking calls of a sync
instance run in a worker thread so resolutions never stall the event loop.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from eth_abi.exceptions import DecodingError
from eth_utils import is_hex_address, to_checksum_address, to_hex
from eth_utils.abi import collapse_if_tuple
from web3 import AsyncWeb3
from web3.exceptions import TimeExhausted, TransactionNotFound, Web3Exception

from .config import get_config
from .interfaces import NO_MATCH, CallDecoding, CallMatch, EventDecoding, EventMatch, SubmissionPoint
from .types import MethodDescriptor, Param, PendingCall, Receipt

logger = logging.getLogger(__name__)

__all__ = ["Web3Chain", "Web3ContractInterface"]

SEND_TRANSACTION = "eth_sendTransaction"


def _hex(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value.lower()
    return to_hex(value)


def extract_send_transaction(args: Tuple[Any, ...], kwargs: Mapping[str, Any], result: Any) -> Optional[PendingCall]:
    """Pick ``eth_sendTransaction`` requests out of the manager's traffic."""
    method = args[0] if args else kwargs.get("method")
    if str(method) != SEND_TRANSACTION:
        return None
    params = args[1] if len(args) > 1 else kwargs.get("params")
    if not params:
        return None
    transaction = params[0]
    data = transaction.get("data", transaction.get("input"))
    return PendingCall(
        tx_hash=_hex(result),
        sender=transaction.get("from"),
        to=transaction.get("to"),
        data=data,
    )


def _param(abi_input: Mapping[str, Any]) -> Param:
    return Param(name=abi_input.get("name", ""), type=collapse_if_tuple(dict(abi_input)))


def _ordered(abi_inputs: Sequence[Mapping[str, Any]], values: Mapping[str, Any]) -> Tuple[Tuple[str, Any], ...]:
    """Pair decoded values with ABI input order; unnamed inputs fall back to position."""
    positional = list(values.values())
    ordered = []
    for index, abi_input in enumerate(abi_inputs):
        name = abi_input.get("name", "")
        if name and name in values:
            ordered.append((name, values[name]))
        elif index < len(positional):
            ordered.append((name or str(index), positional[index]))
    return tuple(ordered)


class Web3ContractInterface:
    """Decoder and encoder backed by a ``web3`` contract object."""

    def __init__(self, contract: Any):
        self.contract = contract

    @property
    def address(self) -> str:
        return self.contract.address

    def decode_call(self, payload: Any) -> CallDecoding:
        if not payload:
            return NO_MATCH
        try:
            function, params = self.contract.decode_function_input(payload)
        except (Web3Exception, ValueError, DecodingError) as exc:
            logger.debug("txscribe: %s does not decode call payload: %s", self.address, exc)
            return NO_MATCH
        inputs = function.abi.get("inputs", [])
        method = MethodDescriptor(name=function.abi["name"], inputs=tuple(_param(item) for item in inputs))
        return CallMatch(method=method, args=tuple(value for _, value in _ordered(inputs, params)))

    def decode_event(self, log: Any) -> EventDecoding:
        for abi in self.contract.abi:
            if abi.get("type") != "event" or abi.get("anonymous"):
                continue
            try:
                decoded = getattr(self.contract.events, abi["name"])().process_log(log)
            except (Web3Exception, ValueError, DecodingError):
                continue
            args: Dict[str, Any] = dict(_ordered(abi.get("inputs", []), decoded["args"]))
            return EventMatch(name=decoded["event"], args=args)
        return NO_MATCH

    def encode_call(self, name: str, args: Sequence[Any]) -> str:
        prepared = [to_checksum_address(arg) if isinstance(arg, str) and is_hex_address(arg) else arg for arg in args]
        return self.contract.encode_abi(name, args=prepared)


class Web3Chain:
    """Chain provider over a connected ``Web3`` or ``AsyncWeb3`` instance."""

    def __init__(self, w3: Any, receipt_timeout: Optional[float] = None, poll_latency: float = 0.1):
        self.w3 = w3
        self.receipt_timeout = receipt_timeout
        self.poll_latency = poll_latency
        self.is_async = isinstance(w3, AsyncWeb3)

    def contract(self, address: str, abi: Any) -> Web3ContractInterface:
        return Web3ContractInterface(self.w3.eth.contract(address=to_checksum_address(address), abi=abi))

    def submission_point(self) -> SubmissionPoint:
        attribute = "coro_request" if self.is_async else "request_blocking"
        return SubmissionPoint(owner=self.w3.manager, attribute=attribute, extract=extract_send_transaction)

    async def _call(self, function, *args, **kwargs):
        if self.is_async:
            return await function(*args, **kwargs)
        return await asyncio.to_thread(function, *args, **kwargs)

    def _timeout(self) -> float:
        if self.receipt_timeout is not None:
            return self.receipt_timeout
        return get_config().receipt_timeout

    async def get_receipt(self, tx_hash: str) -> Optional[Receipt]:
        try:
            raw = await self._call(
                self.w3.eth.wait_for_transaction_receipt,
                tx_hash,
                timeout=self._timeout(),
                poll_latency=self.poll_latency,
            )
        except (TimeExhausted, TransactionNotFound) as exc:
            logger.warning("txscribe: No receipt for transaction %s: %s", tx_hash, exc)
            return None
        return Receipt(
            tx_hash=_hex(raw.get("transactionHash", tx_hash)),
            block_hash=_hex(raw["blockHash"]),
            block_number=raw.get("blockNumber"),
            status=raw.get("status"),
            logs=tuple(raw.get("logs", ())),
            raw=raw,
        )

    async def historical_call(self, to: str, payload: Any, block_hash: str) -> bytes:
        transaction = {"to": to_checksum_address(to), "data": payload}
        result = await self._call(self.w3.eth.call, transaction, block_identifier=block_hash)
        return bytes(result)

    async def latest_block_hash(self) -> str:
        block = await self._call(self.w3.eth.get_block, "latest")
        return _hex(block["hash"])
