from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from eth_utils import is_hex_address, to_normalized_address

from .types import AddressSource
from .values import DecodedValue, ScalarValue, map_leaves

logger = logging.getLogger(__name__)

__all__ = ["AddressRegistry", "is_address_like", "normalize_address"]


def is_address_like(value: Any) -> bool:
    return isinstance(value, str) and is_hex_address(value)


def normalize_address(address: str) -> str:
    """Canonical lowercase ``0x`` form, independent of input case or checksum."""
    return to_normalized_address(address)


async def _materialize(source: Any) -> str:
    value = source() if callable(source) and not isinstance(source, str) else source
    if inspect.isawaitable(value):
        value = await value
    if not is_address_like(value):
        raise ValueError(f"Expected a hex address, got {value!r}")
    return normalize_address(value)


def _reverse(resolved: Mapping[str, str]) -> Dict[str, str]:
    """Address to name; when names share an address the one listed last wins."""
    reverse: Dict[str, str] = {}
    for name, address in resolved.items():
        if address in reverse:
            logger.debug("txscribe: address %s renamed from %s to %s", address, reverse[address], name)
        reverse[address] = name
    return reverse


class AddressRegistry:
    """Alias map for one scenario.

    Resolution precedence is account > contract > token > the normalized address
    itself. The maps are immutable after ``build``; only the decimals cache grows.
    """

    def __init__(
        self,
        accounts: Mapping[str, str],
        contracts: Mapping[str, Tuple[str, Any]],
        tokens: Mapping[str, Tuple[str, Any]],
    ):
        self._account_addresses = dict(accounts)
        self._contract_entries = dict(contracts)
        self._token_entries = dict(tokens)
        self._accounts = _reverse(self._account_addresses)
        self._contracts = _reverse({name: address for name, (address, _) in self._contract_entries.items()})
        self._tokens = _reverse({name: address for name, (address, _) in self._token_entries.items()})
        self._decimals: Dict[str, Optional[int]] = {}

    @classmethod
    async def build(
        cls,
        accounts: Mapping[str, AddressSource],
        contracts: Mapping[str, Any],
        tokens: Mapping[str, Any],
    ) -> "AddressRegistry":
        """Resolve every configured address source, then freeze the alias maps."""

        async def _named(mapping: Mapping[str, Any], from_interface: bool) -> List[Tuple[str, str]]:
            names = list(mapping)
            sources = [mapping[name].address if from_interface else mapping[name] for name in names]
            addresses = await asyncio.gather(*(_materialize(source) for source in sources))
            return list(zip(names, addresses))

        account_pairs, contract_pairs, token_pairs = await asyncio.gather(
            _named(accounts, False), _named(contracts, True), _named(tokens, True)
        )
        return cls(
            accounts=dict(account_pairs),
            contracts={name: (address, contracts[name]) for name, address in contract_pairs},
            tokens={name: (address, tokens[name]) for name, address in token_pairs},
        )

    def resolve(self, address: Any) -> Any:
        if not is_address_like(address):
            return address
        normalized = normalize_address(address)
        return (
            self._accounts.get(normalized)
            or self._contracts.get(normalized)
            or self._tokens.get(normalized)
            or normalized
        )

    def resolve_deep(self, value: DecodedValue) -> DecodedValue:
        def _leaf(leaf: ScalarValue) -> ScalarValue:
            return self.resolve(leaf) if isinstance(leaf, str) else leaf

        return map_leaves(value, _leaf)

    def contract_named(self, name: str) -> Optional[Any]:
        """Interface of a tracked contract or token by alias (contracts win)."""
        if name in self._contract_entries:
            return self._contract_entries[name][1]
        if name in self._token_entries:
            return self._token_entries[name][1]
        return None

    def interface_at(self, address: Any) -> Optional[Tuple[str, Any]]:
        if not is_address_like(address):
            return None
        normalized = normalize_address(address)
        for entries in (self._contract_entries, self._token_entries):
            for name, (entry_address, interface) in entries.items():
                if entry_address == normalized:
                    return name, interface
        return None

    def interfaces(self) -> List[Tuple[str, Any]]:
        """Every tracked interface in registration order: contracts, then tokens."""
        return [(name, interface) for name, (_, interface) in self._contract_entries.items()] + [
            (name, interface) for name, (_, interface) in self._token_entries.items()
        ]

    def tokens(self) -> List[Tuple[str, str, Any]]:
        return [(name, address, interface) for name, (address, interface) in self._token_entries.items()]

    @property
    def token_names(self) -> Tuple[str, ...]:
        return tuple(self._token_entries)

    def holders(self) -> Dict[str, str]:
        """Alias -> address for every account, contract and token."""
        holders: Dict[str, str] = dict(self._account_addresses)
        for entries in (self._contract_entries, self._token_entries):
            for name, (address, _) in entries.items():
                holders.setdefault(name, address)
        return holders

    def cached_decimals(self, address: str) -> Tuple[bool, Optional[int]]:
        normalized = normalize_address(address)
        if normalized in self._decimals:
            return True, self._decimals[normalized]
        return False, None

    def remember_decimals(self, address: str, decimals: Optional[int]) -> None:
        self._decimals.setdefault(normalize_address(address), decimals)

    def decimals_by_token(self) -> Dict[str, Optional[int]]:
        return {name: self._decimals.get(address) for name, (address, _) in self._token_entries.items()}
