"""Batched read backends for the aggregation strategy.

A backend executes a batch of read-only contract calls against one target
contract, pinned to one block, and returns the decoded results in call
order. A batch either succeeds completely or raises AggregationError.

Backends:
    MulticallBackend  — a live EVM node through web3.py. One batch is one
                        Multicall3 aggregate3 eth_call with allowFailure=false,
                        so any failing sub-call fails the batch.
    RegistryBackend   — an in-process TokenRegistry. Only its current block
                        can be read; historical state is not kept.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError, EncodingError
from eth_utils import function_signature_to_4byte_selector
from web3 import Web3
from web3.exceptions import Web3Exception

from membership.chain import to_address
from membership.errors import AggregationError, ContractRevert
from membership.registry.token_registry import TokenRegistry


# Deployed at the same address on every major EVM chain.
MULTICALL3_ADDRESS = "0xcA11bde05977b3631167028862bE2a173976CA11"

MULTICALL3_ABI = [
    {
        "name": "aggregate3",
        "type": "function",
        "stateMutability": "payable",
        "inputs": [
            {
                "name": "calls",
                "type": "tuple[]",
                "components": [
                    {"name": "target", "type": "address"},
                    {"name": "allowFailure", "type": "bool"},
                    {"name": "callData", "type": "bytes"},
                ],
            }
        ],
        "outputs": [
            {
                "name": "returnData",
                "type": "tuple[]",
                "components": [
                    {"name": "success", "type": "bool"},
                    {"name": "returnData", "type": "bytes"},
                ],
            }
        ],
    }
]


@dataclass(frozen=True)
class ReadFunction:
    signature: str
    input_types: tuple[str, ...]
    output_type: str

    @property
    def selector(self) -> bytes:
        return function_signature_to_4byte_selector(self.signature)


READ_FUNCTIONS: dict[str, ReadFunction] = {
    "balanceOf": ReadFunction("balanceOf(address)", ("address",), "uint256"),
    "tokenOfOwnerByIndex": ReadFunction(
        "tokenOfOwnerByIndex(address,uint256)", ("address", "uint256"), "uint256",
    ),
    "tokenTier": ReadFunction("tokenTier(uint256)", ("uint256",), "uint256"),
    "balanceByTier": ReadFunction(
        "balanceByTier(address,uint256[])", ("address", "uint256[]"), "uint256[]",
    ),
}


@dataclass(frozen=True)
class ReadCall:
    """One read of the membership contract, e.g. ReadCall("balanceOf", (holder,))."""
    fn: str
    args: tuple[Any, ...]

    def __post_init__(self) -> None:
        if self.fn not in READ_FUNCTIONS:
            raise ValueError(f"Unsupported read function: {self.fn}")

    def encode(self) -> bytes:
        read_fn = READ_FUNCTIONS[self.fn]
        return read_fn.selector + encode(list(read_fn.input_types), list(self.args))


class ReadBackend(abc.ABC):
    @abc.abstractmethod
    def latest_block(self) -> int:
        """Current block number, used to pin a "latest" snapshot."""

    @abc.abstractmethod
    def call_batch(self, target: str, calls: Sequence[ReadCall], block: int) -> list[Any]:
        """Execute calls against target at block; results in call order."""


class MulticallBackend(ReadBackend):
    """Reads through Multicall3 on a live node."""

    def __init__(self, w3: Web3, multicall_address: Optional[str] = None) -> None:
        self._w3 = w3
        self._multicall = w3.eth.contract(
            address=to_address(multicall_address or MULTICALL3_ADDRESS),
            abi=MULTICALL3_ABI,
        )

    def latest_block(self) -> int:
        try:
            return int(self._w3.eth.block_number)
        except (Web3Exception, OSError, ValueError) as exc:
            raise AggregationError(f"Could not resolve latest block: {exc}") from exc

    def call_batch(self, target: str, calls: Sequence[ReadCall], block: int) -> list[Any]:
        if not calls:
            return []
        target = to_address(target)
        payload = [(target, False, call.encode()) for call in calls]
        try:
            results = self._multicall.functions.aggregate3(payload).call(
                block_identifier=block,
            )
        except (Web3Exception, OSError, ValueError) as exc:
            raise AggregationError(
                f"Batch of {len(calls)} calls failed at block {block}: {exc}"
            ) from exc

        if len(results) != len(calls):
            raise AggregationError(
                f"Multicall returned {len(results)} results for {len(calls)} calls"
            )
        decoded: list[Any] = []
        for call, (success, data) in zip(calls, results):
            if not success:
                raise AggregationError(f"{call.fn}{call.args} failed at block {block}")
            try:
                (value,) = decode([READ_FUNCTIONS[call.fn].output_type], bytes(data))
            except (DecodingError, EncodingError) as exc:
                raise AggregationError(f"Could not decode {call.fn} result: {exc}") from exc
            decoded.append(list(value) if isinstance(value, tuple) else value)
        return decoded


class RegistryBackend(ReadBackend):
    """Reads an in-process TokenRegistry at its current block."""

    def __init__(self, registry: TokenRegistry) -> None:
        self._registry = registry

    def latest_block(self) -> int:
        return self._registry.block_number

    def call_batch(self, target: str, calls: Sequence[ReadCall], block: int) -> list[Any]:
        if to_address(target) != self._registry.address:
            raise AggregationError(f"No contract at {target}")
        if block != self._registry.block_number:
            raise AggregationError(
                f"Block {block} unavailable: in-process registry is at "
                f"block {self._registry.block_number}"
            )
        try:
            return [self._dispatch(call) for call in calls]
        except (ContractRevert, ValueError) as exc:
            raise AggregationError(f"Read failed at block {block}: {exc}") from exc

    def _dispatch(self, call: ReadCall) -> Any:
        registry = self._registry
        if call.fn == "balanceOf":
            return registry.balance_of(*call.args)
        if call.fn == "tokenOfOwnerByIndex":
            return registry.token_of_owner_by_index(*call.args)
        if call.fn == "tokenTier":
            return registry.token_tier(*call.args)
        return registry.balance_by_tier(*call.args)


def make_backend(provider: Any, multicall_address: Optional[str] = None) -> ReadBackend:
    """Pick the backend for a provider handle."""
    if isinstance(provider, ReadBackend):
        return provider
    if isinstance(provider, TokenRegistry):
        return RegistryBackend(provider)
    if isinstance(provider, Web3):
        return MulticallBackend(provider, multicall_address)
    raise TypeError(f"Unsupported provider: {type(provider).__name__}")
