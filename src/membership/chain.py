"""Execution context shared by the in-process membership contracts.

A contract call here behaves like a transaction: the caller is explicit,
the block timestamp is explicit (unix seconds), and the call either
succeeds completely or raises before touching state. ContractContext
tracks the block height and buffers events emitted during a call so that
they are written to the EventLog only when the outermost call commits.

Composed components (ledger, authorizer, allowlist) share their parent
contract's context, so one mint advances the block height once even though
several components take part in it.
"""

from __future__ import annotations

import itertools
import time
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from eth_abi.packed import encode_packed
from eth_utils import keccak, to_checksum_address

from membership.persistence.event_log import EventKind, EventLog, EventRecord


ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

_deploy_nonce = itertools.count(1)


def to_address(value: str) -> str:
    """Normalise an address to its EIP-55 checksum form.

    Raises:
        ValueError: If value is not a 20-byte hex address.
    """
    if not isinstance(value, str):
        raise ValueError(f"Address must be a hex string, got {type(value).__name__}")
    return to_checksum_address(value)


def require_uint(value: int, name: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise ValueError(f"{name} must be a non-negative integer, got {value!r}")
    return value


def derive_contract_address(deployer: str, label: str) -> str:
    """Derive a unique, deterministic-looking address for a new contract."""
    nonce = next(_deploy_nonce)
    digest = keccak(
        encode_packed(["address", "string", "uint256"], [to_address(deployer), label, nonce])
    )
    return to_checksum_address(digest[-20:])


def current_timestamp() -> int:
    return int(time.time())


class ContractContext:
    """Block height, clock and event buffer for one deployed contract."""

    def __init__(self, address: str, event_log: Optional[EventLog] = None) -> None:
        self.address = to_address(address)
        self.event_log = event_log
        self.block_number = 0
        self.block_timestamp = 0
        self._pending: Optional[list[tuple[EventKind, dict[str, Any]]]] = None
        self._now: Optional[int] = None

    @property
    def now(self) -> int:
        """Timestamp of the call in progress (or of the last mined block)."""
        if self._now is not None:
            return self._now
        return self.block_timestamp

    @contextmanager
    def transaction(self, now: Optional[int] = None) -> Iterator[ContractContext]:
        """Run a state-changing call.

        Nested calls join the outermost transaction. On success the block
        height advances by one and buffered events are appended to the log;
        on error buffered events are discarded.
        """
        outer = self._pending is None
        if outer:
            self._pending = []
            self._now = current_timestamp() if now is None else require_uint(now, "now")
        try:
            yield self
        except BaseException:
            if outer:
                self._pending = None
                self._now = None
            raise

        if outer:
            events, self._pending = self._pending, None
            timestamp, self._now = self._now, None
            self.block_number += 1
            self.block_timestamp = timestamp
            if self.event_log is not None:
                for log_index, (kind, payload) in enumerate(events):
                    self.event_log.append(
                        EventRecord.create(
                            event_kind=kind,
                            contract=self.address,
                            block_number=self.block_number,
                            log_index=log_index,
                            timestamp=timestamp,
                            payload=payload,
                        )
                    )

    def emit(self, kind: EventKind, **payload: Any) -> None:
        """Buffer an event for the transaction in progress."""
        if self._pending is None:
            raise RuntimeError("Events can only be emitted inside a transaction")
        self._pending.append((kind, payload))
