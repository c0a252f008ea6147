"""Append-only event log — the audit trail of every contract state change.

Each successful mutation on a membership contract emits one or more event
records, the way a deployed contract emits logs. Events are immutable once
written. The log serves as:
1. The audit trail for third-party verification of mints, role changes
   and consumed authorizations.
2. An optional JSONL file that can be reloaded and integrity-checked.

Reverted calls never emit events: emission happens only after every check
has passed and the state has been committed.
"""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional


class EventKind(str, enum.Enum):
    """Classification of contract events."""
    TRANSFER = "Transfer"
    ROLE_GRANTED = "RoleGranted"
    ROLE_REVOKED = "RoleRevoked"
    OWNERSHIP_TRANSFERRED = "OwnershipTransferred"
    TOKEN_ADMIN_CHANGED = "TokenAdminChanged"
    TRANSFERS_ENABLED_CHANGED = "TransfersEnabledChanged"
    ALLOWLIST_ROOT_SET = "AllowlistRootSet"
    AUTHORIZATION_CONSUMED = "AuthorizationConsumed"
    ALLOWLIST_CLAIMED = "AllowlistClaimed"
    METADATA_UPDATED = "MetadataUpdated"
    # Consumer gateway events
    SIGNER_CHANGED = "SignerChanged"
    PROTECTED_UPDATE = "ProtectedUpdate"


def _canonical_hash(
    event_id: str,
    event_kind: str,
    contract: str,
    block_number: int,
    timestamp: int,
    payload: dict[str, Any],
) -> str:
    canonical = json.dumps(
        {
            "event_id": event_id,
            "event_kind": event_kind,
            "contract": contract,
            "block_number": block_number,
            "timestamp": timestamp,
            "payload": payload,
        },
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"


@dataclass(frozen=True)
class EventRecord:
    """A single immutable contract event.

    The event_hash is computed at creation time over the canonical JSON
    form of every other field.
    """
    event_id: str
    event_kind: EventKind
    contract: str
    block_number: int
    timestamp: int
    payload: dict[str, Any]
    event_hash: str

    @staticmethod
    def create(
        event_kind: EventKind,
        contract: str,
        block_number: int,
        log_index: int,
        timestamp: int,
        payload: dict[str, Any],
    ) -> EventRecord:
        """Create a new event record with computed hash.

        The event id is ``<contract>:<block>:<log_index>``, which is unique
        for as long as a contract's block height only moves forward.
        """
        event_id = f"{contract}:{block_number}:{log_index}"
        return EventRecord(
            event_id=event_id,
            event_kind=event_kind,
            contract=contract,
            block_number=block_number,
            timestamp=timestamp,
            payload=payload,
            event_hash=_canonical_hash(
                event_id, event_kind.value, contract, block_number, timestamp, payload,
            ),
        )


class EventLog:
    """Append-only event log with optional file persistence.

    Events can only be appended, never modified or deleted.
    Several contracts may share one log; ids are namespaced by contract.
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._events: list[EventRecord] = []
        self._storage_path = storage_path
        self._event_ids: set[str] = set()

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    def append(self, event: EventRecord) -> None:
        """Append an event to the log.

        Raises ValueError if event_id is a duplicate (replay protection).
        """
        if event.event_id in self._event_ids:
            raise ValueError(f"Duplicate event ID: {event.event_id}")

        self._events.append(event)
        self._event_ids.add(event.event_id)

        if self._storage_path:
            self._append_to_file(event)

    def events(
        self,
        kind: Optional[EventKind] = None,
        contract: Optional[str] = None,
    ) -> list[EventRecord]:
        """Return events, optionally filtered by kind and emitting contract."""
        result = list(self._events)
        if kind is not None:
            result = [e for e in result if e.event_kind == kind]
        if contract is not None:
            result = [e for e in result if e.contract == contract]
        return result

    def event_hashes(self, kind: Optional[EventKind] = None) -> list[str]:
        return [e.event_hash for e in self.events(kind)]

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def last_event(self) -> Optional[EventRecord]:
        return self._events[-1] if self._events else None

    def _append_to_file(self, event: EventRecord) -> None:
        """Append a single event to the JSONL file."""
        record = {
            "event_id": event.event_id,
            "event_kind": event.event_kind.value,
            "contract": event.contract,
            "block_number": event.block_number,
            "timestamp": event.timestamp,
            "payload": event.payload,
            "event_hash": event.event_hash,
        }
        with self._storage_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(record, sort_keys=True, ensure_ascii=False) + "\n")

    def _load_from_file(self, path: Path) -> None:
        """Load events from a JSONL file with integrity verification.

        Fail-closed: rejects tampered records (hash mismatch) and
        duplicate event IDs.
        """
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)

                event_id = data["event_id"]
                if event_id in self._event_ids:
                    raise ValueError(
                        f"Duplicate event ID on recovery (line {line_num}): {event_id}"
                    )

                expected_hash = _canonical_hash(
                    event_id,
                    data["event_kind"],
                    data["contract"],
                    data["block_number"],
                    data["timestamp"],
                    data["payload"],
                )
                if data["event_hash"] != expected_hash:
                    raise ValueError(
                        f"Integrity check failed (line {line_num}): event {event_id} "
                        f"stored hash {data['event_hash']} != computed {expected_hash}"
                    )

                event = EventRecord(
                    event_id=event_id,
                    event_kind=EventKind(data["event_kind"]),
                    contract=data["contract"],
                    block_number=data["block_number"],
                    timestamp=data["timestamp"],
                    payload=data["payload"],
                    event_hash=data["event_hash"],
                )
                self._events.append(event)
                self._event_ids.add(event.event_id)
