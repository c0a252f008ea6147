"""Tests for the contract event log — append-only, hashed, persistent."""

from pathlib import Path

import pytest
from eth_account import Account

from membership.access.ledger import MINTER_ROLE
from membership.persistence.event_log import EventKind, EventLog, EventRecord
from membership.registry.token_registry import TokenRegistry


OWNER = Account.from_key("0x" + "11" * 32).address
MINTER = Account.from_key("0x" + "22" * 32).address
HOLDER = Account.from_key("0x" + "44" * 32).address
CONTRACT = "0x" + "AB" * 20


def _record(block: int = 1, log_index: int = 0, **payload) -> EventRecord:
    return EventRecord.create(
        event_kind=EventKind.TRANSFER,
        contract=CONTRACT,
        block_number=block,
        log_index=log_index,
        timestamp=1700000000,
        payload=payload or {"token_id": 1},
    )


class TestEventRecord:
    def test_hash_is_deterministic(self) -> None:
        assert _record().event_hash == _record().event_hash
        assert _record().event_hash.startswith("sha256:")

    def test_hash_covers_payload(self) -> None:
        assert _record(token_id=1).event_hash != _record(token_id=2).event_hash

    def test_event_id_namespaced(self) -> None:
        assert _record(block=3, log_index=2).event_id == f"{CONTRACT}:3:2"


class TestEventLog:
    def test_append_and_filter(self) -> None:
        log = EventLog()
        log.append(_record(block=1))
        log.append(_record(block=2))
        assert log.count == 2
        assert log.last_event.block_number == 2
        assert len(log.events(EventKind.TRANSFER)) == 2
        assert log.events(EventKind.ROLE_GRANTED) == []
        assert len(log.events(contract=CONTRACT)) == 2

    def test_duplicate_rejected(self) -> None:
        log = EventLog()
        log.append(_record())
        with pytest.raises(ValueError, match="Duplicate event ID"):
            log.append(_record())

    def test_persistence_round_trip(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(path)
        registry = TokenRegistry("member", "MEMBER", owner=OWNER, event_log=log)
        registry.grant_role(MINTER_ROLE, MINTER, caller=OWNER, now=10)
        registry.mint_tier_admin(1, HOLDER, caller=MINTER, now=11)

        reloaded = EventLog(path)
        assert reloaded.count == log.count == 2
        assert reloaded.event_hashes() == log.event_hashes()
        assert reloaded.events(EventKind.TRANSFER)[0].payload["to"] == HOLDER

    def test_tampered_file_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(path)
        log.append(_record(token_id=1))
        path.write_text(path.read_text().replace('"token_id": 1', '"token_id": 2'))
        with pytest.raises(ValueError, match="Integrity check failed"):
            EventLog(path)

    def test_duplicate_line_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        EventLog(path).append(_record())
        line = path.read_text()
        path.write_text(line + line)
        with pytest.raises(ValueError, match="Duplicate event ID on recovery"):
            EventLog(path)
