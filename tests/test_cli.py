"""Tests for the membership CLI — proves commands parse and dispatch correctly."""

import json
from pathlib import Path

import pytest
from eth_account import Account

from membership.access.ledger import MINTER_ROLE
from membership.cli import build_parser, main
from membership.crypto.merkle import allowlist_leaf, verify_proof
from membership.registry.token_registry import TokenRegistry


SIGNER_KEY = "0xdd631135f3a99e4d747d763ab5ead2f2340a69d2a90fab05e20104731365fde3"
SIGNER = Account.from_key(SIGNER_KEY).address
OWNER = Account.from_key("0x" + "11" * 32).address
ALICE = Account.from_key("0x" + "44" * 32).address
BOB = Account.from_key("0x" + "55" * 32).address
CONTRACT = "0x" + "ab" * 20


@pytest.fixture
def env_file(tmp_path: Path, monkeypatch) -> Path:
    for name in ("RPC_URL", "SIGNER_PRIVATE_KEY", "MEMBERSHIP_CONTRACT", "MULTICALL_ADDRESS"):
        monkeypatch.delenv(name, raising=False)
    path = tmp_path / ".env"
    path.write_text("")
    return path


class TestCLIParsing:
    def test_aggregate_command(self) -> None:
        parser = build_parser()
        args = parser.parse_args([
            "aggregate", "--contract", CONTRACT, "--weights", '{"1": 1}',
            "--address", ALICE, "--address", BOB, "--snapshot", "19000000",
        ])
        assert args.command == "aggregate"
        assert args.address == [ALICE, BOB]
        assert args.snapshot == "19000000"
        assert args.network == "1"

    def test_aggregate_variant_choices(self) -> None:
        parser = build_parser()
        with pytest.raises(SystemExit):
            parser.parse_args(["aggregate", "--variant", "graph"])

    def test_sign_mint_command(self) -> None:
        parser = build_parser()
        args = parser.parse_args([
            "sign-mint", "--contract", CONTRACT, "--recipient", ALICE,
            "--token-id", "7", "--tier", "2",
        ])
        assert args.token_id == 7
        assert args.tier == 2
        assert args.expiration is None

    def test_global_env_option(self, tmp_path: Path) -> None:
        args = build_parser().parse_args(["--env", str(tmp_path / ".env"), "allowlist-root", "--entries", "x.json"])
        assert args.env == tmp_path / ".env"
        assert args.proofs is False


class TestCLIExecution:
    def test_no_command_shows_help(self, capsys) -> None:
        exit_code = main([])
        assert exit_code == 0
        assert "membership" in capsys.readouterr().out

    def test_allowlist_root(self, tmp_path: Path, capsys) -> None:
        entries = tmp_path / "allowlist.json"
        entries.write_text(json.dumps([
            {"address": ALICE, "tier": 1},
            {"address": BOB, "tier": 2},
        ]))
        exit_code = main(["allowlist-root", "--entries", str(entries), "--proofs"])
        assert exit_code == 0

        output = json.loads(capsys.readouterr().out)
        root = bytes.fromhex(output["root"][2:])
        assert output["leaves"] == 2
        for item in output["proofs"]:
            proof = [bytes.fromhex(p[2:]) for p in item["proof"]]
            assert verify_proof(proof, root, allowlist_leaf(item["address"], item["tier"]))

    def test_allowlist_bad_entry(self, tmp_path: Path, capsys) -> None:
        entries = tmp_path / "allowlist.json"
        entries.write_text(json.dumps([{"address": ALICE}]))
        assert main(["allowlist-root", "--entries", str(entries)]) == 1

    def test_sign_mint_requires_key(self, env_file: Path, capsys) -> None:
        exit_code = main([
            "--env", str(env_file), "sign-mint",
            "--contract", CONTRACT, "--recipient", ALICE, "--token-id", "1",
        ])
        assert exit_code == 1
        assert "SIGNER_PRIVATE_KEY" in capsys.readouterr().err

    def test_sign_mint_e2e(self, env_file: Path, monkeypatch, capsys) -> None:
        monkeypatch.setenv("SIGNER_PRIVATE_KEY", SIGNER_KEY)
        exit_code = main([
            "--env", str(env_file), "sign-mint",
            "--contract", CONTRACT, "--recipient", ALICE, "--token-id", "5",
        ])
        assert exit_code == 0
        output = json.loads(capsys.readouterr().out)
        assert output["signer"] == SIGNER

        registry = TokenRegistry("member", "MEMBER", owner=OWNER, address=CONTRACT)
        registry.grant_role(MINTER_ROLE, SIGNER, caller=OWNER)
        signature = bytes.fromhex(output["signature"][2:])
        token_id = registry.mint(5, signature, caller=ALICE)
        assert registry.owner_of(token_id) == ALICE

    def test_sign_access(self, env_file: Path, monkeypatch, capsys) -> None:
        monkeypatch.setenv("SIGNER_PRIVATE_KEY", SIGNER_KEY)
        exit_code = main([
            "--env", str(env_file), "sign-access",
            "--gateway", CONTRACT, "--token-id", "3", "--expiration", "1767225600", "--tier", "1",
        ])
        assert exit_code == 0
        output = json.loads(capsys.readouterr().out)
        assert [t for t, _ in output["fields"]] == ["address", "uint256", "uint256", "uint256"]

    def test_aggregate_requires_rpc(self, env_file: Path, capsys) -> None:
        exit_code = main(["--env", str(env_file), "aggregate", "--address", ALICE])
        assert exit_code == 1
        assert "RPC_URL" in capsys.readouterr().err
