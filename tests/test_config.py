"""Tests for runtime settings loading."""

from pathlib import Path

import pytest

from membership.config import load_settings


VARIABLES = (
    "RPC_URL",
    "MEMBERSHIP_CONTRACT",
    "MULTICALL_ADDRESS",
    "SIGNER_PRIVATE_KEY",
    "AGGREGATION_BATCH_SIZE",
    "AGGREGATION_MAX_WORKERS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch) -> None:
    for name in VARIABLES:
        monkeypatch.delenv(name, raising=False)


class TestLoadSettings:
    def test_defaults(self, tmp_path: Path) -> None:
        settings = load_settings(tmp_path / "missing.env")
        assert settings.rpc_url is None
        assert settings.batch_size == 500
        assert settings.max_workers == 4

    def test_reads_env_file(self, tmp_path: Path) -> None:
        path = tmp_path / ".env"
        path.write_text("RPC_URL=http://localhost:8545\nAGGREGATION_BATCH_SIZE=50\n")
        settings = load_settings(path)
        assert settings.rpc_url == "http://localhost:8545"
        assert settings.batch_size == 50

    def test_environment_wins_over_file(self, tmp_path: Path, monkeypatch) -> None:
        path = tmp_path / ".env"
        path.write_text("MEMBERSHIP_CONTRACT=0xfile\n")
        monkeypatch.setenv("MEMBERSHIP_CONTRACT", "0xenv")
        assert load_settings(path).contract == "0xenv"

    def test_non_integer_rejected(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.setenv("AGGREGATION_MAX_WORKERS", "many")
        with pytest.raises(ValueError, match="AGGREGATION_MAX_WORKERS"):
            load_settings(tmp_path / "missing.env")
