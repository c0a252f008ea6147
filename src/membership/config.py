"""Runtime settings, read from the environment and an optional .env file.

Variables:
    RPC_URL                  JSON-RPC endpoint used by the aggregate command
    MEMBERSHIP_CONTRACT      default membership contract address
    MULTICALL_ADDRESS        Multicall3 override (defaults to the canonical address)
    SIGNER_PRIVATE_KEY       key used by the signing commands
    AGGREGATION_BATCH_SIZE   calls per batch (default 500)
    AGGREGATION_MAX_WORKERS  concurrent holder tasks (default 4)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from membership.strategy.options import DEFAULT_BATCH_SIZE, DEFAULT_MAX_WORKERS


DEFAULT_ENV = Path(__file__).resolve().parents[2] / ".env"


@dataclass(frozen=True)
class Settings:
    rpc_url: Optional[str]
    contract: Optional[str]
    multicall: Optional[str]
    signer_private_key: Optional[str]
    batch_size: int = DEFAULT_BATCH_SIZE
    max_workers: int = DEFAULT_MAX_WORKERS


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def load_settings(env_path: Optional[Path] = None) -> Settings:
    """Load settings. Variables already set in the environment win over .env."""
    load_dotenv(env_path or DEFAULT_ENV)
    return Settings(
        rpc_url=os.getenv("RPC_URL"),
        contract=os.getenv("MEMBERSHIP_CONTRACT"),
        multicall=os.getenv("MULTICALL_ADDRESS"),
        signer_private_key=os.getenv("SIGNER_PRIVATE_KEY"),
        batch_size=_int_env("AGGREGATION_BATCH_SIZE", DEFAULT_BATCH_SIZE),
        max_workers=_int_env("AGGREGATION_MAX_WORKERS", DEFAULT_MAX_WORKERS),
    )
