"""Typed configuration for the weighted-tier aggregation strategy.

The options document a governance tool passes in looks like:

    {
        "address": "0x...",              # membership contract
        "weights": {"1": 1, "2": 10},     # tier → weight, string keys from JSON
        "variant": "token_enumeration",   # or "balance_by_tier"
        "batch_size": 500,
        "max_workers": 4
    }

Weights may be fractional. Tiers missing from the map weigh zero.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Mapping, Optional, Union

from membership.chain import to_address


Number = Union[int, float, Decimal]
Snapshot = Union[int, str]

LATEST = "latest"
DEFAULT_BATCH_SIZE = 500
DEFAULT_MAX_WORKERS = 4


class StrategyVariant(str, enum.Enum):
    """How per-holder tier counts are read from the contract."""
    TOKEN_ENUMERATION = "token_enumeration"   # tokenOfOwnerByIndex + tokenTier
    BALANCE_BY_TIER = "balance_by_tier"       # one balanceByTier per holder


@dataclass(frozen=True)
class StrategyOptions:
    weights: Mapping[int, Number]
    address: str
    variant: StrategyVariant = StrategyVariant.TOKEN_ENUMERATION
    batch_size: int = DEFAULT_BATCH_SIZE
    max_workers: int = DEFAULT_MAX_WORKERS
    multicall: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "address", to_address(self.address))
        object.__setattr__(self, "weights", _parse_weights(self.weights))
        object.__setattr__(self, "variant", StrategyVariant(self.variant))
        if self.multicall is not None:
            object.__setattr__(self, "multicall", to_address(self.multicall))
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {self.batch_size}")
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {self.max_workers}")

    @property
    def tiers(self) -> list[int]:
        """Weighted tiers in ascending order."""
        return sorted(self.weights)

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> StrategyOptions:
        """Build options from a decoded JSON document.

        Raises:
            ValueError: If address or weights are missing or malformed.
        """
        if "address" not in data:
            raise ValueError("Strategy options missing 'address'")
        if "weights" not in data:
            raise ValueError("Strategy options missing 'weights'")
        known = {"address", "weights", "variant", "batch_size", "max_workers", "multicall"}
        return StrategyOptions(
            weights=data["weights"],
            address=data["address"],
            variant=StrategyVariant(data.get("variant", StrategyVariant.TOKEN_ENUMERATION.value)),
            batch_size=int(data.get("batch_size", DEFAULT_BATCH_SIZE)),
            max_workers=int(data.get("max_workers", DEFAULT_MAX_WORKERS)),
            multicall=data.get("multicall"),
            extra={k: v for k, v in data.items() if k not in known},
        )


def _parse_weights(weights: Mapping[Any, Any]) -> dict[int, Number]:
    parsed: dict[int, Number] = {}
    for key, value in weights.items():
        try:
            tier = int(key)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Tier key must be an integer, got {key!r}") from exc
        if tier < 0:
            raise ValueError(f"Tier key must be non-negative, got {tier}")
        if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
            raise ValueError(f"Weight for tier {tier} must be a number, got {value!r}")
        parsed[tier] = value
    return parsed


def resolve_snapshot(snapshot: Snapshot) -> Optional[int]:
    """Block number for an explicit snapshot, None for "latest"."""
    if snapshot == LATEST:
        return None
    if isinstance(snapshot, int) and not isinstance(snapshot, bool) and snapshot >= 0:
        return snapshot
    raise ValueError(f"Snapshot must be a block number or 'latest', got {snapshot!r}")
