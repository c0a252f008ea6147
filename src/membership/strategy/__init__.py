"""Weighted-tier voting power strategy."""

from membership.strategy.aggregator import BalanceAggregator, apply_weights, strategy
from membership.strategy.backends import (
    MulticallBackend,
    ReadBackend,
    ReadCall,
    RegistryBackend,
    make_backend,
)
from membership.strategy.options import StrategyOptions, StrategyVariant

__all__ = [
    "BalanceAggregator",
    "MulticallBackend",
    "ReadBackend",
    "ReadCall",
    "RegistryBackend",
    "StrategyOptions",
    "StrategyVariant",
    "apply_weights",
    "make_backend",
    "strategy",
]
