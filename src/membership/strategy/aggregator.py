"""Weighted-tier balance aggregation — voting power from tiered holdings.

For a list of holders, the aggregator reads how many tokens of each tier
every holder owns and converts that into a single score:

    score(holder) = Σ weight[tier] × count[tier]     (missing tiers weigh 0)

Read plan (all batches pinned to one block):
    phase 1   balanceOf(holder) for every holder, in batches
    phase 2   per holder with balance > 0, one of:
              token_enumeration: tokenOfOwnerByIndex(holder, 0..balance-1),
                                 then tokenTier(tokenId) for each id found
              balance_by_tier:   balanceByTier(holder, weighted tiers)

Phase-2 holder tasks are independent and run on a bounded thread pool;
within a holder, tier lookups wait for the token ids they need. A "latest"
snapshot is resolved to a concrete block number once, before phase 1, so
that the whole run sees one consistent state even if new blocks arrive.

Any failed batch fails the whole run. There is no partial-success mode.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from typing import Any, Mapping, Optional, Sequence, Union

from membership.errors import AggregationError
from membership.strategy.backends import ReadBackend, ReadCall, make_backend
from membership.strategy.options import (
    LATEST,
    Number,
    Snapshot,
    StrategyOptions,
    StrategyVariant,
    resolve_snapshot,
)


def apply_weights(tier_counts: Mapping[int, int], weights: Mapping[int, Number]) -> Number:
    """Weighted sum of tier counts. Tiers absent from weights contribute 0.

    When any weight is a Decimal the whole sum is computed in Decimal, with
    float weights converted through their shortest repr.
    """
    exact = any(isinstance(w, Decimal) for w in weights.values())
    score: Number = Decimal(0) if exact else 0
    for tier, count in tier_counts.items():
        weight = weights.get(tier)
        if exact and isinstance(weight, float):
            weight = Decimal(repr(weight))
        if weight:
            score += weight * count
    return score


def tally_tiers(tiers: Sequence[int]) -> dict[int, int]:
    counts: dict[int, int] = {}
    for tier in tiers:
        counts[tier] = counts.get(tier, 0) + 1
    return counts


class BalanceAggregator:
    """Runs one aggregation strategy against a read backend.

    Usage:
        options = StrategyOptions(weights={1: 1, 2: 10}, address=registry_address)
        aggregator = BalanceAggregator(backend, options)
        scores = aggregator.run(["0xabc...", "0xdef..."], snapshot="latest")
    """

    def __init__(self, backend: ReadBackend, options: StrategyOptions) -> None:
        self._backend = backend
        self._options = options

    @property
    def options(self) -> StrategyOptions:
        return self._options

    def run(self, addresses: Sequence[str], snapshot: Snapshot = LATEST) -> dict[str, Number]:
        """Score every input address exactly once.

        Returns:
            Mapping of input address → weighted score, in input order.
            Repeated addresses collapse into one entry.

        Raises:
            AggregationError: If any read fails.
        """
        holders = list(dict.fromkeys(addresses))
        if not holders:
            return {}

        block = self._pin_block(snapshot)
        tier_counts = self.tier_counts(holders, block)
        return {
            holder: apply_weights(tier_counts[holder], self._options.weights)
            for holder in holders
        }

    def tier_counts(self, holders: Sequence[str], block: int) -> dict[str, dict[int, int]]:
        """Per-holder tier → count table at block."""
        balances = self._read(
            [ReadCall("balanceOf", (holder,)) for holder in holders], block,
        )
        counts: dict[str, dict[int, int]] = {holder: {} for holder in holders}
        active = [
            (holder, int(balance))
            for holder, balance in zip(holders, balances)
            if int(balance) > 0
        ]
        if not active:
            return counts

        if self._options.variant == StrategyVariant.BALANCE_BY_TIER:
            counts.update(self._counts_by_tier(active, block))
            return counts

        with ThreadPoolExecutor(max_workers=self._options.max_workers) as pool:
            futures = {
                holder: pool.submit(self._enumerate_holder, holder, balance, block)
                for holder, balance in active
            }
            # result() re-raises the first failure; remaining tasks are
            # drained by the executor shutdown.
            for holder, future in futures.items():
                counts[holder] = future.result()
        return counts

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _pin_block(self, snapshot: Snapshot) -> int:
        block = resolve_snapshot(snapshot)
        if block is None:
            block = self._backend.latest_block()
        return block

    def _enumerate_holder(self, holder: str, balance: int, block: int) -> dict[int, int]:
        token_ids = self._read_sequential(
            [ReadCall("tokenOfOwnerByIndex", (holder, index)) for index in range(balance)],
            block,
        )
        tiers = self._read_sequential(
            [ReadCall("tokenTier", (int(token_id),)) for token_id in token_ids], block,
        )
        return tally_tiers([int(tier) for tier in tiers])

    def _counts_by_tier(
        self, active: Sequence[tuple[str, int]], block: int,
    ) -> dict[str, dict[int, int]]:
        tiers = self._options.tiers
        rows = self._read(
            [ReadCall("balanceByTier", (holder, tiers)) for holder, _ in active], block,
        )
        counts: dict[str, dict[int, int]] = {}
        for (holder, _), row in zip(active, rows):
            if len(row) != len(tiers):
                raise AggregationError(
                    f"balanceByTier returned {len(row)} counts for {len(tiers)} tiers"
                )
            counts[holder] = {tier: int(n) for tier, n in zip(tiers, row) if int(n) > 0}
        return counts

    # ------------------------------------------------------------------
    # Batching
    # ------------------------------------------------------------------

    def _chunks(self, calls: Sequence[ReadCall]) -> list[Sequence[ReadCall]]:
        size = self._options.batch_size
        return [calls[i:i + size] for i in range(0, len(calls), size)]

    def _read(self, calls: Sequence[ReadCall], block: int) -> list[Any]:
        """Batches of calls, issued concurrently, results in call order."""
        chunks = self._chunks(calls)
        if len(chunks) <= 1:
            return self._read_sequential(calls, block)
        results: list[Any] = []
        with ThreadPoolExecutor(max_workers=self._options.max_workers) as pool:
            futures = [
                pool.submit(self._backend.call_batch, self._options.address, chunk, block)
                for chunk in chunks
            ]
            for future in futures:
                results.extend(future.result())
        return results

    def _read_sequential(self, calls: Sequence[ReadCall], block: int) -> list[Any]:
        results: list[Any] = []
        for chunk in self._chunks(calls):
            results.extend(self._backend.call_batch(self._options.address, chunk, block))
        return results


def strategy(
    network: Union[int, str],
    provider: Any,
    addresses: Sequence[str],
    options: Union[StrategyOptions, Mapping[str, Any]],
    snapshot: Snapshot = LATEST,
    multicall_address: Optional[str] = None,
) -> dict[str, Number]:
    """Snapshot-style entry point: weighted voting power per address.

    Args:
        network: Chain identifier of the provider. Multicall3 lives at the
            same address on every supported network, so it only labels the run.
        provider: A web3.Web3 instance, a TokenRegistry, or a ReadBackend.
        addresses: Holder addresses to score.
        options: StrategyOptions or its JSON document form.
        snapshot: Block number, or "latest".
        multicall_address: Override of the Multicall3 address.

    Raises:
        AggregationError: If any batched read fails.
    """
    if not isinstance(options, StrategyOptions):
        options = StrategyOptions.from_dict(options)
    backend = make_backend(provider, multicall_address or options.multicall)
    return BalanceAggregator(backend, options).run(addresses, snapshot)
