"""Membership CLI — voting power aggregation, allowlists and signing.

Usage:
    python -m membership.cli aggregate --options options.json --addresses holders.json
    python -m membership.cli aggregate --contract 0x... --weights '{"1": 1, "2": 10}' \\
        --address 0xabc... --address 0xdef... --snapshot 19000000
    python -m membership.cli allowlist-root --entries allowlist.json --proofs
    python -m membership.cli sign-mint --contract 0x... --recipient 0x... --token-id 7 --tier 1
    python -m membership.cli sign-access --gateway 0x... --token-id 7 --expiration 1767225600

Requires:
    RPC_URL (aggregate) and SIGNER_PRIVATE_KEY (sign-*) in the environment
    or in a .env file at the project root.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Optional

from membership.config import Settings, load_settings
from membership.crypto.merkle import MerkleTree, allowlist_leaf
from membership.crypto.signature import (
    AuthorizationMessage,
    recover_signer,
    sign_authorization,
)
from membership.errors import AggregationError
from membership.strategy.aggregator import strategy
from membership.strategy.options import LATEST, StrategyOptions


def _read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


def _snapshot(value: str) -> int | str:
    return LATEST if value == LATEST else int(value)


def _require_key(settings: Settings) -> Optional[str]:
    if not settings.signer_private_key:
        print("ERROR: Missing SIGNER_PRIVATE_KEY in environment or .env", file=sys.stderr)
        return None
    return settings.signer_private_key


def _build_options(args: argparse.Namespace, settings: Settings) -> StrategyOptions:
    document: dict[str, Any] = _read_json(args.options) if args.options else {}
    if args.contract or "address" not in document:
        document["address"] = args.contract or settings.contract
    if args.weights:
        document["weights"] = json.loads(args.weights)
    if args.variant:
        document["variant"] = args.variant
    document.setdefault("batch_size", settings.batch_size)
    document.setdefault("max_workers", settings.max_workers)
    if settings.multicall:
        document.setdefault("multicall", settings.multicall)
    if not document.get("address"):
        raise ValueError("No contract address: pass --contract or set MEMBERSHIP_CONTRACT")
    return StrategyOptions.from_dict(document)


def cmd_aggregate(args: argparse.Namespace) -> int:
    """Compute weighted voting power for a list of holders."""
    from web3 import HTTPProvider, Web3

    settings = load_settings(args.env)
    if not settings.rpc_url:
        print("ERROR: Missing RPC_URL in environment or .env", file=sys.stderr)
        return 1

    addresses: list[str] = list(args.address or [])
    if args.addresses:
        addresses.extend(_read_json(args.addresses))
    if not addresses:
        print("ERROR: No holder addresses given", file=sys.stderr)
        return 1

    try:
        options = _build_options(args, settings)
    except ValueError as exc:
        print(f"Failed: {exc}", file=sys.stderr)
        return 1

    w3 = Web3(HTTPProvider(settings.rpc_url))
    try:
        scores = strategy(args.network, w3, addresses, options, _snapshot(args.snapshot))
    except AggregationError as exc:
        print(f"Failed: {exc}", file=sys.stderr)
        return 1

    print(json.dumps(scores, indent=2, default=str))
    return 0


def cmd_allowlist_root(args: argparse.Namespace) -> int:
    """Build the allowlist merkle root from [{"address": ..., "tier": ...}, ...]."""
    entries = _read_json(args.entries)
    tree = MerkleTree()
    leaves: list[tuple[dict[str, Any], bytes]] = []
    try:
        for entry in entries:
            leaf = allowlist_leaf(entry["address"], int(entry["tier"]))
            leaves.append((entry, leaf))
            tree.add_leaf(leaf)
    except (KeyError, ValueError) as exc:
        print(f"Failed: invalid allowlist entry: {exc}", file=sys.stderr)
        return 1

    root = tree.compute_root()
    output: dict[str, Any] = {"root": "0x" + root.hex(), "leaves": tree.leaf_count}
    if args.proofs:
        output["proofs"] = [
            {
                "address": entry["address"],
                "tier": int(entry["tier"]),
                "proof": tree.inclusion_proof(leaf).hex(),
            }
            for entry, leaf in leaves
        ]
    print(json.dumps(output, indent=2))
    return 0


def _print_signature(message: AuthorizationMessage, signature: bytes) -> None:
    print(json.dumps(
        {
            "fields": [[t, str(v)] for t, v in zip(message.abi_types, message.values)],
            "digest": "0x" + message.digest().hex(),
            "signature": "0x" + signature.hex(),
            "signer": recover_signer(message.digest(), signature),
        },
        indent=2,
    ))


def cmd_sign_mint(args: argparse.Namespace) -> int:
    """Sign a mint voucher with the configured minter key."""
    key = _require_key(load_settings(args.env))
    if key is None:
        return 1
    if args.tier is None:
        message = AuthorizationMessage.for_mint(
            args.token_id, args.recipient, args.contract, args.expiration,
        )
    else:
        message = AuthorizationMessage.for_tier_mint(
            args.tier, args.recipient, args.contract, args.token_id, args.expiration,
        )
    _print_signature(message, sign_authorization(message, key))
    return 0


def cmd_sign_access(args: argparse.Namespace) -> int:
    """Sign a time-boxed gateway authorization with the configured key."""
    key = _require_key(load_settings(args.env))
    if key is None:
        return 1
    message = AuthorizationMessage.for_gateway(
        args.gateway, args.token_id, args.expiration, tier=args.tier,
    )
    _print_signature(message, sign_authorization(message, key))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="membership",
        description="Tiered membership tokens — aggregation and signing tools",
    )
    parser.add_argument(
        "--env",
        type=Path,
        default=None,
        help="Path to a .env file (default: project root .env)",
    )
    sub = parser.add_subparsers(dest="command")

    # aggregate
    p_agg = sub.add_parser("aggregate", help="Compute weighted voting power")
    p_agg.add_argument("--network", default="1", help="Network / chain id label")
    p_agg.add_argument("--options", type=Path, help="Strategy options JSON file")
    p_agg.add_argument("--contract", help="Membership contract address")
    p_agg.add_argument("--weights", help='Tier weights as JSON, e.g. \'{"1": 1, "2": 10}\'')
    p_agg.add_argument(
        "--variant", choices=["token_enumeration", "balance_by_tier"],
        help="Read strategy (default: token_enumeration)",
    )
    p_agg.add_argument("--address", action="append", help="Holder address (repeatable)")
    p_agg.add_argument("--addresses", type=Path, help="JSON file with a list of holders")
    p_agg.add_argument("--snapshot", default=LATEST, help="Block number or 'latest'")

    # allowlist-root
    p_root = sub.add_parser("allowlist-root", help="Build an allowlist merkle root")
    p_root.add_argument("--entries", type=Path, required=True, help="Allowlist JSON file")
    p_root.add_argument("--proofs", action="store_true", help="Also print every proof")

    # sign-mint
    p_mint = sub.add_parser("sign-mint", help="Sign a mint voucher")
    p_mint.add_argument("--contract", required=True, help="Membership contract address")
    p_mint.add_argument("--recipient", required=True, help="Token recipient")
    p_mint.add_argument("--token-id", type=int, required=True, help="Voucher token id")
    p_mint.add_argument("--tier", type=int, help="Tier (omit for untiered mint)")
    p_mint.add_argument("--expiration", type=int, help="Unix expiration (optional)")

    # sign-access
    p_access = sub.add_parser("sign-access", help="Sign a gateway authorization")
    p_access.add_argument("--gateway", required=True, help="Gateway contract address")
    p_access.add_argument("--token-id", type=int, required=True, help="Holder's token id")
    p_access.add_argument("--expiration", type=int, required=True, help="Unix expiration")
    p_access.add_argument("--tier", type=int, help="Tier, for tier-scoped gateways")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "aggregate": cmd_aggregate,
        "allowlist-root": cmd_allowlist_root,
        "sign-mint": cmd_sign_mint,
        "sign-access": cmd_sign_access,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
