"""Tiered membership tokens with layered mint authorization and weighted voting power."""

from membership.access.ledger import MINTER_ROLE, SIGNER_ROLE, AccessControlLedger
from membership.gateway.consumer import ConsumerGateway
from membership.registry.token_registry import TokenRegistry

__all__ = [
    "MINTER_ROLE",
    "SIGNER_ROLE",
    "AccessControlLedger",
    "ConsumerGateway",
    "TokenRegistry",
]
