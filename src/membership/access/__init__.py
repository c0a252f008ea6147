"""Access control — owner, roles and per-scope admins."""

from membership.access.ledger import (
    GLOBAL_SCOPE,
    MINTER_ROLE,
    SIGNER_ROLE,
    AccessControlLedger,
    role_id,
)

__all__ = ["GLOBAL_SCOPE", "MINTER_ROLE", "SIGNER_ROLE", "AccessControlLedger", "role_id"]
