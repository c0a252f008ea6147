"""Access control ledger — owner, role assignments and per-scope admins.

Every privileged operation in the membership contracts consults this
ledger. Roles are 32-byte identifiers (keccak of the role name) and the
permission store is keyed by (role, address). Admins are keyed by scope:
a tier id, or None for the contract-wide scope.

Rules:
- Only the owner grants and revokes roles.
- A scope's admin defaults to the owner until reassigned.
- A scope's admin can be reassigned by the owner or by the current admin.
  The owner keeps a standing right to reassign any scope, which is the only
  recovery path for an admin key that has been lost.
- Redundant changes (value already equal to the requested one) revert.
"""

from __future__ import annotations

from typing import Iterable, Optional

from eth_utils import keccak

from membership import errors
from membership.chain import (
    ZERO_ADDRESS,
    ContractContext,
    derive_contract_address,
    to_address,
)
from membership.persistence.event_log import EventKind


def role_id(name: str) -> bytes:
    """Role identifier as computed on-chain: keccak256(bytes(name))."""
    return keccak(text=name)


MINTER_ROLE = role_id("MINTER_ROLE")
SIGNER_ROLE = role_id("SIGNER_ROLE")

Scope = Optional[int]
GLOBAL_SCOPE: Scope = None


class AccessControlLedger:
    """Permission store with pure queries and guarded mutations.

    Usage:
        ledger = AccessControlLedger(owner=deployer)
        ledger.grant_role(MINTER_ROLE, minter, caller=deployer)
        ledger.require_role(MINTER_ROLE, minter)
        ledger.set_token_admin(1, tier_admin, caller=deployer)
    """

    def __init__(
        self,
        owner: str,
        context: Optional[ContractContext] = None,
        initial_roles: Iterable[tuple[bytes, str]] = (),
    ) -> None:
        owner = to_address(owner)
        if owner == ZERO_ADDRESS:
            raise ValueError("Owner cannot be the zero address")
        self._owner = owner
        self._context = context or ContractContext(
            derive_contract_address(owner, "AccessControlLedger")
        )
        self._roles: set[tuple[bytes, str]] = {
            (role, to_address(account)) for role, account in initial_roles
        }
        self._scope_admins: dict[Scope, str] = {}

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def owner(self) -> str:
        return self._owner

    def has_role(self, role: bytes, address: str) -> bool:
        return (role, to_address(address)) in self._roles

    def admin_of(self, scope: Scope) -> str:
        """Admin of a scope; the owner unless explicitly reassigned."""
        return self._scope_admins.get(scope, self._owner)

    def is_owner(self, address: str) -> bool:
        return to_address(address) == self._owner

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def require_owner(self, caller: str) -> None:
        if not self.is_owner(caller):
            raise errors.AuthorizationError(errors.NOT_OWNER)

    def require_role(
        self, role: bytes, address: str, reason: str = errors.NOT_MINTER,
    ) -> None:
        if not self.has_role(role, address):
            raise errors.AuthorizationError(reason)

    def require_admin(self, scope: Scope, caller: str) -> None:
        if to_address(caller) != self.admin_of(scope):
            raise errors.AuthorizationError(errors.NOT_ADMIN)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def grant_role(
        self, role: bytes, address: str, caller: str, now: Optional[int] = None,
    ) -> None:
        self.require_owner(caller)
        account = to_address(address)
        if (role, account) in self._roles:
            raise errors.RedundantStateChange(errors.ALREADY_GRANTED)

        with self._context.transaction(now):
            self._roles.add((role, account))
            self._context.emit(
                EventKind.ROLE_GRANTED,
                role="0x" + role.hex(), account=account, sender=to_address(caller),
            )

    def revoke_role(
        self, role: bytes, address: str, caller: str, now: Optional[int] = None,
    ) -> None:
        self.require_owner(caller)
        account = to_address(address)
        if (role, account) not in self._roles:
            raise errors.RedundantStateChange(errors.NOT_GRANTED)

        with self._context.transaction(now):
            self._roles.discard((role, account))
            self._context.emit(
                EventKind.ROLE_REVOKED,
                role="0x" + role.hex(), account=account, sender=to_address(caller),
            )

    def renounce_role(self, role: bytes, caller: str, now: Optional[int] = None) -> None:
        """Drop a role the caller holds."""
        account = to_address(caller)
        if (role, account) not in self._roles:
            raise errors.RedundantStateChange(errors.NOT_GRANTED)

        with self._context.transaction(now):
            self._roles.discard((role, account))
            self._context.emit(
                EventKind.ROLE_REVOKED,
                role="0x" + role.hex(), account=account, sender=account,
            )

    def set_token_admin(
        self, scope: Scope, address: str, caller: str, now: Optional[int] = None,
    ) -> None:
        """Reassign the admin of a scope.

        Raises:
            AuthorizationError: caller is neither the owner nor the current admin.
            RedundantStateChange: address is already the admin.
        """
        caller = to_address(caller)
        current = self.admin_of(scope)
        if caller != self._owner and caller != current:
            raise errors.AuthorizationError(errors.NOT_OWNER_OR_ADMIN)
        new_admin = to_address(address)
        if new_admin == current:
            raise errors.RedundantStateChange(errors.ALREADY_ADMIN)

        with self._context.transaction(now):
            self._scope_admins[scope] = new_admin
            self._context.emit(
                EventKind.TOKEN_ADMIN_CHANGED,
                scope=scope, previous=current, admin=new_admin, sender=caller,
            )

    def transfer_ownership(
        self, new_owner: str, caller: str, now: Optional[int] = None,
    ) -> None:
        """Hand the contract to a new owner.

        Scopes that were never reassigned follow the owner; explicitly
        assigned admins keep their scopes.
        """
        self.require_owner(caller)
        new_owner = to_address(new_owner)
        if new_owner == ZERO_ADDRESS:
            raise ValueError("New owner cannot be the zero address")
        if new_owner == self._owner:
            raise errors.RedundantStateChange(errors.ALREADY_SET)

        with self._context.transaction(now):
            previous, self._owner = self._owner, new_owner
            self._context.emit(
                EventKind.OWNERSHIP_TRANSFERRED, previous=previous, owner=new_owner,
            )
