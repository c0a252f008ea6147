"""Consumer gateway — gates an application action on live membership proof.

A gateway is a separate contract that trusts a deployed TokenRegistry and
one designated off-chain signer. Each gated call proves two things:
1. The caller currently owns the token it names.
2. The designated signer authorized this token for this gateway until a
   given expiration, and that authorization has not been used before.

Unlike the one-time mint voucher, the same signer key can issue any number
of such time-boxed authorizations. The signature is consumed before the
gated effect runs, so an effect that calls back into the gateway cannot
reuse it.
"""

from __future__ import annotations

from typing import Callable, Optional

from membership import errors
from membership.access.ledger import SIGNER_ROLE, AccessControlLedger
from membership.chain import (
    ContractContext,
    derive_contract_address,
    require_uint,
    to_address,
)
from membership.crypto.signature import AuthorizationMessage, SignatureAuthorizer
from membership.persistence.event_log import EventKind, EventLog
from membership.registry.token_registry import TokenRegistry


UpdateHook = Callable[[str, int, int], None]


class ConsumerGateway:
    """Membership-gated action surface.

    Usage:
        gateway = ConsumerGateway(registry, signer=author, owner=deployer)
        message = AuthorizationMessage.for_gateway(gateway.address, token_id, expiration)
        signature = sign_authorization(message, author_key)
        gateway.protected_update(100, token_id, expiration, signature, caller=holder)
    """

    def __init__(
        self,
        registry: TokenRegistry,
        signer: str,
        owner: str,
        on_update: Optional[UpdateHook] = None,
        address: Optional[str] = None,
        event_log: Optional[EventLog] = None,
    ) -> None:
        self._registry = registry
        self._context = ContractContext(
            address or derive_contract_address(owner, "ConsumerGateway"), event_log,
        )
        self._signer = to_address(signer)
        self._ledger = AccessControlLedger(
            owner, self._context, initial_roles=[(SIGNER_ROLE, self._signer)],
        )
        self._authorizer = SignatureAuthorizer(self._ledger, self._context)
        self._on_update = on_update
        self._values: dict[str, int] = {}

    @property
    def address(self) -> str:
        return self._context.address

    @property
    def registry(self) -> TokenRegistry:
        return self._registry

    @property
    def signer(self) -> str:
        return self._signer

    def value_of(self, account: str) -> int:
        return self._values.get(to_address(account), 0)

    def set_signer(self, new_signer: str, caller: str, now: Optional[int] = None) -> None:
        """Rotate the designated signer. Owner only."""
        self._ledger.require_owner(caller)
        new_signer = to_address(new_signer)
        if new_signer == self._signer:
            raise errors.RedundantStateChange(errors.ALREADY_SET)

        with self._context.transaction(now) as ctx:
            self._ledger.revoke_role(SIGNER_ROLE, self._signer, caller)
            self._ledger.grant_role(SIGNER_ROLE, new_signer, caller)
            previous, self._signer = self._signer, new_signer
            ctx.emit(EventKind.SIGNER_CHANGED, previous=previous, signer=new_signer)

    def protected_update(
        self,
        value: int,
        token_id: int,
        expiration: int,
        signature: bytes,
        caller: str,
        now: Optional[int] = None,
    ) -> bool:
        """Run the gated update for a token holder. Returns True on success."""
        message = AuthorizationMessage.for_gateway(self.address, token_id, expiration)
        return self._gated(value, token_id, message, signature, caller, now)

    def join(
        self,
        value: int,
        token_id: int,
        tier: int,
        expiration: int,
        signature: bytes,
        caller: str,
        now: Optional[int] = None,
    ) -> bool:
        """Tier-scoped variant: the token must also belong to tier."""
        if self._registry.token_tier(token_id) != tier:
            raise errors.AuthorizationError(errors.NOT_TIER)
        message = AuthorizationMessage.for_gateway(self.address, token_id, expiration, tier=tier)
        return self._gated(value, token_id, message, signature, caller, now)

    def _gated(
        self,
        value: int,
        token_id: int,
        message: AuthorizationMessage,
        signature: bytes,
        caller: str,
        now: Optional[int],
    ) -> bool:
        caller = to_address(caller)
        value = require_uint(value, "value")
        if self._registry.owner_of(token_id) != caller:
            raise errors.AuthorizationError(errors.NOT_TOKEN_OWNER)

        with self._context.transaction(now) as ctx:
            self._authorizer.authorize(message, signature, SIGNER_ROLE)
            self._values[caller] = value
            ctx.emit(
                EventKind.PROTECTED_UPDATE,
                account=caller, token_id=token_id, value=value,
            )
        # The hook runs only after the authorization and update are committed.
        if self._on_update is not None:
            self._on_update(caller, token_id, value)
        return True
