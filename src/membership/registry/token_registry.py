"""Token registry — tiered, non-transferable-by-default membership tokens.

The registry is the token ledger: ownership, per-token tier and the
transfer lock. It composes the access ledger, the signature authorizer and
the allowlist root to guard every mutation.

Admission paths (all produce the same minted token):
    mint_admin / mint_tier_admin   minter role, no signature
    mint / mint_tier               minter-signed authorization, single use
    mint_with_proof                merkle proof against the allowlist root

Token state machine:
    UNMINTED → MINTED          (any mint path)
    MINTED → MINTED            (transfer, only while transfers are enabled)
    MINTED → BURNED            (burn by the admin of the token's tier)

Transfer scopes: the global scope (None) and one scope per tier. A token
may move when either its tier scope or the global scope is enabled.

Owner enumeration removes tokens by swap-and-pop, so indices returned by
token_of_owner_by_index may change after a transfer or burn.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

from membership import errors
from membership.access.ledger import (
    GLOBAL_SCOPE,
    MINTER_ROLE,
    AccessControlLedger,
    Scope,
)
from membership.chain import (
    ZERO_ADDRESS,
    ContractContext,
    derive_contract_address,
    require_uint,
    to_address,
)
from membership.crypto.merkle import AllowlistRoot, allowlist_leaf
from membership.crypto.signature import AuthorizationMessage, SignatureAuthorizer
from membership.persistence.event_log import EventKind, EventLog


DEFAULT_TIER = 0


class TokenState(str, enum.Enum):
    UNMINTED = "unminted"
    MINTED = "minted"
    BURNED = "burned"


TOKEN_TRANSITIONS: Dict[TokenState, frozenset] = {
    TokenState.UNMINTED: frozenset({TokenState.MINTED}),
    TokenState.MINTED: frozenset({TokenState.MINTED, TokenState.BURNED}),
    TokenState.BURNED: frozenset(),
}


@dataclass
class TokenRecord:
    token_id: int
    tier: int
    owner: str = ZERO_ADDRESS
    state: TokenState = TokenState.UNMINTED

    def transition_to(self, target: TokenState) -> None:
        if target not in TOKEN_TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Illegal token transition: {self.state.value} → {target.value}"
            )
        self.state = target


class TokenRegistry:
    """In-process model of the tiered membership token contract.

    Usage:
        registry = TokenRegistry("member", "MEMBER", owner=deployer)
        registry.grant_role(MINTER_ROLE, minter, caller=deployer)
        token_id = registry.mint_tier_admin(1, holder, caller=minter)
        registry.balance_by_tier(holder, [1, 2])   # [1, 0]
    """

    def __init__(
        self,
        name: str,
        symbol: str,
        owner: str,
        base_uri: str = "",
        contract_uri: str = "",
        transfers_enabled: bool = False,
        address: Optional[str] = None,
        event_log: Optional[EventLog] = None,
    ) -> None:
        self.name = name
        self.symbol = symbol
        self._context = ContractContext(
            address or derive_contract_address(owner, f"{name}:{symbol}"),
            event_log,
        )
        self._ledger = AccessControlLedger(owner, self._context)
        self._authorizer = SignatureAuthorizer(self._ledger, self._context)
        self._allowlist = AllowlistRoot(self._ledger, self._context)

        self._tokens: dict[int, TokenRecord] = {}
        self._next_token_id = 1
        self._owned: dict[str, list[int]] = {}
        self._owned_index: dict[int, int] = {}
        self._all_tokens: list[int] = []
        self._all_index: dict[int, int] = {}
        self._claimed_leaves: set[bytes] = set()

        self._transfers: dict[Scope, bool] = {GLOBAL_SCOPE: bool(transfers_enabled)}
        self._base_uri = base_uri
        self._contract_uri = contract_uri
        self._tier_uris: dict[int, str] = {}

    # ------------------------------------------------------------------
    # Composition
    # ------------------------------------------------------------------

    @property
    def address(self) -> str:
        return self._context.address

    @property
    def block_number(self) -> int:
        return self._context.block_number

    @property
    def access(self) -> AccessControlLedger:
        return self._ledger

    @property
    def authorizer(self) -> SignatureAuthorizer:
        return self._authorizer

    @property
    def allowlist(self) -> AllowlistRoot:
        return self._allowlist

    @property
    def owner(self) -> str:
        return self._ledger.owner

    # ------------------------------------------------------------------
    # Access control surface
    # ------------------------------------------------------------------

    def grant_role(self, role: bytes, address: str, caller: str, now: Optional[int] = None) -> None:
        self._ledger.grant_role(role, address, caller, now)

    def revoke_role(self, role: bytes, address: str, caller: str, now: Optional[int] = None) -> None:
        self._ledger.revoke_role(role, address, caller, now)

    def has_role(self, role: bytes, address: str) -> bool:
        return self._ledger.has_role(role, address)

    def set_token_admin(self, scope: Scope, address: str, caller: str, now: Optional[int] = None) -> None:
        self._ledger.set_token_admin(scope, address, caller, now)

    def token_admins(self, scope: Scope) -> str:
        return self._ledger.admin_of(scope)

    def set_root(self, root: bytes, caller: str, now: Optional[int] = None) -> None:
        self._allowlist.set_root(root, caller, now)

    # ------------------------------------------------------------------
    # Minting
    # ------------------------------------------------------------------

    def mint_admin(
        self,
        recipient: str,
        caller: str,
        tier: int = DEFAULT_TIER,
        now: Optional[int] = None,
    ) -> int:
        """Direct mint by a minter-role holder. Returns the new token id."""
        self._ledger.require_role(MINTER_ROLE, caller, errors.NOT_MINTER)
        recipient = self._require_recipient(recipient)
        tier = require_uint(tier, "tier")
        with self._context.transaction(now):
            return self._mint(recipient, tier)

    def mint_tier_admin(
        self, tier: int, recipient: str, caller: str, now: Optional[int] = None,
    ) -> int:
        return self.mint_admin(recipient, caller, tier=tier, now=now)

    def mint(
        self,
        token_id: int,
        signature: bytes,
        caller: str,
        expiration: Optional[int] = None,
        now: Optional[int] = None,
    ) -> int:
        """Mint to the caller with a minter-signed voucher.

        The signed fields are (token_id, caller, registry[, expiration]);
        token_id is the voucher id, the minted id is the next sequential one.
        """
        recipient = self._require_recipient(caller)
        message = AuthorizationMessage.for_mint(token_id, recipient, self.address, expiration)
        with self._context.transaction(now):
            self._authorizer.authorize(message, signature, MINTER_ROLE)
            return self._mint(recipient, DEFAULT_TIER)

    def mint_tier(
        self,
        tier: int,
        recipient: str,
        token_id: int,
        signature: bytes,
        signer: str,
        caller: str,
        expiration: Optional[int] = None,
        now: Optional[int] = None,
    ) -> int:
        """Mint a tier to recipient on behalf of a named minter signer.

        Any caller may submit the voucher; the named signer must hold the
        minter role (``!minter``) and must be the one who signed it
        (``invalid authorization``).
        """
        recipient = self._require_recipient(recipient)
        message = AuthorizationMessage.for_tier_mint(
            tier, recipient, self.address, token_id, expiration,
        )
        with self._context.transaction(now):
            self._authorizer.authorize(message, signature, MINTER_ROLE, expected_signer=signer)
            return self._mint(recipient, tier)

    def mint_with_proof(
        self,
        tier: int,
        recipient: str,
        proof: Sequence[bytes],
        caller: str,
        now: Optional[int] = None,
    ) -> int:
        """Mint through the allowlist; each (recipient, tier) leaf mints once."""
        caller = to_address(caller)
        recipient = self._require_recipient(recipient)
        leaf = allowlist_leaf(recipient, tier)
        if leaf in self._claimed_leaves:
            raise errors.AlreadyClaimed()
        if not self._allowlist.verify(proof, leaf):
            raise errors.InvalidAuthorization()

        with self._context.transaction(now) as ctx:
            self._claimed_leaves.add(leaf)
            ctx.emit(
                EventKind.ALLOWLIST_CLAIMED,
                leaf="0x" + leaf.hex(), recipient=recipient, tier=tier, sender=caller,
            )
            return self._mint(recipient, tier)

    # ------------------------------------------------------------------
    # Transfer lock, transfer and burn
    # ------------------------------------------------------------------

    def transfers_enabled(self, scope: Scope = GLOBAL_SCOPE) -> bool:
        return self._transfers.get(scope, False)

    def set_transfers_enabled(
        self, scope: Scope, enabled: bool, caller: str, now: Optional[int] = None,
    ) -> None:
        """Toggle the transfer lock for a scope. Admin of the scope only."""
        self._ledger.require_admin(scope, caller)
        enabled = bool(enabled)
        if self.transfers_enabled(scope) == enabled:
            raise errors.RedundantStateChange(errors.ALREADY_SET)

        with self._context.transaction(now) as ctx:
            self._transfers[scope] = enabled
            ctx.emit(
                EventKind.TRANSFERS_ENABLED_CHANGED,
                scope=scope, enabled=enabled, sender=to_address(caller),
            )

    def transfer_from(
        self,
        from_: str,
        to: str,
        token_id: int,
        caller: str,
        now: Optional[int] = None,
    ) -> None:
        """Move a token. Reverts ``!transfer`` whenever its scope is locked."""
        record = self._require_minted(token_id)
        if not (self.transfers_enabled(GLOBAL_SCOPE) or self.transfers_enabled(record.tier)):
            raise errors.TransferNotAllowed()
        from_ = to_address(from_)
        if record.owner != from_ or to_address(caller) != from_:
            raise errors.AuthorizationError(errors.NOT_OWNER_OF_TOKEN)
        to = self._require_recipient(to)

        with self._context.transaction(now) as ctx:
            self._remove_from_owner(from_, token_id)
            self._add_to_owner(to, token_id)
            record.owner = to
            record.transition_to(TokenState.MINTED)
            ctx.emit(EventKind.TRANSFER, **{"from": from_, "to": to, "token_id": token_id})

    def burn(self, token_id: int, caller: str, now: Optional[int] = None) -> None:
        """Destroy a token. Admin of the token's tier only."""
        record = self._require_minted(token_id)
        self._ledger.require_admin(record.tier, caller)

        with self._context.transaction(now) as ctx:
            holder = record.owner
            self._remove_from_owner(holder, token_id)
            self._remove_from_all(token_id)
            record.owner = ZERO_ADDRESS
            record.transition_to(TokenState.BURNED)
            ctx.emit(EventKind.TRANSFER, **{"from": holder, "to": ZERO_ADDRESS, "token_id": token_id})

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def set_uri(self, uri: str, caller: str, now: Optional[int] = None) -> None:
        self._set_metadata("base_uri", uri, caller, now)

    def set_contract_uri(self, uri: str, caller: str, now: Optional[int] = None) -> None:
        self._set_metadata("contract_uri", uri, caller, now)

    def set_tier_uri(self, tier: int, uri: str, caller: str, now: Optional[int] = None) -> None:
        self._ledger.require_owner(caller)
        tier = require_uint(tier, "tier")
        if self._tier_uris.get(tier) == uri:
            raise errors.RedundantStateChange(errors.ALREADY_SET)
        with self._context.transaction(now) as ctx:
            self._tier_uris[tier] = uri
            ctx.emit(EventKind.METADATA_UPDATED, field="tier_uri", tier=tier, value=uri)

    def uri(self, token_id: int) -> str:
        """Shared metadata URI; constant for every id, minted or not."""
        return self._base_uri

    def contract_uri(self) -> str:
        return self._contract_uri

    def token_uri(self, token_id: int) -> str:
        """Tier URI when one is set, else base URI followed by the token id."""
        record = self._require_minted(token_id)
        tier_uri = self._tier_uris.get(record.tier)
        if tier_uri is not None:
            return tier_uri
        return f"{self._base_uri}{token_id}" if self._base_uri else ""

    def _set_metadata(self, field: str, value: str, caller: str, now: Optional[int]) -> None:
        self._ledger.require_owner(caller)
        attr = f"_{field}"
        if getattr(self, attr) == value:
            raise errors.RedundantStateChange(errors.ALREADY_SET)
        with self._context.transaction(now) as ctx:
            setattr(self, attr, value)
            ctx.emit(EventKind.METADATA_UPDATED, field=field, value=value)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def exists(self, token_id: int) -> bool:
        record = self._tokens.get(token_id)
        return record is not None and record.state == TokenState.MINTED

    def owner_of(self, token_id: int) -> str:
        return self._require_minted(token_id).owner

    def token_tier(self, token_id: int) -> int:
        return self._require_minted(token_id).tier

    def balance_of(self, owner: str) -> int:
        return len(self._owned.get(to_address(owner), []))

    def token_of_owner_by_index(self, owner: str, index: int) -> int:
        owned = self._owned.get(to_address(owner), [])
        if not 0 <= index < len(owned):
            raise errors.ContractRevert("owner index out of bounds")
        return owned[index]

    def tokens_of(self, owner: str) -> list[int]:
        return list(self._owned.get(to_address(owner), []))

    def total_supply(self) -> int:
        return len(self._all_tokens)

    def token_by_index(self, index: int) -> int:
        if not 0 <= index < len(self._all_tokens):
            raise errors.ContractRevert("global index out of bounds")
        return self._all_tokens[index]

    def balance_by_tier(self, owner: str, tiers: Sequence[int]) -> list[int]:
        """Per-tier holdings of owner, ordered like the tiers argument."""
        counts: dict[int, int] = {}
        for token_id in self._owned.get(to_address(owner), []):
            tier = self._tokens[token_id].tier
            counts[tier] = counts.get(tier, 0) + 1
        return [counts.get(tier, 0) for tier in tiers]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_minted(self, token_id: int) -> TokenRecord:
        record = self._tokens.get(token_id)
        if record is None or record.state != TokenState.MINTED:
            raise errors.NonexistentToken()
        return record

    def _require_recipient(self, recipient: str) -> str:
        recipient = to_address(recipient)
        if recipient == ZERO_ADDRESS:
            raise ValueError("Cannot mint or transfer to the zero address")
        return recipient

    def _mint(self, recipient: str, tier: int) -> int:
        """Create the next token. Callers must be inside a transaction."""
        token_id = self._next_token_id
        self._next_token_id += 1

        record = TokenRecord(token_id=token_id, tier=tier)
        record.transition_to(TokenState.MINTED)
        record.owner = recipient
        self._tokens[token_id] = record
        self._add_to_owner(recipient, token_id)
        self._all_index[token_id] = len(self._all_tokens)
        self._all_tokens.append(token_id)

        self._context.emit(
            EventKind.TRANSFER,
            **{"from": ZERO_ADDRESS, "to": recipient, "token_id": token_id, "tier": tier},
        )
        return token_id

    def _add_to_owner(self, owner: str, token_id: int) -> None:
        owned = self._owned.setdefault(owner, [])
        self._owned_index[token_id] = len(owned)
        owned.append(token_id)

    def _remove_from_owner(self, owner: str, token_id: int) -> None:
        owned = self._owned[owner]
        idx = self._owned_index.pop(token_id)
        last = owned.pop()
        if last != token_id:
            owned[idx] = last
            self._owned_index[last] = idx

    def _remove_from_all(self, token_id: int) -> None:
        idx = self._all_index.pop(token_id)
        last = self._all_tokens.pop()
        if last != token_id:
            self._all_tokens[idx] = last
            self._all_index[last] = idx
