"""Revert taxonomy for the membership contracts and the aggregation strategy.

Every rejected precondition raises a ContractRevert subclass carrying the
exact reason string the contract surface reports. Checks always run before
the first state mutation, so a raised revert leaves no partial state behind.

Taxonomy:
    AuthorizationError    — caller lacks owner/admin/minter status, or an
                            authorization artifact is invalid, reused or expired
    RedundantStateChange  — the requested value already equals the stored one
    TransferNotAllowed    — transfer attempted while the transfer lock is on
    NonexistentToken      — read or mutation against an unminted/burned id
    AggregationError      — any batched read failed during aggregation
"""

from __future__ import annotations


# Reason strings, as reported by the contract surface.
NOT_OWNER = "!owner"
NOT_ADMIN = "!admin"
NOT_MINTER = "!minter"
NOT_OWNER_OR_ADMIN = "!owner or admin"
NOT_TOKEN_OWNER = "!token owner"
NOT_OWNER_OF_TOKEN = "!owner of token"
NOT_TIER = "!tier"
INVALID_AUTHORIZATION = "invalid authorization"
SIGNATURE_ALREADY_USED = "signature already used"
AUTHORIZATION_EXPIRED = "authorization expired"
ALREADY_CLAIMED = "already claimed"
ALREADY_ADMIN = "already admin"
ALREADY_SET = "already set"
ALREADY_GRANTED = "already granted"
NOT_GRANTED = "not granted"
TRANSFER_DISABLED = "!transfer"
NONEXISTENT_TOKEN = "nonexistent token"


class ContractRevert(Exception):
    """Base class for every contract-level rejection."""

    default_reason = "reverted"

    def __init__(self, reason: str | None = None) -> None:
        self.reason = reason or self.default_reason
        super().__init__(self.reason)


class AuthorizationError(ContractRevert):
    """Caller or authorization artifact is not entitled to the operation."""

    default_reason = NOT_OWNER


class InvalidAuthorization(AuthorizationError):
    """Signature recovers to an address without the required role."""

    default_reason = INVALID_AUTHORIZATION


class SignatureAlreadyUsed(AuthorizationError):
    """Signature hash is already in the consumed set."""

    default_reason = SIGNATURE_ALREADY_USED


class AuthorizationExpired(AuthorizationError):
    """Current time is past the signed expiration."""

    default_reason = AUTHORIZATION_EXPIRED


class AlreadyClaimed(AuthorizationError):
    """Allowlist leaf was already used to mint."""

    default_reason = ALREADY_CLAIMED


class RedundantStateChange(ContractRevert):
    """State-change call that would leave the state unchanged."""

    default_reason = ALREADY_SET


class TransferNotAllowed(ContractRevert):
    """Transfer attempted while transfers are disabled for the token's scope."""

    default_reason = TRANSFER_DISABLED


class NonexistentToken(ContractRevert):
    default_reason = NONEXISTENT_TOKEN


class AggregationError(Exception):
    """A batched read failed; no partial voting-power table is returned."""
