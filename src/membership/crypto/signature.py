"""Signature authorization — role-gated, single-use, optionally expiring.

An off-chain signer holding a role authorizes an action by signing the
digest of a structured message. The contract verifies the signature and
records its hash so the same authorization can never be replayed.

Digest construction:
    digest = keccak256(abi.encodePacked(field_1, ..., field_n))
    signed = personal_sign(digest)   # EIP-191 "\\x19Ethereum Signed Message:\\n32"

The verifying contract's own address is always one of the fields, so a
signature issued for one contract is useless on any other.

Check order in authorize():
    1. signature hash already consumed  → SignatureAlreadyUsed
    2. expiration present and passed    → AuthorizationExpired
       (reported even when the signature itself is also invalid)
    3. message bound to another contract, malformed signature,
       recovered signer lacks the role  → InvalidAuthorization
    4. insert signature hash into the consumed set, then return signer
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from eth_abi.packed import encode_packed
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_keys.exceptions import BadSignature
from eth_utils import keccak

from membership import errors
from membership.access.ledger import AccessControlLedger
from membership.chain import ContractContext, require_uint, to_address
from membership.persistence.event_log import EventKind


SIGNATURE_LENGTH = 65
# Upper bound for the s component (EIP-2); rejects malleable twins.
_SECP256K1_HALF_N = 0x7FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFF5D576E7357A4501DDFE92F46681B20A0


@dataclass(frozen=True)
class AuthorizationMessage:
    """Ordered, typed fields whose packed encoding is signed.

    Build instances with the for_* constructors so that every call site
    binds the verifying contract and (optionally) the expiration.
    """
    abi_types: tuple[str, ...]
    values: tuple[Any, ...]
    verifying_contract: str
    expiration: Optional[int] = None

    def digest(self) -> bytes:
        return keccak(encode_packed(list(self.abi_types), list(self.values)))

    @staticmethod
    def for_mint(
        token_id: int,
        recipient: str,
        verifying_contract: str,
        expiration: Optional[int] = None,
    ) -> AuthorizationMessage:
        """Fields: (tokenId, recipient, contract[, expiration])."""
        return _build(
            ["uint256", "address", "address"],
            [require_uint(token_id, "token_id"), to_address(recipient), to_address(verifying_contract)],
            verifying_contract,
            expiration,
        )

    @staticmethod
    def for_tier_mint(
        tier: int,
        recipient: str,
        verifying_contract: str,
        token_id: int,
        expiration: Optional[int] = None,
    ) -> AuthorizationMessage:
        """Fields: (tokenId, tier, recipient, contract[, expiration])."""
        return _build(
            ["uint256", "uint256", "address", "address"],
            [
                require_uint(token_id, "token_id"),
                require_uint(tier, "tier"),
                to_address(recipient),
                to_address(verifying_contract),
            ],
            verifying_contract,
            expiration,
        )

    @staticmethod
    def for_gateway(
        verifying_contract: str,
        token_id: int,
        expiration: int,
        tier: Optional[int] = None,
    ) -> AuthorizationMessage:
        """Fields: (contract, tokenId[, tier], expiration)."""
        types = ["address", "uint256"]
        values: list[Any] = [to_address(verifying_contract), require_uint(token_id, "token_id")]
        if tier is not None:
            types.append("uint256")
            values.append(require_uint(tier, "tier"))
        return _build(types, values, verifying_contract, expiration)


def _build(
    types: list[str],
    values: list[Any],
    verifying_contract: str,
    expiration: Optional[int],
) -> AuthorizationMessage:
    if expiration is not None:
        types = types + ["uint256"]
        values = values + [require_uint(expiration, "expiration")]
    return AuthorizationMessage(
        abi_types=tuple(types),
        values=tuple(values),
        verifying_contract=to_address(verifying_contract),
        expiration=expiration,
    )


# ----------------------------------------------------------------------
# Pure primitives
# ----------------------------------------------------------------------

def signature_hash(signature: bytes) -> bytes:
    """Key of the consumed-signature set."""
    return keccak(bytes(signature))


def recover_signer(digest: bytes, signature: bytes) -> str:
    """Recover the address that personal-signed a 32-byte digest.

    Raises:
        InvalidAuthorization: If the signature is malformed or malleable. Only
            v in {27, 28} and low s are accepted, so each authorization has
            exactly one valid encoding.
    """
    signature = bytes(signature)
    if len(signature) != SIGNATURE_LENGTH:
        raise errors.InvalidAuthorization()
    if signature[64] not in (27, 28):
        raise errors.InvalidAuthorization()
    if int.from_bytes(signature[32:64], "big") > _SECP256K1_HALF_N:
        raise errors.InvalidAuthorization()
    try:
        return to_address(
            Account.recover_message(encode_defunct(primitive=digest), signature=signature)
        )
    except (BadSignature, ValueError) as exc:
        raise errors.InvalidAuthorization() from exc


def sign_authorization(message: AuthorizationMessage, private_key: str | bytes) -> bytes:
    """Personal-sign a message digest. Tooling helper, not contract logic."""
    signed = Account.sign_message(encode_defunct(primitive=message.digest()), private_key=private_key)
    return bytes(signed.signature)


# ----------------------------------------------------------------------
# Authorizer
# ----------------------------------------------------------------------

class SignatureAuthorizer:
    """Verifies role-holder signatures and enforces single use.

    Usage:
        authorizer = SignatureAuthorizer(ledger, context)
        message = AuthorizationMessage.for_mint(1, holder, context.address)
        signer = authorizer.authorize(message, signature, MINTER_ROLE)
    """

    def __init__(self, ledger: AccessControlLedger, context: ContractContext) -> None:
        self._ledger = ledger
        self._context = context
        self._consumed: set[bytes] = set()

    def is_consumed(self, signature: bytes) -> bool:
        return signature_hash(signature) in self._consumed

    @property
    def consumed_count(self) -> int:
        return len(self._consumed)

    def authorize(
        self,
        message: AuthorizationMessage,
        signature: bytes,
        required_role: bytes,
        expected_signer: Optional[str] = None,
        now: Optional[int] = None,
    ) -> str:
        """Verify a signature and consume it.

        Args:
            message: The structured message the signature covers.
            signature: 65-byte r||s||v signature.
            required_role: Role the recovered signer must hold.
            expected_signer: Signer named by the caller, if the surface takes one.
            now: Block timestamp (unix seconds).

        Returns:
            The recovered signer address.
        """
        sig_hash = signature_hash(signature)
        with self._context.transaction(now) as ctx:
            if sig_hash in self._consumed:
                raise errors.SignatureAlreadyUsed()
            if message.expiration is not None and ctx.now > message.expiration:
                raise errors.AuthorizationExpired()
            if message.verifying_contract != self._context.address:
                raise errors.InvalidAuthorization()

            signer = recover_signer(message.digest(), signature)
            if expected_signer is not None:
                if signer != to_address(expected_signer):
                    raise errors.InvalidAuthorization()
                self._ledger.require_role(required_role, signer, errors.NOT_MINTER)
            elif not self._ledger.has_role(required_role, signer):
                raise errors.InvalidAuthorization()

            # Consumed before the caller acts on the authorization.
            self._consumed.add(sig_hash)
            ctx.emit(
                EventKind.AUTHORIZATION_CONSUMED,
                signature_hash="0x" + sig_hash.hex(), signer=signer,
            )
        return signer

