"""Tests for signature authorization — digests, recovery, replay and expiry."""

import pytest
from eth_abi.packed import encode_packed
from eth_account import Account
from eth_utils import keccak

from membership import errors
from membership.access.ledger import MINTER_ROLE, SIGNER_ROLE, AccessControlLedger
from membership.chain import ContractContext
from membership.crypto.signature import (
    AuthorizationMessage,
    SignatureAuthorizer,
    recover_signer,
    sign_authorization,
    signature_hash,
)
from membership.persistence.event_log import EventKind, EventLog


OWNER_KEY = "0x" + "11" * 32
MINTER_KEY = "0xdd631135f3a99e4d747d763ab5ead2f2340a69d2a90fab05e20104731365fde3"
STRANGER_KEY = "0x" + "77" * 32

OWNER = Account.from_key(OWNER_KEY).address
MINTER = Account.from_key(MINTER_KEY).address
STRANGER = Account.from_key(STRANGER_KEY).address
HOLDER = Account.from_key("0x" + "44" * 32).address

CONTRACT = "0x" + "ab" * 20
OTHER_CONTRACT = "0x" + "cd" * 20

SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141


def _authorizer(event_log: EventLog | None = None) -> SignatureAuthorizer:
    context = ContractContext(CONTRACT, event_log)
    ledger = AccessControlLedger(OWNER, context, initial_roles=[(MINTER_ROLE, MINTER)])
    return SignatureAuthorizer(ledger, context)


def _signed(message: AuthorizationMessage, key: str = MINTER_KEY) -> bytes:
    return sign_authorization(message, key)


class TestAuthorizationMessage:
    def test_mint_digest_is_packed_keccak(self) -> None:
        message = AuthorizationMessage.for_mint(7, HOLDER, CONTRACT)
        expected = keccak(
            encode_packed(["uint256", "address", "address"], [7, HOLDER, message.verifying_contract])
        )
        assert message.digest() == expected
        assert message.expiration is None

    def test_expiration_is_appended(self) -> None:
        message = AuthorizationMessage.for_mint(7, HOLDER, CONTRACT, expiration=1000)
        assert message.abi_types == ("uint256", "address", "address", "uint256")
        assert message.values[-1] == 1000
        assert message.digest() != AuthorizationMessage.for_mint(7, HOLDER, CONTRACT).digest()

    def test_tier_mint_field_order(self) -> None:
        message = AuthorizationMessage.for_tier_mint(2, HOLDER, CONTRACT, token_id=9)
        assert message.abi_types == ("uint256", "uint256", "address", "address")
        assert message.values[:2] == (9, 2)

    def test_gateway_fields(self) -> None:
        plain = AuthorizationMessage.for_gateway(CONTRACT, 3, 500)
        tiered = AuthorizationMessage.for_gateway(CONTRACT, 3, 500, tier=1)
        assert plain.abi_types == ("address", "uint256", "uint256")
        assert tiered.abi_types == ("address", "uint256", "uint256", "uint256")
        assert plain.digest() != tiered.digest()

    def test_contract_binding_changes_digest(self) -> None:
        a = AuthorizationMessage.for_mint(1, HOLDER, CONTRACT)
        b = AuthorizationMessage.for_mint(1, HOLDER, OTHER_CONTRACT)
        assert a.digest() != b.digest()

    def test_negative_token_id_rejected(self) -> None:
        with pytest.raises(ValueError):
            AuthorizationMessage.for_mint(-1, HOLDER, CONTRACT)


class TestRecoverSigner:
    def test_recovers_signing_key(self) -> None:
        message = AuthorizationMessage.for_mint(1, HOLDER, CONTRACT)
        signature = _signed(message)
        assert len(signature) == 65
        assert recover_signer(message.digest(), signature) == MINTER

    def test_other_digest_recovers_other_address(self) -> None:
        message = AuthorizationMessage.for_mint(1, HOLDER, CONTRACT)
        other = AuthorizationMessage.for_mint(2, HOLDER, CONTRACT)
        assert recover_signer(other.digest(), _signed(message)) != MINTER

    def test_wrong_length_rejected(self) -> None:
        message = AuthorizationMessage.for_mint(1, HOLDER, CONTRACT)
        with pytest.raises(errors.InvalidAuthorization, match="invalid authorization"):
            recover_signer(message.digest(), _signed(message)[:64])

    def test_high_s_twin_rejected(self) -> None:
        message = AuthorizationMessage.for_mint(1, HOLDER, CONTRACT)
        signature = _signed(message)
        r, s, v = signature[:32], int.from_bytes(signature[32:64], "big"), signature[64]
        twin = r + (SECP256K1_N - s).to_bytes(32, "big") + bytes([55 - v])
        with pytest.raises(errors.InvalidAuthorization):
            recover_signer(message.digest(), twin)

    def test_zero_based_v_rejected(self) -> None:
        message = AuthorizationMessage.for_mint(1, HOLDER, CONTRACT)
        signature = _signed(message)
        with pytest.raises(errors.InvalidAuthorization):
            recover_signer(message.digest(), signature[:64] + bytes([signature[64] - 27]))

    def test_eip155_style_v_rejected(self) -> None:
        message = AuthorizationMessage.for_mint(1, HOLDER, CONTRACT)
        signature = _signed(message)
        with pytest.raises(errors.InvalidAuthorization):
            recover_signer(message.digest(), signature[:64] + bytes([signature[64] - 27 + 37]))


class TestSignatureAuthorizer:
    def test_valid_signature_is_consumed(self) -> None:
        authorizer = _authorizer()
        message = AuthorizationMessage.for_mint(1, HOLDER, CONTRACT)
        signature = _signed(message)

        assert authorizer.authorize(message, signature, MINTER_ROLE, now=10) == MINTER
        assert authorizer.is_consumed(signature)
        assert authorizer.consumed_count == 1

    def test_replay_rejected(self) -> None:
        authorizer = _authorizer()
        message = AuthorizationMessage.for_mint(1, HOLDER, CONTRACT)
        signature = _signed(message)
        authorizer.authorize(message, signature, MINTER_ROLE, now=10)
        with pytest.raises(errors.SignatureAlreadyUsed, match="signature already used"):
            authorizer.authorize(message, signature, MINTER_ROLE, now=11)

    def test_replay_checked_before_expiry(self) -> None:
        authorizer = _authorizer()
        message = AuthorizationMessage.for_mint(1, HOLDER, CONTRACT, expiration=100)
        signature = _signed(message)
        authorizer.authorize(message, signature, MINTER_ROLE, now=50)
        with pytest.raises(errors.SignatureAlreadyUsed):
            authorizer.authorize(message, signature, MINTER_ROLE, now=500)

    def test_reencoded_v_cannot_replay(self) -> None:
        authorizer = _authorizer()
        message = AuthorizationMessage.for_mint(1, HOLDER, CONTRACT)
        signature = _signed(message)
        authorizer.authorize(message, signature, MINTER_ROLE, now=10)

        twin = signature[:64] + bytes([signature[64] - 27])
        with pytest.raises(errors.InvalidAuthorization):
            authorizer.authorize(message, twin, MINTER_ROLE, now=11)
        assert authorizer.consumed_count == 1

    def test_consumed_hash_fails_for_any_message(self) -> None:
        authorizer = _authorizer()
        message = AuthorizationMessage.for_mint(1, HOLDER, CONTRACT)
        signature = _signed(message)
        authorizer.authorize(message, signature, MINTER_ROLE, now=10)

        other = AuthorizationMessage.for_mint(2, HOLDER, OTHER_CONTRACT)
        with pytest.raises(errors.SignatureAlreadyUsed):
            authorizer.authorize(other, signature, SIGNER_ROLE, now=11)

    def test_expired_rejected(self) -> None:
        authorizer = _authorizer()
        message = AuthorizationMessage.for_mint(1, HOLDER, CONTRACT, expiration=100)
        signature = _signed(message)
        with pytest.raises(errors.AuthorizationExpired, match="authorization expired"):
            authorizer.authorize(message, signature, MINTER_ROLE, now=101)
        assert not authorizer.is_consumed(signature)

    def test_expiration_second_is_still_valid(self) -> None:
        authorizer = _authorizer()
        message = AuthorizationMessage.for_mint(1, HOLDER, CONTRACT, expiration=100)
        assert authorizer.authorize(message, _signed(message), MINTER_ROLE, now=100) == MINTER

    def test_expiry_checked_before_signer(self) -> None:
        authorizer = _authorizer()
        message = AuthorizationMessage.for_mint(1, HOLDER, CONTRACT, expiration=100)
        with pytest.raises(errors.AuthorizationExpired):
            authorizer.authorize(message, _signed(message, STRANGER_KEY), MINTER_ROLE, now=101)

    def test_other_contract_rejected(self) -> None:
        authorizer = _authorizer()
        message = AuthorizationMessage.for_mint(1, HOLDER, OTHER_CONTRACT)
        with pytest.raises(errors.InvalidAuthorization):
            authorizer.authorize(message, _signed(message), MINTER_ROLE, now=10)

    def test_signer_without_role_rejected(self) -> None:
        authorizer = _authorizer()
        message = AuthorizationMessage.for_mint(1, HOLDER, CONTRACT)
        with pytest.raises(errors.InvalidAuthorization, match="invalid authorization"):
            authorizer.authorize(message, _signed(message, STRANGER_KEY), MINTER_ROLE, now=10)

    def test_role_is_checked_by_name(self) -> None:
        authorizer = _authorizer()
        message = AuthorizationMessage.for_mint(1, HOLDER, CONTRACT)
        with pytest.raises(errors.InvalidAuthorization):
            authorizer.authorize(message, _signed(message), SIGNER_ROLE, now=10)

    def test_rejected_signature_not_consumed(self) -> None:
        authorizer = _authorizer()
        message = AuthorizationMessage.for_mint(1, HOLDER, CONTRACT)
        signature = _signed(message)
        with pytest.raises(errors.InvalidAuthorization):
            authorizer.authorize(message, signature, SIGNER_ROLE, now=10)
        assert authorizer.consumed_count == 0
        assert authorizer.authorize(message, signature, MINTER_ROLE, now=11) == MINTER

    def test_expected_signer_mismatch(self) -> None:
        authorizer = _authorizer()
        message = AuthorizationMessage.for_tier_mint(1, HOLDER, CONTRACT, token_id=1)
        with pytest.raises(errors.InvalidAuthorization):
            authorizer.authorize(
                message, _signed(message, STRANGER_KEY), MINTER_ROLE,
                expected_signer=MINTER, now=10,
            )

    def test_expected_signer_without_role(self) -> None:
        authorizer = _authorizer()
        message = AuthorizationMessage.for_tier_mint(1, HOLDER, CONTRACT, token_id=1)
        with pytest.raises(errors.AuthorizationError, match="!minter"):
            authorizer.authorize(
                message, _signed(message, STRANGER_KEY), MINTER_ROLE,
                expected_signer=STRANGER, now=10,
            )

    def test_consumption_event(self) -> None:
        log = EventLog()
        authorizer = _authorizer(log)
        message = AuthorizationMessage.for_mint(1, HOLDER, CONTRACT)
        signature = _signed(message)
        authorizer.authorize(message, signature, MINTER_ROLE, now=10)

        events = log.events(EventKind.AUTHORIZATION_CONSUMED)
        assert len(events) == 1
        assert events[0].payload == {
            "signature_hash": "0x" + signature_hash(signature).hex(),
            "signer": MINTER,
        }
