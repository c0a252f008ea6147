"""Cryptographic primitives — signature authorization and merkle allowlists."""

from membership.crypto.merkle import AllowlistRoot, MerkleTree, allowlist_leaf, verify_proof
from membership.crypto.signature import (
    AuthorizationMessage,
    SignatureAuthorizer,
    recover_signer,
    sign_authorization,
)

__all__ = [
    "AllowlistRoot",
    "AuthorizationMessage",
    "MerkleTree",
    "SignatureAuthorizer",
    "allowlist_leaf",
    "recover_signer",
    "sign_authorization",
    "verify_proof",
]
