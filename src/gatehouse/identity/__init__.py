"""Signed identity token support.

- keys: provider key set (JWKS) retrieval and caching
- verifier: signature and claim verification of identity tokens
- assertions: one-time caches bridging the two login phases
"""

from gatehouse.identity.assertions import OneTimeCache, PendingLoginStore
from gatehouse.identity.keys import KeySetCache, VerifyKey, parse_key_set
from gatehouse.identity.verifier import IdentityClaims, IdentityVerifier

__all__ = [
    "OneTimeCache",
    "PendingLoginStore",
    "KeySetCache",
    "VerifyKey",
    "parse_key_set",
    "IdentityClaims",
    "IdentityVerifier",
]
