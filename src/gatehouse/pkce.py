"""PKCE (RFC 7636) verifier and challenge generation.

Only the S256 method exists here. The `plain` method offers no protection
against an intercepted authorization request and is not implemented.
"""

import base64
import hashlib
import secrets

CHALLENGE_METHOD = "S256"

# 32 random bytes encode to 43 base64url characters, the RFC 7636 minimum.
_VERIFIER_BYTES = 32


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def generate_verifier() -> str:
    """Generate a fresh code verifier.

    Returns:
        43-character URL-safe string carrying 256 bits of entropy

    Example:
        >>> len(generate_verifier())
        43
    """
    return _b64url(secrets.token_bytes(_VERIFIER_BYTES))


def compute_challenge(verifier: str) -> str:
    """Compute the S256 code challenge for a verifier.

    Args:
        verifier: Code verifier from generate_verifier()

    Returns:
        base64url(SHA-256(verifier)) without padding

    Example:
        >>> compute_challenge("dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk")
        'E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM'
    """
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return _b64url(digest)
