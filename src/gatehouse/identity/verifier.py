"""Signed identity token (OIDC id_token) verification.

Every call checks the signature against the provider's keys before any
claim is trusted. There is no "decode without verifying" path.

Verification order:
1. Structure: three base64url segments, JSON header and JSON object payload.
2. Algorithm: RS*/PS*/ES* only. `none` and HMAC are refused so a public key
   can never be used as an HMAC secret.
3. Signature: each key of the matching family is tried (keys whose `kid`
   matches the header first) until one verifies. This keeps tokens signed
   with either side of a key rotation valid.
4. Claims: issuer, audience, expiry (with leeway), subject.
"""

import base64
import binascii
import json
from collections.abc import Sequence
from typing import Any

from authlib.jose import JsonWebSignature, JWTClaims
from authlib.jose.errors import (
    BadSignatureError,
    ExpiredTokenError,
    InvalidClaimError,
    JoseError,
    MissingClaimError,
)
from loguru import logger
from pydantic import BaseModel, Field

from gatehouse.errors import ConfigError, IdentityTokenInvalid
from gatehouse.identity.keys import VerifyKey
from gatehouse.models import UserInfo
from gatehouse.settings import settings

MALFORMED = "malformed token"
UNSUPPORTED_ALGORITHM = "unsupported algorithm"
NO_MATCHING_KEY = "no matching key"
INVALID_SIGNATURE = "invalid signature"
ISSUER_MISMATCH = "issuer mismatch"
AUDIENCE_MISMATCH = "audience mismatch"
TOKEN_EXPIRED = "token expired"

ALGORITHM_FAMILIES = {
    "RS256": "RSA",
    "RS384": "RSA",
    "RS512": "RSA",
    "PS256": "RSA",
    "PS384": "RSA",
    "PS512": "RSA",
    "ES256": "EC",
    "ES384": "EC",
    "ES512": "EC",
}

_REGISTERED_CLAIMS = frozenset({"iss", "sub", "aud", "exp", "iat", "nbf", "jti", "nonce"})


class IdentityClaims(BaseModel):
    """Verified claims of an identity token."""

    issuer: str
    subject: str
    audience: list[str]
    expires_at: int
    extra: dict[str, Any] = Field(
        default_factory=dict, description="Provider-specific claims"
    )


class IdentityVerifier:
    """Verifier bound to one provider's canonical issuer.

    Example:
        >>> verifier = IdentityVerifier("https://appleid.apple.com")
        >>> uid, info = verifier.verify(id_token, key_cache.get_keys(), client_id)
    """

    def __init__(self, issuer: str, leeway: int | None = None):
        """Initialize verifier.

        Args:
            issuer: Expected `iss` claim, compared exactly
            leeway: Allowed clock skew in seconds (defaults to settings)

        Raises:
            ConfigError: Empty issuer
        """
        if not issuer:
            raise ConfigError("identity token issuer required")
        self.issuer = issuer
        self.leeway = settings.id_token_leeway if leeway is None else leeway

    def decode(
        self,
        token: str,
        candidate_keys: Sequence[VerifyKey],
        expected_audience: str,
    ) -> IdentityClaims:
        """Verify a token and return its claims.

        Args:
            token: Compact-serialized JWT
            candidate_keys: Provider key set
            expected_audience: Our client ID

        Returns:
            IdentityClaims

        Raises:
            ConfigError: Empty expected_audience
            IdentityTokenInvalid: Any check failed (reason names which)
        """
        # authlib skips the aud check when the expected value is falsy.
        if not expected_audience:
            raise ConfigError("expected audience (client_id) required")

        header, _ = _split(token)

        alg = header.get("alg")
        family = ALGORITHM_FAMILIES.get(alg) if isinstance(alg, str) else None
        if family is None:
            raise IdentityTokenInvalid(UNSUPPORTED_ALGORITHM)

        payload = self._verify_signature(token, alg, family, header.get("kid"), candidate_keys)

        claims = JWTClaims(
            payload,
            header,
            options={
                "iss": {"essential": True, "value": self.issuer},
                "aud": {"essential": True, "value": expected_audience},
                "exp": {"essential": True},
                "sub": {"essential": True},
            },
        )
        try:
            claims.validate(leeway=self.leeway)
        except ExpiredTokenError as e:
            raise IdentityTokenInvalid(TOKEN_EXPIRED) from e
        except InvalidClaimError as e:
            raise IdentityTokenInvalid(_claim_reason(e.claim_name)) from e
        except MissingClaimError as e:
            raise IdentityTokenInvalid(e.description) from e
        except JoseError as e:
            raise IdentityTokenInvalid(e.description or e.error) from e

        aud = payload["aud"]
        return IdentityClaims(
            issuer=payload["iss"],
            subject=str(payload["sub"]),
            audience=[str(a) for a in aud] if isinstance(aud, list) else [str(aud)],
            expires_at=int(payload["exp"]),
            extra={k: v for k, v in payload.items() if k not in _REGISTERED_CLAIMS},
        )

    def verify(
        self,
        token: str,
        candidate_keys: Sequence[VerifyKey],
        expected_audience: str,
    ) -> tuple[str, UserInfo]:
        """Verify a token and map it to (uid, UserInfo).

        Email is only disclosed when the token says it was verified.
        """
        claims = self.decode(token, candidate_keys, expected_audience)
        return claims.subject, self.to_user_info(claims)

    def to_user_info(self, claims: IdentityClaims) -> UserInfo:
        """Map standard OIDC profile claims to UserInfo."""
        extra = claims.extra

        email = None
        if _is_true(extra.get("email_verified")):
            email = _str_or_none(extra.get("email"))

        return UserInfo(
            name=_str_or_none(extra.get("name")),
            email=email,
            nickname=_str_or_none(extra.get("preferred_username") or extra.get("nickname")),
            image=_str_or_none(extra.get("picture")),
        )

    def _verify_signature(
        self,
        token: str,
        alg: str,
        family: str,
        kid: Any,
        candidate_keys: Sequence[VerifyKey],
    ) -> dict[str, Any]:
        compatible = [
            k for k in candidate_keys if k.kty == family and (k.alg is None or k.alg == alg)
        ]
        if not compatible:
            raise IdentityTokenInvalid(NO_MATCHING_KEY)

        # Keys announcing the header's kid first; the rest still get a chance.
        compatible.sort(key=lambda k: k.kid != kid)

        jws = JsonWebSignature(algorithms=[alg])
        for candidate in compatible:
            try:
                data = jws.deserialize_compact(token, candidate.key)
            except BadSignatureError:
                continue
            except (JoseError, ValueError, TypeError) as e:
                logger.debug(f"Key {candidate.kid!r} unusable for {alg}: {type(e).__name__}")
                continue
            return json.loads(data["payload"])

        # A kid we hold no key for means the signing key is unknown to us
        # (e.g. rotated since the key set was cached), not a forged signature.
        if kid is not None and all(k.kid != kid for k in compatible):
            raise IdentityTokenInvalid(NO_MATCHING_KEY)
        raise IdentityTokenInvalid(INVALID_SIGNATURE)


def _split(token: str) -> tuple[dict[str, Any], dict[str, Any]]:
    """Decode header and payload without trusting either."""
    if not isinstance(token, str):
        raise IdentityTokenInvalid(MALFORMED)
    parts = token.split(".")
    if len(parts) != 3 or not all(parts):
        raise IdentityTokenInvalid(MALFORMED)
    try:
        header = json.loads(_b64url_decode(parts[0]))
        payload = json.loads(_b64url_decode(parts[1]))
        _b64url_decode(parts[2])
    except (ValueError, binascii.Error) as e:
        raise IdentityTokenInvalid(MALFORMED) from e
    if not isinstance(header, dict) or not isinstance(payload, dict):
        raise IdentityTokenInvalid(MALFORMED)
    return header, payload


def _b64url_decode(segment: str) -> bytes:
    padded = segment + "=" * (-len(segment) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def _claim_reason(claim: str) -> str:
    if claim == "iss":
        return ISSUER_MISMATCH
    if claim == "aud":
        return AUDIENCE_MISMATCH
    return f"invalid claim {claim}"


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _is_true(value: Any) -> bool:
    # Apple sends "true" as a string.
    return value is True or (isinstance(value, str) and value.lower() == "true")
