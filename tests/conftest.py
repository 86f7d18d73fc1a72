"""Shared fixtures: signing keys, token minting and stubbed HTTP."""

import time
from collections.abc import Callable
from typing import Any

import httpx
import jwt as pyjwt
import pytest
from authlib.jose import JsonWebKey
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from gatehouse.identity.keys import VerifyKey

ISSUER = "https://idp.example.com"
CLIENT_ID = "client-123"


class SigningKey:
    """ES256 keypair playing the provider's signing key.

    Private key signs tokens (PyJWT), public half is published as a JWK.
    """

    def __init__(self, kid: str):
        private_key = ec.generate_private_key(ec.SECP256R1())
        self.kid = kid
        self.private_pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        public_pem = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        self.jwk = {
            **JsonWebKey.import_key(public_pem, {"kty": "EC"}).as_dict(),
            "kid": kid,
            "alg": "ES256",
            "use": "sig",
        }

    @property
    def verify_key(self) -> VerifyKey:
        return VerifyKey.from_jwk(self.jwk)

    def create_token(
        self,
        subject: str = "user-001",
        audience: str | list[str] = CLIENT_ID,
        issuer: str = ISSUER,
        expires_in: int = 300,
        kid: str | None = None,
        **extra_claims: Any,
    ) -> str:
        """Sign an identity token with standard claims."""
        now = int(time.time())
        payload = {
            "iss": issuer,
            "sub": subject,
            "aud": audience,
            "iat": now,
            "exp": now + expires_in,
            **extra_claims,
        }
        return pyjwt.encode(
            payload,
            self.private_pem,
            algorithm="ES256",
            headers={"kid": kid or self.kid},
        )


@pytest.fixture(scope="session")
def signing_key() -> SigningKey:
    """Provider's current signing key."""
    return SigningKey("key-1")


@pytest.fixture(scope="session")
def other_key() -> SigningKey:
    """Unrelated key (rotated-in key, or an attacker's)."""
    return SigningKey("key-2")


@pytest.fixture
def make_client():
    """Build an httpx client whose requests are answered by a handler."""
    clients = []

    def _make(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.Client:
        client = httpx.Client(transport=httpx.MockTransport(handler))
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.close()
