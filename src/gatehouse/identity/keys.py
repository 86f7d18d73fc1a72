"""Provider public key set retrieval and caching.

Fetches a provider's published verification keys (JWKS) and caches them.
The cached set is held as one immutable tuple that is replaced as a whole,
so a reader never observes a half-refreshed set.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Any

import httpx
from authlib.jose import JsonWebKey
from authlib.jose.errors import JoseError
from loguru import logger

from gatehouse.errors import ConfigError, HttpError, NetworkError
from gatehouse.settings import settings
from gatehouse.token_endpoint import http_client
from gatehouse.urls import require_secure_url

SUPPORTED_KEY_TYPES = frozenset({"RSA", "EC"})


@dataclass(frozen=True)
class VerifyKey:
    """One entry of a provider key set."""

    kty: str  # RSA | EC
    kid: str | None
    alg: str | None
    jwk: dict[str, Any] = field(repr=False)
    key: Any = field(default=None, repr=False, compare=False)

    @classmethod
    def from_jwk(cls, entry: dict[str, Any]) -> "VerifyKey":
        """Import a JWK entry.

        Args:
            entry: JWK as published (kty, kid, alg, key material)

        Returns:
            VerifyKey holding the imported public key

        Raises:
            ValueError: Unsupported key type or unusable key material
        """
        kty = str(entry.get("kty") or "")
        if kty not in SUPPORTED_KEY_TYPES:
            raise ValueError(f"unsupported key type: {kty or '<missing>'}")
        try:
            key = JsonWebKey.import_key(entry)
        except (JoseError, ValueError, KeyError, TypeError) as e:
            raise ValueError(f"invalid {kty} key material: {e}") from e
        return cls(
            kty=kty,
            kid=entry.get("kid"),
            alg=entry.get("alg"),
            jwk=dict(entry),
            key=key,
        )


class KeySetCache:
    """Cached provider key set.

    Example:
        >>> cache = KeySetCache("https://appleid.apple.com/auth/keys")
        >>> keys = cache.get_keys()         # fetched once, then cached
        >>> keys = cache.refresh_keys()     # provider rotated its keys
    """

    def __init__(
        self,
        url: str,
        client: httpx.Client | None = None,
        ttl: int | None = None,
    ):
        """Initialize key set cache.

        Args:
            url: Key set (JWKS) URL, https
            client: Optional httpx client
            ttl: Cache TTL in seconds (defaults to settings, 0 = no expiry)
        """
        self.url = url
        self.client = client
        self.ttl = settings.jwks_cache_ttl if ttl is None else ttl
        # (keys, fetched_at) swapped as a single reference
        self._snapshot: tuple[tuple[VerifyKey, ...], float] | None = None
        self._lock = threading.Lock()

    def get_keys(self) -> tuple[VerifyKey, ...]:
        """Return cached keys, fetching them when absent or expired.

        Raises:
            NetworkError: Key set endpoint unreachable
            HttpError: Key set endpoint returned non-2xx
            ConfigError: Insecure URL or unparseable key set
        """
        snapshot = self._snapshot
        if self._is_fresh(snapshot):
            return snapshot[0]

        with self._lock:
            # Another caller may have fetched while we waited.
            snapshot = self._snapshot
            if self._is_fresh(snapshot):
                return snapshot[0]
            return self._fetch_and_store()

    def refresh_keys(self) -> tuple[VerifyKey, ...]:
        """Refetch the key set unconditionally (provider key rotation)."""
        with self._lock:
            return self._fetch_and_store()

    def _is_fresh(self, snapshot: tuple[tuple[VerifyKey, ...], float] | None) -> bool:
        if snapshot is None:
            return False
        if self.ttl <= 0:
            return True
        return (time.monotonic() - snapshot[1]) < self.ttl

    def _fetch_and_store(self) -> tuple[VerifyKey, ...]:
        keys = self._fetch()
        self._snapshot = (keys, time.monotonic())
        logger.info(f"Fetched key set from {self.url} ({len(keys)} keys)")
        return keys

    def _fetch(self) -> tuple[VerifyKey, ...]:
        require_secure_url(self.url, "key set URL")

        with http_client(self.client) as http:
            try:
                response = http.get(self.url, headers={"Accept": "application/json"})
            except httpx.HTTPError as e:
                logger.warning(f"Key set endpoint unreachable: {self.url}: {type(e).__name__}")
                raise NetworkError(str(e)) from e

        if not response.is_success:
            raise HttpError(response.status_code, response.text)

        try:
            data = response.json()
        except ValueError as e:
            raise ConfigError(f"key set at {self.url} is not valid JSON") from e

        return parse_key_set(data)


def parse_key_set(data: Any) -> tuple[VerifyKey, ...]:
    """Parse a key set document.

    Accepts a bare list of JWK entries or a JWKS object (`{"keys": [...]}`).
    An empty list is a valid (if useless) key set. Entries that cannot be
    used are skipped with a warning.

    Raises:
        ConfigError: Document is neither shape
    """
    if isinstance(data, dict):
        data = data.get("keys")
    if not isinstance(data, list):
        raise ConfigError("key set must be a list of keys or a JWKS object")

    keys = []
    for entry in data:
        if not isinstance(entry, dict):
            logger.warning("Skipping key set entry that is not an object")
            continue
        try:
            keys.append(VerifyKey.from_jwk(entry))
        except ValueError as e:
            logger.warning(f"Skipping key {entry.get('kid')!r}: {e}")
    return tuple(keys)
