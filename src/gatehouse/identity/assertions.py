"""One-time caches bridging the two phases of a login.

Entries are consumed with a single `dict.pop` under a lock: looking an entry
up and deleting it is one step, so two concurrent consumers of the same key
can never both succeed.

Keys are fresh random values, never an access token.
"""

import secrets
import threading
import time
from typing import Any

from loguru import logger

from gatehouse.errors import ConfigError, NotFoundError
from gatehouse.models import AuthorizationRequest
from gatehouse.settings import settings

_KEY_BYTES = 32


class OneTimeCache:
    """In-memory store whose entries can be retrieved exactly once.

    Example:
        >>> cache = OneTimeCache()
        >>> key = cache.store({"id_token": "eyJ..."})
        >>> cache.retrieve(key)
        {'id_token': 'eyJ...'}
        >>> cache.retrieve(key)
        Traceback (most recent call last):
        ...
        gatehouse.errors.NotFoundError: not found: ...
    """

    def __init__(self, ttl: int | None = None):
        """Initialize cache.

        Args:
            ttl: Entry lifetime in seconds (defaults to settings, 0 = no expiry)
        """
        self.ttl = settings.assertion_ttl if ttl is None else ttl
        self._entries: dict[str, tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def store(self, payload: Any) -> str:
        """Store a payload under a new unguessable key.

        Returns:
            Key to pass to retrieve()
        """
        key = secrets.token_urlsafe(_KEY_BYTES)
        self._put(key, payload)
        return key

    def retrieve(self, key: str) -> Any:
        """Remove and return the payload stored under key.

        Raises:
            NotFoundError: Unknown, already retrieved, or expired
        """
        with self._lock:
            entry = self._entries.pop(key, None)
        if entry is None:
            raise NotFoundError(key)

        payload, expires_at = entry
        if expires_at and time.monotonic() > expires_at:
            raise NotFoundError(key)
        return payload

    def __len__(self) -> int:
        return len(self._entries)

    def _put(self, key: str, payload: Any) -> None:
        expires_at = time.monotonic() + self.ttl if self.ttl > 0 else 0.0
        with self._lock:
            self._purge_expired()
            self._entries[key] = (payload, expires_at)

    def _purge_expired(self) -> None:
        now = time.monotonic()
        expired = [k for k, (_, exp) in self._entries.items() if exp and now > exp]
        for k in expired:
            del self._entries[k]
        if expired:
            logger.debug(f"Purged {len(expired)} expired one-time entries")


class PendingLoginStore(OneTimeCache):
    """Server-side bridge for state and PKCE verifier across the redirect.

    For callers that keep pending logins in process memory rather than in a
    session. Entries are keyed by their (random) state; consuming one is
    atomic, so a replayed callback finds nothing.

    Example:
        >>> pending = PendingLoginStore()
        >>> request = authorize_url(strategy, config)
        >>> pending.save(request)
        >>> # ... callback arrives ...
        >>> request = pending.consume(params["state"])
        >>> auth = handle_callback(strategy, config, params, request.state, request.code_verifier)
    """

    def save(self, request: AuthorizationRequest) -> None:
        """Remember an issued authorization request.

        Raises:
            ConfigError: Request has an empty state
        """
        if not request.state:
            raise ConfigError("refusing to store a pending login with an empty state")
        self._put(request.state, request)
        logger.debug(f"Saved pending login state={request.state[:8]}...")

    def consume(self, state: str | None) -> AuthorizationRequest:
        """Remove and return the pending login for state.

        Raises:
            NotFoundError: No pending login (unknown, replayed, expired, or empty state)
        """
        if not state:
            raise NotFoundError("", "not found: empty state")
        return self.retrieve(state)
