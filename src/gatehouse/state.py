"""CSRF state generation and validation."""

import hmac
import secrets

from gatehouse.errors import StateMismatch

_STATE_BYTES = 32


def generate() -> str:
    """Generate an unguessable state value (256 bits, URL-safe)."""
    return secrets.token_urlsafe(_STATE_BYTES)


def validate(received: str | None, expected: str | None) -> bool:
    """Check a callback state against the issued one.

    Comparison is constant time over the full value. An empty or missing
    state on either side never validates: an empty state would let any
    callback without a state through.

    Args:
        received: `state` parameter from the callback
        expected: State persisted when the request was issued

    Returns:
        True only on exact match of two non-empty values
    """
    if not received or not expected:
        return False
    return hmac.compare_digest(received.encode("utf-8"), expected.encode("utf-8"))


def ensure_valid(received: str | None, expected: str | None) -> None:
    """Raise StateMismatch unless validate() succeeds."""
    if not validate(received, expected):
        raise StateMismatch()
