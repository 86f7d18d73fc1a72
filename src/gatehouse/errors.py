"""Error taxonomy for the authentication flow.

Every failure the engine can report is one of the `AuthError` subclasses
below. Library exceptions (httpx, authlib, json) are converted at the point
where they happen, so callers only ever need to handle `AuthError`:

    try:
        auth = handle_callback(strategy, config, params, state, verifier)
    except StateMismatch:
        ...  # forged or stale callback
    except ProviderError as e:
        ...  # user denied, e.code == "access_denied"
    except HttpError as e:
        ...  # provider reachable but rejected the request (e.status)
    except NetworkError:
        ...  # provider unreachable

`NotFoundError` is deliberately outside the hierarchy: it is the result of a
cache or registry miss, which strategies turn into a flow error themselves.
"""

from typing import Generic, TypeVar

E = TypeVar("E")


class AuthError(Exception):
    """Base class for all authentication flow failures."""


class StateMismatch(AuthError):
    """Callback `state` does not match the state issued with the request."""

    def __init__(self) -> None:
        super().__init__("state mismatch")


class CodeExchangeFailed(AuthError):
    """The authorization code could not be exchanged for credentials."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"code exchange failed: {reason}")


class UserInfoFailed(AuthError):
    """The user's identity could not be fetched or verified."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"user info failed: {reason}")


class IdentityTokenInvalid(UserInfoFailed):
    """A signed identity token was rejected by the verifier."""


class ProviderError(AuthError):
    """Error reported by the identity provider itself (`error` parameter)."""

    def __init__(self, code: str, description: str | None = None) -> None:
        self.code = code
        self.description = description
        message = f"provider error: {code}"
        if description:
            message = f"{message} ({description})"
        super().__init__(message)


class NetworkError(AuthError):
    """Transport failure: the provider could not be reached."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"network error: {reason}")


class HttpError(AuthError):
    """The provider answered with a non-2xx status."""

    def __init__(self, status: int, body: str) -> None:
        self.status = status
        self.body = body
        super().__init__(f"http error: status={status}")


class ConfigError(AuthError):
    """Misconfiguration or structurally invalid input."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"config error: {reason}")


class CustomError(AuthError, Generic[E]):
    """Provider-specific failure carrying an arbitrary payload."""

    def __init__(self, payload: E) -> None:
        self.payload = payload
        super().__init__(f"provider-specific error: {payload!r}")


class NotFoundError(Exception):
    """Lookup miss in the registry or a one-time cache."""

    def __init__(self, key: str, message: str | None = None) -> None:
        self.key = key
        # Cache keys are bearer handles; only a prefix goes into the default message.
        super().__init__(message or f"not found: {key[:8]}...")
