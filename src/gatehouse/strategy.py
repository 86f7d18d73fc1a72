"""Strategy contract.

A strategy is the per-provider part of a login: how to build the authorize
URL, how to exchange a code, how to fetch the user. Anything with these
attributes is a strategy; there is no base class to inherit from.
`FunctionStrategy` assembles one from plain callables.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from gatehouse.models import Config, Credentials, UserIdentity


@runtime_checkable
class Strategy(Protocol):
    """Provider capability set used by the orchestrator.

    Implementations raise `AuthError` subclasses (typically
    `CodeExchangeFailed`, `UserInfoFailed`, or `CustomError` carrying a
    provider-specific payload).
    """

    provider: str
    default_scopes: list[str]
    token_url: str

    def build_authorize_url(self, config: Config, scopes: list[str], state: str) -> str:
        """Return the provider authorize URL (without PKCE parameters)."""
        ...

    def exchange_code(
        self, config: Config, code: str, code_verifier: str | None
    ) -> Credentials:
        """Exchange an authorization code for credentials."""
        ...

    def fetch_user(self, credentials: Credentials) -> UserIdentity:
        """Fetch and normalize the authenticated user."""
        ...


@dataclass(frozen=True)
class FunctionStrategy:
    """Strategy built from plain functions.

    Example:
        >>> github = FunctionStrategy(
        ...     provider="github",
        ...     token_url="https://github.com/login/oauth/access_token",
        ...     authorize=build_github_url,
        ...     exchange=exchange_github_code,
        ...     fetch=fetch_github_user,
        ...     default_scopes=["user:email"],
        ... )
    """

    provider: str
    token_url: str
    authorize: Callable[[Config, list[str], str], str]
    exchange: Callable[[Config, str, str | None], Credentials]
    fetch: Callable[[Credentials], UserIdentity]
    default_scopes: list[str] = field(default_factory=list)

    def build_authorize_url(self, config: Config, scopes: list[str], state: str) -> str:
        return self.authorize(config, scopes, state)

    def exchange_code(
        self, config: Config, code: str, code_verifier: str | None
    ) -> Credentials:
        return self.exchange(config, code, code_verifier)

    def fetch_user(self, credentials: Credentials) -> UserIdentity:
        return self.fetch(credentials)
