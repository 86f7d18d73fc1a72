"""Data model shared by strategies, the orchestrator and callers.

Secret-bearing fields (client secret, tokens, PKCE verifier) are excluded
from `repr` so they do not end up in logs or tracebacks by accident.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Config(BaseModel):
    """Per-provider client configuration.

    Built once at startup and never mutated. `scopes` left empty means the
    strategy's default scopes are requested.
    """

    model_config = ConfigDict(frozen=True)

    client_id: str = Field(description="OAuth client ID")
    client_secret: str = Field(repr=False, description="OAuth client secret")
    redirect_uri: str = Field(description="Callback URL (https, or http on loopback)")
    scopes: list[str] = Field(
        default_factory=list, description="Requested scopes (replace strategy defaults)"
    )
    extra_params: dict[str, str] = Field(
        default_factory=dict, description="Additional authorize URL parameters"
    )


class Credentials(BaseModel):
    """Tokens obtained from a token endpoint."""

    model_config = ConfigDict(frozen=True)

    token: str = Field(repr=False, description="Access token")
    refresh_token: str | None = Field(default=None, repr=False, description="Refresh token")
    token_type: str = Field(default="Bearer", description="Token type (usually Bearer)")
    expires_in: int | None = Field(default=None, description="Lifetime in seconds from issue")
    scopes: list[str] = Field(default_factory=list, description="Granted scopes")
    extra: dict[str, str] = Field(
        default_factory=dict,
        description="Non-secret handles a strategy carries from exchange_code to fetch_user",
    )


class UserInfo(BaseModel):
    """Normalized profile. Providers disclose different subsets, so all optional."""

    name: str | None = None
    email: str | None = None
    nickname: str | None = None
    image: str | None = None
    description: str | None = None
    urls: dict[str, str] = Field(default_factory=dict, description="Named profile URLs")


class UserIdentity(BaseModel):
    """What a strategy's fetch_user returns."""

    uid: str = Field(description="Provider-scoped stable user ID")
    info: UserInfo = Field(default_factory=UserInfo)
    extra: dict[str, Any] = Field(default_factory=dict, description="Provider-specific data")


class Auth(BaseModel):
    """Successful authentication result."""

    uid: str
    provider: str
    info: UserInfo
    credentials: Credentials
    extra: dict[str, Any] = Field(default_factory=dict)


class AuthorizationRequest(BaseModel):
    """Output of the first phase.

    The caller must keep `state` and `code_verifier` across the redirect
    (server-side session or `PendingLoginStore`) and redirect the user to
    `url`.
    """

    model_config = ConfigDict(frozen=True)

    url: str
    state: str
    code_verifier: str = Field(repr=False)
