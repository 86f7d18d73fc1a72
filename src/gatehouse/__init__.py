"""Strategy-pluggable OAuth2/OIDC authentication.

Two-phase login:

    request = authorize_url(strategy, config)
    # store request.state and request.code_verifier, redirect to request.url
    auth = handle_callback(strategy, config, params, state, code_verifier)

Security primitives:
- PKCE S256 challenge on every authorization request
- constant-time CSRF state validation, checked before anything else
- identity tokens verified against the provider key set on every use
- one-time caches consumed atomically
"""

from gatehouse.errors import (
    AuthError,
    CodeExchangeFailed,
    ConfigError,
    CustomError,
    HttpError,
    IdentityTokenInvalid,
    NetworkError,
    NotFoundError,
    ProviderError,
    StateMismatch,
    UserInfoFailed,
)
from gatehouse.models import (
    Auth,
    AuthorizationRequest,
    Config,
    Credentials,
    UserIdentity,
    UserInfo,
)
from gatehouse.orchestrator import (
    authorize_url,
    handle_callback,
    merge_callback_params,
    refresh_token,
    validate_config,
)
from gatehouse.registry import Registry
from gatehouse.strategy import FunctionStrategy, Strategy

__all__ = [
    "AuthError",
    "CodeExchangeFailed",
    "ConfigError",
    "CustomError",
    "HttpError",
    "IdentityTokenInvalid",
    "NetworkError",
    "NotFoundError",
    "ProviderError",
    "StateMismatch",
    "UserInfoFailed",
    "Auth",
    "AuthorizationRequest",
    "Config",
    "Credentials",
    "UserIdentity",
    "UserInfo",
    "authorize_url",
    "handle_callback",
    "merge_callback_params",
    "refresh_token",
    "validate_config",
    "Registry",
    "FunctionStrategy",
    "Strategy",
]
