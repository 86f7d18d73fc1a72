"""Two-phase OAuth2/OIDC login flow.

Phase one, `authorize_url`: generate state and PKCE verifier, ask the
strategy for the provider URL, attach the PKCE challenge. The caller stores
`state` and `code_verifier` and redirects the user.

Phase two, `handle_callback`: the provider redirects back; the callback is
checked in a fixed order and the first failure ends the flow:

    state present -> state matches -> no provider `error` -> `code` present
      -> strategy.exchange_code -> strategy.fetch_user -> Auth

The state check comes first so that nothing else in a forged callback
(including its `error` text) is ever interpreted.

Nothing here holds mutable state; concurrent logins are independent.
Nothing here retries: codes and verifiers are single-use, so a failed
exchange means starting over with a new authorize_url.
"""

from collections.abc import Mapping
from urllib.parse import urlsplit

import httpx
from loguru import logger

from gatehouse import pkce
from gatehouse import state as csrf
from gatehouse.errors import (
    AuthError,
    CodeExchangeFailed,
    ConfigError,
    ProviderError,
    StateMismatch,
    UserInfoFailed,
)
from gatehouse.models import Auth, AuthorizationRequest, Config, Credentials
from gatehouse.strategy import Strategy
from gatehouse.token_endpoint import parse_token_response, post_token_request
from gatehouse.urls import query_values, replace_query, require_secure_url


def validate_config(config: Config) -> None:
    """Check a Config is structurally usable.

    Raises:
        ConfigError: Missing client_id, or redirect_uri not https
            (http is accepted on loopback hosts for development)
    """
    if not config.client_id:
        raise ConfigError("client_id is required")
    require_secure_url(config.redirect_uri, "redirect_uri")


def authorize_url(strategy: Strategy, config: Config) -> AuthorizationRequest:
    """Start a login.

    Non-empty `config.scopes` replace the strategy defaults entirely.

    Args:
        strategy: Provider strategy
        config: Provider client configuration

    Returns:
        AuthorizationRequest (url to redirect to, state and verifier to keep)

    Raises:
        ConfigError: Invalid config, or the strategy URL does not carry the
            generated state
    """
    validate_config(config)

    scopes = list(config.scopes) if config.scopes else list(strategy.default_scopes)
    state = csrf.generate()
    verifier = pkce.generate_verifier()

    base_url = strategy.build_authorize_url(config, scopes, state)
    if query_values(base_url, "state") != [state]:
        raise ConfigError(
            f"authorize URL from {strategy.provider} must carry exactly the generated state"
        )

    # Any challenge already on the URL is replaced; only S256 is ever sent.
    url = replace_query(
        base_url,
        {
            "code_challenge": pkce.compute_challenge(verifier),
            "code_challenge_method": pkce.CHALLENGE_METHOD,
        },
    )

    logger.debug(
        f"Issued authorization request: provider={strategy.provider} "
        f"host={urlsplit(url).hostname} state={state[:8]}..."
    )
    return AuthorizationRequest(url=url, state=state, code_verifier=verifier)


def handle_callback(
    strategy: Strategy,
    config: Config,
    params: Mapping[str, str],
    expected_state: str,
    code_verifier: str | None,
) -> Auth:
    """Finish a login from the provider's callback parameters.

    Args:
        strategy: Provider strategy
        config: Provider client configuration
        params: Callback parameters (see merge_callback_params)
        expected_state: State issued by authorize_url
        code_verifier: PKCE verifier issued by authorize_url

    Returns:
        Auth

    Raises:
        ConfigError: Invalid config, or `state` or `code` missing
        StateMismatch: `state` does not match expected_state
        ProviderError: Provider reported an `error`
        AuthError: Any failure from the strategy
    """
    validate_config(config)

    received_state = params.get("state")
    if received_state is None:
        logger.warning(f"Callback without state: provider={strategy.provider}")
        raise ConfigError("callback is missing state")

    try:
        csrf.ensure_valid(received_state, expected_state)
    except StateMismatch:
        logger.warning(f"Callback state mismatch: provider={strategy.provider}")
        raise

    error = params.get("error")
    if error:
        logger.info(f"Provider returned error: provider={strategy.provider} error={error}")
        raise ProviderError(error, params.get("error_description") or None)

    code = params.get("code")
    if not code:
        raise ConfigError("callback is missing code")

    try:
        credentials = strategy.exchange_code(config, code, code_verifier)
    except AuthError:
        raise
    except Exception as e:
        logger.error(f"Code exchange raised {type(e).__name__}: provider={strategy.provider}")
        raise CodeExchangeFailed(str(e)) from e

    try:
        identity = strategy.fetch_user(credentials)
    except AuthError:
        raise
    except Exception as e:
        logger.error(f"User fetch raised {type(e).__name__}: provider={strategy.provider}")
        raise UserInfoFailed(str(e)) from e

    logger.info(f"Authenticated: provider={strategy.provider} uid={identity.uid}")
    return Auth(
        uid=identity.uid,
        provider=strategy.provider,
        info=identity.info,
        credentials=credentials,
        extra=dict(identity.extra),
    )


def refresh_token(
    strategy: Strategy,
    config: Config,
    refresh_token: str,
    client: httpx.Client | None = None,
) -> Credentials:
    """Exchange a refresh token for new credentials.

    If the provider does not rotate refresh tokens (no `refresh_token` in the
    response), the one passed in is carried over.

    Raises:
        ConfigError: Empty refresh token
        NetworkError: Token endpoint unreachable
        HttpError: Non-2xx response
        ProviderError: Token endpoint returned an `error`
        CodeExchangeFailed: Malformed token response
    """
    if not refresh_token:
        raise ConfigError("refresh_token is required")

    form = {
        "grant_type": "refresh_token",
        "refresh_token": refresh_token,
        "client_id": config.client_id,
        "client_secret": config.client_secret,
    }
    data = post_token_request(strategy.token_url, form, client)
    logger.debug(f"Refreshed credentials: provider={strategy.provider}")
    return parse_token_response(data, fallback_refresh_token=refresh_token)


def merge_callback_params(
    query: Mapping[str, str | list[str]],
    form: Mapping[str, str | list[str]] | None = None,
) -> dict[str, str]:
    """Flatten callback parameters from the query string and a form_post body.

    Form values win over same-named query values. Multi-valued parameters
    keep their first value.

    Example:
        >>> merge_callback_params({"state": "a", "code": "q"}, {"code": "f"})
        {'state': 'a', 'code': 'f'}
    """
    merged: dict[str, str] = {}
    for source in (query, form or {}):
        for name, value in source.items():
            if isinstance(value, list):
                if not value:
                    continue
                value = value[0]
            merged[name] = value
    return merged
