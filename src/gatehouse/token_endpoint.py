"""Token endpoint client shared by code exchange and refresh.

Requests are `application/x-www-form-urlencoded`; httpx percent-encodes every
form value, so a refresh token or code containing `&` or `=` cannot inject
extra parameters. Responses are status-checked before any parsing.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import httpx
from loguru import logger

from gatehouse.errors import CodeExchangeFailed, HttpError, NetworkError, ProviderError
from gatehouse.models import Config, Credentials
from gatehouse.settings import settings


@contextmanager
def http_client(client: httpx.Client | None = None) -> Iterator[httpx.Client]:
    """Yield the injected client, or a short-lived one with the default timeout.

    An injected client is left open; its owner closes it.
    """
    if client is not None:
        yield client
        return
    with httpx.Client(timeout=settings.http_timeout) as owned:
        yield owned


def post_token_request(
    url: str,
    form: dict[str, str],
    client: httpx.Client | None = None,
) -> dict[str, Any]:
    """POST a form to a token endpoint and return the decoded JSON object.

    Args:
        url: Token endpoint URL
        form: Form fields (encoded by httpx)
        client: Optional httpx client

    Returns:
        Decoded JSON response body

    Raises:
        NetworkError: Endpoint unreachable
        HttpError: Non-2xx response (body is not parsed)
        ProviderError: 2xx response carrying an OAuth `error` field
        CodeExchangeFailed: Body is not a JSON object
    """
    with http_client(client) as http:
        try:
            response = http.post(url, data=form, headers={"Accept": "application/json"})
        except httpx.HTTPError as e:
            logger.warning(f"Token endpoint unreachable: {url}: {type(e).__name__}")
            raise NetworkError(str(e)) from e

    if not response.is_success:
        logger.warning(f"Token endpoint rejected request: {url} status={response.status_code}")
        raise HttpError(response.status_code, response.text)

    try:
        data = response.json()
    except ValueError as e:
        raise CodeExchangeFailed("token response is not valid JSON") from e

    if not isinstance(data, dict):
        raise CodeExchangeFailed("token response is not a JSON object")

    # Some providers (GitHub) report errors with a 200 status.
    error = data.get("error")
    if error:
        description = data.get("error_description")
        raise ProviderError(str(error), str(description) if description else None)

    return data


def parse_token_response(
    data: dict[str, Any],
    fallback_refresh_token: str | None = None,
) -> Credentials:
    """Map a standard token response to Credentials.

    `access_token` and `token_type` are required; `expires_in`,
    `refresh_token` and `scope` are optional. Scopes are space-delimited;
    providers that delimit differently parse their own responses.

    Args:
        data: Decoded token response
        fallback_refresh_token: Used when the response carries no new refresh token

    Returns:
        Credentials

    Raises:
        CodeExchangeFailed: Required field missing
    """
    access_token = data.get("access_token")
    if not isinstance(access_token, str) or not access_token:
        raise CodeExchangeFailed("token response missing access_token")

    token_type = data.get("token_type")
    if not isinstance(token_type, str) or not token_type:
        raise CodeExchangeFailed("token response missing token_type")

    refresh_token = data.get("refresh_token")
    if not isinstance(refresh_token, str) or not refresh_token:
        refresh_token = fallback_refresh_token

    return Credentials(
        token=access_token,
        refresh_token=refresh_token,
        token_type=token_type,
        expires_in=_parse_expires_in(data.get("expires_in")),
        scopes=_parse_scope(data.get("scope")),
    )


def exchange_code_request(
    token_url: str,
    config: Config,
    code: str,
    code_verifier: str | None = None,
    client: httpx.Client | None = None,
) -> dict[str, Any]:
    """Standard authorization_code grant.

    Returns the raw response so strategies can read fields beyond the
    standard ones (`id_token`, provider user ids).
    """
    form = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": config.redirect_uri,
        "client_id": config.client_id,
        "client_secret": config.client_secret,
    }
    if code_verifier is not None:
        form["code_verifier"] = code_verifier
    return post_token_request(token_url, form, client)


def _parse_expires_in(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _parse_scope(value: Any) -> list[str]:
    if isinstance(value, str):
        return value.split()
    if isinstance(value, list):
        return [str(s) for s in value]
    return []
