"""Test the OIDC strategy end to end through the orchestrator."""

from urllib.parse import parse_qs, urlsplit

import httpx
import pytest
from conftest import CLIENT_ID, ISSUER

from gatehouse.errors import (
    CodeExchangeFailed,
    ConfigError,
    IdentityTokenInvalid,
    UserInfoFailed,
)
from gatehouse.identity.assertions import OneTimeCache
from gatehouse.identity.verifier import INVALID_SIGNATURE
from gatehouse.models import Config
from gatehouse.orchestrator import authorize_url, handle_callback
from gatehouse.registry import Registry
from gatehouse.strategies.oidc import ASSERTION_KEY, OIDCStrategy
from gatehouse.strategy import Strategy

AUTHORIZE_URL = "https://idp.example.com/authorize"
TOKEN_URL = "https://idp.example.com/token"
JWKS_URL = "https://idp.example.com/jwks"


class FakeProvider:
    """Token and key set endpoints of a fake identity provider."""

    def __init__(self, id_token: str | None, key_sets: list[list[dict]]):
        self.id_token = id_token
        self.key_sets = key_sets
        self.token_forms: list[dict] = []
        self.jwks_requests = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/token":
            self.token_forms.append(parse_qs(request.content.decode()))
            body = {"access_token": "access-xyz", "token_type": "Bearer", "expires_in": 3600}
            if self.id_token is not None:
                body["id_token"] = self.id_token
            return httpx.Response(200, json=body)
        if request.url.path == "/jwks":
            keys = self.key_sets[min(self.jwks_requests, len(self.key_sets) - 1)]
            self.jwks_requests += 1
            return httpx.Response(200, json={"keys": keys})
        return httpx.Response(404)


@pytest.fixture
def config():
    """Relying party config."""
    return Config(
        client_id=CLIENT_ID,
        client_secret="s3cret",
        redirect_uri="https://app.example.com/auth/oidc/callback",
        extra_params={"response_mode": "form_post"},
    )


def _strategy(provider: FakeProvider, make_client, **kwargs) -> OIDCStrategy:
    return OIDCStrategy(
        provider="oidc",
        issuer=ISSUER,
        authorize_endpoint=AUTHORIZE_URL,
        token_url=TOKEN_URL,
        jwks_uri=JWKS_URL,
        client=make_client(provider),
        **kwargs,
    )


def _login(strategy: OIDCStrategy, config: Config):
    request = authorize_url(strategy, config)
    params = {"code": "auth-code", "state": request.state}
    return request, handle_callback(strategy, config, params, request.state, request.code_verifier)


def test_is_strategy(signing_key, make_client):
    """Test OIDCStrategy satisfies the Strategy protocol."""
    assert isinstance(_strategy(FakeProvider(None, [[]]), make_client), Strategy)


def test_authorize_url_parameters(config, make_client):
    """Test the authorize URL carries the OIDC and PKCE parameters."""
    strategy = _strategy(FakeProvider(None, [[]]), make_client)
    request = authorize_url(strategy, config)
    parts = urlsplit(request.url)
    query = parse_qs(parts.query)

    assert f"{parts.scheme}://{parts.netloc}{parts.path}" == AUTHORIZE_URL
    assert query["response_type"] == ["code"]
    assert query["client_id"] == [CLIENT_ID]
    assert query["redirect_uri"] == [config.redirect_uri]
    assert query["scope"] == ["openid email profile"]
    assert query["state"] == [request.state]
    assert query["response_mode"] == ["form_post"]
    assert query["code_challenge_method"] == ["S256"]


def test_full_login(config, signing_key, make_client):
    """Test a complete login verifies the id_token and builds Auth."""
    id_token = signing_key.create_token(
        subject="000123.abc",
        email="ada@example.com",
        email_verified="true",
        is_private_email="false",
    )
    provider = FakeProvider(id_token, [[signing_key.jwk]])
    strategy = _strategy(provider, make_client)

    request, auth = _login(strategy, config)

    assert auth.uid == "000123.abc"
    assert auth.provider == "oidc"
    assert auth.info.email == "ada@example.com"
    assert auth.credentials.token == "access-xyz"
    assert auth.extra["issuer"] == ISSUER
    assert auth.extra["is_private_email"] == "false"
    assert provider.token_forms[0]["code"] == ["auth-code"]
    assert provider.token_forms[0]["code_verifier"] == [request.code_verifier]


def test_cache_key_is_not_access_token(config, signing_key, make_client):
    """Test the one-time cache is keyed by a random handle, not the token."""
    assertions = OneTimeCache()
    provider = FakeProvider(signing_key.create_token(), [[signing_key.jwk]])
    strategy = _strategy(provider, make_client, assertions=assertions)

    credentials = strategy.exchange_code(config, "auth-code", "verifier")

    handle = credentials.extra[ASSERTION_KEY]
    assert handle != credentials.token
    assert len(assertions) == 1


def test_identity_token_single_use(config, signing_key, make_client):
    """Test fetch_user cannot be replayed with the same credentials."""
    provider = FakeProvider(signing_key.create_token(), [[signing_key.jwk]])
    strategy = _strategy(provider, make_client)

    credentials = strategy.exchange_code(config, "auth-code", "verifier")
    strategy.fetch_user(credentials)

    with pytest.raises(UserInfoFailed):
        strategy.fetch_user(credentials)


def test_fetch_user_without_handle(signing_key, make_client):
    """Test credentials not produced by exchange_code are refused."""
    from gatehouse.models import Credentials

    strategy = _strategy(FakeProvider(None, [[signing_key.jwk]]), make_client)
    with pytest.raises(UserInfoFailed):
        strategy.fetch_user(Credentials(token="access-xyz"))


def test_missing_id_token(config, make_client):
    """Test a token response without id_token fails the exchange."""
    strategy = _strategy(FakeProvider(None, [[]]), make_client)
    with pytest.raises(CodeExchangeFailed):
        _login(strategy, config)


def test_pkce_opt_out(config, signing_key, make_client):
    """Test no code_verifier is sent when the strategy opts out of PKCE."""
    provider = FakeProvider(signing_key.create_token(), [[signing_key.jwk]])
    strategy = _strategy(provider, make_client, use_pkce=False)

    _login(strategy, config)

    assert "code_verifier" not in provider.token_forms[0]


def test_key_rotation_refreshes_once(config, signing_key, other_key, make_client):
    """Test an id_token signed by a newly rotated key triggers one key refresh."""
    provider = FakeProvider(
        other_key.create_token(subject="rotated"),
        [[signing_key.jwk], [signing_key.jwk, other_key.jwk]],
    )
    strategy = _strategy(provider, make_client)
    strategy.key_cache.get_keys()  # warm cache with the old set

    _, auth = _login(strategy, config)

    assert auth.uid == "rotated"
    assert provider.jwks_requests == 2


def test_forged_token_no_refresh(config, signing_key, other_key, make_client):
    """Test a bad signature under a known kid fails without refetching keys."""
    forged = other_key.create_token(kid=signing_key.kid)
    provider = FakeProvider(forged, [[signing_key.jwk]])
    strategy = _strategy(provider, make_client)

    with pytest.raises(IdentityTokenInvalid) as exc_info:
        _login(strategy, config)

    assert exc_info.value.reason == INVALID_SIGNATURE
    assert provider.jwks_requests == 1


def test_wrong_audience_rejected(config, signing_key, make_client):
    """Test an id_token minted for another client is rejected."""
    provider = FakeProvider(signing_key.create_token(audience="other-client"), [[signing_key.jwk]])
    with pytest.raises(IdentityTokenInvalid):
        _login(_strategy(provider, make_client), config)


def test_unverified_email_not_exposed(config, signing_key, make_client):
    """Test an unverified email appears neither in info nor in extra."""
    provider = FakeProvider(
        signing_key.create_token(email="maybe@example.com"), [[signing_key.jwk]]
    )
    _, auth = _login(_strategy(provider, make_client), config)

    assert auth.info.email is None
    assert "email" not in auth.extra


def test_registry_roundtrip(config, signing_key, make_client):
    """Test a registered OIDC strategy can drive a login by provider name."""
    provider = FakeProvider(signing_key.create_token(), [[signing_key.jwk]])
    registry = Registry()
    registry.register(_strategy(provider, make_client), config)

    strategy, found_config = registry.get("oidc")
    _, auth = _login(strategy, found_config)
    assert auth.provider == "oidc"


def test_protocol_params_not_overridable(config, make_client):
    """Test extra_params cannot replace state, client_id or the PKCE method."""
    strategy = _strategy(FakeProvider(None, [[]]), make_client)
    hostile = config.model_copy(
        update={
            "extra_params": {
                "state": "fixed",
                "client_id": "other-client",
                "code_challenge_method": "plain",
                "prompt": "consent",
            }
        }
    )

    request = authorize_url(strategy, hostile)
    query = parse_qs(urlsplit(request.url).query)

    assert query["state"] == [request.state]
    assert query["client_id"] == [CLIENT_ID]
    assert query["code_challenge_method"] == ["S256"]
    assert query["prompt"] == ["consent"]


def test_empty_issuer_refused(make_client):
    """Test an OIDC strategy cannot be built without an issuer."""
    with pytest.raises(ConfigError):
        OIDCStrategy(
            provider="oidc",
            issuer="",
            authorize_endpoint=AUTHORIZE_URL,
            token_url=TOKEN_URL,
            jwks_uri=JWKS_URL,
            client=make_client(FakeProvider(None, [[]])),
        )


def test_empty_client_id_never_accepts_foreign_audience(config, signing_key, make_client):
    """Test an id_token for another client is not accepted when client_id is empty."""
    provider = FakeProvider(
        signing_key.create_token(audience="someone-elses-client"), [[signing_key.jwk]]
    )
    strategy = _strategy(provider, make_client)
    credentials = strategy.exchange_code(
        config.model_copy(update={"client_id": ""}), "auth-code", "verifier"
    )

    with pytest.raises(ConfigError):
        strategy.fetch_user(credentials)
