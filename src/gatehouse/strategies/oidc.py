"""Hand-configured OIDC strategy.

Works with any provider that returns a signed `id_token` from its token
endpoint (Apple, Google, Microsoft Entra ID, Okta, Auth0, ...). Endpoints
are passed in explicitly; discovery documents are not fetched.

Identity comes from the verified `id_token`, not from a userinfo call:

1. exchange_code: the token response's `id_token` is put in a one-time
   cache under a random key; the key travels to the next phase in
   `Credentials.extra`.
2. fetch_user: the entry is consumed (a second fetch_user with the same
   credentials fails) and the token is verified against the provider's key
   set. An unknown key triggers one key set refresh, since the provider may
   have rotated its keys since they were cached.
"""

from typing import Any

import httpx
from loguru import logger

from gatehouse.errors import (
    CodeExchangeFailed,
    ConfigError,
    IdentityTokenInvalid,
    NotFoundError,
    UserInfoFailed,
)
from gatehouse.identity.assertions import OneTimeCache
from gatehouse.identity.keys import KeySetCache
from gatehouse.identity.verifier import NO_MATCHING_KEY, IdentityClaims, IdentityVerifier
from gatehouse.models import Config, Credentials, UserIdentity
from gatehouse.token_endpoint import exchange_code_request, parse_token_response
from gatehouse.urls import append_query

ASSERTION_KEY = "id_token_key"

_PROFILE_URL_CLAIMS = ("profile", "website")


class OIDCStrategy:
    """OIDC authorization code strategy verified via the provider key set.

    Example (Sign in with Apple):
        >>> apple = OIDCStrategy(
        ...     provider="apple",
        ...     issuer="https://appleid.apple.com",
        ...     authorize_endpoint="https://appleid.apple.com/auth/authorize",
        ...     token_url="https://appleid.apple.com/auth/token",
        ...     jwks_uri="https://appleid.apple.com/auth/keys",
        ...     default_scopes=["name", "email"],
        ... )
    """

    def __init__(
        self,
        provider: str,
        issuer: str,
        authorize_endpoint: str,
        token_url: str,
        jwks_uri: str,
        default_scopes: list[str] | None = None,
        use_pkce: bool = True,
        key_cache: KeySetCache | None = None,
        assertions: OneTimeCache | None = None,
        verifier: IdentityVerifier | None = None,
        client: httpx.Client | None = None,
    ):
        """Initialize OIDC strategy.

        Args:
            provider: Provider name (registry key)
            issuer: Canonical issuer, compared exactly with the `iss` claim
            authorize_endpoint: Provider authorization endpoint
            token_url: Provider token endpoint
            jwks_uri: Provider key set URL
            default_scopes: Scopes when Config.scopes is empty
            use_pkce: Send the PKCE code_verifier on code exchange
            key_cache: Key set cache (created for jwks_uri if None)
            assertions: One-time cache for id tokens (private one if None)
            verifier: Identity verifier (created for issuer if None)
            client: Optional httpx client for token and key set calls

        Raises:
            ConfigError: Empty issuer
        """
        if not issuer:
            raise ConfigError(f"OIDC issuer required for provider {provider!r}")

        self.provider = provider
        self.issuer = issuer
        self.authorize_endpoint = authorize_endpoint
        self.token_url = token_url
        self.jwks_uri = jwks_uri
        self.default_scopes = (
            list(default_scopes) if default_scopes is not None else ["openid", "email", "profile"]
        )
        self.use_pkce = use_pkce
        self.client = client
        self.key_cache = key_cache if key_cache is not None else KeySetCache(jwks_uri, client=client)
        self.assertions = assertions if assertions is not None else OneTimeCache()
        self.verifier = verifier if verifier is not None else IdentityVerifier(issuer)

    def build_authorize_url(self, config: Config, scopes: list[str], state: str) -> str:
        params = dict(config.extra_params)
        # Protocol parameters win over extra_params of the same name.
        params.update(
            {
                "response_type": "code",
                "client_id": config.client_id,
                "redirect_uri": config.redirect_uri,
                "scope": " ".join(scopes),
                "state": state,
            }
        )
        return append_query(self.authorize_endpoint, params)

    def exchange_code(
        self, config: Config, code: str, code_verifier: str | None
    ) -> Credentials:
        data = exchange_code_request(
            self.token_url,
            config,
            code,
            code_verifier=code_verifier if self.use_pkce else None,
            client=self.client,
        )

        id_token = data.get("id_token")
        if not isinstance(id_token, str) or not id_token:
            raise CodeExchangeFailed("token response missing id_token")

        credentials = parse_token_response(data)
        key = self.assertions.store({"id_token": id_token, "audience": config.client_id})
        return credentials.model_copy(update={"extra": {**credentials.extra, ASSERTION_KEY: key}})

    def fetch_user(self, credentials: Credentials) -> UserIdentity:
        key = credentials.extra.get(ASSERTION_KEY)
        if not key:
            raise UserInfoFailed("credentials carry no identity token handle")

        try:
            assertion = self.assertions.retrieve(key)
        except NotFoundError as e:
            raise UserInfoFailed("identity token already used or expired") from e

        claims = self._decode(assertion["id_token"], assertion["audience"])
        info = self.verifier.to_user_info(claims)
        for claim in _PROFILE_URL_CLAIMS:
            value = claims.extra.get(claim)
            if isinstance(value, str) and value:
                info.urls[claim] = value

        # An unverified email must not leak through the extension map either.
        extra: dict[str, Any] = {k: v for k, v in claims.extra.items() if k != "email"}
        if info.email:
            extra["email"] = info.email
        extra["issuer"] = claims.issuer

        return UserIdentity(uid=claims.subject, info=info, extra=extra)

    def _decode(self, id_token: str, audience: str) -> IdentityClaims:
        try:
            return self.verifier.decode(id_token, self.key_cache.get_keys(), audience)
        except IdentityTokenInvalid as e:
            if e.reason != NO_MATCHING_KEY:
                raise
            logger.info(f"No matching key for {self.provider} id_token, refreshing key set")

        return self.verifier.decode(id_token, self.key_cache.refresh_keys(), audience)
