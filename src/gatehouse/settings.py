"""Engine settings using Pydantic Settings."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Gatehouse configuration.

    Provider credentials (client id/secret, redirect URI) are not settings:
    callers build a `Config` per provider. These are the engine-wide knobs.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="GATEHOUSE_",
        case_sensitive=False,
        extra="ignore",
    )

    # HTTP
    http_timeout: float = Field(
        default=10.0, description="Timeout for token, key set and userinfo calls (seconds)"
    )

    # Identity tokens
    jwks_cache_ttl: int = Field(
        default=3600,
        description="Key set cache TTL in seconds (0 keeps keys until refresh_keys)",
    )
    id_token_leeway: int = Field(
        default=60, description="Clock skew allowed when checking identity token expiry"
    )

    # One-time caches
    assertion_ttl: int = Field(
        default=600,
        description="Lifetime of one-time cache entries (pending logins, id tokens)",
    )

    # Redirect URIs
    allow_loopback_http: bool = Field(
        default=True,
        description="Accept plain http redirect/key set URLs on loopback hosts (development)",
    )


settings = Settings()
