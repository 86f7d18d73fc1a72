"""URL helpers: transport checks and query composition."""

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from gatehouse.errors import ConfigError
from gatehouse.settings import settings

LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1", "::1"})


def require_secure_url(url: str, what: str) -> None:
    """Require an absolute https URL (http only on loopback, for development).

    Args:
        url: URL to check
        what: Name used in the error (e.g. "redirect_uri")

    Raises:
        ConfigError: URL is relative, has another scheme, or is http off loopback
    """
    parts = urlsplit(url)
    if not parts.scheme or not parts.hostname:
        raise ConfigError(f"{what} must be an absolute URL")
    if parts.scheme == "https":
        return
    if parts.scheme == "http" and parts.hostname in LOOPBACK_HOSTS:
        if settings.allow_loopback_http:
            return
        raise ConfigError(f"{what} uses http on loopback but allow_loopback_http is off")
    raise ConfigError(f"{what} must use https (got {parts.scheme}://{parts.hostname})")


def append_query(url: str, params: dict[str, str]) -> str:
    """Append parameters to a URL, keeping any query it already carries.

    Example:
        >>> append_query("https://idp.example/auth?client_id=x", {"a": "b c"})
        'https://idp.example/auth?client_id=x&a=b+c'
    """
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


def replace_query(url: str, params: dict[str, str]) -> str:
    """Set parameters on a URL, dropping any existing values of the same names.

    Example:
        >>> replace_query("https://idp.example/auth?m=plain&x=1", {"m": "S256"})
        'https://idp.example/auth?x=1&m=S256'
    """
    parts = urlsplit(url)
    query = [
        (name, value)
        for name, value in parse_qsl(parts.query, keep_blank_values=True)
        if name not in params
    ]
    query.extend(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


def query_values(url: str, name: str) -> list[str]:
    """Return every value of a query parameter."""
    return [v for n, v in parse_qsl(urlsplit(url).query, keep_blank_values=True) if n == name]
