"""Ready-made strategies."""

from gatehouse.strategies.oidc import OIDCStrategy

__all__ = ["OIDCStrategy"]
