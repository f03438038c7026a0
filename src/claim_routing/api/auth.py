"""
Bearer token provider backed by a static token table.
"""

from claim_routing.core.exceptions import ValidationError
from claim_routing.core.ports import AuthTokenProvider


class StaticTokenProvider(AuthTokenProvider):
    """Maps opaque tokens from ``API_TOKENS`` to subjects."""

    def __init__(self, tokens: dict[str, str] | None = None):
        self._tokens = dict(tokens or {})

    def verify(self, token: str) -> str:
        subject = self._tokens.get(token)
        if subject is None:
            raise ValidationError("Invalid or expired token")
        return subject
