"""Caller identity checks for mutating operations.

Token issuance and user management live in an external service; this
module only defines the narrow ``validate(token)`` seam.
"""

from __future__ import annotations

import hmac
from typing import Protocol, runtime_checkable

from ipaforge.core.errors import AuthenticationError


@runtime_checkable
class TokenValidator(Protocol):
    """Any object with ``validate(token) -> bool`` satisfies this protocol."""

    def validate(self, token: str | None) -> bool:
        ...


class AllowAllTokenValidator:
    """Accepts every caller. Suitable for local development and tests."""

    def validate(self, token: str | None) -> bool:
        return True


class StaticTokenValidator:
    """Accepts exactly one shared token.

    Parameters
    ----------
    expected:
        The configured token. Compared in constant time.
    """

    def __init__(self, expected: str) -> None:
        if not expected:
            raise ValueError("StaticTokenValidator needs a non-empty token")
        self._expected = expected.encode("utf-8")

    def validate(self, token: str | None) -> bool:
        if not token:
            return False
        return hmac.compare_digest(token.encode("utf-8"), self._expected)


def require_token(validator: TokenValidator, token: str | None) -> None:
    if not validator.validate(token):
        raise AuthenticationError("Missing or invalid caller token")
