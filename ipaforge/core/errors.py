"""Error taxonomy shared by every ipaforge component.

Callers distinguish failures by type, not by message:

- ``ValidationError``  malformed or missing input, never retried.
- ``AuthenticationError``  caller identity rejected (a precondition failure).
- ``NotFoundError``  unknown artifact, certificate, app or news id.
- ``StorageError``  binary store unavailable, full, or upload too large.
- ``SigningError``  external signer failure or timeout.
- ``ConflictError``  concurrent manifest mutation; retry with a fresh read.
- ``UpstreamError``  link shortening failed; always degraded, never raised
  out of the service layer.
"""

from __future__ import annotations


class IpaForgeError(RuntimeError):
    """Base class for all ipaforge errors."""


class ValidationError(IpaForgeError):
    """Raised when required input is missing or malformed."""


class AuthenticationError(ValidationError):
    """Raised when the caller's identity token is rejected."""


class NotFoundError(IpaForgeError):
    """Raised when the referenced record does not exist."""


class StorageError(IpaForgeError):
    """Raised when artifact bytes cannot be persisted or read."""


class SigningError(IpaForgeError):
    """Raised when the external re-signing step fails."""


class ConflictError(IpaForgeError):
    """Raised when a manifest write would clobber a concurrent change."""


class UpstreamError(IpaForgeError):
    """Raised by the shortener client when the upstream service fails."""
