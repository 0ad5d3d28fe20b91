"""Link shortening through an is.gd-compatible HTTP API.

Shortening is a convenience: ``shorten()`` never raises. Any failure
(timeout, connection error, HTTP error, malformed reply) is logged and the
original URL is returned.
"""

from __future__ import annotations

import logging

import httpx

from ipaforge.core.errors import UpstreamError

logger = logging.getLogger(__name__)

DEFAULT_SHORTENER_URL = "https://is.gd/create.php"
DEFAULT_TIMEOUT_SEC = 5.0


class Shortener:
    """Client for an is.gd-style ``create.php?format=json&url=...`` endpoint.

    Parameters
    ----------
    endpoint:
        Full URL of the create endpoint.
    timeout:
        Upper bound in seconds on one request.
    client:
        Optional ``httpx.Client`` (tests inject one with a mock transport).
    """

    def __init__(
        self,
        endpoint: str = DEFAULT_SHORTENER_URL,
        *,
        timeout: float = DEFAULT_TIMEOUT_SEC,
        client: httpx.Client | None = None,
    ) -> None:
        self._endpoint = endpoint
        self._client = client or httpx.Client(timeout=timeout)
        self._owns_client = client is None

    def shorten(self, long_url: str) -> str:
        """Return a short URL for *long_url*, or *long_url* itself on failure."""
        try:
            return self.request_short_url(long_url)
        except UpstreamError as exc:
            logger.warning("Link shortening failed, using long link: %s", exc)
            return long_url

    def request_short_url(self, long_url: str) -> str:
        """Call the upstream service. Raises ``UpstreamError`` on any failure."""
        try:
            response = self._client.get(
                self._endpoint, params={"format": "json", "url": long_url}
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.TimeoutException as exc:
            raise UpstreamError(f"Shortener timed out: {exc}") from exc
        except httpx.HTTPStatusError as exc:
            raise UpstreamError(
                f"Shortener returned HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Shortener unreachable: {exc}") from exc
        except ValueError as exc:
            raise UpstreamError("Shortener returned a non-JSON reply") from exc

        short_url = payload.get("shorturl") if isinstance(payload, dict) else None
        if not short_url:
            message = payload.get("errormessage") if isinstance(payload, dict) else None
            raise UpstreamError(message or "Shortener reply has no shorturl")
        return str(short_url)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()


class NullShortener:
    """Used when shortening is disabled: every URL is returned unchanged."""

    def shorten(self, long_url: str) -> str:
        return long_url

    def close(self) -> None:
        pass
