"""HTTP transport for JSON-RPC payloads, with optional CORS-bypass proxy routing."""

import logging
from dataclasses import dataclass
from typing import Protocol
from urllib.parse import urlparse

import httpx

from near_explorer.core.exceptions import TransportError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
PROXY_TARGET_HEADER = "X-Target-URL"


@dataclass(frozen=True)
class TransportResponse:
    """Raw HTTP outcome of one request."""

    status: int
    body: str


class Transport(Protocol):
    """
    Sends a JSON payload to a URL.

    Implementations raise TransportError when the exchange cannot complete;
    any received HTTP response is returned as-is for the JSON-RPC layer to
    classify.

    """

    async def send(self, url: str, payload: str, timeout: float | None = None) -> TransportResponse:
        """Deliver ``payload`` to ``url`` and return the raw response."""
        ...


def is_local_url(url: str) -> bool:
    """
    Check whether a URL points at a local or private-network host.

    Parameters
    ----------
    url : str
        Endpoint URL

    Returns
    -------
    bool
        True for localhost, loopback, common private ranges and ``.local``

    """
    try:
        hostname = (urlparse(url).hostname or "").lower()
    except ValueError:
        return False
    return (
        hostname in ("localhost", "127.0.0.1", "::1")
        or hostname.startswith(("192.168.", "10.", "172.16."))
        or hostname.endswith(".local")
    )


class HttpTransport:
    """
    Transport backed by ``httpx.AsyncClient``.

    Remote URLs can be routed through a CORS-bypass proxy that reads the
    real target from the ``X-Target-URL`` header. Local URLs always go
    direct.

    Parameters
    ----------
    timeout : float
        Default request timeout in seconds
    proxy_url : str | None
        Proxy endpoint. Requests go direct if None.
    client : httpx.AsyncClient | None
        Pre-built client, mainly for tests with ``httpx.MockTransport``

    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        proxy_url: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.timeout = timeout
        self.proxy_url = proxy_url
        self.client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"Content-Type": "application/json"},
        )

    def _route(self, url: str) -> tuple[str, dict[str, str]]:
        if self.proxy_url and not is_local_url(url):
            return self.proxy_url, {PROXY_TARGET_HEADER: url, "Content-Type": "application/json"}
        return url, {"Content-Type": "application/json"}

    async def send(self, url: str, payload: str, timeout: float | None = None) -> TransportResponse:
        """
        POST a JSON payload.

        Parameters
        ----------
        url : str
            Provider endpoint
        payload : str
            Serialized JSON-RPC request
        timeout : float | None
            Per-request timeout. The transport default if None.

        Returns
        -------
        TransportResponse
            Status code and body text

        Raises
        ------
        TransportError
            On timeouts, connection failures, DNS errors, or proxy failures

        """
        endpoint, headers = self._route(url)
        try:
            response = await self.client.post(
                endpoint,
                content=payload,
                headers=headers,
                timeout=timeout if timeout is not None else self.timeout,
            )
        except httpx.TimeoutException as e:
            msg = f"Request timeout for {url}: {e}"
            raise TransportError(msg, url=url) from e
        except httpx.HTTPError as e:
            via = " via proxy" if endpoint != url else ""
            msg = f"HTTP request failed{via} for {url}: {e}"
            raise TransportError(msg, url=url) from e

        if response.status_code >= 400 and endpoint != url:
            logger.debug("Proxy returned HTTP %d for %s", response.status_code, url)
        return TransportResponse(status=response.status_code, body=response.text)

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self) -> "HttpTransport":
        """Async context manager entry."""
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: Exception | None,
        exc_tb: object | None,
    ) -> None:
        """Async context manager exit."""
        await self.aclose()
