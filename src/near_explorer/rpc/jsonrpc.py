"""JSON-RPC 2.0 request encoding and response classification."""

import itertools
import json
from typing import Any

from near_explorer.core.exceptions import ApplicationError, TransportError
from near_explorer.rpc.transport import TransportResponse

# Statuses worth retrying on the same or another provider
RETRYABLE_STATUSES = frozenset({408, 429})


class RequestIdGenerator:
    """Monotonic request ids shared by one client."""

    def __init__(self, start: int = 1) -> None:
        self._counter = itertools.count(start)

    def next(self) -> int:
        return next(self._counter)


def encode_request(request_id: int, method: str, params: Any) -> str:
    """
    Serialize a JSON-RPC 2.0 request.

    Parameters
    ----------
    request_id : int
        Request id
    method : str
        RPC method name (e.g., 'block', 'status')
    params : Any
        Positional list or named-parameter object

    Returns
    -------
    str
        JSON payload

    """
    return json.dumps({"jsonrpc": "2.0", "id": request_id, "method": method, "params": params})


def decode_response(response: TransportResponse, url: str | None = None) -> Any:
    """
    Classify a raw HTTP response and extract the JSON-RPC result.

    A 5xx, 408 or 429 status, an unparsable body, or a body with neither
    ``result`` nor ``error`` is a transport failure. A body with an
    ``error`` member is an application error, whatever its status.

    Parameters
    ----------
    response : TransportResponse
        Raw response
    url : str | None
        Endpoint, for error context

    Returns
    -------
    Any
        The ``result`` member

    Raises
    ------
    TransportError
        If the exchange should be retried or failed over
    ApplicationError
        If the node answered with a JSON-RPC error

    """
    status = response.status
    if status >= 500 or status in RETRYABLE_STATUSES:
        msg = f"HTTP {status} from {url or 'provider'}"
        raise TransportError(msg, url=url, status=status)

    try:
        data = json.loads(response.body)
    except json.JSONDecodeError as e:
        msg = f"Malformed response (HTTP {status}) from {url or 'provider'}: {e}"
        raise TransportError(msg, url=url, status=status) from e

    if not isinstance(data, dict):
        msg = f"Malformed response (HTTP {status}) from {url or 'provider'}: not a JSON object"
        raise TransportError(msg, url=url, status=status)

    error = data.get("error")
    if error is not None:
        if isinstance(error, dict):
            message = error.get("message") or "RPC error"
            raise ApplicationError(str(message), code=error.get("code"), data=error.get("data"))
        raise ApplicationError(str(error))

    if "result" not in data:
        msg = f"Malformed response (HTTP {status}) from {url or 'provider'}: missing result"
        raise TransportError(msg, url=url, status=status)
    if status >= 400:
        msg = f"HTTP {status} from {url or 'provider'}"
        raise TransportError(msg, url=url, status=status)
    return data["result"]
