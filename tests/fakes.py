"""In-memory transport and chain fakes shared by the test suite."""

import json
from collections import Counter
from collections.abc import Callable
from typing import Any

from near_explorer.core.exceptions import TransportError
from near_explorer.rpc.transport import TransportResponse

LOCALNET_AWS = "http://54.90.246.254:3030"
LOCALNET_DEFAULT = "http://localhost:3030"

Handler = Callable[[dict[str, Any]], TransportResponse]


def rpc_result(request: dict[str, Any], result: Any) -> TransportResponse:
    """Successful JSON-RPC response for a request."""
    return TransportResponse(200, json.dumps({"jsonrpc": "2.0", "id": request["id"], "result": result}))


def rpc_error(request: dict[str, Any], code: int, message: str) -> TransportResponse:
    """JSON-RPC error response for a request."""
    body = {"jsonrpc": "2.0", "id": request["id"], "error": {"code": code, "message": message}}
    return TransportResponse(200, json.dumps(body))


def refuse(request: dict[str, Any]) -> TransportResponse:
    """Handler simulating a refused connection."""
    msg = "Connection refused"
    raise TransportError(msg)


class FakeTransport:
    """Transport routing requests to per-URL handlers and recording every call."""

    def __init__(self, default: Handler | None = None) -> None:
        self.handlers: dict[str, Handler] = {}
        self.default = default
        self.calls: list[tuple[str, str, Any]] = []

    def route(self, url: str, handler: Handler) -> None:
        self.handlers[url] = handler

    async def send(self, url: str, payload: str, timeout: float | None = None) -> TransportResponse:
        request = json.loads(payload)
        self.calls.append((url, request["method"], request["params"]))
        handler = self.handlers.get(url, self.default)
        if handler is None:
            msg = f"Connection refused: {url}"
            raise TransportError(msg, url=url)
        return handler(request)

    def urls(self) -> list[str]:
        return [url for url, _, _ in self.calls]


def make_block(height: int, chunks: int = 1) -> dict[str, Any]:
    """Block JSON as returned by the ``block`` method."""
    return {
        "author": "node0",
        "header": {
            "height": height,
            "hash": f"block-{height}",
            "prev_hash": f"block-{height - 1}",
            "timestamp": height * 1000,
            "timestamp_nanosec": str(height * 1000),
            "gas_price": "100000000",
            "total_supply": "1000",
        },
        "chunks": [{"chunk_hash": f"chunk-{height}-{i}", "shard_id": i} for i in range(chunks)],
    }


class FakeChain:
    """
    In-memory NEAR node answering ``status``, ``block`` and ``chunk``.

    Every block has ``chunks_per_block`` chunks with one transaction each.
    Heights in ``missing`` answer with an UNKNOWN_BLOCK error; heights in
    ``unreachable`` and chunk hashes in ``unreachable_chunks`` raise
    transport errors. Heights in ``malformed`` answer with a null result.

    """

    def __init__(self, latest: int, chunks_per_block: int = 1) -> None:
        self.latest = latest
        self.chunks_per_block = chunks_per_block
        self.missing: set[int] = set()
        self.unreachable: set[int] = set()
        self.unreachable_chunks: set[str] = set()
        self.malformed: set[int] = set()
        self.block_fetches: Counter[int] = Counter()
        self.chunk_fetches: Counter[str] = Counter()

    def __call__(self, request: dict[str, Any]) -> TransportResponse:
        method, params = request["method"], request["params"]
        if method == "status":
            return rpc_result(
                request,
                {
                    "chain_id": "localnet",
                    "sync_info": {
                        "latest_block_hash": f"block-{self.latest}",
                        "latest_block_height": self.latest,
                        "latest_block_time": "2026-01-01T00:00:00Z",
                        "syncing": False,
                    },
                    "version": {"version": "2.0.0", "build": "test"},
                },
            )
        if method == "block":
            if params.get("finality") == "final":
                return rpc_result(request, make_block(self.latest, self.chunks_per_block))
            block_id = params["block_id"]
            height = block_id if isinstance(block_id, int) else int(str(block_id).removeprefix("block-"))
            self.block_fetches[height] += 1
            if height in self.unreachable:
                msg = f"Timeout fetching block {height}"
                raise TransportError(msg)
            if height in self.malformed:
                return rpc_result(request, None)
            if height in self.missing or height > self.latest:
                return rpc_error(request, -32000, f"DB Not Found Error: BLOCK HEIGHT: {height}")
            return rpc_result(request, make_block(height, self.chunks_per_block))
        if method == "chunk":
            chunk_hash = params[0]
            self.chunk_fetches[chunk_hash] += 1
            if chunk_hash in self.unreachable_chunks:
                msg = f"Timeout fetching chunk {chunk_hash}"
                raise TransportError(msg)
            _, height, index = chunk_hash.split("-")
            transactions = [
                {
                    "hash": f"tx-{height}-{index}",
                    "signer_id": "alice.test",
                    "receiver_id": "bob.test",
                    "actions": [{"Transfer": {"deposit": "1000000000000000000000000"}}],
                }
            ]
            return rpc_result(request, {"author": "node0", "header": {"chunk_hash": chunk_hash}, "transactions": transactions})
        return rpc_error(request, -32601, f"Method not found: {method}")


async def no_sleep(delay: float) -> None:
    """Backoff sleep replacement that returns immediately."""


class RecordingSleep:
    """Backoff sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
