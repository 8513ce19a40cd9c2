"""Shared fixtures: a sample R document, its normalized AST and a fake flowR server."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Iterable, Sequence

import orjson
import pytest
import pytest_asyncio

from flowrslice.analysis.location_index import LocationIndex
from flowrslice.backends.base import AnalysisResult, SliceBackend, SliceResult

SAMPLE_SOURCE = "x <- 1\ny <- 2\nprint(x)"


def _sample_ast() -> dict[str, Any]:
    return {
        "type": "RExpressionList",
        "info": {"id": 10},
        "children": [
            {
                "type": "RBinaryOp",
                "location": [1, 3, 1, 4],
                "info": {"id": 2},
                "lhs": {"type": "RSymbol", "location": [1, 1, 1, 1], "lexeme": "x", "info": {"id": 0}},
                "rhs": {"type": "RNumber", "location": [1, 6, 1, 6], "lexeme": "1", "info": {"id": 1}},
            },
            {
                "type": "RBinaryOp",
                "location": [2, 3, 2, 4],
                "info": {"id": 5},
                "lhs": {"type": "RSymbol", "location": [2, 1, 2, 1], "lexeme": "y", "info": {"id": 3}},
                "rhs": {"type": "RNumber", "location": [2, 6, 2, 6], "lexeme": "2", "info": {"id": 4}},
            },
            {
                "type": "RFunctionCall",
                "location": [3, 1, 3, 5],
                "info": {"id": 9},
                "functionName": {"type": "RSymbol", "location": [3, 1, 3, 5], "lexeme": "print", "info": {"id": 6}},
                "arguments": [
                    {
                        "type": "RArgument",
                        "info": {"id": 8},
                        "value": {"type": "RSymbol", "location": [3, 7, 3, 7], "lexeme": "x", "info": {"id": 7}},
                    }
                ],
            },
        ],
    }


# Nodes flowR keeps when slicing for ``print(x)`` at 3:1.
PRINT_SLICE = [0, 1, 2, 6, 7, 8, 9]


@pytest.fixture()
def sample_ast() -> dict[str, Any]:
    return _sample_ast()


def reply(message: dict[str, Any], results: dict[str, Any], **extra: Any) -> bytes:
    payload = {"type": message["type"].replace("request", "response"), "id": message["id"], "results": results}
    payload.update(extra)
    return orjson.dumps(payload) + b"\n"


def default_responder(message: dict[str, Any]) -> list[bytes]:
    if message["type"] == "request-file-analysis":
        return [reply(message, {"normalize": {"ast": _sample_ast()}})]
    if message["type"] == "request-slice":
        return [reply(message, {"slice": {"result": PRINT_SLICE}})]
    return [orjson.dumps({"type": "error", "id": message.get("id"), "fatal": False, "reason": "unknown"}) + b"\n"]


Responder = Callable[[dict[str, Any]], Iterable[bytes]]


class FakeEngine:
    """In-process TCP server answering line-delimited JSON like flowR."""

    def __init__(self, respond: Responder = default_responder, greeting: bytes | None = None) -> None:
        self.respond = respond
        self.greeting = greeting
        self.received: list[dict[str, Any]] = []
        self.chunk_delay = 0.0
        self.port = 0
        self._server: asyncio.base_events.Server | None = None
        self._writers: list[asyncio.StreamWriter] = []

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]

    async def stop(self) -> None:
        for writer in self._writers:
            writer.close()
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()

    async def drop_clients(self) -> None:
        for writer in self._writers:
            writer.close()
        self._writers.clear()

    async def wait_for_messages(self, count: int, timeout: float = 2.0) -> None:
        async def _poll() -> None:
            while len(self.received) < count:
                await asyncio.sleep(0.01)

        await asyncio.wait_for(_poll(), timeout=timeout)

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._writers.append(writer)
        if self.greeting is not None:
            writer.write(self.greeting)
            await writer.drain()
        try:
            async for line in reader:
                message = orjson.loads(line)
                self.received.append(message)
                for chunk in self.respond(message):
                    writer.write(chunk)
                    await writer.drain()
                    if self.chunk_delay:
                        await asyncio.sleep(self.chunk_delay)
        except ConnectionError:
            pass
        finally:
            writer.close()


class FakeBackend(SliceBackend):
    """In-memory backend returning a fixed AST and slice."""

    def __init__(self, ast: dict[str, Any], retained: Sequence[Any]) -> None:
        self.ast = ast
        self.retained = frozenset(retained)
        self.fail_with: Exception | None = None
        self.calls: list[tuple[str, ...]] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def analyze(self, filename: str, content: str, filetoken: str) -> AnalysisResult:
        self.calls.append(("analyze", filename, filetoken))
        if self.fail_with is not None:
            self._closed = True
            raise self.fail_with
        return AnalysisResult(request_id="0", filetoken=filetoken, index=LocationIndex.build(self.ast))

    async def slice(self, filetoken: str, criterion: Sequence[str]) -> SliceResult:
        self.calls.append(("slice", filetoken, *criterion))
        return SliceResult(request_id="1", retained_ids=self.retained)

    async def close(self) -> None:
        self._closed = True


@pytest_asyncio.fixture()
async def engine() -> FakeEngine:
    server = FakeEngine()
    await server.start()
    yield server
    await server.stop()
