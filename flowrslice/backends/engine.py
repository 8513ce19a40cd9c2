"""Backends that reach flowR through a ``ProtocolSession``."""

from __future__ import annotations

import itertools
from typing import Sequence

from ..analysis.location_index import LocationIndex
from ..config import SliceConfig
from ..logging import get_logger
from ..protocol.messages import FileAnalysisRequest, SliceRequest, parse_analysis_response, parse_slice_response
from ..protocol.session import ProtocolSession
from .base import AnalysisResult, SliceBackend, SliceResult

LOGGER = get_logger(__name__)


class SessionBackend(SliceBackend):
    """Drive the analysis/slice request cycle over one protocol session."""

    def __init__(self, session: ProtocolSession, *, request_timeout: float | None = None) -> None:
        self.session = session
        self.request_timeout = request_timeout
        self._ids = itertools.count()

    @property
    def closed(self) -> bool:
        return self.session.closed

    def _next_id(self) -> str:
        return str(next(self._ids))

    async def analyze(self, filename: str, content: str, filetoken: str) -> AnalysisResult:
        request = FileAnalysisRequest(
            id=self._next_id(),
            filename=filename,
            filetoken=filetoken,
            content=content,
        )
        response = await self.session.request(request.to_payload(), timeout=self.request_timeout)
        index = LocationIndex.build(parse_analysis_response(response))
        LOGGER.debug("Indexed %d locations for %s", len(index), filename)
        return AnalysisResult(request_id=request.id, filetoken=filetoken, index=index)

    async def slice(self, filetoken: str, criterion: Sequence[str]) -> SliceResult:
        request = SliceRequest(id=self._next_id(), filetoken=filetoken, criterion=list(criterion))
        response = await self.session.request(request.to_payload(), timeout=self.request_timeout)
        retained = parse_slice_response(response)
        LOGGER.debug("Slice for %s retained %d nodes", ", ".join(criterion), len(retained))
        return SliceResult(request_id=request.id, retained_ids=retained)

    async def close(self) -> None:
        await self.session.close()


class SocketBackend(SessionBackend):
    """flowR running as a TCP server."""

    @classmethod
    async def connect(cls, config: SliceConfig) -> "SocketBackend":
        session = await ProtocolSession.open_connection(
            config.engine.host,
            config.engine.port,
            connect_timeout=config.connect_timeout,
            max_in_flight=config.max_in_flight,
        )
        return cls(session, request_timeout=config.request_timeout)


class ProcessBackend(SessionBackend):
    """flowR spawned locally, talking the same protocol over stdin/stdout."""

    @classmethod
    async def spawn(cls, config: SliceConfig) -> "ProcessBackend":
        session = await ProtocolSession.open_process(config.engine.command, max_in_flight=config.max_in_flight)
        return cls(session, request_timeout=config.request_timeout)


async def create_backend(config: SliceConfig) -> SliceBackend:
    """Open the backend selected by ``config.backend``."""
    if config.backend == "process":
        return await ProcessBackend.spawn(config)
    return await SocketBackend.connect(config)


__all__ = ["ProcessBackend", "SessionBackend", "SocketBackend", "create_backend"]
