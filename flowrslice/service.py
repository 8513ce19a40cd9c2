"""Editor-facing slice service: cursor position in, irrelevant ranges out."""

from __future__ import annotations

import asyncio
import hashlib
from typing import Awaitable, Callable

from .analysis.projector import ProjectionPolicy, TextDocument, project
from .backends.base import SliceBackend
from .backends.engine import create_backend
from .config import SliceConfig
from .errors import SliceClientError
from .logging import get_logger
from .protocol.messages import Position, Range, criterion_for

LOGGER = get_logger(__name__)

BackendFactory = Callable[[SliceConfig], Awaitable[SliceBackend]]


def filetoken_for(filename: str) -> str:
    """Stable per-document token under which the engine keeps the analysis."""
    digest = hashlib.sha256(filename.encode("utf-8")).hexdigest()[:16]
    return f"@flowrslice-{digest}"


class SliceService:
    """Compute and remember irrelevant ranges per document.

    The backend is opened lazily and replaced when it has been closed, e.g.
    after a transport failure. A failed computation never touches the ranges
    stored for a document.
    """

    def __init__(self, config: SliceConfig | None = None, *, backend_factory: BackendFactory = create_backend) -> None:
        self.config = config or SliceConfig()
        self._backend_factory = backend_factory
        self._backend: SliceBackend | None = None
        self._backend_lock = asyncio.Lock()
        self._ranges: dict[str, list[Range]] = {}

    async def __aenter__(self) -> "SliceService":
        return self

    async def __aexit__(self, *_exc_info: object) -> None:
        await self.close()

    async def _ensure_backend(self) -> SliceBackend:
        # Concurrent queries share a single backend.
        async with self._backend_lock:
            if self._backend is not None and not self._backend.closed:
                return self._backend
            if self._backend is not None:
                LOGGER.info("Engine backend was closed; opening a new one")
            self._backend = await self._backend_factory(self.config)
            return self._backend

    async def compute_irrelevant_ranges(
        self,
        position: Position,
        full_text: str,
        filename: str,
        line_count: int | None = None,
    ) -> list[Range]:
        """Run one analysis + slice cycle. Errors propagate to the caller."""
        document = TextDocument.from_text(full_text, line_count)
        backend = await self._ensure_backend()
        filetoken = filetoken_for(filename)
        analysis = await backend.analyze(filename, full_text, filetoken)
        result = await backend.slice(filetoken, [criterion_for(position)])
        LOGGER.debug("slice: %s", sorted(result.retained_ids, key=str))
        return project(result.retained_ids, analysis.index, document, ProjectionPolicy(self.config.policy))

    async def retrieve_irrelevant_ranges(
        self,
        position: Position,
        full_text: str,
        filename: str,
        line_count: int | None = None,
    ) -> list[Range]:
        """Compute and store the ranges for ``filename``.

        On failure the error is logged and the previously stored ranges are
        returned unchanged.
        """
        try:
            ranges = await self.compute_irrelevant_ranges(position, full_text, filename, line_count)
        except SliceClientError as exc:
            LOGGER.error("Slicing %s at %s failed: %s", filename, criterion_for(position), exc)
            return self.ranges_for(filename)
        self._ranges[filename] = ranges
        LOGGER.info("Marked %d irrelevant range(s) in %s", len(ranges), filename)
        return list(ranges)

    def ranges_for(self, document_key: str) -> list[Range]:
        return list(self._ranges.get(document_key, []))

    def clear(self, document_key: str) -> None:
        self._ranges.pop(document_key, None)

    async def close(self) -> None:
        async with self._backend_lock:
            if self._backend is not None:
                await self._backend.close()
                self._backend = None


__all__ = ["BackendFactory", "SliceService", "filetoken_for"]
