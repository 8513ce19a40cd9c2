"""Backend interface for engines that can analyze a file and compute slices."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Sequence

from ..analysis.location_index import LocationIndex
from ..protocol.messages import NodeId


@dataclass(slots=True, frozen=True)
class AnalysisResult:
    request_id: str
    filetoken: str
    index: LocationIndex


@dataclass(slots=True, frozen=True)
class SliceResult:
    request_id: str
    retained_ids: frozenset[NodeId]


class SliceBackend(ABC):
    """Interface shared by every way of reaching the analysis engine."""

    @property
    @abstractmethod
    def closed(self) -> bool:
        """Whether the backend can no longer serve requests."""

    @abstractmethod
    async def analyze(self, filename: str, content: str, filetoken: str) -> AnalysisResult:
        """Register ``content`` under ``filetoken`` and return its location index."""

    @abstractmethod
    async def slice(self, filetoken: str, criterion: Sequence[str]) -> SliceResult:
        """Slice the file registered under ``filetoken`` for ``criterion``."""

    @abstractmethod
    async def close(self) -> None:
        """Release the engine connection."""


__all__ = ["AnalysisResult", "SliceBackend", "SliceResult"]
