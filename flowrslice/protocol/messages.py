"""Typed messages and coordinates exchanged with the flowR engine.

Two coordinate systems meet here. The engine reports 1-based lines and columns
with an inclusive end (``SourcePosition``/``SourceRange``); editors address
text with 0-based lines and characters and a half-open end
(``Position``/``Range``). Conversions only happen through the explicit
``to_editor``/``to_engine`` helpers.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Iterable, Mapping, Union

import orjson

from ..errors import EngineError, ProtocolDecodeError

NodeId = Union[str, int]

HELLO_TYPE = "hello"
ERROR_TYPE = "error"


@dataclass(slots=True, frozen=True, order=True)
class Position:
    line: int
    character: int

    def to_engine(self) -> "SourcePosition":
        return SourcePosition(line=self.line + 1, column=self.character + 1)


@dataclass(slots=True, frozen=True)
class Range:
    start: Position
    end: Position

    @property
    def is_empty(self) -> bool:
        return self.end <= self.start

    def to_dict(self) -> dict[str, dict[str, int]]:
        return {
            "start": {"line": self.start.line, "character": self.start.character},
            "end": {"line": self.end.line, "character": self.end.character},
        }


@dataclass(slots=True, frozen=True, order=True)
class SourcePosition:
    line: int
    column: int

    def to_editor(self) -> Position:
        return Position(line=self.line - 1, character=self.column - 1)


@dataclass(slots=True, frozen=True, order=True)
class SourceRange:
    start: SourcePosition
    end: SourcePosition

    def editor_start(self) -> Position:
        return self.start.to_editor()

    def editor_end(self) -> Position:
        """One past the inclusive engine end, in editor coordinates."""
        return Position(line=self.end.line - 1, character=self.end.column)


def criterion_for(position: Position) -> str:
    """Render an editor position as a ``line:column`` slicing criterion."""
    engine = position.to_engine()
    return f"{engine.line}:{engine.column}"


@dataclass(slots=True)
class FileAnalysisRequest:
    type: ClassVar[str] = "request-file-analysis"

    id: str
    filename: str
    filetoken: str
    content: str
    format: str = "json"

    def to_payload(self) -> dict[str, object]:
        return {
            "type": self.type,
            "id": self.id,
            "filename": self.filename,
            "format": self.format,
            "filetoken": self.filetoken,
            "content": self.content,
        }


@dataclass(slots=True)
class SliceRequest:
    type: ClassVar[str] = "request-slice"

    id: str
    filetoken: str
    criterion: list[str]

    def to_payload(self) -> dict[str, object]:
        return {
            "type": self.type,
            "id": self.id,
            "filetoken": self.filetoken,
            "criterion": list(self.criterion),
        }


def encode_message(payload: Mapping[str, Any]) -> bytes:
    """Serialize a request payload as one newline-terminated JSON line."""
    return orjson.dumps(payload) + b"\n"


def decode_message(text: str) -> dict[str, Any]:
    """Parse one framed message; anything but a JSON object is a protocol error."""
    try:
        data = orjson.loads(text)
    except orjson.JSONDecodeError as exc:
        raise ProtocolDecodeError(f"invalid JSON from engine: {exc}", raw=text) from exc
    if not isinstance(data, dict):
        raise ProtocolDecodeError("engine message is not a JSON object", raw=text)
    return data


def _raw(message: Mapping[str, Any]) -> str:
    return orjson.dumps(message, default=str).decode("utf-8")


def _results_section(message: Mapping[str, Any], section: str) -> Mapping[str, Any]:
    results = message.get("results")
    if not isinstance(results, Mapping):
        raise ProtocolDecodeError("response carries no results object", raw=_raw(message))
    body = results.get(section)
    if not isinstance(body, Mapping):
        raise ProtocolDecodeError(f"response carries no '{section}' results", raw=_raw(message))
    return body


def parse_analysis_response(message: Mapping[str, Any]) -> Any:
    """Return the normalized AST of a file analysis response."""
    normalize = _results_section(message, "normalize")
    ast = normalize.get("ast")
    if ast is None:
        raise ProtocolDecodeError("analysis response has no normalized AST", raw=_raw(message))
    return ast


def parse_slice_response(message: Mapping[str, Any]) -> frozenset[NodeId]:
    """Return the retained node ids of a slice response."""
    body = _results_section(message, "slice")
    result = body.get("result")
    if not isinstance(result, Iterable) or isinstance(result, (str, bytes, Mapping)):
        raise ProtocolDecodeError("slice response has no result list", raw=_raw(message))
    retained: set[NodeId] = set()
    for node_id in result:
        if isinstance(node_id, bool) or not isinstance(node_id, (str, int)):
            raise ProtocolDecodeError(f"unexpected node id {node_id!r}", raw=_raw(message))
        retained.add(node_id)
    return frozenset(retained)


def message_type(message: Mapping[str, Any]) -> str | None:
    value = message.get("type")
    return value if isinstance(value, str) else None


def message_id(message: Mapping[str, Any]) -> str | None:
    value = message.get("id")
    if value is None:
        return None
    return str(value)


def engine_error(message: Mapping[str, Any]) -> EngineError | None:
    """Translate an engine error reply into an exception, or ``None``."""
    if message_type(message) != ERROR_TYPE:
        return None
    reason = message.get("reason")
    return EngineError(
        str(reason) if reason is not None else "engine reported an unspecified error",
        fatal=bool(message.get("fatal", False)),
        request_id=message_id(message),
    )


__all__ = [
    "ERROR_TYPE",
    "FileAnalysisRequest",
    "HELLO_TYPE",
    "NodeId",
    "Position",
    "Range",
    "SliceRequest",
    "SourcePosition",
    "SourceRange",
    "criterion_for",
    "decode_message",
    "encode_message",
    "engine_error",
    "message_id",
    "message_type",
    "parse_analysis_response",
    "parse_slice_response",
]
