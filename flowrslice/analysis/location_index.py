"""Index the source locations of a normalized flowR AST."""

from __future__ import annotations

from typing import Any, Iterator, Mapping

from ..protocol.messages import NodeId, SourcePosition, SourceRange


def _as_coordinate(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        return None
    return value


def _position(value: Any) -> SourcePosition | None:
    if not isinstance(value, Mapping):
        return None
    line = _as_coordinate(value.get("line"))
    column = _as_coordinate(value.get("column"))
    if line is None or column is None:
        return None
    return SourcePosition(line=line, column=column)


def parse_location(value: Any) -> SourceRange | None:
    """Read an engine location, either ``{start, end}`` or ``[l1, c1, l2, c2]``.

    Returns ``None`` for anything malformed or with its end before its start.
    """
    if isinstance(value, (list, tuple)):
        if len(value) != 4:
            return None
        coordinates = [_as_coordinate(item) for item in value]
        if any(item is None for item in coordinates):
            return None
        start_line, start_column, end_line, end_column = coordinates
        start = SourcePosition(line=start_line, column=start_column)  # type: ignore[arg-type]
        end = SourcePosition(line=end_line, column=end_column)  # type: ignore[arg-type]
    elif isinstance(value, Mapping):
        start = _position(value.get("start"))
        end = _position(value.get("end"))
        if start is None or end is None:
            return None
    else:
        return None
    if end < start:
        return None
    return SourceRange(start=start, end=end)


def _node_id(node: Mapping[str, Any]) -> NodeId | None:
    info = node.get("info")
    if isinstance(info, Mapping) and "id" in info:
        candidate = info["id"]
    elif "id" in node and "location" in node:
        candidate = node["id"]
    else:
        return None
    if isinstance(candidate, bool) or not isinstance(candidate, (str, int)):
        return None
    return candidate


class LocationIndex(Mapping[NodeId, SourceRange]):
    """Immutable mapping from node id to the node's engine source range."""

    def __init__(self, locations: Mapping[NodeId, SourceRange] | None = None) -> None:
        self._locations: dict[NodeId, SourceRange] = dict(locations or {})

    @classmethod
    def build(cls, ast: Any) -> "LocationIndex":
        # Iterative walk: deeply nested expressions would exhaust the recursion limit.
        locations: dict[NodeId, SourceRange] = {}
        stack: list[Any] = [ast]
        while stack:
            item = stack.pop()
            if isinstance(item, Mapping):
                node_id = _node_id(item)
                if node_id is not None and node_id not in locations:
                    location = parse_location(item.get("location"))
                    if location is not None:
                        locations[node_id] = location
                children = item.values()
            elif isinstance(item, list):
                children = item
            else:
                continue
            stack.extend(reversed([child for child in children if isinstance(child, (Mapping, list))]))
        return cls(locations)

    def __getitem__(self, node_id: NodeId) -> SourceRange:
        return self._locations[node_id]

    def __iter__(self) -> Iterator[NodeId]:
        return iter(self._locations)

    def __len__(self) -> int:
        return len(self._locations)

    def __repr__(self) -> str:
        return f"LocationIndex({len(self._locations)} locations)"


__all__ = ["LocationIndex", "parse_location"]
