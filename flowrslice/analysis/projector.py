"""Project a slice onto the document as the ranges that are *not* part of it."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterable, Mapping

from ..protocol.messages import NodeId, Position, Range, SourceRange


class ProjectionPolicy(str, enum.Enum):
    """How irrelevant code is marked.

    ``GAPS`` marks the exact spans between retained locations. ``LINES`` marks
    every whole line on which no retained location starts.
    """

    GAPS = "gaps"
    LINES = "lines"


@dataclass(slots=True, frozen=True)
class TextDocument:
    """Line layout of a document: one length per line, line breaks excluded."""

    line_lengths: tuple[int, ...]

    @classmethod
    def from_text(cls, text: str, line_count: int | None = None) -> "TextDocument":
        lengths = [len(line[:-1] if line.endswith("\r") else line) for line in text.split("\n")]
        if line_count is not None:
            if line_count < 1:
                raise ValueError("a document has at least one line")
            lengths = lengths[:line_count] + [0] * (line_count - len(lengths))
        return cls(tuple(lengths))

    @property
    def line_count(self) -> int:
        return len(self.line_lengths)

    def line_length(self, line: int) -> int:
        return self.line_lengths[line]

    @property
    def end(self) -> Position:
        """Position one past the last character of the last line."""
        return Position(line=self.line_count - 1, character=self.line_lengths[-1])


def resolve_locations(retained_ids: Iterable[NodeId], index: Mapping[NodeId, SourceRange]) -> list[SourceRange]:
    """Sorted, de-duplicated locations of the retained ids known to ``index``."""
    locations = {index[node_id] for node_id in retained_ids if node_id in index}
    return sorted(locations, key=lambda location: (location.start, location.end))


def project_lines(locations: Iterable[SourceRange], document: TextDocument) -> list[Range]:
    kept = {location.start.line - 1 for location in locations}
    return [
        Range(Position(line, 0), Position(line, document.line_length(line)))
        for line in range(document.line_count)
        if line not in kept
    ]


def project_gaps(locations: Iterable[SourceRange], document: TextDocument) -> list[Range]:
    ranges: list[Range] = []
    cursor = Position(0, 0)
    end = document.end
    for location in locations:
        # Locations past a truncated document are clamped to its end.
        start = min(location.editor_start(), end)
        if cursor < start:
            ranges.append(Range(cursor, start))
        # Nested locations end before their parent; the cursor never moves back.
        cursor = max(cursor, min(location.editor_end(), end))
    if cursor < end:
        ranges.append(Range(cursor, end))
    return ranges


def project(
    retained_ids: Iterable[NodeId],
    index: Mapping[NodeId, SourceRange],
    document: TextDocument,
    policy: ProjectionPolicy = ProjectionPolicy.GAPS,
) -> list[Range]:
    """Return the ordered, non-overlapping irrelevant ranges in editor coordinates."""
    locations = resolve_locations(retained_ids, index)
    if ProjectionPolicy(policy) is ProjectionPolicy.LINES:
        return project_lines(locations, document)
    return project_gaps(locations, document)


__all__ = [
    "ProjectionPolicy",
    "TextDocument",
    "project",
    "project_gaps",
    "project_lines",
    "resolve_locations",
]
