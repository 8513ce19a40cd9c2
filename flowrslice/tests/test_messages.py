"""Tests for the wire codec and coordinate conversions."""

from __future__ import annotations

import orjson
import pytest

from flowrslice.errors import EngineError, ProtocolDecodeError
from flowrslice.protocol.messages import (
    FileAnalysisRequest,
    Position,
    Range,
    SliceRequest,
    SourcePosition,
    SourceRange,
    criterion_for,
    decode_message,
    encode_message,
    engine_error,
    parse_analysis_response,
    parse_slice_response,
)


def test_engine_origin_maps_to_editor_origin() -> None:
    assert SourcePosition(line=1, column=1).to_editor() == Position(line=0, character=0)
    assert Position(line=0, character=0).to_engine() == SourcePosition(line=1, column=1)


def test_inclusive_engine_end_becomes_exclusive_editor_end() -> None:
    location = SourceRange(SourcePosition(3, 1), SourcePosition(3, 5))
    assert location.editor_start() == Position(2, 0)
    assert location.editor_end() == Position(2, 5)


def test_criterion_is_one_based() -> None:
    assert criterion_for(Position(line=2, character=0)) == "3:1"


def test_range_emptiness() -> None:
    assert Range(Position(1, 4), Position(1, 4)).is_empty
    assert not Range(Position(1, 4), Position(2, 0)).is_empty


def test_file_analysis_request_wire_shape() -> None:
    request = FileAnalysisRequest(id="0", filename="a.R", filetoken="@tmp", content="x <- 1")
    line = encode_message(request.to_payload())
    assert line.endswith(b"\n") and line.count(b"\n") == 1
    assert orjson.loads(line) == {
        "type": "request-file-analysis",
        "id": "0",
        "filename": "a.R",
        "format": "json",
        "filetoken": "@tmp",
        "content": "x <- 1",
    }


def test_slice_request_wire_shape() -> None:
    request = SliceRequest(id="1", filetoken="@tmp", criterion=["3:1"])
    assert orjson.loads(encode_message(request.to_payload())) == {
        "type": "request-slice",
        "id": "1",
        "filetoken": "@tmp",
        "criterion": ["3:1"],
    }


def test_content_newlines_stay_escaped_on_the_wire() -> None:
    request = FileAnalysisRequest(id="0", filename="a.R", filetoken="t", content="a\nb\n")
    assert encode_message(request.to_payload()).count(b"\n") == 1


def test_decode_rejects_invalid_json() -> None:
    with pytest.raises(ProtocolDecodeError) as info:
        decode_message("{oops")
    assert info.value.raw == "{oops"


def test_decode_rejects_non_objects() -> None:
    with pytest.raises(ProtocolDecodeError):
        decode_message("[1, 2]")


def test_parse_analysis_response_returns_ast() -> None:
    ast = {"info": {"id": 0}}
    assert parse_analysis_response({"results": {"normalize": {"ast": ast}}}) is ast


@pytest.mark.parametrize(
    "message",
    [
        {},
        {"results": []},
        {"results": {"slice": {"result": []}}},
        {"results": {"normalize": {}}},
    ],
)
def test_parse_analysis_response_rejects_other_shapes(message: dict[str, object]) -> None:
    with pytest.raises(ProtocolDecodeError):
        parse_analysis_response(message)


def test_parse_slice_response_returns_id_set() -> None:
    retained = parse_slice_response({"results": {"slice": {"result": [3, "x-1", 3]}}})
    assert retained == frozenset({3, "x-1"})


def test_parse_slice_response_rejects_bad_ids() -> None:
    with pytest.raises(ProtocolDecodeError):
        parse_slice_response({"results": {"slice": {"result": [{"id": 1}]}}})
    with pytest.raises(ProtocolDecodeError):
        parse_slice_response({"results": {"slice": {"result": "1"}}})


def test_engine_error_translation() -> None:
    error = engine_error({"type": "error", "id": 4, "fatal": True, "reason": "unknown filetoken"})
    assert isinstance(error, EngineError)
    assert error.fatal and error.request_id == "4" and error.reason == "unknown filetoken"
    assert engine_error({"type": "response-slice", "id": "4"}) is None
