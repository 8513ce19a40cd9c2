"""Command-line interface for flowrslice."""

from __future__ import annotations

import asyncio
import shlex
from pathlib import Path
from typing import Optional

import orjson
import typer
import yaml

from .analysis.projector import ProjectionPolicy
from .backends.engine import create_backend
from .config import CONFIG_FILENAME, SliceConfig, load_yaml_config, merge_config
from .errors import SliceClientError
from .logging import configure_logging, get_logger
from .protocol.messages import Position, Range
from .service import SliceService

app = typer.Typer(help="Mark the code that is irrelevant to a flowR slice.")
LOGGER = get_logger(__name__)


@app.callback()
def main() -> None:
    """flowrslice CLI root."""
    return None


def _load_config(config_path: Path, cli_options: dict[str, object]) -> SliceConfig:
    try:
        file_overrides = load_yaml_config(config_path)
    except yaml.YAMLError as error:  # pragma: no cover - yaml error path
        raise typer.BadParameter(f"Failed to parse {config_path}: {error}") from error
    except (ValueError, OSError) as error:
        raise typer.BadParameter(f"Failed to parse {config_path}: {error}") from error
    try:
        return merge_config(file_overrides, cli_options)
    except ValueError as error:
        raise typer.BadParameter(str(error)) from error


def _format_range(item: Range) -> str:
    return f"{item.start.line}:{item.start.character}-{item.end.line}:{item.end.character}"


async def _compute(config: SliceConfig, position: Position, text: str, filename: str) -> list[Range]:
    async with SliceService(config, backend_factory=create_backend) as service:
        return await service.compute_irrelevant_ranges(position, text, filename)


@app.command("slice")
def slice_file(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, file_okay=True, help="Source file to slice."),
    line: int = typer.Option(..., min=1, help="1-based line of the slicing criterion."),
    column: int = typer.Option(..., min=1, help="1-based column of the slicing criterion."),
    host: Optional[str] = typer.Option(None, help="flowR server host."),
    port: Optional[int] = typer.Option(None, help="flowR server port."),
    backend: Optional[str] = typer.Option(None, help="Engine backend: 'socket' or 'process'."),
    command: Optional[str] = typer.Option(None, help="Command line of a local engine for the process backend."),
    policy: Optional[ProjectionPolicy] = typer.Option(None, case_sensitive=False, help="Projection policy."),
    timeout_ms: Optional[int] = typer.Option(None, "--timeout-ms", min=1, help="Per-request timeout."),
    config: Path = typer.Option(Path(CONFIG_FILENAME), help="Optional YAML configuration file."),
    output_format: str = typer.Option("json", "--format", help="Output format: 'json' or 'text'."),
    log_level: Optional[str] = typer.Option(None, help="Log level."),
    trace_wire: bool = typer.Option(False, "--trace-wire", help="Log every message exchanged with the engine."),
) -> None:
    cli_options: dict[str, object] = {
        "host": host,
        "port": port,
        "backend": backend,
        "command": shlex.split(command) if command else None,
        "policy": policy.value if policy is not None else None,
        "request_timeout_ms": timeout_ms,
        "log_level": log_level,
        "trace_wire": True if trace_wire else None,
    }
    settings = _load_config(config, cli_options)
    configure_logging(settings.log_level, trace_wire=settings.trace_wire)
    if output_format not in {"json", "text"}:
        raise typer.BadParameter("--format must be 'json' or 'text'")

    text = file.read_text(encoding="utf-8")
    position = Position(line=line - 1, character=column - 1)
    try:
        ranges = asyncio.run(_compute(settings, position, text, str(file)))
    except SliceClientError as exc:
        LOGGER.error("Slicing failed: %s", exc)
        raise typer.Exit(code=1) from exc

    if output_format == "text":
        for item in ranges:
            typer.echo(_format_range(item))
        return
    typer.echo(orjson.dumps([item.to_dict() for item in ranges], option=orjson.OPT_INDENT_2).decode("utf-8"))


__all__ = ["app"]
