"""Logging utilities.

Engine traffic is logged under the ``flowrslice.protocol`` namespace at DEBUG.
``configure_logging`` gives that namespace its own level so request and
response bodies can be traced without raising the verbosity of everything
else.
"""

from __future__ import annotations

import logging
from typing import Iterable

from rich.console import Console
from rich.logging import RichHandler

WIRE_LOGGER = "flowrslice.protocol"


def configure_logging(level: str = "INFO", *, trace_wire: bool = False, rich_tracebacks: bool = True) -> None:
    """Configure root logger for the CLI."""
    console = Console(stderr=True)
    handler = RichHandler(console=console, rich_tracebacks=rich_tracebacks, markup=False, show_path=False)
    logging.basicConfig(level=level.upper(), handlers=[handler], force=True)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger(WIRE_LOGGER).setLevel(logging.DEBUG if trace_wire else logging.NOTSET)


def get_logger(name: str, *extra_names: Iterable[str]) -> logging.Logger:
    """Return a namespaced logger."""
    namespace = ".".join([name, *extra_names]) if extra_names else name
    return logging.getLogger(namespace)


def preview(text: str, limit: int = 200) -> str:
    """Shorten a wire message for log output."""
    if len(text) <= limit:
        return text
    return f"{text[:limit]}... ({len(text)} chars)"


__all__ = ["WIRE_LOGGER", "configure_logging", "get_logger", "preview"]
