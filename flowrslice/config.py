"""Configuration models for flowrslice."""

from __future__ import annotations

from pathlib import Path
from typing import List, Literal

import yaml
from pydantic import BaseModel, Field, model_validator

CONFIG_FILENAME = "flowrslice.yaml"


class EngineConfig(BaseModel):
    host: str = "localhost"
    port: int = Field(default=1042, ge=1, le=65535)
    command: List[str] = Field(default_factory=list)
    connect_timeout_ms: int = Field(default=5_000, gt=0)


class SliceConfig(BaseModel):
    backend: Literal["socket", "process"] = "socket"
    policy: Literal["gaps", "lines"] = "gaps"
    request_timeout_ms: int | None = Field(default=12_000, gt=0)
    max_in_flight: int = Field(default=1, ge=1)
    log_level: str = "INFO"
    trace_wire: bool = False
    engine: EngineConfig = Field(default_factory=EngineConfig)

    @model_validator(mode="after")
    def _require_engine_command(self) -> "SliceConfig":
        if self.backend == "process" and not self.engine.command:
            raise ValueError("backend 'process' needs engine.command (or --command) to start a local engine")
        return self

    @property
    def request_timeout(self) -> float | None:
        if self.request_timeout_ms is None:
            return None
        return self.request_timeout_ms / 1000

    @property
    def connect_timeout(self) -> float:
        return self.engine.connect_timeout_ms / 1000


def load_yaml_config(path: Path) -> dict[str, object]:
    """Read a YAML config file, returning an empty mapping when it is absent.

    Raises ``ValueError`` when the file exists but does not hold a mapping.
    """
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path.name} must contain a mapping")
    return data


def merge_config(file_overrides: dict[str, object], cli_options: dict[str, object]) -> SliceConfig:
    """Layer CLI options over file values. ``None`` options do not override."""
    merged: dict[str, object] = dict(file_overrides)
    engine: dict[str, object] = dict(merged.get("engine") or {})  # type: ignore[arg-type]
    for key, value in cli_options.items():
        if value is None:
            continue
        if key in EngineConfig.model_fields:
            engine[key] = value
        else:
            merged[key] = value
    merged["engine"] = engine
    return SliceConfig(**merged)


__all__ = ["CONFIG_FILENAME", "EngineConfig", "SliceConfig", "load_yaml_config", "merge_config"]
