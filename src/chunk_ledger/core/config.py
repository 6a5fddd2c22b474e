"""Configuration management.

Loads from parameter-grammar config files + environment variables.
Uses pydantic-settings for validation and env var overriding.

A config file uses the same ``field=value;`` grammar as chunk files, with
bracketed sections for nested settings::

    data_dir=ledger;
    chunk={capacity=250;digest_algorithm=sha256;};
    bus={poll_interval=0.05;halt_timeout=5;};
    observability={log_level=DEBUG;log_format=console;};
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings

from .errors import ConfigError, ParseError
from .grammar import KEY_SEP, OPEN, decode_list, extract_bracket_section
from .params import ParameterMap


# ---------------------------------------------------------------------------
# Sub-configs
# ---------------------------------------------------------------------------

class ChunkConfig(BaseModel):
    capacity: int = 100  # Max entries per chunk before it seals
    digest_algorithm: str = "sha256"
    file_extension: str = ".chunk"

    @field_validator("capacity")
    @classmethod
    def _positive_capacity(cls, v: int) -> int:
        if v < 1:
            raise ValueError("capacity must be at least 1")
        return v


class BusConfig(BaseModel):
    poll_interval: float = 0.05  # seconds the dispatch thread waits per wake
    halt_timeout: float = 5.0  # seconds to drain on shutdown


class ObservabilityConfig(BaseModel):
    log_level: str = "INFO"
    log_format: str = "json"  # "json" or "console"


# ---------------------------------------------------------------------------
# Top-level settings
# ---------------------------------------------------------------------------

class LedgerSettings(BaseSettings):
    """Top-level ledger settings.

    Loaded from a parameter-grammar file, overridden by environment
    variables (``LEDGER_DATA_DIR``, ``LEDGER_CHUNK__CAPACITY``, ...).
    """

    data_dir: str = "ledger"
    manifest_name: str = "manifest.params"

    chunk: ChunkConfig = Field(default_factory=ChunkConfig)
    bus: BusConfig = Field(default_factory=BusConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    model_config = {"env_prefix": "LEDGER_", "env_nested_delimiter": "__"}

    @property
    def manifest_path(self) -> Path:
        return Path(self.data_dir) / self.manifest_name


def params_to_dict(params: ParameterMap) -> dict[str, Any]:
    """Expand bracketed sections into nested dicts / lists."""
    data: dict[str, Any] = {}
    for key, value in params.items():
        stripped = value.strip()
        if stripped.startswith(OPEN):
            inner = extract_bracket_section(stripped)
            if KEY_SEP in inner:
                data[key] = params_to_dict(ParameterMap.decode(inner))
            else:
                data[key] = decode_list(stripped)
        else:
            data[key] = stripped
    return data


def load_settings(
    config_path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> LedgerSettings:
    """Load settings from a parameter-grammar file + env vars.

    Args:
        config_path: Path to the config file (optional, ignored if absent).
        overrides: Dict of overrides to apply on top.
    """
    data: dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        if path.exists():
            text = path.read_text(encoding="utf-8")
            try:
                data = params_to_dict(ParameterMap.decode(text))
            except ParseError as exc:
                raise ConfigError(f"Malformed config file {path}: {exc}") from exc

    if overrides:
        data.update(overrides)

    try:
        return LedgerSettings(**data)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc
