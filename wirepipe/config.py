"""Connection settings for pipeline sources and sinks."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any


class ConfigError(ValueError):
    """Raised when a source or sink configuration is missing or malformed."""


def _as_text(value: Any, what: str) -> str:
    """Coerce a scalar setting to text the way a weakly typed decoder would."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (str, int, float)):
        return str(value)
    raise ConfigError(f"{what} must be a scalar value, got {type(value).__name__}")


def _parse_fields(data: Mapping[str, Any]) -> dict[str, Any]:
    """Read name, type, config and key out of a configuration mapping."""
    if not isinstance(data, Mapping):
        raise ConfigError(
            f"configuration entry must be a mapping, got {type(data).__name__}"
        )
    raw_settings = data.get("config") or {}
    if not isinstance(raw_settings, Mapping):
        raise ConfigError("'config' must be a mapping of setting names to values")
    settings = {
        str(name): _as_text(value, f"config value {name!r}")
        for name, value in raw_settings.items()
    }
    return {
        "name": _as_text(data.get("name"), "name"),
        "connection_type": _as_text(data.get("type"), "type"),
        "config": settings,
        "key": _as_text(data.get("key"), "key"),
    }


@dataclass
class _EndpointConfig:
    name: str = ""
    connection_type: str = ""
    config: dict[str, str] = field(default_factory=dict)
    key: str = ""


class SourceConfig(_EndpointConfig):
    """Settings of one data source: its name, type, options and pipeline key."""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SourceConfig:
        """Build a source configuration from a mapping with name, type, config and key."""
        return cls(**_parse_fields(data))


class SinkConfig(_EndpointConfig):
    """Settings of one data sink: its name, type, options and pipeline key."""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SinkConfig:
        """Build a sink configuration from a mapping with name, type, config and key."""
        return cls(**_parse_fields(data))