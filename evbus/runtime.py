"""Runtime settings shared between the manager and the modules it starts."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict


def _string(data: Mapping[str, Any], key: str) -> str:
    value = data[key]
    if not isinstance(value, str):
        raise TypeError(f"'{key}' must be a string, got {type(value).__name__}")
    return value


def _boolean(data: Mapping[str, Any], key: str) -> bool:
    value = data[key]
    if not isinstance(value, bool):
        raise TypeError(f"'{key}' must be a boolean, got {type(value).__name__}")
    return value


@dataclass
class RuntimeSettings:
    """Directories and switches every module needs at run time."""

    prefix: Path
    etc_dir: Path
    data_dir: Path
    modules_dir: Path
    logging_config_file: Path = Path()
    telemetry_prefix: str = ""
    telemetry_enabled: bool = False
    validate_schema: bool = False

    def __post_init__(self) -> None:
        self.prefix = Path(self.prefix)
        self.etc_dir = Path(self.etc_dir)
        self.data_dir = Path(self.data_dir)
        self.modules_dir = Path(self.modules_dir)
        self.logging_config_file = Path(self.logging_config_file)

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "RuntimeSettings":
        """Build settings from their JSON form.

        Raises :class:`KeyError` for a missing entry and :class:`TypeError`
        for an entry of the wrong type. The logging config file is not part
        of the JSON form and is left empty.
        """
        return cls(
            prefix=Path(_string(data, "prefix")),
            etc_dir=Path(_string(data, "etc_dir")),
            data_dir=Path(_string(data, "data_dir")),
            modules_dir=Path(_string(data, "modules_dir")),
            telemetry_prefix=_string(data, "telemetry_prefix"),
            telemetry_enabled=_boolean(data, "telemetry_enabled"),
            validate_schema=_boolean(data, "validate_schema"),
        )

    def to_json(self) -> Dict[str, Any]:
        """Return the JSON form of these settings."""
        return {
            "prefix": str(self.prefix),
            "etc_dir": str(self.etc_dir),
            "data_dir": str(self.data_dir),
            "modules_dir": str(self.modules_dir),
            "telemetry_prefix": self.telemetry_prefix,
            "telemetry_enabled": self.telemetry_enabled,
            "validate_schema": self.validate_schema,
        }


def parse_string_option(options: Mapping[str, Any], option: str) -> str:
    """Return the string given for ``option``, or an empty string when it was not given."""
    value = options.get(option)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise TypeError(f"option '{option}' must be a string, got {type(value).__name__}")
    return value