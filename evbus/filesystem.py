"""Path checks used while locating configuration and data directories."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from evbus.errors import BootException


def assert_dir(path: str | os.PathLike, path_alias: str) -> Path:
    """Return the canonical form of ``path``, which must be an existing directory."""
    fs_path = Path(path)
    if not fs_path.exists():
        raise BootException(f"{path_alias} path '{os.fspath(path)}' does not exist")
    fs_path = fs_path.resolve(strict=True)
    if not fs_path.is_dir():
        raise BootException(f"{path_alias} path '{os.fspath(path)}' is not a directory")
    return fs_path


def assert_file(path: str | os.PathLike, file_alias: str) -> Path:
    """Return the canonical form of ``path``, which must be an existing regular file."""
    fs_file = Path(path)
    if not fs_file.exists():
        raise BootException(f"{file_alias} file '{os.fspath(path)}' does not exist")
    fs_file = fs_file.resolve(strict=True)
    if not fs_file.is_file():
        raise BootException(f"{file_alias} file '{os.fspath(path)}' is not a regular file")
    return fs_file


def _extension(path: str | os.PathLike) -> str:
    name = Path(path).name
    if name in ("", ".", ".."):
        return ""
    dot = name.rfind(".")
    if dot <= 0:
        return ""
    return name[dot:]


def has_extension(path: str | os.PathLike, ext: str) -> bool:
    """Tell whether ``path`` ends in extension ``ext`` (compared case-insensitively)."""
    return _extension(path).lower() == ext


def get_prefixed_path_from_json(value: Any, prefix: str | os.PathLike) -> str:
    """Return the path held in ``value``, placed under ``prefix`` when it is relative."""
    if not isinstance(value, str):
        raise TypeError(f"expected a string path, got {type(value).__name__}")
    if not Path(value).is_absolute():
        return str(Path(prefix) / value)
    return value