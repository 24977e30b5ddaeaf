"""Exception hierarchy used throughout the framework."""

from __future__ import annotations


class EverestError(Exception):
    """Base class of all framework errors."""


class BootException(EverestError):
    """Raised when the runtime environment cannot be set up."""


class EverestApiError(EverestError):
    """Raised when a module uses the framework API in a way its manifest forbids."""


class EverestTimeoutError(EverestError, TimeoutError):
    """Raised when an expected answer does not arrive in time."""


class EverestInternalError(EverestError):
    """Raised on conditions that indicate a bug or a broken connection."""


class FormatError(EverestError, ValueError):
    """Raised when a value cannot be formatted."""


def throw_format_error(message: str) -> None:
    """Raise a :class:`FormatError` carrying ``message``."""
    raise FormatError(message)