"""Resolution of broker connection options given on the command line and in the environment."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from typing import Optional

from evbus.errors import BootException
from evbus.mqtt_settings import MQTTSettings, create_host_settings, create_socket_settings

log = logging.getLogger(__name__)

DEFAULT_MQTT_BROKER_HOST = "localhost"
DEFAULT_MQTT_BROKER_PORT = 1883
DEFAULT_MQTT_EVEREST_PREFIX = "everest/"
DEFAULT_MQTT_EXTERNAL_PREFIX = ""

ENV_SERVER_ADDRESS = "MQTT_SERVER_ADDRESS"
ENV_SERVER_PORT = "MQTT_SERVER_PORT"

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")
_INT_MIN = -(2**31)
_INT_MAX = 2**31 - 1


def normalize_prefix(prefix: str) -> str:
    """Return ``prefix`` ending in ``/``; an empty prefix stays empty."""
    if prefix and not prefix.endswith("/"):
        return prefix + "/"
    return prefix


def _parse_port(text: str) -> Optional[int]:
    """Read the leading integer of ``text`` the way a C string-to-int conversion does."""
    match = _LEADING_INT.match(text)
    if match is None:
        return None
    value = int(match.group(1))
    if not _INT_MIN <= value <= _INT_MAX:
        return None
    return value


def resolve_mqtt_settings(
    socket_path: Optional[str] = None,
    host: Optional[str] = None,
    port: Optional[int] = None,
    everest_prefix: Optional[str] = None,
    external_prefix: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> MQTTSettings:
    """Combine the given broker options with the environment into connection settings.

    Options left as ``None`` take their defaults. ``MQTT_SERVER_ADDRESS`` and
    ``MQTT_SERVER_PORT`` in ``environ`` (``os.environ`` when not given) override
    host and port. Raises :class:`BootException` when a socket path is combined
    with a host.
    """
    if environ is None:
        environ = os.environ
    socket_path = socket_path or ""

    if host is not None:
        if socket_path:
            raise BootException(
                f"Setting both the Unix Domain Socket {socket_path} and Internet Domain "
                f"Socket {host} in config is invalid"
            )
        broker_host = host
    else:
        broker_host = DEFAULT_MQTT_BROKER_HOST

    env_address = environ.get(ENV_SERVER_ADDRESS)
    if env_address is not None:
        broker_host = env_address
        if socket_path:
            raise BootException(
                f"Setting both the Unix Domain Socket {socket_path} and Internet Domain "
                f"Socket {broker_host} in config and as environment variable respectivelly "
                f"(as {ENV_SERVER_ADDRESS}) is not allowed"
            )

    broker_port = DEFAULT_MQTT_BROKER_PORT if port is None else port

    env_port = environ.get(ENV_SERVER_PORT)
    if env_port is not None:
        parsed = _parse_port(env_port)
        if parsed is None:
            log.warning(
                "Environment variable %s set, but not set to an integer. Ignoring.", ENV_SERVER_PORT
            )
        else:
            broker_port = parsed

    everest = normalize_prefix(
        DEFAULT_MQTT_EVEREST_PREFIX if everest_prefix is None else everest_prefix
    )
    external = DEFAULT_MQTT_EXTERNAL_PREFIX if external_prefix is None else external_prefix

    if socket_path:
        return create_socket_settings(socket_path, everest, external)
    return create_host_settings(broker_host, broker_port, everest, external)