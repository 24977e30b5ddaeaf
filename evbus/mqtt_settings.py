"""Connection settings for the MQTT broker."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class MQTTSettings:
    """Where the broker lives and which topic prefixes are used."""

    broker_socket_path: str = ""
    broker_host: str = ""
    broker_port: int = 0
    everest_prefix: str = ""
    external_prefix: str = ""

    def uses_socket(self) -> bool:
        """Tell whether the broker is reached over a Unix domain socket."""
        return bool(self.broker_socket_path)


def create_socket_settings(
    broker_socket_path: str, everest_prefix: str, external_prefix: str
) -> MQTTSettings:
    """Build settings for a broker reached over a Unix domain socket."""
    return MQTTSettings(
        broker_socket_path=broker_socket_path,
        everest_prefix=everest_prefix,
        external_prefix=external_prefix,
    )


def create_host_settings(
    broker_host: str, broker_port: int, everest_prefix: str, external_prefix: str
) -> MQTTSettings:
    """Build settings for a broker reached over TCP."""
    return MQTTSettings(
        broker_host=broker_host,
        broker_port=broker_port,
        everest_prefix=everest_prefix,
        external_prefix=external_prefix,
    )