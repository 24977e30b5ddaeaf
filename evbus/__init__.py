"""Module runtime support over an MQTT message bus: topic routing, typed handler dispatch, settings and small helpers."""

__version__ = "0.1.0"