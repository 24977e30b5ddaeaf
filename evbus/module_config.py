"""Fetching a module's configuration from the manager over MQTT."""

from __future__ import annotations

import logging
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Dict

from evbus.errors import EverestInternalError, EverestTimeoutError
from evbus.message_queue import HandlerType, TypedHandler
from evbus.mqtt import QOS, MQTTAbstraction

log = logging.getLogger(__name__)

MQTT_GET_CONFIG_TIMEOUT = 5.0

_PLAIN_ENTRIES = (
    ("module_provides", "module_provides"),
    ("settings", "settings"),
    ("schemas", "schemas"),
    ("manifests", "manifests"),
    ("error_types_map", "error_map"),
    ("module_config_cache", "module_config_cache"),
)


def _request_config(mqtt: MQTTAbstraction, module_id: str, timeout: float) -> Any:
    prefix = mqtt.everest_prefix
    get_config_topic = f"{prefix}modules/{module_id}/get_config"
    config_topic = f"{prefix}modules/{module_id}/config"
    response: Future = Future()

    def on_config(_topic: str, data: Any) -> None:
        log.debug("Incoming config for %s", module_id)
        if not response.done():
            response.set_result(data)

    token = TypedHandler(HandlerType.GET_CONFIG, on_config)
    mqtt.register_handler(config_topic, token, QOS.QOS2)
    try:
        mqtt.publish(get_config_topic, {"type": "full"}, QOS.QOS2)
        try:
            return response.result(timeout=timeout)
        except FutureTimeout:
            raise EverestTimeoutError(
                f"Timeout while waiting for result of get_config of {module_id}"
            ) from None
    finally:
        mqtt.unregister_handler(config_topic, token)


def get_module_config(
    mqtt: MQTTAbstraction, module_id: str, timeout: float = MQTT_GET_CONFIG_TIMEOUT
) -> Dict[str, Any]:
    """Ask the manager for the full configuration of ``module_id`` and collect the shared definitions."""
    result = _request_config(mqtt, module_id, timeout)
    if result is None:
        result = {}
    if not isinstance(result, dict):
        raise EverestInternalError(f"Configuration received for {module_id} is not an object")

    prefix = mqtt.everest_prefix

    interface_names = mqtt.get(f"{prefix}interfaces", QOS.QOS2) or []
    result["interface_definitions"] = {
        name: mqtt.get(f"{prefix}interface_definitions/{name}", QOS.QOS2) for name in interface_names
    }

    # type names already start with a '/'
    type_names = mqtt.get(f"{prefix}types", QOS.QOS2) or []
    result["types"] = {
        name: mqtt.get(f"{prefix}type_definitions{name}", QOS.QOS2) for name in type_names
    }

    for topic_name, key in _PLAIN_ENTRIES:
        result[key] = mqtt.get(f"{prefix}{topic_name}", QOS.QOS2)

    return result