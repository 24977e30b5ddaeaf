"""Topic-based messaging over an MQTT broker with typed handlers."""

from __future__ import annotations

import enum
import json
import logging
import socket
import threading
import time
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

import paho.mqtt.client as mqtt_client

from evbus.errors import EverestInternalError, EverestTimeoutError
from evbus.message_queue import (
    HandlerType,
    Message,
    MessageHandler,
    MessageQueue,
    ParsedMessage,
    TypedHandler,
)
from evbus.mqtt_settings import MQTTSettings
from evbus.topics import check_topic_matches

log = logging.getLogger(__name__)

MQTT_KEEP_ALIVE = 600
MQTT_GET_TIMEOUT = 5.0
CONNECT_TIMEOUT = 5.0
_MAX_SOCKET_PATH = 107


class QOS(enum.IntEnum):
    """MQTT quality of service levels."""

    QOS0 = 0
    QOS1 = 1
    QOS2 = 2


@dataclass(frozen=True)
class _PendingMessage:
    topic: str
    payload: Union[str, bytes]
    qos: QOS
    retain: bool


def _dump(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def _create_client(settings: MQTTSettings) -> Any:
    transport = "unix" if settings.uses_socket() else "tcp"
    api_version = getattr(mqtt_client, "CallbackAPIVersion", None)
    if api_version is not None:
        return mqtt_client.Client(api_version.VERSION2, transport=transport)
    return mqtt_client.Client(transport=transport)


class MQTTAbstraction:
    """Connection to the broker that routes incoming messages to typed handlers per topic.

    Messages published before the connection is up are held back and sent once
    it is established.
    """

    def __init__(self, settings: MQTTSettings) -> None:
        self._settings = settings
        self._connected = False
        self._connect_failed = False
        self._disconnect_requested = False
        self._lost_connection: Optional[EverestInternalError] = None
        self._handlers_lock = threading.RLock()
        self._message_handlers: Dict[str, MessageHandler] = {}
        self._pending_lock = threading.RLock()
        self._pending: List[_PendingMessage] = []
        self._main_loop_future: Optional[Future] = None
        self._message_queue = MessageQueue(self.on_mqtt_message)

        self._client = _create_client(settings)
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message

    @property
    def everest_prefix(self) -> str:
        return self._settings.everest_prefix

    @property
    def external_prefix(self) -> str:
        return self._settings.external_prefix

    @property
    def connected(self) -> bool:
        return self._connected

    # connection handling

    def connect(self) -> bool:
        """Connect to the broker; return whether the connection was established."""
        if self._connected:
            return True
        self._disconnect_requested = False
        self._connect_failed = False
        self._lost_connection = None

        try:
            if self._settings.uses_socket():
                path = self._settings.broker_socket_path
                if len(path.encode()) > _MAX_SOCKET_PATH:
                    log.error("the given path for the unix domain socket: %s is too big", path)
                    return False
                log.debug("Connecting to MQTT broker: %s", path)
                self._client.connect(path, keepalive=MQTT_KEEP_ALIVE)
            else:
                host = self._settings.broker_host
                port = self._settings.broker_port
                log.debug("Connecting to MQTT broker: %s:%s", host, port)
                self._client.connect(host, port, keepalive=MQTT_KEEP_ALIVE)
                self._set_no_delay()
        except (OSError, ValueError) as exc:
            log.error("Failed to open socket: %s", exc)
            return False

        deadline = time.monotonic() + CONNECT_TIMEOUT
        while not self._connected and not self._connect_failed and time.monotonic() < deadline:
            rc = self._client.loop(timeout=0.1)
            if rc != mqtt_client.MQTT_ERR_SUCCESS:
                log.error("Error during MQTT sync: %s", mqtt_client.error_string(rc))
                return False
        return self._connected

    def _set_no_delay(self) -> None:
        try:
            sock = self._client.socket()
            if sock is not None:
                sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        except (OSError, AttributeError):
            log.debug("could not set TCP_NODELAY on the broker connection")

    def disconnect(self) -> None:
        """Close the connection to the broker."""
        self._disconnect_requested = True
        self._client.disconnect()
        self._connected = False

    def _on_connect(self, client: Any, userdata: Any, flags: Any, reason_code: Any, *_: Any) -> None:
        failed = getattr(reason_code, "is_failure", reason_code != 0)
        if failed:
            log.error("MQTT broker refused the connection: %s", reason_code)
            self._connect_failed = True
            return
        self._on_mqtt_connect()

    def _on_mqtt_connect(self) -> None:
        log.debug("Connected to MQTT broker")
        with self._handlers_lock:
            for topic in self._message_handlers:
                log.debug("Subscribing to %s", topic)
                self.subscribe(topic)
        with self._pending_lock:
            self._connected = True
            pending, self._pending = self._pending, []
            for message in pending:
                self.publish(message.topic, message.payload, message.qos, message.retain)

    def _on_disconnect(self, client: Any, userdata: Any, *_: Any) -> None:
        if self._disconnect_requested:
            return
        log.error("Lost connection to MQTT broker")
        self._connected = False
        self._lost_connection = EverestInternalError("Lost connection to MQTT broker")
        self._disconnect_requested = True
        client.disconnect()

    def _on_message(self, client: Any, userdata: Any, msg: Any) -> None:
        payload = msg.payload
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8", errors="replace")
        self._message_queue.add(Message(msg.topic, payload))

    # publishing and subscribing

    def publish(
        self,
        topic: str,
        data: Any,
        qos: Optional[QOS] = None,
        retain: bool = False,
    ) -> None:
        """Publish ``data`` to ``topic``.

        Strings and bytes are sent as they are (default QoS 0); any other value
        is sent as compact JSON (default QoS 2).
        """
        if isinstance(data, (str, bytes)):
            payload: Union[str, bytes] = data
            default_qos = QOS.QOS0
        else:
            payload = _dump(data)
            default_qos = QOS.QOS2
        qos = default_qos if qos is None else QOS(qos)

        with self._pending_lock:
            if not self._connected:
                self._pending.append(_PendingMessage(topic, payload, qos, retain))
                return

        info = self._client.publish(topic, payload, qos=int(qos), retain=retain)
        rc = getattr(info, "rc", mqtt_client.MQTT_ERR_SUCCESS)
        if rc != mqtt_client.MQTT_ERR_SUCCESS:
            log.error("MQTT Error %s", mqtt_client.error_string(rc))
        log.debug("publishing to %s", topic)

    def subscribe(self, topic: str, qos: QOS = QOS.QOS2) -> None:
        """Subscribe to ``topic`` with ``qos`` as the highest accepted level."""
        self._client.subscribe(topic, qos=int(qos))

    def unsubscribe(self, topic: str) -> None:
        """Unsubscribe from ``topic``."""
        self._client.unsubscribe(topic)

    def get(self, topic: str, qos: QOS = QOS.QOS2, timeout: float = MQTT_GET_TIMEOUT) -> Any:
        """Wait for the next message on ``topic`` and return its data."""
        result: Future = Future()

        def on_result(_topic: str, data: Any) -> None:
            if not result.done():
                result.set_result(data)

        token = TypedHandler(HandlerType.GET_CONFIG, on_result)
        self.register_handler(topic, token, qos)
        try:
            return result.result(timeout=timeout)
        except FutureTimeout:
            raise EverestTimeoutError("Timeout while waiting for result of get()") from None
        finally:
            self.unregister_handler(topic, token)

    # handler registry

    def register_handler(self, topic: str, handler: TypedHandler, qos: QOS = QOS.QOS2) -> None:
        """Route messages on ``topic`` to ``handler``, subscribing when needed."""
        log.debug("Registering %s handler '%s' on topic %s", handler.type.value, handler.name, topic)
        with self._handlers_lock:
            message_handler = self._message_handlers.get(topic)
            if message_handler is None:
                message_handler = MessageHandler()
                self._message_handlers[topic] = message_handler
            message_handler.add_handler(handler)
            count = message_handler.count_handlers()
            if self._connected and count == 1:
                log.debug("Subscribing to %s", topic)
                self.subscribe(topic, qos)
        log.debug("#handler[%s] = %d", topic, count)

    def unregister_handler(self, topic: str, handler: TypedHandler) -> None:
        """Stop routing messages on ``topic`` to ``handler``; unsubscribe after the last one."""
        with self._handlers_lock:
            remaining = 0
            message_handler = self._message_handlers.get(topic)
            if message_handler is not None and message_handler.count_handlers():
                try:
                    message_handler.remove_handler(handler)
                except KeyError:
                    log.warning("handler for %s was not registered", topic)
                remaining = message_handler.count_handlers()
            if remaining == 0 and self._connected:
                log.debug("Unsubscribing from %s", topic)
                self.unsubscribe(topic)
        log.debug("#handler[%s] = %s", topic, remaining or "None")

    def on_mqtt_message(self, message: Message) -> None:
        """Decode ``message`` and pass it to every handler whose topic matches.

        Raises :class:`EverestInternalError` when no handler matches the topic.
        """
        topic = message.topic
        payload = message.payload
        is_everest_topic = topic.startswith(self._settings.everest_prefix)
        if is_everest_topic:
            try:
                data = json.loads(payload)
            except ValueError:
                log.warning("Could not decode json for incoming topic '%s': %s", topic, payload)
                return
        else:
            log.debug("Message parsing for topic '%s' not implemented. Wrapping in json object.", topic)
            data = payload

        found = False
        parsed: Optional[ParsedMessage] = None
        with self._handlers_lock:
            for handler_topic, message_handler in self._message_handlers.items():
                if is_everest_topic:
                    matches = topic == handler_topic
                else:
                    matches = check_topic_matches(topic, handler_topic)
                if matches:
                    found = True
                    if parsed is None:
                        parsed = ParsedMessage(topic, data)
                    message_handler.add(parsed)

        if not found:
            raise EverestInternalError(f"Internal error: topic '{topic}' should have a matching handler!")

    # main loop

    def spawn_main_loop_thread(self) -> Future:
        """Run the network loop in a background thread; the returned future completes when it ends."""
        future: Future = Future()

        def run() -> None:
            try:
                if self._connected:
                    self._client.loop_forever()
                if self._lost_connection is not None:
                    raise self._lost_connection
            except BaseException as exc:  # handed to whoever waits on the future
                future.set_exception(exc)
            else:
                future.set_result(None)

        self._main_loop_future = future
        threading.Thread(target=run, name="mqtt-main-loop", daemon=True).start()
        return future

    def get_main_loop_future(self) -> Optional[Future]:
        """Return the future of the running main loop, if one was spawned."""
        return self._main_loop_future

    def close(self) -> None:
        """Disconnect and stop all worker threads."""
        if self._connected:
            self.disconnect()
        self._message_queue.close()
        with self._handlers_lock:
            handlers = list(self._message_handlers.values())
        for message_handler in handlers:
            message_handler.close()

    def __enter__(self) -> "MQTTAbstraction":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()