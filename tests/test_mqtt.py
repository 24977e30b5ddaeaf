import json
import queue
import threading
import time
from unittest.mock import patch

import pytest

from evbus.errors import EverestInternalError, EverestTimeoutError
from evbus.message_queue import HandlerType, Message, TypedHandler
from evbus.mqtt import QOS, MQTTAbstraction
from evbus.mqtt_settings import create_host_settings, create_socket_settings


@pytest.fixture
def paho_client():
    with patch("paho.mqtt.client.Client") as client_cls:
        instance = client_cls.return_value
        instance.loop.return_value = 0
        instance.publish.return_value.rc = 0
        instance.subscribe.return_value = (0, 1)
        instance.loop_forever.return_value = 0

        def fake_connect(*args, **kwargs):
            instance.on_connect(instance, None, {}, 0)

        instance.connect.side_effect = fake_connect
        yield instance


@pytest.fixture
def settings():
    return create_host_settings("localhost", 1883, "everest/", "ext/")


@pytest.fixture
def mqtt(paho_client, settings):
    abstraction = MQTTAbstraction(settings)
    yield abstraction
    abstraction.close()


def _collector():
    received = queue.Queue()

    def handler(topic, data):
        received.put((topic, data))

    return received, handler


def test_publish_before_connect_is_sent_after_connect(mqtt, paho_client):
    mqtt.publish("everest/x", {"a": 1})
    paho_client.publish.assert_not_called()
    assert mqtt.connect() is True
    paho_client.publish.assert_called_once_with("everest/x", '{"a":1}', qos=2, retain=False)


def test_string_payload_defaults_to_qos0(mqtt, paho_client):
    assert mqtt.connect()
    mqtt.publish("ext/t", "hello")
    paho_client.publish.assert_called_once_with("ext/t", "hello", qos=0, retain=False)


def test_explicit_qos_and_retain(mqtt, paho_client):
    assert mqtt.connect()
    mqtt.publish("everest/r", True, QOS.QOS1, True)
    paho_client.publish.assert_called_once_with("everest/r", "true", qos=1, retain=True)


def test_connect_passes_host_port_and_keepalive(mqtt, paho_client):
    assert mqtt.connect()
    paho_client.connect.assert_called_once_with("localhost", 1883, keepalive=600)
    assert mqtt.connected is True


def test_connect_subscribes_previously_registered_topics(mqtt, paho_client):
    _, handler = _collector()
    mqtt.register_handler("everest/a", TypedHandler(HandlerType.EXTERNAL_MQTT, handler))
    paho_client.subscribe.assert_not_called()
    assert mqtt.connect()
    paho_client.subscribe.assert_called_once_with("everest/a", qos=2)


def test_register_after_connect_subscribes_once(mqtt, paho_client):
    assert mqtt.connect()
    _, handler = _collector()
    mqtt.register_handler("everest/b", TypedHandler(HandlerType.EXTERNAL_MQTT, handler), QOS.QOS1)
    mqtt.register_handler("everest/b", TypedHandler(HandlerType.EXTERNAL_MQTT, handler), QOS.QOS1)
    paho_client.subscribe.assert_called_once_with("everest/b", qos=1)


def test_unregister_last_handler_unsubscribes(mqtt, paho_client):
    assert mqtt.connect()
    _, handler = _collector()
    first = TypedHandler(HandlerType.EXTERNAL_MQTT, handler)
    second = TypedHandler(HandlerType.EXTERNAL_MQTT, handler)
    mqtt.register_handler("everest/c", first)
    mqtt.register_handler("everest/c", second)
    mqtt.unregister_handler("everest/c", first)
    paho_client.unsubscribe.assert_not_called()
    mqtt.unregister_handler("everest/c", second)
    paho_client.unsubscribe.assert_called_once_with("everest/c")


def test_connect_refused_returns_false(mqtt, paho_client):
    def refuse(*args, **kwargs):
        paho_client.on_connect(paho_client, None, {}, 5)

    paho_client.connect.side_effect = refuse
    assert mqtt.connect() is False
    assert mqtt.connected is False


def test_connect_socket_error_returns_false(mqtt, paho_client):
    paho_client.connect.side_effect = OSError("connection refused")
    assert mqtt.connect() is False


def test_socket_path_too_long_is_rejected(paho_client):
    long_settings = create_socket_settings("/tmp/" + "x" * 200, "everest/", "ext/")
    abstraction = MQTTAbstraction(long_settings)
    try:
        assert abstraction.connect() is False
        paho_client.connect.assert_not_called()
    finally:
        abstraction.close()


def test_everest_topic_payload_is_parsed_as_json(mqtt):
    received, handler = _collector()
    mqtt.register_handler("everest/a", TypedHandler(HandlerType.EXTERNAL_MQTT, handler))
    message = Message("everest/a", json.dumps({"k": [1, 2]}))
    mqtt.on_mqtt_message(message)
    topic, data = received.get(timeout=2)
    assert topic == message.topic
    assert data == {"k": [1, 2]}


def test_var_handler_receives_unpacked_data(mqtt):
    received, handler = _collector()
    mqtt.register_handler("everest/mod/var", TypedHandler(HandlerType.SUBSCRIBE_VAR, handler, name="power"))
    message = Message("everest/mod/var", json.dumps({"name": "power", "data": 42}))
    mqtt.on_mqtt_message(message)
    topic, data = received.get(timeout=2)
    assert topic == message.topic
    assert data == 42


def test_external_topic_matches_wildcard_and_keeps_raw_text(mqtt):
    received, handler = _collector()
    mqtt.register_handler("ext/#", TypedHandler(HandlerType.EXTERNAL_MQTT, handler))
    message = Message("ext/a/b", "raw text")
    mqtt.on_mqtt_message(message)
    topic, data = received.get(timeout=2)
    assert topic == "ext/a/b"
    assert data == message.payload


def test_invalid_json_on_everest_topic_is_dropped(mqtt):
    received, handler = _collector()
    mqtt.register_handler("everest/a", TypedHandler(HandlerType.EXTERNAL_MQTT, handler))
    broken = Message("everest/a", "{not json")
    valid = Message("everest/a", "1")
    mqtt.on_mqtt_message(broken)
    mqtt.on_mqtt_message(valid)
    topic, data = received.get(timeout=2)
    assert topic == valid.topic
    assert data == 1
    assert received.empty()


def test_message_without_handler_raises(mqtt):
    with pytest.raises(EverestInternalError):
        mqtt.on_mqtt_message(Message("everest/nobody", "1"))


def test_get_returns_delivered_value(mqtt):
    def feed():
        end = time.monotonic() + 5
        while time.monotonic() < end:
            try:
                mqtt.on_mqtt_message(Message("everest/settings", json.dumps({"x": 1})))
                return
            except EverestInternalError:
                time.sleep(0.005)

    feeder = threading.Thread(target=feed, daemon=True)
    feeder.start()
    assert mqtt.get("everest/settings", QOS.QOS2, 5.0) == {"x": 1}
    feeder.join(timeout=5)


def test_get_times_out(mqtt):
    with pytest.raises(EverestTimeoutError, match="Timeout while waiting for result of get"):
        mqtt.get("everest/silent", QOS.QOS2, 0.05)


def test_main_loop_future_completes(mqtt, paho_client):
    assert mqtt.connect()
    future = mqtt.spawn_main_loop_thread()
    assert future.result(timeout=2) is None
    assert mqtt.get_main_loop_future() is future
    paho_client.loop_forever.assert_called_once()


def test_lost_connection_fails_main_loop(mqtt, paho_client):
    assert mqtt.connect()
    paho_client.on_disconnect(paho_client, None, 1)
    assert mqtt.connected is False
    future = mqtt.spawn_main_loop_thread()
    with pytest.raises(EverestInternalError, match="Lost connection to MQTT broker"):
        future.result(timeout=2)


def test_publish_after_disconnect_is_held_back(mqtt, paho_client):
    assert mqtt.connect()
    mqtt.disconnect()
    paho_client.disconnect.assert_called_once()
    mqtt.publish("everest/late", {"v": 1})
    paho_client.publish.assert_not_called()


def test_prefixes_come_from_settings(mqtt):
    assert mqtt.everest_prefix == "everest/"
    assert mqtt.external_prefix == "ext/"