# evbus

`evbus` holds the runtime pieces that modules use to talk to each other over
an MQTT broker. It routes incoming messages to typed handlers, does
request/response over topics, fetches a module's configuration from a manager,
and resolves broker and runtime settings. It also has a few small helpers for
paths, serial framing, status pipes and worker threads.

## Installation

```
pip install evbus
```

To run the tests:

```
pip install "evbus[test]"
pytest
```

## Modules

- `evbus.mqtt`: `MQTTAbstraction(settings)` wraps one broker connection,
  over TCP or a Unix domain socket.
  - `connect()` returns whether the connection came up. `disconnect()` and
    `close()` end it. `close()` also stops the worker threads.
  - `register_handler(topic, handler, qos)` and
    `unregister_handler(topic, handler)` manage the handlers for a topic. The
    topic is subscribed when its first handler arrives and unsubscribed when its
    last handler leaves.
  - `publish(topic, data, qos, retain)` sends strings and bytes as they are,
    with QoS 0 by default. Any other value goes out as compact JSON, with QoS 2
    by default. Messages published before the connection is up are held back
    and sent once it is.
  - `get(topic, qos, timeout)` waits for one message on a topic and returns its
    data, or raises `EverestTimeoutError`.
  - `spawn_main_loop_thread()` runs the network loop in the background and
    returns a `concurrent.futures.Future`. The future fails with
    `EverestInternalError` if the broker connection is lost.
    `get_main_loop_future()` returns that future, or `None` if no loop has been
    spawned.
  - `on_mqtt_message(message)` decodes and dispatches a message. Topics under
    the everest prefix are parsed as JSON and matched exactly. Other topics are
    passed on as strings and matched with wildcards.
  - `QOS` lists the quality-of-service levels.
- `evbus.message_queue`: `MessageQueue` and `MessageHandler` each drain a
  queue on a worker thread.
  - A `TypedHandler` carries a `HandlerType`, a `name` and an `id`. The type
    decides how a message is unpacked before the callback sees it:
    - `CALL` gets the `data` of matching calls.
    - `RESULT` gets results whose `id` matches.
    - `SUBSCRIBE_VAR` gets the `data` of matching variables.
    - Every other type gets the whole message.
  - `Message` and `ParsedMessage` are the raw and decoded message records.
- `evbus.topics`: `check_topic_matches(full_topic, wildcard_topic)` applies the
  MQTT wildcard rules. `+` matches one level and `#` matches the rest. A
  trailing `/#` also matches the level above it.
- `evbus.module_config`: `get_module_config(mqtt, module_id, timeout)`
  publishes a `get_config` request and waits for the reply. It then collects
  the interface and type definitions, module provides, settings, schemas,
  manifests, the error map and the module config cache into one dictionary.
- `evbus.mqtt_settings`: `MQTTSettings`, built with `create_socket_settings`
  or `create_host_settings`. `uses_socket()` tells which kind it is.
- `evbus.mqtt_options`: `resolve_mqtt_settings(...)` merges the given options
  with defaults and with the `MQTT_SERVER_ADDRESS` / `MQTT_SERVER_PORT`
  environment variables.
  - The defaults are `localhost`, port `1883`, and everest prefix `everest/`.
  - It raises `BootException` when a socket path is combined with a host.
  - `normalize_prefix` makes sure a non-empty prefix ends in `/`.
- `evbus.runtime`: `RuntimeSettings` is a dataclass of directories and
  switches. `from_json` / `to_json` convert it to and from its JSON form.
  `parse_string_option(options, option)` returns an option's string, or `""`
  when the option is absent.
- `evbus.filesystem`:
  - `assert_dir` and `assert_file` return the canonical path or raise
    `BootException`.
  - `has_extension` compares a path's extension without regard to case.
  - `get_prefixed_path_from_json` places a relative path under a prefix.
- `evbus.serial_link`:
  - `crc32(data)` is a reflected CRC-32 without final inversion.
  - `CobsDecoder` is a streaming COBS decoder that hands each complete packet
    to a callback.
  - `Serial.open_device(device, baud)` opens a device as 8N1 with no flow
    control. It accepts the baud rates 9600, 19200, 38400, 57600, 115200 and
    230400.
- `evbus.status_fifo`: `StatusFifo.create_from_path(path)` opens a named pipe
  for non-blocking writes. An empty path gives a disabled instance.
  `update(message)` stops writing for good after the first failed write.
- `evbus.thread`: `StoppableThread` runs one target at a time.
  `stop()` sets the flag that the target reads through `should_exit()`, then
  waits for the target to finish.
- `evbus.errors` defines the exception types:
  - `EverestError`, the base class
  - `BootException`
  - `EverestApiError`
  - `EverestTimeoutError`, which is also a `TimeoutError`
  - `EverestInternalError`
  - `FormatError`, which is also a `ValueError`
  
  `throw_format_error(message)` raises a `FormatError`.

## Example

```python
from evbus.message_queue import HandlerType, TypedHandler
from evbus.mqtt import QOS, MQTTAbstraction
from evbus.mqtt_settings import create_host_settings

settings = create_host_settings("localhost", 1883, "everest/", "")
bus = MQTTAbstraction(settings)

def on_data(topic, data):
    print(topic, data)

handler = TypedHandler(HandlerType.EXTERNAL_MQTT, on_data)
bus.register_handler("everest/hello", handler, QOS.QOS2)

if bus.connect():
    bus.spawn_main_loop_thread()
    bus.publish("everest/hello", {"greeting": "hi"}, QOS.QOS2, False)
```

Checking a topic against a wildcard pattern:

```python
from evbus.topics import check_topic_matches

assert check_topic_matches("a/b/c", "a/+/c")
assert check_topic_matches("a/b", "a/b/#")
assert not check_topic_matches("a/b/c", "a/b")
```

## What it does not do

- There is no command and no module loader. Nothing here parses a command line,
  starts a module, or calls module init and ready callbacks.
- There is no manager. Nothing here reads a YAML config file or searches the
  installation prefix for etc, share, schema or interface directories.
  `RuntimeSettings` only carries such paths once they are known.
- There is no module-level API. Nothing here calls or provides commands
  validated against manifests and interface schemas, publishes variables,
  manages errors, or sends telemetry. Only the message transport and handler
  dispatch underneath are present.
- `Serial` opens and configures a device but does not read from it. Packets
  decoded by its own `CobsDecoder` are only logged. To act on packets, use
  `CobsDecoder` directly with your own callback.