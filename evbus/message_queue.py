"""Background queues that pass incoming messages to callbacks and typed handlers."""

from __future__ import annotations

import enum
import logging
import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Deque, Dict

log = logging.getLogger(__name__)


class HandlerType(enum.Enum):
    """What kind of traffic a handler expects, which decides how messages are unpacked."""

    CALL = "call"
    RESULT = "result"
    SUBSCRIBE_VAR = "subscribe_var"
    SUBSCRIBE_ERROR = "subscribe_error"
    CLEAR_ERROR_REQUEST = "clear_error_request"
    EXTERNAL_MQTT = "external_mqtt"
    GET_CONFIG = "get_config"
    UNKNOWN = "unknown"


HandlerFunc = Callable[[str, Any], None]


@dataclass(eq=False)
class TypedHandler:
    """A handler function together with the type, name and call id it listens for.

    Handlers compare and hash by identity, so the same object is the token used
    to register and unregister it.
    """

    type: HandlerType
    handler: HandlerFunc
    name: str = ""
    id: str = ""


@dataclass(frozen=True)
class Message:
    """A raw message as received from the broker."""

    topic: str
    payload: str


@dataclass(frozen=True)
class ParsedMessage:
    """A message whose payload has been decoded."""

    topic: str
    data: Any


class _Worker:
    """A thread draining a queue; stopping drops whatever is still queued."""

    def __init__(self, process: Callable[[Any], None], name: str) -> None:
        self._process = process
        self._queue: Deque[Any] = deque()
        self._cv = threading.Condition()
        self._running = True
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while True:
            with self._cv:
                self._cv.wait_for(lambda: bool(self._queue) or not self._running)
                if not self._running:
                    return
                item = self._queue.popleft()
            self._process(item)

    def add(self, item: Any) -> None:
        with self._cv:
            self._queue.append(item)
            self._cv.notify_all()

    def stop(self) -> None:
        with self._cv:
            self._running = False
            self._cv.notify_all()

    def close(self) -> None:
        self.stop()
        if self._thread is not threading.current_thread():
            self._thread.join()


class MessageQueue:
    """Passes each added :class:`Message` to ``message_callback`` on a worker thread, in order."""

    def __init__(self, message_callback: Callable[[Message], None]) -> None:
        self._message_callback = message_callback
        self._worker = _Worker(self._deliver, "message-queue")

    def _deliver(self, message: Message) -> None:
        try:
            self._message_callback(message)
        except Exception:
            log.exception("message callback failed for topic '%s'", message.topic)

    def add(self, message: Message) -> None:
        """Queue ``message`` for delivery."""
        self._worker.add(message)

    def stop(self) -> None:
        """Ask the worker to finish; messages still queued are not delivered."""
        self._worker.stop()

    def close(self) -> None:
        """Stop the worker and wait for it to end."""
        self._worker.close()

    def __enter__(self) -> "MessageQueue":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class MessageHandler:
    """Distributes parsed messages to registered typed handlers on a worker thread.

    Handlers are called in the order they were registered.
    """

    def __init__(self) -> None:
        self._handlers: Dict[TypedHandler, None] = {}
        self._handlers_lock = threading.Lock()
        self._worker = _Worker(self._dispatch, "message-handler")

    def _dispatch(self, message: ParsedMessage) -> None:
        with self._handlers_lock:
            handlers = list(self._handlers)
        data = message.data
        for handler in handlers:
            try:
                self._deliver(handler, message.topic, data)
            except Exception:
                log.exception("handler for topic '%s' failed", message.topic)

    @staticmethod
    def _deliver(handler: TypedHandler, topic: str, data: Any) -> None:
        if handler.type is HandlerType.CALL:
            if handler.name != data["name"]:
                return
            if data["type"] == "call":
                handler.handler(topic, data["data"])
        elif handler.type is HandlerType.RESULT:
            if handler.name != data["name"]:
                return
            if data["type"] == "result" and handler.id == data["data"]["id"]:
                handler.handler(topic, data["data"])
        elif handler.type is HandlerType.SUBSCRIBE_VAR:
            if handler.name != data["name"]:
                return
            handler.handler(topic, data["data"])
        else:
            handler.handler(topic, data)

    def add(self, message: ParsedMessage) -> None:
        """Queue ``message`` for distribution."""
        self._worker.add(message)

    def stop(self) -> None:
        """Ask the worker to finish; messages still queued are not distributed."""
        self._worker.stop()

    def close(self) -> None:
        """Stop the worker and wait for it to end."""
        self._worker.close()

    def add_handler(self, handler: TypedHandler) -> None:
        """Register ``handler``; registering the same handler twice has no effect."""
        with self._handlers_lock:
            self._handlers[handler] = None

    def remove_handler(self, handler: TypedHandler) -> None:
        """Unregister ``handler``; raise :class:`KeyError` if it is not registered."""
        with self._handlers_lock:
            del self._handlers[handler]

    def count_handlers(self) -> int:
        """Return how many handlers are registered."""
        with self._handlers_lock:
            return len(self._handlers)

    def __enter__(self) -> "MessageHandler":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()