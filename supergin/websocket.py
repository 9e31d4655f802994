"""WebSocket hubs: connection tracking, broadcasting and per-connection send queues."""

from __future__ import annotations

import asyncio
import dataclasses
import inspect
import json
import logging
import re
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from supergin.engine import Engine, RouteBuilder

logger = logging.getLogger("supergin.websocket")

SEND_BUFFER_SIZE = 256
READ_LIMIT = 512

_CLOSE_NORMAL = 1000
_CLOSE_MESSAGE_TOO_BIG = 1009
_EXPECTED_CLOSE_CODES = frozenset({1001, 1006})

_TIMESTAMP = re.compile(
    r"^(?P<base>\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<frac>\d+))?"
    r"(?P<tz>[Zz]|[+-]\d{2}:\d{2})$"
)

_id_lock = threading.Lock()
_last_id = 0


def _new_connection_id() -> str:
    """Return a nanosecond-based id that never repeats within the process."""
    global _last_id
    with _id_lock:
        _last_id = max(time.time_ns(), _last_id + 1)
        return f"ws_{_last_id}"


def _json_default(obj: Any) -> Any:
    model_dump = getattr(obj, "model_dump", None)
    if callable(model_dump):
        return model_dump(mode="json")
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return dataclasses.asdict(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    raise TypeError(f"object of type {type(obj).__name__} is not JSON serializable")


def _parse_timestamp(value: Any) -> datetime | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError("timestamp must be a string")
    match = _TIMESTAMP.match(value)
    if match is None:
        raise ValueError(f"invalid timestamp: {value!r}")
    frac = match.group("frac")
    tz = match.group("tz")
    text = match.group("base")
    if frac:
        text += "." + frac[:6].ljust(6, "0")
    text += "+00:00" if tz in ("Z", "z") else tz
    return datetime.fromisoformat(text)


@dataclass
class WebSocketMessage:
    """A typed message exchanged over a WebSocket as a JSON object."""

    type: str
    data: Any = None
    timestamp: datetime | None = field(
        default_factory=lambda: datetime.now(timezone.utc).astimezone()
    )
    id: str = ""

    def to_json(self) -> str:
        """Encode the message; ``id`` is left out when empty."""
        payload: dict[str, Any] = {
            "type": self.type,
            "data": self.data,
            "timestamp": None if self.timestamp is None else self.timestamp.isoformat(),
        }
        if self.id:
            payload["id"] = self.id
        return json.dumps(payload, default=_json_default, ensure_ascii=False)

    @classmethod
    def from_json(cls, text: str | bytes) -> WebSocketMessage:
        """Decode a message; raises ValueError if it is not a valid message object."""
        raw = json.loads(text)
        if not isinstance(raw, dict):
            raise ValueError("websocket message must be a JSON object")
        message_type = raw.get("type")
        message_id = raw.get("id")
        if message_type is not None and not isinstance(message_type, str):
            raise ValueError("message type must be a string")
        if message_id is not None and not isinstance(message_id, str):
            raise ValueError("message id must be a string")
        return cls(
            type=message_type or "",
            data=raw.get("data"),
            timestamp=_parse_timestamp(raw.get("timestamp")),
            id=message_id or "",
        )


@runtime_checkable
class WebSocketHandler(Protocol):
    """Callbacks for connection events; each may be a plain or async method."""

    def on_connect(self, conn: WebSocketConnection) -> Any:
        """Called after a connection joins the hub."""

    def on_disconnect(self, conn: WebSocketConnection) -> Any:
        """Called after a connection leaves the hub."""

    def on_message(self, conn: WebSocketConnection, message_type: str, data: Any) -> Any:
        """Called for every decoded message."""

    def on_error(self, conn: WebSocketConnection, err: BaseException) -> Any:
        """Called when the peer closes with an unexpected code."""


@dataclass
class DefaultWebSocketHandler:
    """Handler built from optional callables."""

    on_connect_func: Callable[[WebSocketConnection], Any] | None = None
    on_disconnect_func: Callable[[WebSocketConnection], Any] | None = None
    on_message_func: Callable[[WebSocketConnection, str, Any], Any] | None = None
    on_error_func: Callable[[WebSocketConnection, BaseException], Any] | None = None

    def on_connect(self, conn: WebSocketConnection) -> Any:
        if self.on_connect_func is not None:
            return self.on_connect_func(conn)
        return None

    def on_disconnect(self, conn: WebSocketConnection) -> Any:
        if self.on_disconnect_func is not None:
            return self.on_disconnect_func(conn)
        return None

    def on_message(self, conn: WebSocketConnection, message_type: str, data: Any) -> Any:
        if self.on_message_func is not None:
            return self.on_message_func(conn, message_type, data)
        return None

    def on_error(self, conn: WebSocketConnection, err: BaseException) -> Any:
        if self.on_error_func is not None:
            return self.on_error_func(conn, err)
        return None


class WebSocketConnection:
    """One client connection with a bounded outgoing queue and metadata."""

    def __init__(
        self,
        id: str | None = None,
        hub: WebSocketHub | None = None,
        websocket: Any = None,
        user: Any = None,
    ) -> None:
        self.id = id if id is not None else _new_connection_id()
        self.hub = hub
        self.websocket = websocket
        self.user = user
        self.metadata: dict[str, Any] = {}
        self._metadata_lock = threading.RLock()
        self._outbox: deque[str] = deque()
        self._wakeup = asyncio.Event()
        self._closed = False
        self._socket_closed = False

    @property
    def closed(self) -> bool:
        """Whether the outgoing queue has been shut."""
        return self._closed

    def send(self, message_type: str, data: Any) -> None:
        """Queue a message; raises RuntimeError if the queue is full or shut."""
        self._enqueue(WebSocketMessage(type=message_type, data=data).to_json())

    def set_metadata(self, key: str, value: Any) -> None:
        with self._metadata_lock:
            self.metadata[key] = value

    def get_metadata(self, key: str, default: Any = None) -> Any:
        with self._metadata_lock:
            return self.metadata.get(key, default)

    async def close(self) -> None:
        """Close the underlying socket and stop sending."""
        self._close_outbox()
        await self._close_socket(_CLOSE_NORMAL)

    def _enqueue(self, payload: str) -> None:
        if self._closed:
            raise RuntimeError("connection is closed")
        if len(self._outbox) >= SEND_BUFFER_SIZE:
            raise RuntimeError("connection send channel is full")
        self._outbox.append(payload)
        self._wakeup.set()

    def _close_outbox(self) -> None:
        self._closed = True
        self._wakeup.set()

    async def _close_socket(self, code: int) -> None:
        if self.websocket is None or self._socket_closed:
            return
        self._socket_closed = True
        try:
            await self.websocket.close(code=code)
        except Exception as exc:  # the peer may already be gone
            logger.debug("closing websocket %s failed: %s", self.id, exc)

    async def _write_pump(self) -> None:
        try:
            while True:
                if not self._outbox and not self._closed:
                    await self._wakeup.wait()
                self._wakeup.clear()
                if self._outbox:
                    batch = "\n".join(self._outbox)
                    self._outbox.clear()
                    await self.websocket.send_text(batch)
                    continue
                if self._closed:
                    return
        except Exception as exc:
            logger.debug("websocket %s write failed: %s", self.id, exc)
        finally:
            await self._close_socket(_CLOSE_NORMAL)

    async def _read_pump(self) -> None:
        while True:
            try:
                message = await self.websocket.receive()
            except Exception as exc:
                logger.debug("websocket %s read failed: %s", self.id, exc)
                return
            kind = message.get("type")
            if kind == "websocket.disconnect":
                code = message.get("code", _CLOSE_NORMAL)
                if code not in _EXPECTED_CLOSE_CODES:
                    err = ConnectionError(f"websocket closed with code {code}")
                    logger.warning("WebSocket error: %s", err)
                    if self.hub is not None:
                        await self.hub._notify("on_error", self, err)
                return
            if kind != "websocket.receive":
                continue
            raw: str | bytes | None = message.get("text")
            if raw is None:
                raw = message.get("bytes") or b""
            size = len(raw.encode("utf-8")) if isinstance(raw, str) else len(raw)
            if size > READ_LIMIT:
                await self._close_socket(_CLOSE_MESSAGE_TOO_BIG)
                return
            try:
                decoded = WebSocketMessage.from_json(raw)
            except ValueError as exc:
                logger.warning("Failed to parse WebSocket message: %s", exc)
                continue
            if self.hub is not None:
                await self.hub._notify("on_message", self, decoded.type, decoded.data)


class WebSocketHub:
    """Tracks live connections and fans messages out to them."""

    def __init__(self, handler: WebSocketHandler | None = None) -> None:
        self.handler = handler
        self._connections: dict[str, WebSocketConnection] = {}
        self._lock = threading.RLock()

    async def add(self, conn: WebSocketConnection) -> None:
        """Register a connection and notify the handler."""
        conn.hub = self
        with self._lock:
            self._connections[conn.id] = conn
            total = len(self._connections)
        await self._notify("on_connect", conn)
        logger.info("WebSocket client connected: %s (total: %d)", conn.id, total)

    async def remove(self, conn: WebSocketConnection) -> None:
        """Unregister a connection, shut its queue and notify the handler."""
        with self._lock:
            if conn.id in self._connections:
                del self._connections[conn.id]
                conn._close_outbox()
            total = len(self._connections)
        await self._notify("on_disconnect", conn)
        logger.info("WebSocket client disconnected: %s (total: %d)", conn.id, total)

    def broadcast(self, message_type: str, data: Any) -> None:
        """Queue a message for every connection, dropping those whose queue is full."""
        payload = WebSocketMessage(type=message_type, data=data).to_json()
        with self._lock:
            for conn_id, conn in list(self._connections.items()):
                try:
                    conn._enqueue(payload)
                except RuntimeError:
                    conn._close_outbox()
                    del self._connections[conn_id]

    def send_to_connection(self, conn_id: str, message_type: str, data: Any) -> None:
        """Queue a message for one connection; raises KeyError if it is unknown."""
        with self._lock:
            conn = self._connections.get(conn_id)
        if conn is None:
            raise KeyError(f"connection {conn_id} not found")
        conn.send(message_type, data)

    def get_connections(self) -> dict[str, WebSocketConnection]:
        with self._lock:
            return dict(self._connections)

    async def serve(self, websocket: Any) -> None:
        """Accept ``websocket`` and pump messages until either side closes."""
        await websocket.accept()
        conn = WebSocketConnection(hub=self, websocket=websocket)
        writer = asyncio.create_task(conn._write_pump())
        try:
            await self.add(conn)
            await conn._read_pump()
        finally:
            try:
                await self.remove(conn)
            finally:
                conn._close_outbox()
                await writer

    async def _notify(self, event: str, *args: Any) -> None:
        if self.handler is None:
            return
        callback = getattr(self.handler, event, None)
        if callback is None:
            return
        result = callback(*args)
        if inspect.isawaitable(result):
            await result


def mount_websocket(
    engine: Engine, name: str, path: str, handler: WebSocketHandler | None
) -> WebSocketHub:
    """Register a named WebSocket route on ``engine`` and return its hub."""
    hub = WebSocketHub(handler)
    (
        engine.named(name)
        .with_description(f"WebSocket endpoint: {name}")
        .with_tags("websocket")
        .with_metadata("websocket_hub", hub)
        .websocket(path, hub.serve)
    )
    return hub


def attach_websocket(
    builder: RouteBuilder, path: str, handler: WebSocketHandler | None
) -> RouteBuilder:
    """Register ``builder`` as a WebSocket route; its hub is kept in the metadata."""
    hub = WebSocketHub(handler)
    builder.with_metadata("websocket_hub", hub)
    builder.websocket(path, hub.serve)
    return builder