"""Bridge between JSON HTTP routes and unary gRPC methods, in both directions."""

from __future__ import annotations

import asyncio
import inspect
import json
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, get_origin, runtime_checkable

import grpc
import httpx
from google.protobuf import json_format
from google.protobuf.message import DecodeError, EncodeError, Message
from pydantic import TypeAdapter

from supergin.engine import Context, Engine, RouteBuilder, get_validated_input
from supergin.errors import ErrorCode, SuperGinError, is_error_code

BRIDGE_SERVICE_NAME = "grpc_bridge"
PROTOBUF_CONTENT_TYPE = "application/x-protobuf"
DEFAULT_HTTP_BASE = "http://localhost:8080"

_ANY: TypeAdapter[Any] = TypeAdapter(Any)
_BRIDGE_ERRORS = (LookupError, ValueError, TypeError, RuntimeError)


def _as_type(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, type) or get_origin(value) is not None:
        return value
    return type(value)


def _message_type(value: Any) -> type[Message]:
    message_type = _as_type(value)
    if isinstance(message_type, type) and issubclass(message_type, Message):
        return message_type
    raise TypeError(f"gRPC type {message_type!r} does not implement a protobuf message")


def _serialize(message: Message) -> bytes:
    return message.SerializeToString()


def _to_json(value: Any) -> str:
    return json.dumps(_ANY.dump_python(value, mode="json"), ensure_ascii=False)


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


@runtime_checkable
class GrpcConverter(Protocol):
    """A model that converts itself to and from a protobuf message."""

    def to_grpc(self) -> Message:
        """Return the protobuf message for this value."""

    @classmethod
    def from_grpc(cls, message: Message) -> Any:
        """Build a value of this type from a protobuf message."""


@dataclass
class GrpcMethod:
    """Type mapping for one unary gRPC method."""

    name: str
    full_name: str
    input_type: Any = None
    output_type: Any = None
    grpc_input_type: Any = None
    grpc_output_type: Any = None
    streaming_input: bool = False
    streaming_output: bool = False


@dataclass
class GrpcService:
    """A remote gRPC service and the channel used to reach it."""

    name: str
    address: str
    service_name: str
    channel: grpc.Channel = field(repr=False)
    methods: dict[str, GrpcMethod] = field(default_factory=dict)


class GrpcBridge:
    """Registry of gRPC services and the conversions between HTTP and gRPC."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self.services: dict[str, GrpcService] = {}
        self.http_transport: httpx.AsyncBaseTransport | None = None

    def register_service(self, name: str, address: str, service_name: str) -> GrpcService:
        """Open an insecure channel to ``address`` and register it as ``name``."""
        try:
            channel = grpc.insecure_channel(address)
        except (ValueError, TypeError, RuntimeError) as exc:
            raise ConnectionError(
                f"failed to connect to gRPC service {name} at {address}: {exc}"
            ) from exc
        previous = self.services.get(name)
        if previous is not None:
            previous.channel.close()
        service = GrpcService(
            name=name, address=address, service_name=service_name, channel=channel
        )
        self.services[name] = service
        return service

    def register_method(
        self,
        service_name: str,
        method_name: str,
        http_input_type: Any,
        http_output_type: Any,
        grpc_input_type: Any,
        grpc_output_type: Any,
    ) -> GrpcMethod:
        """Map a method of a registered service to its HTTP and gRPC types."""
        service = self._service(service_name)
        method = GrpcMethod(
            name=method_name,
            full_name=f"/{service.service_name}/{method_name}",
            input_type=_as_type(http_input_type),
            output_type=_as_type(http_output_type),
            grpc_input_type=_as_type(grpc_input_type),
            grpc_output_type=_as_type(grpc_output_type),
        )
        service.methods[method_name] = method
        return method

    def convert_to_grpc(self, http_input: Any, grpc_type: Any) -> Message:
        """Turn an HTTP value into a protobuf message, via ``to_grpc`` or JSON."""
        to_grpc = getattr(http_input, "to_grpc", None)
        if callable(to_grpc):
            return to_grpc()
        try:
            text = _to_json(http_input)
        except (ValueError, TypeError) as exc:
            raise ValueError(f"failed to marshal HTTP input: {exc}") from exc
        message = _message_type(grpc_type)()
        try:
            json_format.Parse(text, message)
        except json_format.ParseError as exc:
            raise ValueError(f"failed to unmarshal JSON to protobuf: {exc}") from exc
        return message

    def convert_from_grpc(self, grpc_output: Message, http_type: Any) -> Any:
        """Turn a protobuf message into an HTTP value, via ``from_grpc`` or JSON."""
        from_grpc = getattr(http_type, "from_grpc", None)
        if callable(from_grpc):
            return from_grpc(grpc_output)
        try:
            data = json_format.MessageToDict(grpc_output)
        except (json_format.SerializeToJsonError, TypeError, AttributeError) as exc:
            raise ValueError(f"failed to marshal protobuf to JSON: {exc}") from exc
        if http_type is None:
            return data
        try:
            return TypeAdapter(http_type).validate_python(data)
        except ValueError as exc:
            raise ValueError(f"failed to unmarshal JSON to HTTP output: {exc}") from exc

    async def call_method(
        self, service: GrpcService, method: GrpcMethod, message: Message
    ) -> Message:
        """Invoke a unary method over the service's channel."""
        output_type = _message_type(method.grpc_output_type)
        stub = service.channel.unary_unary(
            method.full_name,
            request_serializer=_serialize,
            response_deserializer=output_type.FromString,
        )
        return await asyncio.to_thread(stub, message)

    async def handle_http_to_grpc(
        self, ctx: Context, service_name: str, method_name: str
    ) -> None:
        """Forward the request to gRPC and respond with the converted reply."""
        service = self._service(service_name)
        method = self._method(service, method_name)

        http_input = get_validated_input(ctx)
        if http_input is None:
            try:
                raw = json.loads(ctx.body)
                http_input = (
                    raw
                    if method.input_type is None
                    else TypeAdapter(method.input_type).validate_python(raw)
                )
            except ValueError as exc:
                raise ValueError(f"failed to bind HTTP input: {exc}") from exc

        try:
            grpc_input = self.convert_to_grpc(http_input, method.grpc_input_type)
        except (ValueError, TypeError) as exc:
            raise ValueError(f"failed to convert HTTP input to gRPC: {exc}") from exc

        try:
            grpc_output = await self.call_method(service, method, grpc_input)
        except (grpc.RpcError, TypeError) as exc:
            raise RuntimeError(f"gRPC call failed: {exc}") from exc

        try:
            http_output = self.convert_from_grpc(grpc_output, method.output_type)
        except (ValueError, TypeError) as exc:
            raise ValueError(f"failed to convert gRPC output to HTTP: {exc}") from exc

        ctx.json(200, http_output)

    def grpc_to_http_proxy(
        self, service_name: str, method_name: str, http_endpoint: str
    ) -> Callable[[Context], Any]:
        """Return a handler taking a protobuf body, calling ``http_endpoint`` with JSON."""

        async def proxy(ctx: Context) -> None:
            service = self.services.get(service_name)
            if service is None:
                ctx.json(500, {"error": "gRPC service not found"})
                return
            method = service.methods.get(method_name)
            if method is None:
                ctx.json(500, {"error": "gRPC method not found"})
                return
            try:
                input_type = _message_type(method.grpc_input_type)
            except TypeError:
                ctx.json(500, {"error": "invalid gRPC input type"})
                return
            try:
                grpc_input = input_type.FromString(ctx.body)
            except DecodeError:
                ctx.json(400, {"error": "failed to unmarshal protobuf"})
                return
            try:
                http_input = self.convert_from_grpc(grpc_input, method.input_type)
                http_response = await self.make_http_call(http_endpoint, http_input)
                grpc_output = self.convert_to_grpc(
                    http_response, method.grpc_output_type
                )
            except (ValueError, TypeError, ConnectionError) as exc:
                ctx.json(500, {"error": str(exc)})
                return
            try:
                payload = grpc_output.SerializeToString()
            except EncodeError:
                ctx.json(500, {"error": "failed to marshal protobuf"})
                return
            ctx.data(200, PROTOBUF_CONTENT_TYPE, payload)

        return proxy

    async def make_http_call(self, endpoint: str, payload: Any) -> Any:
        """POST ``payload`` as JSON to ``endpoint`` and return the decoded reply."""
        try:
            body = _to_json(payload).encode("utf-8")
        except (ValueError, TypeError) as exc:
            raise ValueError(f"failed to marshal input: {exc}") from exc
        try:
            async with httpx.AsyncClient(transport=self.http_transport) as client:
                response = await client.post(
                    endpoint,
                    content=body,
                    headers={"Content-Type": "application/json"},
                )
        except httpx.HTTPError as exc:
            raise ConnectionError(f"HTTP request failed: {exc}") from exc
        try:
            return json.loads(response.content)
        except ValueError as exc:
            raise ValueError(f"failed to unmarshal response: {exc}") from exc

    def _service(self, name: str) -> GrpcService:
        service = self.services.get(name)
        if service is None:
            raise LookupError(f"gRPC service {name} not found")
        return service

    @staticmethod
    def _method(service: GrpcService, name: str) -> GrpcMethod:
        method = service.methods.get(name)
        if method is None:
            raise LookupError(f"gRPC method {name} not found in service {service.name}")
        return method


def get_bridge(engine: Engine) -> GrpcBridge:
    """Return the bridge kept in the engine's container, creating it if needed."""
    container = engine.container
    try:
        existing = container.get(BRIDGE_SERVICE_NAME)
    except SuperGinError as exc:
        if not is_error_code(exc, ErrorCode.DI_SERVICE_NOT_FOUND):
            raise
        existing = None
    if isinstance(existing, GrpcBridge):
        return existing
    bridge = GrpcBridge(engine)
    container.register_instance(BRIDGE_SERVICE_NAME, bridge)
    return bridge


def with_grpc_bridge(
    builder: RouteBuilder, service_name: str, method_name: str
) -> RouteBuilder:
    """Make the builder's current handler forward to gRPC before it runs."""
    builder.with_metadata("grpc_service", service_name)
    builder.with_metadata("grpc_method", method_name)
    original = builder.handler_func
    engine = builder.engine

    async def bridged(ctx: Context) -> None:
        bridge = get_bridge(engine)
        try:
            await bridge.handle_http_to_grpc(ctx, service_name, method_name)
        except _BRIDGE_ERRORS as exc:
            ctx.json(500, {"error": "gRPC bridge error", "details": str(exc)})
            return
        if original is not None:
            await _maybe_await(original(ctx))

    builder.handler_func = bridged
    return builder


def bidirectional_grpc_http(
    engine: Engine,
    name: str,
    http_path: str,
    grpc_service: str,
    grpc_method: str,
    http_input: Any,
    http_output: Any,
    grpc_input: Any,
    grpc_output: Any,
) -> None:
    """Register an HTTP-to-gRPC route and its gRPC-to-HTTP counterpart."""
    bridge = get_bridge(engine)
    bridge.register_method(
        grpc_service, grpc_method, http_input, http_output, grpc_input, grpc_output
    )

    forward = (
        engine.named(f"{name}_http_to_grpc")
        .post(http_path)
        .with_io(http_input, http_output)
        .with_description(f"HTTP to gRPC bridge for {name}")
        .with_tags("grpc", "bridge")
    )
    with_grpc_bridge(forward, grpc_service, grpc_method)
    forward.handler(forward.handler_func)

    reverse_path = http_path.replace("/api/", "/grpc/", 1)
    (
        engine.named(f"{name}_grpc_to_http")
        .post(reverse_path)
        .with_description(f"gRPC to HTTP bridge for {name}")
        .with_tags("grpc", "bridge", "reverse")
        .handler(
            bridge.grpc_to_http_proxy(
                grpc_service, grpc_method, DEFAULT_HTTP_BASE + http_path
            )
        )
    )