"""HTTP engine with named routes, input validation and API documentation."""

from __future__ import annotations

import dataclasses
import inspect
import json
import logging
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, get_origin
from urllib.parse import parse_qsl

from pydantic import BaseModel, TypeAdapter, ValidationError
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import BaseRoute, Route, Router, WebSocketRoute
from starlette.websockets import WebSocket

from supergin.di import Container, RequestScope, get_container
from supergin.errors import ErrorCode, SuperGinError

logger = logging.getLogger("supergin")

VALIDATED_INPUT_KEY = "validated_input"
REQUEST_SCOPE_KEY = "supergin:request_scope"

_METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH")
_FORM_TYPES = ("application/x-www-form-urlencoded",)
_NO_BODY_STATUSES = frozenset({204, 304})

Handler = Callable[["Context"], Any]
Middleware = Callable[["Context", Callable[[], Awaitable[None]]], Any]


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _json_default(obj: Any) -> Any:
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
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
    if isinstance(obj, bytes):
        return obj.decode("utf-8", errors="replace")
    return str(obj)


def _dumps(data: Any) -> bytes:
    return json.dumps(
        data, default=_json_default, ensure_ascii=False, separators=(",", ":")
    ).encode("utf-8")


def _convert_path(path: str) -> str:
    """Turn ``/users/:id`` and ``/files/*rest`` into the router's syntax."""
    segments = []
    for segment in path.split("/"):
        if segment.startswith(":"):
            segment = "{" + segment[1:] + "}"
        elif segment.startswith("*"):
            segment = "{" + segment[1:] + ":path}"
        segments.append(segment)
    return "/".join(segments)


def _route_priority(route: BaseRoute) -> list[int]:
    """Static segments win over parameters, parameters over catch-alls."""
    ranks = []
    for segment in getattr(route, "path", "").strip("/").split("/"):
        if segment.startswith("{"):
            ranks.append(2 if segment.endswith(":path}") else 1)
        else:
            ranks.append(0)
    return ranks


def _as_type(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, type) or get_origin(value) is not None:
        return value
    return type(value)


@dataclass
class Config:
    """Engine settings."""

    enable_docs: bool = True
    validate_input: bool = True
    validate_output: bool = False
    docs_path: str = "/docs"


@dataclass
class RouteInfo:
    """Metadata recorded for a named route."""

    name: str
    method: str
    path: str
    handler: Callable[..., Any] | None = field(default=None, repr=False)
    input_type: Any = None
    output_type: Any = None
    metadata: dict[str, Any] = field(default_factory=dict)
    description: str = ""
    tags: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now().astimezone())

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "method": self.method,
            "path": self.path,
            "metadata": dict(self.metadata),
            "description": self.description,
            "tags": list(self.tags),
            "created_at": self.created_at.isoformat(),
        }


class Context:
    """Per-request state handed to handlers and middleware."""

    def __init__(
        self,
        request: Request,
        body: bytes = b"",
        request_scope: RequestScope | None = None,
    ) -> None:
        self.request = request
        self.body = body
        self.request_scope = request_scope
        self.keys: dict[str, Any] = {}
        self.response: Response | None = None

    def param(self, name: str) -> str:
        """Return a path parameter, or an empty string if absent."""
        value = self.request.path_params.get(name)
        return "" if value is None else str(value)

    def get(self, key: str) -> Any:
        """Return a value stored with :meth:`set`, or None."""
        return self.keys.get(key)

    def set(self, key: str, value: Any) -> None:
        self.keys[key] = value

    def __contains__(self, key: object) -> bool:
        return key in self.keys

    def json(self, status: int, data: Any) -> None:
        """Respond with ``data`` encoded as JSON."""
        content = b"" if status in _NO_BODY_STATUSES else _dumps(data)
        self.response = Response(
            content=content, status_code=status, media_type="application/json"
        )

    def data(self, status: int, content_type: str, body: bytes) -> None:
        """Respond with raw bytes of the given content type."""
        self.response = Response(
            content=body, status_code=status, media_type=content_type
        )


async def _run_chain(
    ctx: Context, middleware: list[Middleware], final: Handler
) -> None:
    """Run middleware in order, then the final handler.

    A middleware that returns without calling ``call_next`` lets the chain
    continue unless it has already written a response.
    """

    async def run(index: int) -> None:
        if index == len(middleware):
            await _maybe_await(final(ctx))
            return
        called = False

        async def call_next() -> None:
            nonlocal called
            if called:
                return
            called = True
            await run(index + 1)

        await _maybe_await(middleware[index](ctx, call_next))
        if not called and ctx.response is None:
            await call_next()

    await run(0)


class Engine:
    """ASGI application holding named routes and a DI container."""

    def __init__(
        self, config: Config | None = None, container: Container | None = None
    ) -> None:
        self.config = config if config is not None else Config()
        self.container = container if container is not None else get_container()
        self._router = Router(routes=[])
        self._routes: dict[str, RouteInfo] = {}
        self._registered: set[tuple[str, str]] = set()
        self._middleware: list[Middleware] = []
        self._lock = threading.RLock()
        if self.config.enable_docs:
            self._add_route("GET", self.config.docs_path, [], self._docs_endpoint)

    def use(self, *middleware: Middleware) -> Engine:
        """Add middleware run for every request."""
        self._middleware.extend(middleware)
        return self

    def named(self, name: str) -> RouteBuilder:
        """Start building a route called ``name``."""
        return RouteBuilder(self, name)

    def get_route(self, name: str) -> RouteInfo | None:
        with self._lock:
            return self._routes.get(name)

    def get_routes(self) -> dict[str, RouteInfo]:
        with self._lock:
            return dict(self._routes)

    def get_routes_by_tag(self, tag: str) -> list[RouteInfo]:
        with self._lock:
            return [route for route in self._routes.values() if tag in route.tags]

    def url_for(self, name: str, *params: Any) -> str:
        """Build the path of a named route from ``key, value`` pairs."""
        route = self.get_route(name)
        if route is None:
            raise SuperGinError(ErrorCode.ROUTE_NOT_FOUND, f"route '{name}' not found")
        url = route.path
        for key, value in zip(params[::2], params[1::2]):
            url = url.replace(f":{key}", str(value), 1)
        return url

    def run(self, host: str = "0.0.0.0", port: int = 8080) -> None:
        """Serve the application with uvicorn."""
        import uvicorn

        uvicorn.run(self, host=host, port=port)

    async def __call__(self, scope: Any, receive: Any, send: Any) -> None:
        await self._router(scope, receive, send)

    def _claim(self, kind: str, path: str) -> None:
        if not path.startswith("/"):
            raise ValueError(f"path must begin with '/': {path!r}")
        with self._lock:
            if (kind, path) in self._registered:
                raise ValueError(f"handlers are already registered for path '{path}'")
            self._registered.add((kind, path))

    def _add_route(
        self,
        method: str,
        path: str,
        middleware: list[Middleware],
        endpoint: Handler,
    ) -> None:
        self._claim(method, path)

        async def asgi_endpoint(request: Request) -> Response:
            return await self._dispatch(request, middleware, endpoint)

        with self._lock:
            self._router.routes.append(
                Route(_convert_path(path), asgi_endpoint, methods=[method])
            )
            self._router.routes.sort(key=_route_priority)

    def _add_websocket(
        self, path: str, endpoint: Callable[[WebSocket], Awaitable[None]]
    ) -> None:
        self._claim("WEBSOCKET", path)

        async def ws_endpoint(websocket: WebSocket) -> None:
            with self.container.request_scope():
                await endpoint(websocket)

        with self._lock:
            self._router.routes.append(WebSocketRoute(_convert_path(path), ws_endpoint))
            self._router.routes.sort(key=_route_priority)

    def _store_route(self, info: RouteInfo) -> None:
        with self._lock:
            self._routes[info.name] = info

    async def _dispatch(
        self, request: Request, middleware: list[Middleware], endpoint: Handler
    ) -> Response:
        start = time.perf_counter()
        body = await request.body()
        with self.container.request_scope() as scope:
            ctx = Context(request, body, scope)
            ctx.set(REQUEST_SCOPE_KEY, scope)
            try:
                await _run_chain(ctx, [*self._middleware, *middleware], endpoint)
            except Exception:
                logger.exception("panic recovered while handling %s", request.url.path)
                ctx.response = Response(status_code=500)
        response = ctx.response if ctx.response is not None else Response(status_code=200)
        logger.info(
            "%s %s -> %d (%.2fms)",
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - start) * 1000,
        )
        return response

    def _docs_endpoint(self, ctx: Context) -> None:
        routes = self.get_routes()
        ctx.json(
            200,
            {
                "routes": routes,
                "generated_at": datetime.now().astimezone(),
                "total_routes": len(routes),
                "di_services": self.container.list_services(),
            },
        )


class RouteBuilder:
    """Fluent builder that registers a named route on an :class:`Engine`."""

    def __init__(self, engine: Engine, name: str) -> None:
        self.engine = engine
        self.name = name
        self.method = ""
        self.path = ""
        self.handler_func: Handler | None = None
        self.input_type: Any = None
        self.output_type: Any = None
        self.metadata: dict[str, Any] = {}
        self.description = ""
        self.tags: list[str] = []
        self.middleware: list[Middleware] = []
        self._adapter: TypeAdapter[Any] | None = None

    def _set(self, method: str, path: str) -> RouteBuilder:
        self.method = method
        self.path = path
        return self

    def get(self, path: str) -> RouteBuilder:
        return self._set("GET", path)

    def post(self, path: str) -> RouteBuilder:
        return self._set("POST", path)

    def put(self, path: str) -> RouteBuilder:
        return self._set("PUT", path)

    def delete(self, path: str) -> RouteBuilder:
        return self._set("DELETE", path)

    def patch(self, path: str) -> RouteBuilder:
        return self._set("PATCH", path)

    def with_io(self, input: Any, output: Any) -> RouteBuilder:
        """Set input and output types; instances stand for their type."""
        if input is not None:
            self.input_type = _as_type(input)
            self._adapter = None
        if output is not None:
            self.output_type = _as_type(output)
        return self

    def with_input(self, input: Any) -> RouteBuilder:
        return self.with_io(input, None)

    def with_output(self, output: Any) -> RouteBuilder:
        return self.with_io(None, output)

    def with_metadata(self, key: str, value: Any) -> RouteBuilder:
        self.metadata[key] = value
        return self

    def with_description(self, desc: str) -> RouteBuilder:
        self.description = desc
        return self

    def with_tags(self, *tags: str) -> RouteBuilder:
        self.tags.extend(tags)
        return self

    def with_middleware(self, *middleware: Middleware) -> RouteBuilder:
        self.middleware.extend(middleware)
        return self

    def handler(self, handler: Handler) -> RouteBuilder:
        """Set the handler and register the route."""
        self.handler_func = handler
        self._register()
        return self

    def websocket(
        self, path: str, endpoint: Callable[[WebSocket], Awaitable[None]]
    ) -> RouteBuilder:
        """Register a WebSocket endpoint under this route's name."""
        self._set("GET", path)
        self.handler_func = endpoint
        self._check()
        self.engine._add_websocket(path, endpoint)
        self.engine._store_route(self._info())
        return self

    def _check(self) -> None:
        if not self.name:
            raise ValueError("route name is required")
        if not self.method:
            raise ValueError("HTTP method is required")
        if not self.path:
            raise ValueError("route path is required")
        if self.handler_func is None:
            raise ValueError("handler function is required")
        if self.method not in _METHODS:
            raise ValueError(f"unsupported HTTP method: {self.method}")

    def _info(self) -> RouteInfo:
        return RouteInfo(
            name=self.name,
            method=self.method,
            path=self.path,
            handler=self.handler_func,
            input_type=self.input_type,
            output_type=self.output_type,
            metadata=dict(self.metadata),
            description=self.description,
            tags=list(self.tags),
        )

    def _register(self) -> None:
        self._check()
        self.engine._add_route(
            self.method, self.path, list(self.middleware), self._endpoint
        )
        self.engine._store_route(self._info())

    async def _endpoint(self, ctx: Context) -> None:
        if self.engine.config.validate_input and self.input_type is not None:
            try:
                await self._validate_input(ctx)
            except SuperGinError as exc:
                ctx.json(
                    400, {"error": "Input validation failed", "details": str(exc)}
                )
                return
        if self.handler_func is not None:
            await _maybe_await(self.handler_func(ctx))

    async def _validate_input(self, ctx: Context) -> None:
        request = ctx.request
        content_type = (
            request.headers.get("content-type", "").split(";")[0].strip().lower()
        )
        try:
            if self.method in ("GET", "DELETE"):
                raw: Any = dict(request.query_params)
            elif content_type in _FORM_TYPES:
                raw = dict(parse_qsl(ctx.body.decode("utf-8"), keep_blank_values=True))
            else:
                raw = json.loads(ctx.body)
        except (ValueError, UnicodeDecodeError) as exc:
            raise SuperGinError(
                ErrorCode.VALIDATION_FAILED, f"binding error: {exc}"
            ) from exc

        if self._adapter is None:
            self._adapter = TypeAdapter(self.input_type)
        try:
            value = self._adapter.validate_python(raw)
        except ValidationError as exc:
            raise SuperGinError(
                ErrorCode.VALIDATION_FAILED, f"validation error: {exc}"
            ) from exc
        ctx.set(VALIDATED_INPUT_KEY, value)


def get_validated_input(ctx: Context) -> Any:
    """Return the validated request input, or None if none was validated."""
    return ctx.get(VALIDATED_INPUT_KEY)