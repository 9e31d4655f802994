# supergin

`supergin` is a small web toolkit built on Starlette. It adds what many
JSON APIs end up writing by hand:

- **Named routes** (`supergin.engine`) that you can look up, filter by tag
  and turn back into URLs.
- **Input validation** with pydantic types, run before your handler is called.
- **A dependency injection container** (`supergin.di`) with singleton,
  per-request and transient services.
- **REST resources** (`supergin.resource`): one call generates list, create,
  show, update, delete and search routes for a controller, plus member and
  collection routes.
- **WebSocket hubs** (`supergin.websocket`) that track connections, broadcast
  messages and pass events to a handler.
- **A gRPC bridge** (`supergin.grpc_bridge`) that exposes a unary gRPC method
  as an HTTP JSON endpoint, and the reverse.
- **A docs endpoint** that lists every route and registered service as JSON.

## Installation

```
pip install supergin
```

For running the test suite:

```
pip install "supergin[test]"
```

## Named routes

```python
from pydantic import BaseModel

from supergin.engine import Config, Engine, get_validated_input


class CreateUserRequest(BaseModel):
    name: str
    email: str
    age: int = 0


app = Engine(Config())


def health(ctx):
    ctx.json(200, {"status": "healthy"})


async def create_user(ctx):
    request = get_validated_input(ctx)
    ctx.json(201, {"name": request.name, "email": request.email})


(
    app.named("health_check")
    .get("/health")
    .with_description("Health check endpoint")
    .with_tags("health", "monitoring")
    .handler(health)
)

(
    app.named("create_user")
    .post("/users")
    .with_input(CreateUserRequest)
    .with_tags("users")
    .handler(create_user)
)
```

A route is registered when `handler` is called. It needs a name, one of the
methods `get`, `post`, `put`, `delete` or `patch`, a path and a handler;
leaving any of them out raises `ValueError`, as does registering the same
method and path twice. Paths use `:name` for parameters (read with
`ctx.param("name")`) and `*name` for a catch-all. Static segments are matched
before parameters, so `/users/search` wins over `/users/:id`.

Handlers and middleware may be plain functions or coroutines. A handler gets a
`Context` with `request`, the raw `body`, `param`, `get`/`set` for per-request
values, and `json(status, data)` / `data(status, content_type, body)` to set
the response. Pydantic models, dataclasses, datetimes and enums are encoded to
JSON. An exception escaping a handler is logged and answered with status 500.

### Input validation

When `Config.validate_input` is on (the default) and a route has an input
type, the request is bound before the handler runs: query parameters for
GET and DELETE, the form body for `application/x-www-form-urlencoded`, and
JSON otherwise. The value is checked with pydantic and made available through
`get_validated_input(ctx)`. A request that fails is answered with status 400
and `{"error": "Input validation failed", "details": ...}`.

`with_io(input, output)`, `with_input` and `with_output` accept a type or an
instance standing for its type. The output type is recorded in the route
information; `Config.validate_output` is accepted but responses are not
checked against it.

### Middleware

```python
async def timing(ctx, call_next):
    await call_next()
    print(ctx.request.url.path, ctx.response.status_code)

app.use(timing)                                 # every route
app.named("ping").get("/ping").with_middleware(timing).handler(health)
```

Engine middleware runs before route middleware. A middleware that sets a
response without calling `call_next` stops the chain; one that does neither
lets the chain continue.

### Looking routes up

```python
app.get_route("health_check")          # RouteInfo or None
app.get_routes()                       # {name: RouteInfo}
app.get_routes_by_tag("users")
app.url_for("create_user")             # "/users"
```

Path parameters are filled in from name/value pairs:
`app.url_for("show_user", "id", "1")` turns `/users/:id` into `/users/1`.
An unknown route name raises a `SuperGinError` with the code
`ErrorCode.ROUTE_NOT_FOUND`.

### Docs endpoint and serving

With `Config.enable_docs` on (the default), `GET` on `Config.docs_path`
(default `/docs`) returns `routes`, `generated_at`, `total_routes` and
`di_services` as JSON.

`Engine` is an ASGI application, so any ASGI server can serve it, or call
`app.run(host, port)` to start it with uvicorn (defaults `0.0.0.0` and `8080`).

## Dependency injection

```python
from supergin.di import get, register_instance, register_singleton


class Database:
    def __init__(self, config):
        self.config = config


register_instance("dbConfig", {"host": "localhost", "port": 5432})
register_singleton("database", Database, "dbConfig")

database = get("database")
```

Dependencies are listed after the factory by service name; they are resolved
in that order and passed to the factory as positional arguments. Singletons
are created once; request-scoped services (`register_request`) once per
request scope; transient services (`register_transient`) on every lookup.

The module-level functions work on a process-wide container
(`get_container()`). An `Engine` uses that container unless given its own:
`Engine(Config(), Container())`. Every HTTP request and WebSocket connection
runs inside a fresh request scope, so inside a handler
`container.get_from_context(ctx.request_scope, name)` or `resolve(name)` gives
request-scoped services. Outside the engine, open a scope yourself:

```python
from supergin.di import Container

container = Container()
container.register_request("repo", lambda db: {"db": db}, "database")
container.register_instance("database", "db")

with container.request_scope() as scope:
    repo = container.get_from_context(scope, "repo")
```

Errors are raised as `SuperGinError` (from `supergin.errors`) with these codes:

| Code                   | When                                                        |
|------------------------|-------------------------------------------------------------|
| `DI_SERVICE_NOT_FOUND` | the name is not registered                                  |
| `CIRCULAR_DEPENDENCY`  | a service depends on itself, directly or not                |
| `CONTEXT_REQUIRED`     | a request-scoped service is asked for without a scope       |
| `INVALID_FACTORY`      | the factory is not callable or cannot take its dependencies |

`is_error_code(err, code)` tests an exception for a code.

## REST resources

```python
from supergin.resource import resource

routes = (
    resource(app, "User", UserController())
    .with_model(CreateUserRequest, UserResponse, UserSearchRequest)
    .with_tags("api", "v1")
    .with_metadata("version", "v1")
    .member("activate", "POST", "/activate", activate_user)
    .collection("stats", "GET", "/stats", user_stats)
    .build()
)
```

The controller provides `create`, `read`, `update`, `delete`, `list` and
`search`, each taking a `Context`. The example generates:

| Method | Path                  | Route name        |
|--------|-----------------------|-------------------|
| GET    | `/users`              | `list_users`      |
| POST   | `/users`              | `create_user`     |
| GET    | `/users/:id`          | `show_user`       |
| PUT    | `/users/:id`          | `update_user`     |
| DELETE | `/users/:id`          | `delete_user`     |
| GET    | `/users/search`       | `search_users`    |
| POST   | `/users/:id/activate` | `user_activate`   |
| GET    | `/users/stats`        | `users_stats`     |

`build()` returns a `RestRoutes` with the names of the generated routes. The
base path comes from `pluralize(name)` in lower case and can be changed with
`with_base_path`. Create and update validate the input type, search validates
the search type from the query string. Tags, middleware and metadata of the
resource are applied to every generated route. Use `only(...)` or
`except_(...)` with the action names `list`, `create`, `read`, `update`,
`delete` and `search` to limit what is generated.

## WebSockets

```python
from supergin.websocket import DefaultWebSocketHandler, mount_websocket


def on_message(conn, message_type, data):
    if message_type == "ping":
        conn.send("pong", {})


hub = mount_websocket(
    app, "chat_ws", "/ws/chat", DefaultWebSocketHandler(on_message_func=on_message)
)
```

Messages are JSON objects with `type`, `data`, `timestamp` and an optional
`id`. The hub calls the handler's `on_connect`, `on_disconnect`, `on_message`
and `on_error` (plain or async); `on_error` is called when the client closes
with a code other than 1001 or 1006. Incoming messages that cannot be decoded
are logged and skipped; a message over 512 bytes closes the connection.

Each connection has an outgoing queue of 256 messages; queued messages are
sent together, separated by newlines. `conn.send` raises `RuntimeError` when
the queue is full or shut, `hub.broadcast(message_type, data)` drops
connections whose queue is full, and `hub.send_to_connection(conn_id, ...)`
raises `KeyError` for an unknown id. Connections carry `set_metadata` /
`get_metadata`. `attach_websocket(builder, path, handler)` does the same as
`mount_websocket` on a route builder you have already named. No ping frames
are sent to keep idle connections alive.

## gRPC bridge

```python
from supergin.grpc_bridge import bidirectional_grpc_http, get_bridge

bridge = get_bridge(app)
bridge.register_service("userService", "localhost:9090", "user.UserService")
bidirectional_grpc_http(
    app, "user_create", "/api/users/grpc", "userService", "CreateUser",
    CreateUserRequest, UserResponse, CreateUserGrpcRequest, UserGrpcResponse,
)
```

`CreateUserGrpcRequest` and `UserGrpcResponse` stand for your generated
protobuf message classes. The service must be registered before its methods.

`POST /api/users/grpc` validates the JSON body, converts it to the gRPC
request message, calls the method and returns the reply as JSON. Failures are
answered with status 500 and `{"error": "gRPC bridge error", "details": ...}`.
The reverse route, the same path with `/api/` replaced by `/grpc/`, accepts a
protobuf body, posts it as JSON to `http://localhost:8080` plus the HTTP path,
and returns the reply as `application/x-protobuf`.

Conversion uses the protobuf JSON mapping, unless the HTTP value has a
`to_grpc()` method or the HTTP type a `from_grpc(message)` class method
(see `GrpcConverter`). Only unary methods are supported. Set
`bridge.http_transport` to an httpx transport to change how the reverse route
makes its HTTP calls.

## Demo application

A user API with a resource, dependency injection, a health check, a
`/di/test` route and a docs endpoint at `/api/docs` ships with the package:

```
supergin-demo --host 127.0.0.1 --port 8080
```

`supergin.demo.create_app()` builds the same application for use with any
ASGI server or test client.

## What it does not do

The demo's database is a stand-in: it prints the SQL it is given and returns
fixed rows, and nothing is stored. The package has no storage of its own, no
authentication, and no HTML pages; it serves JSON, raw bytes and WebSockets.