import itertools
from datetime import datetime

import pytest
from pydantic import BaseModel, Field
from starlette.testclient import TestClient

from supergin.di import Container, current_request_scope
from supergin.engine import (
    Config,
    Context,
    Engine,
    RouteBuilder,
    get_validated_input,
)
from supergin.errors import ErrorCode, SuperGinError


class CreateUser(BaseModel):
    name: str = Field(min_length=2)
    age: int = Field(default=0, ge=0, le=130)


class SearchUsers(BaseModel):
    name: str = ""
    page: int = 0


def make_engine(**settings) -> Engine:
    return Engine(Config(**settings), Container())


def test_url_for_replaces_parameters():
    engine = make_engine()
    engine.named("show_user").get("/users/:id").handler(lambda ctx: None)
    assert engine.url_for("show_user", "id", "42") == "/users/42"
    assert engine.url_for("show_user") == "/users/:id"


def test_url_for_unknown_route_raises():
    engine = make_engine()
    with pytest.raises(SuperGinError) as info:
        engine.url_for("missing")
    assert info.value.code is ErrorCode.ROUTE_NOT_FOUND
    assert "missing" in str(info.value)


def test_route_info_is_recorded():
    engine = make_engine()
    builder = (
        engine.named("create_user")
        .post("/users")
        .with_io(CreateUser, SearchUsers())
        .with_description("Create a user")
        .with_tags("users", "v1")
        .with_metadata("version", "v1")
        .handler(lambda ctx: None)
    )
    assert isinstance(builder, RouteBuilder)
    route = engine.get_route("create_user")
    assert route.method == "POST"
    assert route.path == "/users"
    assert route.input_type is CreateUser
    assert route.output_type is SearchUsers
    assert route.tags == ["users", "v1"]
    assert route.metadata == {"version": "v1"}
    assert route.description == "Create a user"
    assert engine.get_route("nope") is None


def test_get_routes_by_tag_and_copy():
    engine = make_engine()
    engine.named("a").get("/a").with_tags("x").handler(lambda ctx: None)
    engine.named("b").get("/b").with_tags("y").handler(lambda ctx: None)
    engine.named("c").get("/c").with_tags("x", "y").handler(lambda ctx: None)
    names = sorted(route.name for route in engine.get_routes_by_tag("x"))
    assert names == ["a", "c"]
    routes = engine.get_routes()
    routes.pop("a")
    assert engine.get_route("a").path == "/a"


@pytest.mark.parametrize(
    "build, message",
    [
        (lambda e: e.named("").get("/x").handler(lambda ctx: None), "name"),
        (lambda e: e.named("x").handler(lambda ctx: None), "method"),
        (lambda e: e.named("x").get("").handler(lambda ctx: None), "path"),
        (lambda e: e.named("x").get("/x").handler(None), "handler"),
    ],
)
def test_incomplete_routes_raise(build, message):
    engine = make_engine()
    with pytest.raises(ValueError) as info:
        build(engine)
    assert message in str(info.value)
    assert engine.get_routes() == {}


def test_duplicate_path_raises():
    engine = make_engine()
    engine.named("one").get("/dup").handler(lambda ctx: None)
    with pytest.raises(ValueError):
        engine.named("two").get("/dup").handler(lambda ctx: None)
    engine.named("three").post("/dup").handler(lambda ctx: None)
    assert engine.get_route("three").method == "POST"


def test_handler_reads_path_param():
    engine = make_engine()
    engine.named("show").get("/items/:id").handler(
        lambda ctx: ctx.json(200, {"id": ctx.param("id"), "other": ctx.param("x")})
    )
    response = TestClient(engine).get("/items/7")
    assert response.status_code == 200
    assert response.json() == {"id": "7", "other": ""}


def test_static_segment_takes_priority_over_parameter():
    engine = make_engine()
    engine.named("show").get("/items/:id").handler(
        lambda ctx: ctx.json(200, {"route": "show"})
    )
    engine.named("search").get("/items/search").handler(
        lambda ctx: ctx.json(200, {"route": "search"})
    )
    client = TestClient(engine)
    assert client.get("/items/search").json() == {"route": "search"}
    assert client.get("/items/5").json() == {"route": "show"}


def test_valid_json_input_is_validated_and_stored():
    engine = make_engine()

    def handler(ctx):
        user = get_validated_input(ctx)
        ctx.json(201, {"name": user.name, "age": user.age})

    engine.named("create").post("/users").with_input(CreateUser).handler(handler)
    response = TestClient(engine).post("/users", json={"name": "Ann", "age": 30})
    assert response.status_code == 201
    assert response.json() == {"name": "Ann", "age": 30}


def test_invalid_input_returns_400():
    engine = make_engine()
    called = []
    engine.named("create").post("/users").with_input(CreateUser).handler(
        lambda ctx: called.append(ctx)
    )
    response = TestClient(engine).post("/users", json={"name": "A", "age": 200})
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Input validation failed"
    assert body["details"].startswith("[VALIDATION_FAILED] validation error")
    assert called == []


def test_malformed_json_is_binding_error():
    engine = make_engine()
    engine.named("create").post("/users").with_input(CreateUser).handler(
        lambda ctx: ctx.json(200, {})
    )
    response = TestClient(engine).post(
        "/users", content=b"{not json", headers={"content-type": "application/json"}
    )
    assert response.status_code == 400
    assert response.json()["details"].startswith("[VALIDATION_FAILED] binding error")


def test_get_binds_query_parameters():
    engine = make_engine()

    def handler(ctx):
        criteria = get_validated_input(ctx)
        ctx.json(200, {"name": criteria.name, "page": criteria.page})

    engine.named("search").get("/search").with_input(SearchUsers).handler(handler)
    response = TestClient(engine).get("/search", params={"name": "bo", "page": "3"})
    assert response.json() == {"name": "bo", "page": 3}


def test_form_body_is_bound():
    engine = make_engine()
    engine.named("create").post("/form").with_input(CreateUser).handler(
        lambda ctx: ctx.json(200, {"name": get_validated_input(ctx).name})
    )
    response = TestClient(engine).post("/form", data={"name": "Zed", "age": "4"})
    assert response.json() == {"name": "Zed"}


def test_validation_disabled_skips_binding():
    engine = make_engine(validate_input=False)
    engine.named("create").post("/users").with_input(CreateUser).handler(
        lambda ctx: ctx.json(200, {"validated": get_validated_input(ctx) is None})
    )
    response = TestClient(engine).post("/users", json={"name": "A"})
    assert response.status_code == 200
    assert response.json() == {"validated": True}


def test_middleware_runs_in_order_around_handler():
    engine = make_engine()
    events = []

    async def global_mw(ctx, call_next):
        events.append("global-before")
        await call_next()
        events.append("global-after")

    async def route_mw(ctx, call_next):
        events.append("route")

    engine.use(global_mw)
    engine.named("h").get("/h").with_middleware(route_mw).handler(
        lambda ctx: events.append("handler")
    )
    response = TestClient(engine).get("/h")
    assert response.status_code == 200
    assert events == ["global-before", "route", "handler", "global-after"]


def test_middleware_writing_response_stops_chain():
    engine = make_engine()
    called = []

    async def deny(ctx, call_next):
        ctx.json(401, {"error": "unauthorized"})

    engine.named("h").get("/h").with_middleware(deny).handler(
        lambda ctx: called.append(True)
    )
    response = TestClient(engine).get("/h")
    assert response.status_code == 401
    assert response.json() == {"error": "unauthorized"}
    assert called == []


def test_async_handler_and_context_keys():
    engine = make_engine()

    async def handler(ctx):
        ctx.set("k", "v")
        ctx.json(200, {"k": ctx.get("k"), "missing": ctx.get("nope")})

    engine.named("h").get("/h").handler(handler)
    assert TestClient(engine).get("/h").json() == {"k": "v", "missing": None}


def test_json_encodes_datetimes_and_models():
    engine = make_engine()
    engine.named("h").get("/h").handler(
        lambda ctx: ctx.json(
            200,
            {"at": datetime(2024, 1, 2, 3, 4, 5), "user": CreateUser(name="Ann")},
        )
    )
    body = TestClient(engine).get("/h").json()
    assert body["at"] == "2024-01-02T03:04:05"
    assert body["user"] == {"name": "Ann", "age": 0}


def test_no_content_and_raw_data():
    engine = make_engine()
    engine.named("gone").delete("/gone").handler(lambda ctx: ctx.json(204, None))
    engine.named("raw").get("/raw").handler(
        lambda ctx: ctx.data(200, "application/x-protobuf", b"\x08\x01")
    )
    client = TestClient(engine)
    gone = client.delete("/gone")
    assert gone.status_code == 204
    assert gone.content == b""
    raw = client.get("/raw")
    assert raw.content == b"\x08\x01"
    assert raw.headers["content-type"] == "application/x-protobuf"


def test_handler_exception_becomes_500():
    engine = make_engine()

    def boom(ctx):
        raise RuntimeError("boom")

    engine.named("boom").get("/boom").handler(boom)
    assert TestClient(engine).get("/boom").status_code == 500


def test_request_scope_shared_within_request_only():
    container = Container()
    counter = itertools.count()
    container.register_request("svc", lambda: next(counter))
    engine = Engine(Config(), container)

    def handler(ctx: Context):
        first = container.get_from_context(ctx.request_scope, "svc")
        second = container.get_from_context(ctx.request_scope, "svc")
        ctx.json(
            200,
            {
                "value": first,
                "same": first == second,
                "current": current_request_scope() is ctx.request_scope,
            },
        )

    engine.named("h").get("/h").handler(handler)
    client = TestClient(engine)
    one = client.get("/h").json()
    two = client.get("/h").json()
    assert one["same"] and two["same"]
    assert one["current"] and two["current"]
    assert one["value"] != two["value"]


def test_docs_endpoint_lists_routes_and_services():
    container = Container()
    container.register_instance("dbConfig", {"host": "localhost"})
    engine = Engine(Config(docs_path="/api/docs"), container)
    engine.named("health").get("/health").with_tags("health").handler(
        lambda ctx: ctx.json(200, {"status": "healthy"})
    )
    body = TestClient(engine).get("/api/docs").json()
    assert body["total_routes"] == 1
    assert body["routes"]["health"]["path"] == "/health"
    assert body["routes"]["health"]["tags"] == ["health"]
    assert body["di_services"]["dbConfig"]["scope"] == "singleton"
    assert "generated_at" in body


def test_docs_disabled():
    engine = make_engine(enable_docs=False)
    assert TestClient(engine).get("/docs").status_code == 404


def test_websocket_route():
    engine = make_engine()

    async def echo(websocket):
        await websocket.accept()
        text = await websocket.receive_text()
        await websocket.send_text(text.upper())
        await websocket.close()

    engine.named("ws").with_tags("websocket").websocket("/ws", echo)
    with TestClient(engine) as client, client.websocket_connect("/ws") as ws:
        ws.send_text("hi")
        assert ws.receive_text() == "HI"
    route = engine.get_route("ws")
    assert route.method == "GET"
    assert route.tags == ["websocket"]