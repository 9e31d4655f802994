import pytest
from pydantic import BaseModel
from starlette.testclient import TestClient

from supergin.di import Container
from supergin.engine import Config, Engine, get_validated_input
from supergin.resource import (
    CRUDController,
    ResourceBuilder,
    RestRoutes,
    pluralize,
    resource,
)


class UserIn(BaseModel):
    name: str
    email: str


class UserOut(BaseModel):
    id: int
    name: str


class UserSearch(BaseModel):
    name: str = ""


class UserController:
    def create(self, ctx):
        ctx.json(201, {"action": "create", "input": get_validated_input(ctx).model_dump()})

    def read(self, ctx):
        ctx.json(200, {"action": "read", "id": ctx.param("id")})

    def update(self, ctx):
        ctx.json(200, {"action": "update", "id": ctx.param("id")})

    def delete(self, ctx):
        ctx.json(200, {"action": "delete", "id": ctx.param("id")})

    def list(self, ctx):
        ctx.json(200, {"action": "list"})

    def search(self, ctx):
        ctx.json(200, {"action": "search", "name": get_validated_input(ctx).name})


def make_engine():
    return Engine(Config(enable_docs=False), Container())


def test_pluralize_rules():
    assert pluralize("User") == "Users"
    assert pluralize("Category") == "Categories"
    assert pluralize("Box") == "Boxes"


def test_protocol_controller_drives_resource():
    controller = UserController()
    assert isinstance(controller, CRUDController)
    engine = make_engine()
    routes = resource(engine, "User", controller).only("list").build()
    with TestClient(engine) as client:
        assert client.get("/users").json() == {"action": "list"}
    assert set(engine.get_routes()) == {routes.list}


def test_rest_route_names():
    engine = make_engine()
    routes = resource(engine, "User", UserController()).build()
    assert isinstance(routes, RestRoutes)
    assert routes.create == "create_user"
    assert routes.read == "show_user"
    assert routes.update == "update_user"
    assert routes.delete == "delete_user"
    assert routes.list == "list_users"
    assert routes.search == "search_users"


def test_generated_routes_methods_and_paths():
    engine = make_engine()
    routes = ResourceBuilder(engine, "User", UserController()).build()
    expected = {
        routes.list: ("GET", "/users"),
        routes.create: ("POST", "/users"),
        routes.read: ("GET", "/users/:id"),
        routes.update: ("PUT", "/users/:id"),
        routes.delete: ("DELETE", "/users/:id"),
        routes.search: ("GET", "/users/search"),
    }
    for name, (method, path) in expected.items():
        info = engine.get_route(name)
        assert (info.method, info.path) == (method, path)
    assert len(engine.get_routes()) == 6


def test_descriptions_use_names():
    engine = make_engine()
    routes = resource(engine, "User", UserController()).build()
    assert engine.get_route(routes.list).description == "List all Users"
    assert engine.get_route(routes.read).description == "Get User by ID"


def test_only_restricts_actions():
    engine = make_engine()
    routes = resource(engine, "User", UserController()).only("list", "read").build()
    assert set(engine.get_routes()) == {routes.list, routes.read}


def test_except_excludes_actions():
    engine = make_engine()
    routes = resource(engine, "User", UserController()).except_("delete").build()
    names = set(engine.get_routes())
    assert routes.delete not in names
    assert len(names) == 5


def test_only_wins_over_except():
    engine = make_engine()
    routes = (
        resource(engine, "User", UserController())
        .only("create")
        .except_("create")
        .build()
    )
    assert set(engine.get_routes()) == {routes.create}


def test_member_and_collection_routes():
    engine = make_engine()
    handler = lambda ctx: ctx.json(200, {"ok": True})
    (
        resource(engine, "User", UserController())
        .only()
        .member("activate", "POST", "/activate", handler)
        .collection("stats", "GET", "/stats", handler)
        .build()
    )
    activate = engine.get_route("user_activate")
    stats = engine.get_route("users_stats")
    assert (activate.method, activate.path) == ("POST", "/users/:id/activate")
    assert (stats.method, stats.path) == ("GET", "/users/stats")
    assert activate.description == "activate User"
    assert stats.description == "stats Users"


def test_custom_route_with_unknown_method_fails():
    engine = make_engine()
    builder = resource(engine, "User", UserController()).only().member(
        "probe", "OPTIONS", "/probe", lambda ctx: None
    )
    with pytest.raises(ValueError):
        builder.build()


def test_base_path_tags_and_metadata():
    engine = make_engine()
    routes = (
        resource(engine, "User", UserController())
        .with_base_path("/api/people")
        .with_tags("api", "v1")
        .with_metadata("version", "v1")
        .build()
    )
    info = engine.get_route(routes.read)
    assert info.path == "/api/people/:id"
    assert info.tags == ["user", "api", "v1"]
    assert info.metadata["version"] == "v1"
    assert len(engine.get_routes_by_tag("api")) == 6


def test_model_types_attached():
    engine = make_engine()
    routes = (
        resource(engine, "User", UserController())
        .with_model(UserIn, UserOut(id=1, name="a"), UserSearch)
        .build()
    )
    assert engine.get_route(routes.list).output_type == list[UserOut]
    assert engine.get_route(routes.read).output_type is UserOut
    create = engine.get_route(routes.create)
    assert (create.input_type, create.output_type) == (UserIn, UserOut)
    search = engine.get_route(routes.search)
    assert (search.input_type, search.output_type) == (UserSearch, list[UserOut])
    assert engine.get_route(routes.delete).input_type is None


def test_http_dispatch_to_controller():
    engine = make_engine()
    resource(engine, "User", UserController()).with_model(
        UserIn, UserOut, UserSearch
    ).build()
    with TestClient(engine) as client:
        assert client.get("/users").json() == {"action": "list"}
        assert client.get("/users/7").json() == {"action": "read", "id": "7"}
        assert client.put("/users/7", json={"name": "Ann", "email": "ann@example.com"}).json()["action"] == "update"
        assert client.delete("/users/7").json() == {"action": "delete", "id": "7"}
        found = client.get("/users/search", params={"name": "jo"})
        assert found.json() == {"action": "search", "name": "jo"}
        created = client.post("/users", json={"name": "Ann", "email": "ann@example.com"})
        assert created.status_code == 201
        assert created.json()["input"] == {"name": "Ann", "email": "ann@example.com"}


def test_invalid_input_rejected():
    engine = make_engine()
    resource(engine, "User", UserController()).with_model(UserIn, UserOut, None).build()
    with TestClient(engine) as client:
        response = client.post("/users", json={"name": "Ann"})
    assert response.status_code == 400
    assert response.json()["error"] == "Input validation failed"


def test_resource_middleware_runs_for_routes():
    engine = make_engine()
    seen = []

    async def record(ctx, call_next):
        seen.append(ctx.request.url.path)
        await call_next()

    resource(engine, "User", UserController()).with_middleware(record).build()
    with TestClient(engine) as client:
        client.get("/users")
        client.get("/users/3")
    assert seen == ["/users", "/users/3"]
    assert engine.get_route("list_users").name == "list_users"