"""Resource routing that generates the standard REST routes for a model."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, get_origin, runtime_checkable

from supergin.engine import Context, Engine, Handler, Middleware, RouteBuilder

_ACTIONS = ("list", "create", "read", "update", "delete", "search")


def _type_of(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, type) or get_origin(value) is not None:
        return value
    return type(value)


@runtime_checkable
class CRUDController(Protocol):
    """Handlers for the six REST actions of a resource."""

    def create(self, ctx: Context) -> Any:
        """Create a new record."""

    def read(self, ctx: Context) -> Any:
        """Return one record by id."""

    def update(self, ctx: Context) -> Any:
        """Update one record by id."""

    def delete(self, ctx: Context) -> Any:
        """Delete one record by id."""

    def list(self, ctx: Context) -> Any:
        """Return every record."""

    def search(self, ctx: Context) -> Any:
        """Return records matching the search input."""


@dataclass
class CustomRoute:
    """An extra member or collection route of a resource."""

    method: str
    path: str
    handler: Handler
    name: str
    description: str = ""
    input_type: Any = None
    output_type: Any = None


@dataclass
class ModelInfo:
    """What a resource knows about its model when generating routes."""

    name: str
    plural_name: str
    base_path: str
    controller: CRUDController
    input_type: Any = None
    output_type: Any = None
    search_type: Any = None
    middleware: list[Middleware] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    custom_routes: dict[str, CustomRoute] = field(default_factory=dict)


@dataclass
class RestRoutes:
    """Names of the generated REST routes."""

    create: str
    read: str
    update: str
    delete: str
    list: str
    search: str


def pluralize(word: str) -> str:
    """Form a simple English plural."""
    if word.endswith("y"):
        return word[:-1] + "ies"
    if word.endswith(("s", "x", "z")):
        return word + "es"
    return word + "s"


class ResourceBuilder:
    """Fluent builder generating CRUD and custom routes for a model."""

    def __init__(self, engine: Engine, name: str, controller: CRUDController) -> None:
        plural = pluralize(name)
        lower = name.lower()
        lower_plural = plural.lower()
        self.engine = engine
        self.model_info = ModelInfo(
            name=name,
            plural_name=plural,
            base_path="/" + lower_plural,
            controller=controller,
            tags=[lower],
        )
        self.rest_routes = RestRoutes(
            create=f"create_{lower}",
            read=f"show_{lower}",
            update=f"update_{lower}",
            delete=f"delete_{lower}",
            list=f"list_{lower_plural}",
            search=f"search_{lower_plural}",
        )

    def with_model(self, input: Any, output: Any, search: Any) -> ResourceBuilder:
        """Attach input, output and search types; instances stand for their type."""
        if input is not None:
            self.model_info.input_type = _type_of(input)
        if output is not None:
            self.model_info.output_type = _type_of(output)
        if search is not None:
            self.model_info.search_type = _type_of(search)
        return self

    def with_middleware(self, *middleware: Middleware) -> ResourceBuilder:
        self.model_info.middleware.extend(middleware)
        return self

    def with_tags(self, *tags: str) -> ResourceBuilder:
        self.model_info.tags.extend(tags)
        return self

    def with_base_path(self, path: str) -> ResourceBuilder:
        self.model_info.base_path = path
        return self

    def with_metadata(self, key: str, value: Any) -> ResourceBuilder:
        self.model_info.metadata[key] = value
        return self

    def member(
        self, name: str, method: str, path: str, handler: Handler
    ) -> ResourceBuilder:
        """Add a route acting on a single record, under ``<base>/:id``."""
        info = self.model_info
        info.custom_routes[name] = CustomRoute(
            method=method,
            path=f"{info.base_path}/:id{path}",
            handler=handler,
            name=f"{info.name.lower()}_{name}",
            description=f"{name} {info.name}",
        )
        return self

    def collection(
        self, name: str, method: str, path: str, handler: Handler
    ) -> ResourceBuilder:
        """Add a route acting on the whole collection."""
        info = self.model_info
        info.custom_routes[name] = CustomRoute(
            method=method,
            path=info.base_path + path,
            handler=handler,
            name=f"{info.plural_name.lower()}_{name}",
            description=f"{name} {info.plural_name}",
        )
        return self

    def only(self, *actions: str) -> ResourceBuilder:
        """Generate only the given REST actions."""
        self.model_info.metadata["only_actions"] = list(actions)
        return self

    def except_(self, *actions: str) -> ResourceBuilder:
        """Generate every REST action except the given ones."""
        self.model_info.metadata["except_actions"] = list(actions)
        return self

    def build(self) -> RestRoutes:
        """Register the REST routes and custom routes on the engine."""
        metadata = self.model_info.metadata
        only = metadata.get("only_actions")
        excluded = metadata.get("except_actions")

        def should_generate(action: str) -> bool:
            if isinstance(only, list):
                return action in only
            if isinstance(excluded, list):
                return action not in excluded
            return True

        generators: dict[str, Callable[[], None]] = {
            "list": self._generate_list,
            "create": self._generate_create,
            "read": self._generate_read,
            "update": self._generate_update,
            "delete": self._generate_delete,
            "search": self._generate_search,
        }
        for action in _ACTIONS:
            if should_generate(action):
                generators[action]()
        for custom in list(self.model_info.custom_routes.values()):
            self._generate_custom(custom)
        return self.rest_routes

    def _start(self, name: str, method: str, path: str, description: str) -> RouteBuilder:
        builder = self.engine.named(name)
        setters = {
            "GET": builder.get,
            "POST": builder.post,
            "PUT": builder.put,
            "DELETE": builder.delete,
            "PATCH": builder.patch,
        }
        setter = setters.get(method)
        if setter is not None:
            setter(path)
        return (
            builder.with_description(description)
            .with_tags(*self.model_info.tags)
            .with_middleware(*self.model_info.middleware)
        )

    def _finish(self, builder: RouteBuilder, handler: Handler) -> None:
        for key, value in self.model_info.metadata.items():
            builder.with_metadata(key, value)
        builder.handler(handler)

    def _generate_list(self) -> None:
        info = self.model_info
        builder = self._start(
            self.rest_routes.list, "GET", info.base_path, f"List all {info.plural_name}"
        )
        if info.output_type is not None:
            builder.with_output(list[info.output_type])
        self._finish(builder, info.controller.list)

    def _generate_create(self) -> None:
        info = self.model_info
        builder = self._start(
            self.rest_routes.create, "POST", info.base_path, f"Create a new {info.name}"
        )
        if info.input_type is not None and info.output_type is not None:
            builder.with_io(info.input_type, info.output_type)
        self._finish(builder, info.controller.create)

    def _generate_read(self) -> None:
        info = self.model_info
        builder = self._start(
            self.rest_routes.read, "GET", info.base_path + "/:id", f"Get {info.name} by ID"
        )
        if info.output_type is not None:
            builder.with_output(info.output_type)
        self._finish(builder, info.controller.read)

    def _generate_update(self) -> None:
        info = self.model_info
        builder = self._start(
            self.rest_routes.update,
            "PUT",
            info.base_path + "/:id",
            f"Update {info.name} by ID",
        )
        if info.input_type is not None and info.output_type is not None:
            builder.with_io(info.input_type, info.output_type)
        self._finish(builder, info.controller.update)

    def _generate_delete(self) -> None:
        info = self.model_info
        builder = self._start(
            self.rest_routes.delete,
            "DELETE",
            info.base_path + "/:id",
            f"Delete {info.name} by ID",
        )
        self._finish(builder, info.controller.delete)

    def _generate_search(self) -> None:
        info = self.model_info
        builder = self._start(
            self.rest_routes.search,
            "GET",
            info.base_path + "/search",
            f"Search {info.plural_name}",
        )
        if info.search_type is not None and info.output_type is not None:
            builder.with_io(info.search_type, list[info.output_type])
        self._finish(builder, info.controller.search)

    def _generate_custom(self, custom: CustomRoute) -> None:
        builder = self._start(custom.name, custom.method, custom.path, custom.description)
        if custom.input_type is not None and custom.output_type is not None:
            builder.with_io(custom.input_type, custom.output_type)
        self._finish(builder, custom.handler)


def resource(engine: Engine, name: str, controller: CRUDController) -> ResourceBuilder:
    """Start building REST routes for the model called ``name``."""
    return ResourceBuilder(engine, name, controller)