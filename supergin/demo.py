"""Example user API built on resources, named routes and dependency injection."""

from __future__ import annotations

import argparse
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from supergin.di import Container, get_container
from supergin.engine import Config, Context, Engine, get_validated_input
from supergin.resource import RestRoutes, resource

_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_INTEGER = re.compile(r"[+-]?\d+")


def _now() -> datetime:
    return datetime.now().astimezone()


def _parse_id(text: str) -> int:
    """Parse a decimal id; raises ValueError for anything else."""
    if not _INTEGER.fullmatch(text):
        raise ValueError(f"invalid id: {text!r}")
    return int(text)


class CreateUserRequest(BaseModel):
    """Input for creating or updating a user."""

    name: str = Field(min_length=2)
    email: str
    age: int = Field(default=0, ge=0, le=130)

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        if not _EMAIL.match(value):
            raise ValueError("value is not a valid email address")
        return value


class UserResponse(BaseModel):
    """A user as returned by the API."""

    id: int
    name: str
    email: str
    age: int
    created_at: datetime


class UserSearchRequest(BaseModel):
    """Search criteria taken from the query string."""

    name: str = ""
    email: str = ""
    page: int = 0
    limit: int = 0


@dataclass
class DatabaseConfig:
    """Connection settings for the database."""

    host: str
    port: int
    database: str
    username: str
    password: str


class PostgresDB:
    """A stand-in database that logs statements and returns fixed rows."""

    def __init__(self, config: DatabaseConfig) -> None:
        self.config = config

    def query(self, sql: str) -> list[dict[str, Any]]:
        print(f"Executing query: {sql}")
        return [
            {"id": 1, "name": "John Doe", "email": "john@example.com", "age": 30},
            {"id": 2, "name": "Jane Smith", "email": "jane@example.com", "age": 25},
        ]

    def execute(self, sql: str) -> None:
        print(f"Executing SQL: {sql}")


class UserRepository:
    """Data access for users."""

    def __init__(self, db: Any) -> None:
        self.db = db

    def find_by_id(self, user_id: int) -> UserResponse:
        rows = self.db.query(f"SELECT * FROM users WHERE id = {user_id}")
        if not rows:
            raise LookupError("user not found")
        return UserResponse(
            id=user_id,
            name="John Doe",
            email="john@example.com",
            age=30,
            created_at=_now(),
        )

    def create(self, user: CreateUserRequest) -> UserResponse:
        self.db.execute("INSERT INTO users (name, email, age) VALUES ...")
        return UserResponse(
            id=123, name=user.name, email=user.email, age=user.age, created_at=_now()
        )

    def update(self, user_id: int, user: CreateUserRequest) -> UserResponse:
        self.db.execute(f"UPDATE users SET ... WHERE id = {user_id}")
        return UserResponse(
            id=user_id,
            name=user.name,
            email=user.email,
            age=user.age,
            created_at=_now(),
        )

    def delete(self, user_id: int) -> None:
        self.db.execute(f"DELETE FROM users WHERE id = {user_id}")

    def list(self) -> list[UserResponse]:
        self.db.query("SELECT * FROM users")
        return [
            UserResponse(
                id=1, name="John Doe", email="john@example.com", age=30, created_at=_now()
            ),
            UserResponse(
                id=2,
                name="Jane Smith",
                email="jane@example.com",
                age=25,
                created_at=_now(),
            ),
        ]

    def search(self, criteria: UserSearchRequest) -> list[UserResponse]:
        query = "SELECT * FROM users WHERE 1=1"
        if criteria.name:
            query += f" AND name LIKE '%{criteria.name}%'"
        if criteria.email:
            query += f" AND email LIKE '%{criteria.email}%'"
        self.db.query(query)
        return [
            UserResponse(
                id=1, name="John Doe", email="john@example.com", age=30, created_at=_now()
            )
        ]


class UserService:
    """Business logic for users."""

    def __init__(self, repo: UserRepository) -> None:
        self.repo = repo

    def get_user(self, user_id: int) -> UserResponse:
        return self.repo.find_by_id(user_id)

    def create_user(self, user: CreateUserRequest) -> UserResponse:
        return self.repo.create(user)

    def update_user(self, user_id: int, user: CreateUserRequest) -> UserResponse:
        self.repo.find_by_id(user_id)
        return self.repo.update(user_id, user)

    def delete_user(self, user_id: int) -> None:
        self.repo.find_by_id(user_id)
        self.repo.delete(user_id)

    def list_users(self) -> list[UserResponse]:
        return self.repo.list()

    def search_users(self, criteria: UserSearchRequest) -> list[UserResponse]:
        return self.repo.search(criteria)


class UserController:
    """REST handlers for the user resource; services are resolved per request."""

    def __init__(self, container: Container | None = None) -> None:
        self.container = container if container is not None else get_container()

    def _service(self, ctx: Context) -> UserService:
        return self.container.get_from_context(ctx.request_scope, "userService")

    def create(self, ctx: Context) -> None:
        service = self._service(ctx)
        request = get_validated_input(ctx)
        if request is None:
            return
        try:
            user = service.create_user(request)
        except Exception as exc:
            ctx.json(500, {"error": str(exc)})
            return
        ctx.json(201, user)

    def read(self, ctx: Context) -> None:
        service = self._service(ctx)
        try:
            user_id = _parse_id(ctx.param("id"))
        except ValueError:
            ctx.json(400, {"error": "Invalid ID"})
            return
        try:
            user = service.get_user(user_id)
        except LookupError as exc:
            ctx.json(404, {"error": str(exc)})
            return
        ctx.json(200, user)

    def update(self, ctx: Context) -> None:
        service = self._service(ctx)
        try:
            user_id = _parse_id(ctx.param("id"))
        except ValueError:
            ctx.json(400, {"error": "Invalid ID"})
            return
        request = get_validated_input(ctx)
        if request is None:
            return
        try:
            user = service.update_user(user_id, request)
        except Exception as exc:
            ctx.json(500, {"error": str(exc)})
            return
        ctx.json(200, user)

    def delete(self, ctx: Context) -> None:
        service = self._service(ctx)
        try:
            user_id = _parse_id(ctx.param("id"))
        except ValueError:
            ctx.json(400, {"error": "Invalid ID"})
            return
        try:
            service.delete_user(user_id)
        except Exception as exc:
            ctx.json(500, {"error": str(exc)})
            return
        ctx.json(204, None)

    def list(self, ctx: Context) -> None:
        service = self._service(ctx)
        try:
            users = service.list_users()
        except Exception as exc:
            ctx.json(500, {"error": str(exc)})
            return
        ctx.json(200, users)

    def search(self, ctx: Context) -> None:
        service = self._service(ctx)
        criteria = get_validated_input(ctx)
        if criteria is None:
            return
        try:
            users = service.search_users(criteria)
        except Exception as exc:
            ctx.json(500, {"error": str(exc)})
            return
        ctx.json(200, users)


def setup_di(container: Container | None = None) -> Container:
    """Register the configuration, database, repository and service."""
    container = container if container is not None else get_container()
    password = "password"
    container.register_instance(
        "dbConfig",
        DatabaseConfig(
            host="localhost",
            port=5432,
            database="myapp",
            username="user",
            password=password,
        ),
    )

    def make_database(config: DatabaseConfig) -> PostgresDB:
        print(
            f"Creating database connection to "
            f"{config.host}:{config.port}/{config.database}"
        )
        return PostgresDB(config)

    container.register_singleton("database", make_database, "dbConfig")
    container.register_request("userRepository", UserRepository, "database")
    container.register_request("userService", UserService, "userRepository")
    print("Dependency injection configured")
    return container


def setup_routes(engine: Engine) -> RestRoutes:
    """Register the user resource and the demo routes on ``engine``."""
    container = engine.container

    def service(ctx: Context) -> UserService:
        return container.get_from_context(ctx.request_scope, "userService")

    async def log_requests(ctx: Context, call_next: Any) -> None:
        start = datetime.now()
        await call_next()
        duration = datetime.now() - start
        print(f"{ctx.request.method} {ctx.request.url.path} - {duration}")

    def toggle(action: str) -> Any:
        def handle(ctx: Context) -> None:
            try:
                user_id = _parse_id(ctx.param("id"))
            except ValueError:
                user_id = 0
            try:
                user = service(ctx).get_user(user_id)
            except LookupError:
                ctx.json(404, {"error": "User not found"})
                return
            ctx.json(
                200,
                {"message": f"User {user.name} {action} successfully", "user": user},
            )

        return handle

    def stats(ctx: Context) -> None:
        try:
            users = service(ctx).list_users()
        except Exception as exc:
            ctx.json(500, {"error": str(exc)})
            return
        total = len(users)
        average = sum(user.age for user in users) // total if total else 0
        ctx.json(
            200,
            {"total_users": total, "average_age": average, "generated_at": _now()},
        )

    routes = (
        resource(engine, "User", UserController(container))
        .with_model(CreateUserRequest, UserResponse, UserSearchRequest)
        .with_tags("api", "v1", "users")
        .with_metadata("version", "v1")
        .with_metadata("auth_required", False)
        .with_middleware(log_requests)
        .member("activate", "POST", "/activate", toggle("activated"))
        .member("deactivate", "POST", "/deactivate", toggle("deactivated"))
        .collection("stats", "GET", "/stats", stats)
        .build()
    )

    def health(ctx: Context) -> None:
        ctx.json(200, {"status": "healthy", "timestamp": _now(), "version": "1.0.0"})

    (
        engine.named("health_check")
        .get("/health")
        .with_description("Health check endpoint")
        .with_tags("health", "monitoring")
        .handler(health)
    )

    def di_test(ctx: Context) -> None:
        db1 = container.get_from_context(ctx.request_scope, "database")
        db2 = container.get_from_context(ctx.request_scope, "database")
        first = service(ctx)
        second = service(ctx)
        ctx.json(
            200,
            {
                "message": "DI Test Results",
                "singleton_test": {
                    "db1_equals_db2": db1 is db2,
                    "explanation": "Database should be the same instance (singleton)",
                },
                "request_scoped_test": {
                    "userService1_equals_userService2": first is second,
                    "explanation": (
                        "UserService should be the same instance within this request"
                    ),
                },
            },
        )

    (
        engine.named("di_test")
        .get("/di/test")
        .with_description("Test dependency injection")
        .with_tags("di", "test")
        .handler(di_test)
    )

    print("\nGenerated Routes:")
    print(f"   GET    /users           -> {routes.list} (List users)")
    print(f"   POST   /users           -> {routes.create} (Create user)")
    print(f"   GET    /users/:id       -> {routes.read} (Get user)")
    print(f"   PUT    /users/:id       -> {routes.update} (Update user)")
    print(f"   DELETE /users/:id       -> {routes.delete} (Delete user)")
    print(f"   GET    /users/search    -> {routes.search} (Search users)")
    print("   POST   /users/:id/activate   -> user_activate")
    print("   POST   /users/:id/deactivate -> user_deactivate")
    print("   GET    /users/stats          -> users_stats")
    print("   GET    /health               -> health_check")
    print("   GET    /di/test              -> di_test")
    print(f"   GET    {engine.config.docs_path:<22} -> API documentation")
    print("\nExample URLs:")
    print(f"   List users: http://localhost:8080{engine.url_for(routes.list)}")
    print(f"   Get user:   http://localhost:8080{engine.url_for(routes.read, 'id', '1')}")
    return routes


def create_app() -> Engine:
    """Build the demo application with its own container."""
    container = setup_di(Container())
    engine = Engine(
        Config(
            enable_docs=True,
            validate_input=True,
            validate_output=False,
            docs_path="/api/docs",
        ),
        container,
    )
    setup_routes(engine)
    return engine


def main(argv: list[str] | None = None) -> int:
    """Run the demo server."""
    parser = argparse.ArgumentParser(description="Run the user API demo server.")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8080)
    args = parser.parse_args(argv)
    app = create_app()
    print(f"Server starting on :{args.port}")
    print(f"API Documentation: http://localhost:{args.port}/api/docs")
    print(f"Users API: http://localhost:{args.port}/users")
    app.run(args.host, args.port)
    return 0