"""Dependency injection container with singleton, request and transient scopes."""

from __future__ import annotations

import contextvars
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from supergin.errors import ErrorCode, SuperGinError


class Scope(str, Enum):
    """Lifecycle of a registered service."""

    SINGLETON = "singleton"
    REQUEST = "request"
    TRANSIENT = "transient"


_UNSET: Any = object()
_CO_VARARGS = 0x04


@dataclass
class ServiceDefinition:
    """How a service is created and cached."""

    name: str
    scope: Scope
    factory: Callable[..., Any] | None = None
    dependencies: tuple[str, ...] = ()
    instance: Any = field(default=_UNSET, repr=False)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def resolved(self) -> bool:
        """Whether a singleton instance has been created or supplied."""
        return self.instance is not _UNSET

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "scope": self.scope.value,
            "dependencies": list(self.dependencies),
            "metadata": dict(self.metadata),
        }


class RequestScope:
    """Holds the instances of request-scoped services for one request."""

    def __init__(self) -> None:
        self.instances: dict[str, Any] = {}
        self._lock = threading.RLock()

    def get_or_create(self, name: str, create: Callable[[], Any]) -> Any:
        with self._lock:
            if name not in self.instances:
                self.instances[name] = create()
            return self.instances[name]

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self.instances


_current_scope: contextvars.ContextVar[RequestScope | None] = contextvars.ContextVar(
    "supergin_request_scope", default=None
)


def current_request_scope() -> RequestScope | None:
    """Return the request scope active in the current context, if any."""
    return _current_scope.get()


def _accepts_positional(factory: Callable[..., Any], count: int) -> bool:
    """Check, where the factory's code is visible, that it takes ``count`` arguments."""
    function = getattr(factory, "__func__", factory)
    code = getattr(function, "__code__", None)
    if code is None:
        return True
    params = code.co_argcount
    if function is not factory:
        params -= 1
    defaults = len(getattr(function, "__defaults__", None) or ())
    required = max(params - defaults, 0)
    if count < required:
        return False
    return bool(code.co_flags & _CO_VARARGS) or count <= params


class Container:
    """Registry of services and their resolved instances."""

    def __init__(self) -> None:
        self._services: dict[str, ServiceDefinition] = {}
        self._lock = threading.RLock()

    def register(
        self,
        name: str,
        factory: Callable[..., Any],
        scope: Scope | str,
        *dependencies: str,
    ) -> Container:
        """Register ``factory`` under ``name``; dependencies are passed positionally."""
        if not callable(factory):
            raise SuperGinError(
                ErrorCode.INVALID_FACTORY,
                f"factory for service '{name}' must be a function",
            )
        definition = ServiceDefinition(
            name=name,
            scope=Scope(scope),
            factory=factory,
            dependencies=tuple(dependencies),
        )
        with self._lock:
            self._services[name] = definition
        return self

    def register_singleton(
        self, name: str, factory: Callable[..., Any], *dependencies: str
    ) -> Container:
        return self.register(name, factory, Scope.SINGLETON, *dependencies)

    def register_request(
        self, name: str, factory: Callable[..., Any], *dependencies: str
    ) -> Container:
        return self.register(name, factory, Scope.REQUEST, *dependencies)

    def register_transient(
        self, name: str, factory: Callable[..., Any], *dependencies: str
    ) -> Container:
        return self.register(name, factory, Scope.TRANSIENT, *dependencies)

    def register_instance(self, name: str, instance: Any) -> Container:
        """Register an already created object as a singleton."""
        with self._lock:
            self._services[name] = ServiceDefinition(
                name=name, scope=Scope.SINGLETON, instance=instance
            )
        return self

    def get(self, name: str) -> Any:
        """Resolve a service without a request scope."""
        return self._resolve(name, set(), None)

    def get_from_context(self, scope: RequestScope | None, name: str) -> Any:
        """Resolve a service, caching request-scoped ones in ``scope``."""
        return self._resolve(name, set(), scope)

    @contextmanager
    def request_scope(self) -> Iterator[RequestScope]:
        """Open a fresh request scope and make it current for the block."""
        scope = RequestScope()
        token = _current_scope.set(scope)
        try:
            yield scope
        finally:
            _current_scope.reset(token)

    def list_services(self) -> dict[str, ServiceDefinition]:
        """Return a copy of the registered service definitions."""
        with self._lock:
            return dict(self._services)

    def _resolve(
        self, name: str, resolving: set[str], scope: RequestScope | None
    ) -> Any:
        if name in resolving:
            raise SuperGinError(
                ErrorCode.CIRCULAR_DEPENDENCY,
                f"circular dependency detected for service '{name}'",
            )
        resolving.add(name)
        try:
            with self._lock:
                service = self._services.get(name)
            if service is None:
                raise SuperGinError(
                    ErrorCode.DI_SERVICE_NOT_FOUND,
                    f"service '{name}' not registered",
                )
            if service.scope is Scope.SINGLETON:
                return self._resolve_singleton(service, resolving, scope)
            if service.scope is Scope.REQUEST:
                return self._resolve_request(service, resolving, scope)
            return self._create(service, resolving, scope)
        finally:
            resolving.discard(name)

    def _resolve_singleton(
        self,
        service: ServiceDefinition,
        resolving: set[str],
        scope: RequestScope | None,
    ) -> Any:
        if service.resolved:
            return service.instance
        with self._lock:
            if not service.resolved:
                service.instance = self._create(service, resolving, scope)
            return service.instance

    def _resolve_request(
        self,
        service: ServiceDefinition,
        resolving: set[str],
        scope: RequestScope | None,
    ) -> Any:
        if scope is None:
            raise SuperGinError(
                ErrorCode.CONTEXT_REQUIRED,
                f"request-scoped service '{service.name}' requires context",
            )
        return scope.get_or_create(
            service.name, lambda: self._create(service, resolving, scope)
        )

    def _create(
        self,
        service: ServiceDefinition,
        resolving: set[str],
        scope: RequestScope | None,
    ) -> Any:
        factory = service.factory
        if factory is None:
            raise SuperGinError(
                ErrorCode.INVALID_FACTORY,
                f"no factory function for service '{service.name}'",
            )
        args = [self._resolve(dep, resolving, scope) for dep in service.dependencies]
        if not _accepts_positional(factory, len(args)):
            raise SuperGinError(
                ErrorCode.INVALID_FACTORY,
                f"service '{service.name}' factory does not accept "
                f"{len(args)} dependencies",
            )
        return factory(*args)


_global_container = Container()


def get_container() -> Container:
    """Return the process-wide container."""
    return _global_container


def register(
    name: str, factory: Callable[..., Any], scope: Scope | str, *dependencies: str
) -> Container:
    return get_container().register(name, factory, scope, *dependencies)


def register_singleton(
    name: str, factory: Callable[..., Any], *dependencies: str
) -> Container:
    return get_container().register_singleton(name, factory, *dependencies)


def register_request(
    name: str, factory: Callable[..., Any], *dependencies: str
) -> Container:
    return get_container().register_request(name, factory, *dependencies)


def register_transient(
    name: str, factory: Callable[..., Any], *dependencies: str
) -> Container:
    return get_container().register_transient(name, factory, *dependencies)


def register_instance(name: str, instance: Any) -> Container:
    return get_container().register_instance(name, instance)


def get(name: str) -> Any:
    return get_container().get(name)


def get_from_context(scope: RequestScope | None, name: str) -> Any:
    return get_container().get_from_context(scope, name)


def resolve(name: str) -> Any:
    """Resolve from the global container using the current request scope, if any."""
    scope = current_request_scope()
    if scope is not None:
        return get_container().get_from_context(scope, name)
    return get_container().get(name)