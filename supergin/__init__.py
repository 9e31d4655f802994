"""Named routes, validation, dependency injection, REST resources, WebSocket hubs and a gRPC bridge on Starlette."""

__version__ = "0.1.0"