[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "supergin"
version = "0.1.0"
description = "A web toolkit on Starlette with named routes, input validation, dependency injection, REST resources, WebSocket hubs and a gRPC bridge."
requires-python = ">=3.10"
keywords = [
    "web",
    "asgi",
    "starlette",
    "named-routes",
    "dependency-injection",
    "rest",
    "websocket",
    "grpc",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Framework :: AsyncIO",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: Dynamic Content",
    "Topic :: Software Development :: Libraries :: Application Frameworks",
    "Typing :: Typed",
]
dependencies = [
    "starlette",
    "pydantic>=2",
    "uvicorn",
    "httpx",
    "grpcio",
    "protobuf",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
    "httpx",
]

[project.scripts]
supergin-demo = "supergin.demo:main"

[tool.hatch.build.targets.wheel]
packages = ["supergin"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
ignore_missing_imports = true
