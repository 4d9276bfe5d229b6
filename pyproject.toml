[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ethrpc"
version = "0.1.0"
description = "Asyncio JSON-RPC transports for Ethereum nodes: HTTP, IPC, WebSocket and batching."
requires-python = ">=3.10"
keywords = ["ethereum", "json-rpc", "asyncio", "websocket", "ipc", "transport"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Framework :: AsyncIO",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet",
    "Topic :: Software Development :: Libraries :: Python Modules",
]
dependencies = [
    "aiohttp>=3.8",
    "websockets>=11",
]

[project.optional-dependencies]
test = [
    "pytest>=7",
    "pytest-asyncio>=0.21",
    "aiohttp>=3.8",
    "websockets>=11",
]

[tool.hatch.build.targets.wheel]
packages = ["ethrpc"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
