[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "agentwire"
version = "0.1.5"
description = "Building blocks for newline-delimited JSON-RPC over stdio with agent app servers: transport, state projection, schema guard, event sinks and reply policy"
requires-python = ">=3.10"
dependencies = []
keywords = ["json-rpc", "stdio", "agent", "asyncio", "jsonl", "state-reducer", "subprocess"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Framework :: AsyncIO",
    "Operating System :: POSIX",
    "Topic :: Software Development :: Libraries",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["agentwire"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
