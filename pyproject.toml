[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tokenstate"
version = "0.0.1"
description = "State layout, bech32 addresses and a JSON-RPC query service and client for a token ledger with assets, orders and cross-chain loans."
requires-python = ">=3.10"
dependencies = []
keywords = ["token", "ledger", "state", "json-rpc", "bech32", "cb58", "key-value"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Libraries",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["tokenstate"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]
