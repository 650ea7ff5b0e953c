[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "sioclient"
version = "0.1.0"
description = "A Socket.IO client with Engine.IO packet encoding, namespaces, acknowledgements and automatic reconnection"
requires-python = ">=3.10"
keywords = ["socket.io", "engine.io", "websocket", "client", "realtime"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP",
    "Topic :: Software Development :: Libraries :: Python Modules",
]
dependencies = [
    "websocket-client",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["sioclient"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
