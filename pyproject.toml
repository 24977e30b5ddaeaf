[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "evbus"
version = "0.1.0"
description = "Module runtime support over an MQTT message bus: topic routing, handler dispatch, settings and helpers"
requires-python = ">=3.10"
keywords = ["mqtt", "message-bus", "modules", "runtime", "cobs", "serial"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Libraries :: Application Frameworks",
    "Topic :: System :: Networking",
]
dependencies = [
    "paho-mqtt",
    "pyserial",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["evbus"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]
