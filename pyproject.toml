[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "statehouse"
version = "0.1.0"
description = "House and device state model, time-series point writer, identity token source and JSON snapshot builders for a home-telemetry engine"
requires-python = ">=3.10"
dependencies = []
keywords = ["home-automation", "telemetry", "influxdb", "state", "snapshot", "oauth"]
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
    "Topic :: Home Automation",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["statehouse"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
