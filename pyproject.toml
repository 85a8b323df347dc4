[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "statsdpipe"
version = "0.1.0"
description = "StatsD and DogStatsD line parsing, UDP datagram receiving, metric types and a health-check HTTP server"
requires-python = ">=3.10"
dependencies = []
keywords = ["statsd", "dogstatsd", "metrics", "monitoring", "udp", "parser"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["statsdpipe"]

[tool.hatch.build.targets.sdist]
include = ["statsdpipe", "tests", "pyproject.toml"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
