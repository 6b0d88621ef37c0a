[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "stringwork"
version = "0.1.0"
description = "Coordination core for a driver agent and its worker agents: shared state, task assignment, liveness watchdog, change notifications and a stdio-to-unix-socket proxy."
requires-python = ">=3.10"
dependencies = [
    "watchdog",
]
keywords = [
    "agents",
    "collaboration",
    "orchestration",
    "json-rpc",
    "watchdog",
    "task-assignment",
]
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
    "Topic :: Software Development",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["stringwork"]

[tool.hatch.build.targets.sdist]
include = [
    "stringwork",
    "tests",
    "pyproject.toml",
]

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
