[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "zscan"
version = "0.1.0"
description = "Building blocks for a network scanner: output filter validation, send-thread iteration, Linux gateway discovery and progress monitoring"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "network",
    "scanner",
    "netlink",
    "gateway",
    "filter",
    "monitoring",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Science/Research",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["zscan"]

[tool.hatch.build.targets.sdist]
include = ["zscan", "tests"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 88
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
