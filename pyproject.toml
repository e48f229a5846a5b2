[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "redisfallback"
version = "0.1.0"
description = "A Redis cache wrapper that falls back to in-memory and on-disk JSON storage when Redis is unavailable"
requires-python = ">=3.10"
dependencies = [
    "redis",
]
keywords = ["redis", "cache", "fallback", "resilience", "failover"]
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
    "Topic :: Database",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["redisfallback"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
