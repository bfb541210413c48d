[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "wirepipe"
version = "0.1.0"
description = "Data pipelines that stream documents from MongoDB or Kafka sources into Elasticsearch or Kafka sinks"
requires-python = ">=3.10"
keywords = ["pipeline", "mongodb", "kafka", "elasticsearch", "change-stream", "etl"]
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
    "Topic :: Database",
]
dependencies = [
    "pymongo",
    "requests",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["wirepipe"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
