[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "minibase"
version = "0.1.0"
description = "Storage-layer building blocks for a small relational database: a paged disk buffer pool, simple transactions and date validation."
requires-python = ">=3.10"
dependencies = []
keywords = ["database", "buffer-pool", "paging", "transactions", "storage-engine"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database :: Database Engines/Servers",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["minibase"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
