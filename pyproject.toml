[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "netsweep"
version = "0.1.0"
description = "Building blocks for network scans: ARP requests and replies, packet send/receive loops, option parsing, and Docker and Elasticsearch service scanners"
requires-python = ">=3.10"
keywords = [
    "network",
    "scanner",
    "arp",
    "arp-cache",
    "port-range",
    "rate-limit",
    "docker",
    "elasticsearch",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Information Technology",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking :: Monitoring",
    "Topic :: System :: Networking",
    "Topic :: Software Development :: Libraries :: Python Modules",
]
dependencies = [
    "psutil",
    "requests",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["netsweep"]

[tool.hatch.build.targets.sdist]
include = [
    "netsweep",
    "tests",
    "pyproject.toml",
]

[tool.pytest.ini_options]
testpaths = ["tests"]
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
