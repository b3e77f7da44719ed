[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "exodus-rsync"
version = "0.1.0"
description = "rsync-style source tree walking, filtering and publish handling for a content gateway"
requires-python = ">=3.10"
keywords = ["rsync", "cdn", "publish", "mirroring", "filters"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Archiving :: Mirroring",
]
dependencies = []

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
    "cryptography",
]

[tool.hatch.build.targets.wheel]
packages = ["exodus_rsync"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
