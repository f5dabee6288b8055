[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "hauler"
version = "0.1.0"
description = "Airgap content store: list, save, load, extract, copy and serve OCI artifacts"
requires-python = ">=3.10"
keywords = ["airgap", "oci", "registry", "mirroring", "content-store", "archive"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Archiving :: Mirroring",
]
dependencies = [
    "zstandard",
    "tabulate",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
hauler = "hauler.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["hauler"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
