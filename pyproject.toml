[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "dumpwalk"
version = "0.3.0"
description = "Stack walking over CPU contexts and stack memory captured in minidumps"
requires-python = ">=3.10"
dependencies = []
keywords = ["minidump", "crash", "stack", "unwind", "breakpad", "debugging"]
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
    "Topic :: Software Development :: Debuggers",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["dumpwalk"]

[tool.pytest.ini_options]
addopts = "-ra"
