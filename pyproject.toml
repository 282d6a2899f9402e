[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "mobilectl"
version = "0.1.0"
description = "Discover and manage iOS simulators, offline Android emulators and remote mobile devices"
requires-python = ">=3.10"
dependencies = []
keywords = ["mobile", "ios", "android", "simulator", "emulator", "simctl", "avd", "testing"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: MacOS",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Testing",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["mobilectl"]

[tool.pytest.ini_options]
addopts = "-ra"
