[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "lanchat"
version = "0.1.0"
description = "A small TCP group chat with a capped room, a waiting queue, colours and history, plus a client launcher that collects start-up reports."
requires-python = ">=3.10"
dependencies = []
keywords = ["chat", "tcp", "sockets", "terminal", "queue"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Communications :: Chat",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
lanchat-server = "lanchat.server:main"
lanchat-client = "lanchat.client:main"
lanchat-pipeserver = "lanchat.pipeserver:main"

[tool.hatch.build.targets.wheel]
packages = ["lanchat"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
