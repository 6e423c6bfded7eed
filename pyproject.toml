[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "xfrpkit"
version = "0.1.0"
description = "Client-side building blocks for an frp-style reverse proxy: control messages, login state, INI parsing, PBKDF2 and helper services"
requires-python = ">=3.10"
dependencies = []
keywords = ["frp", "reverse-proxy", "tunnel", "ini", "pbkdf2", "telnet"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Proxy Servers",
    "Topic :: Security :: Cryptography",
    "Topic :: Terminals :: Telnet",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["xfrpkit"]

[tool.pytest.ini_options]
addopts = "-ra"
