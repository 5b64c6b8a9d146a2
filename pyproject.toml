[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ipfs-identity"
version = "0.1.0"
description = "A small HTTP identity service that stores its user database on IPFS"
requires-python = ">=3.10"
keywords = ["ipfs", "identity", "authentication", "users", "bcrypt", "flask"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Web Environment",
    "Framework :: Flask",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
    "Topic :: System :: Systems Administration :: Authentication/Directory",
]
dependencies = [
    "requests",
    "bcrypt",
    "flask",
    "python-dotenv",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[project.scripts]
ipfs-identity = "ipfs_identity.api:main"

[tool.hatch.build.targets.wheel]
packages = ["ipfs_identity"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
