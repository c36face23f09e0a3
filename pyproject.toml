[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "mptkit"
version = "0.1.0"
description = "Sparse Merkle Patricia Trie, RLP encoding, receipts and EIP-4844 helpers for Ethereum data"
requires-python = ">=3.10"
dependencies = [
    "pycryptodome",
]
keywords = ["ethereum", "merkle-patricia-trie", "mpt", "rlp", "keccak", "receipt", "eip-4844"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["mptkit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
