"""
Version information for the Ingress SDK.

Installed package metadata wins; a source checkout falls back to the
version declared in pyproject.toml.
"""
import importlib.metadata
import pathlib

import tomli

DEFAULT_VERSION = "0.3.0"
PYPROJECT_PATH = pathlib.Path(__file__).parent.parent / "pyproject.toml"


def _pyproject_version() -> str:
    try:
        with PYPROJECT_PATH.open("rb") as f:
            return tomli.load(f)["project"]["version"]
    except (FileNotFoundError, KeyError, tomli.TOMLDecodeError):
        return DEFAULT_VERSION


try:
    __version__ = importlib.metadata.version("ingress-sdk")
except importlib.metadata.PackageNotFoundError:
    __version__ = _pyproject_version()
