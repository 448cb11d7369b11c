"""
Version and client identification for the Paymaster SDK.

``USER_AGENT`` is sent with every request to the hosted paymaster service
and to JSON-RPC nodes, so operators can tell SDK releases apart in their logs.
"""
import importlib.metadata
import pathlib

import tomli

DISTRIBUTION_NAME = "verifying-paymaster-sdk"
FALLBACK_VERSION = "0.1.0"
PYPROJECT_PATH = pathlib.Path(__file__).parent.parent / "pyproject.toml"


def _version_from_pyproject() -> str:
    """Read the version of a source checkout, where no metadata is installed"""
    try:
        with PYPROJECT_PATH.open("rb") as f:
            data = tomli.load(f)
        project = data["project"]
        if project.get("name") != DISTRIBUTION_NAME:
            return FALLBACK_VERSION
        return project["version"]
    except (FileNotFoundError, KeyError, tomli.TOMLDecodeError):
        return FALLBACK_VERSION


try:
    __version__ = importlib.metadata.version(DISTRIBUTION_NAME)
except importlib.metadata.PackageNotFoundError:
    __version__ = _version_from_pyproject()

USER_AGENT = f"{DISTRIBUTION_NAME}/{__version__}"
