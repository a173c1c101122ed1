"""
Detecting the agent's own version.

The version is determined only once at startup when the code is loaded,
from the installed package metadata (the codebase does not contain it).
"""
import importlib.metadata

version: str | None = None

try:
    name, *_ = __name__.split('.')  # usually "logsync", unless renamed/forked.
    version = importlib.metadata.version(name)
except importlib.metadata.PackageNotFoundError:
    pass  # not installed, running from a source tree, etc.
