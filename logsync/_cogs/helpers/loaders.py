"""
Module- and file-loading to get the reconcilers registered.

The reconcilers are registered with decorators (see :mod:`logsync.on`),
so the files/modules with them must be loaded before the agent starts.
Both modes of the Python CLI are supported:

* Plain files (`logsync run reconcilers.py`).
* Importable modules (`logsync run -m pkg.reconcilers`).

Multiple files/modules can be specified. They are loaded in the given order.
"""
import importlib
import importlib.abc
import importlib.util
import os.path
import sys
from collections.abc import Iterable
from typing import cast


def preload(
        paths: Iterable[str],
        modules: Iterable[str],
) -> None:
    for idx, path in enumerate(paths):
        sys.path.insert(0, os.path.abspath(os.path.dirname(path)))
        name = f'__logsync_script_{idx}__{path}'
        spec = importlib.util.spec_from_file_location(name, path)
        module = importlib.util.module_from_spec(spec) if spec is not None else None
        loader = cast(importlib.abc.Loader, spec.loader) if spec is not None else None
        if module is None or loader is None:
            raise ImportError(f"Failed loading {path}: no module or loader.")
        sys.modules[name] = module
        loader.exec_module(module)

    for name in modules:
        importlib.import_module(name)
