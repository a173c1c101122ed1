"""
Rudimentary type [re-]definitions for cross-versioned Python & mypy.

Some stdlib classes are generics in the type-sheds but not at runtime
(e.g. `logging.LoggerAdapter`). They are defined here in a reusable way.
"""
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    LoggerAdapter = logging.LoggerAdapter[Any]
else:
    LoggerAdapter = logging.LoggerAdapter

# We only promise that it is based on one of the built-in loggable classes.
Logger = logging.Logger | LoggerAdapter
