"""
Logging of the agent: formats, formatters, and the per-item loggers.

Everything related to a specific work item is logged via `ItemLogger`,
which carries the item's kind and key into the log records. The formatters
then render them either as a ``[kind namespace/name]`` prefix in the text logs,
or as a separate structured field in the JSON logs.
"""
import copy
import enum
import logging
from collections.abc import MutableMapping
from typing import Any

from pythonjsonlogger.core import RESERVED_ATTRS
from pythonjsonlogger.json import JsonFormatter

from logsync._cogs.helpers import typedefs
from logsync._cogs.structs import workitems

DEFAULT_JSON_REFKEY = 'item'
""" A key for work item references in JSON logs, as seen by the log parsers. """


class LogFormat(enum.Enum):
    """ Log formats, as specified on CLI. """
    PLAIN = '%(message)s'
    FULL = '[%(asctime)s] %(name)-20.20s [%(levelname)-8.8s] %(message)s'
    JSON = '-json-'  # not used for formatting, only for detection


class ItemFormatter(logging.Formatter):
    pass


class ItemTextFormatter(ItemFormatter, logging.Formatter):
    pass


class ItemJsonFormatter(ItemFormatter, JsonFormatter):
    def __init__(
            self,
            *args: Any,
            refkey: str | None = None,
            **kwargs: Any,
    ) -> None:
        # Avoid type checking, as the args are not in the parent consructor.
        reserved_attrs = kwargs.pop('reserved_attrs', RESERVED_ATTRS)
        reserved_attrs = set(reserved_attrs)
        reserved_attrs |= {'item_ref'}
        kwargs.update(reserved_attrs=reserved_attrs)
        kwargs.setdefault('timestamp', True)
        super().__init__(*args, **kwargs)
        self._refkey: str = refkey or DEFAULT_JSON_REFKEY

    def add_fields(
            self,
            log_record: MutableMapping[str, object],
            record: logging.LogRecord,
            message_dict: MutableMapping[str, object],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        if self._refkey and hasattr(record, 'item_ref'):
            log_record[self._refkey] = getattr(record, 'item_ref')

        if 'severity' not in log_record:
            log_record['severity'] = (
                "debug" if record.levelno <= logging.DEBUG else
                "info" if record.levelno <= logging.INFO else
                "warn" if record.levelno <= logging.WARNING else
                "error" if record.levelno <= logging.ERROR else
                "fatal")


class ItemPrefixingMixin(ItemFormatter):
    def format(self, record: logging.LogRecord) -> str:
        if hasattr(record, 'item_ref'):
            ref = getattr(record, 'item_ref')
            record = copy.copy(record)  # shallow
            record.msg = f"[{ref.get('kind')} {ref.get('key')}] {record.msg}"
        return super().format(record)


class ItemPrefixingTextFormatter(ItemPrefixingMixin, ItemTextFormatter):
    pass


class ItemPrefixingJsonFormatter(ItemPrefixingMixin, ItemJsonFormatter):
    pass


class ItemLogger(typedefs.LoggerAdapter):
    """
    A logger/adapter to carry the work item identifiers for formatting.

    The item reference is a plain dict (not the item itself), so that
    the JSON formatters could serialize it without any extra knowledge.
    """

    def __init__(self, *, item: workitems.WorkItem) -> None:
        super().__init__(logger, dict(
            item_ref=dict(
                kind=str(item.kind),
                key=item.key,
                selectorType=str(item.selector_type),
                teardown=item.teardown,
            ),
        ))

    def process(
            self,
            msg: str,
            kwargs: MutableMapping[str, Any],
    ) -> tuple[str, MutableMapping[str, Any]]:
        # Native logging overwrites the message's extra with the adapter's extra.
        # We merge them, so that both message's & adapter's extras are available.
        kwargs["extra"] = dict(self.extra or {}, **kwargs.get('extra', {}))
        return msg, kwargs


logger = logging.getLogger('logsync.items')


def configure(
        debug: bool | None = None,
        verbose: bool | None = None,
        quiet: bool | None = None,
        log_format: LogFormat = LogFormat.FULL,
        log_prefix: bool | None = False,
        log_refkey: str | None = None,
) -> None:
    log_level = 'DEBUG' if debug or verbose else 'WARNING' if quiet else 'INFO'
    formatter = make_formatter(log_format=log_format, log_prefix=log_prefix, log_refkey=log_refkey)
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    logger = logging.getLogger()
    logger.addHandler(handler)
    logger.setLevel(log_level)

    # Prevent the low-level logging unless in the debug mode. Keep only the agent's messages.
    # For no-propagation loggers, add a dummy null handler to prevent printing the messages.
    for name in ['asyncio']:
        logger = logging.getLogger(name)
        logger.propagate = bool(debug)
        if not debug:
            logger.handlers[:] = [logging.NullHandler()]


def make_formatter(
        log_format: LogFormat = LogFormat.FULL,
        log_prefix: bool | None = False,
        log_refkey: str | None = None,
) -> ItemFormatter:
    log_prefix = log_prefix if log_prefix is not None else bool(log_format is not LogFormat.JSON)
    if log_format is LogFormat.JSON:
        if log_prefix:
            return ItemPrefixingJsonFormatter(refkey=log_refkey)
        else:
            return ItemJsonFormatter(refkey=log_refkey)
    elif isinstance(log_format, LogFormat):
        if log_prefix:
            return ItemPrefixingTextFormatter(log_format.value)
        else:
            return ItemTextFormatter(log_format.value)
    elif isinstance(log_format, str):
        if log_prefix:
            return ItemPrefixingTextFormatter(log_format)
        else:
            return ItemTextFormatter(log_format)
    else:
        raise ValueError(f"Unsupported log format: {log_format!r}")
