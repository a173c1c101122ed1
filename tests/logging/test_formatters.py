import collections.abc
import json
import logging

import pytest

from logsync._cogs.structs.workitems import Kind, SelectorType, WorkItem
from logsync._core.actions.loggers import ItemJsonFormatter, ItemLogger, \
                                          ItemPrefixingJsonFormatter, ItemPrefixingTextFormatter, \
                                          ItemTextFormatter, make_formatter, LogFormat

ITEM = WorkItem(Kind.LOGCONFIG, 'ns1/lgc1', SelectorType.WORKLOAD)


class _LiveRecords(collections.abc.Sequence):
    """ A view on `caplog.records`, which is re-created by pytest between the test phases. """

    def __init__(self, caplog):
        self._caplog = caplog

    def __getitem__(self, index):
        return self._caplog.records[index]

    def __len__(self):
        return len(self._caplog.records)


@pytest.fixture()
def records(caplog):
    caplog.set_level(logging.DEBUG)
    return _LiveRecords(caplog)


def test_item_logger_carries_the_reference(records):
    ItemLogger(item=ITEM).info("hello %s", "world")
    assert len(records) == 1
    assert records[0].name == 'logsync.items'
    assert records[0].getMessage() == "hello world"
    assert records[0].item_ref == {
        'kind': 'logConfig', 'key': 'ns1/lgc1', 'selectorType': 'workload', 'teardown': False,
    }


def test_item_logger_keeps_the_extras(records):
    ItemLogger(item=ITEM).info("hello", extra={'custom': 123})
    assert records[0].custom == 123
    assert records[0].item_ref['key'] == 'ns1/lgc1'


def test_text_formatter_without_prefix(records):
    ItemLogger(item=ITEM).info("hello")
    assert ItemTextFormatter('%(message)s').format(records[0]) == "hello"


def test_text_formatter_with_prefix(records):
    ItemLogger(item=ITEM).info("hello")
    assert ItemPrefixingTextFormatter('%(message)s').format(records[0]) == "[logConfig ns1/lgc1] hello"


def test_prefixing_does_not_affect_other_formatters(records):
    ItemLogger(item=ITEM).info("hello")
    ItemPrefixingTextFormatter('%(message)s').format(records[0])
    assert records[0].getMessage() == "hello"


def test_prefix_is_not_added_to_non_item_records(records):
    logging.getLogger('logsync.other').info("hello")
    assert ItemPrefixingTextFormatter('%(message)s').format(records[0]) == "hello"


@pytest.mark.parametrize('level, severity', [
    (logging.DEBUG, 'debug'),
    (logging.INFO, 'info'),
    (logging.WARNING, 'warn'),
    (logging.ERROR, 'error'),
    (logging.CRITICAL, 'fatal'),
])
def test_json_formatter_severities(records, level, severity):
    ItemLogger(item=ITEM).log(level, "hello")
    data = json.loads(ItemJsonFormatter().format(records[0]))
    assert data['severity'] == severity
    assert data['message'] == "hello"


def test_json_formatter_puts_the_reference_by_default_key(records):
    ItemLogger(item=ITEM).info("hello")
    data = json.loads(ItemJsonFormatter().format(records[0]))
    assert data['item'] == {
        'kind': 'logConfig', 'key': 'ns1/lgc1', 'selectorType': 'workload', 'teardown': False,
    }
    assert 'item_ref' not in data
    assert 'timestamp' in data


def test_json_formatter_with_a_custom_refkey(records):
    ItemLogger(item=ITEM).info("hello")
    data = json.loads(ItemJsonFormatter(refkey='ref').format(records[0]))
    assert data['ref']['key'] == 'ns1/lgc1'
    assert 'item' not in data


def test_json_formatter_with_prefix(records):
    ItemLogger(item=ITEM).info("hello")
    data = json.loads(ItemPrefixingJsonFormatter().format(records[0]))
    assert data['message'] == "[logConfig ns1/lgc1] hello"


def test_make_formatter_passes_the_refkey():
    formatter = make_formatter(log_format=LogFormat.JSON, log_refkey='ref')
    assert isinstance(formatter, ItemJsonFormatter)
    assert formatter._refkey == 'ref'
