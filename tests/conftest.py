import asyncio
import collections
import contextvars
import inspect
import json
import logging
from typing import Any

import aiohttp.test_utils
import aiohttp.web
import pytest

import logsync
from logsync._cogs.clients import auth
from logsync._cogs.configs.configuration import OperatorSettings
from logsync._cogs.structs.credentials import ConnectionInfo
from logsync._core.intents.registries import ReconcilerRegistry


def pytest_configure(config):
    config.addinivalue_line('markers', "e2e: end-to-end tests with the whole agent.")


# Make all tests in this directory and below asyncio-compatible by default.
# Due to how pytest-async checks for these markers, they should be added as early as possible.
@pytest.hookimpl(hookwrapper=True)
def pytest_pycollect_makeitem(collector, name, obj):
    if collector.funcnamefilter(name) and inspect.iscoroutinefunction(obj):
        pytest.mark.asyncio(obj)
    yield


@pytest.fixture()
def settings():
    settings = OperatorSettings()
    settings.discovery.node_name = 'node1'
    settings.networking.error_backoffs = []  # no retries in tests unless explicitly set.
    settings.watching.reconnect_backoff = 0
    return settings


@pytest.fixture()
def logger():
    return logging.getLogger('logsync.tests')


@pytest.fixture(autouse=True)
def registry():
    """
    Ensure that the tests have a fresh new global (not re-used) registry.
    """
    old_registry = logsync.get_default_registry()
    new_registry = ReconcilerRegistry()
    logsync.set_default_registry(new_registry)
    yield new_registry
    logsync.set_default_registry(old_registry)


#
# Bodies of the objects, as if they come from the API.
#

def make_body(name: str, *, namespace: str | None = None, rv: str = '1', generation: int = 1,
              labels: dict[str, str] | None = None,
              annotations: dict[str, str] | None = None,
              spec: dict[str, Any] | None = None,
              status: dict[str, Any] | None = None) -> dict[str, Any]:
    meta: dict[str, Any] = {'name': name, 'resourceVersion': rv, 'generation': generation}
    if namespace is not None:
        meta['namespace'] = namespace
    if labels is not None:
        meta['labels'] = labels
    if annotations is not None:
        meta['annotations'] = annotations
    body: dict[str, Any] = {'metadata': meta}
    if spec is not None:
        body['spec'] = spec
    if status is not None:
        body['status'] = status
    return body


def make_pod(name: str = 'pod1', *, namespace: str = 'ns1', rv: str = '1', ready: bool = True,
             labels: dict[str, str] | None = None) -> dict[str, Any]:
    container = ({'containerID': 'containerd://abc', 'state': {'running': {}}} if ready else
                 {'state': {'waiting': {'reason': 'ContainerCreating'}}})
    status = {'phase': 'Running' if ready else 'Pending', 'containerStatuses': [container]}
    return make_body(name, namespace=namespace, rv=rv, labels=labels, status=status)


def make_config(name: str = 'lgc1', *, namespace: str | None = 'ns1', rv: str = '1',
                generation: int = 1, type: str | None = 'pod', cluster: str | None = None,
                label_selector: dict[str, str] | None = None,
                node_selector: dict[str, str] | None = None,
                annotations: dict[str, str] | None = None) -> dict[str, Any]:
    spec: dict[str, Any] = {'pipeline': {'sources': '[]'}}
    if type is not None:
        selector: dict[str, Any] = {'type': type}
        if cluster is not None:
            selector['cluster'] = cluster
        if label_selector is not None:
            selector['labelSelector'] = label_selector
        if node_selector is not None:
            selector['nodeSelector'] = node_selector
        spec['selector'] = selector
    return make_body(name, namespace=namespace, rv=rv, generation=generation,
                     annotations=annotations, spec=spec)


@pytest.fixture()
def body_factory():
    return make_body


@pytest.fixture()
def pod_factory():
    return make_pod


@pytest.fixture()
def config_factory():
    return make_config


#
# A fake Kubernetes API server. Reasons:
# 1. We do not test the aiohttp client, we test the layers on top of it,
#    so everything low-level is served locally and assumed to be functional.
# 2. No external calls must be made under any circumstances.
#    The unit-tests must be fully isolated from the environment.
#

class FakeAPI:
    """
    A programmable fake API: the responses are consumed in the order they were added.

    The list & watch requests to the same URL path are distinguished by
    the ``watch`` query parameter. All the requests are remembered for assertions.

    With ``idle_watches``, the unmocked watch-streams stay open with no events
    until the client disconnects, as the real API does when nothing changes.
    """

    def __init__(self) -> None:
        super().__init__()
        self.responses: dict[tuple[str, str, bool], collections.deque[dict[str, Any]]] = {}
        self.requests: list[tuple[str, str]] = []
        self.server: str | None = None
        self.idle_watches = False
        self.closing = asyncio.Event()

    def add(self, method: str, path: str, *, watch: bool = False, status: int = 200,
            json: Any = None, events: list[Any] | None = None, text: str | None = None) -> None:
        key = (method.upper(), path, watch)
        self.responses.setdefault(key, collections.deque()).append(
            dict(status=status, json=json, events=events, text=text))

    def add_list(self, path: str, items: list[Any], *, rv: str = '100', kind: str = 'PodList') -> None:
        self.add('get', path, json={'kind': kind, 'apiVersion': 'v1',
                                    'metadata': {'resourceVersion': rv}, 'items': items})

    def add_watch(self, path: str, events: list[Any], *, gone: bool = True) -> None:
        tail = [{'type': 'ERROR', 'object': {'code': 410}}] if gone else []
        self.add('get', path, watch=True, events=list(events) + tail)

    async def handle(self, request: aiohttp.web.Request) -> aiohttp.web.StreamResponse:
        self.requests.append((request.method, request.raw_path))
        key = (request.method.upper(), request.path, request.query.get('watch') == 'true')
        queue = self.responses.get(key)
        if not queue and key[2] and self.idle_watches:
            response = aiohttp.web.StreamResponse()
            await response.prepare(request)
            while request.transport is not None and not request.transport.is_closing():
                if self.closing.is_set():
                    break
                await asyncio.sleep(0.01)
            return response
        if not queue:
            return aiohttp.web.json_response(
                {'kind': 'Status', 'code': 404, 'message': f'{request.path_qs} is not mocked'},
                status=404)
        spec = queue.popleft()
        if spec['events'] is not None:
            text = '\n'.join(json.dumps(event) for event in spec['events']) + '\n'
            return aiohttp.web.Response(text=text, status=spec['status'])
        if spec['text'] is not None:
            return aiohttp.web.Response(text=spec['text'], status=spec['status'])
        return aiohttp.web.json_response(spec['json'], status=spec['status'])


@pytest.fixture()
async def fake_api(mocker):
    api = FakeAPI()
    app = aiohttp.web.Application()
    app.router.add_route('*', '/{tail:.*}', api.handle)
    server = aiohttp.test_utils.TestServer(app)
    await server.start_server()

    # A default value makes the context visible in any task or context of the test.
    info = ConnectionInfo(server=f'http://{server.host}:{server.port}')
    api.server = info.server
    context = auth.APIContext(info)
    mocker.patch.object(auth, 'context_var', contextvars.ContextVar('context_var', default=context))
    try:
        yield api
    finally:
        api.closing.set()
        await context.close()
        await server.close()


#
# Helpers for the logging checks.
#

@pytest.fixture()
def assert_logs(caplog):
    """
    An assertion function to check that the messages are logged in that order.
    """
    import re

    def assert_logs_fn(patterns, prohibited=[], strict=False):
        __traceback_hide__ = True
        remaining_patterns = list(patterns)
        for message in caplog.messages:
            # The expected pattern is at position 0.
            # Looking-ahead: if one of the following patterns matches, while the
            # 0th does not, then the log message is missing, and we fail the test.
            for idx, pattern in enumerate(remaining_patterns):
                m = re.search(pattern, message)
                if m:
                    if idx == 0:
                        remaining_patterns[:1] = []
                        break  # out of `remaining_patterns` cycle
                    else:
                        skipped_patterns = remaining_patterns[:idx]
                        raise AssertionError(f"Few patterns were skipped: {skipped_patterns!r}")
                elif strict:
                    raise AssertionError(f"Unexpected log message: {message!r}")

            # Check that the prohibited patterns do not appear in any message at all.
            for pattern in prohibited:
                m = re.search(pattern, message)
                if m:
                    raise AssertionError(f"Prohibited log pattern found: {message!r} ~ {pattern!r}")

        # If all patterns have been matched in order, we are done.
        # if some are left, but the messages are over, then we fail.
        if remaining_patterns:
            raise AssertionError(f"Few patterns were missed: {remaining_patterns!r}")

    caplog.set_level(logging.DEBUG)
    return assert_logs_fn
