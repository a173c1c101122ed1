import asyncio

import pytest

from logsync._cogs.clients.errors import APIError
from logsync._cogs.clients.watching import Bookmark, WatchingError, continuous_watch, \
                                           infinite_watch, watch_objs
from logsync._cogs.structs.references import PODS

STREAM = [
    {'type': 'ADDED', 'object': {'metadata': {'name': 'pod1', 'resourceVersion': '101'}}},
    {'type': 'MODIFIED', 'object': {'metadata': {'name': 'pod1', 'resourceVersion': '102'}}},
    {'type': 'DELETED', 'object': {'metadata': {'name': 'pod1', 'resourceVersion': '103'}}},
]


async def collect(stream):
    return [event async for event in stream]


async def test_watch_objs_passes_the_query(fake_api, settings):
    settings.watching.server_timeout = 123
    fake_api.add_watch('/api/v1/pods', STREAM, gone=False)
    events = await collect(watch_objs(settings=settings, resource=PODS, since='100',
                                      params={'fieldSelector': 'spec.nodeName=node1'}))
    assert [event['type'] for event in events] == ['ADDED', 'MODIFIED', 'DELETED']
    path = fake_api.requests[0][1]
    assert 'fieldSelector=spec.nodeName%3Dnode1' in path
    assert 'watch=true' in path
    assert 'resourceVersion=100' in path
    assert 'timeoutSeconds=123' in path


async def test_continuous_watch_lists_then_watches(fake_api, settings, pod_factory):
    fake_api.add_list('/api/v1/pods', [pod_factory('pod0')])
    fake_api.add_watch('/api/v1/pods', STREAM)
    events = await collect(continuous_watch(settings=settings, resource=PODS))

    assert events[0] is Bookmark.LISTING
    assert events[1]['type'] is None
    assert events[1]['object']['metadata']['name'] == 'pod0'
    assert events[2] is Bookmark.LISTED
    assert [event['type'] for event in events[3:]] == ['ADDED', 'MODIFIED', 'DELETED']


async def test_continuous_watch_resumes_from_the_latest_version(fake_api, settings):
    fake_api.add_list('/api/v1/pods', [])
    fake_api.add_watch('/api/v1/pods', STREAM[:2], gone=False)
    fake_api.add_watch('/api/v1/pods', STREAM[2:])
    events = await collect(continuous_watch(settings=settings, resource=PODS))

    assert events[:2] == [Bookmark.LISTING, Bookmark.LISTED]
    assert len(events) == 5
    assert 'resourceVersion=100' in fake_api.requests[1][1]
    assert 'resourceVersion=102' in fake_api.requests[2][1]


async def test_unsupported_event_types_are_ignored(fake_api, settings, assert_logs):
    fake_api.add_list('/api/v1/pods', [])
    fake_api.add_watch('/api/v1/pods', [{'type': 'BOOKMARK', 'object': {}}] + STREAM[:1])
    events = await collect(continuous_watch(settings=settings, resource=PODS))
    assert [event['type'] for event in events[2:]] == ['ADDED']
    assert_logs([r"Ignoring an unsupported event type: .*BOOKMARK"])


async def test_watch_errors_are_fatal(fake_api, settings):
    fake_api.add_list('/api/v1/pods', [])
    fake_api.add_watch('/api/v1/pods', [{'type': 'ERROR', 'object': {'code': 500}}], gone=False)
    with pytest.raises(WatchingError, match=r"Error in the watch-stream"):
        await collect(continuous_watch(settings=settings, resource=PODS))


async def test_infinite_watch_relists_after_gone(fake_api, settings, pod_factory):
    fake_api.add_list('/api/v1/pods', [pod_factory('pod1')])
    fake_api.add_watch('/api/v1/pods', [])
    fake_api.add_list('/api/v1/pods', [pod_factory('pod2')], rv='200')
    fake_api.add_watch('/api/v1/pods', [])
    events = await collect(infinite_watch(settings=settings, resource=PODS, _iterations=2))

    assert events[0] is Bookmark.LISTING
    assert events[1]['object']['metadata']['name'] == 'pod1'
    assert events[2] is Bookmark.LISTED
    assert events[3] is Bookmark.LISTING
    assert events[4]['object']['metadata']['name'] == 'pod2'
    assert events[5] is Bookmark.LISTED
    assert len(events) == 6


async def test_infinite_watch_waits_when_throttled(fake_api, settings, assert_logs):
    fake_api.add('get', '/api/v1/pods', status=429,
                 json={'kind': 'Status', 'code': 429, 'details': {'retryAfterSeconds': 0.01}})
    events = await collect(infinite_watch(settings=settings, resource=PODS, _iterations=1))
    assert events == [Bookmark.LISTING]
    assert_logs([r"will retry after 0.01 seconds"])


async def test_infinite_watch_waits_by_default_when_not_advised(mocker, fake_api, settings, assert_logs):
    mocker.patch('logsync._cogs.clients.watching.DEFAULT_THROTTLING_DELAY', 0.02)
    fake_api.add('get', '/api/v1/pods', status=429, text="slow down")
    events = await collect(infinite_watch(settings=settings, resource=PODS, _iterations=1))
    assert events == [Bookmark.LISTING]
    assert_logs([r"will retry after 0.02 seconds"])


async def test_infinite_watch_escalates_other_errors(fake_api, settings):
    with pytest.raises(APIError):
        await collect(infinite_watch(settings=settings, resource=PODS, _iterations=1))


async def test_listing_connection_errors_restart_the_stream(mocker, settings):
    mocker.patch('logsync._cogs.clients.fetching.list_objs', side_effect=asyncio.TimeoutError())
    events = await collect(continuous_watch(settings=settings, resource=PODS))
    assert events == [Bookmark.LISTING]
