"""
Watch-streams of the resources: the listing, then the changes since the listing.

Every stream starts with the full listing of the objects (simulated as events
with no type), followed by the watch-events since the list's resource version.
The listing is framed by bookmarks, so that the consumers (the informers)
could detect the objects that were deleted while the stream was disconnected.

If the stream fails with "410 Gone" (the resource version is too old),
it is re-listed and re-watched from scratch. If the server throttles us
with "429 Too Many Requests", the stream is re-listed after the advised delay.
"""
import asyncio
import enum
import logging
from collections.abc import AsyncIterator, Mapping
from typing import cast

import aiohttp

from logsync._cogs.clients import api, errors, fetching
from logsync._cogs.configs import configuration
from logsync._cogs.structs import bodies, references

logger = logging.getLogger(__name__)

HTTP_GONE = 410
DEFAULT_THROTTLING_DELAY = 1.0
KNOWN_EVENT_TYPES = frozenset({'ADDED', 'MODIFIED', 'DELETED'})

# The errors after which the stream is silently restarted: network issues & timeouts.
DISCONNECTION_ERRORS = (aiohttp.ClientConnectionError, aiohttp.ClientPayloadError, asyncio.TimeoutError)


class WatchingError(Exception):
    """
    Raised when the watch-stream reports an error other than "410 Gone".
    """


class Bookmark(enum.Enum):
    """ Special marks sent in the stream among raw events. """
    LISTING = enum.auto()  # the listing begins, all objects follow.
    LISTED = enum.auto()  # the listing is over, now streaming.


def _describe(resource: references.Resource, namespace: references.Namespace) -> str:
    return f"{resource} in {namespace!r}" if namespace is not None else f"{resource} cluster-wide"


async def infinite_watch(
        *,
        settings: configuration.OperatorSettings,
        resource: references.Resource,
        namespace: references.Namespace = None,
        params: Mapping[str, str] | None = None,
        _iterations: int | None = None,  # used in tests/mocks/fixtures
) -> AsyncIterator[Bookmark | bodies.RawEvent]:
    """
    Stream the watch-events infinitely, with re-listing on every restart.

    It only exits with unrecoverable exceptions (or after a few iterations
    in tests). The throttling errors are not escalated: the stream waits
    for as long as the server asks, and is then restarted.
    """
    what = _describe(resource, namespace)
    logger.debug(f"Starting the watch-stream for {what}.")
    try:
        while _iterations is None or _iterations > 0:  # equivalent to `while True` in non-test mode
            if _iterations is not None:
                _iterations -= 1
            try:
                async for raw_event in continuous_watch(settings=settings, resource=resource,
                                                        namespace=namespace, params=params):
                    yield raw_event
            except errors.APIThrottledError as e:
                delay = e.retry_after or DEFAULT_THROTTLING_DELAY
                logger.warning(f"The server is throttling the watch-stream for {what}; "
                               f"will retry after {delay} seconds: {e}")
                await asyncio.sleep(delay)
            await asyncio.sleep(settings.watching.reconnect_backoff)
    finally:
        logger.debug(f"Stopping the watch-stream for {what}.")


async def continuous_watch(
        *,
        settings: configuration.OperatorSettings,
        resource: references.Resource,
        namespace: references.Namespace = None,
        params: Mapping[str, str] | None = None,
) -> AsyncIterator[Bookmark | bodies.RawEvent]:
    """
    List the objects, then watch them for as long as the resource version is valid.

    The individual watch-requests are disconnected by the server from time to time
    even if everything is fine; they are resumed from the latest seen version.
    The stream ends when the listing fails due to disconnections, or when
    the resource version becomes too old (the caller re-lists it).
    """
    yield Bookmark.LISTING
    try:
        objs, resource_version = await fetching.list_objs(
            logger=logger,
            settings=settings,
            resource=resource,
            namespace=namespace,
            params=params,
        )
    except DISCONNECTION_ERRORS:
        return

    for obj in objs:
        yield {'type': None, 'object': obj}
    yield Bookmark.LISTED

    while True:
        async for raw_input in watch_objs(settings=settings, resource=resource,
                                          namespace=namespace, params=params,
                                          since=resource_version):
            raw_type = raw_input['type']
            raw_object = raw_input['object']

            if raw_type == 'ERROR':
                if cast(bodies.RawError, raw_object).get('code') == HTTP_GONE:
                    logger.debug(f"Restarting the watch-stream for {_describe(resource, namespace)}.")
                    return
                raise WatchingError(f"Error in the watch-stream: {raw_object}")

            if raw_type not in KNOWN_EVENT_TYPES:
                logger.warning(f"Ignoring an unsupported event type: {raw_input!r}")
                continue

            body = cast(bodies.RawBody, raw_object)
            resource_version = bodies.get_version(body) or resource_version
            yield cast(bodies.RawEvent, raw_input)


async def watch_objs(
        *,
        settings: configuration.OperatorSettings,
        resource: references.Resource,
        namespace: references.Namespace = None,
        params: Mapping[str, str] | None = None,
        since: str | None = None,
) -> AsyncIterator[bodies.RawInput]:
    """
    Watch objects of a specific resource type, until disconnected.

    The extra params (e.g. ``fieldSelector``) are the same as used for listing.
    """
    query: dict[str, str] = dict(params or {}, watch='true')
    if since is not None:
        query['resourceVersion'] = since
    if settings.watching.server_timeout is not None:
        query['timeoutSeconds'] = str(settings.watching.server_timeout)

    connect_timeout = next((timeout for timeout in [
        settings.watching.connect_timeout,
        settings.networking.connect_timeout,
        settings.networking.request_timeout,
    ] if timeout is not None), None)
    timeout = aiohttp.ClientTimeout(total=settings.watching.client_timeout, sock_connect=connect_timeout)

    try:
        url = resource.get_url(namespace=namespace, params=query)
        async for raw_input in api.stream(url, settings=settings, timeout=timeout, logger=logger):
            yield raw_input
    except DISCONNECTION_ERRORS:
        pass
