"""
Low-level requests to the Kubernetes API: one-shot reads and watch-streams.

All requests go through the agent-wide session (see :mod:`auth`). The server
and connection errors are retried with the configured backoffs, since
the API servers are restarted or throttled from time to time. Client-side
errors (404, 403, 409, etc.) are escalated immediately: retrying them is useless.
"""
import asyncio
import collections.abc
import json
from collections.abc import AsyncIterator, Iterator, Mapping
from typing import Any

import aiohttp

from logsync._cogs.clients import auth, errors
from logsync._cogs.configs import configuration
from logsync._cogs.helpers import typedefs

RETRIABLE_ERRORS = (aiohttp.ClientConnectionError, errors.APIServerError, asyncio.TimeoutError)


def iter_attempts(
        settings: configuration.OperatorSettings,
) -> Iterator[tuple[str, float | None]]:
    """
    Yield the attempts' labels (``#2/3``) with the delays before the next attempt.

    The last attempt comes with no delay (``None``): its errors are escalated.
    The backoffs can be a single number (one retry), or any iterable (even endless).
    """
    backoffs = settings.networking.error_backoffs
    if not isinstance(backoffs, collections.abc.Iterable):
        backoffs = [backoffs]
    total = f"/{len(backoffs) + 1}" if isinstance(backoffs, collections.abc.Sized) else ""
    attempt = 0
    for attempt, backoff in enumerate(backoffs, start=1):
        yield f"#{attempt}{total}", backoff
    yield f"#{attempt + 1}{total}", None


@auth.authenticated
async def request(
        method: str,
        url: str,  # relative to the server/api root.
        *,
        settings: configuration.OperatorSettings,
        payload: object | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: aiohttp.ClientTimeout | None = None,
        context: auth.APIContext | None = None,  # injected by the decorator
        logger: typedefs.Logger,
) -> aiohttp.ClientResponse:
    if context is None:  # for type-checking!
        raise RuntimeError("API instance is not injected by the decorator.")

    full_url = url if '://' in url else context.server.rstrip('/') + '/' + url.lstrip('/')
    what = f"{method.upper()} {full_url}"
    timeout = timeout if timeout is not None else aiohttp.ClientTimeout(
        total=settings.networking.request_timeout,
        sock_connect=settings.networking.connect_timeout,
    )

    retried = False
    for idx, backoff in iter_attempts(settings):
        if retried:
            logger.debug(f"Request attempt {idx}: {what}")
        try:
            response = await context.session.request(
                method=method,
                url=full_url,
                json=payload,
                headers=headers,
                timeout=timeout,
            )
            await errors.check_response(response)  # but do not parse it!
        except RETRIABLE_ERRORS as e:
            if backoff is None:
                logger.error(f"Request attempt {idx} failed; escalating: {what} -> {e!r}")
                raise
            logger.error(f"Request attempt {idx} failed; will retry: {what} -> {e!r}")
            await asyncio.sleep(backoff)  # cancellable, but not awakable.
            retried = True
        else:
            if retried:
                logger.debug(f"Request attempt {idx} succeeded: {what}")
            return response

    raise RuntimeError("Broken retryable routine.")  # impossible, but needed for type-checking.


async def get(
        url: str,  # relative to the server/api root.
        *,
        settings: configuration.OperatorSettings,
        headers: Mapping[str, str] | None = None,
        timeout: aiohttp.ClientTimeout | None = None,
        logger: typedefs.Logger,
) -> Any:
    """ Read one JSON document: an object, a list of objects, or a status. """
    response = await request('get', url, settings=settings, headers=headers,
                             timeout=timeout, logger=logger)
    async with response:
        return await response.json()


async def stream(
        url: str,  # relative to the server/api root.
        *,
        settings: configuration.OperatorSettings,
        headers: Mapping[str, str] | None = None,
        timeout: aiohttp.ClientTimeout | None = None,
        logger: typedefs.Logger,
) -> AsyncIterator[Any]:
    """ Read a stream of JSON documents, one per line, as sent by the watch-requests. """
    response = await request('get', url, settings=settings, headers=headers,
                             timeout=timeout, logger=logger)
    async with response:
        async for line in iter_jsonlines(response.content):
            yield json.loads(line.decode('utf-8'))


async def iter_jsonlines(
        content: aiohttp.StreamReader,
        chunk_size: int = 1024 * 1024,
) -> AsyncIterator[bytes]:
    """
    Iterate line by line over the response's content; skip the empty lines.

    aiohttp's own line iteration (``async for line in response.content``)
    fails on lines above 128 KB, while the pods' bodies can be much longer.
    """
    tail = b''
    async for chunk in content.iter_chunked(chunk_size):
        *lines, tail = (tail + chunk).split(b'\n')
        for line in lines:
            if line:
                yield line
    if tail:
        yield tail
