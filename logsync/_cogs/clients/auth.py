import base64
import contextlib
import functools
import os
import ssl
import tempfile
from contextvars import ContextVar
from collections.abc import Callable
from typing import Any, TypeVar, cast

import aiohttp

from logsync._cogs.helpers import versions
from logsync._cogs.structs import credentials

# Per-agent API context with the authenticated session. Set by `running.spawn_tasks`,
# so that every task of the agent uses the same session (and the same connection pool).
context_var: ContextVar['APIContext'] = ContextVar('context_var')

# A typevar to show that we return a function with the same signature as given.
_F = TypeVar('_F', bound=Callable[..., Any])


def authenticated(fn: _F) -> _F:
    """
    A decorator to inject a pre-authenticated session to a requesting routine.

    If the context is explicitly passed, it is used as is (e.g. in tests).
    Otherwise, the agent-wide context is taken from the context variable.
    """
    @functools.wraps(fn)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        if kwargs.get('context') is None:
            try:
                kwargs['context'] = context_var.get()
            except LookupError:
                raise RuntimeError("API context is not set: the agent is not logged in.")
        return await fn(*args, **kwargs)

    return cast(_F, wrapper)


class APIContext:
    """
    The agent-wide aiohttp session with the credentials and the server's URL.

    It is constructed once per agent, and lives until the agent exits.
    All the API requests and watch-streams share its connection pool.
    """

    session: aiohttp.ClientSession
    server: str

    def __init__(
            self,
            info: credentials.ConnectionInfo,
    ) -> None:
        super().__init__()
        self.server = info.server
        self.session = aiohttp.ClientSession(
            connector=aiohttp.TCPConnector(limit=0, ssl=make_ssl_context(info)),
            headers=dict(make_auth_headers(info), **{
                'User-Agent': f'logsync/{versions.version or "unknown"}',
            }),
            auth=(aiohttp.BasicAuth(info.username, info.password)
                  if info.username and info.password else None),
        )

    async def close(self) -> None:
        await self.session.close()


def make_ssl_context(info: credentials.ConnectionInfo) -> ssl.SSLContext:
    """
    Build the SSL context for the CA verification and the client certificates.

    The in-memory certificates & keys are not accepted by :mod:`ssl` directly,
    so they are dumped to temporary files for the time of loading.
    The files are not created if not needed: it can be a read-only filesystem.
    """
    context = ssl.create_default_context(
        purpose=ssl.Purpose.SERVER_AUTH,
        cafile=os.path.expanduser(info.ca_path) if info.ca_path else None,
        cadata=decode_to_pem(info.ca_data) if info.ca_data is not None else None,
    )
    with contextlib.ExitStack() as stack:
        cert_path = _as_file(stack, info.certificate_path, info.certificate_data)
        pkey_path = _as_file(stack, info.private_key_path, info.private_key_data)
        if cert_path and pkey_path:
            context.load_cert_chain(certfile=cert_path, keyfile=pkey_path)
    if info.insecure:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


def make_auth_headers(info: credentials.ConnectionInfo) -> dict[str, str]:
    """ The token authentication: ``Bearer`` unless the scheme is stated explicitly. """
    if info.token:
        return {'Authorization': f'{info.scheme or "Bearer"} {info.token}'}
    elif info.scheme:
        return {'Authorization': info.scheme}
    else:
        return {}


def _as_file(
        stack: contextlib.ExitStack,
        path: str | None,
        data: str | bytes | None,
) -> str | None:
    if path:
        return path
    if not data:
        return None
    file = stack.enter_context(tempfile.NamedTemporaryFile(buffering=0))
    file.write(decode_to_pem(data).encode('ascii'))
    return file.name


def decode_to_pem(data: str | bytes) -> str:
    """ Accept both the PEM-encoded data as is, and the base64-encoded PEM (as in kubeconfigs). """
    if isinstance(data, str) and data.startswith('-----BEGIN '):
        return data
    if isinstance(data, bytes) and data.startswith(b'-----BEGIN '):
        return data.decode('ascii')
    return base64.b64decode(data).decode('ascii')
