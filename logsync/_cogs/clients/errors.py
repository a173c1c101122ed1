"""
K8s API errors, as seen by a read-only agent.

The agent only reads and watches the resources, so only a few API failures
are treated differently from each other: the credentials and RBAC problems
(not recoverable without an administrator), the objects that are gone,
the throttling (the server tells how long to wait), and the server-side
failures (retried with the configured backoffs). Everything else is
an :class:`APIError` and is distinguishable only by its fields.

The errors are built from the ``Status`` payloads of K8s API when there are
any; the aiohttp's errors are chained as their causes, but are never raised
directly. The network & SSL errors escalate from aiohttp as they are.
"""
import collections.abc
import json
from collections.abc import Mapping
from typing import Literal, TypedDict

import aiohttp


class RawStatusDetails(TypedDict, total=False):
    name: str
    kind: str
    retryAfterSeconds: float


# https://kubernetes.io/docs/reference/generated/kubernetes-api/v1.19/#status-v1-meta
class RawStatus(TypedDict, total=False):
    kind: Literal["Status"]
    code: int
    status: Literal["Success", "Failure"]
    reason: str
    message: str
    details: RawStatusDetails


class APIError(Exception):
    """ A failed API request: the HTTP status, and the server's explanation if any. """

    def __init__(
            self,
            payload: RawStatus | None,
            *,
            status: int,
    ) -> None:
        self._status = status
        self._payload: RawStatus = payload or {}
        super().__init__(self.message, payload)

    @property
    def status(self) -> int:
        return self._status

    @property
    def code(self) -> int | None:
        return self._payload.get('code')

    @property
    def reason(self) -> str | None:
        return self._payload.get('reason')

    @property
    def message(self) -> str | None:
        return self._payload.get('message')

    @property
    def details(self) -> RawStatusDetails | None:
        return self._payload.get('details')

    @property
    def retry_after(self) -> float | None:
        """ The delay advised by the server before the next attempt, if any. """
        return (self.details or {}).get('retryAfterSeconds')


class APIUnauthorizedError(APIError):
    """ The credentials are missing, invalid, or expired. """


class APIForbiddenError(APIError):
    """ The agent's service account has no RBAC permissions for the request. """


class APINotFoundError(APIError):
    """ The object (or the whole resource kind) does not exist. """


class APIThrottledError(APIError):
    """ The server asks to slow down: "429 Too Many Requests". """


class APIServerError(APIError):
    """ Any 5xx or unknown server-side failure; worth retrying. """


ERROR_CLASSES: Mapping[int, type[APIError]] = {
    401: APIUnauthorizedError,
    403: APIForbiddenError,
    404: APINotFoundError,
    429: APIThrottledError,
}


def get_error_class(status: int) -> type[APIError]:
    if status in ERROR_CLASSES:
        return ERROR_CLASSES[status]
    return APIServerError if status >= 500 else APIError


async def check_response(
        response: aiohttp.ClientResponse,
) -> None:
    """
    Raise the API error matching the response's status, if it is an error at all.
    """
    if response.status < 400:
        return

    # The body must be read before raise_for_status() releases the connection.
    payload: RawStatus | None
    try:
        payload = await response.json()
    except (json.JSONDecodeError, aiohttp.ContentTypeError, aiohttp.ClientConnectionError):
        payload = None

    # Only the statuses are kept: other payloads can contain the objects' data.
    if not isinstance(payload, collections.abc.Mapping) or payload.get('kind') != 'Status':
        payload = None

    cls = get_error_class(response.status)
    try:
        response.raise_for_status()
    except aiohttp.ClientResponseError as e:
        raise cls(payload, status=response.status) from e
