"""
All the structures coming from/to the Kubernetes API.

Everything marked "raw" is plain unwrapped unprocessed data as JSON-decoded
from Kubernetes API, usually as retrieved in watching or fetching API calls.
"Input" is a parsed JSON as is, while "event" is an "input" without "errors".

The objects are never wrapped into classes: the informers store them as dicts,
and the filters read the few fields they need with the helpers below.
"""
from collections.abc import Mapping
from typing import Any, Literal, NamedTuple, TypedDict

Labels = Mapping[str, str]
Annotations = Mapping[str, str]

# ``None`` is used for the listing, when the pseudo-watch-stream is simulated.
RawInputType = Literal[None, 'ADDED', 'MODIFIED', 'DELETED', 'ERROR']
RawEventType = Literal[None, 'ADDED', 'MODIFIED', 'DELETED']


class RawMeta(TypedDict, total=False):
    uid: str
    name: str
    namespace: str
    labels: Labels
    annotations: Annotations
    resourceVersion: str
    generation: int
    deletionTimestamp: str
    creationTimestamp: str


class RawBody(TypedDict, total=False):
    apiVersion: str
    kind: str
    metadata: RawMeta
    spec: Mapping[str, Any]
    status: Mapping[str, Any]


# A special payload for type==ERROR (this is not a connection or client error).
class RawError(TypedDict, total=False):
    apiVersion: str     # usually: Literal['v1']
    kind: str           # usually: Literal['Status']
    metadata: Mapping[Any, Any]
    code: int
    reason: str
    status: str
    message: str


# As received from the stream before processing the errors and special cases.
class RawInput(TypedDict, total=True):
    type: RawInputType
    object: RawBody | RawError


# As passed to the informers after processing the errors and special cases.
class RawEvent(TypedDict, total=True):
    type: RawEventType
    object: RawBody


class DeletedFinalStateUnknown(NamedTuple):
    """
    A tombstone for an object that has disappeared unnoticed.

    If the watch-stream is disconnected long enough, a deletion can be missed.
    The informer notices it only on the next re-listing, when the object
    is absent, and delivers the last known state with its last known key.
    """
    key: str
    obj: RawBody


def get_key(body: RawBody) -> str:
    """ Build the cache key: ``namespace/name`` or ``name`` for cluster-scoped objects. """
    meta = body.get('metadata', {})
    name = meta.get('name')
    namespace = meta.get('namespace')
    if not name:
        raise ValueError(f"The object has no name, so it has no key: {body!r}")
    return f'{namespace}/{name}' if namespace else name


def get_deletion_key(obj: RawBody | DeletedFinalStateUnknown) -> str:
    """ The same as `get_key`, but also accepts the tombstones of missed deletions. """
    if isinstance(obj, DeletedFinalStateUnknown):
        return obj.key
    return get_key(obj)


def get_version(body: RawBody) -> str | None:
    return body.get('metadata', {}).get('resourceVersion')


def get_generation(body: RawBody) -> int | None:
    return body.get('metadata', {}).get('generation')


def get_labels(body: RawBody) -> Labels:
    return body.get('metadata', {}).get('labels') or {}


def get_annotations(body: RawBody) -> Annotations:
    return body.get('metadata', {}).get('annotations') or {}


def is_pod_ready(body: RawBody) -> bool:
    """
    Check if the pod's containers are running and their logs can be collected.

    A terminating pod is not ready; neither is a pod with no container running yet.
    """
    meta = body.get('metadata', {})
    status = body.get('status', {})
    if meta.get('deletionTimestamp'):
        return False
    if status.get('phase') != 'Running':
        return False
    statuses: list[Mapping[str, Any]] = list(status.get('containerStatuses') or [])
    if not statuses:
        return False
    return all(cstatus.get('containerID') and 'running' in (cstatus.get('state') or {})
               for cstatus in statuses)
