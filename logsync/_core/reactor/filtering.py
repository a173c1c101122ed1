"""
Ownership & relevance filters: which changes of which objects need reconciling.

Every filter is a plain function of the object(s) of a notification,
and returns the work items to queue (often none). The filters do not depend
on the informers or the queue, and are connected to them only at bootstrap
(see :mod:`logsync._core.reactor.bootstrap`)::

    informer.subscribe(on_add=lambda body: enqueue(pod_added(body)))

The rules are:

* Pods are relevant when they are ready (i.e. their logs can be collected),
  and when they are deleted (the collection must stop), even if never ready.
* Nodes, sinks, interceptors are relevant on any real change; their deletions
  are irrelevant, since the configurations that refer to them stay as they are.
* VMs are relevant when their labels change, as only the labels are matched.
* The log configurations are relevant only if they have a selector,
  and if they belong to this agent's cluster (see `selectors.belongs_to_cluster`).
  Their updates are relevant only if the spec has changed (i.e. the generation),
  not merely the status or the metadata.

The "updates" with the same resource version come from the re-listings,
and are never relevant: the objects have not changed since the last time.
"""
import logging

from logsync._cogs.structs import bodies, selectors, workitems
from logsync._core.reactor import invalidation

logger = logging.getLogger(__name__)

WorkItems = list[workitems.WorkItem]


def pod_added(body: bodies.RawBody) -> WorkItems:
    if not bodies.is_pod_ready(body):
        return []
    return [_item(workitems.Kind.POD, body, workitems.SelectorType.POD)]


def pod_updated(old: bodies.RawBody, new: bodies.RawBody) -> WorkItems:
    if bodies.get_version(old) == bodies.get_version(new):
        return []
    if not bodies.is_pod_ready(new):
        return []
    return [_item(workitems.Kind.POD, new, workitems.SelectorType.POD)]


def pod_deleted(obj: bodies.RawBody | bodies.DeletedFinalStateUnknown) -> WorkItems:
    key = bodies.get_deletion_key(obj)
    return [workitems.WorkItem(workitems.Kind.POD, key, workitems.SelectorType.POD)]


def node_added(body: bodies.RawBody) -> WorkItems:
    return [_item(workitems.Kind.NODE, body, workitems.SelectorType.NODE)]


def node_updated(old: bodies.RawBody, new: bodies.RawBody) -> WorkItems:
    if bodies.get_version(old) == bodies.get_version(new):
        return []
    return [_item(workitems.Kind.NODE, new, workitems.SelectorType.NODE)]


def sink_added(body: bodies.RawBody) -> WorkItems:
    return [_item(workitems.Kind.SINK, body, workitems.SelectorType.ALL)]


def sink_updated(old: bodies.RawBody, new: bodies.RawBody) -> WorkItems:
    if bodies.get_version(old) == bodies.get_version(new):
        return []
    return [_item(workitems.Kind.SINK, new, workitems.SelectorType.ALL)]


def interceptor_added(body: bodies.RawBody) -> WorkItems:
    return [_item(workitems.Kind.INTERCEPTOR, body, workitems.SelectorType.ALL)]


def interceptor_updated(old: bodies.RawBody, new: bodies.RawBody) -> WorkItems:
    if bodies.get_version(old) == bodies.get_version(new):
        return []
    return [_item(workitems.Kind.INTERCEPTOR, new, workitems.SelectorType.ALL)]


def vm_added(body: bodies.RawBody) -> WorkItems:
    return [_item(workitems.Kind.VM, body, workitems.SelectorType.ALL)]


def vm_updated(old: bodies.RawBody, new: bodies.RawBody) -> WorkItems:
    if bodies.get_version(old) == bodies.get_version(new):
        return []
    if dict(bodies.get_labels(old)) == dict(bodies.get_labels(new)):
        return []
    return [_item(workitems.Kind.VM, new, workitems.SelectorType.ALL)]


def config_added(
        body: bodies.RawBody,
        *,
        kind: workitems.Kind,
        cluster: str,
) -> WorkItems:
    selector = _owned_selector(body, kind=kind, cluster=cluster)
    if selector is None:
        return []
    return [_item(kind, body, selector.type)]


def config_updated(
        old: bodies.RawBody,
        new: bodies.RawBody,
        *,
        kind: workitems.Kind,
        cluster: str,
) -> WorkItems:
    if bodies.get_version(old) == bodies.get_version(new):
        return []
    if bodies.get_generation(old) == bodies.get_generation(new):
        return []
    selector = _owned_selector(new, kind=kind, cluster=cluster)
    if selector is None:
        return []

    # The tear-down of the old matches goes strictly before the reconciliation of the new ones.
    try:
        items = invalidation.invalidate(old, new, kind=kind)
    except ValueError as e:
        logger.warning(f"Ignoring the old selector of {kind} {bodies.get_key(old)}: {e}")
        items = []
    items.append(_item(kind, new, selector.type))
    return items


def config_deleted(
        obj: bodies.RawBody | bodies.DeletedFinalStateUnknown,
        *,
        kind: workitems.Kind,
        cluster: str,
) -> WorkItems:
    body = obj.obj if isinstance(obj, bodies.DeletedFinalStateUnknown) else obj
    selector = _owned_selector(body, kind=kind, cluster=cluster)
    if selector is None:
        return []
    key = bodies.get_deletion_key(obj)
    return [workitems.WorkItem(kind, key, selector.type)]


def _owned_selector(
        body: bodies.RawBody,
        *,
        kind: workitems.Kind,
        cluster: str,
) -> selectors.ResourceSelector | None:
    try:
        selector = selectors.get_selector(body)
    except ValueError as e:
        logger.warning(f"Ignoring {kind} {bodies.get_key(body)}: {e}")
        return None
    if selector is None:
        return None
    annotations = bodies.get_annotations(body)
    if not selectors.belongs_to_cluster(cluster=cluster, selector=selector, annotations=annotations):
        return None
    return selector


def _item(
        kind: workitems.Kind,
        body: bodies.RawBody,
        selector_type: workitems.SelectorType,
) -> workitems.WorkItem:
    return workitems.WorkItem(kind=kind, key=bodies.get_key(body), selector_type=selector_type)
