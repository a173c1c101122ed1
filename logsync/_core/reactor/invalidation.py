"""
Detection of the selector changes in the updated log configurations.

When a configuration's selector changes, the objects matched by the old selector
are not necessarily matched by the new one, and their pipelines must be removed.
The regular reconciliation only knows the new selector, so the removal is
requested separately: with an extra work item of the configuration's own kind,
whose selector type names the scope of the old matches to tear down.

Only the label selectors of the pod & workload types, and the node selectors
of the node type are compared. The changes of the selector type itself,
and of the cluster & "all" types, produce no extra items.
"""
import logging

from logsync._cogs.structs import bodies, selectors, workitems

logger = logging.getLogger(__name__)


def invalidate(
        old: bodies.RawBody,
        new: bodies.RawBody,
        *,
        kind: workitems.Kind,
) -> list[workitems.WorkItem]:
    """
    Generate the tear-down items for the old selector's matches, if it has changed.

    Both the old and the new selectors are expected to be parseable; the unknown
    selector types are reported by the filters before this point.
    """
    old_selector = selectors.get_selector(old)
    new_selector = selectors.get_selector(new)
    if old_selector is None or new_selector is None:
        return []

    scope: workitems.SelectorType
    if new_selector.type in [workitems.SelectorType.POD, workitems.SelectorType.WORKLOAD]:
        if dict(old_selector.label_selector) == dict(new_selector.label_selector):
            return []
        scope = workitems.SelectorType.POD
    elif new_selector.type == workitems.SelectorType.NODE:
        if dict(old_selector.node_selector) == dict(new_selector.node_selector):
            return []
        scope = workitems.SelectorType.NODE
    else:
        return []

    key = bodies.get_key(old)
    logger.debug(f"The selector of {kind} {key} has changed; the old {scope} matches will be removed.")
    return [workitems.WorkItem(kind=kind, key=key, selector_type=scope, teardown=True)]
