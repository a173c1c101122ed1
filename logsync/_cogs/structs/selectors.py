"""
Resource selectors of the log configurations (``spec.selector``).

The selector decides which pods, nodes, or the whole cluster a configuration
targets, and which cluster (i.e. which agent installation) it belongs to.
"""
import dataclasses
from collections.abc import Mapping
from typing import Any

from logsync._cogs.structs import bodies, workitems

INJECTOR_ANNOTATION_KEY = 'sidecar.loggie.io/inject'


@dataclasses.dataclass(frozen=True)
class ResourceSelector:
    type: workitems.SelectorType
    cluster: str = ''
    label_selector: Mapping[str, str] = dataclasses.field(default_factory=dict)
    node_selector: Mapping[str, str] = dataclasses.field(default_factory=dict)


def get_selector(body: bodies.RawBody) -> ResourceSelector | None:
    """
    Parse the selector of a LogConfig or ClusterLogConfig, if it is present.

    Both kinds share the same ``spec.selector`` schema; the label & node selectors
    are inlined into the selector itself (as the CRDs define them).
    """
    raw: Mapping[str, Any] | None = body.get('spec', {}).get('selector')
    if raw is None:
        return None
    try:
        type_ = workitems.SelectorType(raw.get('type') or workitems.SelectorType.POD)
    except ValueError:
        raise ValueError(f"Unsupported selector type: {raw.get('type')!r}")
    return ResourceSelector(
        type=type_,
        cluster=raw.get('cluster') or '',
        label_selector=dict(raw.get('labelSelector') or {}),
        node_selector=dict(raw.get('nodeSelector') or {}),
    )


def belongs_to_cluster(
        *,
        cluster: str,
        selector: ResourceSelector,
        annotations: Mapping[str, str] | None,
) -> bool:
    """
    Check if a configuration is served by the agents of the configured cluster.

    The sidecar-injected copies are served by the sidecars, not by the node agents,
    so the presence of the injection annotation (of any value) excludes the object.
    """
    if selector.cluster != cluster:
        return False
    if annotations is not None and INJECTOR_ANNOTATION_KEY in annotations:
        return False
    return True
