"""
Work items: the units of work queued by the filters and consumed by the worker.

A work item identifies the resource kind, the object's cache key,
and the selector type context in which the object should be reconciled.

The items are compared and hashed by their full value. The work queue is a set
keyed by these values, so the repeated enqueueing of the same item collapses
into a single pending processing pass.

The tear-down items (the removal of the old selector's matches of a log configuration)
carry the ``teardown`` flag, so that they never collapse with the regular
reconciliation items of the same configuration, and the reconcilers can tell them apart.
"""
import dataclasses
import enum


class Kind(str, enum.Enum):
    POD = 'pod'
    NODE = 'node'
    LOGCONFIG = 'logConfig'
    CLUSTERLOGCONFIG = 'clusterLogConfig'
    SINK = 'sink'
    INTERCEPTOR = 'interceptor'
    VM = 'vm'

    def __str__(self) -> str:
        return str(self.value)


class SelectorType(str, enum.Enum):
    POD = 'pod'
    WORKLOAD = 'workload'
    NODE = 'node'
    CLUSTER = 'cluster'
    ALL = 'all'

    def __str__(self) -> str:
        return str(self.value)


@dataclasses.dataclass(frozen=True)
class WorkItem:
    kind: Kind
    key: str  # namespace/name for namespaced objects, name for cluster-scoped ones.
    selector_type: SelectorType
    teardown: bool = False  # only remove the matches of this selector type, do not reconcile.

    def __str__(self) -> str:
        suffix = ', teardown' if self.teardown else ''
        return f'{self.kind}:{self.key} ({self.selector_type}{suffix})'
