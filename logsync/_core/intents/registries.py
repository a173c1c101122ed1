"""
A registry of the reconcilers, one per resource kind.

The reconcilers are registered by the decorators (see :mod:`logsync.on`)
when the user's modules are imported, so the registry must exist before that:
it is a global default registry unless another one is explicitly used.

The reconcilers of the pods, nodes, sinks, interceptors, and VMs are called with
the object's key. The reconcilers of the log configurations (both namespaced
and cluster-wide) are called with the whole work item: they also need
the selector type to know which matches to reconcile, and the ``teardown`` flag:
if it is set, the matches of that selector type by the configuration's old selector
must be removed, and nothing else is to be done for this item.

The reconcilers can be either sync or async functions.
"""
from collections.abc import Awaitable, Callable, Iterator, Mapping
from typing import Any

from logsync._cogs.structs import workitems

Reconciler = Callable[[Any], Awaitable[None] | None]


class DuplicateReconcilerError(Exception):
    """ Raised when a reconciler is registered for a kind that already has one. """


class ReconcilerRegistry:

    def __init__(self) -> None:
        super().__init__()
        self._reconcilers: dict[workitems.Kind, Reconciler] = {}

    def __len__(self) -> int:
        return len(self._reconcilers)

    def __contains__(self, kind: object) -> bool:
        return kind in self._reconcilers

    def __iter__(self) -> Iterator[workitems.Kind]:
        return iter(self._reconcilers)

    def register(self, kind: workitems.Kind, fn: Reconciler) -> None:
        kind = workitems.Kind(kind)
        existing = self._reconcilers.get(kind)
        if existing is not None and existing is not fn:
            raise DuplicateReconcilerError(f"The {kind} reconciler is already registered: {existing!r}")
        self._reconcilers[kind] = fn

    def get(self, kind: workitems.Kind) -> Reconciler | None:
        return self._reconcilers.get(kind)

    def as_mapping(self) -> Mapping[workitems.Kind, Reconciler]:
        return dict(self._reconcilers)


_default_registry: ReconcilerRegistry | None = None


def get_default_registry() -> ReconcilerRegistry:
    """
    Get the default registry to be used by the decorators and the reactor
    unless the explicit registry is provided to them.
    """
    global _default_registry
    if _default_registry is None:
        _default_registry = ReconcilerRegistry()
    return _default_registry


def set_default_registry(registry: ReconcilerRegistry) -> None:
    """
    Set the default registry to be used by the decorators and the reactor
    unless the explicit registry is provided to them.
    """
    global _default_registry
    _default_registry = registry
