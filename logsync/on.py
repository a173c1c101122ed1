"""
The decorators for the reconcilers.

Usually used as::

    import logsync

    @logsync.on.reconcile(logsync.Kind.POD)
    def pod_fn(key):
        controller = logsync.current_controller()

    @logsync.on.reconcile('logConfig')
    async def logconfig_fn(item):
        if item.teardown:
            ...  # remove the pipelines of the old selector's matches of item.selector_type
        controller = logsync.current_controller()

This module is a part of the framework's public interface.
"""
from collections.abc import Callable

from logsync._cogs.structs import workitems
from logsync._core.intents import registries

ReconcilerDecorator = Callable[[registries.Reconciler], registries.Reconciler]


def reconcile(
        kind: str | workitems.Kind,
        *,
        registry: registries.ReconcilerRegistry | None = None,
) -> ReconcilerDecorator:
    """ ``@logsync.on.reconcile()`` decorator for the reconcilers of a resource kind. """
    def decorator(fn: registries.Reconciler) -> registries.Reconciler:
        real_registry = registry if registry is not None else registries.get_default_registry()
        real_registry.register(workitems.Kind(kind), fn)
        return fn
    return decorator
