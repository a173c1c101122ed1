"""
Dispatching of the work items to the reconcilers, and the worker loop.

There is only one worker per agent, so the reconciliations never run
concurrently, neither for the same object nor for different ones.
The worker never interrupts a running reconciler: the shutdown is noticed
only when the worker asks for the next item.

The outcome of every reconciliation decides the item's fate:

* Success: the item's failures are forgotten (the backoff is reset).
* Failure: the item is re-queued after a growing delay.
* Unknown kind: the item is dropped (there is nothing to retry with).
* Not an item at all: the item is dropped; it is a bug in the producers.
"""
import asyncio
import contextvars
import functools
import inspect
import logging
from collections.abc import Mapping
from typing import Any

from logsync._cogs.structs import workitems
from logsync._core.actions import loggers
from logsync._core.intents import registries
from logsync._core.reactor import queueing

logger = logging.getLogger(__name__)

# These kinds get the whole item instead of the key: they also need the selector type.
ITEM_KINDS: frozenset[workitems.Kind] = frozenset({
    workitems.Kind.LOGCONFIG,
    workitems.Kind.CLUSTERLOGCONFIG,
})


class DispatchTable:
    """
    A static mapping of the resource kinds to their reconcilers.
    """

    def __init__(self, routes: Mapping[workitems.Kind, registries.Reconciler]) -> None:
        super().__init__()
        self._routes = dict(routes)

    def __repr__(self) -> str:
        kinds = ', '.join(str(kind) for kind in self._routes)
        return f'<{self.__class__.__name__}: {kinds}>'

    @classmethod
    def from_registry(cls, registry: registries.ReconcilerRegistry) -> "DispatchTable":
        return cls(registry.as_mapping())

    @property
    def kinds(self) -> frozenset[workitems.Kind]:
        return frozenset(self._routes)

    async def dispatch(self, item: workitems.WorkItem) -> None:
        """
        Reconcile the item, and escalate the reconciler's errors (for retrying).

        The failures are not logged here: the caller logs them once,
        together with its decision on what to do with the item.

        The items of unknown kinds are logged and ignored, since no reconciler
        will appear for them later and retrying is senseless.
        """
        reconciler = self._routes.get(item.kind)
        if reconciler is None:
            logger.error(f"No reconciler for the kind of {item}; dropping it.")
            return

        item_logger = loggers.ItemLogger(item=item)
        arg = item if item.kind in ITEM_KINDS else item.key
        item_logger.debug("Reconciling.")
        await invoke(reconciler, arg)
        item_logger.debug("Reconciled successfully.")


async def invoke(
        fn: registries.Reconciler,
        arg: Any,
) -> None:
    """
    Invoke a reconciler, either sync or async.

    The sync reconcilers are executed in the default thread pool executor,
    so that they do not block the informers. The context variables are copied
    to the executor's thread, as it is not done by asyncio itself.
    """
    if inspect.iscoroutinefunction(fn):
        await fn(arg)
    else:
        loop = asyncio.get_running_loop()
        context = contextvars.copy_context()
        real_fn = functools.partial(context.run, fn, arg)
        await loop.run_in_executor(None, real_fn)


async def process_next_item(
        *,
        queue: queueing.WorkQueue[Any],
        table: DispatchTable,
) -> bool:
    """
    Take one item from the queue and dispatch it. Return ``False`` on shutdown.

    No per-item errors escape from here: they are either retried or dropped.
    """
    item, shutdown = await queue.get()
    if shutdown:
        return False

    try:
        if not isinstance(item, workitems.WorkItem):
            queue.forget(item)
            logger.error(f"Expected a work item in the queue, got {item!r}; dropping it.")
            return True

        try:
            await table.dispatch(item)
        except Exception as e:
            queue.add_rate_limited(item)
            item_logger = loggers.ItemLogger(item=item)
            item_logger.warning(f"Error syncing {item}: {e!r}; requeuing (failures: {queue.num_requeues(item)}).")
        else:
            queue.forget(item)
    finally:
        queue.done(item)
    return True


async def worker(
        *,
        queue: queueing.WorkQueue[Any],
        table: DispatchTable,
) -> None:
    logger.debug("The worker has started.")
    try:
        while await process_next_item(queue=queue, table=table):
            pass
    finally:
        logger.debug("The worker has stopped.")
