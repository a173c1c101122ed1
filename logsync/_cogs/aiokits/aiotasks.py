"""
Helpers for orchestrating the agent's root tasks: informers, the controller, etc.

These utilities only support tasks, not more generic futures, coroutines,
or other awaitables: we not only wait for them, but also cancel them.
"""
import asyncio
from collections.abc import Collection, Coroutine
from typing import TYPE_CHECKING, Any

from logsync._cogs.helpers import typedefs

# A workaround for a difference in tasks at runtime and type-checking time.
# Otherwise, at runtime: TypeError: 'type' object is not subscriptable.
if TYPE_CHECKING:
    Future = asyncio.Future[Any]
    Task = asyncio.Task[Any]
else:
    Future = asyncio.Future
    Task = asyncio.Task


async def guard(
        coro: Coroutine[Any, Any, Any],
        name: str,
        *,
        finishable: bool = False,
        cancellable: bool = False,
        logger: typedefs.Logger | None = None,
) -> None:
    """
    Run a task which is expected to run until the agent exits, and log its end.

    The informers and the controller never exit on their own: if one does,
    it is logged as a warning (unless it is ``finishable``). The failures are
    logged with tracebacks. The cancellations are logged unless ``cancellable``.
    All the outcomes are propagated to the task's awaiter as is.
    """
    title = name[:1].upper() + name[1:]
    try:
        await coro
    except asyncio.CancelledError:
        if logger is not None and not cancellable:
            logger.debug(f"{title} is cancelled.")
        raise
    except Exception as e:
        if logger is not None:
            logger.exception(f"{title} has failed: {e}")
        raise
    if logger is not None and not finishable:
        logger.warning(f"{title} has finished unexpectedly.")


def create_guarded_task(
        coro: Coroutine[Any, Any, Any],
        name: str,
        *,
        finishable: bool = False,
        cancellable: bool = False,
        logger: typedefs.Logger | None = None,
) -> Task:
    """ Create a task with its outcome logged. See :func:`guard`. """
    guarded = guard(coro, name, finishable=finishable, cancellable=cancellable, logger=logger)
    return asyncio.create_task(guarded, name=name)


async def wait(
        tasks: Collection[Task],
        *,
        timeout: float | None = None,
        return_when: Any = asyncio.ALL_COMPLETED,
) -> tuple[set[Task], set[Task]]:
    """ Same as :func:`asyncio.wait`, but accepts empty collections of tasks. """
    if not tasks:
        return set(), set()
    return await asyncio.wait(tasks, timeout=timeout, return_when=return_when)


async def stop(
        tasks: Collection[Task],
        *,
        title: str,
        quiet: bool = False,
        cancelled: bool = False,
        interval: float | None = None,
        logger: typedefs.Logger | None = None,
) -> tuple[set[Task], set[Task]]:
    """
    Cancel the tasks and wait until they are all gone; report the stuck ones.

    There is no timeout: the tasks are awaited for as long as needed,
    with a report every ``interval`` seconds. If the stopping routine itself
    is cancelled, the remaining tasks are reported and left as they are.
    ``cancelled`` only changes the wording: whether the agent is being cancelled.
    """
    title = title[:1].upper() + title[1:]

    if not tasks:
        if logger is not None and not quiet:
            logger.debug(f"{title} tasks stopping is skipped: no tasks given.")
        return set(), set()

    for task in tasks:
        task.cancel()

    def report(reason: str, pending: set[Task], force: bool) -> None:
        if logger is not None and (force or not quiet or pending):
            are = 'are not' if pending else 'are'
            logger.debug(f"{title} tasks {are} stopped: {reason}; tasks left: {pending!r}")

    done: set[Task] = set()
    pending: set[Task] = set(tasks)
    reports = 0
    while pending:
        try:
            done_now, pending = await wait(pending, timeout=interval)
        except asyncio.CancelledError:
            pending = {task for task in tasks if not task.done()}
            report('double-cancelling at stopping' if cancelled else 'cancelling at stopping',
                   pending, force=reports > 0)
            raise
        report('cancelling normally' if cancelled else 'finishing normally',
               pending, force=reports > 0)
        done |= done_now
        reports += 1

    return done, pending


async def reraise(
        tasks: Collection[Task],
) -> None:
    """ Re-raise the first error of the tasks, if any; ignore the cancellations. """
    for task in tasks:
        if not task.cancelled() and task.exception() is not None:
            task.result()  # raises it


async def all_tasks(
        *,
        ignored: Collection[Task] = frozenset(),
) -> Collection[Task]:
    """ All the tasks of the current event loop, except the current & ignored ones. """
    current_task = asyncio.current_task()
    return {task for task in asyncio.all_tasks()
            if task is not current_task and task not in ignored}
