import asyncio
import logging
import signal
import threading
from collections.abc import Collection, MutableSequence

from logsync._cogs.aiokits import aiotasks
from logsync._cogs.clients import auth, login
from logsync._cogs.configs import configuration
from logsync._core.intents import registries
from logsync._core.reactor import bootstrap

logger = logging.getLogger(__name__)


def run(
        *,
        loop: asyncio.AbstractEventLoop | None = None,
        registry: registries.ReconcilerRegistry | None = None,
        settings: configuration.OperatorSettings | None = None,
        cluster: str | None = None,
        node_name: str | None = None,
        vm_mode: bool | None = None,
        stop_flag: asyncio.Event | None = None,
        ready_flag: asyncio.Event | None = None,
) -> None:
    """
    Run the whole agent synchronously.

    This function should be used to run an agent in normal sync mode.
    """
    coro = operator(
        registry=registry,
        settings=settings,
        cluster=cluster,
        node_name=node_name,
        vm_mode=vm_mode,
        stop_flag=stop_flag,
        ready_flag=ready_flag,
    )
    try:
        if loop is not None:
            loop.run_until_complete(coro)
        else:
            asyncio.run(coro)
    except asyncio.CancelledError:
        pass


async def operator(
        *,
        registry: registries.ReconcilerRegistry | None = None,
        settings: configuration.OperatorSettings | None = None,
        cluster: str | None = None,
        node_name: str | None = None,
        vm_mode: bool | None = None,
        stop_flag: asyncio.Event | None = None,
        ready_flag: asyncio.Event | None = None,
) -> None:
    """
    Run the whole agent asynchronously.

    This function should be used to run an agent in an asyncio event-loop
    if the agent is orchestrated explicitly and manually.

    It is efficiently `spawn_tasks` + `run_tasks` with some safety.
    """
    existing_tasks = await aiotasks.all_tasks()
    agent_tasks = await spawn_tasks(
        registry=registry,
        settings=settings,
        cluster=cluster,
        node_name=node_name,
        vm_mode=vm_mode,
        stop_flag=stop_flag,
        ready_flag=ready_flag,
    )
    await run_tasks(agent_tasks, ignored=existing_tasks)


async def spawn_tasks(
        *,
        registry: registries.ReconcilerRegistry | None = None,
        settings: configuration.OperatorSettings | None = None,
        cluster: str | None = None,
        node_name: str | None = None,
        vm_mode: bool | None = None,
        stop_flag: asyncio.Event | None = None,
        ready_flag: asyncio.Event | None = None,
) -> Collection[aiotasks.Task]:
    """
    Spawn all the tasks needed to run the agent.

    The tasks are properly inter-connected with the synchronisation primitives.
    The agent's own Node or Vm is fetched before any task is spawned:
    if it fails, nothing is started at all.
    """
    loop = asyncio.get_running_loop()

    # The freshly created objects are not shared with anyone, so they can be modified.
    registry = registry if registry is not None else registries.get_default_registry()
    settings = settings if settings is not None else configuration.OperatorSettings()
    signal_flag: aiotasks.Future = asyncio.Future()
    tasks: MutableSequence[aiotasks.Task] = []

    # Map kwargs into the settings object.
    if cluster is not None:
        settings.discovery.cluster = cluster
    if node_name is not None:
        settings.discovery.node_name = node_name
    if vm_mode is not None:
        settings.discovery.vm_mode = vm_mode

    if not registry:
        logger.warning("No reconcilers are registered: all the work items will be dropped.")

    # One API session for all the informers and the identity fetching.
    context = auth.APIContext(login.login(logger=logger))
    auth.context_var.set(context)
    try:
        controller = await bootstrap.create_controller(settings=settings, registry=registry)
    except BaseException:
        await context.close()
        raise

    # Few common background forever-running infrastructural tasks (irregular root tasks).
    tasks.append(asyncio.create_task(
        name="stop-flag checker",
        coro=_stop_flag_checker(
            signal_flag=signal_flag,
            stop_flag=stop_flag)))
    tasks.append(asyncio.create_task(
        name="ultimate termination",
        coro=_ultimate_termination(
            settings=settings,
            stop_flag=stop_flag)))
    tasks.append(asyncio.create_task(
        name="api session keeper",
        coro=_session_keeper(context=context)))

    # The change feeds: one watch-stream per resource kind.
    for informer in controller.all_informers:
        tasks.append(aiotasks.create_guarded_task(
            name=f"informer of {informer.resource!r}", logger=logger,
            coro=informer.run()))

    # The only consumer of the work queue.
    tasks.append(aiotasks.create_guarded_task(
        name="controller", logger=logger,
        coro=_controller_runner(
            controller=controller,
            settings=settings,
            ready_flag=ready_flag)))

    # Ensure that all guarded tasks got control for a moment to enter the guard.
    await asyncio.sleep(0)

    # On Ctrl+C or pod termination, cancel all tasks gracefully.
    if threading.current_thread() is threading.main_thread():
        # Handle NotImplementedError when ran on Windows since asyncio only supports Unix signals
        try:
            loop.add_signal_handler(signal.SIGINT, signal_flag.set_result, signal.SIGINT)
            loop.add_signal_handler(signal.SIGTERM, signal_flag.set_result, signal.SIGTERM)
        except NotImplementedError:
            logger.warning("OS signals are ignored: can't add signal handler in Windows.")

    else:
        logger.warning("OS signals are ignored: running not in the main thread.")

    return tasks


async def run_tasks(
        root_tasks: Collection[aiotasks.Task],
        *,
        ignored: Collection[aiotasks.Task] = frozenset(),
) -> None:
    """
    Run the root tasks until any of them exits, then stop them all.

    The root tasks never exit normally, so the exit of any of them (a failure,
    a stop-flag, a signal) means the exit of the whole agent. The tasks spawned
    by the root tasks and not stopped with them ("hung" tasks) are given
    a few seconds to finish, and are cancelled after that. The tasks that existed
    before the agent was started are ignored: they belong to the embedding code.
    """
    try:
        root_done, root_pending = await aiotasks.wait(root_tasks, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        # The agent itself is cancelled: propagate it to everything it has spawned.
        await aiotasks.stop(root_tasks, title="Root", logger=logger, cancelled=True, interval=10)
        hung_tasks = await aiotasks.all_tasks(ignored=ignored)
        await aiotasks.stop(hung_tasks, title="Hung", logger=logger, cancelled=True, interval=1)
        raise

    root_stopped, _ = await aiotasks.stop(root_pending, title="Root", logger=logger)
    hung_tasks = await aiotasks.all_tasks(ignored=ignored)
    try:
        hung_done, hung_pending = await aiotasks.wait(hung_tasks, timeout=5)
    except asyncio.CancelledError:
        await aiotasks.stop(hung_tasks, title="Hung", logger=logger, cancelled=True, interval=1)
        raise
    hung_stopped, _ = await aiotasks.stop(hung_pending, title="Hung", logger=logger, interval=1)

    # E.g. CacheSyncError from the controller, or fatal API errors from the informers.
    await aiotasks.reraise(root_done | root_stopped | hung_done | hung_stopped)


async def _controller_runner(
        *,
        controller: bootstrap.Controller,
        settings: configuration.OperatorSettings,
        ready_flag: asyncio.Event | None,
) -> None:
    """
    Run the controller, and let its current reconciliation finish on stopping.

    The reconcilers are not interrupted unless they exceed the exit timeout.
    """
    worker = asyncio.create_task(controller.run(ready_flag=ready_flag), name="worker")
    try:
        await asyncio.shield(worker)
    except asyncio.CancelledError:
        controller.stop()
        _, pending = await aiotasks.wait([worker], timeout=settings.queueing.exit_timeout)
        if pending:
            logger.warning("The worker has not finished in time; cancelling it.")
            await aiotasks.stop(pending, title="Worker", logger=logger, cancelled=True)
        raise


async def _stop_flag_checker(
        signal_flag: aiotasks.Future,
        stop_flag: asyncio.Event | None,
) -> None:
    """
    Exit when an OS signal is received or the stop-flag is set (if given).

    Its exit is the usual way for the agent to stop: all other root tasks
    are cancelled by :func:`run_tasks` once any of them exits.
    """
    waiters: list[aiotasks.Future] = [signal_flag]
    if stop_flag is not None:
        waiters.append(asyncio.create_task(stop_flag.wait(), name="stop-flag waiter"))

    try:
        done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        pass  # the agent is stopping for any other reason
    else:
        result = next(iter(done)).result()
        if isinstance(result, signal.Signals):
            logger.info(f"Signal {result.name} is received. The agent is stopping.")
        else:
            logger.info("Stop-flag is raised. The agent is stopping.")
    finally:
        for waiter in waiters[1:]:
            waiter.cancel()


async def _ultimate_termination(
        *,
        settings: configuration.OperatorSettings,
        stop_flag: asyncio.Event | None,
) -> None:
    """
    Kill the agent's thread if it does not exit in time after a signal or a failure.

    This is the last resort against the stuck reconcilers or informers.
    In most cases, the agent runs in the main thread, so the whole process
    is killed. The intentional stopping via the stop-flag is not forced.
    """
    try:
        await asyncio.Event().wait()
    except asyncio.CancelledError:
        timeout = settings.process.ultimate_exiting_timeout
        forced = stop_flag is None or not stop_flag.is_set()
        if forced and timeout is not None:
            loop = asyncio.get_running_loop()
            loop.call_later(timeout, signal.pthread_kill, threading.get_ident(), signal.SIGKILL)
        raise


async def _session_keeper(
        *,
        context: auth.APIContext,
) -> None:
    """ Keep the API session open for the agent's lifetime; close it when exiting. """
    try:
        await asyncio.Event().wait()
    finally:
        await context.close()
