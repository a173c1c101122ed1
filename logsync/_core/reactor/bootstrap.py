"""
Construction of the controller for one of the two modes.

In the cluster mode, the agent runs on a Kubernetes node, and collects the logs
of the pods on this node (and of the node itself). In the fleet mode, the agent
runs on a virtual machine, which is represented by a ``Vm`` object.
The mode is chosen once, when the controller is constructed, and never changes.

The construction starts with fetching the agent's own Node or Vm: without it,
the agent does not know its own labels and cannot match the node selectors.
If the fetch fails, the construction fails, and no informer is subscribed to.

Once constructed, the controller is only started (`Controller.run`): it waits
for all the informers to list their resources, and then processes the work
items until stopped.
"""
import asyncio
import contextvars
import dataclasses
import functools
import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any

import aiohttp

from logsync._cogs.clients import errors, fetching
from logsync._cogs.configs import configuration
from logsync._cogs.helpers import patterns
from logsync._cogs.structs import bodies, references, workitems
from logsync._core.engines import indexing
from logsync._core.intents import registries
from logsync._core.reactor import dispatching, filtering, informers, queueing

logger = logging.getLogger(__name__)

# The controller being run, for the reconcilers to access the listers, indices, patterns.
context_var: contextvars.ContextVar['Controller'] = contextvars.ContextVar('controller')


class IdentityError(Exception):
    """ Raised when the agent's own Node or Vm cannot be fetched. """


class CacheSyncError(Exception):
    """ Raised when the informers fail to list their resources at startup. """


@dataclasses.dataclass(frozen=True)
class ClusterTopology:
    pods: informers.Informer
    nodes: informers.Informer
    logconfigs: informers.Informer
    pod_index: indexing.SelectorIndex
    cluster_index: indexing.SelectorIndex
    node_index: indexing.SelectorIndex
    node: bodies.RawBody


@dataclasses.dataclass(frozen=True)
class FleetTopology:
    vms: informers.Informer
    node_index: indexing.SelectorIndex
    vm: bodies.RawBody


Topology = ClusterTopology | FleetTopology


@dataclasses.dataclass(frozen=True)
class FieldPatterns:
    pod: Mapping[str, patterns.Pattern]
    node: Mapping[str, patterns.Pattern]
    vm: Mapping[str, patterns.Pattern]

    @classmethod
    def compile(cls, fields: configuration.FieldsSettings) -> "FieldPatterns":
        try:
            # The generic k8s fields take precedence over the pod fields of the same names.
            pod: dict[str, patterns.Pattern] = patterns.compile_all(fields.pod)
            pod.update(patterns.compile_all(fields.k8s))
            node = patterns.compile_all(fields.node)
            vm = patterns.compile_all(fields.vm)
        except patterns.PatternError as e:
            raise configuration.ConfigurationError(f"Invalid fields template: {e}") from e
        return cls(pod=pod, node=node, vm=vm)

    def render(
            self,
            selector_type: workitems.SelectorType,
            values: Mapping[str, object],
    ) -> dict[str, str]:
        """ Render the extra fields for a specific selector type; the fleet mode uses "vm". """
        if selector_type in [workitems.SelectorType.POD, workitems.SelectorType.WORKLOAD]:
            pats = self.pod
        elif selector_type == workitems.SelectorType.NODE:
            pats = self.node
        else:
            pats = self.vm
        return {name: pattern.render(values) for name, pattern in pats.items()}


class Controller:

    def __init__(
            self,
            *,
            settings: configuration.OperatorSettings,
            topology: Topology,
            clusterlogconfigs: informers.Informer,
            sinks: informers.Informer,
            interceptors: informers.Informer,
            registry: registries.ReconcilerRegistry | None = None,
    ) -> None:
        super().__init__()
        self.settings = settings
        self.topology = topology
        self.clusterlogconfigs = clusterlogconfigs
        self.sinks = sinks
        self.interceptors = interceptors
        self.patterns = FieldPatterns.compile(settings.fields)
        self.queue: queueing.WorkQueue[workitems.WorkItem] = queueing.make_queue(
            name='logConfig',
            base_delay=settings.queueing.base_delay,
            max_delay=settings.queueing.max_delay,
        )
        real_registry = registry if registry is not None else registries.get_default_registry()
        self.table = dispatching.DispatchTable.from_registry(real_registry)
        self._subscribe()

    def __repr__(self) -> str:
        mode = 'fleet' if self.fleet_mode else 'cluster'
        return f'<{self.__class__.__name__} {mode} mode: {self.queue!r}>'

    @property
    def fleet_mode(self) -> bool:
        return isinstance(self.topology, FleetTopology)

    @property
    def all_informers(self) -> list[informers.Informer]:
        shared = [self.clusterlogconfigs, self.sinks, self.interceptors]
        if isinstance(self.topology, FleetTopology):
            return [self.topology.vms] + shared
        else:
            return [self.topology.pods, self.topology.nodes, self.topology.logconfigs] + shared

    def enqueue(self, items: Iterable[workitems.WorkItem]) -> None:
        for item in items:
            logger.debug(f"Enqueueing {item}.")
            self.queue.add(item)

    def _subscribe(self) -> None:
        cluster = self.settings.discovery.cluster

        self.clusterlogconfigs.subscribe(
            on_add=self._feeding(functools.partial(
                filtering.config_added, kind=workitems.Kind.CLUSTERLOGCONFIG, cluster=cluster)),
            on_update=self._feeding(functools.partial(
                filtering.config_updated, kind=workitems.Kind.CLUSTERLOGCONFIG, cluster=cluster)),
            on_delete=self._feeding(functools.partial(
                filtering.config_deleted, kind=workitems.Kind.CLUSTERLOGCONFIG, cluster=cluster)),
        )
        self.interceptors.subscribe(
            on_add=self._feeding(filtering.interceptor_added),
            on_update=self._feeding(filtering.interceptor_updated),
        )
        self.sinks.subscribe(
            on_add=self._feeding(filtering.sink_added),
            on_update=self._feeding(filtering.sink_updated),
        )

        if isinstance(self.topology, FleetTopology):
            self.topology.vms.subscribe(
                on_add=self._feeding(filtering.vm_added),
                on_update=self._feeding(filtering.vm_updated),
            )
            return

        self.topology.logconfigs.subscribe(
            on_add=self._feeding(functools.partial(
                filtering.config_added, kind=workitems.Kind.LOGCONFIG, cluster=cluster)),
            on_update=self._feeding(functools.partial(
                filtering.config_updated, kind=workitems.Kind.LOGCONFIG, cluster=cluster)),
            on_delete=self._feeding(functools.partial(
                filtering.config_deleted, kind=workitems.Kind.LOGCONFIG, cluster=cluster)),
        )
        self.topology.pods.subscribe(
            on_add=self._feeding(filtering.pod_added),
            on_update=self._feeding(filtering.pod_updated),
            on_delete=self._feeding(filtering.pod_deleted),
        )
        self.topology.nodes.subscribe(
            on_add=self._feeding(filtering.node_added),
            on_update=self._feeding(filtering.node_updated),
        )

    def _feeding(self, fn: Callable[..., list[workitems.WorkItem]]) -> Callable[..., None]:
        @functools.wraps(fn)
        def feeder(*args: Any) -> None:
            self.enqueue(fn(*args))
        return feeder

    async def wait_for_sync(self) -> None:
        logger.info("Waiting for the informers to sync.")
        coro = asyncio.gather(*[informer.wait_for_sync() for informer in self.all_informers])
        try:
            results = await asyncio.wait_for(coro, timeout=self.settings.watching.sync_timeout)
        except asyncio.TimeoutError:
            pending = [informer for informer in self.all_informers if not informer.has_synced()]
            raise CacheSyncError(f"Timed out waiting for the informers to sync: {pending!r}")
        if not all(results):
            failed = [informer for informer, synced in zip(self.all_informers, results) if not synced]
            raise CacheSyncError(f"Failed to wait for the informers to sync: {failed!r}")

    async def run(
            self,
            *,
            ready_flag: asyncio.Event | None = None,
    ) -> None:
        """
        Wait for the caches to sync, and process the work items until stopped.

        If the caches do not sync, the worker is never started.
        """
        token = context_var.set(self)
        try:
            await self.wait_for_sync()
            if ready_flag is not None:
                ready_flag.set()
            logger.info("Starting the worker.")
            await dispatching.worker(queue=self.queue, table=self.table)
        finally:
            self.queue.shutdown()
            context_var.reset(token)

    def stop(self) -> None:
        """ Let the worker finish the current item, and then exit. """
        self.queue.shutdown()


async def fetch_identity(
        *,
        settings: configuration.OperatorSettings,
        resource: references.Resource,
        name: str,
) -> bodies.RawBody:
    try:
        return await fetching.read_obj(settings=settings, resource=resource, name=name, logger=logger)
    except (errors.APIUnauthorizedError, errors.APIForbiddenError) as e:
        raise IdentityError(f"Cannot get the own {resource.kind} {name!r}: "
                            f"check the agent's credentials and RBAC permissions: {e!r}") from e
    except (errors.APIError, aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise IdentityError(f"Cannot get the own {resource.kind} {name!r}: {e!r}") from e


async def create_controller(
        *,
        settings: configuration.OperatorSettings,
        registry: registries.ReconcilerRegistry | None = None,
) -> Controller:
    """
    Fetch the agent's own identity, and wire the informers for the chosen mode.
    """
    node_name = settings.discovery.get_node_name()
    by_name = {'fieldSelector': f'metadata.name={node_name}'}

    topology: Topology
    if settings.discovery.vm_mode:
        vm = await fetch_identity(settings=settings, resource=references.VMS, name=node_name)
        logger.info(f"Running in the fleet mode as the Vm {node_name!r}.")
        topology = FleetTopology(
            vms=informers.Informer(settings=settings, resource=references.VMS, params=by_name),
            node_index=indexing.make_node_index(),
            vm=vm,
        )
    else:
        node = await fetch_identity(settings=settings, resource=references.NODES, name=node_name)
        logger.info(f"Running in the cluster mode as the Node {node_name!r}.")
        topology = ClusterTopology(
            pods=informers.Informer(
                settings=settings,
                resource=references.PODS,
                params={'fieldSelector': f'spec.nodeName={node_name}'},
            ),
            nodes=informers.Informer(settings=settings, resource=references.NODES, params=by_name),
            logconfigs=informers.Informer(settings=settings, resource=references.LOGCONFIGS),
            pod_index=indexing.make_pod_index(),
            cluster_index=indexing.make_cluster_index(),
            node_index=indexing.make_node_index(),
            node=node,
        )

    return Controller(
        settings=settings,
        topology=topology,
        clusterlogconfigs=informers.Informer(settings=settings, resource=references.CLUSTERLOGCONFIGS),
        sinks=informers.Informer(settings=settings, resource=references.SINKS),
        interceptors=informers.Informer(settings=settings, resource=references.INTERCEPTORS),
        registry=registry,
    )


def current_controller() -> Controller:
    """
    Get the controller being run; only usable in the reconcilers.
    """
    try:
        return context_var.get()
    except LookupError:
        raise RuntimeError("No controller is running in this context.")
