"""
All configuration flags, options, settings to fine-tune the agent.

All settings are grouped semantically just for convenience
(instead of a flat mega-object with all the values in it).

The settings are either constructed in code, or loaded from a YAML file
(see :func:`load`). The ``discovery`` section of the file accepts the same
keys as the log agent's own configuration (``cluster``, ``nodeName``,
``vmMode``, ``typePodFields``, etc.), so the same file can be shared.

The settings are read-only once the controller is constructed:
neither the mode nor the cluster name nor the field templates
can be changed at runtime.
"""
import dataclasses
import os
import socket
from collections.abc import Iterable, Mapping, MutableMapping
from typing import Any

import yaml


class ConfigurationError(Exception):
    """ Raised when the settings cannot be loaded or are inconsistent. """


@dataclasses.dataclass
class DiscoverySettings:

    cluster: str = ''
    """
    The name of the cluster this agent belongs to.
    Only the configurations with the same ``spec.selector.cluster`` are served.
    The empty name is the default installation (the selectors without a cluster).
    """

    node_name: str | None = None
    """
    The name of the own Node (in the cluster mode) or Vm (in the fleet mode).
    If not set, taken from the ``NODE_NAME`` environment variable,
    and then from the host name.
    """

    vm_mode: bool = False
    """
    Whether the agent runs on a fleet of virtual machines (``Vm`` objects)
    instead of the Kubernetes nodes and pods.
    """

    def get_node_name(self) -> str:
        return self.node_name or os.environ.get('NODE_NAME') or socket.gethostname()


@dataclasses.dataclass
class FieldsSettings:
    """
    Templates of the extra fields added to the collected logs.

    Every mapping goes from the output field name to a template
    with ``${...}`` placeholders (see :mod:`logsync._cogs.helpers.patterns`).
    """

    pod: dict[str, str] = dataclasses.field(default_factory=dict)
    """ Extra fields for the pod-type configurations. """

    node: dict[str, str] = dataclasses.field(default_factory=dict)
    """ Extra fields for the node-type configurations. """

    vm: dict[str, str] = dataclasses.field(default_factory=dict)
    """ Extra fields for the configurations in the fleet mode. """

    k8s: dict[str, str] = dataclasses.field(default_factory=dict)
    """
    Generic Kubernetes fields. They are merged into the pod fields
    and take precedence over them on name collisions.
    """


@dataclasses.dataclass
class QueueingSettings:

    base_delay: float = 0.005
    """
    The first retry delay (in seconds) after a failed reconciliation.
    Every further failure of the same work item doubles the delay.
    """

    max_delay: float = 1000.0
    """
    The cap of the retry delay (in seconds), no matter how many failures.
    """

    exit_timeout: float = 2.0
    """
    How long to wait for the current reconciliation when the agent is stopping.
    The reconcilers are not interrupted before this timeout.
    """


@dataclasses.dataclass
class WatchingSettings:

    server_timeout: float | None = None
    """
    The maximum duration of one streaming request.
    If ``None``, then obey the server-side timeouts (they seem to be random).
    """

    client_timeout: float | None = None
    """
    An HTTP/HTTPS session timeout to use in watch requests.
    """

    connect_timeout: float | None = None
    """
    An HTTP/HTTPS connection timeout to use in watch requests.
    """

    reconnect_backoff: float = 0.1
    """
    How long should a pause be between watch requests (to prevent API flooding).
    """

    sync_timeout: float | None = None
    """
    How long to wait for the initial listing of all the watched resources.
    If not synced in time, the agent fails to start. ``None`` waits forever.
    """


@dataclasses.dataclass
class NetworkingSettings:

    request_timeout: float | None = 5 * 60  # == aiohttp.client.DEFAULT_TIMEOUT
    """
    A timeout for the API requests (except watching, which has its own).
    """

    connect_timeout: float | None = None
    """
    A timeout for the connection establishing.
    """

    error_backoffs: Iterable[float] = (1, 1, 2, 3, 5)
    """
    Backoff intervals for the retried API requests on the server-side
    and connection errors. Once exhausted, the error is escalated.
    """


@dataclasses.dataclass
class ProcessSettings:

    ultimate_exiting_timeout: float | None = 10 * 60
    """
    How long to wait for the graceful exit before SIGKILL'ing the agent.
    Set to `None` to disable.
    """


@dataclasses.dataclass
class OperatorSettings:
    discovery: DiscoverySettings = dataclasses.field(default_factory=DiscoverySettings)
    fields: FieldsSettings = dataclasses.field(default_factory=FieldsSettings)
    queueing: QueueingSettings = dataclasses.field(default_factory=QueueingSettings)
    watching: WatchingSettings = dataclasses.field(default_factory=WatchingSettings)
    networking: NetworkingSettings = dataclasses.field(default_factory=NetworkingSettings)
    process: ProcessSettings = dataclasses.field(default_factory=ProcessSettings)


# The agent-compatible names of the discovery section, mapped to our own settings.
DISCOVERY_ALIASES: Mapping[str, str] = {
    'nodeName': 'node_name',
    'vmMode': 'vm_mode',
}
FIELDS_ALIASES: Mapping[str, str] = {
    'typePodFields': 'pod',
    'typeNodeFields': 'node',
    'typeVmFields': 'vm',
    'k8sFields': 'k8s',
}


def load(path: str) -> OperatorSettings:
    """
    Load the settings from a YAML file.

    The file's top-level keys are the settings groups. The fields templates
    can be put either into the ``fields`` group, or into the ``discovery`` group
    under the agent-compatible names (``typePodFields``, ``k8sFields``, etc).
    """
    try:
        with open(path, encoding='utf-8') as f:
            data = yaml.safe_load(f.read()) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read the settings from {path}: {e}") from e
    return parse(data)


def parse(data: Mapping[str, Any]) -> OperatorSettings:
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"The settings must be a mapping, got {type(data).__name__}.")

    settings = OperatorSettings()
    discovery = dict(data.get('discovery') or {})
    fields = dict(data.get('fields') or {})

    # Move the fields templates out of the agent-compatible discovery section.
    for alias, name in FIELDS_ALIASES.items():
        if alias in discovery:
            fields[name] = discovery.pop(alias)
    for alias, name in DISCOVERY_ALIASES.items():
        if alias in discovery:
            discovery[name] = discovery.pop(alias)

    _apply(settings.discovery, discovery, group='discovery')
    _apply(settings.fields, fields, group='fields')
    for group in ['queueing', 'watching', 'networking', 'process']:
        _apply(getattr(settings, group), dict(data.get(group) or {}), group=group)

    unknown = set(data) - {'discovery', 'fields', 'queueing', 'watching', 'networking', 'process'}
    if unknown:
        raise ConfigurationError(f"Unknown settings groups: {', '.join(sorted(unknown))}")
    return settings


def _apply(target: object, values: MutableMapping[str, Any], *, group: str) -> None:
    known = {field.name for field in dataclasses.fields(target)}  # type: ignore
    unknown = set(values) - known
    if unknown:
        raise ConfigurationError(f"Unknown settings in {group!r}: {', '.join(sorted(unknown))}")
    for name, value in values.items():
        setattr(target, name, value)
