"""
The main logsync module for all the exported functions & classes.
"""
# isort: skip_file

# Unlike all other places, where we import other modules and refer
# the functions via the modules, this is the framework's top-level interface,
# as it is seen by the users. So, we export the individual functions.

from logsync import (
    on,  # as a separate name on the public namespace
)
from logsync._cogs.configs.configuration import (
    OperatorSettings,
    DiscoverySettings,
    FieldsSettings,
    QueueingSettings,
    WatchingSettings,
    NetworkingSettings,
    ProcessSettings,
    ConfigurationError,
)
from logsync._cogs.helpers.typedefs import (
    Logger,
)
from logsync._cogs.helpers.versions import (
    version as __version__,
)
from logsync._cogs.helpers.patterns import (
    Pattern,
    PatternError,
)
from logsync._cogs.structs.bodies import (
    RawBody,
    RawEvent,
    Labels,
    Annotations,
    DeletedFinalStateUnknown,
)
from logsync._cogs.structs.credentials import (
    LoginError,
    ConnectionInfo,
)
from logsync._cogs.structs.selectors import (
    ResourceSelector,
)
from logsync._cogs.structs.workitems import (
    Kind,
    SelectorType,
    WorkItem,
)
from logsync._cogs.clients.errors import (
    APIError,
    APIUnauthorizedError,
    APIForbiddenError,
    APINotFoundError,
    APIThrottledError,
    APIServerError,
)
from logsync._cogs.clients.watching import (
    WatchingError,
)
from logsync._core.actions.loggers import (
    configure as configure_logging,
    LogFormat,
)
from logsync._core.engines.indexing import (
    SelectorIndex,
)
from logsync._core.intents.registries import (
    ReconcilerRegistry,
    DuplicateReconcilerError,
    get_default_registry,
    set_default_registry,
)
from logsync._core.reactor.bootstrap import (
    Controller,
    ClusterTopology,
    FleetTopology,
    IdentityError,
    CacheSyncError,
    current_controller,
)
from logsync._core.reactor.informers import (
    Informer,
    Store,
)
from logsync._core.reactor.queueing import (
    WorkQueue,
    RetryPolicy,
    ExponentialBackoff,
)
from logsync._core.reactor.running import (
    spawn_tasks,
    run_tasks,
    operator,
    run,
)

__all__ = [
    'on',
    'OperatorSettings',
    'DiscoverySettings',
    'FieldsSettings',
    'QueueingSettings',
    'WatchingSettings',
    'NetworkingSettings',
    'ProcessSettings',
    'ConfigurationError',
    'Logger',
    'Pattern',
    'PatternError',
    'RawBody',
    'RawEvent',
    'Labels',
    'Annotations',
    'DeletedFinalStateUnknown',
    'LoginError',
    'ConnectionInfo',
    'ResourceSelector',
    'Kind',
    'SelectorType',
    'WorkItem',
    'APIError',
    'APIUnauthorizedError',
    'APIForbiddenError',
    'APINotFoundError',
    'APIThrottledError',
    'APIServerError',
    'WatchingError',
    'configure_logging',
    'LogFormat',
    'SelectorIndex',
    'ReconcilerRegistry',
    'DuplicateReconcilerError',
    'get_default_registry',
    'set_default_registry',
    'Controller',
    'ClusterTopology',
    'FleetTopology',
    'IdentityError',
    'CacheSyncError',
    'current_controller',
    'Informer',
    'Store',
    'WorkQueue',
    'RetryPolicy',
    'ExponentialBackoff',
    'spawn_tasks',
    'run_tasks',
    'operator',
    'run',
]
