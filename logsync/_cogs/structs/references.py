import dataclasses
import urllib.parse
from collections.abc import Mapping
from typing import NewType

# A specific really existing addressable namespace.
NamespaceName = NewType('NamespaceName', str)

# A namespace reference usable in the API calls. `None` means cluster-wide API calls.
Namespace = NamespaceName | None


@dataclasses.dataclass(frozen=True)
class Resource:
    """
    A reference to a very specific custom or built-in resource kind.

    It is used to form the K8s API URLs. Generally, K8s API only needs
    an API group, an API version, and a plural name of the resource.
    """

    group: str
    """
    The resource's API group; e.g. ``"loggie.io"``. For Core v1 API, an empty string.
    """

    version: str
    """
    The resource's API version; e.g. ``"v1"``, ``"v1beta1"``.
    """

    plural: str
    """
    The resource's plural name; e.g. ``"pods"``, ``"logconfigs"``.
    """

    kind: str | None = dataclasses.field(default=None, compare=False)
    """
    The resource's kind (as in YAML files); e.g. ``"Pod"``, ``"LogConfig"``.
    """

    namespaced: bool = dataclasses.field(default=False, compare=False)
    """
    Whether the resource is namespaced (``True``) or cluster-scoped (``False``).
    """

    def __repr__(self) -> str:
        return f'{self.plural}.{self.version}.{self.group}'.strip('.')

    def get_url(
            self,
            *,
            server: str | None = None,
            namespace: Namespace = None,
            name: str | None = None,
            params: Mapping[str, str] | None = None,
    ) -> str:
        """
        Build a URL to be used with K8s API.

        If the namespace is not set, a cluster-wide URL is returned.
        If the name is not set, the URL for the resource list is returned.
        Params go to the query parameters (``?param1=value1&param2=value2...``).
        """
        if not self.namespaced and namespace is not None:
            raise ValueError("Specific namespaces are not supported for cluster-scoped resources.")
        if self.namespaced and namespace is None and name is not None:
            raise ValueError("Specific namespaces are required for specific namespaced resources.")

        parts: list[str | None] = [
            '/api' if self.group == '' and self.version == 'v1' else '/apis',
            self.group,
            self.version,
            'namespaces' if namespace is not None else None,
            namespace,
            self.plural,
            name,
        ]

        query = urllib.parse.urlencode(params, encoding='utf-8') if params else ''
        path = '/'.join([part for part in parts if part])
        url = path + ('?' if query else '') + query
        return url if server is None else server.rstrip('/') + '/' + url.lstrip('/')


LOGGIE_GROUP = 'loggie.io'
LOGGIE_VERSION = 'v1beta1'

PODS = Resource('', 'v1', 'pods', kind='Pod', namespaced=True)
NODES = Resource('', 'v1', 'nodes', kind='Node')
LOGCONFIGS = Resource(LOGGIE_GROUP, LOGGIE_VERSION, 'logconfigs', kind='LogConfig', namespaced=True)
CLUSTERLOGCONFIGS = Resource(LOGGIE_GROUP, LOGGIE_VERSION, 'clusterlogconfigs', kind='ClusterLogConfig')
SINKS = Resource(LOGGIE_GROUP, LOGGIE_VERSION, 'sinks', kind='Sink')
INTERCEPTORS = Resource(LOGGIE_GROUP, LOGGIE_VERSION, 'interceptors', kind='Interceptor')
VMS = Resource(LOGGIE_GROUP, LOGGIE_VERSION, 'vms', kind='Vm')
