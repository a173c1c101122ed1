from collections.abc import Collection, Mapping

from logsync._cogs.clients import api
from logsync._cogs.configs import configuration
from logsync._cogs.helpers import typedefs
from logsync._cogs.structs import bodies, references


async def read_obj(
        *,
        settings: configuration.OperatorSettings,
        resource: references.Resource,
        namespace: references.Namespace = None,
        name: str,
        logger: typedefs.Logger,
) -> bodies.RawBody:
    """
    Read a single object. Errors, including "404 Not Found", are escalated.
    """
    return await api.get(
        url=resource.get_url(namespace=namespace, name=name),
        settings=settings,
        logger=logger,
    )


async def list_objs(
        *,
        settings: configuration.OperatorSettings,
        resource: references.Resource,
        namespace: references.Namespace = None,
        params: Mapping[str, str] | None = None,
        logger: typedefs.Logger,
) -> tuple[Collection[bodies.RawBody], str | None]:
    """
    List the objects of specific resource type, and the list's resource version.

    The items of the list have no ``kind`` & ``apiVersion`` in K8s responses,
    so they are restored from the list's own fields.
    """
    rsp = await api.get(
        url=resource.get_url(namespace=namespace, params=params),
        settings=settings,
        logger=logger,
    )

    items: list[bodies.RawBody] = []
    resource_version = rsp.get('metadata', {}).get('resourceVersion', None)
    for item in rsp.get('items', []):
        if 'kind' in rsp:
            item.setdefault('kind', rsp['kind'][:-4] if rsp['kind'][-4:] == 'List' else rsp['kind'])
        if 'apiVersion' in rsp:
            item.setdefault('apiVersion', rsp['apiVersion'])
        items.append(item)

    return items, resource_version
