import pytest

from logsync._cogs.clients.errors import APIError, APINotFoundError
from logsync._cogs.clients.fetching import list_objs, read_obj
from logsync._cogs.structs.references import LOGCONFIGS, NODES, PODS, VMS


async def test_read_cluster_scoped_obj(fake_api, settings, logger, body_factory):
    fake_api.add('get', '/api/v1/nodes/node1', json=body_factory('node1'))
    obj = await read_obj(settings=settings, resource=NODES, name='node1', logger=logger)
    assert obj['metadata']['name'] == 'node1'


async def test_read_custom_obj(fake_api, settings, logger, body_factory):
    fake_api.add('get', '/apis/loggie.io/v1beta1/vms/vm1', json=body_factory('vm1'))
    obj = await read_obj(settings=settings, resource=VMS, name='vm1', logger=logger)
    assert obj['metadata']['name'] == 'vm1'


async def test_read_missing_obj_escalates(fake_api, settings, logger):
    with pytest.raises(APINotFoundError):
        await read_obj(settings=settings, resource=NODES, name='node1', logger=logger)


async def test_list_objs_restores_kinds(fake_api, settings, logger, pod_factory):
    fake_api.add_list('/api/v1/pods', [pod_factory('pod1'), pod_factory('pod2')], rv='123')
    objs, rv = await list_objs(settings=settings, resource=PODS, logger=logger)
    assert rv == '123'
    assert [obj['metadata']['name'] for obj in objs] == ['pod1', 'pod2']
    assert all(obj['kind'] == 'Pod' for obj in objs)
    assert all(obj['apiVersion'] == 'v1' for obj in objs)


async def test_list_objs_in_a_namespace_with_params(fake_api, settings, logger):
    fake_api.add_list('/apis/loggie.io/v1beta1/namespaces/ns1/logconfigs', [], kind='LogConfigList')
    objs, rv = await list_objs(settings=settings, resource=LOGCONFIGS, namespace='ns1',
                               params={'fieldSelector': 'metadata.name=lgc1'}, logger=logger)
    assert list(objs) == []
    assert rv == '100'
    assert fake_api.requests == [
        ('GET', '/apis/loggie.io/v1beta1/namespaces/ns1/logconfigs?fieldSelector=metadata.name%3Dlgc1'),
    ]


async def test_list_objs_escalates_the_errors(fake_api, settings, logger):
    fake_api.add('get', '/api/v1/pods', status=403, json={'kind': 'Status', 'code': 403})
    with pytest.raises(APIError) as err:
        await list_objs(settings=settings, resource=PODS, logger=logger)
    assert err.value.status == 403


@pytest.mark.parametrize('resource, kwargs, expected', [
    (PODS, {}, '/api/v1/pods'),
    (PODS, dict(namespace='ns1'), '/api/v1/namespaces/ns1/pods'),
    (PODS, dict(namespace='ns1', name='pod1'), '/api/v1/namespaces/ns1/pods/pod1'),
    (NODES, dict(name='node1'), '/api/v1/nodes/node1'),
    (VMS, dict(params={'a': 'b'}), '/apis/loggie.io/v1beta1/vms?a=b'),
    (NODES, dict(server='https://h:443/'), 'https://h:443/api/v1/nodes'),
])
def test_urls(resource, kwargs, expected):
    assert resource.get_url(**kwargs) == expected


@pytest.mark.parametrize('resource, kwargs', [
    (NODES, dict(namespace='ns1')),
    (PODS, dict(name='pod1')),
])
def test_urls_of_wrong_scopes(resource, kwargs):
    with pytest.raises(ValueError):
        resource.get_url(**kwargs)
