import pytest

from logsync._cogs.structs.references import CLUSTERLOGCONFIGS, INTERCEPTORS, LOGCONFIGS, \
                                            NODES, PODS, SINKS, VMS, Resource


def test_creation_with_no_args():
    with pytest.raises(TypeError):
        Resource()  # type: ignore


def test_creation_with_all_kwargs():
    resource = Resource(group='group', version='version', plural='plural',
                        kind='Kind', namespaced=True)
    assert resource.group == 'group'
    assert resource.version == 'version'
    assert resource.plural == 'plural'
    assert resource.kind == 'Kind'
    assert resource.namespaced is True


def test_equality_ignores_the_kind_and_the_scope():
    resource1 = Resource('group', 'version', 'plural', kind='Kind1', namespaced=True)
    resource2 = Resource('group', 'version', 'plural', kind='Kind2', namespaced=False)
    assert resource1 == resource2
    assert hash(resource1) == hash(resource2)


@pytest.mark.parametrize('resource, expected', [
    (PODS, 'pods.v1'),
    (NODES, 'nodes.v1'),
    (LOGCONFIGS, 'logconfigs.v1beta1.loggie.io'),
    (CLUSTERLOGCONFIGS, 'clusterlogconfigs.v1beta1.loggie.io'),
    (SINKS, 'sinks.v1beta1.loggie.io'),
    (INTERCEPTORS, 'interceptors.v1beta1.loggie.io'),
    (VMS, 'vms.v1beta1.loggie.io'),
])
def test_repr(resource, expected):
    assert repr(resource) == expected


@pytest.mark.parametrize('resource, namespaced', [
    (PODS, True),
    (NODES, False),
    (LOGCONFIGS, True),
    (CLUSTERLOGCONFIGS, False),
    (SINKS, False),
    (INTERCEPTORS, False),
    (VMS, False),
])
def test_scopes_of_the_known_resources(resource, namespaced):
    assert resource.namespaced is namespaced


@pytest.mark.parametrize('resource, namespace, name, expected', [
    (PODS, None, None, '/api/v1/pods'),
    (PODS, 'ns1', None, '/api/v1/namespaces/ns1/pods'),
    (PODS, 'ns1', 'pod1', '/api/v1/namespaces/ns1/pods/pod1'),
    (NODES, None, 'node1', '/api/v1/nodes/node1'),
    (LOGCONFIGS, None, None, '/apis/loggie.io/v1beta1/logconfigs'),
    (LOGCONFIGS, 'ns1', 'lgc1', '/apis/loggie.io/v1beta1/namespaces/ns1/logconfigs/lgc1'),
    (VMS, None, 'vm1', '/apis/loggie.io/v1beta1/vms/vm1'),
])
def test_urls(resource, namespace, name, expected):
    assert resource.get_url(namespace=namespace, name=name) == expected


def test_url_with_a_server():
    url = NODES.get_url(server='https://localhost:6443/', name='node1')
    assert url == 'https://localhost:6443/api/v1/nodes/node1'


def test_url_with_params():
    url = PODS.get_url(params={'fieldSelector': 'spec.nodeName=node1', 'watch': 'true'})
    assert url == '/api/v1/pods?fieldSelector=spec.nodeName%3Dnode1&watch=true'


def test_url_of_a_namespace_for_a_cluster_scoped_resource():
    with pytest.raises(ValueError, match=r"not supported for cluster-scoped"):
        NODES.get_url(namespace='ns1')


def test_url_of_a_namespaced_object_without_a_namespace():
    with pytest.raises(ValueError, match=r"required for specific namespaced"):
        PODS.get_url(name='pod1')
