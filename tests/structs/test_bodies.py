import pytest

from logsync._cogs.structs.bodies import DeletedFinalStateUnknown, get_annotations, \
                                        get_deletion_key, get_generation, get_key, \
                                        get_labels, get_version, is_pod_ready
from logsync._cogs.structs.workitems import Kind, SelectorType, WorkItem


def test_keys(body_factory):
    assert get_key(body_factory('pod1', namespace='ns1')) == 'ns1/pod1'
    assert get_key(body_factory('node1')) == 'node1'


def test_key_of_a_nameless_object():
    with pytest.raises(ValueError, match=r"has no name"):
        get_key({'metadata': {'namespace': 'ns1'}})


def test_deletion_keys(body_factory):
    body = body_factory('pod1', namespace='ns1')
    tombstone = DeletedFinalStateUnknown(key='ns1/pod0', obj=body)
    assert get_deletion_key(body) == 'ns1/pod1'
    assert get_deletion_key(tombstone) == 'ns1/pod0'


def test_metadata_fields(body_factory):
    body = body_factory('pod1', rv='12', generation=3, labels={'a': 'b'}, annotations={'c': 'd'})
    assert get_version(body) == '12'
    assert get_generation(body) == 3
    assert get_labels(body) == {'a': 'b'}
    assert get_annotations(body) == {'c': 'd'}


def test_missing_metadata_fields():
    assert get_version({}) is None
    assert get_generation({}) is None
    assert get_labels({}) == {}
    assert get_annotations({'metadata': {'annotations': None}}) == {}


def test_ready_pod(pod_factory):
    assert is_pod_ready(pod_factory(ready=True))


def test_pending_pod(pod_factory):
    assert not is_pod_ready(pod_factory(ready=False))


def test_terminating_pod(pod_factory):
    pod = pod_factory(ready=True)
    pod['metadata']['deletionTimestamp'] = '2020-01-01T00:00:00Z'
    assert not is_pod_ready(pod)


def test_pod_without_containers(pod_factory):
    pod = pod_factory(ready=True)
    pod['status']['containerStatuses'] = []
    assert not is_pod_ready(pod)


def test_pod_with_one_container_not_started(pod_factory):
    pod = pod_factory(ready=True)
    pod['status']['containerStatuses'].append({'state': {'waiting': {}}})
    assert not is_pod_ready(pod)


def test_pod_with_container_without_id(pod_factory):
    pod = pod_factory(ready=True)
    pod['status']['containerStatuses'][0].pop('containerID')
    assert not is_pod_ready(pod)


def test_work_items_are_values():
    item1 = WorkItem(Kind.POD, 'ns1/pod1', SelectorType.POD)
    item2 = WorkItem(Kind.POD, 'ns1/pod1', SelectorType.POD)
    item3 = WorkItem(Kind.POD, 'ns1/pod1', SelectorType.WORKLOAD)
    assert item1 == item2
    assert hash(item1) == hash(item2)
    assert item1 != item3
    assert len({item1, item2, item3}) == 2
    assert str(item1) == 'pod:ns1/pod1 (pod)'


def test_teardown_items_differ_from_regular_items():
    regular = WorkItem(Kind.LOGCONFIG, 'ns1/lgc1', SelectorType.POD)
    teardown = WorkItem(Kind.LOGCONFIG, 'ns1/lgc1', SelectorType.POD, teardown=True)
    assert not regular.teardown
    assert regular != teardown
    assert len({regular, teardown}) == 2
    assert str(teardown) == 'logConfig:ns1/lgc1 (pod, teardown)'


def test_kinds_accept_their_wire_names():
    assert Kind('logConfig') is Kind.LOGCONFIG
    assert Kind('clusterLogConfig') is Kind.CLUSTERLOGCONFIG
    assert SelectorType('workload') is SelectorType.WORKLOAD
