"""
Selector indices: which log configurations match which labels.

The reconcilers keep the indices up to date (`SelectorIndex.set` and `delete`)
as the configurations come and go, and look them up when pods, nodes, or VMs
change (`SelectorIndex.match`), so that they do not need to scan all the
configurations on every change of every pod.

There are three indices, by the type of selectors they keep:

* The pod index: the pod & workload selectors, matched by the pods' labels.
* The node index: the node selectors, matched by the node's or VM's labels.
* The cluster index: the cluster-wide selectors, which match everything.

A selector matches the labels if every key of the selector is in the labels
with the same value. The ``*`` value matches any value of the key, and the
``"*": "*"`` entry matches any labels at all. An empty selector matches nothing.
"""
from __future__ import annotations

from collections.abc import Collection, Iterator, Mapping

from logsync._cogs.structs import bodies, selectors, workitems

WILDCARD = '*'


class SelectorIndex:

    def __init__(
            self,
            *,
            name: str,
            types: Collection[workitems.SelectorType],
    ) -> None:
        super().__init__()
        self.name = name
        self.types = frozenset(types)
        self._selectors: dict[str, selectors.ResourceSelector] = {}

    def __repr__(self) -> str:
        return f'<{self.__class__.__name__} {self.name!r}: {len(self._selectors)} selectors>'

    def __len__(self) -> int:
        return len(self._selectors)

    def __contains__(self, key: object) -> bool:
        return key in self._selectors

    def __iter__(self) -> Iterator[str]:
        return iter(self._selectors)

    def get(self, key: str) -> selectors.ResourceSelector | None:
        return self._selectors.get(key)

    def set(self, key: str, selector: selectors.ResourceSelector) -> None:
        if selector.type not in self.types:
            raise ValueError(f"The {self.name} index does not accept the {selector.type} selectors.")
        self._selectors[key] = selector

    def delete(self, key: str) -> bool:
        """ Remove the configuration from the index; return whether it was there. """
        return self._selectors.pop(key, None) is not None

    def match(self, labels: bodies.Labels) -> set[str]:
        return {key for key, selector in self._selectors.items()
                if self._matches(selector, labels)}

    def _matches(self, selector: selectors.ResourceSelector, labels: bodies.Labels) -> bool:
        if selector.type == workitems.SelectorType.CLUSTER:
            return True
        elif selector.type == workitems.SelectorType.NODE:
            return match_labels(selector.node_selector, labels)
        else:
            return match_labels(selector.label_selector, labels)


def match_labels(
        selector: Mapping[str, str],
        labels: bodies.Labels,
) -> bool:
    if not selector:
        return False
    if selector.get(WILDCARD) == WILDCARD:
        return True
    for key, value in selector.items():
        if key not in labels:
            return False
        if value != WILDCARD and labels[key] != value:
            return False
    return True


def make_pod_index() -> SelectorIndex:
    return SelectorIndex(name='pod', types=[workitems.SelectorType.POD, workitems.SelectorType.WORKLOAD])


def make_cluster_index() -> SelectorIndex:
    return SelectorIndex(name='cluster', types=[workitems.SelectorType.CLUSTER])


def make_node_index() -> SelectorIndex:
    return SelectorIndex(name='node', types=[workitems.SelectorType.NODE])
