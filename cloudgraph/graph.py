from __future__ import annotations

from collections import deque, namedtuple
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Set

import networkx
from attrs import define, field
from prometheus_client import Summary

from cloudgraph.errors import AmbiguousResourceError, ParentCycleError, ResourceNotFound
from cloudgraph.lock import RWLock
from cloudgraph.logger import log
from cloudgraph.match import Matcher
from cloudgraph.resource import Resource, not_found_resource
from cloudgraph.types import NodeKey, Triple

metrics_graph_filter = Summary("cloudgraph_graph_filter_seconds", "Time it took the Graph filter() method")
metrics_graph_snapshot = Summary("cloudgraph_graph_snapshot_seconds", "Time it took the Graph snapshot() method")
metrics_graph_diff = Summary("cloudgraph_graph_diff_seconds", "Time it took to compute a hierarchic diff")

EdgeKey = namedtuple("EdgeKey", ["src", "dst", "edge_type"])


class EdgeType(Enum):
    parent_of = "parent-of"
    applies_on = "applies-on"


class Relation(Enum):
    ParentOf = "parent_of"
    ChildrenOf = "children_of"
    AppliesOn = "applies_on"
    DependingOn = "depending_on"


VisitFn = Callable[[Resource, int], None]


@define
class Query:
    resource_type: str
    matcher: Optional[Matcher] = None


class Graph(networkx.MultiDiGraph):  # type: ignore
    """
    A directed graph of resources.

    Nodes are addressed by (type, id) and carry the resource as node data.
    An edge that references an unknown resource creates a placeholder node: the placeholder
    is not visible via get/find, but shows up as NotFoundResource when a relation query hits it.
    All mutators and readers synchronize via a reader/writer lock, so relation inference can
    run in many threads against the same graph.
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._access = RWLock()

    # ------------------------------------------------------------------ mutation

    def add_resource(self, *resources: Resource) -> None:
        with self._access.write_access:
            for resource in resources:
                self._merge_node(resource)
            for resource in resources:
                for relation, other in resource.relations:
                    self._add_declared_edge(resource, Relation(relation), other)

    def add_parent_relation(self, parent: Resource, child: Resource) -> None:
        with self._access.write_access:
            if parent.key == child.key or child.key in self._ancestor_keys(parent.key):
                raise ParentCycleError(f"{parent} can not be parent of {child}: cycle in parent chain")
            self._add_edge(parent, child, EdgeType.parent_of)

    def add_applies_on_relation(self, src: Resource, dst: Resource) -> None:
        with self._access.write_access:
            self._add_edge(src, dst, EdgeType.applies_on)

    def add_depending_on_relation(self, resource: Resource, dependency: Resource) -> None:
        # a dependency is stored as applies-on edge in reverse direction
        self.add_applies_on_relation(dependency, resource)

    def add_graph(self, other: Graph) -> None:
        with other._access.read_access:
            nodes = [(data["resource"], data.get("placeholder", False)) for _, data in other.nodes(data=True)]
            edges = list(other.edges(keys=True))
        with self._access.write_access:
            for resource, placeholder in nodes:
                if placeholder:
                    self._ensure_node(resource)
                else:
                    self._merge_node(resource)
            for src, dst, key in edges:
                self.add_edge(src, dst, key=key)

    def _merge_node(self, resource: Resource) -> None:
        if self.has_node(resource.key):
            data = self.nodes[resource.key]
            if data.get("placeholder"):
                data["resource"] = resource
                data["placeholder"] = False
            elif data["resource"] is not resource:
                existing: Resource = data["resource"]
                existing.properties.update(resource.properties)
                existing.meta.update(resource.meta)
        else:
            self.add_node(resource.key, resource=resource, placeholder=False)

    def _add_declared_edge(self, resource: Resource, relation: Relation, other: Resource) -> None:
        if relation == Relation.ParentOf:
            self._add_edge(resource, other, EdgeType.parent_of)
        elif relation == Relation.ChildrenOf:
            self._add_edge(other, resource, EdgeType.parent_of)
        elif relation == Relation.AppliesOn:
            self._add_edge(resource, other, EdgeType.applies_on)
        else:
            self._add_edge(other, resource, EdgeType.applies_on)

    def _ensure_node(self, resource: Resource) -> None:
        if not self.has_node(resource.key):
            self.add_node(resource.key, resource=Resource(resource.type, resource.id), placeholder=True)

    def _add_edge(self, src: Resource, dst: Resource, edge_type: EdgeType) -> None:
        self._ensure_node(src)
        self._ensure_node(dst)
        key = EdgeKey(src.key, dst.key, edge_type)
        if not self.has_edge(src.key, dst.key, key=key):
            self.add_edge(src.key, dst.key, key=key)

    # ------------------------------------------------------------------ internal readers (no locking)

    def _resource(self, key: NodeKey) -> Optional[Resource]:
        data = self.nodes.get(key) if self.has_node(key) else None
        if data is None or data.get("placeholder"):
            return None
        return data["resource"]  # type: ignore

    def _resource_or_not_found(self, key: NodeKey) -> Resource:
        resource = self._resource(key)
        return resource if resource is not None else not_found_resource(key[1])

    def _resources(self, *types: str) -> List[Resource]:
        wanted = set(types)
        found = [
            data["resource"]
            for key, data in self.nodes(data=True)
            if not data.get("placeholder") and (not wanted or key[0] in wanted)
        ]
        return sorted(found, key=lambda r: (r.type, r.id))

    def _successors(self, key: NodeKey, edge_type: EdgeType) -> List[NodeKey]:
        return sorted(dst for _, dst, k in self.out_edges(key, keys=True) if k.edge_type == edge_type)

    def _predecessors(self, key: NodeKey, edge_type: EdgeType) -> List[NodeKey]:
        return sorted(src for src, _, k in self.in_edges(key, keys=True) if k.edge_type == edge_type)

    def _ancestor_keys(self, key: NodeKey) -> Set[NodeKey]:
        result: Set[NodeKey] = set()
        todo = deque([key])
        while todo:
            current = todo.popleft()
            if not self.has_node(current):
                continue
            for parent in self._predecessors(current, EdgeType.parent_of):
                if parent not in result:
                    result.add(parent)
                    todo.append(parent)
        return result

    def _walk(self, key: NodeKey, step: Callable[[NodeKey], List[NodeKey]], fn: VisitFn, depth: int) -> None:
        fn(self._resource_or_not_found(key), depth)
        for nxt in step(key):
            self._walk(nxt, step, fn, depth + 1)

    # ------------------------------------------------------------------ queries

    def get_resource(self, resource_type: str, resource_id: str) -> Resource:
        with self._access.read_access:
            resource = self._resource((resource_type, resource_id))
        if resource is None:
            raise ResourceNotFound(resource_type, resource_id)
        return resource

    def find_resource(self, resource_id: str) -> Optional[Resource]:
        with self._access.read_access:
            found = [r for r in self._resources() if r.id == resource_id]
        if len(found) > 1:
            raise AmbiguousResourceError(f"multiple resources with id '{resource_id}' found")
        return found[0] if found else None

    def find_resources_by_property(self, name: str, value: Any) -> List[Resource]:
        with self._access.read_access:
            return [r for r in self._resources() if r.property(name) == (value, True)]

    def get_all_resources(self, *types: str) -> List[Resource]:
        with self._access.read_access:
            return self._resources(*types)

    def find(self, query: Query) -> List[Resource]:
        with self._access.read_access:
            candidates = self._resources(query.resource_type)
        return [r for r in candidates if query.matcher is None or query.matcher.match(r)]

    def find_ancestor(self, resource: Resource, resource_type: str) -> Optional[Resource]:
        found: List[Resource] = []

        def check(res: Resource, _: int) -> None:
            if res.type == resource_type and not found:
                found.append(res)

        self.visit_parents(resource, check)
        return found[0] if found else None

    def resource_relations(self, resource: Resource, relation: Relation, recursive: bool = False) -> List[Resource]:
        if relation == Relation.ParentOf:
            step: Callable[[NodeKey], List[NodeKey]] = lambda k: self._predecessors(k, EdgeType.parent_of)
        elif relation == Relation.ChildrenOf:
            step = lambda k: self._successors(k, EdgeType.parent_of)  # noqa: E731
        elif relation == Relation.AppliesOn:
            step = lambda k: self._successors(k, EdgeType.applies_on)  # noqa: E731
        else:
            step = lambda k: self._predecessors(k, EdgeType.applies_on)  # noqa: E731

        with self._access.read_access:
            if not self.has_node(resource.key):
                return []
            seen: Set[NodeKey] = set()
            todo = deque(step(resource.key))
            result: List[Resource] = []
            while todo:
                key = todo.popleft()
                if key in seen:
                    continue
                seen.add(key)
                result.append(self._resource_or_not_found(key))
                if recursive:
                    todo.extend(step(key))
            return result

    def list_resources_depending_on(self, resource: Resource) -> List[Resource]:
        """All resources that have an applies-on edge pointing to the given resource."""
        return self.resource_relations(resource, Relation.DependingOn)

    def list_resources_applied_on(self, resource: Resource) -> List[Resource]:
        """All resources the given resource applies on."""
        return self.resource_relations(resource, Relation.AppliesOn)

    def visit_parents(self, start: Resource, fn: VisitFn, include_from: bool = False) -> None:
        def each(res: Resource, depth: int) -> None:
            if include_from or not res.same(start):
                fn(res, depth)

        with self._access.read_access:
            if self.has_node(start.key):
                self._walk(start.key, lambda k: self._predecessors(k, EdgeType.parent_of), each, 0)

    def visit_children(self, start: Resource, fn: VisitFn, include_from: bool = False) -> None:
        def each(res: Resource, depth: int) -> None:
            if include_from or not res.same(start):
                fn(res, depth)

        with self._access.read_access:
            if self.has_node(start.key):
                self._walk(start.key, lambda k: self._successors(k, EdgeType.parent_of), each, 0)

    def visit_siblings(self, start: Resource, fn: VisitFn, include_from: bool = False) -> None:
        """Visit all resources of the same type sharing a parent with start."""
        with self._access.read_access:
            if not self.has_node(start.key):
                return
            parents = self._predecessors(start.key, EdgeType.parent_of)
            if not parents:
                siblings = [start.key]
            else:
                siblings = [
                    child
                    for parent in parents
                    for child in self._successors(parent, EdgeType.parent_of)
                    if child[0] == start.type
                ]
            visit = [self._resource_or_not_found(k) for k in siblings]
        for res in visit:
            if include_from or not res.same(start):
                fn(res, 0)

    # ------------------------------------------------------------------ derived graphs

    @metrics_graph_filter.time()  # type: ignore
    def filter(self, resource_type: str, *matchers: Matcher) -> Graph:
        """Graph with all resources of given type matching all matchers, together with their parents."""
        return self._filter(resource_type, matchers, all)

    @metrics_graph_filter.time()  # type: ignore
    def or_filter(self, resource_type: str, *matchers: Matcher) -> Graph:
        """Graph with all resources of given type matching any matcher, together with their parents."""
        return self._filter(resource_type, matchers, any)

    def _filter(
        self, resource_type: str, matchers: Sequence[Matcher], combine: Callable[[Iterable[bool]], bool]
    ) -> Graph:
        result = Graph()
        with self._access.read_access:
            for resource in self._resources(resource_type):
                if not matchers or combine(m.match(resource) for m in matchers):
                    self._copy_with_parents(resource.key, result)
        log.debug(f"Filter {resource_type}: {len(result.nodes)} resources in filtered graph")
        return result

    def _copy_with_parents(self, key: NodeKey, target: Graph) -> None:
        resource = self._resource(key)
        if resource is None:
            return
        target._merge_node(resource.copy())
        for parent in self._predecessors(key, EdgeType.parent_of):
            parent_resource = self._resource(parent)
            if parent_resource is not None:
                self._copy_with_parents(parent, target)
                target._add_edge(parent_resource, resource, EdgeType.parent_of)

    def clone(self) -> Graph:
        """Deep copy: resources are copied, so changes to the clone do not leak back."""
        result = Graph()
        with self._access.read_access:
            for key, data in self.nodes(data=True):
                result.add_node(key, resource=data["resource"].copy(), placeholder=data.get("placeholder", False))
            for src, dst, key in self.edges(keys=True):
                result.add_edge(src, dst, key=key)
        return result

    @metrics_graph_snapshot.time()  # type: ignore
    def snapshot(self) -> Graph:
        """
        Read only copy of the current state.
        Every mutating networkx method of the snapshot raises.
        """
        return networkx.freeze(self.clone())  # type: ignore

    def triples(self) -> Iterator[Triple]:
        """The graph as (subject, predicate, object) triples, as used by the persisted form."""
        with self._access.read_access:
            resources = self._resources()
            edges = sorted(
                (k.src[1], k.edge_type.value, k.dst[1]) for _, _, k in self.edges(keys=True)  # type: ignore
            )
        for resource in resources:
            yield resource.id, "type", resource.type
            for name, value in sorted(resource.properties.items()):
                yield resource.id, name, value
        yield from edges

    def __str__(self) -> str:
        return f"Graph({len(self.nodes)} nodes, {len(self.edges)} edges)"


@define(frozen=True)
class PropertyDelta:
    removed: Any
    added: Any

    def lines(self) -> List[str]:
        result = []
        if self.removed is not None:
            result.append(f"-{self.removed}")
        if self.added is not None:
            result.append(f"+{self.added}")
        return result

    def __str__(self) -> str:
        return " ".join(self.lines())


@define
class Diff:
    from_graph: Graph
    to_graph: Graph
    has_diff: bool = False
    changes: Dict[NodeKey, Dict[str, PropertyDelta]] = field(factory=dict)
    _merged: Optional[Graph] = None

    @property
    def merged_graph(self) -> Graph:
        if self._merged is None:
            merged = self.to_graph.clone()
            for resource in self.from_graph.get_all_resources():
                if resource.meta.get("diff") == "extra":
                    missing = resource.copy()
                    missing.meta["diff"] = "missing"
                    merged.add_resource(missing)
            with self.from_graph._access.read_access:
                from_edges = list(self.from_graph.edges(keys=True))
                from_nodes = {k: d["resource"] for k, d in self.from_graph.nodes(data=True)}
            with merged._access.write_access:
                for src, dst, key in from_edges:
                    merged._add_edge(from_nodes[src], from_nodes[dst], key.edge_type)
                for key, deltas in self.changes.items():
                    resource = merged._resource(key)
                    if resource is not None:
                        resource.meta["diff"] = "common"
                        resource.meta["changes"] = deltas
            self._merged = merged
        return self._merged


def property_deltas(before: Resource, after: Resource) -> Dict[str, PropertyDelta]:
    changed = set(before.properties.subtract(after.properties)) | set(after.properties.subtract(before.properties))
    return {name: PropertyDelta(before.properties.get(name), after.properties.get(name)) for name in sorted(changed)}


@metrics_graph_diff.time()  # type: ignore
def diff(from_graph: Graph, to_graph: Graph, root: Resource) -> Diff:
    """
    Hierarchic diff: walk both graphs along parent-of edges, starting at root.
    Children only in `to` are marked extra in the to graph, children only in `from`
    are marked extra in the from graph. Common children are compared property wise.
    The given graphs are not modified: the diff works on clones.
    """
    result = Diff(from_graph.clone(), to_graph.clone())
    left, right = result.from_graph, result.to_graph
    todo = deque([root.key])
    seen: Set[NodeKey] = set()
    while todo:
        key = todo.popleft()
        if key in seen:
            continue
        seen.add(key)
        left_children = set(left._successors(key, EdgeType.parent_of)) if left.has_node(key) else set()
        right_children = set(right._successors(key, EdgeType.parent_of)) if right.has_node(key) else set()
        for extra in sorted(right_children - left_children):
            result.has_diff = True
            right.nodes[extra]["resource"].meta["diff"] = "extra"
            todo.append(extra)
        for missing in sorted(left_children - right_children):
            result.has_diff = True
            left.nodes[missing]["resource"].meta["diff"] = "extra"
            todo.append(missing)
        for common in sorted(left_children & right_children):
            before, after = left._resource(common), right._resource(common)
            if before is not None and after is not None:
                deltas = property_deltas(before, after)
                if deltas:
                    result.has_diff = True
                    result.changes[common] = deltas
            todo.append(common)
    return result
