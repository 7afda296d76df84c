from __future__ import annotations

from typing import Any, Dict, Iterable, List, Tuple

from attrs import define, field

from cloudgraph.errors import UnknownResourceTypeError
from cloudgraph.types import NodeKey

REGION = "region"
NOT_FOUND = "notfound"

ResourceTypes = (
    "instance",
    "vpc",
    "subnet",
    "securitygroup",
    "keypair",
    "volume",
    "image",
    "importimagetask",
    "routetable",
    "internetgateway",
    "natgateway",
    "availabilityzone",
    "elasticip",
    "snapshot",
    "networkinterface",
    "loadbalancer",
    "classicloadbalancer",
    "targetgroup",
    "listener",
    "database",
    "dbsubnetgroup",
    "launchconfiguration",
    "scalinggroup",
    "scalingpolicy",
    "repository",
    "containercluster",
    "containertask",
    "container",
    "containerinstance",
    "certificate",
    "user",
    "group",
    "role",
    "policy",
    "accesskey",
    "instanceprofile",
    "mfadevice",
    "bucket",
    "s3object",
    "subscription",
    "topic",
    "queue",
    "zone",
    "record",
    "function",
    "metric",
    "alarm",
    "distribution",
    "stack",
    REGION,
)

_known_types = frozenset(ResourceTypes)


def check_resource_type(resource_type: str) -> str:
    if resource_type not in _known_types:
        raise UnknownResourceTypeError(f"unknown resource type '{resource_type}'")
    return resource_type


class Properties(Dict[str, Any]):
    def subtract(self, other: Dict[str, Any]) -> Properties:
        """All entries of this bag that are missing in other or hold a different value."""
        return Properties({k: v for k, v in self.items() if k not in other or other[k] != v})


@define(eq=False, slots=False)
class Resource:
    type: str
    id: str
    properties: Properties = field(factory=Properties, converter=Properties)
    meta: Dict[str, Any] = field(factory=dict)
    # edges declared by a fetch func, added to the graph together with the resource
    relations: List[Tuple[str, Resource]] = field(factory=list)

    @staticmethod
    def init(resource_type: str, resource_id: str) -> Resource:
        return Resource(check_resource_type(resource_type), resource_id)

    @property
    def key(self) -> NodeKey:
        return self.type, self.id

    def property(self, name: str) -> Tuple[Any, bool]:
        if name in self.properties:
            return self.properties[name], True
        return None, False

    def set_properties(self, values: Iterable[Tuple[str, Any]]) -> None:
        for name, value in values:
            self.properties[name] = value

    def add_relation(self, relation: str, other: Resource) -> None:
        """relation is one of parent_of, children_of, applies_on, depending_on, seen from this resource."""
        self.relations.append((relation, other))

    def same(self, other: Resource) -> bool:
        return self.type == other.type and self.id == other.id

    def string(self) -> str:
        return f"{self.type}[{self.id}]"

    def display(self) -> str:
        name = self.properties.get("Name")
        identifier = f"@{name}" if name else self.id
        return f"{identifier}[{self.type}]"

    def copy(self) -> Resource:
        return Resource(self.type, self.id, Properties(self.properties), dict(self.meta))

    def __eq__(self, other: Any) -> bool:
        return isinstance(other, Resource) and self.same(other)

    def __hash__(self) -> int:
        return hash(self.key)

    def __str__(self) -> str:
        return self.string()


def region_resource(region: str) -> Resource:
    res = Resource.init(REGION, region)
    res.properties["ID"] = region
    return res


def not_found_resource(resource_id: str) -> Resource:
    """Stands for the endpoint of an edge that is not part of the graph."""
    return Resource(NOT_FOUND, resource_id)
