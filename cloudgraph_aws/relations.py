from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, Dict, List

from attrs import define

from cloudgraph.errors import CloudGraphError
from cloudgraph.graph import Graph
from cloudgraph.json import values_in_path
from cloudgraph.resource import REGION, Resource
from cloudgraph_aws.aws_client import AwsClient
from cloudgraph_aws.convert import Dto, hash_fields, init_resource

log = logging.getLogger("cloudgraph.aws")


class RelationError(CloudGraphError):
    pass


class RelationKind(Enum):
    parent_of = 0
    applies_on = 1
    depending_on = 2


# (graph, snapshot, region, client, dto): the snapshot is read, the graph is changed.
RelationFn = Callable[[Graph, Graph, str, AwsClient, Dto], None]


def add_relation(graph: Graph, other: Resource, resource: Resource, kind: RelationKind) -> None:
    """
    other is the resource named by the field of the dto, resource the one created from the dto.
    parent_of: other is parent of resource. applies_on: other applies on resource.
    depending_on: resource applies on other.
    """
    if kind == RelationKind.parent_of:
        graph.add_parent_relation(other, resource)
    elif kind == RelationKind.applies_on:
        graph.add_applies_on_relation(other, resource)
    else:
        graph.add_applies_on_relation(resource, other)


def _string_value(value: Any, what: str) -> str:
    if not isinstance(value, str):
        raise RelationError(f"add parent to {what}: {type(value).__name__} is not a string")
    return value


@define(frozen=True)
class FieldRelation:
    """Relation to the resource whose id is the single value found at the (dotted) field path."""

    parent: str
    field_name: str
    kind: RelationKind = RelationKind.parent_of

    def __call__(self, graph: Graph, snapshot: Graph, region: str, client: AwsClient, dto: Dto) -> None:
        values = values_in_path(dto.data, self.field_name)
        if not values:
            return
        if len(values) > 1:
            raise RelationError(f"{len(values)} values found at path '{self.field_name}' for value '{dto.data}'")
        value = _string_value(values[0], self.field_name)
        if value:
            add_relation(graph, Resource.init(self.parent, value), init_resource(dto), self.kind)


@define(frozen=True)
class StringListRelation:
    """One relation per element of a list of ids."""

    parent: str
    list_name: str
    kind: RelationKind = RelationKind.parent_of

    def __call__(self, graph: Graph, snapshot: Graph, region: str, client: AwsClient, dto: Dto) -> None:
        resource = init_resource(dto)
        elements = dto.data.get(self.list_name) or []
        if not isinstance(elements, list):
            raise RelationError(f"add parent to {resource.id}: field not a list: {type(elements).__name__}")
        for element in elements:
            value = _string_value(element, resource.id)
            if value:
                add_relation(graph, Resource.init(self.parent, value), resource, self.kind)


@define(frozen=True)
class StructListRelation:
    """One relation per element of a list of structs, the id is read from a field of the struct."""

    parent: str
    list_name: str
    field_name: str
    kind: RelationKind = RelationKind.parent_of

    def __call__(self, graph: Graph, snapshot: Graph, region: str, client: AwsClient, dto: Dto) -> None:
        resource = init_resource(dto)
        elements = dto.data.get(self.list_name) or []
        if not isinstance(elements, list):
            raise RelationError(f"add parent to {resource.id}: field not a list: {type(elements).__name__}")
        for element in elements:
            if not isinstance(element, dict):
                raise RelationError(f"add parent to {resource.id}: not a struct: {type(element).__name__}")
            value = element.get(self.field_name)
            if value is None:
                continue
            value = _string_value(value, resource.id)
            if value:
                add_relation(graph, Resource.init(self.parent, value), resource, self.kind)


def add_region_parent(graph: Graph, snapshot: Graph, region: str, client: AwsClient, dto: Dto) -> None:
    graph.add_parent_relation(Resource.init(REGION, region), init_resource(dto))


def _by_name(snapshot: Graph, resource_type: str, name: str) -> List[Resource]:
    return [r for r in snapshot.get_all_resources(resource_type) if r.properties.get("Name") == name]


def add_managed_policies_relations(graph: Graph, snapshot: Graph, region: str, client: AwsClient, dto: Dto) -> None:
    resource = init_resource(dto)
    for attached in dto.data.get("AttachedManagedPolicies") or []:
        policy_name = attached.get("PolicyName") or ""
        policies = _by_name(snapshot, "policy", policy_name)
        if len(policies) != 1:
            log.warning(
                f"add parent to '{resource.type}/{resource.id}': unknown policy named '{policy_name}'. Ignoring it."
            )
            continue
        graph.add_applies_on_relation(policies[0], resource)


def user_add_groups_relations(graph: Graph, snapshot: Graph, region: str, client: AwsClient, dto: Dto) -> None:
    if dto.kind != "iam.UserDetail":
        raise RelationError(f"aws fetch: not a user, but a {dto.kind}")
    user = init_resource(dto)
    for group_name in dto.data.get("GroupList") or []:
        groups = _by_name(snapshot, "group", group_name)
        if not groups:
            log.warning(f"no group with name {group_name} found for user {user.id}")
        elif len(groups) == 1:
            graph.add_applies_on_relation(groups[0], user)
        else:
            log.warning(f"multiple groups with name {group_name} found for user {user.id}: {groups}")


def fetch_targets_and_add_relations(graph: Graph, snapshot: Graph, region: str, client: AwsClient, dto: Dto) -> None:
    if dto.kind != "elbv2.TargetGroup":
        raise RelationError(f"add targets relation: not a target group, but a {dto.kind}")
    group = init_resource(dto)
    out = client.call("elbv2", "describe-target-health", TargetGroupArn=dto.data["TargetGroupArn"]) or {}
    for description in out.get("TargetHealthDescriptions") or []:
        target_id = (description.get("Target") or {}).get("Id")
        if target_id:
            graph.add_applies_on_relation(group, Resource.init("instance", target_id))


def add_scaling_group_subnets(graph: Graph, snapshot: Graph, region: str, client: AwsClient, dto: Dto) -> None:
    if dto.kind != "autoscaling.Group":
        raise RelationError(f"add autoscaling group relation: not a autoscaling group, but a {dto.kind}")
    group = init_resource(dto)
    subnets = dto.data.get("VPCZoneIdentifier") or ""
    for subnet in (s for s in subnets.split(",") if s):
        graph.add_applies_on_relation(group, Resource.init("subnet", subnet))


def add_alarm_metric(graph: Graph, snapshot: Graph, region: str, client: AwsClient, dto: Dto) -> None:
    if dto.kind != "cloudwatch.MetricAlarm":
        raise RelationError(f"add alarm metric relation: not a alarm, but a {dto.kind}")
    alarm = init_resource(dto)
    namespace, metric = dto.data.get("Namespace") or "", dto.data.get("MetricName") or ""
    if namespace and metric:
        graph.add_applies_on_relation(alarm, Resource.init("metric", hash_fields(namespace, metric)))


ParentOf, AppliesOn, DependingOn = RelationKind.parent_of, RelationKind.applies_on, RelationKind.depending_on

RelationsPerType: Dict[str, List[RelationFn]] = {
    # infra
    "subnet": [FieldRelation("vpc", "VpcId")],
    "instance": [
        FieldRelation("subnet", "SubnetId"),
        StructListRelation("securitygroup", "SecurityGroups", "GroupId", AppliesOn),
        FieldRelation("keypair", "KeyName", AppliesOn),
    ],
    "securitygroup": [FieldRelation("vpc", "VpcId")],
    "internetgateway": [add_region_parent, StructListRelation("vpc", "Attachments", "VpcId", DependingOn)],
    "natgateway": [
        add_region_parent,
        FieldRelation("vpc", "VpcId"),
        FieldRelation("subnet", "SubnetId", DependingOn),
    ],
    "routetable": [
        StructListRelation("subnet", "Associations", "SubnetId", DependingOn),
        FieldRelation("vpc", "VpcId"),
    ],
    "volume": [
        FieldRelation("availabilityzone", "AvailabilityZone"),
        StructListRelation("instance", "Attachments", "InstanceId", DependingOn),
    ],
    "elasticip": [add_region_parent, FieldRelation("instance", "InstanceId", DependingOn)],
    "snapshot": [add_region_parent, FieldRelation("volume", "VolumeId", DependingOn)],
    "networkinterface": [
        FieldRelation("subnet", "SubnetId"),
        StructListRelation("securitygroup", "Groups", "GroupId", AppliesOn),
        FieldRelation("instance", "Attachment.InstanceId", DependingOn),
    ],
    # load balancer
    "loadbalancer": [
        FieldRelation("vpc", "VpcId"),
        StructListRelation("subnet", "AvailabilityZones", "SubnetId", DependingOn),
        StructListRelation("availabilityzone", "AvailabilityZones", "ZoneName", DependingOn),
        StringListRelation("securitygroup", "SecurityGroups", AppliesOn),
    ],
    "classicloadbalancer": [
        FieldRelation("vpc", "VPCId"),
        StringListRelation("subnet", "Subnets", DependingOn),
        StringListRelation("availabilityzone", "AvailabilityZones", DependingOn),
        StringListRelation("securitygroup", "SecurityGroups", AppliesOn),
    ],
    "listener": [FieldRelation("loadbalancer", "LoadBalancerArn")],
    "targetgroup": [
        FieldRelation("vpc", "VpcId"),
        StringListRelation("loadbalancer", "LoadBalancerArns", AppliesOn),
        fetch_targets_and_add_relations,
    ],
    # database
    "database": [
        FieldRelation("availabilityzone", "AvailabilityZone"),
        StructListRelation("securitygroup", "VpcSecurityGroups", "VpcSecurityGroupId", AppliesOn),
    ],
    # autoscaling
    "launchconfiguration": [add_region_parent, FieldRelation("keypair", "KeyName", AppliesOn)],
    "scalinggroup": [
        add_region_parent,
        StringListRelation("availabilityzone", "AvailabilityZones", AppliesOn),
        StructListRelation("instance", "Instances", "InstanceId", DependingOn),
        StringListRelation("targetgroup", "TargetGroupARNs", DependingOn),
        add_scaling_group_subnets,
    ],
    # container
    "containerinstance": [FieldRelation("instance", "ec2InstanceId", AppliesOn)],
    "subscription": [FieldRelation("topic", "TopicArn")],
    "vpc": [add_region_parent],
    "availabilityzone": [add_region_parent],
    "keypair": [add_region_parent],
    "image": [add_region_parent],
    "repository": [add_region_parent],
    "containercluster": [add_region_parent],
    "containertask": [add_region_parent],
    "certificate": [add_region_parent],
    # access
    "user": [user_add_groups_relations, add_managed_policies_relations],
    "role": [add_managed_policies_relations],
    "group": [add_managed_policies_relations],
    "mfadevice": [FieldRelation("user", "User.UserId", DependingOn)],
    # others
    "bucket": [add_region_parent],
    "function": [add_region_parent],
    "topic": [add_region_parent],
    "alarm": [add_region_parent, add_alarm_metric],
    "metric": [add_region_parent],
    "stack": [add_region_parent],
}


def relations_for(resource_type: str) -> List[RelationFn]:
    return RelationsPerType.get(resource_type, [])


def run_relation(fn: RelationFn, graph: Graph, snapshot: Graph, region: str, client: AwsClient, dto: Dto) -> None:
    log.debug(f"Add relations of {dto.kind} with {getattr(fn, '__name__', fn)}")
    fn(graph, snapshot, region, client, dto)
