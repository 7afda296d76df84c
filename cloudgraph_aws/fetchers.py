from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from attrs import define

from cloudgraph.fetch import FetchCache, FetchContext, FetchFunc, FetchResult
from cloudgraph.json import values_in_path
from cloudgraph.resource import Resource
from cloudgraph_aws.aws_client import AwsClient
from cloudgraph_aws.configuration import AwsConfig
from cloudgraph_aws.convert import Dto, IdPerKind, new_resource

log = logging.getLogger("cloudgraph.aws")


@define
class ApiFetchSpec:
    """
    Declares how all resources of one type are fetched with a single list call.
    Paging is done while the response carries token_out, which is sent back as token_in.
    """

    service: str
    api: str
    action: str
    result_path: str
    dto_kind: str
    parameters: Optional[Dict[str, Any]] = None
    token_in: Optional[str] = None
    token_out: Optional[str] = None

    @property
    def resource_type(self) -> str:
        return IdPerKind[self.dto_kind][0]

    @property
    def paged(self) -> bool:
        return self.token_in is not None and self.token_out is not None


def sync_disabled(config: AwsConfig, ctx: FetchContext, service: str, resource_type: str) -> bool:
    if not ctx.force and not config.type_sync(service, resource_type):
        log.info(f"sync: *disabled* for resource {service}[{resource_type}]")
        return True
    return False


def add_resource(result: FetchResult, dto: Dto) -> Resource:
    """Convert the dto and remember the resource. The first conversion error is kept as error of the result."""
    resource, error = new_resource(dto)
    result.resources.append(resource)
    if error is not None and result.error is None:
        result.error = error
    return resource


def add_dto(result: FetchResult, dto: Dto) -> Resource:
    result.objects.append(dto)
    return add_resource(result, dto)


def api_fetch_func(spec: ApiFetchSpec, client: AwsClient, config: AwsConfig) -> FetchFunc:
    def fetch(ctx: FetchContext, _: FetchCache) -> FetchResult:
        result = FetchResult(spec.resource_type)
        if sync_disabled(config, ctx, spec.service, spec.resource_type):
            return result
        params = spec.parameters or {}
        if spec.paged:
            pages = client.pages(spec.api, spec.action, spec.token_in, spec.token_out, ctx, **params)  # type: ignore
        else:
            pages = iter([client.call(spec.api, spec.action, **params) or {}])
        for page in pages:
            for item in values_in_path(page, spec.result_path):
                add_dto(result, Dto(spec.dto_kind, item))
            # a conversion error stops the paging after the current page
            if result.error is not None:
                break
        log.debug(f"Fetched {len(result.resources)} resources of type {spec.resource_type}")
        return result

    return fetch


def _spec(service: str, api: str, action: str, result_path: str, dto_kind: str, **kwargs: Any) -> ApiFetchSpec:
    return ApiFetchSpec(service, api, action, result_path, dto_kind, **kwargs)


NextToken: Dict[str, Any] = dict(token_in="NextToken", token_out="NextToken")
Marker: Dict[str, Any] = dict(token_in="Marker", token_out="Marker")
NextMarker: Dict[str, Any] = dict(token_in="Marker", token_out="NextMarker")
LowerNextToken: Dict[str, Any] = dict(token_in="nextToken", token_out="nextToken")
SelfOwned = {"OwnerIds": ["self"]}

ApiFetchSpecs: List[ApiFetchSpec] = [
    # infra
    _spec("infra", "ec2", "describe-instances", "Reservations.Instances", "ec2.Instance", **NextToken),
    _spec("infra", "ec2", "describe-subnets", "Subnets", "ec2.Subnet"),
    _spec("infra", "ec2", "describe-vpcs", "Vpcs", "ec2.Vpc"),
    _spec("infra", "ec2", "describe-key-pairs", "KeyPairs", "ec2.KeyPairInfo"),
    _spec("infra", "ec2", "describe-security-groups", "SecurityGroups", "ec2.SecurityGroup"),
    _spec("infra", "ec2", "describe-volumes", "Volumes", "ec2.Volume", **NextToken),
    _spec("infra", "ec2", "describe-internet-gateways", "InternetGateways", "ec2.InternetGateway"),
    _spec("infra", "ec2", "describe-nat-gateways", "NatGateways", "ec2.NatGateway"),
    _spec("infra", "ec2", "describe-route-tables", "RouteTables", "ec2.RouteTable"),
    _spec("infra", "ec2", "describe-availability-zones", "AvailabilityZones", "ec2.AvailabilityZone"),
    _spec("infra", "ec2", "describe-images", "Images", "ec2.Image", parameters={"Owners": ["self"]}),
    _spec("infra", "ec2", "describe-import-image-tasks", "ImportImageTasks", "ec2.ImportImageTask"),
    _spec("infra", "ec2", "describe-addresses", "Addresses", "ec2.Address"),
    _spec("infra", "ec2", "describe-snapshots", "Snapshots", "ec2.Snapshot", parameters=SelfOwned, **NextToken),
    _spec("infra", "ec2", "describe-network-interfaces", "NetworkInterfaces", "ec2.NetworkInterface"),
    _spec(
        "infra",
        "elb",
        "describe-load-balancers",
        "LoadBalancerDescriptions",
        "elb.LoadBalancerDescription",
        **NextMarker,
    ),
    _spec("infra", "elbv2", "describe-load-balancers", "LoadBalancers", "elbv2.LoadBalancer", **NextMarker),
    _spec("infra", "elbv2", "describe-target-groups", "TargetGroups", "elbv2.TargetGroup"),
    _spec("infra", "rds", "describe-db-instances", "DBInstances", "rds.DBInstance", **Marker),
    _spec("infra", "rds", "describe-db-subnet-groups", "DBSubnetGroups", "rds.DBSubnetGroup", **Marker),
    _spec(
        "infra",
        "autoscaling",
        "describe-launch-configurations",
        "LaunchConfigurations",
        "autoscaling.LaunchConfiguration",
        **NextToken,
    ),
    _spec(
        "infra", "autoscaling", "describe-auto-scaling-groups", "AutoScalingGroups", "autoscaling.Group", **NextToken
    ),
    _spec("infra", "autoscaling", "describe-policies", "ScalingPolicies", "autoscaling.ScalingPolicy", **NextToken),
    _spec("infra", "ecr", "describe-repositories", "repositories", "ecr.Repository", **LowerNextToken),
    _spec("infra", "acm", "list-certificates", "CertificateSummaryList", "acm.CertificateSummary", **NextToken),
    # access
    _spec("access", "iam", "list-instance-profiles", "InstanceProfiles", "iam.InstanceProfile", **Marker),
    _spec("access", "iam", "list-virtual-mfa-devices", "VirtualMFADevices", "iam.VirtualMFADevice", **Marker),
    # messaging
    _spec("messaging", "sns", "list-subscriptions", "Subscriptions", "sns.Subscription", **NextToken),
    _spec("messaging", "sns", "list-topics", "Topics", "sns.Topic", **NextToken),
    # dns
    _spec("dns", "route53", "list-hosted-zones", "HostedZones", "route53.HostedZone", **NextMarker),
    # lambda
    _spec("lambda", "lambda", "list-functions", "Functions", "lambda.FunctionConfiguration", **NextMarker),
    # monitoring
    _spec("monitoring", "cloudwatch", "list-metrics", "Metrics", "cloudwatch.Metric", **NextToken),
    _spec("monitoring", "cloudwatch", "describe-alarms", "MetricAlarms", "cloudwatch.MetricAlarm", **NextToken),
    # cdn
    _spec(
        "cdn",
        "cloudfront",
        "list-distributions",
        "DistributionList.Items",
        "cloudfront.DistributionSummary",
        token_in="Marker",
        token_out="DistributionList.NextMarker",
    ),
    # cloudformation
    _spec("cloudformation", "cloudformation", "describe-stacks", "Stacks", "cloudformation.Stack", **NextToken),
]


def api_fetch_specs(service: str) -> List[ApiFetchSpec]:
    return [spec for spec in ApiFetchSpecs if spec.service == service]
