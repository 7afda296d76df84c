from __future__ import annotations

import logging
import re
import zlib
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from ipaddress import ip_network
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import unquote_plus

from attrs import define
from dateutil.parser import isoparse
from typeguard import CollectionCheckStrategy, check_type

from cloudgraph.errors import FetchErrors, PropertyConversionError, TagNotFound, UnknownDtoError
from cloudgraph.json import compact_json
from cloudgraph.json_bender import Bender, F, S
from cloudgraph.properties import (
    DistributionOrigin,
    FirewallRule,
    Grant,
    Grantee,
    KeyValue,
    PortRange,
    Route,
    RouteTarget,
    RouteTargetType,
)
from cloudgraph.resource import Resource
from cloudgraph.types import Json

log = logging.getLogger("cloudgraph.aws")


@define(frozen=True, eq=False)
class Dto:
    """
    A provider object as returned by boto, tagged with its provider type, e.g. "ec2.Instance".
    The kind selects the resource type, the id and the property table.
    """

    kind: str
    data: Json

    @property
    def resource_type(self) -> str:
        entry = IdPerKind.get(self.kind)
        if entry is None:
            raise UnknownDtoError(f"Unknown type of resource {self.kind}")
        return entry[0]


def dtos(kind: str, items: Optional[List[Json]]) -> List[Dto]:
    return [Dto(kind, item) for item in items or []]


# ------------------------------------------------------------------ extractors


def extract_value(value: Any) -> Any:
    if isinstance(value, list):
        return [str(v) for v in value if v is not None]
    return value


def extract_value_as_string(value: Any) -> str:
    return str(value)


def extract_field(value: Any, name: str) -> Any:
    if not isinstance(value, dict):
        raise ValueError(f"extract field '{name}': not a struct but a {type(value).__name__}")
    return extract_value(value.get(name))


def extract_string_slice(value: Any, name: str) -> List[str]:
    if not isinstance(value, list):
        raise ValueError(f"extract slice: not a slice but a {type(value).__name__}")
    result = []
    for elem in value:
        field = extract_field(elem, name)
        if not isinstance(field, str):
            raise ValueError(f"extract string slice: not a string but a {type(field).__name__}")
        result.append(field)
    return result


def extract_has_true_bool(value: Any, name: str) -> bool:
    if not isinstance(value, list):
        raise ValueError(f"extract true bool: not a slice but a {type(value).__name__}")
    result = False
    for elem in value:
        field = extract_field(elem, name)
        if field is None:
            continue
        if not isinstance(field, bool):
            raise ValueError(f"extract true bool: the field {name} is not a boolean, but a {type(field).__name__}")
        result = result or field
    return result


def extract_time(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value.astimezone(timezone.utc)
    elif isinstance(value, str):
        parsed = isoparse(value)
        return parsed.replace(tzinfo=timezone.utc) if parsed.tzinfo is None else parsed.astimezone(timezone.utc)
    raise ValueError(f"extract time: expected time, got: {type(value).__name__}")


def extract_time_with_z_suffix(value: Any) -> datetime:
    # a parsed string stays naive: only real timestamps are moved to UTC
    if isinstance(value, datetime):
        return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value.astimezone(timezone.utc)
    elif isinstance(value, str):
        return datetime.strptime(value, "%Y-%m-%dT%H:%M:%S.%fZ")
    raise ValueError(f"extract time: expected time, got: {type(value).__name__}")


def extract_tags(value: Any) -> List[str]:
    if not isinstance(value, list):
        raise ValueError(f"extract tags: not a tag slice, but a {type(value).__name__}")
    return [f"{tag.get('Key', '')}={tag.get('Value', '')}" for tag in value]


def extract_tag(value: Any, key: str) -> str:
    if not isinstance(value, list):
        raise ValueError(f"extract tag: not a tag slice, but a {type(value).__name__}")
    for tag in value:
        if tag.get("Key") == key:
            return tag.get("Value", "")  # type: ignore
    raise TagNotFound(f"aws tag key not found: {key}")


def extract_firewall_rules(value: Any) -> List[FirewallRule]:
    if not isinstance(value, list):
        raise ValueError(f"extract ip permission: not a permission slice but a {type(value).__name__}")
    rules = []
    for permission in value:
        protocol = str(permission.get("IpProtocol", ""))
        if protocol == "-1":
            protocol, port_range = "any", PortRange(any=True)
        elif protocol in ("tcp", "udp", "icmp", "58"):
            from_port, to_port = permission.get("FromPort", 0), permission.get("ToPort", 0)
            if from_port == -1 or to_port == -1:
                port_range = PortRange(any=True)
            else:
                port_range = PortRange(from_port, to_port)
        else:
            port_range = PortRange(any=True)
        ip_ranges = [ip_network(r["CidrIp"], strict=False) for r in permission.get("IpRanges") or []]
        ip_ranges += [ip_network(r["CidrIpv6"], strict=False) for r in permission.get("Ipv6Ranges") or []]
        sources = [str(pair.get("GroupId", "")) for pair in permission.get("UserIdGroupPairs") or []]
        rules.append(FirewallRule(protocol, port_range, ip_ranges, sources))
    return rules


_route_targets = [
    ("EgressOnlyInternetGatewayId", RouteTargetType.EgressOnlyInternetGateway),
    ("GatewayId", RouteTargetType.Gateway),
    ("InstanceId", RouteTargetType.Instance),
    ("NatGatewayId", RouteTargetType.Nat),
    ("NetworkInterfaceId", RouteTargetType.NetworkInterface),
    ("VpcPeeringConnectionId", RouteTargetType.VpcPeeringConnection),
]


def extract_routes(value: Any) -> List[Route]:
    if not isinstance(value, list):
        raise ValueError(f"extract route: not a route slice but a {type(value).__name__}")
    routes = []
    for r in value:
        cidr, cidr_v6 = r.get("DestinationCidrBlock"), r.get("DestinationIpv6CidrBlock")
        destination = ip_network(cidr, strict=False) if cidr else None
        destination_v6 = ip_network(cidr_v6, strict=False) if cidr_v6 else None
        targets = []
        for field, target_type in _route_targets:
            if r.get(field):
                owner = r.get("InstanceOwnerId") if target_type == RouteTargetType.Instance else None
                targets.append(RouteTarget(target_type, r[field], owner))
        routes.append(
            Route(destination, destination_v6, r.get("DestinationPrefixListId") or None, targets)  # type: ignore
        )
    return routes


def extract_key_values(value: Any, key_field: str, value_field: str) -> List[KeyValue]:
    if not isinstance(value, list):
        raise ValueError(f"extract key values: not a slice but a {type(value).__name__}")
    return [KeyValue(str(elem.get(key_field, "")), str(elem.get(value_field, ""))) for elem in value]


def extract_grants(value: Any) -> List[Grant]:
    if not isinstance(value, list):
        raise ValueError(f"extract grants: not a grant slice but a {type(value).__name__}")
    grants = []
    for acl in value:
        grantee = acl.get("Grantee") or {}
        display_name = grantee.get("DisplayName", "")
        grantee_type = grantee.get("Type", "")
        grantee_id = grantee.get("ID", "")
        if grantee.get("EmailAddress"):
            display_name += "<" + grantee["EmailAddress"] + ">"
        if grantee_type == "Group":
            grantee_id += grantee.get("URI", "")
        grants.append(Grant(acl.get("Permission", ""), Grantee(grantee_id, display_name, grantee_type)))
    return grants


def extract_distribution_origins(value: Any) -> List[DistributionOrigin]:
    if not isinstance(value, dict):
        raise ValueError(f"extract origins: not a origins struct but a {type(value).__name__}")
    origins = []
    for o in value.get("Items") or []:
        identity = (o.get("S3OriginConfig") or {}).get("OriginAccessIdentity", "")
        origins.append(
            DistributionOrigin(
                id=o.get("Id", ""),
                public_dns=o.get("DomainName", ""),
                path_prefix=o.get("OriginPath", ""),
                origin_type="s3" if identity else "",
                config=identity,
            )
        )
    return origins


# a percent sign that does not start an escape sequence makes the document not url decodable
_bad_escape = re.compile(r"%(?![0-9a-fA-F]{2})")


def _unescape_compact(document: str) -> str:
    if _bad_escape.search(document):
        return document
    try:
        unescaped = unquote_plus(document, errors="strict")
    except UnicodeDecodeError:
        return document
    return compact_json(unescaped)


def extract_document_default_version(value: Any) -> str:
    if not isinstance(value, list):
        raise ValueError(f"extract default version of document, not a policy version slice but a {type(value)}")
    for version in value:
        if version.get("IsDefaultVersion"):
            return _unescape_compact(version.get("Document") or "")
    return ""


def extract_url_encoded_json(value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError(f"extract URL-encoded JSON, not a string but a {type(value).__name__}")
    return _unescape_compact(value)


def extract_listener_descriptions(value: Any) -> List[str]:
    if not isinstance(value, list):
        raise ValueError(f"extract classic loadb listener descriptions: unexpected type {type(value).__name__}")
    result = []
    for description in value:
        listener = description.get("Listener")
        if listener:
            result.append(
                f"{listener['Protocol']}:{listener['LoadBalancerPort']}:"
                f"{listener['InstanceProtocol']}:{listener['InstancePort']}"
            )
    return result


def hash_fields(*fields: Any) -> str:
    content = "".join(str(f) for f in fields)
    return "awls-%08x" % (zlib.adler32(content.encode("utf-8")) & 0xFFFFFFFF)


def policy_type(policy: Json) -> str:
    return "AWS Managed" if str(policy.get("Arn", "")).startswith("arn:aws:iam::aws:policy") else "Customer Managed"


# ------------------------------------------------------------------ property types

PROPERTY_TYPES: Dict[str, Any] = {
    **{
        name: str
        for name in [
            "ID", "Name", "Type", "Subnet", "Vpc", "PublicIP", "PrivateIP", "Image", "State", "KeyPair", "Affinity",
            "AvailabilityZone", "SecondaryAvailabilityZone", "PlacementGroup", "Host", "Architecture", "Hypervisor",
            "Profile", "Lifecycle", "PublicDNS", "PrivateDNS", "RootDevice", "RootDeviceType", "CIDR", "Description",
            "Owner", "Fingerprint", "Region", "Arn", "Account", "URI", "Handler", "Hash", "Role", "Runtime", "Version",
            "Namespace", "MetricName", "Endpoint", "Protocol", "Topic", "Zone", "Cluster", "ContainerInstance",
            "ContainerTask", "DeploymentName", "StateMessage", "Instance", "InstanceOwner", "Attachment",
            "Association", "MACAddress", "Document", "TrustPolicy", "Path", "Comment", "CallerReference",
            "Failover", "Continent", "Country", "Set", "TrafficPolicyInstance", "HealthCheck", "Alias", "Key",
            "Class", "Bucket", "Scheme", "IPType", "Engine", "EngineVersion", "DBSubnetGroup", "StorageType",
            "Timezone", "License", "Username", "LaunchConfigurationName", "HealthCheckType", "AdjustmentType",
            "ScalingGroupName", "Progress", "Volume", "ChangeSet", "PriceClass", "WebACL", "ACMCertificate",
            "Certificate", "TLSVersionRequired", "SSLSupportMethod", "HTTPVersion", "AgentState", "AgentVersion",
            "DockerVersion", "CheckHTTPCode", "CheckPath", "CheckPort", "CheckProtocol", "CipherSuite", "Location",
            "Virtualization", "SpotPrice", "LoadBalancer",
        ]
    },
    **{
        name: int
        for name in [
            "Size", "TTL", "Memory", "Timeout", "Delay", "ApproximateMessageCount", "PendingTasksCount",
            "ActiveServicesCount", "RegisteredContainerInstancesCount", "RunningTasksCount", "ExitCode", "Port",
            "IOPS", "MaxSize", "MinSize", "DesiredCapacity", "DefaultCooldown", "Cooldown", "HealthCheckGracePeriod",
            "ScalingAdjustment", "CheckInterval", "CheckTimeout", "HealthyThresholdCount",
            "UnhealthyThresholdCount", "RecordCount", "Weight", "Storage", "BackupRetentionPeriod",
        ]
    },
    **{
        name: bool
        for name in [
            "Default", "Public", "Private", "Attached", "Attachable", "AgentConnected", "ActionsEnabled", "Enabled",
            "IPv6Enabled", "DisableRollback", "Encrypted", "NewInstancesProtected", "MultiAZ",
        ]
    },
    **{
        name: datetime
        for name in [
            "Created", "Launched", "Stopped", "Modified", "Updated", "AttachedAt", "PasswordLastUsed",
            "LatestRestorableTime",
        ]
    },
    **{
        name: List[str]
        for name in [
            "Tags", "SecurityGroups", "NetworkInterfaces", "IPv6Addresses", "Vpcs", "Messages", "Subnets",
            "AvailabilityZones", "Ports", "InlinePolicies", "Records", "AlarmActions", "InsufficientDataActions",
            "OKActions", "Aliases", "Capabilities", "Notifications", "Certificates", "Actions", "Instances",
            "TargetGroups", "DBSecurityGroups", "OptionGroups", "ParameterGroups", "AlarmNames", "Roles",
        ]
    },
    **{
        name: List[KeyValue]
        for name in [
            "Associations", "Attributes", "ContainersImages", "Deployments", "Dimensions", "Outputs", "Parameters"
        ]
    },
    "InboundRules": List[FirewallRule],
    "OutboundRules": List[FirewallRule],
    "Routes": List[Route],
    "Grants": List[Grant],
    "Origins": List[DistributionOrigin],
}  # fmt: skip

# ------------------------------------------------------------------ per kind tables


def tag(key: str) -> Bender:
    return S("Tags") >> F(extract_tag, key)


def strings(*path: str, field: str) -> Bender:
    return S(*path) >> F(extract_string_slice, field)


def time(*path: str) -> Bender:
    return S(*path) >> F(extract_time)


def key_values(path: str, key_field: str, value_field: str) -> Bender:
    return S(path) >> F(extract_key_values, key_field, value_field)


Tags = S("Tags") >> F(extract_tags)

ResourceTable = Dict[str, Bender]

IdPerKind: Dict[str, Tuple[str, Callable[[Json], str]]] = {
    "ec2.Instance": ("instance", lambda d: d["InstanceId"]),
    "ec2.Vpc": ("vpc", lambda d: d["VpcId"]),
    "ec2.Subnet": ("subnet", lambda d: d["SubnetId"]),
    "ec2.SecurityGroup": ("securitygroup", lambda d: d["GroupId"]),
    "ec2.KeyPairInfo": ("keypair", lambda d: d["KeyName"]),
    "ec2.Volume": ("volume", lambda d: d["VolumeId"]),
    "ec2.Image": ("image", lambda d: d["ImageId"]),
    "ec2.ImportImageTask": ("importimagetask", lambda d: d["ImportTaskId"]),
    "ec2.InternetGateway": ("internetgateway", lambda d: d["InternetGatewayId"]),
    "ec2.NatGateway": ("natgateway", lambda d: d["NatGatewayId"]),
    "ec2.RouteTable": ("routetable", lambda d: d["RouteTableId"]),
    "ec2.AvailabilityZone": ("availabilityzone", lambda d: d["ZoneName"]),
    "ec2.Address": ("elasticip", lambda d: d.get("AllocationId") or d["PublicIp"]),
    "ec2.Snapshot": ("snapshot", lambda d: d["SnapshotId"]),
    "ec2.NetworkInterface": ("networkinterface", lambda d: d["NetworkInterfaceId"]),
    "elb.LoadBalancerDescription": ("classicloadbalancer", lambda d: d["LoadBalancerName"]),
    "elbv2.LoadBalancer": ("loadbalancer", lambda d: d["LoadBalancerArn"]),
    "elbv2.TargetGroup": ("targetgroup", lambda d: d["TargetGroupArn"]),
    "elbv2.Listener": ("listener", lambda d: d["ListenerArn"]),
    "rds.DBInstance": ("database", lambda d: d["DBInstanceIdentifier"]),
    "rds.DBSubnetGroup": ("dbsubnetgroup", lambda d: d["DBSubnetGroupArn"]),
    "autoscaling.LaunchConfiguration": ("launchconfiguration", lambda d: d["LaunchConfigurationARN"]),
    "autoscaling.Group": ("scalinggroup", lambda d: d["AutoScalingGroupARN"]),
    "autoscaling.ScalingPolicy": ("scalingpolicy", lambda d: d["PolicyARN"]),
    "ecr.Repository": ("repository", lambda d: d["repositoryArn"]),
    "ecs.Cluster": ("containercluster", lambda d: d["clusterArn"]),
    "ecs.TaskDefinition": ("containertask", lambda d: d["taskDefinitionArn"]),
    "ecs.Container": ("container", lambda d: d["containerArn"]),
    "ecs.ContainerInstance": ("containerinstance", lambda d: d["containerInstanceArn"]),
    "acm.CertificateSummary": ("certificate", lambda d: d["CertificateArn"]),
    "iam.User": ("user", lambda d: d["UserId"]),
    "iam.UserDetail": ("user", lambda d: d["UserId"]),
    "iam.RoleDetail": ("role", lambda d: d["RoleId"]),
    "iam.GroupDetail": ("group", lambda d: d["GroupId"]),
    "iam.Policy": ("policy", lambda d: d["PolicyId"]),
    "iam.ManagedPolicyDetail": ("policy", lambda d: d["PolicyId"]),
    "iam.AccessKeyMetadata": ("accesskey", lambda d: d["AccessKeyId"]),
    "iam.InstanceProfile": ("instanceprofile", lambda d: d["InstanceProfileId"]),
    "iam.VirtualMFADevice": ("mfadevice", lambda d: d["SerialNumber"]),
    "s3.Bucket": ("bucket", lambda d: d["Name"]),
    "s3.Object": ("s3object", lambda d: d["Key"]),
    "sns.Subscription": ("subscription", lambda d: d["Endpoint"]),
    "sns.Topic": ("topic", lambda d: d["TopicArn"]),
    "route53.HostedZone": ("zone", lambda d: d["Id"]),
    "route53.ResourceRecordSet": ("record", lambda d: hash_fields(d.get("Name", ""), d.get("Type", ""))),
    "lambda.FunctionConfiguration": ("function", lambda d: d["FunctionArn"]),
    "cloudwatch.Metric": ("metric", lambda d: hash_fields(d.get("Namespace", ""), d.get("MetricName", ""))),
    "cloudwatch.MetricAlarm": ("alarm", lambda d: d["AlarmArn"]),
    "cloudfront.DistributionSummary": ("distribution", lambda d: d["Id"]),
    "cloudformation.Stack": ("stack", lambda d: d["StackId"]),
}

_user_table: ResourceTable = {
    "Name": S("UserName"),
    "Arn": S("Arn"),
    "Path": S("Path"),
    "Created": time("CreateDate"),
    "PasswordLastUsed": time("PasswordLastUsed"),
}

_policy_table: ResourceTable = {
    "Name": S("PolicyName"),
    "Arn": S("Arn"),
    "Created": time("CreateDate"),
    "Modified": time("UpdateDate"),
    "Description": S("Description"),
    "Attachable": S("IsAttachable"),
    "Path": S("Path"),
    "Version": S("DefaultVersionId"),
    "Type": F(policy_type),
    "Attached": S("AttachmentCount") >> F(lambda count: count > 0),
}

PropertiesPerKind: Dict[str, ResourceTable] = {
    "ec2.Instance": {
        "Name": tag("Name"),
        "Tags": Tags,
        "Type": S("InstanceType"),
        "Subnet": S("SubnetId"),
        "Vpc": S("VpcId"),
        "PublicIP": S("PublicIpAddress"),
        "PrivateIP": S("PrivateIpAddress"),
        "Image": S("ImageId"),
        "Launched": time("LaunchTime"),
        "State": S("State") >> F(extract_field, "Name"),
        "KeyPair": S("KeyName"),
        "SecurityGroups": strings("SecurityGroups", field="GroupId"),
        "Affinity": S("Placement") >> F(extract_field, "Affinity"),
        "AvailabilityZone": S("Placement") >> F(extract_field, "AvailabilityZone"),
        "PlacementGroup": S("Placement") >> F(extract_field, "GroupName"),
        "Host": S("Placement") >> F(extract_field, "HostId"),
        "Architecture": S("Architecture"),
        "Hypervisor": S("Hypervisor"),
        "Profile": S("IamInstanceProfile") >> F(extract_field, "Arn"),
        "Lifecycle": S("InstanceLifecycle"),
        "NetworkInterfaces": strings("NetworkInterfaces", field="NetworkInterfaceId"),
        "PublicDNS": S("PublicDnsName"),
        "RootDevice": S("RootDeviceName"),
        "RootDeviceType": S("RootDeviceType"),
    },
    "ec2.Vpc": {
        "Name": tag("Name"),
        "Tags": Tags,
        "Default": S("IsDefault"),
        "State": S("State"),
        "CIDR": S("CidrBlock"),
    },
    "ec2.Subnet": {
        "Name": tag("Name"),
        "Tags": Tags,
        "Vpc": S("VpcId"),
        "Public": S("MapPublicIpOnLaunch"),
        "State": S("State"),
        "CIDR": S("CidrBlock"),
        "AvailabilityZone": S("AvailabilityZone"),
        "Default": S("DefaultForAz"),
    },
    "ec2.SecurityGroup": {
        "Name": S("GroupName"),
        "Tags": Tags,
        "Description": S("Description"),
        "InboundRules": S("IpPermissions") >> F(extract_firewall_rules),
        "OutboundRules": S("IpPermissionsEgress") >> F(extract_firewall_rules),
        "Owner": S("OwnerId"),
        "Vpc": S("VpcId"),
    },
    "ec2.KeyPairInfo": {
        "Fingerprint": S("KeyFingerprint"),
    },
    "ec2.Volume": {
        "Name": tag("Name"),
        "Tags": Tags,
        "Type": S("VolumeType"),
        "State": S("State"),
        "Size": S("Size"),
        "Encrypted": S("Encrypted"),
        "Created": time("CreateTime"),
        "AvailabilityZone": S("AvailabilityZone"),
        "IOPS": S("Iops"),
    },
    "ec2.Image": {
        "Name": S("Name"),
        "Tags": Tags,
        "Architecture": S("Architecture"),
        "Hypervisor": S("Hypervisor"),
        "Created": S("CreationDate") >> F(extract_time_with_z_suffix),
        "Description": S("Description"),
        "Location": S("ImageLocation"),
        "Type": S("ImageType"),
        "Public": S("Public"),
        "State": S("State"),
        "Virtualization": S("VirtualizationType"),
        "RootDevice": S("RootDeviceName"),
        "RootDeviceType": S("RootDeviceType"),
    },
    "ec2.ImportImageTask": {
        "Architecture": S("Architecture"),
        "Description": S("Description"),
        "Image": S("ImageId"),
        "License": S("LicenseType"),
        "Progress": S("Progress"),
        "State": S("Status"),
        "StateMessage": S("StatusMessage"),
    },
    "ec2.InternetGateway": {
        "Name": tag("Name"),
        "Tags": Tags,
        "Vpcs": strings("Attachments", field="VpcId"),
    },
    "ec2.NatGateway": {
        "Vpc": S("VpcId"),
        "Subnet": S("SubnetId"),
        "State": S("State"),
        "Created": time("CreateTime"),
    },
    "ec2.RouteTable": {
        "Name": tag("Name"),
        "Tags": Tags,
        "Vpc": S("VpcId"),
        "Routes": S("Routes") >> F(extract_routes),
        "Default": S("Associations") >> F(extract_has_true_bool, "Main"),
        "Associations": key_values("Associations", "RouteTableAssociationId", "SubnetId"),
    },
    "ec2.AvailabilityZone": {
        "Name": S("ZoneName"),
        "State": S("State"),
        "Region": S("RegionName"),
        "Messages": strings("Messages", field="Message"),
    },
    "ec2.Address": {
        "Tags": Tags,
        "PublicIP": S("PublicIp"),
        "PrivateIP": S("PrivateIpAddress"),
        "Instance": S("InstanceId"),
        "Association": S("AssociationId"),
    },
    "ec2.Snapshot": {
        "Tags": Tags,
        "Volume": S("VolumeId"),
        "Encrypted": S("Encrypted"),
        "Owner": S("OwnerId"),
        "Progress": S("Progress"),
        "Size": S("VolumeSize"),
        "State": S("State"),
        "Created": time("StartTime"),
        "Description": S("Description"),
    },
    "ec2.NetworkInterface": {
        "Tags": S("TagSet") >> F(extract_tags),
        "PublicIP": S("Association", "PublicIp"),
        "PublicDNS": S("Association", "PublicDnsName"),
        "Attachment": S("Attachment", "AttachmentId"),
        "Instance": S("Attachment", "InstanceId"),
        "InstanceOwner": S("Attachment", "InstanceOwnerId"),
        "AvailabilityZone": S("AvailabilityZone"),
        "Description": S("Description"),
        "SecurityGroups": strings("Groups", field="GroupId"),
        "Type": S("InterfaceType"),
        "IPv6Addresses": strings("Ipv6Addresses", field="Ipv6Address"),
        "MACAddress": S("MacAddress"),
        "Owner": S("OwnerId"),
        "PrivateDNS": S("PrivateDnsName"),
        "PrivateIP": S("PrivateIpAddress"),
        "State": S("Status"),
        "Subnet": S("SubnetId"),
        "Vpc": S("VpcId"),
    },
    "elb.LoadBalancerDescription": {
        "Name": S("LoadBalancerName"),
        "AvailabilityZones": S("AvailabilityZones") >> F(extract_value),
        "Subnets": S("Subnets") >> F(extract_value),
        "SecurityGroups": S("SecurityGroups") >> F(extract_value),
        "Instances": strings("Instances", field="InstanceId"),
        "Vpc": S("VPCId"),
        "PublicDNS": S("DNSName"),
        "Created": time("CreatedTime"),
        "Scheme": S("Scheme"),
        "HealthCheck": S("HealthCheck", "Target"),
        "Ports": S("ListenerDescriptions") >> F(extract_listener_descriptions),
    },
    "elbv2.LoadBalancer": {
        "Arn": S("LoadBalancerArn"),
        "Name": S("LoadBalancerName"),
        "AvailabilityZones": strings("AvailabilityZones", field="ZoneName"),
        "Subnets": strings("AvailabilityZones", field="SubnetId"),
        "SecurityGroups": S("SecurityGroups") >> F(extract_value),
        "Created": time("CreatedTime"),
        "PublicDNS": S("DNSName"),
        "IPType": S("IpAddressType"),
        "Scheme": S("Scheme"),
        "State": S("State") >> F(extract_field, "Code"),
        "Type": S("Type"),
        "Vpc": S("VpcId"),
    },
    "elbv2.TargetGroup": {
        "Arn": S("TargetGroupArn"),
        "Name": S("TargetGroupName"),
        "CheckInterval": S("HealthCheckIntervalSeconds"),
        "CheckPath": S("HealthCheckPath"),
        "CheckPort": S("HealthCheckPort"),
        "CheckProtocol": S("HealthCheckProtocol"),
        "CheckTimeout": S("HealthCheckTimeoutSeconds"),
        "CheckHTTPCode": S("Matcher") >> F(extract_field, "HttpCode"),
        "HealthyThresholdCount": S("HealthyThresholdCount"),
        "UnhealthyThresholdCount": S("UnhealthyThresholdCount"),
        "Port": S("Port"),
        "Protocol": S("Protocol"),
        "Vpc": S("VpcId"),
    },
    "elbv2.Listener": {
        "Arn": S("ListenerArn"),
        "Certificates": strings("Certificates", field="CertificateArn"),
        "Actions": strings("DefaultActions", field="Type"),
        "LoadBalancer": S("LoadBalancerArn"),
        "Port": S("Port"),
        "Protocol": S("Protocol"),
        "CipherSuite": S("SslPolicy"),
    },
    "rds.DBInstance": {
        "Name": S("DBName"),
        "Arn": S("DBInstanceArn"),
        "AvailabilityZone": S("AvailabilityZone"),
        "SecondaryAvailabilityZone": S("SecondaryAvailabilityZone"),
        "BackupRetentionPeriod": S("BackupRetentionPeriod"),
        "Cluster": S("DBClusterIdentifier"),
        "Class": S("DBInstanceClass"),
        "State": S("DBInstanceStatus"),
        "DBSecurityGroups": strings("DBSecurityGroups", field="DBSecurityGroupName"),
        "DBSubnetGroup": S("DBSubnetGroup", "DBSubnetGroupName"),
        "Port": S("Endpoint", "Port"),
        "PublicDNS": S("Endpoint", "Address"),
        "Engine": S("Engine"),
        "EngineVersion": S("EngineVersion"),
        "Created": time("InstanceCreateTime"),
        "IOPS": S("Iops"),
        "LatestRestorableTime": time("LatestRestorableTime"),
        "License": S("LicenseModel"),
        "Username": S("MasterUsername"),
        "MultiAZ": S("MultiAZ"),
        "OptionGroups": strings("OptionGroupMemberships", field="OptionGroupName"),
        "ParameterGroups": strings("DBParameterGroups", field="DBParameterGroupName"),
        "Public": S("PubliclyAccessible"),
        "SecurityGroups": strings("VpcSecurityGroups", field="VpcSecurityGroupId"),
        "Storage": S("AllocatedStorage"),
        "StorageType": S("StorageType"),
        "Encrypted": S("StorageEncrypted"),
        "Timezone": S("Timezone"),
    },
    "rds.DBSubnetGroup": {
        "Arn": S("DBSubnetGroupArn"),
        "Name": S("DBSubnetGroupName"),
        "Description": S("DBSubnetGroupDescription"),
        "State": S("SubnetGroupStatus"),
        "Vpc": S("VpcId"),
        "Subnets": strings("Subnets", field="SubnetIdentifier"),
    },
    "autoscaling.LaunchConfiguration": {
        "Arn": S("LaunchConfigurationARN"),
        "Name": S("LaunchConfigurationName"),
        "Image": S("ImageId"),
        "Type": S("InstanceType"),
        "KeyPair": S("KeyName"),
        "SecurityGroups": S("SecurityGroups") >> F(extract_value),
        "Created": time("CreatedTime"),
        "SpotPrice": S("SpotPrice"),
        "Profile": S("IamInstanceProfile"),
    },
    "autoscaling.Group": {
        "Arn": S("AutoScalingGroupARN"),
        "Name": S("AutoScalingGroupName"),
        "Tags": Tags,
        "LaunchConfigurationName": S("LaunchConfigurationName"),
        "AvailabilityZones": S("AvailabilityZones") >> F(extract_value),
        "Created": time("CreatedTime"),
        "DefaultCooldown": S("DefaultCooldown"),
        "DesiredCapacity": S("DesiredCapacity"),
        "HealthCheckGracePeriod": S("HealthCheckGracePeriod"),
        "HealthCheckType": S("HealthCheckType"),
        "MaxSize": S("MaxSize"),
        "MinSize": S("MinSize"),
        "NewInstancesProtected": S("NewInstancesProtectedFromScaleIn"),
        "State": S("Status"),
        "TargetGroups": S("TargetGroupARNs") >> F(extract_value),
    },
    "autoscaling.ScalingPolicy": {
        "Arn": S("PolicyARN"),
        "Name": S("PolicyName"),
        "Type": S("PolicyType"),
        "AdjustmentType": S("AdjustmentType"),
        "ScalingAdjustment": S("ScalingAdjustment"),
        "ScalingGroupName": S("AutoScalingGroupName"),
        "AlarmNames": strings("Alarms", field="AlarmName"),
        "Cooldown": S("Cooldown"),
    },
    "ecr.Repository": {
        "Arn": S("repositoryArn"),
        "Name": S("repositoryName"),
        "Account": S("registryId"),
        "URI": S("repositoryUri"),
        "Created": time("createdAt"),
    },
    "ecs.Cluster": {
        "Arn": S("clusterArn"),
        "Name": S("clusterName"),
        "State": S("status"),
        "PendingTasksCount": S("pendingTasksCount"),
        "ActiveServicesCount": S("activeServicesCount"),
        "RegisteredContainerInstancesCount": S("registeredContainerInstancesCount"),
        "RunningTasksCount": S("runningTasksCount"),
    },
    "ecs.TaskDefinition": {
        "Arn": S("taskDefinitionArn"),
        "Name": S("family"),
        "Version": S("revision") >> F(extract_value_as_string),
        "ContainersImages": key_values("containerDefinitions", "name", "image"),
        "Role": S("taskRoleArn"),
    },
    "ecs.Container": {
        "Arn": S("containerArn"),
        "Name": S("name"),
        "ExitCode": S("exitCode"),
        "State": S("lastStatus"),
        "StateMessage": S("reason"),
    },
    "ecs.ContainerInstance": {
        "Arn": S("containerInstanceArn"),
        "AgentConnected": S("agentConnected"),
        "AgentState": S("agentUpdateStatus"),
        "Attributes": key_values("attributes", "name", "value"),
        "Instance": S("ec2InstanceId"),
        "PendingTasksCount": S("pendingTasksCount"),
        "RunningTasksCount": S("runningTasksCount"),
        "Created": time("registeredAt"),
        "State": S("status"),
        "Version": S("version") >> F(extract_value_as_string),
        "AgentVersion": S("versionInfo", "agentVersion"),
        "DockerVersion": S("versionInfo", "dockerVersion"),
    },
    "acm.CertificateSummary": {
        "Arn": S("CertificateArn"),
        "Name": S("DomainName"),
    },
    "iam.User": _user_table,
    "iam.UserDetail": {
        **{k: v for k, v in _user_table.items() if k != "PasswordLastUsed"},
        "InlinePolicies": strings("UserPolicyList", field="PolicyName"),
    },
    "iam.RoleDetail": {
        "Name": S("RoleName"),
        "Arn": S("Arn"),
        "Path": S("Path"),
        "Created": time("CreateDate"),
        "InlinePolicies": strings("RolePolicyList", field="PolicyName"),
        "TrustPolicy": S("AssumeRolePolicyDocument") >> F(extract_url_encoded_json),
    },
    "iam.GroupDetail": {
        "Name": S("GroupName"),
        "Arn": S("Arn"),
        "Path": S("Path"),
        "Created": time("CreateDate"),
        "InlinePolicies": strings("GroupPolicyList", field="PolicyName"),
    },
    "iam.Policy": _policy_table,
    "iam.ManagedPolicyDetail": {
        **_policy_table,
        "Document": S("PolicyVersionList") >> F(extract_document_default_version),
    },
    "iam.AccessKeyMetadata": {
        "Username": S("UserName"),
        "State": S("Status"),
        "Created": time("CreateDate"),
    },
    "iam.InstanceProfile": {
        "Arn": S("Arn"),
        "Name": S("InstanceProfileName"),
        "Path": S("Path"),
        "Created": time("CreateDate"),
        "Roles": strings("Roles", field="RoleName"),
    },
    "iam.VirtualMFADevice": {
        "AttachedAt": time("EnableDate"),
    },
    "s3.Bucket": {
        "Name": S("Name"),
        "Created": time("CreationDate"),
    },
    "s3.Object": {
        "Key": S("Key"),
        "Modified": time("LastModified"),
        "Owner": S("Owner") >> F(extract_field, "ID"),
        "Size": S("Size"),
        "Class": S("StorageClass"),
    },
    "sns.Subscription": {
        "Endpoint": S("Endpoint"),
        "Owner": S("Owner"),
        "Protocol": S("Protocol"),
        "Arn": S("SubscriptionArn"),
        "Topic": S("TopicArn"),
    },
    "sns.Topic": {
        "Arn": S("TopicArn"),
    },
    "route53.HostedZone": {
        "Name": S("Name"),
        "Comment": S("Config") >> F(extract_field, "Comment"),
        "Private": S("Config") >> F(extract_field, "PrivateZone"),
        "CallerReference": S("CallerReference"),
        "RecordCount": S("ResourceRecordSetCount"),
    },
    "route53.ResourceRecordSet": {
        "Name": S("Name"),
        "Type": S("Type"),
        "TTL": S("TTL"),
        "Records": strings("ResourceRecords", field="Value"),
        "Alias": S("AliasTarget") >> F(extract_field, "DNSName"),
        "Failover": S("Failover"),
        "Continent": S("GeoLocation") >> F(extract_field, "ContinentCode"),
        "Country": S("GeoLocation") >> F(extract_field, "CountryCode"),
        "HealthCheck": S("HealthCheckId"),
        "Region": S("Region"),
        "Set": S("SetIdentifier"),
        "TrafficPolicyInstance": S("TrafficPolicyInstanceId"),
        "Weight": S("Weight"),
    },
    "lambda.FunctionConfiguration": {
        "Arn": S("FunctionArn"),
        "Name": S("FunctionName"),
        "Hash": S("CodeSha256"),
        "Size": S("CodeSize"),
        "Description": S("Description"),
        "Handler": S("Handler"),
        "Modified": time("LastModified"),
        "Memory": S("MemorySize"),
        "Role": S("Role"),
        "Runtime": S("Runtime"),
        "Timeout": S("Timeout"),
        "Version": S("Version"),
    },
    "cloudwatch.Metric": {
        "Name": S("MetricName"),
        "Namespace": S("Namespace"),
        "Dimensions": key_values("Dimensions", "Name", "Value"),
    },
    "cloudwatch.MetricAlarm": {
        "Arn": S("AlarmArn"),
        "Name": S("AlarmName"),
        "ActionsEnabled": S("ActionsEnabled"),
        "AlarmActions": S("AlarmActions") >> F(extract_value),
        "InsufficientDataActions": S("InsufficientDataActions") >> F(extract_value),
        "OKActions": S("OKActions") >> F(extract_value),
        "Description": S("AlarmDescription"),
        "Dimensions": key_values("Dimensions", "Name", "Value"),
        "MetricName": S("MetricName"),
        "Namespace": S("Namespace"),
        "Updated": time("AlarmConfigurationUpdatedTimestamp"),
        "State": S("StateValue"),
    },
    "cloudfront.DistributionSummary": {
        "Arn": S("ARN"),
        "Aliases": S("Aliases", "Items") >> F(extract_value),
        "Comment": S("Comment"),
        "PublicDNS": S("DomainName"),
        "Enabled": S("Enabled"),
        "HTTPVersion": S("HttpVersion"),
        "IPv6Enabled": S("IsIPV6Enabled"),
        "Modified": time("LastModifiedTime"),
        "PriceClass": S("PriceClass"),
        "State": S("Status"),
        "WebACL": S("WebACLId"),
        "ACMCertificate": S("ViewerCertificate", "ACMCertificateArn"),
        "Certificate": S("ViewerCertificate", "Certificate"),
        "TLSVersionRequired": S("ViewerCertificate", "MinimumProtocolVersion"),
        "SSLSupportMethod": S("ViewerCertificate", "SSLSupportMethod"),
        "Origins": S("Origins") >> F(extract_distribution_origins),
    },
    "cloudformation.Stack": {
        "Name": S("StackName"),
        "Tags": Tags,
        "Capabilities": S("Capabilities") >> F(extract_value),
        "ChangeSet": S("ChangeSetId"),
        "Created": time("CreationTime"),
        "Description": S("Description"),
        "DisableRollback": S("DisableRollback"),
        "Modified": time("LastUpdatedTime"),
        "Notifications": S("NotificationARNs") >> F(extract_value),
        "Outputs": key_values("Outputs", "OutputKey", "OutputValue"),
        "Parameters": key_values("Parameters", "ParameterKey", "ParameterValue"),
        "Role": S("RoleARN"),
        "State": S("StackStatus"),
        "StateMessage": S("StackStatusReason"),
    },
}

# ------------------------------------------------------------------ converter

# shared by all conversions: a task never waits for another task of this pool
_executor = ThreadPoolExecutor(max_workers=16, thread_name_prefix="convert")


def init_resource(dto: Dto) -> Resource:
    entry = IdPerKind.get(dto.kind)
    if entry is None:
        raise UnknownDtoError(f"Unknown type of resource {dto.kind}")
    resource_type, id_fn = entry
    return Resource.init(resource_type, id_fn(dto.data))


def check_property(name: str, value: Any) -> None:
    expected = PROPERTY_TYPES.get(name)
    if expected is None:
        raise TypeError(f"unknown property {name}")
    # bool is a subclass of int, but not a valid int property
    if expected is int and isinstance(value, bool):
        raise TypeError(f"property {name}: bool is not an int")
    check_type(value, expected, collection_check_strategy=CollectionCheckStrategy.ALL_ITEMS)


def _convert_property(resource_type: str, name: str, bender: Bender, data: Json) -> Tuple[Any, Optional[Exception]]:
    try:
        value = bender(data)
        if value is not None:
            check_property(name, value)
        return value, None
    except TagNotFound:
        return None, None
    except Exception as ex:
        return None, PropertyConversionError(resource_type, name, ex)


def new_resource(dto: Dto) -> Tuple[Resource, Optional[FetchErrors]]:
    """
    Create a resource from the given dto: all properties of the table of this kind are computed concurrently.
    A failing property is not written but reported in the returned error: all other properties are set.
    """
    resource = init_resource(dto)
    resource.properties["ID"] = resource.id
    table = PropertiesPerKind.get(dto.kind, {})
    futures = {
        name: _executor.submit(_convert_property, resource.type, name, bender, dto.data)
        for name, bender in table.items()
    }
    errors = FetchErrors()
    for name, future in futures.items():
        value, error = future.result()
        if error is not None:
            log.debug(f"Conversion of {resource} failed: {error}")
            errors.add(error)
        elif value is not None:
            resource.properties[name] = value
    return resource, errors.or_none()
