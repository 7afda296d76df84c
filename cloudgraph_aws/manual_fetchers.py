from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from attrs import define, field
from botocore.exceptions import ClientError

from cloudgraph.errors import CloudGraphError
from cloudgraph.fetch import FetchCache, FetchContext, FetchFunc, FetchResult
from cloudgraph.properties import Grant, KeyValue
from cloudgraph.resource import Resource
from cloudgraph.threading import parallel_map, run_all
from cloudgraph.types import Json
from cloudgraph_aws.aws_client import AwsClient
from cloudgraph_aws.configuration import DEFAULT_REGION, AwsConfig
from cloudgraph_aws.convert import Dto, extract_grants, extract_time, init_resource, new_resource
from cloudgraph_aws.fetchers import add_dto, add_resource, sync_disabled

log = logging.getLogger("cloudgraph.aws")

FetchFuncs = Dict[str, FetchFunc]


def chunks(items: List[Any], size: int) -> Iterator[List[Any]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def arn_to_name(arn: str) -> str:
    return arn.rsplit("/", 1)[-1]


# ------------------------------------------------------------------ ecs helpers


def get_cluster_arns(ctx: FetchContext, cache: FetchCache, client: AwsClient) -> List[str]:
    cluster = ctx.user_filters().get("cluster")
    if cluster is not None:
        out = client.call("ecs", "describe-clusters", clusters=[cluster]) or {}
        return [c["clusterArn"] for c in out.get("clusters") or []]

    def list_clusters() -> List[str]:
        arns: List[str] = []
        for page in client.pages("ecs", "list-clusters", "nextToken", "nextToken", ctx):
            arns.extend(page.get("clusterArns") or [])
        return arns

    return cache.get("getClustersNames", list_clusters)  # type: ignore


def get_all_tasks(ctx: FetchContext, cache: FetchCache, client: AwsClient, max_workers: int) -> List[Json]:
    """
    All running and stopped tasks of all clusters.
    Task arns are listed per cluster and desired status, every page of arns is described with one call.
    """
    cluster_arns = get_cluster_arns(ctx, cache, client)

    listing = ctx.child()

    def list_task_arns(job: Tuple[str, str]) -> List[Tuple[str, List[str]]]:
        cluster, status = job
        pages = client.pages(
            "ecs", "list-tasks", "nextToken", "nextToken", listing, cluster=cluster, desiredStatus=status
        )
        return [(cluster, page.get("taskArns") or []) for page in pages]

    jobs = [(cluster, status) for cluster in cluster_arns for status in ("RUNNING", "STOPPED")]
    listed = parallel_map(
        "ecs-list-tasks", list_task_arns, jobs, max_workers=max_workers, cancel_event=listing.cancel_event
    )
    batches = [batch for per_job in listed for batch in per_job if batch[1]]

    def describe_tasks(batch: Tuple[str, List[str]]) -> List[Json]:
        cluster, arns = batch
        out = client.call("ecs", "describe-tasks", cluster=cluster, tasks=arns) or {}
        return out.get("tasks") or []  # type: ignore

    described = parallel_map(
        "ecs-describe-tasks", describe_tasks, batches, max_workers=max_workers, cancel_event=ctx.child().cancel_event
    )
    return [task for tasks in described for task in tasks]


def task_definition_state(definition: Json, tasks: List[Json]) -> Tuple[List[KeyValue], str]:
    """
    Derive the deployments and the state of a task definition from the tasks that run it.
    Every task started by a service or as standalone task counts as one deployment in its cluster.
    """
    deployments: List[KeyValue] = []
    counts: Counter[Tuple[str, str]] = Counter()
    for task in tasks:
        if task.get("taskDefinitionArn") != definition.get("taskDefinitionArn"):
            continue
        group = task.get("group") or ""
        state = (task.get("lastStatus") or "").lower()
        if state not in ("running", "stopped"):
            continue
        for prefix, kind in (("service:", "service"), ("family:", "task")):
            if group.startswith(prefix):
                counts[(kind, state)] += 1
                cluster_name = arn_to_name(task.get("clusterArn") or "")
                deployments.append(KeyValue(cluster_name, f"{group[len(prefix):]} ({state} {kind})"))

    if not counts:
        status = (definition.get("status") or "").lower()
        return deployments, "ready" if status == "active" else status

    states = []
    for kind, state in (("service", "running"), ("service", "stopped"), ("task", "running"), ("task", "stopped")):
        count = counts[(kind, state)]
        if count > 0:
            states.append(f"{count} {kind}{'s' if count > 1 else ''} {state}")
    return deployments, " ".join(states)


# ------------------------------------------------------------------ iam helpers


@define
class AccountAuthorizationDetails:
    users: List[Json] = field(factory=list)
    groups: List[Json] = field(factory=list)
    roles: List[Json] = field(factory=list)
    policies: List[Json] = field(factory=list)


AllEntities = ["User", "Group", "Role", "LocalManagedPolicy", "AWSManagedPolicy"]
EntitiesPerType: Dict[str, Tuple[str, List[str]]] = {
    "user": ("usersDetails", ["User"]),
    "group": ("groupsDetails", ["Group"]),
    "role": ("rolesDetails", ["Role"]),
    "policy": ("policiesDetails", ["LocalManagedPolicy", "AWSManagedPolicy"]),
}


def fetch_account_authorization_details(
    ctx: FetchContext, client: AwsClient, entities: List[str]
) -> AccountAuthorizationDetails:
    details = AccountAuthorizationDetails()
    for page in client.pages("iam", "get-account-authorization-details", "Marker", "Marker", ctx, Filter=entities):
        details.users.extend(page.get("UserDetailList") or [])
        details.groups.extend(page.get("GroupDetailList") or [])
        details.roles.extend(page.get("RoleDetailList") or [])
        details.policies.extend(page.get("Policies") or [])
    return details


def get_account_authorization_details(
    ctx: FetchContext, cache: FetchCache, client: AwsClient
) -> AccountAuthorizationDetails:
    """
    A fetch of a single type only asks for the entities of this type.
    Otherwise all entities are fetched once and shared by user, group, role and policy.
    """
    resource_type, by_type = ctx.is_fetching_by_type()
    if by_type and resource_type in EntitiesPerType:
        key, entities = EntitiesPerType[resource_type]
    else:
        key, entities = "accountDetails", AllEntities
    details = cache.get(key, lambda: fetch_account_authorization_details(ctx, client, entities))
    if not isinstance(details, AccountAuthorizationDetails):
        raise CloudGraphError(f"cannot get account details (val of type {type(details).__name__})")
    return details


# ------------------------------------------------------------------ s3 helpers


def get_buckets_per_region(ctx: FetchContext, client: AwsClient, max_workers: int) -> List[Json]:
    """
    The buckets of the region of the context.
    The user filters "id" or "bucket" select buckets by a case insensitive part of the name.
    """
    out = client.call("s3", "list-buckets") or {}
    buckets: List[Json] = out.get("Buckets") or []
    filters = ctx.user_filters()
    name = filters.get("id", filters.get("bucket"))
    if name is not None:
        buckets = [b for b in buckets if name.lower() in (b.get("Name") or "").lower()]

    def location(bucket: Json) -> str:
        loc = client.call("s3", "get-bucket-location", Bucket=bucket["Name"]) or {}
        # buckets in us-east-1 have no location constraint
        return loc.get("LocationConstraint") or DEFAULT_REGION  # type: ignore

    locations = parallel_map(
        "s3-location", location, buckets, max_workers=max_workers, cancel_event=ctx.child().cancel_event
    )
    return [bucket for bucket, loc in zip(buckets, locations) if loc == ctx.region]


def fetch_and_extract_grants(client: AwsClient, bucket_name: str) -> List[Grant]:
    acl = client.call("s3", "get-bucket-acl", Bucket=bucket_name) or {}
    return extract_grants(acl.get("Grants") or [])


# ------------------------------------------------------------------ fetch funcs per service


TaskTimes = {"Created", "Launched", "Stopped"}


def infra_fetch_funcs(client: AwsClient, config: AwsConfig) -> FetchFuncs:
    workers = config.max_workers

    def all_tasks(ctx: FetchContext, cache: FetchCache) -> List[Json]:
        return cache.get("getAllTasks", lambda: get_all_tasks(ctx, cache, client, workers))  # type: ignore

    def fetch_container_instances(ctx: FetchContext, cache: FetchCache) -> FetchResult:
        result = FetchResult("containerinstance")
        if sync_disabled(config, ctx, "infra", "containerinstance"):
            return result
        for cluster in get_cluster_arns(ctx, cache, client):
            parent = Resource.init("containercluster", cluster)
            for page in client.pages("ecs", "list-container-instances", "nextToken", "nextToken", ctx, cluster=cluster):
                arns = page.get("containerInstanceArns") or []
                if not arns:
                    continue
                out = client.call("ecs", "describe-container-instances", cluster=cluster, containerInstances=arns) or {}
                for instance in out.get("containerInstances") or []:
                    resource = add_dto(result, Dto("ecs.ContainerInstance", instance))
                    resource.properties["Cluster"] = cluster
                    resource.add_relation("children_of", parent)
                if result.error is not None:
                    return result
        return result

    def fetch_containers(ctx: FetchContext, cache: FetchCache) -> FetchResult:
        result = FetchResult("container")
        if sync_disabled(config, ctx, "infra", "container"):
            return result
        for task in all_tasks(ctx, cache):
            for container in task.get("containers") or []:
                resource = add_dto(result, Dto("ecs.Container", container))
                values = {
                    "Cluster": task.get("clusterArn"),
                    "ContainerInstance": task.get("containerInstanceArn"),
                    "Created": task.get("createdAt"),
                    "Launched": task.get("startedAt"),
                    "Stopped": task.get("stoppedAt"),
                    "ContainerTask": task.get("taskDefinitionArn"),
                    "DeploymentName": task.get("group"),
                }
                for name, value in values.items():
                    if value is not None:
                        resource.properties[name] = extract_time(value) if name in TaskTimes else value
                for relation, resource_type, key in (
                    ("children_of", "containercluster", "clusterArn"),
                    ("depending_on", "containertask", "taskDefinitionArn"),
                    ("depending_on", "containerinstance", "containerInstanceArn"),
                ):
                    # tasks on fargate do not run on a container instance
                    if task.get(key):
                        resource.add_relation(relation, Resource.init(resource_type, task[key]))
        return result

    def fetch_task_definitions(ctx: FetchContext, cache: FetchCache) -> FetchResult:
        result = FetchResult("containertask")
        if sync_disabled(config, ctx, "infra", "containertask"):
            return result
        params = {}
        family_prefix = ctx.user_filters().get("name")
        if family_prefix is not None:
            params["familyPrefix"] = family_prefix
        arns = [
            arn
            for page in client.pages("ecs", "list-task-definitions", "nextToken", "nextToken", ctx, **params)
            for arn in page.get("taskDefinitionArns") or []
        ]

        def describe(arn: str) -> Optional[Json]:
            out = client.call("ecs", "describe-task-definition", taskDefinition=arn) or {}
            return out.get("taskDefinition")

        described = run_all("ecs-task-definitions", [lambda a=arn: describe(a) for arn in arns], max_workers=workers)
        tasks = all_tasks(ctx, cache)
        errors: List[str] = []
        for definition, error in described:
            if error is not None:
                if str(error) not in errors:
                    errors.append(str(error))
                continue
            if definition is None:
                continue
            dto = Dto("ecs.TaskDefinition", definition)
            result.objects.append(dto)
            resource, conversion_error = new_resource(dto)
            if conversion_error is not None:
                if str(conversion_error) not in errors:
                    errors.append(str(conversion_error))
                continue
            deployments, state = task_definition_state(definition, tasks)
            if deployments:
                resource.properties["Deployments"] = deployments
            if state:
                resource.properties["State"] = state
            result.resources.append(resource)
        if errors:
            result.error = CloudGraphError("; ".join(errors))
        return result

    def fetch_clusters(ctx: FetchContext, cache: FetchCache) -> FetchResult:
        result = FetchResult("containercluster")
        if sync_disabled(config, ctx, "infra", "containercluster"):
            return result
        for arns in chunks(get_cluster_arns(ctx, cache, client), 100):
            out = client.call("ecs", "describe-clusters", clusters=arns) or {}
            for cluster in out.get("clusters") or []:
                add_dto(result, Dto("ecs.Cluster", cluster))
        return result

    def fetch_listeners(ctx: FetchContext, _: FetchCache) -> FetchResult:
        result = FetchResult("listener")
        if sync_disabled(config, ctx, "infra", "listener"):
            return result
        balancers = [
            lb
            for page in client.pages("elbv2", "describe-load-balancers", "Marker", "NextMarker", ctx)
            for lb in page.get("LoadBalancers") or []
        ]

        listing = ctx.child()

        def listeners_of(lb: Json) -> List[Json]:
            pages = client.pages(
                "elbv2", "describe-listeners", "Marker", "NextMarker", listing, LoadBalancerArn=lb["LoadBalancerArn"]
            )
            return [listener for page in pages for listener in page.get("Listeners") or []]

        per_lb = parallel_map(
            "elbv2-listeners", listeners_of, balancers, max_workers=workers, cancel_event=listing.cancel_event
        )
        for listeners in per_lb:
            for listener in listeners:
                add_dto(result, Dto("elbv2.Listener", listener))
        return result

    return {
        "containerinstance": fetch_container_instances,
        "container": fetch_containers,
        "containertask": fetch_task_definitions,
        "containercluster": fetch_clusters,
        "listener": fetch_listeners,
    }


def access_fetch_funcs(client: AwsClient, config: AwsConfig) -> FetchFuncs:
    def list_users(ctx: FetchContext) -> List[Json]:
        pages = client.pages("iam", "list-users", "Marker", "Marker", ctx)
        return [user for page in pages for user in page.get("Users") or []]

    def fetch_users(ctx: FetchContext, cache: FetchCache) -> FetchResult:
        result = FetchResult("user")
        if sync_disabled(config, ctx, "access", "user"):
            return result
        for user in get_account_authorization_details(ctx, cache, client).users:
            add_dto(result, Dto("iam.UserDetail", user))
        # the plain user listing adds the last password usage, the graph merges both views of a user
        for user in list_users(ctx):
            add_resource(result, Dto("iam.User", user))
        return result

    def from_details(
        resource_type: str, kind: str, select: Callable[[AccountAuthorizationDetails], List[Json]]
    ) -> FetchFunc:
        def fetch(ctx: FetchContext, cache: FetchCache) -> FetchResult:
            result = FetchResult(resource_type)
            if sync_disabled(config, ctx, "access", resource_type):
                return result
            for item in select(get_account_authorization_details(ctx, cache, client)):
                add_dto(result, Dto(kind, item))
            return result

        return fetch

    def fetch_access_keys(ctx: FetchContext, _: FetchCache) -> FetchResult:
        result = FetchResult("accesskey")
        if sync_disabled(config, ctx, "access", "accesskey"):
            return result

        listing = ctx.child()

        def keys_of(user: Json) -> Tuple[Json, List[Json]]:
            pages = client.pages("iam", "list-access-keys", "Marker", "Marker", listing, UserName=user["UserName"])
            return user, [key for page in pages for key in page.get("AccessKeyMetadata") or []]

        users = list_users(ctx)
        per_user = parallel_map(
            "iam-access-keys", keys_of, users, max_workers=config.max_workers, cancel_event=listing.cancel_event
        )
        for user, keys in per_user:
            parent = init_resource(Dto("iam.User", user))
            for key in keys:
                add_dto(result, Dto("iam.AccessKeyMetadata", key)).add_relation("children_of", parent)
        return result

    return {
        "user": fetch_users,
        "group": from_details("group", "iam.GroupDetail", lambda d: d.groups),
        "role": from_details("role", "iam.RoleDetail", lambda d: d.roles),
        "policy": from_details("policy", "iam.ManagedPolicyDetail", lambda d: d.policies),
        "accesskey": fetch_access_keys,
    }


def storage_fetch_funcs(client: AwsClient, config: AwsConfig) -> FetchFuncs:
    workers = config.max_workers

    def buckets(ctx: FetchContext, cache: FetchCache) -> List[Json]:
        return cache.get("getBucketsPerRegion", lambda: get_buckets_per_region(ctx, client, workers))  # type: ignore

    def fetch_buckets(ctx: FetchContext, cache: FetchCache) -> FetchResult:
        result = FetchResult("bucket")
        if sync_disabled(config, ctx, "storage", "bucket"):
            return result

        def grants_of(bucket: Json) -> List[Grant]:
            try:
                return fetch_and_extract_grants(client, bucket["Name"])
            except ClientError as e:
                raise CloudGraphError(f"fetching grants for bucket {bucket['Name']}: {e}") from e

        in_region = buckets(ctx, cache)
        grants = parallel_map(
            "s3-grants", grants_of, in_region, max_workers=workers, cancel_event=ctx.child().cancel_event
        )
        for bucket, bucket_grants in zip(in_region, grants):
            add_dto(result, Dto("s3.Bucket", bucket)).properties["Grants"] = bucket_grants
        return result

    def fetch_objects(ctx: FetchContext, cache: FetchCache) -> FetchResult:
        result = FetchResult("s3object")
        if sync_disabled(config, ctx, "storage", "s3object"):
            return result

        listing = ctx.child()

        def objects_of(bucket: Json) -> List[Json]:
            pages = client.pages(
                "s3",
                "list-objects-v2",
                "ContinuationToken",
                "NextContinuationToken",
                listing,
                Bucket=bucket["Name"],
                FetchOwner=True,
            )
            return [obj for page in pages for obj in page.get("Contents") or []]

        in_region = buckets(ctx, cache)
        per_bucket = parallel_map(
            "s3-objects", objects_of, in_region, max_workers=workers, cancel_event=listing.cancel_event
        )
        for bucket, objects in zip(in_region, per_bucket):
            parent = init_resource(Dto("s3.Bucket", bucket))
            for obj in objects:
                resource = add_dto(result, Dto("s3.Object", obj))
                resource.properties["Bucket"] = bucket["Name"]
                resource.add_relation("children_of", parent)
        return result

    return {"bucket": fetch_buckets, "s3object": fetch_objects}


QueueGoneErrors = [
    "QueueDoesNotExist",
    "QueueDeletedRecently",
    "AWS.SimpleQueueService.NonExistentQueue",
    "AWS.SimpleQueueService.QueueDeletedRecently",
]


def queue_properties(attributes: Dict[str, str]) -> Dict[str, Any]:
    def unix_time(value: str) -> datetime:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)

    props: Dict[str, Any] = {}
    for name, value in attributes.items():
        if name == "ApproximateNumberOfMessages":
            props["ApproximateMessageCount"] = int(value)
        elif name == "CreatedTimestamp" and value:
            props["Created"] = unix_time(value)
        elif name == "LastModifiedTimestamp" and value:
            props["Modified"] = unix_time(value)
        elif name == "QueueArn":
            props["Arn"] = value
        elif name == "DelaySeconds":
            props["Delay"] = int(value)
    return props


def messaging_fetch_funcs(client: AwsClient, config: AwsConfig) -> FetchFuncs:
    def fetch_queues(ctx: FetchContext, _: FetchCache) -> FetchResult:
        result = FetchResult("queue")
        if sync_disabled(config, ctx, "messaging", "queue"):
            return result
        urls = [
            url
            for page in client.pages("sqs", "list-queues", "NextToken", "NextToken", ctx)
            for url in page.get("QueueUrls") or []
        ]

        def queue_of(url: str) -> Optional[Resource]:
            out = client.call(
                "sqs", "get-queue-attributes", expected_errors=QueueGoneErrors, QueueUrl=url, AttributeNames=["All"]
            )
            if out is None:
                log.debug(f"Queue {url} is gone. Ignore it.")
                return None
            resource = Resource.init("queue", url)
            resource.properties["ID"] = url
            resource.set_properties(queue_properties(out.get("Attributes") or {}).items())
            return resource

        queues = parallel_map(
            "sqs-queues", queue_of, urls, max_workers=config.max_workers, cancel_event=ctx.child().cancel_event
        )
        for url, queue in zip(urls, queues):
            result.objects.append(url)
            if queue is not None:
                result.resources.append(queue)
        return result

    return {"queue": fetch_queues}


def dns_fetch_funcs(client: AwsClient, config: AwsConfig) -> FetchFuncs:
    def record_sets(ctx: FetchContext, zone: Json) -> List[Json]:
        records: List[Json] = []
        args: Dict[str, Any] = {"HostedZoneId": zone["Id"]}
        while True:
            ctx.check_cancelled()
            page = client.call("route53", "list-resource-record-sets", **args) or {}
            records.extend(page.get("ResourceRecordSets") or [])
            if not page.get("NextRecordName"):
                return records
            args["StartRecordName"] = page["NextRecordName"]
            args["StartRecordType"] = page.get("NextRecordType")
            if page.get("NextRecordIdentifier"):
                args["StartRecordIdentifier"] = page["NextRecordIdentifier"]
            else:
                args.pop("StartRecordIdentifier", None)

    def fetch_records(ctx: FetchContext, _: FetchCache) -> FetchResult:
        result = FetchResult("record")
        if sync_disabled(config, ctx, "dns", "record"):
            return result
        zone_name = ctx.user_filters().get("zone")
        zones = [
            zone
            for page in client.pages("route53", "list-hosted-zones", "Marker", "NextMarker", ctx)
            for zone in page.get("HostedZones") or []
            if zone_name is None or zone_name.lower() in (zone.get("Name") or "").lower()
        ]
        listing = ctx.child()
        per_zone = parallel_map(
            "route53-records",
            lambda zone: record_sets(listing, zone),
            zones,
            max_workers=config.max_workers,
            cancel_event=listing.cancel_event,
        )
        for zone, records in zip(zones, per_zone):
            parent = init_resource(Dto("route53.HostedZone", zone))
            for record in records:
                resource = add_dto(result, Dto("route53.ResourceRecordSet", record))
                resource.properties["Zone"] = zone["Name"]
                resource.add_relation("children_of", parent)
        return result

    return {"record": fetch_records}


ManualFetchFuncs: Dict[str, Callable[[AwsClient, AwsConfig], FetchFuncs]] = {
    "infra": infra_fetch_funcs,
    "access": access_fetch_funcs,
    "storage": storage_fetch_funcs,
    "messaging": messaging_fetch_funcs,
    "dns": dns_fetch_funcs,
}


def manual_fetch_funcs(service: str, client: AwsClient, config: AwsConfig) -> FetchFuncs:
    builder = ManualFetchFuncs.get(service)
    return builder(client, config) if builder else {}
