from datetime import datetime, timezone

import pytest

from cloudgraph.errors import CloudGraphError
from cloudgraph.fetch import FetchCache, FetchContext
from cloudgraph.properties import KeyValue
from cloudgraph.types import Json
from cloudgraph_aws.aws_client import AwsClient
from cloudgraph_aws.configuration import AwsConfig
from cloudgraph_aws.manual_fetchers import (
    AccountAuthorizationDetails,
    arn_to_name,
    chunks,
    get_account_authorization_details,
    get_buckets_per_region,
    manual_fetch_funcs,
    queue_properties,
    task_definition_state,
)
from cloudgraph_aws.services import new_service
from test import aws_client, aws_config  # noqa: F401
from test.resources import BotoDictSession, config_with, edges_of

definition = {"taskDefinitionArn": "arn:aws:ecs:eu-west-1:1:task-definition/web:1", "status": "ACTIVE"}


def task(group: str, status: str, cluster: str = "arn:aws:ecs:eu-west-1:1:cluster/main") -> Json:
    return {
        "taskDefinitionArn": definition["taskDefinitionArn"],
        "clusterArn": cluster,
        "group": group,
        "lastStatus": status,
    }


def test_helpers() -> None:
    assert list(chunks([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]
    assert list(chunks([], 100)) == []
    assert arn_to_name("arn:aws:ecs:eu-west-1:1:cluster/main") == "main"
    assert arn_to_name("main") == "main"


def test_task_definition_without_tasks() -> None:
    assert task_definition_state(definition, []) == ([], "ready")
    assert task_definition_state({**definition, "status": "INACTIVE"}, []) == ([], "inactive")


def test_task_definition_state() -> None:
    tasks = [
        task("service:web-svc", "RUNNING"),
        task("service:web-svc", "RUNNING", "arn:aws:ecs:eu-west-1:1:cluster/other"),
        task("family:web", "STOPPED"),
        # pending tasks and tasks of other definitions are not counted
        task("family:web", "PENDING"),
        {**task("family:db", "RUNNING"), "taskDefinitionArn": "other"},
    ]
    deployments, state = task_definition_state(definition, tasks)
    assert state == "2 services running 1 task stopped"
    assert deployments == [
        KeyValue("main", "web-svc (running service)"),
        KeyValue("other", "web-svc (running service)"),
        KeyValue("main", "web (stopped task)"),
    ]


def test_queue_properties() -> None:
    props = queue_properties(
        {
            "ApproximateNumberOfMessages": "12",
            "CreatedTimestamp": "1500000000",
            "LastModifiedTimestamp": "1500000100",
            "QueueArn": "arn:aws:sqs:eu-west-1:1:q",
            "DelaySeconds": "0",
            "VisibilityTimeout": "30",
        }
    )
    assert props == {
        "ApproximateMessageCount": 12,
        "Created": datetime(2017, 7, 14, 2, 40, tzinfo=timezone.utc),
        "Modified": datetime(2017, 7, 14, 2, 41, 40, tzinfo=timezone.utc),
        "Arn": "arn:aws:sqs:eu-west-1:1:q",
        "Delay": 0,
    }


def test_buckets_per_region(aws_client: AwsClient) -> None:
    # bucket_1 has no location file: it lives in us-east-1
    buckets = get_buckets_per_region(FetchContext(region="us-east-1"), aws_client, 4)
    assert [b["Name"] for b in buckets] == ["bucket_1"]
    buckets = get_buckets_per_region(FetchContext(region="eu-west-1"), aws_client, 4)
    assert [b["Name"] for b in buckets] == ["bucket_2"]
    # a filter selects buckets by a case insensitive part of the name
    buckets = get_buckets_per_region(FetchContext(region="eu-west-1", filters=["bucket=BUCKET_1"]), aws_client, 4)
    assert buckets == []


def test_account_details_are_shared() -> None:
    session = BotoDictSession(
        {"iam.get-account-authorization-details": {"UserDetailList": [{"UserId": "usr_1"}], "Policies": []}}
    )
    client = AwsClient(config_with(session), "global")
    cache = FetchCache()
    first = get_account_authorization_details(FetchContext(), cache, client)
    second = get_account_authorization_details(FetchContext(), cache, client)
    assert first is second
    assert first.users == [{"UserId": "usr_1"}]
    assert len(session.calls_of("iam", "get-account-authorization-details")) == 1

    by_type = get_account_authorization_details(FetchContext().by_type("group"), cache, client)
    assert by_type is not first
    assert session.calls_of("iam", "get-account-authorization-details")[1] == {"Filter": ["Group"]}
    assert set(cache.keys()) == {"accountDetails", "groupsDetails"}


def test_account_details_of_wrong_type() -> None:
    cache = FetchCache()
    cache.store("accountDetails", ["not", "details"])
    client = AwsClient(config_with(BotoDictSession()), "global")
    with pytest.raises(CloudGraphError, match="cannot get account details"):
        get_account_authorization_details(FetchContext(), cache, client)
    cache.store("accountDetails", AccountAuthorizationDetails())
    assert get_account_authorization_details(FetchContext(), cache, client).users == []


def test_manual_fetch_funcs(aws_config: AwsConfig) -> None:
    client = AwsClient(aws_config)
    assert set(manual_fetch_funcs("infra", client, aws_config)) == {
        "containerinstance",
        "container",
        "containertask",
        "containercluster",
        "listener",
    }
    assert set(manual_fetch_funcs("access", client, aws_config)) == {"user", "group", "role", "policy", "accesskey"}
    assert manual_fetch_funcs("lambda", client, aws_config) == {}


def test_infra_from_files(aws_config: AwsConfig) -> None:
    graph, errors = new_service("infra", aws_config).fetch(FetchContext())
    assert errors is None
    assert [r.id for r in graph.get_all_resources("instance")] == ["inst_1", "inst_2", "inst_3"]
    # volumes are read from two pages
    assert [r.id for r in graph.get_all_resources("volume")] == ["vol_1", "vol_2"]
    instance = graph.get_resource("instance", "inst_1")
    assert instance.properties["Name"] == "instance_1"
    assert instance.properties["State"] == "running"
    assert instance.properties["Launched"] == datetime(2017, 1, 10, 16, 47, 18, 412000, tzinfo=timezone.utc)
    assert edges_of(graph) == [
        ("my_key", "applies-on", "inst_1"),
        ("sg_1", "applies-on", "inst_1"),
        ("sub_1", "parent-of", "inst_1"),
        ("sub_1", "parent-of", "inst_2"),
        ("sub_2", "parent-of", "inst_3"),
        ("us-east-1", "parent-of", "vpc_1"),
        ("us-east-1a", "parent-of", "vol_1"),
        ("us-east-1b", "parent-of", "vol_2"),
        ("vpc_1", "parent-of", "sub_1"),
        ("vpc_1", "parent-of", "sub_2"),
    ]


def test_storage_from_files(aws_config: AwsConfig) -> None:
    graph, errors = new_service("storage", aws_config, "eu-west-1").fetch(FetchContext())
    assert errors is None
    bucket = graph.get_resource("bucket", "bucket_2")
    assert bucket.properties["Grants"] == []
    assert bucket.properties["Created"] == datetime(2017, 2, 10, 16, 47, 18, tzinfo=timezone.utc)
    assert edges_of(graph) == [("eu-west-1", "parent-of", "bucket_2")]
