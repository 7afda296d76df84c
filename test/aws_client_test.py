from typing import Any, Dict, List

import pytest
from botocore.exceptions import ClientError

from cloudgraph.errors import FetchAccessDenied, PaginationError
from cloudgraph.fetch import FetchContext
from cloudgraph_aws.aws_client import AwsClient, error_code, is_access_denied, is_retryable_exception
from cloudgraph_aws.configuration import AwsConfig
from test import aws_client, aws_config  # noqa: F401
from test.resources import BotoDictSession, BotoErrorSession, client_error


def test_region(aws_config: AwsConfig) -> None:
    client = AwsClient(aws_config, "eu-west-1")
    assert client.region == "eu-west-1"
    assert AwsClient(aws_config).region == "us-east-1"
    central = client.for_region("eu-central-1")
    assert central.region == "eu-central-1"
    assert central.config is client.config
    assert client.global_region.region == "us-east-1"
    assert AwsClient(aws_config, "global").global_region.region == "global"


def test_call(aws_client: AwsClient) -> None:
    out = aws_client.call("ec2", "describe-instances")
    assert out is not None
    assert len(out["Reservations"]) == 2
    # no file: empty response
    assert aws_client.call("ec2", "describe-images", Owners=["self"]) == {}


def test_pages(aws_client: AwsClient) -> None:
    pages = list(aws_client.pages("ec2", "describe-volumes", "NextToken", "NextToken"))
    assert len(pages) == 2
    assert [v["VolumeId"] for page in pages for v in page["Volumes"]] == ["vol_1", "vol_2"]


def test_pages_cancelled(aws_client: AwsClient) -> None:
    ctx = FetchContext()
    ctx.cancel()
    with pytest.raises(Exception, match="cancelled"):
        list(aws_client.pages("ec2", "describe-volumes", "NextToken", "NextToken", ctx))


def test_pages_with_nested_token() -> None:
    responses: List[Dict[str, Any]] = [
        {"DistributionList": {"Items": [{"Id": "d1"}], "NextMarker": "m1"}},
        {"DistributionList": {"Items": [{"Id": "d2"}]}},
    ]
    session = BotoDictSession({"cloudfront.list-distributions": lambda **kwargs: responses[1 if kwargs else 0]})
    config = AwsConfig()
    config.sessions().session_class_factory = session
    pages = list(
        AwsClient(config).pages("cloudfront", "list-distributions", "Marker", "DistributionList.NextMarker")
    )
    assert len(pages) == 2
    assert session.calls_of("cloudfront", "list-distributions") == [{}, {"Marker": "m1"}]


def test_error_code() -> None:
    assert error_code(client_error("Throttling")) == "Throttling"
    assert error_code(ClientError({}, "test")) == "Unknown Code"


def test_retryable_exception() -> None:
    assert is_retryable_exception(client_error("Throttling"))
    assert is_retryable_exception(client_error("RequestLimitExceeded"))
    assert is_retryable_exception(client_error("TooManyRequestsException"))
    assert not is_retryable_exception(client_error("AccessDenied"))
    assert not is_retryable_exception(ValueError("Throttling"))


def test_access_denied() -> None:
    assert is_access_denied(client_error("AccessDenied"))
    assert is_access_denied(client_error("AccessDeniedException"))
    assert is_access_denied(client_error("UnauthorizedOperation"))
    assert is_access_denied(client_error("Forbidden", "Access Denied"))
    assert not is_access_denied(client_error("NoSuchBucket", "The bucket does not exist"))


def with_error(code: str) -> AwsClient:
    config = AwsConfig()
    config.sessions().session_class_factory = BotoErrorSession(client_error(code))
    return AwsClient(config, "eu-west-1")


def test_error_handling() -> None:
    denied = with_error("AccessDenied")
    with pytest.raises(FetchAccessDenied):
        denied.call("ec2", "describe-instances")
    # an expected error is silenced
    assert denied.call("ec2", "describe-instances", expected_errors=["AccessDenied"]) is None

    gone = with_error("QueueDoesNotExist")
    assert gone.call("sqs", "get-queue-attributes", expected_errors=["QueueDoesNotExist"]) is None
    with pytest.raises(ClientError):
        gone.call("sqs", "get-queue-attributes")
    with pytest.raises(PaginationError) as info:
        list(gone.pages("sqs", "list-queues", "NextToken", "NextToken"))
    assert isinstance(info.value.cause, ClientError)


def test_retry_on_throttling() -> None:
    answers = [client_error("Throttling"), {"Vpcs": [{"VpcId": "vpc_1"}]}]

    def describe_vpcs(**_: Any) -> Any:
        answer = answers.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return answer

    session = BotoDictSession({"ec2.describe-vpcs": describe_vpcs})
    config = AwsConfig()
    config.sessions().session_class_factory = session
    out = AwsClient(config).call("ec2", "describe-vpcs")
    assert out == {"Vpcs": [{"VpcId": "vpc_1"}]}
    assert len(session.calls_of("ec2", "describe-vpcs")) == 2
