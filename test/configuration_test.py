import pickle

from cloudgraph.fetch import FetchCache, FetchContext
from cloudgraph_aws.aws_client import AwsClient
from cloudgraph_aws.configuration import AwsConfig, AwsSessionHolder
from cloudgraph_aws.fetchers import api_fetch_func, api_fetch_specs
from test.resources import BotoDictSession, BotoFileBasedSession


def test_default_config() -> None:
    config = AwsConfig()
    assert config.access_key_id is None
    assert config.secret_access_key is None
    assert config.profile is None
    assert config.region == "us-east-1"
    assert config.sync == {}
    assert config.max_workers == 16


def test_from_json() -> None:
    config = AwsConfig.from_json(
        {
            "profile": "prod",
            "region": "eu-west-1",
            "sync": {"cloud.infra.instance.sync": False},
            "max_workers": 4,
            "unknown": "ignored",
        }
    )
    assert config.profile == "prod"
    assert config.region == "eu-west-1"
    assert config.max_workers == 4
    assert config.type_sync("infra", "instance") is False


def test_sync_flags() -> None:
    config = AwsConfig(sync={"cloud.storage.sync": False, "cloud.infra.instance.sync": False, "cloud.dns.sync": "no"})
    assert config.service_sync("infra")
    assert not config.service_sync("storage")
    assert not config.type_sync("infra", "instance")
    assert config.type_sync("infra", "subnet")
    # only booleans are taken into account
    assert config.service_sync("dns")
    assert config.get_bool("cloud.unknown.sync", default=False) is False


def test_sessions() -> None:
    config = AwsConfig(access_key_id="foo", secret_access_key="bar")
    holder = config.sessions()
    assert isinstance(holder, AwsSessionHolder)
    assert config.sessions() is holder
    holder.session_class_factory = BotoFileBasedSession
    assert holder.client("ec2", "global").service == "ec2"  # type: ignore


def test_pickle() -> None:
    config = AwsConfig(profile="test", sync={"cloud.infra.sync": False})
    config.sessions()
    again = pickle.loads(pickle.dumps(config))
    assert again.profile == "test"
    assert again.sync == {"cloud.infra.sync": False}
    assert again.sessions() is not config.sessions()


def test_disabled_type_sync_issues_no_call() -> None:
    session = BotoDictSession({"ec2.describe-subnets": {"Subnets": [{"SubnetId": "sub_1", "VpcId": "vpc_1"}]}})
    config = AwsConfig(sync={"cloud.infra.instance.sync": False})
    config.sessions().session_class_factory = session
    client = AwsClient(config, "eu-west-1")
    funcs = {spec.resource_type: api_fetch_func(spec, client, config) for spec in api_fetch_specs("infra")}

    disabled = funcs["instance"](FetchContext(), FetchCache())
    assert disabled.resources == []
    assert session.calls_of("ec2", "describe-instances") == []
    # peers are not affected
    assert [r.id for r in funcs["subnet"](FetchContext(), FetchCache()).resources] == ["sub_1"]
    # force fetches anyway
    funcs["instance"](FetchContext(force=True), FetchCache())
    assert len(session.calls_of("ec2", "describe-instances")) == 1
