from pytest import fixture

from cloudgraph.fetch import FetchCache, FetchContext
from cloudgraph.graph import Graph
from cloudgraph.resource import Resource
from cloudgraph_aws.aws_client import AwsClient
from cloudgraph_aws.configuration import AwsConfig
from test.resources import BotoFileBasedSession


@fixture
def aws_config() -> AwsConfig:
    config = AwsConfig(access_key_id="foo", secret_access_key="bar", region="us-east-1")
    config.sessions().session_class_factory = BotoFileBasedSession
    return config


@fixture
def aws_client(aws_config: AwsConfig) -> AwsClient:
    return AwsClient(aws_config, "us-east-1")


@fixture
def fetch_ctx() -> FetchContext:
    return FetchContext(region="us-east-1")


@fixture
def fetch_cache() -> FetchCache:
    return FetchCache()


@fixture
def infra_graph() -> Graph:
    """
    region
      └ vpc_1 ┬ sub_1 ┬ inst_1
              │       └ inst_2
              └ sub_2 ─ inst_3
    sg_1 applies on inst_1 and inst_2, inst_3 depends on vol_1.
    """
    graph = Graph()
    region = Resource.init("region", "eu-west-1")
    vpc = Resource.init("vpc", "vpc_1")
    vpc.properties.update({"ID": "vpc_1", "Name": "my_vpc", "Default": False})
    subnets = [Resource.init("subnet", f"sub_{i}") for i in (1, 2)]
    instances = [Resource.init("instance", f"inst_{i}") for i in (1, 2, 3)]
    for i, instance in enumerate(instances, start=1):
        instance.properties.update({"ID": f"inst_{i}", "Name": f"instance_{i}", "State": "running"})
        instance.properties["Tags"] = [f"Env=test_{i}", "Team=infra"]
    instances[2].properties["State"] = "stopped"
    sg = Resource.init("securitygroup", "sg_1")
    volume = Resource.init("volume", "vol_1")
    graph.add_resource(region, vpc, *subnets, *instances, sg, volume)
    graph.add_parent_relation(region, vpc)
    for subnet in subnets:
        graph.add_parent_relation(vpc, subnet)
    graph.add_parent_relation(subnets[0], instances[0])
    graph.add_parent_relation(subnets[0], instances[1])
    graph.add_parent_relation(subnets[1], instances[2])
    graph.add_applies_on_relation(sg, instances[0])
    graph.add_applies_on_relation(sg, instances[1])
    graph.add_depending_on_relation(instances[2], volume)
    return graph
