from cloudgraph_aws.configuration import AwsConfig
from cloudgraph_aws.services import Service, ServiceRegistry, new_service

__all__ = ["AwsConfig", "Service", "ServiceRegistry", "new_service"]
