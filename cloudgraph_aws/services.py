from __future__ import annotations

import logging
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Tuple

from botocore.exceptions import ClientError
from prometheus_client import Counter, Summary

from cloudgraph.errors import FetchAccessDenied, FetchErrors, PaginationError, TypeCastError, UnknownResourceTypeError
from cloudgraph.fetch import FetchContext, Fetcher, FetchFunc, objects_key
from cloudgraph.graph import Graph
from cloudgraph.resource import region_resource
from cloudgraph.threading import run_all
from cloudgraph_aws.aws_client import AwsClient, is_access_denied
from cloudgraph_aws.configuration import GLOBAL_REGION, AwsConfig
from cloudgraph_aws.convert import Dto, IdPerKind
from cloudgraph_aws.fetchers import api_fetch_func, api_fetch_specs
from cloudgraph_aws.manual_fetchers import manual_fetch_funcs
from cloudgraph_aws.relations import RelationFn, relations_for, run_relation

log = logging.getLogger("cloudgraph.aws")

metrics_service_fetch = Summary(
    "cloudgraph_service_fetch_seconds", "Time it took to fetch all resources of one service", ["service"]
)
metrics_fetch_errors = Counter("cloudgraph_fetch_errors_total", "Errors reported by a service fetch", ["service"])

ServiceNames = ["infra", "access", "storage", "messaging", "dns", "lambda", "monitoring", "cdn", "cloudformation"]

# services that are not bound to a region
GlobalServices = {"access", "dns", "cdn"}

SERVICE_PER_API: Dict[str, str] = {
    "ec2": "infra",
    "elbv2": "infra",
    "elb": "infra",
    "rds": "infra",
    "autoscaling": "infra",
    "ecr": "infra",
    "ecs": "infra",
    "applicationautoscaling": "infra",
    "acm": "infra",
    "iam": "access",
    "sts": "access",
    "s3": "storage",
    "sns": "messaging",
    "sqs": "messaging",
    "route53": "dns",
    "lambda": "lambda",
    "cloudwatch": "monitoring",
    "cloudfront": "cdn",
    "cloudformation": "cloudformation",
}

API_PER_RESOURCE_TYPE: Dict[str, str] = {
    **{t: "ec2" for t in ["instance", "subnet", "vpc", "keypair", "securitygroup", "volume", "internetgateway"]},
    **{t: "ec2" for t in ["natgateway", "routetable", "availabilityzone", "image", "importimagetask", "elasticip"]},
    **{t: "ec2" for t in ["snapshot", "networkinterface"]},
    "classicloadbalancer": "elb",
    **{t: "elbv2" for t in ["loadbalancer", "targetgroup", "listener"]},
    **{t: "rds" for t in ["database", "dbsubnetgroup"]},
    **{t: "autoscaling" for t in ["launchconfiguration", "scalinggroup", "scalingpolicy"]},
    "repository": "ecr",
    **{t: "ecs" for t in ["containercluster", "containertask", "container", "containerinstance"]},
    "certificate": "acm",
    **{t: "iam" for t in ["user", "group", "role", "policy", "accesskey", "instanceprofile", "mfadevice"]},
    **{t: "s3" for t in ["bucket", "s3object"]},
    **{t: "sns" for t in ["subscription", "topic"]},
    "queue": "sqs",
    **{t: "route53" for t in ["zone", "record"]},
    "function": "lambda",
    **{t: "cloudwatch" for t in ["metric", "alarm"]},
    "distribution": "cloudfront",
    "stack": "cloudformation",
}

SERVICE_PER_RESOURCE_TYPE: Dict[str, str] = {t: SERVICE_PER_API[api] for t, api in API_PER_RESOURCE_TYPE.items()}


def resource_types_per_service() -> Dict[str, List[str]]:
    result: Dict[str, List[str]] = {}
    for resource_type, service in SERVICE_PER_RESOURCE_TYPE.items():
        result.setdefault(service, []).append(resource_type)
    return result


RESOURCE_TYPES_PER_SERVICE = resource_types_per_service()


def apis_of(service: str) -> List[str]:
    return [api for api, name in SERVICE_PER_API.items() if name == service]


def collapse_errors(errors: Optional[FetchErrors]) -> FetchErrors:
    """
    All access denied errors are reported as one FetchAccessDenied.
    All other errors are kept as they are.
    """
    result = FetchErrors()
    denied = False
    for error in errors or []:
        cause = error.cause if isinstance(error, PaginationError) else error
        if isinstance(cause, FetchAccessDenied) or (isinstance(cause, ClientError) and is_access_denied(cause)):
            denied = True
        else:
            result.add(error)
    if denied:
        result.add(FetchAccessDenied())
    return result


def kinds_of(resource_type: str) -> List[str]:
    return [kind for kind, (rt, _) in IdPerKind.items() if rt == resource_type]


def cached_dtos(objects: Any, resource_type: str) -> List[Dto]:
    if objects is None:
        return []
    if not isinstance(objects, list) or any(
        not isinstance(o, Dto) or o.resource_type != resource_type for o in objects
    ):
        raise TypeCastError(f"cannot cast to '[]{'|'.join(kinds_of(resource_type))}' type from fetch context")
    return objects


class Service:
    """
    All resources of a group of AWS apis.
    A fetch runs all fetch functions of the service and infers the relations between the fetched resources.
    """

    def __init__(
        self,
        name: str,
        config: AwsConfig,
        region: str,
        resource_types: List[str],
        client: Optional[AwsClient] = None,
    ) -> None:
        self.name = name
        self.config = config
        self.region = region
        self.resource_types = resource_types
        self.api_names = apis_of(name)
        self.client = client or AwsClient(config, region)
        funcs: Dict[str, FetchFunc] = {
            spec.resource_type: api_fetch_func(spec, self.client, config) for spec in api_fetch_specs(name)
        }
        funcs.update(manual_fetch_funcs(name, self.client, config))
        self.fetcher = Fetcher({t: funcs[t] for t in resource_types if t in funcs})
        self.relations: Dict[str, List[RelationFn]] = {
            t: relations_for(t) for t in resource_types if relations_for(t)
        }

    def is_sync_disabled(self) -> bool:
        return not self.config.service_sync(self.name)

    def fetch(self, ctx: FetchContext) -> Tuple[Graph, Optional[FetchErrors]]:
        if self.is_sync_disabled():
            log.info(f"sync: *disabled* for service {self.name}")
            return Graph(), None
        with metrics_service_fetch.labels(self.name).time():
            try:
                graph, errors = self._fetch(ctx.with_region(self.region))
            finally:
                self.fetcher.reset()
        if errors is not None:
            metrics_fetch_errors.labels(self.name).inc(len(errors))
        log.info(f"Service {self.name}[{self.region}]: {len(graph.nodes)} nodes, {len(errors or [])} errors")
        return graph, errors

    def _fetch(self, ctx: FetchContext) -> Tuple[Graph, Optional[FetchErrors]]:
        graph, fetch_errors = self.fetcher.fetch(ctx)
        errors = collapse_errors(fetch_errors)
        graph.add_resource(region_resource(self.region))
        snapshot = graph.snapshot()

        jobs: List[Callable[[], None]] = []
        for resource_type, fns in self.relations.items():
            if not ctx.force and not self.config.type_sync(self.name, resource_type):
                continue
            for dto in cached_dtos(self.fetcher.get(objects_key(resource_type)), resource_type):
                for fn in fns:
                    jobs.append(partial(run_relation, fn, graph, snapshot, self.region, self.client, dto))
        for _, error in run_all(f"{self.name}-relations", jobs, max_workers=self.config.max_workers):
            errors.add(error)
        return graph, errors.or_none()

    def fetch_by_type(self, ctx: FetchContext, resource_type: str) -> Tuple[Graph, Optional[FetchErrors]]:
        try:
            graph, errors = self.fetcher.fetch_by_type(ctx.with_region(self.region), resource_type)
        finally:
            self.fetcher.reset()
        return graph, collapse_errors(errors).or_none()

    def __repr__(self) -> str:
        return f"Service({self.name}, region={self.region})"


def new_service(name: str, config: AwsConfig, region: Optional[str] = None) -> Service:
    service_region = GLOBAL_REGION if name in GlobalServices else (region or config.region)
    return Service(name, config, service_region, RESOURCE_TYPES_PER_SERVICE.get(name, []))


class ServiceRegistry:
    """
    All services of one region.
    Global services are fetched from the global endpoint independent of the region.
    """

    def __init__(self, config: AwsConfig, region: Optional[str] = None) -> None:
        self.config = config
        self.region = region or config.region
        self.services: Dict[str, Service] = {name: new_service(name, config, self.region) for name in ServiceNames}

    def get(self, name: str) -> Optional[Service]:
        return self.services.get(name)

    def names(self) -> List[str]:
        return list(self.services)

    def get_services_for_apis(self, *apis: str) -> List[Service]:
        names = dict.fromkeys(SERVICE_PER_API[api] for api in apis if api in SERVICE_PER_API)
        return [self.services[name] for name in names if name in self.services]

    def get_services_for_types(self, *types: str) -> List[Service]:
        names = dict.fromkeys(SERVICE_PER_RESOURCE_TYPE[t] for t in types if t in SERVICE_PER_RESOURCE_TYPE)
        return [self.services[name] for name in names if name in self.services]

    def fetch_all(
        self, ctx: FetchContext, services: Optional[List[Service]] = None
    ) -> Tuple[Graph, Optional[FetchErrors]]:
        """Fetch the given (default: all) services in parallel and merge all graphs into one."""
        selected = services if services is not None else list(self.services.values())
        outcomes = run_all("services", [lambda s=s: s.fetch(ctx) for s in selected])  # type: ignore
        graph = Graph()
        errors = FetchErrors()
        for outcome, error in outcomes:
            errors.add(error)
            if outcome is not None:
                service_graph, service_errors = outcome
                graph.add_graph(service_graph)
                errors.add(service_errors)
        return graph, errors.or_none()

    def fetch_by_type(self, ctx: FetchContext, resource_type: str) -> Tuple[Graph, Optional[FetchErrors]]:
        name = SERVICE_PER_RESOURCE_TYPE.get(resource_type)
        service = self.services.get(name) if name else None
        if service is None:
            raise UnknownResourceTypeError(f"no service for resource type '{resource_type}'")
        return service.fetch_by_type(ctx, resource_type)
