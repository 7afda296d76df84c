import json
import sys
from argparse import ArgumentParser, Namespace
from typing import Dict, List, Optional, Tuple

from cloudgraph.errors import CloudGraphError, FetchErrors
from cloudgraph.fetch import FetchContext
from cloudgraph.graph import Graph
from cloudgraph.json import to_json
from cloudgraph.logger import add_args as logging_add_args, log, setup_logger
from cloudgraph_aws.configuration import DEFAULT_REGION, AwsConfig
from cloudgraph_aws.services import ServiceNames, ServiceRegistry


def add_args(arg_parser: ArgumentParser) -> None:
    arg_parser.add_argument("--profile", help="AWS profile to use", dest="profile", default=None)
    arg_parser.add_argument("--region", help="AWS region to fetch", dest="region", default=DEFAULT_REGION)
    arg_parser.add_argument(
        "--service",
        help="Only fetch this service (can be repeated)",
        dest="services",
        action="append",
        choices=ServiceNames,
        default=[],
    )
    arg_parser.add_argument("--type", help="Only fetch this resource type", dest="resource_type", default=None)
    arg_parser.add_argument("--force", help="Ignore disabled syncs", dest="force", action="store_true", default=False)
    arg_parser.add_argument(
        "--filter", help="Fetch filter key=value (can be repeated)", dest="filters", action="append", default=[]
    )
    arg_parser.add_argument(
        "--sync",
        help="Sync toggle, e.g. cloud.infra.instance.sync=false (can be repeated)",
        dest="sync",
        action="append",
        default=[],
    )


def parse_sync(values: List[str]) -> Dict[str, bool]:
    result: Dict[str, bool] = {}
    for value in values:
        key, sep, flag = value.partition("=")
        if not sep or not key:
            raise ValueError(f"Invalid sync toggle: {value}. Expected key=true|false")
        result[key] = flag.strip().lower() in ("true", "yes", "1")
    return result


def fetch(args: Namespace) -> Tuple[Graph, Optional[FetchErrors]]:
    config = AwsConfig(profile=args.profile, region=args.region, sync=parse_sync(args.sync))
    registry = ServiceRegistry(config)
    ctx = FetchContext(region=args.region, force=args.force, filters=args.filters)
    if args.resource_type:
        return registry.fetch_by_type(ctx.by_type(args.resource_type), args.resource_type)
    services = [registry.services[name] for name in args.services] if args.services else None
    return registry.fetch_all(ctx, services)


def main() -> None:
    setup_logger("cloudgraph")
    arg_parser = ArgumentParser(description="Fetch the resources of an AWS account into a graph")
    add_args(arg_parser)
    logging_add_args(arg_parser)
    args = arg_parser.parse_args()

    try:
        graph, errors = fetch(args)
    except CloudGraphError as e:
        log.error(f"Fetch failed: {e}")
        sys.exit(1)

    for resource in sorted(graph.get_all_resources(), key=lambda r: (r.type, r.id)):
        js = {"type": resource.type, "id": resource.id, "properties": to_json(dict(resource.properties), True)}
        print(json.dumps(js))

    for error in errors or []:
        log.warning(f"Fetch error: {error}")
    log.info(f"Fetched {len(graph.get_all_resources())} resources with {len(errors or [])} errors")


if __name__ == "__main__":
    main()
