import json
import os
import re
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from boto3 import Session
from botocore.exceptions import ClientError

from cloudgraph.errors import FetchErrors
from cloudgraph.fetch import FetchContext
from cloudgraph.graph import Graph
from cloudgraph.types import Json
from cloudgraph_aws.configuration import AwsConfig
from cloudgraph_aws.services import Service, new_service


class BotoFileClient:
    def __init__(self, service: str) -> None:
        self.service = service

    @staticmethod
    def can_paginate(_: str) -> bool:
        return False

    @staticmethod
    def path_from(service_name: str, action_name: str, **kwargs: Any) -> str:
        def arg_string(v: Any) -> str:
            if isinstance(v, list):
                return "_".join(arg_string(x) for x in v)
            elif isinstance(v, dict):
                return "_".join(arg_string(v) for k, v in v.items())
            else:
                return re.sub(r"[^a-zA-Z0-9]", "_", str(v))

        vals = "__" + ("_".join(arg_string(v) for _, v in sorted(kwargs.items()))) if kwargs else ""
        # cut the action string if it becomes too long
        vals = vals[0:220] if len(vals) > 220 else vals
        action = action_name.replace("_", "-")
        service = service_name.replace("-", "_")
        path = os.path.dirname(__file__) + f"/files/{service}/{action}{vals}.json"
        return os.path.abspath(path)

    def __getattr__(self, action_name: str) -> Callable[..., Any]:
        def call_action(*args: Any, **kwargs: Any) -> Any:
            assert not args, "No arguments allowed!"
            path = self.path_from(self.service, action_name, **kwargs)
            if os.path.exists(path):
                with open(path) as f:
                    return json.load(f)
            else:
                return {}

        return call_action


# use this factory in tests, to rely on API responses from file system
class BotoFileBasedSession(Session):  # type: ignore
    def client(self, service_name: str, **kwargs: Any) -> Any:
        return BotoFileClient(service_name)


class BotoErrorClient:
    def __init__(self, exception: Exception):
        self.exception = exception

    def __getattr__(self, action_name: str) -> Callable[..., Any]:
        raise self.exception


# use this factory in tests, to check how the fetch behaves in terms of errors
class BotoErrorSession(Session):  # type: ignore
    def __init__(self, exception: Exception = Exception("Test exception"), **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.exception = exception

    def client(self, service_name: str, **kwargs: Any) -> Any:
        return BotoErrorClient(self.exception)

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        return self


Response = Union[Json, Exception, Callable[..., Json]]


class BotoDictClient:
    def __init__(self, session: "BotoDictSession", service: str) -> None:
        self.session = session
        self.service = service

    def __getattr__(self, action_name: str) -> Callable[..., Any]:
        action = action_name.replace("_", "-")

        def call_action(**kwargs: Any) -> Any:
            self.session.record(self.service, action, kwargs)
            response = self.session.responses.get(f"{self.service}.{action}", {})
            if isinstance(response, Exception):
                raise response
            elif callable(response):
                return response(**kwargs)
            else:
                return response

        return call_action


# use this factory in tests, to define API responses in code: keys are "<service>.<action>"
class BotoDictSession(Session):  # type: ignore
    def __init__(self, responses: Optional[Dict[str, Response]] = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.responses: Dict[str, Response] = responses or {}
        self.calls: List[Tuple[str, str, Json]] = []
        self.lock = threading.Lock()

    def record(self, service: str, action: str, kwargs: Json) -> None:
        with self.lock:
            self.calls.append((service, action, kwargs))

    def calls_of(self, service: str, action: str) -> List[Json]:
        with self.lock:
            return [kw for s, a, kw in self.calls if s == service and a == action]

    def client(self, service_name: str, **kwargs: Any) -> Any:
        return BotoDictClient(self, service_name)

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        return self


def client_error(code: str, message: str = "Err!") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message}}, "test")


def config_with(session: Any, sync: Optional[Dict[str, bool]] = None) -> AwsConfig:
    config = AwsConfig(region="eu-west-1", sync=dict(sync or {}))
    config.sessions().session_class_factory = session
    return config


def fetch_service(
    name: str,
    responses: Dict[str, Response],
    region: str = "eu-west-1",
    sync: Optional[Dict[str, bool]] = None,
    ctx: Optional[FetchContext] = None,
) -> Tuple[Graph, Optional[FetchErrors], BotoDictSession]:
    session = BotoDictSession(responses)
    service: Service = new_service(name, config_with(session, sync), region)
    graph, errors = service.fetch(ctx or FetchContext())
    return graph, errors, session


def edges_of(graph: Graph) -> List[Tuple[str, str, str]]:
    """All edges as (source id, edge type, target id)."""
    return sorted((key.src[1], key.edge_type.value, key.dst[1]) for _, _, key in graph.edges(keys=True))
