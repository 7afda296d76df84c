import threading
import time
from typing import Any, List

import pytest

from cloudgraph.errors import FetchCancelled, FetchErrors, UnknownResourceTypeError
from cloudgraph.fetch import FetchCache, FetchContext, Fetcher, FetchResult, objects_key
from cloudgraph.resource import Resource
from test import fetch_cache, fetch_ctx  # noqa: F401


def resources_of(resource_type: str, *ids: str) -> FetchResult:
    return FetchResult(resource_type, [Resource.init(resource_type, i) for i in ids], list(ids))


def test_fetch_context() -> None:
    ctx = FetchContext(filters=["cluster=my_cluster", "name=web", "invalid"])
    assert ctx.user_filters() == {"cluster": "my_cluster", "name": "web"}
    assert ctx.is_fetching_by_type() == ("", False)
    by_type = ctx.by_type("instance").with_region("eu-west-1")
    assert by_type.is_fetching_by_type() == ("instance", True)
    assert by_type.region == "eu-west-1"
    assert ctx.region is None
    # derived contexts share the cancellation
    by_type.cancel()
    assert ctx.cancelled
    with pytest.raises(FetchCancelled):
        ctx.check_cancelled()


def test_child_fetch_context() -> None:
    ctx = FetchContext(region="eu-west-1")
    child = ctx.child()
    assert child.region == "eu-west-1"
    child.cancel()
    assert child.cancelled
    assert not ctx.cancelled
    # cancelling the origin reaches every child
    other = ctx.child()
    ctx.cancel()
    assert other.cancelled


def test_fetch_all(fetch_ctx: FetchContext) -> None:
    fetcher = Fetcher(
        {
            "instance": lambda ctx, cache: resources_of("instance", "inst_1", "inst_2"),
            "subnet": lambda ctx, cache: resources_of("subnet", "sub_1"),
        }
    )
    graph, errors = fetcher.fetch(fetch_ctx)
    assert errors is None
    assert [r.id for r in graph.get_all_resources()] == ["inst_1", "inst_2", "sub_1"]
    assert fetcher.get(objects_key("instance")) == ["inst_1", "inst_2"]
    assert fetcher.get(objects_key("subnet")) == ["sub_1"]
    fetcher.reset()
    assert fetcher.get(objects_key("instance")) is None


def test_fetch_with_errors(fetch_ctx: FetchContext) -> None:
    def failing(ctx: FetchContext, cache: FetchCache) -> FetchResult:
        raise ValueError("boom")

    def partial(ctx: FetchContext, cache: FetchCache) -> FetchResult:
        result = resources_of("subnet", "sub_1")
        result.error = KeyError("sub_2")
        return result

    fetcher = Fetcher(
        {
            "instance": failing,
            "subnet": partial,
            "vpc": lambda ctx, cache: resources_of("vpc", "vpc_1"),
        }
    )
    graph, errors = fetcher.fetch(fetch_ctx)
    # the peers of a failing fetch func deliver their resources
    assert [r.id for r in graph.get_all_resources()] == ["sub_1", "vpc_1"]
    assert isinstance(errors, FetchErrors)
    assert len(errors) == 2
    assert errors.has(ValueError)
    assert errors.has(KeyError)
    # a failing func stores empty objects
    assert fetcher.get(objects_key("instance")) == []


def test_fetch_by_type(fetch_ctx: FetchContext) -> None:
    seen: List[FetchContext] = []

    def instances(ctx: FetchContext, cache: FetchCache) -> FetchResult:
        seen.append(ctx)
        return resources_of("instance", "inst_1")

    def subnets(ctx: FetchContext, cache: FetchCache) -> FetchResult:
        raise AssertionError("should not be called")

    fetcher = Fetcher({"instance": instances, "subnet": subnets})
    graph, errors = fetcher.fetch_by_type(fetch_ctx, "instance")
    assert errors is None
    assert [r.id for r in graph.get_all_resources()] == ["inst_1"]
    assert seen[0].is_fetching_by_type() == ("instance", True)

    graph, errors = fetcher.fetch_by_type(fetch_ctx, "vpc")
    assert len(graph.nodes) == 0
    assert errors is not None and errors.has(UnknownResourceTypeError)


def test_fetch_cancelled(fetch_ctx: FetchContext) -> None:
    fetcher = Fetcher({"instance": lambda ctx, cache: resources_of("instance", "inst_1")})
    fetch_ctx.cancel()
    graph, errors = fetcher.fetch(fetch_ctx)
    assert len(graph.nodes) == 0
    assert errors is not None and errors.has(FetchCancelled)


def test_cache_single_flight(fetch_cache: FetchCache, fetch_ctx: FetchContext) -> None:
    calls: List[int] = []
    lock = threading.Lock()

    def producer() -> List[str]:
        with lock:
            calls.append(1)
        time.sleep(0.1)
        return ["cluster_1", "cluster_2"]

    def clusters_of(resource_type: str) -> Any:
        def fetch(ctx: FetchContext, cache: FetchCache) -> FetchResult:
            result = FetchResult(resource_type)
            for cluster in cache.get("getClustersNames", producer):
                result.resources.append(Resource.init(resource_type, f"{resource_type}_{cluster}"))
            return result

        return fetch

    fetcher = Fetcher(
        {t: clusters_of(t) for t in ["containercluster", "containerinstance", "container"]}, fetch_cache
    )
    graph, errors = fetcher.fetch(fetch_ctx)
    assert errors is None
    assert len(graph.get_all_resources()) == 6
    assert len(calls) == 1


def test_cache_caches_errors(fetch_cache: FetchCache) -> None:
    calls: List[int] = []

    def producer() -> str:
        calls.append(1)
        raise ValueError("no clusters")

    for _ in range(3):
        with pytest.raises(ValueError):
            fetch_cache.get("getClustersNames", producer)
    assert len(calls) == 1
    fetch_cache.reset()
    with pytest.raises(ValueError):
        fetch_cache.get("getClustersNames", producer)
    assert len(calls) == 2


def test_cache_store(fetch_cache: FetchCache) -> None:
    assert fetch_cache.get("missing") is None
    fetch_cache.store("key", [1, 2])
    assert fetch_cache.get("key") == [1, 2]
    # a stored value wins over the producer
    assert fetch_cache.get("key", lambda: [3]) == [1, 2]
    assert fetch_cache.keys() == ["missing", "key"]
