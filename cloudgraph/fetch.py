from __future__ import annotations

import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from attrs import define, evolve, field

from cloudgraph.errors import FetchCancelled, FetchErrors, UnknownResourceTypeError
from cloudgraph.graph import Graph
from cloudgraph.logger import log
from cloudgraph.resource import Resource
from cloudgraph.threading import ChildEvent, run_all


@define(frozen=True)
class FetchContext:
    """
    Values that travel with a fetch call.
    The context is immutable: with_region() and by_type() return a new context,
    which shares the cancellation event with its origin.
    A child() context has its own event: cancelling the child leaves the origin running,
    cancelling the origin cancels the child as well.
    """

    region: Optional[str] = None
    force: bool = False
    filters: List[str] = field(factory=list)
    fetch_mode: Optional[str] = None
    cancel_event: threading.Event = field(factory=threading.Event)

    def with_region(self, region: str) -> FetchContext:
        return evolve(self, region=region)

    def by_type(self, resource_type: str) -> FetchContext:
        return evolve(self, fetch_mode=resource_type)

    def child(self) -> FetchContext:
        return evolve(self, cancel_event=ChildEvent(self.cancel_event))

    def is_fetching_by_type(self) -> Tuple[str, bool]:
        mode = self.fetch_mode or ""
        return mode, len(mode) > 0

    def user_filters(self) -> Dict[str, str]:
        result: Dict[str, str] = {}
        for flt in self.filters:
            key, sep, value = flt.partition("=")
            if sep and key:
                result[key] = value
        return result

    def cancel(self) -> None:
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise FetchCancelled()


@define
class FetchResult:
    resource_type: str
    resources: List[Resource] = field(factory=list)
    objects: List[Any] = field(factory=list)
    error: Optional[Exception] = None


FetchFunc = Callable[[FetchContext, "FetchCache"], FetchResult]


class _KeyEntry:
    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.done = False
        self.value: Any = None
        self.error: Optional[Exception] = None


class FetchCache:
    """
    Per fetch cycle memoization.
    get(key, producer) runs the producer at most once per key: concurrent callers of the
    same key block until the first producer finished and all observe its value or its error.
    A producer must not ask the cache for its own key.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: Dict[str, _KeyEntry] = {}

    def _entry(self, key: str) -> _KeyEntry:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                entry = _KeyEntry()
                self._entries[key] = entry
            return entry

    def get(self, key: str, producer: Optional[Callable[[], Any]] = None) -> Any:
        entry = self._entry(key)
        if producer is not None and not entry.done:
            with entry.lock:
                if not entry.done:
                    try:
                        entry.value = producer()
                    except Exception as ex:
                        entry.error = ex
                    entry.done = True
        if entry.error is not None:
            raise entry.error
        return entry.value

    def store(self, key: str, value: Any) -> None:
        entry = _KeyEntry()
        entry.value = value
        entry.done = True
        with self._lock:
            self._entries[key] = entry

    def reset(self) -> None:
        with self._lock:
            self._entries = {}

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries)


def objects_key(resource_type: str) -> str:
    return f"{resource_type}_objects"


class Fetcher:
    """
    Runs the registered fetch functions and merges their resources into one graph.
    The raw provider objects of every fetch function stay available in the cache
    under "<type>_objects" until reset() is called.
    """

    def __init__(self, funcs: Dict[str, FetchFunc], cache: Optional[FetchCache] = None) -> None:
        self.funcs = dict(funcs)
        self.cache = cache or FetchCache()

    @property
    def resource_types(self) -> List[str]:
        return list(self.funcs)

    def fetch(self, ctx: FetchContext) -> Tuple[Graph, Optional[FetchErrors]]:
        types = self.resource_types
        outcomes = run_all(
            "fetch", [lambda t=t: self._fetch_resource(ctx, t) for t in types]  # type: ignore
        )
        graph = Graph()
        errors = FetchErrors()
        for resource_type, (result, ex) in zip(types, outcomes):
            errors.add(ex)
            if result is not None:
                errors.add(result.error)
                graph.add_resource(*result.resources)
        log.debug(f"Fetched {len(graph.nodes)} resources of {len(types)} types with {len(errors)} errors")
        return graph, errors.or_none()

    def fetch_by_type(self, ctx: FetchContext, resource_type: str) -> Tuple[Graph, Optional[FetchErrors]]:
        graph = Graph()
        result = self._fetch_resource(ctx.by_type(resource_type), resource_type)
        graph.add_resource(*result.resources)
        return graph, FetchErrors([result.error]).or_none() if result.error else None

    def _fetch_resource(self, ctx: FetchContext, resource_type: str) -> FetchResult:
        fn = self.funcs.get(resource_type)
        if fn is None:
            result = FetchResult(
                resource_type,
                error=UnknownResourceTypeError(f"no fetch func defined for resource type '{resource_type}'"),
            )
        else:
            try:
                ctx.check_cancelled()
                result = fn(ctx, self.cache)
            except Exception as ex:
                log.debug(f"Fetch of {resource_type} failed: {ex}")
                result = FetchResult(resource_type, error=ex)
        self.cache.store(objects_key(resource_type), result.objects)
        return result

    def get(self, key: str, producer: Optional[Callable[[], Any]] = None) -> Any:
        return self.cache.get(key, producer)

    def store(self, key: str, value: Any) -> None:
        self.cache.store(key, value)

    def reset(self) -> None:
        self.cache.reset()
