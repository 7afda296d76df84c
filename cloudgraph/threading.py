from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from threading import Event, Lock
from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple, TypeVar

from cloudgraph.errors import FetchCancelled
from cloudgraph.logger import log

T = TypeVar("T")
R = TypeVar("R")


class CancelOnFirstError(Exception):
    pass


class ChildEvent(Event):
    """
    An event that also counts as set, once its parent is set.
    Setting the child leaves the parent untouched.
    """

    def __init__(self, parent: Event) -> None:
        super().__init__()
        self.parent = parent

    def is_set(self) -> bool:
        return super().is_set() or self.parent.is_set()


class GatherFutures:
    def __init__(self, futures: List[Future[Any]]) -> None:
        self._futures = futures
        self._lock = Lock()
        self._to_wait = len(futures)
        self._when_done: Future[None] = Future()
        if not futures:
            self._when_done.set_result(None)
        for future in futures:
            future.add_done_callback(self._on_future_done)

    def _on_future_done(self, _: Future[Any]) -> None:
        with self._lock:
            self._to_wait -= 1
            if self._to_wait == 0:
                self._when_done.set_result(None)

    @staticmethod
    def all(futures: List[Future[Any]]) -> Future[None]:
        return GatherFutures(futures)._when_done


def parallel_map(
    name: str,
    fn: Callable[[T], R],
    items: Iterable[T],
    *,
    max_workers: int = 16,
    cancel_event: Optional[Event] = None,
) -> List[R]:
    """
    Call fn for every item on a dedicated executor and return the results in input order.
    The first exception cancels all peers that did not start yet, sets the given cancel_event
    and is raised to the caller. Running peers observe the event: pass the event of a child context,
    so that paging with this context stops at the next page without cancelling the parent.
    If the cancel_event is set from outside, no further work is started and FetchCancelled is raised.
    """
    elements = list(items)
    if not elements:
        return []

    failed = Event()
    first_error: List[BaseException] = []
    error_lock = Lock()

    def remember(ex: BaseException) -> None:
        with error_lock:
            if not first_error:
                first_error.append(ex)
        failed.set()
        if cancel_event is not None:
            cancel_event.set()

    def guarded(item: T) -> R:
        if failed.is_set():
            raise CancelOnFirstError(f"{name}: exception happened in another thread. Do not start work.")
        try:
            if cancel_event is not None and cancel_event.is_set():
                raise FetchCancelled()
            return fn(item)
        except Exception as ex:
            remember(ex)
            raise

    with ThreadPoolExecutor(max_workers=min(max_workers, len(elements)), thread_name_prefix=name) as executor:
        futures = [executor.submit(guarded, element) for element in elements]

        def cancel_peers(done: Future[R]) -> None:
            if not done.cancelled() and done.exception() is not None:
                for future in futures:
                    future.cancel()

        for future in futures:
            future.add_done_callback(cancel_peers)
        GatherFutures.all(futures).result()

    if first_error:
        log.debug(f"{name}: fan-out stopped on first error: {first_error[0]}")
        raise first_error[0]
    return [future.result() for future in futures]


def run_all(
    name: str, fns: Sequence[Callable[[], T]], *, max_workers: Optional[int] = None
) -> List[Tuple[Optional[T], Optional[Exception]]]:
    """
    Run all functions in parallel. In contrast to parallel_map an error does not stop the peers:
    every function runs to completion and its (result, error) pair is returned in input order.
    """
    if not fns:
        return []

    def capture(fn: Callable[[], T]) -> Tuple[Optional[T], Optional[Exception]]:
        try:
            return fn(), None
        except Exception as ex:
            return None, ex

    workers = max_workers or len(fns)
    with ThreadPoolExecutor(max_workers=min(workers, len(fns)), thread_name_prefix=name) as executor:
        futures = [executor.submit(capture, fn) for fn in fns]
        GatherFutures.all(futures).result()
    return [future.result() for future in futures]
