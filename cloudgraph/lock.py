from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator


class RWLock:
    """Reader/writer lock with writer preference.

    Any number of readers can hold the lock at the same time, a writer gets exclusive access.
    Once a writer waits, new readers queue up behind it, so a constant stream of readers
    can not starve the writer.

    Based on the "light switch" pattern from A.B. Downey: "The little book of semaphores".
    """

    def __init__(self) -> None:
        self._readers = _LightSwitch()
        self._writers = _LightSwitch()
        self._no_readers = threading.Lock()
        self._no_writers = threading.Lock()
        self._reader_turnstile = threading.Lock()

    def reader_acquire(self) -> None:
        with self._reader_turnstile:
            with self._no_readers:
                self._readers.acquire(self._no_writers)

    def reader_release(self) -> None:
        self._readers.release(self._no_writers)

    def writer_acquire(self) -> None:
        self._writers.acquire(self._no_readers)
        self._no_writers.acquire()

    def writer_release(self) -> None:
        self._no_writers.release()
        self._writers.release(self._no_readers)

    @property
    @contextmanager
    def read_access(self) -> Iterator[RWLock]:
        self.reader_acquire()
        try:
            yield self
        finally:
            self.reader_release()

    @property
    @contextmanager
    def write_access(self) -> Iterator[RWLock]:
        self.writer_acquire()
        try:
            yield self
        finally:
            self.writer_release()


class _LightSwitch:
    # the first one in turns the light on (acquires the lock), the last one out turns it off

    def __init__(self) -> None:
        self._count = 0
        self._mutex = threading.Lock()

    def acquire(self, lock: threading.Lock) -> None:
        with self._mutex:
            self._count += 1
            if self._count == 1:
                lock.acquire()

    def release(self, lock: threading.Lock) -> None:
        with self._mutex:
            self._count -= 1
            if self._count == 0:
                lock.release()
