"""Readers-writer lock guarding the filesystem handle and gadget state.

Usage:
    lock = ReadWriteLock()

    with lock.read_locked():
        # any number of readers at once
        ...

    with lock.write_locked():
        # exclusive: no readers, no other writer
        ...

There is no fairness or priority between waiting readers and writers, no
timeout and no cancellation; a blocked caller waits until the lock is free.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Generator


class ReadWriteLock:
    def __init__(self) -> None:
        self._condition = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @property
    def readers(self) -> int:
        with self._condition:
            return self._readers

    @property
    def write_held(self) -> bool:
        with self._condition:
            return self._writer

    @contextmanager
    def read_locked(self) -> Generator[None, None, None]:
        with self._condition:
            while self._writer:
                self._condition.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._condition:
                self._readers -= 1
                if self._readers == 0:
                    self._condition.notify_all()

    @contextmanager
    def write_locked(self) -> Generator[None, None, None]:
        with self._condition:
            while self._writer or self._readers:
                self._condition.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._condition:
                self._writer = False
                self._condition.notify_all()
