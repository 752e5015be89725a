"""
Streaming enumeration of table entries.

A scan runs on its own worker thread and hands entries to the caller
through a bounded queue. The channel is closed after the last entry or
after a terminal error. The caller may stop iterating at any time;
closing the generator tells the producer to stop at its next send.
"""

import logging
import os
import queue
import threading
from typing import Callable, Iterator, NamedTuple, Optional

from ..errors import StorageError

logger = logging.getLogger(__name__)

_POLL_SECONDS = 0.05


class CasEntry(NamedTuple):
    """One enumerated blob digest, or an error that occurred while scanning."""
    item: str = ""
    error: Optional[Exception] = None


class _Closed:
    pass


_CLOSED = _Closed()


class Channel:
    """
    Unidirectional producer to consumer handoff.

    ``send`` blocks while the queue is full and returns False once the
    consumer went away, so the producer knows to stop.
    """

    def __init__(self, maxsize: int = 128):
        self._queue = queue.Queue(maxsize)
        self._abandoned = threading.Event()

    def send(self, item) -> bool:
        while not self._abandoned.is_set():
            try:
                self._queue.put(item, timeout=_POLL_SECONDS)
                return True
            except queue.Full:
                continue
        return False

    def receive(self):
        return self._queue.get()

    def abandon(self) -> None:
        self._abandoned.set()

    @property
    def abandoned(self) -> bool:
        return self._abandoned.is_set()


Scan = Callable[[Callable[[object], bool]], None]


def stream(scan: Scan, make_error: Callable[[Exception], object],
           maxsize: int = 128, name: str = "enumerate") -> Iterator:
    """
    Run ``scan(send)`` on a worker thread and yield what it sends.

    An exception escaping the scan is converted with ``make_error`` and
    delivered as the last entry instead of being raised in the worker.
    Nothing starts until the first ``next()``, so every call gives an
    independent scan.
    """
    channel = Channel(maxsize)

    def worker():
        try:
            scan(channel.send)
        except Exception as e:
            logger.exception("%s failed", name)
            channel.send(make_error(e))
        finally:
            channel.send(_CLOSED)

    thread = threading.Thread(target=worker, name=name, daemon=True)
    thread.start()
    try:
        while True:
            entry = channel.receive()
            if entry is _CLOSED:
                break
            yield entry
    finally:
        channel.abandon()
        thread.join()


def read_dir_names(dir_path) -> list[str]:
    """
    List a directory.

    Raises StorageError if it cannot be read.
    """
    try:
        return sorted(os.listdir(dir_path))
    except OSError as e:
        raise StorageError("listdir", str(dir_path), e) from e
