"""
Stream-to-batch adapter used by every persistence path.

Items are grouped into lists of at most ``max_size``. A partial batch is
flushed once ``max_latency`` seconds have passed since its first item arrived,
and whatever is left is flushed when the source is exhausted.
"""

from __future__ import annotations

import threading
import time
from queue import Empty, Full, Queue
from typing import Iterable, Iterator, List, Optional, TypeVar

T = TypeVar("T")

DEFAULT_BATCH_SIZE = 50
DEFAULT_BATCH_LATENCY = 2.0

_POLL_INTERVAL = 0.1


class _End:
    __slots__ = ("error",)

    def __init__(self, error: Optional[BaseException] = None) -> None:
        self.error = error


def _feed(source: Iterable[T], buffer: "Queue[object]", stop: threading.Event) -> None:
    end: _End = _End()
    try:
        for item in source:
            while not stop.is_set():
                try:
                    buffer.put(item, timeout=_POLL_INTERVAL)
                    break
                except Full:
                    continue
            if stop.is_set():
                return
    except BaseException as exc:  # re-raised on the consumer side
        end = _End(exc)
    while not stop.is_set():
        try:
            buffer.put(end, timeout=_POLL_INTERVAL)
            return
        except Full:
            continue


def batch(
    source: Iterable[T],
    max_size: int = DEFAULT_BATCH_SIZE,
    max_latency: float = DEFAULT_BATCH_LATENCY,
    stop: Optional[threading.Event] = None,
) -> Iterator[List[T]]:
    """Group ``source`` into ordered batches bounded by size and latency.

    ``stop`` is set when the returned generator finishes or is closed; share it
    with the pools feeding ``source`` so they stop with the consumer.
    """
    if max_size < 1:
        raise ValueError("max_size must be positive")
    if max_latency <= 0:
        raise ValueError("max_latency must be positive")

    buffer: "Queue[object]" = Queue(maxsize=max_size * 2)
    stop = stop if stop is not None else threading.Event()
    feeder = threading.Thread(target=_feed, args=(source, buffer, stop), daemon=True)
    feeder.start()

    pending: List[T] = []
    deadline = 0.0
    try:
        while True:
            if pending:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    yield pending
                    pending = []
                    continue
                try:
                    item = buffer.get(timeout=remaining)
                except Empty:
                    yield pending
                    pending = []
                    continue
            else:
                item = buffer.get()

            if isinstance(item, _End):
                if pending:
                    yield pending
                    pending = []
                if item.error is not None:
                    raise item.error
                return

            if not pending:
                deadline = time.monotonic() + max_latency
            pending.append(item)  # type: ignore[arg-type]
            if len(pending) >= max_size:
                yield pending
                pending = []
    finally:
        stop.set()
