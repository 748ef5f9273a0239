from __future__ import annotations

import logging
import threading
from queue import Empty, Full, Queue
from typing import Callable, Iterable, Iterator, List, Optional, TypeVar

T = TypeVar("T")
R = TypeVar("R")

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 1024

_POLL_INTERVAL = 0.1
_SENTINEL = object()


def _put(queue: "Queue[object]", item: object, stop: threading.Event) -> bool:
    while not stop.is_set():
        try:
            queue.put(item, timeout=_POLL_INTERVAL)
            return True
        except Full:
            continue
    return False


def run_pool(
    func: Callable[[T], Optional[R]],
    items: Iterable[T],
    workers: int,
    queue_size: int = DEFAULT_QUEUE_SIZE,
    name: str = "pool",
    stop: Optional[threading.Event] = None,
) -> Iterator[R]:
    """Run ``func`` over ``items`` on a fixed set of threads.

    Items flow through a bounded inbox to ``workers`` threads; every non-None
    return value is yielded as soon as it is ready, so output order follows
    completion rather than input order. ``func`` is expected to absorb its own
    per-item failures; anything that escapes is logged and the item dropped.
    Closing the returned iterator early stops the feeder and the workers, as
    does setting ``stop``; pass one event to every stage of a pipeline so that
    abandoning the last stage winds down all of them.
    """
    if workers < 1:
        raise ValueError("workers must be positive")

    inbox: "Queue[object]" = Queue(maxsize=queue_size)
    outbox: "Queue[object]" = Queue(maxsize=queue_size)
    stop = stop if stop is not None else threading.Event()
    feed_errors: List[BaseException] = []

    def _feed() -> None:
        try:
            for item in items:
                if not _put(inbox, item, stop):
                    return
        except BaseException as exc:  # re-raised by the consumer
            feed_errors.append(exc)
        for _ in range(workers):
            if not _put(inbox, _SENTINEL, stop):
                return

    def _work() -> None:
        while not stop.is_set():
            try:
                item = inbox.get(timeout=_POLL_INTERVAL)
            except Empty:
                continue
            if item is _SENTINEL:
                return
            try:
                result = func(item)  # type: ignore[arg-type]
            except Exception:
                logger.exception("%s worker failed on %r", name, item)
                continue
            if result is not None and not _put(outbox, result, stop):
                return

    threads = [threading.Thread(target=_work, name=f"{name}-{i}", daemon=True) for i in range(workers)]

    def _close() -> None:
        for thread in threads:
            thread.join()
        _put(outbox, _SENTINEL, stop)

    threading.Thread(target=_feed, name=f"{name}-feeder", daemon=True).start()
    for thread in threads:
        thread.start()
    threading.Thread(target=_close, name=f"{name}-closer", daemon=True).start()

    def _drain() -> Iterator[R]:
        drained = False
        try:
            while True:
                try:
                    result = outbox.get(timeout=_POLL_INTERVAL)
                except Empty:
                    if stop.is_set():
                        return
                    continue
                if result is _SENTINEL:
                    if feed_errors:
                        raise feed_errors[0]
                    drained = True
                    return
                yield result  # type: ignore[misc]
        finally:
            # a finished stage must not stop the stages sharing its event
            if not drained:
                stop.set()

    return _drain()
