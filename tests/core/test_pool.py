import threading
import time

import pytest

from sshauditor.core.batching import batch
from sshauditor.core.pool import run_pool


def test_pool_returns_every_non_none_result():
    results = run_pool(lambda i: i * 2 if i % 3 else None, range(30), workers=4)

    assert sorted(results) == [i * 2 for i in range(30) if i % 3]


def test_worker_exceptions_drop_only_that_item():
    def work(i):
        if i == 5:
            raise RuntimeError("bad item")
        return i

    assert sorted(run_pool(work, range(10), workers=2)) == [0, 1, 2, 3, 4, 6, 7, 8, 9]


def test_feed_errors_reach_the_consumer():
    def items():
        yield 1
        raise ValueError("broken target list")

    with pytest.raises(ValueError, match="broken target list"):
        list(run_pool(lambda i: i, items(), workers=2))


def test_closing_batches_stops_the_upstream_pool():
    processed = []
    stop = threading.Event()

    def work(i):
        processed.append(i)
        time.sleep(0.01)
        return i if i == 0 else None

    batches = batch(run_pool(work, range(400), workers=2, stop=stop), max_size=50, max_latency=0.2, stop=stop)
    assert next(batches) == [0]
    batches.close()

    at_close = len(processed)
    time.sleep(0.5)

    assert stop.is_set()
    assert len(processed) <= at_close + 2
    assert len(processed) < 400


def test_chained_pools_finish_without_stopping_each_other():
    stop = threading.Event()
    first = run_pool(lambda i: i + 1, range(50), workers=3, stop=stop)
    second = run_pool(lambda i: i * 10, first, workers=3, stop=stop)

    assert sorted(second) == [i * 10 for i in range(1, 51)]
