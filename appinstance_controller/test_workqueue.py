#!/usr/bin/env python3
"""Tests for the keyed work queue"""

import sys
import threading
import time

import pytest

from appinstance_controller.workqueue import WorkQueue


def test_duplicate_adds_are_collapsed():
    queue = WorkQueue()
    queue.add("default/a")
    queue.add("default/a")
    queue.add("default/b")

    assert len(queue) == 2
    assert queue.get(timeout=1) == "default/a"
    assert queue.get(timeout=1) == "default/b"


def test_key_is_never_handed_out_twice_concurrently():
    print("🧪 Testing per-key exclusivity...")

    queue = WorkQueue()
    queue.add("default/a")
    key = queue.get(timeout=1)

    queue.add("default/a")
    assert queue.get(timeout=0.05) is None, "Key re-added while processing must wait"

    queue.done(key)
    assert queue.get(timeout=1) == "default/a", "Dirty key is requeued on done()"

    print("✅ Per-key exclusivity tests passed!")


def test_different_keys_are_processed_in_parallel():
    queue = WorkQueue()
    queue.add("default/a")
    queue.add("default/b")

    first = queue.get(timeout=1)
    second = queue.get(timeout=1)

    assert {first, second} == {"default/a", "default/b"}, "Second key is available while first is processing"


def test_backoff_grows_exponentially_and_is_capped():
    queue = WorkQueue(backoff_base=2.0, max_backoff=5.0)

    assert queue.backoff_for("k") == 0.0
    delays = []
    for _ in range(5):
        queue._failures["k"] = queue._failures.get("k", 0) + 1
        delays.append(queue.backoff_for("k"))

    assert delays == [1.0, 2.0, 4.0, 5.0, 5.0]

    queue.forget("k")
    assert queue.num_requeues("k") == 0


def test_add_rate_limited_requeues_later():
    queue = WorkQueue(backoff_base=2.0, max_backoff=0.05)

    queue.add_rate_limited("default/a")

    assert queue.num_requeues("default/a") == 1
    assert queue.get(timeout=2) == "default/a"


def test_shutdown_wakes_blocked_workers():
    queue = WorkQueue()
    results = []

    worker = threading.Thread(target=lambda: results.append(queue.get()))
    worker.start()
    time.sleep(0.05)
    queue.shutdown()
    worker.join(timeout=2)

    assert not worker.is_alive()
    assert results == [None]

    queue.add("default/a")
    assert len(queue) == 0, "Adds after shutdown are ignored"


def main():
    """Run all tests"""
    return pytest.main([__file__, "-v"])


if __name__ == "__main__":
    sys.exit(main())
