import math
import threading

import pytest

from folio.blog import CounterStore, _safe_count, app, counter_store, init_counters


@pytest.mark.parametrize("value,expected", [
    (None,        0),
    (0,           0),
    (7,           7),
    (3.0,         3),
    (-1,          0),
    (math.inf,    0),
    (math.nan,    0),
    (True,        0),   # bools are not counts
    ("5",         0),
])
def test_safe_count(value, expected):
    assert _safe_count(value) == expected


def test_unseen_slug_reads_zero_without_entry():
    store = CounterStore("likes")
    assert store.get("nope") == 0
    assert len(store) == 0          # reads never create entries


def test_increment_sequence():
    store = CounterStore("views")
    assert [store.increment("s") for _ in range(3)] == [1, 2, 3]
    assert store.get("s") == 3


def test_slugs_are_exact_keys():
    store = CounterStore("views")
    store.increment("post")
    assert store.get(" post") == 0
    assert store.get("Post") == 0


def test_corrupt_value_is_revalidated():
    store = CounterStore("likes")
    store._counts["bad"] = -4
    assert store.get("bad") == 0
    assert store.increment("bad") == 1


def test_reset_and_snapshot():
    store = CounterStore("likes")
    store.increment("a")
    store.increment("a")
    store.increment("b")
    snap = store.snapshot()
    assert snap == {"a": 2, "b": 1}

    snap["a"] = 99                  # copy, not a view
    assert store.get("a") == 2

    store.reset()
    assert store.snapshot() == {}
    assert store.get("a") == 0


def test_threads_do_not_lose_increments():
    store = CounterStore("likes")
    per_thread, threads = 500, 8
    barrier = threading.Barrier(threads)

    def worker():
        barrier.wait()
        for _ in range(per_thread):
            store.increment("hot")

    pool = [threading.Thread(target=worker) for _ in range(threads)]
    for t in pool:
        t.start()
    for t in pool:
        t.join()

    assert store.get("hot") == per_thread * threads


def test_app_owns_one_store_per_service():
    stores = app.extensions["counters"]
    assert set(stores) == {"likes", "views"}
    assert stores["likes"] is not stores["views"]
    with app.app_context():
        assert counter_store("likes") is stores["likes"]


def test_init_counters_builds_fresh_stores():
    from flask import Flask

    other = Flask("other")
    stores = init_counters(other)
    assert other.extensions["counters"] is stores
    assert stores["views"] is not app.extensions["counters"]["views"]
    assert repr(stores["views"]) == "<CounterStore 'views' slugs=0>"
