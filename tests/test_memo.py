from hypothesis import given
from hypothesis.strategies import integers, lists, tuples

from fixparse.memo import Location, MemoStore, OutputPair


def test_get_or_create():
    store = MemoStore()
    location = Location("R", 3)

    entry, created = store.get_or_create(location)
    assert created
    assert entry.location == location
    assert len(store) == 1

    again, created = store.get_or_create(location)
    assert not created
    assert again is entry
    assert len(store) == 1


def test_distinct_positions_are_distinct_locations():
    store = MemoStore()
    first, _ = store.get_or_create(Location("R", 0))
    second, _ = store.get_or_create(Location("R", 1))
    other, _ = store.get_or_create(Location("S", 0))

    assert len({id(first), id(second), id(other)}) == 3
    assert len(store) == 3


def test_record_twice():
    store = MemoStore()
    location = Location("R", 0)
    store.get_or_create(location)

    assert store.record_result(location, OutputPair(1, "a"))
    assert not store.record_result(location, OutputPair(1, "a"))
    assert store.results(location) == [OutputPair(1, "a")]


@given(lists(tuples(integers(0, 5), integers(0, 3))))
def test_recording_is_idempotent(pairs):
    store = MemoStore()
    location = Location("R", 0)
    store.get_or_create(location)

    seen = set()
    for end, value in pairs:
        pair = OutputPair(end, value)
        assert store.record_result(location, pair) == (pair not in seen)
        seen.add(pair)

    assert len(store.entries[location].results) == len(seen)
    assert store.result_count() == len(seen)


def test_register_returns_snapshot_in_discovery_order():
    store = MemoStore()
    location = Location("R", 0)
    store.get_or_create(location)
    store.record_result(location, OutputPair(2, "b"))
    store.record_result(location, OutputPair(1, "a"))

    snapshot = store.register_waiter(location, lambda pair: None)
    assert snapshot == [OutputPair(2, "b"), OutputPair(1, "a")]

    # The snapshot is a copy; later results are not in it.
    store.record_result(location, OutputPair(3, "c"))
    assert snapshot == [OutputPair(2, "b"), OutputPair(1, "a")]
    assert len(store.entries[location].waiters) == 1


def test_results_of_unknown_location():
    assert MemoStore().results(Location("R", 0)) == []
