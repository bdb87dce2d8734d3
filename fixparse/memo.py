"""The memo table at the heart of the fixpoint.

Every memoized parser invocation is identified by a `Location`: the rule
that was invoked and the position it was invoked at. Each location owns a
`LocationEntry`, which accumulates the results found so far and the
continuations waiting to hear about them.

Nothing in here ever removes anything. Entries are only ever added to the
store, and results are only ever added to entries, which is what makes the
whole thing converge.
"""

import logging
import typing


Position = int

Continuation = typing.Callable[["OutputPair"], None]


class OutputPair(typing.NamedTuple):
    """The result of a completed parse: where it ended and what it produced.

    Values must be hashable, since results are deduplicated by value.
    """

    end: Position
    value: typing.Any

    def __repr__(self) -> str:
        return f"({self.end}, {self.value!r})"


class Location(typing.NamedTuple):
    """A rule invocation at a specific position; the memo table key."""

    rule: typing.Hashable
    position: Position

    def __str__(self) -> str:
        return f"{self.rule}@{self.position}"


memo_log = logging.getLogger("fixparse.memo")


class LocationEntry:
    """The accumulated state for a single Location.

    `results` is an insertion-ordered set (a dict with dummy values) so that
    deliveries happen in the order results were discovered. `waiters` is in
    registration order, and remembers the depth of the frame each waiter was
    registered in.

    `frame` and `complete` are used by the scheduler and the negation
    evaluator: `frame` is the depth of the evaluation frame that is (or was)
    responsible for running this location's body, and `complete` is set once
    that frame went quiet, after which no new results can ever show up here.
    """

    location: Location
    results: dict[OutputPair, None]
    waiters: list[typing.Tuple[int, Continuation]]
    frame: int
    complete: bool

    def __init__(self, location: Location, frame: int = 0):
        self.location = location
        self.results = {}
        self.waiters = []
        self.frame = frame
        self.complete = False

    def add_result(self, pair: OutputPair) -> bool:
        if pair in self.results:
            return False
        self.results[pair] = None
        return True

    def add_waiter(self, continuation: Continuation, frame: int = 0) -> list[OutputPair]:
        # NOTE: Append and snapshot together; the caller delivers the snapshot
        #       and we deliver everything after it.
        self.waiters.append((frame, continuation))
        return list(self.results)

    def __repr__(self) -> str:
        state = "complete" if self.complete else f"open@{self.frame}"
        return (
            f"<LocationEntry {self.location} {state} "
            f"results:{len(self.results)} waiters:{len(self.waiters)}>"
        )


class MemoStore:
    """The mapping from Location to LocationEntry for one run."""

    entries: dict[Location, LocationEntry]

    def __init__(self):
        self.entries = {}

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, location: Location) -> bool:
        return location in self.entries

    def get(self, location: Location) -> LocationEntry | None:
        return self.entries.get(location)

    def get_or_create(
        self, location: Location, frame: int = 0
    ) -> typing.Tuple[LocationEntry, bool]:
        """Return the entry for the location, creating it if necessary.

        The second element of the result is True if this call created the
        entry, which tells the caller that it is the first arrival and so is
        the one responsible for running the rule's body.
        """
        entry = self.entries.get(location)
        if entry is not None:
            return entry, False

        entry = LocationEntry(location, frame)
        self.entries[location] = entry
        memo_log.debug("created %s (frame %d)", location, frame)
        return entry, True

    def record_result(self, location: Location, pair: OutputPair) -> bool:
        """Add a result to the location, returning True if it was new."""
        is_new = self.entries[location].add_result(pair)
        if is_new and memo_log.isEnabledFor(logging.DEBUG):
            memo_log.debug(f"{location} += {pair!r}")
        return is_new

    def register_waiter(
        self, location: Location, continuation: Continuation, frame: int = 0
    ) -> list[OutputPair]:
        """Register a continuation at the location and return every result
        that is already there. The caller is responsible for delivering that
        snapshot; every result recorded afterwards will find the continuation
        in the waiter list.

        `frame` is the depth of the evaluation frame the continuation belongs
        to; results recorded later are delivered on that frame's agenda.
        """
        return self.entries[location].add_waiter(continuation, frame)

    def results(self, location: Location) -> list[OutputPair]:
        entry = self.entries.get(location)
        if entry is None:
            return []
        return list(entry.results)

    def result_count(self) -> int:
        return sum(len(entry.results) for entry in self.entries.values())
