"""Deciding when continuations fire.

The rules are simple, and they are what make left recursion and ambiguity
work:

1. When a new result is recorded at a location, every continuation already
   waiting at that location gets it, in registration order.
2. When a continuation starts waiting at a location, it gets every result
   that is already there, and then it is in the list for rule 1.

Rather than calling continuations directly (which would make Python's stack
as deep as the longest chain of results) we put the calls on an agenda and
run the agenda until it is empty. An empty agenda is quiescence: nothing is
left that could possibly produce a new result. This means delivery is
deferred, not immediate: a continuation that starts waiting does not see
the existing results before `subscribe` returns, but when the agenda gets
to them. Each (continuation, result) pair is still delivered exactly once.

Agendas live in frames. The run itself is frame 0; every negation opens a
new frame on top of the current one and drains it before answering, which
is how a negated rule is driven to quiescence "in isolation". A result goes
on the agenda of the frame its waiter was registered in, so continuations
of an enclosing frame wait until the negation has been answered.
"""

import collections
import logging
import typing

from .memo import Continuation, Location, LocationEntry, MemoStore, OutputPair


schedule_log = logging.getLogger("fixparse.schedule")


class ResourceExhausted(Exception):
    """A run went over one of its budgets.

    This is distinct from "no derivation": the run was abandoned, and nothing
    it found so far means anything.
    """

    limit: str
    bound: int
    location: Location | None

    def __init__(self, limit: str, bound: int, location: Location | None = None):
        super().__init__(limit, bound, location)
        self.limit = limit
        self.bound = bound
        self.location = location

    def __str__(self) -> str:
        where = f" at {self.location}" if self.location is not None else ""
        return f"Exceeded {self.limit} (limit {self.bound}){where}"


Task = typing.Tuple[typing.Callable[[typing.Any], None], typing.Any]


class Frame:
    """One level of evaluation: an agenda, plus the entries this level is
    responsible for completing."""

    depth: int
    target: Location | None
    agenda: collections.deque[Task]
    touched: list[LocationEntry]

    def __init__(self, depth: int, target: Location | None = None):
        self.depth = depth
        self.target = target
        self.agenda = collections.deque()
        self.touched = []

    def __repr__(self) -> str:
        target = f" target:{self.target}" if self.target is not None else ""
        return f"<Frame {self.depth}{target} pending:{len(self.agenda)}>"


class Scheduler:
    store: MemoStore
    frames: list[Frame]
    max_results_per_location: int | None
    max_steps: int | None
    steps: int
    deliveries: int
    deepest: int
    _targets: set[Location]

    def __init__(
        self,
        store: MemoStore,
        *,
        max_results_per_location: int | None = None,
        max_steps: int | None = None,
    ):
        self.store = store
        self.frames = [Frame(0)]
        self.max_results_per_location = max_results_per_location
        self.max_steps = max_steps
        self.steps = 0
        self.deliveries = 0
        self.deepest = 0
        self._targets = set()

    @property
    def current(self) -> Frame:
        return self.frames[-1]

    @property
    def depth(self) -> int:
        return self.frames[-1].depth

    def push(self, target: Location) -> Frame:
        """Open a new frame that is going to saturate `target`."""
        frame = Frame(len(self.frames), target)
        self.frames.append(frame)
        self._targets.add(target)
        self.deepest = max(self.deepest, frame.depth)
        schedule_log.debug("push frame %d for %s", frame.depth, target)
        return frame

    def pop(self) -> Frame:
        assert len(self.frames) > 1, "Cannot pop the root frame"
        frame = self.frames.pop()
        assert frame.target is not None
        self._targets.discard(frame.target)
        schedule_log.debug("pop frame %d for %s", frame.depth, frame.target)
        return frame

    def is_target(self, location: Location) -> bool:
        """Is some enclosing frame in the middle of saturating this location?"""
        return location in self._targets

    def claim(self, entry: LocationEntry):
        """Make the current frame responsible for running the entry's body."""
        frame = self.frames[-1]
        entry.frame = frame.depth
        frame.touched.append(entry)

    def settle(self, frame: Frame):
        """Mark everything a quiescent frame was responsible for as complete."""
        assert len(frame.agenda) == 0, "Settling a frame that still has work"
        for entry in frame.touched:
            entry.complete = True
        if schedule_log.isEnabledFor(logging.DEBUG):
            schedule_log.debug(
                f"frame {frame.depth} quiescent, {len(frame.touched)} locations complete"
            )

    def schedule(self, fn: typing.Callable[[typing.Any], None], arg: typing.Any):
        self.frames[-1].agenda.append((fn, arg))

    def subscribe(self, location: Location, continuation: Continuation):
        """Register the continuation at the location and arrange for it to
        see everything that is already there."""
        frame = self.frames[-1]
        existing = self.store.register_waiter(location, continuation, frame.depth)
        agenda = frame.agenda
        for pair in existing:
            agenda.append((continuation, pair))
        self.deliveries += len(existing)

    def publish(self, location: Location, pair: OutputPair) -> bool:
        """Record a result at the location and, if it is new, fan it out to
        everybody waiting there. Returns whether it was new."""
        if not self.store.record_result(location, pair):
            return False

        entry = self.store.entries[location]
        if (
            self.max_results_per_location is not None
            and len(entry.results) > self.max_results_per_location
        ):
            raise ResourceExhausted(
                "max_results_per_location", self.max_results_per_location, location
            )

        # A waiter from an enclosing frame hears about it when that frame
        # resumes. Anything the current frame needs was re-run here, with
        # waiters of its own.
        frames = self.frames
        for depth, continuation in entry.waiters:
            frames[depth].agenda.append((continuation, pair))
        self.deliveries += len(entry.waiters)
        return True

    def drain(self):
        """Run the current frame's agenda until it is empty."""
        agenda = self.frames[-1].agenda
        while agenda:
            fn, arg = agenda.popleft()
            self.steps += 1
            if self.max_steps is not None and self.steps > self.max_steps:
                raise ResourceExhausted("max_steps", self.max_steps)
            fn(arg)
