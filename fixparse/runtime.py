"""Running parsers.

The `Engine` is what the parsers in `fixparse.parser` talk to: it owns the
memo table and the scheduler for one run over one input. Most people will
just want `run_parser`, which checks the grammar, runs the engine to a fixed
point, and hands back every result the root parser produced at position 0.
"""

import dataclasses
import logging
import typing

from . import parser
from .memo import Continuation, Location, LocationEntry, MemoStore, OutputPair, Position
from .scheduler import ResourceExhausted, Scheduler, schedule_log


negation_log = logging.getLogger("fixparse.negation")


@dataclasses.dataclass(frozen=True)
class Config:
    """Budgets and knobs for a run.

    Every limit defaults to None, which means unbounded. Going over a limit
    raises ResourceExhausted.
    """

    # Bound on the number of distinct (rule, position) locations explored.
    max_locations: int | None = None
    # Bound on the number of results recorded at any one location.
    max_results_per_location: int | None = None
    # Bound on the number of scheduler steps, across all frames.
    max_steps: int | None = None
    # An explicit ordering of groups of rule names, lowest stratum first. If
    # None the strata are inferred from the grammar.
    stratification: typing.Sequence[typing.Sequence[str]] | None = None


@dataclasses.dataclass
class RunStats:
    locations: int = 0
    results: int = 0
    deliveries: int = 0
    steps: int = 0
    negations: int = 0
    deepest_frame: int = 0

    def format(self) -> str:
        return (
            f"{self.locations} locations, {self.results} results, "
            f"{self.deliveries} deliveries, {self.steps} steps, "
            f"{self.negations} negations (deepest frame {self.deepest_frame})"
        )


class Engine:
    """Evaluates parsers over a single input, to a fixed point.

    The engine is single use in the sense that its memo table is specific to
    its input; it is fine to `run` more than one parser on the same engine,
    and later runs will reuse whatever earlier runs found.
    """

    input: typing.Sequence[typing.Any]
    config: Config
    store: MemoStore
    scheduler: Scheduler
    negations: int

    def __init__(self, input: typing.Sequence[typing.Any], config: Config | None = None):
        if config is None:
            config = Config()

        self.input = input
        self.config = config
        self.store = MemoStore()
        self.scheduler = Scheduler(
            self.store,
            max_results_per_location=config.max_results_per_location,
            max_steps=config.max_steps,
        )
        self.negations = 0

    @property
    def stats(self) -> RunStats:
        return RunStats(
            locations=len(self.store),
            results=self.store.result_count(),
            deliveries=self.scheduler.deliveries,
            steps=self.scheduler.steps,
            negations=self.negations,
            deepest_frame=self.scheduler.deepest,
        )

    def call(self, rule: parser.NonTerminal, position: Position, k: Continuation):
        """Invoke a memoized rule: `k` will see every result of the rule at
        this position, whether it is already known or found later."""
        location = Location(rule, position)
        self._enter(location)
        self.scheduler.subscribe(location, k)

    def _enter(self, location: Location) -> LocationEntry:
        """Make sure somebody in the current frame is going to produce the
        results for the location."""
        scheduler = self.scheduler
        entry, created = self.store.get_or_create(location, scheduler.depth)
        if created:
            max_locations = self.config.max_locations
            if max_locations is not None and len(self.store) > max_locations:
                raise ResourceExhausted("max_locations", max_locations, location)

            scheduler.claim(entry)
            scheduler.schedule(self._run_body, entry)

        elif not entry.complete and entry.frame < scheduler.depth:
            # An enclosing frame started this location and has not finished
            # with it. Its remaining work is sitting on an agenda that will not
            # run until we are done, so run the body again here. Everything it
            # produces that was already known is dropped by the memo entry.
            if scheduler.is_target(location) and scheduler.current.target != location:
                raise parser.UnstratifiableNegation(
                    location.rule,
                    position=location.position,
                    reason=f"'{location.rule}' is being saturated for a negation, "
                    "and its own evaluation depends on that negation",
                )

            if schedule_log.isEnabledFor(logging.DEBUG):
                schedule_log.debug(
                    f"frame {scheduler.depth} re-running {location} from frame {entry.frame}"
                )
            scheduler.claim(entry)
            scheduler.schedule(self._run_body, entry)

        return entry

    def _run_body(self, entry: LocationEntry):
        if entry.complete:
            # A negation finished this one off while the task was waiting.
            return

        location = entry.location
        publish = self.scheduler.publish

        def record(pair: OutputPair):
            publish(location, pair)

        location.rule.definition.invoke(self, location.position, record)

    def negate(self, rule: parser.NonTerminal, position: Position) -> bool:
        """Return True if the rule has no derivation at all at the position.

        The answer is only given once the location is complete: if it is not
        already, a new frame is opened and the rule is evaluated there until
        nothing is left to do. Asking about a location that an enclosing
        negation is still working on raises UnstratifiableNegation.
        """
        location = Location(rule, position)
        self.negations += 1

        entry = self.store.get(location)
        if entry is None or not entry.complete:
            if self.scheduler.is_target(location):
                raise parser.UnstratifiableNegation(
                    rule,
                    position=position,
                    reason=f"The negation of '{rule}' depends on itself",
                )
            entry = self._saturate(location)

        answer = len(entry.results) == 0
        if negation_log.isEnabledFor(logging.DEBUG):
            negation_log.debug(
                f"not {location}: {answer} ({len(entry.results)} results, frame {self.scheduler.depth})"
            )
        return answer

    def _saturate(self, location: Location) -> LocationEntry:
        scheduler = self.scheduler
        negation_log.debug("saturating %s", location)

        frame = scheduler.push(location)
        try:
            entry = self._enter(location)
            scheduler.drain()
        finally:
            scheduler.pop()

        scheduler.settle(frame)
        assert entry.complete
        return entry

    def run(self, root: parser.Parser, position: Position = 0) -> set[OutputPair]:
        """Run the root parser at the position until quiescence and return
        everything it produced there."""
        accepted: dict[OutputPair, None] = {}

        def accept(pair: OutputPair):
            accepted[pair] = None

        root.invoke(self, position, accept)
        self.scheduler.drain()
        self.scheduler.settle(self.scheduler.current)

        if schedule_log.isEnabledFor(logging.INFO):
            schedule_log.info(f"{root!r}@{position}: {len(accepted)} results; {self.stats.format()}")
        return set(accepted)


def run_parser(
    root: parser.Parser | parser.Grammar,
    input: typing.Sequence[typing.Any],
    config: Config | None = None,
) -> set[OutputPair]:
    """Run the root parser (or the start of the grammar) at position 0 over
    the input, and return every (end, value) pair it produced.

    An empty set means there is no derivation. Problems with the grammar
    raise GrammarDefinitionError or UnstratifiableNegation, and going over
    a budget in the config raises ResourceExhausted.
    """
    if config is None:
        config = Config()

    if isinstance(root, parser.Grammar):
        grammar = root
    else:
        grammar = parser.Grammar(root)

    strata = grammar.strata(config.stratification)
    if schedule_log.isEnabledFor(logging.DEBUG):
        for number, stratum in enumerate(strata):
            schedule_log.debug(f"stratum {number}: {', '.join(nt.name for nt in stratum)}")

    engine = Engine(input, config)
    return engine.run(grammar.start)


def complete_parses(
    results: typing.Iterable[OutputPair], input: typing.Sequence[typing.Any]
) -> set[OutputPair]:
    """Just the results that consumed the whole input."""
    end = len(input)
    return {pair for pair in results if pair.end == end}
