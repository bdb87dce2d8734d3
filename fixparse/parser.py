"""Parser combinators for a fixpoint parsing engine.

The parsers in here are small objects that know how to do one thing: given
an engine, a position, and a continuation, call the continuation once for
every way they can match at that position. They never return their results;
they hand them forward. That is what lets a parser call itself at the same
position without looping forever (the engine notices, and the second call
just waits for the results of the first) and what lets an ambiguous parser
report *all* of its matches instead of the first one.

## Making Grammars

Define leaf parsers (`literal`, `char_in`, `any_char`, ...) and rules (as
functions decorated with `@rule`), and combine them with `+` (sequence) and
`|` (alternation):

    @rule
    def expression():
        return capture(expression + "+" + term) | term

    @rule
    def term():
        return capture("(" + expression + ")") | digit

    digit = char_range("0", "9")

Rules are evaluated lazily, so they can refer to themselves, to each other,
and to rules that are defined further down the file. Left recursion, like in
`expression` above, is fine.

## Values

Every match produces a value. Leaf parsers produce the text they matched,
sequences produce a tuple of the values of their parts, `unit` produces
whatever you gave it, and `map` lets you turn a value into whatever you
like. Values are deduplicated (two matches that end in the same place with
equal values are the same match) so they have to be hashable: use tuples,
not lists.

## Negation

`not_(x)` matches, consuming nothing, exactly when `x` has no match at all
at the current position. That question only has an answer once everything
`x` depends on has stopped producing new results, so a grammar where a rule
depends on its own negation (directly, or through other rules) is rejected
with `UnstratifiableNegation`: see `Grammar.strata`.
"""

import abc
import collections
import inspect
import typing

from .memo import Continuation, OutputPair, Position

if typing.TYPE_CHECKING:
    from .runtime import Engine


###############################################################################
# Errors
###############################################################################
class GrammarDefinitionError(ValueError):
    """Something is wrong with how the grammar was put together: a name is
    used twice, a reference points at nothing, that kind of thing."""

    pass


class UnstratifiableNegation(Exception):
    """A negation that cannot be answered, because the thing being negated
    might still produce results that depend on the answer.
    """

    negated: "NonTerminal"
    rule: "NonTerminal | None"
    position: Position | None
    reason: str | None

    def __init__(
        self,
        negated: "NonTerminal",
        rule: "NonTerminal | None" = None,
        position: Position | None = None,
        reason: str | None = None,
    ):
        super().__init__(negated, rule, position, reason)
        self.negated = negated
        self.rule = rule
        self.position = position
        self.reason = reason

    def __str__(self) -> str:
        if self.reason is not None:
            message = self.reason
        elif self.rule is not None:
            message = f"'{self.rule}' negates '{self.negated}', which cannot be stratified"
        else:
            message = f"The negation of '{self.negated}' cannot be stratified"
        if self.position is not None:
            message += f" (at position {self.position})"
        return message


def _definition_location() -> str:
    """The file and line of whoever is defining a rule, outside of this
    module."""
    for frame in inspect.stack(0)[1:]:
        if frame.filename != __file__:
            return f"{frame.filename}:{frame.lineno}"
    return "<unknown>"


###############################################################################
# The parsers
###############################################################################
class Parser:
    """Something that, run at a position, calls a continuation with every
    (end, value) pair it can produce there.
    """

    def __or__(self, other) -> "Parser":
        if not isinstance(other, (Parser, str)):
            return NotImplemented
        return Alternative(self, _coerce(other))

    def __ror__(self, other) -> "Parser":
        if not isinstance(other, (Parser, str)):
            return NotImplemented
        return Alternative(_coerce(other), self)

    def __add__(self, other) -> "Parser":
        if not isinstance(other, (Parser, str)):
            return NotImplemented
        return Sequence(self, _coerce(other))

    def __radd__(self, other) -> "Parser":
        if not isinstance(other, (Parser, str)):
            return NotImplemented
        return Sequence(_coerce(other), self)

    def map(self, fn: typing.Callable[[typing.Any], typing.Any]) -> "Parser":
        """A parser that matches like this one but transforms the value."""
        return Action(self, fn)

    @abc.abstractmethod
    def invoke(self, engine: "Engine", position: Position, k: Continuation):
        """Call `k` with every OutputPair this parser produces at `position`.

        Not necessarily right now: memoized parsers may deliver results much
        later, as the engine discovers them.
        """
        raise NotImplementedError()

    def children(self) -> typing.Tuple["Parser", ...]:
        """The parsers this one is built from, for grammar analysis."""
        return ()


def _coerce(parser: "Parser | str") -> "Parser":
    if isinstance(parser, Parser):
        return parser
    if isinstance(parser, str):
        return Literal(parser)
    raise TypeError(f"Expected a parser or a string, got {parser!r}")


class Unit(Parser):
    """Matches the empty string, producing the given value."""

    def __init__(self, value: typing.Any = None):
        self.value = value

    def invoke(self, engine: "Engine", position: Position, k: Continuation):
        k(OutputPair(position, self.value))

    def __repr__(self) -> str:
        return f"unit({self.value!r})"


class Fail(Parser):
    """Never matches. Don't make a new one of these, use `fail`."""

    def invoke(self, engine: "Engine", position: Position, k: Continuation):
        # It's quiet in here.
        pass

    def __repr__(self) -> str:
        return "fail"


fail = Fail()


class AnyChar(Parser):
    """Matches any single element of the input. Use `any_char`."""

    def invoke(self, engine: "Engine", position: Position, k: Continuation):
        text = engine.input
        if position < len(text):
            k(OutputPair(position + 1, text[position]))

    def __repr__(self) -> str:
        return "any_char"


any_char = AnyChar()


class EndOfInput(Parser):
    """Matches, consuming nothing, only at the very end of the input."""

    def invoke(self, engine: "Engine", position: Position, k: Continuation):
        if position == len(engine.input):
            k(OutputPair(position, None))

    def __repr__(self) -> str:
        return "eof"


eof = EndOfInput()


class Literal(Parser):
    """Matches exactly the given elements, producing them as the value.

    For string input that is just the text. Over any other sequence (a tuple
    of tokens, say) each element of `text` is compared with one element of
    the input, so `literal(("let",))` matches a single "let" token.
    """

    text: str | typing.Tuple[typing.Any, ...]

    def __init__(self, text: str | typing.Sequence[typing.Any]):
        if not isinstance(text, str):
            text = tuple(text)
        self.text = text

    def invoke(self, engine: "Engine", position: Position, k: Continuation):
        input = engine.input
        end = position + len(self.text)
        if end > len(input):
            return
        for offset, element in enumerate(self.text):
            if input[position + offset] != element:
                return
        k(OutputPair(end, self.text))

    def __repr__(self) -> str:
        return repr(self.text)


class Satisfy(Parser):
    """Matches a single element of the input that the predicate likes."""

    def __init__(self, predicate: typing.Callable[[typing.Any], bool], name: str | None = None):
        self.predicate = predicate
        self.name = name

    def invoke(self, engine: "Engine", position: Position, k: Continuation):
        text = engine.input
        if position < len(text):
            element = text[position]
            if self.predicate(element):
                k(OutputPair(position + 1, element))

    def __repr__(self) -> str:
        return self.name or "satisfy(...)"


class Sequence(Parser):
    """A parser that matches if a first part matches, followed by a second
    part, and so on. The value is the tuple of the values of the parts.

    If the first part matches N ways and for each of those the second part
    matches M ways, the sequence matches (up to) N*M ways.
    """

    items: typing.Tuple[Parser, ...]

    def __init__(self, *items: Parser):
        self.items = items

    def __add__(self, other) -> Parser:
        # a + b + c is one sequence of three things, not a sequence of a
        # sequence and a thing.
        if not isinstance(other, (Parser, str)):
            return NotImplemented
        return Sequence(*self.items, _coerce(other))

    def invoke(self, engine: "Engine", position: Position, k: Continuation):
        self._invoke_from(engine, 0, position, (), k)

    def _invoke_from(
        self,
        engine: "Engine",
        index: int,
        position: Position,
        values: typing.Tuple[typing.Any, ...],
        k: Continuation,
    ):
        if index == len(self.items):
            k(OutputPair(position, values))
            return

        def next_item(pair: OutputPair):
            self._invoke_from(engine, index + 1, pair.end, values + (pair.value,), k)

        self.items[index].invoke(engine, position, next_item)

    def children(self) -> typing.Tuple[Parser, ...]:
        return self.items

    def __repr__(self) -> str:
        return f"seq({', '.join(repr(item) for item in self.items)})"


class Alternative(Parser):
    """A parser that matches if any of its alternatives match. All of the
    alternatives are tried, and all of their matches are reported."""

    alternatives: typing.Tuple[Parser, ...]

    def __init__(self, *alternatives: Parser):
        self.alternatives = alternatives

    def __or__(self, other) -> Parser:
        if not isinstance(other, (Parser, str)):
            return NotImplemented
        return Alternative(*self.alternatives, _coerce(other))

    def invoke(self, engine: "Engine", position: Position, k: Continuation):
        # The same continuation goes to every branch; if two branches produce
        # the same pair the memo entry we eventually feed will drop one.
        for alternative in self.alternatives:
            alternative.invoke(engine, position, k)

    def children(self) -> typing.Tuple[Parser, ...]:
        return self.alternatives

    def __repr__(self) -> str:
        return f"alt({', '.join(repr(a) for a in self.alternatives)})"


class Action(Parser):
    """Transforms the value of every match of the wrapped parser."""

    def __init__(self, parser: Parser, fn: typing.Callable[[typing.Any], typing.Any]):
        self.parser = parser
        self.fn = fn

    def invoke(self, engine: "Engine", position: Position, k: Continuation):
        fn = self.fn

        def transform(pair: OutputPair):
            k(OutputPair(pair.end, fn(pair.value)))

        self.parser.invoke(engine, position, transform)

    def children(self) -> typing.Tuple[Parser, ...]:
        return (self.parser,)

    def __repr__(self) -> str:
        return f"{self.parser!r}.map(...)"


class Capture(Parser):
    """Matches like the wrapped parser, but the value is the slice of the
    input that was matched."""

    def __init__(self, parser: Parser):
        self.parser = parser

    def invoke(self, engine: "Engine", position: Position, k: Continuation):
        text = engine.input

        def slice_input(pair: OutputPair):
            k(OutputPair(pair.end, text[position : pair.end]))

        self.parser.invoke(engine, position, slice_input)

    def children(self) -> typing.Tuple[Parser, ...]:
        return (self.parser,)

    def __repr__(self) -> str:
        return f"capture({self.parser!r})"


class _Advancing(Parser):
    """Only passes along matches that consumed something. Used to keep
    repetitions from repeating the empty match forever."""

    def __init__(self, parser: Parser):
        self.parser = parser

    def invoke(self, engine: "Engine", position: Position, k: Continuation):
        def only_advancing(pair: OutputPair):
            if pair.end > position:
                k(pair)

        self.parser.invoke(engine, position, only_advancing)

    def children(self) -> typing.Tuple[Parser, ...]:
        return (self.parser,)

    def __repr__(self) -> str:
        return repr(self.parser)


_CURRENT_DEFINITION: str = "__global"
_CURRENT_GEN_INDEX: int = 0


class NonTerminal(Parser):
    """A named, memoized rule: the "tag" that gives a parser an identity in
    the memo table.

    You probably don't want to create this directly; instead you probably want
    to use the `@rule` decorator (or `define_rule`).

    Invoking a rule at a position asks the engine for the results at that
    (rule, position) location. The first time that happens the engine runs
    the rule's body; every other time, including recursive calls made while
    the body is still running, it just waits for results.
    """

    fn: typing.Callable[[], "Parser | str"]
    name: str
    definition_location: str
    _definition: Parser | None

    def __init__(self, fn: typing.Callable[[], "Parser | str"], name: str | None = None):
        """Create a new NonTerminal.

        `fn` is the function that will yield the `Parser` which is the body of
        this rule; it is not called until the body is first needed. `name` is
        the name of the rule- if unspecified (or `None`) it will be replaced
        with the `__name__` of the provided fn.
        """
        self.fn = fn
        self.name = name or fn.__name__
        self._definition = None
        self.definition_location = _definition_location()

    @property
    def definition(self) -> Parser:
        """The parser that is the body of this rule.

        (As opposed to this parser itself, which is... itself.)
        """
        global _CURRENT_DEFINITION
        global _CURRENT_GEN_INDEX

        if self._definition is None:
            prev_defn = _CURRENT_DEFINITION
            prev_idx = _CURRENT_GEN_INDEX
            try:
                _CURRENT_DEFINITION = self.name
                _CURRENT_GEN_INDEX = 0
                body = self.fn()
            finally:
                _CURRENT_DEFINITION = prev_defn
                _CURRENT_GEN_INDEX = prev_idx

            if isinstance(body, str):
                body = Literal(body)
            if not isinstance(body, Parser):
                raise GrammarDefinitionError(
                    f"The rule {self.name} (defined at {self.definition_location}) "
                    f"did not produce a parser, it produced {body!r}"
                )
            self._definition = body

        return self._definition

    def invoke(self, engine: "Engine", position: Position, k: Continuation):
        engine.call(self, position, k)

    def __repr__(self) -> str:
        return self.name


class Ref(Parser):
    """A reference to a rule by name, for when the rule object itself is not
    at hand. References are resolved when a `Grammar` is built from a parser
    that uses them."""

    name: str
    target: NonTerminal | None
    definition_location: str

    def __init__(self, name: str):
        self.name = name
        self.target = None
        self.definition_location = _definition_location()

    def resolve(self) -> NonTerminal:
        if self.target is None:
            raise GrammarDefinitionError(
                f"The reference to {self.name} (at {self.definition_location}) "
                "was never resolved; parsers that use references must be run "
                "through a Grammar"
            )
        return self.target

    def invoke(self, engine: "Engine", position: Position, k: Continuation):
        self.resolve().invoke(engine, position, k)

    def __repr__(self) -> str:
        return f"ref({self.name})"


class Not(Parser):
    """Negation as failure: matches the empty string, with value None, if and
    only if the target rule has no match at all at this position."""

    def __init__(self, target: NonTerminal | Ref):
        self.target = target

    @property
    def rule(self) -> NonTerminal:
        if isinstance(self.target, Ref):
            return self.target.resolve()
        return self.target

    def invoke(self, engine: "Engine", position: Position, k: Continuation):
        if engine.negate(self.rule, position):
            k(OutputPair(position, None))

    def children(self) -> typing.Tuple[Parser, ...]:
        return (self.target,)

    def __repr__(self) -> str:
        return f"not_({self.target!r})"


###############################################################################
# Sugar for constructing grammars
###############################################################################
def unit(value: typing.Any = None) -> Parser:
    """A parser that matches nothing, successfully, producing the value."""
    return Unit(value)


def literal(text: str | typing.Sequence[typing.Any]) -> Parser:
    """Match the text, or for token input, the given run of tokens."""
    return Literal(text)


def satisfy(predicate: typing.Callable[[typing.Any], bool], name: str | None = None) -> Parser:
    return Satisfy(predicate, name)


def char_in(chars: str) -> Parser:
    """Match any one of the given characters."""
    members = frozenset(chars)
    return Satisfy(lambda c: c in members, f"[{chars}]")


def char_range(lower: str, upper: str) -> Parser:
    """Match any one character between lower and upper, inclusive."""
    return Satisfy(lambda c: lower <= c <= upper, f"[{lower}-{upper}]")


def seq(*args: Parser | str) -> Parser:
    """A parser that matches a sequence of parsers.

    The value is the tuple of the values of the parts, unless there is only
    one part, in which case you just get that part back.
    """
    if len(args) == 1:
        return _coerce(args[0])
    return Sequence(*(_coerce(arg) for arg in args))


def alt(*args: Parser | str) -> Parser:
    """A parser that matches any of a series of alternatives."""
    if len(args) == 1:
        return _coerce(args[0])
    return Alternative(*(_coerce(arg) for arg in args))


def opt(*args: Parser | str) -> Parser:
    """Mark a sequence as optional. When absent, the value is None."""
    return Alternative(seq(*args), Unit(None))


def capture(*args: Parser | str) -> Parser:
    """Match the sequence, producing the matched slice of input as the value."""
    return Capture(seq(*args))


def _generated_rule(fn: typing.Callable[[], Parser], kind: str = "gen") -> NonTerminal:
    global _CURRENT_GEN_INDEX

    result = NonTerminal(
        fn=fn,
        name=f"__{kind}_{_CURRENT_DEFINITION}_{_CURRENT_GEN_INDEX}",
    )
    _CURRENT_GEN_INDEX = _CURRENT_GEN_INDEX + 1
    return result


def _prepend(value: typing.Tuple[typing.Any, typing.Tuple[typing.Any, ...]]):
    first, rest = value
    return (first,) + rest


def zero_or_more(*args: Parser | str) -> Parser:
    """Generate a rule that matches a repetition of zero or more of the
    specified sequence. The value is a tuple of the values of each repetition.

    The repetition is itself a (generated) rule, so it is memoized like any
    other. A repetition that matches without consuming anything is not
    repeated.
    """
    item = _Advancing(seq(*args))
    tail: NonTerminal | None = None

    def impl() -> Parser:
        nonlocal tail
        assert tail is not None
        return Alternative(Unit(()), Action(Sequence(item, tail), _prepend))

    tail = _generated_rule(impl)
    return tail


def one_or_more(*args: Parser | str) -> Parser:
    """Generate a rule that matches a repetition of one or more of the
    specified sequence. The value is a tuple, as with `zero_or_more`.
    """
    item = seq(*args)
    rest = zero_or_more(item)
    return _generated_rule(lambda: Action(Sequence(item, rest), _prepend))


def not_(parser: Parser | str) -> Parser:
    """Negation as failure: match, consuming nothing, when `parser` cannot
    match here at all.

    Negation is asked of rules; anything else gets wrapped in a generated rule
    first.
    """
    if isinstance(parser, (NonTerminal, Ref)):
        return Not(parser)
    body = _coerce(parser)
    return Not(_generated_rule(lambda: body, "not"))


def ref(name: str) -> Ref:
    return Ref(name)


@typing.overload
def rule(f: typing.Callable, /) -> NonTerminal: ...


@typing.overload
def rule(
    name: str | None = None,
) -> typing.Callable[[typing.Callable[[], Parser | str]], NonTerminal]: ...


def rule(
    name: str | None | typing.Callable = None,
) -> NonTerminal | typing.Callable[[typing.Callable[[], Parser | str]], NonTerminal]:
    """The decorator that marks a function as a rule.

    As with all the best decorators, it can be called with or without arguments.
    If called with one argument, that argument is a name that overrides the name
    of the rule, which defaults to the name of the function.
    """
    if callable(name):
        return rule()(name)

    def wrapper(f: typing.Callable[[], Parser | str]):
        nonlocal name

        if name is None:
            name = f.__name__
        assert isinstance(name, str)

        return NonTerminal(f, name)

    return wrapper


def define_rule(name: str, factory: typing.Callable[[], Parser | str]) -> NonTerminal:
    """Define a named rule whose body is produced by `factory`, on demand.

    Because the body is not built until it is needed, the factory can refer
    to the rule being defined (or to rules that do not exist yet).
    """
    return NonTerminal(factory, name)


###############################################################################
# Grammar analysis
###############################################################################
def _references(
    parser: Parser, negated: bool = False
) -> typing.Generator[typing.Tuple[NonTerminal | Ref, bool], None, None]:
    """Yield every rule (or reference) used directly by this parser, and
    whether it was used under a negation. Does not look inside rules."""
    match parser:
        case NonTerminal() | Ref():
            yield parser, negated

        case Not(target=target):
            yield from _references(target, True)

        case _:
            for child in parser.children():
                yield from _references(child, negated)


def gather_grammar(
    start: Parser, rules: typing.Iterable[NonTerminal] = ()
) -> dict[str, NonTerminal]:
    """Starting from the given parser (and any extra rules), gather all of the
    rules that make up the grammar, and resolve references by name.
    """
    # NOTE: We use a dummy dictionary here to preserve insertion order.
    #       That way the first element in named_rules is always the start
    #       symbol, when it is a rule.
    found: dict[NonTerminal, int] = {}
    refs: list[Ref] = []

    # The queue is popped from the end, so the start goes on last.
    queue: list[NonTerminal] = list(reversed(list(rules)))
    if isinstance(start, NonTerminal):
        queue.append(start)
    else:
        queue.extend(reversed(_gather_references(start, refs)))

    while len(queue) > 0:
        nt = queue.pop()
        if nt in found:
            continue

        found[nt] = len(found)
        for symbol in _gather_references(nt.definition, refs):
            if symbol not in found:
                queue.append(symbol)

    named_rules: dict[str, NonTerminal] = {}
    for nt in found:
        existing = named_rules.get(nt.name)
        if existing is not None:
            raise GrammarDefinitionError(
                f"""Found more than one rule named {nt.name}:
- {existing.definition_location}
- {nt.definition_location}"""
            )
        named_rules[nt.name] = nt

    for reference in refs:
        target = named_rules.get(reference.name)
        if target is None:
            raise GrammarDefinitionError(
                f"Reference to an undefined rule named {reference.name} "
                f"(at {reference.definition_location})"
            )
        reference.target = target

    return named_rules


def _gather_references(parser: Parser, refs: list[Ref]) -> list[NonTerminal]:
    result = []
    for symbol, _ in _references(parser):
        if isinstance(symbol, Ref):
            refs.append(symbol)
        else:
            result.append(symbol)
    return result


class _Cluster:
    """A strongly connected component of the rule dependency graph."""

    def __init__(self, number: int):
        self.number = number
        self.members: list[NonTerminal] = []
        self.level = 0


def _strongly_connected_components(
    vertices: typing.Iterable[NonTerminal],
    arcs_from: dict[NonTerminal, list[typing.Tuple[NonTerminal, bool]]],
) -> typing.Tuple[list[_Cluster], dict[NonTerminal, _Cluster]]:
    """Find the strongly connected components of the dependency graph, using
    the path-based strong component algorithm.

    Components come out in dependency order: a component is finished only
    after every component it can reach.
    """
    preorder: dict[NonTerminal, int] = {}
    cluster_for: dict[NonTerminal, _Cluster] = {}
    clusters: list[_Cluster] = []

    # All the vertices [seen so far] that have not yet been assigned to a SCC.
    S: list[NonTerminal] = []
    # Vertices that have not yet been determined to belong to different SCCs.
    P: list[NonTerminal] = []

    def search(v: NonTerminal):
        preorder[v] = len(preorder)
        S.append(v)
        P.append(v)

        for w, _ in arcs_from[v]:
            if w not in preorder:
                search(w)
            elif w not in cluster_for:
                while preorder[P[-1]] > preorder[w]:
                    P.pop()

        if v is P[-1]:
            cluster = _Cluster(len(clusters))
            while True:
                w = S.pop()
                cluster_for[w] = cluster
                cluster.members.append(w)
                if w is v:
                    break
            clusters.append(cluster)
            P.pop()

    for v in vertices:
        if v not in preorder:
            search(v)

    return clusters, cluster_for


class Grammar:
    """A container that holds all the rules for a given grammar. The rules are
    defined elsewhere; provide the starting parser and this object will find
    everything accessible from it.

    Building a Grammar checks the definitions (every rule has a distinct name,
    every reference resolves). Whether the negations in the grammar can be
    stratified is checked by `strata`, which the runtime calls before it
    starts evaluating.
    """

    start: Parser
    name: str
    _nonterminals: dict[str, NonTerminal]
    _arcs: dict[NonTerminal, list[typing.Tuple[NonTerminal, bool]]]

    def __init__(
        self,
        start: Parser,
        rules: typing.Iterable[NonTerminal] | None = None,
        name: str | None = None,
    ):
        if rules is None:
            rules = []

        if name is None:
            name = start.name if isinstance(start, NonTerminal) else "unknown"

        self.start = start
        self.name = name
        self._nonterminals = gather_grammar(start, rules)
        self._arcs = {
            nt: [
                (symbol.resolve() if isinstance(symbol, Ref) else symbol, negated)
                for symbol, negated in _references(nt.definition)
            ]
            for nt in self._nonterminals.values()
        }

    def non_terminals(self) -> list[NonTerminal]:
        return list(self._nonterminals.values())

    def get_rule(self, name: str) -> NonTerminal:
        result = self._nonterminals.get(name)
        if result is None:
            raise GrammarDefinitionError(f"No rule named {name} in grammar {self.name}")
        return result

    def dependencies(self, nt: NonTerminal) -> list[typing.Tuple[NonTerminal, bool]]:
        """The rules the given rule uses directly, and whether each one is
        used under a negation."""
        return list(self._arcs[nt])

    def strata(
        self, stratification: typing.Sequence[typing.Iterable[str | NonTerminal]] | None = None
    ) -> list[list[NonTerminal]]:
        """Partition the rules into strata, lowest first, such that a rule only
        depends on rules in its own or lower strata and only negates rules in
        strictly lower strata.

        If `stratification` is given it is an explicit ordering of groups of
        rules (by name or by rule); it is checked against the dependencies of
        the grammar and returned. Otherwise the strata are inferred from the
        strongly connected components of the dependency graph.

        Raises UnstratifiableNegation if a rule is recursive through a
        negation, or if the explicit ordering puts a dependency after its user.
        """
        clusters, cluster_for = _strongly_connected_components(
            self._nonterminals.values(), self._arcs
        )

        for cluster in clusters:
            level = 0
            for member in cluster.members:
                for target, negated in self._arcs[member]:
                    target_cluster = cluster_for[target]
                    if target_cluster is cluster:
                        if negated:
                            raise UnstratifiableNegation(
                                target,
                                rule=member,
                                reason=f"'{member}' negates '{target}', but '{target}' "
                                f"depends on '{member}', so it cannot be saturated "
                                "before it is negated",
                            )
                    else:
                        level = max(level, target_cluster.level + (1 if negated else 0))
            cluster.level = level

        if stratification is not None:
            return self._check_stratification(stratification)

        levels: dict[int, list[NonTerminal]] = collections.defaultdict(list)
        for cluster in clusters:
            levels[cluster.level].extend(cluster.members)
        return [levels[level] for level in sorted(levels)]

    def _check_stratification(
        self, stratification: typing.Sequence[typing.Iterable[str | NonTerminal]]
    ) -> list[list[NonTerminal]]:
        index: dict[NonTerminal, int] = {}
        groups: list[list[NonTerminal]] = []
        for number, group in enumerate(stratification):
            members = []
            for item in group:
                name = item.name if isinstance(item, NonTerminal) else item
                nt = self._nonterminals.get(name)
                if nt is None:
                    raise GrammarDefinitionError(
                        f"The stratification names {name}, which is not a rule in "
                        f"grammar {self.name}"
                    )
                if nt in index:
                    raise GrammarDefinitionError(
                        f"The stratification puts {name} in both stratum "
                        f"{index[nt]} and stratum {number}"
                    )
                index[nt] = number
                members.append(nt)
            groups.append(members)

        for nt, arcs in self._arcs.items():
            source = index.get(nt)
            if source is None:
                continue
            for target, negated in arcs:
                destination = index.get(target)
                if destination is None:
                    continue
                if negated and destination >= source:
                    raise UnstratifiableNegation(
                        target,
                        rule=nt,
                        reason=f"'{nt}' is in stratum {source} but negates "
                        f"'{target}' in stratum {destination}",
                    )
                if not negated and destination > source:
                    raise UnstratifiableNegation(
                        target,
                        rule=nt,
                        reason=f"'{nt}' is in stratum {source} but depends on "
                        f"'{target}' in later stratum {destination}",
                    )

        return groups
