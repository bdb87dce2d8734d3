import logging

import pytest

from fixparse import (
    Config,
    Engine,
    Grammar,
    GrammarDefinitionError,
    Location,
    OutputPair,
    UnstratifiableNegation,
    capture,
    char_range,
    not_,
    one_or_more,
    rule,
    run_parser,
    seq,
    unit,
)


def make_even_grammar():
    @rule
    def Digit():
        return char_range("0", "9")

    @rule
    def Even():
        # A run of digits, to the end of the run, of even length.
        return seq(Digit, Digit, Even) | not_(Digit)

    @rule
    def Odd():
        return seq(not_(Even), capture(one_or_more(Digit))).map(lambda v: v[1])

    return Digit, Even, Odd


def test_negation_of_odd_run():
    _, Even, _ = make_even_grammar()

    engine = Engine("123")
    assert engine.negate(Even, 0) is True

    entry = engine.store.get(Location(Even, 0))
    assert entry is not None
    assert entry.complete
    assert len(entry.results) == 0


def test_negation_of_even_run():
    _, Even, _ = make_even_grammar()

    engine = Engine("1234")
    assert engine.negate(Even, 0) is False

    entry = engine.store.get(Location(Even, 0))
    assert entry is not None
    assert entry.complete
    assert [pair.end for pair in entry.results] == [4]


def test_negation_inside_a_parse():
    _, _, Odd = make_even_grammar()

    assert run_parser(Odd, "123") == {
        OutputPair(1, "1"),
        OutputPair(2, "12"),
        OutputPair(3, "123"),
    }
    assert run_parser(Odd, "1234") == set()


def test_odd_run_after_prefix():
    _, Even, _ = make_even_grammar()
    engine = Engine("x12345")
    assert engine.negate(Even, 1) is True
    assert engine.negate(Even, 2) is False


def test_complete_locations_are_reused():
    _, Even, _ = make_even_grammar()
    engine = Engine("1234")

    assert engine.negate(Even, 0) is False
    steps = engine.stats.steps
    assert engine.negate(Even, 0) is False
    assert engine.stats.steps == steps
    assert engine.stats.negations >= 2


def test_negating_something_already_in_progress():
    """A rule that is half way through being evaluated positively can still
    be negated; it gets finished off first."""

    @rule
    def B():
        return capture(B, "b") | "b"

    @rule
    def S():
        return seq(B, "x") | seq(not_(B), "y")

    assert run_parser(S, "bbx") == {OutputPair(3, ("bb", "x"))}
    assert run_parser(S, "y") == {OutputPair(1, (None, "y"))}


def test_left_recursive_negated_rule():
    @rule
    def As():
        return capture(As, "a") | "a"

    @rule
    def S():
        return seq(not_(As), "b")

    assert run_parser(S, "b") == {OutputPair(1, (None, "b"))}
    assert run_parser(S, "aab") == set()


def test_negation_after_a_nullable_rule_still_producing():
    """The negation is asked for while A is still finding results at the
    same position. Those results must not re-ask the negation from inside
    its own saturation."""

    @rule
    def C():
        return unit("x")

    @rule
    def A():
        return C | unit("y")

    @rule
    def B():
        return seq(A, "z")

    @rule
    def S():
        return seq(A, not_(B))

    Grammar(S).strata()
    assert run_parser(S, "") == {
        OutputPair(0, ("x", None)),
        OutputPair(0, ("y", None)),
    }
    # Here B matches "z", so nothing gets past the negation.
    assert run_parser(S, "z") == set()


def test_negation_depends_on_lower_stratum_still_open():
    @rule
    def A():
        return capture(A, "a") | "a"

    @rule
    def B():
        return seq(A, "x")

    @rule
    def S():
        return A | seq(not_(B), A).map(lambda v: ("checked", v[1]))

    # The first alternative opens A@0, and the negation of B needs A@0
    # before anything has run it.
    assert run_parser(S, "aa") == {
        OutputPair(1, "a"),
        OutputPair(2, "aa"),
        OutputPair(1, ("checked", "a")),
        OutputPair(2, ("checked", "aa")),
    }
    assert run_parser(S, "aax") == {OutputPair(1, "a"), OutputPair(2, "aa")}


def test_strata_are_inferred():
    Digit, Even, Odd = make_even_grammar()
    strata = Grammar(Odd).strata()

    assert [{nt.name for nt in stratum} for stratum in strata] == [
        {"Digit", "__gen_Odd_0", "__gen_Odd_1"},
        {"Even"},
        {"Odd"},
    ]


def test_self_negation_is_rejected():
    @rule
    def S():
        return seq(not_(S), "a")

    with pytest.raises(UnstratifiableNegation) as info:
        Grammar(S).strata()
    assert info.value.negated is S
    assert info.value.rule is S

    with pytest.raises(UnstratifiableNegation):
        run_parser(S, "a")


def test_mutual_negation_is_rejected():
    @rule
    def A():
        return seq(not_(B), "a")

    @rule
    def B():
        return A | "b"

    with pytest.raises(UnstratifiableNegation) as info:
        run_parser(A, "a")
    assert "depends on" in str(info.value)


def test_self_negation_is_caught_while_running():
    """Skipping the grammar checks doesn't get you a wrong answer."""

    @rule
    def S():
        return seq(not_(S), "a")

    with pytest.raises(UnstratifiableNegation) as info:
        Engine("a").run(S)
    assert info.value.position == 0


def test_mutual_negation_is_caught_while_running():
    @rule
    def B():
        return literal_b | not_(C)

    @rule
    def C():
        return seq(B, "x")

    literal_b = char_range("b", "b")

    with pytest.raises(UnstratifiableNegation):
        Engine("q").negate(B, 0)


def _stratification_grammar():
    @rule
    def Digit():
        return char_range("0", "9")

    @rule
    def Even():
        return seq(Digit, Digit, Even) | not_(Digit)

    @rule
    def NotEven():
        return not_(Even)

    return NotEven


def test_explicit_stratification():
    NotEven = _stratification_grammar()
    config = Config(stratification=[["Digit"], ["Even"], ["NotEven"]])

    assert run_parser(NotEven, "123", config) == {OutputPair(0, None)}
    assert run_parser(NotEven, "12", config) == set()

    strata = Grammar(NotEven).strata(config.stratification)
    assert [[nt.name for nt in stratum] for stratum in strata] == [
        ["Digit"],
        ["Even"],
        ["NotEven"],
    ]


def test_explicit_stratification_negation_in_same_stratum():
    NotEven = _stratification_grammar()
    config = Config(stratification=[["Digit", "Even", "NotEven"]])

    with pytest.raises(UnstratifiableNegation) as info:
        run_parser(NotEven, "123", config)
    assert "negates" in str(info.value)


def test_explicit_stratification_dependency_out_of_order():
    NotEven = _stratification_grammar()
    config = Config(stratification=[["Even"], ["Digit"], ["NotEven"]])

    with pytest.raises(UnstratifiableNegation) as info:
        run_parser(NotEven, "123", config)
    assert "later stratum" in str(info.value)


def test_explicit_stratification_unknown_rule():
    NotEven = _stratification_grammar()

    with pytest.raises(GrammarDefinitionError):
        run_parser(NotEven, "1", Config(stratification=[["Digit"], ["Bogus"]]))

    with pytest.raises(GrammarDefinitionError):
        run_parser(NotEven, "1", Config(stratification=[["Digit"], ["Digit"]]))


def test_negation_is_logged(caplog):
    _, Even, _ = make_even_grammar()
    caplog.set_level(logging.DEBUG, logger="fixparse.negation")

    Engine("123").negate(Even, 0)
    assert any("not Even@0: True" in record.getMessage() for record in caplog.records)
