import pytest

from examples import expressions


def test_number():
    assert expressions.parse("42") == {("num", 42)}
    assert expressions.parse("  42  ") == {("num", 42)}


def test_precedence_is_ambiguous():
    trees = expressions.parse("1 + 2 * 3")
    assert trees == {
        ("+", ("num", 1), ("*", ("num", 2), ("num", 3))),
        ("*", ("+", ("num", 1), ("num", 2)), ("num", 3)),
    }
    assert {expressions.evaluate(tree) for tree in trees} == {7, 9}


def test_parentheses():
    trees = expressions.parse("(1 + 2) * 3")
    assert trees == {("*", ("+", ("num", 1), ("num", 2)), ("num", 3))}


def test_let():
    trees = expressions.parse("let x = 2 in x")
    assert trees == {("let", "x", ("num", 2), ("var", "x"))}
    assert expressions.evaluate(trees.pop()) == 2


def test_keywords_are_not_names():
    assert expressions.parse("in") == set()
    assert expressions.parse("let") == set()
    assert expressions.parse("inx + 1") == {("+", ("var", "inx"), ("num", 1))}
    assert expressions.parse("letter") == {("var", "letter")}


def test_names_and_numbers_are_greedy():
    # Without the negations, "12" could also be read as "1" followed by "2".
    assert expressions.parse("12 + ab") == {("+", ("num", 12), ("var", "ab"))}
    assert expressions.parse("1 2") == set()


def test_evaluate_unbound():
    with pytest.raises(NameError):
        expressions.evaluate(("var", "y"))


def test_grammar_strata():
    strata = expressions.GRAMMAR.strata()
    stratum_of = {nt.name: number for number, stratum in enumerate(strata) for nt in stratum}

    assert stratum_of["word_char"] < stratum_of["keyword"] < stratum_of["name"]
    assert stratum_of["digit"] < stratum_of["number"]
    assert stratum_of["name"] <= stratum_of["expression"]
