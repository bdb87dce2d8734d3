# This is an example grammar: a tiny expression language.
#
# It is deliberately ambiguous (there is no precedence, so `1 + 2 * 3` has
# two parses) and left recursive, and it uses negation to keep keywords from
# being identifiers and to make numbers, names and whitespace match greedily.
import typing

from fixparse import (
    Grammar,
    Parser,
    alt,
    capture,
    char_range,
    complete_parses,
    eof,
    not_,
    one_or_more,
    rule,
    run_parser,
    seq,
    zero_or_more,
)


@rule
def program() -> Parser:
    return seq(ws, expression, eof).map(lambda v: v[1])


@rule
def expression() -> Parser:
    return (
        seq(expression, token("+"), expression).map(lambda v: ("+", v[0], v[2]))
        | seq(expression, token("*"), expression).map(lambda v: ("*", v[0], v[2]))
        | atom
    )


@rule
def atom() -> Parser:
    return (
        number
        | name.map(lambda n: ("var", n))
        | seq(token("("), expression, token(")")).map(lambda v: v[1])
        | let_expression
    )


@rule
def let_expression() -> Parser:
    return seq(
        keyword_token("let"),
        name,
        token("="),
        expression,
        keyword_token("in"),
        expression,
    ).map(lambda v: ("let", v[1], v[3], v[5]))


@rule
def number() -> Parser:
    return seq(capture(one_or_more(digit)), not_(digit), ws).map(lambda v: ("num", int(v[0])))


@rule
def name() -> Parser:
    return seq(
        not_(keyword),
        capture(letter, zero_or_more(word_char)),
        not_(word_char),
        ws,
    ).map(lambda v: v[1])


@rule
def keyword() -> Parser:
    return seq(alt("let", "in"), not_(word_char))


@rule
def ws() -> Parser:
    return seq(zero_or_more(" "), not_(" "))


@rule
def digit() -> Parser:
    return char_range("0", "9")


@rule
def word_char() -> Parser:
    return letter | digit


letter = char_range("a", "z") | "_"


def token(text: str) -> Parser:
    return seq(text, ws).map(lambda v: v[0])


def keyword_token(text: str) -> Parser:
    return seq(text, not_(word_char), ws).map(lambda v: v[0])


GRAMMAR = Grammar(start=program, name="expressions")


def parse(text: str) -> set[typing.Any]:
    """Every complete parse of the text, as a tree of tuples."""
    results = run_parser(GRAMMAR, text)
    return {pair.value for pair in complete_parses(results, text)}


def evaluate(tree, env: dict[str, int] | None = None) -> int:
    if env is None:
        env = {}

    match tree:
        case ("num", value):
            return value
        case ("var", name):
            if name not in env:
                raise NameError(f"{name} is not bound")
            return env[name]
        case ("+", left, right):
            return evaluate(left, env) + evaluate(right, env)
        case ("*", left, right):
            return evaluate(left, env) * evaluate(right, env)
        case ("let", name, value, body):
            return evaluate(body, {**env, name: evaluate(value, env)})
        case _:
            raise ValueError(f"Not an expression: {tree!r}")
