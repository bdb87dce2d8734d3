"""A fixpoint parsing engine.

Parser combinators that handle left recursion, report every derivation of
an ambiguous grammar, and support negation as failure, by memoizing every
(rule, position) pair and iterating the memo table to a fixed point.

Build parsers with the functions in the [parser] module, and run them with
`run_parser` from the [runtime] module.
"""
from . import memo
from . import parser
from . import runtime
from . import scheduler

from .memo import Location, LocationEntry, MemoStore, OutputPair
from .parser import *
from .runtime import Config, Engine, RunStats, complete_parses, run_parser
from .scheduler import ResourceExhausted, Scheduler
