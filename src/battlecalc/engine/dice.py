from __future__ import annotations
import random
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Optional

from py_expression_eval import Parser

from .modifiers_runtime import ModifierLedger
from .trace import TraceSession, note

_TERM = r"(?:\d*[dD]\d+|\d+)"
_EXPR_RE = re.compile(rf"^\s*[+-]?\s*{_TERM}(?:\s*[+-]\s*{_TERM})*\s*$")
_DICE_RE = re.compile(r"(\d*)[dD](\d+)")

_parser = Parser()

# broadest first
REROLL_KINDS = ("all", "failed", "ones")


@dataclass
class DiceRoll:
    value: int
    is_reroll: bool = False
    original_value: Optional[int] = None
    is_critical: bool = False

    def as_dict(self) -> dict:
        return {"value": self.value, "isReroll": self.is_reroll,
                "originalValue": self.original_value, "isCritical": self.is_critical}


def d6(rng: random.Random) -> int:
    return rng.randint(1, 6)


@lru_cache(maxsize=1024)
def _compile_expr(expr: str):
    return _parser.parse(expr)


def is_dice_expr(expr: str | int) -> bool:
    if isinstance(expr, int):
        return True
    return bool(_EXPR_RE.match(str(expr)))


def is_variable(expr: str | int) -> bool:
    return not isinstance(expr, int) and bool(_DICE_RE.search(str(expr)))


def _substitute(expr: str, roll_term: Callable[[int, int], float]) -> str:
    def repl(m: re.Match) -> str:
        n = int(m.group(1) or 1)
        sides = int(m.group(2))
        return str(roll_term(n, sides))
    return _DICE_RE.sub(repl, expr.replace(" ", ""))


def expected_value(expr: str | int) -> float:
    """Mean of a dice expression, e.g. "d6" -> 3.5, "d3+3" -> 5."""
    if isinstance(expr, int):
        return float(expr)
    if not is_dice_expr(expr):
        raise ValueError(f"Invalid dice expression: {expr!r}")
    return float(_compile_expr(_substitute(expr, lambda n, s: n * (s + 1) / 2)).evaluate({}))


def roll_expr(rng: random.Random, expr: str | int) -> int:
    """Roll every NdX term, then evaluate the remaining arithmetic. Raises ValueError when malformed."""
    if isinstance(expr, int):
        return expr
    if not is_dice_expr(expr):
        raise ValueError(f"Invalid dice expression: {expr!r}")

    def roll_term(n: int, sides: int) -> int:
        if sides < 1:
            raise ValueError(f"Invalid die size in {expr!r}")
        return sum(rng.randint(1, sides) for _ in range(n))

    return int(_compile_expr(_substitute(expr, roll_term)).evaluate({}))


def roll_expr_or(rng: random.Random, expr: str | int, fallback: int, *,
                 trace: Optional[TraceSession] = None, what: str = "value") -> int:
    """roll_expr that fails closed to `fallback` for a malformed expression."""
    try:
        return roll_expr(rng, expr)
    except ValueError as exc:
        note(trace, "Dice", f"{exc}; {what} falls back to {fallback}")
        return fallback


# -------- rerolls --------

def reroll_kind(ledger: Optional[ModifierLedger], phase: str, *extra: str) -> Optional[str]:
    """Broadest reroll grant for a phase (all > failed > ones), from the ledger or extra kinds."""
    granted = set(extra)
    if ledger is not None:
        for kind in REROLL_KINDS:
            if ledger.has(f"reroll:{phase}:{kind}"):
                granted.add(kind)
    for kind in REROLL_KINDS:
        if kind in granted:
            return kind
    return None


def qualifies_for_reroll(kind: Optional[str], value: int, success: bool) -> bool:
    if kind == "all":
        return True
    if kind == "failed":
        return not success
    if kind == "ones":
        return value == 1
    return False


def roll_d6_test(rng: random.Random, success: Callable[[int], bool],
                 kind: Optional[str], crit_threshold: int = 7) -> DiceRoll:
    """
    Roll one D6 for a test, rerolling it at most once under `kind`.
    The rerolled value is final. is_critical is judged on the final unmodified value.
    """
    value = d6(rng)
    if qualifies_for_reroll(kind, value, success(value)):
        rerolled = d6(rng)
        return DiceRoll(value=rerolled, is_reroll=True, original_value=value,
                        is_critical=rerolled >= crit_threshold)
    return DiceRoll(value=value, is_critical=value >= crit_threshold)
