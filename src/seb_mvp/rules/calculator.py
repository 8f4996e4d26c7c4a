"""Four-function quick calculator.

Tokens arrive one at a time (button presses or mapped key strokes) and are
folded into two strings kept in lockstep:

  - ``display_text`` what the user sees, using the ``×`` / ``÷`` glyphs, and
  - ``expression_text`` the evaluation accumulator, using ``*`` / ``/``.

Solving evaluates strictly left to right with no operator precedence, so
``2+3×4`` is ``(2+3)×4 = 20``. The result re-seeds both strings so the next
key press chains from it.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, localcontext
from enum import Enum
from typing import Iterable, List, Optional, Union

logger = logging.getLogger(__name__)

__all__ = [
    "CalcPhase",
    "CalcToken",
    "CalculatorState",
    "ExpressionCalculator",
    "MalformedExpression",
    "evaluate",
    "format_result",
    "token_for_key",
    "tokenize",
]

NEUTRAL_ZERO = "0"
ERROR_MARKER = "Error"
RESULT_PLACES = 8

_RESULT_QUANTUM = Decimal(1).scaleb(-RESULT_PLACES)
_OPERATOR_CHARS = "+-*/"
_GLYPH_TO_ASCII = {"×": "*", "÷": "/"}
_ACCEPTED = re.compile(r"^[0-9.+\-*/]*$")


class MalformedExpression(ValueError):
    """Raised when an expression cannot be evaluated."""


class CalcToken(Enum):
    CLEAR = "C"
    BACKSPACE = "Backspace"
    DECIMAL = "."
    SOLVE = "="
    ADD = "+"
    SUBTRACT = "-"
    MULTIPLY = "×"
    DIVIDE = "÷"

    @property
    def is_operator(self) -> bool:
        return self in _OPERATORS

    @property
    def canonical(self) -> str:
        """Symbol written into the expression accumulator."""
        return _GLYPH_TO_ASCII.get(self.value, self.value)


_OPERATORS = frozenset({CalcToken.ADD, CalcToken.SUBTRACT, CalcToken.MULTIPLY, CalcToken.DIVIDE})

Token = Union[CalcToken, str]


class CalcPhase(Enum):
    IDLE = "idle"
    ACCUMULATING = "accumulating"
    SOLVED = "solved"
    ERRORED = "errored"


@dataclass(frozen=True)
class CalculatorState:
    display_text: str = NEUTRAL_ZERO
    expression_text: str = ""
    phase: CalcPhase = CalcPhase.IDLE

    def to_dict(self) -> dict:
        return {
            "display_text": self.display_text,
            "expression_text": self.expression_text,
            "phase": self.phase.value,
        }


# ---------- keyboard binding ----------

_KEY_MAP = {
    ".": CalcToken.DECIMAL,
    "+": CalcToken.ADD,
    "-": CalcToken.SUBTRACT,
    "*": CalcToken.MULTIPLY,
    "/": CalcToken.DIVIDE,
    "Enter": CalcToken.SOLVE,
    "=": CalcToken.SOLVE,
    "Escape": CalcToken.CLEAR,
    "c": CalcToken.CLEAR,
    "C": CalcToken.CLEAR,
    "Backspace": CalcToken.BACKSPACE,
}


def token_for_key(key: str) -> Optional[Token]:
    """Map a keyboard ``key`` value to a calculator token; ``None`` if unbound."""
    if len(key) == 1 and key.isdigit() and key.isascii():
        return key
    return _KEY_MAP.get(key)


def coerce_token(token: Token) -> Token:
    """Normalise button labels and ASCII aliases; digits pass through as strings."""
    if isinstance(token, CalcToken):
        return token
    if len(token) == 1 and token.isdigit() and token.isascii():
        return token
    if token in ("*", "/"):
        return _KEY_MAP[token]
    try:
        return CalcToken(token)
    except ValueError:
        raise ValueError(f"unknown calculator token: {token!r}") from None


# ---------- evaluation ----------

def tokenize(expression: str) -> List[Union[Decimal, str]]:
    """
    Split ``expression`` into alternating operands and operators.

    A single sign may prefix an operand at the start or right after an
    operator (``-5+3``, ``5×-3``). Anything else out of place, such as a
    dangling operator, a doubled operator or a bare ``.``, is malformed.
    """
    text = "".join(_GLYPH_TO_ASCII.get(ch, ch) for ch in expression)
    if not _ACCEPTED.match(text):
        raise MalformedExpression(f"unexpected character in {expression!r}")

    items: List[Union[Decimal, str]] = []
    pos = 0
    length = len(text)
    while True:
        sign = ""
        if pos < length and text[pos] in "+-":
            sign = text[pos]
            pos += 1
        start = pos
        while pos < length and text[pos] not in _OPERATOR_CHARS:
            pos += 1
        operand = text[start:pos]
        if not operand or operand == "." or operand.count(".") > 1:
            raise MalformedExpression(f"bad operand at position {start} in {expression!r}")
        items.append(Decimal(sign + operand))
        if pos == length:
            return items
        items.append(text[pos])
        pos += 1


def evaluate(expression: str) -> Decimal:
    """Fold ``expression`` left to right; no precedence."""
    items = tokenize(expression)
    result = items[0]
    for i in range(1, len(items), 2):
        op, operand = items[i], items[i + 1]
        try:
            if op == "+":
                result = result + operand
            elif op == "-":
                result = result - operand
            elif op == "*":
                result = result * operand
            else:
                result = result / operand
        except ArithmeticError as exc:
            raise MalformedExpression(f"cannot evaluate {expression!r}: {exc}") from exc
    return result


def format_result(value: Decimal) -> str:
    """Integral values print bare; others round to 8 places with trailing zeros dropped."""
    if value == value.to_integral_value():
        return str(int(value))
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, value.adjusted() + RESULT_PLACES + 2)
        rounded = value.quantize(_RESULT_QUANTUM, rounding=ROUND_HALF_UP)
    if rounded == rounded.to_integral_value():
        return str(int(rounded))
    return format(rounded.normalize(), "f")


# ---------- state machine ----------

class ExpressionCalculator:
    """Single calculator instance; mutate only from one thread at a time."""

    def __init__(self, state: Optional[CalculatorState] = None):
        self.state = state or CalculatorState()

    @classmethod
    def from_state(cls, display_text: str, expression_text: str) -> "ExpressionCalculator":
        """Rebuild a calculator from a client-held display/expression pair."""
        if display_text == ERROR_MARKER:
            phase = CalcPhase.ERRORED
        elif display_text in ("", NEUTRAL_ZERO) and not expression_text:
            phase = CalcPhase.IDLE
        else:
            phase = CalcPhase.ACCUMULATING
        return cls(CalculatorState(display_text or NEUTRAL_ZERO, expression_text, phase))

    @property
    def display_text(self) -> str:
        return self.state.display_text

    @property
    def expression_text(self) -> str:
        return self.state.expression_text

    def press(self, token: Token) -> CalculatorState:
        token = coerce_token(token)
        if token is CalcToken.CLEAR:
            self.state = CalculatorState()
        elif token is CalcToken.BACKSPACE:
            self.state = self._backspace()
        elif token is CalcToken.DECIMAL:
            self.state = self._decimal_point()
        elif token is CalcToken.SOLVE:
            self.state = self._solve()
        else:
            self.state = self._append(token)
        return self.state

    def press_many(self, tokens: Iterable[Token]) -> CalculatorState:
        for token in tokens:
            self.press(token)
        return self.state

    def press_key(self, key: str, *, from_text_input: bool = False) -> CalculatorState:
        """Apply a keyboard event; keys typed into other text fields never reach the machine."""
        if from_text_input:
            return self.state
        token = token_for_key(key)
        if token is None:
            return self.state
        return self.press(token)

    # -- transitions --

    def _backspace(self) -> CalculatorState:
        st = self.state
        if st.phase is CalcPhase.ERRORED:
            return CalculatorState()
        display = st.display_text[:-1] if len(st.display_text) > 1 else NEUTRAL_ZERO
        expression = st.expression_text[:-1]
        if display == NEUTRAL_ZERO and not expression:
            return CalculatorState()
        return CalculatorState(display, expression, CalcPhase.ACCUMULATING)

    def _decimal_point(self) -> CalculatorState:
        st = self.state
        expression = "" if st.phase is CalcPhase.ERRORED else st.expression_text
        last_operand = re.split(r"[+\-*/×÷]", expression)[-1]
        if "." in last_operand:
            return st

        piece = "." if last_operand else "0."
        if st.phase is CalcPhase.ERRORED or (st.display_text == NEUTRAL_ZERO and not expression):
            display = "0."
        else:
            display = st.display_text + piece
        return CalculatorState(display, expression + piece, CalcPhase.ACCUMULATING)

    def _append(self, token: Token) -> CalculatorState:
        st = self.state
        if isinstance(token, CalcToken):
            glyph, symbol = token.value, token.canonical
        else:
            glyph = symbol = token

        is_operator = isinstance(token, CalcToken) and token.is_operator
        fresh = st.phase is CalcPhase.ERRORED or (st.display_text == NEUTRAL_ZERO and not st.expression_text)
        if fresh and is_operator:
            # an operator on a blank slate applies to the zero being shown
            return CalculatorState(NEUTRAL_ZERO + glyph, NEUTRAL_ZERO + symbol, CalcPhase.ACCUMULATING)
        if st.phase is CalcPhase.ERRORED or (st.display_text == NEUTRAL_ZERO and not is_operator):
            # replace the neutral zero instead of growing a leading zero
            return CalculatorState(glyph, symbol, CalcPhase.ACCUMULATING)
        return CalculatorState(
            st.display_text + glyph,
            st.expression_text + symbol,
            CalcPhase.ACCUMULATING,
        )

    def _solve(self) -> CalculatorState:
        expression = self.state.expression_text
        try:
            result = format_result(evaluate(expression))
        except (MalformedExpression, ArithmeticError) as exc:
            logger.debug("Calculator error: %s", exc)
            return CalculatorState(ERROR_MARKER, "", CalcPhase.ERRORED)
        return CalculatorState(result, result, CalcPhase.SOLVED)
