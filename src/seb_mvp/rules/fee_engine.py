# src/seb_mvp/rules/fee_engine.py
from __future__ import annotations

import re
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, localcontext
from enum import Enum
from typing import Any, Dict, Optional, Union

Number = Union[Decimal, int, float, str]

SELL_DISPLAY_PLACES = 6
_SELL_QUANTUM = Decimal(1).scaleb(-SELL_DISPLAY_PLACES)
_CENTS = Decimal("0.01")

# Leading numeric prefix, same acceptance as a browser number field's parseFloat.
_LEADING_NUMBER = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


# -------------------------------
# Helpers
# -------------------------------

def leading_decimal(raw: Any) -> Optional[Decimal]:
    """Parse the leading numeric prefix of ``raw``; ``None`` when there is none."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, Decimal):
        value = raw
    elif isinstance(raw, (int, float)):
        value = Decimal(str(raw))
    else:
        match = _LEADING_NUMBER.match(str(raw))
        if not match:
            return None
        try:
            value = Decimal(match.group(1))
        except InvalidOperation:
            return None
    if not value.is_finite():
        return None
    return value


def parse_amount(raw: Any) -> Decimal:
    """Coerce a user-entered amount to a non-negative Decimal; anything else is zero."""
    value = leading_decimal(raw)
    if value is None or value < 0:
        return Decimal("0")
    return value


def _plain(value: Decimal) -> str:
    """Render without exponent or trailing zeros (1050, 4.2, 0.001)."""
    if value == value.to_integral_value():
        return str(int(value))
    return format(value.normalize(), "f")


def format_sell_value(value: Decimal) -> str:
    with localcontext() as ctx:
        # quantize needs room for every integer digit plus the fixed places
        ctx.prec = max(ctx.prec, value.adjusted() + SELL_DISPLAY_PLACES + 2)
        return str(value.quantize(_SELL_QUANTUM, rounding=ROUND_HALF_UP))


def _money(x: Number) -> Decimal:
    if not isinstance(x, Decimal):
        x = Decimal(str(x))
    return x.quantize(_CENTS, rounding=ROUND_HALF_UP)


# -------------------------------
# Data models
# -------------------------------

class BondMode(Enum):
    STANDARD = "standard"  # invoice + duties
    PGA = "pga"            # PGA-flagged invoice carries the multiplier

    @classmethod
    def parse(cls, value: Union["BondMode", str, None]) -> "BondMode":
        if isinstance(value, BondMode):
            return value
        txt = (value or "").strip().lower()
        if txt in ("with", "with_pga"):
            return cls.PGA
        if txt in ("without", "without_pga", ""):
            return cls.STANDARD
        return cls(txt)


@dataclass(frozen=True)
class FeeSettings:
    """Admin-tunable parameters; always a complete record."""
    min_billing: Decimal
    sell_rate_percent: Decimal
    pga_multiplier: int
    asset_reference: str = ""


DEFAULT_FEE_SETTINGS = FeeSettings(
    min_billing=Decimal("65.00"),
    sell_rate_percent=Decimal("0.40"),
    pga_multiplier=3,
    asset_reference="https://teuglobal.com/wp-content/uploads/2023/10/TEU-Global-Logo.png",
)


@dataclass(frozen=True)
class BondInputs:
    """
    Raw values of the four bond fields.

    Both modes' fields are retained side by side so switching modes never
    loses what was typed into the other one.
    """
    invoice_value: Any = ""
    duties_value: Any = ""
    pga_invoice_value: Any = ""
    non_pga_invoice_value: Any = ""

    def with_values(self, **changes: Any) -> "BondInputs":
        return replace(self, **changes)

    @classmethod
    def clear(cls) -> "BondInputs":
        return cls()


@dataclass(frozen=True)
class BondFeeResult:
    mode: BondMode
    total_bond_value: Decimal
    sell_value: Decimal  # full precision; display rounding happens on read
    is_below_min: bool
    min_billing: Decimal

    @property
    def sell_value_display(self) -> str:
        return format_sell_value(self.sell_value)

    @property
    def total_bond_display(self) -> str:
        return _plain(self.total_bond_value)

    @property
    def advisory(self) -> str:
        if self.is_below_min:
            return f"Minimum Billing Applies: ${_money(self.min_billing)}"
        return "Standard Logic Active"

    @property
    def clipboard_text(self) -> str:
        return f"${self.sell_value_display}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "total_bond_value": self.total_bond_display,
            "sell_value": self.sell_value_display,
            "is_below_min": self.is_below_min,
            "min_billing": str(_money(self.min_billing)),
            "advisory": self.advisory,
            "clipboard_text": self.clipboard_text,
        }


# -------------------------------
# Computation
# -------------------------------

def total_bond_value(mode: BondMode, inputs: BondInputs, settings: FeeSettings) -> Decimal:
    if mode is BondMode.PGA:
        pga = parse_amount(inputs.pga_invoice_value)
        non_pga = parse_amount(inputs.non_pga_invoice_value)
        return pga * settings.pga_multiplier + non_pga
    invoice = parse_amount(inputs.invoice_value)
    duties = parse_amount(inputs.duties_value)
    return invoice + duties


def compute_bond_fee(
    mode: Union[BondMode, str],
    inputs: BondInputs,
    settings: FeeSettings = DEFAULT_FEE_SETTINGS,
) -> BondFeeResult:
    """
    Derive the bond liability and the billable sell value.

    Pure: the same inputs and settings always produce an equal result, so
    callers may recompute on every keystroke. The minimum-billing flag is
    decided on the unrounded sell value, and a zero total never raises it.
    """
    mode = BondMode.parse(mode)
    total = total_bond_value(mode, inputs, settings)
    sell = total * settings.sell_rate_percent / Decimal(100)
    below_min = total > 0 and sell < settings.min_billing
    return BondFeeResult(
        mode=mode,
        total_bond_value=total,
        sell_value=sell,
        is_below_min=below_min,
        min_billing=settings.min_billing,
    )
