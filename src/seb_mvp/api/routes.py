# src/seb_mvp/api/routes.py
"""
Bond fee, quick-calculator and admin settings endpoints.

Notes:
- The fee estimate is recomputed from scratch on every call against the
  committed settings; it never fails on bad numeric input (blank/garbage is zero).
- The calculator is stateless on the server: the client sends back the
  display/expression pair it holds together with the tokens to apply.
- Admin mutations require the shared passcode in the X-Admin-Passcode header.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from pydantic import BaseModel, Field

from ..db import SessionLocal
from ..rules.calculator import ExpressionCalculator
from ..rules.fee_engine import BondInputs, BondMode, FeeSettings, compute_bond_fee
from ..rules.settings_store import (
    AdminGate,
    InvalidCredential,
    SettingsDraft,
    SettingsStore,
    SettingsValidationError,
    SqlKeyValueStorage,
)

logger = logging.getLogger("seb-api")

router = APIRouter(prefix="/api/v1", tags=["SEB Fee Desk"])

# ============ Pydantic Models ============

class SettingsOut(BaseModel):
    min_billing: str = Field(..., examples=["65.00"])
    sell_rate_percent: str = Field(..., examples=["0.40"])
    pga_multiplier: int = Field(..., examples=[3])
    asset_reference: str = ""


class SettingsIn(BaseModel):
    # the stored record holds JSON numbers; 15 significant digits survive a double exactly
    min_billing: Decimal = Field(..., ge=0, max_digits=15, examples=["65.00"])
    sell_rate_percent: Decimal = Field(..., ge=0, max_digits=15, examples=["0.40"])
    pga_multiplier: int = Field(..., ge=1, examples=[3])
    asset_reference: str = Field("", description="Logo/asset URI shown in the header; no effect on fees")


class LoginIn(BaseModel):
    passcode: str = ""


class CalculatorPressIn(BaseModel):
    display_text: str = Field("0", examples=["2+3"])
    expression_text: str = Field("", examples=["2+3"])
    tokens: List[str] = Field(default_factory=list, description="Button labels: digits, + - × ÷ . = C Backspace")
    keys: List[str] = Field(default_factory=list, description="Keyboard key values, applied after tokens")


class CalculatorStateOut(BaseModel):
    display_text: str
    expression_text: str
    phase: str


# ============ Dependencies ============

def get_settings_store() -> SettingsStore:
    return SettingsStore(SqlKeyValueStorage(SessionLocal))


def get_admin_gate(store: SettingsStore = Depends(get_settings_store)) -> AdminGate:
    return AdminGate(store)


def require_admin(
    x_admin_passcode: Optional[str] = Header(None),
    gate: AdminGate = Depends(get_admin_gate),
) -> AdminGate:
    if not gate.check(x_admin_passcode):
        logger.warning("Admin request rejected: bad or missing passcode header")
        raise HTTPException(status_code=401, detail="Access Denied")
    return gate


# ============ Helpers ============

_CENTS = Decimal("0.01")


def _decimal_text(value: Decimal) -> str:
    """At least two fractional digits, more only when the value carries them (65.00, 0.40, 0.125)."""
    if value.as_tuple().exponent > -2 or value == value.quantize(_CENTS):
        return str(value.quantize(_CENTS))
    return format(value.normalize(), "f")


def _settings_out(fs: FeeSettings | SettingsDraft) -> SettingsOut:
    return SettingsOut(
        min_billing=_decimal_text(fs.min_billing),
        sell_rate_percent=_decimal_text(fs.sell_rate_percent),
        pga_multiplier=int(fs.pga_multiplier),
        asset_reference=fs.asset_reference,
    )


# ============ Bond fee ============

@router.get("/bond/estimate", tags=["Bond"])
def bond_estimate(
    mode: str = Query("standard", description="standard | pga"),
    invoice_value: Optional[str] = Query(None),
    duties_value: Optional[str] = Query(None),
    pga_invoice_value: Optional[str] = Query(None),
    non_pga_invoice_value: Optional[str] = Query(None),
    store: SettingsStore = Depends(get_settings_store),
) -> Dict[str, Any]:
    try:
        bond_mode = BondMode.parse(mode)
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Unknown mode '{mode}'; expected standard or pga")

    try:
        fee_settings = store.load()
        inputs = BondInputs(
            invoice_value=invoice_value or "",
            duties_value=duties_value or "",
            pga_invoice_value=pga_invoice_value or "",
            non_pga_invoice_value=non_pga_invoice_value or "",
        )
        result = compute_bond_fee(bond_mode, inputs, fee_settings)
    except Exception:
        logger.exception("Bond estimate failed")
        raise HTTPException(status_code=500, detail="bond estimate failed")

    payload = result.to_dict()
    payload.update(
        {
            "sell_rate_percent": _decimal_text(fee_settings.sell_rate_percent),
            "pga_multiplier": fee_settings.pga_multiplier,
            "asset_reference": fee_settings.asset_reference,
        }
    )
    return payload


@router.get("/settings", response_model=SettingsOut, tags=["Settings"])
def read_settings(store: SettingsStore = Depends(get_settings_store)) -> SettingsOut:
    """Committed settings, as shown on the public page (rate, multiplier, minimum, logo)."""
    return _settings_out(store.load())


# ============ Quick calculator ============

@router.post("/calculator/press", response_model=CalculatorStateOut, tags=["Calculator"])
def calculator_press(body: CalculatorPressIn) -> CalculatorStateOut:
    calc = ExpressionCalculator.from_state(body.display_text, body.expression_text)
    try:
        calc.press_many(body.tokens)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    for key in body.keys:
        calc.press_key(key)
    return CalculatorStateOut(**calc.state.to_dict())


# ============ Admin ============

@router.post("/admin/login", response_model=SettingsOut, tags=["Admin"])
def admin_login(body: LoginIn, gate: AdminGate = Depends(get_admin_gate)) -> SettingsOut:
    """Check the passcode and hand back a draft seeded from the committed settings."""
    try:
        draft = gate.authenticate(body.passcode)
    except InvalidCredential as e:
        raise HTTPException(status_code=401, detail=str(e))
    return _settings_out(draft)


@router.get("/admin/defaults", response_model=SettingsOut, tags=["Admin"])
def admin_defaults(gate: AdminGate = Depends(require_admin)) -> SettingsOut:
    """The factory record a draft resets to; nothing is committed."""
    draft = gate.store.reset_draft_to_default(gate.store.stage())
    return _settings_out(draft)


@router.put("/admin/settings", response_model=SettingsOut, tags=["Admin"])
def admin_commit_settings(body: SettingsIn, gate: AdminGate = Depends(require_admin)) -> SettingsOut:
    """Replace the committed settings with the submitted draft in one write."""
    draft = gate.store.stage().update(**body.model_dump())
    try:
        committed = gate.store.commit(draft)
    except SettingsValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except Exception:
        logger.exception("Settings commit failed")
        raise HTTPException(status_code=500, detail="settings commit failed")
    return _settings_out(committed)
