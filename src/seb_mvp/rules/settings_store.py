"""Committed fee settings, admin drafts, and the passcode gate.

The committed record is what the fee model reads. Edits happen on a
``SettingsDraft`` that nothing else sees until ``SettingsStore.commit``
writes it through to storage in one step.
"""
from __future__ import annotations

import datetime
import hmac
import json
import logging
import threading
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any, Callable, Dict, Mapping, Optional, Protocol

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import KeyValueEntry
from ..settings import settings as app_settings
from .fee_engine import DEFAULT_FEE_SETTINGS, FeeSettings, leading_decimal

logger = logging.getLogger(__name__)

__all__ = [
    "AdminGate",
    "InvalidCredential",
    "KeyValueStorage",
    "MemoryKeyValueStorage",
    "SettingsDraft",
    "SettingsStore",
    "SettingsValidationError",
    "SqlKeyValueStorage",
    "settings_from_record",
    "settings_to_record",
]


class InvalidCredential(PermissionError):
    """Raised when the admin passcode does not match."""

    def __init__(self, message: str = "Access Denied"):
        super().__init__(message)


class SettingsValidationError(ValueError):
    """Raised when a draft falls outside the allowed parameter ranges."""


# -------------------------------
# Storage port
# -------------------------------

class KeyValueStorage(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def put(self, key: str, value: str) -> None: ...


class MemoryKeyValueStorage:
    """Process-local storage; handy for tests and throwaway hosts."""

    def __init__(self, initial: Optional[Mapping[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def put(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value


# single-statement upsert, so two first-ever writes cannot collide on the key
_UPSERT_DIALECTS = {"sqlite": sqlite.insert, "postgresql": postgresql.insert}


class SqlKeyValueStorage:
    """Storage backed by the ``kv_store`` table; each write is its own transaction."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def get(self, key: str) -> Optional[str]:
        try:
            with self._session_factory() as db:
                row = db.get(KeyValueEntry, key)
                return row.value if row is not None else None
        except SQLAlchemyError:
            logger.warning("Settings storage unavailable for %s; treating as unset.", key, exc_info=True)
            return None

    def put(self, key: str, value: str) -> None:
        now = datetime.datetime.now(datetime.timezone.utc)
        with self._session_factory() as db:
            with db.begin():
                dialect = db.get_bind().dialect.name
                if dialect in _UPSERT_DIALECTS:
                    stmt = _UPSERT_DIALECTS[dialect](KeyValueEntry).values(key=key, value=value, updated_at=now)
                    db.execute(
                        stmt.on_conflict_do_update(
                            index_elements=[KeyValueEntry.key],
                            set_={"value": value, "updated_at": now},
                        )
                    )
                    return
                row = db.get(KeyValueEntry, key)
                if row is None:
                    db.add(KeyValueEntry(key=key, value=value, updated_at=now))
                else:
                    row.value = value


# -------------------------------
# Record (de)serialization
# -------------------------------

def settings_to_record(fee_settings: FeeSettings) -> Dict[str, Any]:
    """JSON-ready record; amounts become numbers, which `load` reads back as Decimal."""
    return {
        "minBilling": float(fee_settings.min_billing),
        "sellRatePercent": float(fee_settings.sell_rate_percent),
        "pgaMultiplier": int(fee_settings.pga_multiplier),
        "logo": fee_settings.asset_reference,
    }


def _check_bounds(min_billing: Decimal, sell_rate_percent: Decimal, pga_multiplier: int) -> None:
    if not (min_billing.is_finite() and sell_rate_percent.is_finite()):
        raise SettingsValidationError("settings values must be finite numbers")
    if min_billing < 0:
        raise SettingsValidationError("minimum billing must be >= 0")
    if sell_rate_percent < 0:
        raise SettingsValidationError("sell rate percent must be >= 0")
    if pga_multiplier < 1:
        raise SettingsValidationError("PGA multiplier must be >= 1")


def settings_from_record(record: Mapping[str, Any]) -> FeeSettings:
    """
    Build settings from a stored record; absent fields take their default.

    Values outside the allowed ranges (including NaN/Infinity, which JSON
    readers accept) raise ``SettingsValidationError``.
    """
    merged = {**settings_to_record(DEFAULT_FEE_SETTINGS), **dict(record)}
    if "assetReference" in record and "logo" not in record:
        merged["logo"] = record["assetReference"]
    min_billing = Decimal(str(merged["minBilling"]))
    sell_rate_percent = Decimal(str(merged["sellRatePercent"]))
    pga_multiplier = int(merged["pgaMultiplier"])
    _check_bounds(min_billing, sell_rate_percent, pga_multiplier)
    return FeeSettings(
        min_billing=min_billing,
        sell_rate_percent=sell_rate_percent,
        pga_multiplier=pga_multiplier,
        asset_reference=str(merged["logo"]),
    )


# -------------------------------
# Draft
# -------------------------------

def _coerce_decimal(raw: Any, default: str) -> Decimal:
    value = leading_decimal(raw)
    return value if value is not None else Decimal(default)


def _coerce_multiplier(raw: Any) -> int:
    value = leading_decimal(raw)
    if value is None:
        return 1
    whole = int(value)
    # a zero multiplier is never meaningful; treat it like a blank field
    return whole or 1


@dataclass
class SettingsDraft:
    min_billing: Decimal = DEFAULT_FEE_SETTINGS.min_billing
    sell_rate_percent: Decimal = DEFAULT_FEE_SETTINGS.sell_rate_percent
    pga_multiplier: int = DEFAULT_FEE_SETTINGS.pga_multiplier
    asset_reference: str = DEFAULT_FEE_SETTINGS.asset_reference
    dirty: bool = field(default=False, compare=False)

    @classmethod
    def from_settings(cls, fee_settings: FeeSettings) -> "SettingsDraft":
        return cls(
            min_billing=fee_settings.min_billing,
            sell_rate_percent=fee_settings.sell_rate_percent,
            pga_multiplier=fee_settings.pga_multiplier,
            asset_reference=fee_settings.asset_reference,
        )

    def update(self, **fields: Any) -> "SettingsDraft":
        """Apply raw form values, coercing unparseable numbers like the admin form does."""
        for name, raw in fields.items():
            if name == "min_billing":
                self.min_billing = _coerce_decimal(raw, "0")
            elif name == "sell_rate_percent":
                self.sell_rate_percent = _coerce_decimal(raw, "0")
            elif name == "pga_multiplier":
                self.pga_multiplier = _coerce_multiplier(raw)
            elif name == "asset_reference":
                self.asset_reference = "" if raw is None else str(raw)
            else:
                raise TypeError(f"unknown settings field: {name}")
            self.dirty = True
        return self

    def load_defaults(self) -> "SettingsDraft":
        self.min_billing = DEFAULT_FEE_SETTINGS.min_billing
        self.sell_rate_percent = DEFAULT_FEE_SETTINGS.sell_rate_percent
        self.pga_multiplier = DEFAULT_FEE_SETTINGS.pga_multiplier
        self.asset_reference = DEFAULT_FEE_SETTINGS.asset_reference
        self.dirty = True
        return self

    def to_settings(self) -> FeeSettings:
        _check_bounds(self.min_billing, self.sell_rate_percent, self.pga_multiplier)
        return FeeSettings(
            min_billing=self.min_billing,
            sell_rate_percent=self.sell_rate_percent,
            pga_multiplier=int(self.pga_multiplier),
            asset_reference=self.asset_reference,
        )


# -------------------------------
# Store
# -------------------------------

class SettingsStore:
    """
    Single committed settings record over a key-value storage port.

    ``load`` always reflects the last successful ``commit``; a missing key is
    not an error and yields the compiled-in defaults. There is no in-memory
    snapshot: every ``load`` reads storage, and every ``commit`` is one
    storage write. Commits are serialized across every store in the process,
    so readers observe either the previous or the new record in full. A
    stored record that is unparseable or out of range reads as the defaults.
    """

    _commit_lock = threading.Lock()

    def __init__(self, storage: KeyValueStorage, key: Optional[str] = None):
        self.storage = storage
        self.key = key or app_settings.settings_storage_key

    def load(self) -> FeeSettings:
        raw = self.storage.get(self.key)
        if raw is None:
            return DEFAULT_FEE_SETTINGS
        try:
            # floats read as Decimal so stored digits survive exactly
            record = json.loads(raw, parse_float=Decimal)
            if not isinstance(record, Mapping):
                raise ValueError("settings record must be a JSON object")
            return settings_from_record(record)
        except (ValueError, TypeError, ArithmeticError):
            logger.warning("Stored settings under %s are unreadable; using defaults.", self.key, exc_info=True)
            return DEFAULT_FEE_SETTINGS

    def stage(self, draft: Optional[SettingsDraft] = None) -> SettingsDraft:
        """Return a working copy; seeded from ``draft`` when given, else from the committed record."""
        if draft is not None:
            return replace(draft, dirty=False)
        return SettingsDraft.from_settings(self.load())

    def commit(self, draft: SettingsDraft) -> FeeSettings:
        new_settings = draft.to_settings()
        payload = json.dumps(settings_to_record(new_settings))
        with self._commit_lock:
            self.storage.put(self.key, payload)
        draft.dirty = False
        logger.info(
            "Committed settings: min_billing=%s sell_rate_percent=%s pga_multiplier=%s",
            new_settings.min_billing,
            new_settings.sell_rate_percent,
            new_settings.pga_multiplier,
        )
        return new_settings

    def reset_draft_to_default(self, draft: SettingsDraft) -> SettingsDraft:
        """Overwrite only the draft; the committed record is untouched until commit."""
        logger.info("Draft settings reset to defaults (not yet committed).")
        return draft.load_defaults()


# -------------------------------
# Admin gate
# -------------------------------

class AdminGate:
    """Shared-passcode check in front of the settings editor."""

    def __init__(self, store: SettingsStore, passcode: Optional[str] = None):
        self.store = store
        self._passcode = app_settings.admin_passcode if passcode is None else passcode

    def check(self, candidate: Optional[str]) -> bool:
        if not candidate:
            return False
        return hmac.compare_digest(candidate.encode("utf-8"), self._passcode.encode("utf-8"))

    def authenticate(self, candidate: Optional[str]) -> SettingsDraft:
        """Open the editor: a draft seeded from the committed settings, or ``InvalidCredential``."""
        if not self.check(candidate):
            logger.warning("Rejected admin authentication attempt.")
            raise InvalidCredential()
        logger.info("Admin authenticated; staging draft from committed settings.")
        return self.store.stage()
