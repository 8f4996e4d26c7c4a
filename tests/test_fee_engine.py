from decimal import Decimal

import pytest

from seb_mvp.rules.fee_engine import (
    DEFAULT_FEE_SETTINGS,
    BondInputs,
    BondMode,
    FeeSettings,
    compute_bond_fee,
    format_sell_value,
    parse_amount,
    total_bond_value,
)


def test_standard_mode_below_minimum():
    result = compute_bond_fee(
        BondMode.STANDARD, BondInputs(invoice_value="1000", duties_value="50")
    )

    assert result.total_bond_value == Decimal("1050")
    assert result.sell_value_display == "4.200000"
    assert result.is_below_min is True
    assert result.advisory == "Minimum Billing Applies: $65.00"
    assert result.clipboard_text == "$4.200000"


def test_pga_mode_applies_multiplier():
    result = compute_bond_fee(
        "pga", BondInputs(pga_invoice_value="500", non_pga_invoice_value="200")
    )

    assert result.mode is BondMode.PGA
    assert result.total_bond_value == Decimal("1700")
    assert result.total_bond_display == "1700"
    assert result.sell_value_display == "6.800000"
    assert result.is_below_min is True


def test_standard_mode_above_minimum():
    result = compute_bond_fee(
        BondMode.STANDARD, BondInputs(invoice_value=20000, duties_value=1000)
    )

    assert result.total_bond_value == Decimal("21000")
    assert result.sell_value_display == "84.000000"
    assert result.is_below_min is False
    assert result.advisory == "Standard Logic Active"


def test_inactive_mode_fields_are_kept_but_ignored():
    inputs = BondInputs(
        invoice_value="100",
        duties_value="10",
        pga_invoice_value="1000",
        non_pga_invoice_value="1",
    )

    assert total_bond_value(BondMode.STANDARD, inputs, DEFAULT_FEE_SETTINGS) == Decimal("110")
    assert total_bond_value(BondMode.PGA, inputs, DEFAULT_FEE_SETTINGS) == Decimal("3001")
    assert inputs.with_values(invoice_value="").pga_invoice_value == "1000"
    assert BondInputs.clear() == BondInputs()


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("", Decimal("0")),
        (None, Decimal("0")),
        ("abc", Decimal("0")),
        ("12abc", Decimal("12")),
        (" 7.5", Decimal("7.5")),
        (".25", Decimal("0.25")),
        ("1e3", Decimal("1000")),
        ("-5", Decimal("0")),
        ("nan", Decimal("0")),
        (float("inf"), Decimal("0")),
        (12.5, Decimal("12.5")),
    ],
)
def test_parse_amount_coerces_bad_input_to_zero(raw, expected):
    assert parse_amount(raw) == expected


@pytest.mark.parametrize("mode", [BondMode.STANDARD, BondMode.PGA])
def test_zero_total_never_flags_minimum(mode):
    settings = FeeSettings(
        min_billing=Decimal("1000"), sell_rate_percent=Decimal("5"), pga_multiplier=3
    )
    result = compute_bond_fee(mode, BondInputs(), settings)

    assert result.total_bond_value == 0
    assert result.sell_value_display == "0.000000"
    assert result.is_below_min is False


def test_minimum_comparison_uses_unrounded_sell_value():
    # 16249.9999 * 0.40% = 64.9999996, which displays as 65.000000
    result = compute_bond_fee(
        BondMode.STANDARD, BondInputs(invoice_value="16249.9999")
    )

    assert result.sell_value == Decimal("64.9999996")
    assert result.sell_value_display == "65.000000"
    assert result.is_below_min is True


def test_custom_settings_flow_through():
    settings = FeeSettings(
        min_billing=Decimal("10"), sell_rate_percent=Decimal("1.5"), pga_multiplier=2
    )
    result = compute_bond_fee(
        BondMode.PGA,
        BondInputs(pga_invoice_value="400", non_pga_invoice_value="200"),
        settings,
    )

    assert result.total_bond_value == Decimal("1000")
    assert result.sell_value_display == "15.000000"
    assert result.is_below_min is False
    assert result.to_dict()["min_billing"] == "10.00"


def test_repeated_calls_are_identical():
    inputs = BondInputs(invoice_value="1234.56", duties_value="78.9")

    first = compute_bond_fee(BondMode.STANDARD, inputs)
    second = compute_bond_fee(BondMode.STANDARD, inputs)

    assert first == second
    assert first.to_dict() == second.to_dict()


@pytest.mark.parametrize(
    "raw, expected",
    [("with", BondMode.PGA), ("PGA", BondMode.PGA), ("without", BondMode.STANDARD), (None, BondMode.STANDARD)],
)
def test_bond_mode_parse_aliases(raw, expected):
    assert BondMode.parse(raw) is expected


def test_bond_mode_parse_rejects_unknown():
    with pytest.raises(ValueError):
        BondMode.parse("bogus")


def test_format_sell_value_handles_large_totals():
    assert format_sell_value(Decimal("123456789012345678901234567.5")) == (
        "123456789012345678901234567.500000"
    )
