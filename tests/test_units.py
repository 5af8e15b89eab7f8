from __future__ import annotations

import pytest

from scm_ico.units import ETH, SCM, AmountValue, ParseError, max_amount

WEI_PER_ETH = 10**18


@pytest.mark.parametrize(
    "text, expected",
    [
        ("0", 0),
        ("1", WEI_PER_ETH),
        ("15", 15 * WEI_PER_ETH),
        ("0x1", WEI_PER_ETH),
        ("0x15", 21 * WEI_PER_ETH),
        ("5wei", 5),
        ("5kwei", 5_000),
        ("5mwei", 5_000_000),
        ("5gwei", 5_000_000_000),
        ("5twei", 5_000_000_000_000),
        ("5pwei", 5_000_000_000_000_000),
        ("1500pwei", 3 * WEI_PER_ETH // 2),
        ("5eth", 5 * WEI_PER_ETH),
        ("5ether", 5 * WEI_PER_ETH),
        ("  5GWEI ", 5_000_000_000),
        ("0x10wei", 16),
        ("1.5eth", 3 * WEI_PER_ETH // 2),
        ("0.000000001eth", 10**9),
    ],
)
def test_parse_eth_amounts(text: str, expected: int) -> None:
    assert AmountValue.parse(text).as_base_units() == expected


def test_parse_scm_suffixes() -> None:
    assert AmountValue.parse("3scm", SCM).as_base_units() == 3 * WEI_PER_ETH
    assert AmountValue.parse("7", SCM).as_base_units() == 7 * WEI_PER_ETH
    assert AmountValue.parse("7gwei", SCM).as_base_units() == 7 * 10**9


def test_eth_suffix_is_not_accepted_for_scm() -> None:
    with pytest.raises(ParseError):
        AmountValue.parse("1eth", SCM)


@pytest.mark.parametrize(
    "text",
    ["", "   ", "eth", "-1eth", "+1", "1_000", "1.2.3", "abc", "0x", "0xzz", "0x1.5", "1.5wei", "."],
)
def test_parse_rejects_malformed_text(text: str) -> None:
    with pytest.raises(ParseError) as excinfo:
        AmountValue.parse(text)
    assert repr(text) in str(excinfo.value)


def test_parse_error_is_value_error() -> None:
    with pytest.raises(ValueError):
        AmountValue.parse("lots")


def test_format_uses_eighteen_decimals_and_canonical_suffix() -> None:
    assert AmountValue.parse("10eth").format() == "10.000000000000000000eth"
    assert AmountValue.parse("1wei").format() == "0.000000000000000001eth"
    assert str(AmountValue.parse("2.5scm", SCM)) == "2.500000000000000000scm"
    assert AmountValue.parse("1500pwei").format() == AmountValue.parse("1.5eth").format() == "1.500000000000000000eth"


def test_format_then_parse_returns_same_amount() -> None:
    for text in ("0", "1wei", "123456789gwei", "0x15", "99.999eth"):
        value = AmountValue.parse(text)
        assert AmountValue.parse(value.format(), value.currency) == value


def test_equality_ignores_currency_but_ordering_uses_magnitude() -> None:
    eth = AmountValue.parse("1eth")
    scm = AmountValue.parse("1scm", SCM)
    assert eth == scm
    assert hash(eth) == hash(scm)
    assert AmountValue.parse("1gwei") < eth
    assert eth >= AmountValue.parse("1000000000gwei")


def test_arithmetic_keeps_left_currency() -> None:
    total = AmountValue.parse("1scm", SCM) + AmountValue.parse("1eth")
    assert total.currency is SCM
    assert total.as_base_units() == 2 * WEI_PER_ETH
    assert (AmountValue.parse("3eth") - AmountValue.parse("1eth")).as_base_units() == 2 * WEI_PER_ETH


def test_subtraction_below_zero_raises() -> None:
    with pytest.raises(ValueError):
        AmountValue.parse("1wei") - AmountValue.parse("2wei")


def test_from_base_units_rejects_negative_values() -> None:
    with pytest.raises(ValueError):
        AmountValue.from_base_units(-1)


def test_amounts_are_immutable() -> None:
    value = AmountValue.parse("1eth")
    with pytest.raises(AttributeError):
        value._magnitude = 5  # type: ignore[misc]


def test_max_amount_prefers_larger_value() -> None:
    small = AmountValue.parse("1eth")
    large = AmountValue.parse("10eth")
    assert max_amount(small, large) is large
    assert max_amount(large, small) is large
    assert ETH.display_suffix == "eth"
