"""Exact token amounts with unit suffixes.

Amounts are stored as integers in the currency's base unit (wei for ether,
the smallest indivisible SCM unit for the sale token). Suffixes such as
``gwei`` or ``eth`` are pure multipliers applied once while parsing; the
stored magnitude never changes afterwards, so ``parse(format(v)) == v`` holds
for every value.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Tuple

DISPLAY_DECIMALS = 18

_DECIMAL_RE = re.compile(r"^(?P<whole>[0-9]*)(?:\.(?P<frac>[0-9]*))?$")
_HEX_RE = re.compile(r"^0x(?P<digits>[0-9a-f]+)$")

_WEI_FAMILY: Tuple[Tuple[str, int], ...] = (
    ("pwei", 15),
    ("twei", 12),
    ("gwei", 9),
    ("mwei", 6),
    ("kwei", 3),
    ("wei", 0),
)


class ParseError(ValueError):
    """Raised when an amount string cannot be turned into base units."""

    def __init__(self, text: str, reason: str) -> None:
        super().__init__(f"invalid amount {text!r}: {reason}")
        self.text = text
        self.reason = reason


@dataclass(frozen=True)
class Currency:
    """Describes how one currency's amounts are written and displayed.

    ``suffixes`` pairs each accepted suffix with a power-of-ten exponent. The
    table is matched longest suffix first, so ``ether`` wins over ``eth`` and
    ``gwei`` over ``wei`` regardless of declaration order.
    """

    name: str
    display_suffix: str
    suffixes: Tuple[Tuple[str, int], ...]
    decimals: int = DISPLAY_DECIMALS
    default_exponent: int = DISPLAY_DECIMALS

    def split_suffix(self, text: str) -> tuple[str, int]:
        for suffix, exponent in sorted(self.suffixes, key=lambda item: -len(item[0])):
            if text.endswith(suffix):
                return text[: -len(suffix)], exponent
        return text, self.default_exponent


ETH = Currency(
    name="ETH",
    display_suffix="eth",
    suffixes=(("ether", 18), ("eth", 18)) + _WEI_FAMILY,
)

SCM = Currency(
    name="SCM",
    display_suffix="scm",
    suffixes=(("scm", 18),) + _WEI_FAMILY,
)


class AmountValue:
    """Immutable, non-negative token amount held in base units."""

    __slots__ = ("_magnitude", "_currency")

    def __init__(self, magnitude: int, currency: Currency = ETH) -> None:
        if isinstance(magnitude, bool) or not isinstance(magnitude, int):
            raise TypeError(f"amount magnitude must be an int, got {type(magnitude).__name__}")
        if magnitude < 0:
            raise ValueError(f"amount magnitude must be non-negative, got {magnitude}")
        object.__setattr__(self, "_magnitude", magnitude)
        object.__setattr__(self, "_currency", currency)

    def __setattr__(self, name: str, value: object) -> None:
        raise AttributeError("AmountValue is immutable")

    @classmethod
    def parse(cls, text: str, currency: Currency = ETH) -> "AmountValue":
        """Parse ``text`` such as ``5gwei``, ``0x15`` or ``1.5eth``.

        Text without a recognised suffix is read in whole units (10^18 base
        units for both shipped currencies).
        """

        if not isinstance(text, str):
            raise ParseError(str(text), "expected a string")
        normalized = text.strip().lower()
        if not normalized:
            raise ParseError(text, "empty amount")

        digits, exponent = currency.split_suffix(normalized)
        multiplier = 10**exponent

        hex_match = _HEX_RE.match(digits)
        if hex_match:
            return cls(int(hex_match.group("digits"), 16) * multiplier, currency)
        if digits.startswith("0x"):
            raise ParseError(text, "malformed hexadecimal digits")

        decimal_match = _DECIMAL_RE.match(digits)
        if not decimal_match:
            raise ParseError(text, "expected decimal digits or a 0x-prefixed hex number")
        whole = decimal_match.group("whole")
        frac = decimal_match.group("frac") or ""
        if not whole and not frac:
            raise ParseError(text, "no digits before the unit suffix")

        magnitude = int(whole or "0") * multiplier
        if frac:
            scaled = int(frac) * multiplier
            scale = 10 ** len(frac)
            if scaled % scale:
                raise ParseError(text, "more precision than the base unit allows")
            magnitude += scaled // scale
        return cls(magnitude, currency)

    @classmethod
    def from_base_units(cls, magnitude: int, currency: Currency = ETH) -> "AmountValue":
        """Wrap a raw integer returned from a contract read."""

        return cls(int(magnitude), currency)

    @property
    def currency(self) -> Currency:
        return self._currency

    def as_base_units(self) -> int:
        return self._magnitude

    def format(self) -> str:
        scale = 10**self._currency.decimals
        whole, frac = divmod(self._magnitude, scale)
        return f"{whole}.{frac:0{self._currency.decimals}d}{self._currency.display_suffix}"

    def with_currency(self, currency: Currency) -> "AmountValue":
        return AmountValue(self._magnitude, currency)

    def __str__(self) -> str:
        return self.format()

    def __repr__(self) -> str:
        return f"AmountValue({self._magnitude}, {self._currency.name})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, AmountValue):
            return self._magnitude == other._magnitude
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._magnitude)

    def __lt__(self, other: "AmountValue") -> bool:
        return self._magnitude < _magnitude_of(other)

    def __le__(self, other: "AmountValue") -> bool:
        return self._magnitude <= _magnitude_of(other)

    def __gt__(self, other: "AmountValue") -> bool:
        return self._magnitude > _magnitude_of(other)

    def __ge__(self, other: "AmountValue") -> bool:
        return self._magnitude >= _magnitude_of(other)

    def __add__(self, other: "AmountValue") -> "AmountValue":
        return AmountValue(self._magnitude + _magnitude_of(other), self._currency)

    def __sub__(self, other: "AmountValue") -> "AmountValue":
        remaining = self._magnitude - _magnitude_of(other)
        if remaining < 0:
            raise ValueError(f"cannot subtract {other} from {self}")
        return AmountValue(remaining, self._currency)

    def __bool__(self) -> bool:
        return self._magnitude != 0


def _magnitude_of(value: object) -> int:
    if isinstance(value, AmountValue):
        return value.as_base_units()
    raise TypeError(f"expected AmountValue, got {type(value).__name__}")


def max_amount(first: AmountValue, second: AmountValue) -> AmountValue:
    """Return the larger of two amounts, keeping ``first``'s currency on ties."""

    return second if second > first else first
