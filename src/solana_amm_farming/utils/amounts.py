"""Raw integer vs. human-scaled token amounts."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

from ..errors import ValidationError
from .constants import MAX_U64

HumanValue = Union[Decimal, int, float, str]


def to_decimal(value: HumanValue) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # repr() keeps the shortest round-tripping form, e.g. 0.1 -> "0.1"
        return Decimal(repr(value))
    try:
        return Decimal(str(value).strip())
    except ArithmeticError as exc:
        raise ValidationError(f"not a number: {value!r}") from exc


@dataclass(frozen=True, slots=True)
class TokenAmount:
    """A token quantity kept in raw base units together with its decimal scale."""

    raw: int
    decimals: int

    def __post_init__(self) -> None:
        if self.raw < 0:
            raise ValidationError(f"token amounts cannot be negative: {self.raw}")
        if self.decimals < 0:
            raise ValidationError(f"decimals cannot be negative: {self.decimals}")

    @classmethod
    def from_human(cls, value: HumanValue, decimals: int) -> "TokenAmount":
        scaled = to_decimal(value).scaleb(decimals)
        if not scaled.is_finite():
            raise ValidationError(f"not a finite amount: {value!r}")
        try:
            raw = int(scaled.quantize(Decimal(1), rounding=ROUND_HALF_UP))
        except InvalidOperation as exc:
            raise ValidationError(f"amount {value!r} is out of range for {decimals} decimals") from exc
        if raw > MAX_U64:
            raise ValidationError(f"amount {value!r} exceeds the u64 range for {decimals} decimals")
        return cls(raw=raw, decimals=decimals)

    @classmethod
    def zero(cls, decimals: int) -> "TokenAmount":
        return cls(raw=0, decimals=decimals)

    def to_human(self) -> Decimal:
        return Decimal(self.raw).scaleb(-self.decimals)

    def to_float(self) -> float:
        return float(self.to_human())

    def is_zero(self) -> bool:
        return self.raw == 0

    def __str__(self) -> str:
        return format(self.to_human(), "f")


__all__ = ["HumanValue", "TokenAmount", "to_decimal"]
