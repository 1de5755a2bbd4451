"""Fixed-point token amounts stored in the token's smallest unit."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, localcontext

from .exceptions import IncompatibleUnits, ValidationError

BPS_DENOMINATOR = 10_000
MAX_DECIMALS = 77
DECIMAL_PRECISION = 160


@dataclass(frozen=True, order=False)
class Amount:
    """Unsigned integer quantity scaled by ``10 ** decimals``.

    Human-readable values are derived on demand; only ``raw`` is stored.
    Conversions from decimal text that produce a fractional smallest unit are
    floored toward zero.
    """

    raw: int
    decimals: int

    def __post_init__(self) -> None:
        if not isinstance(self.raw, int) or isinstance(self.raw, bool):
            raise ValidationError("Amount raw value must be an integer", field="raw", value=self.raw)
        if self.raw < 0:
            raise ValidationError("Amount cannot be negative", field="raw", value=self.raw)
        if not isinstance(self.decimals, int) or not 0 <= self.decimals <= MAX_DECIMALS:
            raise ValidationError(
                "Decimals must be an integer between 0 and 77",
                field="decimals",
                value=self.decimals,
            )

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------
    @classmethod
    def from_raw(cls, raw: int, decimals: int) -> Amount:
        return cls(int(raw), decimals)

    @classmethod
    def zero(cls, decimals: int) -> Amount:
        return cls(0, decimals)

    @classmethod
    def from_decimal_string(cls, text: str | Decimal, decimals: int) -> Amount:
        """Parse a human-facing quantity such as ``"1.25"``.

        Digits beyond ``decimals`` are truncated (floor toward zero).
        """

        if isinstance(text, Decimal):
            quantity = text
        else:
            try:
                quantity = Decimal(str(text).strip())
            except (ValueError, InvalidOperation) as exc:
                raise ValidationError(
                    "Invalid decimal amount",
                    field="amount",
                    value=text,
                    details={"error": str(exc)},
                ) from exc

        if not quantity.is_finite():
            raise ValidationError("Amount must be finite", field="amount", value=text)
        if quantity < 0:
            raise ValidationError("Amount cannot be negative", field="amount", value=text)

        # Scale on the digit tuple so no context precision can round the value up.
        _, digits, exponent = quantity.as_tuple()
        coefficient = int("".join(map(str, digits)) or "0")
        shift = exponent + decimals
        if shift >= 0:
            raw = coefficient * 10**shift
        else:
            raw = coefficient // 10**-shift
        return cls(raw, decimals)

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------
    def to_decimal(self) -> Decimal:
        with localcontext() as ctx:
            ctx.prec = DECIMAL_PRECISION
            return Decimal(self.raw).scaleb(-self.decimals)

    def to_decimal_string(self) -> str:
        """Render the amount without exponent notation or trailing zeros."""

        if self.decimals == 0:
            return str(self.raw)
        whole, frac = divmod(self.raw, 10**self.decimals)
        frac_text = str(frac).rjust(self.decimals, "0").rstrip("0")
        return f"{whole}.{frac_text}" if frac_text else str(whole)

    def __str__(self) -> str:
        return self.to_decimal_string()

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------
    def _check_units(self, other: object) -> Amount:
        if not isinstance(other, Amount):
            raise IncompatibleUnits(
                "Amounts can only be combined with other amounts", field="other", value=other
            )
        if other.decimals != self.decimals:
            raise IncompatibleUnits(
                "Amounts have different decimals",
                field="decimals",
                value=other.decimals,
                details={"expected": self.decimals},
            )
        return other

    def add(self, other: Amount) -> Amount:
        other = self._check_units(other)
        return Amount(self.raw + other.raw, self.decimals)

    def sub(self, other: Amount) -> Amount:
        other = self._check_units(other)
        if other.raw > self.raw:
            raise ValidationError(
                "Subtraction would produce a negative amount",
                field="other",
                value=other.raw,
                details={"minuend": self.raw},
            )
        return Amount(self.raw - other.raw, self.decimals)

    def compare(self, other: Amount) -> int:
        other = self._check_units(other)
        return (self.raw > other.raw) - (self.raw < other.raw)

    def apply_bps(self, bps: int) -> Amount:
        """Scale by ``bps / 10000``, flooring toward zero."""

        if bps < 0:
            raise ValidationError("Basis points cannot be negative", field="bps", value=bps)
        return Amount(self.raw * bps // BPS_DENOMINATOR, self.decimals)

    def less_slippage(self, slippage_bps: int) -> Amount:
        if not 0 <= slippage_bps < BPS_DENOMINATOR:
            raise ValidationError(
                "Slippage must be between 0 and 9999 bps", field="slippage_bps", value=slippage_bps
            )
        return self.apply_bps(BPS_DENOMINATOR - slippage_bps)

    def is_zero(self) -> bool:
        return self.raw == 0

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Amount):
            return NotImplemented
        return self.compare(other) == 0

    def __hash__(self) -> int:
        return hash((self.raw, self.decimals))

    __add__ = add
    __sub__ = sub

    def __lt__(self, other: Amount) -> bool:
        return self.compare(other) < 0

    def __le__(self, other: Amount) -> bool:
        return self.compare(other) <= 0

    def __gt__(self, other: Amount) -> bool:
        return self.compare(other) > 0

    def __ge__(self, other: Amount) -> bool:
        return self.compare(other) >= 0
