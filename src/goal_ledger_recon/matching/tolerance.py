"""Amount tolerance band shared by every matching pass."""

from decimal import Decimal
from typing import Optional, Union

from ..config import ToleranceSettings

Amount = Union[Decimal, int, str]


def _to_decimal(value: Amount) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class ToleranceEvaluator:
    """
    Decides whether two amounts match.

    Two amounts match when their difference is at most
    ``max(percent * max(|a|, |b|), minimum)``.
    """

    def __init__(
        self,
        percent: Amount = Decimal("0.01"),
        minimum: Amount = Decimal("1000"),
    ):
        self.percent = _to_decimal(percent)
        self.minimum = _to_decimal(minimum)

    @classmethod
    def from_settings(cls, settings: Optional[ToleranceSettings] = None) -> "ToleranceEvaluator":
        settings = settings or ToleranceSettings()
        return cls(percent=settings.percent, minimum=settings.minimum)

    def tolerance_for(self, a: Amount, b: Amount) -> Decimal:
        larger = max(abs(_to_decimal(a)), abs(_to_decimal(b)))
        return max(self.percent * larger, self.minimum)

    @staticmethod
    def difference(a: Amount, b: Amount) -> Decimal:
        return abs(_to_decimal(a) - _to_decimal(b))

    def within_tolerance(self, a: Amount, b: Amount) -> bool:
        return self.difference(a, b) <= self.tolerance_for(a, b)

    def __repr__(self) -> str:
        return f"ToleranceEvaluator(percent={self.percent}, minimum={self.minimum})"
