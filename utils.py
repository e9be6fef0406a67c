from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

from errors import ValidationError

WEIGHT_QUANTUM = Decimal("0.01")

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def clean_text(value: Optional[str]) -> str:
    return (value or "").strip()

def parse_weight(value: Any, field: str, positive: bool = False, non_negative: bool = False) -> Decimal:
    """Operator-entered weight as a Decimal rounded to the scale's 0.01 resolution."""
    if value is None or isinstance(value, bool) or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{field} is required", field=field)
    try:
        d = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(f"{field} must be a number, got {value!r}", field=field)
    if not d.is_finite():
        raise ValidationError(f"{field} must be a finite number", field=field)
    d = d.quantize(WEIGHT_QUANTUM, rounding=ROUND_HALF_UP)
    if positive and d <= 0:
        raise ValidationError(f"{field} must be greater than zero", field=field)
    if non_negative and d < 0:
        raise ValidationError(f"{field} cannot be negative", field=field)
    return d

def compute_net(gross: Decimal, tare: Decimal) -> Decimal:
    return (Decimal(gross) - Decimal(tare)).quantize(WEIGHT_QUANTUM)
