from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional
from uuid import UUID

QTY_STEP = Decimal("0.001")


def normalize_unit_label(unit: Optional[str]) -> str:
    """'kg', 'KG' and ' Kg ' all become 'KG'."""
    return (unit or "").strip().upper()


def normalize_id(value: Any) -> Optional[UUID]:
    if value is None:
        return None
    if isinstance(value, UUID):
        return value
    v = str(value).strip()
    if not v or v.lower() in {"undefined", "null", "none"}:
        return None
    try:
        return UUID(v)
    except ValueError:
        return None


def quantize_qty(q: Decimal) -> Decimal:
    return q.quantize(QTY_STEP, rounding=ROUND_HALF_UP)


def parse_qty(value: Any) -> Optional[Decimal]:
    """Coerce user input to a finite Decimal (accepts '1,5'); None when not a number."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        q = value
    else:
        raw = str(value).strip().replace(",", ".")
        if not raw:
            return None
        try:
            q = Decimal(raw)
        except InvalidOperation:
            return None
    if not q.is_finite():
        return None
    return quantize_qty(q)


def format_qty3(value: Any) -> str:
    q = parse_qty(value)
    if q is None:
        return "0.000"
    return f"{q:.3f}"
