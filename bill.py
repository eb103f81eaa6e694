"""Bill model: print job records plus the bill arithmetic done before printing.

A ``PrintJob`` is the fully resolved content of one receipt. It is built from
the bill mapping sent by the billing UI (camelCase keys, as stored by the
backend) and the business settings from ``.env``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal, Mapping, Optional, Sequence, Tuple

DiscountType = Literal["fixed", "percentage"]

DISCOUNT_TYPES = ("fixed", "percentage")
DEFAULT_BUSINESS_NAME = "Your Business"


class BillError(ValueError):
    """Raised when a bill mapping cannot be turned into a print job."""


@dataclass(frozen=True)
class Discount:
    type: DiscountType
    value: float
    amount: float

    @property
    def is_active(self) -> bool:
        # A zero discount prints exactly like no discount at all
        return self.value > 0


@dataclass(frozen=True)
class LineItem:
    name: str
    quantity: float
    rate: float
    total: float
    discount: Optional[Discount] = None

    @property
    def gross(self) -> float:
        return self.quantity * self.rate


@dataclass(frozen=True)
class BusinessSettings:
    business_name: str = DEFAULT_BUSINESS_NAME
    address: str = ""
    phone: str = ""
    email: str = ""
    gst: str = ""
    terms_and_conditions: str = ""


@dataclass(frozen=True)
class PrintJob:
    business_name: str
    bill_number: str
    items: Tuple[LineItem, ...]
    grand_total: float
    address: str = ""
    phone: str = ""
    email: str = ""
    gst: str = ""
    date: str = ""
    customer_name: str = ""
    seller_name: str = ""
    payment_mode: str = ""
    subtotal: Optional[float] = None
    discount: Optional[Discount] = None
    notes: str = ""
    terms: str = ""


def discount_amount(base: float, discount_type: DiscountType, value: float) -> float:
    """Fixed discounts never exceed the base; percentages apply to it."""
    if discount_type == "fixed":
        return min(value, base)
    return base * value / 100


def _make_discount(
    base: float, discount_type: Optional[str], value: Optional[float]
) -> Optional[Discount]:
    if not value or value <= 0:
        return None
    kind = discount_type or "fixed"
    if kind not in DISCOUNT_TYPES:
        raise BillError(f"Unknown discount type: {discount_type!r}")
    return Discount(type=kind, value=value, amount=discount_amount(base, kind, value))


def make_line_item(
    name: str,
    quantity: float,
    rate: float,
    discount_type: Optional[str] = None,
    discount_value: Optional[float] = None,
) -> LineItem:
    """Build a line item whose total is quantity x rate minus its discount."""
    gross = quantity * rate
    discount = _make_discount(gross, discount_type, discount_value)
    total = gross - discount.amount if discount else gross
    return LineItem(name=name, quantity=quantity, rate=rate, total=total, discount=discount)


def calculate_totals(
    items: Sequence[LineItem],
    discount_type: Optional[str] = None,
    discount_value: Optional[float] = None,
) -> Tuple[float, Optional[Discount], float]:
    """Return (subtotal, order discount or None, grand total)."""
    subtotal = sum(item.total for item in items)
    discount = _make_discount(subtotal, discount_type, discount_value)
    grand_total = max(0.0, subtotal - (discount.amount if discount else 0.0))
    return subtotal, discount, grand_total


def format_bill_date(value: str) -> str:
    """Format an ISO timestamp like the bill preview: '18 Oct 2026, 02:30 PM'."""
    if not value:
        return ""
    try:
        dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return value
    if dt.tzinfo is not None:
        dt = dt.astimezone()
    return dt.strftime("%d %b %Y, %I:%M %p")


def _text(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    return str(value).strip()


def _number(data: Mapping[str, Any], key: str, required: bool = False) -> Optional[float]:
    value = data.get(key)
    if value is None or value == "":
        if required:
            raise BillError(f"Missing required field: {key}")
        return None
    if isinstance(value, bool):
        raise BillError(f"Field {key} must be a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise BillError(f"Field {key} must be a number, got {value!r}") from e


def _parse_item(raw: Any, index: int) -> LineItem:
    if not isinstance(raw, Mapping):
        raise BillError(f"Item #{index + 1} must be an object")
    name = _text(raw, "name")
    if not name:
        raise BillError(f"Item #{index + 1} has no name")
    quantity = _number(raw, "quantity", required=True)
    rate = _number(raw, "rate", required=True)
    discount_type = raw.get("discountType")
    discount_value = _number(raw, "discountValue")

    computed = make_line_item(name, quantity, rate, discount_type, discount_value)
    total = _number(raw, "total")
    amount = _number(raw, "discountAmount")
    discount = computed.discount
    if discount is not None and amount is not None:
        discount = Discount(type=discount.type, value=discount.value, amount=amount)
    return LineItem(
        name=name,
        quantity=quantity,
        rate=rate,
        total=computed.total if total is None else total,
        discount=discount,
    )


def build_print_job(data: Mapping[str, Any], settings: BusinessSettings) -> PrintJob:
    """Convert a bill mapping from the billing UI into an immutable PrintJob.

    Totals supplied by the UI are trusted as-is; missing ones are computed.
    """
    if not isinstance(data, Mapping):
        raise BillError("Bill must be a JSON object")

    bill_number = _text(data, "billNumber")
    if not bill_number:
        raise BillError("Missing required field: billNumber")

    raw_items = data.get("items")
    if not isinstance(raw_items, list) or not raw_items:
        raise BillError("Bill must contain at least one item")
    items = tuple(_parse_item(raw, i) for i, raw in enumerate(raw_items))

    subtotal, discount, grand_total = calculate_totals(
        items, data.get("discountType"), _number(data, "discountValue")
    )
    explicit_subtotal = _number(data, "subtotal")
    if explicit_subtotal is not None:
        subtotal = explicit_subtotal
    amount = _number(data, "discountAmount")
    if discount is not None and amount is not None:
        discount = Discount(type=discount.type, value=discount.value, amount=amount)
    explicit_total = _number(data, "grandTotal")
    if explicit_total is not None:
        grand_total = explicit_total

    return PrintJob(
        business_name=settings.business_name or DEFAULT_BUSINESS_NAME,
        address=settings.address,
        phone=settings.phone,
        email=settings.email,
        gst=settings.gst,
        bill_number=bill_number,
        date=format_bill_date(_text(data, "date")),
        customer_name=_text(data, "customerName"),
        seller_name=_text(data, "sellerName"),
        payment_mode=_text(data, "paymentMode"),
        items=items,
        subtotal=subtotal,
        discount=discount,
        grand_total=grand_total,
        notes=_text(data, "notes"),
        terms=settings.terms_and_conditions,
    )
