"""
Invoice data model and builder.

An InvoicePayload is the canonical plaintext that gets encrypted for the
payer. The builder turns user-entered fields into one, evaluating every
check so a single attempt reports the complete set of problems.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional

from .errors import ValidationError
from .money import Number, line_amount, sum_amounts, to_decimal, to_number


_UNIT_PRICE_KEYS = ("unit_price", "unitPrice", "price")


@dataclass(frozen=True)
class LineItem:
    """A single billed line: description, quantity and unit price."""

    description: str
    quantity: Number
    unit_price: Number

    @property
    def amount(self) -> Number:
        return to_number(line_amount(self.quantity, self.unit_price))


@dataclass(frozen=True)
class Totals:
    subtotal: Number
    total: Number

    @classmethod
    def from_line_items(cls, line_items: Iterable[LineItem]) -> Totals:
        amount = sum_amounts((item.quantity, item.unit_price) for item in line_items)
        return cls(subtotal=amount, total=amount)


@dataclass(frozen=True)
class InvoicePayload:
    """The plaintext invoice. Totals are computed once and embedded."""

    title: str
    payer: str
    line_items: tuple[LineItem, ...]
    totals: Totals
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class ReceivedInvoice:
    """An inbound invoice that decrypted and parsed successfully.

    ``payee`` comes from transport metadata; the payload never asserts
    its own sender.
    """

    message_id: str
    payee: str
    payload: InvoicePayload = field(repr=False)

    @property
    def title(self) -> str:
        return self.payload.title

    @property
    def payer(self) -> str:
        return self.payload.payer

    @property
    def line_items(self) -> tuple[LineItem, ...]:
        return self.payload.line_items

    @property
    def totals(self) -> Totals:
        return self.payload.totals

    @property
    def created_at(self) -> Optional[datetime]:
        return self.payload.created_at


def build_invoice(
    title: str,
    payer: str,
    line_items: Iterable[LineItem | Mapping[str, Any]],
    now: Optional[datetime] = None,
) -> InvoicePayload:
    """Validate user input and return the canonical payload.

    Raises ValidationError listing every failed field.
    """
    problems: dict[str, str] = {}

    clean_title = (title or "").strip()
    if not clean_title:
        problems["title"] = "Enter a title for the invoice"

    clean_payer = (payer or "").strip()
    if not clean_payer:
        problems["payer"] = "Select the person who will pay the invoice"

    items = list(line_items or [])
    if not items:
        problems["line_items"] = "Add at least one line item"

    normalized: list[LineItem] = []
    for index, raw in enumerate(items):
        item = _normalize_line_item(raw, f"line_items[{index}]", problems)
        if item is not None:
            normalized.append(item)

    if problems:
        raise ValidationError(problems)

    created_at = now or datetime.now(timezone.utc)
    return InvoicePayload(
        title=clean_title,
        payer=clean_payer,
        line_items=tuple(normalized),
        totals=Totals.from_line_items(normalized),
        created_at=created_at,
    )


def _normalize_line_item(
    raw: LineItem | Mapping[str, Any],
    prefix: str,
    problems: dict[str, str],
) -> Optional[LineItem]:
    if isinstance(raw, LineItem):
        description, quantity, unit_price = raw.description, raw.quantity, raw.unit_price
    elif isinstance(raw, Mapping):
        description = raw.get("description")
        quantity = raw.get("quantity")
        unit_price = next((raw[k] for k in _UNIT_PRICE_KEYS if k in raw), None)
    else:
        problems[prefix] = "Line item must have a description, quantity and price"
        return None

    clean_description = description.strip() if isinstance(description, str) else ""
    qty = _coerce(quantity)
    price = _coerce(unit_price)

    item_problems = line_item_problems(clean_description, qty, price, prefix)
    if item_problems:
        problems.update(item_problems)
        return None
    return LineItem(
        description=clean_description,
        quantity=to_number(qty),
        unit_price=to_number(price),
    )


def line_item_problems(
    description: str,
    quantity: Optional[Decimal],
    unit_price: Optional[Decimal],
    prefix: str = "",
) -> dict[str, str]:
    """Check one line item against the invoice rules; empty means valid.

    ``quantity`` and ``unit_price`` are finite Decimals or None when the
    raw value was not a number.
    """
    problems: dict[str, str] = {}
    if not description.strip():
        problems[f"{prefix}.description"] = "Description is required"
    if quantity is None or quantity <= 0:
        problems[f"{prefix}.quantity"] = "Quantity must be a number greater than zero"
    if unit_price is None or unit_price < 0:
        problems[f"{prefix}.unit_price"] = "Price must be a number of zero or more"
    return problems


def _coerce(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return to_decimal(value)
    except ValueError:
        return None
