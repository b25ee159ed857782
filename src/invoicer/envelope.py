"""
Invoice envelope encoding and decoding.

Wire format (base64 text as the message body):
    [0-15]  key ID (16 random bytes, fresh per invoice)
    [16+]   ciphertext (provider output, remainder of the body)

The key ID has a fixed width, so there is no length prefix. The provider
sees the key ID as base64 text. Inside the ciphertext is UTF-8 JSON:

    {"payer", "title", "lineItems": [{"description", "quantity", "price"}],
     "date"?, "totals": {"subtotal", "total"}}
"""

from __future__ import annotations

import base64
import binascii
import json
import math
import secrets
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from .errors import (
    DecryptionError,
    EncodingError,
    EncryptionError,
    MalformedEnvelopeError,
    PayloadParseError,
)
from .invoice import InvoicePayload, LineItem, Totals, line_item_problems
from .keys import ProtocolID
from .money import to_decimal

PROTOCOL_ID: ProtocolID = (1, "basic invoicing")
KEY_ID_SIZE = 16

CryptoFn = Callable[[bytes, ProtocolID, str, str], Awaitable[bytes]]


def generate_key_id() -> bytes:
    return secrets.token_bytes(KEY_ID_SIZE)


def key_id_text(raw: bytes) -> str:
    """Text form of a key ID, as handed to the key material provider."""
    return base64.b64encode(raw).decode("ascii")


async def encode_invoice(
    payload: InvoicePayload,
    counterparty: str,
    encrypt: CryptoFn,
) -> str:
    """Encrypt ``payload`` for ``counterparty`` and frame it for transport."""
    plaintext = serialize_payload(payload)
    key_id = generate_key_id()
    try:
        ciphertext = await encrypt(plaintext, PROTOCOL_ID, key_id_text(key_id), counterparty)
    except EncryptionError:
        raise
    except Exception as e:
        raise EncryptionError(f"Encryption failed: {type(e).__name__}: {e}") from e
    return base64.b64encode(key_id + bytes(ciphertext)).decode("ascii")


async def decode_invoice(
    body: str,
    sender: str,
    decrypt: CryptoFn,
) -> InvoicePayload:
    """Unframe, decrypt and parse a transport body from ``sender``."""
    try:
        raw = base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise MalformedEnvelopeError(f"Envelope is not valid base64: {e}") from e
    if len(raw) < KEY_ID_SIZE:
        raise MalformedEnvelopeError(
            f"Envelope too short: {len(raw)} bytes (minimum {KEY_ID_SIZE})"
        )

    key_id, ciphertext = raw[:KEY_ID_SIZE], raw[KEY_ID_SIZE:]
    try:
        plaintext = await decrypt(ciphertext, PROTOCOL_ID, key_id_text(key_id), sender)
    except DecryptionError:
        raise
    except Exception as e:
        raise DecryptionError(f"Decryption failed: {type(e).__name__}: {e}") from e
    return parse_payload(plaintext)


def serialize_payload(payload: InvoicePayload) -> bytes:
    record: dict[str, Any] = {
        "payer": payload.payer,
        "title": payload.title,
        "lineItems": [
            {
                "description": item.description,
                "quantity": item.quantity,
                "price": item.unit_price,
            }
            for item in payload.line_items
        ],
    }
    if payload.created_at is not None:
        record["date"] = payload.created_at.isoformat()
    record["totals"] = {
        "subtotal": payload.totals.subtotal,
        "total": payload.totals.total,
    }
    try:
        text = json.dumps(record, separators=(",", ":"), ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise EncodingError(f"Invoice payload is not serializable: {e}") from e
    return text.encode("utf-8")


def parse_payload(plaintext: bytes) -> InvoicePayload:
    try:
        record = json.loads(bytes(plaintext).decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise PayloadParseError(f"Plaintext is not JSON: {e}") from e
    if not isinstance(record, dict):
        raise PayloadParseError("Invoice payload must be a JSON object")

    title = _require(record, "title", str)
    payer = _require(record, "payer", str)
    raw_items = _require(record, "lineItems", list)

    if not raw_items:
        raise PayloadParseError("lineItems must not be empty")

    line_items = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise PayloadParseError(f"lineItems[{index}] must be an object")
        price_key = "price" if "price" in raw else "unitPrice"
        item = LineItem(
            description=_require(raw, "description", str, f"lineItems[{index}]."),
            quantity=_number(raw, "quantity", f"lineItems[{index}]."),
            unit_price=_number(raw, price_key, f"lineItems[{index}]."),
        )
        problems = line_item_problems(
            item.description,
            to_decimal(item.quantity),
            to_decimal(item.unit_price),
            f"lineItems[{index}]",
        )
        if problems:
            raise PayloadParseError(
                "; ".join(f"{name}: {reason}" for name, reason in problems.items())
            )
        line_items.append(item)

    raw_totals = record.get("totals")
    if raw_totals is None:
        # Earliest payload version carried no totals.
        totals = Totals.from_line_items(line_items)
    elif isinstance(raw_totals, dict):
        totals = Totals(
            subtotal=_number(raw_totals, "subtotal", "totals."),
            total=_number(raw_totals, "total", "totals."),
        )
        if totals.subtotal < 0 or totals.total < 0:
            raise PayloadParseError("totals must not be negative")
    else:
        raise PayloadParseError("totals must be an object")

    return InvoicePayload(
        title=title,
        payer=payer,
        line_items=tuple(line_items),
        totals=totals,
        created_at=_parse_date(record.get("date")),
    )


def _require(record: dict, name: str, kind: type, prefix: str = "") -> Any:
    if name not in record:
        raise PayloadParseError(f"Missing field {prefix}{name}")
    value = record[name]
    if not isinstance(value, kind):
        raise PayloadParseError(f"Field {prefix}{name} must be {kind.__name__}")
    return value


def _number(record: dict, name: str, prefix: str = "") -> int | float:
    if name not in record:
        raise PayloadParseError(f"Missing field {prefix}{name}")
    value = record[name]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise PayloadParseError(f"Field {prefix}{name} must be a number")
    # json.loads lets NaN and Infinity through
    if isinstance(value, float) and not math.isfinite(value):
        raise PayloadParseError(f"Field {prefix}{name} must be finite")
    return value


def _parse_date(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise PayloadParseError("date must be an ISO-8601 string or epoch milliseconds")
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError) as e:
            raise PayloadParseError(f"Invalid date: {value!r}") from e
    if isinstance(value, str):
        try:
            # JavaScript toISOString() ends in "Z"
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as e:
            raise PayloadParseError(f"Invalid date: {value!r}") from e
    raise PayloadParseError("date must be an ISO-8601 string or epoch milliseconds")
