"""
Paying received invoices.

Flow:
1. Derive a deterministic idempotency key for the invoice
2. Send the payment (recipient = sender of the invoice, amount = total)
3. Acknowledge the source message, retiring it from the invoice box

Payment is the only event that retires a fetched invoice. If the payment
succeeds but the acknowledgment fails, the invoice will be fetched again;
the idempotency key and the trigger's settled-key memo keep a retry from
paying twice.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol

import httpx

from .errors import PaymentError, TransportError
from .invoice import ReceivedInvoice
from .money import Number
from .transport import MessageTransport

logger = logging.getLogger(__name__)


class PaymentSender(Protocol):
    async def send_payment(
        self, recipient: str, amount: Number, idempotency_key: Optional[str] = None
    ) -> str: ...


@dataclass
class PaymentRequest:
    """A payment the sender is asked to make."""

    recipient: str
    amount: Number
    idempotency_key: Optional[str] = None


@dataclass
class PaymentReceipt:
    """Result of paying an invoice."""

    message_id: str
    recipient: str
    amount: Number
    payment_id: str
    idempotency_key: str
    acknowledged: bool = True
    duplicate: bool = False

    def to_dict(self) -> dict:
        return {
            "message_id": self.message_id,
            "recipient": self.recipient,
            "amount": self.amount,
            "payment_id": self.payment_id,
            "idempotency_key": self.idempotency_key,
            "acknowledged": self.acknowledged,
            "duplicate": self.duplicate,
        }


class PaymentTrigger:
    """Pays received invoices and retires their messages."""

    def __init__(self, transport: MessageTransport, sender: PaymentSender):
        self.transport = transport
        self.sender = sender
        self._settled: dict[str, str] = {}

    async def pay(self, invoice: ReceivedInvoice) -> PaymentReceipt:
        request = PaymentRequest(
            recipient=invoice.payee,
            amount=invoice.totals.total,
            idempotency_key=invoice_idempotency_key(invoice),
        )
        intent_id = request.idempotency_key

        payment_id = self._settled.get(intent_id)
        duplicate = payment_id is not None
        if duplicate:
            logger.info("Invoice %s already paid (%s); retrying acknowledgment",
                        invoice.message_id, payment_id)
        else:
            try:
                payment_id = await self.sender.send_payment(
                    request.recipient, request.amount, idempotency_key=intent_id
                )
            except PaymentError:
                raise
            except Exception as e:
                raise PaymentError(f"Payment execution error: {type(e).__name__}: {e}") from e
            self._settled[intent_id] = payment_id
            logger.info("Paid %s to %s for invoice %s (%s)",
                        request.amount, request.recipient, invoice.message_id, payment_id)

        acknowledged = True
        try:
            await self.transport.acknowledge([invoice.message_id])
        except TransportError as e:
            acknowledged = False
            logger.warning(
                "Invoice %s paid but not acknowledged; it will be fetched again: %s",
                invoice.message_id, e,
            )

        return PaymentReceipt(
            message_id=invoice.message_id,
            recipient=request.recipient,
            amount=request.amount,
            payment_id=payment_id,
            idempotency_key=intent_id,
            acknowledged=acknowledged,
            duplicate=duplicate,
        )


def invoice_idempotency_key(invoice: ReceivedInvoice) -> str:
    """Stable key for paying ``invoice``; identical across re-fetches."""
    payload = json.dumps(
        {
            "message_id": invoice.message_id,
            "payee": invoice.payee,
            "total": invoice.totals.total,
        },
        sort_keys=True,
    )
    digest = hashlib.sha256(payload.encode()).hexdigest()[:24]
    return f"invoice-{digest}"


@dataclass
class DryRunPaymentSender:
    """Records payments without moving money."""

    sent: list[PaymentRequest] = field(default_factory=list)

    async def send_payment(
        self, recipient: str, amount: Number, idempotency_key: Optional[str] = None
    ) -> str:
        self.sent.append(PaymentRequest(recipient, amount, idempotency_key))
        digest = hashlib.sha256(f"{idempotency_key}:{recipient}:{amount}".encode()).hexdigest()
        return f"dry-run-{digest[:16]}"


class HttpPaymentSender:
    """Posts payment requests to a wallet or payment service endpoint."""

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

    async def send_payment(
        self, recipient: str, amount: Number, idempotency_key: Optional[str] = None
    ) -> str:
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else {}
        try:
            response = await self._client.post(
                self.url,
                json={"recipient": recipient, "amount": amount},
                headers=headers,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise PaymentError(
                f"Payment rejected ({e.response.status_code}): {e.response.text[:200]}"
            ) from e
        except httpx.RequestError as e:
            raise PaymentError(f"Unable to reach payment service: {e}") from e
        except ValueError as e:
            raise PaymentError("Payment service returned invalid JSON") from e

        payment_id = (data.get("paymentId") or data.get("txid")) if isinstance(data, dict) else None
        if not payment_id:
            raise PaymentError("Payment service did not return a payment ID")
        return str(payment_id)

    async def aclose(self) -> None:
        await self._client.aclose()
