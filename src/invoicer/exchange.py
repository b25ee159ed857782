"""
Encrypted invoice exchange.

Create:  payload → encode (fresh key ID, encrypt for payer) → send
Fetch:   list → decode each (decrypt as sender) → yield, leaving it pending

Fetched invoices stay in the message box until paid (at-least-once).
Messages that cannot be decoded are acknowledged on sight so a poison
message never resurfaces.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator, Optional

from .envelope import decode_invoice, encode_invoice
from .errors import DISCARDABLE_ERRORS, TransportError
from .invoice import InvoicePayload, ReceivedInvoice
from .keys import KeyMaterialProvider
from .transport import MessageTransport, PeerMessage, SendReceipt

logger = logging.getLogger(__name__)

INVOICE_MESSAGE_BOX = "invoice_inbox"


class InvoiceExchange:
    """Sends and receives encrypted invoices over a message transport."""

    def __init__(
        self,
        keys: KeyMaterialProvider,
        transport: MessageTransport,
        message_box: str = INVOICE_MESSAGE_BOX,
    ):
        self.keys = keys
        self.transport = transport
        self.message_box = message_box

    async def create(
        self,
        payload: InvoicePayload,
        counterparty: Optional[str] = None,
    ) -> SendReceipt:
        """Encrypt ``payload`` for the payer and deliver it.

        Encoding, encryption and transport errors propagate unchanged;
        nothing is retried and nothing partial is sent.
        """
        recipient = counterparty or payload.payer
        body = await encode_invoice(payload, recipient, self.keys.encrypt)
        receipt = await self.transport.send_message(self.message_box, recipient, body)
        logger.info(
            "Invoice %r sent to %s (message %s, total %s)",
            payload.title, recipient, receipt.message_id, payload.totals.total,
        )
        return receipt

    async def fetch_incoming(self) -> AsyncIterator[ReceivedInvoice]:
        """Yield every decodable invoice pending at call time."""
        messages = await self.transport.list_messages(self.message_box)
        for message in messages:
            try:
                payload = await decode_invoice(message.body, message.sender, self.keys.decrypt)
            except DISCARDABLE_ERRORS as e:
                logger.warning(
                    "Discarding message %s from %s: %s: %s",
                    message.message_id, message.sender, type(e).__name__, e,
                )
                await self._discard(message)
                continue
            yield ReceivedInvoice(
                message_id=message.message_id,
                payee=message.sender,
                payload=payload,
            )

    async def list_incoming(self) -> list[ReceivedInvoice]:
        return [invoice async for invoice in self.fetch_incoming()]

    async def _discard(self, message: PeerMessage) -> None:
        try:
            await self.transport.acknowledge([message.message_id])
        except TransportError as e:
            logger.warning("Failed to discard message %s: %s", message.message_id, e)
        except Exception:
            # One bad message must not stop the rest of the batch
            logger.exception("Unexpected error discarding message %s", message.message_id)
