"""
Invoicer: encrypted invoices over store-and-forward message boxes.

Payee builds an invoice → encrypts it for the payer under a fresh key ID →
payer fetches, decrypts, pays → payment retires the message.
"""

__version__ = "0.1.0"

from .invoice import InvoicePayload, LineItem, ReceivedInvoice, Totals, build_invoice
from .envelope import PROTOCOL_ID, decode_invoice, encode_invoice
from .keys import KeyMaterialProvider, LocalKeyProvider
from .transport import HttpMessageBox, LocalMessageBox, MessageStore, MessageTransport, PeerMessage, SendReceipt
from .exchange import INVOICE_MESSAGE_BOX, InvoiceExchange
from .payment import DryRunPaymentSender, HttpPaymentSender, PaymentReceipt, PaymentSender, PaymentTrigger

__all__ = [
    "InvoicePayload", "LineItem", "ReceivedInvoice", "Totals", "build_invoice",
    "PROTOCOL_ID", "decode_invoice", "encode_invoice",
    "KeyMaterialProvider", "LocalKeyProvider",
    "HttpMessageBox", "LocalMessageBox", "MessageStore", "MessageTransport", "PeerMessage", "SendReceipt",
    "INVOICE_MESSAGE_BOX", "InvoiceExchange",
    "DryRunPaymentSender", "HttpPaymentSender", "PaymentReceipt", "PaymentSender", "PaymentTrigger",
]
