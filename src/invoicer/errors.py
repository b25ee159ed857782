"""
Invoicer error types.

Specific exceptions for different failure modes, enabling callers
to handle each case appropriately (re-prompt, discard, retry, etc.).
"""

from __future__ import annotations


class InvoicerError(Exception):
    """Base error for all Invoicer operations."""
    pass


# Input errors
class ValidationError(InvoicerError):
    """User-entered invoice data failed validation."""
    def __init__(self, problems: dict[str, str]):
        self.problems = dict(problems)
        super().__init__("Invalid invoice: " + "; ".join(
            f"{name}: {reason}" for name, reason in self.problems.items()
        ))


# Envelope errors
class EnvelopeError(InvoicerError):
    """Base error for envelope framing and payload structure."""
    pass


class EncodingError(EnvelopeError):
    """Payload cannot be serialized (e.g. non-finite numbers)."""
    pass


class MalformedEnvelopeError(EnvelopeError):
    """Transport body is not valid base64 or too short to hold a key ID."""
    pass


class PayloadParseError(EnvelopeError):
    """Decrypted plaintext does not have the invoice payload shape."""
    pass


# Key material errors
class KeyMaterialError(InvoicerError):
    """Base error for key material provider failures."""
    pass


class EncryptionError(KeyMaterialError):
    """Provider could not encrypt for the counterparty."""
    pass


class DecryptionError(KeyMaterialError):
    """Wrong key, tampered data or sender mismatch (indistinguishable)."""
    pass


class IdentityKeyError(KeyMaterialError):
    """Identity key is missing, unreadable, or not a valid public key."""
    pass


# Transport errors
class TransportError(InvoicerError):
    """Message box send/list/acknowledge failed."""
    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


# Payment errors
class PaymentError(InvoicerError):
    """Payment sender failed or rejected the payment."""
    pass


# Per-message failures that discard an inbound message instead of failing a batch.
DISCARDABLE_ERRORS = (MalformedEnvelopeError, DecryptionError, PayloadParseError)
