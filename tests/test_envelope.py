"""Tests for envelope framing and payload serialization."""

import asyncio
import base64
import json
from datetime import datetime, timezone

import pytest

from invoicer.envelope import (
    KEY_ID_SIZE,
    PROTOCOL_ID,
    decode_invoice,
    encode_invoice,
    parse_payload,
    serialize_payload,
)
from invoicer.errors import (
    DecryptionError,
    EncodingError,
    EncryptionError,
    MalformedEnvelopeError,
    PayloadParseError,
)
from invoicer.invoice import InvoicePayload, LineItem, Totals, build_invoice
from invoicer.keys import LocalKeyProvider


@pytest.fixture
def payee():
    return LocalKeyProvider.generate()


@pytest.fixture
def payer():
    return LocalKeyProvider.generate()


@pytest.fixture
def payload(payer):
    return build_invoice(
        "Consulting",
        payer.identity,
        [
            {"description": "Hours", "quantity": 10, "price": 50},
            {"description": "Travel", "quantity": 1, "price": 12.5},
        ],
        now=datetime(2026, 10, 18, 9, 30, tzinfo=timezone.utc),
    )


class RecordingCrypto:
    """Captures provider calls and echoes plaintext back as ciphertext."""

    def __init__(self):
        self.calls = []

    async def encrypt(self, plaintext, protocol_id, key_id, counterparty):
        self.calls.append((protocol_id, key_id, counterparty))
        return b"sealed:" + plaintext

    async def decrypt(self, ciphertext, protocol_id, key_id, counterparty):
        self.calls.append((protocol_id, key_id, counterparty))
        if not ciphertext.startswith(b"sealed:"):
            raise ValueError("bad seal")
        return ciphertext[len(b"sealed:"):]


def _frame(ciphertext: bytes, key_id: bytes = b"\x07" * KEY_ID_SIZE) -> str:
    return base64.b64encode(key_id + ciphertext).decode()


class TestRoundTrip:
    def test_decode_of_encode_is_identity(self, payload, payee, payer):
        body = asyncio.run(encode_invoice(payload, payer.identity, payee.encrypt))
        decoded = asyncio.run(decode_invoice(body, payee.identity, payer.decrypt))
        assert decoded == payload

    def test_payload_without_date_round_trips(self, payer):
        undated = InvoicePayload(
            title="Undated",
            payer=payer.identity,
            line_items=(LineItem("Widget", 2, 3.25),),
            totals=Totals(6.5, 6.5),
        )
        crypto = RecordingCrypto()
        body = asyncio.run(encode_invoice(undated, payer.identity, crypto.encrypt))
        assert asyncio.run(decode_invoice(body, "payee", crypto.decrypt)) == undated

    def test_key_id_is_fresh_per_encode(self, payload, payer):
        crypto = RecordingCrypto()
        first = asyncio.run(encode_invoice(payload, payer.identity, crypto.encrypt))
        second = asyncio.run(encode_invoice(payload, payer.identity, crypto.encrypt))
        raw_first = base64.b64decode(first)[:KEY_ID_SIZE]
        raw_second = base64.b64decode(second)[:KEY_ID_SIZE]
        assert raw_first != raw_second
        assert crypto.calls[0][1] != crypto.calls[1][1]

    def test_frame_layout_and_provider_context(self, payload, payer):
        crypto = RecordingCrypto()
        body = asyncio.run(encode_invoice(payload, payer.identity, crypto.encrypt))
        raw = base64.b64decode(body)
        protocol_id, key_id, counterparty = crypto.calls[0]
        assert protocol_id == PROTOCOL_ID == (1, "basic invoicing")
        assert counterparty == payer.identity
        assert base64.b64decode(key_id) == raw[:KEY_ID_SIZE]
        assert raw[KEY_ID_SIZE:] == b"sealed:" + serialize_payload(payload)

    def test_decode_passes_sender_and_key_id(self, payload, payer):
        crypto = RecordingCrypto()
        body = asyncio.run(encode_invoice(payload, payer.identity, crypto.encrypt))
        asyncio.run(decode_invoice(body, "the-sender", crypto.decrypt))
        assert crypto.calls[1][2] == "the-sender"
        assert crypto.calls[1][1] == crypto.calls[0][1]


class TestWireFormat:
    def test_field_order_and_names(self, payload):
        record = json.loads(serialize_payload(payload))
        assert list(record) == ["payer", "title", "lineItems", "date", "totals"]
        assert record["lineItems"][0] == {"description": "Hours", "quantity": 10, "price": 50}
        assert record["totals"] == {"subtotal": 512.5, "total": 512.5}
        assert record["date"] == "2026-10-18T09:30:00+00:00"

    def test_non_finite_numbers_rejected(self, payer):
        broken = InvoicePayload(
            title="Broken",
            payer=payer.identity,
            line_items=(LineItem("Bad", float("nan"), 1),),
            totals=Totals(float("inf"), float("inf")),
        )
        with pytest.raises(EncodingError):
            serialize_payload(broken)

    def test_legacy_payload_without_totals_or_date(self):
        plaintext = json.dumps(
            {
                "payer": "alice",
                "title": "Old style",
                "lineItems": [{"description": "Hours", "quantity": 4, "price": 25}],
            }
        ).encode()
        payload = parse_payload(plaintext)
        assert payload.created_at is None
        assert payload.totals == Totals(100, 100)

    def test_javascript_dates_accepted(self):
        base = {
            "payer": "a",
            "title": "t",
            "lineItems": [{"description": "x", "quantity": 1, "price": 0}],
            "totals": {"subtotal": 0, "total": 0},
        }
        iso = parse_payload(json.dumps({**base, "date": "2024-03-01T10:00:00.000Z"}).encode())
        assert iso.created_at == datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)
        epoch = parse_payload(json.dumps({**base, "date": 1709287200000}).encode())
        assert epoch.created_at == datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)

    @pytest.mark.parametrize(
        "plaintext",
        [
            b"not json",
            b"\xff\xfe",
            b"[1, 2, 3]",
            b'{"title": "t", "lineItems": []}',
            b'{"payer": "a", "title": 5, "lineItems": []}',
            b'{"payer": "a", "title": "t", "lineItems": {}}',
            b'{"payer": "a", "title": "t", "lineItems": [{"description": "x", "quantity": "1", "price": 1}]}',
            b'{"payer": "a", "title": "t", "lineItems": [{"description": "x", "quantity": 1}]}',
            b'{"payer": "a", "title": "t", "lineItems": [{"description": "x", "quantity": 1, "price": 1}], "totals": []}',
            b'{"payer": "a", "title": "t", "lineItems": [{"description": "x", "quantity": 1, "price": 1}], "totals": {"total": 1}}',
            b'{"payer": "a", "title": "t", "lineItems": [{"description": "x", "quantity": 1, "price": 1}], "date": "yesterday"}',
        ],
    )
    def test_shape_mismatch_is_parse_error(self, plaintext):
        with pytest.raises(PayloadParseError):
            parse_payload(plaintext)

    @pytest.mark.parametrize(
        "plaintext",
        [
            b'{"payer": "a", "title": "t", "lineItems": [{"description": "x", "quantity": 1, "price": 1}],'
            b' "totals": {"subtotal": NaN, "total": Infinity}}',
            b'{"payer": "a", "title": "t", "lineItems": [{"description": "x", "quantity": 1, "price": 1}],'
            b' "totals": {"subtotal": 1, "total": -Infinity}}',
            b'{"payer": "a", "title": "t", "lineItems": [{"description": "x", "quantity": NaN, "price": 1}]}',
            b'{"payer": "a", "title": "t", "lineItems": [{"description": "x", "quantity": 1, "price": 1e999}]}',
        ],
    )
    def test_non_finite_numbers_are_parse_errors(self, plaintext):
        with pytest.raises(PayloadParseError, match="finite"):
            parse_payload(plaintext)

    @pytest.mark.parametrize(
        "record, fragment",
        [
            ({"lineItems": []}, "lineItems must not be empty"),
            ({"lineItems": [{"description": "", "quantity": 1, "price": 1}]}, "description"),
            ({"lineItems": [{"description": "   ", "quantity": 1, "price": 1}]}, "description"),
            ({"lineItems": [{"description": "x", "quantity": 0, "price": 1}]}, "quantity"),
            ({"lineItems": [{"description": "x", "quantity": -3, "price": 1}]}, "quantity"),
            ({"lineItems": [{"description": "x", "quantity": 1, "price": -1}]}, "unit_price"),
            ({"lineItems": [{"description": "x", "quantity": 1, "unitPrice": -0.5}]}, "unit_price"),
            (
                {
                    "lineItems": [{"description": "x", "quantity": 1, "price": 1}],
                    "totals": {"subtotal": -7, "total": -7},
                },
                "negative",
            ),
            (
                {
                    "lineItems": [{"description": "x", "quantity": 1, "price": 1}],
                    "totals": {"subtotal": 1, "total": -1},
                },
                "negative",
            ),
        ],
    )
    def test_values_a_builder_would_reject_are_parse_errors(self, record, fragment):
        plaintext = json.dumps({"payer": "a", "title": "t", **record}).encode()
        with pytest.raises(PayloadParseError, match=fragment):
            parse_payload(plaintext)

    def test_free_line_item_is_accepted(self):
        plaintext = json.dumps(
            {
                "payer": "a",
                "title": "t",
                "lineItems": [{"description": "Goodwill", "quantity": 1, "price": 0}],
                "totals": {"subtotal": 0, "total": 0},
            }
        ).encode()
        assert parse_payload(plaintext).totals == Totals(0, 0)


class TestDecodeFailures:
    @pytest.mark.parametrize("body", ["***not base64***", "", _frame(b"")[:8]])
    def test_malformed_bodies(self, body):
        crypto = RecordingCrypto()
        with pytest.raises(MalformedEnvelopeError):
            asyncio.run(decode_invoice(body, "sender", crypto.decrypt))
        assert crypto.calls == []

    def test_empty_ciphertext_reaches_provider(self, payer, payee):
        with pytest.raises(DecryptionError):
            asyncio.run(decode_invoice(_frame(b""), payee.identity, payer.decrypt))

    def test_flipped_ciphertext_byte(self, payload, payee, payer):
        body = asyncio.run(encode_invoice(payload, payer.identity, payee.encrypt))
        raw = bytearray(base64.b64decode(body))
        raw[-1] ^= 0x01
        tampered = base64.b64encode(bytes(raw)).decode()
        with pytest.raises(DecryptionError):
            asyncio.run(decode_invoice(tampered, payee.identity, payer.decrypt))

    def test_wrong_sender_cannot_decrypt(self, payload, payee, payer):
        body = asyncio.run(encode_invoice(payload, payer.identity, payee.encrypt))
        impostor = LocalKeyProvider.generate()
        with pytest.raises(DecryptionError):
            asyncio.run(decode_invoice(body, impostor.identity, payer.decrypt))

    def test_provider_exceptions_are_wrapped(self):
        crypto = RecordingCrypto()
        with pytest.raises(DecryptionError, match="bad seal"):
            asyncio.run(decode_invoice(_frame(b"garbage"), "sender", crypto.decrypt))

    def test_decrypted_garbage_is_parse_error(self):
        crypto = RecordingCrypto()
        with pytest.raises(PayloadParseError):
            asyncio.run(decode_invoice(_frame(b"sealed:{}"), "sender", crypto.decrypt))


class TestEncodeFailures:
    def test_encrypt_failure_propagates_as_encryption_error(self, payload):
        async def failing(*args):
            raise RuntimeError("provider offline")

        with pytest.raises(EncryptionError, match="provider offline"):
            asyncio.run(encode_invoice(payload, "payer", failing))

    def test_invalid_counterparty(self, payload, payee):
        with pytest.raises(EncryptionError):
            asyncio.run(encode_invoice(payload, "not-a-key", payee.encrypt))
