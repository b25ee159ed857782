"""
End-to-end demo: invoice exchange through a real HTTP relay.
"""

import asyncio
import sys
import threading
import time

import uvicorn

sys.path.insert(0, "../src")
from invoicer import (
    DryRunPaymentSender,
    HttpMessageBox,
    InvoiceExchange,
    LocalKeyProvider,
    PaymentTrigger,
    build_invoice,
)
from invoicer.relay import create_app

RELAY_URL = "http://127.0.0.1:8788"


def run_relay():
    uvicorn.run(create_app(), host="127.0.0.1", port=8788, log_level="error")


async def exchange(payee: LocalKeyProvider, payer: LocalKeyProvider):
    async with HttpMessageBox(RELAY_URL, payee.identity) as payee_box, \
            HttpMessageBox(RELAY_URL, payer.identity) as payer_box:
        print("2️⃣  Payee builds and sends the invoice...")
        payload = build_invoice(
            "Consulting",
            payer.identity,
            [{"description": "Hours", "quantity": 10, "price": 50}],
        )
        receipt = await InvoiceExchange(payee, payee_box).create(payload)
        print(f"   ✅ Sent message {receipt.message_id} (total {payload.totals.total})")
        print()

        print("3️⃣  Payer fetches and decrypts...")
        payer_exchange = InvoiceExchange(payer, payer_box)
        invoices = await payer_exchange.list_incoming()
        for invoice in invoices:
            print(f"   📄 {invoice.title}: {invoice.totals.total} from {invoice.payee[:16]}…")
        print()

        print("4️⃣  Payer pays (dry run)...")
        sender = DryRunPaymentSender()
        trigger = PaymentTrigger(payer_box, sender)
        for invoice in invoices:
            paid = await trigger.pay(invoice)
            print(f"   ✅ {paid.amount} → {paid.recipient[:16]}… ({paid.payment_id})")
        print()

        remaining = await payer_exchange.list_incoming()
        print(f"5️⃣  Invoices still pending: {len(remaining)}")


def main():
    print("🚀 Invoicer E2E: encrypted invoice over HTTP relay")
    print("=" * 55)
    print()

    print("1️⃣  Starting relay...")
    threading.Thread(target=run_relay, daemon=True).start()
    time.sleep(1.5)
    print(f"   ✅ Relay running on {RELAY_URL}")
    print()

    asyncio.run(exchange(LocalKeyProvider.generate(), LocalKeyProvider.generate()))


if __name__ == "__main__":
    main()
