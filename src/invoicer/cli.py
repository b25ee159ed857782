"""
Invoicer CLI: encrypted invoices over store-and-forward message boxes.

Commands:
    invoicer identity   Show (and create on first use) your identity key
    invoicer create     Build, encrypt and send an invoice
    invoicer inbox      List invoices waiting to be paid
    invoicer pay        Pay an invoice and retire its message
    invoicer relay      Run a local message box relay
"""

from __future__ import annotations

import asyncio
import logging
import sys

import click

from . import __version__
from .config import InvoicerConfig
from .errors import InvoicerError, ValidationError
from .exchange import InvoiceExchange
from .invoice import ReceivedInvoice, build_invoice
from .keys import LocalKeyProvider
from .money import format_amount
from .payment import DryRunPaymentSender, HttpPaymentSender, PaymentSender, PaymentTrigger
from .transport import HttpMessageBox, MessageTransport


# ── Wiring ────────────────────────────────────────────────────────

def _config() -> InvoicerConfig:
    try:
        return InvoicerConfig.from_env()
    except ValueError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)


def _load_keys(config: InvoicerConfig) -> LocalKeyProvider:
    try:
        return LocalKeyProvider.load_or_create(config.key_path, env_key=config.identity_key)
    except InvoicerError as e:
        click.echo(f"❌ Failed to load identity key: {e}", err=True)
        sys.exit(1)


def _open_transport(config: InvoicerConfig, identity: str) -> MessageTransport:
    return HttpMessageBox(config.message_box_url, identity, timeout_seconds=config.timeout_seconds)


def _payment_sender(config: InvoicerConfig, dry_run: bool) -> PaymentSender:
    if dry_run:
        return DryRunPaymentSender()
    if not config.payment_url:
        click.echo("❌ Set INVOICER_PAYMENT_URL or pass --dry-run", err=True)
        sys.exit(1)
    return HttpPaymentSender(config.payment_url, timeout_seconds=config.timeout_seconds)


async def _close(*resources) -> None:
    for resource in resources:
        aclose = getattr(resource, "aclose", None)
        if aclose is not None:
            await aclose()


def _parse_items(ctx, param, values: tuple[str, ...]) -> list[dict]:
    items = []
    for value in values:
        parts = value.rsplit(":", 2)
        if len(parts) != 3:
            raise click.BadParameter(f"{value!r} is not DESCRIPTION:QUANTITY:PRICE")
        description, quantity, price = parts
        items.append({"description": description, "quantity": quantity, "price": price})
    return items


def _echo_invoice(invoice: ReceivedInvoice) -> None:
    created = invoice.created_at.strftime("%Y-%m-%d %H:%M") if invoice.created_at else "undated"
    click.echo(f"\n{invoice.message_id}")
    click.echo(f"  Title:  {invoice.title}")
    click.echo(f"  From:   {invoice.payee}")
    click.echo(f"  Date:   {created}")
    for item in invoice.line_items:
        click.echo(
            f"    - {item.description}: {item.quantity} × {format_amount(item.unit_price)}"
            f" = {format_amount(item.amount)}"
        )
    click.echo(f"  Total:  {format_amount(invoice.totals.total)}")


# ── CLI ───────────────────────────────────────────────────────────

@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Log protocol activity to stderr")
def main(verbose: bool):
    """Invoicer: encrypted invoices between two identities."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@main.command()
def identity():
    """Print your identity key (share it with people who invoice you)."""
    keys = _load_keys(_config())
    click.echo(keys.identity)


@main.command()
@click.option("--title", default="", help="Invoice title")
@click.option("--payer", default="", help="Payer's identity key")
@click.option("--item", "items", multiple=True, callback=_parse_items,
              help="Line item as DESCRIPTION:QUANTITY:PRICE (repeatable)")
def create(title: str, payer: str, items: list[dict]):
    """Build, encrypt and send an invoice to the payer."""
    try:
        payload = build_invoice(title, payer, items)
    except ValidationError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)

    config = _config()
    keys = _load_keys(config)
    transport = _open_transport(config, keys.identity)

    async def _send():
        try:
            return await InvoiceExchange(keys, transport).create(payload)
        finally:
            await _close(transport)

    try:
        receipt = asyncio.run(_send())
    except InvoicerError as e:
        click.echo(f"❌ Failed to send invoice: {e}", err=True)
        sys.exit(1)

    click.echo(f"✅ Invoice sent: {receipt.message_id}")
    click.echo(f"   Title: {payload.title}")
    click.echo(f"   Payer: {receipt.recipient}")
    click.echo(f"   Total: {format_amount(payload.totals.total)}")


@main.command()
def inbox():
    """List invoices waiting to be paid."""
    config = _config()
    keys = _load_keys(config)
    transport = _open_transport(config, keys.identity)

    async def _fetch():
        try:
            return await InvoiceExchange(keys, transport).list_incoming()
        finally:
            await _close(transport)

    try:
        invoices = asyncio.run(_fetch())
    except InvoicerError as e:
        click.echo(f"❌ Failed to fetch invoices: {e}", err=True)
        sys.exit(1)

    if not invoices:
        click.echo("No invoices waiting.")
        return
    for invoice in invoices:
        _echo_invoice(invoice)


@main.command()
@click.argument("message_id")
@click.option("--dry-run", is_flag=True, help="Simulate the payment")
def pay(message_id: str, dry_run: bool):
    """Pay the invoice in MESSAGE_ID (a unique prefix is enough)."""
    config = _config()
    keys = _load_keys(config)
    sender = _payment_sender(config, dry_run)
    transport = _open_transport(config, keys.identity)

    async def _pay():
        try:
            invoices = await InvoiceExchange(keys, transport).list_incoming()
            matches = [i for i in invoices if i.message_id.startswith(message_id)]
            if len(matches) != 1:
                return matches, None
            receipt = await PaymentTrigger(transport, sender).pay(matches[0])
            return matches, receipt
        finally:
            await _close(transport, sender)

    try:
        matches, receipt = asyncio.run(_pay())
    except InvoicerError as e:
        click.echo(f"❌ Payment failed: {e}", err=True)
        sys.exit(1)

    if not matches:
        click.echo(f"❌ Invoice not found: {message_id}", err=True)
        sys.exit(1)
    if receipt is None:
        click.echo(f"❌ Multiple invoices match '{message_id}':", err=True)
        for invoice in matches:
            click.echo(f"  {invoice.message_id}", err=True)
        sys.exit(1)

    click.echo(f"✅ Payment {'simulated' if dry_run else 'sent'}!")
    click.echo(f"   Amount:     {format_amount(receipt.amount)}")
    click.echo(f"   Recipient:  {receipt.recipient}")
    click.echo(f"   Payment ID: {receipt.payment_id}")
    if not receipt.acknowledged:
        click.echo("⚠️  Invoice was paid but is still in your inbox; do not pay it again.")


@main.command()
@click.option("--host", default="127.0.0.1", help="Bind address")
@click.option("--port", type=int, default=8787, help="Bind port")
def relay(host: str, port: int):
    """Run a local message box relay."""
    from .relay import serve

    click.echo(f"📮 Relay listening on http://{host}:{port}")
    serve(host=host, port=port)


if __name__ == "__main__":
    main()
