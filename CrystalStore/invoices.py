"""
Invoice / receipt PDFs: order snapshot -> context -> Jinja2 -> WeasyPrint -> invoices/<invoice_id>.pdf
"""
from __future__ import annotations

import asyncio
from pathlib import Path

from jinja2 import Environment, FileSystemLoader

from CrystalStore.store_utils import fmt_datetime, fmt_money

_TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"
_ENV = Environment(loader=FileSystemLoader(str(_TEMPLATES_DIR)), autoescape=True)


def invoice_id_for(order_id: str) -> str:
    return str(order_id or "")[:8]


def build_invoice_context(order: dict, *, store_name: str) -> dict:
    """Flatten an order into the fields printed on the receipt."""
    product = order.get("product") or {}
    payment = order.get("payment") or {}
    price = product.get("price") or 0
    nominal = fmt_money(price) or "$0.00"
    return {
        "store_name": store_name or "Store",
        "order_id": str(order.get("id") or ""),
        "invoice_id": invoice_id_for(order.get("id")),
        "buyer_tag": str(order.get("userTag") or "—"),
        "buyer_id": str(order.get("userId") or "—"),
        "product_name": str(product.get("name") or "—"),
        "amount_usd": nominal,
        "payment_method": str(payment.get("method") or "—"),
        "paid_amount": str(payment.get("paidAmount") or nominal),
        "transaction_id": str(payment.get("transactionId") or "-"),
        "status": str(order.get("status") or ""),
        "created_at": fmt_datetime(order.get("paidAt") or order.get("createdAt")),
    }


def render_invoice_html(context: dict) -> str:
    return _ENV.get_template("invoice.html").render(**context)


def render_pdf(context: dict) -> bytes:
    """Render the receipt PDF (lazy import: WeasyPrint system libraries are not needed at bot start)."""
    from weasyprint import HTML

    html_doc = HTML(string=render_invoice_html(context), base_url=str(_TEMPLATES_DIR))
    return html_doc.write_pdf()


def write_invoice(order: dict, *, store_name: str, invoices_dir: Path) -> Path:
    context = build_invoice_context(order, store_name=store_name)
    out_dir = Path(invoices_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / f"{context['invoice_id'] or 'invoice'}.pdf"
    path.write_bytes(render_pdf(context))
    return path


async def write_invoice_async(order: dict, *, store_name: str, invoices_dir: Path) -> Path:
    # Rendering and disk writes are blocking; run them in a worker thread.
    return await asyncio.to_thread(write_invoice, order, store_name=store_name, invoices_dir=invoices_dir)
