"""Lay out a PrintJob as ESC/POS commands for a 32 column thermal roll.

The formatter is a pure function of the job: it performs no I/O and no
arithmetic beyond number formatting. Totals and discount amounts are printed
exactly as supplied by the bill.

Receipt layout (58 mm paper, font A)::

    ================================   business header, centered
    Bill No:                  B-0042   metadata, label left / value right
    --------------------------------
    Item          Qty   Rate  Amount   bold header row
    Widget        2  50.00  100.00
    --------------------------------
    Subtotal:              Rs.100.00
    ================================
                    Total: Rs.100.00   bold, double size, right aligned
"""

from __future__ import annotations

import textwrap
from typing import Union

from bill import Discount, LineItem, PrintJob
from escpos_commands import (
    ALIGN_CENTER,
    ALIGN_LEFT,
    ALIGN_RIGHT,
    CommandBuffer,
    cut_paper,
    feed_lines,
    init,
    set_alignment,
    set_bold,
    set_text_size,
)

LINE_WIDTH = 32
NAME_WIDTH = 12
TRUNCATION_MARKER = "…"
ITEM_HEADER = "Item          Qty   Rate  Amount"
THANK_YOU = "Thank you for your business!"


def format_number(value: Union[int, float]) -> str:
    """Render quantities and discount values without a trailing '.0'."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return repr(value) if isinstance(value, float) else str(value)


def format_money(value: float) -> str:
    return f"{value:.2f}"


def format_two_columns(left: str, right: str, width: int = LINE_WIDTH) -> str:
    """Place ``right`` flush against the last column, truncating ``left`` to fit."""
    right = right[:width]
    left = left[: max(0, width - len(right) - 1)]
    spaces = width - len(left) - len(right)
    return left + " " * max(0, spaces) + right


def truncate_name(name: str, width: int = NAME_WIDTH) -> str:
    if len(name) > width:
        return name[:width] + TRUNCATION_MARKER
    return name.ljust(width)


def _has_discount(discount: Discount | None) -> bool:
    return discount is not None and discount.is_active


def format_item_line(item: LineItem) -> str:
    # Discounted items show the gross amount here and the net on a later line
    amount = item.gross if _has_discount(item.discount) else item.total
    return (
        truncate_name(item.name)
        + format_number(item.quantity).rjust(3)
        + format_money(item.rate).rjust(7)
        + format_money(amount).rjust(8)
    )


def _item_discount_line(discount: Discount, currency: str) -> str:
    if discount.type == "percentage":
        label = f"Discount:{format_number(discount.value)}%"
    else:
        label = f"Discount:{currency}{format_number(discount.value)}"
    return f"  {label} -{currency}{format_money(discount.amount)}"


def _bill_discount_label(discount: Discount, currency: str) -> str:
    if discount.type == "percentage":
        return f"Discount ({format_number(discount.value)}%):"
    return f"Discount ({currency}{format_number(discount.value)}):"


def _header(buf: CommandBuffer, job: PrintJob, width: int) -> None:
    buf.append(set_alignment(ALIGN_CENTER))
    buf.append(set_bold(True))
    buf.append(set_text_size(2, 2))
    buf.line(job.business_name.upper())
    buf.append(set_text_size(1, 1))
    buf.append(set_bold(False))

    if job.address:
        buf.line(job.address)
    if job.phone:
        buf.line(f"Ph: {job.phone}")
    if job.email:
        buf.line(job.email)
    if job.gst:
        buf.line(f"GST: {job.gst}")

    buf.separator("=", width)


def _metadata(buf: CommandBuffer, job: PrintJob, width: int) -> None:
    buf.append(set_alignment(ALIGN_LEFT))
    fields = (
        ("Bill No:", job.bill_number),
        ("Date:", job.date),
        ("Customer:", job.customer_name),
        ("Seller:", job.seller_name),
        ("Payment:", job.payment_mode),
    )
    for label, value in fields:
        if value:
            buf.line(format_two_columns(label, value, width))


def _items(buf: CommandBuffer, job: PrintJob, width: int, currency: str) -> None:
    buf.separator("-", width)
    buf.append(set_bold(True))
    buf.line(ITEM_HEADER)
    buf.separator("-", width)
    buf.append(set_bold(False))

    for item in job.items:
        buf.line(format_item_line(item))
        if _has_discount(item.discount):
            buf.line(_item_discount_line(item.discount, currency))
            buf.append(set_bold(True))
            buf.line(
                format_two_columns(
                    "  After Discount:", f"{currency}{format_money(item.total)}", width
                )
            )
            buf.append(set_bold(False))


def _totals(buf: CommandBuffer, job: PrintJob, width: int, currency: str) -> None:
    buf.separator("-", width)

    subtotal = job.subtotal if job.subtotal is not None else job.grand_total
    buf.line(format_two_columns("Subtotal:", f"{currency}{format_money(subtotal)}", width))

    discount = job.discount
    if _has_discount(discount) and discount.amount > 0:
        buf.line(
            format_two_columns(
                _bill_discount_label(discount, currency),
                f"- {currency}{format_money(discount.amount)}",
                width,
            )
        )

    buf.separator("=", width)
    buf.append(set_bold(True))
    buf.append(set_text_size(2, 2))
    buf.append(set_alignment(ALIGN_RIGHT))
    buf.line(f"Total: {currency}{format_money(job.grand_total)}")
    buf.append(set_text_size(1, 1))
    buf.append(set_bold(False))
    buf.append(set_alignment(ALIGN_LEFT))


def _notes_and_terms(buf: CommandBuffer, job: PrintJob, width: int) -> None:
    if job.notes:
        buf.separator("-", width)
        buf.line(f"Note: {job.notes}")

    if job.terms:
        buf.separator("-", width)
        buf.append(set_alignment(ALIGN_CENTER))
        for raw in job.terms.splitlines():
            line = raw.strip()
            if not line:
                continue
            for wrapped in textwrap.wrap(line, width=width):
                buf.line(wrapped)


def _footer(buf: CommandBuffer, width: int) -> None:
    buf.separator("=", width)
    buf.append(set_alignment(ALIGN_CENTER))
    buf.line(THANK_YOU)
    buf.line()
    buf.append(feed_lines(3))
    buf.append(cut_paper())


def format_receipt(
    job: PrintJob,
    width: int = LINE_WIDTH,
    currency: str = "Rs.",
    encoding: str = "utf-8",
) -> CommandBuffer:
    """Build the full command sequence for one bill."""
    buf = CommandBuffer(encoding=encoding)
    buf.append(init())
    _header(buf, job, width)
    _metadata(buf, job, width)
    _items(buf, job, width, currency)
    _totals(buf, job, width, currency)
    _notes_and_terms(buf, job, width)
    _footer(buf, width)
    return buf


def render_receipt(job: PrintJob, **kwargs) -> bytes:
    return format_receipt(job, **kwargs).to_bytes()


def format_test_page(width: int = LINE_WIDTH, encoding: str = "utf-8") -> CommandBuffer:
    """Fixed page used to check a fresh connection without a real bill."""
    buf = CommandBuffer(encoding=encoding)
    buf.append(init())
    buf.append(set_alignment(ALIGN_CENTER))
    buf.append(set_bold(True))
    buf.append(set_text_size(2, 2))
    buf.line("TEST PRINT")
    buf.append(set_text_size(1, 1))
    buf.append(set_bold(False))
    buf.separator("-", width)
    buf.line("Printer is working correctly!")
    buf.append(feed_lines(3))
    buf.append(cut_paper())
    return buf
