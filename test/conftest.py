"""Shared fixtures: sample print jobs and a helper that strips ESC/POS commands."""

import re

import pytest

from bill import BusinessSettings, LineItem, PrintJob, make_line_item

# ESC @ | ESC a/E/d n | GS !/V n
_COMMAND_RE = re.compile(rb"\x1b@|\x1b[aEd].|\x1d[!V].", re.DOTALL)


def _plain_lines(data: bytes) -> list[str]:
    return _COMMAND_RE.sub(b"", data).decode("utf-8").split("\n")


@pytest.fixture
def plain_lines():
    """Return a function decoding printer bytes into text lines without commands."""
    return _plain_lines


@pytest.fixture
def settings():
    return BusinessSettings(
        business_name="Test Shop",
        address="12 Market Road",
        phone="9876543210",
        email="shop@example.com",
        gst="29ABCDE1234F1Z5",
        terms_and_conditions="Goods once sold will not be taken back.\n\nSubject to local jurisdiction.",
    )


@pytest.fixture
def simple_job():
    """One item, no discount, no optional sections."""
    return PrintJob(
        business_name="Test Shop",
        bill_number="B-001",
        items=(LineItem(name="Widget", quantity=2, rate=50.0, total=100.0),),
        grand_total=100.0,
    )


@pytest.fixture
def discounted_job():
    items = (
        make_line_item("Widget", 2, 50.0),
        make_line_item("Gadget", 1, 200.0, "percentage", 10),
        make_line_item("Gizmo", 3, 10.0),
    )
    return PrintJob(
        business_name="Test Shop",
        bill_number="B-002",
        date="18 Oct 2026, 02:30 PM",
        customer_name="Asha",
        seller_name="Ravi",
        payment_mode="UPI",
        items=items,
        subtotal=310.0,
        discount=None,
        grand_total=310.0,
        notes="Deliver by Friday",
        terms="No returns\n\nThank you",
    )
