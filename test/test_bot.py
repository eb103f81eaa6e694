"""Pytest suite for bot.py - handlers, middleware, rate limiting."""

import asyncio
import io
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from ble import MockDiscovery
from printer import BluetoothPrinter

BILL = {
    "billNumber": "B-100",
    "date": "2026-10-18T14:30:00",
    "paymentMode": "Cash",
    "items": [{"name": "Widget", "quantity": 2, "rate": 50}],
}


@pytest.fixture(autouse=True)
def patch_config():
    """Patch whitelist, admin and receipt settings for all bot tests."""
    with patch("config.WHITELIST", [111, 222]), patch("config.ADMIN_ID", 999), patch(
        "config.BUSINESS_NAME", "Your Business"
    ), patch("config.CURRENCY_LABEL", "Rs."), patch("config.LINE_WIDTH", 32), patch(
        "config.TEXT_ENCODING", "utf-8"
    ):
        yield


@pytest.fixture
def discovery():
    return MockDiscovery()


@pytest.fixture
def printer(discovery):
    """Replace the module-level printer with an in-memory one."""
    p = BluetoothPrinter(discovery=discovery, chunk_delay=0)
    with patch("bot.printer", p):
        yield p


@pytest.fixture
def mock_message():
    """Create a mock Message with from_user, text, reply, answer."""
    msg = MagicMock()
    msg.from_user = MagicMock()
    msg.from_user.id = 111
    msg.text = "Hello"
    msg.caption = None
    msg.reply = AsyncMock()
    msg.answer = AsyncMock()
    return msg


@pytest.fixture
def mock_event():
    """Create a mock event (Message-like) for middleware testing."""
    ev = MagicMock()
    ev.from_user = MagicMock()
    ev.from_user.id = 111
    ev.answer = AsyncMock()
    return ev


@pytest.fixture
def mock_handler():
    """Async handler that records calls."""

    async def handler(event, data):
        return "handled"

    return AsyncMock(side_effect=handler)


def reply_text(message) -> str:
    return message.reply.call_args.kwargs["text"]


# --- Auth Middleware ---
class TestAuthMiddleware:
    """Tests for AuthMiddleware."""

    @pytest.mark.asyncio
    async def test_allows_whitelisted_user(self, mock_event, mock_handler):
        from bot import AuthMiddleware

        mw = AuthMiddleware()
        result = await mw(mock_handler, mock_event, {})
        assert result == "handled"
        mock_handler.assert_called_once()
        mock_event.answer.assert_not_called()

    @pytest.mark.asyncio
    async def test_denies_non_whitelisted_user(self, mock_event, mock_handler):
        from bot import AuthMiddleware

        mock_event.from_user.id = 99999
        mw = AuthMiddleware()
        result = await mw(mock_handler, mock_event, {})
        assert result is None
        mock_handler.assert_not_called()
        mock_event.answer.assert_called_once_with("Access denied")

    @pytest.mark.asyncio
    async def test_passes_through_when_from_user_is_none(self, mock_handler):
        from bot import AuthMiddleware

        ev = MagicMock()
        ev.from_user = None
        mw = AuthMiddleware()
        result = await mw(mock_handler, ev, {})
        assert result == "handled"


# --- Throttling Middleware ---
class TestThrottlingMiddleware:
    """Tests for ThrottlingMiddleware rate limiting."""

    @pytest.mark.asyncio
    async def test_allows_first_message(self, mock_event, mock_handler):
        from bot import ThrottlingMiddleware

        mw = ThrottlingMiddleware(key="test", rate_limit=1, period=60.0)
        result = await mw(mock_handler, mock_event, {})
        assert result == "handled"
        mock_event.answer.assert_not_called()

    @pytest.mark.asyncio
    async def test_blocks_second_message_within_period(self, mock_event, mock_handler):
        from bot import ThrottlingMiddleware

        mw = ThrottlingMiddleware(key="test2", rate_limit=1, period=60.0)
        await mw(mock_handler, mock_event, {})
        mock_handler.reset_mock()
        result = await mw(mock_handler, mock_event, {})
        assert result is None
        mock_handler.assert_not_called()
        mock_event.answer.assert_called_once()
        assert "rate limit exceeded" in mock_event.answer.call_args[0][0]

    @pytest.mark.asyncio
    async def test_allows_after_period_expires(self, mock_event, mock_handler):
        from bot import ThrottlingMiddleware

        mw = ThrottlingMiddleware(key="test3", rate_limit=1, period=0.1)
        await mw(mock_handler, mock_event, {})
        mock_handler.reset_mock()
        await asyncio.sleep(0.15)
        result = await mw(mock_handler, mock_event, {})
        assert result == "handled"


# --- Handlers ---
@pytest.mark.asyncio
class TestCommandHandlers:
    async def test_start_replies_welcome(self, mock_message):
        from bot import start

        await start(mock_message)
        assert reply_text(mock_message).startswith("Welcome!")

    async def test_help_lists_commands_and_limits(self, mock_message):
        from bot import help_handler

        await help_handler(mock_message)
        text = reply_text(mock_message)
        for command in ("/connect", "/disconnect", "/status", "/testprint", "/help"):
            assert command in text
        assert "Rate:" in text

    async def test_status_reports_state(self, printer, mock_message):
        from bot import status_handler

        await status_handler(mock_message)
        text = reply_text(mock_message)
        assert "Printer connected: False" in text
        assert "State: disconnected" in text

    async def test_connect(self, printer, mock_message):
        from bot import connect_handler

        await connect_handler(mock_message)
        assert printer.is_connected()
        assert reply_text(mock_message) == "Connected to Mock Printer"

    async def test_connect_when_already_connected(self, printer, mock_message):
        from bot import connect_handler

        await printer.connect()
        await connect_handler(mock_message)
        assert reply_text(mock_message) == "Already connected to Mock Printer"

    async def test_connect_failure_is_reported(self, printer, mock_message):
        from bot import connect_handler

        printer._discovery = MagicMock()
        printer._discovery.is_available.return_value = False
        await connect_handler(mock_message)
        assert reply_text(mock_message).startswith("Connection failed:")

    async def test_disconnect(self, printer, mock_message):
        from bot import disconnect_handler

        await printer.connect()
        await disconnect_handler(mock_message)
        assert not printer.is_connected()
        assert reply_text(mock_message) == "Disconnected from printer"

    async def test_testprint(self, printer, discovery, mock_message):
        from bot import test_print_handler

        await printer.connect()
        await test_print_handler(mock_message)
        assert reply_text(mock_message) == "Test print sent successfully!"
        assert b"TEST PRINT" in discovery.last_link.received

    async def test_testprint_not_connected(self, printer, mock_message):
        from bot import test_print_handler

        await test_print_handler(mock_message)
        assert reply_text(mock_message) == "Test print failed: Printer not connected"


@pytest.mark.asyncio
class TestBillPrinting:
    async def test_prints_bill_from_text(self, printer, discovery, mock_message):
        from bot import handle_message

        await printer.connect()
        mock_message.text = json.dumps(BILL)
        await handle_message(mock_message)
        assert reply_text(mock_message) == "Bill B-100 printed!"
        received = discovery.last_link.received
        assert b"Total: Rs.100.00" in received
        assert b"YOUR BUSINESS" in received

    async def test_not_connected(self, printer, mock_message):
        from bot import handle_message

        mock_message.text = json.dumps(BILL)
        await handle_message(mock_message)
        assert reply_text(mock_message) == "Printer not connected"

    async def test_invalid_json(self, printer, mock_message):
        from bot import handle_message

        mock_message.text = "{not json"
        await handle_message(mock_message)
        assert reply_text(mock_message).startswith("Invalid JSON:")

    async def test_invalid_bill(self, printer, mock_message):
        from bot import handle_message

        mock_message.text = json.dumps({"items": []})
        await handle_message(mock_message)
        assert reply_text(mock_message) == "Invalid bill: Missing required field: billNumber"

    async def test_empty_text(self, mock_message):
        from bot import handle_message

        mock_message.text = "   "
        await handle_message(mock_message)
        assert reply_text(mock_message) == "Send a bill as JSON to print it."

    async def test_too_long(self, mock_message):
        from bot import handle_message

        mock_message.text = "x" * 4001
        await handle_message(mock_message)
        assert reply_text(mock_message) == "Too long!"

    async def test_prints_bill_from_document(self, printer, discovery, mock_message):
        from bot import document_handler

        await printer.connect()
        mock_message.document = MagicMock(
            file_name="bill.json", mime_type="application/json", file_size=200, file_id="f1"
        )
        bot = MagicMock()
        bot.get_file = AsyncMock(return_value=MagicMock(file_path="documents/bill.json"))
        bot.download_file = AsyncMock(return_value=io.BytesIO(json.dumps(BILL).encode()))

        await document_handler(mock_message, bot)

        bot.get_file.assert_awaited_once_with("f1")
        bot.download_file.assert_awaited_once_with("documents/bill.json")
        assert reply_text(mock_message) == "Bill B-100 printed!"
        assert discovery.last_link.received

    async def test_rejects_non_json_document(self, printer, mock_message):
        from bot import document_handler

        mock_message.document = MagicMock(file_name="photo.png", mime_type="image/png", file_size=10)
        bot = MagicMock()
        await document_handler(mock_message, bot)
        assert reply_text(mock_message) == "Send the bill as a .json file."

    async def test_rejects_large_document(self, printer, mock_message):
        from bot import document_handler

        mock_message.document = MagicMock(
            file_name="bill.json", mime_type="application/json", file_size=10**6
        )
        await document_handler(mock_message, MagicMock())
        assert reply_text(mock_message) == "File too large!"


@pytest.mark.asyncio
class TestAdminNotifications:
    async def test_unexpected_drop_notifies_admin(self, printer, discovery):
        from bot import _background, _watch_printer

        bot = MagicMock()
        bot.send_message = AsyncMock()
        _watch_printer(bot)
        await printer.connect()

        discovery.last_link.simulate_disconnect()
        await asyncio.gather(*_background)

        bot.send_message.assert_awaited_once()
        assert bot.send_message.call_args[0][0] == 999
        assert "disconnected unexpectedly" in bot.send_message.call_args.kwargs["text"]

    async def test_explicit_disconnect_does_not_notify(self, printer):
        from bot import _watch_printer

        bot = MagicMock()
        bot.send_message = AsyncMock()
        _watch_printer(bot)
        await printer.connect()
        await printer.disconnect()
        await asyncio.sleep(0)
        bot.send_message.assert_not_awaited()

    async def test_error_handler_forwards_to_admin(self):
        from bot import error_handler

        bot = MagicMock()
        bot.send_message = AsyncMock()
        event = MagicMock(exception=RuntimeError("boom"))
        await error_handler(event, bot)
        assert bot.send_message.call_args.kwargs["text"] == "Error: boom"


def test_business_settings_from_config():
    from bot import _business_settings

    with patch("config.BUSINESS_NAME", "Corner Store"), patch("config.BUSINESS_GST", "GST1"):
        settings = _business_settings()
    assert settings.business_name == "Corner Store"
    assert settings.gst == "GST1"
