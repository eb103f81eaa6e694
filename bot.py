"""Telegram bot that drives a Bluetooth thermal printer for the billing app."""

import asyncio
import json
import logging
from collections import defaultdict
from logging.handlers import RotatingFileHandler
from pathlib import Path
from time import time
from typing import Any, Awaitable, Callable

from aiogram import BaseMiddleware, Bot, Dispatcher, F
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.filters import Command
from aiogram.types import ErrorEvent, Message, TelegramObject
from aiogram.utils.formatting import Bold, Text

import config
from bill import BillError, BusinessSettings, build_print_job
from printer import BluetoothPrinter, PrinterError, StateChange

MAX_BILL_CHARS = 4000
MAX_BILL_BYTES = 64 * 1024

logger = logging.getLogger(__name__)

dp = Dispatcher()
printer = BluetoothPrinter()

# Keeps admin notifications alive until they finish
_background: set[asyncio.Task] = set()


def _setup_logging() -> None:
    """Rotating file logging."""
    log_path = Path(config.LOG_FILE)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        log_path,
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
    )
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    logging.basicConfig(handlers=[handler], level=logging.INFO)


def _business_settings() -> BusinessSettings:
    return BusinessSettings(
        business_name=config.BUSINESS_NAME,
        address=config.BUSINESS_ADDRESS,
        phone=config.BUSINESS_PHONE,
        email=config.BUSINESS_EMAIL,
        gst=config.BUSINESS_GST,
        terms_and_conditions=config.TERMS_AND_CONDITIONS,
    )


async def _reply(message: Message, *parts: Any) -> None:
    await message.reply(**Text(*parts).as_kwargs())


async def _notify_admin(bot: Bot, text: str) -> None:
    if not config.ADMIN_ID:
        return
    try:
        await bot.send_message(config.ADMIN_ID, **Text(text).as_kwargs())
    except Exception as e:
        logger.warning("Failed to notify admin: %s", e)


def _watch_printer(bot: Bot) -> None:
    """Tell the admin when the printer drops without a /disconnect."""

    def on_change(change: StateChange) -> None:
        if change.reason != "link lost":
            return
        task = asyncio.get_running_loop().create_task(
            _notify_admin(bot, "Printer disconnected unexpectedly. Use /connect to reconnect.")
        )
        _background.add(task)
        task.add_done_callback(_background.discard)

    printer.subscribe(on_change)


# --- Auth middleware ---
class AuthMiddleware(BaseMiddleware):
    """Allow only whitelisted users."""

    async def __call__(
        self,
        handler: Callable[[TelegramObject, dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: dict[str, Any],
    ) -> Any:
        if event.from_user is None:
            return await handler(event, data)
        if event.from_user.id not in config.WHITELIST:
            await event.answer("Access denied")
            return
        return await handler(event, data)


# --- Throttling middleware (1 print / N sec per user, scoped by key) ---
class ThrottlingMiddleware(BaseMiddleware):
    """Rate limit: rate_limit msgs per period seconds per user, scoped by key."""

    def __init__(
        self, key: str = "default", rate_limit: int = 1, period: float = 60.0
    ) -> None:
        self.key = key
        self.rate_limit = rate_limit
        self.period = period
        self.user_timestamps: dict[tuple[str, int], list[float]] = defaultdict(list)

    async def __call__(
        self,
        handler: Callable[[TelegramObject, dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: dict[str, Any],
    ) -> Any:
        # Pass through if there is no user (e.g. service updates)
        if event.from_user is None:
            return await handler(event, data)

        # Commands (/connect, /status, ...) are never throttled; only bills are.
        if isinstance(event, Message) and event.text and event.text.startswith("/"):
            return await handler(event, data)

        uid = event.from_user.id
        bucket = (self.key, uid)
        now = time()
        timestamps = self.user_timestamps[bucket]
        timestamps[:] = [t for t in timestamps if now - t < self.period]
        if len(timestamps) >= self.rate_limit:
            seconds = int(self.period)
            await event.answer(
                f"Print rate limit exceeded. Limit 1 print per {seconds} sec.\n"
                f"Please wait {seconds} sec and try again."
            )
            return
        timestamps.append(now)
        return await handler(event, data)


# --- Handlers ---
@dp.message(Command("start"))
async def start(message: Message) -> None:
    """Handle /start command."""
    await _reply(message, "Welcome! Use /connect to pair the printer, then send a bill as JSON.")


@dp.message(Command("status"))
async def status_handler(message: Message) -> None:
    """Handle /status command."""
    stat = await printer.status()
    builder = Text(
        Bold("Bluetooth supported:"),
        f" {stat['supported']}\n",
        Bold("Printer connected:"),
        f" {stat['connected']}\n",
        Bold("Device:"),
        f" {stat['device'] or '-'}\n",
        Bold("State:"),
        f" {stat['state']}",
    )
    await message.reply(**builder.as_kwargs())


@dp.message(Command("help"))
async def help_handler(message: Message) -> None:
    """Handle /help command - list commands and limits."""
    seconds = config.PRINT_RATE_LIMIT_SECONDS
    builder = Text(
        Bold("Commands:"),
        "\n",
        "/start - Welcome and usage\n",
        "/connect - Pair with the Bluetooth printer\n",
        "/disconnect - Release the printer\n",
        "/status - Show connection state\n",
        "/testprint - Print a test page\n",
        "/help - List commands and limits\n\n",
        Bold("Printing bills:"),
        "\n",
        "Send the bill JSON as a message or as a .json file.\n",
        "Required: billNumber, items[name, quantity, rate].\n\n",
        Bold("Limits:"),
        "\n",
        f"• Rate: 1 print per {seconds} seconds\n",
        f"• Message length: max {MAX_BILL_CHARS} characters\n",
        f"• File size: max {MAX_BILL_BYTES // 1024} KB",
    )
    await message.reply(**builder.as_kwargs())


@dp.message(Command("connect"))
async def connect_handler(message: Message) -> None:
    """Handle /connect command - pair with the printer."""
    if printer.is_connected():
        await _reply(message, f"Already connected to {printer.get_device_name() or 'Bluetooth Printer'}")
        return
    logger.info("Connect requested by user %s", message.from_user.id)
    try:
        await printer.connect()
    except PrinterError as e:
        logger.warning("Connect failed: %s", e)
        await _reply(message, f"Connection failed: {e}")
        return
    await _reply(message, f"Connected to {printer.get_device_name() or 'Bluetooth Printer'}")


@dp.message(Command("disconnect"))
async def disconnect_handler(message: Message) -> None:
    """Handle /disconnect command."""
    await printer.disconnect()
    await _reply(message, "Disconnected from printer")


@dp.message(Command("testprint"))
async def test_print_handler(message: Message) -> None:
    """Handle /testprint command - print a fixed test page."""
    try:
        await printer.test_print()
    except PrinterError as e:
        logger.warning("Test print failed: %s", e)
        await _reply(message, f"Test print failed: {e}")
        return
    await _reply(message, "Test print sent successfully!")


@dp.error()
async def error_handler(event: ErrorEvent, bot: Bot) -> None:
    """Notify admin on handler exceptions."""
    logger.error("Handler error: %s", event.exception, exc_info=event.exception)
    await _notify_admin(bot, f"Error: {event.exception}")


async def print_bill_json(message: Message, raw: str) -> None:
    """Parse a bill JSON document and print it, answering with the outcome."""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        await _reply(message, f"Invalid JSON: {e.msg} (line {e.lineno})")
        return
    try:
        job = build_print_job(data, _business_settings())
    except BillError as e:
        await _reply(message, f"Invalid bill: {e}")
        return

    logger.info("Bill %s requested by user %s", job.bill_number, message.from_user.id)
    try:
        await printer.print_bill(job)
    except PrinterError as e:
        logger.warning("Printing bill %s failed: %s", job.bill_number, e)
        await _reply(message, str(e))
        return
    await _reply(message, f"Bill {job.bill_number} printed!")


@dp.message(F.document)
async def document_handler(message: Message, bot: Bot) -> None:
    """Handle a bill sent as a .json file."""
    document = message.document
    name = (document.file_name or "").lower()
    if not name.endswith(".json") and document.mime_type != "application/json":
        await _reply(message, "Send the bill as a .json file.")
        return
    if document.file_size and document.file_size > MAX_BILL_BYTES:
        await _reply(message, "File too large!")
        return

    try:
        file = await bot.get_file(document.file_id)
        buffer = await bot.download_file(file.file_path)
        raw = buffer.read().decode("utf-8")
    except UnicodeDecodeError:
        await _reply(message, "Bill file must be UTF-8 encoded JSON.")
        return
    except Exception as e:
        logger.exception("Bill download failed: %s", e)
        await _reply(message, "Failed to download file.")
        return

    await print_bill_json(message, raw)


@dp.message()
async def handle_message(message: Message) -> None:
    """Handle a bill sent as JSON text."""
    text = message.text or message.caption or ""
    if not text.strip():
        await _reply(message, "Send a bill as JSON to print it.")
        return
    if len(text) > MAX_BILL_CHARS:
        await _reply(message, "Too long!")
        return
    await print_bill_json(message, text)


# --- Setup ---
def setup() -> None:
    """Register middleware and router."""
    dp.message.middleware(AuthMiddleware())
    dp.message.middleware(
        ThrottlingMiddleware(
            key="print", rate_limit=1, period=float(config.PRINT_RATE_LIMIT_SECONDS)
        )
    )


async def main() -> None:
    """Run bot with polling."""
    _setup_logging()
    bot = Bot(
        token=config.get_required("BOT_TOKEN"),
        default=DefaultBotProperties(parse_mode=ParseMode.MARKDOWN_V2),
    )
    setup()
    _watch_printer(bot)
    try:
        await dp.start_polling(bot)
    except Exception as e:
        logger.exception("Bot error: %s", e)
        await _notify_admin(bot, f"Error: {e}")
        raise
    finally:
        await printer.disconnect()


if __name__ == "__main__":
    asyncio.run(main())
