"""Configuration module - loads settings from .env file."""

import logging
import os

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Must load .env before reading any variables
if not load_dotenv():
    logger.warning(".env file not found, using process environment and defaults")


def get_required(key: str) -> str:
    """Get required env var; log warning and raise if missing."""
    value = os.getenv(key)
    if not value or not value.strip():
        logger.warning("Missing or empty required key in .env: %s", key)
        raise ValueError(f"Missing required environment variable: {key}")
    return value.strip()


def _parse_whitelist(value: str | None) -> list[int]:
    """Parse comma-separated string of integers into list[int].
    Handles both '1,2,3' and '[1,2,3]' formats.
    """
    if not value or not value.strip():
        return []
    raw = value.strip()
    if raw.startswith("[") and raw.endswith("]"):
        raw = raw[1:-1]
    return [int(x.strip()) for x in raw.split(",") if x.strip()]


def _parse_list(value: str | None, default: list[str]) -> list[str]:
    """Parse comma-separated strings; fall back to default when empty."""
    if not value or not value.strip():
        return list(default)
    return [x.strip().lower() for x in value.split(",") if x.strip()]


def _parse_bool(value: str | None) -> bool:
    """Parse string to bool; default False for missing/invalid."""
    if not value:
        return False
    return value.strip().lower() in ("true", "1", "yes", "on")


def _parse_multiline(value: str | None) -> str:
    # .env files keep values on one line, so "\n" is written literally
    return (value or "").replace("\\n", "\n").strip()


# Telegram (BOT_TOKEN is checked when the bot starts)
BOT_TOKEN: str = os.getenv("BOT_TOKEN", "").strip()
ADMIN_ID: int = int(os.getenv("ADMIN_ID", "0").strip() or 0)
WHITELIST: list[int] = _parse_whitelist(os.getenv("WHITELIST"))
PRINT_RATE_LIMIT_SECONDS: int = int(os.getenv("PRINT_RATE_LIMIT_SECONDS", "20").strip())
LOG_FILE: str = os.getenv("LOG_FILE", "logs/app.log").strip()

# Bluetooth printer
MOCK_PRINTER: bool = _parse_bool(os.getenv("MOCK_PRINTER", "false"))
# Optional MAC address (Linux/Windows) or CoreBluetooth UUID (macOS)
PRINTER_ADDRESS: str = os.getenv("PRINTER_ADDRESS", "").strip()
PRINTER_SERVICE_UUIDS: list[str] = _parse_list(
    os.getenv("PRINTER_SERVICE_UUIDS"),
    [
        "000018f0-0000-1000-8000-00805f9b34fb",
        "49535343-fe7d-4ae5-8fa9-9fafd205e455",
    ],
)
PRINTER_CHARACTERISTIC_UUID: str = os.getenv(
    "PRINTER_CHARACTERISTIC_UUID", "00002af1-0000-1000-8000-00805f9b34fb"
).strip().lower()
SCAN_TIMEOUT: float = float(os.getenv("SCAN_TIMEOUT", "10.0").strip())
# 20 bytes fits the default ATT MTU (23) minus the 3 byte header
CHUNK_SIZE: int = int(os.getenv("CHUNK_SIZE", "20").strip())
CHUNK_DELAY_SECONDS: float = float(os.getenv("CHUNK_DELAY_SECONDS", "0.01").strip())

# Receipt layout (32 columns on 58 mm paper with font A)
LINE_WIDTH: int = int(os.getenv("LINE_WIDTH", "32").strip())
TEXT_ENCODING: str = os.getenv("TEXT_ENCODING", "utf-8").strip()
CURRENCY_LABEL: str = os.getenv("CURRENCY_LABEL", "Rs.").strip()

# Business settings printed in the receipt header
BUSINESS_NAME: str = os.getenv("BUSINESS_NAME", "Your Business").strip()
BUSINESS_ADDRESS: str = os.getenv("BUSINESS_ADDRESS", "").strip()
BUSINESS_PHONE: str = os.getenv("BUSINESS_PHONE", "").strip()
BUSINESS_EMAIL: str = os.getenv("BUSINESS_EMAIL", "").strip()
BUSINESS_GST: str = os.getenv("BUSINESS_GST", "").strip()
TERMS_AND_CONDITIONS: str = _parse_multiline(os.getenv("TERMS_AND_CONDITIONS"))
