#!/usr/bin/env python3
"""Deploy script: create default .env, log folder, and systemd service for the printer bot."""

import argparse
import os
import subprocess
import sys
from pathlib import Path

# Folders
DIRS = ["logs"]

# Default .env for the BLE receipt printer bot (placeholders, safe for first run)
ENV_TEMPLATE = """# billprint-bot: Telegram front end for a 58 mm Bluetooth LE receipt printer
# Fill in the Telegram section, then either pair real hardware or set MOCK_PRINTER=true

# Telegram
BOT_TOKEN=YOUR_BOT_TOKEN_FROM_BOTFATHER
ADMIN_ID=YOUR_TELEGRAM_USER_ID
WHITELIST=YOUR_TELEGRAM_USER_ID
PRINT_RATE_LIMIT_SECONDS=20
LOG_FILE=logs/app.log

# Bluetooth LE printer
# Empty PRINTER_ADDRESS scans for the first printer advertising a known service
MOCK_PRINTER=false
PRINTER_ADDRESS=
PRINTER_SERVICE_UUIDS=000018f0-0000-1000-8000-00805f9b34fb,49535343-fe7d-4ae5-8fa9-9fafd205e455
PRINTER_CHARACTERISTIC_UUID=00002af1-0000-1000-8000-00805f9b34fb
SCAN_TIMEOUT=10.0
# GATT writes: bytes per chunk and pause between chunks
CHUNK_SIZE=20
CHUNK_DELAY_SECONDS=0.01

# Receipt layout (32 columns fits 58 mm paper)
LINE_WIDTH=32
TEXT_ENCODING=utf-8
CURRENCY_LABEL=Rs.

# Shop details printed in the receipt header and footer
BUSINESS_NAME=Your Business
BUSINESS_ADDRESS=
BUSINESS_PHONE=
BUSINESS_EMAIL=
BUSINESS_GST=
TERMS_AND_CONDITIONS=Goods once sold will not be taken back.\\nSubject to local jurisdiction.
"""


def get_systemd_service_content(base: Path, user: str) -> str:
    """Generate systemd service file for bot.py in virtual environment."""
    base_str = str(base)
    return f"""[Unit]
Description=Billing Printer Bot
After=network.target bluetooth.target
Wants=bluetooth.target

[Service]
Type=simple
User={user}
WorkingDirectory={base_str}
ExecStart={base_str}/venv/bin/python bot.py
Restart=always
RestartSec=10

[Install]
WantedBy=multi-user.target
"""


def write_env_template(env_path: Path) -> bool:
    """Write the .env template unless a config already exists."""
    if env_path.exists():
        return False
    env_path.write_text(ENV_TEMPLATE, encoding="utf-8")
    return True


def main() -> None:
    parser = argparse.ArgumentParser(description="Set up the billing printer bot for production")
    parser.add_argument(
        "--install-service",
        action="store_true",
        help="Install systemd service (requires sudo)",
    )
    parser.add_argument(
        "--user",
        default=os.environ.get("SUDO_USER", os.environ.get("USER", "pi")),
        help="User to run the service (default: pi or current user)",
    )
    args = parser.parse_args()

    base = Path(__file__).resolve().parent

    # Create folders
    for name in DIRS:
        path = base / name
        path.mkdir(exist_ok=True)
        print(f"Created directory: {path}")

    # Create .env if missing
    env_path = base / ".env"
    if write_env_template(env_path):
        print(f"Created config: {env_path}")
        print("  → Edit .env and set BOT_TOKEN, ADMIN_ID, WHITELIST and BUSINESS_* before running.")
    else:
        print(f"Config already exists: {env_path}")

    # Generate systemd service file
    service_content = get_systemd_service_content(base, args.user)
    service_path = base / "bot.service"
    service_path.write_text(service_content, encoding="utf-8")
    print(f"Generated systemd service: {service_path}")

    if args.install_service:
        if sys.platform != "linux":
            print("Warning: systemd install is supported on Linux only.")
        else:
            try:
                subprocess.run(
                    ["sudo", "cp", str(service_path), "/etc/systemd/system/"],
                    check=True,
                )
                subprocess.run(["sudo", "systemctl", "daemon-reload"], check=True)
                subprocess.run(["sudo", "systemctl", "enable", "bot"], check=True)
                print("Service installed and enabled. Start with: sudo systemctl start bot")
            except subprocess.CalledProcessError as e:
                print(f"Service installation failed: {e}", file=sys.stderr)
                sys.exit(1)
    else:
        print("  → To install the service: python deploy.py --install-service")


if __name__ == "__main__":
    main()
