"""Async service for a Bluetooth LE thermal printer (ESC/POS, 58 mm)."""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterator, Optional

import config
from ble import BleakDiscovery, LinkError, MockDiscovery, PrinterLink
from bill import PrintJob
from formatter import format_receipt, format_test_page

logger = logging.getLogger(__name__)

CONNECT_FAILED = "Failed to connect to printer. Please ensure the printer is on and in pairing mode."
PRINT_FAILED = "Failed to print bill. Please check printer connection."

# Errors a discovery strategy may raise (bleak errors arrive as LinkError)
_DISCOVERY_ERRORS = (LinkError, asyncio.TimeoutError, OSError)


class PrinterError(Exception):
    """Base class for failures reported to callers of BluetoothPrinter."""


class CapabilityError(PrinterError):
    """The host has no usable Bluetooth LE stack."""


class PrinterConnectionError(PrinterError):
    """Discovery, pairing or GATT lookup failed."""


class NotConnectedError(PrinterError):
    """A print was requested while no printer is connected."""


class TransportError(PrinterError):
    """A chunk write failed; the rest of the job was not sent."""


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class StateChange:
    previous: ConnectionState
    current: ConnectionState
    reason: str


StateListener = Callable[[StateChange], None]


def iter_chunks(data: bytes, size: int) -> Iterator[bytes]:
    """Yield consecutive slices of at most ``size`` bytes."""
    if size <= 0:
        raise ValueError(f"Chunk size must be positive, got {size}")
    for start in range(0, len(data), size):
        yield data[start : start + size]


class BluetoothPrinter:
    """Connection manager and chunked transport for one paired printer.

    At most one link is live at a time. Prints are serialized with a lock so
    overlapping callers never interleave chunks on the same characteristic.
    """

    def __init__(
        self,
        discovery: Any = None,
        chunk_size: int = config.CHUNK_SIZE,
        chunk_delay: float = config.CHUNK_DELAY_SECONDS,
    ) -> None:
        if discovery is None:
            discovery = MockDiscovery() if config.MOCK_PRINTER else BleakDiscovery()
        self._discovery = discovery
        self._mock = config.MOCK_PRINTER
        self.chunk_size = chunk_size
        self.chunk_delay = chunk_delay

        self._link: Optional[PrinterLink] = None
        self._state = ConnectionState.DISCONNECTED
        self._listener: Optional[StateListener] = None
        self._print_lock = asyncio.Lock()

    @property
    def state(self) -> ConnectionState:
        return self._state

    def subscribe(self, listener: Optional[StateListener]) -> None:
        """Register the single state-change listener (None to clear)."""
        self._listener = listener

    def _set_state(self, state: ConnectionState, reason: str) -> None:
        previous = self._state
        if previous == state:
            return
        self._state = state
        logger.info("Printer state %s -> %s (%s)", previous.value, state.value, reason)
        if self._listener is not None:
            try:
                self._listener(StateChange(previous=previous, current=state, reason=reason))
            except Exception as e:
                logger.error("State listener failed: %s", e, exc_info=True)

    def is_supported(self) -> bool:
        return self._discovery.is_available()

    def _check_supported(self) -> None:
        if not self.is_supported():
            raise CapabilityError("Bluetooth LE is not supported on this host")

    def is_connected(self) -> bool:
        return self._link is not None and self._link.is_open()

    def get_device_name(self) -> Optional[str]:
        if self._link is None:
            return None
        return self._link.name or None

    async def connect(self) -> None:
        """Pair with a printer, trying the known service first, then any device."""
        self._check_supported()
        if self._state == ConnectionState.CONNECTING:
            raise PrinterConnectionError("A connection attempt is already in progress")
        if self.is_connected():
            return

        self._set_state(ConnectionState.CONNECTING, "connect requested")
        try:
            try:
                link = await self._discovery.open_service_link()
            except _DISCOVERY_ERRORS as e:
                logger.warning("Service-scoped connection failed: %s", e)
                try:
                    link = await self._discovery.open_any_link()
                except _DISCOVERY_ERRORS as alt:
                    logger.error("Alternative connection failed: %s", alt)
                    raise PrinterConnectionError(CONNECT_FAILED) from alt
        except BaseException:
            self._set_state(ConnectionState.DISCONNECTED, "connect failed")
            raise

        link.on_disconnect(self._on_link_lost)
        self._link = link
        if not link.is_open():
            # Dropped before the observer was in place
            self._link = None
            self._set_state(ConnectionState.DISCONNECTED, "link lost")
            raise PrinterConnectionError(CONNECT_FAILED)
        self._set_state(ConnectionState.CONNECTED, f"connected to {link.name or 'printer'}")

    def _on_link_lost(self, link: PrinterLink) -> None:
        if link is not self._link:
            return
        self._link = None
        self._set_state(ConnectionState.DISCONNECTED, "link lost")

    async def disconnect(self) -> None:
        """Close the link if there is one; safe to call repeatedly."""
        link = self._link
        self._link = None
        if link is not None:
            try:
                await link.close()
            except _DISCOVERY_ERRORS as e:
                logger.warning("Error while closing printer link: %s", e)
        self._set_state(ConnectionState.DISCONNECTED, "disconnect requested")

    async def _write_chunks(self, link: PrinterLink, data: bytes) -> None:
        for chunk in iter_chunks(data, self.chunk_size):
            await link.write(chunk)
            # Give the printer time to drain its receive buffer
            await asyncio.sleep(self.chunk_delay)

    async def send(self, data: bytes) -> None:
        """Write ``data`` to the printer and wait until every chunk is accepted.

        Cancellation is honoured while waiting for the previous job. Once the
        first chunk is on its way the job always runs to completion, however
        many times the caller is cancelled.
        """
        self._check_supported()
        async with self._print_lock:
            link = self._link
            if link is None or not link.is_open():
                raise NotConnectedError("Printer not connected")

            task = asyncio.ensure_future(self._write_chunks(link, data))
            cancelled = False
            while not task.done():
                try:
                    await asyncio.wait({task})
                except asyncio.CancelledError:
                    if not cancelled:
                        logger.warning("Print cancelled mid-transmission, draining remaining chunks")
                    cancelled = True

            error = task.exception()
            if error is not None:
                logger.error("Chunk write failed: %s", error, exc_info=error)
                if not cancelled:
                    raise TransportError(PRINT_FAILED) from error
            if cancelled:
                raise asyncio.CancelledError()

        logger.info("Sent %d bytes to %s", len(data), link.name)

    async def print_bill(self, job: PrintJob) -> None:
        """Format and print one bill."""
        self._check_supported()
        if not self.is_connected():
            raise NotConnectedError("Printer not connected")

        data = format_receipt(
            job,
            width=config.LINE_WIDTH,
            currency=config.CURRENCY_LABEL,
            encoding=config.TEXT_ENCODING,
        ).to_bytes()
        await self.send(data)
        if self._mock:
            logger.info("Printed bill (mock): %s", job.bill_number)
        else:
            logger.info("Printed bill: %s", job.bill_number)

    async def test_print(self) -> None:
        self._check_supported()
        if not self.is_connected():
            raise NotConnectedError("Printer not connected")
        data = format_test_page(
            width=config.LINE_WIDTH, encoding=config.TEXT_ENCODING
        ).to_bytes()
        await self.send(data)
        logger.info("Test page printed")

    async def status(self) -> dict[str, object]:
        """Return capability, connection state and device name."""
        return {
            "supported": self.is_supported(),
            "connected": self.is_connected(),
            "device": self.get_device_name(),
            "state": self._state.value,
        }
