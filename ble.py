"""Bluetooth LE link to a thermal printer.

The printer service only talks to a ``PrinterLink``: something that can write
bytes, report whether it is open and announce an unexpected disconnect. The
bleak-backed implementation is used on real hardware; ``MockLink`` stands in
for it when ``MOCK_PRINTER`` is enabled.
"""

from __future__ import annotations

import importlib.util
import logging
import sys
from typing import Any, Callable, Iterable, List, Optional, Protocol

import config

logger = logging.getLogger(__name__)

WRITE_PROPERTIES = ("write", "write-without-response")
SUPPORTED_PLATFORMS = ("linux", "darwin", "win32")


class LinkError(Exception):
    """Discovery or GATT setup failed (no device, no writable characteristic)."""


DisconnectCallback = Callable[["PrinterLink"], None]


class PrinterLink(Protocol):
    name: Optional[str]

    def is_open(self) -> bool: ...

    async def write(self, data: bytes) -> None: ...

    def on_disconnect(self, callback: DisconnectCallback) -> None: ...

    async def close(self) -> None: ...


def find_writable_characteristic(services: Iterable[Any]) -> Optional[Any]:
    """Return the first characteristic of any service that accepts writes."""
    for service in services:
        for char in service.characteristics:
            if any(prop in char.properties for prop in WRITE_PROPERTIES):
                return char
    return None


class BleakLink:
    """PrinterLink over a bleak client and one GATT characteristic."""

    def __init__(self, device: Any, timeout: float = config.SCAN_TIMEOUT) -> None:
        from bleak import BleakClient

        self.name: Optional[str] = getattr(device, "name", None)
        self._client = BleakClient(
            device,
            disconnected_callback=self._handle_disconnect,
            timeout=timeout,
        )
        self._characteristic: Any = None
        self._response = False
        self._listener: Optional[DisconnectCallback] = None

    @property
    def services(self) -> Any:
        return self._client.services

    async def open(self) -> None:
        await self._client.connect()

    def use_characteristic(self, characteristic: Any) -> None:
        self._characteristic = characteristic
        # Prefer acknowledged writes when the printer offers them
        self._response = "write" in characteristic.properties
        logger.debug(
            "Using characteristic %s (response=%s)", characteristic.uuid, self._response
        )

    def is_open(self) -> bool:
        return self._characteristic is not None and self._client.is_connected

    async def write(self, data: bytes) -> None:
        if self._characteristic is None:
            raise LinkError("No writable characteristic selected")
        await self._client.write_gatt_char(self._characteristic, data, response=self._response)

    def on_disconnect(self, callback: DisconnectCallback) -> None:
        self._listener = callback

    def _handle_disconnect(self, _client: Any) -> None:
        logger.info("Peripheral %s disconnected", self.name)
        self._characteristic = None
        if self._listener is not None:
            self._listener(self)

    async def close(self) -> None:
        self._characteristic = None
        await self._client.disconnect()


class BleakDiscovery:
    """Two discovery strategies: known printer service first, then any device."""

    def __init__(
        self,
        service_uuids: Optional[List[str]] = None,
        characteristic_uuid: str = config.PRINTER_CHARACTERISTIC_UUID,
        address: str = config.PRINTER_ADDRESS,
        timeout: float = config.SCAN_TIMEOUT,
    ) -> None:
        self.service_uuids = service_uuids or list(config.PRINTER_SERVICE_UUIDS)
        self.characteristic_uuid = characteristic_uuid
        self.address = address
        self.timeout = timeout
        # Device seen by the service-scoped scan, reused by the fallback
        self._device: Any = None

    def is_available(self) -> bool:
        if not sys.platform.startswith(SUPPORTED_PLATFORMS):
            return False
        return importlib.util.find_spec("bleak") is not None

    async def _find_device(self, service_uuids: Optional[List[str]]) -> Any:
        from bleak import BleakScanner

        if self.address:
            return await BleakScanner.find_device_by_address(self.address, timeout=self.timeout)
        devices = await BleakScanner.discover(timeout=self.timeout, service_uuids=service_uuids)
        named = [d for d in devices if d.name]
        return named[0] if named else None

    async def open_service_link(self) -> BleakLink:
        from bleak.exc import BleakError

        try:
            return await self._open_service_link()
        except BleakError as e:
            raise LinkError(str(e)) from e

    async def open_any_link(self) -> BleakLink:
        from bleak.exc import BleakError

        try:
            return await self._open_any_link()
        except BleakError as e:
            raise LinkError(str(e)) from e

    async def _open_service_link(self) -> BleakLink:
        self._device = None
        device = await self._find_device(self.service_uuids)
        if device is None:
            raise LinkError("No printer advertising a known service was found")
        self._device = device
        logger.info("Found printer %s (%s)", device.name, device.address)

        link = BleakLink(device, timeout=self.timeout)
        await link.open()
        service = link.services.get_service(self.service_uuids[0])
        char = service.get_characteristic(self.characteristic_uuid) if service else None
        if char is None:
            await link.close()
            raise LinkError(
                f"Characteristic {self.characteristic_uuid} not found on {device.name}"
            )
        link.use_characteristic(char)
        return link

    async def _open_any_link(self) -> BleakLink:
        device = self._device or await self._find_device(None)
        if device is None:
            raise LinkError("No Bluetooth device selected")
        logger.info("Scanning %s for a writable characteristic", device.name)

        link = BleakLink(device, timeout=self.timeout)
        await link.open()
        char = find_writable_characteristic(link.services)
        if char is None:
            await link.close()
            raise LinkError(f"No writable characteristic found on {device.name}")
        link.use_characteristic(char)
        return link


class MockLink:
    """In-memory printer; keeps every chunk it receives."""

    def __init__(self, name: Optional[str] = "Mock Printer") -> None:
        self.name = name
        self.writes: List[bytes] = []
        self._open = True
        self._listener: Optional[DisconnectCallback] = None

    def is_open(self) -> bool:
        return self._open

    async def write(self, data: bytes) -> None:
        if not self._open:
            raise LinkError("Mock link is closed")
        self.writes.append(bytes(data))

    def on_disconnect(self, callback: DisconnectCallback) -> None:
        self._listener = callback

    def simulate_disconnect(self) -> None:
        """Drop the link as if the printer was switched off."""
        self._open = False
        if self._listener is not None:
            self._listener(self)

    async def close(self) -> None:
        self._open = False

    @property
    def received(self) -> bytes:
        return b"".join(self.writes)


class MockDiscovery:
    """Discovery stub that always finds a MockLink."""

    def __init__(self, name: str = "Mock Printer") -> None:
        self.name = name
        self.last_link: Optional[MockLink] = None

    def is_available(self) -> bool:
        return True

    async def open_service_link(self) -> MockLink:
        self.last_link = MockLink(self.name)
        return self.last_link

    async def open_any_link(self) -> MockLink:
        return await self.open_service_link()
