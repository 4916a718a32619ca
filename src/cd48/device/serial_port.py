"""USB serial transport for the CD48, built on pyserial-asyncio.

Ports are discovered with `serial.tools.list_ports` and filtered on USB
vendor/product id. A selected port is remembered in the device cache so that
`get_ports` (used when reconnecting) only offers ports the user picked
before.
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Callable, Optional, Sequence

import serial_asyncio
from loguru import logger

from cd48.types.protocols import PortFilter, PortInfo, PortSelectionCancelled
from cd48.util.check_hw import list_cd48_ports
from cd48.util.device_cache import get_cached_ports, update_cached_port

DEVICE_TYPE = "cd48"

PortSelector = Callable[[list[PortInfo]], Optional[PortInfo]]


class _LinkProtocol(asyncio.StreamReaderProtocol):
    """Stream protocol that reports the serial link going away."""

    def __init__(self, reader: asyncio.StreamReader, on_lost: Callable):
        super().__init__(reader)
        self._on_lost = on_lost

    def connection_made(self, transport):
        super().connection_made(transport)
        ser = getattr(transport, "serial", None)
        if ser is not None:
            try:
                ser.reset_input_buffer()
                ser.reset_output_buffer()
            except Exception as e:
                logger.debug("Could not reset serial buffers: {}", e)

    def connection_lost(self, exc):
        super().connection_lost(exc)
        self._on_lost(exc)


class SerialPort:
    """One serial device node, opened as an asyncio stream pair."""

    def __init__(self, info: PortInfo):
        self._info = info
        self._transport: Optional[asyncio.Transport] = None
        self._listeners: list[Callable[[], None]] = []
        self._closing = False

    def __repr__(self):
        return f"SerialPort({self._info.device!r})"

    @property
    def info(self) -> PortInfo:
        return self._info

    @property
    def is_open(self) -> bool:
        return self._transport is not None and not self._transport.is_closing()

    async def open(
        self, baud_rate: int
    ) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        if self.is_open:
            raise OSError(f"{self._info.device} is already open")
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader(loop=loop)
        self._closing = False
        transport, protocol = await serial_asyncio.create_serial_connection(
            loop,
            lambda: _LinkProtocol(reader, self._on_connection_lost),
            self._info.device,
            baudrate=baud_rate,
        )
        self._transport = transport
        writer = asyncio.StreamWriter(transport, protocol, reader, loop)
        logger.info("Opened {} at {} baud", self._info.device, baud_rate)
        return reader, writer

    async def close(self) -> None:
        if self._transport is None:
            return
        self._closing = True
        transport, self._transport = self._transport, None
        transport.close()
        logger.debug("Closed {}", self._info.device)

    def add_disconnect_listener(self, listener: Callable[[], None]) -> None:
        self._listeners.append(listener)

    def remove_disconnect_listener(self, listener: Callable[[], None]) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def _on_connection_lost(self, exc: Optional[Exception]) -> None:
        self._transport = None
        if self._closing:
            return
        logger.warning("Serial link {} lost: {}", self._info.device, exc)
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Error in disconnect listener")


class SerialTransport:
    """Serial ports on this host.

    Parameters
    ----------
    port : str, optional
        Use this device node instead of selecting one (e.g. '/dev/ttyACM0')
    selector : callable, optional
        Given the matching ports, return the one to use or None to cancel.
        By default the first match is taken.
    cache_dir : Path, optional
        Where selected ports are remembered
    """

    def __init__(
        self,
        port: Optional[str] = None,
        selector: Optional[PortSelector] = None,
        cache_dir: Optional[Path] = None,
    ):
        self._port_override = port
        self._selector = selector
        self._cache_dir = cache_dir

    def is_supported(self) -> bool:
        # no serial ports under pyodide
        return sys.platform != "emscripten"

    async def request_port(self, filters: Sequence[PortFilter]) -> SerialPort:
        candidates = list_cd48_ports(filters)
        if self._port_override is not None:
            info = next(
                (c for c in candidates if c.device == self._port_override),
                PortInfo(device=self._port_override),
            )
        elif self._selector is not None:
            info = self._selector(candidates)
        else:
            info = candidates[0] if candidates else None

        if info is None:
            raise PortSelectionCancelled("no CD48 port selected")
        logger.info("Selected port {} ({})", info.device, info.description or "n/a")
        update_cached_port(DEVICE_TYPE, info.device, self._cache_dir)
        return SerialPort(info)

    async def get_ports(self, filters: Sequence[PortFilter]) -> list[SerialPort]:
        present = {p.device: p for p in list_cd48_ports(filters)}
        cached = get_cached_ports(DEVICE_TYPE, self._cache_dir)
        if self._port_override is not None and self._port_override not in cached:
            cached.insert(0, self._port_override)
        ports = [SerialPort(present[d]) for d in cached if d in present]
        logger.debug("Previously selected ports available: {}", ports)
        return ports
