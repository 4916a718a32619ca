"""Transport protocols the CD48 engine is written against.

The engine never touches pyserial directly. It asks a `Transport` for a
`Port`, opens the port to get an asyncio stream pair and registers a
disconnect listener on it. Anything implementing these methods can stand in
for the real serial stack:

- `cd48.device.serial_port.SerialTransport` : USB serial via pyserial-asyncio
- `cd48.device.mock.MockTransport` : in-memory simulated CD48 for tests

Example
-------
A transport that always hands back the same port:

    class FixedTransport:
        def __init__(self, port):
            self._port = port

        def is_supported(self) -> bool:
            return True

        async def request_port(self, filters):
            return self._port

        async def get_ports(self, filters):
            return [self._port]

See Also
--------
cd48.device.connection : ConnectionManager, the only consumer of Transport
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Sequence, runtime_checkable


class PortSelectionCancelled(Exception):
    """Raised by `Transport.request_port` when nothing was selected."""

    pass


@dataclass(frozen=True)
class PortFilter:
    """USB identifiers a port must match to be offered for selection."""

    usb_vendor_id: int
    usb_product_id: Optional[int] = None

    def matches(self, vid: Optional[int], pid: Optional[int]) -> bool:
        if vid != self.usb_vendor_id:
            return False
        return self.usb_product_id is None or pid == self.usb_product_id


@dataclass(frozen=True)
class PortInfo:
    device: str
    description: str = ""
    hwid: str = ""
    vid: Optional[int] = None
    pid: Optional[int] = None


@runtime_checkable
class Port(Protocol):
    """One physical (or simulated) serial port."""

    @property
    def info(self) -> PortInfo:
        """Identification of the port."""
        ...

    @property
    def is_open(self) -> bool:
        ...

    async def open(
        self, baud_rate: int
    ) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        """Open the port at `baud_rate` and return its byte streams.

        Raises whatever the underlying stack raises (e.g. `OSError`) if the
        port cannot be opened.
        """
        ...

    async def close(self) -> None:
        """Close the port. Closing a closed port is a no-op."""
        ...

    def add_disconnect_listener(self, listener: Callable[[], None]) -> None:
        """Call `listener` (from the event loop) when the link drops."""
        ...

    def remove_disconnect_listener(self, listener: Callable[[], None]) -> None:
        ...


@runtime_checkable
class Transport(Protocol):
    """Source of ports: interactive selection plus previously used ports."""

    def is_supported(self) -> bool:
        ...

    async def request_port(self, filters: Sequence[PortFilter]) -> Port:
        """Select one port matching `filters`.

        Raises `PortSelectionCancelled` if no port was chosen.
        """
        ...

    async def get_ports(self, filters: Sequence[PortFilter]) -> list[Port]:
        """Previously selected ports that are currently available.

        Used for reconnecting without user interaction.
        """
        ...
