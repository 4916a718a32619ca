"""In-memory CD48 for tests and demos.

`MockCD48` answers the firmware command set over a fake stream pair;
`MockPort`/`MockTransport` plug it into the engine in place of a serial
port. Test hooks let a test inject write failures, slow or missing replies,
replies without a line ending, and pulling the USB cable.

Example
-------
```python
device = MockCD48(count_rates=[1000, 500, 0, 0, 20, 0, 0, 0])
cd48 = CD48(transport=MockTransport(device), config=CD48Config(settle_delay=0))
await cd48.connect()
m = await cd48.measure_rate(0, 0.5)
```
"""

from __future__ import annotations

import asyncio
from typing import Callable, Optional, Sequence

from loguru import logger

from cd48.types.protocols import PortFilter, PortInfo, PortSelectionCancelled
from cd48.types.validation import byte_to_voltage
from cd48.util.defaults import EXPECTED_CHANNEL_COUNT, USB_VENDOR_ID

MOCK_PRODUCT_ID = 0x0001
HELP_TEXT = [
    "CD48 command summary",
    "v        firmware version",
    "c / C    counts (raw / formatted), clears counters",
    "p / P    settings (raw / formatted)",
    "Snabcd   route inputs A-D to counter n",
    "Lxxx     trigger level byte",
    "Vxxx     DAC output byte",
    "z / Z    50 ohm / high-Z inputs",
    "rxxxx    repeat interval (ms), R toggles repeat",
    "E        overflow flag (clears)",
    "T        LED test",
]


class MockCD48:
    """Simulated counter.

    Counts on channel i are `count_offsets[i] + int(count_rates[i] * t)`,
    where t is the time since the counters were last read with `c`.

    Parameters
    ----------
    firmware_version : str
        Version reported by `v`
    count_rates : Sequence[float], optional
        Events per second on each of the 8 channels
    count_offsets : Sequence[int], optional
        Fixed counts added to every read, survives clearing
    response_delay : float
        Seconds before each reply is delivered
    """

    def __init__(
        self,
        firmware_version: str = "1.2.0",
        count_rates: Optional[Sequence[float]] = None,
        count_offsets: Optional[Sequence[int]] = None,
        response_delay: float = 0.0,
    ):
        self.firmware_version = firmware_version
        self.count_rates = list(count_rates or [0.0] * EXPECTED_CHANNEL_COUNT)
        self.count_offsets = list(count_offsets or [0] * EXPECTED_CHANNEL_COUNT)
        self.response_delay = response_delay
        self.line_ending = "\r\n"

        # test hooks
        self.silent = False  # never reply
        self.omit_terminator = False  # reply without line ending
        self.fail_writes = 0  # raise on the next n writes
        self.raw_count_reply: Optional[str] = None  # override the `c` reply

        # device state
        self.overflow = 0
        self.channel_inputs = {ch: "0000" for ch in range(EXPECTED_CHANNEL_COUNT)}
        self.trigger_byte = 0
        self.dac_byte = 0
        self.impedance = "highz"
        self.repeat_interval = 1000
        self.repeat_enabled = False

        # observations
        self.commands: list[str] = []
        self.write_times: list[float] = []
        self._cleared_at: Optional[float] = None
        self._rx = bytearray()

    # ------------------------------------------------------------------
    # Counters
    # ------------------------------------------------------------------

    def _now(self) -> float:
        return asyncio.get_running_loop().time()

    def current_counts(self) -> list[int]:
        elapsed = 0.0 if self._cleared_at is None else self._now() - self._cleared_at
        return [
            off + int(rate * elapsed)
            for off, rate in zip(self.count_offsets, self.count_rates)
        ]

    def _clear(self) -> None:
        self._cleared_at = self._now()

    # ------------------------------------------------------------------
    # Command handling
    # ------------------------------------------------------------------

    def receive(self, data: bytes) -> list[str]:
        """Feed written bytes; return the replies for complete commands."""
        self._rx.extend(data)
        replies = []
        while b"\r" in self._rx:
            line, _, rest = bytes(self._rx).partition(b"\r")
            self._rx = bytearray(rest)
            command = line.decode("ascii", errors="replace").strip()
            if not command:
                continue
            self.commands.append(command)
            replies.append(self.handle(command))
        return replies

    def handle(self, command: str) -> str:
        head, arg = command[0], command[1:]
        if head == "v":
            return f"CD48 Coincidence Counter v{self.firmware_version}"
        if head == "H":
            return self.line_ending.join(HELP_TEXT)
        if head == "c":
            if self.raw_count_reply is not None:
                return self.raw_count_reply
            counts = self.current_counts()
            self._clear()
            return " ".join(str(n) for n in counts) + f" {self.overflow}"
        if head == "C":
            counts = self.current_counts()
            return self.line_ending.join(
                f"Counter {i}: {n}" for i, n in enumerate(counts)
            )
        if head == "p":
            return " ".join(
                [self.channel_inputs[ch] for ch in range(8)]
                + [str(self.trigger_byte), str(self.dac_byte), self.impedance]
                + [str(self.repeat_interval), str(int(self.repeat_enabled))]
            )
        if head == "P":
            lines = [f"Counter {ch} inputs ABCD: {self.channel_inputs[ch]}" for ch in range(8)]
            lines += [
                f"Trigger level: {byte_to_voltage(self.trigger_byte):.3f} V",
                f"DAC voltage: {byte_to_voltage(self.dac_byte):.3f} V",
                f"Impedance: {self.impedance}",
                f"Repeat: {'on' if self.repeat_enabled else 'off'} every {self.repeat_interval} ms",
            ]
            return self.line_ending.join(lines)
        if head == "S" and len(arg) == 5 and arg.isdigit():
            self.channel_inputs[int(arg[0])] = arg[1:]
            return "OK"
        if head == "L" and arg.isdigit():
            self.trigger_byte = int(arg)
            return "OK"
        if head == "V" and arg.isdigit():
            self.dac_byte = int(arg)
            return "OK"
        if head == "z":
            self.impedance = "50ohm"
            return "OK"
        if head == "Z":
            self.impedance = "highz"
            return "OK"
        if head == "r" and arg.isdigit():
            self.repeat_interval = int(arg)
            return "OK"
        if head == "R":
            self.repeat_enabled = not self.repeat_enabled
            return "OK"
        if head == "E":
            overflow, self.overflow = self.overflow, 0
            return str(overflow)
        if head == "T":
            return "LED test OK"
        return "?"


class _MockWriter:
    """The write half of a MockPort; looks enough like asyncio.StreamWriter."""

    def __init__(self, port: MockPort):
        self._port = port
        self._closed = False

    def write(self, data: bytes) -> None:
        self._port._write(data)

    async def drain(self) -> None:
        if self._closed or not self._port.is_open:
            raise ConnectionResetError("mock port closed")

    def is_closing(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    async def wait_closed(self) -> None:
        return None


class MockPort:
    """Serial port with a MockCD48 on the other end."""

    def __init__(self, device: MockCD48, device_name: str = "/dev/mock-cd48"):
        self.device = device
        self._info = PortInfo(
            device=device_name,
            description="Mock CD48",
            hwid=f"USB VID:PID={USB_VENDOR_ID:04X}:{MOCK_PRODUCT_ID:04X}",
            vid=USB_VENDOR_ID,
            pid=MOCK_PRODUCT_ID,
        )
        self.plugged_in = True
        self.fail_opens = 0  # raise on the next n open() calls
        self.open_count = 0
        self._reader: Optional[asyncio.StreamReader] = None
        self._listeners: list[Callable[[], None]] = []
        self._pending: set[asyncio.TimerHandle] = set()

    @property
    def info(self) -> PortInfo:
        return self._info

    @property
    def is_open(self) -> bool:
        return self._reader is not None

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    async def open(self, baud_rate: int):
        if not self.plugged_in:
            raise OSError(f"{self._info.device}: no such device")
        if self.fail_opens > 0:
            self.fail_opens -= 1
            raise OSError(f"{self._info.device}: could not open port")
        if self.is_open:
            raise OSError(f"{self._info.device}: port already open")
        self.open_count += 1
        self._reader = asyncio.StreamReader()
        logger.debug("Mock port opened at {} baud", baud_rate)
        return self._reader, _MockWriter(self)

    async def close(self) -> None:
        self._cancel_pending()
        self._reader = None

    def add_disconnect_listener(self, listener: Callable[[], None]) -> None:
        self._listeners.append(listener)

    def remove_disconnect_listener(self, listener: Callable[[], None]) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    # ------------------------------------------------------------------
    # Test hooks
    # ------------------------------------------------------------------

    def unplug(self) -> None:
        """Pull the cable: stream hits EOF and disconnect listeners fire."""
        self.plugged_in = False
        self._cancel_pending()
        reader, self._reader = self._reader, None
        if reader is None:
            return
        reader.feed_eof()
        loop = asyncio.get_running_loop()
        for listener in list(self._listeners):
            loop.call_soon(listener)

    def replug(self) -> None:
        self.plugged_in = True

    def inject(self, data: bytes) -> None:
        """Push unsolicited bytes to the host."""
        if self._reader is not None:
            self._reader.feed_data(data)

    # ------------------------------------------------------------------

    def _write(self, data: bytes) -> None:
        if self._reader is None:
            raise ConnectionResetError("mock port closed")
        dev = self.device
        if dev.fail_writes > 0:
            dev.fail_writes -= 1
            raise OSError("mock write failure")
        dev.write_times.append(asyncio.get_running_loop().time())
        for reply in dev.receive(data):
            if dev.silent:
                continue
            payload = reply if dev.omit_terminator else reply + dev.line_ending
            self._deliver(payload.encode("ascii"))

    def _deliver(self, payload: bytes) -> None:
        reader = self._reader
        loop = asyncio.get_running_loop()
        delay = self.device.response_delay
        if delay <= 0:
            loop.call_soon(self._feed, reader, payload)
            return

        def _fire():
            self._pending.discard(handle)
            self._feed(reader, payload)

        handle = loop.call_later(delay, _fire)
        self._pending.add(handle)

    def _feed(self, reader: Optional[asyncio.StreamReader], payload: bytes) -> None:
        # a reply for a reader that has since been replaced is dropped
        if reader is not None and reader is self._reader and not reader.at_eof():
            reader.feed_data(payload)

    def _cancel_pending(self) -> None:
        for handle in self._pending:
            handle.cancel()
        self._pending.clear()


class MockTransport:
    """Transport offering a single MockPort.

    Parameters
    ----------
    device : MockCD48, optional
        The simulated counter; a default one is made if omitted
    supported : bool
        What `is_supported()` reports
    cancel_selection : bool
        Make `request_port` behave as if the user closed the picker
    """

    def __init__(
        self,
        device: Optional[MockCD48] = None,
        supported: bool = True,
        cancel_selection: bool = False,
    ):
        self.device = device or MockCD48()
        self.port = MockPort(self.device)
        self.supported = supported
        self.cancel_selection = cancel_selection
        self.authorized = False
        self.request_port_calls = 0
        self.get_ports_calls = 0

    def is_supported(self) -> bool:
        return self.supported

    async def request_port(self, filters: Sequence[PortFilter]) -> MockPort:
        self.request_port_calls += 1
        if self.cancel_selection:
            raise PortSelectionCancelled("selection cancelled")
        info = self.port.info
        if filters and not any(f.matches(info.vid, info.pid) for f in filters):
            raise PortSelectionCancelled("no matching device")
        self.authorized = True
        return self.port

    async def get_ports(self, filters: Sequence[PortFilter]) -> list[MockPort]:
        self.get_ports_calls += 1
        info = self.port.info
        if not self.authorized or not self.port.plugged_in:
            return []
        if filters and not any(f.matches(info.vid, info.pid) for f in filters):
            return []
        return [self.port]

    def unplug(self) -> None:
        self.port.unplug()

    def replug(self) -> None:
        self.port.replug()
