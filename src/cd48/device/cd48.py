"""
CD48 coincidence counter.

`CD48` wires a `ConnectionManager` and a `ProtocolEngine` together and exposes
the firmware command set as coroutines:

| Method                   | Wire        |
|--------------------------|-------------|
| get_version              | v           |
| get_help                 | H           |
| get_counts               | c (C human) |
| clear_counts             | c           |
| get_settings             | P (p raw)   |
| set_channel              | S<ch>ABCD   |
| set_trigger_level        | L<byte>     |
| set_dac_voltage          | V<byte>     |
| set_impedance_50ohm      | z           |
| set_impedance_highz      | Z           |
| set_repeat               | r<ms>       |
| toggle_repeat            | R           |
| get_overflow             | E           |
| test_leds                | T           |

Examples
--------
```python
from cd48 import CD48

async with CD48() as cd48:
    info = await cd48.check_firmware_compatibility()
    await cd48.set_trigger_level(0.5)
    m = await cd48.measure_rate(channel=0, duration=1.0)
    print(m.rate, m.uncertainty.rate)
```
"""

from __future__ import annotations

import asyncio
from typing import Optional, Sequence

from loguru import logger

from cd48.device.connection import ConnectionManager
from cd48.device.protocol import ProtocolEngine, parse_counts, parse_overflow
from cd48.meas import counting
from cd48.types.config import CD48Config
from cd48.types.errors import FirmwareIncompatibleError
from cd48.types.events import (
    ConnectionState,
    ConnectionStateChangeCallback,
    DisconnectCallback,
    ReconnectCallback,
    ReconnectFailedCallback,
)
from cd48.types.protocols import PortFilter, Transport
from cd48.types.results import (
    CoincidenceMeasurement,
    CountData,
    FirmwareInfo,
    FirmwareVersion,
    RateMeasurement,
)
from cd48.types.validation import (
    clamp_repeat_interval,
    validate_channel,
    validate_impedance_mode,
    validate_input_flag,
    validate_number,
    voltage_to_byte,
)
from cd48.util import abort
from cd48.util.abort import AbortSignal
from cd48.util.defaults import (
    COINCIDENCE_WINDOW,
    DEFAULT_COINCIDENCE_CHANNEL,
    DEFAULT_MEASUREMENT_DURATION,
    DEFAULT_SINGLES_A_CHANNEL,
    DEFAULT_SINGLES_B_CHANNEL,
    MIN_FIRMWARE_MAJOR,
    MIN_FIRMWARE_MINOR,
    MIN_FIRMWARE_PATCH,
    MIN_FIRMWARE_VERSION,
)


class CD48:
    """One CD48 coincidence counter.

    Parameters
    ----------
    transport : Transport, optional
        Where ports come from. Defaults to a `SerialTransport`.
    config : CD48Config, optional
        Timing, retry and reconnect policy. Defaults to `CD48Config()`.
    lock : asyncio.Lock, optional
        Lock shared with other code when `config.use_lock` is set
    filters : Sequence[PortFilter], optional
        Port selection filters, default is the Cypress USB vendor id
    """

    def __init__(
        self,
        transport: Optional[Transport] = None,
        config: Optional[CD48Config] = None,
        lock: Optional[asyncio.Lock] = None,
        filters: Optional[Sequence[PortFilter]] = None,
    ):
        if transport is None:
            from cd48.device.serial_port import SerialTransport

            transport = SerialTransport()
        self.config = config or CD48Config()
        self._conn = ConnectionManager(transport, self.config, filters)
        self._engine = ProtocolEngine(self._conn, self.config, lock)

    def __repr__(self):
        return f"CD48(state={self._conn.state.value})"

    @staticmethod
    def is_supported(transport: Optional[Transport] = None) -> bool:
        """Whether a serial link can be made on this host."""
        if transport is None:
            from cd48.device.serial_port import SerialTransport

            transport = SerialTransport()
        return transport.is_supported()

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    async def connect(self) -> bool:
        return await self._conn.connect()

    async def disconnect(self) -> None:
        await self._conn.disconnect()

    async def reconnect(self) -> bool:
        return await self._conn.reconnect()

    def is_connected(self) -> bool:
        return self._conn.is_connected()

    @property
    def connection_state(self) -> ConnectionState:
        return self._conn.state

    @property
    def connection(self) -> ConnectionManager:
        return self._conn

    @property
    def engine(self) -> ProtocolEngine:
        return self._engine

    async def __aenter__(self) -> CD48:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    def on_disconnect(self, callback: Optional[DisconnectCallback]) -> None:
        self._conn.on_disconnect(callback)

    def on_reconnect(self, callback: Optional[ReconnectCallback]) -> None:
        self._conn.on_reconnect(callback)

    def on_reconnect_failed(self, callback: Optional[ReconnectFailedCallback]) -> None:
        self._conn.on_reconnect_failed(callback)

    def on_connection_state_change(
        self, callback: Optional[ConnectionStateChangeCallback]
    ) -> None:
        self._conn.on_connection_state_change(callback)

    # ------------------------------------------------------------------
    # Raw access
    # ------------------------------------------------------------------

    async def send_command(
        self,
        command: str,
        timeout: Optional[float] = None,
        signal: Optional[AbortSignal] = None,
        multiline: bool = False,
    ) -> str:
        """Send a raw command and return the device reply."""
        return await self._engine.send_command(command, timeout, signal, multiline)

    async def sleep_with_abort(
        self, seconds: float, signal: Optional[AbortSignal] = None
    ) -> None:
        await abort.sleep_with_abort(seconds, signal, "sleep")

    # ------------------------------------------------------------------
    # Identification
    # ------------------------------------------------------------------

    async def get_version(self, signal: Optional[AbortSignal] = None) -> str:
        return await self.send_command("v", signal=signal)

    async def get_firmware_info(
        self, signal: Optional[AbortSignal] = None
    ) -> FirmwareInfo:
        version_string = await self.get_version(signal)
        version = FirmwareVersion.parse(version_string)
        minimum = FirmwareVersion(
            MIN_FIRMWARE_MAJOR, MIN_FIRMWARE_MINOR, MIN_FIRMWARE_PATCH
        )
        return FirmwareInfo(
            version_string=version_string,
            version=version,
            is_compatible=version >= minimum,
            minimum_version=MIN_FIRMWARE_VERSION,
        )

    async def check_firmware_compatibility(
        self, signal: Optional[AbortSignal] = None
    ) -> FirmwareInfo:
        """Firmware info, raising FirmwareIncompatibleError if too old."""
        info = await self.get_firmware_info(signal)
        if not info.is_compatible:
            logger.error(
                "CD48 firmware {} is older than {}", info.version, info.minimum_version
            )
            raise FirmwareIncompatibleError(str(info.version), info.minimum_version)
        return info

    async def get_help(self, signal: Optional[AbortSignal] = None) -> str:
        return await self.send_command("H", signal=signal, multiline=True)

    # ------------------------------------------------------------------
    # Counters
    # ------------------------------------------------------------------

    async def get_counts(
        self, human_readable: bool = False, signal: Optional[AbortSignal] = None
    ) -> CountData | str:
        """Read all 8 counters and the overflow flag.

        Reading with `c` also zeroes the counters on the device. With
        `human_readable` the formatted `C` text is returned as-is.
        """
        if human_readable:
            return await self.send_command("C", signal=signal, multiline=True)
        return parse_counts(await self.send_command("c", signal=signal))

    async def clear_counts(self, signal: Optional[AbortSignal] = None) -> None:
        await self.get_counts(False, signal)

    async def get_overflow(self, signal: Optional[AbortSignal] = None) -> int:
        """Read (and clear) the 8-bit overflow flag."""
        return parse_overflow(await self.send_command("E", signal=signal))

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    async def get_settings(
        self, human_readable: bool = True, signal: Optional[AbortSignal] = None
    ) -> str:
        return await self.send_command(
            "P" if human_readable else "p", signal=signal, multiline=human_readable
        )

    async def set_channel(
        self,
        channel: int,
        a: int = 0,
        b: int = 0,
        c: int = 0,
        d: int = 0,
        signal: Optional[AbortSignal] = None,
    ) -> str:
        """Select which of inputs A-D feed counter `channel`.

        Each input flag is 0 or 1; a counter with several inputs enabled
        counts their coincidences.
        """
        validate_channel(channel)
        for name, flag in (("a", a), ("b", b), ("c", c), ("d", d)):
            validate_input_flag(name, flag)
        return await self.send_command(
            f"S{int(channel)}{int(a)}{int(b)}{int(c)}{int(d)}", signal=signal
        )

    async def set_trigger_level(
        self, voltage: float, signal: Optional[AbortSignal] = None
    ) -> str:
        """Set the input threshold; out of range voltages are clamped."""
        return await self.send_command(f"L{voltage_to_byte(voltage)}", signal=signal)

    async def set_dac_voltage(
        self, voltage: float, signal: Optional[AbortSignal] = None
    ) -> str:
        return await self.send_command(f"V{voltage_to_byte(voltage)}", signal=signal)

    async def set_impedance_50ohm(self, signal: Optional[AbortSignal] = None) -> str:
        return await self.send_command("z", signal=signal)

    async def set_impedance_highz(self, signal: Optional[AbortSignal] = None) -> str:
        return await self.send_command("Z", signal=signal)

    async def set_impedance(
        self, mode: str, signal: Optional[AbortSignal] = None
    ) -> str:
        """Set the input impedance by name, '50ohm' or 'highz'."""
        if validate_impedance_mode(mode) == "50ohm":
            return await self.set_impedance_50ohm(signal)
        return await self.set_impedance_highz(signal)

    async def set_repeat(
        self, interval_ms: int, signal: Optional[AbortSignal] = None
    ) -> str:
        """Set the auto-report interval, clamped to 100-65535 ms."""
        validate_number(
            "repeat_interval", interval_ms, "must be a number between 100 and 65535"
        )
        clamped = clamp_repeat_interval(interval_ms)
        return await self.send_command(f"r{clamped}", signal=signal)

    async def toggle_repeat(self, signal: Optional[AbortSignal] = None) -> str:
        return await self.send_command("R", signal=signal)

    async def test_leds(self, signal: Optional[AbortSignal] = None) -> str:
        """Light every LED for about a second."""
        return await self.send_command("T", signal=signal)

    # ------------------------------------------------------------------
    # Measurements
    # ------------------------------------------------------------------

    async def measure_rate(
        self,
        channel: int = 0,
        duration: float = DEFAULT_MEASUREMENT_DURATION,
        signal: Optional[AbortSignal] = None,
    ) -> RateMeasurement:
        return await counting.measure_rate(self, channel, duration, signal)

    async def measure_rate_series(
        self,
        channel: int = 0,
        duration: float = DEFAULT_MEASUREMENT_DURATION,
        repeats: int = 1,
        signal: Optional[AbortSignal] = None,
    ) -> list[RateMeasurement]:
        return await counting.measure_rate_series(
            self, channel, duration, repeats, signal
        )

    async def measure_coincidence_rate(
        self,
        duration: float = DEFAULT_MEASUREMENT_DURATION,
        singles_a_channel: int = DEFAULT_SINGLES_A_CHANNEL,
        singles_b_channel: int = DEFAULT_SINGLES_B_CHANNEL,
        coincidence_channel: int = DEFAULT_COINCIDENCE_CHANNEL,
        coincidence_window: float = COINCIDENCE_WINDOW,
        signal: Optional[AbortSignal] = None,
    ) -> CoincidenceMeasurement:
        return await counting.measure_coincidence_rate(
            self,
            duration=duration,
            singles_a_channel=singles_a_channel,
            singles_b_channel=singles_b_channel,
            coincidence_channel=coincidence_channel,
            coincidence_window=coincidence_window,
            signal=signal,
        )
