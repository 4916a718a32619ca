"""Tests for the CD48 command set, run against the mock device."""

import asyncio

import pytest

from cd48 import CD48, MockCD48, MockTransport
from cd48.types import (
    ConnectionState,
    FirmwareIncompatibleError,
    InvalidChannelError,
    InvalidResponseError,
    ValidationError,
)
from cd48.types.results import CountData, FirmwareVersion


class TestIdentification:
    @pytest.mark.asyncio
    async def test_get_version(self, cd48: CD48):
        assert await cd48.get_version() == "CD48 Coincidence Counter v1.2.0"

    @pytest.mark.asyncio
    async def test_firmware_info(self, cd48: CD48):
        info = await cd48.get_firmware_info()
        assert info.version == FirmwareVersion(1, 2, 0)
        assert info.is_compatible
        assert info.minimum_version == "1.0.0"
        assert info.version_string.endswith("v1.2.0")

    @pytest.mark.asyncio
    async def test_old_firmware(self, make_config):
        transport = MockTransport(MockCD48(firmware_version="0.9.4"))
        async with CD48(transport=transport, config=make_config()) as dev:
            info = await dev.get_firmware_info()
            assert not info.is_compatible
            with pytest.raises(FirmwareIncompatibleError) as exc_info:
                await dev.check_firmware_compatibility()
            assert exc_info.value.current_version == "0.9.4"
            assert exc_info.value.minimum_version == "1.0.0"

    @pytest.mark.asyncio
    async def test_compatible_firmware_check(self, cd48: CD48):
        info = await cd48.check_firmware_compatibility()
        assert (info.major, info.minor, info.patch) == (1, 2, 0)

    @pytest.mark.asyncio
    async def test_help(self, cd48: CD48):
        text = await cd48.get_help()
        assert "LED test" in text
        assert len(text.splitlines()) > 5


class TestCounters:
    @pytest.mark.asyncio
    async def test_counts(self, cd48: CD48, mock_device: MockCD48):
        mock_device.count_offsets = [10, 20, 30, 40, 50, 60, 70, 80]
        data = await cd48.get_counts()
        assert isinstance(data, CountData)
        assert data.counts == (10, 20, 30, 40, 50, 60, 70, 80)
        assert data.overflow == 0

    @pytest.mark.asyncio
    async def test_counts_human_readable(self, cd48: CD48):
        text = await cd48.get_counts(human_readable=True)
        assert isinstance(text, str)
        assert "Counter 0" in text
        assert "Counter 7" in text

    @pytest.mark.asyncio
    async def test_malformed_counts(self, cd48: CD48, mock_device):
        mock_device.raw_count_reply = "1 2 3"
        with pytest.raises(InvalidResponseError):
            await cd48.get_counts()

    @pytest.mark.asyncio
    async def test_clear_counts(self, cd48: CD48, mock_device):
        mock_device.count_rates = [10000.0] + [0.0] * 7
        await cd48.clear_counts()
        assert mock_device.commands == ["c"]
        data = await cd48.get_counts()
        # cleared a moment ago, so far fewer than a second's worth
        assert data.counts[0] < 10000

    @pytest.mark.asyncio
    async def test_overflow(self, cd48: CD48, mock_device):
        mock_device.overflow = 5
        assert await cd48.get_overflow() == 5
        # reading clears the flag
        assert await cd48.get_overflow() == 0


class TestSettings:
    @pytest.mark.asyncio
    async def test_get_settings(self, cd48: CD48):
        text = await cd48.get_settings()
        assert "Impedance: highz" in text
        raw = await cd48.get_settings(human_readable=False)
        assert "\n" not in raw
        assert raw.split()[0] == "0000"

    @pytest.mark.asyncio
    async def test_set_channel(self, cd48: CD48, mock_device):
        assert await cd48.set_channel(4, a=1, b=1) == "OK"
        assert mock_device.commands[-1] == "S41100"
        assert mock_device.channel_inputs[4] == "1100"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("channel", [-1, 8, 3.5])
    async def test_set_channel_bad_channel(self, cd48: CD48, mock_device, channel):
        with pytest.raises(InvalidChannelError):
            await cd48.set_channel(channel, a=1)
        assert mock_device.commands == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("flag", [2, 1.0, 0.0])
    async def test_set_channel_bad_flag(self, cd48: CD48, mock_device, flag):
        with pytest.raises(ValidationError) as exc_info:
            await cd48.set_channel(4, a=flag, b=1)
        assert exc_info.value.parameter == "a"
        assert mock_device.commands == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "voltage,command",
        [(0.0, "L0"), (2.048, "L128"), (4.08, "L255"), (9.0, "L255"), (-1.0, "L0")],
    )
    async def test_trigger_level(self, cd48: CD48, mock_device, voltage, command):
        assert await cd48.set_trigger_level(voltage) == "OK"
        assert mock_device.commands[-1] == command

    @pytest.mark.asyncio
    async def test_trigger_level_not_a_number(self, cd48: CD48, mock_device):
        with pytest.raises(ValidationError):
            await cd48.set_trigger_level("high")
        assert mock_device.commands == []

    @pytest.mark.asyncio
    async def test_dac_voltage(self, cd48: CD48, mock_device):
        await cd48.set_dac_voltage(1.02)
        assert mock_device.commands[-1] == "V64"
        assert mock_device.dac_byte == 64

    @pytest.mark.asyncio
    async def test_impedance(self, cd48: CD48, mock_device):
        await cd48.set_impedance_50ohm()
        assert mock_device.impedance == "50ohm"
        await cd48.set_impedance_highz()
        assert mock_device.impedance == "highz"
        await cd48.set_impedance("50OHM")
        assert mock_device.commands == ["z", "Z", "z"]
        with pytest.raises(ValidationError):
            await cd48.set_impedance("1Mohm")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "interval,command", [(50, "r100"), (1000, "r1000"), (70000, "r65535")]
    )
    async def test_repeat_clamped(self, cd48: CD48, mock_device, interval, command):
        await cd48.set_repeat(interval)
        assert mock_device.commands[-1] == command

    @pytest.mark.asyncio
    async def test_repeat_not_a_number(self, cd48: CD48, mock_device):
        with pytest.raises(ValidationError):
            await cd48.set_repeat("often")
        assert mock_device.commands == []

    @pytest.mark.asyncio
    async def test_toggle_repeat(self, cd48: CD48, mock_device):
        await cd48.toggle_repeat()
        assert mock_device.repeat_enabled
        await cd48.toggle_repeat()
        assert not mock_device.repeat_enabled

    @pytest.mark.asyncio
    async def test_leds(self, cd48: CD48):
        assert await cd48.test_leds() == "LED test OK"


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_context_manager(self, transport, fast_config):
        dev = CD48(transport=transport, config=fast_config)
        async with dev:
            assert dev.is_connected()
            assert dev.connection_state is ConnectionState.CONNECTED
        assert not dev.is_connected()
        assert dev.connection_state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_callbacks_forwarded(self, transport, fast_config):
        dev = CD48(transport=transport, config=fast_config)
        seen = []
        dev.on_connection_state_change(lambda c: seen.append(c.current_state))
        dev.on_disconnect(lambda: seen.append("disconnect"))
        await dev.connect()
        await dev.disconnect()
        assert seen == [
            ConnectionState.CONNECTING,
            ConnectionState.CONNECTED,
            ConnectionState.DISCONNECTED,
            "disconnect",
        ]

    @pytest.mark.asyncio
    async def test_reconnect(self, cd48: CD48, transport):
        events = []
        cd48.on_reconnect(events.append)
        assert await cd48.reconnect()
        assert cd48.is_connected()
        assert len(events) == 1
        assert await cd48.get_overflow() == 0

    def test_is_supported(self):
        assert CD48.is_supported(MockTransport())
        assert not CD48.is_supported(MockTransport(supported=False))

    def test_repr(self, transport):
        assert "disconnected" in repr(CD48(transport=transport))

    @pytest.mark.asyncio
    async def test_sleep_with_abort(self, cd48: CD48):
        loop = asyncio.get_running_loop()
        t0 = loop.time()
        await cd48.sleep_with_abort(0.02)
        assert loop.time() - t0 >= 0.015
