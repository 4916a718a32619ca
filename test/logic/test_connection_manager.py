"""Tests for ConnectionManager class"""

import asyncio

import pytest
from loguru import logger

from cd48 import CD48, CD48Config, MockCD48, MockTransport
from cd48.device import ConnectionManager
from cd48.device.mock.mock_cd48 import _MockWriter
from cd48.types import (
    CD48ConnectionError,
    ConnectionState,
    DeviceSelectionCancelledError,
    UnsupportedTransportError,
)
from cd48.types.errors import CommunicationError
from cd48.types.events import ReconnectEvent, ReconnectFailedEvent
from cd48.util import TEST_LOGLEVEL, shutdown_log, start_log


class Recorder:
    """Collects every callback the manager fires."""

    def __init__(self, manager: ConnectionManager):
        self.states = []
        self.disconnects = 0
        self.reconnects = []
        self.failures = []
        self.reconnected = asyncio.Event()
        self.failed = asyncio.Event()
        manager.on_connection_state_change(
            lambda change: self.states.append(
                (change.previous_state, change.current_state)
            )
        )
        manager.on_disconnect(self._on_disconnect)
        manager.on_reconnect(self._on_reconnect)
        manager.on_reconnect_failed(self._on_failed)

    def _on_disconnect(self):
        self.disconnects += 1

    def _on_reconnect(self, event: ReconnectEvent):
        self.reconnects.append(event)
        self.reconnected.set()

    def _on_failed(self, event: ReconnectFailedEvent):
        self.failures.append(event)
        self.failed.set()


class TestConnectionManager:
    @pytest.fixture(autouse=True, scope="class")
    def manager_log(self):
        start_log(log_level=TEST_LOGLEVEL, log_to_stdout=True, log_to_file=False)
        yield
        shutdown_log()

    @pytest.fixture(autouse=True)
    def log(self, request):
        logger.warning("STARTED Test '{}'".format(request.node.originalname))

        def fin():
            logger.warning("COMPLETED Test '{}' \n".format(request.node.originalname))

        request.addfinalizer(fin)

    @pytest.fixture
    def manager(self, transport, fast_config):
        return ConnectionManager(transport, fast_config)

    def test_initial_state(self, manager: ConnectionManager):
        """Test initial state of ConnectionManager"""
        assert manager.state is ConnectionState.DISCONNECTED
        assert not manager.is_connected()
        assert manager.handle is None
        assert not manager.reconnect_in_progress

    @pytest.mark.asyncio
    async def test_connect_and_disconnect(self, manager: ConnectionManager):
        rec = Recorder(manager)
        assert await manager.connect()
        assert manager.is_connected()
        assert manager.handle is not None
        assert manager.handle.port.listener_count == 1

        await manager.disconnect()
        assert not manager.is_connected()
        assert manager.handle is None
        assert rec.states == [
            (ConnectionState.DISCONNECTED, ConnectionState.CONNECTING),
            (ConnectionState.CONNECTING, ConnectionState.CONNECTED),
            (ConnectionState.CONNECTED, ConnectionState.DISCONNECTED),
        ]
        assert rec.disconnects == 1

    @pytest.mark.asyncio
    async def test_disconnect_releases_port(self, manager, transport):
        await manager.connect()
        await manager.disconnect()
        assert not transport.port.is_open
        assert transport.port.listener_count == 0

    @pytest.mark.asyncio
    async def test_connect_when_connected(self, manager, transport):
        rec = Recorder(manager)
        await manager.connect()
        assert await manager.connect()
        assert transport.request_port_calls == 1
        assert transport.port.open_count == 1
        assert len(rec.states) == 2

    @pytest.mark.asyncio
    async def test_double_disconnect(self, manager):
        rec = Recorder(manager)
        await manager.disconnect()
        assert rec.states == []
        assert rec.disconnects == 0

        await manager.connect()
        await manager.disconnect()
        await manager.disconnect()
        assert rec.disconnects == 1
        assert manager.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_selection_cancelled(self, fast_config):
        transport = MockTransport(cancel_selection=True)
        manager = ConnectionManager(transport, fast_config)
        rec = Recorder(manager)
        with pytest.raises(DeviceSelectionCancelledError):
            await manager.connect()
        assert manager.state is ConnectionState.DISCONNECTED
        assert rec.states[-1] == (
            ConnectionState.CONNECTING,
            ConnectionState.DISCONNECTED,
        )

    @pytest.mark.asyncio
    async def test_unsupported_transport(self, fast_config):
        transport = MockTransport(supported=False)
        manager = ConnectionManager(transport, fast_config)
        with pytest.raises(UnsupportedTransportError):
            await manager.connect()
        assert transport.request_port_calls == 0
        assert manager.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_open_failure(self, manager, transport):
        transport.port.fail_opens = 1
        with pytest.raises(CD48ConnectionError) as exc_info:
            await manager.connect()
        assert isinstance(exc_info.value.original_error, OSError)
        assert manager.state is ConnectionState.DISCONNECTED
        # a second try works
        assert await manager.connect()

    @pytest.mark.asyncio
    async def test_filters_applied(self, transport, fast_config):
        from cd48.types import PortFilter

        manager = ConnectionManager(
            transport, fast_config, filters=[PortFilter(usb_vendor_id=0x0403)]
        )
        with pytest.raises(DeviceSelectionCancelledError):
            await manager.connect()

    @pytest.mark.asyncio
    async def test_connect_while_connecting(self, transport, make_config):
        manager = ConnectionManager(transport, make_config(settle_delay=0.1))
        first = asyncio.create_task(manager.connect())
        await asyncio.sleep(0.02)
        assert manager.state is ConnectionState.CONNECTING
        with pytest.raises(CD48ConnectionError):
            await manager.connect()
        assert await first
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_disconnect_while_settling(self, transport, make_config):
        manager = ConnectionManager(transport, make_config(settle_delay=0.1))
        pending = asyncio.create_task(manager.connect())
        await asyncio.sleep(0.02)
        await manager.disconnect()
        assert manager.state is ConnectionState.DISCONNECTED
        with pytest.raises(CD48ConnectionError):
            await pending
        assert manager.state is ConnectionState.DISCONNECTED
        assert not transport.port.is_open

    @pytest.mark.asyncio
    async def test_illegal_transition(self, manager):
        with pytest.raises(RuntimeError):
            manager._set_state(ConnectionState.CONNECTED)
        assert manager.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_same_state_is_silent(self, manager):
        rec = Recorder(manager)
        manager._set_state(ConnectionState.DISCONNECTED)
        assert rec.states == []

    @pytest.mark.asyncio
    async def test_callback_errors_are_contained(self, manager):
        def broken(change):
            raise ValueError("observer bug")

        manager.on_connection_state_change(broken)
        assert await manager.connect()
        assert manager.is_connected()

    @pytest.mark.asyncio
    async def test_manual_reconnect(self, manager):
        rec = Recorder(manager)
        await manager.connect()
        assert await manager.reconnect()
        assert manager.is_connected()
        assert rec.reconnects == [ReconnectEvent(attempt=1)]
        assert (
            ConnectionState.CONNECTED,
            ConnectionState.RECONNECTING,
        ) in rec.states
        assert manager.handle.port.open_count == 2

    @pytest.mark.asyncio
    async def test_manual_reconnect_after_disconnect(self, manager):
        await manager.connect()
        await manager.disconnect()
        assert await manager.reconnect()
        assert manager.is_connected()

    @pytest.mark.asyncio
    async def test_manual_reconnect_without_previous_device(self, manager):
        with pytest.raises(CD48ConnectionError, match="No previously connected"):
            await manager.reconnect()
        assert manager.state is ConnectionState.DISCONNECTED
        assert not manager.reconnect_in_progress

    @pytest.mark.asyncio
    async def test_auto_reconnect_disabled(self, manager):
        assert not await manager.attempt_auto_reconnect()
        assert manager.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_auto_reconnect_is_bounded(self, transport, make_config):
        manager = ConnectionManager(
            transport, make_config(auto_reconnect=True, reconnect_attempts=3)
        )
        rec = Recorder(manager)
        await manager.connect()
        transport.unplug()

        await asyncio.wait_for(rec.failed.wait(), 2.0)
        assert rec.failures == [ReconnectFailedEvent(attempts=3)]
        assert transport.get_ports_calls == 3
        assert rec.disconnects == 1
        assert manager.state is ConnectionState.DISCONNECTED
        assert not manager.reconnect_in_progress

    @pytest.mark.asyncio
    async def test_auto_reconnect_after_replug(self, transport, make_config):
        manager = ConnectionManager(
            transport, make_config(auto_reconnect=True, reconnect_delay=0.05)
        )
        rec = Recorder(manager)
        await manager.connect()
        transport.unplug()
        await asyncio.sleep(0.01)
        assert manager.state is ConnectionState.RECONNECTING
        transport.replug()

        await asyncio.wait_for(rec.reconnected.wait(), 2.0)
        assert manager.is_connected()
        assert rec.reconnects == [ReconnectEvent(attempt=1)]
        assert rec.disconnects == 1
        assert rec.states == [
            (ConnectionState.DISCONNECTED, ConnectionState.CONNECTING),
            (ConnectionState.CONNECTING, ConnectionState.CONNECTED),
            (ConnectionState.CONNECTED, ConnectionState.RECONNECTING),
            (ConnectionState.RECONNECTING, ConnectionState.CONNECTED),
        ]
        await manager.disconnect()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reconnect_delay", [0.01, 0.1])
    async def test_port_loss_while_command_reconnects(
        self, transport, make_config, monkeypatch, reconnect_delay
    ):
        async def slow_wait_closed(writer):
            await asyncio.sleep(0.05)

        monkeypatch.setattr(_MockWriter, "wait_closed", slow_wait_closed)
        dev = CD48(
            transport=transport,
            config=make_config(auto_reconnect=True, reconnect_delay=reconnect_delay),
        )
        rec = Recorder(dev.connection)
        await dev.connect()
        transport.unplug()
        transport.replug()
        # old handle is still closing when the next command arrives
        await asyncio.sleep(0.01)

        reply = await dev.send_command("v")
        assert reply.startswith("CD48")
        await asyncio.sleep(0.1)
        assert dev.is_connected()
        assert await dev.send_command("E") == "0"
        assert rec.reconnects == [ReconnectEvent(attempt=1)]
        assert rec.failures == []
        assert rec.disconnects == 1
        assert rec.states[2:] == [
            (ConnectionState.CONNECTED, ConnectionState.RECONNECTING),
            (ConnectionState.RECONNECTING, ConnectionState.CONNECTED),
        ]
        await dev.disconnect()

    @pytest.mark.asyncio
    async def test_unplug_without_auto_reconnect(self, manager, transport):
        rec = Recorder(manager)
        await manager.connect()
        transport.unplug()
        await asyncio.sleep(0.02)
        assert manager.state is ConnectionState.DISCONNECTED
        assert manager.handle is None
        assert rec.disconnects == 1
        assert transport.get_ports_calls == 0

    @pytest.mark.asyncio
    async def test_disconnect_stops_auto_reconnect(self, transport, make_config):
        manager = ConnectionManager(
            transport,
            make_config(auto_reconnect=True, reconnect_attempts=10, reconnect_delay=0.05),
        )
        rec = Recorder(manager)
        await manager.connect()
        transport.unplug()
        await asyncio.sleep(0.01)
        await manager.disconnect()
        assert manager.state is ConnectionState.DISCONNECTED
        transport.replug()
        await asyncio.sleep(0.1)
        assert not manager.is_connected()
        assert rec.reconnects == []

    @pytest.mark.asyncio
    async def test_transport_failure_on_live_link(self, manager):
        await manager.connect()
        handle = manager.handle
        await manager.handle_transport_failure(handle, CommunicationError("glitch"))
        assert manager.is_connected()
        assert manager.handle is handle

    @pytest.mark.asyncio
    async def test_transport_failure_on_dead_link(self, manager, transport):
        rec = Recorder(manager)
        await manager.connect()
        handle = manager.handle
        await transport.port.close()
        await manager.handle_transport_failure(handle, CommunicationError("gone"))
        assert manager.state is ConnectionState.DISCONNECTED
        assert manager.handle is None
        assert rec.disconnects == 1

    @pytest.mark.asyncio
    async def test_stale_handle_ignored(self, manager):
        await manager.connect()
        old = manager.handle
        await manager.reconnect()
        await manager.handle_transport_failure(old, CommunicationError("late"))
        assert manager.is_connected()
        assert manager.handle is not old


class TestConnectionManagerTiming:
    @pytest.mark.asyncio
    @pytest.mark.slow
    async def test_linear_backoff(self):
        transport = MockTransport(MockCD48())
        cfg = CD48Config(
            settle_delay=0,
            auto_reconnect=True,
            reconnect_attempts=3,
            reconnect_delay=0.1,
        )
        manager = ConnectionManager(transport, cfg)
        await manager.connect()
        await manager.disconnect()
        transport.port.plugged_in = False

        loop = asyncio.get_running_loop()
        t0 = loop.time()
        assert not await manager.attempt_auto_reconnect()
        # 0.1 + 0.2 + 0.3
        assert loop.time() - t0 >= 0.59
