"""
Connection lifecycle for one CD48.

`ConnectionManager` owns the single live `DeviceHandle` (port + stream pair)
and the `ConnectionState` machine. It opens the port through a `Transport`,
watches for the port disappearing, and runs bounded reconnect sequences.
The protocol engine only ever borrows the handle.

State machine
-------------
DISCONNECTED -> CONNECTING -> CONNECTED / DISCONNECTED
CONNECTED -> DISCONNECTED (disconnect, link lost) / RECONNECTING
RECONNECTING -> CONNECTED / DISCONNECTED
DISCONNECTED -> RECONNECTING (reconnect on demand)

Anything else raises `RuntimeError`. Setting the current state again does
nothing and notifies nobody.
"""

from __future__ import annotations

import asyncio
import functools
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

from loguru import logger

from cd48.types.config import CD48Config
from cd48.types.errors import (
    CD48ConnectionError,
    CD48Error,
    DeviceSelectionCancelledError,
    UnsupportedTransportError,
)
from cd48.types.events import (
    ALLOWED_TRANSITIONS,
    ConnectionState,
    ConnectionStateChange,
    ConnectionStateChangeCallback,
    DisconnectCallback,
    ReconnectCallback,
    ReconnectEvent,
    ReconnectFailedCallback,
    ReconnectFailedEvent,
)
from cd48.types.protocols import Port, PortFilter, PortSelectionCancelled, Transport
from cd48.util.defaults import USB_VENDOR_ID

WRITER_CLOSE_TIMEOUT = 1.0  # seconds


@dataclass
class DeviceHandle:
    """The open link: port plus its byte streams."""

    port: Port
    reader: asyncio.StreamReader
    writer: asyncio.StreamWriter
    listener: Optional[Callable[[], None]] = field(default=None, repr=False)

    def is_usable(self) -> bool:
        return self.port.is_open and not self.reader.at_eof()


class ConnectionManager:
    """Connect, disconnect and reconnect a single CD48.

    Parameters
    ----------
    transport : Transport
        Source of serial ports
    config : CD48Config
        Baud rate, settle delay and reconnect policy
    filters : Sequence[PortFilter], optional
        Which ports count as a CD48. Defaults to the Cypress vendor id.
    """

    def __init__(
        self,
        transport: Transport,
        config: CD48Config,
        filters: Optional[Sequence[PortFilter]] = None,
    ):
        self._transport = transport
        self._config = config
        self._filters = list(filters or [PortFilter(usb_vendor_id=USB_VENDOR_ID)])
        self._state = ConnectionState.DISCONNECTED
        self._handle: Optional[DeviceHandle] = None
        self._reconnect_in_progress = False
        self._bg_tasks: set[asyncio.Task] = set()

        self._on_disconnect: Optional[DisconnectCallback] = None
        self._on_reconnect: Optional[ReconnectCallback] = None
        self._on_reconnect_failed: Optional[ReconnectFailedCallback] = None
        self._on_state_change: Optional[ConnectionStateChangeCallback] = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def handle(self) -> Optional[DeviceHandle]:
        return self._handle

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def reconnect_in_progress(self) -> bool:
        return self._reconnect_in_progress

    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED and self._handle is not None

    # ------------------------------------------------------------------
    # Observers (one handler each, None clears)
    # ------------------------------------------------------------------

    def on_disconnect(self, callback: Optional[DisconnectCallback]) -> None:
        self._on_disconnect = callback

    def on_reconnect(self, callback: Optional[ReconnectCallback]) -> None:
        self._on_reconnect = callback

    def on_reconnect_failed(self, callback: Optional[ReconnectFailedCallback]) -> None:
        self._on_reconnect_failed = callback

    def on_connection_state_change(
        self, callback: Optional[ConnectionStateChangeCallback]
    ) -> None:
        self._on_state_change = callback

    def _notify(self, name: str, callback: Optional[Callable], *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("Error in {} callback", name)

    def _set_state(self, new_state: ConnectionState) -> None:
        if new_state is self._state:
            return
        if (self._state, new_state) not in ALLOWED_TRANSITIONS:
            raise RuntimeError(
                f"Illegal connection state transition {self._state.value} -> {new_state.value}"
            )
        previous, self._state = self._state, new_state
        logger.info("Connection state: {} -> {}", previous.value, new_state.value)
        self._notify(
            "connection state change",
            self._on_state_change,
            ConnectionStateChange(previous_state=previous, current_state=new_state),
        )

    # ------------------------------------------------------------------
    # Public lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> bool:
        """Select a CD48 and open it.

        Returns True once connected (immediately if already connected).

        Raises
        ------
        UnsupportedTransportError
            The transport cannot work on this host
        DeviceSelectionCancelledError
            No port was selected
        ConnectionError
            Opening failed, or another connection attempt is running
        """
        if not self._transport.is_supported():
            raise UnsupportedTransportError()
        if self.is_connected():
            logger.debug("connect() called while already connected")
            return True
        if self._state in (ConnectionState.CONNECTING, ConnectionState.RECONNECTING):
            raise CD48ConnectionError("connection attempt already in progress")

        self._set_state(ConnectionState.CONNECTING)
        port = None
        try:
            port = await self._transport.request_port(self._filters)
            handle = await self._open(port)
        except PortSelectionCancelled as e:
            self._fail_connecting()
            raise DeviceSelectionCancelledError() from e
        except asyncio.CancelledError:
            await self._close_port_quietly(port)
            self._fail_connecting()
            raise
        except Exception as e:
            await self._close_port_quietly(port)
            self._fail_connecting()
            logger.error("Failed to connect to CD48: {}", e)
            raise CD48ConnectionError(str(e) or type(e).__name__, e) from e

        if self._state is not ConnectionState.CONNECTING:
            # disconnect() ran while the port was settling
            await self._release_handle(handle)
            raise CD48ConnectionError("connection attempt interrupted by disconnect")

        self._handle = handle
        self._set_state(ConnectionState.CONNECTED)
        logger.info("Connected to CD48 on {}", port.info.device)
        return True

    async def disconnect(self) -> None:
        """Close the link. Does nothing if there is nothing to close."""
        if self._state is ConnectionState.DISCONNECTED and self._handle is None:
            return
        await self._cancel_background()
        handle, self._handle = self._handle, None
        if handle is not None:
            await self._release_handle(handle)
        self._set_state(ConnectionState.DISCONNECTED)
        logger.info("Disconnected from CD48")
        self._notify("disconnect", self._on_disconnect)

    async def reconnect(self) -> bool:
        """Reopen a previously selected CD48 without prompting.

        Returns False if a reconnect is already running.

        Raises
        ------
        ConnectionError
            No previously selected device is present, or opening it failed
        """
        if self._reconnect_in_progress:
            logger.warning("Reconnect already in progress, ignoring reconnect()")
            return False
        if self._state is ConnectionState.CONNECTING:
            raise CD48ConnectionError("connection attempt already in progress")

        self._reconnect_in_progress = True
        try:
            self._set_state(ConnectionState.RECONNECTING)
            await self._drop_handle()
            try:
                handle = await self._reconnect_once()
            except BaseException:
                if self._state is ConnectionState.RECONNECTING:
                    self._set_state(ConnectionState.DISCONNECTED)
                raise
            if not await self._adopt(handle):
                raise CD48ConnectionError("reconnect interrupted by disconnect")
        finally:
            self._reconnect_in_progress = False

        logger.info("Reconnected to CD48 on {}", handle.port.info.device)
        self._notify("reconnect", self._on_reconnect, ReconnectEvent(attempt=1))
        return True

    async def attempt_auto_reconnect(self) -> bool:
        """Run one bounded reconnect sequence.

        Attempt k waits `reconnect_delay * k` before trying. Returns True on
        the first success; after `reconnect_attempts` failures the state is
        DISCONNECTED, `on_reconnect_failed` is told and False is returned.
        Also returns False straight away if auto reconnect is off or a
        reconnect is already running.
        """
        if not self._config.auto_reconnect:
            return False
        if self._reconnect_in_progress or self._state is ConnectionState.CONNECTING:
            logger.debug("Auto-reconnect skipped, another attempt is running")
            return False

        attempts = self._config.reconnect_attempts
        self._reconnect_in_progress = True
        try:
            self._set_state(ConnectionState.RECONNECTING)
            await self._drop_handle()
            for attempt in range(1, attempts + 1):
                delay = self._config.reconnect_delay * attempt
                logger.warning(
                    "Auto-reconnect attempt {}/{} in {:.2f}s", attempt, attempts, delay
                )
                await asyncio.sleep(delay)
                if self._state is not ConnectionState.RECONNECTING:
                    return False
                try:
                    handle = await self._reconnect_once()
                except CD48Error as e:
                    logger.warning("Auto-reconnect attempt {} failed: {}", attempt, e)
                    continue
                if not await self._adopt(handle):
                    return False
                logger.info(
                    "Auto-reconnected to CD48 on attempt {}/{}", attempt, attempts
                )
                self._notify(
                    "reconnect", self._on_reconnect, ReconnectEvent(attempt=attempt)
                )
                return True

            logger.error("Auto-reconnect failed after {} attempt(s)", attempts)
            self._set_state(ConnectionState.DISCONNECTED)
            self._notify(
                "reconnect failed",
                self._on_reconnect_failed,
                ReconnectFailedEvent(attempts=attempts),
            )
            return False
        except asyncio.CancelledError:
            if self._state is ConnectionState.RECONNECTING:
                self._set_state(ConnectionState.DISCONNECTED)
            raise
        finally:
            self._reconnect_in_progress = False

    async def handle_transport_failure(
        self, handle: DeviceHandle, cause: BaseException
    ) -> None:
        """Decide whether a failed exchange killed the link.

        A link whose port is still open and whose stream has not hit EOF is
        kept, so a retry can use it again. Otherwise the handle is released
        and the state goes to DISCONNECTED.
        """
        if handle is not self._handle:
            return
        if handle.is_usable():
            logger.debug("Transport error on a live link, keeping it: {}", cause)
            return
        logger.warning("CD48 link unusable after: {}", cause)
        self._handle = None
        await self._release_handle(handle)
        self._set_state(ConnectionState.DISCONNECTED)
        self._notify("disconnect", self._on_disconnect)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _fail_connecting(self) -> None:
        if self._state is ConnectionState.CONNECTING:
            self._set_state(ConnectionState.DISCONNECTED)

    async def _open(self, port: Port) -> DeviceHandle:
        reader, writer = await port.open(self._config.baud_rate)
        handle = DeviceHandle(port=port, reader=reader, writer=writer)
        handle.listener = functools.partial(self._on_port_lost, handle)
        port.add_disconnect_listener(handle.listener)
        try:
            if self._config.settle_delay > 0:
                await asyncio.sleep(self._config.settle_delay)
        except BaseException:
            await self._release_handle(handle)
            raise
        return handle

    async def _reconnect_once(self) -> DeviceHandle:
        try:
            ports = await self._transport.get_ports(self._filters)
        except Exception as e:
            raise CD48ConnectionError(str(e) or type(e).__name__, e) from e
        if not ports:
            raise CD48ConnectionError("No previously connected CD48 device found")
        port = ports[0]
        try:
            return await self._open(port)
        except Exception as e:
            await self._close_port_quietly(port)
            raise CD48ConnectionError(str(e) or type(e).__name__, e) from e

    async def _adopt(self, handle: DeviceHandle) -> bool:
        """Make `handle` current unless the reconnect was overtaken."""
        if self._state is not ConnectionState.RECONNECTING:
            await self._release_handle(handle)
            return False
        self._handle = handle
        self._set_state(ConnectionState.CONNECTED)
        return True

    async def _drop_handle(self) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            await self._release_handle(handle)

    def _on_port_lost(self, handle: DeviceHandle) -> None:
        if handle is not self._handle:
            return
        logger.warning("CD48 on {} disconnected unexpectedly", handle.port.info.device)
        task = asyncio.get_running_loop().create_task(self._handle_port_lost(handle))
        self._bg_tasks.add(task)
        task.add_done_callback(self._bg_tasks.discard)

    async def _handle_port_lost(self, handle: DeviceHandle) -> None:
        if handle is not self._handle:
            return
        self._handle = None
        await self._release_handle(handle)
        self._notify("disconnect", self._on_disconnect)
        if self._reconnect_in_progress or self._handle is not None:
            # a reconnect started while the old handle was closing
            logger.debug("Port loss handled by a reconnect already under way")
            return
        if self._config.auto_reconnect:
            await self.attempt_auto_reconnect()
        else:
            self._set_state(ConnectionState.DISCONNECTED)

    async def _cancel_background(self) -> None:
        current = asyncio.current_task()
        tasks = [t for t in self._bg_tasks if t is not current and not t.done()]
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _release_handle(self, handle: DeviceHandle) -> None:
        """Tear down a handle, best effort."""
        if handle.listener is not None:
            handle.port.remove_disconnect_listener(handle.listener)
        try:
            handle.writer.close()
            await asyncio.wait_for(handle.writer.wait_closed(), WRITER_CLOSE_TIMEOUT)
        except Exception as e:
            logger.debug("Error closing writer: {}", e)
        current = self._handle
        if current is not None and current.port is handle.port:
            # already reopened for a newer handle
            return
        await self._close_port_quietly(handle.port)

    async def _close_port_quietly(self, port: Optional[Port]) -> None:
        if port is None:
            return
        try:
            await port.close()
        except Exception as e:
            logger.debug("Error closing port: {}", e)
