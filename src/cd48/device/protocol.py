"""
Command/response engine for the CD48 serial protocol.

Every exchange is a single ASCII command terminated by CR, answered by text
terminated by CR and/or LF. `ProtocolEngine.send_command` wraps one exchange
with everything the link needs:

- serialization : one command at a time, in call order (asyncio.Lock)
- reconnection  : optional auto-reconnect when called while disconnected
- rate limiting : minimum spacing between dispatches
- timeouts      : per-command response budget
- retries       : CommunicationError only, constant delay
- cancellation  : AbortSignal checked at every wait

Response parsing helpers for the count and overflow replies live here too.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional

from loguru import logger

from cd48.device.connection import ConnectionManager, DeviceHandle
from cd48.types.config import CD48Config
from cd48.types.errors import (
    CD48Error,
    CommandTimeoutError,
    CommunicationError,
    InvalidResponseError,
    NotConnectedError,
    OperationAbortedError,
    ValidationError,
)
from cd48.types.results import CountData
from cd48.util.abort import AbortSignal, sleep_with_abort, wait_or_abort
from cd48.util.defaults import (
    COMMAND_TERMINATOR,
    EXPECTED_COUNT_RESPONSE_LENGTH,
    READ_CHUNK_SIZE,
    RESPONSE_TERMINATORS,
)

STALE_DRAIN_MIN = 0.01  # seconds, minimum look for leftover bytes
_TERMINATOR_BYTES = b"".join(RESPONSE_TERMINATORS)


@dataclass
class CommandRequest:
    command: str
    dispatched_at: float  # event loop time
    timeout_ms: int
    attempt: int


def _has_terminator(data: bytes) -> bool:
    return any(t in data for t in RESPONSE_TERMINATORS)


# =============================================================================
# Response parsing
# =============================================================================


def parse_counts(raw: str) -> CountData:
    """Parse a `c` reply: 8 channel counts followed by the overflow flag."""
    tokens = raw.split()
    if len(tokens) != EXPECTED_COUNT_RESPONSE_LENGTH:
        raise InvalidResponseError(raw, "8 counts + overflow flag")
    try:
        values = [int(t) for t in tokens]
    except ValueError:
        raise InvalidResponseError(raw, "8 counts + overflow flag") from None
    return CountData(counts=tuple(values[:-1]), overflow=values[-1])


def parse_overflow(raw: str) -> int:
    try:
        return int(raw.strip())
    except ValueError:
        raise InvalidResponseError(raw, "integer overflow flag") from None


# =============================================================================
# Engine
# =============================================================================


class ProtocolEngine:
    """Serialized, retrying, cancellable command exchange over one handle.

    Parameters
    ----------
    connection : ConnectionManager
        Owner of the device handle
    config : CD48Config
        Timing and retry policy
    lock : asyncio.Lock, optional
        Shared lock to serialize on when `config.use_lock` is set. Ignored
        otherwise; the engine then uses a lock of its own.
    """

    def __init__(
        self,
        connection: ConnectionManager,
        config: CD48Config,
        lock: Optional[asyncio.Lock] = None,
    ):
        self._conn = connection
        self._config = config
        if config.use_lock and lock is not None:
            self._lock = lock
        else:
            self._lock = asyncio.Lock()
        self._last_dispatch: Optional[float] = None
        self._stale_deadline: Optional[float] = None
        self._stale_multiline = False

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock

    @property
    def connection(self) -> ConnectionManager:
        return self._conn

    async def send_command(
        self,
        command: str,
        timeout: Optional[float] = None,
        signal: Optional[AbortSignal] = None,
        multiline: bool = False,
    ) -> str:
        """Send `command` and return the stripped reply.

        Parameters
        ----------
        command : str
            Command text without terminator
        timeout : float, optional
            Response budget in seconds, defaults to `config.command_timeout`
        signal : AbortSignal, optional
            Aborting makes the call raise `OperationAbortedError`
        multiline : bool
            Keep reading past the first line until the link goes quiet for
            `config.command_delay`

        Raises
        ------
        NotConnectedError, CommandTimeoutError, CommunicationError,
        OperationAbortedError, ValidationError
        """
        if signal is not None:
            signal.raise_if_aborted(command)
        if not isinstance(command, str) or not command.isascii():
            raise ValidationError("command", command, "must be an ASCII string")
        timeout = self._config.command_timeout if timeout is None else timeout

        async with self._lock:
            if signal is not None:
                signal.raise_if_aborted(command)
            return await self._send_with_retries(command, timeout, signal, multiline)

    async def _send_with_retries(
        self,
        command: str,
        timeout: float,
        signal: Optional[AbortSignal],
        multiline: bool,
    ) -> str:
        retries = self._config.command_retries
        last_error: Optional[CommunicationError] = None
        for attempt in range(1, retries + 2):
            if last_error is not None:
                logger.warning(
                    "Retrying '{}' ({}/{}) after: {}",
                    command,
                    attempt - 1,
                    retries,
                    last_error,
                )
                await sleep_with_abort(self._config.retry_delay, signal, command)

            try:
                handle = await self._ensure_connected()
            except NotConnectedError as e:
                if last_error is not None:
                    raise e from last_error
                raise

            try:
                return await self._exchange(
                    handle, command, timeout, signal, multiline, attempt
                )
            except CommunicationError as e:
                last_error = e
                await self._conn.handle_transport_failure(handle, e)

        logger.error("Command '{}' failed after {} attempt(s)", command, retries + 1)
        raise last_error

    async def _ensure_connected(self) -> DeviceHandle:
        handle = self._conn.handle
        if self._conn.is_connected() and handle is not None:
            return handle
        if not self._config.auto_reconnect:
            raise NotConnectedError("send_command")
        logger.info("Not connected, attempting auto-reconnect")
        if not await self._conn.attempt_auto_reconnect():
            raise NotConnectedError("send_command")
        handle = self._conn.handle
        if handle is None:
            raise NotConnectedError("send_command")
        return handle

    async def _respect_rate_limit(self, signal: Optional[AbortSignal], command: str):
        if self._config.rate_limit <= 0 or self._last_dispatch is None:
            return
        loop = asyncio.get_running_loop()
        wait = self._last_dispatch + self._config.rate_limit - loop.time()
        if wait > 0:
            logger.trace("Rate limit: waiting {:.3f}s before '{}'", wait, command)
            await sleep_with_abort(wait, signal, command)

    async def _exchange(
        self,
        handle: DeviceHandle,
        command: str,
        timeout: float,
        signal: Optional[AbortSignal],
        multiline: bool,
        attempt: int,
    ) -> str:
        loop = asyncio.get_running_loop()
        await self._respect_rate_limit(signal, command)
        if self._stale_deadline is not None:
            await self._drain_stale(handle, command)

        request = CommandRequest(
            command=command,
            dispatched_at=loop.time(),
            timeout_ms=int(round(timeout * 1000)),
            attempt=attempt,
        )
        self._last_dispatch = request.dispatched_at
        payload = (command + COMMAND_TERMINATOR).encode("ascii")
        logger.debug("-> '{}' (attempt {})", command, attempt)
        logger.trace("TX {!r}", payload)
        try:
            handle.writer.write(payload)
            await handle.writer.drain()
        except CD48Error:
            raise
        except Exception as e:
            raise CommunicationError(f"failed to write '{command}': {e}", e) from e

        # the command is out; a reply may now arrive whatever happens here
        deadline = loop.time() + self._config.command_delay + timeout
        try:
            await sleep_with_abort(self._config.command_delay, signal, command)
            raw = await wait_or_abort(
                self._read_response(handle, request, timeout, multiline),
                signal,
                command,
            )
        except (OperationAbortedError, CommandTimeoutError):
            # a late reply must not answer the next command
            self._stale_deadline = deadline
            self._stale_multiline = multiline
            raise

        text = raw.decode("ascii", errors="replace").strip()
        logger.debug("<- '{}' for '{}'", text, command)
        return text

    async def _read_chunk(self, handle: DeviceHandle, timeout: float, command: str):
        """One read; None on timeout. EOF and stream errors are transport failures."""
        try:
            chunk = await asyncio.wait_for(handle.reader.read(READ_CHUNK_SIZE), timeout)
        except asyncio.TimeoutError:
            return None
        except Exception as e:
            raise CommunicationError(
                f"failed to read response to '{command}': {e}", e
            ) from e
        if not chunk:
            raise CommunicationError(
                f"connection closed while waiting for response to '{command}'"
            )
        logger.trace("RX {!r}", chunk)
        return chunk

    async def _read_response(
        self,
        handle: DeviceHandle,
        request: CommandRequest,
        timeout: float,
        multiline: bool,
    ) -> bytes:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        buf = bytearray()
        terminated = False
        while True:
            remaining = deadline - loop.time()
            if terminated:
                # multiline: stop once the device goes quiet
                remaining = min(remaining, self._config.command_delay)
            if remaining <= 0:
                break
            chunk = await self._read_chunk(handle, remaining, request.command)
            if chunk is None:
                break
            buf.extend(chunk)
            if not buf.lstrip(_TERMINATOR_BYTES):
                # leftover line ending from the previous reply
                buf.clear()
                continue
            if _has_terminator(buf.lstrip(_TERMINATOR_BYTES)):
                terminated = True
                if not multiline:
                    break

        if not buf:
            raise CommandTimeoutError(request.command, request.timeout_ms)
        if not terminated:
            logger.debug(
                "No terminator for '{}' within {}ms, returning partial reply",
                request.command,
                request.timeout_ms,
            )
        return bytes(buf)

    async def _drain_stale(self, handle: DeviceHandle, command: str) -> None:
        """Discard the reply to an abandoned exchange before sending `command`.

        Single-line replies are drained up to their terminator, multiline ones
        until the link has been quiet for `command_delay`, both bounded by the
        abandoned exchange's deadline.
        """
        loop = asyncio.get_running_loop()
        deadline, self._stale_deadline = self._stale_deadline, None
        multiline, self._stale_multiline = self._stale_multiline, False
        discarded = bytearray()
        terminated = False
        while True:
            remaining = max(deadline - loop.time(), STALE_DRAIN_MIN)
            if terminated:
                quiet = max(self._config.command_delay, STALE_DRAIN_MIN)
                remaining = min(remaining, quiet)
            chunk = await self._read_chunk(handle, remaining, command)
            if chunk is None:
                break
            discarded.extend(chunk)
            if _has_terminator(discarded.lstrip(_TERMINATOR_BYTES)):
                terminated = True
                if not multiline:
                    break
            if not terminated and loop.time() >= deadline:
                break
        if discarded:
            logger.debug("Discarded stale data before '{}': {!r}", command, bytes(discarded))
