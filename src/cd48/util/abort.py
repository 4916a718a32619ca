"""Cancellation signals for long waits.

An `AbortController` owns an `AbortSignal`; the signal is handed to any
operation that may wait (a command, a measurement, a sleep) and
`controller.abort()` makes those waits raise `OperationAbortedError`.

Listeners registered on the signal are always removed when the wait they
belong to finishes, whichever way it finishes, so a long lived signal can be
reused across many commands without accumulating callbacks.

Examples
--------
```python
ctrl = AbortController()
task = asyncio.create_task(cd48.measure_rate(0, 60.0, signal=ctrl.signal))
...
ctrl.abort()  # task raises OperationAbortedError promptly
```
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

from loguru import logger

from cd48.types.errors import OperationAbortedError

T = TypeVar("T")


class AbortSignal:
    def __init__(self):
        self._aborted = False
        self._listeners: list[Callable[[], None]] = []

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def add_listener(self, listener: Callable[[], None]) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[], None]) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def raise_if_aborted(self, operation: str) -> None:
        if self._aborted:
            raise OperationAbortedError(operation)

    def _fire(self) -> None:
        if self._aborted:
            return
        self._aborted = True
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Abort listener raised.")


class AbortController:
    """Owner side of an `AbortSignal`."""

    def __init__(self):
        self.signal = AbortSignal()

    def abort(self) -> None:
        logger.debug("Abort requested.")
        self.signal._fire()


async def wait_or_abort(
    aw: Awaitable[T], signal: Optional[AbortSignal], operation: str
) -> T:
    """Await `aw`, raising `OperationAbortedError` if `signal` fires first.

    The pending work is cancelled on abort. With no signal this is a plain
    await.
    """
    if signal is None:
        return await aw
    if signal.aborted:
        # don't leave an un-awaited coroutine behind
        if asyncio.iscoroutine(aw):
            aw.close()
        raise OperationAbortedError(operation)

    loop = asyncio.get_running_loop()
    task = asyncio.ensure_future(aw)
    aborted = loop.create_future()

    def _on_abort():
        if not aborted.done():
            aborted.set_result(None)

    signal.add_listener(_on_abort)
    try:
        await asyncio.wait({task, aborted}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        signal.remove_listener(_on_abort)
        if not aborted.done():
            aborted.cancel()

    if task.done():
        return task.result()

    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    except Exception as e:
        logger.debug("Aborted {} finished with {!r}", operation, e)
    raise OperationAbortedError(operation)


async def sleep_with_abort(
    seconds: float, signal: Optional[AbortSignal] = None, operation: str = "sleep"
) -> None:
    """`asyncio.sleep` that ends early with `OperationAbortedError`."""
    await wait_or_abort(asyncio.sleep(max(0.0, seconds)), signal, operation)
