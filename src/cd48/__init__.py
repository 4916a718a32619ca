# -*- coding: utf-8 -*-
"""# cd48

Asyncio client for the CD48 8-channel coincidence counter.

Turns the counter's line based ASCII serial protocol into coroutines that
are serialized, rate limited, retried, cancellable and able to reconnect,
and derives count rates and accidental-corrected coincidence rates with
Poisson uncertainties.

```python
import asyncio
from cd48 import CD48, CD48Config

async def main():
    async with CD48(config=CD48Config(auto_reconnect=True)) as cd48:
        await cd48.set_channel(4, a=1, b=1)
        m = await cd48.measure_coincidence_rate(duration=10.0)
        print(m.true_coincidence_rate, m.uncertainty.true_coincidence_rate)

asyncio.run(main())
```

Packages:

- `cd48.device` : the device, connection manager, protocol engine, transports
- `cd48.meas` : rate and coincidence measurements
- `cd48.types` : errors, config, result records, transport protocols
- `cd48.util` : logging, cancellation, defaults, export
- `cd48.cli` : the `cd48` command line tool
"""

from ._version import __version__
from .device import CD48, MockCD48, MockTransport, SerialTransport
from .types import (
    CD48Config,
    CD48ConnectionError,
    CD48Error,
    CommandTimeoutError,
    CommunicationError,
    ConnectionState,
    DeviceSelectionCancelledError,
    FirmwareIncompatibleError,
    InvalidChannelError,
    InvalidResponseError,
    InvalidVoltageError,
    NotConnectedError,
    OperationAbortedError,
    UnsupportedTransportError,
    ValidationError,
    load_config,
)
from .util.abort import AbortController, AbortSignal
