# -*- coding: utf-8 -*-
"""
Talking to the CD48.

- `CD48` : the device, one coroutine per firmware command plus measurements
- `ConnectionManager` : port lifecycle, state machine and reconnection
- `ProtocolEngine` : serialized command/response exchange
- `SerialTransport` : real USB serial ports (pyserial-asyncio)
- `MockTransport` / `MockCD48` : simulated counter for tests

Examples
--------
Using a specific port:
```python
from cd48.device import CD48, SerialTransport
cd48 = CD48(transport=SerialTransport(port="/dev/ttyACM0"))
```

See Also
--------
cd48.types : Errors, configuration and result records
cd48.meas : Rate and coincidence measurements
"""

from .cd48 import CD48
from .connection import ConnectionManager, DeviceHandle
from .mock import MockCD48, MockPort, MockTransport
from .protocol import CommandRequest, ProtocolEngine, parse_counts, parse_overflow
from .serial_port import SerialPort, SerialTransport
