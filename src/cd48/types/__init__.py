"""
Data types shared across the CD48 client.

The cd48.types package holds everything that is not I/O:

1. Errors (errors.py)
    - The `CD48Error` hierarchy raised by every layer.

2. Validation (validation.py)
    - Parameter checks run before any command is sent, plus the
      voltage <-> byte conversion used by the trigger and DAC commands.

3. Configuration (config.py)
    - `CD48Config`, fixed per engine, loadable from JSON.

4. Results and events (results.py, events.py)
    - Measurement records, firmware versions, connection state and the
      payloads handed to connection callbacks.

5. Transport protocols (protocols.py)
    - The `Transport`/`Port` interface the engine is written against.

Examples
--------
Catching a bad parameter:
```python
from cd48.types import ValidationError
try:
    await cd48.set_channel(9)
except ValidationError as e:
    print(e.parameter, e.constraints)
```

See Also
--------
cd48.device : The engine and device facade
"""

from .config import CD48Config, load_config, save_config
from .errors import (
    CD48ConnectionError,
    CD48Error,
    CommandTimeoutError,
    CommunicationError,
    ConnectionError,
    DeviceSelectionCancelledError,
    FirmwareIncompatibleError,
    InvalidChannelError,
    InvalidResponseError,
    InvalidVoltageError,
    NotConnectedError,
    OperationAbortedError,
    UnsupportedTransportError,
    ValidationError,
)
from .events import (
    ConnectionState,
    ConnectionStateChange,
    ReconnectEvent,
    ReconnectFailedEvent,
)
from .protocols import Port, PortFilter, PortInfo, PortSelectionCancelled, Transport
from .results import (
    CoincidenceMeasurement,
    CoincidenceUncertainty,
    CountData,
    FirmwareInfo,
    FirmwareVersion,
    RateMeasurement,
    RateUncertainty,
    compare_firmware_versions,
)
