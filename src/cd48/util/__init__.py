# -*- coding: utf-8 -*-
"""
Utility functions and constants for the cd48 package.

- Logging configuration (loguru)
- Cancellation signals for long waits
- Serial port discovery and the selected-port cache
- Defaults for timing, hardware ids and measurements

Exporting data (`cd48.util.save`) pulls in scipy and is imported on its own.

Examples
--------
Logging to the terminal while debugging:
```python
from cd48.util import start_log
start_log(log_to_file=False, log_to_stdout=True, log_level="DEBUG")
```

See Also
--------
cd48.util.logging : Logging configuration
cd48.util.save : Data export
"""

from .abort import AbortController, AbortSignal, sleep_with_abort, wait_or_abort
from .check_hw import get_hw_ports, list_cd48_ports
from .defaults import (
    BAUD_RATE,
    COMMAND_DELAY,
    COMMAND_TIMEOUT,
    DEFAULT_LOGLEVEL,
    MIN_FIRMWARE_VERSION,
    SINGLE_LINE_ERR_LOG,
    TEST_LOGLEVEL,
    USB_VENDOR_ID,
)
from .logging import (
    clear_log,
    format_error_response,
    get_log_filename,
    log_default_path,
    shutdown_log,
    start_log,
)

__all__ = [
    "AbortController",
    "AbortSignal",
    "sleep_with_abort",
    "wait_or_abort",
    "get_hw_ports",
    "list_cd48_ports",
    "BAUD_RATE",
    "COMMAND_DELAY",
    "COMMAND_TIMEOUT",
    "DEFAULT_LOGLEVEL",
    "MIN_FIRMWARE_VERSION",
    "SINGLE_LINE_ERR_LOG",
    "TEST_LOGLEVEL",
    "USB_VENDOR_ID",
    "clear_log",
    "format_error_response",
    "get_log_filename",
    "log_default_path",
    "shutdown_log",
    "start_log",
]
