"""Exceptions raised by the CD48 client.

Every failure the client reports is a subclass of `CD48Error`, so callers can
catch the whole family at once or pick out individual failure modes:

- `UnsupportedTransportError` : host cannot provide a serial link at all
- `DeviceSelectionCancelledError` : no device was chosen when connecting
- `ConnectionError` : opening/reopening the port failed
- `NotConnectedError` : a command was issued with no usable link
- `CommandTimeoutError` : the device stayed silent for the whole budget
- `CommunicationError` : the transport failed during a write/read
- `InvalidResponseError` : a reply did not have the expected shape
- `FirmwareIncompatibleError` : device firmware is older than supported
- `ValidationError` (+ `InvalidChannelError`, `InvalidVoltageError`) :
  a parameter was rejected before any I/O
- `OperationAbortedError` : an abort signal fired during a wait

Errors that wrap a lower level failure keep it as `original_error` and as the
exception `__cause__`.
"""

from __future__ import annotations

from typing import Any, Optional


class CD48Error(Exception):
    """Base exception for CD48 errors."""

    pass


class UnsupportedTransportError(CD48Error):
    def __init__(self, detail: str = ""):
        msg = "Serial transport not supported on this host."
        if detail:
            msg += f" {detail}"
        super().__init__(msg)


class DeviceSelectionCancelledError(CD48Error):
    def __init__(self):
        super().__init__("No CD48 device selected by user")


class ConnectionError(CD48Error):  # noqa: A001 - mirrors the taxonomy name
    """Opening or reopening the serial link failed."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(f"Connection failed: {message}")
        self.original_error = cause
        if cause is not None:
            self.__cause__ = cause


# unambiguous alias for code that also uses the builtin
CD48ConnectionError = ConnectionError


class NotConnectedError(CD48Error):
    def __init__(self, operation: str):
        super().__init__(
            f"Cannot perform operation '{operation}' - device not connected. "
            + "Call connect() first."
        )
        self.operation = operation


class CommandTimeoutError(CD48Error):
    def __init__(self, command: str, timeout_ms: int):
        super().__init__(f"Command '{command}' timed out after {timeout_ms}ms")
        self.command = command
        self.timeout_ms = timeout_ms


class CommunicationError(CD48Error):
    """The transport failed while writing a command or reading its reply."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(f"Communication error: {message}")
        self.original_error = cause
        if cause is not None:
            self.__cause__ = cause


class InvalidResponseError(CD48Error):
    def __init__(self, response: str, expected: str):
        super().__init__(
            f"Invalid response format. Got: '{response}', expected: {expected}"
        )
        self.response = response
        self.expected = expected


class FirmwareIncompatibleError(CD48Error):
    def __init__(self, current_version: str, minimum_version: str):
        super().__init__(
            f"Firmware version {current_version} is not supported. "
            + f"Minimum required version is {minimum_version}."
        )
        self.current_version = current_version
        self.minimum_version = minimum_version


class ValidationError(CD48Error):
    """A parameter failed validation before anything was sent to the device.

    Attributes
    ----------
    parameter : str
        Name of the offending parameter
    value : Any
        The rejected value
    constraints : str
        Human readable description of what would have been accepted
    """

    def __init__(self, parameter: str, value: Any, constraints: str):
        super().__init__(
            f"Invalid parameter '{parameter}': {value}. Constraints: {constraints}"
        )
        self.parameter = parameter
        self.value = value
        self.constraints = constraints


class InvalidChannelError(ValidationError):
    def __init__(self, channel: Any):
        super().__init__("channel", channel, "0-7")


class InvalidVoltageError(ValidationError):
    def __init__(self, voltage: Any):
        super().__init__("voltage", voltage, "0.0-4.08V")


class OperationAbortedError(CD48Error):
    def __init__(self, operation: str):
        super().__init__(f"Operation '{operation}' was aborted")
        self.operation = operation
