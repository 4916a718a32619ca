"""Parameter validation and unit conversion for CD48 commands.

All checks run before any I/O. A value of the wrong type (or NaN) raises the
generic `ValidationError`; a number outside the accepted range raises the
specific subclass where one exists (`InvalidChannelError`,
`InvalidVoltageError`).

The trigger level and DAC output are set with a single byte, mapped linearly
onto 0-4.08 V:

    byte = round(clamp(voltage, 0, 4.08) / 4.08 * 255)
    voltage = byte / 255 * 4.08
"""

from __future__ import annotations

import math
import numbers
from typing import Any

from .errors import InvalidChannelError, InvalidVoltageError, ValidationError

CHANNEL_MIN = 0
CHANNEL_MAX = 7

VOLTAGE_MIN = 0.0
VOLTAGE_MAX = 4.08

BYTE_MIN = 0
BYTE_MAX = 255

REPEAT_INTERVAL_MIN = 100  # ms
REPEAT_INTERVAL_MAX = 65535  # ms

IMPEDANCE_MODES = ("highz", "50ohm")


def _is_number(value: Any) -> bool:
    # bool is an int subclass, but True is never a sensible channel/voltage
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return not math.isnan(value)


def validate_number(parameter: str, value: Any, constraints: str) -> None:
    if not _is_number(value):
        raise ValidationError(parameter, value, constraints)


def is_valid_channel(value: Any) -> bool:
    return (
        _is_number(value)
        and float(value).is_integer()
        and CHANNEL_MIN <= value <= CHANNEL_MAX
    )


def is_valid_voltage(value: Any) -> bool:
    return _is_number(value) and VOLTAGE_MIN <= value <= VOLTAGE_MAX


def validate_channel(channel: Any) -> None:
    if not _is_number(channel):
        raise ValidationError("channel", channel, "must be a number between 0 and 7")
    if not float(channel).is_integer() or not CHANNEL_MIN <= channel <= CHANNEL_MAX:
        raise InvalidChannelError(channel)


def validate_voltage(voltage: Any) -> None:
    if not _is_number(voltage):
        raise ValidationError(
            "voltage", voltage, "must be a number between 0.0 and 4.08"
        )
    if not VOLTAGE_MIN <= voltage <= VOLTAGE_MAX:
        raise InvalidVoltageError(voltage)


def validate_byte(byte: Any) -> None:
    if not _is_number(byte):
        raise ValidationError("byte", byte, "must be a number between 0 and 255")
    if not BYTE_MIN <= byte <= BYTE_MAX:
        raise ValidationError("byte", byte, "0-255")


def validate_repeat_interval(interval: Any) -> None:
    if not _is_number(interval):
        raise ValidationError(
            "repeat_interval", interval, "must be a number between 100 and 65535"
        )
    if not REPEAT_INTERVAL_MIN <= interval <= REPEAT_INTERVAL_MAX:
        raise ValidationError("repeat_interval", interval, "100-65535 ms")


def validate_duration(duration: Any) -> None:
    if not _is_number(duration) or math.isinf(duration):
        raise ValidationError("duration", duration, "must be a positive number")
    if duration <= 0:
        raise ValidationError("duration", duration, "must be greater than 0")


def validate_impedance_mode(mode: Any) -> str:
    """Return the normalised mode ('highz' or '50ohm')."""
    if not isinstance(mode, str) or mode.lower() not in IMPEDANCE_MODES:
        raise ValidationError("impedance", mode, "must be 'highz' or '50ohm'")
    return mode.lower()


def validate_boolean(param_name: str, value: Any) -> None:
    if not isinstance(value, bool):
        raise ValidationError(param_name, value, "must be true or false")


def validate_input_flag(param_name: str, value: Any) -> None:
    """Channel input selectors are sent as a literal 0 or 1."""
    if (
        isinstance(value, bool)
        or not isinstance(value, numbers.Integral)
        or value not in (0, 1)
    ):
        raise ValidationError(param_name, value, "must be the integer 0 or 1")


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def clamp_voltage(voltage: float) -> float:
    return clamp(voltage, VOLTAGE_MIN, VOLTAGE_MAX)


def clamp_repeat_interval(interval: int) -> int:
    return int(clamp(interval, REPEAT_INTERVAL_MIN, REPEAT_INTERVAL_MAX))


def voltage_to_byte(voltage: float) -> int:
    if not _is_number(voltage):
        raise ValidationError(
            "voltage", voltage, "must be a number between 0.0 and 4.08"
        )
    # round half up
    return math.floor(clamp_voltage(voltage) / VOLTAGE_MAX * BYTE_MAX + 0.5)


def byte_to_voltage(byte: int) -> float:
    validate_byte(byte)
    return byte / BYTE_MAX * VOLTAGE_MAX
