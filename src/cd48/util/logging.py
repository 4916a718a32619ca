# -*- coding: utf-8 -*-
"""
Loguru sinks for scripts and the `cd48` command line tool.

The library itself only ever calls `logger.<level>(...)`; nothing is written
anywhere until a host calls `start_log`.

Counting runs can go on for hours, so the file sink rotates at `LOG_ROTATION`
and keeps `LOG_RETENTION` old files. The raw TX/RX byte trace of the protocol
engine is logged at TRACE and stays out of every sink unless `log_wire` is set.
"""

import pathlib
import sys
import traceback
from typing import Optional, Union

from loguru import logger

from .defaults import (
    DEFAULT_LOGLEVEL,
    LOG_RETENTION,
    LOG_ROTATION,
    SINGLE_LINE_ERR_LOG,
)

WIRE_LOG_MODULE = "cd48.device.protocol"

_active_log_path: Optional[pathlib.Path] = None


def log_default_path() -> str:
    return str(pathlib.Path.home() / ".cd48" / "cd48.log")


def _drop_wire_trace(record) -> bool:
    return not (
        record["level"].name == "TRACE" and record["name"] == WIRE_LOG_MODULE
    )


def start_log(
    log_to_file: bool = True,
    log_to_stdout: bool = False,
    log_path: Optional[str] = None,
    clear_prev: bool = True,
    log_level: str = DEFAULT_LOGLEVEL,
    log_wire: bool = False,
    rotation: Union[str, int, None] = LOG_ROTATION,
    retention: Union[str, int, None] = LOG_RETENTION,
):
    """Replace every loguru sink with the cd48 file and/or terminal sinks.

    Parameters
    ----------
    log_to_file : bool
        Write to `log_path`
    log_to_stdout : bool
        Write (coloured) to stderr
    log_path : str, optional
        Log file, defaults to `~/.cd48/cd48.log`
    clear_prev : bool
        Delete the previous log file first
    log_level : str
        Minimum level for both sinks
    log_wire : bool
        Keep the TX/RX byte trace (needs `log_level="TRACE"`)
    rotation, retention
        Passed to `logger.add` for the file sink, None disables
    """
    global _active_log_path

    path = pathlib.Path(log_path).expanduser().absolute() if log_path else None
    if path is None:
        path = pathlib.Path(log_default_path())
    if clear_prev:
        clear_log(str(path))

    logger.remove()
    _active_log_path = None
    record_filter = None if log_wire else _drop_wire_trace

    if log_to_file:
        logger.add(
            path,
            level=log_level,
            filter=record_filter,
            rotation=rotation,
            retention=retention,
            enqueue=True,
            colorize=False,
        )
        _active_log_path = path
    if log_to_stdout:
        logger.add(
            sys.stderr,
            level=log_level,
            filter=record_filter,
            enqueue=True,
            colorize=True,
        )

    if log_to_file:
        logger.info("CD48 log started at {} (rotation {})", path, rotation)
    else:
        logger.info("CD48 log started.")


def clear_log(log_path: str):
    """
    Delete the log file at `log_path`, if there is one.

    Rotated files next to it are left to the sink's retention policy.
    """
    path = pathlib.Path(log_path)
    try:
        path.unlink(missing_ok=True)
    except PermissionError:
        logger.error(
            "Could not clear log file {}. Permission denied. Continuing.", path
        )


def shutdown_log():
    """Flush queued records and drop all sinks."""
    global _active_log_path
    try:
        logger.info("Closing down CD48 log.")
        logger.remove()
    except Exception:
        logger.exception("Error shutting down log - skipping.")
    _active_log_path = None


def get_log_filename() -> str:
    """Path of the active log file, or '' when only the terminal is logged to."""
    return str(_active_log_path) if _active_log_path is not None else ""


def format_error_response() -> str:
    """The exception being handled, as one line when `SINGLE_LINE_ERR_LOG` is set."""
    err_str = traceback.format_exc()
    if SINGLE_LINE_ERR_LOG:
        return "\t".join(line.strip() for line in err_str.splitlines())
    return err_str
