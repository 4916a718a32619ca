"""Utilities for remembering which serial ports the user has picked before."""

import json
from pathlib import Path
from typing import Optional

from loguru import logger

CACHE_DIR = Path.home() / ".cd48" / "device_cache"


def get_cached_ports(device_type: str, cache_dir: Optional[Path] = None) -> list[str]:
    """Get the serial ports previously selected for a device type.

    Args:
        device_type: Type of device (e.g. 'cd48')
        cache_dir: Optional override of the cache directory

    Returns:
        Port names, most recent first. Empty if nothing was cached.
    """
    cache_file = (cache_dir or CACHE_DIR) / f"{device_type}.json"
    try:
        if cache_file.exists():
            with open(cache_file) as f:
                data = json.load(f)
                return [str(p) for p in data.get("ports", [])]
    except Exception as e:
        logger.debug(f"Error reading cache for {device_type}: {e}")
    return []


def update_cached_port(
    device_type: str, port: str, cache_dir: Optional[Path] = None
) -> None:
    """Record a port as selected, moving it to the front of the list.

    Args:
        device_type: Type of device (e.g. 'cd48')
        port: Serial port name to cache
        cache_dir: Optional override of the cache directory
    """
    cache_dir = cache_dir or CACHE_DIR
    ports = [p for p in get_cached_ports(device_type, cache_dir) if p != port]
    ports.insert(0, port)
    try:
        cache_dir.mkdir(parents=True, exist_ok=True)
        with open(cache_dir / f"{device_type}.json", "w") as f:
            json.dump({"ports": ports}, f)
    except Exception as e:
        logger.debug(f"Error updating cache for {device_type}: {e}")
