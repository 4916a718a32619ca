from typing import Optional, Sequence

import serial.tools.list_ports
from loguru import logger

from cd48.types.protocols import PortFilter, PortInfo


def get_hw_ports() -> dict[str, tuple]:
    """All serial ports with real hardware behind them, keyed by device."""
    port_dict = dict()
    for p in list(serial.tools.list_ports.comports()):
        # Only include if there's actual hardware info
        if p.hwid != "n/a":
            port_dict[p.device] = tuple(p)[1:]
    return port_dict


def list_cd48_ports(filters: Optional[Sequence[PortFilter]] = None) -> list[PortInfo]:
    """Serial ports whose USB ids match any of `filters`.

    With no filters every hardware port is returned.
    """
    found = []
    for p in serial.tools.list_ports.comports():
        if p.hwid == "n/a":
            continue
        if filters and not any(f.matches(p.vid, p.pid) for f in filters):
            continue
        found.append(
            PortInfo(
                device=p.device,
                description=p.description or "",
                hwid=p.hwid or "",
                vid=p.vid,
                pid=p.pid,
            )
        )
    logger.debug("Found {} matching serial port(s): {}", len(found), found)
    return found
