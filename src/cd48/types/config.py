"""Per-engine configuration.

A `CD48Config` is fixed when a `CD48` is constructed; there is no module
level state to tweak. All times are in seconds.

Config files are plain JSON with the same field names:

```json
{"auto_reconnect": true, "reconnect_attempts": 5, "rate_limit": 0.05}
```
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

import simplejson as json
from loguru import logger
from mashumaro import DataClassDictMixin

from cd48.util.defaults import (
    BAUD_RATE,
    COMMAND_DELAY,
    COMMAND_TIMEOUT,
    CONNECTION_INIT_DELAY,
    DEFAULT_COMMAND_RETRIES,
    DEFAULT_RETRY_DELAY,
    RECONNECT_ATTEMPTS,
    RECONNECT_DELAY,
)


@dataclass(frozen=True, kw_only=True)
class CD48Config(DataClassDictMixin):
    """Configuration for one CD48 engine.

    Attributes
    ----------
    baud_rate : int
        Serial bit rate
    command_delay : float
        Settle time after each write, also the quiet gap that ends a
        multi-line reply (s)
    command_timeout : float
        Default response budget per command (s)
    settle_delay : float
        Pause after opening the port while the firmware boots (s)
    auto_reconnect : bool
        Reopen the last device automatically when the link is lost
    reconnect_attempts : int
        Attempts per automatic reconnect sequence
    reconnect_delay : float
        Backoff unit; attempt k waits reconnect_delay * k (s)
    rate_limit : float
        Minimum spacing between command dispatches, 0 disables (s)
    command_retries : int
        Extra attempts after a CommunicationError
    retry_delay : float
        Pause between retry attempts (s)
    use_lock : bool
        Serialize on a host supplied asyncio.Lock when one is given
    """

    baud_rate: int = BAUD_RATE
    command_delay: float = COMMAND_DELAY
    command_timeout: float = COMMAND_TIMEOUT
    settle_delay: float = CONNECTION_INIT_DELAY
    auto_reconnect: bool = False
    reconnect_attempts: int = RECONNECT_ATTEMPTS
    reconnect_delay: float = RECONNECT_DELAY
    rate_limit: float = 0.0
    command_retries: int = DEFAULT_COMMAND_RETRIES
    retry_delay: float = DEFAULT_RETRY_DELAY
    use_lock: bool = False

    def __post_init__(self):
        """Validate configuration immediately after initialization."""
        self.validate()

    def validate(self) -> None:
        validators = {
            "baud_rate": (self.baud_rate > 0, "Baud rate must be positive"),
            "command_delay": (self.command_delay >= 0, "Command delay cannot be negative"),
            "command_timeout": (self.command_timeout > 0, "Command timeout must be positive"),
            "settle_delay": (self.settle_delay >= 0, "Settle delay cannot be negative"),
            "reconnect_attempts": (
                self.reconnect_attempts >= 0,
                "Reconnect attempts cannot be negative",
            ),
            "reconnect_delay": (self.reconnect_delay >= 0, "Reconnect delay cannot be negative"),
            "rate_limit": (self.rate_limit >= 0, "Rate limit cannot be negative"),
            "command_retries": (self.command_retries >= 0, "Command retries cannot be negative"),
            "retry_delay": (self.retry_delay >= 0, "Retry delay cannot be negative"),
        }

        for param, (valid, message) in validators.items():
            if not valid:
                raise ValueError(f"{message} (got {getattr(self, param)})")


def load_config(path: Optional[str | Path] = None) -> CD48Config:
    """Read a JSON config file, falling back to defaults if there is none.

    Unknown keys are an error rather than being silently ignored, since a
    typo in e.g. `auto_reconect` would otherwise go unnoticed.
    """
    if path is None:
        return CD48Config()
    path = Path(path)
    if not path.exists():
        logger.info("No config file at {}, using defaults.", path)
        return CD48Config()

    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError(f"Config file {path} must contain a JSON object")
    known = {f.name for f in fields(CD48Config)}
    unknown = set(raw) - known
    if unknown:
        raise ValueError(f"Unknown config keys in {path}: {sorted(unknown)}")
    cfg = CD48Config.from_dict(raw)
    logger.debug("Loaded config from {}: {}", path, cfg)
    return cfg


def save_config(cfg: CD48Config, path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(cfg.to_dict(), indent=2, sort_keys=True), encoding="utf-8")
    return path
