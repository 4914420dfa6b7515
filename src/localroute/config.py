from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from localroute.errors import ConfigError

DEFAULT_SOURCE_CHAIN = "CATTLE_PREROUTING"
DEFAULT_POLL_INTERVAL = 1.0


def env_bool(name: str, default: bool, environ: Optional[Mapping[str, str]] = None) -> bool:
    environ = os.environ if environ is None else environ
    return environ.get(name, str(default)).strip().lower() in {"1", "true", "yes", "on"}


def split_addresses(raw: str) -> List[str]:
    """Split a comma separated override list, trimming blanks."""
    return [a.strip() for a in raw.split(",") if a.strip()]


@dataclass
class Settings:
    host_addresses: List[str] = field(default_factory=list)
    host_interface: Optional[str] = None
    source_chain: str = DEFAULT_SOURCE_CHAIN
    poll_interval: float = DEFAULT_POLL_INTERVAL
    debug: bool = False
    log_level: str = "INFO"
    dry_run: bool = False
    clean_on_exit: bool = False
    iptables: str = "iptables"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        environ = os.environ if environ is None else environ

        raw_interval = environ.get("POLL_INTERVAL_SECS", str(DEFAULT_POLL_INTERVAL))
        try:
            interval = float(raw_interval)
        except ValueError:
            raise ConfigError(f"POLL_INTERVAL_SECS is not a number: {raw_interval!r}")
        if interval <= 0:
            raise ConfigError(f"POLL_INTERVAL_SECS must be positive, got {interval}")

        return cls(
            host_addresses=split_addresses(environ.get("HOST_ADDRESSES", "")),
            host_interface=environ.get("HOST_INTERFACE", "").strip() or None,
            source_chain=environ.get("SOURCE_CHAIN", "").strip() or DEFAULT_SOURCE_CHAIN,
            poll_interval=interval,
            debug=env_bool("DEBUG", False, environ),
            log_level=environ.get("LOG_LEVEL", "INFO").strip().upper() or "INFO",
            dry_run=env_bool("DRY_RUN", False, environ),
            clean_on_exit=env_bool("CLEAN_ON_EXIT", False, environ),
            iptables=environ.get("IPTABLES", "").strip() or "iptables",
        )

    @property
    def effective_log_level(self) -> str:
        return "DEBUG" if self.debug else self.log_level
