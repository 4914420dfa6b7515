from __future__ import annotations

import logging
import os
from typing import List

from localroute.errors import PreconditionUnmet

REQUIRED_SETTINGS = (
    "net/ipv4/ip_forward",
    "net/ipv4/conf/all/route_localnet",
)


def read_setting(name: str, root: str = "/proc/sys") -> str:
    with open(os.path.join(root, name), "r") as f:
        return f.read().strip()


def check_kernel_settings(root: str = "/proc/sys"):
    """Ensure every required sysctl reads 1. We never set them ourselves."""
    missing: List[str] = []
    for name in REQUIRED_SETTINGS:
        key = name.replace("/", ".")
        try:
            value = read_setting(name, root)
        except OSError as e:
            logging.error(f"Cannot read {key}: {e}")
            missing.append(key)
            continue
        if value != "1":
            logging.error(f"{key} = {value!r}, expected 1")
            missing.append(key)
        else:
            logging.debug(f"{key} = 1")
    if missing:
        raise PreconditionUnmet(f"Kernel settings not enabled: {', '.join(missing)}")
