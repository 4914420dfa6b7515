from __future__ import annotations

import ipaddress
import logging
import socket
from typing import Callable, FrozenSet, List, Optional, Tuple

from pyroute2 import IPRoute
from pyroute2.netlink.exceptions import NetlinkError

from localroute.errors import NoAddressFound

IFF_LOOPBACK = 0x8

Interfaces = List[Tuple[str, List[str]]]


def list_ipv4_interfaces() -> Interfaces:
    """Return ``(ifname, [ipv4 addresses])`` for every non-loopback link,
    in kernel enumeration order."""
    with IPRoute() as ipr:
        links = []
        for link in ipr.get_links():
            if link["flags"] & IFF_LOOPBACK:
                continue
            links.append((link["index"], link.get_attr("IFLA_IFNAME")))

        by_index = {}
        for msg in ipr.get_addr(family=socket.AF_INET):
            addr = msg.get_attr("IFA_LOCAL") or msg.get_attr("IFA_ADDRESS")
            if addr:
                by_index.setdefault(msg["index"], []).append(addr)

    return [(name, by_index.get(index, [])) for index, name in links]


def is_loopback(address: str) -> bool:
    try:
        return ipaddress.IPv4Address(address).is_loopback
    except ValueError:
        return False


class HostAddressProvider:
    """Resolves the local IPv4 addresses that receive mirrored rules.

    An explicit override wins and is returned as given. Otherwise the named
    interface is enumerated, or the first interface owning a non-loopback
    IPv4 address when none is named.
    """

    def __init__(self, override: Optional[List[str]] = None, interface: Optional[str] = None,
                 enumerate_interfaces: Callable[[], Interfaces] = list_ipv4_interfaces):
        self.override = list(override or [])
        self.interface = interface
        self.enumerate_interfaces = enumerate_interfaces

    def resolve(self) -> FrozenSet[str]:
        if self.override:
            return frozenset(self.override)

        try:
            interfaces = self.enumerate_interfaces()
        except NetlinkError as e:
            raise NoAddressFound(f"Interface enumeration failed: {e}") from e

        for name, addrs in interfaces:
            if self.interface and name != self.interface:
                continue
            usable = [a for a in addrs if not is_loopback(a)]
            if usable:
                logging.debug(f"Using addresses {usable} of interface {name}")
                return frozenset(usable)
            if self.interface:
                break

        if self.interface:
            raise NoAddressFound(f"No IPv4 address on interface {self.interface}")
        raise NoAddressFound("No interface with a non-loopback IPv4 address")
