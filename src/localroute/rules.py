from __future__ import annotations

from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Tuple

# Ports the orchestrator uses for its own IPsec overlay; never mirrored.
RESERVED_PORTS: FrozenSet[str] = frozenset({"500", "4500"})


@dataclass(frozen=True)
class PortForwardRule:
    protocol: str
    source_port: str
    dest_address: str
    dest_port: str

    def __str__(self) -> str:
        return f"{self.protocol}/{self.source_port} -> {self.dest_address}:{self.dest_port}"


MirrorRuleSet = Tuple[PortForwardRule, ...]


def port_number(port: str) -> int:
    """Numeric value of a port or the low end of a port range."""
    for sep in (":", "-"):
        if sep in port:
            port = port.split(sep, 1)[0]
    return int(port)


def sort_key(rule: PortForwardRule) -> Tuple[int, str, str, str, str]:
    return (port_number(rule.source_port), rule.protocol, rule.dest_address, rule.dest_port,
            rule.source_port)


def normalize(rules: Iterable[PortForwardRule],
              reserved_ports: FrozenSet[str] = RESERVED_PORTS) -> MirrorRuleSet:
    """Drop reserved ports and duplicates, then order by numeric source port.

    The sort key is total over every field, so equal inputs always produce
    equal tuples regardless of the order the source chain listed them in.
    """
    kept = {r for r in rules if r.source_port not in reserved_ports}
    return tuple(sorted(kept, key=sort_key))


def match_port(port: str) -> str:
    # --to-destination writes ranges as a-b, --dport expects a:b
    return port.replace("-", ":")


def dnat_spec(rule: PortForwardRule, host_address: str) -> List[str]:
    return [
        "-d", f"{host_address}/32",
        "-p", rule.protocol, "-m", rule.protocol,
        "--dport", match_port(rule.source_port),
        "-j", "DNAT", "--to-destination", f"{rule.dest_address}:{rule.dest_port}",
    ]


def snat_spec(rule: PortForwardRule, host_address: str) -> List[str]:
    return [
        "-d", f"{rule.dest_address}/32",
        "-p", rule.protocol, "-m", rule.protocol,
        "--dport", match_port(rule.dest_port),
        "-j", "SNAT", "--to-source", host_address,
    ]
