"""Reads the orchestrator's port-forward chain.

Only rules that jump to DNAT describe a forward; everything else in the
chain (its ``-N`` declaration, RETURN rules, address-type matches) is
skipped. A DNAT rule we cannot fully understand is fatal rather than
skipped, since mirroring half of it would misroute traffic.
"""

from __future__ import annotations

import ipaddress
import logging
import re
import shlex
from typing import List, Optional

from localroute.errors import CommandFailed, MalformedRule, SourceUnavailable
from localroute.iptables import Iptables
from localroute.rules import PortForwardRule

PORT_RE = re.compile(r"^\d{1,5}(:\d{1,5})?$")
DEST_PORT_RE = re.compile(r"^\d{1,5}(-\d{1,5})?$")

PROTOCOL_FLAGS = {"-p", "--protocol"}
DPORT_FLAGS = {"--dport", "--destination-port"}
TO_FLAGS = {"--to-destination", "--to"}
JUMP_FLAGS = {"-j", "--jump"}


def parse_rule(line: str) -> Optional[PortForwardRule]:
    """Parse one ``iptables -S`` line; None when it is not a DNAT forward."""
    try:
        tokens = shlex.split(line)
    except ValueError as e:
        raise MalformedRule(line, f"unbalanced quoting ({e})")

    if not tokens or tokens[0] not in {"-A", "--append"}:
        return None

    fields = {}
    negate = False
    i = 0
    while i < len(tokens):
        tok = tokens[i]
        if tok == "!":
            negate = True
            i += 1
            continue
        value = tokens[i + 1] if i + 1 < len(tokens) else None
        for name, flags in (("protocol", PROTOCOL_FLAGS), ("dport", DPORT_FLAGS),
                            ("to", TO_FLAGS), ("jump", JUMP_FLAGS)):
            if tok in flags:
                if value is None:
                    raise MalformedRule(line, f"{tok} without a value")
                if negate:
                    fields[name + "_negated"] = True
                fields[name] = value
                i += 1
                break
        negate = False
        i += 1

    if fields.get("jump") != "DNAT":
        return None

    for name, flag in (("protocol", "-p"), ("dport", "--dport"), ("to", "--to-destination")):
        if name not in fields:
            raise MalformedRule(line, f"DNAT rule without {flag}")
        if fields.get(name + "_negated"):
            raise MalformedRule(line, f"DNAT rule with negated {flag}")

    protocol = fields["protocol"].lower()
    source_port = fields["dport"]
    if not PORT_RE.match(source_port):
        raise MalformedRule(line, f"bad source port {source_port!r}")

    dest_address, sep, dest_port = fields["to"].rpartition(":")
    if not sep or not dest_address or not dest_port:
        raise MalformedRule(line, f"destination {fields['to']!r} is not address:port")
    if not DEST_PORT_RE.match(dest_port):
        raise MalformedRule(line, f"bad destination port {dest_port!r}")
    try:
        ipaddress.IPv4Address(dest_address)
    except ValueError:
        raise MalformedRule(line, f"bad destination address {dest_address!r}")

    return PortForwardRule(protocol=protocol, source_port=source_port,
                           dest_address=dest_address, dest_port=dest_port)


def parse_rules(lines: List[str]) -> List[PortForwardRule]:
    rules = []
    for line in lines:
        rule = parse_rule(line)
        if rule is None:
            logging.debug(f"Skipping non-forward rule: {line}")
            continue
        rules.append(rule)
    return rules


class RuleSource:
    def __init__(self, iptables: Iptables, chain: str):
        self.iptables = iptables
        self.chain = chain

    def fetch_intent(self) -> List[str]:
        try:
            return self.iptables.list_rules(self.chain)
        except CommandFailed as e:
            raise SourceUnavailable(f"Cannot read chain {self.chain}: {e}") from e

    def fetch_rules(self) -> List[PortForwardRule]:
        return parse_rules(self.fetch_intent())
