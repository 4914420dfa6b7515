from __future__ import annotations

import ipaddress
import logging
from typing import Iterable, List, Tuple

from localroute.errors import CommandFailed, MutationFailed
from localroute.iptables import Iptables
from localroute.rules import MirrorRuleSet, dnat_spec, snat_spec

OUTPUT_CHAIN = "LOCALROUTE_OUTPUT"
POSTROUTING_CHAIN = "LOCALROUTE_POSTROUTING"


def address_key(address: str):
    try:
        return (0, int(ipaddress.IPv4Address(address)), address)
    except ValueError:
        return (1, 0, address)


class ChainManager:
    """Owns the two mirror chains in the nat table and their jump rules."""

    def __init__(self, iptables: Iptables, output_chain: str = OUTPUT_CHAIN,
                 postrouting_chain: str = POSTROUTING_CHAIN):
        self.iptables = iptables
        self.output_chain = output_chain
        self.postrouting_chain = postrouting_chain

    @property
    def links(self) -> List[Tuple[str, str]]:
        return [("OUTPUT", self.output_chain), ("POSTROUTING", self.postrouting_chain)]

    def ensure_chains(self):
        try:
            for _, chain in self.links:
                if self.iptables.new_chain(chain):
                    logging.info(f"Created chain {chain}")
                self.iptables.flush_chain(chain)
            for builtin, chain in self.links:
                self._ensure_single_link(builtin, chain)
        except CommandFailed as e:
            raise MutationFailed(f"Cannot set up mirror chains: {e}") from e

    def _ensure_single_link(self, builtin: str, chain: str):
        link = f"-A {builtin} -j {chain}"
        count = sum(1 for line in self.iptables.list_rules(builtin) if line == link)
        if count == 0:
            logging.info(f"Linking {builtin} -> {chain}")
            self.iptables.append(builtin, ["-j", chain])
        for _ in range(count - 1):
            logging.info(f"Removing duplicate link {builtin} -> {chain}")
            self.iptables.delete(builtin, ["-j", chain])

    def rebuild(self, rules: MirrorRuleSet, addresses: Iterable[str]):
        """Flush and repopulate both chains with one DNAT and one SNAT rule per
        (address, rule) pair. Not transactional: on failure, whatever was
        appended so far stays in place."""
        try:
            self.iptables.flush_chain(self.output_chain)
            self.iptables.flush_chain(self.postrouting_chain)
            for address in sorted(addresses, key=address_key):
                for rule in rules:
                    self.iptables.append(self.output_chain, dnat_spec(rule, address))
                    self.iptables.append(self.postrouting_chain, snat_spec(rule, address))
        except CommandFailed as e:
            raise MutationFailed(f"Rebuild of mirror chains failed: {e}") from e

    def teardown(self):
        try:
            for builtin, chain in self.links:
                link = f"-A {builtin} -j {chain}"
                for line in self.iptables.list_rules(builtin):
                    if line == link:
                        self.iptables.delete(builtin, ["-j", chain])
            for _, chain in self.links:
                self.iptables.flush_chain(chain)
                self.iptables.delete_chain(chain)
        except CommandFailed as e:
            raise MutationFailed(f"Cannot remove mirror chains: {e}") from e
        logging.info("Removed mirror chains")
