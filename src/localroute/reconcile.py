from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import FrozenSet

from localroute.chains import ChainManager
from localroute.hostaddr import HostAddressProvider
from localroute.rules import RESERVED_PORTS, MirrorRuleSet, normalize
from localroute.source import RuleSource


@dataclass
class ReconciliationState:
    last_applied_rules: MirrorRuleSet = ()
    last_known_addresses: FrozenSet[str] = frozenset()


class Reconciler:
    """Level-triggered convergence: a change in either the rule set or the
    address set rebuilds both chains from the latest values of both."""

    def __init__(self, source: RuleSource, addresses: HostAddressProvider, chains: ChainManager,
                 state: ReconciliationState, reserved_ports: FrozenSet[str] = RESERVED_PORTS):
        self.source = source
        self.addresses = addresses
        self.chains = chains
        self.state = state
        self.reserved_ports = reserved_ports

    def tick(self) -> bool:
        rules = normalize(self.source.fetch_rules(), self.reserved_ports)
        addresses = self.addresses.resolve()

        if rules == self.state.last_applied_rules and addresses == self.state.last_known_addresses:
            logging.debug("No change")
            return False

        logging.info(f"Rebuilding mirror chains: {len(rules)} rules x {len(addresses)} addresses "
                     f"({', '.join(sorted(addresses))})")
        for rule in rules:
            logging.debug(f"  {rule}")
        self.chains.rebuild(rules, addresses)
        self.state.last_applied_rules = rules
        self.state.last_known_addresses = addresses
        return True
