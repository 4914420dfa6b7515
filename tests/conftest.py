"""
Pytest configuration and fixtures.

FakeIptables keeps an in-memory nat table and answers the same argv the
real binary would receive, so tests see the exact command sequence.
"""
from typing import Callable, Dict, List, Optional

import pytest

from localroute.errors import CommandFailed
from localroute.iptables import Iptables

SOURCE_CHAIN = "CATTLE_PREROUTING"
BUILTINS = ("PREROUTING", "INPUT", "OUTPUT", "POSTROUTING")


class FakeIptables(Iptables):
    def __init__(self, dry_run: bool = False):
        super().__init__(binary="iptables", table="nat", dry_run=dry_run)
        self.chains: Dict[str, List[str]] = {name: [] for name in BUILTINS}
        self.commands: List[List[str]] = []
        self.fail_on: Optional[Callable[[List[str]], bool]] = None

    @property
    def mutations(self) -> List[List[str]]:
        return [c for c in self.commands if c[3] != "-S"]

    def rules(self, chain: str) -> List[str]:
        return list(self.chains[chain])

    def add_forward(self, proto: str, port: int, dest: str, chain: str = SOURCE_CHAIN):
        self.chains.setdefault(chain, []).append(
            f"-p {proto} -m addrtype --dst-type LOCAL -m {proto} --dport {port} "
            f"-j DNAT --to-destination {dest}")

    def _fail(self, cmd, msg):
        raise CommandFailed(cmd, 1, msg)

    def _execute(self, cmd: List[str]) -> str:
        self.commands.append(list(cmd))
        if self.fail_on and self.fail_on(cmd):
            self._fail(cmd, "iptables: Injected failure.")
        op, chain, spec = cmd[3], cmd[4], " ".join(cmd[5:])
        missing = "iptables: No chain/target/match by that name."

        if op == "-N":
            if chain in self.chains:
                self._fail(cmd, "iptables: Chain already exists.")
            self.chains[chain] = []
            return ""
        if chain not in self.chains:
            self._fail(cmd, missing)
        if op == "-S":
            head = f"-P {chain} ACCEPT" if chain in BUILTINS else f"-N {chain}"
            return "\n".join([head] + [f"-A {chain} {r}" for r in self.chains[chain]]) + "\n"
        if op == "-F":
            self.chains[chain] = []
        elif op == "-A":
            self.chains[chain].append(spec)
        elif op == "-D":
            if spec not in self.chains[chain]:
                self._fail(cmd, "iptables: Bad rule (does a matching rule exist in that chain?).")
            self.chains[chain].remove(spec)
        elif op == "-X":
            del self.chains[chain]
        else:
            raise AssertionError(f"unexpected command {cmd}")
        return ""


class StaticAddresses:
    """Stand-in HostAddressProvider whose answer tests can change."""

    def __init__(self, *addresses):
        self.addresses = frozenset(addresses)

    def resolve(self):
        return self.addresses


@pytest.fixture
def nat():
    fake = FakeIptables()
    fake.chains[SOURCE_CHAIN] = []
    return fake
