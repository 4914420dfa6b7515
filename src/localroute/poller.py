#!/usr/bin/env python3
"""localroute - mirror orchestrator port forwards for host-local traffic

The orchestrator publishes container ports by DNAT rules in its own nat
chain (CATTLE_PREROUTING by default). Those rules only see traffic arriving
from outside, so a process on the host connecting to its own public address
never reaches the container. This daemon polls that chain and keeps two
chains of its own in sync:

  LOCALROUTE_OUTPUT       (jumped to from nat OUTPUT)
      -d <host>/32 -p <proto> --dport <port> -j DNAT --to-destination <backend>
  LOCALROUTE_POSTROUTING  (jumped to from nat POSTROUTING)
      -d <backend>/32 -p <proto> --dport <backend port> -j SNAT --to-source <host>

one pair per (host address, forwarded port). Ports 500 and 4500 belong to
the orchestrator's IPsec overlay and are never mirrored.

The kernel must route loopback-originated traffic to non-local addresses
(net.ipv4.conf.all.route_localnet=1) and forward (net.ipv4.ip_forward=1);
both are checked at startup and never changed here.

Failures are not retried. A half-applied nat ruleset silently misroutes
traffic, so every error ends the process with a distinct exit code:
  3 no host address, 4 source chain unreadable, 5 kernel settings,
  6 iptables mutation failed, 7 unparseable forward rule.

Environment Variables:
  HOST_ADDRESSES      comma separated addresses, overrides interface lookup
  HOST_INTERFACE      interface to take addresses from (default: first usable)
  SOURCE_CHAIN        (default CATTLE_PREROUTING)
  POLL_INTERVAL_SECS  (default 1)
  DEBUG               (default false) -> DEBUG log level
  LOG_LEVEL           (default INFO)
  DRY_RUN             (default false) -> only log mutating iptables commands
  CLEAN_ON_EXIT       (default false) -> delete our chains on shutdown
  IPTABLES            (default iptables)
"""

from __future__ import annotations

import logging
import signal
import sys
import time
from typing import Callable, Optional

from localroute.chains import ChainManager
from localroute.config import Settings
from localroute.errors import LocalRouteError, MalformedRule
from localroute.hostaddr import HostAddressProvider
from localroute.iptables import Iptables
from localroute.reconcile import ReconciliationState, Reconciler
from localroute.source import RuleSource
from localroute.sysctl import check_kernel_settings


class LocalRoutePoller:
    def __init__(self, settings: Settings, iptables: Optional[Iptables] = None,
                 addresses: Optional[HostAddressProvider] = None,
                 check_kernel: Callable[[], None] = check_kernel_settings,
                 sleep: Callable[[float], None] = time.sleep):
        self.settings = settings
        self.iptables = iptables or Iptables(binary=settings.iptables, dry_run=settings.dry_run)
        self.addresses = addresses or HostAddressProvider(override=settings.host_addresses,
                                                          interface=settings.host_interface)
        self.source = RuleSource(self.iptables, settings.source_chain)
        self.chains = ChainManager(self.iptables)
        self.check_kernel = check_kernel
        self.sleep = sleep
        self.reconciler: Optional[Reconciler] = None
        self.running = True

    def setup(self):
        addresses = self.addresses.resolve()
        logging.info(f"Host addresses: {', '.join(sorted(addresses))}")
        self.source.fetch_intent()
        logging.info(f"Source chain {self.settings.source_chain} is readable")
        self.check_kernel()
        self.chains.ensure_chains()
        self.reconciler = Reconciler(self.source, self.addresses, self.chains,
                                     ReconciliationState(last_known_addresses=addresses))

    def loop(self):
        logging.info(f"Polling every {self.settings.poll_interval}s")
        while self.running:
            self.reconciler.tick()
            if not self.running:
                break
            self.sleep(self.settings.poll_interval)

    def start(self):
        logging.info("Starting localroute...")
        self.setup()
        self.loop()
        logging.info("Stopped")
        if self.settings.clean_on_exit:
            self.chains.teardown()

    def stop(self, *_):
        logging.info("Shutdown requested, finishing current tick")
        self.running = False


def run(poller: LocalRoutePoller) -> int:
    try:
        poller.start()
    except MalformedRule as e:
        logging.error(f"Unparseable forward rule in {poller.settings.source_chain}: {e}")
        return e.exit_code
    except LocalRouteError as e:
        logging.error(f"{type(e).__name__}: {e}")
        return e.exit_code
    return 0


def main():
    try:
        settings = Settings.from_env()
    except LocalRouteError as e:
        logging.basicConfig(level="INFO", format="%(asctime)s - %(levelname)s - %(message)s")
        logging.error(str(e))
        sys.exit(e.exit_code)

    logging.basicConfig(level=settings.effective_log_level,
                        format="%(asctime)s - %(levelname)s - %(message)s")
    poller = LocalRoutePoller(settings)
    signal.signal(signal.SIGINT, poller.stop)
    signal.signal(signal.SIGTERM, poller.stop)
    sys.exit(run(poller))


if __name__ == "__main__":
    main()
