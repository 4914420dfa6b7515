from __future__ import annotations

import logging
import subprocess
from typing import List

from localroute.errors import CommandFailed

CHAIN_EXISTS_MARKERS = ("chain already exists", "file exists")


class Iptables:
    """Thin wrapper over the iptables binary for a single table.

    Queries always execute. Mutations are only logged when ``dry_run`` is set.
    """

    def __init__(self, binary: str = "iptables", table: str = "nat", dry_run: bool = False):
        self.binary = binary
        self.table = table
        self.dry_run = dry_run

    def _execute(self, cmd: List[str]) -> str:
        try:
            result = subprocess.run(cmd, check=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        except subprocess.CalledProcessError as e:
            raise CommandFailed(cmd, e.returncode, (e.stderr or b"").decode(errors="ignore")) from e
        except OSError as e:
            raise CommandFailed(cmd, 127, str(e)) from e
        return result.stdout.decode(errors="ignore")

    def run(self, args: List[str], mutate: bool = True) -> str:
        cmd = [self.binary, "-t", self.table, *args]
        if self.dry_run and mutate:
            logging.info(f"[DRY-RUN] {' '.join(cmd)}")
            return ""
        logging.debug(f"Running command: {' '.join(cmd)}")
        return self._execute(cmd)

    def list_rules(self, chain: str) -> List[str]:
        out = self.run(["-S", chain], mutate=False)
        return [line.strip() for line in out.splitlines() if line.strip()]

    def new_chain(self, chain: str) -> bool:
        """Create ``chain``; returns False when it already existed."""
        try:
            self.run(["-N", chain])
        except CommandFailed as e:
            if any(marker in e.stderr.lower() for marker in CHAIN_EXISTS_MARKERS):
                logging.debug(f"Chain already exists: {chain}")
                return False
            raise
        return True

    def flush_chain(self, chain: str):
        self.run(["-F", chain])

    def delete_chain(self, chain: str):
        self.run(["-X", chain])

    def append(self, chain: str, spec: List[str]):
        self.run(["-A", chain, *spec])

    def delete(self, chain: str, spec: List[str]):
        self.run(["-D", chain, *spec])
