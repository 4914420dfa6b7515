"""Failure taxonomy. Every error here is fatal to the daemon; the exit code
attached to each class is what the process returns when it is raised."""

from __future__ import annotations

from typing import List


class CommandFailed(Exception):
    """An iptables invocation exited non-zero (or could not be started)."""

    def __init__(self, cmd: List[str], returncode: int, stderr: str = ""):
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stderr = stderr.strip()
        super().__init__(f"{' '.join(self.cmd)} exited {returncode}: {self.stderr}")


class LocalRouteError(Exception):
    exit_code = 1


class ConfigError(LocalRouteError):
    exit_code = 1


class NoAddressFound(LocalRouteError):
    exit_code = 3


class SourceUnavailable(LocalRouteError):
    exit_code = 4


class PreconditionUnmet(LocalRouteError):
    exit_code = 5


class MutationFailed(LocalRouteError):
    exit_code = 6


class MalformedRule(LocalRouteError):
    exit_code = 7

    def __init__(self, line: str, reason: str):
        self.line = line
        self.reason = reason
        super().__init__(f"{reason}: {line!r}")
