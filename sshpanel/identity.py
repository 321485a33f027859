# -*- coding: utf-8 -*-
"""Which account owns the process behind a socket."""

import logging
from typing import Iterable, Mapping, Optional

from . import config
from .commands import CommandRunner, SystemCommands
from .models import BaselineEntry, ConnectionSample, is_counter_reset

log = logging.getLogger("sshpanel.identity")


class IdentityResolver:
    """
    pid -> account name.

    The owner recorded in the baseline cache wins for as long as the pid's
    counters keep growing; counters going back mean a new connection on a
    recycled pid, which is resolved again. Otherwise the owner of each pid of the socket is asked in turn;
    sshd keeps the socket open in the root-owned [priv] monitor and in the
    per-user child, so the first attributable owner is taken.
    """

    def __init__(self, runner: CommandRunner, commands: SystemCommands,
                 system_identities: Iterable[str] = config.SYSTEM_IDENTITIES,
                 listener_identity: str = config.LISTENER_IDENTITY):
        self.runner = runner
        self.commands = commands
        self.skip = set(system_identities) | {listener_identity}

    def attributable(self, name: Optional[str]) -> bool:
        return bool(name) and name not in self.skip

    async def owner_of_pid(self, pid: int) -> Optional[str]:
        res = await self.runner.run(self.commands.process_owner(pid))
        if not res.ok:
            return None
        name = res.stdout.strip()
        return name if self.attributable(name) else None

    async def resolve(self, sample: ConnectionSample,
                      baselines: Mapping[int, BaselineEntry]) -> Optional[str]:
        cached = baselines.get(sample.pid)
        if cached is not None and not is_counter_reset(sample, cached):
            return cached.owner
        for pid in sample.pids:
            name = await self.owner_of_pid(pid)
            if name:
                return name
        log.debug("pid %s (%s) not attributable", sample.pid, sample.remote_address)
        return None
