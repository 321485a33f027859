# -*- coding: utf-8 -*-
"""
lock_user.py
OS side of locking a tunnel account: lock the password and shell, kill
whatever the user still has running. Used by the enforcer and the bot.
"""

import logging

from .commands import CommandRunner, SystemCommands

log = logging.getLogger("sshpanel.lock_user")


class AccountControl:
    def __init__(self, runner: CommandRunner, commands: SystemCommands):
        self.runner = runner
        self.commands = commands

    async def _run_all(self, account: str, cmds, what: str) -> bool:
        # first command decides; the rest are best effort
        first, *rest = cmds
        res = await self.runner.run(first)
        if not res.ok:
            log.warning("%s %s failed rc=%s err=%s", what, account, res.returncode, res.stderr)
            return False
        for cmd in rest:
            r = await self.runner.run(cmd)
            if not r.ok:
                log.warning("Command '%s' failed: %s", " ".join(cmd), r.stderr or r.stdout)
        return True

    async def lock(self, account: str) -> bool:
        return await self._run_all(account, self.commands.lock(account), "lock")

    async def unlock(self, account: str) -> bool:
        return await self._run_all(account, self.commands.unlock(account), "unlock")

    async def kill_sessions(self, account: str) -> bool:
        # pkill: 0 = killed, 1 = nothing to kill
        res = await self.runner.run(self.commands.kill_sessions(account), ok_codes=(0, 1))
        if not res.ok:
            log.warning("pkill may have failed for %s: rc=%s err=%s", account, res.returncode, res.stderr)
        return res.ok
