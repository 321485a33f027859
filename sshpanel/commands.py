# -*- coding: utf-8 -*-
"""
Running system commands from the event loop.

Nothing raised by a child process (missing binary, timeout, non-zero exit)
leaves CommandRunner.run(); callers get a CommandResult with ok=False.
"""

import asyncio
import logging
import sys
from dataclasses import dataclass
from typing import List, Optional, Sequence

from . import config

log = logging.getLogger("sshpanel.commands")


@dataclass(frozen=True)
class CommandResult:
    ok: bool
    stdout: str = ""
    stderr: str = ""
    returncode: int = 0


FAILED = CommandResult(False, "", "", 1)


class CommandRunner:
    def __init__(self, timeout: float = config.COMMAND_TIMEOUT, platform: str = sys.platform):
        self.timeout = timeout
        self.enabled = platform.startswith("linux")

    async def run(self, cmd: Sequence[str], timeout: Optional[float] = None,
                  ok_codes: Sequence[int] = (0,)) -> CommandResult:
        if not self.enabled:
            log.debug("[simulated] %s", " ".join(cmd))
            return CommandResult(False, "", "unsupported platform", 1)
        timeout = self.timeout if timeout is None else timeout
        try:
            p = await asyncio.create_subprocess_exec(
                *cmd, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
            )
        except OSError as e:
            log.warning("cannot start %s: %s", cmd[0], e)
            return CommandResult(False, "", str(e), 127)
        try:
            out, err = await asyncio.wait_for(p.communicate(), timeout)
        except asyncio.TimeoutError:
            p.kill()
            await p.wait()
            log.warning("timeout after %.1fs: %s", timeout, " ".join(cmd))
            return CommandResult(False, "", "timeout", 124)
        rc = p.returncode
        result = CommandResult(
            rc in ok_codes,
            (out or b"").decode("utf-8", "replace"),
            (err or b"").decode("utf-8", "replace").strip(),
            rc,
        )
        if not result.ok:
            log.debug("rc=%s %s err=%s", rc, " ".join(cmd), result.stderr)
        return result


class SystemCommands:
    """argv for everything the engine asks the OS to do."""

    def __init__(self, port: int = config.LISTEN_PORT, nologin: str = config.NOLOGIN_PATH):
        self.port = port
        self.nologin = nologin

    def list_sockets(self) -> List[str]:
        # -H: no header, -i: tcp_info (bytes_sent/bytes_received), -p: owning pids
        return ["ss", "-tinpH", "state", "established", "sport", "=", f":{self.port}"]

    def process_owner(self, pid: int) -> List[str]:
        return ["ps", "-o", "user=", "-p", str(pid)]

    def lock(self, account: str) -> List[List[str]]:
        return [["usermod", "-L", "-s", self.nologin, account], ["passwd", "-l", account]]

    def unlock(self, account: str) -> List[List[str]]:
        return [["usermod", "-U", account], ["passwd", "-u", account]]

    def kill_sessions(self, account: str) -> List[str]:
        return ["pkill", "-KILL", "-u", account]
