import dataclasses
from typing import Dict, List

import pytest

from sshpanel.commands import CommandResult, SystemCommands
from sshpanel.models import AccountSnapshot


SS_TWO_USERS = """\
0      0      10.0.0.5:22     203.0.113.9:51234    users:(("sshd",pid=100,fd=4),("sshd",pid=101,fd=4))
\t cubic wscale:7,7 rto:204 rtt:0.5/0.25 mss:1448 bytes_sent:1000 bytes_acked:1001 bytes_received:200 segs_out:20 segs_in:18
0      0      10.0.0.5:22     198.51.100.7:40000   users:(("sshd",pid=200,fd=4))
\t cubic wscale:7,7 rto:204 rtt:0.5/0.25 mss:1448 bytes_sent:300 bytes_acked:301 bytes_received:50 segs_out:5 segs_in:5
"""


def ss_line(pid, peer, sent, received, port=22):
    return (
        f"0 0 10.0.0.5:{port} {peer}:5555 users:((\"sshd\",pid={pid},fd=4))\n"
        f"\t cubic rto:204 bytes_sent:{sent} bytes_acked:{sent} bytes_received:{received} segs_out:9\n"
    )


class FakeRunner:
    """Answers commands from a dict of argv[0] -> handler(argv) -> CommandResult."""

    def __init__(self, handlers=None):
        self.handlers = handlers or {}
        self.calls: List[List[str]] = []

    async def run(self, cmd, timeout=None, ok_codes=(0,)):
        self.calls.append(list(cmd))
        handler = self.handlers.get(cmd[0])
        if handler is None:
            return CommandResult(True, "", "", 0)
        res = handler(list(cmd))
        if isinstance(res, str):
            return CommandResult(True, res, "", 0)
        if res.returncode in ok_codes and not res.ok:
            return dataclasses.replace(res, ok=True)
        return res

    def called(self, name):
        return [c for c in self.calls if c[0] == name]


class FakeOwners:
    """ps -o user= -p PID"""

    def __init__(self, owners: Dict[int, str]):
        self.owners = owners

    def __call__(self, cmd):
        name = self.owners.get(int(cmd[-1]))
        if name is None:
            return CommandResult(False, "", "", 1)
        return CommandResult(True, name + "\n", "", 0)


class FakeLocator:
    def __init__(self, geo=None):
        self.geo = geo or {}
        self.calls = []

    async def locate(self, addr):
        from sshpanel.models import UNKNOWN_GEO
        self.calls.append(addr)
        return self.geo.get(addr, UNKNOWN_GEO)


class FakeControl:
    def __init__(self, lock_ok=True):
        self.lock_ok = lock_ok
        self.locked = []
        self.killed = []
        self.unlocked = []

    async def lock(self, name):
        self.locked.append(name)
        return self.lock_ok

    async def unlock(self, name):
        self.unlocked.append(name)
        return True

    async def kill_sessions(self, name):
        self.killed.append(name)
        return True


class FakeStore:
    def __init__(self, snapshots=()):
        self.accounts = {s.name: s for s in snapshots}
        self.cycles = []
        self.disabled = []
        self.fail_reads = False
        self.fail_writes = False

    def read_account_snapshots(self):
        if self.fail_reads:
            raise OSError("store down")
        return list(self.accounts.values())

    def apply_cycle(self, results, closed=()):
        if self.fail_writes:
            raise OSError("disk full")
        results, closed = list(results), list(closed)
        self.cycles.append((results, closed))
        for r in results:
            s = self.accounts.get(r.account)
            if s is not None:
                self.accounts[r.account] = dataclasses.replace(
                    s, used_gb=s.used_gb + (r.upload_bytes + r.download_bytes) / 1024 ** 3,
                    upload_mbps=r.upload_mbps, download_mbps=r.download_mbps,
                    connection_count=r.connection_count)
        return []

    def disable_account(self, name, reason=None):
        self.disabled.append((name, reason))
        self.accounts[name] = dataclasses.replace(self.accounts[name], enabled=False)

    def enable_account(self, name):
        self.accounts[name] = dataclasses.replace(self.accounts[name], enabled=True)

    def recent_sessions(self, name, limit=20):
        return []


@pytest.fixture
def commands():
    return SystemCommands(port=22)


@pytest.fixture
def snapshot():
    def make(name="alice", **kw):
        return AccountSnapshot(name=name, **kw)
    return make
