import asyncio

from conftest import FakeOwners, FakeRunner

from sshpanel.commands import CommandResult, CommandRunner, SystemCommands
from sshpanel.identity import IdentityResolver
from sshpanel.lock_user import AccountControl
from sshpanel.models import BaselineEntry, ConnectionSample


def test_non_linux_hosts_run_nothing():
    res = asyncio.run(CommandRunner(platform="darwin").run(["ss", "-tinpH"]))
    assert not res.ok
    assert res.returncode == 1


def test_argv(commands):
    assert commands.list_sockets()[-1] == ":22"
    assert SystemCommands(port=2222).list_sockets()[-1] == ":2222"
    assert commands.process_owner(42) == ["ps", "-o", "user=", "-p", "42"]
    assert commands.lock("bob") == [
        ["usermod", "-L", "-s", "/usr/sbin/nologin", "bob"],
        ["passwd", "-l", "bob"],
    ]
    assert commands.unlock("bob")[0] == ["usermod", "-U", "bob"]
    assert commands.kill_sessions("bob") == ["pkill", "-KILL", "-u", "bob"]


def test_resolver_skips_system_identities(commands):
    runner = FakeRunner({"ps": FakeOwners({1: "root", 2: "sshd", 3: "alice"})})
    resolver = IdentityResolver(runner, commands, system_identities={"root"}, listener_identity="sshd")
    sample = ConnectionSample((1, 2, 3), "203.0.113.9", 0, 0, 0.0)
    assert asyncio.run(resolver.resolve(sample, {})) == "alice"
    assert [c[-1] for c in runner.called("ps")] == ["1", "2", "3"]

    only_root = ConnectionSample((1,), "203.0.113.9", 0, 0, 0.0)
    assert asyncio.run(resolver.resolve(only_root, {})) is None
    assert not resolver.attributable("")


def test_resolver_prefers_known_owner(commands):
    runner = FakeRunner({"ps": FakeOwners({7: "mallory"})})
    resolver = IdentityResolver(runner, commands)
    baselines = {7: BaselineEntry(0, 0, 0.0, "alice")}
    sample = ConnectionSample((7,), "203.0.113.9", 0, 0, 0.0)
    assert asyncio.run(resolver.resolve(sample, baselines)) == "alice"
    assert runner.calls == []


def test_vanished_pid_is_unattributed(commands):
    resolver = IdentityResolver(FakeRunner({"ps": FakeOwners({})}), commands)
    assert asyncio.run(resolver.owner_of_pid(99)) is None


def test_lock_needs_only_the_first_command(commands):
    runner = FakeRunner({"passwd": lambda cmd: CommandResult(False, "", "no shadow", 3)})
    control = AccountControl(runner, commands)
    assert asyncio.run(control.lock("bob")) is True
    assert [c[0] for c in runner.calls] == ["usermod", "passwd"]


def test_failed_lock_stops_early(commands):
    runner = FakeRunner({"usermod": lambda cmd: CommandResult(False, "", "user 'bob' does not exist", 6)})
    control = AccountControl(runner, commands)
    assert asyncio.run(control.lock("bob")) is False
    assert [c[0] for c in runner.calls] == ["usermod"]


def test_pkill_with_nothing_to_kill_is_fine(commands):
    runner = FakeRunner({"pkill": lambda cmd: CommandResult(False, "", "", 1)})
    assert asyncio.run(AccountControl(runner, commands).kill_sessions("bob")) is True

    runner = FakeRunner({"pkill": lambda cmd: CommandResult(False, "", "bad", 2)})
    assert asyncio.run(AccountControl(runner, commands).kill_sessions("bob")) is False


def test_resolver_asks_again_when_counters_go_back(commands):
    runner = FakeRunner({"ps": FakeOwners({7: "bob"})})
    resolver = IdentityResolver(runner, commands)
    baselines = {7: BaselineEntry(5000, 200, 0.0, "alice")}
    assert asyncio.run(resolver.resolve(ConnectionSample((7,), "203.0.113.9", 50, 200, 1.0), baselines)) == "bob"
    assert asyncio.run(resolver.resolve(ConnectionSample((7,), "203.0.113.9", 6000, 10, 1.0), baselines)) == "bob"
    assert asyncio.run(resolver.resolve(ConnectionSample((7,), "203.0.113.9", 6000, 300, 1.0), baselines)) == "alice"
    assert len(runner.called("ps")) == 2
