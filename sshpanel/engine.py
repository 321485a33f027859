# -*- coding: utf-8 -*-
"""
engine.py
One poll cycle:

  ss -> parse -> owner of each pid -> geo -> per-account deltas
     -> store (one transaction) -> quota/expiry enforcement -> live state

and the driver that runs it every POLL_INTERVAL seconds, never two at once.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from . import config
from .aggregator import UsageAggregator
from .commands import CommandRunner, SystemCommands
from .enforcement import Enforcer
from .geo import IpLocator
from .identity import IdentityResolver
from .limits_store import LimitsDirGateway
from .live_state import LiveStateStore
from .lock_user import AccountControl
from .models import AccountUsageDelta, ClosedSession, CycleResult
from .notify import notify_lock
from .ss_parser import parse_samples
from .store import SqliteGateway

log = logging.getLogger("sshpanel.engine")


@dataclass
class CycleReport:
    sockets_ok: bool = True
    samples: int = 0
    attributed: int = 0
    deltas: Dict[str, AccountUsageDelta] = field(default_factory=dict)
    closed: List[ClosedSession] = field(default_factory=list)
    failed_writes: List[str] = field(default_factory=list)
    locked: Dict[str, str] = field(default_factory=dict)


class TelemetryEngine:
    def __init__(self, runner: CommandRunner, commands: SystemCommands,
                 resolver: IdentityResolver, locator: IpLocator, store,
                 enforcer: Enforcer, live: Optional[LiveStateStore] = None,
                 aggregator: Optional[UsageAggregator] = None,
                 clock: Callable[[], float] = time.time):
        self.runner = runner
        self.commands = commands
        self.resolver = resolver
        self.locator = locator
        self.store = store
        self.enforcer = enforcer
        self.live = live or LiveStateStore()
        self.aggregator = aggregator or UsageAggregator()
        self.clock = clock

    async def sample_sockets(self, report: CycleReport):
        res = await self.runner.run(self.commands.list_sockets())
        if not res.ok:
            log.warning("socket listing failed (rc=%s), no traffic data this cycle", res.returncode)
            report.sockets_ok = False
            return None
        samples = parse_samples(res.stdout, self.clock())
        report.samples = len(samples)

        baselines = self.aggregator.baselines
        owners = await asyncio.gather(*(self.resolver.resolve(s, baselines) for s in samples))
        attributed = [(s, o) for s, o in zip(samples, owners) if o]
        report.attributed = len(attributed)

        addrs = sorted({s.remote_address for s, _ in attributed})
        found = await asyncio.gather(*(self.locator.locate(a) for a in addrs))
        return attributed, dict(zip(addrs, found))

    async def run_cycle(self) -> CycleReport:
        report = CycleReport()
        # read first: if the store is down the baselines stay untouched and
        # the traffic is counted by the next cycle instead of being lost
        snapshots = await asyncio.to_thread(self.store.read_account_snapshots)

        sampled = await self.sample_sockets(report)
        if sampled is not None:
            attributed, geo = sampled
            report.deltas, report.closed = self.aggregator.collect(attributed, geo)

        results = [CycleResult.from_delta(name, d) for name, d in report.deltas.items()]
        if report.sockets_ok:
            for snap in snapshots:
                if snap.name not in report.deltas and snap.shows_activity:
                    results.append(CycleResult.idle(snap.name))
        if results or report.closed:
            try:
                report.failed_writes = await asyncio.to_thread(
                    self.store.apply_cycle, results, report.closed)
            except Exception:
                log.exception("cycle write failed, %d account(s) not updated", len(results))
                report.failed_writes = [r.account for r in results]

        report.locked = await self.enforcer.enforce(
            snapshots, report.deltas, datetime.now(timezone.utc))

        if report.sockets_ok:
            self.live.publish(report.deltas, self.clock())
        log.debug("cycle: %d samples, %d attributed, %d accounts, %d closed, %d locked",
                  report.samples, report.attributed, len(report.deltas),
                  len(report.closed), len(report.locked))
        return report


class PollDriver:
    """Fires run_cycle every `interval` seconds; a tick that finds the
    previous cycle still running is dropped, not queued."""

    def __init__(self, engine: TelemetryEngine, interval: float = config.POLL_INTERVAL):
        self.engine = engine
        self.interval = interval
        self.skipped = 0
        self.completed = 0
        self._busy = False
        self._task: Optional[asyncio.Task] = None
        self._stop: Optional[asyncio.Event] = None

    @property
    def busy(self) -> bool:
        return self._busy

    async def tick(self) -> bool:
        if self._busy:
            self.skipped += 1
            log.warning("previous cycle still running, tick skipped (%d so far)", self.skipped)
            return False
        self._busy = True
        try:
            await self.engine.run_cycle()
            self.completed += 1
        except Exception:
            log.exception("poll cycle failed")
        finally:
            self._busy = False
        return True

    async def run(self):
        self._stop = asyncio.Event()
        log.info("traffic engine started: port=%s interval=%.1fs",
                 self.engine.commands.port, self.interval)
        while not self._stop.is_set():
            if self._busy:
                await self.tick()  # counts and logs the skip
            else:
                self._task = asyncio.create_task(self.tick())
            try:
                await asyncio.wait_for(self._stop.wait(), self.interval)
            except asyncio.TimeoutError:
                pass
        if self._task is not None:
            await self._task
        log.info("traffic engine stopped")

    def stop(self):
        if self._stop is not None:
            self._stop.set()


def create_store(backend: str = config.STORE_BACKEND):
    if backend == "limits":
        return LimitsDirGateway(config.LIMITS_DIR)
    return SqliteGateway(config.DB_PATH)


def create_engine(store=None, runner: Optional[CommandRunner] = None,
                  locator: Optional[IpLocator] = None, notify=notify_lock) -> TelemetryEngine:
    runner = runner or CommandRunner()
    commands = SystemCommands()
    store = store if store is not None else create_store()
    control = AccountControl(runner, commands)
    return TelemetryEngine(
        runner=runner,
        commands=commands,
        resolver=IdentityResolver(runner, commands),
        locator=locator or IpLocator(),
        store=store,
        enforcer=Enforcer(control, store, notify=notify),
        live=LiveStateStore(),
    )
