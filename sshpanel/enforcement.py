# -*- coding: utf-8 -*-
"""
enforcement.py
Quota / expiry checks and the lock that follows them.

The check is level triggered: it runs for every known account on every
cycle, so an account that is re-enabled by hand while still over quota or
past expiry is locked again on the next cycle. Nothing here unlocks.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional

from .models import BYTES_PER_GB, AccountSnapshot, AccountUsageDelta, Verdict

log = logging.getLogger("sshpanel.enforcement")


def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def evaluate(snapshot: AccountSnapshot, delta_bytes: int, now: datetime) -> Verdict:
    usage_gb = snapshot.used_gb + max(0, delta_bytes) / BYTES_PER_GB
    over_quota = snapshot.quota_gb > 0 and usage_gb >= snapshot.quota_gb
    expired = snapshot.expires_at is not None and _aware(now) > _aware(snapshot.expires_at)
    if over_quota:
        return Verdict(True, "quota", usage_gb)
    if expired:
        return Verdict(True, "expire", usage_gb)
    return Verdict(False, None, usage_gb)


class Enforcer:
    """
    Applies verdicts through the account control and the store.

    control: lock(name) / kill_sessions(name) coroutines returning bool
    store:   disable_account(name, reason)
    notify:  optional coroutine(name, reason, usage_gb) for the admin
    """

    def __init__(self, control, store, notify=None):
        self.control = control
        self.store = store
        self.notify = notify

    async def enforce_one(self, snapshot: AccountSnapshot, delta: Optional[AccountUsageDelta],
                          now: datetime) -> Optional[str]:
        verdict = evaluate(snapshot, delta.total_bytes if delta else 0, now)
        if not verdict.should_lock:
            return None
        live = delta is not None and delta.connection_count > 0
        if not snapshot.enabled and not live:
            return None

        name = snapshot.name
        if not await self.control.lock(name):
            log.error("lock failed for %s (reason=%s), retry next cycle", name, verdict.reason)
            return None
        if not await self.control.kill_sessions(name):
            log.warning("could not kill sessions of %s", name)

        if not snapshot.enabled:
            log.warning("LOCK %s re-asserted, %d live connection(s)", name, delta.connection_count)
            return verdict.reason

        try:
            await asyncio.to_thread(self.store.disable_account, name, verdict.reason)
        except Exception:
            log.exception("could not mark %s disabled", name)
            return None
        log.info("LOCK %s reason=%s usage=%.3fGB quota=%sGB", name, verdict.reason,
                 verdict.usage_gb, snapshot.quota_gb)
        if self.notify is not None:
            try:
                await self.notify(name, verdict.reason, verdict.usage_gb)
            except Exception:
                log.warning("lock notification for %s failed", name, exc_info=True)
        return verdict.reason

    async def enforce(self, snapshots: Iterable[AccountSnapshot],
                      deltas: Mapping[str, AccountUsageDelta],
                      now: Optional[datetime] = None) -> Dict[str, str]:
        """Check every account; returns {account: reason} for the ones locked."""
        now = now or datetime.now(timezone.utc)
        snapshots = list(snapshots)
        results: List = await asyncio.gather(
            *(self.enforce_one(s, deltas.get(s.name), now) for s in snapshots),
            return_exceptions=True,
        )
        locked = {}
        for snap, res in zip(snapshots, results):
            if isinstance(res, Exception):
                log.error("enforcement for %s crashed: %r", snap.name, res)
            elif res:
                locked[snap.name] = res
        return locked
