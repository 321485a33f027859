# -*- coding: utf-8 -*-
"""
aggregator.py
Cumulative per-socket counters -> per-account bytes and speed for one cycle.

Direction: the tunnel listener is local, so what it sends is the user's
download and what it receives is the user's upload.
"""

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

from .models import (
    UNKNOWN_GEO,
    AccountUsageDelta,
    BaselineEntry,
    ClosedSession,
    ConnectionRecord,
    ConnectionSample,
    GeoInfo,
    is_counter_reset,
    mbps,
)

log = logging.getLogger("sshpanel.aggregator")


def _closed(entry: BaselineEntry) -> ClosedSession:
    return ClosedSession(
        account=entry.owner,
        remote_address=entry.remote_address,
        geo=entry.geo,
        connected_at=entry.first_seen_at,
        disconnected_at=entry.last_observed_at,
        bytes_sent=entry.session_sent,
        bytes_received=entry.session_received,
    )


class UsageAggregator:
    def __init__(self):
        # pid -> last seen counters; lives across cycles
        self.baselines: Dict[int, BaselineEntry] = {}

    def __len__(self):
        return len(self.baselines)

    def collect(self, samples: Iterable[Tuple[ConnectionSample, str]],
                geo: Optional[Mapping[str, GeoInfo]] = None
                ) -> Tuple[Dict[str, AccountUsageDelta], List[ClosedSession]]:
        """
        Fold this cycle's attributed samples into account deltas.

        Returns the deltas and the sessions that ended, i.e. baselines whose
        pid was not part of this cycle (there is no close event, absence is
        the signal) or whose counters went backwards (recycled pid).
        """
        geo = geo or {}
        deltas: Dict[str, AccountUsageDelta] = {}
        closed: List[ClosedSession] = []
        seen: Set[int] = set()

        for sample, owner in samples:
            pid = sample.pid
            if pid in seen:
                continue
            seen.add(pid)
            where = geo.get(sample.remote_address, UNKNOWN_GEO)
            entry = self.baselines.get(pid)

            up = down = 0
            up_speed = down_speed = 0.0
            if entry is None:
                entry = BaselineEntry(
                    sample.bytes_sent, sample.bytes_received, sample.observed_at, owner,
                    remote_address=sample.remote_address, geo=where,
                    first_seen_at=sample.observed_at,
                )
                self.baselines[pid] = entry
            elif is_counter_reset(sample, entry):
                log.debug("pid %s counters went back, new connection", pid)
                if entry.session_sent or entry.session_received:
                    closed.append(_closed(entry))
                entry.owner = owner
                entry.first_seen_at = sample.observed_at
                entry.session_sent = entry.session_received = 0
                entry.remote_address = sample.remote_address
                entry.geo = where
            else:
                down = max(0, sample.bytes_sent - entry.bytes_sent)
                up = max(0, sample.bytes_received - entry.bytes_received)
                elapsed = sample.observed_at - entry.last_observed_at
                if elapsed > 0:
                    down_speed = mbps(down, elapsed)
                    up_speed = mbps(up, elapsed)
                entry.session_sent += down
                entry.session_received += up
                if where != UNKNOWN_GEO:
                    entry.geo = where

            entry.bytes_sent = sample.bytes_sent
            entry.bytes_received = sample.bytes_received
            entry.last_observed_at = sample.observed_at

            acc = deltas.setdefault(entry.owner, AccountUsageDelta())
            acc.upload_bytes += up
            acc.download_bytes += down
            acc.upload_mbps += up_speed
            acc.download_mbps += down_speed
            acc.connections.append(ConnectionRecord(
                pid=pid,
                remote_address=sample.remote_address,
                geo=entry.geo,
                upload_mbps=up_speed,
                download_mbps=down_speed,
                session_bytes=entry.session_sent + entry.session_received,
                connected_at=entry.first_seen_at,
                upload_bytes=up,
                download_bytes=down,
            ))
            acc.last_address = sample.remote_address
            acc.last_geo = entry.geo

        closed.extend(self.evict(seen))
        return deltas, closed

    def evict(self, alive: Set[int]) -> List[ClosedSession]:
        gone = [pid for pid in self.baselines if pid not in alive]
        closed = []
        for pid in gone:
            entry = self.baselines.pop(pid)
            closed.append(_closed(entry))
        if gone:
            log.debug("evicted %d closed connection(s)", len(gone))
        return closed
