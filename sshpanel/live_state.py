# -*- coding: utf-8 -*-
"""
live_state.py
What the last finished cycle saw, for readers (bot, API).

Only the poll driver publishes. A publish swaps the whole mapping, so a
reader gets either the previous cycle or the new one, never a mix.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

from .models import AccountSnapshot, AccountUsageDelta, ConnectionRecord


@dataclass(frozen=True)
class LiveAccountState:
    connections: Tuple[ConnectionRecord, ...] = ()
    upload_mbps: float = 0.0
    download_mbps: float = 0.0

    @property
    def connection_count(self) -> int:
        return len(self.connections)

    @classmethod
    def from_delta(cls, delta: AccountUsageDelta) -> "LiveAccountState":
        return cls(tuple(delta.connections), delta.upload_mbps, delta.download_mbps)


IDLE = LiveAccountState()


class LiveStateStore:
    def __init__(self):
        self._state: Mapping[str, LiveAccountState] = MappingProxyType({})
        self.updated_at: Optional[float] = None
        self.cycles = 0

    def publish(self, deltas: Mapping[str, AccountUsageDelta], at: float):
        fresh = {name: LiveAccountState.from_delta(d) for name, d in deltas.items()}
        self._state = MappingProxyType(fresh)
        self.updated_at = at
        self.cycles += 1

    def get(self, account: str) -> LiveAccountState:
        return self._state.get(account, IDLE)

    def snapshot(self) -> Mapping[str, LiveAccountState]:
        return self._state

    def total_mbps(self) -> Tuple[float, float]:
        state = self._state
        return (sum(s.upload_mbps for s in state.values()),
                sum(s.download_mbps for s in state.values()))


@dataclass(frozen=True)
class AccountView:
    """Durable account record joined with its live entry (idle if none)."""
    name: str
    enabled: bool
    used_gb: float
    quota_gb: float
    expires_at: Optional[datetime]
    upload_mbps: float
    download_mbps: float
    connections: Tuple[ConnectionRecord, ...] = field(default_factory=tuple)

    @property
    def connection_count(self) -> int:
        return len(self.connections)

    @property
    def percent_used(self) -> float:
        if self.quota_gb <= 0:
            return 0.0
        return self.used_gb / self.quota_gb * 100.0


def account_view(snapshot: AccountSnapshot, live: LiveAccountState = IDLE) -> AccountView:
    return AccountView(
        name=snapshot.name,
        enabled=snapshot.enabled,
        used_gb=snapshot.used_gb,
        quota_gb=snapshot.quota_gb,
        expires_at=snapshot.expires_at,
        upload_mbps=live.upload_mbps,
        download_mbps=live.download_mbps,
        connections=live.connections,
    )


def join_accounts(snapshots: List[AccountSnapshot], store: LiveStateStore) -> List[AccountView]:
    return [account_view(s, store.get(s.name)) for s in snapshots]


def to_dict(view: AccountView) -> Dict:
    """JSON-friendly form of an AccountView."""
    return {
        "username": view.name,
        "isActive": view.enabled,
        "dataUsedGB": round(view.used_gb, 4),
        "dataLimitGB": view.quota_gb,
        "expiryDate": view.expires_at.isoformat() if view.expires_at else None,
        "currentUploadSpeed": round(view.upload_mbps, 4),
        "currentDownloadSpeed": round(view.download_mbps, 4),
        "concurrentInUse": view.connection_count,
        "activeConnections": [
            {
                "id": str(c.pid),
                "ip": c.remote_address,
                "country": c.geo.country_code,
                "city": c.geo.city,
                "connectedAt": datetime.fromtimestamp(c.connected_at, timezone.utc).isoformat(),
                "currentUploadSpeed": round(c.upload_mbps, 4),
                "currentDownloadSpeed": round(c.download_mbps, 4),
                "sessionUsageMB": round(c.session_bytes / (1024 * 1024), 3),
            }
            for c in view.connections
        ],
    }
