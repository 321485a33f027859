# -*- coding: utf-8 -*-
"""Data passed between the stages of one poll cycle."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

BYTES_PER_GB = 1024 ** 3


def mbps(delta_bytes: int, elapsed: float) -> float:
    """bytes over `elapsed` seconds -> megabits per second (2^20 bits)."""
    if elapsed <= 0:
        return 0.0
    return (delta_bytes * 8) / (1024 * 1024) / elapsed


@dataclass(frozen=True)
class GeoInfo:
    country: str
    country_code: str
    city: str

    @property
    def is_known(self) -> bool:
        return self not in (UNKNOWN_GEO, LOCAL_GEO)


UNKNOWN_GEO = GeoInfo("Unknown", "??", "Unknown")
LOCAL_GEO = GeoInfo("Local", "LO", "Local")


@dataclass(frozen=True)
class ConnectionSample:
    pids: Tuple[int, ...]
    remote_address: str
    bytes_sent: int
    bytes_received: int
    observed_at: float

    @property
    def pid(self) -> int:
        return self.pids[0]


@dataclass
class BaselineEntry:
    bytes_sent: int
    bytes_received: int
    last_observed_at: float
    owner: str
    remote_address: str = ""
    geo: GeoInfo = UNKNOWN_GEO
    first_seen_at: float = 0.0
    session_sent: int = 0
    session_received: int = 0


def is_counter_reset(sample: ConnectionSample, entry: BaselineEntry) -> bool:
    return sample.bytes_sent < entry.bytes_sent or sample.bytes_received < entry.bytes_received


@dataclass
class ConnectionRecord:
    """One live connection as shown to readers."""
    pid: int
    remote_address: str
    geo: GeoInfo
    upload_mbps: float
    download_mbps: float
    session_bytes: int
    connected_at: float
    upload_bytes: int = 0
    download_bytes: int = 0


@dataclass
class AccountUsageDelta:
    upload_bytes: int = 0
    download_bytes: int = 0
    upload_mbps: float = 0.0
    download_mbps: float = 0.0
    connections: List[ConnectionRecord] = field(default_factory=list)
    last_address: Optional[str] = None
    last_geo: Optional[GeoInfo] = None

    @property
    def total_bytes(self) -> int:
        return self.upload_bytes + self.download_bytes

    @property
    def connection_count(self) -> int:
        return len(self.connections)


@dataclass(frozen=True)
class AccountSnapshot:
    name: str
    used_gb: float = 0.0
    quota_gb: float = 0.0  # 0 = unlimited
    expires_at: Optional[datetime] = None
    enabled: bool = True
    upload_mbps: float = 0.0
    download_mbps: float = 0.0
    connection_count: int = 0

    @property
    def shows_activity(self) -> bool:
        """Stored record still carries speed or connections from a past cycle."""
        return bool(self.upload_mbps or self.download_mbps or self.connection_count)


@dataclass(frozen=True)
class CycleResult:
    account: str
    upload_bytes: int
    download_bytes: int
    upload_mbps: float
    download_mbps: float
    connection_count: int
    last_address: Optional[str] = None
    last_geo: Optional[GeoInfo] = None

    @classmethod
    def from_delta(cls, account: str, delta: AccountUsageDelta) -> "CycleResult":
        return cls(
            account=account,
            upload_bytes=delta.upload_bytes,
            download_bytes=delta.download_bytes,
            upload_mbps=delta.upload_mbps,
            download_mbps=delta.download_mbps,
            connection_count=delta.connection_count,
            last_address=delta.last_address,
            last_geo=delta.last_geo,
        )

    @classmethod
    def idle(cls, account: str) -> "CycleResult":
        return cls(account, 0, 0, 0.0, 0.0, 0)


@dataclass(frozen=True)
class ClosedSession:
    account: str
    remote_address: str
    geo: GeoInfo
    connected_at: float
    disconnected_at: float
    bytes_sent: int
    bytes_received: int


@dataclass(frozen=True)
class Verdict:
    should_lock: bool
    reason: Optional[str] = None  # "quota" | "expire"
    usage_gb: float = 0.0
