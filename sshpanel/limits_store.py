# -*- coding: utf-8 -*-
"""
limits_store.py
Same gateway contract as store.SqliteGateway, over the per-user JSON files
of /etc/sshmanager/limits (<username>.json).

Fields used:
  traffic_used_bytes / used (KB)      consumed traffic
  traffic_limit_bytes / limit (KB)    quota, 0 = unlimited
  expire_timestamp                    unix time, 0/None = never
  is_blocked, block_reason, blocked_at
Every file is replaced atomically; a cycle is atomic per account only.
"""

import json
import logging
import os
import tempfile
import time
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from .config import safe_float, safe_int
from .models import BYTES_PER_GB, AccountSnapshot, ClosedSession, CycleResult

log = logging.getLogger("sshpanel.limits_store")

MAX_SESSIONS = 20


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, timezone.utc).isoformat()


def atomic_write_json(path: str, data: dict):
    d = os.path.dirname(path)
    os.makedirs(d, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=".tmp-", dir=d, text=True)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        os.replace(tmp, path)
    finally:
        if os.path.exists(tmp):
            os.unlink(tmp)


def used_bytes(j: dict) -> int:
    if "traffic_used_bytes" in j:
        return safe_int(j.get("traffic_used_bytes"), 0)
    return safe_int(j.get("used", 0), 0) * 1024


def limit_bytes(j: dict) -> int:
    limit_kb = safe_int(j.get("limit", 0), 0)
    if limit_kb > 0:
        return limit_kb * 1024
    return max(0, safe_int(j.get("traffic_limit_bytes", 0), 0))


class LimitsDirGateway:
    def __init__(self, limits_dir: str):
        self.limits_dir = limits_dir

    def user_path(self, name: str) -> str:
        return os.path.join(self.limits_dir, f"{name}.json")

    def list_users(self) -> List[str]:
        if not os.path.isdir(self.limits_dir):
            return []
        return sorted(fn[:-5] for fn in os.listdir(self.limits_dir) if fn.endswith(".json"))

    def load(self, name: str) -> Optional[dict]:
        path = self.user_path(name)
        if not os.path.exists(path):
            return None
        with open(path, "r", encoding="utf-8") as f:
            j = json.load(f)
        if j is None:
            return {}
        if not isinstance(j, dict):
            raise ValueError(f"{path}: expected a JSON object, got {type(j).__name__}")
        return j

    def read_account_snapshots(self) -> List[AccountSnapshot]:
        snaps = []
        for name in self.list_users():
            try:
                j = self.load(name)
            except (OSError, ValueError) as e:
                log.warning("JSON read error for %s: %s", name, e)
                continue
            if j is None:
                continue
            expire_ts = safe_int(j.get("expire_timestamp"), 0)
            snaps.append(AccountSnapshot(
                name=name,
                used_gb=used_bytes(j) / BYTES_PER_GB,
                quota_gb=limit_bytes(j) / BYTES_PER_GB,
                expires_at=datetime.fromtimestamp(expire_ts, timezone.utc) if expire_ts > 0 else None,
                enabled=not j.get("is_blocked", False),
                upload_mbps=safe_float(j.get("current_upload_speed"), 0.0),
                download_mbps=safe_float(j.get("current_download_speed"), 0.0),
                connection_count=safe_int(j.get("active_connections"), 0),
            ))
        return snaps

    def _apply(self, name: str, res: Optional[CycleResult], sessions: List[ClosedSession]):
        j = self.load(name)
        if j is None:
            log.debug("no limits file for %s, traffic not stored", name)
            return
        if res is not None:
            total = used_bytes(j) + res.upload_bytes + res.download_bytes
            j["traffic_used_bytes"] = int(total)
            j["used"] = int(total // 1024)
            j["current_upload_speed"] = round(res.upload_mbps, 4)
            j["current_download_speed"] = round(res.download_mbps, 4)
            j["active_connections"] = res.connection_count
            if res.last_address:
                j["last_ip"] = res.last_address
                if res.last_geo:
                    j["last_country"] = res.last_geo.country_code
                    j["last_city"] = res.last_geo.city
        if sessions:
            recent = list(j.get("recent_sessions") or [])
            for s in sessions:
                recent.append({
                    "ip": s.remote_address,
                    "country": s.geo.country_code,
                    "connected_at": _iso(s.connected_at),
                    "disconnected_at": _iso(s.disconnected_at),
                    "bytes_sent": s.bytes_sent,
                    "bytes_received": s.bytes_received,
                })
            j["recent_sessions"] = recent[-MAX_SESSIONS:]
        j["last_checked"] = int(time.time())
        atomic_write_json(self.user_path(name), j)

    def apply_cycle(self, results: Iterable[CycleResult],
                    closed: Iterable[ClosedSession] = ()) -> List[str]:
        by_name: Dict[str, Optional[CycleResult]] = {r.account: r for r in results}
        sessions = defaultdict(list)
        for s in closed:
            sessions[s.account].append(s)
            by_name.setdefault(s.account, None)

        failed = []
        for name, res in by_name.items():
            try:
                self._apply(name, res, sessions.get(name, []))
            except (OSError, ValueError) as e:
                log.warning("usage write for %s failed: %s", name, e)
                failed.append(name)
        return failed

    def disable_account(self, name: str, reason: Optional[str] = None):
        j = self.load(name)
        if j is None:
            j = {}
        j["is_blocked"] = True
        j["block_reason"] = reason
        j["blocked_at"] = int(time.time())
        atomic_write_json(self.user_path(name), j)

    def enable_account(self, name: str):
        j = self.load(name)
        if j is None:
            return
        j["is_blocked"] = False
        j["block_reason"] = None
        j["alert_sent"] = False
        atomic_write_json(self.user_path(name), j)

    def recent_sessions(self, name: str, limit: int = 20) -> List[dict]:
        try:
            j = self.load(name) or {}
        except (OSError, ValueError):
            return []
        return list(reversed(j.get("recent_sessions") or []))[:limit]
