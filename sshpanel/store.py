# -*- coding: utf-8 -*-
"""
store.py
Panel database (SQLite) as seen by the traffic engine.

The engine reads a snapshot of every account once per cycle and writes the
cycle back in one transaction. Each account gets its own SAVEPOINT, so a bad
row is rolled back alone and the other accounts still commit.
"""

import logging
import os
import sqlite3
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from .models import BYTES_PER_GB, AccountSnapshot, ClosedSession, CycleResult

log = logging.getLogger("sshpanel.store")

USERS_TABLE = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    username TEXT UNIQUE,
    password TEXT,
    isActive INTEGER,
    expiryDate TEXT,
    dataLimitGB REAL,
    dataUsedGB REAL,
    concurrentLimit INTEGER,
    concurrentInUse INTEGER,
    createdAt TEXT,
    notes TEXT
)"""

CONNECTION_LOGS_TABLE = """
CREATE TABLE IF NOT EXISTS connection_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    username TEXT,
    ip TEXT,
    country TEXT,
    city TEXT,
    device TEXT,
    connected_at TEXT,
    disconnected_at TEXT,
    bytes_sent INTEGER DEFAULT 0,
    bytes_received INTEGER DEFAULT 0
)"""

# columns added after the first release of the users table
USER_COLUMNS = {
    "currentUploadSpeed": "REAL DEFAULT 0",
    "currentDownloadSpeed": "REAL DEFAULT 0",
    "lastIp": "TEXT",
    "lastCountry": "TEXT",
    "lastCity": "TEXT",
    "blockReason": "TEXT",
}


def parse_expiry(value) -> Optional[datetime]:
    """expiryDate is an ISO string written by the panel ("2025-01-31T00:00:00.000Z")."""
    if value in (None, ""):
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, timezone.utc) if value > 0 else None
    s = str(value).strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        try:
            dt = datetime.strptime(s[:10], "%Y-%m-%d")
        except ValueError:
            log.warning("unparsable expiryDate %r ignored", value)
            return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, timezone.utc).isoformat()


class SqliteGateway:
    def __init__(self, path: str):
        self.path = path
        d = os.path.dirname(path)
        if d:
            os.makedirs(d, exist_ok=True)
        self.init_db()

    def get_db(self) -> sqlite3.Connection:
        # autocommit mode; transactions are opened explicitly
        conn = sqlite3.connect(self.path, timeout=10, isolation_level=None)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self):
        conn = self.get_db()
        try:
            conn.execute(USERS_TABLE)
            conn.execute(CONNECTION_LOGS_TABLE)
            have = {r["name"] for r in conn.execute("PRAGMA table_info(users)")}
            for col, decl in USER_COLUMNS.items():
                if col not in have:
                    conn.execute(f"ALTER TABLE users ADD COLUMN {col} {decl}")
        finally:
            conn.close()

    def read_account_snapshots(self) -> List[AccountSnapshot]:
        conn = self.get_db()
        try:
            rows = conn.execute(
                "SELECT username, dataUsedGB, dataLimitGB, expiryDate, isActive, "
                "currentUploadSpeed, currentDownloadSpeed, concurrentInUse FROM users"
            ).fetchall()
        finally:
            conn.close()
        return [
            AccountSnapshot(
                name=r["username"],
                used_gb=float(r["dataUsedGB"] or 0),
                quota_gb=float(r["dataLimitGB"] or 0),
                expires_at=parse_expiry(r["expiryDate"]),
                enabled=bool(r["isActive"]),
                upload_mbps=float(r["currentUploadSpeed"] or 0),
                download_mbps=float(r["currentDownloadSpeed"] or 0),
                connection_count=int(r["concurrentInUse"] or 0),
            )
            for r in rows
            if r["username"]
        ]

    def _apply_one(self, conn: sqlite3.Connection, res: CycleResult):
        added_gb = (res.upload_bytes + res.download_bytes) / BYTES_PER_GB
        cur = conn.execute(
            "UPDATE users SET dataUsedGB = COALESCE(dataUsedGB, 0) + ?, "
            "currentUploadSpeed = ?, currentDownloadSpeed = ?, concurrentInUse = ? "
            "WHERE username = ?",
            (added_gb, res.upload_mbps, res.download_mbps, res.connection_count, res.account),
        )
        if cur.rowcount == 0:
            log.debug("no users row for %s, traffic not stored", res.account)
            return
        if res.last_address:
            geo = res.last_geo
            conn.execute(
                "UPDATE users SET lastIp = ?, lastCountry = ?, lastCity = ? WHERE username = ?",
                (res.last_address, geo.country_code if geo else None, geo.city if geo else None,
                 res.account),
            )

    def _log_session(self, conn: sqlite3.Connection, s: ClosedSession):
        conn.execute(
            "INSERT INTO connection_logs (username, ip, country, city, connected_at, "
            "disconnected_at, bytes_sent, bytes_received) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (s.account, s.remote_address, s.geo.country_code, s.geo.city,
             _iso(s.connected_at), _iso(s.disconnected_at), s.bytes_sent, s.bytes_received),
        )

    def apply_cycle(self, results: Iterable[CycleResult],
                    closed: Iterable[ClosedSession] = ()) -> List[str]:
        """Write one cycle; returns the accounts whose update failed."""
        failed = []
        conn = self.get_db()
        try:
            conn.execute("BEGIN IMMEDIATE")
            for res in results:
                conn.execute("SAVEPOINT account")
                try:
                    self._apply_one(conn, res)
                except sqlite3.Error as e:
                    conn.execute("ROLLBACK TO account")
                    log.warning("usage write for %s failed: %s", res.account, e)
                    failed.append(res.account)
                conn.execute("RELEASE account")
            for s in closed:
                try:
                    self._log_session(conn, s)
                except sqlite3.Error as e:
                    log.warning("connection log for %s failed: %s", s.account, e)
            conn.execute("COMMIT")
        except sqlite3.Error:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()
        return failed

    def disable_account(self, name: str, reason: Optional[str] = None):
        conn = self.get_db()
        try:
            conn.execute(
                "UPDATE users SET isActive = 0, blockReason = ? WHERE username = ?",
                (reason, name),
            )
        finally:
            conn.close()

    def enable_account(self, name: str):
        conn = self.get_db()
        try:
            conn.execute("UPDATE users SET isActive = 1, blockReason = NULL WHERE username = ?", (name,))
        finally:
            conn.close()

    def recent_sessions(self, name: str, limit: int = 20) -> List[dict]:
        conn = self.get_db()
        try:
            rows = conn.execute(
                "SELECT ip, country, connected_at, disconnected_at, bytes_sent, bytes_received "
                "FROM connection_logs WHERE username = ? ORDER BY id DESC LIMIT ?",
                (name, limit),
            ).fetchall()
            return [dict(r) for r in rows]
        finally:
            conn.close()
