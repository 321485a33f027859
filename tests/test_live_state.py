from datetime import datetime, timezone

import pytest

from sshpanel.live_state import LiveStateStore, account_view, join_accounts, to_dict
from sshpanel.models import AccountUsageDelta, ConnectionRecord, GeoInfo

DE = GeoInfo("Germany", "DE", "Berlin")


def delta(up, down, n=1):
    conns = [ConnectionRecord(100 + i, "203.0.113.9", DE, up / n, down / n, 2 * 1024 * 1024, 0.0)
             for i in range(n)]
    return AccountUsageDelta(0, 0, up, down, conns, "203.0.113.9", DE)


def test_publish_replaces_everything():
    store = LiveStateStore()
    assert store.updated_at is None
    store.publish({"alice": delta(1.0, 2.0), "bob": delta(0.5, 0.5)}, 10.0)
    first = store.snapshot()
    store.publish({"alice": delta(3.0, 4.0)}, 12.0)

    assert set(first) == {"alice", "bob"}
    assert set(store.snapshot()) == {"alice"}
    assert store.get("bob").connection_count == 0
    assert store.total_mbps() == (3.0, 4.0)
    assert (store.updated_at, store.cycles) == (12.0, 2)
    with pytest.raises(TypeError):
        store.snapshot()["mallory"] = None


def test_join_falls_back_to_idle(snapshot):
    live = LiveStateStore()
    live.publish({"alice": delta(1.0, 2.0, n=2)}, 1.0)
    views = {v.name: v for v in join_accounts([snapshot("alice", used_gb=5, quota_gb=20),
                                                 snapshot("bob")], live)}
    assert views["alice"].connection_count == 2
    assert views["alice"].download_mbps == 2.0
    assert views["alice"].percent_used == 25.0
    assert views["bob"].connection_count == 0
    assert views["bob"].upload_mbps == 0.0
    assert views["bob"].percent_used == 0.0


def test_to_dict(snapshot):
    s = snapshot("alice", used_gb=1.23456, quota_gb=10,
                 expires_at=datetime(2026, 12, 31, tzinfo=timezone.utc), enabled=False)
    live = LiveStateStore()
    live.publish({"alice": delta(1.0, 2.0)}, 1.0)
    d = to_dict(account_view(s, live.get("alice")))
    assert d["username"] == "alice"
    assert d["isActive"] is False
    assert d["dataUsedGB"] == 1.2346
    assert d["expiryDate"] == "2026-12-31T00:00:00+00:00"
    assert d["concurrentInUse"] == 1
    conn = d["activeConnections"][0]
    assert conn["id"] == "100"
    assert conn["country"] == "DE"
    assert conn["sessionUsageMB"] == 2.0
    assert conn["connectedAt"] == "1970-01-01T00:00:00+00:00"
