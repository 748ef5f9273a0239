from datetime import timedelta

import pytest

from sshauditor.core.discovery import DiscoveryReconciler
from sshauditor.core.errors import PersistenceError
from sshauditor.core.types import DiscoveredHost, utcnow
from sshauditor.db.store import Store


class FlakyStore(Store):
    """Store whose Nth commit fails the way a full disk would."""

    def __init__(self, engine, fail_on: int) -> None:
        super().__init__(engine)
        self.fail_on = fail_on
        self.commits = 0

    def commit(self) -> None:
        self.commits += 1
        if self.commits == self.fail_on:
            self.rollback()
            raise PersistenceError("disk I/O error", operation="commit")
        super().commit()


def _reconciler(store, batch_size: int = 50) -> DiscoveryReconciler:
    return DiscoveryReconciler(store, batch_size=batch_size, batch_latency=10.0)


def test_new_hosts_are_inserted(store):
    result = _reconciler(store).reconcile(
        [
            DiscoveredHost("10.0.0.1:22", fingerprint="SHA256:aaa", version="SSH-2.0-OpenSSH_9.6"),
            DiscoveredHost("10.0.0.2:22", fingerprint="SHA256:bbb", version="SSH-2.0-OpenSSH_8.9"),
        ]
    )

    assert (result.total, result.new, result.updated) == (2, 2, 0)
    known = store.get_known_hosts()
    assert known["10.0.0.1:22"].fingerprint == "SHA256:aaa"
    assert known["10.0.0.1:22"].first_seen == known["10.0.0.1:22"].last_seen


def test_changed_fingerprint_is_recorded(store, add_host):
    add_host("10.0.0.1:22", fingerprint="SHA256:aaa", version="SSH-2.0-OpenSSH_9.6", days_ago=1)

    result = _reconciler(store).reconcile(
        [DiscoveredHost("10.0.0.1:22", fingerprint="SHA256:bbb", version="SSH-2.0-OpenSSH_9.6")]
    )

    assert (result.total, result.new, result.updated) == (1, 0, 1)
    assert store.get_known_hosts()["10.0.0.1:22"].fingerprint == "SHA256:bbb"
    changes = store.get_host_changes("10.0.0.1:22")
    assert [(c.kind, c.old, c.new) for c in changes] == [("fingerprint", "SHA256:aaa", "SHA256:bbb")]


def test_unchanged_host_only_bumps_last_seen(store, add_host):
    add_host("10.0.0.1:22", fingerprint="SHA256:aaa", version="SSH-2.0-OpenSSH_9.6", days_ago=5)
    before = store.get_known_hosts()["10.0.0.1:22"]

    result = _reconciler(store).reconcile(
        [DiscoveredHost("10.0.0.1:22", fingerprint="SHA256:aaa", version="SSH-2.0-OpenSSH_9.6")]
    )

    after = store.get_known_hosts()["10.0.0.1:22"]
    assert (result.new, result.updated) == (0, 0)
    assert after.first_seen == before.first_seen
    assert after.last_seen > utcnow() - timedelta(minutes=1)
    assert store.get_host_changes() == []


def test_empty_fresh_fields_keep_stored_values(store, add_host):
    add_host("10.0.0.1:22", fingerprint="SHA256:aaa", version="SSH-2.0-OpenSSH_9.6", days_ago=1)

    result = _reconciler(store).reconcile([DiscoveredHost("10.0.0.1:22", fingerprint="", version="")])

    assert result.updated == 0
    host = store.get_known_hosts()["10.0.0.1:22"]
    assert (host.fingerprint, host.version) == ("SHA256:aaa", "SSH-2.0-OpenSSH_9.6")


def test_failed_batch_rolls_back_but_earlier_batches_stay(store):
    flaky = FlakyStore(store.engine, fail_on=2)
    hosts = [DiscoveredHost(f"10.0.0.{i}:22", fingerprint=f"SHA256:{i}") for i in range(1, 6)]

    with pytest.raises(PersistenceError):
        _reconciler(flaky, batch_size=2).reconcile(hosts)

    assert sorted(flaky.get_known_hosts()) == ["10.0.0.1:22", "10.0.0.2:22"]
    assert not flaky.in_transaction
