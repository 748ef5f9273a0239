from datetime import timedelta

import pytest

from sshauditor.core.errors import PersistenceError
from sshauditor.core.queues import QueueManager
from sshauditor.core.types import BruteForceResult, BruteOutcome, Credential, DiscoveredHost, utcnow

ROOT = Credential(user="root", password="root", scan_interval=7)
ADMIN = Credential(user="admin", password="admin", scan_interval=14)


def _result(hostport, cred, outcome, days_ago=0.0, result="", error=None):
    return BruteForceResult(
        hostport=hostport,
        credential=cred,
        outcome=outcome,
        result=result,
        error=error,
        time=utcnow() - timedelta(days=days_ago),
    )


def _queue_pairs(requests):
    return [(req.hostport, c.user) for req in requests for c in req.credentials]


def test_add_credential_reports_new_then_updates(store):
    assert store.add_credential(ROOT) is True
    assert store.add_credential(Credential(user="root", password="root", scan_interval=3)) is False

    assert store.get_all_creds() == [Credential(user="root", password="root", scan_interval=3)]


def test_associations_are_created_once_per_active_pair(store, add_host):
    add_host("10.0.0.1:22")
    add_host("10.0.0.2:22")
    add_host("10.0.0.9:22", days_ago=5)
    store.add_credential(ROOT)
    store.add_credential(ADMIN)

    assert store.init_host_creds(2) == 4
    assert store.init_host_creds(2) == 0
    assert store.get_scan_queue_size(2) == 4

    store.add_credential(Credential(user="pi", password="raspberry"))
    assert store.init_host_creds(2) == 2


def test_scan_queue_groups_by_host(store, add_host):
    add_host("10.0.0.2:22")
    add_host("10.0.0.1:22")
    store.add_credential(ROOT)
    store.add_credential(ADMIN)
    QueueManager(store).update_queues()

    queue = QueueManager(store).scan_queue()

    assert [req.hostport for req in queue] == ["10.0.0.1:22", "10.0.0.2:22"]
    assert [[c.user for c in req.credentials] for req in queue] == [["root", "admin"], ["root", "admin"]]


def test_rescan_queue_honours_each_credential_interval(store, add_host):
    add_host("10.0.0.1:22")
    add_host("10.0.0.2:22")
    store.add_credential(ROOT)
    store.init_host_creds(2)
    store.update_brute_result(_result("10.0.0.1:22", ROOT, BruteOutcome.SUCCESS, days_ago=10, result="banner"))
    store.update_brute_result(_result("10.0.0.2:22", ROOT, BruteOutcome.SUCCESS, days_ago=3, result="banner"))

    assert _queue_pairs(store.get_rescan_queue(2)) == [("10.0.0.1:22", "root")]
    assert store.get_scan_queue(2) == []


def test_never_attempted_pairs_are_not_rescanned(store, add_host):
    add_host("10.0.0.1:22")
    store.add_credential(ROOT)
    store.init_host_creds(2)

    assert store.get_rescan_queue(2, now=utcnow() + timedelta(days=365)) == []


def test_success_records_vulnerability_with_version(store, add_host):
    add_host("10.0.0.1:22", version="SSH-2.0-dropbear")
    store.add_credential(ROOT)
    store.update_brute_result(_result("10.0.0.1:22", ROOT, BruteOutcome.SUCCESS, result="Welcome"))

    vulns = store.get_vulnerabilities()

    assert [(v.hostport, v.user, v.password, v.result, v.version) for v in vulns] == [
        ("10.0.0.1:22", "root", "root", "Welcome", "SSH-2.0-dropbear")
    ]


def test_failed_rescan_clears_vulnerability(store, add_host):
    add_host("10.0.0.1:22")
    store.add_credential(ROOT)
    store.init_host_creds(2)
    store.update_brute_result(_result("10.0.0.1:22", ROOT, BruteOutcome.SUCCESS, days_ago=10, result="Welcome"))

    store.update_brute_result(_result("10.0.0.1:22", ROOT, BruteOutcome.FAILURE))

    assert store.get_vulnerabilities() == []
    assert store.get_rescan_queue(2, now=utcnow() + timedelta(days=365)) == []


def test_error_leaves_pair_in_scan_queue(store, add_host):
    add_host("10.0.0.1:22")
    store.add_credential(ROOT)
    store.init_host_creds(2)

    store.update_brute_result(_result("10.0.0.1:22", ROOT, BruteOutcome.ERROR, error="Connection timed out"))

    assert _queue_pairs(store.get_scan_queue(2)) == [("10.0.0.1:22", "root")]
    assert store.get_vulnerabilities() == []


def test_failure_removes_pair_from_scan_queue(store, add_host):
    add_host("10.0.0.1:22")
    store.add_credential(ROOT)
    store.init_host_creds(2)

    store.update_brute_result(_result("10.0.0.1:22", ROOT, BruteOutcome.FAILURE))

    assert store.get_scan_queue(2) == []
    assert store.get_scan_queue_size(2) == 0


def test_reset_interval_requeues_tested_pairs(store, add_host):
    add_host("10.0.0.1:22")
    store.add_credential(ROOT)
    store.add_credential(ADMIN)
    store.init_host_creds(2)
    store.update_brute_result(_result("10.0.0.1:22", ROOT, BruteOutcome.FAILURE))

    assert store.reset_interval() == 1
    assert _queue_pairs(store.get_scan_queue(2)) == [("10.0.0.1:22", "root"), ("10.0.0.1:22", "admin")]


def test_reset_creds_keeps_findings(store, add_host):
    add_host("10.0.0.1:22")
    store.add_credential(ROOT)
    store.init_host_creds(2)
    store.update_brute_result(_result("10.0.0.1:22", ROOT, BruteOutcome.SUCCESS, result="Welcome"))

    store.reset_creds()

    assert store.get_all_creds() == []
    assert store.get_scan_queue(2) == []
    assert len(store.get_vulnerabilities()) == 1


def test_result_for_unknown_credential_is_ignored(store, add_host):
    add_host("10.0.0.1:22")

    store.update_brute_result(_result("10.0.0.1:22", ROOT, BruteOutcome.SUCCESS, result="Welcome"))

    assert store.get_vulnerabilities() == []


def test_logcheck_queue_names_user_after_host(store, add_host):
    add_host("10.0.0.1:22")
    add_host("[2001:db8::1]:2222", days_ago=10)
    add_host("10.0.0.3:22", days_ago=20)

    queue = QueueManager(store, logcheck_password="nope").logcheck_queue()

    assert [(req.hostport, req.credentials) for req in queue] == [
        ("10.0.0.1:22", [Credential(user="logcheck-10.0.0.1", password="nope", scan_interval=0)]),
        ("[2001:db8::1]:2222", [Credential(user="logcheck-2001:db8::1", password="nope", scan_interval=0)]),
    ]


def test_transaction_groups_writes_and_rolls_back(store, add_host):
    add_host("10.0.0.1:22")

    with pytest.raises(RuntimeError):
        with store.transaction():
            store.add_credential(ROOT)
            raise RuntimeError("abort")

    assert store.get_all_creds() == []
    assert not store.in_transaction


def test_only_one_transaction_at_a_time(store):
    store.begin()
    with pytest.raises(PersistenceError):
        store.begin()
    store.rollback()

    with pytest.raises(PersistenceError):
        store.commit()


def test_set_last_seen_requires_known_host(store):
    with pytest.raises(PersistenceError):
        store.set_last_seen("10.0.0.1:22")


def test_timestamps_round_trip_as_aware_utc(store):
    seen_at = utcnow() - timedelta(hours=5)
    store.add_or_update_host(DiscoveredHost("10.0.0.1:22", fingerprint="SHA256:aaa"), seen_at=seen_at)

    host = store.get_known_hosts()["10.0.0.1:22"]

    assert host.last_seen == seen_at
    assert host.last_seen.utcoffset() == timedelta(0)
    assert [h.hostport for h in store.get_active_hosts(1)] == ["10.0.0.1:22"]


def test_success_exactly_one_interval_old_is_due(store, add_host):
    add_host("10.0.0.1:22")
    store.add_credential(ROOT)
    store.init_host_creds(2)
    succeeded_at = utcnow() - timedelta(days=1)
    store.update_brute_result(
        BruteForceResult(
            hostport="10.0.0.1:22", credential=ROOT, outcome=BruteOutcome.SUCCESS, result="banner", time=succeeded_at
        )
    )

    due_at = succeeded_at + timedelta(days=ROOT.scan_interval)

    assert _queue_pairs(store.get_rescan_queue(2, now=due_at)) == [("10.0.0.1:22", "root")]
    assert store.get_rescan_queue(2, now=due_at - timedelta(seconds=1)) == []
