from typing import Set

import pytest

from sshauditor.core.errors import ExternalServiceError
from sshauditor.core.logsearch import LogSearcher
from sshauditor.core.reporting import Reporter
from sshauditor.core.types import BruteForceResult, BruteOutcome, Credential, LogcheckEntry


class StaticSearcher(LogSearcher):
    name = "static"

    def __init__(self, ips: Set[str]) -> None:
        self.ips = ips

    def get_ips(self) -> Set[str]:
        return self.ips


class BrokenSearcher(LogSearcher):
    name = "broken"

    def get_ips(self) -> Set[str]:
        raise ConnectionError("log system unreachable")


def test_dupes_group_active_hosts_sharing_a_key(store, add_host):
    add_host("10.0.0.1:22", fingerprint="SHA256:X")
    add_host("10.0.0.2:22", fingerprint="SHA256:X")
    add_host("10.0.0.3:22", fingerprint="SHA256:X")
    add_host("10.0.0.4:22", fingerprint="SHA256:Y")

    dupes = Reporter(store).dupes()

    assert list(dupes) == ["SHA256:X"]
    assert [h.hostport for h in dupes["SHA256:X"]] == ["10.0.0.1:22", "10.0.0.2:22", "10.0.0.3:22"]


def test_dupes_ignore_stale_hosts_and_missing_keys(store, add_host):
    add_host("10.0.0.1:22", fingerprint="SHA256:X")
    add_host("10.0.0.2:22", fingerprint="SHA256:X", days_ago=7)
    add_host("10.0.0.3:22", fingerprint="")
    add_host("10.0.0.4:22", fingerprint="")

    assert Reporter(store).dupes() == {}


def test_report_counts_match_collections(store, add_host):
    add_host("10.0.0.1:22", fingerprint="SHA256:X")
    add_host("10.0.0.2:22", fingerprint="SHA256:X")
    add_host("10.0.0.3:22", fingerprint="SHA256:Z", days_ago=3)
    cred = Credential(user="root", password="root")
    store.add_credential(cred)
    store.update_brute_result(
        BruteForceResult(hostport="10.0.0.1:22", credential=cred, outcome=BruteOutcome.SUCCESS, result="Welcome")
    )

    report = Reporter(store).get_report()

    assert report.active_hosts_count == len(report.active_hosts) == 2
    assert report.duplicate_keys_count == len(report.duplicate_keys) == 1
    assert report.vulnerabilities_count == len(report.vulnerabilities) == 1
    payload = report.to_dict()
    assert payload["vulnerabilities"][0]["user"] == "root"
    assert set(payload["duplicate_keys"]) == {"SHA256:X"}


def test_logcheck_report_marks_hosts_seen_in_logs(store, add_host):
    add_host("10.0.0.1:22")
    add_host("10.0.0.2:2222", days_ago=10)
    add_host("10.0.0.3:22", days_ago=30)

    entries = Reporter(store).logcheck_report(StaticSearcher({"10.0.0.1", "192.0.2.1"}))

    assert entries == [
        LogcheckEntry(hostport="10.0.0.1:22", ip="10.0.0.1", found=True),
        LogcheckEntry(hostport="10.0.0.2:2222", ip="10.0.0.2", found=False),
    ]


def test_logcheck_report_wraps_searcher_failures(store, add_host):
    add_host("10.0.0.1:22")

    with pytest.raises(ExternalServiceError) as excinfo:
        Reporter(store).logcheck_report(BrokenSearcher())

    assert excinfo.value.backend == "broken"
