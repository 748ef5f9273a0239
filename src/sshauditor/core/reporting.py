from __future__ import annotations

import logging
from typing import Dict, List

from sshauditor.core.errors import ExternalServiceError
from sshauditor.core.logsearch import LogSearcher
from sshauditor.core.observability import log_event
from sshauditor.core.targets import split_host_port
from sshauditor.core.types import AuditReport, Host, LogcheckEntry, Vulnerability
from sshauditor.db.store import Store

logger = logging.getLogger(__name__)


class Reporter:
    def __init__(self, store: Store, active_window_days: int = 2, logcheck_window_days: int = 14) -> None:
        self.store = store
        self.active_window_days = active_window_days
        self.logcheck_window_days = logcheck_window_days

    def dupes(self) -> Dict[str, List[Host]]:
        """Fingerprints shared by two or more active hosts."""
        key_map: Dict[str, List[Host]] = {}
        for host in self.store.get_active_hosts(self.active_window_days):
            if not host.fingerprint:
                continue
            key_map.setdefault(host.fingerprint, []).append(host)
        return {fp: hosts for fp, hosts in key_map.items() if len(hosts) > 1}

    def vulnerabilities(self) -> List[Vulnerability]:
        return self.store.get_vulnerabilities()

    def get_report(self) -> AuditReport:
        hosts = self.store.get_active_hosts(self.active_window_days)
        dupes = self.dupes()
        vulns = self.vulnerabilities()
        return AuditReport(
            active_hosts=hosts,
            active_hosts_count=len(hosts),
            duplicate_keys=dupes,
            duplicate_keys_count=len(dupes),
            vulnerabilities=vulns,
            vulnerabilities_count=len(vulns),
        )

    def logcheck_report(self, searcher: LogSearcher) -> List[LogcheckEntry]:
        """
        Cross-reference active hosts against addresses seen in the log system.

        The result is a coverage signal per host: ``found`` is True when the
        host's log-check login showed up in the searched logs.
        """
        active_hosts = self.store.get_active_hosts(self.logcheck_window_days)
        try:
            found_ips = searcher.get_ips()
        except ExternalServiceError:
            raise
        except Exception as exc:
            raise ExternalServiceError(str(exc), operation="logcheck_report", backend=searcher.name) from exc

        log_event(logger, "found active hosts in store", count=len(active_hosts))
        log_event(logger, "found related hosts in logs", count=len(found_ips))

        entries: List[LogcheckEntry] = []
        for host in active_hosts:
            try:
                ip, _ = split_host_port(host.hostport)
            except ValueError:
                logger.error("invalid hostport %s", host.hostport)
                continue
            entries.append(LogcheckEntry(hostport=host.hostport, ip=ip, found=ip in found_ips))
        return entries
