"""
Entry points for discovery, brute-force scans, log checks and reports.

Each pipeline fans out over worker threads and fans back in to the calling
thread, which is the only one that ever opens a store transaction.
"""

from __future__ import annotations

import logging
import threading
from contextlib import closing
from typing import Dict, Iterable, List

from sshauditor.config import Settings
from sshauditor.core.batching import DEFAULT_BATCH_LATENCY, DEFAULT_BATCH_SIZE, batch
from sshauditor.core.bruteforce import BruteForcer
from sshauditor.core.discovery import DiscoveryReconciler
from sshauditor.core.logsearch import LogSearcher
from sshauditor.core.observability import Timer, log_event
from sshauditor.core.probe import build_probes, discover_hosts
from sshauditor.core.queues import QueueManager
from sshauditor.core.reporting import Reporter
from sshauditor.core.targets import expand_scan_configuration
from sshauditor.core.types import (
    AuditReport,
    AuditResult,
    BruteForceResult,
    BruteOutcome,
    DiscoveryResult,
    Host,
    LogcheckEntry,
    ScanConfiguration,
    ScanRequest,
    Vulnerability,
)
from sshauditor.db.store import Store

logger = logging.getLogger(__name__)


class SSHAuditor:
    def __init__(
        self,
        store: Store,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_latency: float = DEFAULT_BATCH_LATENCY,
        active_window_days: int = 2,
        logcheck_window_days: int = 14,
        logcheck_password: str = "logcheck",
    ) -> None:
        self.store = store
        self.batch_size = batch_size
        self.batch_latency = batch_latency
        self.queues = QueueManager(
            store,
            active_window_days=active_window_days,
            logcheck_window_days=logcheck_window_days,
            logcheck_password=logcheck_password,
        )
        self.reconciler = DiscoveryReconciler(store, batch_size=batch_size, batch_latency=batch_latency)
        self.reporter = Reporter(
            store, active_window_days=active_window_days, logcheck_window_days=logcheck_window_days
        )

    @classmethod
    def from_settings(cls, store: Store, config: Settings) -> "SSHAuditor":
        return cls(
            store,
            batch_size=config.batch_size,
            batch_latency=config.batch_latency_seconds,
            active_window_days=config.active_window_days,
            logcheck_window_days=config.logcheck_window_days,
            logcheck_password=config.logcheck_password,
        )

    def discover(self, cfg: ScanConfiguration) -> DiscoveryResult:
        hostports = expand_scan_configuration(cfg)
        banner_probe, fingerprint_probe = build_probes(cfg.concurrency, cfg.timeout)
        stop = threading.Event()
        try:
            with Timer() as timer:
                hosts = discover_hosts(hostports, banner_probe, fingerprint_probe, stop=stop)
                result = self.reconciler.reconcile(hosts, stop=stop)
        finally:
            stop.set()

        banner_stats = banner_probe.stats.snapshot()
        fingerprint_stats = fingerprint_probe.stats.snapshot()
        result.probed = banner_stats["attempted"]
        result.banner_failed = banner_stats["failed"]
        result.fingerprint_failed = fingerprint_stats["failed"]
        log_event(
            logger,
            "discovery finished",
            duration_ms=timer.duration_ms,
            probed=result.probed,
            banner_failed=result.banner_failed,
            fingerprint_failed=result.fingerprint_failed,
        )
        self.queues.update_queues()
        return result

    def _persist_results(self, results: Iterable[BruteForceResult], stop: threading.Event) -> AuditResult:
        counts = AuditResult()
        with closing(batch(results, self.batch_size, self.batch_latency, stop=stop)) as batches:
            for result_batch in batches:
                with self.store.transaction():
                    for br in result_batch:
                        _log_result(br)
                        self.store.update_brute_result(br)
                        counts.record(br.outcome)
        return counts

    def _brute(self, kind: str, requests: List[ScanRequest], cfg: ScanConfiguration) -> AuditResult:
        attempts = sum(len(req.credentials) for req in requests)
        log_event(logger, "brute force queue", kind=kind, hosts=len(requests), attempts=attempts)
        forcer = BruteForcer(workers=cfg.concurrency, timeout=cfg.timeout, exhaustive=cfg.exhaustive)
        stop = threading.Event()
        try:
            with Timer() as timer:
                counts = self._persist_results(forcer.run(requests, stop=stop), stop)
        finally:
            stop.set()
        log_event(
            logger,
            "brute force scan report",
            kind=kind,
            total=counts.total,
            neg=counts.failure,
            pos=counts.success,
            err=counts.error,
            duration_ms=timer.duration_ms,
        )
        return counts

    def scan(self, cfg: ScanConfiguration) -> AuditResult:
        self.queues.update_queues()
        return self._brute("scan", self.queues.scan_queue(), cfg)

    def rescan(self, cfg: ScanConfiguration) -> AuditResult:
        self.queues.update_queues()
        return self._brute("rescan", self.queues.rescan_queue(), cfg)

    def logcheck(self, cfg: ScanConfiguration) -> AuditResult:
        """Send one failing login per active host; nothing is persisted."""
        requests = self.queues.logcheck_queue()
        forcer = BruteForcer(workers=cfg.concurrency, timeout=cfg.timeout, exhaustive=True)
        counts = AuditResult()
        for br in forcer.run(requests):
            counts.record(br.outcome)
            if br.outcome is BruteOutcome.ERROR:
                logger.error("Failed to send logcheck auth request to %s: %s", br.hostport, br.error)
            else:
                logger.info("Sent logcheck auth request to %s as %s", br.hostport, br.credential.user)
        log_event(logger, "logcheck report", total=counts.total, sent=counts.total - counts.error, err=counts.error)
        return counts

    def logcheck_report(self, searcher: LogSearcher) -> List[LogcheckEntry]:
        return self.reporter.logcheck_report(searcher)

    def dupes(self) -> Dict[str, List[Host]]:
        return self.reporter.dupes()

    def vulnerabilities(self) -> List[Vulnerability]:
        return self.reporter.vulnerabilities()

    def get_report(self) -> AuditReport:
        return self.reporter.get_report()


def _log_result(br: BruteForceResult) -> None:
    payload = {"host": br.hostport, "user": br.credential.user}
    if br.outcome is BruteOutcome.ERROR:
        log_event(logger, "brute force error", level=logging.DEBUG, err=br.error, **payload)
    elif br.outcome is BruteOutcome.FAILURE:
        log_event(logger, "negative brute force result", level=logging.DEBUG, **payload)
    else:
        log_event(logger, "positive brute force result", level=logging.WARNING, result=br.result, **payload)
