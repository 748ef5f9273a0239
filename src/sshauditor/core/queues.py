from __future__ import annotations

import logging
from typing import List

from sshauditor.core.observability import log_event
from sshauditor.core.targets import split_host_port
from sshauditor.core.types import Credential, ScanRequest
from sshauditor.db.store import Store

logger = logging.getLogger(__name__)

LOGCHECK_USER_PREFIX = "logcheck-"


class QueueManager:
    """Keeps host/credential associations current and derives the work queues."""

    def __init__(
        self,
        store: Store,
        active_window_days: int = 2,
        logcheck_window_days: int = 14,
        logcheck_password: str = "logcheck",
    ) -> None:
        self.store = store
        self.active_window_days = active_window_days
        self.logcheck_window_days = logcheck_window_days
        self.logcheck_password = logcheck_password

    def update_queues(self) -> int:
        queued = self.store.init_host_creds(self.active_window_days)
        queue_size = self.store.get_scan_queue_size(self.active_window_days)
        log_event(logger, "brute force queue size", new=queued, total=queue_size)
        return queued

    def scan_queue(self) -> List[ScanRequest]:
        """Pairs never attempted, grouped per host."""
        return self.store.get_scan_queue(self.active_window_days)

    def rescan_queue(self) -> List[ScanRequest]:
        """Pairs that worked before and are due for re-verification."""
        return self.store.get_rescan_queue(self.active_window_days)

    def logcheck_queue(self) -> List[ScanRequest]:
        """One deliberately invalid login per active host, named after the host."""
        requests: List[ScanRequest] = []
        for host in self.store.get_active_hosts(self.logcheck_window_days):
            try:
                address, _ = split_host_port(host.hostport)
            except ValueError as exc:
                logger.warning("bad hostport %s: %s", host.hostport, exc)
                continue
            cred = Credential(user=f"{LOGCHECK_USER_PREFIX}{address}", password=self.logcheck_password, scan_interval=0)
            requests.append(ScanRequest(hostport=host.hostport, credentials=[cred]))
        return requests
