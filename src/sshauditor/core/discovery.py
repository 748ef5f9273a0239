from __future__ import annotations

import logging
import threading
from contextlib import closing
from typing import Iterable, Optional

from sshauditor.core.batching import DEFAULT_BATCH_LATENCY, DEFAULT_BATCH_SIZE, batch
from sshauditor.core.observability import log_event
from sshauditor.core.types import DiscoveredHost, DiscoveryResult
from sshauditor.db.store import Store

logger = logging.getLogger(__name__)


class DiscoveryReconciler:
    """Merge probe results into the store, one transaction per batch."""

    def __init__(
        self,
        store: Store,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_latency: float = DEFAULT_BATCH_LATENCY,
    ) -> None:
        self.store = store
        self.batch_size = batch_size
        self.batch_latency = batch_latency

    def reconcile(self, hosts: Iterable[DiscoveredHost], stop: Optional[threading.Event] = None) -> DiscoveryResult:
        """
        Apply a stream of discovered hosts to the store.

        New hosts are inserted; hosts whose fingerprint or version changed get
        change rows and an update; everything else only has its last-seen time
        bumped. A fresh empty field means "unknown" and keeps the stored value.

        Raises:
            PersistenceError: a batch could not be written. Earlier batches stay
                committed; the failing batch is rolled back and ``stop`` is set
                so the pools producing ``hosts`` wind down.
        """
        known_hosts = self.store.get_known_hosts()
        log_event(logger, "current known hosts", count=len(known_hosts))
        result = DiscoveryResult()

        with closing(batch(hosts, self.batch_size, self.batch_latency, stop=stop)) as batches:
            for host_batch in batches:
                with self.store.transaction():
                    for host in host_batch:
                        self._apply(host, known_hosts, result)

        log_event(logger, "discovery report", total=result.total, new=result.new, updated=result.updated)
        return result

    def _apply(self, host: DiscoveredHost, known_hosts, result: DiscoveryResult) -> None:
        previous = known_hosts.get(host.hostport)
        if previous is None:
            self.store.add_or_update_host(host)
            result.new += 1
            log_event(logger, "discovered new host", host=host.hostport, version=host.version, fp=host.fingerprint)
        else:
            merged = DiscoveredHost(
                hostport=host.hostport,
                fingerprint=host.fingerprint or previous.fingerprint,
                version=host.version or previous.version,
            )
            if (merged.fingerprint, merged.version) != (previous.fingerprint, previous.version):
                self.store.add_host_changes(merged, previous)
                self.store.add_or_update_host(merged)
                result.updated += 1
                log_event(
                    logger,
                    "discovered changed host",
                    level=logging.WARNING,
                    host=host.hostport,
                    version=merged.version,
                    fp=merged.fingerprint,
                    previous_version=previous.version,
                    previous_fp=previous.fingerprint,
                )
            else:
                self.store.set_last_seen(host.hostport)
        result.total += 1
