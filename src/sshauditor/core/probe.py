"""
Unauthenticated SSH discovery probes built on sockets and Paramiko.

BannerProbe weeds out closed ports and non-SSH services cheaply; only targets
that present an SSH identification line reach FingerprintProbe, which runs the
key exchange far enough to read the host key and then hangs up. Neither stage
ever attempts authentication.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import socket
from dataclasses import dataclass
from threading import Event, Lock
from typing import Dict, Iterable, Iterator, Optional, Tuple

import paramiko
from paramiko.ssh_exception import SSHException

from sshauditor.core.errors import ProbeError
from sshauditor.core.pool import run_pool
from sshauditor.core.targets import split_host_port
from sshauditor.core.types import DiscoveredHost

logger = logging.getLogger(__name__)

MAX_BANNER_BYTES = 8192


@dataclass
class BannerResult:
    hostport: str
    banner: str


def fingerprint_key(key: paramiko.PKey) -> str:
    """OpenSSH style SHA256 fingerprint of a public key."""
    digest = hashlib.sha256(key.asbytes()).digest()
    return "SHA256:" + base64.b64encode(digest).decode("ascii").rstrip("=")


def _read_identification(sock: socket.socket) -> str:
    # servers may send other lines before the identification string
    data = b""
    while len(data) < MAX_BANNER_BYTES:
        chunk = sock.recv(1024)
        if not chunk:
            break
        data += chunk
        while b"\n" in data:
            line, data = data.split(b"\n", 1)
            text = line.decode("utf-8", errors="replace").rstrip("\r")
            if text.startswith("SSH-"):
                return text
    raise ProbeError("no SSH identification line", operation="banner")


class _ProbeStats:
    def __init__(self) -> None:
        self._lock = Lock()
        self._counts = {"attempted": 0, "succeeded": 0, "failed": 0}

    def record(self, ok: bool) -> None:
        with self._lock:
            self._counts["attempted"] += 1
            self._counts["succeeded" if ok else "failed"] += 1

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counts)


class BannerProbe:
    """Connect to each target and read its SSH identification line."""

    def __init__(self, workers: int, timeout: float) -> None:
        self.workers = workers
        self.timeout = timeout
        self.stats = _ProbeStats()

    def probe(self, hostport: str) -> Optional[BannerResult]:
        try:
            host, port = split_host_port(hostport)
            with socket.create_connection((host, port), timeout=self.timeout) as sock:
                banner = _read_identification(sock)
        except (OSError, ValueError, ProbeError) as exc:
            logger.debug("banner probe failed for %s: %s", hostport, exc)
            return None
        logger.debug("banner from %s: %s", hostport, banner)
        return BannerResult(hostport=hostport, banner=banner)

    def _counted(self, hostport: str) -> Optional[BannerResult]:
        result = self.probe(hostport)
        self.stats.record(result is not None)
        return result

    def run(self, targets: Iterable[str], stop: Optional[Event] = None) -> Iterator[BannerResult]:
        return run_pool(self._counted, targets, workers=self.workers, name="banner", stop=stop)


class FingerprintProbe:
    """Complete the key exchange with each target and fingerprint its host key."""

    def __init__(self, workers: int, timeout: float) -> None:
        self.workers = workers
        self.timeout = timeout
        self.stats = _ProbeStats()

    def probe(self, target: BannerResult) -> Optional[DiscoveredHost]:
        sock: Optional[socket.socket] = None
        transport: Optional[paramiko.Transport] = None
        try:
            host, port = split_host_port(target.hostport)
            sock = socket.create_connection((host, port), timeout=self.timeout)
            transport = paramiko.Transport(sock)
            transport.banner_timeout = self.timeout
            transport.start_client(timeout=self.timeout)
            key = transport.get_remote_server_key()
            version = transport.remote_version or target.banner
            fingerprint = fingerprint_key(key)
        except (OSError, ValueError, EOFError, SSHException) as exc:
            logger.debug("fingerprint probe failed for %s: %s", target.hostport, exc)
            return None
        finally:
            if transport is not None:
                transport.close()
            elif sock is not None:
                sock.close()
        return DiscoveredHost(hostport=target.hostport, fingerprint=fingerprint, version=version)

    def _counted(self, target: BannerResult) -> Optional[DiscoveredHost]:
        result = self.probe(target)
        self.stats.record(result is not None)
        return result

    def run(self, targets: Iterable[BannerResult], stop: Optional[Event] = None) -> Iterator[DiscoveredHost]:
        return run_pool(self._counted, targets, workers=self.workers, name="fingerprint", stop=stop)


def build_probes(concurrency: int, timeout: float) -> Tuple[BannerProbe, FingerprintProbe]:
    """The banner pool is twice as wide since most targets fail fast."""
    return BannerProbe(workers=concurrency * 2, timeout=timeout), FingerprintProbe(workers=concurrency, timeout=timeout)


def discover_hosts(
    hostports: Iterable[str],
    banner_probe: BannerProbe,
    fingerprint_probe: FingerprintProbe,
    stop: Optional[Event] = None,
) -> Iterator[DiscoveredHost]:
    """Chain both probes; setting ``stop`` winds down both pools."""
    return fingerprint_probe.run(banner_probe.run(hostports, stop=stop), stop=stop)
