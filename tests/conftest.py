from __future__ import annotations

import os
import sys
from datetime import timedelta
from pathlib import Path

# Use an isolated in-memory database so tests never touch a local ssh_db.sqlite.
os.environ.setdefault("SSHAUDITOR_DATABASE_URL", "sqlite://")
os.environ.setdefault("SSHAUDITOR_LOG_LEVEL", "DEBUG")

SRC_ROOT = Path(__file__).resolve().parent.parent / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

import paramiko  # noqa: E402
import pytest  # noqa: E402

from sshauditor.core.types import DiscoveredHost, utcnow  # noqa: E402
from sshauditor.db.store import Store  # noqa: E402


@pytest.fixture()
def store() -> Store:
    return Store.from_url("sqlite://")


@pytest.fixture()
def add_host(store: Store):
    """Insert a host last seen ``days_ago`` days in the past."""

    def _add(hostport: str, fingerprint: str = "", version: str = "SSH-2.0-OpenSSH_9.6", days_ago: float = 0):
        store.add_or_update_host(
            DiscoveredHost(hostport=hostport, fingerprint=fingerprint, version=version),
            seen_at=utcnow() - timedelta(days=days_ago),
        )

    return _add


class FakeTransport:
    def __init__(self, banner: bytes | None) -> None:
        self.banner = banner

    def get_banner(self) -> bytes | None:
        return self.banner


class FakeSSHClient:
    """Stands in for paramiko.SSHClient; the password picks the behaviour."""

    instances: list["FakeSSHClient"] = []
    banner: bytes | None = b"Welcome to test host\n"

    def __init__(self) -> None:
        self.connected_with: dict = {}
        self.closed = False
        FakeSSHClient.instances.append(self)

    def set_missing_host_key_policy(self, policy) -> None:
        self.policy = policy

    def connect(self, **kwargs) -> None:
        self.connected_with = kwargs
        password = kwargs["password"]
        if password == "timeout":
            raise TimeoutError("timed out")
        if password == "refused":
            raise paramiko.ssh_exception.NoValidConnectionsError({("127.0.0.1", 22): ConnectionRefusedError()})
        if password == "reset":
            raise ConnectionResetError("connection reset by peer")
        if password == "kex":
            raise paramiko.SSHException("Error reading SSH protocol banner")
        if password == "pubkey-only":
            raise paramiko.BadAuthenticationType("Bad authentication type", ["publickey"])
        if password == "boom":
            raise RuntimeError("boom")
        if not password.startswith("good"):
            raise paramiko.AuthenticationException("Authentication failed.")

    def get_transport(self) -> FakeTransport:
        return FakeTransport(type(self).banner)

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def fake_ssh_client():
    FakeSSHClient.instances = []
    FakeSSHClient.banner = b"Welcome to test host\n"
    return FakeSSHClient
