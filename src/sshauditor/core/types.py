from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ScanConfiguration:
    include: List[str] = field(default_factory=list)
    exclude: List[str] = field(default_factory=list)
    ports: List[int] = field(default_factory=lambda: [22])
    concurrency: int = 256
    timeout: float = 4.0
    exhaustive: bool = False


@dataclass(frozen=True)
class Credential:
    user: str
    password: str
    scan_interval: int = 14

    def to_dict(self) -> Dict[str, Any]:
        return {"User": self.user, "Password": self.password, "ScanInterval": self.scan_interval}


@dataclass
class Host:
    hostport: str
    fingerprint: str = ""
    version: str = ""
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["first_seen"] = self.first_seen.isoformat() if self.first_seen else None
        payload["last_seen"] = self.last_seen.isoformat() if self.last_seen else None
        return payload


@dataclass
class DiscoveredHost:
    """A host that answered the banner and key-exchange probes."""

    hostport: str
    fingerprint: str = ""
    version: str = ""


@dataclass
class HostChange:
    hostport: str
    kind: str
    old: str
    new: str
    time: datetime


@dataclass
class ScanRequest:
    hostport: str
    credentials: List[Credential] = field(default_factory=list)


class BruteOutcome(str, enum.Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    ERROR = "error"


@dataclass
class BruteForceResult:
    hostport: str
    credential: Credential
    outcome: BruteOutcome
    result: str = ""
    error: Optional[str] = None
    time: datetime = field(default_factory=utcnow)


@dataclass
class Vulnerability:
    hostport: str
    user: str
    password: str
    result: str
    first_found: datetime
    last_confirmed: datetime
    version: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hostport": self.hostport,
            "user": self.user,
            "password": self.password,
            "result": self.result,
            "version": self.version,
            "first_found": self.first_found.isoformat(),
            "last_confirmed": self.last_confirmed.isoformat(),
        }


@dataclass
class DiscoveryResult:
    total: int = 0
    new: int = 0
    updated: int = 0
    probed: int = 0
    banner_failed: int = 0
    fingerprint_failed: int = 0


@dataclass
class AuditResult:
    total: int = 0
    success: int = 0
    failure: int = 0
    error: int = 0

    def record(self, outcome: BruteOutcome) -> None:
        self.total += 1
        if outcome is BruteOutcome.SUCCESS:
            self.success += 1
        elif outcome is BruteOutcome.FAILURE:
            self.failure += 1
        else:
            self.error += 1


@dataclass
class AuditReport:
    active_hosts: List[Host] = field(default_factory=list)
    active_hosts_count: int = 0
    duplicate_keys: Dict[str, List[Host]] = field(default_factory=dict)
    duplicate_keys_count: int = 0
    vulnerabilities: List[Vulnerability] = field(default_factory=list)
    vulnerabilities_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "active_hosts": [h.to_dict() for h in self.active_hosts],
            "active_hosts_count": self.active_hosts_count,
            "duplicate_keys": {fp: [h.to_dict() for h in hosts] for fp, hosts in self.duplicate_keys.items()},
            "duplicate_keys_count": self.duplicate_keys_count,
            "vulnerabilities": [v.to_dict() for v in self.vulnerabilities],
            "vulnerabilities_count": self.vulnerabilities_count,
        }


@dataclass
class LogcheckEntry:
    hostport: str
    ip: str
    found: bool
