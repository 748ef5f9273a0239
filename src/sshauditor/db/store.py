"""
SQLModel-backed repository for hosts, credentials, scan associations and
vulnerabilities.

Callers may group writes with ``begin()``/``commit()``; while a transaction is
open every call joins it. Outside a transaction each call runs in its own
short session and commits on return. Only one transaction may be open at a
time, so a single committer thread owns it for the duration of a batch.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from itertools import groupby
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, func, select

from sshauditor.core.errors import PersistenceError
from sshauditor.core.types import (
    BruteForceResult,
    BruteOutcome,
    Credential,
    DiscoveredHost,
    Host,
    HostChange,
    ScanRequest,
    Vulnerability,
    utcnow,
)
from sshauditor.db.models import (
    CredentialRecord,
    HostChangeRecord,
    HostCredentialRecord,
    HostRecord,
    VulnerabilityRecord,
)
from sshauditor.db.session import build_engine, init_db

logger = logging.getLogger(__name__)


def _to_host(record: HostRecord) -> Host:
    return Host(
        hostport=record.hostport,
        fingerprint=record.fingerprint or "",
        version=record.version or "",
        first_seen=record.first_seen,
        last_seen=record.last_seen,
    )


def _to_credential(record: CredentialRecord) -> Credential:
    return Credential(user=record.user, password=record.password, scan_interval=record.scan_interval)


def _group_requests(rows: Sequence[Tuple[HostCredentialRecord, CredentialRecord]]) -> List[ScanRequest]:
    requests: List[ScanRequest] = []
    for hostport, pairs in groupby(rows, key=lambda row: row[0].hostport):
        requests.append(ScanRequest(hostport=hostport, credentials=[_to_credential(cred) for _, cred in pairs]))
    return requests


class Store:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._session: Optional[Session] = None

    @classmethod
    def from_url(cls, database: str) -> "Store":
        try:
            engine = build_engine(database)
            init_db(engine)
        except SQLAlchemyError as exc:
            raise PersistenceError(str(exc), operation="open store") from exc
        return cls(engine)

    # transactions

    @property
    def in_transaction(self) -> bool:
        return self._session is not None

    def begin(self) -> None:
        if self._session is not None:
            raise PersistenceError("a transaction is already open", operation="begin")
        self._session = Session(self.engine)

    def commit(self) -> None:
        session = self._session
        if session is None:
            raise PersistenceError("no transaction is open", operation="commit")
        try:
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise PersistenceError(str(exc), operation="commit") from exc
        finally:
            session.close()
            self._session = None

    def rollback(self) -> None:
        session = self._session
        if session is None:
            return
        try:
            session.rollback()
        finally:
            session.close()
            self._session = None

    @contextmanager
    def transaction(self) -> Iterator["Store"]:
        self.begin()
        try:
            yield self
        except BaseException:
            self.rollback()
            raise
        self.commit()

    @contextmanager
    def _scope(self, operation: str) -> Iterator[Session]:
        if self._session is not None:
            try:
                yield self._session
                self._session.flush()
            except SQLAlchemyError as exc:
                raise PersistenceError(str(exc), operation=operation) from exc
            return
        session = Session(self.engine)
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise PersistenceError(str(exc), operation=operation) from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # hosts

    def get_known_hosts(self) -> Dict[str, Host]:
        with self._scope("get_known_hosts") as session:
            return {rec.hostport: _to_host(rec) for rec in session.exec(select(HostRecord)).all()}

    def get_active_hosts(self, days: int) -> List[Host]:
        cutoff = utcnow() - timedelta(days=days)
        with self._scope("get_active_hosts") as session:
            rows = session.exec(
                select(HostRecord).where(HostRecord.last_seen >= cutoff).order_by(HostRecord.hostport)
            ).all()
            return [_to_host(rec) for rec in rows]

    def add_or_update_host(self, host: DiscoveredHost, seen_at: Optional[datetime] = None) -> None:
        now = seen_at or utcnow()
        with self._scope("add_or_update_host") as session:
            record = session.get(HostRecord, host.hostport)
            if record is None:
                record = HostRecord(
                    hostport=host.hostport,
                    fingerprint=host.fingerprint,
                    version=host.version,
                    first_seen=now,
                    last_seen=now,
                )
            else:
                record.fingerprint = host.fingerprint
                record.version = host.version
                record.last_seen = now
            session.add(record)

    def add_host_changes(self, host: DiscoveredHost, previous: Host) -> int:
        """Record one change row per attribute that differs from ``previous``."""
        changes = [
            (kind, old, new)
            for kind, old, new in (
                ("fingerprint", previous.fingerprint, host.fingerprint),
                ("version", previous.version, host.version),
            )
            if old != new
        ]
        if not changes:
            return 0
        now = utcnow()
        with self._scope("add_host_changes") as session:
            for kind, old, new in changes:
                session.add(HostChangeRecord(hostport=host.hostport, kind=kind, old=old, new=new, time=now))
        return len(changes)

    def get_host_changes(self, hostport: Optional[str] = None) -> List[HostChange]:
        with self._scope("get_host_changes") as session:
            query = select(HostChangeRecord)
            if hostport:
                query = query.where(HostChangeRecord.hostport == hostport)
            rows = session.exec(query.order_by(HostChangeRecord.time, HostChangeRecord.id)).all()
            return [HostChange(hostport=r.hostport, kind=r.kind, old=r.old, new=r.new, time=r.time) for r in rows]

    def set_last_seen(self, hostport: str, seen_at: Optional[datetime] = None) -> None:
        with self._scope("set_last_seen") as session:
            record = session.get(HostRecord, hostport)
            if record is None:
                raise PersistenceError(f"unknown host {hostport}", operation="set_last_seen")
            record.last_seen = seen_at or utcnow()
            session.add(record)

    # credentials

    def add_credential(self, cred: Credential) -> bool:
        """Insert or update a credential. Returns True when it was newly added."""
        with self._scope("add_credential") as session:
            record = session.exec(
                select(CredentialRecord).where(
                    CredentialRecord.user == cred.user, CredentialRecord.password == cred.password
                )
            ).first()
            if record is not None:
                record.scan_interval = cred.scan_interval
                session.add(record)
                return False
            session.add(CredentialRecord(user=cred.user, password=cred.password, scan_interval=cred.scan_interval))
            return True

    def get_all_creds(self) -> List[Credential]:
        with self._scope("get_all_creds") as session:
            rows = session.exec(select(CredentialRecord).order_by(CredentialRecord.id)).all()
            return [_to_credential(rec) for rec in rows]

    def reset_creds(self) -> None:
        with self._scope("reset_creds") as session:
            for assoc in session.exec(select(HostCredentialRecord)).all():
                session.delete(assoc)
            for cred in session.exec(select(CredentialRecord)).all():
                session.delete(cred)

    def reset_interval(self) -> int:
        """Mark every association untested so the next scan retries it."""
        with self._scope("reset_interval") as session:
            rows = session.exec(select(HostCredentialRecord).where(HostCredentialRecord.last_tested.is_not(None))).all()
            for assoc in rows:
                assoc.last_tested = None
                session.add(assoc)
            return len(rows)

    # scan queues

    def init_host_creds(self, days: int) -> int:
        """Ensure an association exists for every active host and credential."""
        cutoff = utcnow() - timedelta(days=days)
        with self._scope("init_host_creds") as session:
            hostports = session.exec(select(HostRecord.hostport).where(HostRecord.last_seen >= cutoff)).all()
            cred_ids = session.exec(select(CredentialRecord.id)).all()
            existing = {
                (row.hostport, row.credential_id) for row in session.exec(select(HostCredentialRecord)).all()
            }
            added = 0
            for hostport in hostports:
                for cred_id in cred_ids:
                    if (hostport, cred_id) in existing:
                        continue
                    session.add(HostCredentialRecord(hostport=hostport, credential_id=cred_id))
                    added += 1
            return added

    def _queue_query(self, days: int):
        cutoff = utcnow() - timedelta(days=days)
        return (
            select(HostCredentialRecord, CredentialRecord)
            .join(CredentialRecord, CredentialRecord.id == HostCredentialRecord.credential_id)
            .join(HostRecord, HostRecord.hostport == HostCredentialRecord.hostport)
            .where(HostRecord.last_seen >= cutoff)
        )

    def get_scan_queue_size(self, days: int) -> int:
        cutoff = utcnow() - timedelta(days=days)
        with self._scope("get_scan_queue_size") as session:
            return session.exec(
                select(func.count())
                .select_from(HostCredentialRecord)
                .join(HostRecord, HostRecord.hostport == HostCredentialRecord.hostport)
                .where(HostRecord.last_seen >= cutoff, HostCredentialRecord.last_tested.is_(None))
            ).one()

    def get_scan_queue(self, days: int) -> List[ScanRequest]:
        with self._scope("get_scan_queue") as session:
            rows = session.exec(
                self._queue_query(days)
                .where(HostCredentialRecord.last_tested.is_(None))
                .order_by(HostCredentialRecord.hostport, CredentialRecord.id)
            ).all()
            return _group_requests(rows)

    def get_rescan_queue(self, days: int, now: Optional[datetime] = None) -> List[ScanRequest]:
        now = now or utcnow()
        with self._scope("get_rescan_queue") as session:
            rows = session.exec(
                self._queue_query(days)
                .where(HostCredentialRecord.last_success.is_not(None), HostCredentialRecord.result != "")
                .order_by(HostCredentialRecord.hostport, CredentialRecord.id)
            ).all()
            due = [
                (assoc, cred)
                for assoc, cred in rows
                if assoc.last_success <= now - timedelta(days=cred.scan_interval)
            ]
            return _group_requests(due)

    # results

    def update_brute_result(self, br: BruteForceResult) -> None:
        with self._scope("update_brute_result") as session:
            cred = session.exec(
                select(CredentialRecord).where(
                    CredentialRecord.user == br.credential.user,
                    CredentialRecord.password == br.credential.password,
                )
            ).first()
            if cred is None or cred.id is None:
                logger.warning("discarding result for unknown credential on %s", br.hostport)
                return
            assoc = session.get(HostCredentialRecord, (br.hostport, cred.id))
            if assoc is None:
                assoc = HostCredentialRecord(hostport=br.hostport, credential_id=cred.id)
            vuln = session.get(VulnerabilityRecord, (br.hostport, cred.id))

            if br.outcome is BruteOutcome.SUCCESS:
                assoc.last_tested = br.time
                assoc.last_success = br.time
                assoc.result = br.result
                assoc.last_error = None
                if vuln is None:
                    vuln = VulnerabilityRecord(
                        hostport=br.hostport,
                        credential_id=cred.id,
                        user=cred.user,
                        password=cred.password,
                        first_found=br.time,
                    )
                vuln.result = br.result
                vuln.last_confirmed = br.time
                session.add(vuln)
            elif br.outcome is BruteOutcome.FAILURE:
                assoc.last_tested = br.time
                assoc.result = ""
                assoc.last_error = None
                if vuln is not None:
                    session.delete(vuln)
            else:
                # no verdict, so the pair stays queued for the next run
                assoc.last_error = br.error or "unknown error"
            session.add(assoc)

    def get_vulnerabilities(self) -> List[Vulnerability]:
        with self._scope("get_vulnerabilities") as session:
            rows = session.exec(
                select(VulnerabilityRecord, HostRecord)
                .join(HostRecord, HostRecord.hostport == VulnerabilityRecord.hostport, isouter=True)
                .order_by(VulnerabilityRecord.hostport, VulnerabilityRecord.user)
            ).all()
            return [
                Vulnerability(
                    hostport=vuln.hostport,
                    user=vuln.user,
                    password=vuln.password,
                    result=vuln.result,
                    first_found=vuln.first_found,
                    last_confirmed=vuln.last_confirmed,
                    version=host.version if host is not None else "",
                )
                for vuln, host in rows
            ]
