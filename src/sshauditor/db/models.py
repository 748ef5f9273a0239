from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, DateTime, Text, TypeDecorator, UniqueConstraint
from sqlmodel import Field, SQLModel

from sshauditor.core.types import utcnow


class AwareDateTime(TypeDecorator):
    """Timezone-aware UTC datetime stored as naive UTC.

    SQLite has no timezone support, so values are normalized to UTC on the way
    in and tagged as UTC on the way out.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def _timestamp(name: str, nullable: bool = True, index: bool = False) -> Column:
    return Column(name, AwareDateTime(), nullable=nullable, index=index)


class HostRecord(SQLModel, table=True):
    __tablename__ = "host"

    hostport: str = Field(primary_key=True, max_length=300)
    fingerprint: str = Field(default="", max_length=255, index=True)
    version: str = Field(default="", max_length=255)
    first_seen: datetime = Field(default_factory=utcnow, sa_column=_timestamp("first_seen", nullable=False))
    last_seen: datetime = Field(default_factory=utcnow, sa_column=_timestamp("last_seen", nullable=False, index=True))


class HostChangeRecord(SQLModel, table=True):
    __tablename__ = "host_change"

    id: Optional[int] = Field(default=None, primary_key=True)
    hostport: str = Field(max_length=300, index=True)
    kind: str = Field(max_length=32, description="fingerprint or version")
    old: str = Field(default="", max_length=255)
    new: str = Field(default="", max_length=255)
    time: datetime = Field(default_factory=utcnow, sa_column=_timestamp("time", nullable=False))


class CredentialRecord(SQLModel, table=True):
    __tablename__ = "credential"
    __table_args__ = (UniqueConstraint("user", "password", name="uq_credential_user_password"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user: str = Field(max_length=255)
    password: str = Field(max_length=255)
    scan_interval: int = Field(default=14, description="Days between re-verification of a working pair")


class HostCredentialRecord(SQLModel, table=True):
    """Association of one host with one credential and its latest verdict."""

    __tablename__ = "host_credential"

    hostport: str = Field(foreign_key="host.hostport", primary_key=True, max_length=300)
    credential_id: int = Field(foreign_key="credential.id", primary_key=True)
    last_tested: Optional[datetime] = Field(default=None, sa_column=_timestamp("last_tested", index=True))
    last_success: Optional[datetime] = Field(default=None, sa_column=_timestamp("last_success"))
    result: str = Field(default="", sa_column=Column("result", Text, nullable=False, default=""))
    last_error: Optional[str] = Field(default=None, sa_column=Column("last_error", Text))


class VulnerabilityRecord(SQLModel, table=True):
    __tablename__ = "vulnerability"

    hostport: str = Field(primary_key=True, max_length=300)
    credential_id: int = Field(primary_key=True)
    user: str = Field(max_length=255)
    password: str = Field(max_length=255)
    result: str = Field(default="", sa_column=Column("result", Text, nullable=False, default=""))
    first_found: datetime = Field(default_factory=utcnow, sa_column=_timestamp("first_found", nullable=False))
    last_confirmed: datetime = Field(default_factory=utcnow, sa_column=_timestamp("last_confirmed", nullable=False))
