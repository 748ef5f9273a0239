"""
Credential import formats.

TSV, one credential per line::

    root	root	7
    test	test

JSON lines, one object per line::

    {"User":"root","Password":"root","ScanInterval":7}
    {"User":"test","Password":"test"}

A missing, empty or zero interval falls back to the caller's default.
Malformed records are logged and skipped.
"""

from __future__ import annotations

import csv
import json
import logging
from typing import Iterable, Iterator, Tuple

from sshauditor.core.observability import log_event
from sshauditor.core.types import Credential
from sshauditor.db.store import Store

logger = logging.getLogger(__name__)


def parse_tsv(lines: Iterable[str], default_interval: int) -> Iterator[Credential]:
    for record in csv.reader(lines, delimiter="\t", quoting=csv.QUOTE_NONE):
        if not record:
            continue
        if len(record) not in (2, 3):
            logger.error("Invalid record %s", record)
            continue
        interval = default_interval
        if len(record) == 3 and record[2].strip():
            try:
                interval = int(record[2])
            except ValueError as exc:
                logger.error("Invalid record %s: %s", record, exc)
                continue
        yield Credential(user=record[0], password=record[1], scan_interval=interval or default_interval)


def parse_json_lines(lines: Iterable[str], default_interval: int) -> Iterator[Credential]:
    for line in lines:
        line = line.strip()
        if not line:
            continue
        try:
            row = json.loads(line)
            user = row["User"]
            password = row["Password"]
            interval = int(row.get("ScanInterval") or 0)
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.error("Invalid record %s: %s", line, exc)
            continue
        yield Credential(user=str(user), password=str(password), scan_interval=interval or default_interval)


def import_credentials(store: Store, creds: Iterable[Credential]) -> Tuple[int, int]:
    """Upsert credentials in one transaction. Returns (added, updated)."""
    added = updated = 0
    with store.transaction():
        for cred in creds:
            was_added = store.add_credential(cred)
            log_event(
                logger,
                "added credential" if was_added else "updated credential",
                user=cred.user,
                interval=cred.scan_interval,
            )
            if was_added:
                added += 1
            else:
                updated += 1
    return added, updated
