"""
Log-search backends used to confirm that log-check logins reached the
central log system.

Every backend implements ``LogSearcher.get_ips()``. The log-check probe logs
in as ``logcheck-<address>``, so the searcher only has to find those user
names in failed-authentication events and pull the address back out.
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Optional, Set

import httpx

from sshauditor.config import settings
from sshauditor.core.errors import ConfigurationError, ExternalServiceError
from sshauditor.core.queues import LOGCHECK_USER_PREFIX

logger = logging.getLogger(__name__)

_LOGCHECK_RE = re.compile(re.escape(LOGCHECK_USER_PREFIX) + r"(?P<ip>[0-9A-Fa-f:][0-9A-Fa-f.:]*)")


def extract_logcheck_ip(text: str) -> Optional[str]:
    match = _LOGCHECK_RE.search(text or "")
    if not match:
        return None
    return match.group("ip").rstrip(".")


class LogSearcher(ABC):
    name: str = "base"

    @abstractmethod
    def get_ips(self) -> Set[str]:
        """Addresses observed in log-check events. Raises ExternalServiceError on failure."""


class SplunkLogSearcher(LogSearcher):
    name = "splunk"

    search_template = (
        'search "{prefix}" earliest={earliest} '
        '| rex field=_raw "{prefix}(?<logcheck_ip>[0-9A-Fa-f.:]+)" '
        "| stats count by logcheck_ip"
    )

    def __init__(
        self,
        base_url: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        token: Optional[str] = None,
        earliest: str = "-14d",
        timeout: float = 60.0,
        verify: bool = True,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.username = username
        self.password = password
        self.token = token
        self.earliest = earliest
        self.timeout = timeout
        self.verify = verify
        self._client = client

    def _build_client(self) -> httpx.Client:
        headers = {"User-Agent": "ssh-auditor/0.1"}
        auth = None
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        elif self.username:
            auth = httpx.BasicAuth(self.username, self.password or "")
        return httpx.Client(verify=self.verify, timeout=self.timeout, headers=headers, auth=auth)

    def get_ips(self) -> Set[str]:
        url = f"{self.base_url}/services/search/jobs/export"
        data = {
            "search": self.search_template.format(prefix=LOGCHECK_USER_PREFIX, earliest=self.earliest),
            "output_mode": "json",
        }
        client = self._client or self._build_client()
        try:
            resp = client.post(url, data=data)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ExternalServiceError(
                f"splunk search returned HTTP {exc.response.status_code}", operation="get_ips", backend=self.name
            ) from exc
        except httpx.HTTPError as exc:
            raise ExternalServiceError(f"splunk search failed: {exc}", operation="get_ips", backend=self.name) from exc
        finally:
            if self._client is None:
                client.close()
        return self._parse_export(resp.text)

    def _parse_export(self, body: str) -> Set[str]:
        ips: Set[str] = set()
        for line in body.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                row = json.loads(line)
            except json.JSONDecodeError as exc:
                raise ExternalServiceError(
                    f"unparsable splunk export line: {line[:80]!r}", operation="get_ips", backend=self.name
                ) from exc
            for message in row.get("messages") or []:
                if str(message.get("type", "")).upper() in ("FATAL", "ERROR"):
                    raise ExternalServiceError(
                        f"splunk search error: {message.get('text')}", operation="get_ips", backend=self.name
                    )
            result = row.get("result") or {}
            ip = result.get("logcheck_ip") or extract_logcheck_ip(result.get("_raw", ""))
            if ip:
                ips.add(ip)
        logger.debug("splunk returned %d logcheck addresses", len(ips))
        return ips


def build_log_searcher(splunk_url: Optional[str] = None) -> LogSearcher:
    """Pick the log-search backend from explicit configuration."""
    if splunk_url:
        return SplunkLogSearcher(
            splunk_url,
            username=settings.splunk_username,
            password=settings.splunk_password,
            token=settings.splunk_token,
            earliest=settings.splunk_search_window,
            timeout=settings.splunk_timeout_seconds,
            verify=settings.splunk_verify_tls,
        )
    raise ConfigurationError("only --splunk is supported for now", operation="build_log_searcher")
