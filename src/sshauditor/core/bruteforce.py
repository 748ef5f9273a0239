"""
Password authentication attempts built on Paramiko.

Each attempt uses its own SSHClient, authenticates once and disconnects; no
channel or command is ever opened. Outcomes are classified rather than raised
so that a slow or broken host cannot abort the run.
"""

from __future__ import annotations

import logging
import socket
from threading import Event
from typing import Callable, Iterable, Iterator, List, Optional

import paramiko
from paramiko.ssh_exception import AuthenticationException, NoValidConnectionsError, SSHException

from sshauditor.core.pool import run_pool
from sshauditor.core.targets import split_host_port
from sshauditor.core.types import BruteForceResult, BruteOutcome, Credential, ScanRequest

logger = logging.getLogger(__name__)

SUCCESS_RESULT = "authenticated"


class BruteForcer:
    """
    Attempt every credential of each ScanRequest against its host.

    Typical usage:
        forcer = BruteForcer(workers=256, timeout=4.0)
        for result in forcer.run(requests):
            ...
    """

    def __init__(
        self,
        workers: int,
        timeout: float,
        exhaustive: bool = False,
        client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
    ) -> None:
        """
        Args:
            workers: Number of hosts attempted concurrently.
            timeout: Connect, banner and auth timeout in seconds for each attempt.
            exhaustive: When False, stop working a request after its first success.
            client_factory: Builds the SSH client for each attempt.
        """
        self.workers = workers
        self.timeout = timeout
        self.exhaustive = exhaustive
        self.client_factory = client_factory

    def attempt(self, hostport: str, cred: Credential) -> BruteForceResult:
        def _result(outcome: BruteOutcome, result: str = "", error: str | None = None) -> BruteForceResult:
            return BruteForceResult(hostport=hostport, credential=cred, outcome=outcome, result=result, error=error)

        try:
            host, port = split_host_port(hostport)
        except ValueError as exc:
            return _result(BruteOutcome.ERROR, error=str(exc))

        client = self.client_factory()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=host,
                port=port,
                username=cred.user,
                password=cred.password,
                timeout=self.timeout,
                banner_timeout=self.timeout,
                auth_timeout=self.timeout,
                allow_agent=False,
                look_for_keys=False,
            )
            transport = client.get_transport()
            banner = transport.get_banner() if transport is not None else None
            text = banner.decode("utf-8", errors="replace").strip() if banner else ""
            return _result(BruteOutcome.SUCCESS, result=text or SUCCESS_RESULT)
        except AuthenticationException:
            return _result(BruteOutcome.FAILURE)
        except (socket.timeout, TimeoutError) as exc:
            return _result(BruteOutcome.ERROR, error=f"Connection timed out: {exc}")
        except NoValidConnectionsError as exc:
            return _result(BruteOutcome.ERROR, error=f"Unable to connect to {hostport} - {exc}")
        except SSHException as exc:
            return _result(BruteOutcome.ERROR, error=f"SSH negotiation failed: {exc}")
        except (OSError, EOFError) as exc:
            return _result(BruteOutcome.ERROR, error=f"Connection failed: {exc!r}")
        except Exception as exc:
            logger.error("Unhandled error while authenticating to %s: %s", hostport, exc)
            return _result(BruteOutcome.ERROR, error=f"Unhandled error: {exc!r}")
        finally:
            client.close()

    def scan_request(self, request: ScanRequest) -> List[BruteForceResult]:
        results: List[BruteForceResult] = []
        for cred in request.credentials:
            result = self.attempt(request.hostport, cred)
            results.append(result)
            if result.outcome is BruteOutcome.SUCCESS and not self.exhaustive:
                break
        return results

    def run(self, requests: Iterable[ScanRequest], stop: Optional[Event] = None) -> Iterator[BruteForceResult]:
        for results in run_pool(self.scan_request, requests, workers=self.workers, name="brute", stop=stop):
            yield from results
