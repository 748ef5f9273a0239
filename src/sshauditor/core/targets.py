"""
Target expansion for discovery runs.

Include entries may be hostnames, bare addresses or CIDR networks; exclude
entries are networks or bare addresses. The expanded hosts are crossed with the
requested ports, ports first, so consecutive connections to the same host are
spread across the whole run.
"""

from __future__ import annotations

import ipaddress
import logging
import re
from typing import Iterable, Iterator, List, Sequence, Tuple, Union

from sshauditor.core.errors import ConfigurationError
from sshauditor.core.observability import log_event
from sshauditor.core.types import ScanConfiguration

logger = logging.getLogger(__name__)

_HOSTNAME_RE = re.compile(r"^(?=.{1,253}$)([A-Za-z0-9_]([A-Za-z0-9_-]{0,61}[A-Za-z0-9])?)(\.[A-Za-z0-9_]([A-Za-z0-9_-]{0,61}[A-Za-z0-9])?)*\.?$")

Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


def join_host_port(host: str, port: Union[int, str]) -> str:
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def split_host_port(hostport: str) -> Tuple[str, int]:
    if hostport.startswith("["):
        host, sep, rest = hostport[1:].partition("]")
        if not sep or not rest.startswith(":"):
            raise ValueError(f"invalid hostport {hostport!r}")
        port = rest[1:]
    else:
        host, sep, port = hostport.rpartition(":")
        if not sep or not host or ":" in host:
            raise ValueError(f"invalid hostport {hostport!r}")
    if not port.isdigit():
        raise ValueError(f"invalid port in hostport {hostport!r}")
    return host, int(port)


def _parse_network(entry: str) -> Network:
    try:
        return ipaddress.ip_network(entry.strip(), strict=False)
    except ValueError as exc:
        raise ConfigurationError(f"invalid network {entry!r}: {exc}", operation="enumerate_hosts") from exc


def _expand_include(entry: str) -> List[str]:
    entry = entry.strip()
    if not entry:
        return []
    if "/" in entry:
        network = _parse_network(entry)
        return [str(ip) for ip in (list(network.hosts()) or [network.network_address])]
    try:
        return [str(ipaddress.ip_address(entry))]
    except ValueError:
        pass
    if _HOSTNAME_RE.match(entry) and not entry.replace(".", "").isdigit():
        return [entry.lower().rstrip(".")]
    raise ConfigurationError(f"invalid host or network {entry!r}", operation="enumerate_hosts")


def _excluded(host: str, networks: Sequence[Network]) -> bool:
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        # hostnames are never resolved, so no exclude range can match them
        return False
    return any(address.version == net.version and address in net for net in networks)


def enumerate_hosts(include: Iterable[str], exclude: Iterable[str]) -> List[str]:
    """Expand include specs, drop excluded addresses, and de-duplicate preserving order."""
    networks = [_parse_network(entry) for entry in exclude if entry.strip()]
    seen = set()
    hosts: List[str] = []
    for entry in include:
        for host in _expand_include(entry):
            if host in seen or _excluded(host, networks):
                continue
            seen.add(host)
            hosts.append(host)
    return hosts


def expand_scan_configuration(cfg: ScanConfiguration) -> Iterator[str]:
    """Return every hostport matching the configuration.

    Host parsing happens eagerly so a bad entry raises ConfigurationError
    before anything is probed.
    """
    hosts = enumerate_hosts(cfg.include, cfg.exclude)
    ports = list(dict.fromkeys(cfg.ports))
    for port in ports:
        if not 0 < port < 65536:
            raise ConfigurationError(f"invalid port {port}", operation="expand_scan_configuration")
    log_event(
        logger,
        "discovering hosts",
        include=",".join(cfg.include),
        exclude=",".join(cfg.exclude),
        total=len(hosts),
        ports=",".join(str(p) for p in ports),
    )

    def _generate() -> Iterator[str]:
        for port in ports:
            for host in hosts:
                yield join_host_port(host, port)

    return _generate()
