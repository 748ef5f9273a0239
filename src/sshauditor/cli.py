from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Callable, List, Optional, Sequence

from sshauditor.config import settings
from sshauditor.core.auditor import SSHAuditor
from sshauditor.core.credentials import import_credentials, parse_json_lines, parse_tsv
from sshauditor.core.errors import AuditorError
from sshauditor.core.logsearch import build_log_searcher
from sshauditor.core.observability import configure_logging, log_event
from sshauditor.core.types import Credential, ScanConfiguration
from sshauditor.db.store import Store

logger = logging.getLogger("sshauditor")


def _csv_ints(value: str) -> List[int]:
    try:
        return [int(part) for part in value.split(",") if part.strip()]
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid port list {value!r}") from exc


def _csv_strings(value: str) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


def _add_timeout(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--timeout",
        type=int,
        default=settings.timeout_ms,
        help=f"SSH connection timeout in milliseconds (default: {settings.timeout_ms})",
    )


def _add_scan_interval(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--scan-interval",
        type=int,
        default=settings.scan_interval_days,
        help=f"How often to re-scan for this credential, in days (default: {settings.scan_interval_days})",
    )


def _add_credential_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("user")
    parser.add_argument("password")
    _add_scan_interval(parser)
    parser.set_defaults(handler=cmd_credential_add)


def _scan_config(args: argparse.Namespace, **extra: Any) -> ScanConfiguration:
    return ScanConfiguration(
        concurrency=args.concurrency,
        timeout=args.timeout / 1000.0,
        exhaustive=settings.exhaustive_brute,
        **extra,
    )


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


# command handlers


def cmd_discover(args: argparse.Namespace, store: Store) -> int:
    include = list(args.include)
    if include[:1] == ["fromfile"]:
        include = include[1:] + [line.strip() for line in sys.stdin if line.strip() and not line.startswith("#")]
    if not include:
        args.parser.print_usage(sys.stderr)
        return 2
    cfg = _scan_config(args, include=include, exclude=args.exclude or [], ports=args.ports or [22])
    result = SSHAuditor.from_settings(store, settings).discover(cfg)
    _print_json(
        {
            "total": result.total,
            "new": result.new,
            "updated": result.updated,
            "probed": result.probed,
            "banner_failed": result.banner_failed,
            "fingerprint_failed": result.fingerprint_failed,
        }
    )
    return 0


def _brute_command(method: str) -> Callable[[argparse.Namespace, Store], int]:
    def _run(args: argparse.Namespace, store: Store) -> int:
        auditor = SSHAuditor.from_settings(store, settings)
        counts = getattr(auditor, method)(_scan_config(args))
        _print_json(
            {"total": counts.total, "success": counts.success, "failure": counts.failure, "error": counts.error}
        )
        return 0

    return _run


def cmd_scan(args: argparse.Namespace, store: Store) -> int:
    if args.action == "reset":
        reset = store.reset_interval()
        log_event(logger, "reset scan intervals", associations=reset)
        return 0
    return _brute_command("scan")(args, store)


def cmd_logcheck_report(args: argparse.Namespace, store: Store) -> int:
    searcher = build_log_searcher(splunk_url=args.splunk)
    for entry in SSHAuditor.from_settings(store, settings).logcheck_report(searcher):
        print(f"{entry.hostport} {str(entry.found).lower()}")
    return 0


def cmd_credential_add(args: argparse.Namespace, store: Store) -> int:
    cred = Credential(user=args.user, password=args.password, scan_interval=args.scan_interval)
    added = store.add_credential(cred)
    log_event(logger, "added credential" if added else "updated credential", user=cred.user, interval=cred.scan_interval)
    return 0


def cmd_credential_list(args: argparse.Namespace, store: Store) -> int:
    for cred in store.get_all_creds():
        print(json.dumps(cred.to_dict()))
    return 0


def cmd_credential_reset(args: argparse.Namespace, store: Store) -> int:
    store.reset_creds()
    return 0


def cmd_credential_import(args: argparse.Namespace, store: Store) -> int:
    parser = parse_tsv if args.format == "tsv" else parse_json_lines
    added, updated = import_credentials(store, parser(sys.stdin, args.scan_interval))
    log_event(logger, "imported credentials", added=added, updated=updated)
    return 0


def cmd_dupes(args: argparse.Namespace, store: Store) -> int:
    dupes = SSHAuditor.from_settings(store, settings).dupes()
    _print_json({fp: [h.to_dict() for h in hosts] for fp, hosts in dupes.items()})
    return 0


def cmd_vuln(args: argparse.Namespace, store: Store) -> int:
    _print_json([v.to_dict() for v in SSHAuditor.from_settings(store, settings).vulnerabilities()])
    return 0


def cmd_report(args: argparse.Namespace, store: Store) -> int:
    _print_json(SSHAuditor.from_settings(store, settings).get_report().to_dict())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ssh-auditor", description="ssh-auditor tests ssh server password security")
    parser.add_argument(
        "--concurrency",
        type=int,
        default=settings.concurrency,
        help=f"Number of concurrent hosts to scan at once (default: {settings.concurrency})",
    )
    parser.add_argument("--db", default=settings.database_url, help="Path to database file or SQLAlchemy URL")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    commands = parser.add_subparsers(dest="command", metavar="command")
    commands.required = True

    discover = commands.add_parser(
        "discover",
        aliases=["d"],
        help="discover new hosts",
        description="discover new hosts; use 'discover fromfile' to read targets from stdin",
        epilog="example: discover -p 22 -p 2222 192.168.1.0/24 10.1.1.0/24 --exclude 192.168.1.100/32",
    )
    discover.add_argument("include", nargs="*", help="hosts, addresses or CIDR networks")
    discover.add_argument(
        "-p", "--ports", type=_csv_ints, action="extend", help="ports to check during initial discovery (default: 22)"
    )
    discover.add_argument("-x", "--exclude", type=_csv_strings, action="extend", help="subnets to exclude from discovery")
    _add_timeout(discover)
    discover.set_defaults(handler=cmd_discover, parser=discover)

    scan = commands.add_parser("scan", help="Scan hosts using new or outdated credentials")
    scan.add_argument("action", nargs="?", choices=["reset"], help="reset: mark every pair untested")
    _add_timeout(scan)
    scan.set_defaults(handler=cmd_scan)

    rescan = commands.add_parser("rescan", help="Rescan hosts with credentials that have previously worked")
    _add_timeout(rescan)
    rescan.set_defaults(handler=_brute_command("rescan"))

    logcheck = commands.add_parser(
        "logcheck", aliases=["lc"], help="trigger and report on failed ssh authentication attempts"
    )
    logcheck_commands = logcheck.add_subparsers(dest="logcheck_command", metavar="command")
    logcheck_commands.required = True
    logcheck_run = logcheck_commands.add_parser("run", help="trigger failed ssh authentication attempts")
    _add_timeout(logcheck_run)
    logcheck_run.set_defaults(handler=_brute_command("logcheck"))
    logcheck_report = logcheck_commands.add_parser("report", help="compare syslog data to the store")
    logcheck_report.add_argument("--splunk", default="", help="base url to splunk API (https://host:port)")
    _add_timeout(logcheck_report)
    logcheck_report.set_defaults(handler=cmd_logcheck_report)

    credential = commands.add_parser("credential", aliases=["cred", "c"], help="manage credentials")
    cred_commands = credential.add_subparsers(dest="credential_command", metavar="command")
    cred_commands.required = True
    _add_credential_arguments(
        cred_commands.add_parser("add", help="add a new credential pair", epilog="example: add root root123")
    )
    cred_commands.add_parser("list", aliases=["l"], help="list credentials").set_defaults(handler=cmd_credential_list)
    cred_commands.add_parser("reset", help="reset credential list").set_defaults(handler=cmd_credential_reset)
    cred_import = cred_commands.add_parser("import", help="load credentials from TSV or JSON on stdin")
    cred_import.add_argument("format", choices=["tsv", "json"])
    _add_scan_interval(cred_import)
    cred_import.set_defaults(handler=cmd_credential_import)

    _add_credential_arguments(
        commands.add_parser(
            "addcredential",
            aliases=["ac"],
            help="add a new credential pair",
            epilog="example: addcredential root root123",
        )
    )

    commands.add_parser("dupes", help="list host keys shared by several hosts").set_defaults(handler=cmd_dupes)
    commands.add_parser("vuln", help="list hosts with working credentials").set_defaults(handler=cmd_vuln)
    commands.add_parser("report", help="full audit report as JSON").set_defaults(handler=cmd_report)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging("DEBUG" if args.debug else None, force=True)
    try:
        store = Store.from_url(args.db)
        return args.handler(args, store)
    except AuditorError as exc:
        logger.error(str(exc))
        return 1


if __name__ == "__main__":
    sys.exit(main())
