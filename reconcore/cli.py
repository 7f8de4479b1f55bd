#!/usr/bin/env python3
"""
ReconCore - CLI Module
Copyright (C) 2026  Dorin Badea
GPLv3 License

Command-line interface and argument parsing.
"""

import argparse
import json
import sys
from typing import Dict, List, Optional, Sequence

from rich.console import Console
from rich.markup import escape
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from reconcore.core.config_context import ConfigurationContext
from reconcore.core.errors import ScanError
from reconcore.core.models import Target, normalize_protocol
from reconcore.core.session import ScanSession
from reconcore.utils.config import apply_env_overrides, get_scan_defaults, update_scan_defaults
from reconcore.utils.constants import MAX_WORKERS, MIN_WORKERS, PROTO_TCP, VERSION
from reconcore.utils.logging_setup import setup_logging

EXIT_OK = 0
EXIT_USAGE = 1
EXIT_SCAN_ERROR = 2

BANNER_PREVIEW_CHARS = 60


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # type: ignore[override]
        self.print_usage(sys.stderr)
        self.exit(EXIT_USAGE, f"{self.prog}: error: {message}\n")


def parse_target(text: str) -> Target:
    """
    Parse one target specification.

    Accepted forms: host:port/proto, [v6addr]:port/proto, host/icmp,
    v6addr/icmpv6. The protocol defaults to tcp.

    Raises:
        ValueError: malformed specification.
    """
    spec = (text or "").strip()
    if not spec:
        raise ValueError("empty target")
    proto = PROTO_TCP
    if "/" in spec:
        spec, proto_text = spec.rsplit("/", 1)
        proto = normalize_protocol(proto_text)

    target = Target(spec, 0, proto)
    if target.is_icmp:
        target.host = spec[1:-1] if spec.startswith("[") and spec.endswith("]") else spec
        if not target.host:
            raise ValueError(f"missing host in {text!r}")
        return target

    if spec.startswith("["):
        end = spec.find("]")
        if end < 0 or not spec[end + 1 :].startswith(":"):
            raise ValueError(f"expected [address]:port in {text!r}")
        host, port_text = spec[1:end], spec[end + 2 :]
    elif spec.count(":") == 1:
        host, port_text = spec.split(":", 1)
    else:
        raise ValueError(f"missing port in {text!r}")
    if not host or not port_text.isdigit():
        raise ValueError(f"invalid host or port in {text!r}")
    return Target(host, int(port_text), proto)


def _read_target_file(path: str) -> List[str]:
    with open(path, "r", encoding="utf-8") as f:
        return [line.strip() for line in f if line.strip() and not line.lstrip().startswith("#")]


def parse_arguments(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = _ArgumentParser(
        prog="reconcore",
        description=f"ReconCore v{VERSION} - Multi-protocol liveness and banner scanner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  reconcore 192.168.1.10:22/tcp 192.168.1.10:53/udp
  sudo reconcore 192.168.1.1/icmp [fe80::1%eth0]:22/tcp
  reconcore -f targets.txt --external --json
""",
    )
    parser.add_argument("targets", nargs="*", metavar="TARGET", help="host:port/proto or host/icmp")
    parser.add_argument(
        "--target", "-t", dest="extra_targets", action="append", default=[], metavar="TARGET",
        help="Additional target (repeatable)",
    )
    parser.add_argument("--file", "-f", metavar="PATH", help="Read targets from a file, one per line")
    parser.add_argument(
        "--external", action="store_true", help="Delegate the scan to nmap instead of the native engine"
    )
    parser.add_argument("--workers", "-j", type=int, metavar="N", help="Concurrent probes")
    parser.add_argument("--timeout", type=float, metavar="S", help="Per-probe timeout in seconds")
    parser.add_argument("--banner-timeout", type=float, metavar="S", help="Banner read timeout in seconds")
    parser.add_argument("--payload-file", metavar="PATH", help="Extra UDP payloads (nmap-payloads format)")
    parser.add_argument("--no-nudge", action="store_true", help="Never send requests to silent TCP services")
    parser.add_argument("--dry-run", action="store_true", help="Print external commands without running them")
    parser.add_argument(
        "--save-defaults",
        action="store_true",
        help="Save the scan flags given here as persistent defaults (~/.reconcore/config.json)",
    )
    parser.add_argument("--json", action="store_true", help="Print results as JSON")
    parser.add_argument("--log-dir", metavar="PATH", help="Directory for rotating log files")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Increase console verbosity")
    parser.add_argument("--version", action="version", version=f"ReconCore v{VERSION}")

    args = parser.parse_args(argv)
    if args.workers is not None and not MIN_WORKERS <= args.workers <= MAX_WORKERS:
        parser.error(f"--workers must be between {MIN_WORKERS} and {MAX_WORKERS}")
    for name in ("timeout", "banner_timeout"):
        value = getattr(args, name)
        if value is not None and value <= 0:
            parser.error(f"--{name.replace('_', '-')} must be positive")

    specs = list(args.targets) + list(args.extra_targets)
    if args.file:
        try:
            specs += _read_target_file(args.file)
        except OSError as exc:
            parser.error(f"cannot read {args.file}: {exc}")
    if not specs:
        parser.error("no targets given")
    try:
        args.parsed_targets = [parse_target(s) for s in specs]
    except (ValueError, ScanError) as exc:
        parser.error(str(exc))
    return args


def cli_scan_settings(args: argparse.Namespace) -> Dict[str, object]:
    """Scan settings explicitly given as flags."""
    settings: Dict[str, object] = {}
    if args.workers is not None:
        settings["workers"] = args.workers
    if args.timeout is not None:
        settings["connect_timeout"] = args.timeout
        settings["udp_timeout"] = args.timeout
        settings["icmp_timeout"] = args.timeout
    if args.banner_timeout is not None:
        settings["banner_timeout"] = args.banner_timeout
    if args.payload_file:
        settings["payload_file"] = args.payload_file
    if args.no_nudge:
        settings["banner_nudge"] = False
    return settings


def build_config(args: argparse.Namespace) -> ConfigurationContext:
    """Persisted defaults, then RECONCORE_* overrides, then CLI flags."""
    settings: Dict[str, object] = dict(get_scan_defaults())
    apply_env_overrides(settings)
    settings.update(cli_scan_settings(args))
    if args.dry_run:
        settings["dry_run"] = True
    return ConfigurationContext(settings)


def _banner_preview(target: Target) -> str:
    text = target.banner.decode("utf-8", errors="replace")
    first = text.strip().splitlines()[0] if text.strip() else ""
    first = "".join(ch if ch.isprintable() else "." for ch in first)
    if len(first) > BANNER_PREVIEW_CHARS:
        first = first[: BANNER_PREVIEW_CHARS - 3] + "..."
    return first


def render_table(targets: Sequence[Target], console: Console) -> None:
    table = Table(title="ReconCore results")
    table.add_column("Target")
    table.add_column("Alive", justify="center")
    table.add_column("Reason")
    table.add_column("Bytes", justify="right")
    table.add_column("Banner", overflow="fold")
    for t in targets:
        alive = "[green]yes[/green]" if t.alive else "[red]no[/red]"
        table.add_row(
            escape(t.label()), alive, t.reason, str(t.banner_length), escape(_banner_preview(t))
        )
    console.print(table)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point for ReconCore CLI."""
    args = parse_arguments(argv)
    targets: List[Target] = args.parsed_targets

    ui_state = {"active": False}
    logger = setup_logging(args.verbose, args.log_dir, ui_active=lambda: ui_state["active"])
    try:
        config = build_config(args)
        config.validate()
    except ScanError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_USAGE

    err_console = Console(file=sys.stderr)
    if args.save_defaults:
        # Best-effort; a failed save never blocks the scan.
        if update_scan_defaults(**cli_scan_settings(args)):
            err_console.print("[green]Defaults saved[/green]")
        else:
            err_console.print("[yellow]Could not save defaults[/yellow]")

    show_progress = not args.json and err_console.is_terminal
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.completed}/{task.total}"),
        TimeElapsedColumn(),
        console=err_console,
        disable=not show_progress,
        transient=True,
    ) as progress:
        tasks: Dict[str, int] = {}

        def progress_cb(completed: int, total: int, desc: str) -> None:
            if desc not in tasks:
                tasks[desc] = progress.add_task(f"[cyan]{desc}", total=total)
            progress.update(tasks[desc], completed=completed, total=total)

        ui_state["active"] = show_progress
        try:
            with ScanSession(config, progress_callback=progress_cb) as session:
                session.scan(targets, prefer_external=args.external)
        finally:
            ui_state["active"] = False

    if args.json:
        print(json.dumps([t.to_dict() for t in targets], indent=2))
    else:
        render_table(targets, Console())

    if session.errors:
        for protocol, exc in session.errors:
            print(f"Error ({protocol}): {exc}", file=sys.stderr)
        logger.info("Run finished with %d failed group(s)", len(session.errors))
        return EXIT_SCAN_ERROR
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
