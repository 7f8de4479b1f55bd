#!/usr/bin/env python3
"""
ReconCore - External Scanner (nmap)
Copyright (C) 2026  Dorin Badea
GPLv3 License

Delegates a batch to the nmap binary and maps its XML report onto the same
Target records the native strategies produce. Either the whole batch is
updated or none of it: every nmap run is executed and parsed before the
first record changes.
"""

from __future__ import annotations

import logging
import shutil
import socket
import xml.etree.ElementTree as ET
from collections import OrderedDict
from typing import Any, Dict, List, Optional, Sequence, Tuple

import nmap

from reconcore.core.base import PortScanner
from reconcore.core.command_runner import CommandResult, CommandRunner
from reconcore.core.errors import AddressResolutionError, ScanUnavailableError
from reconcore.core.models import Target
from reconcore.core.transport import normalize_address
from reconcore.utils.constants import (
    DEFAULT_NMAP_TIMEOUT,
    MAX_BANNER_BYTES,
    NMAP_BANNER_SCRIPT,
    PROTO_ICMP,
    PROTO_ICMPV6,
    PROTO_TCP,
    PROTO_UDP,
    PROTOCOLS,
    REASON_ICMP_UNREACHABLE,
    REASON_REPLY_RECEIVED,
    REASON_TIMED_OUT,
)

logger = logging.getLogger(__name__)

# nmap <state reason="..."> values that come from an ICMP error or a reset
UNREACHABLE_REASONS = frozenset(
    {
        "reset",
        "conn-refused",
        "port-unreach",
        "host-unreach",
        "net-unreach",
        "proto-unreach",
        "admin-prohibited",
        "host-prohibited",
        "net-prohibited",
        "addr-unreach",
        "no-route",
    }
)

_PROTOCOL_ARGS = {
    PROTO_TCP: ["-Pn", "-sT", "-sV", "--script", NMAP_BANNER_SCRIPT],
    PROTO_UDP: ["-Pn", "-sU", "-sV", "--script", NMAP_BANNER_SCRIPT],
    PROTO_ICMP: ["-sn", "-PE"],
    PROTO_ICMPV6: ["-sn", "-PE"],
}

Outcome = Tuple[str, bytes]
GroupKey = Tuple[str, int]


def _extract_nmap_xml(raw: str) -> str:
    if not raw:
        return ""
    start = raw.find("<nmaprun")
    if start < 0:
        start = raw.find("<?xml")
    if start > 0:
        raw = raw[start:]
    end = raw.rfind("</nmaprun>")
    if end >= 0:
        raw = raw[: end + len("</nmaprun>")]
    return raw.strip()


def _extraports_states(xml_output: str) -> Dict[str, str]:
    """
    Map host address -> state of the ports nmap folded into <extraports>.

    python-nmap only reports individually listed ports.
    """
    states: Dict[str, str] = {}
    try:
        root = ET.fromstring(xml_output)
    except ET.ParseError:
        return states
    for host in root.iter("host"):
        extra = host.find("ports/extraports")
        if extra is None:
            continue
        for addr in host.findall("address"):
            if addr.get("addrtype") in ("ipv4", "ipv6"):
                states[normalize_address(addr.get("addr", ""))] = extra.get("state", "")
    return states


def _service_banner(port_info: Dict[str, Any]) -> bytes:
    scripts = port_info.get("script") or {}
    text = scripts.get(NMAP_BANNER_SCRIPT) or ""
    if not text:
        parts = [port_info.get(k) for k in ("product", "version", "extrainfo")]
        text = " ".join(p for p in parts if p)
    return text.strip().encode("utf-8", errors="replace")


class NmapScanner(PortScanner):
    """External collaborator. Handles every protocol the native engine handles."""

    name = "nmap"
    protocols = PROTOCOLS

    def __init__(
        self,
        *,
        nmap_path: str = "nmap",
        timeout: float = DEFAULT_NMAP_TIMEOUT,
        extra_args: Optional[Sequence[str]] = None,
        banner_size: int = MAX_BANNER_BYTES,
        runner: Optional[CommandRunner] = None,
        dry_run: bool = False,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.nmap_path = nmap_path
        self.timeout = float(timeout)
        self.extra_args = list(extra_args or [])
        self.banner_size = int(banner_size)
        self.runner = runner or CommandRunner(logger=logger, dry_run=dry_run)

    def is_available(self) -> bool:
        return shutil.which(self.nmap_path) is not None

    def scan(self, batch: Sequence[Target]) -> Sequence[Target]:
        """
        Run nmap over the batch and update every record at the end.

        Raises:
            ConfigurationError: a target's protocol is unsupported.
            ScanUnavailableError: nmap is missing, failed or produced no report.
        """
        if not batch:
            return batch
        self.prepare(batch)
        binary = shutil.which(self.nmap_path)
        if binary is None:
            raise ScanUnavailableError(f"nmap not available ({self.nmap_path})")

        groups, unresolved = self._group(batch)
        outcomes: Dict[int, Outcome] = {}
        for (protocol, family), members in groups.items():
            scan_result, extraports = self._run_group(binary, protocol, family, members)
            for target, address in members:
                outcomes[id(target)] = self._outcome(
                    target, address, scan_result, extraports
                )

        for target in unresolved:
            target.mark_timed_out()
        done = 0
        total = len(outcomes)
        for target in batch:
            outcome = outcomes.pop(id(target), None)
            if outcome is None:
                continue
            reason, banner = outcome
            if reason == REASON_REPLY_RECEIVED:
                target.mark_alive(banner)
            else:
                target.mark_dead(reason)
            done += 1
            if self.progress_callback:
                self.progress_callback(done, total, self.name)
        return batch

    def probe(self, target: Target) -> None:
        self.scan([target])

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _group(
        self, batch: Sequence[Target]
    ) -> Tuple["OrderedDict[GroupKey, List[Tuple[Target, str]]]", List[Target]]:
        groups: "OrderedDict[GroupKey, List[Tuple[Target, str]]]" = OrderedDict()
        unresolved: List[Target] = []
        seen = set()
        for target in batch:
            if id(target) in seen:
                continue
            seen.add(id(target))
            if target.protocol == PROTO_ICMPV6:
                family = socket.AF_INET6
            elif target.protocol == PROTO_ICMP:
                family = socket.AF_INET
            else:
                family = socket.AF_UNSPEC
            try:
                family, sockaddr = self.transport.resolve(
                    target.host, 0 if target.is_icmp else target.port, socket.SOCK_STREAM, family
                )
            except AddressResolutionError as exc:
                logger.info("Skipping %s: %s", target.label(), exc)
                unresolved.append(target)
                continue
            address = normalize_address(sockaddr[0])
            groups.setdefault((target.protocol, family), []).append((target, address))
        return groups, unresolved

    def build_command(
        self, binary: str, protocol: str, family: int, members: Sequence[Tuple[Target, str]]
    ) -> List[str]:
        cmd = [binary, "-n", "--reason"] + list(_PROTOCOL_ARGS[protocol])
        if family == socket.AF_INET6:
            cmd.append("-6")
        if protocol in (PROTO_TCP, PROTO_UDP):
            ports = sorted({t.port for t, _ in members})
            cmd += ["-p", ",".join(str(p) for p in ports)]
        cmd += self.extra_args
        cmd += ["-oX", "-"]
        cmd += list(OrderedDict.fromkeys(addr for _, addr in members))
        return cmd

    def _run_group(
        self, binary: str, protocol: str, family: int, members: Sequence[Tuple[Target, str]]
    ) -> Tuple[Dict[str, Any], Dict[str, str]]:
        cmd = self.build_command(binary, protocol, family, members)
        result: CommandResult = self.runner.run(cmd, timeout=self.timeout)
        if self.runner.dry_run:
            raise ScanUnavailableError("dry run: nmap was not executed")
        if result.timed_out:
            raise ScanUnavailableError(f"nmap timed out after {self.timeout:.0f}s")
        if not result.ok:
            stderr = (result.stderr or "").strip()[:200]
            raise ScanUnavailableError(f"nmap exited with {result.returncode}: {stderr}")

        xml_output = _extract_nmap_xml(result.stdout)
        if not xml_output:
            raise ScanUnavailableError("empty nmap output")
        try:
            nm = nmap.PortScanner(nmap_search_path=(binary,))
            scan_result = nm.analyse_nmap_xml_scan(
                xml_output,
                nmap_err=result.stderr,
                nmap_err_keep_trace=result.stderr,
                nmap_warn_keep_trace="",
            )
        except Exception as exc:
            msg = str(exc).strip().replace("\n", " ")[:200]
            raise ScanUnavailableError(f"nmap_xml_parse_error: {msg or 'invalid_xml'}") from exc
        hosts = {
            normalize_address(addr): info
            for addr, info in (scan_result.get("scan") or {}).items()
        }
        logger.debug("nmap %s group: %d/%d hosts reported", protocol, len(hosts), len(members))
        return hosts, _extraports_states(xml_output)

    def _outcome(
        self,
        target: Target,
        address: str,
        hosts: Dict[str, Any],
        extraports: Dict[str, str],
    ) -> Outcome:
        host = hosts.get(address)
        if target.is_icmp:
            if host is None:
                return REASON_TIMED_OUT, b""
            status = host.get("status") or {}
            if status.get("state") == "up":
                return REASON_REPLY_RECEIVED, b""
            if status.get("reason") in UNREACHABLE_REASONS:
                return REASON_ICMP_UNREACHABLE, b""
            return REASON_TIMED_OUT, b""

        if host is None:
            return REASON_TIMED_OUT, b""
        port_info = (host.get(target.protocol) or {}).get(target.port)
        if port_info is None:
            state, reason = extraports.get(address, ""), ""
        else:
            state, reason = port_info.get("state", ""), port_info.get("reason", "")

        if state == "open":
            banner = _service_banner(port_info) if port_info else b""
            return REASON_REPLY_RECEIVED, banner[: self.banner_size]
        if state == "closed" or reason in UNREACHABLE_REASONS:
            return REASON_ICMP_UNREACHABLE, b""
        return REASON_TIMED_OUT, b""
