#!/usr/bin/env python3
"""
ReconCore - UDP Payload Library
Copyright (C) 2026  Dorin Badea
GPLv3 License

Static port -> probe bytes mapping used by the UDP scanner.

A UDP service only answers datagrams it understands, so well-known ports get
a protocol-specific request. Everything else gets the generic payload stored
under GENERIC_PAYLOAD_PORT. Additional signatures can be loaded from a file
in nmap's `nmap-payloads` format.
"""

from __future__ import annotations

import logging
import re
import struct
from collections.abc import Mapping
from functools import lru_cache
from typing import Dict, Iterator, List, Optional

from reconcore.utils.constants import GENERIC_PAYLOAD_PORT, MAX_PORT, MIN_PORT

logger = logging.getLogger(__name__)


def _build_dns_query(qname: str = "", qtype: int = 1) -> bytes:
    # Recursion desired, one question, class IN.
    header = struct.pack(">HHHHHH", 0x5243, 0x0100, 1, 0, 0, 0)
    labels = b"".join(
        bytes([len(part)]) + part.encode("ascii") for part in qname.split(".") if part
    )
    return header + labels + b"\x00" + struct.pack(">HH", qtype, 1)


def _build_mdns_query() -> bytes:
    """mDNS PTR query for _services._dns-sd._udp.local."""
    header = struct.pack(">HHHHHH", 0, 0, 1, 0, 0, 0)
    question = (
        b"\x09_services\x07_dns-sd\x04_udp\x05local\x00"
        b"\x00\x0c"  # PTR
        b"\x00\x01"  # IN
    )
    return header + question


def _build_snmp_get_sysdescr(community: bytes = b"public") -> bytes:
    """SNMPv1 GetRequest for sysDescr.0."""
    oid = b"\x06\x08\x2b\x06\x01\x02\x01\x01\x01\x00"
    varbind = b"\x30" + bytes([len(oid) + 2]) + oid + b"\x05\x00"
    varbinds = b"\x30" + bytes([len(varbind)]) + varbind
    pdu_body = b"\x02\x01\x01" + b"\x02\x01\x00" + b"\x02\x01\x00" + varbinds
    pdu = b"\xa0" + bytes([len(pdu_body)]) + pdu_body
    msg_body = b"\x02\x01\x00" + b"\x04" + bytes([len(community)]) + community + pdu
    return b"\x30" + bytes([len(msg_body)]) + msg_body


def _build_netbios_status() -> bytes:
    """NetBIOS NBSTAT query for the wildcard name."""
    header = struct.pack(">HHHHHH", 0x5243, 0x0000, 1, 0, 0, 0)
    name = b"\x20" + b"CKAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA" + b"\x00"
    return header + name + b"\x00\x21\x00\x01"


def _build_ssdp_msearch() -> bytes:
    return (
        b"M-SEARCH * HTTP/1.1\r\n"
        b"HOST: 239.255.255.250:1900\r\n"
        b'MAN: "ssdp:discover"\r\n'
        b"MX: 1\r\n"
        b"ST: ssdp:all\r\n"
        b"\r\n"
    )


BUILTIN_PAYLOADS: Dict[int, bytes] = {
    GENERIC_PAYLOAD_PORT: b"\r\n\r\n",
    7: b"\r\n\r\n",  # echo
    53: _build_dns_query("www.example.com"),  # DNS
    69: b"\x00\x01r7tftp.txt\x00octet\x00",  # TFTP read request
    111: (
        b"\x72\xfe\x1d\x13\x00\x00\x00\x00\x00\x00\x00\x02\x00\x01\x86\xa0"
        b"\x00\x01\x97\x7c\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00"
        b"\x00\x00\x00\x00\x00\x00\x00\x00"
    ),  # RPC portmapper NULL call
    123: b"\xe3" + (b"\x00" * 47),  # NTP client request
    137: _build_netbios_status(),  # NetBIOS-NS
    161: _build_snmp_get_sysdescr(),  # SNMP v1
    500: (
        b"\x00\x11\x22\x33\x44\x55\x66\x77" + b"\x00" * 8
        + b"\x01\x10\x02\x00\x00\x00\x00\x00\x00\x00\x00\x1c" + b"\x00" * 4
    ),  # IKE header
    1900: _build_ssdp_msearch(),  # SSDP
    5353: _build_mdns_query(),  # mDNS
    11211: b"\x00\x01\x00\x00\x00\x01\x00\x00stats\r\n",  # memcached
}


class PayloadLibrary(Mapping):
    """
    Immutable port -> payload mapping with a generic fallback entry.

    Built once and shared read-only by every UDP probe.
    """

    def __init__(self, payloads: Optional[Dict[int, bytes]] = None):
        merged: Dict[int, bytes] = dict(BUILTIN_PAYLOADS)
        if payloads:
            for port, payload in payloads.items():
                merged[int(port)] = bytes(payload)
        if GENERIC_PAYLOAD_PORT not in merged:
            raise ValueError("Payload library requires a generic entry")
        self._payloads = merged

    @classmethod
    def default(cls) -> "PayloadLibrary":
        return _default_library()

    def lookup(self, port: int) -> bytes:
        """Return the port-specific payload, or the generic one."""
        payload = self._payloads.get(int(port))
        if payload is None:
            return self._payloads[GENERIC_PAYLOAD_PORT]
        return payload

    @property
    def generic(self) -> bytes:
        return self._payloads[GENERIC_PAYLOAD_PORT]

    def __getitem__(self, port: int) -> bytes:
        return self._payloads[port]

    def __iter__(self) -> Iterator[int]:
        return iter(self._payloads)

    def __len__(self) -> int:
        return len(self._payloads)

    def __repr__(self) -> str:
        return f"PayloadLibrary({len(self._payloads)} entries)"


@lru_cache(maxsize=1)
def _default_library() -> PayloadLibrary:
    return PayloadLibrary()


# ============================================================================
# nmap-payloads file support
# ============================================================================

_TOKEN_RE = re.compile(r'"((?:[^"\\]|\\.)*)"|#[^\n]*|(\S+)')
_ESCAPE_RE = re.compile(r"\\(x[0-9a-fA-F]{2}|[0-7]{1,3}|.)")
_SIMPLE_ESCAPES = {
    "n": b"\n",
    "r": b"\r",
    "t": b"\t",
    "a": b"\a",
    "b": b"\b",
    "f": b"\f",
    "v": b"\v",
    "\\": b"\\",
    '"': b'"',
    "'": b"'",
}


def _unescape(text: str) -> bytes:
    out = bytearray()
    pos = 0
    for match in _ESCAPE_RE.finditer(text):
        out += text[pos : match.start()].encode("latin-1")
        esc = match.group(1)
        if esc[0] == "x":
            out.append(int(esc[1:], 16))
        elif esc[0].isdigit() and esc[0] not in "89":
            out.append(int(esc, 8) & 0xFF)
        else:
            out += _SIMPLE_ESCAPES.get(esc, esc.encode("latin-1"))
        pos = match.end()
    out += text[pos:].encode("latin-1")
    return bytes(out)


def _parse_port_list(spec: str) -> List[int]:
    ports: List[int] = []
    for part in spec.split(","):
        part = part.strip()
        if not part:
            continue
        if "-" in part:
            start_s, end_s = part.split("-", 1)
            start, end = int(start_s), int(end_s)
            if start > end:
                raise ValueError(f"Invalid port range: {part}")
            ports.extend(range(start, end + 1))
        else:
            ports.append(int(part))
    for port in ports:
        if not MIN_PORT <= port <= MAX_PORT:
            raise ValueError(f"Port out of range: {port}")
    return ports


def parse_payloads(text: str) -> Dict[int, bytes]:
    """
    Parse nmap-payloads formatted text.

    Format:
        udp 53 "\\x00\\x00\\x10..."
        udp 1645,1812 "..." "continued..." source 1645

    Only `udp` entries are kept; `source` directives are ignored.
    """
    result: Dict[int, bytes] = {}
    ports: Optional[List[int]] = None
    chunks: List[bytes] = []
    skip_next = False

    def _flush() -> None:
        if ports is not None and chunks:
            payload = b"".join(chunks)
            for p in ports:
                result[p] = payload

    tokens = iter(_TOKEN_RE.finditer(text))
    for match in tokens:
        quoted, word = match.group(1), match.group(2)
        if quoted is None and word is None:
            continue  # comment
        if skip_next:
            skip_next = False
            continue
        if quoted is not None:
            if ports is not None:
                chunks.append(_unescape(quoted))
            continue
        lowered = word.lower()
        if lowered in ("udp", "tcp", "sctp"):
            _flush()
            chunks = []
            try:
                spec = next(tokens).group(2) or ""
                ports = _parse_port_list(spec) if lowered == "udp" else None
            except (StopIteration, ValueError):
                logger.debug("Skipping malformed payload entry near %r", word)
                ports = None
        elif lowered == "source":
            skip_next = True
    _flush()
    return result


def load_payload_file(path: str) -> Dict[int, bytes]:
    """Read and parse an nmap-payloads file."""
    with open(path, "r", encoding="latin-1") as f:
        return parse_payloads(f.read())


def build_payload_library(extra_path: Optional[str] = None) -> PayloadLibrary:
    """
    Build the payload library, optionally merging entries from a file.

    File entries override built-in ones for the same port. An unreadable file
    is logged and ignored; the built-in library is always available.
    """
    if not extra_path:
        return PayloadLibrary.default()
    try:
        extra = load_payload_file(extra_path)
    except OSError as exc:
        logger.warning("Cannot read payload file %s: %s", extra_path, exc)
        return PayloadLibrary.default()
    logger.info("Loaded %d UDP payloads from %s", len(extra), extra_path)
    return PayloadLibrary(extra)
