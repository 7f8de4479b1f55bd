#!/usr/bin/env python3
"""
ReconCore - Constants and Configuration
Copyright (C) 2026  Dorin Badea
GPLv3 License
"""

# Version
VERSION = "1.2.0"

# Protocol identifiers (Target.protocol)
PROTO_TCP = "tcp"
PROTO_UDP = "udp"
PROTO_ICMP = "icmp"
PROTO_ICMPV6 = "icmpv6"
PROTOCOLS = (PROTO_TCP, PROTO_UDP, PROTO_ICMP, PROTO_ICMPV6)
ICMP_PROTOCOLS = (PROTO_ICMP, PROTO_ICMPV6)

# Liveness reasons (Target.reason)
REASON_UNKNOWN = "unknown"
REASON_REPLY_RECEIVED = "reply-received"
REASON_TIMED_OUT = "timed-out"
REASON_ICMP_UNREACHABLE = "icmp-unreachable"
REASONS = (
    REASON_UNKNOWN,
    REASON_REPLY_RECEIVED,
    REASON_TIMED_OUT,
    REASON_ICMP_UNREACHABLE,
)
TERMINAL_DEAD_REASONS = (REASON_TIMED_OUT, REASON_ICMP_UNREACHABLE)

# Probe timeouts (seconds)
DEFAULT_CONNECT_TIMEOUT = 3.0
DEFAULT_BANNER_TIMEOUT = 1.5
DEFAULT_UDP_TIMEOUT = 3.0
DEFAULT_ICMP_TIMEOUT = 3.0
BANNER_DRAIN_TIMEOUT = 0.05

# Banner capture
MAX_BANNER_BYTES = 1024
MAX_DATAGRAM_BYTES = 65535

# Worker pool
DEFAULT_WORKERS = 64
MIN_WORKERS = 1
MAX_WORKERS = 1024
# Socket + waiter socketpair + selector per in-flight probe
FDS_PER_PROBE = 4

# Payload library sentinel ("no specific signature known")
GENERIC_PAYLOAD_PORT = 0

# ICMP wire values
ICMP_ECHO_REPLY = 0
ICMP_DEST_UNREACH = 3
ICMP_ECHO_REQUEST = 8
ICMPV6_DEST_UNREACH = 1
ICMPV6_ECHO_REQUEST = 128
ICMPV6_ECHO_REPLY = 129
ICMP_ECHO_PAYLOAD = b"reconcore-echo".ljust(32, b"\x00")

# Correlator reader loop
CORRELATOR_POLL_INTERVAL = 0.2

# External scanner (nmap)
DEFAULT_NMAP_TIMEOUT = 600.0
NMAP_BANNER_SCRIPT = "banner"

# Valid port range
MIN_PORT = 0
MAX_PORT = 65535
