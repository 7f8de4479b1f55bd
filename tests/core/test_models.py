#!/usr/bin/env python3
"""
ReconCore - Target record tests
"""

import json
import socket
import unittest

import pytest

from reconcore.core.errors import ConfigurationError
from reconcore.core.models import Target, normalize_protocol
from reconcore.utils.constants import (
    PROTO_ICMP,
    PROTO_ICMPV6,
    PROTO_TCP,
    PROTO_UDP,
    REASON_ICMP_UNREACHABLE,
    REASON_REPLY_RECEIVED,
    REASON_TIMED_OUT,
    REASON_UNKNOWN,
)


class TestNormalizeProtocol(unittest.TestCase):
    def test_names_are_case_insensitive(self):
        self.assertEqual(normalize_protocol("TCP"), PROTO_TCP)
        self.assertEqual(normalize_protocol(" udp "), PROTO_UDP)
        self.assertEqual(normalize_protocol("ICMPv4"), PROTO_ICMP)
        self.assertEqual(normalize_protocol("icmp6"), PROTO_ICMPV6)

    def test_ipproto_numbers(self):
        self.assertEqual(normalize_protocol(socket.IPPROTO_TCP), PROTO_TCP)
        self.assertEqual(normalize_protocol(socket.IPPROTO_UDP), PROTO_UDP)
        self.assertEqual(normalize_protocol(socket.IPPROTO_ICMP), PROTO_ICMP)
        self.assertEqual(normalize_protocol(socket.IPPROTO_ICMPV6), PROTO_ICMPV6)

    def test_unknown_values_rejected(self):
        for value in ("sctp", "", None, 132, True):
            with self.assertRaises(ConfigurationError):
                normalize_protocol(value)


class TestTarget(unittest.TestCase):
    def test_initial_state(self):
        t = Target("10.0.0.1", 22)
        self.assertFalse(t.alive)
        self.assertEqual(t.reason, REASON_UNKNOWN)
        self.assertEqual(t.banner, b"")
        self.assertEqual(t.banner_length, 0)
        self.assertFalse(t.scanned)

    def test_port_range_validated(self):
        with self.assertRaises(ValueError):
            Target("10.0.0.1", 70000)
        with self.assertRaises(ValueError):
            Target("10.0.0.1", -1)

    def test_mark_alive_sets_all_fields(self):
        t = Target("10.0.0.1", 22)
        t.mark_alive(b"SSH-2.0-x")
        self.assertTrue(t.alive)
        self.assertEqual(t.reason, REASON_REPLY_RECEIVED)
        self.assertEqual(t.banner_length, 9)

    def test_mark_dead_clears_banner(self):
        t = Target("10.0.0.1", 22)
        t.mark_alive(b"x")
        t.mark_dead(REASON_ICMP_UNREACHABLE)
        self.assertFalse(t.alive)
        self.assertEqual(t.reason, REASON_ICMP_UNREACHABLE)
        self.assertEqual(t.banner, b"")

    def test_mark_dead_rejects_non_terminal_reason(self):
        t = Target("10.0.0.1", 22)
        for reason in (REASON_UNKNOWN, REASON_REPLY_RECEIVED, "bogus"):
            with self.assertRaises(ValueError):
                t.mark_dead(reason)
        self.assertEqual(t.reason, REASON_UNKNOWN)

    def test_reset(self):
        t = Target("10.0.0.1", 22)
        t.mark_timed_out()
        t.reset()
        self.assertEqual((t.alive, t.reason, t.banner), (False, REASON_UNKNOWN, b""))

    def test_identity_semantics(self):
        a = Target("10.0.0.1", 22)
        b = Target("10.0.0.1", 22)
        self.assertNotEqual(a, b)
        self.assertEqual(len({id(a), id(b)}), 2)

    def test_labels(self):
        self.assertEqual(Target("10.0.0.1", 22).label(), "10.0.0.1:22/tcp")
        self.assertEqual(Target("::1", 53, "udp").label(), "[::1]:53/udp")
        self.assertEqual(Target("::1", 0, "icmpv6").label(), "::1/icmpv6")

    def test_to_dict_is_json_friendly(self):
        t = Target("10.0.0.1", 80)
        t.mark_alive(b"HTTP/1.0 200\xff")
        data = json.loads(json.dumps(t.to_dict()))
        self.assertEqual(data["banner_hex"], b"HTTP/1.0 200\xff".hex())
        self.assertEqual(data["banner_length"], 13)
        self.assertEqual(data["reason"], REASON_REPLY_RECEIVED)


@pytest.mark.parametrize("reason", [REASON_TIMED_OUT, REASON_ICMP_UNREACHABLE])
def test_rescan_overwrites_previous_outcome(reason):
    t = Target("10.0.0.1", 22)
    t.mark_alive(b"banner")
    t.mark_dead(reason)
    t.mark_alive(b"")
    assert t.alive is True
    assert t.reason == REASON_REPLY_RECEIVED
    assert t.banner_length == 0
