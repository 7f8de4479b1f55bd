#!/usr/bin/env python3
"""
ReconCore - Scan session tests
"""

import unittest
from unittest.mock import MagicMock, patch

from conftest import LOOPBACK, LoopbackCorrelator, echo_responder
from reconcore.core.correlator import IcmpCorrelator
from reconcore.core.errors import SocketCreationError
from reconcore.core.models import Target
from reconcore.core.session import ScanSession
from reconcore.core.transport import SocketTransport
from reconcore.utils.constants import (
    REASON_ICMP_UNREACHABLE,
    REASON_REPLY_RECEIVED,
    REASON_UNKNOWN,
)


class TestScanSession(unittest.TestCase):
    def test_open_without_privileges_is_best_effort(self):
        transport = MagicMock(spec=SocketTransport)
        transport.icmp_socket.side_effect = SocketCreationError("denied", reason="requires_root")
        with self.assertLogs("reconcore.core.session", level="WARNING"):
            session = ScanSession(transport=transport).open()
        self.assertIsNone(session.correlator)
        session.close()

    def test_injected_correlator_is_kept_open(self):
        correlator = MagicMock(spec=IcmpCorrelator)
        with ScanSession(correlator=correlator) as session:
            self.assertIs(session.correlator, correlator)
        correlator.open.assert_not_called()
        correlator.close.assert_not_called()

    def test_owned_correlator_closed_on_exit(self):
        with patch("reconcore.core.session.IcmpCorrelator") as cls:
            instance = cls.return_value
            with ScanSession() as session:
                self.assertIs(session.correlator, instance)
            instance.open.assert_called_once()
            instance.close.assert_called_once()
            self.assertIsNone(session.correlator)

    def test_mixed_batch_dispatched_per_protocol(self):
        correlator = LoopbackCorrelator(echo_responder)
        batch = [Target(LOOPBACK, 0, "icmp"), Target(LOOPBACK, 9, "udp"), Target(LOOPBACK, 9)]
        seen = []

        def udp_probe(self, target):
            seen.append(("udp", target))
            target.mark_unreachable()

        def tcp_probe(self, target):
            seen.append(("tcp", target))
            target.mark_alive(b"hello")

        with patch("reconcore.core.udp_scanner.UdpScanner.probe", udp_probe), patch(
            "reconcore.core.tcp_scanner.TcpScanner.probe", tcp_probe
        ), patch("reconcore.core.base.SocketTransport.preflight"):
            with ScanSession({"icmp_timeout": 1.0}, correlator=correlator) as session:
                result = session.scan(batch)

        self.assertIs(result, batch)
        self.assertEqual(session.errors, [])
        self.assertEqual(
            [t.reason for t in batch],
            [REASON_REPLY_RECEIVED, REASON_ICMP_UNREACHABLE, REASON_REPLY_RECEIVED],
        )
        self.assertEqual(batch[2].banner, b"hello")
        self.assertEqual(sorted(p for p, _ in seen), ["tcp", "udp"])

    def test_failed_group_recorded_and_others_continue(self):
        batch = [Target(LOOPBACK, 0, "icmp"), Target(LOOPBACK, 80)]

        def tcp_probe(self, target):
            target.mark_alive()

        transport = MagicMock(spec=SocketTransport)
        transport.icmp_socket.side_effect = SocketCreationError("denied", reason="requires_root")
        with patch("reconcore.core.tcp_scanner.TcpScanner.probe", tcp_probe):
            with ScanSession(transport=transport) as session:
                session.scan(batch)

        self.assertEqual(batch[0].reason, REASON_UNKNOWN)
        self.assertEqual(batch[1].reason, REASON_REPLY_RECEIVED)
        self.assertEqual(len(session.errors), 1)
        protocol, error = session.errors[0]
        self.assertEqual(protocol, "icmp")
        self.assertIsInstance(error, SocketCreationError)

    def test_scanner_uses_session_settings(self):
        correlator = MagicMock(spec=IcmpCorrelator)
        session = ScanSession({"connect_timeout": 0.5}, correlator=correlator)
        scanner = session.scanner("tcp")
        self.assertEqual(scanner.connect_timeout, 0.5)
        self.assertIs(scanner.correlator, correlator)
        self.assertIs(scanner.transport, session.transport)
