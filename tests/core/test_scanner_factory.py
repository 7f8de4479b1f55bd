#!/usr/bin/env python3
"""
ReconCore - Scanner factory tests
"""

import socket
import unittest
from unittest.mock import MagicMock, patch

from reconcore.core.errors import ConfigurationError
from reconcore.core.icmp_pinger import IcmpPinger
from reconcore.core.nmap_scanner import NmapScanner
from reconcore.core.payloads import PayloadLibrary
from reconcore.core.scanner_factory import PortScannerFactory, get_scanner
from reconcore.core.tcp_scanner import TcpScanner
from reconcore.core.udp_scanner import UdpScanner


class TestScannerFactory(unittest.TestCase):
    def test_dispatch_by_name(self):
        self.assertIsInstance(get_scanner("tcp"), TcpScanner)
        self.assertIsInstance(get_scanner("UDP"), UdpScanner)
        self.assertIsInstance(get_scanner("icmp"), IcmpPinger)
        self.assertIsInstance(get_scanner("icmpv6"), IcmpPinger)

    def test_dispatch_by_ipproto(self):
        self.assertIsInstance(get_scanner(socket.IPPROTO_TCP), TcpScanner)
        self.assertIsInstance(get_scanner(socket.IPPROTO_UDP), UdpScanner)
        self.assertIsInstance(get_scanner(socket.IPPROTO_ICMPV6), IcmpPinger)

    def test_external_preference(self):
        for proto in ("tcp", "udp", "icmp", "icmpv6"):
            self.assertIsInstance(get_scanner(proto, prefer_external=True), NmapScanner)

    def test_unknown_protocol(self):
        for proto in ("sctp", 132, ""):
            with self.assertRaises(ConfigurationError):
                get_scanner(proto)

    def test_external_preference_ignores_protocol(self):
        for proto in ("sctp", socket.IPPROTO_NONE, ""):
            self.assertIsInstance(get_scanner(proto, prefer_external=True), NmapScanner)
        self.assertIs(PortScannerFactory.strategy_for(132, prefer_external=True), NmapScanner)

    def test_configuration_applied(self):
        config = {
            "workers": 7,
            "connect_timeout": "0.5",
            "banner_timeout": 0.25,
            "banner_size": 64,
            "banner_nudge": False,
            "udp_timeout": 1.5,
            "icmp_timeout": 0.75,
        }
        tcp = get_scanner("tcp", config=config)
        self.assertEqual(
            (tcp.workers, tcp.connect_timeout, tcp.banner_timeout, tcp.banner_size, tcp.banner_nudge),
            (7, 0.5, 0.25, 64, False),
        )
        udp = get_scanner("udp", config=config)
        self.assertEqual((udp.timeout, udp.banner_size), (1.5, 64))
        self.assertEqual(get_scanner("icmp", config=config).timeout, 0.75)

    def test_nmap_configuration(self):
        config = {"nmap_path": "/opt/nmap", "nmap_timeout": 30, "nmap_extra_args": "-T4 --max-retries 1"}
        scanner = get_scanner("tcp", prefer_external=True, config=config)
        self.assertEqual(scanner.nmap_path, "/opt/nmap")
        self.assertEqual(scanner.timeout, 30.0)
        self.assertEqual(scanner.extra_args, ["-T4", "--max-retries", "1"])
        self.assertFalse(scanner.runner.dry_run)

    def test_dry_run_from_config(self):
        scanner = get_scanner("tcp", prefer_external=True, config={"dry_run": True})
        self.assertTrue(scanner.runner.dry_run)

    def test_invalid_configuration(self):
        with self.assertRaises(ConfigurationError):
            get_scanner("tcp", config={"connect_timeout": "soon"})
        with self.assertRaises(ConfigurationError):
            get_scanner("udp", config={"udp_timeout": -1})

    def test_payload_file_loaded(self):
        with patch("reconcore.core.scanner_factory.build_payload_library") as build:
            build.return_value = PayloadLibrary({9: b"x"})
            scanner = get_scanner("udp", config={"payload_file": "/etc/payloads"})
        build.assert_called_once_with("/etc/payloads")
        self.assertEqual(scanner.get_payloads().lookup(9), b"x")

    def test_shared_collaborators_injected(self):
        correlator = MagicMock()
        transport = MagicMock()
        callback = MagicMock()
        for proto in ("tcp", "udp", "icmp"):
            scanner = get_scanner(
                proto, correlator=correlator, transport=transport, progress_callback=callback
            )
            self.assertIs(scanner.correlator, correlator)
            self.assertIs(scanner.transport, transport)
            self.assertIs(scanner.progress_callback, callback)

    def test_creation_performs_no_io(self):
        transport = MagicMock()
        for proto in ("tcp", "udp", "icmp", "icmpv6"):
            get_scanner(proto, transport=transport)
        self.assertEqual(transport.method_calls, [])

    def test_strategy_for(self):
        self.assertIs(PortScannerFactory.strategy_for("ping"), IcmpPinger)
        self.assertIs(PortScannerFactory.strategy_for("tcp", prefer_external=True), NmapScanner)
