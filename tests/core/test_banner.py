#!/usr/bin/env python3
"""
ReconCore - Banner capture tests
"""

import socket
import threading
import time
import unittest
from unittest.mock import MagicMock

from reconcore.core.banner import grab_banner, nudge_for_port


class TestGrabBanner(unittest.TestCase):
    def setUp(self):
        self.client, self.server = socket.socketpair()

    def tearDown(self):
        self.client.close()
        self.server.close()

    def test_reads_available_data(self):
        self.server.sendall(b"220 mail ESMTP\r\n")
        self.assertEqual(grab_banner(self.client, timeout=1.0), b"220 mail ESMTP\r\n")

    def test_truncates_to_max_bytes(self):
        self.server.sendall(b"A" * 100)
        self.assertEqual(grab_banner(self.client, timeout=1.0, max_bytes=10), b"A" * 10)

    def test_silent_peer_returns_empty(self):
        start = time.monotonic()
        self.assertEqual(grab_banner(self.client, timeout=0.2), b"")
        self.assertLess(time.monotonic() - start, 1.0)

    def test_closed_peer_returns_empty(self):
        self.server.close()
        self.assertEqual(grab_banner(self.client, timeout=1.0), b"")

    def test_zero_budget_returns_empty(self):
        self.server.sendall(b"data")
        self.assertEqual(grab_banner(self.client, timeout=0), b"")
        self.assertEqual(grab_banner(self.client, timeout=1.0, max_bytes=0), b"")

    def test_restores_previous_timeout(self):
        self.client.settimeout(7.5)
        self.server.sendall(b"x")
        grab_banner(self.client, timeout=0.5)
        self.assertEqual(self.client.gettimeout(), 7.5)

        self.client.settimeout(None)
        grab_banner(self.client, timeout=0.1)
        self.assertIsNone(self.client.gettimeout())

    def test_nudge_sent_to_silent_service(self):
        received = []

        def peer():
            self.server.settimeout(3.0)
            data = self.server.recv(1024)
            received.append(data)
            self.server.sendall(b"HTTP/1.0 200 OK\r\n")

        t = threading.Thread(target=peer, daemon=True)
        t.start()
        banner = grab_banner(self.client, timeout=1.0, nudge=b"HEAD / HTTP/1.0\r\n\r\n")
        t.join(timeout=3)
        self.assertEqual(received, [b"HEAD / HTTP/1.0\r\n\r\n"])
        self.assertEqual(banner, b"HTTP/1.0 200 OK\r\n")

    def test_nudge_not_sent_when_service_speaks(self):
        self.server.sendall(b"SSH-2.0-x\r\n")
        banner = grab_banner(self.client, timeout=1.0, nudge=b"HEAD / HTTP/1.0\r\n\r\n")
        self.assertEqual(banner, b"SSH-2.0-x\r\n")
        self.server.setblocking(False)
        with self.assertRaises(BlockingIOError):
            self.server.recv(1024)


def test_socket_fault_propagates():
    sock = MagicMock()
    sock.gettimeout.return_value = None
    sock.recv.side_effect = ConnectionResetError("reset")
    try:
        grab_banner(sock, timeout=0.5)
    except OSError as exc:
        assert isinstance(exc, ConnectionResetError)
    else:
        raise AssertionError("expected OSError")
    sock.settimeout.assert_called_with(None)


def test_nudge_for_port():
    assert nudge_for_port(80).startswith(b"HEAD ")
    assert nudge_for_port(6379) == b"INFO\r\n"
    assert nudge_for_port(22) == b""
