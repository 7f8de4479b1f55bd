"""
Centralized pytest fixtures for the ReconCore test suite.

Loopback servers stand in for live hosts so every scan outcome is
deterministic: a TCP service that speaks first, one that only answers a
request, a UDP echo service, a UDP service that never answers, and ports
with nothing listening.
"""

import socket
import threading
import time

import pytest

from scapy.layers.inet import ICMP, IP, ICMPerror, IPerror, UDPerror
from scapy.layers.inet6 import ICMPv6EchoReply, ICMPv6EchoRequest, IPv6
from scapy.packet import Raw

from reconcore.core.correlator import IcmpCorrelator
from reconcore.core.models import Target

LOOPBACK = "127.0.0.1"
LOOPBACK_V6 = "::1"


def _family(host):
    return socket.AF_INET6 if ":" in host else socket.AF_INET


# ==============================================================================
# Loopback servers
# ==============================================================================


class TcpServer:
    """
    Threaded TCP server on a loopback address (127.0.0.1 unless `host` says otherwise).

    banner: sent as soon as a client connects.
    reply: sent once the client has sent something (for nudge tests).
    """

    def __init__(self, banner=b"", reply=None, host=LOOPBACK):
        self.banner = banner
        self.reply = reply
        self.sock = socket.socket(_family(host), socket.SOCK_STREAM)
        self.sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self.sock.bind((host, 0))
        self.sock.listen(128)
        self.sock.settimeout(0.1)
        self.port = self.sock.getsockname()[1]
        self.received = []
        self._clients = []
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def _serve(self):
        while not self._stop.is_set():
            try:
                conn, _ = self.sock.accept()
            except socket.timeout:
                continue
            except OSError:
                return
            self._clients.append(conn)
            threading.Thread(target=self._handle, args=(conn,), daemon=True).start()

    def _handle(self, conn):
        try:
            if self.banner:
                conn.sendall(self.banner)
            if self.reply is not None:
                conn.settimeout(5.0)
                data = conn.recv(1024)
                if data:
                    self.received.append(data)
                    conn.sendall(self.reply)
        except OSError:
            pass

    def close(self):
        self._stop.set()
        self._thread.join(timeout=2)
        for conn in self._clients:
            conn.close()
        self.sock.close()


class UdpServer:
    """UDP server on a loopback address that echoes datagrams with a prefix, or stays silent."""

    def __init__(self, echo=True, prefix=b"echo:", host=LOOPBACK):
        self.echo = echo
        self.prefix = prefix
        self.sock = socket.socket(_family(host), socket.SOCK_DGRAM)
        self.sock.bind((host, 0))
        self.sock.settimeout(0.1)
        self.port = self.sock.getsockname()[1]
        self.received = []
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def _serve(self):
        while not self._stop.is_set():
            try:
                data, addr = self.sock.recvfrom(65535)
            except socket.timeout:
                continue
            except OSError:
                return
            self.received.append(data)
            if self.echo:
                self.sock.sendto(self.prefix + data, addr)

    def close(self):
        self._stop.set()
        self._thread.join(timeout=2)
        self.sock.close()


def _unused_port(socktype, host=LOOPBACK):
    sock = socket.socket(_family(host), socktype)
    sock.bind((host, 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


@pytest.fixture
def tcp_banner_server():
    server = TcpServer(banner=b"SSH-2.0-ReconTest\r\n")
    yield server
    server.close()


@pytest.fixture
def tcp_silent_server():
    server = TcpServer()
    yield server
    server.close()


@pytest.fixture
def tcp_request_server():
    server = TcpServer(reply=b"HTTP/1.0 200 OK\r\nServer: test\r\n\r\n")
    yield server
    server.close()


@pytest.fixture
def udp_echo_server():
    server = UdpServer(echo=True)
    yield server
    server.close()


@pytest.fixture
def udp_silent_server():
    server = UdpServer(echo=False)
    yield server
    server.close()


@pytest.fixture
def closed_tcp_port():
    return _unused_port(socket.SOCK_STREAM)


@pytest.fixture
def closed_udp_port():
    return _unused_port(socket.SOCK_DGRAM)


def _require_ipv6_loopback():
    if not socket.has_ipv6:
        pytest.skip("IPv6 not supported")
    try:
        with socket.socket(socket.AF_INET6, socket.SOCK_DGRAM) as sock:
            sock.bind((LOOPBACK_V6, 0))
    except OSError as exc:
        pytest.skip(f"No IPv6 loopback: {exc}")


@pytest.fixture
def tcp_banner_server_v6():
    _require_ipv6_loopback()
    server = TcpServer(banner=b"220 ReconTest ready\r\n", host=LOOPBACK_V6)
    yield server
    server.close()


@pytest.fixture
def udp_echo_server_v6():
    _require_ipv6_loopback()
    server = UdpServer(echo=True, host=LOOPBACK_V6)
    yield server
    server.close()


@pytest.fixture
def closed_tcp_port_v6():
    _require_ipv6_loopback()
    return _unused_port(socket.SOCK_STREAM, LOOPBACK_V6)


@pytest.fixture
def closed_udp_port_v6():
    _require_ipv6_loopback()
    return _unused_port(socket.SOCK_DGRAM, LOOPBACK_V6)


# ==============================================================================
# Correlator doubles
# ==============================================================================


class LoopbackCorrelator(IcmpCorrelator):
    """
    Correlator without raw sockets.

    "Sending" an echo request hands it to `responder`, which returns the raw
    bytes a raw socket would have received (or None for silence). Those bytes
    go through the real decode and dispatch path.
    """

    def __init__(self, responder=None, families=(socket.AF_INET, socket.AF_INET6)):
        super().__init__(families=families)
        self.responder = responder
        self.sent = []
        self._fake_families = list(families)

    @property
    def is_open(self):
        return True

    @property
    def families(self):
        return list(self._fake_families)

    def require(self, family):
        return None

    def send(self, family, packet, address):
        host = address if isinstance(address, str) else address[0]
        self.sent.append((family, packet, host))
        if self.responder is None:
            return
        data = self.responder(family, packet, host)
        if data is not None:
            self.feed(family, data, host)


def echo_responder(family, packet, host):
    """Answer every echo request with a matching echo reply."""
    if family == socket.AF_INET6:
        req = ICMPv6EchoRequest(packet)
        reply = IPv6(src=host, dst="::1") / ICMPv6EchoReply(id=req.id, seq=req.seq, data=req.data)
        return bytes(reply)[40:]
    req = ICMP(packet)
    reply = IP(src=host, dst=LOOPBACK) / ICMP(type=0, id=req.id, seq=req.seq) / Raw(b"pong")
    return bytes(reply)


def unreachable_responder(family, packet, host):
    """Answer every IPv4 echo request with a host-unreachable quoting it."""
    req = ICMP(packet)
    notice = (
        IP(src="192.0.2.254", dst=LOOPBACK)
        / ICMP(type=3, code=1)
        / IPerror(src=LOOPBACK, dst=host)
        / ICMPerror(type=8, id=req.id, seq=req.seq)
    )
    return bytes(notice)


def udp_port_unreachable(dst, dport, sport, router="192.0.2.254"):
    """Raw IPv4 bytes of an ICMP port-unreachable quoting a UDP probe."""
    return bytes(
        IP(src=router, dst=LOOPBACK)
        / ICMP(type=3, code=3)
        / IPerror(src=LOOPBACK, dst=dst)
        / UDPerror(sport=sport, dport=dport)
    )


@pytest.fixture
def make_correlator():
    return LoopbackCorrelator


@pytest.fixture
def make_target():
    def _make(host=LOOPBACK, port=0, protocol="tcp"):
        return Target(host, port, protocol)

    return _make


def wait_for(predicate, timeout=3.0, interval=0.01):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        result = predicate()
        if result:
            return result
        time.sleep(interval)
    return None
