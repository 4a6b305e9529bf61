"""A small authoritative DNS server answering ACME dns-01 challenges."""

from __future__ import annotations

import abc
import logging
import socket
import socketserver
import struct
import threading
from datetime import timedelta
from ipaddress import IPv4Address, IPv6Address
from typing import List, NamedTuple, Optional, Tuple

import dns.exception
import dns.flags
import dns.message
import dns.name
import dns.rcode
import dns.rdataclass
import dns.rdatatype
import dns.rdtypes.ANY.TXT
import dns.rrset

log = logging.getLogger(__name__)

CHALLENGE_TTL = 60
DNS_PORT = 53


class Addresser(abc.ABC):
    """Something that knows the addresses of this host."""

    @abc.abstractmethod
    def ipv4(self) -> Optional[IPv4Address]:
        """The IPv4 address of the host."""

    @abc.abstractmethod
    def ipv6(self) -> Optional[IPv6Address]:
        """The IPv6 address of the host."""

    @abc.abstractmethod
    def address_lifetime(self) -> timedelta:
        """How long the addresses stay valid."""


class _Endpoints(NamedTuple):
    udp: Tuple
    tcp: Tuple


class _DualStack:
    address_family = socket.AF_INET

    def server_bind(self) -> None:
        if self.address_family == socket.AF_INET6 and hasattr(socket, "IPV6_V6ONLY"):
            self.socket.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0)
        super().server_bind()  # type: ignore[misc]


class _UdpServer(_DualStack, socketserver.ThreadingUDPServer):
    daemon_threads = True
    allow_reuse_address = True


class _UdpServer6(_UdpServer):
    address_family = socket.AF_INET6


class _TcpServer(_DualStack, socketserver.ThreadingTCPServer):
    daemon_threads = True
    allow_reuse_address = True


class _TcpServer6(_TcpServer):
    address_family = socket.AF_INET6


def _recv_exact(conn: socket.socket, size: int) -> Optional[bytes]:
    data = b""
    while len(data) < size:
        chunk = conn.recv(size - len(data))
        if not chunk:
            return None
        data += chunk
    return data


class _UdpHandler(socketserver.BaseRequestHandler):
    def handle(self) -> None:
        wire, sock = self.request
        answer = self.server.dns_server._respond(wire)  # type: ignore[attr-defined]
        if answer is not None:
            try:
                sock.sendto(answer, self.client_address)
            except OSError as err:
                log.warning("DNS WriteMsg failed: %s", err)


class _TcpHandler(socketserver.BaseRequestHandler):
    def handle(self) -> None:
        conn = self.request
        while True:
            header = _recv_exact(conn, 2)
            if header is None:
                return
            (length,) = struct.unpack("!H", header)
            wire = _recv_exact(conn, length)
            if wire is None:
                return
            answer = self.server.dns_server._respond(wire)  # type: ignore[attr-defined]
            if answer is None:
                continue
            try:
                conn.sendall(struct.pack("!H", len(answer)) + answer)
            except OSError as err:
                log.warning("DNS WriteMsg failed: %s", err)
                return


def _bind(classes, handler, port: int, owner: "DnsServer"):
    last_error: Optional[OSError] = None
    for cls, host in classes:
        try:
            server = cls((host, port), handler)
        except OSError as err:
            last_error = err
            continue
        server.dns_server = owner
        return server
    assert last_error is not None
    raise last_error


class DnsServer:
    """Answers for the host's own zone and an ACME challenge record."""

    def __init__(self, fqdn: str, addresser: Addresser) -> None:
        self.zone = dns.name.from_text(fqdn + ".")
        self.addresser = addresser
        self._challenge: Optional[dns.rrset.RRset] = None
        self._servers: List[socketserver.BaseServer] = []

    @property
    def challenge(self) -> Optional[dns.rrset.RRset]:
        return self._challenge

    def handle_dns01_challenge(self, fqdn: str, record: str) -> None:
        """Publish record as the TXT challenge answer for fqdn."""
        rdata = dns.rdtypes.ANY.TXT.TXT(
            dns.rdataclass.IN, dns.rdatatype.TXT, [record.encode()]
        )
        self._challenge = dns.rrset.from_rdata(
            dns.name.from_text(fqdn + "."), CHALLENGE_TTL, rdata
        )

    def reply(self, request: dns.message.Message) -> dns.message.Message:
        """Build the authoritative answer to a query."""
        response = dns.message.make_response(request)
        response.flags |= dns.flags.AA
        questions = request.question
        if len(questions) == 1 and questions[0].name == self.zone:
            response.set_rcode(dns.rcode.NXDOMAIN)
        elif (
            len(questions) == 1
            and self._challenge is not None
            and questions[0].name == self._challenge.name
        ):
            response.answer.append(self._challenge)
        else:
            response.set_rcode(dns.rcode.NXDOMAIN)
        return response

    def _respond(self, wire: bytes) -> Optional[bytes]:
        try:
            request = dns.message.from_wire(wire)
        except dns.exception.DNSException as err:
            log.warning("Dropping malformed DNS message: %s", err)
            return None
        questions = request.question
        if questions and questions[0].name.is_subdomain(self.zone):
            return self.reply(request).to_wire()
        response = dns.message.make_response(request)
        response.set_rcode(dns.rcode.SERVFAIL)
        return response.to_wire()

    def serve(self, port: int = DNS_PORT) -> _Endpoints:
        """Serve over UDP and TCP in the background; return the bound addresses."""
        udp = _bind(((_UdpServer6, "::"), (_UdpServer, "")), _UdpHandler, port, self)
        try:
            tcp = _bind(((_TcpServer6, "::"), (_TcpServer, "")), _TcpHandler, port, self)
        except OSError:
            udp.server_close()
            raise
        for server in (udp, tcp):
            self._servers.append(server)
            threading.Thread(target=server.serve_forever, daemon=True).start()
        return _Endpoints(udp.server_address, tcp.server_address)

    def close(self) -> None:
        for server in self._servers:
            server.shutdown()
            server.server_close()
        self._servers.clear()

    def __enter__(self) -> "DnsServer":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def start_dns(fqdn: str, addresser: Addresser) -> DnsServer:
    """Start answering DNS for fqdn on port 53."""
    server = DnsServer(fqdn, addresser)
    try:
        server.serve(DNS_PORT)
    except OSError as err:
        log.error("DNS server failed: %s", err)
    return server