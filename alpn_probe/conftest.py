"""Shared fixtures: a throwaway CA, a server certificate and an in-process TLS server."""

import datetime
import ipaddress
import socket
import ssl
import threading

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID


def _name(common_name):
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


def _write_pem(path, data):
    path.write_bytes(data)
    return str(path)


@pytest.fixture(scope="session")
def cert_files(tmp_path_factory):
    """Write ca.pem, server.pem and server.key; the server cert covers 127.0.0.1 and localhost."""
    directory = tmp_path_factory.mktemp("certs")
    now = datetime.datetime.now(datetime.timezone.utc)

    ca_key = ec.generate_private_key(ec.SECP256R1())
    ca_cert = (
        x509.CertificateBuilder()
        .subject_name(_name("alpn-probe test CA"))
        .issuer_name(_name("alpn-probe test CA"))
        .public_key(ca_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=30))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=True,
                crl_sign=True,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(ca_key.public_key()), critical=False)
        .sign(ca_key, hashes.SHA256())
    )

    server_key = ec.generate_private_key(ec.SECP256R1())
    server_cert = (
        x509.CertificateBuilder()
        .subject_name(_name("localhost"))
        .issuer_name(ca_cert.subject)
        .public_key(server_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=30))
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(
            x509.SubjectAlternativeName(
                [x509.DNSName("localhost"), x509.IPAddress(ipaddress.ip_address("127.0.0.1"))]
            ),
            critical=False,
        )
        .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(server_key.public_key()), critical=False)
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_key.public_key()), critical=False
        )
        .sign(ca_key, hashes.SHA256())
    )

    return {
        "ca": _write_pem(directory / "ca.pem", ca_cert.public_bytes(serialization.Encoding.PEM)),
        "cert": _write_pem(directory / "server.pem", server_cert.public_bytes(serialization.Encoding.PEM)),
        "key": _write_pem(
            directory / "server.key",
            server_key.private_bytes(
                serialization.Encoding.PEM,
                serialization.PrivateFormat.PKCS8,
                serialization.NoEncryption(),
            ),
        ),
        "server_der": server_cert.public_bytes(serialization.Encoding.DER),
    }


class LocalTLSServer:
    """Accepts TLS connections on 127.0.0.1 and holds each one open until the client closes."""

    def __init__(self, cert_file, key_file, alpn_protocols=None, handshake=True):
        self._ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        self._ctx.load_cert_chain(certfile=cert_file, keyfile=key_file)
        self._ctx.minimum_version = ssl.TLSVersion.TLSv1_2
        if alpn_protocols:
            self._ctx.set_alpn_protocols(alpn_protocols)
        self._handshake = handshake
        self._shutdown = threading.Event()
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._sock.settimeout(0.2)
        self._sock.bind(("127.0.0.1", 0))
        self._sock.listen(5)
        self.port = self._sock.getsockname()[1]
        self.connections = 0
        self._thread = threading.Thread(target=self._serve, daemon=True)

    def start(self):
        if self._handshake:
            self._thread.start()
        return self

    def _serve(self):
        while not self._shutdown.is_set():
            try:
                conn, _ = self._sock.accept()
            except socket.timeout:
                continue
            except OSError:
                break
            self.connections += 1
            threading.Thread(target=self._handle, args=(conn,), daemon=True).start()

    def _handle(self, conn):
        conn.settimeout(5.0)
        try:
            with self._ctx.wrap_socket(conn, server_side=True) as tls_conn:
                while tls_conn.recv(1024):
                    pass
        except (ssl.SSLError, OSError):
            conn.close()

    def stop(self):
        self._shutdown.set()
        self._sock.close()
        if self._thread.is_alive():
            self._thread.join(timeout=5)


@pytest.fixture
def tls_server(cert_files):
    """Factory: ``tls_server(alpn_protocols=[...])`` returns a started LocalTLSServer."""
    servers = []

    def make(alpn_protocols=None, handshake=True):
        server = LocalTLSServer(cert_files["cert"], cert_files["key"], alpn_protocols, handshake).start()
        servers.append(server)
        return server

    yield make

    for server in servers:
        server.stop()


@pytest.fixture
def unused_port():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port
