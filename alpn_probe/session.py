"""Session controller: drives one connection and turns its lifecycle into an exit code."""

import logging
import sys
from typing import Optional

from alpn_probe.config import Target, TransportConfig
from alpn_probe.errors import ALPNMismatch, ALPNMissing, ConnectError, PathUnsatisfied, ProbeError
from alpn_probe.events import ConnectionEvent, ConnectionState, PathStatus
from alpn_probe.metadata import describe_certificate, format_cipher_suite, tls_version_label
from alpn_probe.transport import AsyncioTransport, Transport

logger = logging.getLogger(__name__)


class SessionController:
    """Reacts to each state the transport reports.

    The controller finishes exactly once.  A failure at any point prints a
    single diagnostic and finishes with exit code 1; success needs a ready
    connection with a satisfied path, the preferred ALPN protocol, and the
    CANCELLED event that follows our own ``cancel()``.
    """

    def __init__(self, target: Target, config: TransportConfig, transport: Transport):
        self.target = target
        self.config = config
        self.transport = transport
        self.state = ConnectionState.SETUP
        self.negotiated_protocol: Optional[str] = None
        self.tls_version: Optional[str] = None
        self.cipher_suite: Optional[int] = None
        self.exit_code: Optional[int] = None
        self._validated = False

    @property
    def finished(self) -> bool:
        return self.exit_code is not None

    def handle_event(self, event: ConnectionEvent):
        if self.finished:
            logger.debug("Ignoring %s, session already finished", event.state.value)
            return
        self.state = event.state

        if event.state is ConnectionState.SETUP:
            print("TLS connection setup in progress...")
        elif event.state is ConnectionState.PREPARING:
            print(f"Connecting to {self.target.host}:{self.target.port}...")
        elif event.state is ConnectionState.WAITING:
            logger.info("Waiting: %s", event.error)
            print("TLS connection waiting for further events...")
        elif event.state is ConnectionState.READY:
            self._on_ready()
        elif event.state is ConnectionState.FAILED:
            self._fail(ConnectError(event.error))
        elif event.state is ConnectionState.CANCELLED:
            print("TLS connection cancelled...")
            if self._validated:
                self._finish(0)
            else:
                logger.warning("Connection cancelled before validation completed")
                self._finish(1)

    def _on_ready(self):
        print("TLS connection established!")
        try:
            self.validate()
        except ProbeError as e:
            self._fail(e)
            return
        self._validated = True
        self.transport.cancel()

    def validate(self):
        """Post-handshake checks, in order; raises on the first failure."""
        status = self.transport.path_status()
        if status is not PathStatus.SATISFIED:
            raise PathUnsatisfied(status)

        self.tls_version = self.transport.tls_version()
        self.cipher_suite = self.transport.cipher_suite()
        print(f"TLS Version: {tls_version_label(self.tls_version)}")
        print(f"Cipher Suite: {format_cipher_suite(self.cipher_suite)}")
        self._log_peer_certificate()

        self.negotiated_protocol = self.transport.negotiated_protocol()
        if self.negotiated_protocol is None:
            raise ALPNMissing()
        print(f"Negotiated protocol: {self.negotiated_protocol}")
        if self.negotiated_protocol != self.config.preferred_protocol:
            raise ALPNMismatch(self.config.preferred_protocol, self.negotiated_protocol)
        print("Connection ready for HTTP/2 frame exchange!")

    def _log_peer_certificate(self):
        der = self.transport.peer_certificate()
        if not der:
            logger.info("Peer presented no certificate")
            return
        try:
            details = describe_certificate(der)
        except Exception as e:
            logger.debug("Could not parse peer certificate: %s", e)
            return
        logger.info(
            "Peer certificate: CN=%s issuer=%s expires %s (%d days) SAN=%s sha256=%s",
            details["subject_common_name"],
            details["issuer_common_name"],
            details["not_after"],
            details["days_remaining"],
            ", ".join(details["san"]) or "-",
            details["fingerprint_sha256"],
        )

    def _fail(self, error: ProbeError):
        print(error)
        self._finish(error.exit_code)

    def _finish(self, exit_code: int):
        logger.info("Session for %s finished with exit code %d", self.target, exit_code)
        self.exit_code = exit_code
        self.transport.stop()


def probe(target: Target, config: TransportConfig, transport: Optional[Transport] = None) -> int:
    """Run one session to completion and return its exit code."""
    if transport is None:
        try:
            transport = AsyncioTransport(target, config)
        except OSError as e:
            # Unreadable CA bundle; nothing was connected.
            logger.info("Could not build TLS context: %s", e)
            print(ConnectError(e))
            return ConnectError.exit_code
    controller = SessionController(target, config, transport)
    transport.subscribe(controller.handle_event)
    transport.start()
    transport.run()
    if controller.exit_code is None:
        raise RuntimeError("transport stopped before the session finished")
    return controller.exit_code


def run(target: Target, config: TransportConfig):
    """Probe ``target`` and terminate the process with the session's exit code."""
    sys.exit(probe(target, config))
