"""ALPN probe: one TLS connection, reporting whether HTTP/2 was negotiated."""
from alpn_probe.config import Target, TransportConfig, load_transport_config
from alpn_probe.events import ConnectionEvent, ConnectionState, PathStatus
from alpn_probe.session import SessionController, probe, run
from alpn_probe.transport import AsyncioTransport, Transport

__version__ = "0.1.0"
