"""Connection target and transport configuration, loaded from the environment."""
import os
from dataclasses import dataclass
from typing import Tuple


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes")


def _parse_protocols(value: str) -> Tuple[str, ...]:
    return tuple(p.strip() for p in value.split(",") if p.strip())


@dataclass(frozen=True)
class Target:
    host: str
    port: int

    def __str__(self):
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class TransportConfig:
    alpn_protocols: Tuple[str, ...] = ("h2", "http/1.1")
    tcp_connect_timeout: float = 10.0
    waiting_retry_interval: float = 1.0
    verify_certs: bool = True
    ca_file: str = ""

    @property
    def preferred_protocol(self) -> str:
        return self.alpn_protocols[0]


def load_transport_config() -> TransportConfig:
    protocols = _parse_protocols(os.environ.get("ALPN_PROTOCOLS", ""))
    return TransportConfig(
        alpn_protocols=protocols or TransportConfig.alpn_protocols,
        tcp_connect_timeout=float(os.environ.get("CONNECT_TIMEOUT", str(TransportConfig.tcp_connect_timeout))),
        waiting_retry_interval=float(os.environ.get("WAITING_RETRY_INTERVAL", str(TransportConfig.waiting_retry_interval))),
        verify_certs=_parse_bool(os.environ.get("VERIFY_CERTS", "true")),
        ca_file=os.environ.get("CA_FILE", TransportConfig.ca_file),
    )
