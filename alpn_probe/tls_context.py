"""SSLContext factory for the probe client."""

import ssl

from alpn_probe.config import TransportConfig


def create_client_context(config: TransportConfig) -> ssl.SSLContext:
    """Create a client context advertising ``config.alpn_protocols``.

    Certificate and hostname checks are left to the platform trust store, or to
    ``config.ca_file`` when one is given.
    """
    if config.verify_certs:
        ctx = ssl.create_default_context(cafile=config.ca_file or None)
    else:
        ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
    ctx.set_alpn_protocols(list(config.alpn_protocols))
    return ctx
