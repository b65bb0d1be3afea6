"""alpn-probe: check that a server negotiates HTTP/2 over TLS via ALPN."""

import logging
from argparse import ArgumentParser, ArgumentTypeError
from dataclasses import replace

from alpn_probe.config import Target, load_transport_config
from alpn_probe.session import run

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def port_number(value: str) -> int:
    try:
        port = int(value)
    except ValueError:
        raise ArgumentTypeError(f"invalid port: {value!r}")
    if not 1 <= port <= 65535:
        raise ArgumentTypeError(f"port must be between 1 and 65535, got {port}")
    return port


def build_parser() -> ArgumentParser:
    """Build the CLI argument parser."""
    parser = ArgumentParser(
        prog="alpn-probe",
        description="Open one TLS connection and verify that HTTP/2 is negotiated via ALPN.",
    )
    parser.add_argument("host", help="Server hostname or IP address")
    parser.add_argument("port", type=port_number, help="Server TCP port")
    parser.add_argument(
        "--timeout",
        type=float,
        help="Connect and handshake timeout in seconds (default: 10, env CONNECT_TIMEOUT)",
    )
    parser.add_argument(
        "--alpn",
        action="append",
        metavar="PROTO",
        help="Protocol to advertise, most preferred first; repeat for more (default: h2, http/1.1)",
    )
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Skip certificate and hostname verification",
    )
    parser.add_argument(
        "--ca-file",
        help="CA bundle to trust instead of the system store",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Log progress to stderr (-vv for debug detail)",
    )
    return parser


def configure_logging(verbosity: int):
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format=LOG_FORMAT)


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    config = load_transport_config()
    overrides = {}
    if args.timeout is not None:
        overrides["tcp_connect_timeout"] = args.timeout
    if args.alpn:
        overrides["alpn_protocols"] = tuple(args.alpn)
    if args.insecure:
        overrides["verify_certs"] = False
    if args.ca_file:
        overrides["ca_file"] = args.ca_file
    config = replace(config, **overrides)

    target = Target(host=args.host, port=args.port)
    logging.getLogger(__name__).debug("Target %s, config %s", target, config)
    run(target, config)


if __name__ == "__main__":
    main()
