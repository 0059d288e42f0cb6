"""
=============================================================================
HAPERF CLI ENTRY POINT
=============================================================================

    # Record on all interfaces, plain HTTP on 80 and HTTPS on 443
    python -m haperf record -c ssl/server.crt -k ssl/server.key

    # Record on one address, plain HTTP on 8080 (HTTPS stays on 443)
    python -m haperf record -c server.crt -k server.key -a 192.168.1.2 -p 8080

    # Log every connection
    python -m haperf record -c server.crt -k server.key -v

=============================================================================
EXIT CODES
=============================================================================

    0   --help / --version
    1   no command, record without --cert-file/--cert-key, replay,
        or a runtime failure (one "Error running server: ..." line on stderr)
    2   unknown option or malformed arguments (argparse)

=============================================================================
"""

import argparse
import dataclasses
import sys
from typing import List, Optional

from . import __version__
from .config import ServerConfig
from .errors import HaperfError
from .server import Supervisor, setup_logging


DESCRIPTION = """\
This program records and replays HTTP data.

To record data, use the "record" command with the required certificate
file and certificate key options. You may also provide an optional IP
address and port number to listen on. The HTTPS listener always uses
port 443; only the plain HTTP port can be changed. HTTPS handshakes are
completed one at a time, so a client that connects to port 443 and sends
nothing delays other HTTPS clients for up to 5 seconds.

To replay data (which is currently a work in progress), use the
"replay" command. This command currently has no options.
"""

EPILOG = """\
Examples:
  Record on 192.168.1.2, plain HTTP on port 8080, HTTPS on 443:
      haperf record -c server.crt -k server.key -a 192.168.1.2 -p 8080

  Record with the default address (::) and port (80):
      haperf record -c server.crt -k server.key
"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="haperf",
        description=DESCRIPTION,
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "command",
        nargs="?",
        choices=["record", "replay"],
        help="record: run the HTTP and HTTPS listeners; replay: work in progress",
    )

    # ─────────────────────────────────────────────────────────────────────
    # RECORD OPTIONS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--cert-file", "-c",
        metavar="CERT_FILE",
        help="Path to certificate file (required for record)",
    )

    parser.add_argument(
        "--cert-key", "-k",
        metavar="CERT_KEY",
        help="Path to certificate key (required for record)",
    )

    parser.add_argument(
        "--address", "-a",
        default=None,
        help="IP address to record (default: ::)",
    )

    parser.add_argument(
        "--port", "-p",
        default=None,
        help="Port number or service name to record plain HTTP on (default: 80; HTTPS is always 443)",
    )

    # ─────────────────────────────────────────────────────────────────────
    # META OPTIONS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show more info (for supported commands)",
    )

    parser.add_argument(
        "--version", "-V",
        action="version",
        version=f"HAperf version {__version__}. Copyright 2023 HAperf.com.",
    )

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Parse arguments, run the requested command, return the exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help(sys.stderr)
        return 1

    if args.command == "replay":
        print("haperf: replay is not implemented yet", file=sys.stderr)
        return 1

    missing = [
        flag for flag, value in (("--cert-file", args.cert_file), ("--cert-key", args.cert_key))
        if not value
    ]
    if missing:
        parser.print_usage(sys.stderr)
        print(f"haperf: record requires {' and '.join(missing)}", file=sys.stderr)
        return 1

    log = setup_logging(args.verbose)

    try:
        # Environment first, command line on top
        config = dataclasses.replace(
            ServerConfig.from_env(),
            cert_file=args.cert_file,
            key_file=args.cert_key,
            verbose=args.verbose,
        )
        if args.address is not None:
            config.host = args.address
        if args.port is not None:
            config.port = args.port

        Supervisor(config, log=log).run()
    except (HaperfError, OSError, ValueError) as e:
        print(f"Error running server: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
