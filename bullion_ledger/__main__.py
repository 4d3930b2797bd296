"""
Command line entry point

    python -m bullion_ledger process-pdcs [--as-of YYYY-MM-DD] [--triggered-by USER]
    python -m bullion_ledger serve [--host HOST] [--port PORT]

process-pdcs is what the external daily scheduler calls. It prints the
sweep summary as JSON and exits 1 when any schedule failed. A rejected
run (for example an --as-of later than today) prints the error as JSON on
stderr and exits 2.
"""

import argparse
import json
import sys
from datetime import date
from typing import List, Optional

from .config import get_config
from .exceptions import LedgerError
from .logging_config import setup_logging


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="bullion_ledger", description="Bullion ledger engine")
    commands = parser.add_subparsers(dest="command", required=True)

    sweep = commands.add_parser("process-pdcs", help="Post every post-dated cheque that has matured")
    sweep.add_argument("--as-of", type=date.fromisoformat, default=None,
                       help="Day to sweep for (default: today, UTC)")
    sweep.add_argument("--triggered-by", default=None, help="Actor recorded on the maturity postings")

    serve = commands.add_parser("serve", help="Start the HTTP API")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    cfg = get_config()
    setup_logging(cfg.log_level, log_format=cfg.log_format, log_file=cfg.log_file)

    if args.command == "serve":
        from .api import run_server
        run_server(host=args.host, port=args.port)
        return 0

    from .system import LedgerSystem
    system = LedgerSystem(config=cfg)
    try:
        result = system.maturity.process_matured_pdcs(triggered_by=args.triggered_by, as_of=args.as_of)
    except LedgerError as e:
        print(json.dumps(e.to_dict(), indent=2, default=str), file=sys.stderr)
        return 2
    finally:
        system.close()

    print(json.dumps(result.to_dict(), indent=2))
    return 1 if result.errors else 0


if __name__ == "__main__":
    sys.exit(main())
