"""
Operator command line.

    python -m lending_core check-penalty <loan_id> [--as-of YYYY-MM-DD] [--db URL]
"""

import argparse
import json
import sys
from datetime import date
from typing import List, Optional

from .config import get_config
from .engine import LendingEngine
from .errors import LendingError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="lending_core", description="Lending engine tools")
    subparsers = parser.add_subparsers(dest="command", required=True)

    check = subparsers.add_parser("check-penalty", help="Show what a loan owes as of a date")
    check.add_argument("loan_id")
    check.add_argument("--as-of", type=date.fromisoformat, default=None,
                       help="Evaluation date (default: today)")
    check.add_argument("--db", default=None, help="Database URL (default: LENDING_DATABASE_URL)")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    config = get_config()
    if args.db:
        config = config.model_copy(update={"database_url": args.db})

    engine = LendingEngine.from_config(config)
    try:
        as_of = args.as_of or date.today()
        breakdown = engine.get_breakdown(args.loan_id, as_of)
    except LendingError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    finally:
        engine.close()

    result = {"loanId": args.loan_id, "asOf": as_of.isoformat()}
    result.update(breakdown.to_dict())
    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
