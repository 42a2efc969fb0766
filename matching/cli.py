"""
Command-line driver: match transactions between accounts and turn them into
transfers.

    python -m matching --ledger ledger.json --accounts 1,2 --name "Me" --write
"""

import argparse
import json
import logging
from datetime import date, datetime
from pathlib import Path
from typing import Callable, Optional, Sequence

from pydantic import ValidationError

from ledger.models import LedgerSnapshot, ReconcileRequest
from ledger.service import LedgerService, LedgerServiceError

from .config import load_settings, setup_logging
from .coordinator import InvalidInputError, Reconciler, RunAbortedError
from .merge import MergeExecutor
from .report import format_merge, format_report
from .resolver import AmbiguityPolicy, AutomatedPolicy, InteractivePrompt

logger = logging.getLogger(__name__)


def parse_date(value: str) -> date:
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date {value!r}, expected YYYY-MM-DD")


def parse_accounts(value: str) -> list[int]:
    ids = []
    for part in value.split(","):
        part = part.strip()
        if not part:
            continue
        if not part.isdigit():
            raise argparse.ArgumentTypeError(f"Invalid account id {part!r}")
        ids.append(int(part))
    return ids


def resolve_dates(
    service: LedgerService,
    user_id: int,
    start: Optional[date],
    end: Optional[date],
    today: Optional[date] = None,
) -> tuple[date, date]:
    """Fill in missing bounds: first entry ever (or start of month) up to today."""
    today = today or date.today()
    if start is None:
        start = service.first_entry_date(user_id) or today.replace(day=1)
    if end is None:
        end = today
    if start > end:
        start, end = end, start
    return start, end


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="matching",
        description="Match transactions between different accounts and make them a transfer.",
    )
    parser.add_argument("--ledger", type=Path, required=True, help="JSON ledger snapshot to reconcile")
    parser.add_argument("--user", type=int, default=1, help="The user ID to reconcile for")
    parser.add_argument("--accounts", type=parse_accounts, required=True,
                        help="Comma-separated list of asset accounts or liabilities")
    parser.add_argument("--name", default=None, help="Name of the expected opposing account")
    parser.add_argument("--skip-others", action="store_true", default=None,
                        help="Skip deposits from any other opposing account without asking")
    parser.add_argument("--start-date", type=parse_date, default=None,
                        help="Earliest transaction date (inclusive). Defaults to the first transaction ever")
    parser.add_argument("--end-date", type=parse_date, default=None,
                        help="Latest transaction date (inclusive). Defaults to today")
    parser.add_argument("--window-days", type=int, default=None, help="Days either side of a deposit to search")
    parser.add_argument("--auto", choices=[p.value for p in AmbiguityPolicy], default=None,
                        help="Run without prompting, resolving ambiguity with this policy")
    parser.add_argument("--write", action="store_true", help="Write the reconciled ledger back to --ledger")
    parser.add_argument("--log-level", default=None)
    return parser


def main(
    argv: Optional[Sequence[str]] = None,
    ask: Callable[[str], str] = input,
    write: Callable[[str], None] = print,
) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings()
    setup_logging(args.log_level or settings.log_level)

    expected_name = args.name if args.name is not None else settings.expected_name
    skip_others = args.skip_others if args.skip_others is not None else settings.skip_others
    window_days = args.window_days if args.window_days is not None else settings.window_days

    try:
        snapshot = LedgerSnapshot(**json.loads(args.ledger.read_text(encoding="utf-8")))
        service = LedgerService.from_snapshot(snapshot)
    except (OSError, json.JSONDecodeError, ValidationError, LedgerServiceError) as e:
        write(f"Could not load ledger {args.ledger}: {e}")
        return 1

    if args.auto:
        resolver = AutomatedPolicy(expected_name, skip_others, AmbiguityPolicy(args.auto))
    else:
        resolver = InteractivePrompt(expected_name, skip_others, ask=ask, write=write)

    start, end = resolve_dates(service, args.user, args.start_date, args.end_date)
    try:
        request = ReconcileRequest(
            user_id=args.user,
            account_ids=args.accounts,
            start_date=start,
            end_date=end,
            expected_name=expected_name,
            window_days=window_days,
        )
    except ValidationError as e:
        write(f"Invalid input: {e}")
        return 1

    reconciler = Reconciler(service, service, resolver, MergeExecutor(service))
    exit_code = 0
    try:
        report = reconciler.run(request)
    except InvalidInputError as e:
        write(f"Please make sure all accounts in --accounts are asset accounts or liabilities. ({e})")
        return 1
    except RunAbortedError as e:
        write(str(e))
        if e.merges:
            write(f"{len(e.merges)} merge(s) were committed before the abort:")
            for record in e.merges:
                write(format_merge(record))
        exit_code = 1
    else:
        for line in format_report(report):
            write(line)

    if args.write:
        args.ledger.write_text(service.snapshot().model_dump_json(indent=2), encoding="utf-8")
        logger.info("Wrote reconciled ledger to %s", args.ledger)
    return exit_code
