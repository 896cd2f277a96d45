"""Command-line entry point.

Usage:
    monthend review --org acme --from 2025-09-01 --to 2025-09-30
    monthend detect --org acme --from 2025-09-01 --to 2025-09-30 --debug
    monthend candidates --org acme --from 2025-09-01 --to 2025-09-30
    monthend decide --org acme --candidate <uuid> --decision approved --by jane
    monthend history --org acme --limit 20
    monthend rules show --org acme
    monthend rules set --org acme --min-amount 100 --exclude-account 61
    monthend rules reset --org acme

Credentials come from QBO_ACCESS_TOKEN and QBO_REALM_ID; state is kept in
the SQLite database at DATABASE_PATH.
"""

import argparse
import asyncio
import json
import sys
from dataclasses import dataclass
from typing import Any
from uuid import UUID

import structlog

from monthend.accruals import (
    AccrualDetector,
    AccrualRuleStore,
    AccrualService,
    PostingGateway,
)
from monthend.clients import QBOClient, StaticCredentialProvider
from monthend.config import Settings, bind_command_context, configure_logging, get_settings
from monthend.errors import MonthEndError
from monthend.review import MonthEndReview
from monthend.storage import (
    SQLiteCandidateRepository,
    SQLiteDatabase,
    SQLitePostingLedger,
    SQLiteRuleRepository,
)

logger = structlog.get_logger(__name__)


@dataclass
class Runtime:
    client: QBOClient
    rules: AccrualRuleStore
    service: AccrualService
    review: MonthEndReview


def build_runtime(settings: Settings) -> Runtime:
    """Wire the SQLite repositories and a static-token QBO client."""
    database = SQLiteDatabase(settings.database_path)
    database.init_schema()

    credentials = StaticCredentialProvider(
        access_token=(
            settings.qbo_access_token.get_secret_value() if settings.qbo_access_token else None
        ),
        realm_id=settings.qbo_realm_id,
    )
    client = QBOClient(credentials)
    ledger = SQLitePostingLedger(database)
    rules = AccrualRuleStore(SQLiteRuleRepository(database))
    service = AccrualService(
        rules=rules,
        candidates=SQLiteCandidateRepository(database),
        ledger=ledger,
        detector=AccrualDetector(client),
        gateway=PostingGateway(client, ledger),
    )
    return Runtime(client=client, rules=rules, service=service, review=MonthEndReview(client))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="monthend",
        description="Month-end close review for QuickBooks Online",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    def period_command(name: str, help_text: str) -> argparse.ArgumentParser:
        command = commands.add_parser(name, help=help_text)
        command.add_argument("--org", required=True, help="Organization id")
        command.add_argument("--from", dest="period_from", required=True, help="YYYY-MM-DD")
        command.add_argument("--to", dest="period_to", required=True, help="YYYY-MM-DD")
        return command

    period_command("review", "Run P&L findings against the prior month")
    detect = period_command("detect", "Detect and store accrual candidates")
    detect.add_argument("--debug", action="store_true", help="Include candidate examples")
    period_command("candidates", "List stored accrual candidates for a period")

    decide = commands.add_parser("decide", help="Approve or reject a candidate")
    decide.add_argument("--org", required=True)
    decide.add_argument("--candidate", required=True, nargs="+", type=UUID)
    decide.add_argument("--decision", required=True, choices=["approved", "rejected"])
    decide.add_argument("--by", dest="approved_by")
    decide.add_argument("--notes")

    history = commands.add_parser("history", help="Recent candidates with postings")
    history.add_argument("--org", required=True)
    history.add_argument("--limit", type=int, default=50)

    rules = commands.add_parser("rules", help="Show or change accrual rules")
    rule_commands = rules.add_subparsers(dest="rules_command", required=True)
    rule_commands.add_parser("show").add_argument("--org", required=True)
    rule_commands.add_parser("reset").add_argument("--org", required=True)
    rule_set = rule_commands.add_parser("set")
    rule_set.add_argument("--org", required=True)
    rule_set.add_argument("--lookback-months", type=int)
    rule_set.add_argument("--min-amount")
    rule_set.add_argument("--confidence-threshold", type=float)
    rule_set.add_argument("--min-recurrence-count", type=int)
    rule_set.add_argument("--exclude-account", dest="excluded_accounts", action="append")
    rule_set.add_argument("--exclude-vendor", dest="excluded_vendors", action="append")
    rule_set.add_argument("--include-account", dest="include_accounts", action="append")

    return parser


async def _rules(runtime: Runtime, args: argparse.Namespace) -> dict[str, Any]:
    if args.rules_command == "reset":
        rule = await runtime.rules.reset_to_defaults(args.org)
    elif args.rules_command == "set":
        rule = await runtime.rules.save(
            args.org,
            lookback_months=args.lookback_months,
            min_amount=args.min_amount,
            confidence_threshold=args.confidence_threshold,
            min_recurrence_count=args.min_recurrence_count,
            excluded_accounts=args.excluded_accounts,
            excluded_vendors=args.excluded_vendors,
            include_accounts=args.include_accounts,
        )
    else:
        rule = await runtime.rules.get(args.org)
    return rule.to_dict()


async def execute(runtime: Runtime, args: argparse.Namespace) -> Any:
    """Run one parsed command and return its JSON-ready result."""
    if args.command == "review":
        result = await runtime.review.run(args.org, args.period_from, args.period_to)
        return result.to_dict()

    if args.command == "detect":
        detection = await runtime.service.run_detection(
            args.org, args.period_from, args.period_to, debug=args.debug
        )
        return detection.to_dict()

    if args.command == "candidates":
        candidates = await runtime.service.list_candidates(
            args.org, args.period_from, args.period_to
        )
        return [candidate.to_dict() for candidate in candidates]

    if args.command == "decide":
        if args.decision == "approved" and len(args.candidate) > 1:
            outcomes = await runtime.service.approve_many(
                args.org, args.candidate, approved_by=args.approved_by, notes=args.notes
            )
            return [outcome.to_dict() for outcome in outcomes]
        decisions = []
        for candidate_id in args.candidate:
            decided = await runtime.service.decide(
                args.org, candidate_id, args.decision, args.approved_by, args.notes
            )
            decisions.append(decided.to_dict())
        return decisions[0] if len(decisions) == 1 else decisions

    if args.command == "history":
        entries = await runtime.service.history(args.org, limit=args.limit)
        return [entry.to_dict() for entry in entries]

    return await _rules(runtime, args)


async def run(argv: list[str] | None = None) -> int:
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)
    args = build_parser().parse_args(argv)
    bind_command_context(args.command, args.org)

    runtime = build_runtime(settings)
    try:
        result = await execute(runtime, args)
    except (MonthEndError, ValueError) as e:
        logger.error("command_failed", command=args.command, error=str(e))
        print(json.dumps({"ok": False, "error": str(e)}), file=sys.stderr)
        return 1
    finally:
        await runtime.client.close()

    print(json.dumps(result, indent=2, default=str))
    return 0


def main(argv: list[str] | None = None) -> None:
    sys.exit(asyncio.run(run(argv)))


if __name__ == "__main__":
    main()
