"""wayfinder command-line entry point.

Runs one workflow against a target repository for a goal or a ticket and
writes a run report under ``.sdd/runs/``.
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from wayfinder.agents.oracle import ChatModelOracle
from wayfinder.core.brief import TicketBlockedError, load_brief, open_tickets
from wayfinder.core.config import configure
from wayfinder.core.context import RunContext
from wayfinder.core.logging import get_logger, setup_logging
from wayfinder.core.orchestrator import run_workflow
from wayfinder.core.run_report import write_run_report
from wayfinder.core.state import ExecutionProfile
from wayfinder.tools.git import ensure_repo

PROFILE_CHOICES = [p.value for p in ExecutionProfile]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="wayfinder", description="Autonomous coding agent for one goal or ticket.")
    parser.add_argument("--root", default=None, help="Target repository (default: ROOT_DIR or cwd)")
    parser.add_argument("--goal", default="", help="Goal for this run")
    parser.add_argument("--ticket", default=None, help="Ticket file to work on")
    parser.add_argument(
        "--next-ticket",
        action="store_true",
        help="Pick the first open ticket under .sdd/backlog/tickets/open",
    )
    parser.add_argument("--profile", choices=PROFILE_CHOICES, default=None, help="Force an execution profile")
    parser.add_argument("--dry-run", action="store_true", help="No git commits, tickets stay open")
    parser.add_argument("--offline", action="store_true", help="Skip web research")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = configure(
        root_dir=args.root,
        run_profile=args.profile,
        dry_run=True if args.dry_run else None,
        offline_mode=True if args.offline else None,
    )
    setup_logging()
    logger = get_logger("main")

    logger.info("=" * 60)
    logger.info("wayfinder starting | root: %s", settings.root_dir)
    logger.info("=" * 60)

    root = settings.root_path
    if not root.is_dir():
        logger.error("Root directory %s does not exist", root)
        return 2

    profile = None
    if settings.run_profile:
        try:
            profile = ExecutionProfile(settings.run_profile.strip().lower())
        except ValueError:
            logger.warning("Ignoring unknown RUN_PROFILE %r", settings.run_profile)

    ticket = args.ticket
    if ticket is None and args.next_ticket:
        tickets = open_tickets(root)
        if not tickets:
            logger.info("No open tickets")
            return 0
        ticket = tickets[0]

    try:
        brief = load_brief(root, goal=args.goal, ticket_path=ticket)
    except TicketBlockedError as exc:
        logger.error("%s", exc)
        return 2
    if not brief.goal:
        logger.error("No goal given: pass --goal or --ticket")
        return 2

    if settings.git_enabled and not settings.dry_run:
        ensure_repo(root)

    ctx = RunContext(settings=settings, oracle=ChatModelOracle())
    _, report = asyncio.run(run_workflow(brief, ctx, run_profile=profile))
    path = write_run_report(root, report)

    print(f"{report.status}: {report.stop_reason or report.terminal_status or '-'}")
    if path:
        print(f"report: {path}")
    return 1 if report.failed else 0


if __name__ == "__main__":
    sys.exit(main())
