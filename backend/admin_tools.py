#!/usr/bin/env python3
"""
Admin tools for the Symposium proctoring backend.
Operational tasks that do not go through the HTTP API.
"""

import os
import argparse
import asyncio
from typing import Optional

from dotenv import load_dotenv

dotenv_path = os.path.join(os.path.dirname(__file__), '.env')
if os.path.exists(dotenv_path):
    load_dotenv(dotenv_path)

from symposium.core.database import AsyncSessionLocal, create_db_and_tables
from symposium.core.exceptions import ProctorError
from symposium.core.security import create_access_token
from symposium.models.attempt import AttemptStatus
from symposium.services.attempt_service import AttemptService
from symposium.services.leaderboard_service import LeaderboardBuilder
from symposium.services.violation_service import ViolationMonitor
from symposium.utils.timezone import format_display_time


async def init_db():
    await create_db_and_tables()
    print("✅ Tables created")


async def sweep():
    async with AsyncSessionLocal() as db:
        finalized = await AttemptService(db).sweep_expired()
    print(f"✅ Finalized {len(finalized)} expired attempt(s)")
    for attempt_id in finalized:
        print(f"  • {attempt_id}")


async def show_leaderboard(round_id: Optional[str], event_id: Optional[str]):
    async with AsyncSessionLocal() as db:
        builder = LeaderboardBuilder(db)
        if round_id:
            board = await builder.build_round(round_id)
        else:
            board = await builder.build_event(event_id)

    print(f"🏆 Leaderboard ({board.scope} {board.scope_id})")
    print("-" * 60)
    if not board.entries:
        print("No finished attempts yet")
        return
    for entry in board.entries:
        pending = f"  ({entry.pending_count} pending)" if entry.pending_count else ""
        print(
            f"{entry.rank:>3}. {entry.participant_name:<30} "
            f"{entry.total_score}/{entry.max_score}  "
            f"{format_display_time(entry.submitted_at)}{pending}"
        )


async def override(attempt_id: str, admin_id: str, status: str, reason: Optional[str]):
    async with AsyncSessionLocal() as db:
        attempt, applied = await AttemptService(db).override_attempt(
            attempt_id, admin_id, status=status, reason=reason
        )
    if applied:
        print(f"✅ Attempt {attempt_id} is now {attempt.status}")
    else:
        print(f"ℹ️  Attempt {attempt_id} was already {attempt.status}; nothing changed")


async def show_violations(attempt_id: str):
    async with AsyncSessionLocal() as db:
        attempt = await AttemptService(db).get_attempt(attempt_id)
        violations = await ViolationMonitor(db).list_violations(attempt_id)

    print(f"📋 Attempt {attempt_id}: {attempt.status}, {attempt.violation_count} counted violation(s)")
    print("-" * 60)
    for violation in violations:
        marker = "⚠️ " if violation.counted else "· "
        print(f"[{format_display_time(violation.timestamp)}] {marker}{violation.kind} -> {violation.count_after}")


def main():
    parser = argparse.ArgumentParser(description="Admin tools for the Symposium proctoring backend")
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    subparsers.add_parser('init-db', help='Create database tables')
    subparsers.add_parser('sweep', help='Finalize attempts whose deadline has passed')

    leaderboard_parser = subparsers.add_parser('leaderboard', help='Print a leaderboard')
    scope = leaderboard_parser.add_mutually_exclusive_group(required=True)
    scope.add_argument('--round-id', help='Round ID')
    scope.add_argument('--event-id', help='Event ID')

    override_parser = subparsers.add_parser('override', help='Force an attempt into a terminal state')
    override_parser.add_argument('--attempt-id', required=True, help='Attempt ID')
    override_parser.add_argument('--admin-id', required=True, help='Admin user ID recorded in the audit log')
    override_parser.add_argument(
        '--status',
        default=AttemptStatus.DISQUALIFIED,
        choices=sorted(AttemptStatus.TERMINAL),
        help='Terminal status to apply',
    )
    override_parser.add_argument('--reason', help='Reason recorded in the audit log')

    violations_parser = subparsers.add_parser('violations', help='Show the violation audit trail of an attempt')
    violations_parser.add_argument('--attempt-id', required=True, help='Attempt ID')

    token_parser = subparsers.add_parser('issue-token', help='Mint a bearer token for local testing')
    token_parser.add_argument('--user-id', required=True, help='User ID')
    token_parser.add_argument('--role', default='participant', choices=['participant', 'event_admin', 'super_admin'])

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    try:
        if args.command == 'init-db':
            asyncio.run(init_db())

        elif args.command == 'sweep':
            asyncio.run(sweep())

        elif args.command == 'leaderboard':
            asyncio.run(show_leaderboard(args.round_id, args.event_id))

        elif args.command == 'override':
            asyncio.run(override(args.attempt_id, args.admin_id, args.status, args.reason))

        elif args.command == 'violations':
            asyncio.run(show_violations(args.attempt_id))

        elif args.command == 'issue-token':
            print(create_access_token(args.user_id, args.role))

    except ProctorError as e:
        print(f"❌ {e.code}: {e.message}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
