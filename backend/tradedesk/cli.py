"""
Command-line entry points for the scheduled checks and admin tasks.

    python -m tradedesk.cli check-price-alerts
    python -m tradedesk.cli check-milestones
    python -m tradedesk.cli check-positions
    python -m tradedesk.cli create-user --email a@b.c --name Alice
    python -m tradedesk.cli issue-token --user-id 1
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from sqlalchemy import select

from tradedesk.config import settings
from tradedesk.core.security import create_access_token
from tradedesk.database import AsyncSessionLocal
from tradedesk.models.user import User
from tradedesk.services.scheduled_checks import run_price_alert_check, run_milestone_check, run_position_check

logger = logging.getLogger("tradedesk.cli")


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tradedesk", description="TradeDesk ledger service tools")
    parser.add_argument("--log-level", default=settings.LOG_LEVEL, help="Logging level")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("check-price-alerts", help="Fire price alerts against cached tickers")
    sub.add_parser("check-milestones", help="Send performance milestone notifications")
    sub.add_parser("check-positions", help="Close positions whose stop-loss or take-profit was hit")

    create_user = sub.add_parser("create-user", help="Create a user")
    create_user.add_argument("--email", required=True)
    create_user.add_argument("--name", default=None)
    create_user.add_argument("--live", action="store_true", help="Start in LIVE instead of DEMO mode")

    token = sub.add_parser("issue-token", help="Print a bearer token for a user")
    token.add_argument("--user-id", type=int, required=True)
    token.add_argument("--expires-minutes", type=int, default=None)
    return parser


async def create_user(email: str, name: Optional[str], demo: bool = True) -> User:
    async with AsyncSessionLocal() as db:
        existing = await db.scalar(select(User).where(User.email == email))
        if existing:
            logger.info("User %s already exists (id %s)", email, existing.id)
            return existing
        user = User(email=email, name=name, demo_mode_enabled=demo)
        db.add(user)
        await db.commit()
        logger.info("Created user %s (id %s)", email, user.id)
        return user


async def run(args: argparse.Namespace) -> int:
    if args.command == "check-price-alerts":
        print(f"{await run_price_alert_check()} alerts fired")
    elif args.command == "check-milestones":
        print(f"{await run_milestone_check()} milestone notifications sent")
    elif args.command == "check-positions":
        print(f"{await run_position_check()} positions closed")
    elif args.command == "create-user":
        user = await create_user(args.email, args.name, demo=not args.live)
        print(user.id)
    elif args.command == "issue-token":
        async with AsyncSessionLocal() as db:
            if await db.get(User, args.user_id) is None:
                print(f"User {args.user_id} not found", file=sys.stderr)
                return 1
        print(create_access_token(args.user_id, args.expires_minutes))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = create_parser().parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
