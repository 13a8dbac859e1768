#!/usr/bin/env python3
"""Promote an existing account to admin (or list current admins).

Usage:
    python scripts/make_admin.py someone@example.com
    python scripts/make_admin.py --list
"""

import argparse
import asyncio
import sys

from sqlalchemy import select

from medbank.config import get_config
from medbank.database import close_engine, create_tables, get_session_factory
from medbank.models.user import User
from medbank.utils.logging import get_logger, setup_logging

logger = get_logger("scripts.make_admin")


async def promote(email: str) -> int:
    config = get_config()
    await create_tables(config)
    factory = get_session_factory(config)
    try:
        async with factory() as session:
            result = await session.execute(select(User).where(User.email == email.strip().lower()))
            user = result.scalar_one_or_none()
            if user is None:
                logger.error("user_not_found", email=email)
                return 1
            user.role = "admin"
            user.is_verified = True
            await session.commit()
            logger.info("user_promoted", user_id=user.id, email=user.email)
            return 0
    finally:
        await close_engine()


async def list_admins() -> int:
    config = get_config()
    await create_tables(config)
    factory = get_session_factory(config)
    try:
        async with factory() as session:
            result = await session.execute(select(User).where(User.role == "admin").order_by(User.id))
            for user in result.scalars():
                print(f"{user.id}\t{user.email}\t{user.name or ''}")
        return 0
    finally:
        await close_engine()


def main() -> int:
    parser = argparse.ArgumentParser(description="Medbank admin management")
    parser.add_argument("email", nargs="?", help="E-mail of the account to promote")
    parser.add_argument("--list", action="store_true", help="List admin accounts")
    args = parser.parse_args()

    setup_logging(debug=True)
    if args.list:
        return asyncio.run(list_admins())
    if not args.email:
        parser.error("an e-mail address is required unless --list is given")
    return asyncio.run(promote(args.email))


if __name__ == "__main__":
    sys.exit(main())
