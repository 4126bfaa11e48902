#!/usr/bin/env python3
"""List users in the database.

Usage:
  DATABASE_URL="sqlite+aiosqlite:///./daytodo.db" python scripts/list_users.py

This script reads DATABASE_URL from the environment (falls back to the
daytodo default), initializes the DB schema and prints each user with the
number of tasks they own.
"""
import os
import sys
import asyncio
import pathlib
from sqlmodel import select, func

ROOT = pathlib.Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


async def main():
    # import here so we pick up DATABASE_URL if set
    from daytodo.db import init_db, async_session
    from daytodo.models import Task, User

    print(f"Using DATABASE_URL={os.getenv('DATABASE_URL')}")
    await init_db()

    async with async_session() as sess:
        q = await sess.exec(select(User))
        users = q.all()
        if not users:
            print("No users found in DB.")
            return
        print(f"Found {len(users)} users:\n")
        for u in users:
            cq = await sess.exec(select(func.count(Task.id)).where(Task.user_id == u.id))
            count = cq.one()
            print(f"username: {u.username}\n  email: {u.email or '-'}\n  has_password: {bool(u.password_hash)}\n  is_admin: {bool(u.is_admin)}\n  tasks: {count}\n")

if __name__ == '__main__':
    asyncio.run(main())
