"""Create a user (or reset the password of an existing one).
Usage:
  python scripts/create_user.py --username alice --password secret [--admin]
"""
import argparse, asyncio, sys, pathlib
ROOT = pathlib.Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from daytodo.auth import pwd_context
from daytodo.db import async_session, init_db
from daytodo.models import User
from sqlmodel import select

async def run(username: str, password: str, admin: bool):
    await init_db()
    async with async_session() as sess:
        res = await sess.exec(select(User).where(User.username == username))
        u = res.one_or_none()
        if u is None:
            u = User(username=username)
            action = 'Created'
        else:
            action = 'Updated'
        u.password_hash = pwd_context.hash(password)
        u.is_admin = admin
        sess.add(u)
        await sess.commit()
        print(f'{action} {username}: is_admin={u.is_admin}')

if __name__ == '__main__':
    ap = argparse.ArgumentParser()
    ap.add_argument('--username', required=True)
    ap.add_argument('--password', required=True)
    ap.add_argument('--admin', action='store_true')
    args = ap.parse_args()
    asyncio.run(run(args.username, args.password, args.admin))
