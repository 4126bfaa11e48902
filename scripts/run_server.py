#!/usr/bin/env python3
"""Start the day todo server with uvicorn.

Usage:
  SECRET_KEY=... python scripts/run_server.py [--host 127.0.0.1] [--port 8000] [--reload]
"""
import argparse
import pathlib
import sys

import uvicorn

ROOT = pathlib.Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def main():
    p = argparse.ArgumentParser(description='run the day todo API server')
    p.add_argument('--host', default='127.0.0.1')
    p.add_argument('--port', type=int, default=8000)
    p.add_argument('--reload', action='store_true', help='restart on code changes (development only)')
    p.add_argument('--log-level', default='info')
    args = p.parse_args()
    uvicorn.run('daytodo.main:app', host=args.host, port=args.port, reload=args.reload, log_level=args.log_level, app_dir=str(ROOT))


if __name__ == '__main__':
    main()
