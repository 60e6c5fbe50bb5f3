#!/usr/bin/env python3
"""Watch an election backend and print notifications as they happen.

Signs in (optional), prints the current voting status, then runs the
vote and status monitors and echoes every notification to stdout.

Usage
-----
Set environment variables and run::

    export BALLOT_BASE_URL="https://api.example.org/v1"
    export BALLOT_APP_ID="your-application-id"
    export BALLOT_EMAIL="admin@example.org"      # optional
    export BALLOT_PASSWORD="your-password"       # optional
    python scripts/watch_election.py

Options::

    --duration SECONDS   Stop after this long (default: run until Ctrl-C)
    --json               Print notifications as JSON lines
    --verbose, -v        Enable debug logging
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import os
import sys

from ballotbox import BallotAuthenticationError, BallotClient, BallotConfig, BallotError, Notification
from ballotbox.vote_control import format_time_remaining


def _printer(json_mode: bool):
    def _print(notification: Notification) -> None:
        if json_mode:
            print(json.dumps(notification.model_dump(mode="json"), ensure_ascii=False), flush=True)
            return
        stamp = notification.timestamp.strftime("%H:%M:%S")
        print(f"[{stamp}] {notification.priority.upper():6} {notification.title}: {notification.message}", flush=True)

    return _print


async def main() -> int:
    parser = argparse.ArgumentParser(description="Print live election notifications.")
    parser.add_argument("--duration", type=float, help="Stop after SECONDS (default: run until interrupted)")
    parser.add_argument("--json", action="store_true", dest="json_mode", help="Output JSON lines")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    else:
        logging.basicConfig(level=logging.WARNING)

    config = BallotConfig.from_env()
    emit = _printer(args.json_mode)
    seen: set[str] = set()

    def _on_change(items: list[Notification]) -> None:
        for item in reversed(items):
            if item.id not in seen:
                seen.add(item.id)
                emit(item)

    async with BallotClient(config) as client:
        email, password = os.environ.get("BALLOT_EMAIL"), os.environ.get("BALLOT_PASSWORD")
        if email and password:
            try:
                result = await client.sign_in(email, password)
            except BallotAuthenticationError as exc:
                print(f"Sign-in failed: {exc}", file=sys.stderr)
                return 1
            print(f"Signed in as {result.user.display_name or result.user.email} ({result.role})", file=sys.stderr)

        try:
            info = await client.vote_control.status_info()
        except BallotError as exc:
            print(f"Could not read voting status: {exc}", file=sys.stderr)
            return 1
        remaining = format_time_remaining(info.time_until_stop)
        print(
            f"Voting is {'open' if info.is_active else 'closed'}"
            + (f", ends in {remaining}" if remaining else ""),
            file=sys.stderr,
        )

        client.notifications.add_listener(_on_change)
        await client.start_monitoring()
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(asyncio.Event().wait(), timeout=args.duration)
    return 0


if __name__ == "__main__":
    with contextlib.suppress(KeyboardInterrupt):
        sys.exit(asyncio.run(main()))
