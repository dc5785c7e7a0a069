"""Block until Oracle accepts connections, apply migrations, optionally seed.

Used as the container entrypoint before the API starts.

Usage:
    python -m scripts.wait_for_db [--timeout 300] [--seed]
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import time

import oracledb

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from rafflio.core.config import Settings

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)


def wait_for_db(settings: Settings, timeout: int = 300, interval: int = 5) -> oracledb.Connection:
    """Retry ``oracledb.connect`` every *interval* seconds until *timeout*."""
    deadline = time.monotonic() + timeout
    attempt = 0
    while True:
        attempt += 1
        try:
            conn = oracledb.connect(
                user=settings.oracle_user,
                password=settings.oracle_password,
                dsn=settings.oracle_dsn,
            )
        except oracledb.Error as exc:
            if time.monotonic() + interval > deadline:
                raise TimeoutError(
                    f"Oracle at {settings.oracle_dsn} not reachable after {attempt} attempts"
                ) from exc
            logger.info("Oracle not ready (attempt %d: %s); retrying in %ds", attempt, exc, interval)
            time.sleep(interval)
        else:
            logger.info("Connected to Oracle at %s on attempt %d", settings.oracle_dsn, attempt)
            return conn


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--timeout", type=int, default=300)
    parser.add_argument("--seed", action="store_true", help="insert the demo raffle afterwards")
    args = parser.parse_args(argv)

    conn = wait_for_db(Settings(), timeout=args.timeout)

    from scripts.migrations import run_migrations

    try:
        actions = run_migrations(conn)
    finally:
        conn.close()
    for action in actions:
        logger.info(action)
    if not actions:
        logger.info("Schema up to date")

    if args.seed:
        from scripts.seed_data import seed_database

        seed_database()


if __name__ == "__main__":
    main()
