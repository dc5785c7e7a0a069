"""Seed the database with a demo raffle.

Usage:
    python -m scripts.seed_data
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

# Add src to path so rafflio imports work
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import oracledb

from rafflio.core.config import Settings
from rafflio.core.security import hash_password

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)

# Re-use factories
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
from tests.factories.data_factories import (
    build_account,
    build_price_tier,
    build_prize,
    build_raffle,
    build_ticket_pool,
    build_user,
)

DEMO_ADMIN_EMAIL = "admin@rafflio.com"
DEMO_ADMIN_PASSWORD = "rafflio2026"


def _connect() -> oracledb.Connection:
    settings = Settings()
    return oracledb.connect(
        user=settings.oracle_user,
        password=settings.oracle_password,
        dsn=settings.oracle_dsn,
    )


def _insert_rows(cur: oracledb.Cursor, table: str, rows: list[dict[str, Any]]) -> None:
    if not rows:
        return
    columns = ", ".join(rows[0].keys())
    placeholders = ", ".join(f":{k}" for k in rows[0].keys())
    cur.executemany(f"INSERT INTO {table} ({columns}) VALUES ({placeholders})", rows)


def seed_database() -> None:
    """Insert an admin, a payee account and one raffle with its full pool."""
    conn = _connect()
    cur = conn.cursor()
    logger.info("Connected to database, starting seed...")

    admin = build_user(
        email=DEMO_ADMIN_EMAIL,
        name="Rafflio Admin",
        password_hash=hash_password(DEMO_ADMIN_PASSWORD),
    )
    _insert_rows(cur, "users", [admin])
    logger.info("Seeded admin user %s", DEMO_ADMIN_EMAIL)

    account = build_account()
    _insert_rows(cur, "accounts", [account])

    raffle = build_raffle(max_tickets=100, account_id=account["account_id"])
    raffle_id = raffle["raffle_id"]
    _insert_rows(cur, "raffles", [raffle])
    _insert_rows(cur, "prizes", [build_prize(raffle_id, position=p) for p in range(1, 4)])
    _insert_rows(
        cur,
        "price_tiers",
        [
            build_price_tier(raffle_id, ticket_count=1, amount="1000.00"),
            build_price_tier(raffle_id, ticket_count=3, amount="2500.00"),
            build_price_tier(raffle_id, ticket_count=5, amount="4000.00"),
        ],
    )
    _insert_rows(cur, "tickets", build_ticket_pool(raffle_id, raffle["max_tickets"]))
    logger.info("Seeded raffle %s with %d tickets", raffle_id, raffle["max_tickets"])

    conn.commit()
    cur.close()
    conn.close()
    logger.info("Seed complete!")


if __name__ == "__main__":
    seed_database()
