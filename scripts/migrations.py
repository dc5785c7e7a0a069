"""Database migration scripts for Rafflio.

Run all migrations in order to set up the schema. Every statement is
guarded so the script can be re-run against a partially migrated schema.
"""

from __future__ import annotations

import logging

import oracledb

logger = logging.getLogger(__name__)


# ── Migration 001: Back office ──────────────────────────────────────

MIGRATION_001_USERS = """
CREATE TABLE users (
    user_id               VARCHAR2(32) PRIMARY KEY,
    email                 VARCHAR2(255) NOT NULL UNIQUE,
    name                  VARCHAR2(255) NOT NULL,
    password_hash         VARCHAR2(255) NOT NULL,
    role                  VARCHAR2(20) DEFAULT 'admin'
                          CHECK (role IN ('admin','operator')),
    is_active             NUMBER(1) DEFAULT 1,
    failed_login_attempts NUMBER(5) DEFAULT 0,
    locked_until          TIMESTAMP,
    last_login_at         TIMESTAMP,
    created_at            TIMESTAMP DEFAULT SYSTIMESTAMP,
    updated_at            TIMESTAMP DEFAULT SYSTIMESTAMP
)
"""

MIGRATION_001_ACCOUNTS = """
CREATE TABLE accounts (
    account_id          VARCHAR2(32) PRIMARY KEY,
    cbu                 VARCHAR2(22) NOT NULL,
    alias               VARCHAR2(20) NOT NULL UNIQUE,
    titular             VARCHAR2(255) NOT NULL,
    banco               VARCHAR2(255) NOT NULL,
    email               VARCHAR2(255),
    whatsapp            VARCHAR2(50),
    created_at          TIMESTAMP DEFAULT SYSTIMESTAMP,
    updated_at          TIMESTAMP DEFAULT SYSTIMESTAMP
)
"""

# ── Migration 002: Raffles ──────────────────────────────────────────

MIGRATION_002_RAFFLES = """
CREATE TABLE raffles (
    raffle_id           VARCHAR2(32) PRIMARY KEY,
    title               VARCHAR2(255) NOT NULL,
    description         VARCHAR2(4000),
    draw_date           TIMESTAMP,
    max_tickets         NUMBER(6) NOT NULL CHECK (max_tickets > 0),
    account_id          VARCHAR2(32) REFERENCES accounts(account_id),
    is_active           NUMBER(1) DEFAULT 1,
    created_at          TIMESTAMP DEFAULT SYSTIMESTAMP,
    updated_at          TIMESTAMP DEFAULT SYSTIMESTAMP
)
"""

MIGRATION_002_PRIZES = """
CREATE TABLE prizes (
    prize_id            VARCHAR2(32) PRIMARY KEY,
    raffle_id           VARCHAR2(32) NOT NULL REFERENCES raffles(raffle_id),
    position            NUMBER(4) NOT NULL,
    name                VARCHAR2(255) NOT NULL,
    description         VARCHAR2(2000),
    created_at          TIMESTAMP DEFAULT SYSTIMESTAMP
)
"""

MIGRATION_002_PRICE_TIERS = """
CREATE TABLE price_tiers (
    price_tier_id       VARCHAR2(32) PRIMARY KEY,
    raffle_id           VARCHAR2(32) NOT NULL REFERENCES raffles(raffle_id),
    amount              NUMBER(12,2) NOT NULL CHECK (amount >= 0),
    ticket_count        NUMBER(6) NOT NULL CHECK (ticket_count > 0),
    created_at          TIMESTAMP DEFAULT SYSTIMESTAMP,
    CONSTRAINT uq_price_tier_size UNIQUE (raffle_id, ticket_count)
)
"""

# ── Migration 003: Purchases and tickets ────────────────────────────

# price_tier_id is not a foreign key: cart purchases store 'custom'
MIGRATION_003_PURCHASES = """
CREATE TABLE purchases (
    purchase_id         VARCHAR2(32) PRIMARY KEY,
    raffle_id           VARCHAR2(32) NOT NULL REFERENCES raffles(raffle_id),
    price_tier_id       VARCHAR2(32),
    full_name           VARCHAR2(255) NOT NULL,
    email               VARCHAR2(255) NOT NULL,
    phone               VARCHAR2(50),
    amount              NUMBER(12,2) NOT NULL,
    ticket_count        NUMBER(6) NOT NULL CHECK (ticket_count > 0),
    payment_method      VARCHAR2(20) DEFAULT 'mercadopago'
                        CHECK (payment_method IN ('mercadopago','bank_transfer','cash')),
    payment_id          VARCHAR2(64),
    preference_id       VARCHAR2(128),
    status              VARCHAR2(20) DEFAULT 'pending'
                        CHECK (status IN ('pending','paid','failed','cancelled','confirmed')),
    created_at          TIMESTAMP DEFAULT SYSTIMESTAMP,
    updated_at          TIMESTAMP DEFAULT SYSTIMESTAMP
)
"""

MIGRATION_003_TICKETS = """
CREATE TABLE tickets (
    ticket_id           VARCHAR2(32) PRIMARY KEY,
    raffle_id           VARCHAR2(32) NOT NULL REFERENCES raffles(raffle_id),
    ticket_number       NUMBER(6) NOT NULL,
    status              VARCHAR2(20) DEFAULT 'available'
                        CHECK (status IN ('available','reserved','sold')),
    purchase_id         VARCHAR2(32) REFERENCES purchases(purchase_id),
    created_at          TIMESTAMP DEFAULT SYSTIMESTAMP,
    updated_at          TIMESTAMP DEFAULT SYSTIMESTAMP,
    CONSTRAINT uq_ticket_number UNIQUE (raffle_id, ticket_number),
    CONSTRAINT chk_ticket_owner CHECK (
        (status = 'available' AND purchase_id IS NULL)
        OR (status <> 'available' AND purchase_id IS NOT NULL)
    )
)
"""

MIGRATION_004_INDEXES = [
    "CREATE INDEX idx_tickets_purchase ON tickets(purchase_id)",
    "CREATE INDEX idx_tickets_raffle_status ON tickets(raffle_id, status)",
    "CREATE INDEX idx_purchases_raffle ON purchases(raffle_id)",
    "CREATE INDEX idx_purchases_status ON purchases(status)",
    "CREATE INDEX idx_purchases_preference ON purchases(preference_id)",
    "CREATE INDEX idx_prizes_raffle ON prizes(raffle_id)",
    "CREATE INDEX idx_price_tiers_raffle ON price_tiers(raffle_id)",
]

# Order matters: must create parent tables before children
ALL_TABLE_DDLS = [
    ("users", MIGRATION_001_USERS),
    ("accounts", MIGRATION_001_ACCOUNTS),
    ("raffles", MIGRATION_002_RAFFLES),
    ("prizes", MIGRATION_002_PRIZES),
    ("price_tiers", MIGRATION_002_PRICE_TIERS),
    ("purchases", MIGRATION_003_PURCHASES),
    ("tickets", MIGRATION_003_TICKETS),
]

# Tables in reverse order for dropping (children first)
DROP_ORDER = [name for name, _ddl in reversed(ALL_TABLE_DDLS)]


def table_exists(conn: oracledb.Connection, table_name: str) -> bool:
    """Check if a table exists in the current schema."""
    with conn.cursor() as cur:
        cur.execute(
            "SELECT COUNT(*) FROM user_tables WHERE table_name = :name",
            {"name": table_name.upper()},
        )
        row = cur.fetchone()
        return bool(row and row[0] > 0)


def run_migrations(conn: oracledb.Connection) -> list[str]:
    """Run all pending migrations. Returns list of actions taken."""
    actions: list[str] = []

    for table_name, ddl in ALL_TABLE_DDLS:
        if not table_exists(conn, table_name):
            with conn.cursor() as cur:
                cur.execute(ddl)
            actions.append(f"Created table: {table_name}")
            logger.info("Created table: %s", table_name)

    for idx_sql in MIGRATION_004_INDEXES:
        try:
            with conn.cursor() as cur:
                cur.execute(idx_sql)
            idx_name = idx_sql.split("INDEX ")[1].split(" ON")[0]
            actions.append(f"Created index: {idx_name}")
        except oracledb.DatabaseError as e:
            error_obj = e.args[0]
            # ORA-00955: name already used; ORA-01408: column list already indexed
            if not (hasattr(error_obj, "code") and error_obj.code in (955, 1408)):
                raise

    conn.commit()
    return actions


def drop_all_tables(conn: oracledb.Connection) -> list[str]:
    """Drop all tables (for reset). Returns list of actions taken."""
    actions: list[str] = []
    for table_name in DROP_ORDER:
        if table_exists(conn, table_name):
            with conn.cursor() as cur:
                cur.execute(f"DROP TABLE {table_name} CASCADE CONSTRAINTS PURGE")
            actions.append(f"Dropped table: {table_name}")
            logger.info("Dropped table: %s", table_name)
    conn.commit()
    return actions
