# database.py

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import make_url
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import NullPool, StaticPool

import config


def build_engine(url: str):
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return create_engine(
            url,
            pool_size=config.DB_POOL_SIZE,
            max_overflow=config.DB_MAX_OVERFLOW,
            pool_timeout=config.DB_POOL_TIMEOUT,
            pool_recycle=config.DB_POOL_RECYCLE,
            pool_pre_ping=True,
        )
    if parsed.database in (None, "", ":memory:"):
        # one shared connection, or every session would see its own empty db
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    # writers queue on the file lock for up to 30s instead of failing fast
    return create_engine(url, connect_args={"check_same_thread": False, "timeout": 30}, poolclass=NullPool)

engine = build_engine(config.DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
Base = declarative_base()


# -----------------------------------------------------------------------------
# SQLite additive migrations
# -----------------------------------------------------------------------------
# columns added after the first release, per table
ADDITIVE_COLUMNS = {
    "transactions": {
        "gateway_payment_id": "VARCHAR",
        "gateway_status": "VARCHAR",
        "gateway_amount": "BIGINT",
        "updated_at": "DATETIME",
    },
    "wallets": {
        "kyc_status": "VARCHAR DEFAULT 'pending'",
        "daily_limit": "BIGINT",
        "monthly_limit": "BIGINT",
    },
    "reconciliation_issues": {
        "currency": "VARCHAR DEFAULT 'INR'",
        "resolved_by": "INTEGER",
    },
}

def missing_columns(conn, table: str) -> dict:
    present = {c["name"] for c in inspect(conn).get_columns(table)}
    return {name: ddl for name, ddl in ADDITIVE_COLUMNS[table].items() if name not in present}

def ensure_sqlite_schema(engine) -> list:
    """Add any missing columns to tables created by an older release. Returns what was added."""
    if engine.url.get_backend_name() != "sqlite":
        return []
    added = []
    with engine.begin() as conn:
        existing = set(inspect(conn).get_table_names())
        for table in ADDITIVE_COLUMNS:
            if table not in existing:
                continue
            for name, ddl in missing_columns(conn, table).items():
                conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {name} {ddl}"))
                added.append(f"{table}.{name}")
    return added


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def create_db(bind=None):
    # models register their tables on Base when imported
    import models  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
