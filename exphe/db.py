import hashlib
import json
import os
from typing import Optional

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    func,
    select,
    text,
)
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from exphe.crypto.classifier import Classification, classification_details


def get_database_url() -> str:
    """
    Retrieve the trial store URL from environment.
    Defaults to a SQLite file in the working directory.
    """
    return os.getenv("EXPHE_DATABASE_URL", "sqlite+aiosqlite:///./exphe_trials.db")


def get_engine(url: Optional[str] = None) -> AsyncEngine:
    """Return a new async engine using NullPool to avoid pool/loop issues."""
    return create_async_engine(url or get_database_url(), future=True, poolclass=NullPool)


async def check_db_connection(engine: AsyncEngine) -> bool:
    """
    Perform a lightweight health probe against the database.
    Raises on failure; returns True on success.
    """
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    return True


metadata = MetaData()

runs_table = Table(
    "runs",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("run_id", String(64), nullable=False, unique=True),
    Column("variant", String(16), nullable=False),
    Column("group_order", String(16), nullable=False),
    Column("prime_bits", Integer, nullable=False),
    Column("trials", Integer, nullable=False),
    Column("trivial", Integer, nullable=False),
    Column("case1", Integer, nullable=False, server_default="0"),
    Column("case2", Integer, nullable=False, server_default="0"),
    Column("unknown", Integer, nullable=False, server_default="0"),
    Column("mean_encrypt_ms", Float, nullable=True),
    Column("mean_ciphertext_bits", Float, nullable=True),
    Column(
        "created_at",
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False,
    ),
)

# Big integers are stored as decimal strings; they overflow SQL integer types.
trivial_events_table = Table(
    "trivial_events",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("run_id", String(64), nullable=False, index=True),
    Column("message", Text, nullable=False),
    Column("z", Text, nullable=False),
    Column("w", Text, nullable=False),
    Column("group_order", Text, nullable=False),
    Column("case_label", String(16), nullable=False),
    Column("details", Text, nullable=False),
    Column("payload_hash", String(128), nullable=False),
    Column(
        "created_at",
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False,
    ),
)


async def init_db(engine: AsyncEngine) -> None:
    """Create tables if they do not exist (idempotent)."""
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)


async def reset_db(engine: AsyncEngine) -> None:
    """Empty every table; used between tests to keep state isolated."""
    async with engine.begin() as conn:
        await conn.execute(trivial_events_table.delete())
        await conn.execute(runs_table.delete())


def hash_event(message: int, z: int, w: int, group_order: int) -> str:
    """Deterministic SHA-256 fingerprint of the inputs of a trivial event."""
    return hashlib.sha256(f"{message}:{z}:{w}:{group_order}".encode("utf-8")).hexdigest()


async def record_run(
    engine: AsyncEngine,
    *,
    run_id: str,
    variant: str,
    group_order: str,
    prime_bits: int,
    summary,
) -> dict:
    """Store the aggregate outcome of one trial run (a StatisticsSummary)."""
    encrypt = summary.encrypt_seconds
    bits = summary.ciphertext_bits
    async with engine.begin() as conn:
        result = await conn.execute(
            runs_table.insert().values(
                run_id=run_id,
                variant=variant,
                group_order=group_order,
                prime_bits=prime_bits,
                trials=summary.trials,
                trivial=summary.trivial,
                case1=summary.case_counts.get("case1", 0),
                case2=summary.case_counts.get("case2", 0),
                unknown=summary.case_counts.get("unknown", 0),
                mean_encrypt_ms=encrypt.mean * 1000.0 if encrypt else None,
                mean_ciphertext_bits=bits.mean if bits else None,
            )
        )
    return {"id": result.inserted_primary_key[0], "run_id": run_id, "trials": summary.trials}


async def record_trivial_event(
    engine: AsyncEngine,
    *,
    run_id: str,
    message: int,
    z: int,
    w: int,
    group_order: int,
    record: Classification,
) -> dict:
    """Persist one classified trivial ciphertext with its randomness."""
    payload_hash = hash_event(message, z, w, group_order)
    async with engine.begin() as conn:
        result = await conn.execute(
            trivial_events_table.insert().values(
                run_id=run_id,
                message=str(message),
                z=str(z),
                w=str(w),
                group_order=str(group_order),
                case_label=record.label,
                details=json.dumps(classification_details(record)),
                payload_hash=payload_hash,
            )
        )
    return {"id": result.inserted_primary_key[0], "case": record.label, "payload_hash": payload_hash}


def _event_row(row) -> dict:
    return {
        "id": row["id"],
        "run_id": row["run_id"],
        "message": int(row["message"]),
        "z": int(row["z"]),
        "w": int(row["w"]),
        "group_order": int(row["group_order"]),
        "case": row["case_label"],
        "details": json.loads(row["details"]),
        "payload_hash": row["payload_hash"],
    }


async def fetch_trivial_events(
    engine: AsyncEngine, *, run_id: Optional[str] = None, case: Optional[str] = None, limit: int = 1000
) -> list[dict]:
    """Return stored trivial events, oldest first, with integers decoded."""
    query = select(trivial_events_table).order_by(trivial_events_table.c.id.asc()).limit(limit)
    if run_id is not None:
        query = query.where(trivial_events_table.c.run_id == run_id)
    if case is not None:
        query = query.where(trivial_events_table.c.case_label == case)
    async with engine.connect() as conn:
        rows = (await conn.execute(query)).mappings().all()
    return [_event_row(r) for r in rows]


async def fetch_runs(engine: AsyncEngine, *, limit: int = 50) -> list[dict]:
    """Latest runs first."""
    async with engine.connect() as conn:
        rows = (
            await conn.execute(select(runs_table).order_by(runs_table.c.id.desc()).limit(limit))
        ).mappings().all()
    return [dict(r) for r in rows]


async def get_case_counts(engine: AsyncEngine, *, run_id: Optional[str] = None) -> dict:
    """Count stored trivial events per case label."""
    query = select(trivial_events_table.c.case_label, func.count()).group_by(
        trivial_events_table.c.case_label
    )
    if run_id is not None:
        query = query.where(trivial_events_table.c.run_id == run_id)
    async with engine.connect() as conn:
        rows = (await conn.execute(query)).all()
    counts = {"case1": 0, "case2": 0, "unknown": 0}
    counts.update({label: count for label, count in rows})
    return counts
