import asyncpg
import json
import os
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, AsyncIterator
import config
from app.constants.payments import PaymentStatus
from app.utils.retry import retry_async

logger = logging.getLogger(__name__)

DATABASE_URL = config.DATABASE_URL

# Flipped by init_db(); read by the health endpoint without touching the DB
DB_READY: bool = False

PAYMENT_STATUS_PENDING = PaymentStatus.PENDING.value
PAYMENT_STATUS_COMPLETE = PaymentStatus.COMPLETE.value

PAYMENT_METHOD_TYPE_CARD = "card"


# ====================================================================================
# UTC HELPERS: DB boundary, TIMESTAMP WITHOUT TIME ZONE holds naive UTC
# ====================================================================================

def _from_db_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Convert naive DB datetime (stored as UTC) to aware UTC."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        return dt.astimezone(timezone.utc)
    return dt.replace(tzinfo=timezone.utc)


def _decode_json(value: Any) -> Dict[str, Any]:
    """asyncpg returns json/jsonb as str unless a codec is registered."""
    if value is None:
        return {}
    if isinstance(value, (dict, list)):
        return value
    return json.loads(value)


def _normalize_row(row: Optional[asyncpg.Record], json_columns=("info",)) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    d = dict(row)
    for k in json_columns:
        if k in d:
            d[k] = _decode_json(d[k])
    for k in ("created_at", "updated_at"):
        if k in d and isinstance(d[k], datetime):
            d[k] = _from_db_utc(d[k])
    return d


def _normalize_rows(rows) -> List[Dict[str, Any]]:
    return [_normalize_row(r) for r in rows]


# ====================================================================================
# DB POOL CONFIG (ENV-overridable)
# ====================================================================================

def _get_pool_config() -> dict:
    """Build asyncpg.create_pool kwargs."""
    return {
        "min_size": int(os.getenv("DB_POOL_MIN_SIZE", "2")),
        "max_size": int(os.getenv("DB_POOL_MAX_SIZE", "10")),
        "max_inactive_connection_lifetime": 300,
        "timeout": int(os.getenv("DB_POOL_ACQUIRE_TIMEOUT", "10")),
        "command_timeout": int(os.getenv("DB_POOL_COMMAND_TIMEOUT", "30")),
    }


if not DATABASE_URL:
    logger.warning(f"{config.APP_ENV.upper()}_DATABASE_URL is not set - database operations will fail")

_pool: Optional[asyncpg.Pool] = None


async def get_pool() -> asyncpg.Pool:
    """
    Get the connection pool, creating it on first use.

    - DB not configured → RuntimeError
    - Transient connection errors (asyncpg.PostgresError) → retried once with backoff
    """
    global _pool
    if not DATABASE_URL:
        raise RuntimeError(f"{config.APP_ENV.upper()}_DATABASE_URL is not configured")
    if _pool is None:
        pool_config = _get_pool_config()
        _pool = await retry_async(
            lambda: asyncpg.create_pool(DATABASE_URL, **pool_config),
            retries=1,
            base_delay=0.5,
            max_delay=5.0,
            retry_on=(asyncpg.PostgresError, OSError),
        )
        logger.info(
            "DB_POOL_CONFIG min=%s max=%s acquire_timeout=%s command_timeout=%s",
            pool_config["min_size"], pool_config["max_size"],
            pool_config["timeout"], pool_config["command_timeout"],
        )
    return _pool


async def close_pool():
    """Close the connection pool."""
    global _pool, DB_READY
    if _pool:
        await _pool.close()
        _pool = None
        DB_READY = False
        logger.info("Database connection pool closed")


@asynccontextmanager
async def transaction() -> AsyncIterator[asyncpg.Connection]:
    """
    Acquire a connection and open a transaction on it.

    Usage:
        async with database.transaction() as conn:
            await database.lock_payment_methods(user_id, conn=conn)
            ...
    """
    pool = await get_pool()
    async with pool.acquire() as conn:
        async with conn.transaction():
            yield conn


@asynccontextmanager
async def _connection(conn: Optional[asyncpg.Connection]) -> AsyncIterator[asyncpg.Connection]:
    """Reuse the caller's connection (inside its transaction) or acquire one."""
    if conn is not None:
        yield conn
        return
    pool = await get_pool()
    async with pool.acquire() as new_conn:
        yield new_conn


async def init_db() -> bool:
    """
    Create payment core tables.

    users, posts and messages belong to the surrounding platform; only the
    columns read here (id, user_id, price) are assumed.

    Returns:
        True on success

    Raises:
        Any asyncpg error is propagated to the startup guard
    """
    global DB_READY
    pool = await get_pool()
    async with pool.acquire() as conn:
        async with conn.transaction():
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS payments (
                    id BIGSERIAL PRIMARY KEY,
                    user_id BIGINT NOT NULL,
                    to_id BIGINT NOT NULL,
                    type TEXT NOT NULL,
                    info JSONB NOT NULL DEFAULT '{}'::jsonb,
                    amount BIGINT NOT NULL,
                    gateway TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    created_at TIMESTAMP NOT NULL DEFAULT (NOW() AT TIME ZONE 'utc'),
                    updated_at TIMESTAMP NOT NULL DEFAULT (NOW() AT TIME ZONE 'utc')
                )
            """)
            await conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_payments_user_status ON payments (user_id, status)"
            )
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS bundles (
                    id BIGSERIAL PRIMARY KEY,
                    user_id BIGINT NOT NULL,
                    months INTEGER NOT NULL,
                    discount INTEGER NOT NULL,
                    created_at TIMESTAMP NOT NULL DEFAULT (NOW() AT TIME ZONE 'utc'),
                    updated_at TIMESTAMP NOT NULL DEFAULT (NOW() AT TIME ZONE 'utc'),
                    UNIQUE (user_id, months)
                )
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS payment_methods (
                    id BIGSERIAL PRIMARY KEY,
                    user_id BIGINT NOT NULL,
                    type TEXT NOT NULL,
                    info JSONB NOT NULL DEFAULT '{}'::jsonb,
                    title TEXT,
                    main BOOLEAN NOT NULL DEFAULT FALSE,
                    created_at TIMESTAMP NOT NULL DEFAULT (NOW() AT TIME ZONE 'utc'),
                    updated_at TIMESTAMP NOT NULL DEFAULT (NOW() AT TIME ZONE 'utc')
                )
            """)
            await conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_payment_methods_user ON payment_methods (user_id)"
            )
    DB_READY = True
    logger.info("Database initialized: payments, bundles, payment_methods")
    return True


# ====================================================================================
# PLATFORM ENTITIES (read-only lookups)
# ====================================================================================

async def get_user(user_id: int, conn: Optional[asyncpg.Connection] = None) -> Optional[Dict[str, Any]]:
    """Get a user by id: {id, price}"""
    async with _connection(conn) as c:
        row = await c.fetchrow("SELECT id, price FROM users WHERE id = $1", user_id)
        return dict(row) if row else None


async def get_post(post_id: int, conn: Optional[asyncpg.Connection] = None) -> Optional[Dict[str, Any]]:
    """Get a post by id: {id, user_id, price}"""
    async with _connection(conn) as c:
        row = await c.fetchrow("SELECT id, user_id, price FROM posts WHERE id = $1", post_id)
        return dict(row) if row else None


async def get_message(message_id: int, conn: Optional[asyncpg.Connection] = None) -> Optional[Dict[str, Any]]:
    """Get a direct message by id: {id, user_id, price}"""
    async with _connection(conn) as c:
        row = await c.fetchrow("SELECT id, user_id, price FROM messages WHERE id = $1", message_id)
        return dict(row) if row else None


async def update_user_price(user_id: int, price: int, conn: Optional[asyncpg.Connection] = None) -> Optional[Dict[str, Any]]:
    """Set the user's subscription price (minor units). Returns the updated user or None."""
    async with _connection(conn) as c:
        row = await c.fetchrow(
            "UPDATE users SET price = $1 WHERE id = $2 RETURNING id, price",
            price, user_id
        )
        return dict(row) if row else None


# ====================================================================================
# PAYMENTS
# ====================================================================================

async def create_payment(
    user_id: int,
    to_id: int,
    payment_type: str,
    info: Dict[str, Any],
    amount: int,
    gateway: str,
    conn: Optional[asyncpg.Connection] = None,
) -> Dict[str, Any]:
    """Insert a pending payment and return it."""
    async with _connection(conn) as c:
        row = await c.fetchrow(
            """INSERT INTO payments (user_id, to_id, type, info, amount, gateway, status)
               VALUES ($1, $2, $3, $4::jsonb, $5, $6, $7)
               RETURNING *""",
            user_id, to_id, payment_type, json.dumps(info), amount, gateway, PAYMENT_STATUS_PENDING
        )
        return _normalize_row(row)


async def get_payment(payment_id: int, conn: Optional[asyncpg.Connection] = None) -> Optional[Dict[str, Any]]:
    """Get a payment by id"""
    async with _connection(conn) as c:
        row = await c.fetchrow("SELECT * FROM payments WHERE id = $1", payment_id)
        return _normalize_row(row)


async def get_payment_for_update(payment_id: int, conn: asyncpg.Connection) -> Optional[Dict[str, Any]]:
    """
    Get a payment and lock its row until the end of the caller's transaction.

    Concurrent confirmations of the same payment queue up here.
    """
    row = await conn.fetchrow("SELECT * FROM payments WHERE id = $1 FOR UPDATE", payment_id)
    return _normalize_row(row)


async def complete_payment(payment_id: int, conn: Optional[asyncpg.Connection] = None) -> bool:
    """
    Transition a payment pending → complete.

    Returns:
        True if this call performed the transition, False if the payment was
        not pending (already complete or missing)
    """
    async with _connection(conn) as c:
        result = await c.execute(
            """UPDATE payments
               SET status = $1, updated_at = (NOW() AT TIME ZONE 'utc')
               WHERE id = $2 AND status = $3""",
            PAYMENT_STATUS_COMPLETE, payment_id, PAYMENT_STATUS_PENDING
        )
        # asyncpg execute returns "UPDATE 1" / "UPDATE 0"
        return result == "UPDATE 1"


# ====================================================================================
# BUNDLES
# ====================================================================================

async def get_bundle(bundle_id: int, conn: Optional[asyncpg.Connection] = None) -> Optional[Dict[str, Any]]:
    """Get a bundle by id"""
    async with _connection(conn) as c:
        row = await c.fetchrow("SELECT * FROM bundles WHERE id = $1", bundle_id)
        return _normalize_row(row, json_columns=())


async def get_user_bundle(user_id: int, bundle_id: int, conn: Optional[asyncpg.Connection] = None) -> Optional[Dict[str, Any]]:
    """Get a bundle only if it belongs to user_id"""
    async with _connection(conn) as c:
        row = await c.fetchrow(
            "SELECT * FROM bundles WHERE id = $1 AND user_id = $2",
            bundle_id, user_id
        )
        return _normalize_row(row, json_columns=())


async def get_user_bundles(user_id: int, conn: Optional[asyncpg.Connection] = None) -> List[Dict[str, Any]]:
    """All bundles of a user ordered by term"""
    async with _connection(conn) as c:
        rows = await c.fetch(
            "SELECT * FROM bundles WHERE user_id = $1 ORDER BY months",
            user_id
        )
        return [_normalize_row(r, json_columns=()) for r in rows]


async def upsert_bundle(user_id: int, months: int, discount: int, conn: Optional[asyncpg.Connection] = None) -> Dict[str, Any]:
    """Create the (user_id, months) bundle or update its discount in place."""
    async with _connection(conn) as c:
        row = await c.fetchrow(
            """INSERT INTO bundles (user_id, months, discount)
               VALUES ($1, $2, $3)
               ON CONFLICT (user_id, months)
               DO UPDATE SET discount = EXCLUDED.discount,
                             updated_at = (NOW() AT TIME ZONE 'utc')
               RETURNING *""",
            user_id, months, discount
        )
        return _normalize_row(row, json_columns=())


async def delete_bundle(bundle_id: int, conn: Optional[asyncpg.Connection] = None) -> bool:
    """Delete a bundle. Returns True if a row was removed."""
    async with _connection(conn) as c:
        result = await c.execute("DELETE FROM bundles WHERE id = $1", bundle_id)
        return result == "DELETE 1"


# ====================================================================================
# PAYMENT METHODS
# ====================================================================================

async def lock_payment_methods(user_id: int, conn: asyncpg.Connection) -> None:
    """
    Serialize payment method writes of one owner.

    Transaction-scoped advisory lock; released on commit/rollback. Works even
    when the owner has no rows yet (first card creation races).

    The single bigint key form carries the full BIGINT user id; the namespace
    hash sits in the high 32 bits.
    """
    await conn.execute(
        "SELECT pg_advisory_xact_lock((hashtext('payment_methods')::bigint << 32) # $1::bigint)",
        user_id
    )


async def get_payment_method(method_id: int, conn: Optional[asyncpg.Connection] = None) -> Optional[Dict[str, Any]]:
    """Get a payment method by id"""
    async with _connection(conn) as c:
        row = await c.fetchrow("SELECT * FROM payment_methods WHERE id = $1", method_id)
        return _normalize_row(row)


async def get_payment_methods(user_id: int, conn: Optional[asyncpg.Connection] = None) -> List[Dict[str, Any]]:
    """All payment methods of a user, oldest first"""
    async with _connection(conn) as c:
        rows = await c.fetch(
            "SELECT * FROM payment_methods WHERE user_id = $1 ORDER BY id",
            user_id
        )
        return _normalize_rows(rows)


async def get_main_payment_method(user_id: int, conn: Optional[asyncpg.Connection] = None) -> Optional[Dict[str, Any]]:
    """The user's main payment method, if any"""
    async with _connection(conn) as c:
        row = await c.fetchrow(
            "SELECT * FROM payment_methods WHERE user_id = $1 AND main = TRUE ORDER BY id LIMIT 1",
            user_id
        )
        return _normalize_row(row)


async def create_payment_method(
    user_id: int,
    method_type: str,
    info: Dict[str, Any],
    title: Optional[str],
    main: bool,
    conn: Optional[asyncpg.Connection] = None,
) -> Dict[str, Any]:
    """Insert a payment method and return it."""
    async with _connection(conn) as c:
        row = await c.fetchrow(
            """INSERT INTO payment_methods (user_id, type, info, title, main)
               VALUES ($1, $2, $3::jsonb, $4, $5)
               RETURNING *""",
            user_id, method_type, json.dumps(info), title, main
        )
        return _normalize_row(row)


async def set_payment_method_main(method_id: int, main: bool, conn: Optional[asyncpg.Connection] = None) -> None:
    """Set the main flag of one payment method."""
    async with _connection(conn) as c:
        await c.execute(
            """UPDATE payment_methods
               SET main = $1, updated_at = (NOW() AT TIME ZONE 'utc')
               WHERE id = $2""",
            main, method_id
        )


async def delete_payment_method(method_id: int, conn: Optional[asyncpg.Connection] = None) -> bool:
    """Delete a payment method. Returns True if a row was removed."""
    async with _connection(conn) as c:
        result = await c.execute("DELETE FROM payment_methods WHERE id = $1", method_id)
        return result == "DELETE 1"
