"""
Database Manager
================
Handles all database operations: creating tables, inserting data, querying.

Uses SQLite through aiosqlite so queries never block the event loop that
serves HTTP requests and runs the bot loops. One connection is shared by the
whole process; each write commits immediately.

Other modules never write raw SQL; they call these functions instead.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite

from database.models import CREATE_TABLES_SQL
from trader.bot_config import DEFAULT_BOT_CONFIG
from utils.logger import get_logger

logger = get_logger(__name__)

# Columns a configuration update may touch (counters have dedicated methods)
BOT_CONFIG_UPDATABLE = (
    "investment_amount", "stop_loss", "take_profit", "slippage", "max_trades",
    "target_token", "risk_level", "auto_reinvest", "min_liquidity", "max_position_size",
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _decode_json(raw: str | None) -> Any:
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return {}


def _token_from_row(row: aiosqlite.Row) -> dict:
    token = dict(row)
    token["is_launched"] = bool(token.get("is_launched"))
    token["metadata"] = _decode_json(token.get("metadata"))
    return token


def _transaction_from_row(row: aiosqlite.Row) -> dict:
    tx = dict(row)
    tx["metadata"] = _decode_json(tx.get("metadata"))
    return tx


class Database:
    """
    Async database manager for the Spinner Bot backend.

    Usage:
        db = Database("path/to/database.db")
        await db.initialize()  # Creates tables if they don't exist
        user_id = await db.create_user({...})
        await db.close()
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.connection: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """
        Connect to the database and create tables if they don't exist.
        Called once when the server starts up.
        """
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self.connection = await aiosqlite.connect(self.db_path)
        await self.connection.execute("PRAGMA journal_mode=WAL")
        await self.connection.execute("PRAGMA foreign_keys=ON")
        self.connection.row_factory = aiosqlite.Row

        await self.connection.executescript(CREATE_TABLES_SQL)
        await self.connection.commit()

        logger.info("database_initialized", path=self.db_path)

    async def close(self) -> None:
        """Close the database connection cleanly."""
        if self.connection:
            await self.connection.close()
            self.connection = None
            logger.info("database_closed")

    async def _fetchone(self, sql: str, params: tuple = ()) -> dict | None:
        cursor = await self.connection.execute(sql, params)
        row = await cursor.fetchone()
        return dict(row) if row else None

    # =========================================================================
    # Users
    # =========================================================================

    async def create_user(self, user_data: dict[str, Any]) -> int:
        """Insert a new operator. Returns the user id."""
        now = _now()
        sql = """
            INSERT INTO users (
                email, username, password_hash, wallet_address,
                encrypted_private_key, sol_balance, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """
        cursor = await self.connection.execute(sql, (
            user_data["email"],
            user_data["username"],
            user_data["password_hash"],
            user_data["wallet_address"],
            user_data["encrypted_private_key"],
            user_data.get("sol_balance", 0),
            now,
            now,
        ))
        await self.connection.commit()
        return cursor.lastrowid

    async def get_user_by_id(self, user_id: int) -> dict | None:
        return await self._fetchone("SELECT * FROM users WHERE id = ?", (user_id,))

    async def get_user_by_email(self, email: str) -> dict | None:
        return await self._fetchone("SELECT * FROM users WHERE email = ?", (email,))

    async def find_user_by_email_or_username(self, email: str, username: str) -> dict | None:
        """Used at signup to reject duplicates."""
        return await self._fetchone(
            "SELECT * FROM users WHERE email = ? OR username = ? LIMIT 1", (email, username)
        )

    async def username_taken(self, username: str, exclude_user_id: int) -> bool:
        row = await self._fetchone(
            "SELECT id FROM users WHERE username = ? AND id != ?", (username, exclude_user_id)
        )
        return row is not None

    async def update_username(self, user_id: int, username: str) -> None:
        await self.connection.execute(
            "UPDATE users SET username = ?, updated_at = ? WHERE id = ?", (username, _now(), user_id)
        )
        await self.connection.commit()

    async def update_last_login(self, user_id: int) -> str:
        now = _now()
        await self.connection.execute(
            "UPDATE users SET last_login = ?, updated_at = ? WHERE id = ?", (now, now, user_id)
        )
        await self.connection.commit()
        return now

    async def update_user_balance(self, user_id: int, balance: float) -> None:
        """Cache the latest RPC balance on the user row."""
        await self.connection.execute(
            "UPDATE users SET sol_balance = ?, updated_at = ? WHERE id = ?", (balance, _now(), user_id)
        )
        await self.connection.commit()

    # =========================================================================
    # Bot configurations
    # =========================================================================

    async def create_bot_config(self, user_id: int, overrides: dict[str, Any] | None = None) -> dict:
        """Create a user's bot configuration with the default values."""
        values = {**DEFAULT_BOT_CONFIG, **(overrides or {})}
        now = _now()
        sql = """
            INSERT INTO bot_configs (
                user_id, investment_amount, stop_loss, take_profit, slippage,
                max_trades, risk_level, auto_reinvest, min_liquidity,
                max_position_size, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        await self.connection.execute(sql, (
            user_id,
            values["investment_amount"],
            values["stop_loss"],
            values["take_profit"],
            values["slippage"],
            values["max_trades"],
            values["risk_level"],
            values["auto_reinvest"],
            values["min_liquidity"],
            values["max_position_size"],
            now,
            now,
        ))
        await self.connection.commit()
        return await self.get_bot_config(user_id)

    async def get_bot_config(self, user_id: int) -> dict | None:
        return await self._fetchone("SELECT * FROM bot_configs WHERE user_id = ?", (user_id,))

    async def get_or_create_bot_config(self, user_id: int) -> dict:
        """Bot configurations are created lazily the first time they're needed."""
        config = await self.get_bot_config(user_id)
        if config is None:
            config = await self.create_bot_config(user_id)
            logger.info("bot_config_created", user_id=user_id)
        return config

    async def get_active_bot_configs(self) -> list[dict]:
        cursor = await self.connection.execute("SELECT * FROM bot_configs WHERE is_active = TRUE")
        rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    async def update_bot_config(self, user_id: int, fields: dict[str, Any]) -> dict | None:
        """Update configuration columns (not counters). Unknown columns are ignored."""
        updates = {k: v for k, v in fields.items() if k in BOT_CONFIG_UPDATABLE}
        if updates:
            assignments = ", ".join(f"{column} = ?" for column in updates)
            sql = f"UPDATE bot_configs SET {assignments}, updated_at = ? WHERE user_id = ?"
            await self.connection.execute(sql, (*updates.values(), _now(), user_id))
            await self.connection.commit()
        return await self.get_bot_config(user_id)

    async def set_bot_active(self, user_id: int, active: bool) -> None:
        await self.connection.execute(
            "UPDATE bot_configs SET is_active = ?, updated_at = ? WHERE user_id = ?",
            (active, _now(), user_id),
        )
        await self.connection.commit()

    async def record_bot_trade(self, user_id: int, profit: float, loss: float) -> None:
        """
        Bump the trade counter and profit/loss totals after a simulated trade.
        One UPDATE statement, so the counters change together.
        """
        now = _now()
        sql = """
            UPDATE bot_configs SET
                current_trades = current_trades + 1,
                total_profit = total_profit + ?,
                total_loss = total_loss + ?,
                last_trade_at = ?,
                updated_at = ?
            WHERE user_id = ?
        """
        await self.connection.execute(sql, (profit, loss, now, now, user_id))
        await self.connection.commit()

    async def reset_bot_counters(self, user_id: int) -> None:
        sql = """
            UPDATE bot_configs SET
                current_trades = 0, total_profit = 0, total_loss = 0,
                last_trade_at = NULL, updated_at = ?
            WHERE user_id = ?
        """
        await self.connection.execute(sql, (_now(), user_id))
        await self.connection.commit()

    # =========================================================================
    # Bot jobs (durable "should be running" records)
    # =========================================================================

    async def upsert_bot_job(self, user_id: int, desired_state: str, interval_seconds: float | None = None) -> None:
        now = _now()
        started_at = now if desired_state == "running" else None
        stopped_at = now if desired_state == "stopped" else None
        sql = """
            INSERT INTO bot_jobs (
                user_id, desired_state, interval_seconds, started_at, stopped_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                desired_state = excluded.desired_state,
                interval_seconds = COALESCE(excluded.interval_seconds, bot_jobs.interval_seconds),
                started_at = COALESCE(excluded.started_at, bot_jobs.started_at),
                stopped_at = COALESCE(excluded.stopped_at, bot_jobs.stopped_at),
                last_error = CASE WHEN excluded.desired_state = 'running' THEN NULL ELSE bot_jobs.last_error END,
                updated_at = excluded.updated_at
        """
        await self.connection.execute(sql, (user_id, desired_state, interval_seconds, started_at, stopped_at, now))
        await self.connection.commit()

    async def get_bot_job(self, user_id: int) -> dict | None:
        return await self._fetchone("SELECT * FROM bot_jobs WHERE user_id = ?", (user_id,))

    async def get_running_jobs(self) -> list[dict]:
        cursor = await self.connection.execute("SELECT * FROM bot_jobs WHERE desired_state = 'running'")
        rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    async def mark_job_cycle(self, user_id: int, error: str | None = None) -> None:
        """Record that a cycle ran (and its error, if any)."""
        now = _now()
        await self.connection.execute(
            "UPDATE bot_jobs SET last_cycle_at = ?, last_error = ?, updated_at = ? WHERE user_id = ?",
            (now, error, now, user_id),
        )
        await self.connection.commit()

    # =========================================================================
    # Token catalog
    # =========================================================================

    async def upsert_token(self, token_data: dict[str, Any]) -> dict:
        """
        Save a token from the feed and return the stored row.

        If the mint already exists every field is refreshed except created_at,
        which keeps the moment the catalog first saw the token.
        """
        now = _now()
        launched_at = token_data.get("launched_at")
        if isinstance(launched_at, datetime):
            launched_at = launched_at.isoformat()
        sql = """
            INSERT INTO tokens (
                mint, name, symbol, description, image, website, telegram, twitter,
                market_cap, price, liquidity, volume_24h, holders, is_launched,
                launched_at, creator, metadata, last_updated, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(mint) DO UPDATE SET
                name = excluded.name,
                symbol = excluded.symbol,
                description = excluded.description,
                image = excluded.image,
                website = excluded.website,
                telegram = excluded.telegram,
                twitter = excluded.twitter,
                market_cap = excluded.market_cap,
                price = excluded.price,
                liquidity = excluded.liquidity,
                volume_24h = excluded.volume_24h,
                holders = excluded.holders,
                is_launched = excluded.is_launched,
                launched_at = excluded.launched_at,
                creator = excluded.creator,
                metadata = excluded.metadata,
                last_updated = excluded.last_updated
        """
        await self.connection.execute(sql, (
            token_data["mint"],
            token_data.get("name") or "",
            token_data.get("symbol") or "",
            token_data.get("description") or "",
            token_data.get("image") or "",
            token_data.get("website") or "",
            token_data.get("telegram") or "",
            token_data.get("twitter") or "",
            token_data.get("market_cap") or 0,
            token_data.get("price") or 0,
            token_data.get("liquidity") or 0,
            token_data.get("volume_24h") or 0,
            token_data.get("holders") or 0,
            bool(token_data.get("is_launched")),
            launched_at,
            token_data.get("creator") or "",
            json.dumps(token_data.get("metadata") or {}),
            now,
            token_data.get("created_at") or now,
        ))
        await self.connection.commit()
        return await self.get_token_by_mint(token_data["mint"])

    async def get_token_by_mint(self, mint: str) -> dict | None:
        cursor = await self.connection.execute("SELECT * FROM tokens WHERE mint = ?", (mint,))
        row = await cursor.fetchone()
        return _token_from_row(row) if row else None

    async def get_tokens_updated_since(self, since: datetime, limit: int = 100) -> list[dict]:
        """Catalog tokens refreshed after `since`, most recently updated first."""
        sql = "SELECT * FROM tokens WHERE last_updated >= ? ORDER BY last_updated DESC LIMIT ?"
        cursor = await self.connection.execute(sql, (since.isoformat(), limit))
        rows = await cursor.fetchall()
        return [_token_from_row(row) for row in rows]

    async def count_tokens(self) -> int:
        row = await self._fetchone("SELECT COUNT(*) AS count FROM tokens")
        return row["count"] if row else 0

    # =========================================================================
    # Transactions (ledger)
    # =========================================================================

    async def insert_transaction(self, tx_data: dict[str, Any]) -> int:
        """Append a ledger row. Returns its id."""
        now = _now()
        sql = """
            INSERT INTO transactions (
                user_id, type, amount, token, signature, status, fee_amount,
                from_address, to_address, metadata, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        cursor = await self.connection.execute(sql, (
            tx_data["user_id"],
            tx_data["type"],
            tx_data["amount"],
            tx_data.get("token") or "SOL",
            tx_data["signature"],
            tx_data.get("status", "pending"),
            tx_data.get("fee_amount", 0),
            tx_data.get("from_address"),
            tx_data.get("to_address"),
            json.dumps(tx_data.get("metadata") or {}),
            now,
            now,
        ))
        await self.connection.commit()
        return cursor.lastrowid

    async def get_transactions(
        self, user_id: int, tx_type: str | None = None, limit: int = 20, offset: int = 0
    ) -> list[dict]:
        """A page of a user's ledger, newest first."""
        if tx_type:
            sql = """
                SELECT * FROM transactions WHERE user_id = ? AND type = ?
                ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?
            """
            params = (user_id, tx_type, limit, offset)
        else:
            sql = """
                SELECT * FROM transactions WHERE user_id = ?
                ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?
            """
            params = (user_id, limit, offset)
        cursor = await self.connection.execute(sql, params)
        rows = await cursor.fetchall()
        return [_transaction_from_row(row) for row in rows]

    async def count_transactions(self, user_id: int, tx_type: str | None = None) -> int:
        if tx_type:
            row = await self._fetchone(
                "SELECT COUNT(*) AS count FROM transactions WHERE user_id = ? AND type = ?", (user_id, tx_type)
            )
        else:
            row = await self._fetchone("SELECT COUNT(*) AS count FROM transactions WHERE user_id = ?", (user_id,))
        return row["count"] if row else 0

    async def get_trade_stats(self, user_id: int) -> dict:
        """Number of trade rows, and how many were sells that made a profit."""
        sql = """
            SELECT
                COUNT(*) AS total_trades,
                COALESCE(SUM(
                    CASE WHEN json_extract(metadata, '$.action') = 'sell'
                          AND json_extract(metadata, '$.profit') > 0
                    THEN 1 ELSE 0 END
                ), 0) AS winning_trades
            FROM transactions
            WHERE user_id = ? AND type = 'trade'
        """
        row = await self._fetchone(sql, (user_id,))
        return row or {"total_trades": 0, "winning_trades": 0}

    async def get_transaction_by_signature(self, user_id: int, signature: str) -> dict | None:
        cursor = await self.connection.execute(
            "SELECT * FROM transactions WHERE user_id = ? AND signature = ?", (user_id, signature)
        )
        row = await cursor.fetchone()
        return _transaction_from_row(row) if row else None
