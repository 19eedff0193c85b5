"""
Database Schema
===============
All tables of the backend's SQLite database.

- users: operators, their generated wallet and cached SOL balance
- bot_configs: one bot configuration (and its running counters) per user
- bot_jobs: durable record of which bots should be running
- tokens: the shared token catalog, upserted by mint from the token feed
- transactions: append-only ledger of deposits, withdrawals, fees and trades

Raw SQL, no ORM. Timestamps are ISO-8601 UTC strings written by the application.
"""

CREATE_TABLES_SQL = """

-- =============================================
-- Operators
-- =============================================
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    email TEXT UNIQUE NOT NULL,             -- Stored lower-cased
    username TEXT UNIQUE NOT NULL,
    password_hash TEXT NOT NULL,            -- bcrypt
    wallet_address TEXT UNIQUE NOT NULL,    -- Solana public key generated at signup
    encrypted_private_key TEXT NOT NULL,    -- Fernet token of the base58 secret key
    sol_balance REAL DEFAULT 0,             -- Last balance read from RPC
    is_active BOOLEAN DEFAULT TRUE,
    last_login TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

-- =============================================
-- Bot configuration + counters (one per user)
-- =============================================
CREATE TABLE IF NOT EXISTS bot_configs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER UNIQUE NOT NULL REFERENCES users(id),
    is_active BOOLEAN DEFAULT FALSE,
    target_token TEXT,

    -- Trade sizing and exits
    investment_amount REAL NOT NULL,        -- SOL per trade
    stop_loss REAL NOT NULL,                -- %
    take_profit REAL NOT NULL,              -- %
    slippage REAL DEFAULT 5,                -- % tolerance
    max_trades INTEGER DEFAULT 10,

    -- Running counters (zeroed by reset)
    current_trades INTEGER DEFAULT 0,
    total_profit REAL DEFAULT 0,
    total_loss REAL DEFAULT 0,
    last_trade_at TEXT,

    -- Strategy
    risk_level TEXT DEFAULT 'medium',       -- low / medium / high
    auto_reinvest BOOLEAN DEFAULT FALSE,
    min_liquidity REAL DEFAULT 1000,
    max_position_size REAL DEFAULT 5,

    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

-- =============================================
-- Which bots should be running (survives restarts)
-- =============================================
CREATE TABLE IF NOT EXISTS bot_jobs (
    user_id INTEGER PRIMARY KEY REFERENCES users(id),
    desired_state TEXT NOT NULL,            -- running / stopped
    interval_seconds REAL,
    started_at TEXT,
    stopped_at TEXT,
    last_cycle_at TEXT,
    last_error TEXT,
    updated_at TEXT NOT NULL
);

-- =============================================
-- Shared token catalog
-- =============================================
CREATE TABLE IF NOT EXISTS tokens (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    mint TEXT UNIQUE NOT NULL,              -- Token mint address
    name TEXT NOT NULL,
    symbol TEXT NOT NULL,
    description TEXT DEFAULT '',
    image TEXT DEFAULT '',
    website TEXT DEFAULT '',
    telegram TEXT DEFAULT '',
    twitter TEXT DEFAULT '',

    market_cap REAL DEFAULT 0,
    price REAL DEFAULT 0,
    liquidity REAL DEFAULT 0,               -- virtual SOL reserves from the feed
    volume_24h REAL DEFAULT 0,
    holders INTEGER DEFAULT 0,

    is_launched BOOLEAN DEFAULT FALSE,      -- Has a Raydium pool
    launched_at TEXT,
    creator TEXT DEFAULT '',
    metadata TEXT,                          -- JSON: supply, reserves, pool, last trade

    last_updated TEXT NOT NULL,
    created_at TEXT NOT NULL                -- First time the catalog saw this mint
);

-- =============================================
-- Ledger
-- =============================================
CREATE TABLE IF NOT EXISTS transactions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id),
    type TEXT NOT NULL,                     -- deposit / withdrawal / trade / fee
    amount REAL NOT NULL,
    token TEXT DEFAULT 'SOL',
    signature TEXT UNIQUE NOT NULL,
    status TEXT DEFAULT 'pending',          -- pending / confirmed / failed
    fee_amount REAL DEFAULT 0,
    from_address TEXT,
    to_address TEXT,
    metadata TEXT,                          -- JSON
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

-- =============================================
-- Indexes
-- =============================================
CREATE INDEX IF NOT EXISTS idx_tokens_launched ON tokens(is_launched);
CREATE INDEX IF NOT EXISTS idx_tokens_market_cap ON tokens(market_cap DESC);
CREATE INDEX IF NOT EXISTS idx_tokens_created ON tokens(created_at DESC);
CREATE INDEX IF NOT EXISTS idx_tokens_updated ON tokens(last_updated DESC);
CREATE INDEX IF NOT EXISTS idx_transactions_user ON transactions(user_id, created_at DESC);
CREATE INDEX IF NOT EXISTS idx_transactions_type ON transactions(user_id, type);
CREATE INDEX IF NOT EXISTS idx_bot_jobs_state ON bot_jobs(desired_state);
"""
