"""
Configuration Manager
=====================
Single source of truth for every backend setting.

Secrets (JWT secret, encryption key, admin wallet) and deployment values
(RPC URL, database path, ports) come from a .env file at the project root.
Every other value has a default that works for local development:

- API: host, port, allowed frontend origin
- Auth: JWT secret and lifetime, bcrypt cost, wallet-key encryption
- Solana: network, RPC endpoint, withdrawal fee and minimum
- Token feed: upstream URL, timeouts, background refresh cadence
- Bot: cycle interval, candidates per cycle, demo mode

The Settings object is created once and passed to every module that needs it.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from dotenv import load_dotenv


load_dotenv(Path(__file__).parent.parent / ".env")


def _get_env(key: str, default: str = "") -> str:
    """Get an environment variable, returning default if not set."""
    return os.getenv(key, default)


def _get_env_float(key: str, default: float) -> float:
    """Get an environment variable as a float number."""
    val = os.getenv(key)
    return float(val) if val else default


def _get_env_int(key: str, default: int) -> int:
    """Get an environment variable as a whole number."""
    val = os.getenv(key)
    return int(val) if val else default


def _get_env_bool(key: str, default: bool) -> bool:
    """Get an environment variable as a flag ("1", "true", "yes" are true)."""
    val = os.getenv(key)
    if not val:
        return default
    return val.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """
    All backend configuration in one place.

    Sections:
    - API: where the HTTP server listens and who may call it
    - Auth: token signing and secret storage
    - Solana: RPC access and withdrawal rules
    - Token Feed: the upstream token listing API
    - Bot: how often each operator's bot runs and what it looks at
    - System: database path, logging
    """

    # =========================================================================
    # API
    # =========================================================================

    api_host: str = field(default_factory=lambda: _get_env("API_HOST", "0.0.0.0"))
    api_port: int = field(default_factory=lambda: _get_env_int("API_PORT", 3001))

    # Browser origin allowed by CORS (the React frontend in development)
    frontend_url: str = field(default_factory=lambda: _get_env("FRONTEND_URL", "http://localhost:5173"))

    # =========================================================================
    # Auth
    # =========================================================================

    # Signs bearer tokens. NEVER log or expose this.
    jwt_secret: str = field(default_factory=lambda: _get_env("JWT_SECRET", "default-secret"))
    jwt_algorithm: str = "HS256"
    jwt_expire_days: int = field(default_factory=lambda: _get_env_int("JWT_EXPIRE_DAYS", 7))

    # Fernet key for wallet secrets. Derived from jwt_secret when empty.
    encryption_key: str = field(default_factory=lambda: _get_env("ENCRYPTION_KEY"))

    bcrypt_rounds: int = field(default_factory=lambda: _get_env_int("BCRYPT_ROUNDS", 12))

    min_password_length: int = 6

    # =========================================================================
    # Solana
    # =========================================================================

    # "devnet", "testnet" or "mainnet-beta"
    solana_network: str = field(default_factory=lambda: _get_env("SOLANA_NETWORK", "devnet"))
    solana_rpc_url: str = field(default_factory=lambda: _get_env("SOLANA_RPC_URL"))
    rpc_timeout_seconds: float = field(default_factory=lambda: _get_env_float("RPC_TIMEOUT_SECONDS", 15))

    # Withdrawal fee in percent, sent to the admin wallet in the same transaction
    fee_percentage: float = field(default_factory=lambda: _get_env_float("FEE_PERCENTAGE", 10))
    min_withdrawal_amount: float = field(default_factory=lambda: _get_env_float("MIN_WITHDRAWAL_AMOUNT", 0.1))
    admin_wallet_address: str = field(default_factory=lambda: _get_env("ADMIN_WALLET_ADDRESS"))

    # Shown to the user on the deposit screen
    minimum_deposit_sol: float = 0.001

    # =========================================================================
    # Token Feed
    # =========================================================================

    pumpfun_api_url: str = field(default_factory=lambda: _get_env("PUMPFUN_API_URL", "https://frontend-api.pump.fun"))
    feed_timeout_seconds: float = field(default_factory=lambda: _get_env_float("FEED_TIMEOUT_SECONDS", 10))
    coin_timeout_seconds: float = 5

    # Background polling of newly created tokens while the API runs
    token_refresh_enabled: bool = field(default_factory=lambda: _get_env_bool("TOKEN_REFRESH_ENABLED", True))
    token_refresh_interval: int = field(default_factory=lambda: _get_env_int("TOKEN_REFRESH_INTERVAL", 30))
    token_refresh_limit: int = 20

    # How many tokens to pull from each listing when ranking candidates
    recommended_pool_size: int = 50

    # Quality filter: tokens below this liquidity never become candidates
    quality_min_liquidity: float = 1000
    # Quality filter: tokens not refreshed within this window are stale
    quality_max_staleness_hours: float = 24

    # =========================================================================
    # Bot
    # =========================================================================

    # Seconds between cycles for each running bot
    bot_cycle_interval: float = field(default_factory=lambda: _get_env_float("BOT_CYCLE_INTERVAL", 60))

    # Top-ranked tokens evaluated per cycle
    bot_candidate_count: int = field(default_factory=lambda: _get_env_int("BOT_CANDIDATE_COUNT", 5))

    # Demo mode: each bot picks a random period in [min, max] seconds and
    # stops itself after demo_max_runtime seconds
    demo_mode: bool = field(default_factory=lambda: _get_env_bool("DEMO_MODE", False))
    demo_interval_min: float = 10
    demo_interval_max: float = 30
    demo_max_runtime: float = field(default_factory=lambda: _get_env_float("DEMO_MAX_RUNTIME", 300))

    # =========================================================================
    # System
    # =========================================================================

    db_path: str = field(
        default_factory=lambda: _get_env(
            "DB_PATH", str(Path(__file__).parent.parent / "data" / "spinner_bot.db")
        )
    )

    log_level: str = field(default_factory=lambda: _get_env("LOG_LEVEL", "INFO"))

    # "console" for humans, "json" for log shippers
    log_format: str = field(default_factory=lambda: _get_env("LOG_FORMAT", "console"))

    @property
    def rpc_url(self) -> str:
        """RPC endpoint: explicit SOLANA_RPC_URL, else the public cluster URL."""
        if self.solana_rpc_url:
            return self.solana_rpc_url
        return f"https://api.{self.solana_network}.solana.com"

    def validate(self) -> list[str]:
        """
        Check that settings make sense.
        Returns a list of problems found (empty list = all good).
        """
        problems = []

        if self.jwt_secret == "default-secret":
            problems.append("JWT_SECRET is not set, tokens are signed with the default secret")
        if not self.encryption_key:
            problems.append("ENCRYPTION_KEY is not set, wallet keys use a key derived from JWT_SECRET")
        if not self.admin_wallet_address and self.fee_percentage > 0:
            problems.append("ADMIN_WALLET_ADDRESS is not set, withdrawals with a fee will fail")
        if self.solana_network not in ("devnet", "testnet", "mainnet-beta"):
            problems.append(f"SOLANA_NETWORK must be devnet, testnet or mainnet-beta (got {self.solana_network})")

        if not 0 <= self.fee_percentage < 100:
            problems.append("FEE_PERCENTAGE must be between 0 and 100")
        if self.bot_cycle_interval <= 0:
            problems.append("BOT_CYCLE_INTERVAL must be positive")
        if self.bot_candidate_count < 1:
            problems.append("BOT_CANDIDATE_COUNT must be at least 1")
        if self.demo_interval_min > self.demo_interval_max:
            problems.append("demo_interval_min is larger than demo_interval_max")
        if self.log_format not in ("console", "json"):
            problems.append("LOG_FORMAT must be 'console' or 'json'")

        return problems


# Global settings instance
# Usage: from config.settings import settings
settings = Settings()
