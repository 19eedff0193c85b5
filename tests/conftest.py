"""Shared fixtures: isolated settings, a temporary database, fake RPC and feed clients."""

from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from cryptography.fernet import Fernet
from solders.keypair import Keypair

from config.settings import Settings
from database.db import Database


@pytest.fixture
def settings(tmp_path):
    return Settings(
        db_path=str(tmp_path / "spinner_test.db"),
        jwt_secret="test-secret",
        encryption_key=Fernet.generate_key().decode(),
        bcrypt_rounds=4,
        admin_wallet_address=str(Keypair().pubkey()),
        token_refresh_enabled=False,
        bot_cycle_interval=60,
        demo_mode=False,
    )


@pytest_asyncio.fixture
async def db(settings):
    database = Database(settings.db_path)
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def feed_client():
    """Stands in for PumpFunClient."""
    client = AsyncMock()
    client.get_new_coins.return_value = []
    client.get_hot_coins.return_value = []
    client.get_coin.return_value = None
    return client


@pytest.fixture
def solana():
    """Stands in for SolanaClient. Balance 1 SOL, transfers succeed."""
    client = AsyncMock()
    client.get_sol_balance.return_value = 1.0
    client.transfer_sol.return_value = "5igSignature111"
    return client
