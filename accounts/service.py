"""
Account Service
===============
Operator signup, login and profile.

Signup creates three things at once: the user row (bcrypt password hash),
a fresh custodial wallet, and the default bot configuration. Both signup
and login hand back a bearer token valid for JWT_EXPIRE_DAYS.
"""

import asyncio
from typing import Any

from config.settings import Settings
from database.db import Database
from utils.errors import NotFoundError, UnauthorizedError, ValidationError
from utils.logger import get_logger
from utils.security import SecurityManager
from wallet.wallet_service import WalletService

logger = get_logger(__name__)


def _public_user(user: dict, *fields: str) -> dict[str, Any]:
    """User fields safe to send to the client (never the hash or the key)."""
    data = {
        "id": user["id"],
        "email": user["email"],
        "username": user["username"],
        "wallet_address": user["wallet_address"],
    }
    for name in fields:
        data[name] = user.get(name)
    return data


class AccountService:
    """
    Usage:
        accounts = AccountService(settings, db, security, wallet)
        token, user = await accounts.register("a@b.c", "secret1", "alice")
        token, user = await accounts.login("a@b.c", "secret1")
    """

    def __init__(self, settings: Settings, db: Database, security: SecurityManager, wallet: WalletService):
        self.settings = settings
        self.db = db
        self.security = security
        self.wallet = wallet

    async def register(self, email: str, password: str, username: str) -> tuple[str, dict]:
        if not email or not password or not username:
            raise ValidationError("Email, password and username are required")
        if len(password) < self.settings.min_password_length:
            raise ValidationError(f"Password must be at least {self.settings.min_password_length} characters")

        email = email.strip().lower()
        username = username.strip()
        if await self.db.find_user_by_email_or_username(email, username):
            raise ValidationError("Email or username already exists")

        address, encrypted_key = self.wallet.generate_wallet()
        password_hash = await asyncio.to_thread(self.security.hash_password, password)

        user_id = await self.db.create_user({
            "email": email,
            "username": username,
            "password_hash": password_hash,
            "wallet_address": address,
            "encrypted_private_key": encrypted_key,
        })
        await self.db.create_bot_config(user_id)

        user = await self.db.get_user_by_id(user_id)
        token = self.security.create_access_token(user_id, email)
        logger.info("user_registered", user_id=user_id, wallet=address[:8] + "...")
        return token, _public_user(user, "sol_balance", "created_at")

    async def login(self, email: str, password: str) -> tuple[str, dict]:
        if not email or not password:
            raise ValidationError("Email and password are required")

        user = await self.db.get_user_by_email(email.strip().lower())
        if not user:
            raise UnauthorizedError("Invalid credentials")
        valid = await asyncio.to_thread(self.security.verify_password, password, user["password_hash"])
        if not valid:
            logger.info("login_rejected", user_id=user["id"])
            raise UnauthorizedError("Invalid credentials")

        user["last_login"] = await self.db.update_last_login(user["id"])
        token = self.security.create_access_token(user["id"], user["email"])
        logger.info("user_logged_in", user_id=user["id"])
        return token, _public_user(user, "sol_balance", "last_login")

    async def get_profile(self, user_id: int) -> dict:
        user = await self.db.get_user_by_id(user_id)
        if not user:
            raise NotFoundError("User not found")
        user["sol_balance"] = await self.wallet.refresh_balance(user)
        profile = _public_user(user, "sol_balance", "last_login", "created_at")
        profile["is_active"] = bool(user["is_active"])
        return profile

    async def update_profile(self, user_id: int, username: str | None) -> dict:
        if not username or not username.strip():
            raise ValidationError("Username is required")
        username = username.strip()
        if await self.db.username_taken(username, exclude_user_id=user_id):
            raise ValidationError("Username already exists")

        user = await self.db.get_user_by_id(user_id)
        if not user:
            raise NotFoundError("User not found")
        await self.db.update_username(user_id, username)
        user["username"] = username
        logger.info("profile_updated", user_id=user_id)
        return _public_user(user, "sol_balance")

    async def verify(self, user_id: int) -> dict:
        user = await self.db.get_user_by_id(user_id)
        if not user:
            raise NotFoundError("User not found")
        return _public_user(user)
