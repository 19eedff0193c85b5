"""
Security Helpers
================
Passwords, bearer tokens and wallet-secret encryption.

- Passwords are hashed with bcrypt (cost from BCRYPT_ROUNDS).
- Bearer tokens are HS256 JWTs carrying user_id and email.
- Wallet private keys are stored as Fernet tokens. The Fernet key comes from
  ENCRYPTION_KEY, or is derived from JWT_SECRET with scrypt when unset.
"""

import base64
from datetime import datetime, timedelta, timezone

import bcrypt
from cryptography.fernet import Fernet
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from jose import JWTError, jwt

from config.settings import Settings
from utils.errors import ForbiddenError
from utils.logger import get_logger

logger = get_logger(__name__)

# bcrypt only looks at the first 72 bytes of a password
_BCRYPT_MAX_BYTES = 72


def _derive_fernet_key(secret: str) -> bytes:
    kdf = Scrypt(salt=b"salt", length=32, n=2**14, r=8, p=1)
    return base64.urlsafe_b64encode(kdf.derive(secret.encode()))


class SecurityManager:
    """
    Usage:
        security = SecurityManager(settings)
        hashed = security.hash_password("hunter22")
        token = security.create_access_token(user_id=1, email="a@b.c")
        claims = security.decode_access_token(token)
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        if settings.encryption_key:
            key = settings.encryption_key.encode()
        else:
            logger.warning("encryption_key_missing", note="Deriving wallet key from JWT_SECRET")
            key = _derive_fernet_key(settings.jwt_secret)
        self._fernet = Fernet(key)

    # =========================================================================
    # Passwords
    # =========================================================================

    def hash_password(self, password: str) -> str:
        salt = bcrypt.gensalt(rounds=self.settings.bcrypt_rounds)
        return bcrypt.hashpw(password.encode()[:_BCRYPT_MAX_BYTES], salt).decode()

    def verify_password(self, password: str, password_hash: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode()[:_BCRYPT_MAX_BYTES], password_hash.encode())
        except ValueError:
            # Stored hash is not a bcrypt hash
            return False

    # =========================================================================
    # Bearer tokens
    # =========================================================================

    def create_access_token(self, user_id: int, email: str) -> str:
        expires = datetime.now(timezone.utc) + timedelta(days=self.settings.jwt_expire_days)
        payload = {"user_id": user_id, "email": email, "exp": int(expires.timestamp())}
        return jwt.encode(payload, self.settings.jwt_secret, algorithm=self.settings.jwt_algorithm)

    def decode_access_token(self, token: str) -> dict:
        """
        Verify a bearer token and return its claims.
        Raises ForbiddenError if the signature is bad, it expired, or user_id is missing.
        """
        try:
            claims = jwt.decode(token, self.settings.jwt_secret, algorithms=[self.settings.jwt_algorithm])
        except JWTError as e:
            logger.debug("token_rejected", error=str(e))
            raise ForbiddenError("Invalid token") from e
        if "user_id" not in claims:
            raise ForbiddenError("Invalid token")
        return claims

    # =========================================================================
    # Wallet secrets
    # =========================================================================

    def encrypt_secret(self, secret: str) -> str:
        return self._fernet.encrypt(secret.encode()).decode()

    def decrypt_secret(self, token: str) -> str:
        """Raises cryptography.fernet.InvalidToken if the key changed or the data is corrupt."""
        return self._fernet.decrypt(token.encode()).decode()
