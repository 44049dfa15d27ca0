"""
Account Service

Registration, password login and bearer token verification.

DESIGN DECISION: Passwords are pre-hashed with SHA-256 and then bcrypt'd.
bcrypt only reads the first 72 bytes of its input; the 32-byte digest
keeps long passphrases fully significant.

Tokens are HS256 JWTs carrying the user id as `sub`. They are
verified on every write request; nothing about a session is stored
server-side.
"""

import hashlib
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
from pydantic import BaseModel

from finance_tracker.audit import AuditLogger
from finance_tracker.config import AuthSettings, get_settings
from finance_tracker.models.user import User, UserRegistration
from finance_tracker.services.storage import DuplicateError, UserStoreInterface


class AccountError(Exception):
    """Base error for account operations."""
    pass


class EmailAlreadyRegistered(AccountError):
    """Another account already uses this e-mail."""

    def __init__(self, email: str):
        super().__init__(f"E-mail already registered: {email}")
        self.email = email


class InvalidCredentials(AccountError):
    """Unknown e-mail or wrong password. Deliberately not told apart."""
    pass


class InvalidToken(AccountError):
    """Bearer token missing, malformed, expired or badly signed."""
    pass


def _pre_hash_password(password: str) -> bytes:
    return hashlib.sha256(password.encode("utf-8")).digest()


def hash_password(password: str, rounds: int = 12) -> str:
    """Hash a password for storage."""
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(_pre_hash_password(password), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Check a password against a stored hash."""
    try:
        return bcrypt.checkpw(_pre_hash_password(password), password_hash.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash
        return False


class TokenClaims(BaseModel):
    """The verified contents of an access token."""

    user_id: str
    email: str
    expires_at: datetime


class AccountService:
    """Creates accounts and issues and verifies their access tokens."""

    def __init__(
        self,
        user_store: UserStoreInterface,
        settings: Optional[AuthSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._users = user_store
        self._settings = settings or get_settings().auth
        self._audit_logger = audit_logger or AuditLogger()

    def register(self, registration: UserRegistration) -> User:
        """
        Create a user with an empty expense list.

        Raises:
            EmailAlreadyRegistered: the e-mail is taken
            StorageError: the store failed
        """
        user = User(
            name=registration.name,
            email=registration.email,
            password_hash=hash_password(
                registration.password,
                rounds=self._settings.bcrypt_rounds,
            ),
            yearly_income=registration.yearly_income,
        )
        try:
            self._users.create_user(user)
        except DuplicateError as e:
            raise EmailAlreadyRegistered(registration.email) from e

        self._audit_logger.log_user_registered(user_id=user.id, email=user.email)
        return user

    def authenticate(self, email: str, password: str) -> str:
        """
        Exchange e-mail and password for an access token.

        Raises:
            InvalidCredentials: unknown e-mail or wrong password
        """
        user = self._users.get_user_by_email(email.strip().lower())
        if user is None or not verify_password(password, user.password_hash):
            raise InvalidCredentials("Invalid e-mail or password")
        return self.issue_token(user)

    def issue_token(self, user: User) -> str:
        expires_at = datetime.now(timezone.utc) + timedelta(
            minutes=self._settings.token_expire_minutes
        )
        payload = {
            "sub": user.id,
            "email": user.email,
            "exp": expires_at,
        }
        return jwt.encode(
            payload,
            self._settings.jwt_secret,
            algorithm=self._settings.jwt_algorithm,
        )

    def decode_token(self, token: str) -> TokenClaims:
        """
        Verify a token's signature and expiry.

        Raises:
            InvalidToken: the token cannot be trusted
        """
        try:
            payload = jwt.decode(
                token,
                self._settings.jwt_secret,
                algorithms=[self._settings.jwt_algorithm],
                options={"require": ["sub", "exp"]},
            )
        except jwt.PyJWTError as e:
            raise InvalidToken(str(e)) from e

        return TokenClaims(
            user_id=payload["sub"],
            email=payload.get("email", ""),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )
