"""
Session manager

Issues and verifies signed access tokens and owns the stored credential
records: registration, login, password change, password reset and profile
updates. Tokens carry id/email/name as claims, so any profile change hands
back a fresh token that the caller must use from then on.
"""
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional
from urllib.parse import quote
from uuid import uuid4

import config
import errors
import security
from database import DocumentStore, utcnow
from schemas import AuthUser, PasswordReset, UserIdentity

logger = logging.getLogger(__name__)

USERS = "authuser"
RESETS = "passwordreset"


def default_avatar_url(name: str) -> str:
    return f"https://ui-avatars.com/api/?name={quote(name)}&background=4285F4&color=fff&size=200"


def to_identity(user: dict) -> UserIdentity:
    return UserIdentity(id=user["id"], email=user["email"], name=user["name"], avatar=user.get("avatar"))


@dataclass
class AuthResult:
    user: UserIdentity
    token: str


class SessionManager:
    def __init__(
        self,
        store: DocumentStore,
        secret_key: str = config.SECRET_KEY,
        algorithm: str = config.ALGORITHM,
        token_ttl: timedelta = timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES),
        reset_ttl: timedelta = timedelta(minutes=config.RESET_TOKEN_EXPIRE_MINUTES),
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.token_ttl = token_ttl
        self.reset_ttl = reset_ttl
        self.clock = clock

    # --------------------- Tokens ---------------------

    def issue(self, identity: UserIdentity) -> str:
        claims = {"sub": identity.id, "id": identity.id, "email": identity.email, "name": identity.name}
        return security.create_access_token(
            claims,
            expires_delta=self.token_ttl,
            now=self.clock(),
            secret_key=self.secret_key,
            algorithm=self.algorithm,
        )

    def verify(self, token: str) -> Optional[UserIdentity]:
        """Decoded identity for a valid token; None for anything else."""
        payload = security.decode_access_token(
            token, now=self.clock(), secret_key=self.secret_key, algorithm=self.algorithm
        )
        if payload is None:
            return None
        user_id, email, name = payload.get("id"), payload.get("email"), payload.get("name")
        if not (isinstance(user_id, str) and isinstance(email, str) and isinstance(name, str)):
            return None
        return UserIdentity(id=user_id, email=email, name=name)

    def _result(self, user: dict) -> AuthResult:
        identity = to_identity(user)
        return AuthResult(user=identity, token=self.issue(identity))

    # --------------------- Users ---------------------

    def _find_by_email(self, email: str) -> Optional[dict]:
        return self.store.find_one(USERS, {"email": email})

    def _find_by_id(self, user_id: str) -> Optional[dict]:
        return self.store.find_one(USERS, {"id": user_id})

    def get_user(self, user_id: str) -> UserIdentity:
        user = self._find_by_id(user_id)
        if not user:
            raise errors.NotFoundError("User not found")
        return to_identity(user)

    def list_users(self) -> List[dict]:
        users = self.store.get_documents(USERS)
        return [
            {k: user.get(k) for k in ("id", "name", "email", "avatar", "created_at", "updated_at")}
            for user in users
        ]

    def count_users(self) -> int:
        return self.store.count(USERS)

    def register(self, name: str, email: str, password: str, avatar: Optional[str] = None) -> AuthResult:
        if self._find_by_email(email):
            logger.info("Registration rejected, email already registered")
            raise errors.DuplicateEmail()

        user = AuthUser(
            id=str(uuid4()),
            name=name,
            email=email,
            password_hash=security.get_password_hash(password),
            avatar=avatar or default_avatar_url(name),
        )
        created = self.store.create_document(USERS, user)
        logger.info("Registered user %s", created["id"])
        return self._result(created)

    def authenticate(self, email: str, password: str) -> AuthResult:
        user = self._find_by_email(email)
        if not user:
            security.dummy_verify()
            raise errors.InvalidCredentials()
        if not security.verify_password(password, user.get("password_hash", "")):
            raise errors.InvalidCredentials()
        logger.info("Login successful for user %s", user["id"])
        return self._result(user)

    def change_password(self, identity: UserIdentity, current_password: str, new_password: str) -> None:
        user = self._find_by_id(identity.id)
        if not user:
            raise errors.NotFoundError("User not found")
        if not security.verify_password(current_password, user.get("password_hash", "")):
            raise errors.InvalidCredentials("Current password is incorrect")
        self.store.update_document(USERS, {"id": user["id"]}, {"password_hash": security.get_password_hash(new_password)})
        logger.info("Password changed for user %s", user["id"])

    def update_profile(
        self,
        identity: UserIdentity,
        name: str,
        email: str,
        bio: Optional[str] = None,
        phone: Optional[str] = None,
        avatar: Optional[str] = None,
    ) -> AuthResult:
        user = self._find_by_id(identity.id)
        if not user:
            raise errors.NotFoundError("User not found")
        other = self._find_by_email(email)
        if other and other["id"] != user["id"]:
            raise errors.EmailTaken()

        fields = {"name": name, "email": email}
        if bio is not None:
            fields["bio"] = bio
        if phone is not None:
            fields["phone"] = phone
        if avatar:
            fields["avatar"] = avatar
        updated = self.store.update_document(USERS, {"id": user["id"]}, fields)
        logger.info("Profile updated for user %s", user["id"])
        return self._result(updated)

    # --------------------- Password reset ---------------------

    def request_password_reset(self, email: str) -> Optional[str]:
        """Create a reset token when the email is known.

        Callers must answer the same way whether or not a token came back.
        """
        user = self._find_by_email(email)
        if not user:
            return None
        token = secrets.token_hex(32)
        reset = PasswordReset(
            id=str(uuid4()),
            email=email,
            token=token,
            expires_at=self.clock() + self.reset_ttl,
        )
        self.store.create_document(RESETS, reset)
        logger.info("Password reset requested for user %s", user["id"])
        return token

    def consume_password_reset(self, token: str, new_password: str) -> None:
        reset = self.store.find_one(RESETS, {"token": token})
        if not reset:
            raise errors.InvalidOrExpiredToken()
        if self.clock() >= reset["expires_at"]:
            self.store.delete(RESETS, {"id": reset["id"]})
            raise errors.InvalidOrExpiredToken("Token has expired")

        user = self._find_by_email(reset["email"])
        if not user:
            raise errors.NotFoundError("User not found")

        self.store.update_document(USERS, {"id": user["id"]}, {"password_hash": security.get_password_hash(new_password)})
        self.store.delete(RESETS, {"id": reset["id"]})
        logger.info("Password reset completed for user %s", user["id"])
