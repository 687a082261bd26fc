"""
Client-held session

The token and the cached user live side by side in local storage. This
object is the single owner of both: it keeps them consistent, clears them
when they disagree or the token has expired, and tells subscribers about
every transition between signed-in and signed-out.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, List, Optional

import config
import errors
from database import utcnow
from schemas import UserIdentity
from security import read_token_expiry
from storage import LocalStorage

logger = logging.getLogger(__name__)

TOKEN_KEY = "token"
USER_KEY = "user"


def is_token_format(token: Optional[str]) -> bool:
    return bool(token) and len(token.split(".")) == 3


@dataclass
class Authenticated:
    user: UserIdentity
    token: str


Listener = Callable[[Optional[Authenticated]], None]


class LocalSession:
    def __init__(self, storage: LocalStorage, clock: Callable[[], datetime] = utcnow):
        self.storage = storage
        self.clock = clock
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, state: Optional[Authenticated]) -> None:
        for listener in list(self._listeners):
            listener(state)

    @property
    def token(self) -> Optional[str]:
        token = self.storage.get_item(TOKEN_KEY)
        if token is not None and not is_token_format(token):
            logger.warning("Invalid token format in storage, clearing token")
            self.storage.remove_item(TOKEN_KEY)
            return None
        return token

    @property
    def user(self) -> Optional[UserIdentity]:
        raw = self.storage.get_item(USER_KEY)
        if raw is None:
            return None
        try:
            return UserIdentity.model_validate_json(raw)
        except ValueError:
            logger.warning("Unreadable cached user, clearing it")
            self.storage.remove_item(USER_KEY)
            return None

    def sign_in(self, user: UserIdentity, token: str) -> Authenticated:
        if not is_token_format(token):
            raise errors.ValidationError("Invalid token format")
        self.storage.set_item(TOKEN_KEY, token)
        self.storage.set_item(USER_KEY, user.model_dump_json())
        state = Authenticated(user=user, token=token)
        self._notify(state)
        return state

    # a profile update hands back a new token carrying the new claims
    replace = sign_in

    def sign_out(self) -> None:
        had_state = self.storage.get_item(TOKEN_KEY) is not None or self.storage.get_item(USER_KEY) is not None
        self.storage.remove_item(TOKEN_KEY)
        self.storage.remove_item(USER_KEY)
        if had_state:
            logger.info("Cleared auth data")
            self._notify(None)

    def is_expired(self, token: str) -> bool:
        expiry = read_token_expiry(token)
        return expiry is None or self.clock() >= expiry

    def current(self) -> Optional[Authenticated]:
        """Reconciled session state; clears everything on any inconsistency."""
        token, user = self.token, self.user
        if token is None and user is None:
            return None
        if token is None or user is None:
            logger.warning("Inconsistent auth state (token=%s, user=%s)", token is not None, user is not None)
            self.sign_out()
            return None
        if self.is_expired(token):
            logger.info("Token expired, signing out")
            self.sign_out()
            return None
        return Authenticated(user=user, token=token)

    def check_expiry(self) -> bool:
        return self.current() is not None

    async def refresh(self, fetch_user: Callable[[str], Awaitable[UserIdentity]]) -> Optional[Authenticated]:
        """Re-read the identity for the held token; a rejected token signs out."""
        state = self.current()
        if state is None:
            return None
        try:
            user = await fetch_user(state.token)
        except errors.AppError as e:
            logger.warning("Identity refresh failed: %s", e.message)
            self.sign_out()
            return None
        if user != state.user:
            self.storage.set_item(USER_KEY, user.model_dump_json())
            state = Authenticated(user=user, token=state.token)
            self._notify(state)
        return state


async def watch_token_expiry(session: LocalSession, interval: float = config.TOKEN_CHECK_INTERVAL, sleep=asyncio.sleep) -> None:
    while session.check_expiry():
        await sleep(interval)


async def refresh_identity(
    session: LocalSession,
    fetch_user: Callable[[str], Awaitable[UserIdentity]],
    interval: float = config.IDENTITY_REFRESH_INTERVAL,
    sleep=asyncio.sleep,
) -> None:
    while await session.refresh(fetch_user) is not None:
        await sleep(interval)
