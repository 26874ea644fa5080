"""Authenticated sessions and the auth-state channel.

A session is an explicit value object issued by login and invalidated by
logout or expiry. Persistence goes through an injected ISessionStore, and
state changes are published on an AuthStateChannel that consumers
subscribe to instead of listening on a global bus.

Example:
    channel = AuthStateChannel()
    unsubscribe = channel.subscribe(lambda event, session: print(event, session.subject))
    sessions = SessionManager(InMemorySessionStore(), channel, ttl=86400)

    await sessions.login("user-1", auth_key)
    current = await sessions.current("user-1")
    await sessions.logout("user-1")
"""

import hashlib
import inspect
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthSession:
    """Immutable record of one signed-in account.

    Attributes:
        subject: Who the session belongs to (user id or e-mail)
        credential: The Stremio authKey. Never logged.
        issued_at: Unix timestamp of login
        expires_at: Unix timestamp after which the session is invalid, or None
    """

    subject: str
    credential: str = field(repr=False)
    issued_at: float
    expires_at: Optional[float] = None

    @property
    def credential_id(self) -> str:
        """Safe identifier for logs (SHA-256 hash, first 8 chars)."""
        return hashlib.sha256(self.credential.encode()).hexdigest()[:8]

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class ISessionStore(ABC):
    """Port for persisting sessions."""

    @abstractmethod
    async def load(self, subject: str) -> Optional[AuthSession]:
        """Return the stored session for ``subject``, or None."""
        ...

    @abstractmethod
    async def save(self, session: AuthSession) -> None:
        """Store ``session``, replacing any previous one for its subject."""
        ...

    @abstractmethod
    async def clear(self, subject: str) -> None:
        """Remove the session for ``subject`` (no-op if absent)."""
        ...

    @abstractmethod
    async def subjects(self) -> list[str]:
        """Subjects that currently have a stored session."""
        ...


class InMemorySessionStore(ISessionStore):
    """Process-local session store."""

    def __init__(self):
        self._sessions: dict[str, AuthSession] = {}

    async def load(self, subject: str) -> Optional[AuthSession]:
        return self._sessions.get(subject)

    async def save(self, session: AuthSession) -> None:
        self._sessions[session.subject] = session

    async def clear(self, subject: str) -> None:
        self._sessions.pop(subject, None)

    async def subjects(self) -> list[str]:
        return list(self._sessions)


class AuthEvent(str, Enum):
    LOGGED_IN = "logged_in"
    LOGGED_OUT = "logged_out"
    EXPIRED = "expired"


AuthListener = Callable[[AuthEvent, AuthSession], Any]


class AuthStateChannel:
    """Publish/subscribe channel for auth state changes.

    Listeners may be sync or async. A failing listener is logged and does
    not stop delivery to the others.
    """

    def __init__(self):
        self._listeners: list[AuthListener] = []

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        """Add a listener. Returns a function that removes it again."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    async def publish(self, event: AuthEvent, session: AuthSession) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(event, session)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Auth listener failed on {event.value}")


class SessionManager:
    """Issues, reads and invalidates sessions."""

    def __init__(
        self,
        store: ISessionStore,
        channel: Optional[AuthStateChannel] = None,
        ttl: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.channel = channel or AuthStateChannel()
        self.ttl = ttl
        self._clock = clock

    async def login(self, subject: str, credential: str) -> AuthSession:
        await self.purge_expired()
        now = self._clock()
        session = AuthSession(
            subject=subject,
            credential=credential,
            issued_at=now,
            expires_at=now + self.ttl if self.ttl else None,
        )
        await self.store.save(session)
        logger.info(f"Session issued for {subject} (credential {session.credential_id})")
        await self.channel.publish(AuthEvent.LOGGED_IN, session)
        return session

    async def logout(self, subject: str) -> bool:
        """Invalidate the session for ``subject``. Returns False if there was none."""
        session = await self.store.load(subject)
        if session is None:
            return False
        await self.store.clear(subject)
        logger.info(f"Session ended for {subject}")
        await self.channel.publish(AuthEvent.LOGGED_OUT, session)
        return True

    async def current(self, subject: str) -> Optional[AuthSession]:
        """The live session for ``subject``; an expired one is cleared and None returned."""
        session = await self.store.load(subject)
        if session is None:
            return None
        if session.is_expired(self._clock()):
            await self.store.clear(subject)
            logger.info(f"Session expired for {subject}")
            await self.channel.publish(AuthEvent.EXPIRED, session)
            return None
        return session

    async def purge_expired(self) -> int:
        """Clear every expired session, publishing EXPIRED for each."""
        purged = 0
        for subject in await self.store.subjects():
            if await self.current(subject) is None:
                purged += 1
        return purged
