"""User identity and session management for the agent.

An anonymous id is generated on first run and persisted under `cg_user_id`
so the same visitor keeps the same id across processes. `identify` promotes
the visitor to a durable id; the old id is reported as `previous_id`.
"""

import logging
import secrets
import time
from dataclasses import dataclass, replace
from typing import Callable, Optional

from churnguard_agent.storage import KeyValueStorage, MemoryStorage, StorageError

logger = logging.getLogger(__name__)

USER_ID_KEY = 'cg_user_id'
ANONYMOUS_PREFIX = 'anon_'
SESSION_PREFIX = 'session_'

BASE36_ALPHABET = '0123456789abcdefghijklmnopqrstuvwxyz'


def random_base36(length: int = 11) -> str:
    return ''.join(secrets.choice(BASE36_ALPHABET) for _ in range(length))


def generate_anonymous_id() -> str:
    """`anon_` followed by two independent random base-36 strings."""
    return f'{ANONYMOUS_PREFIX}{random_base36()}{random_base36()}'


def generate_session_id(now: Optional[float] = None) -> str:
    """`session_<random base-36>_<epoch millis>`; sorts by creation time within a user."""
    millis = int((time.time() if now is None else now) * 1000)
    return f'{SESSION_PREFIX}{random_base36()}{random_base36()}_{millis}'


@dataclass(frozen=True)
class UserIdentity:
    user_id: str
    is_anonymous: bool


@dataclass(frozen=True)
class Session:
    session_id: str
    user_id: str
    start_time: float


class IdentityManager:
    """Holds the single active identity and session of a collector."""

    def __init__(
        self,
        storage: Optional[KeyValueStorage] = None,
        user_id: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.storage = storage if storage is not None else MemoryStorage()
        self._configured_user_id = user_id
        self._clock = clock
        self._identity: Optional[UserIdentity] = None
        self._session: Optional[Session] = None

    @property
    def identity(self) -> UserIdentity:
        if self._identity is None:
            self.resolve_user_id()
        return self._identity

    @property
    def user_id(self) -> str:
        return self.identity.user_id

    @property
    def session(self) -> Session:
        if self._session is None:
            self.new_session()
        return self._session

    def resolve_user_id(self) -> str:
        """Return the active user id, loading or creating it on first call.

        Precedence: explicitly configured id, then the persisted id, then a new
        anonymous id (which is persisted). Never fails: storage errors degrade
        to an id that lives only as long as this process.
        """
        if self._identity is not None:
            return self._identity.user_id

        user_id = self._configured_user_id
        if not user_id:
            user_id = self._load()
        if user_id:
            is_anonymous = user_id.startswith(ANONYMOUS_PREFIX)
        else:
            user_id = generate_anonymous_id()
            is_anonymous = True

        self._identity = UserIdentity(user_id=user_id, is_anonymous=is_anonymous)
        self._save(user_id)
        return user_id

    def identify(self, user_id: str) -> Optional[str]:
        """Make `user_id` the active identity.

        Returns:
            The previously active id if it differs from `user_id`, else None

        Raises:
            ValueError: If `user_id` is empty
        """
        if not user_id:
            raise ValueError('user_id is required')

        previous = self.resolve_user_id()
        self._identity = UserIdentity(user_id=user_id, is_anonymous=False)
        if self._session is not None:
            self._session = replace(self._session, user_id=user_id)
        self._save(user_id)
        return previous if previous != user_id else None

    def new_session(self) -> str:
        """Start a new session for the active user and return its id."""
        now = self._clock()
        self._session = Session(
            session_id=generate_session_id(now),
            user_id=self.resolve_user_id(),
            start_time=now,
        )
        return self._session.session_id

    def session_duration(self) -> float:
        """Seconds since the current session started."""
        return max(self._clock() - self.session.start_time, 0.0)

    def _load(self) -> Optional[str]:
        try:
            return self.storage.get(USER_ID_KEY)
        except StorageError as e:
            logger.debug('Could not read stored user id: %s', e)
            return None

    def _save(self, user_id: str) -> None:
        try:
            self.storage.set(USER_ID_KEY, user_id)
        except StorageError as e:
            logger.debug('Could not persist user id: %s', e)
