import logging
import secrets
import string
import time
from typing import Optional

from errors import StorageUnavailableError

from .store import KeyValueStore

_ID_ALPHABET = string.digits + string.ascii_lowercase


def generate_identity() -> str:
    """Build a new identifier from the wall clock plus a random suffix."""
    millis = time.time_ns() // 1_000_000
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(7))
    return f"user-{millis}-{suffix}"


class IdentityProvider:
    """
    Produces a stable client identifier persisted in a key-value store.

    The identifier is created lazily on first use and never changes while
    the store keeps it. If the store fails, a fallback identifier is kept
    in memory for the lifetime of this provider instead.
    """

    def __init__(
        self,
        store: KeyValueStore,
        key: str = "hazwoper_chat_user_id",
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.key = key
        self.logger = logger or logging.getLogger("IdentityProvider")
        self._fallback: Optional[str] = None

    def get_or_create_identity(self) -> str:
        """
        Return the persisted identity, creating and storing one if absent.

        Returns:
            The client identifier
        """
        if self._fallback is not None:
            return self._fallback

        try:
            stored = self.store.get(self.key)
        except StorageUnavailableError as e:
            return self._use_fallback(e)

        if stored:
            return str(stored)

        identity = generate_identity()
        try:
            self.store.set(self.key, identity)
        except StorageUnavailableError as e:
            return self._use_fallback(e, identity)

        self.logger.info(f"Created new client identity: {identity}")
        return identity

    @property
    def is_volatile(self) -> bool:
        """True when the identity only lives in memory."""
        return self._fallback is not None

    def _use_fallback(
        self, error: Exception, identity: Optional[str] = None
    ) -> str:
        self._fallback = identity or generate_identity()
        self.logger.warning(
            f"Identity storage unavailable, using in-memory identity "
            f"{self._fallback}: {error}"
        )
        return self._fallback
