"""
Error taxonomy shared by the transport, protocol and identity layers.
"""

from typing import Optional


class ChatClientError(Exception):
    """Base class for all chat client errors."""


class NotConnectedError(ChatClientError):
    """A protocol operation was attempted without an active transport."""

    def __init__(self, message: str = "Socket is not connected"):
        super().__init__(message)


class ServerError(ChatClientError):
    """The remote service reported a failure for the in-flight request."""

    def __init__(self, message: str, session_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.session_id = session_id


class StorageUnavailableError(ChatClientError):
    """The persistent key-value store could not be read or written."""
