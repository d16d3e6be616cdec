import logging
from typing import Optional

from chat import SessionProtocolClient, StreamingConversationController
from config import Settings
from identity import IdentityProvider, JsonFileStore
from transport import WebSocketTransport

# Process-wide identity provider: created on first use, never torn down
_identity_instance: Optional[IdentityProvider] = None


def get_identity_provider(settings: Settings) -> IdentityProvider:
    global _identity_instance

    # Lazy initialization - create only once
    if _identity_instance is None:
        _identity_instance = IdentityProvider(
            JsonFileStore(settings.identity_store_path),
            key=settings.identity_key,
        )

    return _identity_instance


def create_controller(
    settings: Settings, logger: Optional[logging.Logger] = None
) -> StreamingConversationController:
    """Wire a transport, protocol client and controller for one conversation."""
    transport = WebSocketTransport(
        settings.ws_url,
        reconnection_delay=settings.reconnection_delay,
        reconnection_attempts=settings.reconnection_attempts,
    )
    protocol = SessionProtocolClient(transport)
    user_id = get_identity_provider(settings).get_or_create_identity()

    return StreamingConversationController(
        protocol,
        user_id=user_id,
        reply_timeout=settings.reply_timeout,
        logger=logger,
    )
