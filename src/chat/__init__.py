"""
Chat Session Package

Provides the streaming chat-session protocol client and the conversation
controller built on top of it.

This package:
- Defines the event contract and payload models exchanged with the service
- Tracks the session lifecycle and correlates streamed replies
- Accumulates partial output into complete assistant messages
- Publishes conversation state and errors to the UI layer
"""

from .controller import StreamingConversationController
from .models import (
    ChatEvent,
    ChatFinalPayload,
    ChatSession,
    ConversationState,
    CourseRecommendation,
    Message,
    MessageRole,
    SessionStatus,
)
from .protocol import ChatEventHandlers, SessionProtocolClient

__all__ = [
    "StreamingConversationController",
    "SessionProtocolClient",
    "ChatEventHandlers",
    "ChatEvent",
    "ChatFinalPayload",
    "ChatSession",
    "ConversationState",
    "CourseRecommendation",
    "Message",
    "MessageRole",
    "SessionStatus",
]
