"""
Chat protocol data models.

Defines the event names and payloads exchanged with the assistant service,
together with the conversation state published to the UI layer. Wire
payloads use camelCase keys; the Python attributes are snake_case.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from transport.base import ConnectionState


class ChatEvent(str, Enum):
    """Named events of the chat protocol."""

    START = "chat:start"
    MESSAGE = "chat:message"
    STARTED = "chat:started"
    PARTIAL = "chat:partial"
    FINAL = "chat:final"
    ERROR = "chat:error"


class WireModel(BaseModel):
    """Base for payloads that travel over the transport."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class StartSessionPayload(WireModel):
    user_id: str
    session_id: Optional[str] = None


class SendMessagePayload(WireModel):
    user_id: str
    message: str
    session_id: Optional[str] = None
    metadata: Optional[Dict[str, str]] = None


class SessionStartedPayload(WireModel):
    session_id: str
    previous_response_id: Optional[str] = None


class ChatPartialPayload(WireModel):
    delta: str


class CourseRecommendation(WireModel):
    """Opaque course record relayed alongside a final reply."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    course_id: str
    course_name: str
    description: str = ""
    price: str = ""
    duration: str = ""
    url: str = ""


class ChatFinalPayload(WireModel):
    reply: str
    has_new_recommendations: bool = False
    recommendations: List[CourseRecommendation] = Field(default_factory=list)
    cited_regulations: Optional[List[str]] = None
    previous_response_id: Optional[str] = None
    session_id: Optional[str] = None


class ChatErrorPayload(WireModel):
    message: str


class SessionStatus(str, Enum):
    """Lifecycle of a chat session as seen by the client."""

    NO_SESSION = "no_session"
    STARTING = "starting"
    ACTIVE = "active"
    WAITING_REPLY = "waiting_reply"


class ChatSession(BaseModel):
    """Server-acknowledged conversational context."""

    session_id: Optional[str] = None
    previous_response_id: Optional[str] = None
    status: SessionStatus = SessionStatus.NO_SESSION

    @property
    def is_active(self) -> bool:
        return self.status in (SessionStatus.ACTIVE, SessionStatus.WAITING_REPLY)


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class Message(BaseModel):
    role: MessageRole
    content: str


class ConversationState(BaseModel):
    """Snapshot of the conversation handed to subscribers."""

    messages: List[Message] = Field(default_factory=list)
    streaming_buffer: str = ""
    is_loading: bool = False
    recommendations: List[CourseRecommendation] = Field(default_factory=list)
    connection_state: ConnectionState = ConnectionState.DISCONNECTED
    session_id: Optional[str] = None
    last_error: Optional[str] = None
