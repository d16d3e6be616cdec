import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Type

import logfire
from pydantic import ValidationError

from errors import NotConnectedError
from transport.base import ConnectionState, Transport, TransportHandlers

from .models import (
    ChatErrorPayload,
    ChatEvent,
    ChatFinalPayload,
    ChatPartialPayload,
    ChatSession,
    SendMessagePayload,
    SessionStartedPayload,
    SessionStatus,
    StartSessionPayload,
    WireModel,
)


@dataclass
class ChatEventHandlers:
    """Typed callbacks for inbound chat events."""

    on_partial: Optional[Callable[[ChatPartialPayload], None]] = None
    on_final: Optional[Callable[[ChatFinalPayload], None]] = None
    on_error: Optional[Callable[[ChatErrorPayload], None]] = None
    on_session_started: Optional[Callable[[SessionStartedPayload], None]] = None
    on_connect: Optional[Callable[[], None]] = None
    on_disconnect: Optional[Callable[[], None]] = None


class SessionProtocolClient:
    """
    Session lifecycle and message exchange on top of a named-event transport.

    Translates outbound intents into `chat:start` / `chat:message` events and
    inbound events into typed handler calls, tracking the session state
    machine along the way:

        no_session -> starting -> active <-> waiting_reply

    Only one reply is expected to be outstanding at a time. Serializing
    requests is left to the caller; a second send while waiting is logged.
    """

    def __init__(self, transport: Transport, logger: Optional[logging.Logger] = None):
        self.transport = transport
        self.logger = logger or logging.getLogger("SessionProtocolClient")
        self.session = ChatSession()
        self.handlers = ChatEventHandlers()

    def connect(self, handlers: ChatEventHandlers) -> None:
        """Register inbound listeners and open the transport."""
        if self.transport.state != ConnectionState.DISCONNECTED:
            return

        self.handlers = handlers
        self.transport.remove_all_listeners()
        self.transport.on(ChatEvent.STARTED.value, self._handle_started)
        self.transport.on(ChatEvent.PARTIAL.value, self._handle_partial)
        self.transport.on(ChatEvent.FINAL.value, self._handle_final)
        self.transport.on(ChatEvent.ERROR.value, self._handle_error)

        self.transport.connect(
            TransportHandlers(
                on_connect=self._handle_connect,
                on_disconnect=self._handle_disconnect,
            )
        )

    def disconnect(self) -> None:
        self.transport.disconnect()
        self.handlers = ChatEventHandlers()

    def is_connected(self) -> bool:
        return self.transport.is_connected()

    def start_session(self, user_id: str, session_id: Optional[str] = None) -> None:
        """
        Request a new session, or resume an existing one by id.

        Args:
            user_id: Client identity
            session_id: Optional session to resume

        Raises:
            NotConnectedError: If the transport is not connected
        """
        self._require_connection()

        payload = StartSessionPayload(user_id=user_id, session_id=session_id)
        with logfire.span("chat_protocol.start_session", user_id=user_id):
            self.transport.emit(ChatEvent.START.value, payload.to_wire())

        self.session.status = SessionStatus.STARTING
        self.logger.info(f"Requested session start for {user_id}")

    def send_message(
        self,
        user_id: str,
        message: str,
        session_id: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> None:
        """
        Submit one user message. The reply arrives later through the handlers.

        Args:
            user_id: Client identity
            message: User message text
            session_id: Session to attach to, defaults to the adopted session
            metadata: Optional string metadata forwarded to the service

        Raises:
            NotConnectedError: If the transport is not connected
        """
        self._require_connection()

        if self.session.status == SessionStatus.WAITING_REPLY:
            self.logger.warning("Sending a message while a reply is still pending")

        payload = SendMessagePayload(
            user_id=user_id,
            message=message,
            session_id=session_id or self.session.session_id,
            metadata=metadata,
        )
        with logfire.span(
            "chat_protocol.send_message",
            user_id=user_id,
            session_id=payload.session_id,
        ):
            self.transport.emit(ChatEvent.MESSAGE.value, payload.to_wire())

        self.session.status = SessionStatus.WAITING_REPLY
        self.logger.debug(
            f"Sent message for session {payload.session_id}: {len(message)} chars"
        )

    def abandon_reply(self) -> None:
        """Stop waiting for the outstanding reply. Nothing is sent to the service."""
        if self.session.status == SessionStatus.WAITING_REPLY:
            self.session.status = (
                SessionStatus.ACTIVE if self.session.session_id else SessionStatus.NO_SESSION
            )

    def reset_session(self) -> None:
        """Forget the current session; the next start creates a new one."""
        self.session = ChatSession()

    def _require_connection(self) -> None:
        if not self.transport.is_connected():
            raise NotConnectedError()

    def _handle_connect(self) -> None:
        if self.handlers.on_connect:
            self.handlers.on_connect()

    def _handle_disconnect(self) -> None:
        if self.session.session_id is None and self.session.status in (
            SessionStatus.STARTING,
            SessionStatus.WAITING_REPLY,
        ):
            # the acknowledgement for a pending start cannot arrive any more
            self.session.status = SessionStatus.NO_SESSION
        if self.handlers.on_disconnect:
            self.handlers.on_disconnect()

    def _handle_started(self, data: Any) -> None:
        payload = self._parse(SessionStartedPayload, data, ChatEvent.STARTED)
        if payload is None:
            return

        self.session.session_id = payload.session_id
        if payload.previous_response_id:
            self.session.previous_response_id = payload.previous_response_id
        if self.session.status != SessionStatus.WAITING_REPLY:
            self.session.status = SessionStatus.ACTIVE
        self.logger.info(f"Session started: {payload.session_id}")

        if self.handlers.on_session_started:
            self.handlers.on_session_started(payload)

    def _handle_partial(self, data: Any) -> None:
        payload = self._parse(ChatPartialPayload, data, ChatEvent.PARTIAL)
        if payload is None:
            self._deliver_error(f"Malformed {ChatEvent.PARTIAL.value} payload from server")
            return

        if self.handlers.on_partial:
            self.handlers.on_partial(payload)

    def _handle_final(self, data: Any) -> None:
        payload = self._parse(ChatFinalPayload, data, ChatEvent.FINAL)
        if payload is None:
            self._deliver_error(f"Malformed {ChatEvent.FINAL.value} payload from server")
            return

        if self.session.status != SessionStatus.WAITING_REPLY:
            # reply to a request that was reset or abandoned
            self.logger.info(
                f"Dropping final reply for session {payload.session_id}, none outstanding"
            )
            return

        if payload.session_id:
            self.session.session_id = payload.session_id
        if payload.previous_response_id:
            self.session.previous_response_id = payload.previous_response_id
        self.session.status = SessionStatus.ACTIVE
        self.logger.debug(
            f"Final reply for session {self.session.session_id}: "
            f"{len(payload.reply)} chars, {len(payload.recommendations)} recommendations"
        )

        if self.handlers.on_final:
            self.handlers.on_final(payload)

    def _handle_error(self, data: Any) -> None:
        payload = self._parse(ChatErrorPayload, data, ChatEvent.ERROR)
        if payload is None:
            self._deliver_error(f"Malformed {ChatEvent.ERROR.value} payload from server")
            return

        self._deliver_error(payload.message)

    def _deliver_error(self, message: str) -> None:
        self.session.status = (
            SessionStatus.ACTIVE if self.session.session_id else SessionStatus.NO_SESSION
        )
        self.logger.error(f"Chat error for session {self.session.session_id}: {message}")

        if self.handlers.on_error:
            self.handlers.on_error(ChatErrorPayload(message=message))

    def _parse(
        self, model: Type[WireModel], data: Any, event: ChatEvent
    ) -> Optional[WireModel]:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            self.logger.warning(f"Invalid {event.value} payload: {e}")
            return None
