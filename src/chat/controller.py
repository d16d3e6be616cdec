import asyncio
import logging
from typing import Callable, Dict, List, Optional

import logfire

from errors import ChatClientError, NotConnectedError, ServerError

from .models import (
    ChatErrorPayload,
    ChatFinalPayload,
    ChatPartialPayload,
    ConversationState,
    CourseRecommendation,
    Message,
    MessageRole,
    SessionStartedPayload,
    SessionStatus,
)
from .protocol import ChatEventHandlers, SessionProtocolClient

StateListener = Callable[[ConversationState], None]
ErrorListener = Callable[[ChatClientError], None]

NOT_CONNECTED_MESSAGE = "Not connected to the chat service. Please try again shortly."
REPLY_TIMEOUT_MESSAGE = "Timed out waiting for a reply"


class StreamingConversationController:
    """
    Owns the visible conversation and drives the session protocol client.

    Holds the message log, the streaming buffer for the in-flight reply,
    the loading flag and the current course recommendations. Every change is
    published to state subscribers as a `ConversationState` snapshot; errors
    meant for the user are published to error subscribers.

    At most one reply is outstanding: `submit` is a no-op while loading.
    Every path that sets the loading flag has a matching path that clears
    it (final reply, error, reply watchdog, reset).
    """

    def __init__(
        self,
        protocol: SessionProtocolClient,
        user_id: str,
        reply_timeout: Optional[float] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.protocol = protocol
        self.user_id = user_id
        self.reply_timeout = reply_timeout
        self.logger = logger or logging.getLogger("StreamingConversationController")

        self._messages: List[Message] = []
        self._streaming_buffer = ""
        self._is_loading = False
        self._recommendations: List[CourseRecommendation] = []
        self._last_error: Optional[str] = None

        self._state_listeners: List[StateListener] = []
        self._error_listeners: List[ErrorListener] = []
        self._watchdog: Optional[asyncio.TimerHandle] = None

    @property
    def state(self) -> ConversationState:
        """Return an immutable snapshot of the conversation."""
        return ConversationState(
            messages=[message.model_copy() for message in self._messages],
            streaming_buffer=self._streaming_buffer,
            is_loading=self._is_loading,
            recommendations=[rec.model_copy() for rec in self._recommendations],
            connection_state=self.protocol.transport.state,
            session_id=self.protocol.session.session_id,
            last_error=self._last_error,
        )

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a state listener; returns a callable that unsubscribes it."""
        self._state_listeners.append(listener)
        return lambda: self._remove(self._state_listeners, listener)

    def subscribe_errors(self, listener: ErrorListener) -> Callable[[], None]:
        """Register an error listener; returns a callable that unsubscribes it."""
        self._error_listeners.append(listener)
        return lambda: self._remove(self._error_listeners, listener)

    def start(self) -> None:
        """Connect the protocol client and begin receiving events."""
        self.protocol.connect(
            ChatEventHandlers(
                on_partial=self._on_partial,
                on_final=self._on_final,
                on_error=self._on_error,
                on_session_started=self._on_session_started,
                on_connect=self._on_connect,
                on_disconnect=self._on_disconnect,
            )
        )
        self._notify()

    def stop(self) -> None:
        """Disconnect from the service. Pending replies are abandoned."""
        self._cancel_watchdog()
        self.protocol.disconnect()
        self._notify()

    def submit(self, text: str, metadata: Optional[Dict[str, str]] = None) -> bool:
        """
        Send one user message.

        Args:
            text: Message typed by the user
            metadata: Optional string metadata forwarded to the service

        Returns:
            True if the message was sent, False if it was ignored or rejected
        """
        if not text or not text.strip() or self._is_loading:
            return False

        if not self.protocol.is_connected():
            self._report(NotConnectedError(NOT_CONNECTED_MESSAGE))
            return False

        with logfire.span(
            "conversation.submit",
            user_id=self.user_id,
            session_id=self.protocol.session.session_id,
        ):
            self._messages.append(Message(role=MessageRole.USER, content=text))
            self._is_loading = True
            self._streaming_buffer = ""
            self._last_error = None

            try:
                self.protocol.send_message(self.user_id, text, metadata=metadata)
            except NotConnectedError:
                self._messages.pop()
                self._is_loading = False
                self._report(NotConnectedError(NOT_CONNECTED_MESSAGE))
                return False

        self._arm_watchdog()
        self._notify()
        return True

    def reset_conversation(self) -> None:
        """Clear the conversation and start a fresh session when connected."""
        self._cancel_watchdog()
        self._messages = []
        self._streaming_buffer = ""
        self._is_loading = False
        self._recommendations = []
        self._last_error = None
        self.protocol.reset_session()

        self.logger.info("Conversation reset")
        if self.protocol.is_connected():
            self._start_session()
        self._notify()

    def _start_session(self) -> None:
        try:
            self.protocol.start_session(self.user_id)
        except NotConnectedError as e:
            self.logger.warning(f"Could not start session: {e}")

    def _on_connect(self) -> None:
        self.logger.info("Connected to chat service")
        session = self.protocol.session
        if session.session_id is None and session.status != SessionStatus.STARTING:
            self._start_session()
        self._notify()

    def _on_disconnect(self) -> None:
        self.logger.warning("Disconnected from chat service")
        self._notify()

    def _on_session_started(self, payload: SessionStartedPayload) -> None:
        self._notify()

    def _on_partial(self, payload: ChatPartialPayload) -> None:
        if not self._is_loading:
            self.logger.debug("Ignoring partial reply with no request outstanding")
            return

        self._streaming_buffer += payload.delta
        self._notify()

    def _on_final(self, payload: ChatFinalPayload) -> None:
        if not self._is_loading:
            self.logger.debug("Ignoring final reply with no request outstanding")
            return

        self._cancel_watchdog()
        self._streaming_buffer = ""
        self._messages.append(Message(role=MessageRole.ASSISTANT, content=payload.reply))
        if payload.has_new_recommendations:
            self._recommendations = list(payload.recommendations)
        self._is_loading = False
        self._notify()

    def _on_error(self, payload: ChatErrorPayload) -> None:
        self._fail(payload.message)

    def _on_reply_timeout(self) -> None:
        self._watchdog = None
        if not self._is_loading:
            return

        self.logger.warning(f"No reply after {self.reply_timeout}s, giving up")
        self.protocol.abandon_reply()
        self._fail(REPLY_TIMEOUT_MESSAGE)

    def _fail(self, message: str) -> None:
        self._cancel_watchdog()
        if self._is_loading and self._messages and self._messages[-1].role == MessageRole.USER:
            # the request was never answered, retract it
            self._messages.pop()

        self._streaming_buffer = ""
        self._is_loading = False
        self._last_error = message
        self._notify()
        self._report(ServerError(message, session_id=self.protocol.session.session_id))

    def _arm_watchdog(self) -> None:
        self._cancel_watchdog()
        if self.reply_timeout:
            loop = asyncio.get_running_loop()
            self._watchdog = loop.call_later(self.reply_timeout, self._on_reply_timeout)

    def _cancel_watchdog(self) -> None:
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None

    def _notify(self) -> None:
        if not self._state_listeners:
            return

        snapshot = self.state
        for listener in list(self._state_listeners):
            try:
                listener(snapshot)
            except Exception:
                self.logger.exception("State listener failed")

    def _report(self, error: ChatClientError) -> None:
        if isinstance(error, NotConnectedError):
            self._last_error = str(error)
            self._notify()

        for listener in list(self._error_listeners):
            try:
                listener(error)
            except Exception:
                self.logger.exception("Error listener failed")

    @staticmethod
    def _remove(listeners: List, listener) -> None:
        try:
            listeners.remove(listener)
        except ValueError:
            pass
