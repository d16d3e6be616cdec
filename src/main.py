import asyncio
import logging
import sys
from typing import List

import logfire

from chat import ConversationState, CourseRecommendation, StreamingConversationController
from config import CONFIG_DIR, Settings, get_settings
from dependencies import create_controller
from errors import ChatClientError

LOG_FILE = CONFIG_DIR / "course_chat.log"

SUGGESTED_PROMPTS = [
    "How to get OSHA licence?",
    "Quiz me on Unit 1: Working in the Private Security Industry",
    "What documents do I need for the exams?",
    "Which OSHA licence should I get?",
    "How can I find jobs in the security industry?",
    "Who made you?",
    "What is the difference between Door Supervision and Security Guard licence?",
]


def validate_paths() -> None:
    CONFIG_DIR.mkdir(exist_ok=True, parents=True)

    # create an empty log file if missing
    if not LOG_FILE.exists():
        LOG_FILE.touch()


def setup_logging(settings: Settings) -> logging.Logger:
    # Initialize Logfire if enabled
    if settings.logfire_enabled:
        try:
            logfire.configure(
                token=settings.logfire_token,
                service_name=settings.logfire_service_name,
            )
            print(f"Logfire initialized for service: {settings.logfire_service_name}")
        except Exception as e:
            print(f"Failed to initialize Logfire: {e}")

    # Set logging level based on debug setting
    log_level = logging.DEBUG if settings.debug else logging.INFO

    logging.basicConfig(
        filename=LOG_FILE,
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger = logging.getLogger("course_chat")

    # console only shows warnings so it does not interleave with the chat
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG if settings.debug else logging.WARNING)
    formatter = logging.Formatter("%(name)s - %(levelname)s - %(message)s")
    console_handler.setFormatter(formatter)
    logging.getLogger().addHandler(console_handler)

    return logger


class TerminalChat:
    """Minimal terminal front end that renders controller state."""

    def __init__(self, controller: StreamingConversationController):
        self.controller = controller
        self._streamed = ""
        self._message_count = 0
        self._recommendations: List[CourseRecommendation] = []

        controller.subscribe(self.render)
        controller.subscribe_errors(self.render_error)

    def render(self, state: ConversationState) -> None:
        if state.streaming_buffer.startswith(self._streamed):
            new_text = state.streaming_buffer[len(self._streamed):]
            if new_text:
                if not self._streamed:
                    print("assistant: ", end="")
                print(new_text, end="", flush=True)
            self._streamed = state.streaming_buffer

        if len(state.messages) > self._message_count:
            for message in state.messages[self._message_count:]:
                if message.role == "assistant":
                    if self._streamed != message.content:
                        print(f"\nassistant: {message.content}", end="")
                    print()
                    self._streamed = ""
        self._message_count = len(state.messages)

        if state.recommendations != self._recommendations:
            self._recommendations = list(state.recommendations)
            for rec in self._recommendations:
                print(f"  * {rec.course_name} ({rec.duration}, {rec.price}) {rec.url}")

    def render_error(self, error: ChatClientError) -> None:
        if self._streamed:
            print()
            self._streamed = ""
        print(f"error: {error}")

    def print_suggestions(self) -> None:
        print("Try one of these, or type your own question:")
        for index, prompt in enumerate(SUGGESTED_PROMPTS, start=1):
            print(f"  {index}. {prompt}")

    def handle_line(self, text: str) -> bool:
        """Act on one line of input. Returns False when the user wants to quit."""
        if text == "/quit":
            return False
        if text == "/new":
            self.controller.reset_conversation()
            self._message_count = 0
            print("Started a new chat.")
            self.print_suggestions()
            return True

        # numbers pick a suggestion while the chat is still empty
        if text.isdigit() and not self.controller.state.messages:
            index = int(text) - 1
            if 0 <= index < len(SUGGESTED_PROMPTS):
                text = SUGGESTED_PROMPTS[index]

        self.controller.submit(text)
        return True

    async def run(self) -> None:
        print("Type a question, /new for a new chat, /quit to exit.")
        self.print_suggestions()
        while True:
            line = await asyncio.to_thread(sys.stdin.readline)
            if not line:
                break

            if not self.handle_line(line.strip()):
                break


async def main() -> None:
    validate_paths()

    settings = get_settings()

    logger = setup_logging(settings)

    controller = create_controller(settings, logger=logger)
    terminal = TerminalChat(controller)

    logger.info(f"Connecting to {settings.ws_url} as {controller.user_id}")
    controller.start()

    try:
        await terminal.run()
    finally:
        controller.stop()


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
