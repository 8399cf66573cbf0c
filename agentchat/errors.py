"""Terminal error kinds surfaced to chat clients."""

from __future__ import annotations


class ChatError(Exception):
    """Base class for failures that end a chat request with an error event."""

    user_message = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.user_message)
        self.user_message = message or self.user_message


class UnauthorizedError(ChatError):
    user_message = "Unauthorized"


class ConversationBusyError(ChatError):
    """Another request is already running against the same conversation."""

    user_message = "Conversation is busy, try again when the current reply has finished"


class ToolLoopExceededError(ChatError):
    """The model kept requesting tools past the round budget."""

    user_message = "Tool call limit exceeded"

    def __init__(self, max_rounds: int) -> None:
        super().__init__(f"Tool call limit exceeded after {max_rounds} rounds")
        self.max_rounds = max_rounds


class PersistenceError(ChatError):
    user_message = "Failed to save conversation"
