"""Error taxonomy for the chat core.

Every error carries a user-facing message. Retryable errors are retried by the
user re-submitting the restored draft, never by the core itself.
"""


class ChatError(Exception):
    retryable = False
    user_message = "Something went wrong. Please try again."

    def __init__(self, detail: str = None):
        super().__init__(detail or self.user_message)
        self.detail = detail or self.user_message


class SessionNotFoundError(ChatError):
    user_message = "Chat session not found."


class InvalidPayloadError(ChatError):
    user_message = "Message is empty."


class BlockedError(ChatError):
    user_message = (
        "You have been blocked from sending messages. Please contact support."
    )


class PayloadTooLargeError(ChatError):
    user_message = "Please select a file smaller than 5MB."


class TransportUnavailableError(ChatError):
    retryable = True
    user_message = "Disconnected from chat server."


class PersistenceError(ChatError):
    retryable = True
    user_message = "Failed to send message. Please try again."


class BotServiceError(ChatError):
    """Converted into a fallback reply and an escalation, never shown as is"""
    user_message = "Failed to get bot response."
