from __future__ import annotations


class ChatTimeoutError(Exception):
    """Raised when a whole chat turn exceeds the configured timeout."""


_FRIENDLY_MESSAGES: list[tuple[tuple[str, ...], str]] = [
    (("unauthorized",), "I couldn't access your financial data. Please sign in again and retry."),
    (("database", "connection"), "I'm having trouble fetching your data right now. Please try again shortly."),
    (("timeout", "timed out"), "That took too long to process. Please try a simpler question."),
    (("rate limit", "429"), "Too many requests right now. Please wait a moment and try again."),
    (("api key", "authentication"), "The assistant has a configuration issue. Please contact support."),
]

GENERIC_ERROR_MESSAGE = "Something went wrong while processing your request. Please try again."


def format_user_friendly_error(error: BaseException | str) -> str:
    """Map an internal error to a safe message; raw upstream text is never returned."""
    text = str(error).lower()
    for needles, message in _FRIENDLY_MESSAGES:
        if any(needle in text for needle in needles):
            return message
    return GENERIC_ERROR_MESSAGE
