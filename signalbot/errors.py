"""
Error types raised by the signal bot.

Every error carries a short ``user_message`` that the Discord layer shows
to the operator; the full message goes to the log.
"""

from __future__ import annotations


class SignalBotError(Exception):
    """Base class for all bot errors."""

    user_message = "❌ Something went wrong."

    def __init__(self, message: str = "", user_message: str | None = None):
        super().__init__(message or self.user_message)
        if user_message is not None:
            self.user_message = user_message


class ConfigError(SignalBotError):
    """Missing or malformed environment configuration."""

    user_message = "❌ Bot is misconfigured."


class NotFoundError(SignalBotError):
    user_message = "Signal not found."


class UnauthorizedError(SignalBotError):
    user_message = "Only the owner can use these controls."


class InvalidInputError(SignalBotError):
    """Operator supplied a value the bot cannot use (e.g. a non-numeric price)."""


class StoreIOError(SignalBotError, OSError):
    """The signals document could not be read or written."""

    user_message = "❌ Could not read or save signal data."


class ExternalPostError(SignalBotError):
    """Discord rejected a send, edit or delete."""

    user_message = "⚠️ Discord post failed; the signal data was still saved."


class MessageNotFoundError(ExternalPostError):
    """The message we tried to edit or delete no longer exists."""
