from __future__ import annotations

from typing import Any


class ConversionError(Exception):
    """Raised when an IoT hub connection string cannot be converted."""


class InvalidConnectionStringError(ConversionError, ValueError):
    """The connection string is missing a required field."""


class LinkError(ConversionError):
    """
    The hub answered with an AMQP error other than a usable redirect.

    The original error condition is kept untouched on ``condition``.
    """

    def __init__(self, condition: Any):
        self.condition = condition
        name = getattr(condition, "name", None)
        description = getattr(condition, "description", None)
        if description:
            message = f"{name}: {description}"
        else:
            message = str(name or condition)
        super().__init__(message)


class RedirectTimeoutError(ConversionError, TimeoutError):
    """No redirect arrived within the configured wait."""
