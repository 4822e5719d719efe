# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Error taxonomy and failure classification.

The remote service reports failures as free text, so classification is a
case-insensitive substring match on the message. The match order matters:
a message mentioning both "429" and "invalid" is a quota failure.
"""

from dataclasses import dataclass
from typing import Optional, Union

from .types import ErrorClass


# =============================================================================
# EXCEPTIONS
# =============================================================================


class KeyPoolError(Exception):
    """Base class for errors raised by the key pool."""


class CredentialValidationError(KeyPoolError):
    """A key was refused at admission. Never retried."""

    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason
        self.message = message


class NoCredentialsError(KeyPoolError):
    """invoke() was called on an empty pool."""

    def __init__(self, message: str = "No API keys configured"):
        super().__init__(message)
        self.message = message


class InvokeError(KeyPoolError):
    """
    Terminal failure of a logical invoke call.

    Carries the last underlying failure message and its class. ``exhausted``
    is True when every key was tried for a quota/auth failure, False when the
    call stopped on a non-recoverable error.
    """

    def __init__(
        self,
        message: str,
        error_class: str,
        exhausted: bool,
        attempts: int,
    ):
        super().__init__(message)
        self.message = message
        self.error_class = error_class
        self.exhausted = exhausted
        self.attempts = attempts

    def __str__(self) -> str:
        kind = "exhausted" if self.exhausted else "non-recoverable"
        return (
            f"{self.message} ({self.error_class}, {kind} after "
            f"{self.attempts} attempt{'s' if self.attempts != 1 else ''})"
        )


# =============================================================================
# CLASSIFICATION
# =============================================================================

QUOTA_MARKERS = ("429", "quota", "resource has been exhausted")
AUTH_MARKERS = ("401", "403", "api key", "invalid")


@dataclass
class ClassifiedError:
    """A failure message together with its class."""

    error_class: str
    message: str
    original_exception: Optional[BaseException] = None

    @property
    def is_quota(self) -> bool:
        return self.error_class == ErrorClass.QUOTA

    @property
    def is_auth(self) -> bool:
        return self.error_class == ErrorClass.AUTH


def classify_message(message: str) -> str:
    """Return the ErrorClass for a failure message. Never raises."""
    lowered = (message or "").lower()
    if any(marker in lowered for marker in QUOTA_MARKERS):
        return ErrorClass.QUOTA
    if any(marker in lowered for marker in AUTH_MARKERS):
        return ErrorClass.AUTH
    return ErrorClass.OTHER


def classify_error(error: Union[BaseException, str]) -> ClassifiedError:
    """
    Classify an exception (or a bare message) into quota/auth/other.

    Args:
        error: The exception raised by the remote call, or its message

    Returns:
        ClassifiedError with the message used for matching
    """
    if isinstance(error, BaseException):
        message = str(error) or type(error).__name__
        return ClassifiedError(classify_message(message), message, error)
    return ClassifiedError(classify_message(error), error)


def should_rotate_on_error(classified: ClassifiedError) -> bool:
    """Only key-specific failures are worth another key."""
    return classified.error_class in (ErrorClass.QUOTA, ErrorClass.AUTH)


# =============================================================================
# DISPLAY
# =============================================================================


def mask_credential(credential: str, style: str = "short") -> str:
    """
    Mask a key for logs and tables.

    Styles:
        short: "...abc123" (last 6 characters)
        full:  "AIzaSyAbCdEf...abc123" (first 12 and last 6)
    """
    if not credential:
        return "<empty>"
    if style == "full":
        if len(credential) <= 18:
            return f"{credential[:4]}..."
        return f"{credential[:12]}...{credential[-6:]}"
    if len(credential) <= 6:
        return "..."
    return f"...{credential[-6:]}"
