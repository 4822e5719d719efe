# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""User-facing wording for pool failures."""

from gemini_keypool import (
    CredentialValidationError,
    ErrorClass,
    InvokeError,
    NoCredentialsError,
)


def describe_failure(error: BaseException, pool_size: int) -> str:
    """
    Turn a pool exception into the message shown to the user.

    Quota and auth failures get a dedicated hint; "all keys" is used when
    more than one key was available.
    """
    if isinstance(error, NoCredentialsError):
        return "No API keys! Add at least one API key to start generating."
    if isinstance(error, CredentialValidationError):
        return f"Cannot add API key: {error.message}"
    if not isinstance(error, InvokeError):
        return f"Error: {error}"

    key_word = "all keys" if pool_size > 1 else "the key"
    if error.error_class == ErrorClass.QUOTA:
        return (
            f"Quota exhausted on {key_word}. Add a new API key or try again later."
        )
    if error.error_class == ErrorClass.AUTH:
        return f"API key rejected on {key_word}. Check your keys in the key manager."
    return f"Error: {error.message}"


def describe_rotation(to_index: int, is_quota: bool) -> str:
    reason = "Quota exhausted" if is_quota else "Key rejected"
    return f"{reason}. Rotating to key #{to_index + 1}..."
