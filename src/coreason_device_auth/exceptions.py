# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_device_auth

"""
Custom exceptions for the coreason-device-auth package.
"""

NO_CHALLENGE_MESSAGE = (
    "No code available: call request_challenge(). Note that it will delete the existing token."
)
NO_TOKEN_MESSAGE = "There is no token: call exchange_for_token()."


class DeviceAuthError(Exception):
    """Base exception for all coreason-device-auth errors."""


class NoChallengeError(DeviceAuthError):
    """Raised when a device challenge is needed but none has been requested."""

    def __init__(self, message: str = NO_CHALLENGE_MESSAGE) -> None:
        super().__init__(message)


class NoTokenError(DeviceAuthError):
    """Raised when a token accessor or refresh is called before a token was obtained."""

    def __init__(self, message: str = NO_TOKEN_MESSAGE) -> None:
        super().__init__(message)


class TokenStateError(DeviceAuthError):
    """
    Raised when a token exchange is attempted while a token is already held.
    """


class TokenAlreadyValidError(TokenStateError):
    """Raised when a token exchange is attempted while the held token is still valid."""


class TokenExpiredNeedsDecisionError(TokenStateError):
    """
    Raised when a token exchange is attempted while the held token has expired.
    The caller must either refresh it or re-authenticate.
    """


class ExchangeTimeoutError(DeviceAuthError):
    """Raised when the provider did not confirm authentication within the allowed time."""


class ProviderError(DeviceAuthError):
    """Raised when the identity provider rejects a request or cannot be reached."""


class CredentialStoreError(DeviceAuthError):
    """Raised when a credentials snapshot cannot be written or read back."""
