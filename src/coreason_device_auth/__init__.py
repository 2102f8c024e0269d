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
Device-code credentials for Azure AD: request a user code, wait for the token, keep it fresh.
"""

__version__ = "0.1.0"
__author__ = "Gowtham A Rao"
__email__ = "gowtham.rao@coreason.ai"

from .auth import AsyncBearerTokenAuth, BearerTokenAuth
from .config import DeviceCredentialsConfig
from .exceptions import (
    CredentialStoreError,
    DeviceAuthError,
    ExchangeTimeoutError,
    NoChallengeError,
    NoTokenError,
    ProviderError,
    TokenAlreadyValidError,
    TokenExpiredNeedsDecisionError,
)
from .manager import DeviceCredentials, DeviceCredentialsAsync, create_device_credentials
from .models import DeviceChallenge, DeviceSetup, Token
from .provider import AzureDeviceCodeProvider, DeviceCodeProvider

__all__ = [
    "AsyncBearerTokenAuth",
    "AzureDeviceCodeProvider",
    "BearerTokenAuth",
    "CredentialStoreError",
    "DeviceAuthError",
    "DeviceChallenge",
    "DeviceCodeProvider",
    "DeviceCredentials",
    "DeviceCredentialsAsync",
    "DeviceCredentialsConfig",
    "DeviceSetup",
    "ExchangeTimeoutError",
    "NoChallengeError",
    "NoTokenError",
    "ProviderError",
    "Token",
    "TokenAlreadyValidError",
    "TokenExpiredNeedsDecisionError",
    "create_device_credentials",
]
