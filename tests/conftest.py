# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_device_auth

import time
from collections.abc import Generator
from unittest.mock import patch

import anyio
import pytest
from pydantic import SecretStr

from coreason_device_auth.config import DeviceCredentialsConfig
from coreason_device_auth.exceptions import ProviderError
from coreason_device_auth.models import DeviceChallenge, DeviceSetup, Token

MOCK_USER_CODE = "ABC-123"
MOCK_VERIFICATION_URI = "https://microsoft.com/devicelogin"


def make_token(access_token: str = "access-1", expires_in: float = 3600, refresh_token: str | None = "refresh-1") -> Token:
    return Token(
        access_token=SecretStr(access_token),
        expires_at=time.time() + expires_in,
        refresh_token=SecretStr(refresh_token) if refresh_token else None,
    )


class FakeProvider:
    """
    In-memory identity provider.

    `exchange_challenge` waits until `authenticate()` has been called, like a real provider waiting for
    the user to enter the code.
    """

    def __init__(self) -> None:
        self.authenticated = False
        self.exchange_error: ProviderError | None = None
        self.refresh_error: ProviderError | None = None
        self.challenge_calls = 0
        self.exchange_calls = 0
        self.refresh_calls = 0

    def authenticate(self) -> None:
        self.authenticated = True

    async def request_challenge(self, setup: DeviceSetup) -> DeviceChallenge:
        self.challenge_calls += 1
        return DeviceChallenge(
            device_code=f"device-{self.challenge_calls}",
            user_code=MOCK_USER_CODE,
            verification_uri=MOCK_VERIFICATION_URI,
            expires_in=900,
            interval=5,
        )

    async def exchange_challenge(self, setup: DeviceSetup, challenge: DeviceChallenge) -> Token:
        self.exchange_calls += 1
        if self.exchange_error is not None:
            raise self.exchange_error
        while not self.authenticated:
            await anyio.sleep(0.01)
        return make_token(access_token=f"access-{self.exchange_calls}")

    async def refresh_token(self, setup: DeviceSetup, token: Token) -> Token:
        self.refresh_calls += 1
        if self.refresh_error is not None:
            raise self.refresh_error
        return make_token(access_token=f"refreshed-{self.refresh_calls}")


@pytest.fixture
def config() -> DeviceCredentialsConfig:
    return DeviceCredentialsConfig(resource=["read"], tenant="t1", app="a1")


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def no_browser() -> Generator[None, None, None]:
    with patch("webbrowser.open", return_value=True):
        yield
