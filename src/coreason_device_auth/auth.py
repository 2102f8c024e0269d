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
httpx authentication flows attaching device credentials as a Bearer token.
"""

from collections.abc import AsyncGenerator, Generator

import httpx

from coreason_device_auth.manager import DeviceCredentials, DeviceCredentialsAsync


class BearerTokenAuth(httpx.Auth):
    """
    Attaches `Authorization: Bearer <token>` to requests sent by a sync `httpx.Client`.

    Example:
        with httpx.Client(auth=BearerTokenAuth(credentials)) as client:
            client.get("https://tkcat.example.com/")
    """

    def __init__(self, credentials: DeviceCredentials, auto_refresh: bool = True) -> None:
        """
        Args:
            credentials: Credentials holding a token.
            auto_refresh: Refresh the token first when it is no longer valid.
        """
        self.credentials = credentials
        self.auto_refresh = auto_refresh

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        if self.auto_refresh:
            # No-op while the token is valid
            self.credentials.refresh()
        request.headers.update(self.credentials.bearer_header())
        yield request


class AsyncBearerTokenAuth(httpx.Auth):
    """
    Attaches `Authorization: Bearer <token>` to requests sent by an `httpx.AsyncClient`.
    """

    def __init__(self, credentials: DeviceCredentialsAsync, auto_refresh: bool = True) -> None:
        self.credentials = credentials
        self.auto_refresh = auto_refresh

    def sync_auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        raise RuntimeError("AsyncBearerTokenAuth requires an httpx.AsyncClient; use BearerTokenAuth instead.")

    async def async_auth_flow(self, request: httpx.Request) -> AsyncGenerator[httpx.Request, httpx.Response]:
        if self.auto_refresh:
            await self.credentials.refresh()
        request.headers.update(self.credentials.bearer_header())
        yield request
