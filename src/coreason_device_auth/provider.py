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
Identity provider capability used by the device credentials manager, and its Azure AD implementation.
"""

import time
from typing import Protocol

import anyio
import httpx
from authlib.integrations.base_client import OAuthError
from authlib.integrations.httpx_client import AsyncOAuth2Client
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from pydantic import ValidationError

from coreason_device_auth.config import DEFAULT_AUTHORITY_HOST
from coreason_device_auth.exceptions import ProviderError
from coreason_device_auth.models import OFFLINE_ACCESS, DeviceChallenge, DeviceSetup, Token
from coreason_device_auth.utils.logger import logger

DEVICE_CODE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"


class DeviceCodeProvider(Protocol):
    """Protocol for the identity provider operations the credentials manager relies on."""

    async def request_challenge(self, setup: DeviceSetup) -> DeviceChallenge:
        """Obtains a device challenge (user code + verification URI) for the setup."""
        ...

    async def exchange_challenge(self, setup: DeviceSetup, challenge: DeviceChallenge) -> Token:
        """Polls until the user completed authentication against the challenge, and returns the token."""
        ...

    async def refresh_token(self, setup: DeviceSetup, token: Token) -> Token:
        """Exchanges the refresh material of a token for a new token."""
        ...


class AzureDeviceCodeProvider:
    """
    Azure AD (Microsoft identity platform) implementation of `DeviceCodeProvider`.

    Token requests and refreshes are delegated to Authlib's `AsyncOAuth2Client`. A transient client is
    opened for every operation so the provider can be driven from successive event loops.

    Attributes:
        authority_host (str): The identity provider base URL.
        http_timeout (float): Timeout in seconds for each HTTP request.
        min_poll_interval (float): Minimum seconds between two token polls.
    """

    def __init__(
        self,
        authority_host: str = DEFAULT_AUTHORITY_HOST,
        http_timeout: float = 30.0,
        min_poll_interval: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the AzureDeviceCodeProvider.

        Args:
            authority_host: The identity provider base URL (default: https://login.microsoftonline.com).
            http_timeout: Timeout in seconds for each HTTP request (default: 30.0).
            min_poll_interval: Minimum seconds to wait between polls, whatever the provider asks (default: 1.0).
            transport: Optional httpx transport, mainly for tests.
        """
        self.authority_host = authority_host.rstrip("/")
        self.http_timeout = http_timeout
        self.min_poll_interval = min_poll_interval
        self._transport = transport

    def _endpoint(self, setup: DeviceSetup, name: str) -> str:
        # v1: /oauth2/devicecode, v2: /oauth2/v2.0/devicecode
        prefix = "oauth2/v2.0" if setup.version == 2 else "oauth2"
        return f"{self.authority_host}/{setup.tenant}/{prefix}/{name}"

    def _resource_params(self, setup: DeviceSetup) -> dict[str, str]:
        if setup.version == 2:
            return {"scope": " ".join(setup.scopes)}
        resources = [r for r in setup.resource if r != OFFLINE_ACCESS]
        return {"resource": resources[0] if resources else setup.resource[0]}

    def _client(self, setup: DeviceSetup) -> AsyncOAuth2Client:
        client = AsyncOAuth2Client(
            client_id=setup.app,
            token_endpoint_auth_method="none",
            timeout=self.http_timeout,
            transport=self._transport,
        )
        HTTPXClientInstrumentor().instrument_client(client)
        return client

    async def request_challenge(self, setup: DeviceSetup) -> DeviceChallenge:
        """
        Initiates the Device Authorization Flow.

        Args:
            setup: The credentials setup (tenant, app, scopes, version).

        Returns:
            DeviceChallenge containing device_code, user_code, verification_uri, etc.

        Raises:
            ProviderError: If the request fails or the response is invalid.
        """
        url = self._endpoint(setup, "devicecode")
        data = {"client_id": setup.app, **self._resource_params(setup)}

        try:
            async with self._client(setup) as client:
                # No token exists yet, so the client must not try to attach one
                response = await client.request(
                    "POST", url, data=data, headers={"Accept": "application/json"}, withhold_token=True
                )
                response.raise_for_status()
                challenge = DeviceChallenge.model_validate(response.json())
        except httpx.HTTPStatusError as e:
            logger.error(f"Device code request failed with status {e.response.status_code}")
            raise ProviderError(
                f"Device code request failed with status {e.response.status_code}: {e.response.text}"
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"Device code request failed: {e}")
            raise ProviderError(f"Failed to request a device code: {e}") from e
        except (ValueError, ValidationError) as e:
            logger.error(f"Invalid response from device code endpoint: {e}")
            raise ProviderError(f"Invalid response from identity provider: {e}") from e

        logger.info(f"Device code issued for tenant {setup.tenant}. Expires in {challenge.expires_in}s.")
        return challenge

    async def exchange_challenge(self, setup: DeviceSetup, challenge: DeviceChallenge) -> Token:
        """
        Polls the token endpoint until the user authorizes the device or the code expires.

        Args:
            setup: The credentials setup.
            challenge: The challenge returned by `request_challenge`.

        Returns:
            Token: The token issued by the provider.

        Raises:
            ProviderError: If the code expires, the user declines, or the provider rejects the request.
        """
        url = self._endpoint(setup, "token")
        interval = challenge.interval

        logger.info(f"Polling for token. Expires in {int(challenge.expires_at - time.time())}s. Interval: {interval}s")

        async with self._client(setup) as client:
            while time.time() < challenge.expires_at:
                try:
                    data = await client.fetch_token(
                        url,
                        grant_type=DEVICE_CODE_GRANT_TYPE,
                        device_code=challenge.device_code,
                        **self._resource_params(setup),
                    )
                    logger.info("Token retrieved successfully.")
                    return Token.from_response(data)
                except OAuthError as e:
                    if e.error == "authorization_pending":
                        pass
                    elif e.error == "slow_down":
                        interval += 5
                        logger.debug("Received slow_down, increasing interval.")
                    elif e.error in ("expired_token", "code_expired"):
                        raise ProviderError("Device code expired.") from e
                    elif e.error in ("access_denied", "authorization_declined"):
                        raise ProviderError("User denied access.") from e
                    else:
                        logger.error(f"Token request rejected: {e.error}")
                        raise ProviderError(f"Token request rejected: {e.error}: {e.description}") from e
                except httpx.HTTPError as e:
                    logger.error(f"Polling failed: {e}")
                    raise ProviderError(f"Polling failed: {e}") from e
                except (ValueError, ValidationError) as e:
                    raise ProviderError(f"Invalid token response: {e}") from e

                await anyio.sleep(max(interval, self.min_poll_interval))

        raise ProviderError("Device code expired.")

    async def refresh_token(self, setup: DeviceSetup, token: Token) -> Token:
        """
        Refreshes a token with its refresh material.

        Args:
            setup: The credentials setup.
            token: The token to refresh.

        Returns:
            Token: The new token. The previous refresh token is kept if the provider did not rotate it.

        Raises:
            ProviderError: If the token has no refresh token or the provider rejects the refresh.
        """
        if token.refresh_token is None:
            raise ProviderError(
                "The token has no refresh token: call request_challenge() followed by exchange_for_token()."
            )

        url = self._endpoint(setup, "token")
        try:
            async with self._client(setup) as client:
                data = await client.refresh_token(
                    url,
                    refresh_token=token.refresh_token.get_secret_value(),
                    **self._resource_params(setup),
                )
                refreshed = Token.from_response(data)
        except OAuthError as e:
            logger.error(f"Token refresh rejected: {e.error}")
            raise ProviderError(f"Token refresh rejected: {e.error}: {e.description}") from e
        except httpx.HTTPError as e:
            logger.error(f"Token refresh failed: {e}")
            raise ProviderError(f"Token refresh failed: {e}") from e
        except (ValueError, ValidationError) as e:
            raise ProviderError(f"Invalid token response: {e}") from e

        logger.info("Token refreshed successfully.")
        return refreshed
