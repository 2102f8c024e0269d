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
Device credentials manager: owns the setup, the pending device challenge and the token, and guards the
transitions between them.
"""

import threading
import webbrowser
from pathlib import Path
from typing import Any

import anyio
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from coreason_device_auth.config import DeviceCredentialsConfig
from coreason_device_auth.exceptions import (
    ExchangeTimeoutError,
    NoChallengeError,
    NoTokenError,
    ProviderError,
    TokenAlreadyValidError,
    TokenExpiredNeedsDecisionError,
)
from coreason_device_auth.models import DeviceChallenge, DeviceSetup, Token
from coreason_device_auth.provider import AzureDeviceCodeProvider, DeviceCodeProvider
from coreason_device_auth.store import CredentialStore
from coreason_device_auth.utils.logger import logger

tracer = trace.get_tracer(__name__)


class DeviceCredentialsAsync:
    """
    Async implementation of the device credentials manager (The Core).

    At rest it holds either a device challenge, a token, or neither. Requesting a challenge discards the
    token, and obtaining a token discards the challenge. Not meant to be shared between concurrent tasks.

    Attributes:
        config (DeviceCredentialsConfig): The configuration the credentials were created with.
        provider (DeviceCodeProvider): The identity provider capability.
    """

    def __init__(self, config: DeviceCredentialsConfig, provider: DeviceCodeProvider | None = None) -> None:
        """
        Initialize the DeviceCredentialsAsync.

        No request is sent to the provider: call `request_challenge()` to start authenticating.

        Args:
            config: The configuration object.
            provider: Identity provider (optional). Defaults to `AzureDeviceCodeProvider` built from the config.
        """
        self.config = config
        self._setup = DeviceSetup.from_config(config)
        self.provider: DeviceCodeProvider = provider or AzureDeviceCodeProvider(
            authority_host=config.authority_host,
            http_timeout=config.http_timeout,
            min_poll_interval=config.min_poll_interval,
        )
        self._challenge: DeviceChallenge | None = None
        self._token: Token | None = None

    @property
    def setup(self) -> DeviceSetup:
        return self._setup

    def get_setup(self) -> DeviceSetup:
        return self._setup

    async def request_challenge(self) -> DeviceChallenge:
        """
        Requests a new device challenge from the identity provider.

        Replaces any pending challenge and discards the current token, valid or not.

        Returns:
            DeviceChallenge: The new challenge.

        Raises:
            ProviderError: If the provider cannot be reached or rejects the request.
        """
        with tracer.start_as_current_span("request_challenge") as span:
            span.set_attribute("device_auth.tenant", self._setup.tenant)
            challenge = await self.provider.request_challenge(self._setup)
            if self._token is not None:
                logger.warning("A new device challenge was requested: discarding the existing token.")
            self._challenge = challenge
            self._token = None
            span.set_status(Status(StatusCode.OK))
            return challenge

    def get_challenge(self) -> DeviceChallenge:
        """
        Returns the pending device challenge.

        Raises:
            NoChallengeError: If no challenge is pending.
        """
        if self._challenge is None:
            raise NoChallengeError()
        return self._challenge

    def get_user_code(self) -> str:
        """Returns the code to enter at the verification URI."""
        return self.get_challenge().user_code

    def get_verification_uri(self) -> str:
        """Returns the URI where the user code must be entered."""
        return self.get_challenge().verification_uri

    def open_verification_uri(self) -> bool:
        """
        Opens the verification URI in the user's web browser.

        Returns:
            bool: True if a browser was launched.

        Raises:
            NoChallengeError: If no challenge is pending.
        """
        uri = self.get_verification_uri()
        logger.info(f"Opening {uri} in the web browser.")
        return webbrowser.open(uri)

    async def exchange_for_token(self, timeout: float | None = None) -> Token:
        """
        Exchanges the pending challenge for a token.

        Call it once the user code has been entered at the verification URI. The provider is polled
        until it confirms the authentication; the poll is cancelled after `timeout` seconds.

        Args:
            timeout: Upper bound in seconds for the exchange. Defaults to `config.request_timeout` (15s).

        Returns:
            Token: The obtained token.

        Raises:
            TokenAlreadyValidError: If a valid token is already held.
            TokenExpiredNeedsDecisionError: If an expired token is held.
            NoChallengeError: If no challenge is pending.
            ExchangeTimeoutError: If the provider did not deliver a token in time or rejected the exchange.
        """
        if self._token is not None:
            if self._token.is_valid(self.config.clock_skew_leeway):
                raise TokenAlreadyValidError("A token already exists and is still valid: use get_token().")
            raise TokenExpiredNeedsDecisionError(
                "A token already exists but is not valid anymore. You can:\n"
                "   - refresh the token by calling refresh()\n"
                "   - request a new token by calling request_challenge() followed by exchange_for_token()"
            )

        challenge = self.get_challenge()
        timeout = self.config.request_timeout if timeout is None else timeout

        with tracer.start_as_current_span("exchange_for_token") as span:
            span.set_attribute("device_auth.timeout", timeout)
            try:
                with anyio.fail_after(timeout):
                    token = await self.provider.exchange_challenge(self._setup, challenge)
            except TimeoutError as e:
                logger.warning(f"No token received within {timeout}s.")
                span.set_status(Status(StatusCode.ERROR, "timeout"))
                raise ExchangeTimeoutError(
                    f"Could not retrieve the token in time ({timeout}s). You can try increasing the timeout parameter."
                ) from e
            except ProviderError as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise ExchangeTimeoutError(
                    f"Could not retrieve the token: {e} You can try increasing the timeout parameter."
                ) from e

            self._token = token
            self._challenge = None
            span.set_status(Status(StatusCode.OK))

        logger.info(f"Token obtained. Expires in {int(token.expires_in())}s.")
        return token

    def is_valid(self) -> bool:
        """Returns True if a token is held and has not expired."""
        if self._token is None:
            return False
        return self._token.is_valid(self.config.clock_skew_leeway)

    async def refresh(self, force: bool = False) -> Token:
        """
        Refreshes the token without re-authenticating.

        Args:
            force: Refresh even if the token is still valid. By default the token is only refreshed once invalid.

        Returns:
            Token: The current token (unchanged if no refresh was needed).

        Raises:
            NoTokenError: If no token is held.
            ProviderError: If the refresh fails.
        """
        token = self.get_token()
        if not force and token.is_valid(self.config.clock_skew_leeway):
            return token

        with tracer.start_as_current_span("refresh_token") as span:
            span.set_attribute("device_auth.forced", force)
            try:
                refreshed = await self.provider.refresh_token(self._setup, token)
            except ProviderError as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise
            self._token = refreshed
            span.set_status(Status(StatusCode.OK))
            return refreshed

    def get_token(self) -> Token:
        """
        Returns the full token.

        Raises:
            NoTokenError: If no token is held.
        """
        if self._token is None:
            raise NoTokenError()
        return self._token

    def get_access_token(self) -> str:
        """Returns the access token string."""
        return self.get_token().access_token.get_secret_value()

    def bearer_header(self) -> dict[str, str]:
        """Returns the Authorization header to attach to downstream requests."""
        return {"Authorization": f"Bearer {self.get_access_token()}"}

    def save(self, path: str | Path) -> None:
        """
        Persists the configuration and the current token (never the pending challenge).

        Raises:
            CredentialStoreError: If the file cannot be written.
        """
        CredentialStore(path).save(self.config, self._token)

    @classmethod
    def load(cls, path: str | Path, provider: DeviceCodeProvider | None = None) -> "DeviceCredentialsAsync":
        """
        Restores credentials saved with `save()`.

        Args:
            path: The snapshot file.
            provider: Identity provider (optional), as for the constructor.

        Raises:
            CredentialStoreError: If the file is missing or invalid.
        """
        config, token = CredentialStore(path).load()
        credentials = cls(config, provider=provider)
        credentials._token = token
        return credentials


class DeviceCredentials:
    """
    Sync facade for DeviceCredentialsAsync.

    Every network operation runs in its own event loop through `anyio.run`. All methods are serialized
    by a single lock so one instance can be shared between threads.
    """

    def __init__(self, config: DeviceCredentialsConfig, provider: DeviceCodeProvider | None = None) -> None:
        """
        Initialize the sync facade.

        Args:
            config: The configuration object.
            provider: Identity provider (optional).
        """
        self._async = DeviceCredentialsAsync(config, provider=provider)
        self._lock = threading.RLock()

    @property
    def config(self) -> DeviceCredentialsConfig:
        return self._async.config

    @property
    def setup(self) -> DeviceSetup:
        return self._async.setup

    def get_setup(self) -> DeviceSetup:
        return self._async.get_setup()

    def request_challenge(self) -> DeviceChallenge:
        with self._lock:
            return anyio.run(self._async.request_challenge)

    def get_challenge(self) -> DeviceChallenge:
        with self._lock:
            return self._async.get_challenge()

    def get_user_code(self) -> str:
        with self._lock:
            return self._async.get_user_code()

    def get_verification_uri(self) -> str:
        with self._lock:
            return self._async.get_verification_uri()

    def open_verification_uri(self) -> bool:
        with self._lock:
            return self._async.open_verification_uri()

    def exchange_for_token(self, timeout: float | None = None) -> Token:
        with self._lock:
            return anyio.run(self._async.exchange_for_token, timeout)

    def is_valid(self) -> bool:
        with self._lock:
            return self._async.is_valid()

    def refresh(self, force: bool = False) -> Token:
        with self._lock:
            return anyio.run(self._async.refresh, force)

    def get_token(self) -> Token:
        with self._lock:
            return self._async.get_token()

    def get_access_token(self) -> str:
        with self._lock:
            return self._async.get_access_token()

    def bearer_header(self) -> dict[str, str]:
        with self._lock:
            return self._async.bearer_header()

    def save(self, path: str | Path) -> None:
        with self._lock:
            self._async.save(path)

    @classmethod
    def load(cls, path: str | Path, provider: DeviceCodeProvider | None = None) -> "DeviceCredentials":
        restored = DeviceCredentialsAsync.load(path, provider=provider)
        credentials = cls(restored.config, provider=restored.provider)
        credentials._async = restored
        return credentials


def create_device_credentials(
    resource: list[str] | str,
    tenant: str,
    app: str,
    version: int = 2,
    offline_access: bool = True,
    provider: DeviceCodeProvider | None = None,
    **settings: Any,
) -> DeviceCredentials:
    """
    Creates device credentials for the given resource, tenant and app.

    Args:
        resource: The resource(s) or scope(s) to request.
        tenant: The Azure AD tenant.
        app: The application (client) ID.
        version: The identity platform version, 1 or 2 (default: 2).
        offline_access: Request `offline_access` so the token can be refreshed without re-authenticating.
        provider: Identity provider (optional).
        **settings: Any other `DeviceCredentialsConfig` field (e.g. request_timeout).

    Returns:
        DeviceCredentials: Credentials with neither challenge nor token yet.
    """
    if isinstance(resource, str):
        resource = [resource]
    config = DeviceCredentialsConfig(
        resource=resource,
        tenant=tenant,
        app=app,
        version=version,
        offline_access=offline_access,
        **settings,
    )
    return DeviceCredentials(config, provider=provider)
