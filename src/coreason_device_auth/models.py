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
Data models for the coreason-device-auth package.
"""

import time
from collections.abc import Mapping
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, SecretStr, computed_field, field_serializer

from coreason_device_auth.config import DeviceCredentialsConfig

OFFLINE_ACCESS = "offline_access"


class DeviceSetup(BaseModel):
    """
    The immutable parameters a set of device credentials is created with.

    Attributes:
        resource (tuple[str, ...]): The resources or scopes as configured.
        tenant (str): The Azure AD tenant.
        app (str): The application (client) ID.
        version (int): The identity platform version, 1 or 2.
        offline_access (bool): Whether `offline_access` is added to the requested scopes.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    resource: tuple[str, ...] = Field(..., min_length=1)
    tenant: str
    app: str
    version: int = Field(default=2, ge=1, le=2)
    offline_access: bool = True

    @computed_field  # type: ignore[prop-decorator]
    @property
    def scopes(self) -> tuple[str, ...]:
        """The resources to request, with `offline_access` appended once when requested."""
        scopes = tuple(dict.fromkeys(self.resource))
        if self.offline_access and OFFLINE_ACCESS not in scopes:
            scopes += (OFFLINE_ACCESS,)
        return scopes

    @classmethod
    def from_config(cls, config: DeviceCredentialsConfig) -> "DeviceSetup":
        return cls(
            resource=tuple(config.resource),
            tenant=config.tenant,
            app=config.app,
            version=config.version,
            offline_access=config.offline_access,
        )


class DeviceChallenge(BaseModel):
    """
    Response from the Device Authorization Request.

    Attributes:
        device_code (str): The device verification code. Never shown to the user.
        user_code (str): The code the user should enter at the verification URI.
        verification_uri (str): The URI the user should visit (v1 endpoints call it `verification_url`).
        verification_uri_complete (str | None): The complete URI including the user code.
        message (str | None): Human readable instructions supplied by the provider.
        expires_in (int): The lifetime in seconds of the device_code and user_code.
        interval (int): The minimum amount of time in seconds between polling requests.
        issued_at (float): Local epoch time at which the challenge was received.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    device_code: str = Field(..., repr=False)
    user_code: str
    verification_uri: str = Field(..., validation_alias=AliasChoices("verification_uri", "verification_url"))
    verification_uri_complete: str | None = None
    message: str | None = None
    expires_in: int
    interval: int = 5
    issued_at: float = Field(default_factory=time.time)

    @property
    def expires_at(self) -> float:
        return self.issued_at + self.expires_in

    def is_expired(self) -> bool:
        return time.time() >= self.expires_at


class Token(BaseModel):
    """
    An access token obtained through the device-code flow.

    Secrets are wrapped in `SecretStr` so they never leak through `repr` or logs. They are only
    revealed when the model is dumped to JSON, which is how credentials are persisted.

    Attributes:
        access_token (SecretStr): The bearer token to present to resource servers.
        token_type (str): The type of the token (e.g. "Bearer").
        expires_at (float): Epoch time at which the access token expires.
        refresh_token (SecretStr | None): The refresh token, if issued.
        id_token (SecretStr | None): The ID token, if issued.
        scope (str | None): The scopes granted by the provider.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    access_token: SecretStr
    token_type: str = "Bearer"
    expires_at: float
    refresh_token: SecretStr | None = None
    id_token: SecretStr | None = None
    scope: str | None = None

    @field_serializer("access_token", "refresh_token", "id_token", when_used="json")
    def reveal_secret(self, v: SecretStr | None) -> str | None:
        return v.get_secret_value() if v is not None else None

    @classmethod
    def from_response(cls, data: Mapping[str, Any]) -> "Token":
        """
        Builds a Token from a token endpoint response.

        The expiry is taken from `expires_at` (as added by Authlib), then `expires_on` (v1 endpoints),
        then computed from `expires_in`.

        Args:
            data: The decoded token endpoint response.

        Returns:
            Token: The parsed token.

        Raises:
            pydantic.ValidationError: If the response has no access token or no expiry information.
        """
        payload = dict(data)
        if payload.get("expires_at") is None:
            if payload.get("expires_on") is not None:
                payload["expires_at"] = float(payload["expires_on"])
            elif payload.get("expires_in") is not None:
                payload["expires_at"] = time.time() + float(payload["expires_in"])
        return cls.model_validate(payload)

    @property
    def can_refresh(self) -> bool:
        return self.refresh_token is not None

    def expires_in(self) -> float:
        """Seconds until expiry (negative once expired)."""
        return self.expires_at - time.time()

    def is_valid(self, leeway: int = 0) -> bool:
        """
        Checks whether the access token is still usable.

        Args:
            leeway: Seconds before the actual expiry from which the token is already considered invalid.
        """
        return time.time() + leeway < self.expires_at

    def __repr__(self) -> str:
        return (
            f"Token(access_token={self.access_token!r}, "
            f"token_type={self.token_type!r}, "
            f"expires_at={self.expires_at!r}, "
            f"refresh_token={self.refresh_token!r}, "
            f"scope={self.scope!r})"
        )

    def __str__(self) -> str:
        return self.__repr__()


class CredentialSnapshot(BaseModel):
    """
    Persisted state of a set of device credentials. The in-flight challenge is never stored.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    version: Literal[1] = 1
    config: dict[str, Any]
    token: Token | None = None
