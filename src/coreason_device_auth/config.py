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
Configuration for the coreason-device-auth package.
"""

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_AUTHORITY_HOST = "https://login.microsoftonline.com"


class DeviceCredentialsConfig(BaseSettings):
    """
    Configuration settings for device-code credentials.

    Attributes:
        resource (list[str]): The resources or scopes to request (e.g. api://my-api/user_impersonation).
        tenant (str): The Azure AD tenant (GUID, domain name, "common" or "organizations").
        app (str): The application (client) ID registered with the tenant.
        version (int): The identity platform version, 1 or 2.
        offline_access (bool): Whether to request `offline_access` so the token can be refreshed.
        authority_host (str): The identity provider base URL.
        http_timeout (float): Timeout in seconds for each HTTP request to the provider.
        request_timeout (float): Default upper bound in seconds for a token exchange.
        min_poll_interval (float): Minimum seconds between two token polls.
        clock_skew_leeway (int): Seconds subtracted from the token lifetime when checking validity.
    """

    model_config = SettingsConfigDict(
        env_prefix="COREASON_DEVICE_",
        case_sensitive=False,
    )

    resource: list[str]
    tenant: str
    app: str
    version: int = 2
    offline_access: bool = True
    unsafe_local_dev: bool = False
    authority_host: str = DEFAULT_AUTHORITY_HOST
    http_timeout: float = Field(default=30.0, gt=0, description="Timeout in seconds for each provider request.")
    request_timeout: float = Field(default=15.0, gt=0, description="Default timeout in seconds for a token exchange.")
    min_poll_interval: float = Field(default=1.0, ge=0)
    clock_skew_leeway: int = Field(default=0, ge=0)

    @field_validator("resource")
    @classmethod
    def validate_resource(cls, v: list[str]) -> list[str]:
        """
        Strips resource entries and rejects an empty list or blank entries.
        """
        cleaned = [r.strip() for r in v]
        if not cleaned:
            raise ValueError("At least one resource must be provided.")
        if any(not r for r in cleaned):
            raise ValueError("Resource entries must not be blank.")
        return cleaned

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: int) -> int:
        if v not in (1, 2):
            raise ValueError("The identity platform version must be 1 or 2.")
        return v

    @field_validator("tenant", "app")
    @classmethod
    def validate_identifier(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Tenant and app identifiers must not be empty.")
        return v

    @field_validator("authority_host", mode="after")
    @classmethod
    def validate_authority_host(cls, v: str, info: ValidationInfo) -> str:
        """
        Normalizes the authority host and ensures it uses HTTPS, unless strictly opted out for local dev.

        Args:
            v: The authority host URL.
            info: Validation context (used to read `unsafe_local_dev`).

        Returns:
            The URL without trailing slash.
        """
        v = v.strip().rstrip("/")
        if "://" not in v:
            v = f"https://{v}"
        if v.startswith("http://") and not info.data.get("unsafe_local_dev", False):
            raise ValueError("HTTPS is required for production. Set 'unsafe_local_dev=True' only for local testing.")
        return v
