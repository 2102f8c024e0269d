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
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, call, patch
from urllib.parse import parse_qs

import httpx
import pytest
from conftest import make_token

from coreason_device_auth.exceptions import ProviderError
from coreason_device_auth.models import DeviceChallenge, DeviceSetup
from coreason_device_auth.provider import DEVICE_CODE_GRANT_TYPE, AzureDeviceCodeProvider

AUTHORITY = "https://login.microsoftonline.com"

DEVICE_CODE_RESPONSE = {
    "device_code": "dc_123",
    "user_code": "ABC-123",
    "verification_uri": "https://microsoft.com/devicelogin",
    "expires_in": 900,
    "interval": 5,
    "message": "To sign in, use a web browser to open the page https://microsoft.com/devicelogin",
}

TOKEN_RESPONSE = {
    "token_type": "Bearer",
    "scope": "read",
    "expires_in": 3599,
    "access_token": "at_123",
    "refresh_token": "rt_123",
}


class Recorder:
    """Serves queued responses and records the requests it receives."""

    def __init__(self, responses: list[httpx.Response | Exception]) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.responses:
            return httpx.Response(500, text="Unexpected request")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def form(self, index: int = -1) -> dict[str, str]:
        return {k: v[0] for k, v in parse_qs(self.requests[index].content.decode()).items()}


def oauth_error(error: str, status_code: int = 400) -> httpx.Response:
    return httpx.Response(status_code, json={"error": error, "error_description": f"{error} description"})


@pytest.fixture
def setup_v2() -> DeviceSetup:
    return DeviceSetup(resource=("read",), tenant="t1", app="a1")


@pytest.fixture
def setup_v1() -> DeviceSetup:
    return DeviceSetup(resource=("https://management.azure.com/",), tenant="t1", app="a1", version=1)


@pytest.fixture
def challenge() -> DeviceChallenge:
    return DeviceChallenge.model_validate(DEVICE_CODE_RESPONSE)


@pytest.fixture
def make_provider() -> Callable[[Recorder], AzureDeviceCodeProvider]:
    def factory(recorder: Recorder) -> AzureDeviceCodeProvider:
        return AzureDeviceCodeProvider(
            authority_host=AUTHORITY,
            min_poll_interval=0.0,
            transport=httpx.MockTransport(recorder),
        )

    return factory


@pytest.mark.asyncio
async def test_request_challenge_v2(make_provider: Any, setup_v2: DeviceSetup) -> None:
    recorder = Recorder([httpx.Response(200, json=DEVICE_CODE_RESPONSE)])

    challenge = await make_provider(recorder).request_challenge(setup_v2)

    assert challenge.user_code == "ABC-123"
    assert challenge.verification_uri == "https://microsoft.com/devicelogin"
    assert challenge.device_code == "dc_123"
    assert challenge.interval == 5

    request = recorder.requests[0]
    assert request.method == "POST"
    assert str(request.url) == f"{AUTHORITY}/t1/oauth2/v2.0/devicecode"
    assert recorder.form() == {"client_id": "a1", "scope": "read offline_access"}
    assert "Authorization" not in request.headers


@pytest.mark.asyncio
async def test_request_challenge_v1(make_provider: Any, setup_v1: DeviceSetup) -> None:
    """v1 endpoints take a single resource and answer with verification_url and string numbers."""
    v1_response = {
        "device_code": "dc_v1",
        "user_code": "XYZ-789",
        "verification_url": "https://microsoft.com/devicelogin",
        "expires_in": "900",
        "interval": "5",
    }
    recorder = Recorder([httpx.Response(200, json=v1_response)])

    challenge = await make_provider(recorder).request_challenge(setup_v1)

    assert challenge.verification_uri == "https://microsoft.com/devicelogin"
    assert challenge.expires_in == 900
    assert str(recorder.requests[0].url) == f"{AUTHORITY}/t1/oauth2/devicecode"
    assert recorder.form() == {"client_id": "a1", "resource": "https://management.azure.com/"}


@pytest.mark.asyncio
async def test_request_challenge_http_error(make_provider: Any, setup_v2: DeviceSetup) -> None:
    recorder = Recorder([oauth_error("invalid_client")])

    with pytest.raises(ProviderError, match="status 400"):
        await make_provider(recorder).request_challenge(setup_v2)


@pytest.mark.asyncio
async def test_request_challenge_network_error(make_provider: Any, setup_v2: DeviceSetup) -> None:
    recorder = Recorder([httpx.ConnectError("Connection refused")])

    with pytest.raises(ProviderError, match="Failed to request a device code"):
        await make_provider(recorder).request_challenge(setup_v2)


@pytest.mark.asyncio
async def test_request_challenge_invalid_response(make_provider: Any, setup_v2: DeviceSetup) -> None:
    recorder = Recorder([httpx.Response(200, json={"device_code": "dc_123"})])

    with pytest.raises(ProviderError, match="Invalid response"):
        await make_provider(recorder).request_challenge(setup_v2)


@pytest.mark.asyncio
async def test_exchange_challenge_polls_until_authorized(
    make_provider: Any, setup_v2: DeviceSetup, challenge: DeviceChallenge
) -> None:
    recorder = Recorder(
        [
            oauth_error("authorization_pending"),
            oauth_error("slow_down"),
            httpx.Response(200, json=TOKEN_RESPONSE),
        ]
    )

    with patch("anyio.sleep", new_callable=AsyncMock) as mock_sleep:
        token = await make_provider(recorder).exchange_challenge(setup_v2, challenge)

    assert token.access_token.get_secret_value() == "at_123"
    assert token.refresh_token is not None
    assert token.refresh_token.get_secret_value() == "rt_123"
    assert token.is_valid()
    assert 3500 < token.expires_in() <= 3600

    # slow_down adds 5 seconds to the interval
    assert mock_sleep.call_args_list == [call(5), call(10)]

    assert len(recorder.requests) == 3
    assert str(recorder.requests[0].url) == f"{AUTHORITY}/t1/oauth2/v2.0/token"
    form = recorder.form(0)
    assert form["grant_type"] == DEVICE_CODE_GRANT_TYPE
    assert form["device_code"] == "dc_123"
    assert form["client_id"] == "a1"
    assert form["scope"] == "read offline_access"


@pytest.mark.asyncio
async def test_exchange_challenge_min_poll_interval(setup_v2: DeviceSetup) -> None:
    recorder = Recorder([oauth_error("authorization_pending"), httpx.Response(200, json=TOKEN_RESPONSE)])
    provider = AzureDeviceCodeProvider(min_poll_interval=8.0, transport=httpx.MockTransport(recorder))
    challenge = DeviceChallenge.model_validate({**DEVICE_CODE_RESPONSE, "interval": 1})

    with patch("anyio.sleep", new_callable=AsyncMock) as mock_sleep:
        await provider.exchange_challenge(setup_v2, challenge)

    mock_sleep.assert_called_once_with(8.0)


@pytest.mark.parametrize(
    ("error", "message"),
    [
        ("expired_token", "Device code expired"),
        ("code_expired", "Device code expired"),
        ("access_denied", "User denied access"),
        ("authorization_declined", "User denied access"),
        ("invalid_grant", "Token request rejected: invalid_grant"),
    ],
)
@pytest.mark.asyncio
async def test_exchange_challenge_terminal_errors(
    make_provider: Any, setup_v2: DeviceSetup, challenge: DeviceChallenge, error: str, message: str
) -> None:
    recorder = Recorder([oauth_error(error)])

    with pytest.raises(ProviderError, match=message):
        await make_provider(recorder).exchange_challenge(setup_v2, challenge)

    assert len(recorder.requests) == 1


@pytest.mark.asyncio
async def test_exchange_challenge_server_error(
    make_provider: Any, setup_v2: DeviceSetup, challenge: DeviceChallenge
) -> None:
    recorder = Recorder([httpx.Response(503, text="Service Unavailable")])

    with pytest.raises(ProviderError, match="Polling failed"):
        await make_provider(recorder).exchange_challenge(setup_v2, challenge)


@pytest.mark.asyncio
async def test_exchange_challenge_already_expired(make_provider: Any, setup_v2: DeviceSetup) -> None:
    recorder = Recorder([])
    challenge = DeviceChallenge.model_validate({**DEVICE_CODE_RESPONSE, "issued_at": time.time() - 1000})

    with pytest.raises(ProviderError, match="Device code expired"):
        await make_provider(recorder).exchange_challenge(setup_v2, challenge)

    assert recorder.requests == []


@pytest.mark.asyncio
async def test_exchange_challenge_v1_resource(
    make_provider: Any, setup_v1: DeviceSetup, challenge: DeviceChallenge
) -> None:
    v1_token = {**TOKEN_RESPONSE, "expires_in": "3599", "resource": "https://management.azure.com/"}
    recorder = Recorder([httpx.Response(200, json=v1_token)])

    token = await make_provider(recorder).exchange_challenge(setup_v1, challenge)

    assert token.is_valid()
    assert str(recorder.requests[0].url) == f"{AUTHORITY}/t1/oauth2/token"
    assert recorder.form()["resource"] == "https://management.azure.com/"


@pytest.mark.asyncio
async def test_refresh_token(make_provider: Any, setup_v2: DeviceSetup) -> None:
    recorder = Recorder([httpx.Response(200, json={**TOKEN_RESPONSE, "access_token": "at_new", "refresh_token": "rt_new"})])

    token = await make_provider(recorder).refresh_token(setup_v2, make_token())

    assert token.access_token.get_secret_value() == "at_new"
    assert token.refresh_token is not None
    assert token.refresh_token.get_secret_value() == "rt_new"

    form = recorder.form()
    assert form["grant_type"] == "refresh_token"
    assert form["refresh_token"] == "refresh-1"
    assert form["client_id"] == "a1"
    assert form["scope"] == "read offline_access"


@pytest.mark.asyncio
async def test_refresh_token_keeps_refresh_material(make_provider: Any, setup_v2: DeviceSetup) -> None:
    response = {k: v for k, v in TOKEN_RESPONSE.items() if k != "refresh_token"}
    recorder = Recorder([httpx.Response(200, json=response)])

    token = await make_provider(recorder).refresh_token(setup_v2, make_token())

    assert token.refresh_token is not None
    assert token.refresh_token.get_secret_value() == "refresh-1"


@pytest.mark.asyncio
async def test_refresh_token_rejected(make_provider: Any, setup_v2: DeviceSetup) -> None:
    recorder = Recorder([oauth_error("invalid_grant")])

    with pytest.raises(ProviderError, match="invalid_grant"):
        await make_provider(recorder).refresh_token(setup_v2, make_token())


@pytest.mark.asyncio
async def test_refresh_token_without_refresh_material(make_provider: Any, setup_v2: DeviceSetup) -> None:
    recorder = Recorder([])

    with pytest.raises(ProviderError, match="no refresh token"):
        await make_provider(recorder).refresh_token(setup_v2, make_token(refresh_token=None))

    assert recorder.requests == []
