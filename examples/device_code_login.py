import os
import sys
from pathlib import Path

# Add src to path for running directly
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "../src")))

import httpx

from coreason_device_auth import BearerTokenAuth, DeviceCredentials, create_device_credentials
from coreason_device_auth.exceptions import CredentialStoreError, DeviceAuthError, ExchangeTimeoutError

CACHE = Path.home() / ".config" / "coreason" / "device-auth-example.json"


def main() -> None:
    """
    Demonstrates the device-code flow against Azure AD and a downstream API.
    Includes:
    - Restoring a cached token and refreshing it
    - Presenting the user code and opening the browser
    - Attaching the bearer token to an httpx client
    """
    print(">>> Starting Device Code Example")

    try:
        credentials = DeviceCredentials.load(CACHE)
        print(">>> Restored cached credentials")
    except CredentialStoreError:
        credentials = create_device_credentials(
            resource=os.environ.get("EXAMPLE_RESOURCE", "api://my-api/user_impersonation"),
            tenant=os.environ.get("EXAMPLE_TENANT", "my-tenant-id"),
            app=os.environ.get("EXAMPLE_APP", "my-app-id"),
        )

    if not credentials.is_valid():
        try:
            credentials.refresh()
        except DeviceAuthError as e:
            print(f">>> Cannot refresh ({e}), starting a new device-code challenge")
            credentials.request_challenge()
            print(f">>> Enter {credentials.get_user_code()} at {credentials.get_verification_uri()}")
            credentials.open_verification_uri()
            try:
                credentials.exchange_for_token(timeout=120)
            except ExchangeTimeoutError as timeout_error:
                print(f">>> {timeout_error}")
                return

    credentials.save(CACHE)
    print(f">>> Token valid: {credentials.is_valid()}")

    api_url = os.environ.get("EXAMPLE_API_URL")
    if api_url:
        with httpx.Client(auth=BearerTokenAuth(credentials)) as client:
            response = client.get(api_url)
            print(f">>> {api_url} answered {response.status_code}")


if __name__ == "__main__":
    main()
