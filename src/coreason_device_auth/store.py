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
File persistence for device credentials.

Snapshots hold the configuration and the current token as JSON. They are written atomically
(temporary file + `os.replace`) with `0o600` permissions, since they contain the refresh token.
"""

import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from coreason_device_auth.config import DeviceCredentialsConfig
from coreason_device_auth.exceptions import CredentialStoreError
from coreason_device_auth.models import CredentialSnapshot, Token
from coreason_device_auth.utils.logger import logger


class CredentialStore:
    """
    Reads and writes a credentials snapshot file.

    Attributes:
        path (Path): The snapshot file.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()

    def save(self, config: DeviceCredentialsConfig, token: Token | None) -> None:
        """
        Writes the snapshot atomically.

        Args:
            config: The credentials configuration.
            token: The current token, if any.

        Raises:
            CredentialStoreError: If the file cannot be written.
        """
        snapshot = CredentialSnapshot(config=config.model_dump(mode="json"), token=token)
        text = snapshot.model_dump_json(indent=2) + "\n"

        tmp_path: str | None = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                mode="w",
                dir=self.path.parent,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                delete=False,
                encoding="utf-8",
            ) as fd:
                tmp_path = fd.name
                # Restrict permissions before any secret is written
                os.chmod(tmp_path, 0o600)
                fd.write(text)
                fd.flush()
                os.fsync(fd.fileno())
            os.replace(tmp_path, self.path)
        except OSError as e:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise CredentialStoreError(f"Failed to save credentials to {self.path}: {e}") from e

        logger.debug(f"Credentials saved to {self.path}")

    def load(self) -> tuple[DeviceCredentialsConfig, Token | None]:
        """
        Reads the snapshot back.

        Returns:
            The configuration and the stored token (None if none was held when saving).

        Raises:
            CredentialStoreError: If the file is missing, unreadable or invalid.
        """
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise CredentialStoreError(f"Failed to read credentials from {self.path}: {e}") from e

        try:
            snapshot = CredentialSnapshot.model_validate_json(text)
            config = DeviceCredentialsConfig(**snapshot.config)
        except ValidationError as e:
            raise CredentialStoreError(f"Invalid credentials file {self.path}: {e}") from e

        logger.debug(f"Credentials loaded from {self.path}")
        return config, snapshot.token

    def clear(self) -> None:
        """Deletes the snapshot file if it exists."""
        self.path.unlink(missing_ok=True)
