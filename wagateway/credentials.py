"""
File-backed credential store for the WhatsApp session.

The bridge pushes its authentication state on every change; the gateway keeps
the latest copy under the auth directory and hands it back on the next
connect, so a restart does not require scanning a new QR code.
"""

import json
import logging
import os
import tempfile
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class CredentialStore:
    """Persists session credentials as a single JSON document."""

    FILENAME = "creds.json"

    def __init__(self, auth_dir: str):
        if not auth_dir or not isinstance(auth_dir, str):
            raise ValueError("auth_dir must be a non-empty string")
        if "\x00" in auth_dir:
            raise ValueError("auth_dir contains null byte: invalid path")
        self.auth_dir = os.path.abspath(auth_dir)
        self.path = os.path.join(self.auth_dir, self.FILENAME)

    def exists(self) -> bool:
        return os.path.isfile(self.path)

    def load(self) -> Optional[Dict[str, Any]]:
        """
        Load stored credentials.

        Returns:
            The credential document, or None when nothing usable is stored
        """
        if not self.exists():
            return None

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable credentials at {self.path}: {e}")
            return None

        if not isinstance(data, dict):
            logger.warning(f"Ignoring malformed credentials at {self.path}")
            return None
        return data

    def save(self, creds: Dict[str, Any]) -> None:
        """Atomically replace the stored credentials."""
        if not isinstance(creds, dict):
            raise TypeError(f"Expected dict, got {type(creds).__name__}")

        if not os.path.exists(self.auth_dir):
            os.makedirs(self.auth_dir, mode=0o700)

        fd, tmp_path = tempfile.mkstemp(dir=self.auth_dir, prefix=".creds-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(creds, f)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        logger.debug(f"Credentials saved to {self.path}")

    def clear(self) -> None:
        """Discard stored credentials (e.g. after the device was logged out)."""
        try:
            os.unlink(self.path)
            logger.info("Stored credentials cleared")
        except FileNotFoundError:
            pass
