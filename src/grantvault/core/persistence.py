"""
Vault snapshot storage.

Writes the deposit and grant tables as a JSON package with a SHA-256
checksum of the state. Saves are atomic (temp file, fsync, rename); loads
verify the checksum before anything is handed back to the vault.
"""

import hashlib
import json
import logging
import os
import time
from threading import Lock
from typing import Any, Dict, Optional

from . import config
from .exceptions import CorruptedStateError, VaultStorageError

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = "1.0"
SNAPSHOT_FILE = "vault_state.json"


class VaultStateStore:
    """Saves and loads vault snapshots in a data directory."""

    def __init__(self, data_dir: Optional[str] = None):
        self.data_dir = data_dir or config.STATE_DIR
        self.state_file = os.path.join(self.data_dir, SNAPSHOT_FILE)
        os.makedirs(self.data_dir, exist_ok=True)
        self.lock = Lock()

    @staticmethod
    def _calculate_checksum(data: str) -> str:
        return hashlib.sha256(data.encode("utf-8")).hexdigest()

    @staticmethod
    def _canonical(state: Dict[str, Any]) -> str:
        return json.dumps(state, indent=2, sort_keys=True)

    def save(self, state: Dict[str, Any]) -> str:
        """
        Write ``state`` atomically.

        Returns:
            The checksum of the saved state

        Raises:
            VaultStorageError: If the file cannot be written
        """
        with self.lock:
            state_json = self._canonical(state)
            checksum = self._calculate_checksum(state_json)
            package = {
                "metadata": {
                    "timestamp": time.time(),
                    "checksum": checksum,
                    "version": SNAPSHOT_VERSION,
                    "grants": len(state.get("grants", [])),
                },
                "state": state,
            }

            temp_file = self.state_file + ".tmp"
            try:
                with open(temp_file, "w", encoding="utf-8") as f:
                    f.write(json.dumps(package, indent=2, sort_keys=True))
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(temp_file, self.state_file)
            except OSError as e:
                logger.error(
                    "Failed to save vault state",
                    extra={"event": "storage.save_failed", "error": str(e), "error_type": type(e).__name__},
                )
                raise VaultStorageError(f"Failed to save vault state: {e}") from e

            logger.info(
                "Vault state saved",
                extra={"event": "storage.saved", "checksum": checksum[:8], "path": self.state_file},
            )
            return checksum

    def load(self) -> Optional[Dict[str, Any]]:
        """
        Read the last saved state.

        Returns:
            The state dict, or None if nothing was saved yet

        Raises:
            CorruptedStateError: If the file is not valid JSON, lacks a state
                section or fails its checksum
            VaultStorageError: If the file cannot be read
        """
        with self.lock:
            if not os.path.exists(self.state_file):
                return None
            try:
                with open(self.state_file, "r", encoding="utf-8") as f:
                    package = json.load(f)
            except json.JSONDecodeError as e:
                raise CorruptedStateError(f"Vault state is not valid JSON: {e}") from e
            except OSError as e:
                raise VaultStorageError(f"Failed to read vault state: {e}") from e

            if not isinstance(package, dict) or not isinstance(package.get("state"), dict):
                raise CorruptedStateError("Vault state file has no state section")

            state = package["state"]
            expected = package.get("metadata", {}).get("checksum")
            actual = self._calculate_checksum(self._canonical(state))
            if expected != actual:
                logger.warning(
                    "Vault state checksum mismatch",
                    extra={"event": "storage.checksum_mismatch", "expected": str(expected)[:8], "actual": actual[:8]},
                )
                raise CorruptedStateError(
                    "Vault state checksum verification failed",
                    details={"expected": expected, "actual": actual},
                )
            return state
