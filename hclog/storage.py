"""
This module provides the local key-value store behind HCLog.

The store keeps one encrypted file per string key under the data directory.
Values are strings and each collection lives in its own slot; the store is
read once at start-up and written after every change. `LocalStore` is responsible for:
- Encrypting and decrypting slot contents with the injected Fernet instance.
- Returning defaults when a slot is missing, unreadable, or holds the wrong shape.
- Writing slots atomically, logging (not raising) write failures.
"""
# hclog/storage.py

import json
import logging
import os
from pathlib import Path

from cryptography.fernet import InvalidToken

logger = logging.getLogger(__name__)


class LocalStore:
    """A string-keyed, string-valued store backed by encrypted files."""

    def __init__(self, data_dir, encryptor):
        """Initializes the store.

        Args:
            data_dir (str or Path): Directory holding the slot files. Created if needed.
            encryptor: An object with `encrypt(bytes)` and `decrypt(bytes)`, normally a `Fernet`.
        """
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._encryptor = encryptor

    def _path_for(self, key: str) -> Path:
        return self.data_dir / f"{key}.json.enc"

    def get(self, key: str):
        """Returns the decrypted string stored under `key`, or None if absent or unreadable."""
        path = self._path_for(key)
        try:
            with open(path, 'rb') as f:
                token = f.read()
        except FileNotFoundError:
            return None
        if not token:
            return None
        try:
            return self._encryptor.decrypt(token).decode('utf-8')
        except (InvalidToken, UnicodeDecodeError) as e:
            logger.warning("Could not decrypt slot '%s' (%s).", key, type(e).__name__)
            return None

    def set(self, key: str, value: str) -> None:
        """Encrypts and writes `value` under `key`, replacing the file atomically."""
        path = self._path_for(key)
        tmp_path = path.with_suffix('.tmp')
        token = self._encryptor.encrypt(value.encode('utf-8'))
        with open(tmp_path, 'wb') as f:
            f.write(token)
        os.replace(tmp_path, path)

    def remove(self, key: str) -> None:
        try:
            self._path_for(key).unlink()
        except FileNotFoundError:
            pass

    def load_json(self, key: str, default):
        """Loads a JSON snapshot, falling back to `default` when missing or corrupt.

        The decoded value must have the same container type as `default`
        (list or dict); anything else counts as corrupt.
        """
        raw = self.get(key)
        if raw is None:
            return default
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Slot '%s' does not contain valid JSON. Starting from defaults.", key)
            return default
        if not isinstance(data, type(default)):
            logger.warning("Slot '%s' holds a %s, expected %s. Starting from defaults.",
                           key, type(data).__name__, type(default).__name__)
            return default
        return data

    def save_json(self, key: str, data) -> bool:
        """Serializes and writes a snapshot. Failures are logged and reported as False."""
        try:
            self.set(key, json.dumps(data, ensure_ascii=False))
        except (OSError, TypeError, ValueError):
            logger.exception("Error saving slot '%s' to the local store.", key)
            return False
        return True
