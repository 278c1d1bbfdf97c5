"""
This module handles the encryption key for HCLog's data files.

It uses the `cryptography` library (Fernet symmetric encryption) so that the
loan ledger, user list and clinical notes stored under the data directory are
not readable as plain JSON. The module is responsible for:
- Generating a secret key if one does not already exist.
- Storing and loading the key from the configured key file.
- Building the `Fernet` instance handed to the local store.

Security Note: the key file must be kept out of version control. Losing it
means the existing data files can no longer be read (the store then starts
from empty defaults).
"""
# hclog/encryption.py

import logging
from pathlib import Path

from cryptography.fernet import Fernet

from hclog import config

logger = logging.getLogger(__name__)


def write_key(key_file=None) -> bytes:
    """Generates a new Fernet key and saves it to the key file.

    Args:
        key_file (Path, optional): Where to write the key. Defaults to `config.KEY_FILE`.

    Returns:
        bytes: The generated key.
    """
    path = Path(key_file or config.KEY_FILE)
    if path.parent != Path("."):
        path.parent.mkdir(parents=True, exist_ok=True)
    key = Fernet.generate_key()
    with open(path, "wb") as key_file_handle:
        key_file_handle.write(key)
    return key


def load_key(key_file=None) -> bytes:
    """Loads the Fernet key from the key file.

    Raises:
        FileNotFoundError: If the key file does not exist yet.
    """
    with open(Path(key_file or config.KEY_FILE), "rb") as key_file_handle:
        return key_file_handle.read()


def get_encryptor(key_file=None) -> Fernet:
    """Returns a Fernet instance, generating the key on first run."""
    try:
        key = load_key(key_file)
    except FileNotFoundError:
        logger.warning("Encryption key not found at %s. Generating a new one.", key_file or config.KEY_FILE)
        key = write_key(key_file)
    return Fernet(key)


# Allows `python -m hclog.encryption` to provision a key ahead of the first run.
if __name__ == '__main__':
    get_encryptor()
    print(f"Encryption key available at '{config.KEY_FILE}'.")
