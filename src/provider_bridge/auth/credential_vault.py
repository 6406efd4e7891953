# src/provider_bridge/auth/credential_vault.py
"""
Secret storage for API keys and OAuth token records.

A vault maps a key name (e.g. ``oauth_access_antigravity``) to a secret
string. Implementations must never raise into caller logic on a corrupted or
tampered entry: such an entry reads back as ``None``.
"""

import base64
import binascii
import json
import logging
import os
import shutil
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

lib_logger = logging.getLogger("provider_bridge")

NONCE_BYTES = 12
KEY_BITS = 256


class CredentialVault(ABC):
    """Contract every credential store must satisfy."""

    @abstractmethod
    def set_secret(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def get_secret(self, key: str) -> Optional[str]:
        """Returns the stored value, or None if absent or unreadable."""
        pass

    @abstractmethod
    def delete_secret(self, key: str) -> None:
        pass

    @abstractmethod
    def keys(self) -> List[str]:
        pass


class InMemoryVault(CredentialVault):
    """Process-local vault for tests and ephemeral sessions."""

    def __init__(self):
        self._secrets: Dict[str, str] = {}

    def set_secret(self, key: str, value: str) -> None:
        self._secrets[key] = value

    def get_secret(self, key: str) -> Optional[str]:
        return self._secrets.get(key)

    def delete_secret(self, key: str) -> None:
        self._secrets.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._secrets)


def _atomic_write(path: Path, content: Union[str, bytes]) -> None:
    """Write via tempfile + move in the target directory, owner-only permissions."""
    parent_dir = path.parent
    parent_dir.mkdir(parents=True, exist_ok=True)

    binary = isinstance(content, bytes)
    tmp_fd, tmp_path = tempfile.mkstemp(dir=str(parent_dir), prefix=".tmp_", text=not binary)
    try:
        with os.fdopen(tmp_fd, "wb" if binary else "w") as f:
            f.write(content)
        try:
            os.chmod(tmp_path, 0o600)
        except (OSError, AttributeError):
            # Windows may not support chmod
            pass
        shutil.move(tmp_path, str(path))
    except Exception:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


class EncryptedFileVault(CredentialVault):
    """
    AES-256-GCM encrypted JSON file.

    Each entry is stored as base64(nonce || ciphertext+tag). The entry's key
    name is bound as associated data, so an entry copied under another name
    fails authentication instead of decrypting.

    The master key comes from ``master_key`` (raw 32 bytes or base64 text) or
    from a key file next to the vault, generated on first use.
    """

    def __init__(
        self,
        path: Union[str, Path],
        master_key: Optional[Union[bytes, str]] = None,
        key_path: Optional[Union[str, Path]] = None,
    ):
        self.path = Path(path)
        self.key_path = Path(key_path) if key_path else self.path.with_suffix(".key")
        self._aesgcm = AESGCM(self._resolve_key(master_key))
        self._lock = threading.Lock()
        self._entries: Dict[str, str] = self._read_entries()

    def _resolve_key(self, master_key: Optional[Union[bytes, str]]) -> bytes:
        if isinstance(master_key, bytes):
            return master_key
        if isinstance(master_key, str):
            return base64.b64decode(master_key)

        if self.key_path.exists():
            return base64.b64decode(self.key_path.read_text().strip())

        key = AESGCM.generate_key(bit_length=KEY_BITS)
        _atomic_write(self.key_path, base64.b64encode(key).decode("ascii"))
        lib_logger.info(f"Generated new vault key at '{self.key_path}'")
        return key

    def _read_entries(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            lib_logger.warning(f"Credential vault at '{self.path}' is unreadable, starting empty: {e}")
            return {}
        if not isinstance(data, dict):
            lib_logger.warning(f"Credential vault at '{self.path}' has an unexpected layout, starting empty")
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _flush(self) -> None:
        _atomic_write(self.path, json.dumps(self._entries, indent=2))

    def set_secret(self, key: str, value: str) -> None:
        nonce = os.urandom(NONCE_BYTES)
        ciphertext = self._aesgcm.encrypt(nonce, value.encode("utf-8"), key.encode("utf-8"))
        with self._lock:
            self._entries[key] = base64.b64encode(nonce + ciphertext).decode("ascii")
            self._flush()

    def get_secret(self, key: str) -> Optional[str]:
        with self._lock:
            blob = self._entries.get(key)
        if blob is None:
            return None
        try:
            raw = base64.b64decode(blob, validate=True)
            nonce, ciphertext = raw[:NONCE_BYTES], raw[NONCE_BYTES:]
            return self._aesgcm.decrypt(nonce, ciphertext, key.encode("utf-8")).decode("utf-8")
        except (InvalidTag, binascii.Error, ValueError, UnicodeDecodeError) as e:
            lib_logger.warning(f"Discarding unreadable vault entry '{key}': {type(e).__name__}")
            return None

    def delete_secret(self, key: str) -> None:
        with self._lock:
            if self._entries.pop(key, None) is not None:
                self._flush()

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries)
