"""
Secret Store

Encrypted key-value document kept on the operator machine. The file holds a
header line, a base64 salt line and a Fernet token; the key is derived from
the passphrase with scrypt.
"""

import base64
import os
import tempfile
from pathlib import Path
from typing import Dict, Optional

import yaml
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from monstack.constants import SECRET_FILE_PERMISSIONS, VAULT_HEADER
from monstack.exceptions import DecryptionError, KeyNotFoundError, SecretError
from monstack.models import SecretDocument

SALT_BYTES = 16
SCRYPT_N = 2**15
SCRYPT_R = 8
SCRYPT_P = 1


def derive_key(passphrase: str, salt: bytes) -> bytes:
    """Derive a Fernet key from a passphrase."""
    kdf = Scrypt(salt=salt, length=32, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P)
    return base64.urlsafe_b64encode(kdf.derive(passphrase.encode("utf-8")))


def read_passphrase(path: Path) -> str:
    """
    Read the vault passphrase file.

    Raises:
        SecretError: If the file is missing or empty
    """
    path = Path(path)
    if not path.exists():
        raise SecretError(
            f"Vault password file does not exist: {path}",
            context="Create it with a strong passphrase and chmod 600",
        )
    passphrase = path.read_text().rstrip("\r\n")
    if not passphrase:
        raise SecretError(f"Vault password file is empty: {path}")
    return passphrase


def write_private_file(path: Path, content: str) -> None:
    """
    Replace a file atomically with mode 0600.

    Writes a temp file in the same directory, fsyncs it, then renames it over
    the target, so readers see either the old or the new content.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        os.fchmod(fd, SECRET_FILE_PERMISSIONS)
        with os.fdopen(fd, "w") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


class SecretStore:
    """
    Adapter around the encrypted secret document.

    Provides:
    - open (decrypt) with a passphrase
    - get / set of single keys
    - rekey with atomic replacement of the file
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    # -- Encryption -----------------------------------------------------

    def _encrypt(self, values: Dict[str, str], passphrase: str) -> str:
        salt = os.urandom(SALT_BYTES)
        payload = yaml.safe_dump(values, default_flow_style=False, sort_keys=True)
        token = Fernet(derive_key(passphrase, salt)).encrypt(payload.encode("utf-8"))
        return "\n".join(
            [VAULT_HEADER, base64.b64encode(salt).decode("ascii"), token.decode("ascii")]
        ) + "\n"

    def _decrypt(self, text: str, passphrase: str) -> Dict[str, str]:
        lines = text.strip().splitlines()
        if len(lines) != 3 or lines[0].strip() != VAULT_HEADER:
            raise DecryptionError(
                f"{self.path} is not a monstack secret document",
                context="Recreate it with: monstack secrets:generate --write",
            )
        try:
            salt = base64.b64decode(lines[1].strip(), validate=True)
            plaintext = Fernet(derive_key(passphrase, salt)).decrypt(lines[2].strip().encode("ascii"))
        except (InvalidToken, ValueError):
            raise DecryptionError(
                f"Could not decrypt {self.path}",
                context="Wrong vault passphrase or corrupted document; check .vault_pass",
            )

        try:
            values = yaml.safe_load(plaintext.decode("utf-8")) or {}
        except (yaml.YAMLError, UnicodeDecodeError):
            raise DecryptionError(f"Decrypted content of {self.path} is not valid YAML")
        if not isinstance(values, dict):
            raise DecryptionError(f"Decrypted content of {self.path} is not a mapping")
        return {str(key): "" if value is None else str(value) for key, value in values.items()}

    def _write_atomic(self, content: str) -> None:
        write_private_file(self.path, content)

    # -- Public API -----------------------------------------------------

    def open(self, passphrase: str) -> SecretDocument:
        """
        Decrypt the document.

        Raises:
            DecryptionError: On wrong passphrase or corrupt ciphertext
        """
        if not self.path.exists():
            raise SecretError(
                f"Vault file does not exist: {self.path}",
                context="Generate secrets with: monstack secrets:generate --write",
            )
        return SecretDocument(path=self.path, values=self._decrypt(self.path.read_text(), passphrase))

    def create(self, values: Dict[str, str], passphrase: str) -> SecretDocument:
        """Write a new document, replacing any existing one."""
        values = {str(k): str(v) for k, v in values.items()}
        self._write_atomic(self._encrypt(values, passphrase))
        return SecretDocument(path=self.path, values=dict(values))

    def save(self, document: SecretDocument, passphrase: str) -> None:
        self._write_atomic(self._encrypt(document.values, passphrase))

    def get(self, document: SecretDocument, key: str) -> str:
        """
        Get one secret.

        Raises:
            KeyNotFoundError: If the key is absent
        """
        if not document.has(key):
            raise KeyNotFoundError(key, document.keys())
        return document.values[key]

    def set(self, document: SecretDocument, key: str, value: str, passphrase: str) -> None:
        """Set one secret and persist the document."""
        document.values[key] = str(value)
        self.save(document, passphrase)

    def rekey(
        self,
        document: Optional[SecretDocument],
        old_passphrase: str,
        new_passphrase: str,
    ) -> SecretDocument:
        """
        Re-encrypt the document under a new passphrase.

        The old passphrase is verified against the file on disk first. When a
        document is passed its values are the ones written.

        Raises:
            DecryptionError: If the old passphrase does not open the file
        """
        on_disk = self.open(old_passphrase)
        values = document.values if document is not None else on_disk.values
        self._write_atomic(self._encrypt(values, new_passphrase))
        return SecretDocument(path=self.path, values=dict(values))
