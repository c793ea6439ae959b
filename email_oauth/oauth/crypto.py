"""Field-level AES-256-GCM encryption for stored secrets.

Each call to encrypt() draws a fresh salt and IV, derives a key from the
machine passphrase with scrypt, and returns ``salt:iv:tag:ciphertext``
(all hex). Encrypting the same token twice never yields the same string,
so ciphertexts cannot be correlated across accounts or re-saves.

Security considerations:
- The passphrase is derived from machine identity, not typed by the user.
  No prompt is needed to read tokens back, but any process running as the
  same user on the same machine can derive the same key. This is an
  accepted limitation of at-rest protection, not a bug.
- Decryption fails closed: any malformed, truncated or tampered value
  raises StoreCorruptedError.
"""

import os
import platform
from pathlib import Path

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from .errors import StoreCorruptedError

# Constants
KEY_SIZE_BYTES = 32  # AES-256
IV_SIZE_BYTES = 16
SALT_SIZE_BYTES = 32
TAG_SIZE_BYTES = 16

# scrypt cost parameters (N=2^14, r=8, p=1)
SCRYPT_N = 2**14
SCRYPT_R = 8
SCRYPT_P = 1

SEPARATOR = ":"
PASSPHRASE_PREFIX = "email-oauth"


def machine_passphrase() -> str:
    """Build the machine-scoped passphrase used for key derivation.

    Combines the machine id (Linux), home directory, username and CPU
    architecture. Stable across runs on one machine for one user.

    Returns:
        Passphrase string
    """
    components = [PASSPHRASE_PREFIX]

    machine_id_path = Path("/etc/machine-id")
    if machine_id_path.exists():
        try:
            components.append(machine_id_path.read_text().strip())
        except OSError:
            pass

    components.append(str(Path.home()))
    components.append(os.environ.get("USER", os.environ.get("USERNAME", "email-oauth")))
    components.append(platform.machine())

    return ":".join(components)


class SecretCipher:
    """Encrypts and decrypts individual secret fields.

    Usage:
        cipher = SecretCipher()
        blob = cipher.encrypt("ya29.a0...")
        token = cipher.decrypt(blob)
    """

    def __init__(self, passphrase: str | None = None, n: int = SCRYPT_N):
        """Initialize the cipher.

        Args:
            passphrase: Key-derivation passphrase (default: machine_passphrase())
            n: scrypt CPU/memory cost; tests lower it to stay fast
        """
        self._passphrase = (passphrase or machine_passphrase()).encode("utf-8")
        self._n = n

    def _derive_key(self, salt: bytes) -> bytes:
        kdf = Scrypt(salt=salt, length=KEY_SIZE_BYTES, n=self._n, r=SCRYPT_R, p=SCRYPT_P)
        return kdf.derive(self._passphrase)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a string.

        Args:
            plaintext: Text to encrypt (may be empty)

        Returns:
            ``salt:iv:tag:ciphertext`` hex string
        """
        salt = os.urandom(SALT_SIZE_BYTES)
        iv = os.urandom(IV_SIZE_BYTES)
        key = self._derive_key(salt)

        # AESGCM appends the 16-byte tag to the ciphertext
        sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_SIZE_BYTES], sealed[-TAG_SIZE_BYTES:]

        return SEPARATOR.join((salt.hex(), iv.hex(), tag.hex(), ciphertext.hex()))

    def decrypt(self, blob: str) -> str:
        """Decrypt a value produced by encrypt().

        Args:
            blob: ``salt:iv:tag:ciphertext`` hex string

        Returns:
            Decrypted plaintext

        Raises:
            StoreCorruptedError: If the value is malformed, truncated,
                tampered with, or was encrypted under another key
        """
        if not isinstance(blob, str):
            raise StoreCorruptedError("Encrypted value is not a string")

        parts = blob.split(SEPARATOR)
        if len(parts) != 4:
            raise StoreCorruptedError("Invalid encrypted data format")

        try:
            salt, iv, tag, ciphertext = (bytes.fromhex(p) for p in parts)
        except ValueError as e:
            raise StoreCorruptedError("Encrypted data is not valid hex") from e

        if (
            len(salt) != SALT_SIZE_BYTES
            or len(iv) != IV_SIZE_BYTES
            or len(tag) != TAG_SIZE_BYTES
        ):
            raise StoreCorruptedError("Encrypted data has truncated components")

        key = self._derive_key(salt)
        try:
            plaintext = AESGCM(key).decrypt(iv, ciphertext + tag, None)
        except InvalidTag as e:
            raise StoreCorruptedError(
                "Failed to decrypt data. It was tampered with or encrypted on another machine."
            ) from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise StoreCorruptedError("Decrypted data is not valid UTF-8") from e
