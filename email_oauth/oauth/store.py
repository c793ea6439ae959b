"""Encrypted file storage for OAuth tokens and client credentials.

Layout under the config directory:

    accounts/<safe-email>-<hash>.json   one token record per account
    oauth-clients.json                 provider name -> client id/secret

Only the secret fields (access token, refresh token, client secret) are
encrypted, each independently with SecretCipher; the rest of the record
stays readable so accounts can be listed without decrypting anything.

Each file is rewritten whole on every save. There is no cross-process
locking: two processes saving the same account concurrently means the
last writer wins.
"""

import hashlib
import json
import logging
import re
import stat
from pathlib import Path
from typing import Any

from ..config import DEFAULT_CONFIG_DIR
from .crypto import SecretCipher
from .errors import StoreCorruptedError
from .tokens import ClientCredential, StoredTokenRecord, utc_now_iso

logger = logging.getLogger(__name__)

# File names
ACCOUNTS_DIR = "accounts"
CLIENTS_FILE = "oauth-clients.json"

_UNSAFE_CHARS = re.compile(r"[^a-z0-9]")
_MAX_PREFIX = 64


def email_to_filename(email: str) -> str:
    """Convert an email to a filesystem-safe, collision-free file name.

    The readable prefix is lossy, so a digest of the normalized email keeps
    distinct accounts in distinct files.

    Example: ``User.Name@Gmail.com`` -> ``user_name_gmail_com-<16 hex>.json``
    """
    normalized = email.strip().lower()
    prefix = _UNSAFE_CHARS.sub("_", normalized)[:_MAX_PREFIX]
    digest = hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:16]
    return f"{prefix}-{digest}.json"


class TokenStore:
    """Per-account encrypted token records plus the client credential file.

    Usage:
        store = TokenStore(config_dir)
        store.save(record)
        record = store.load("user@gmail.com")
    """

    def __init__(self, config_dir: Path | None = None, cipher: SecretCipher | None = None):
        """Initialize token store.

        Args:
            config_dir: Storage directory (default ~/.config/email-oauth)
            cipher: Field cipher (default: machine-passphrase SecretCipher)
        """
        self.config_dir = config_dir or DEFAULT_CONFIG_DIR
        self.accounts_dir = self.config_dir / ACCOUNTS_DIR
        self.clients_file = self.config_dir / CLIENTS_FILE
        self._cipher = cipher or SecretCipher()

    def _ensure_dirs(self) -> None:
        """Create storage directories with owner-only permissions."""
        for directory in (self.config_dir, self.accounts_dir):
            if directory.exists():
                continue
            directory.mkdir(parents=True, exist_ok=True)
            try:
                directory.chmod(stat.S_IRWXU)
            except OSError as e:
                logger.warning(f"Could not set directory permissions on {directory}: {e}")

    def _write_json(self, filepath: Path, data: dict[str, Any]) -> None:
        """Write JSON through a temp file so readers never see a partial file."""
        self._ensure_dirs()
        temp_path = filepath.with_suffix(".tmp")
        try:
            temp_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
            try:
                temp_path.chmod(stat.S_IRUSR | stat.S_IWUSR)  # 0600
            except OSError as e:
                logger.warning(f"Could not set file permissions on {filepath}: {e}")
            temp_path.replace(filepath)
        except OSError:
            temp_path.unlink(missing_ok=True)
            raise

    def _account_path(self, email: str) -> Path:
        return self.accounts_dir / email_to_filename(email)

    def _belongs_to(self, filepath: Path, email: str) -> bool:
        """Check that an existing token file is not another account's.

        A file whose owner can't be read is attributed to the email its
        name was derived from, so corrupted records can still be reported
        and deleted.
        """
        try:
            raw = json.loads(filepath.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return True
        owner = raw.get("email") if isinstance(raw, dict) else None
        if not isinstance(owner, str) or not owner:
            return True
        return owner.strip().lower() == email.strip().lower()

    # Token operations

    def save(self, record: StoredTokenRecord) -> None:
        """Persist a token record, encrypting its secrets.

        Overwrites the whole file; callers updating a record should load,
        modify and save it rather than build a fresh one.

        Args:
            record: Decrypted record to store
        """
        data = record.to_dict()
        data["accessToken"] = self._cipher.encrypt(record.access_token)
        data["refreshToken"] = self._cipher.encrypt(record.refresh_token)
        data["updatedAt"] = utc_now_iso()

        filepath = self._account_path(record.email)
        if filepath.exists() and not self._belongs_to(filepath, record.email):
            raise StoreCorruptedError(
                f"Token file {filepath.name} belongs to another account",
                help_text=f"Remove {filepath} and re-authenticate.",
            )

        self._write_json(filepath, data)
        logger.debug(f"Stored tokens for {record.email}")

    def load(self, email: str) -> StoredTokenRecord | None:
        """Load and decrypt the token record for an account.

        Unreadable records (bad JSON, missing fields, failed decryption)
        are logged and reported as absent so callers fall through to
        re-authentication instead of crashing.

        Args:
            email: Account email

        Returns:
            Decrypted record, or None if missing or unreadable
        """
        filepath = self._account_path(email)
        if not filepath.exists():
            return None

        try:
            raw = json.loads(filepath.read_text(encoding="utf-8"))
            if not isinstance(raw, dict):
                raise StoreCorruptedError("Token file is not a JSON object")

            stored_email = str(raw.get("email", ""))
            if stored_email.lower() != email.strip().lower():
                logger.warning(
                    f"Token file {filepath.name} belongs to {stored_email}, not {email}"
                )
                return None

            raw["accessToken"] = self._cipher.decrypt(raw["accessToken"])
            raw["refreshToken"] = self._cipher.decrypt(raw["refreshToken"])
            return StoredTokenRecord.from_dict(raw)
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError, StoreCorruptedError) as e:
            logger.warning(f"Unreadable token record for {email}: {e}")
            return None

    def delete(self, email: str) -> bool:
        """Delete the token record for an account.

        Returns:
            True if a record was deleted, False if none existed
        """
        filepath = self._account_path(email)
        if not filepath.exists() or not self._belongs_to(filepath, email):
            return False

        filepath.unlink()
        logger.debug(f"Deleted tokens for {email}")
        return True

    def has(self, email: str) -> bool:
        """Check whether a token file exists for an account."""
        filepath = self._account_path(email)
        return filepath.exists() and self._belongs_to(filepath, email)

    def list_emails(self) -> list[str]:
        """List emails with stored token records.

        Files that cannot be parsed are skipped. Nothing is decrypted.

        Returns:
            Emails in file-name order
        """
        if not self.accounts_dir.exists():
            return []

        emails: list[str] = []
        for filepath in sorted(self.accounts_dir.glob("*.json")):
            try:
                raw = json.loads(filepath.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                logger.debug(f"Skipping unreadable token file {filepath.name}: {e}")
                continue
            email = raw.get("email") if isinstance(raw, dict) else None
            if isinstance(email, str) and email:
                emails.append(email)
        return emails

    # Client credential operations

    def _read_clients(self) -> dict[str, Any]:
        if not self.clients_file.exists():
            return {}
        try:
            data = json.loads(self.clients_file.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Client credential file is unreadable: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def save_client_credential(self, credential: ClientCredential) -> None:
        """Store client credentials for a provider, replacing any previous ones.

        Args:
            credential: Client id and plaintext secret
        """
        clients = self._read_clients()

        data = credential.to_dict()
        data["clientSecret"] = self._cipher.encrypt(credential.client_secret)
        clients[credential.provider] = data

        self._write_json(self.clients_file, clients)
        logger.debug(f"Stored client credentials for {credential.provider}")

    def load_client_credential(self, provider: str) -> ClientCredential | None:
        """Load client credentials for a provider.

        Args:
            provider: Provider name

        Returns:
            ClientCredential with decrypted secret, or None if missing or unreadable
        """
        entry = self._read_clients().get(provider)
        if not isinstance(entry, dict):
            return None

        try:
            entry = dict(entry)
            entry["clientSecret"] = self._cipher.decrypt(entry["clientSecret"])
            return ClientCredential.from_dict(entry)
        except (KeyError, TypeError, StoreCorruptedError) as e:
            logger.warning(f"Unreadable client credentials for {provider}: {e}")
            return None
