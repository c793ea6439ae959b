"""Tests for encrypted token storage."""

import json
import stat
import sys
from dataclasses import replace
from pathlib import Path

import pytest

from email_oauth.oauth.crypto import SecretCipher
from email_oauth.oauth.errors import StoreCorruptedError
from email_oauth.oauth.store import TokenStore, email_to_filename
from email_oauth.oauth.tokens import ClientCredential, StoredTokenRecord


class TestEmailToFilename:
    """Tests for account file naming."""

    @pytest.mark.parametrize(
        "email,prefix",
        [
            ("user@gmail.com", "user_gmail_com-"),
            ("User.Name@Gmail.COM", "user_name_gmail_com-"),
            ("a+tag@outlook.com", "a_tag_outlook_com-"),
            ("../../etc/passwd@x.com", "______etc_passwd_x_com-"),
        ],
    )
    def test_safe_names(self, email: str, prefix: str) -> None:
        """Test that the readable part has no path separators."""
        name = email_to_filename(email)

        assert name.startswith(prefix)
        assert name.endswith(".json")
        assert "/" not in name
        assert len(name) == len(prefix) + 16 + len(".json")

    def test_case_and_whitespace_insensitive(self) -> None:
        """Test that one account always maps to one file."""
        assert email_to_filename(" User@Gmail.com ") == email_to_filename("user@gmail.com")

    def test_similar_emails_get_distinct_files(self) -> None:
        """Test that emails differing only in punctuation don't share a file."""
        emails = ["a.b@gmail.com", "a+b@gmail.com", "a-b@gmail.com", "a_b@gmail.com", "a.b.gmail@com"]
        assert len({email_to_filename(e) for e in emails}) == len(emails)

    def test_long_email_prefix_is_bounded(self) -> None:
        """Test that very long addresses still give short file names."""
        assert len(email_to_filename("x" * 300 + "@gmail.com")) <= 64 + 1 + 16 + len(".json")


class TestTokenStore:
    """Tests for token record persistence."""

    def test_save_and_load(self, temp_store: TokenStore, fresh_record: StoredTokenRecord) -> None:
        """Test storing and retrieving a record."""
        temp_store.save(fresh_record)
        loaded = temp_store.load(fresh_record.email)

        assert loaded is not None
        assert loaded.access_token == fresh_record.access_token
        assert loaded.refresh_token == fresh_record.refresh_token
        assert loaded.token_expiry == fresh_record.token_expiry
        assert loaded.scopes == fresh_record.scopes
        assert loaded.provider == "google"

    def test_load_is_case_insensitive(self, temp_store: TokenStore, fresh_record: StoredTokenRecord) -> None:
        """Test that lookups ignore email case."""
        temp_store.save(fresh_record)
        assert temp_store.load("USER@Gmail.com") is not None

    def test_secrets_encrypted_on_disk(self, temp_store: TokenStore, fresh_record: StoredTokenRecord) -> None:
        """Test that tokens never appear in plaintext in the file."""
        temp_store.save(fresh_record)
        raw_text = (temp_store.accounts_dir / email_to_filename("user@gmail.com")).read_text()
        raw = json.loads(raw_text)

        assert "AT0" not in raw_text
        assert "RT0" not in raw_text
        assert raw["accessToken"].count(":") == 3
        assert raw["email"] == "user@gmail.com"
        assert raw["tokenExpiry"] == fresh_record.token_expiry

    def test_empty_refresh_token_round_trips(self, temp_store: TokenStore, fresh_record: StoredTokenRecord) -> None:
        """Test that a record without a refresh token stays without one."""
        fresh_record.refresh_token = ""
        temp_store.save(fresh_record)

        loaded = temp_store.load(fresh_record.email)
        assert loaded is not None
        assert not loaded.has_refresh_token()

    def test_load_missing_returns_none(self, temp_store: TokenStore) -> None:
        """Test loading an account that was never stored."""
        assert temp_store.load("nobody@gmail.com") is None

    def test_load_corrupted_json_returns_none(self, temp_store: TokenStore, fresh_record: StoredTokenRecord) -> None:
        """Test that an unparseable file reads as absent."""
        temp_store.save(fresh_record)
        (temp_store.accounts_dir / email_to_filename("user@gmail.com")).write_text("{ not json")

        assert temp_store.load(fresh_record.email) is None

    def test_load_tampered_token_returns_none(self, temp_store: TokenStore, fresh_record: StoredTokenRecord) -> None:
        """Test that a token that fails to decrypt reads as absent."""
        temp_store.save(fresh_record)
        path = temp_store.accounts_dir / email_to_filename("user@gmail.com")
        raw = json.loads(path.read_text())
        raw["accessToken"] = "00:11:22:33"
        path.write_text(json.dumps(raw))

        assert temp_store.load(fresh_record.email) is None

    def test_other_machine_key_returns_none(self, temp_store: TokenStore, fresh_record: StoredTokenRecord) -> None:
        """Test that records written under another key are unreadable."""
        temp_store.save(fresh_record)
        other = TokenStore(temp_store.config_dir, SecretCipher(passphrase="elsewhere", n=2**4))

        assert other.load(fresh_record.email) is None

    def test_save_overwrites(self, temp_store: TokenStore, fresh_record: StoredTokenRecord) -> None:
        """Test that saving again replaces the record."""
        temp_store.save(fresh_record)
        fresh_record.access_token = "AT_NEXT"
        temp_store.save(fresh_record)

        loaded = temp_store.load(fresh_record.email)
        assert loaded is not None
        assert loaded.access_token == "AT_NEXT"
        assert not list(temp_store.accounts_dir.glob("*.tmp"))

    def test_delete(self, temp_store: TokenStore, fresh_record: StoredTokenRecord) -> None:
        """Test deleting a record."""
        temp_store.save(fresh_record)

        assert temp_store.delete(fresh_record.email) is True
        assert temp_store.load(fresh_record.email) is None
        assert not temp_store.has(fresh_record.email)

    def test_delete_missing(self, temp_store: TokenStore) -> None:
        """Test deleting an account that was never stored."""
        assert temp_store.delete("nobody@gmail.com") is False

    def test_similar_accounts_are_isolated(self, temp_store: TokenStore, fresh_record: StoredTokenRecord) -> None:
        """Test that accounts with near-identical addresses keep separate records."""
        dotted = replace(fresh_record, email="a.b@gmail.com", access_token="AT_DOT")
        plus = replace(fresh_record, email="a+b@gmail.com", access_token="AT_PLUS")
        temp_store.save(dotted)
        temp_store.save(plus)

        assert temp_store.load("a.b@gmail.com").access_token == "AT_DOT"
        assert temp_store.load("a+b@gmail.com").access_token == "AT_PLUS"
        assert not temp_store.has("a_b@gmail.com")
        assert temp_store.delete("a_b@gmail.com") is False
        assert temp_store.has("a.b@gmail.com")

        assert temp_store.delete("a+b@gmail.com") is True
        assert temp_store.load("a.b@gmail.com") is not None

    def test_file_of_another_account_is_left_alone(
        self, temp_store: TokenStore, fresh_record: StoredTokenRecord
    ) -> None:
        """Test that a file naming a different owner is never read, replaced or removed."""
        temp_store.save(replace(fresh_record, email="other@gmail.com"))
        path = temp_store.accounts_dir / email_to_filename("other@gmail.com")
        squatted = temp_store.accounts_dir / email_to_filename(fresh_record.email)
        path.rename(squatted)
        before = squatted.read_text()

        assert temp_store.load(fresh_record.email) is None
        assert not temp_store.has(fresh_record.email)
        assert temp_store.delete(fresh_record.email) is False
        with pytest.raises(StoreCorruptedError):
            temp_store.save(fresh_record)
        assert squatted.read_text() == before

    def test_unreadable_file_can_be_deleted(self, temp_store: TokenStore, fresh_record: StoredTokenRecord) -> None:
        """Test that a corrupted record still counts as this account's and can be removed."""
        temp_store.save(fresh_record)
        (temp_store.accounts_dir / email_to_filename(fresh_record.email)).write_bytes(b"\xff\xfe\x00garbage")

        assert temp_store.load(fresh_record.email) is None
        assert temp_store.has(fresh_record.email)
        assert temp_store.delete(fresh_record.email) is True

    def test_failed_write_leaves_no_temp_file(
        self, temp_store: TokenStore, fresh_record: StoredTokenRecord, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test that a failed rename cleans up and re-raises."""

        def fail_replace(self: Path, target: Path) -> None:
            raise OSError("disk full")

        monkeypatch.setattr(Path, "replace", fail_replace)

        with pytest.raises(OSError, match="disk full"):
            temp_store.save(fresh_record)
        assert not list(temp_store.accounts_dir.glob("*.tmp"))

    def test_list_emails(self, temp_store: TokenStore, fresh_record: StoredTokenRecord) -> None:
        """Test listing accounts without decrypting."""
        temp_store.save(fresh_record)
        temp_store.save(
            StoredTokenRecord(
                email="someone@outlook.com",
                provider="microsoft",
                access_token="A",
                refresh_token="R",
                token_expiry=0,
            )
        )
        (temp_store.accounts_dir / "broken.json").write_text("not json")

        assert sorted(temp_store.list_emails()) == ["someone@outlook.com", "user@gmail.com"]

    def test_list_emails_skips_undecodable_file(self, temp_store: TokenStore, fresh_record: StoredTokenRecord) -> None:
        """Test that a file with invalid UTF-8 is skipped, not fatal."""
        temp_store.save(fresh_record)
        (temp_store.accounts_dir / "junk.json").write_bytes(b"\xff\xfe\x00garbage")

        assert temp_store.list_emails() == ["user@gmail.com"]

    def test_list_emails_empty(self, temp_store: TokenStore) -> None:
        """Test listing before anything was stored."""
        assert temp_store.list_emails() == []

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_permissions(self, temp_store: TokenStore, fresh_record: StoredTokenRecord) -> None:
        """Test owner-only permissions on directories and files."""
        temp_store.save(fresh_record)

        assert stat.S_IMODE(temp_store.config_dir.stat().st_mode) == 0o700
        assert stat.S_IMODE(temp_store.accounts_dir.stat().st_mode) == 0o700
        record_file = temp_store.accounts_dir / email_to_filename("user@gmail.com")
        assert stat.S_IMODE(record_file.stat().st_mode) == 0o600


class TestClientCredentials:
    """Tests for client credential persistence."""

    def test_save_and_load(self, temp_store: TokenStore) -> None:
        """Test storing and retrieving client credentials."""
        temp_store.save_client_credential(ClientCredential("google", "cid", "csecret"))
        loaded = temp_store.load_client_credential("google")

        assert loaded == ClientCredential("google", "cid", "csecret")

    def test_secret_encrypted_on_disk(self, temp_store: TokenStore) -> None:
        """Test that the client secret is encrypted and the id is not."""
        temp_store.save_client_credential(ClientCredential("google", "cid", "csecret"))
        raw = json.loads(temp_store.clients_file.read_text())

        assert raw["google"]["clientId"] == "cid"
        assert raw["google"]["clientSecret"] != "csecret"

    def test_providers_kept_separately(self, temp_store: TokenStore) -> None:
        """Test that saving one provider keeps the other."""
        temp_store.save_client_credential(ClientCredential("google", "g-id", "g-secret"))
        temp_store.save_client_credential(ClientCredential("microsoft", "m-id", "m-secret"))
        temp_store.save_client_credential(ClientCredential("google", "g-id2", "g-secret2"))

        assert temp_store.load_client_credential("google").client_id == "g-id2"
        assert temp_store.load_client_credential("microsoft").client_secret == "m-secret"

    def test_load_missing(self, temp_store: TokenStore) -> None:
        """Test loading credentials that were never stored."""
        assert temp_store.load_client_credential("google") is None

    def test_corrupted_file(self, temp_store: TokenStore) -> None:
        """Test that an unreadable clients file reads as empty."""
        temp_store.config_dir.mkdir(parents=True)
        temp_store.clients_file.write_text("[[[")

        assert temp_store.load_client_credential("google") is None

    def test_undecodable_file(self, temp_store: TokenStore) -> None:
        """Test that a clients file with invalid UTF-8 reads as empty."""
        temp_store.config_dir.mkdir(parents=True)
        temp_store.clients_file.write_bytes(b"\xff\xfe\x00garbage")

        assert temp_store.load_client_credential("google") is None

    def test_undecodable_file_replaced_on_save(self, temp_store: TokenStore) -> None:
        """Test that saving over an undecodable clients file recovers it."""
        temp_store.config_dir.mkdir(parents=True)
        temp_store.clients_file.write_bytes(b"\xff\xfe\x00garbage")

        temp_store.save_client_credential(ClientCredential("google", "cid", "csecret"))
        assert temp_store.load_client_credential("google").client_secret == "csecret"
