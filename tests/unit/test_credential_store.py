"""
Unit tests for encrypted credential storage.
"""

import unittest
from unittest.mock import MagicMock

from keyring.backends import fail
from keyring.errors import KeyringError

from lgtm.auth.credential_store import AuthCredential, AuthMethod, CredentialStore
from lgtm.errors import ConfigError
from fakes import InMemoryKeyring


class TestCredentialStore(unittest.TestCase):

    def setUp(self):
        self.backend = InMemoryKeyring()
        self.store = CredentialStore(backend=self.backend)
        self.credential = AuthCredential(
            token="gho_secret_value", method=AuthMethod.BROWSER, username="octocat"
        )

    def test_round_trip(self):
        self.store.save(self.credential)
        self.assertEqual(self.store.load(), self.credential)
        self.assertTrue(self.store.is_persistent)

    def test_load_without_credential(self):
        self.assertIsNone(self.store.load())

    def test_record_is_encrypted(self):
        self.store.save(self.credential)

        stored = self.backend.passwords[("lgtm-cli", "github")]
        self.assertNotIn("gho_secret_value", stored)
        self.assertNotIn("octocat", stored)

    def test_save_replaces_previous(self):
        self.store.save(self.credential)
        replacement = AuthCredential(token="ghp_other", method=AuthMethod.TOKEN, username="hubot")
        self.store.save(replacement)

        self.assertEqual(self.store.load(), replacement)
        self.assertEqual(len(self.backend.passwords), 1)

    def test_clear_is_idempotent(self):
        self.store.save(self.credential)

        self.assertTrue(self.store.clear())
        self.assertTrue(self.store.clear())
        self.assertIsNone(self.store.load())

    def test_write_failure_raises_config_error(self):
        self.backend.set_password = MagicMock(side_effect=KeyringError("locked"))

        with self.assertRaises(ConfigError) as ctx:
            self.store.save(self.credential)

        self.assertIn("locked", ctx.exception.message)

    def test_read_failure_raises_config_error(self):
        self.backend.get_password = MagicMock(side_effect=KeyringError("dbus gone"))

        with self.assertRaises(ConfigError):
            self.store.load()

    def test_delete_failure_returns_false(self):
        self.backend.delete_password = MagicMock(side_effect=KeyringError("denied"))
        self.assertFalse(self.store.clear())

    def test_unreadable_record_is_ignored(self):
        self.backend.passwords[("lgtm-cli", "github")] = "not-a-fernet-token"

        with self.assertLogs("lgtm.auth.credential_store", level="WARNING"):
            self.assertIsNone(self.store.load())

    def test_record_from_other_service_name_cannot_be_read(self):
        CredentialStore(backend=self.backend, service_name="other").save(self.credential)
        self.assertIsNone(self.store.load())

    def test_token_not_in_repr(self):
        self.assertNotIn("gho_secret_value", repr(self.credential))
        self.assertIn("octocat", repr(self.credential))


class TestUnavailableBackend(unittest.TestCase):

    def test_fail_backend_without_fallback(self):
        store = CredentialStore(backend=fail.Keyring())
        credential = AuthCredential(token="t", method=AuthMethod.TOKEN)

        self.assertFalse(store.is_persistent)
        with self.assertRaises(ConfigError):
            store.save(credential)
        with self.assertRaises(ConfigError):
            store.load()
        self.assertFalse(store.clear())

    def test_memory_fallback(self):
        with self.assertLogs("lgtm.auth.credential_store", level="WARNING") as logs:
            store = CredentialStore(backend=fail.Keyring(), memory_fallback=True)

        self.assertTrue(any("will not survive a restart" in line for line in logs.output))
        self.assertFalse(store.is_persistent)

        credential = AuthCredential(token="t", method=AuthMethod.TOKEN, username="octocat")
        store.save(credential)
        self.assertEqual(store.load(), credential)
        self.assertTrue(store.clear())
        self.assertIsNone(store.load())


if __name__ == '__main__':
    unittest.main()
