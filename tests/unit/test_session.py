"""
Unit tests for session state checks.
"""

import unittest
from unittest.mock import MagicMock

from lgtm.auth.credential_store import AuthCredential, AuthMethod, CredentialStore
from lgtm.auth.session import AuthSessionManager
from lgtm.config import GitHubConfig
from lgtm.errors import AuthError, ConfigError
from lgtm.github.api_client import GitHubApiClient, RemoteUser
from fakes import InMemoryKeyring, make_response, make_session, rate_headers

NOW = 1_700_000_000


class TestAuthSessionManager(unittest.TestCase):

    def setUp(self):
        self.store = CredentialStore(backend=InMemoryKeyring())
        self.flow = MagicMock()

    def make_manager(self, responses):
        self.session = make_session(responses)
        self.client = GitHubApiClient(self.store, GitHubConfig(), session=self.session, sleep=MagicMock())
        return AuthSessionManager(self.store, self.client, self.flow)

    def store_token(self, token="gho_stored"):
        self.store.save(AuthCredential(token=token, method=AuthMethod.BROWSER, username="octocat"))

    def test_not_authenticated_without_credential(self):
        manager = self.make_manager([])

        self.assertFalse(manager.is_authenticated())
        self.session.request.assert_not_called()

    def test_authenticated_when_token_accepted(self):
        self.store_token()
        manager = self.make_manager([make_response(200, {"login": "octocat"})])

        self.assertTrue(manager.is_authenticated())
        _, kwargs = self.session.request.call_args
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer gho_stored")

    def test_revoked_token_is_not_authenticated(self):
        self.store_token()
        manager = self.make_manager([make_response(401, {"message": "Bad credentials"})])

        self.assertFalse(manager.is_authenticated())

    def test_network_failure_is_not_authenticated(self):
        self.store_token()
        manager = self.make_manager([make_response(500) for _ in range(4)])

        self.assertFalse(manager.is_authenticated())

    def test_keyring_failure_is_not_authenticated(self):
        store = MagicMock()
        store.load.side_effect = ConfigError("keyring locked")
        manager = AuthSessionManager(store, MagicMock())

        self.assertFalse(manager.is_authenticated())

    def test_ensure_authenticated_returns_current_user(self):
        self.store_token()
        manager = self.make_manager([make_response(200, {"login": "octocat"})])

        self.assertEqual(manager.ensure_authenticated().login, "octocat")
        self.flow.login_with_browser.assert_not_called()

    def test_ensure_authenticated_runs_browser_login(self):
        self.flow.login_with_browser.return_value = RemoteUser(login="octocat")
        manager = self.make_manager([])

        self.assertEqual(manager.ensure_authenticated().login, "octocat")
        self.flow.login_with_browser.assert_called_once()

    def test_ensure_authenticated_without_flow(self):
        manager = AuthSessionManager(self.store, MagicMock())

        with self.assertRaises(AuthError):
            manager.ensure_authenticated()

    def test_logout(self):
        self.store_token()
        manager = self.make_manager([])

        self.assertTrue(manager.logout())
        self.assertIsNone(self.store.load())
        self.assertFalse(manager.is_authenticated())

    def test_logout_without_credential_succeeds(self):
        manager = self.make_manager([])
        self.assertTrue(manager.logout())

    def test_status_no_token(self):
        status = self.make_manager([]).get_status()

        self.assertEqual(status["status"], "NO_TOKEN")
        self.assertIsNone(status["username"])
        self.assertEqual(status["rate_limit"], {"known": False})

    def test_status_active(self):
        self.store_token()
        manager = self.make_manager([
            make_response(200, {"login": "octocat", "name": "The Octocat"}, headers=rate_headers(4999, NOW + 3600)),
        ])

        status = manager.get_status()

        self.assertEqual(status["status"], "ACTIVE")
        self.assertEqual(status["username"], "octocat")
        self.assertEqual(status["display_name"], "The Octocat")
        self.assertEqual(status["method"], "browser")
        self.assertEqual(status["rate_limit"]["remaining"], 4999)

    def test_status_rejected(self):
        self.store_token()
        manager = self.make_manager([make_response(401, {"message": "Bad credentials"})])

        status = manager.get_status()

        self.assertEqual(status["status"], "REJECTED")
        self.assertEqual(status["username"], "octocat")

    def test_status_unavailable(self):
        store = MagicMock()
        store.load.side_effect = ConfigError("keyring locked")
        client = MagicMock()
        client.rate_limiter.get_status.return_value = {"known": False}

        status = AuthSessionManager(store, client).get_status()

        self.assertEqual(status["status"], "UNAVAILABLE")
        self.assertEqual(status["error"], "keyring locked")


if __name__ == '__main__':
    unittest.main()
