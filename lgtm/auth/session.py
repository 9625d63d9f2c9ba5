"""
Authentication session state.
A stored credential only counts as a login if GitHub still accepts it.
"""

import logging
from typing import Any, Dict, Optional

from lgtm.auth.credential_store import CredentialStore
from lgtm.auth.device_code_flow import DeviceCodeFlow
from lgtm.errors import AuthError, LgtmError
from lgtm.github.api_client import NOT_AUTHENTICATED, GitHubApiClient, RemoteUser


logger = logging.getLogger(__name__)


class AuthSessionManager:
    """
    Answers "who is logged in" by combining the credential store with one
    identity request. A revoked token looks exactly like no login.
    """

    def __init__(
        self,
        credential_store: CredentialStore,
        api_client: GitHubApiClient,
        device_flow: Optional[DeviceCodeFlow] = None
    ):
        self.credential_store = credential_store
        self.api_client = api_client
        self.device_flow = device_flow

    def current_user(self) -> Optional[RemoteUser]:
        """
        Get the user behind the stored credential.

        Returns:
            RemoteUser, or None if not logged in or the token was rejected
        """
        try:
            credential = self.credential_store.load()
        except LgtmError as e:
            logger.error(f"Could not read stored credential: {e}")
            return None

        if credential is None:
            return None

        try:
            return self.api_client.get_authenticated_user()
        except LgtmError as e:
            logger.debug(f"Stored credential not accepted: {e}")
            return None

    def is_authenticated(self) -> bool:
        """True if a stored credential exists and GitHub accepts it. Never raises."""
        return self.current_user() is not None

    def ensure_authenticated(self) -> RemoteUser:
        """
        Return the current user, running the browser login on first use.

        Raises:
            AuthError: If not logged in and no device flow is available
        """
        user = self.current_user()
        if user is not None:
            return user
        if self.device_flow is None:
            raise AuthError(NOT_AUTHENTICATED)
        logger.info("No usable credential, starting browser login")
        return self.device_flow.login_with_browser()

    def logout(self) -> bool:
        """Remove the stored credential. Succeeds when nothing was stored."""
        cleared = self.credential_store.clear()
        self.api_client.reset_session()
        if cleared:
            logger.info("Logged out")
        return cleared

    def get_status(self) -> Dict[str, Any]:
        """
        Get current session status for display.

        Returns:
            Status dict with login state, user and rate limit info
        """
        status: Dict[str, Any] = {
            "status": "NO_TOKEN",
            "username": None,
            "display_name": None,
            "method": None,
            "rate_limit": self.api_client.rate_limiter.get_status(),
        }
        try:
            credential = self.credential_store.load()
        except LgtmError as e:
            status["status"] = "UNAVAILABLE"
            status["error"] = str(e)
            return status

        if credential is None:
            return status

        status["method"] = credential.method.value
        status["username"] = credential.username
        user = self.current_user()
        if user is None:
            status["status"] = "REJECTED"
            return status

        status["status"] = "ACTIVE"
        status["username"] = user.login
        status["display_name"] = user.display_name
        status["rate_limit"] = self.api_client.rate_limiter.get_status()
        return status
