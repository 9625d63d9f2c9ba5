"""
GitHub device code flow.
Shows a one-time code, waits for the user, then polls the token endpoint
with adaptive backoff until GitHub issues an access token.
"""

import time
import logging
import threading
import webbrowser
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import click
import requests

from lgtm.auth.credential_store import AuthCredential, AuthMethod, CredentialStore
from lgtm.config import GitHubConfig
from lgtm.errors import AuthError, LgtmError, ValidationError
from lgtm.github.api_client import GitHubApiClient, RemoteUser


logger = logging.getLogger(__name__)

DEVICE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"


class FlowState(Enum):
    IDLE = "idle"
    CODE_REQUESTED = "code_requested"
    AWAITING_USER_ACTION = "awaiting_user_action"
    POLLING = "polling"
    VALIDATED = "validated"
    EXPIRED = "expired"
    DENIED = "denied"
    FAILED = "failed"


@dataclass
class DeviceCode:
    """Device authorization response."""
    device_code: str
    user_code: str
    verification_uri: str
    expires_in: int = 900
    interval: int = 5


def _positive_int(value, default: int) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        if value is not None:
            logger.warning(f"Ignoring malformed device code value {value!r}, using {default}")
        return default
    return parsed if parsed > 0 else default


def _wait_for_keypress():
    click.pause(info="Press any key to open github.com in your browser...")


class DeviceCodeFlow:
    """Device authorization grant against GitHub, plus token login."""

    INITIAL_INTERVAL = 5.0
    MAX_INTERVAL = 30.0
    BACKOFF_FACTOR = 1.5
    MAX_ATTEMPTS = 30

    def __init__(
        self,
        api_client: GitHubApiClient,
        credential_store: CredentialStore,
        config: Optional[GitHubConfig] = None,
        session: Optional[requests.Session] = None,
        output: Callable[[str], None] = click.echo,
        wait_for_user: Callable[[], None] = _wait_for_keypress,
        open_browser: Callable[[str], bool] = webbrowser.open,
        sleep: Callable[[float], None] = time.sleep,
        max_attempts: int = MAX_ATTEMPTS,
        initial_interval: float = INITIAL_INTERVAL
    ):
        """
        Initialize device code flow.

        Args:
            api_client: Client used to validate the obtained token
            credential_store: Where a validated credential is saved
            config: Client id, scope and web base URL
            session: HTTP session for the OAuth endpoints
            output: Sink for user-facing messages
            wait_for_user: Blocks until the user is ready to continue
            open_browser: Opens the verification page
            sleep: Poll interval sleep function
            max_attempts: Poll ceiling before giving up
            initial_interval: First poll interval in seconds
        """
        self.api_client = api_client
        self.credential_store = credential_store
        self.config = config or api_client.config
        self.session = session or requests.Session()
        self.output = output
        self.wait_for_user = wait_for_user
        self.open_browser = open_browser
        self.max_attempts = max_attempts
        self.initial_interval = initial_interval
        self._sleep = sleep
        self._cancelled = threading.Event()
        self.state = FlowState.IDLE
        self.interval = initial_interval

    def _set_state(self, state: FlowState):
        logger.debug(f"Device flow: {self.state.value} -> {state.value}")
        self.state = state

    def _fail(self, state: FlowState, message: str) -> AuthError:
        self._set_state(state)
        logger.error(f"Device flow ended ({state.value}): {message}")
        return AuthError(message, context={"flow_state": state.value})

    def cancel(self):
        """Stop an in-progress poll before its next attempt."""
        self._cancelled.set()

    def initiate_flow(self) -> DeviceCode:
        """
        Request a device and user code from GitHub.

        Raises:
            AuthError: If GitHub does not issue a code (not retried)
        """
        self._cancelled.clear()
        self._set_state(FlowState.IDLE)
        logger.info("Initiating device code flow")

        try:
            response = self.session.post(
                f"{self.config.web_base_url}/login/device/code",
                json={"client_id": self.config.client_id, "scope": self.config.scope},
                headers={"Accept": "application/json"},
                timeout=self.config.request_timeout
            )
            response.raise_for_status()
            data = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            raise self._fail(FlowState.FAILED, "Failed to create device code flow") from e

        if not isinstance(data, dict) or not all(
            data.get(key) for key in ("device_code", "user_code", "verification_uri")
        ):
            error = data.get("error_description") or data.get("error") if isinstance(data, dict) else None
            raise self._fail(
                FlowState.FAILED,
                f"Failed to create device code flow: {error or 'incomplete response'}"
            )

        code = DeviceCode(
            device_code=data["device_code"],
            user_code=data["user_code"],
            verification_uri=data["verification_uri"],
            expires_in=_positive_int(data.get("expires_in"), 900),
            interval=_positive_int(data.get("interval"), 5),
        )
        self._set_state(FlowState.CODE_REQUESTED)
        logger.info(f"Device flow initiated. User code: {code.user_code}")
        return code

    def _back_off(self, interval: float) -> float:
        return min(interval * self.BACKOFF_FACTOR, self.MAX_INTERVAL)

    def poll_for_token(self, code: DeviceCode) -> str:
        """
        Poll the token endpoint until GitHub issues a token.

        Args:
            code: Device code from initiate_flow()

        Returns:
            Access token

        Raises:
            AuthError: On expiry, denial, cancellation or attempt exhaustion
        """
        self._set_state(FlowState.POLLING)
        interval = max(float(self.initial_interval), float(code.interval or 0))
        url = f"{self.config.web_base_url}/login/oauth/access_token"
        body = {
            "client_id": self.config.client_id,
            "device_code": code.device_code,
            "grant_type": DEVICE_GRANT_TYPE,
        }

        for attempt in range(1, self.max_attempts + 1):
            if self._cancelled.is_set():
                raise self._fail(FlowState.FAILED, "Authentication cancelled")

            self.interval = interval
            self._sleep(interval)
            logger.debug(f"Token poll {attempt}/{self.max_attempts} after {interval:.1f}s")

            try:
                response = self.session.post(
                    url,
                    json=body,
                    headers={"Accept": "application/json"},
                    timeout=self.config.request_timeout
                )
            except requests.exceptions.RequestException as e:
                # network blips must not abort a user-driven flow
                interval = self._back_off(interval)
                logger.warning(f"Token poll failed ({e}), next poll in {interval:.1f}s")
                continue

            if response.status_code == 429:
                interval = self._back_off(interval)
                logger.warning(f"Token endpoint throttled, next poll in {interval:.1f}s")
                continue

            try:
                data = response.json()
            except ValueError:
                interval = self._back_off(interval)
                logger.warning(
                    f"Unreadable token response (HTTP {response.status_code}), "
                    f"next poll in {interval:.1f}s"
                )
                continue
            if not isinstance(data, dict):
                data = {}

            if data.get("access_token"):
                logger.info("Token acquired successfully")
                return data["access_token"]

            error = data.get("error")
            if error == "authorization_pending":
                logger.debug("Authorization pending, waiting...")
            elif error == "slow_down":
                interval = self._back_off(interval)
                self.output(f"GitHub asked to slow down, checking every {interval:.0f} seconds")
            elif error == "expired_token":
                raise self._fail(FlowState.EXPIRED, "Device code expired. Please log in again.")
            elif error == "access_denied":
                raise self._fail(FlowState.DENIED, "Authorization was denied")
            elif error:
                description = data.get("error_description") or error
                self.output(f"Still waiting for authorization: {description}")
                logger.info(f"Token poll returned {error}, continuing")
            else:
                interval = self._back_off(interval)
                logger.warning(
                    f"Token response without token or error (HTTP {response.status_code})"
                )

        raise self._fail(FlowState.FAILED, "Authentication timed out or was rejected")

    def _open_verification_page(self, uri: str):
        try:
            opened = self.open_browser(uri)
        except Exception as e:
            logger.warning(f"Could not open browser: {e}")
            opened = False
        if not opened:
            self.output(f"Open {uri} in your browser to continue.")

    def _validate_and_save(self, token: str, method: AuthMethod) -> RemoteUser:
        try:
            user = self.api_client.get_authenticated_user(token=token)
        except LgtmError as e:
            logger.warning(f"Token validation failed: {e}")
            raise self._fail(FlowState.FAILED, "Invalid token") from e

        self._set_state(FlowState.VALIDATED)
        self.credential_store.save(
            AuthCredential(token=token, method=method, username=user.login)
        )
        self.api_client.reset_session()
        logger.info(f"Authenticated as {user.login} via {method.value}")
        return user

    def login_with_browser(self) -> RemoteUser:
        """
        Complete the interactive device flow.

        Returns:
            The authenticated GitHub user
        """
        code = self.initiate_flow()

        self._set_state(FlowState.AWAITING_USER_ACTION)
        self.output(f"! First copy your one-time code: {code.user_code}")
        self.wait_for_user()

        self._open_verification_page(code.verification_uri)
        self.output("Waiting for authentication...")
        token = self.poll_for_token(code)

        return self._validate_and_save(token, AuthMethod.BROWSER)

    def login_with_token(self, token: str) -> RemoteUser:
        """
        Validate and store a personal access token.

        Raises:
            ValidationError: If the token is blank
            AuthError: If GitHub does not accept the token
        """
        token = (token or "").strip()
        if not token:
            raise ValidationError("Token is required")
        self._cancelled.clear()
        self._set_state(FlowState.IDLE)
        return self._validate_and_save(token, AuthMethod.TOKEN)
