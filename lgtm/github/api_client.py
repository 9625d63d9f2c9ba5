"""
GitHub REST client with rate limit tracking, retry with exponential backoff
and typed error classification. Every GitHub API call goes through request().
"""

import re
import time
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Tuple
from urllib.parse import quote

import requests

from lgtm import __version__
from lgtm.config import GitHubConfig
from lgtm.errors import (
    AuthError,
    LgtmError,
    RateLimitError,
    RepositoryError,
    ValidationError,
    classify,
    rate_limit_message,
)
from lgtm.github.rate_limiter import RateLimitState, RateLimitTracker


logger = logging.getLogger(__name__)

ROUTE_PLACEHOLDER = re.compile(r"\{(\w+)\}")
QUERY_METHODS = {"GET", "HEAD", "DELETE"}
NOT_AUTHENTICATED = "Not authenticated. Please run `lgtm auth login` first."


@dataclass
class RemoteUser:
    """GitHub identity behind a token."""
    login: str
    avatar_url: str = ""
    display_name: Optional[str] = None

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> "RemoteUser":
        return cls(
            login=data["login"],
            avatar_url=data.get("avatar_url") or "",
            display_name=data.get("name"),
        )


def expand_route(
    route: str,
    params: Optional[Mapping[str, Any]] = None
) -> Tuple[str, str, Dict[str, Any]]:
    """
    Split an "METHOD /path/{name}" route and fill its placeholders.

    Args:
        route: Route such as "GET /repos/{owner}/{repo}/pulls"
        params: Placeholder values plus query/body parameters

    Returns:
        (method, path, remaining params)

    Raises:
        ValidationError: If a placeholder has no value
    """
    parts = route.strip().split(None, 1)
    if len(parts) == 2:
        method, path = parts[0].upper(), parts[1]
    else:
        method, path = "GET", parts[0]

    remaining = {k: v for k, v in (params or {}).items() if v is not None}

    def substitute(match):
        name = match.group(1)
        if name not in remaining:
            raise ValidationError(f"Missing route parameter '{name}' for {route}")
        return quote(str(remaining.pop(name)), safe="")

    path = ROUTE_PLACEHOLDER.sub(substitute, path)
    if not path.startswith("/"):
        path = "/" + path
    return method, path, remaining


class GitHubApiClient:
    """
    Single choke point for authenticated GitHub API calls.

    Consults the rate limit tracker before sending, retries 5xx responses
    with exponential backoff, updates the tracker from every response and
    raises exactly one LgtmError on failure.
    """

    DEFAULT_ACCEPT = "application/vnd.github+json"
    API_VERSION = "2022-11-28"
    BACKOFF_BASE_SECONDS = 1.0

    def __init__(
        self,
        credential_store,
        config: Optional[GitHubConfig] = None,
        rate_limiter: Optional[RateLimitTracker] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize GitHub API client.

        Args:
            credential_store: Store the session token is loaded from
            config: Endpoints and retry settings
            rate_limiter: Shared quota tracker
            session: HTTP session (created if omitted)
            sleep: Backoff sleep function
            clock: Epoch-seconds clock
        """
        self.credential_store = credential_store
        self.config = config or GitHubConfig()
        self.rate_limiter = rate_limiter or RateLimitTracker(clock=clock)
        self._sleep = sleep
        self._clock = clock
        self._token: Optional[str] = None

        self.session = session or requests.Session()
        self.session.headers["Accept"] = self.DEFAULT_ACCEPT
        self.session.headers["X-GitHub-Api-Version"] = self.API_VERSION
        self.session.headers["User-Agent"] = f"lgtm-cli/{__version__}"

    def _session_token(self) -> str:
        if self._token is None:
            credential = self.credential_store.load()
            if credential is None:
                raise AuthError(NOT_AUTHENTICATED)
            self._token = credential.token
            logger.debug(f"Loaded stored credential for {credential.username or 'unknown user'}")
        return self._token

    def reset_session(self):
        """Drop the cached token so the next request reloads it."""
        self._token = None

    def request(
        self,
        route: str,
        params: Optional[Mapping[str, Any]] = None,
        *,
        retry: bool = True,
        max_retries: Optional[int] = None,
        headers: Optional[Mapping[str, str]] = None,
        token: Optional[str] = None
    ) -> Any:
        """
        Make a GitHub API request.

        Args:
            route: "METHOD /path/{placeholder}" route
            params: Placeholder values plus query string or JSON body
            retry: Retry 5xx responses
            max_retries: Retry ceiling (default: config.max_retry_count)
            headers: Extra request headers
            token: Use this token instead of the stored credential. Its quota
                is tracked separately from the stored account's.

        Returns:
            Parsed JSON, response text for non-JSON media types, or None

        Raises:
            LgtmError: Exactly one typed error on failure
        """
        if token is None:
            auth_token = self._session_token()
            tracker = self.rate_limiter
        else:
            auth_token = token
            tracker = RateLimitTracker(clock=self._clock)

        now = self._clock()
        if tracker.is_exhausted(now):
            reset_at = tracker.state.reset_at
            logger.warning(f"Skipping {route}: rate limit exhausted until {reset_at}")
            raise RateLimitError(
                rate_limit_message(reset_at, now), reset_at, context={"route": route}
            )

        method, path, remaining = expand_route(route, params)
        limit = self.config.max_retry_count if max_retries is None else max(0, max_retries)
        attempt = 0

        while True:
            logger.debug(f"{method} {path} (attempt {attempt + 1}/{limit + 1})")
            try:
                response = self._send(method, path, remaining, auth_token, headers)
                tracker.update(response.headers)
                response.raise_for_status()
                return self._parse_payload(response)

            except requests.exceptions.HTTPError as e:
                error = classify(e, tracker, now=self._clock())
                error.context.setdefault("route", f"{method} {path}")
                status = e.response.status_code if e.response is not None else 0

                if isinstance(error, RateLimitError):
                    logger.warning(f"Rate limited on {method} {path}, resets at {error.reset_at}")
                    raise error from e

                if retry and 500 <= status < 600 and attempt < limit:
                    delay = self.BACKOFF_BASE_SECONDS * (2 ** attempt)
                    logger.warning(
                        f"Server error {status} on {method} {path}, "
                        f"retrying in {delay:.0f}s (retry {attempt + 1}/{limit})"
                    )
                    self._sleep(delay)
                    attempt += 1
                    continue

                if isinstance(error, AuthError) and token is None:
                    self.reset_session()
                logger.error(f"{method} {path} failed: {error}")
                raise error from e

            except (requests.exceptions.RequestException, ValueError) as e:
                error = classify(e, tracker, now=self._clock())
                error.context.setdefault("route", f"{method} {path}")
                logger.error(f"{method} {path} failed: {error}")
                raise error from e

    def _send(
        self,
        method: str,
        path: str,
        params: Dict[str, Any],
        token: str,
        headers: Optional[Mapping[str, str]]
    ) -> requests.Response:
        request_headers = {"Authorization": f"Bearer {token}"}
        if headers:
            request_headers.update(headers)

        kwargs: Dict[str, Any] = {
            "headers": request_headers,
            "timeout": self.config.request_timeout,
        }
        if method in QUERY_METHODS:
            if params:
                kwargs["params"] = params
        elif params:
            kwargs["json"] = params

        return self.session.request(method, f"{self.config.api_base_url}{path}", **kwargs)

    @staticmethod
    def _parse_payload(response: requests.Response) -> Any:
        if response.status_code == 204 or not response.content:
            return None
        content_type = response.headers.get("Content-Type", "")
        if "json" in content_type:
            return response.json()
        return response.text

    def get_authenticated_user(self, token: Optional[str] = None) -> RemoteUser:
        """Look up the identity behind the given (or stored) token."""
        data = self.request("GET /user", token=token)
        try:
            return RemoteUser.from_api(data)
        except (KeyError, TypeError) as e:
            raise RepositoryError("Unexpected response from GET /user") from e

    def fetch_rate_limit(self) -> RateLimitState:
        """Fetch the core quota explicitly and refresh the tracker."""
        data = self.request("GET /rate_limit", retry=False)
        try:
            core = data["resources"]["core"]
            state = RateLimitState(
                limit=int(core["limit"]),
                remaining=int(core["remaining"]),
                reset_at=int(core["reset"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise RepositoryError("Unexpected response from GET /rate_limit") from e
        self.rate_limiter.refresh(state)
        return state

    def get_rate_limit_info(self) -> Optional[RateLimitState]:
        return self.rate_limiter.state
