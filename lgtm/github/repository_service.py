"""
Repository and pull request operations built on GitHubApiClient.
Retry, rate limiting and error classification all happen in the client.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from lgtm.errors import (
    LgtmError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    RepositoryError,
    ValidationError,
)
from lgtm.github.api_client import GitHubApiClient


logger = logging.getLogger(__name__)

DIFF_MEDIA_TYPE = "application/vnd.github.diff"
CI_SUCCESS = "success"
CI_FAILURE = "failure"
CI_PENDING = "pending"
CI_UNKNOWN = "unknown"
FILE_STATUSES = ("added", "modified", "removed", "renamed", "copied", "changed", "unchanged")
MAX_FILES = 100


def parse_repository(value: str) -> Tuple[str, str]:
    """Split "owner/name" into its parts."""
    parts = (value or "").strip().strip("/").split("/")
    if len(parts) != 2 or not all(parts):
        raise ValidationError(f"Repository must be given as owner/name, got {value!r}")
    return parts[0], parts[1]


@dataclass
class Repository:
    owner: str
    name: str
    full_name: str
    url: str
    default_branch: str
    is_private: bool
    description: Optional[str] = None


@dataclass
class PullRequest:
    number: int
    title: str
    state: str
    url: str
    author_login: str
    head_ref: str
    base_ref: str
    head_sha: str
    created_at: str
    updated_at: str
    is_draft: bool = False
    mergeable: Optional[bool] = None
    labels: List[str] = field(default_factory=list)
    ci_status: Optional[str] = None


@dataclass
class PullRequestDescription:
    body: str
    author_login: str
    author_avatar_url: str
    updated_at: str
    body_html: Optional[str] = None


@dataclass
class FileChange:
    """One file touched by a pull request."""
    filename: str
    status: str
    additions: int
    deletions: int
    changes: int
    is_binary: bool
    view_url: str
    raw_url: Optional[str] = None
    patch: Optional[str] = None
    previous_filename: Optional[str] = None


@dataclass
class DiffStats:
    total_files: int = 0
    total_additions: int = 0
    total_deletions: int = 0
    total_changes: int = 0


def summarize_file_changes(files: List[FileChange]) -> DiffStats:
    stats = DiffStats(total_files=len(files))
    for item in files:
        stats.total_additions += item.additions
        stats.total_deletions += item.deletions
        stats.total_changes += item.changes
    return stats


def _map_file_status(status: Optional[str]) -> str:
    if status in FILE_STATUSES:
        return status
    return "changed"


def _map_file_change(data: Mapping[str, Any]) -> FileChange:
    try:
        return FileChange(
            filename=data["filename"],
            status=_map_file_status(data.get("status")),
            additions=int(data.get("additions") or 0),
            deletions=int(data.get("deletions") or 0),
            changes=int(data.get("changes") or 0),
            # GitHub omits the patch for binary files
            is_binary=not data.get("patch"),
            view_url=data.get("blob_url") or "",
            raw_url=data.get("raw_url"),
            patch=data.get("patch"),
            previous_filename=data.get("previous_filename"),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise RepositoryError(f"Unexpected file change payload: missing {e}") from e


def _map_pull_request(data: Mapping[str, Any]) -> PullRequest:
    try:
        return PullRequest(
            number=int(data["number"]),
            title=data["title"],
            state="merged" if data.get("merged") else data["state"],
            url=data["html_url"],
            author_login=data["user"]["login"],
            head_ref=data["head"]["ref"],
            base_ref=data["base"]["ref"],
            head_sha=data["head"]["sha"],
            created_at=data["created_at"],
            updated_at=data["updated_at"],
            is_draft=bool(data.get("draft")),
            mergeable=data.get("mergeable"),
            labels=[label["name"] for label in data.get("labels") or []],
        )
    except (KeyError, TypeError, ValueError) as e:
        raise RepositoryError(f"Unexpected pull request payload: missing {e}") from e


def _map_status_state(state: Optional[str]) -> str:
    if state == "success":
        return CI_SUCCESS
    if state in ("failure", "error"):
        return CI_FAILURE
    if state == "pending":
        return CI_PENDING
    return CI_UNKNOWN


def summarize_check_runs(check_runs: List[Mapping[str, Any]]) -> str:
    """Overall status from check runs; failures win over pending over success."""
    has_failure = has_pending = has_success = False
    for run in check_runs or []:
        if run.get("status") != "completed":
            has_pending = True
        elif run.get("conclusion") in ("success", "neutral", "skipped"):
            has_success = True
        elif run.get("conclusion") in ("failure", "cancelled", "timed_out", "action_required"):
            has_failure = True

    if has_failure:
        return CI_FAILURE
    if has_pending:
        return CI_PENDING
    if has_success:
        return CI_SUCCESS
    return CI_UNKNOWN


class RepositoryService:
    """Pull request listing, approval and diffs for one GitHub account."""

    def __init__(self, api_client: GitHubApiClient, max_workers: int = 8):
        self.api_client = api_client
        self.max_workers = max_workers

    def get_repository(self, owner: str, repo: str) -> Repository:
        data = self.api_client.request("GET /repos/{owner}/{repo}", {"owner": owner, "repo": repo})
        try:
            return Repository(
                owner=data["owner"]["login"],
                name=data["name"],
                full_name=data["full_name"],
                url=data["html_url"],
                default_branch=data["default_branch"],
                is_private=bool(data["private"]),
                description=data.get("description"),
            )
        except (KeyError, TypeError) as e:
            raise RepositoryError(f"Unexpected repository payload for {owner}/{repo}") from e

    def get_ci_status(self, owner: str, repo: str, sha: str) -> str:
        """
        Combined commit status, falling back to check runs (GitHub Actions).

        Rate limit errors propagate; any other failure reads as unknown.
        """
        params = {"owner": owner, "repo": repo, "ref": sha}
        try:
            combined = self.api_client.request(
                "GET /repos/{owner}/{repo}/commits/{ref}/status", params
            ) or {}
            if combined.get("total_count") or combined.get("statuses"):
                return _map_status_state(combined.get("state"))

            runs = self.api_client.request(
                "GET /repos/{owner}/{repo}/commits/{ref}/check-runs", params
            ) or {}
            if runs.get("total_count"):
                return summarize_check_runs(runs.get("check_runs"))
        except RateLimitError:
            raise
        except LgtmError as e:
            logger.debug(f"CI status unavailable for {owner}/{repo}@{sha[:7]}: {e}")
        return CI_UNKNOWN

    def list_pull_requests(
        self,
        owner: str,
        repo: str,
        state: str = "open",
        sort: str = "updated"
    ) -> List[PullRequest]:
        """
        List pull requests with CI status fetched concurrently.

        Args:
            owner: Repository owner
            repo: Repository name
            state: open, closed or all
            sort: created, updated, popularity or long-running

        Returns:
            Pull requests in API order
        """
        if state not in ("open", "closed", "all"):
            raise ValidationError(f"Unsupported pull request state: {state}")

        data = self.api_client.request(
            "GET /repos/{owner}/{repo}/pulls",
            {
                "owner": owner,
                "repo": repo,
                "state": state,
                "sort": sort,
                "direction": "desc",
                "per_page": 30,
            },
        )
        if not isinstance(data, list):
            raise RepositoryError(f"Unexpected pull request list for {owner}/{repo}")

        pulls = [_map_pull_request(item) for item in data]
        if not pulls:
            return pulls

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(pulls))) as executor:
            statuses = list(executor.map(
                lambda pr: self.get_ci_status(owner, repo, pr.head_sha), pulls
            ))
        for pr, ci_status in zip(pulls, statuses):
            pr.ci_status = ci_status

        logger.info(f"Fetched {len(pulls)} pull requests for {owner}/{repo}")
        return pulls

    def get_pull_request(self, owner: str, repo: str, number: int) -> PullRequest:
        data = self.api_client.request(
            "GET /repos/{owner}/{repo}/pulls/{number}",
            {"owner": owner, "repo": repo, "number": self._check_number(number)},
        )
        pr = _map_pull_request(data)
        pr.ci_status = self.get_ci_status(owner, repo, pr.head_sha)
        return pr

    def approve_pull_request(
        self,
        owner: str,
        repo: str,
        number: int,
        comment: Optional[str] = None,
        reviewer_login: Optional[str] = None
    ) -> bool:
        """
        Submit an APPROVE review.

        Raises:
            PermissionDeniedError: If the reviewer authored the pull request
        """
        number = self._check_number(number)
        if reviewer_login:
            pr = self.get_pull_request(owner, repo, number)
            if pr.author_login.lower() == reviewer_login.lower():
                raise PermissionDeniedError(
                    f"You cannot approve your own pull request #{number} in {owner}/{repo}",
                    context={"repository": f"{owner}/{repo}", "number": number},
                )

        body: Dict[str, Any] = {"owner": owner, "repo": repo, "number": number, "event": "APPROVE"}
        if comment:
            body["body"] = comment
        self.api_client.request("POST /repos/{owner}/{repo}/pulls/{number}/reviews", body)
        logger.info(f"Approved {owner}/{repo}#{number}")
        return True

    def get_pull_request_diff(self, owner: str, repo: str, number: int) -> str:
        diff = self.api_client.request(
            "GET /repos/{owner}/{repo}/pulls/{number}",
            {"owner": owner, "repo": repo, "number": self._check_number(number)},
            headers={"Accept": DIFF_MEDIA_TYPE},
        )
        if not isinstance(diff, str):
            raise RepositoryError(f"Expected a diff for {owner}/{repo}#{number}")
        return diff

    def get_pull_request_description(self, owner: str, repo: str, number: int) -> PullRequestDescription:
        """Description body and its author; an empty body reads as ""."""
        number = self._check_number(number)
        try:
            data = self.api_client.request(
                "GET /repos/{owner}/{repo}/pulls/{number}",
                {"owner": owner, "repo": repo, "number": number},
            )
        except NotFoundError as e:
            raise self._pull_not_found(owner, repo, number) from e

        try:
            return PullRequestDescription(
                body=data.get("body") or "",
                body_html=data.get("body_html"),
                author_login=data["user"]["login"],
                author_avatar_url=data["user"].get("avatar_url") or "",
                updated_at=data["updated_at"],
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise RepositoryError(f"Unexpected pull request payload for {owner}/{repo}#{number}") from e

    def get_file_changes(self, owner: str, repo: str, number: int) -> List[FileChange]:
        """
        Files changed by a pull request.

        Only the first page of up to 100 files is fetched.
        """
        number = self._check_number(number)
        try:
            data = self.api_client.request(
                "GET /repos/{owner}/{repo}/pulls/{number}/files",
                {"owner": owner, "repo": repo, "number": number, "per_page": MAX_FILES},
            )
        except NotFoundError as e:
            raise self._pull_not_found(owner, repo, number) from e

        if not isinstance(data, list):
            raise RepositoryError(f"Unexpected file list for {owner}/{repo}#{number}")
        if len(data) >= MAX_FILES:
            logger.warning(f"{owner}/{repo}#{number} changes {MAX_FILES}+ files, showing the first {MAX_FILES}")
        return [_map_file_change(item) for item in data]

    @staticmethod
    def _pull_not_found(owner: str, repo: str, number: int) -> NotFoundError:
        return NotFoundError(
            f"Pull request #{number} not found in {owner}/{repo}",
            status_code=404,
            context={"repository": f"{owner}/{repo}", "number": number},
        )

    @staticmethod
    def _check_number(number: Any) -> int:
        try:
            value = int(number)
        except (TypeError, ValueError):
            value = 0
        if value <= 0:
            raise ValidationError(f"Invalid pull request number: {number!r}")
        return value
