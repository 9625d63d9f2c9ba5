# __init__.py for github module
from .rate_limiter import RateLimitTracker, RateLimitState
from .api_client import GitHubApiClient, RemoteUser
from .repository_service import (
    RepositoryService,
    Repository,
    PullRequest,
    PullRequestDescription,
    FileChange,
    parse_repository,
)

__all__ = [
    'RateLimitTracker',
    'RateLimitState',
    'GitHubApiClient',
    'RemoteUser',
    'RepositoryService',
    'Repository',
    'PullRequest',
    'PullRequestDescription',
    'FileChange',
    'parse_repository'
]
