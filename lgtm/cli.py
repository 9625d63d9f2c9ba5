"""lgtm - review GitHub pull requests from the terminal."""

import sys
import logging
import functools
from pathlib import Path
from typing import Optional

import click

from lgtm.auth.credential_store import CredentialStore
from lgtm.auth.device_code_flow import DeviceCodeFlow
from lgtm.auth.session import AuthSessionManager
from lgtm.config import GitHubConfig
from lgtm.errors import LgtmError, RateLimitError
from lgtm.github.api_client import GitHubApiClient
from lgtm.github.repository_service import (
    RepositoryService,
    parse_repository,
    summarize_file_changes,
)


logger = logging.getLogger(__name__)

CI_MARKS = {"success": "✓", "failure": "✗", "pending": "…", "unknown": "?"}


class AppContext:
    """Wires one credential store, client and session manager per process."""

    def __init__(
        self,
        config: GitHubConfig,
        credential_store: CredentialStore,
        api_client: GitHubApiClient,
        device_flow: DeviceCodeFlow,
        session_manager: AuthSessionManager,
        repository_service: RepositoryService
    ):
        self.config = config
        self.credential_store = credential_store
        self.api_client = api_client
        self.device_flow = device_flow
        self.session_manager = session_manager
        self.repository_service = repository_service

    @classmethod
    def create(cls, config_path: Optional[str] = None) -> "AppContext":
        config = GitHubConfig.load(Path(config_path) if config_path else None)
        store = CredentialStore()
        client = GitHubApiClient(store, config)
        flow = DeviceCodeFlow(client, store, config)
        return cls(
            config=config,
            credential_store=store,
            api_client=client,
            device_flow=flow,
            session_manager=AuthSessionManager(store, client, flow),
            repository_service=RepositoryService(client),
        )


def handle_errors(func):
    """Print typed errors as one line and exit 1."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except LgtmError as e:
            logger.debug("Command failed", exc_info=True)
            click.echo(f"Error: {e}", err=True)
            if isinstance(e, RateLimitError):
                click.echo(f"Try again in {e.time_until_reset()}.", err=True)
            sys.exit(1)
    return wrapper


@click.group()
@click.option("--verbose", is_flag=True, help="Enable verbose logging")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help="Configuration file path")
@click.version_option(package_name="lgtm-cli")
@click.pass_context
def main(ctx, verbose: bool, config_path: Optional[str]):
    """Review GitHub pull requests from the terminal."""
    logging.basicConfig(
        level=logging.WARNING,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )
    # basicConfig is a no-op once the root logger has handlers
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if ctx.obj is None:
        try:
            ctx.obj = AppContext.create(config_path)
        except LgtmError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)


@main.group()
def auth():
    """Authenticate with GitHub."""


@auth.command()
@click.option("--with-token", is_flag=True, help="Read a personal access token from standard input")
@click.pass_obj
@handle_errors
def login(app: AppContext, with_token: bool):
    """Log in to GitHub."""
    if not with_token:
        existing = app.session_manager.current_user()
        if existing:
            click.echo(f"Already logged in as {existing.login}")
            if not click.confirm("Do you want to login again with a different account?", default=False):
                return
            app.session_manager.logout()

    if with_token:
        token = click.get_text_stream("stdin").read().strip()
        user = app.device_flow.login_with_token(token)
    else:
        user = app.device_flow.login_with_browser()

    click.echo(f"\n✓ Authentication complete. You're now logged in as {user.login}")


@auth.command()
@click.pass_obj
@handle_errors
def status(app: AppContext):
    """View authentication status."""
    info = app.session_manager.get_status()

    if info["status"] == "UNAVAILABLE":
        click.echo(f"! {info['error']}")
        sys.exit(1)
    if info["status"] != "ACTIVE":
        if info["status"] == "REJECTED":
            click.echo("! The stored GitHub token is no longer accepted.")
        click.echo("! Not logged in to GitHub.")
        click.echo("\nRun `lgtm auth login` to authenticate.")
        return

    click.echo(f"✓ Logged in to GitHub as {info['username']}")
    if info["display_name"]:
        click.echo(f"  Name: {info['display_name']}")
    click.echo(f"  Method: {info['method']}")
    rate = info["rate_limit"]
    if rate.get("known"):
        click.echo(f"  API quota: {rate['remaining']}/{rate['limit']} remaining")


@auth.command()
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_obj
@handle_errors
def logout(app: AppContext, yes: bool):
    """Log out of GitHub."""
    user = app.session_manager.current_user()
    if user is None:
        click.echo("! Not currently logged in to GitHub.")
        app.session_manager.logout()
        return

    if not yes and not click.confirm(f"Are you sure you want to log out from {user.login}?", default=False):
        click.echo("Logout cancelled.")
        return

    if app.session_manager.logout():
        click.echo("✓ Successfully logged out.")
    else:
        click.echo("✗ Failed to log out. Please try again.", err=True)
        sys.exit(1)


@main.group()
def pr():
    """Work with pull requests."""


repo_option = click.option("--repo", "-R", required=True, help="Repository as owner/name")


@pr.command("list")
@repo_option
@click.option("--state", type=click.Choice(["open", "closed", "all"]), default="open")
@click.pass_obj
@handle_errors
def list_prs(app: AppContext, repo: str, state: str):
    """List pull requests with CI status."""
    owner, name = parse_repository(repo)
    app.session_manager.ensure_authenticated()
    pulls = app.repository_service.list_pull_requests(owner, name, state=state)

    if not pulls:
        click.echo(f"No {state} pull requests in {owner}/{name}")
        return
    for item in pulls:
        mark = CI_MARKS.get(item.ci_status or "unknown", "?")
        draft = " (draft)" if item.is_draft else ""
        click.echo(f"#{item.number:<6} {mark} {item.title}{draft}  @{item.author_login}")


@pr.command()
@click.argument("number", type=int)
@repo_option
@click.option("--comment", "-m", help="Review comment")
@click.pass_obj
@handle_errors
def approve(app: AppContext, number: int, repo: str, comment: Optional[str]):
    """Approve a pull request."""
    owner, name = parse_repository(repo)
    user = app.session_manager.ensure_authenticated()
    app.repository_service.approve_pull_request(
        owner, name, number,
        comment=comment or app.config.approval_comment,
        reviewer_login=user.login
    )
    click.echo(f"✓ Approved {owner}/{name}#{number}")


@pr.command()
@click.argument("number", type=int)
@repo_option
@click.pass_obj
@handle_errors
def view(app: AppContext, number: int, repo: str):
    """Show a pull request's description and changed files."""
    owner, name = parse_repository(repo)
    app.session_manager.ensure_authenticated()
    service = app.repository_service
    item = service.get_pull_request(owner, name, number)
    description = service.get_pull_request_description(owner, name, number)
    files = service.get_file_changes(owner, name, number)
    stats = summarize_file_changes(files)

    mark = CI_MARKS.get(item.ci_status or "unknown", "?")
    click.echo(f"#{item.number} {item.title} [{item.state}] {mark}")
    click.echo(f"@{description.author_login}  {item.head_ref} -> {item.base_ref}  {item.url}")
    click.echo("")
    click.echo(description.body or "No description provided.")
    click.echo("")
    for change in files:
        if change.is_binary:
            counts = "binary"
        else:
            counts = f"+{change.additions} -{change.deletions}"
        renamed = f" (from {change.previous_filename})" if change.previous_filename else ""
        click.echo(f"  {change.status:<9} {change.filename}{renamed}  {counts}")
    click.echo(
        f"{stats.total_files} files changed, "
        f"+{stats.total_additions} -{stats.total_deletions}"
    )


@pr.command()
@click.argument("number", type=int)
@repo_option
@click.pass_obj
@handle_errors
def diff(app: AppContext, number: int, repo: str):
    """Print the diff of a pull request."""
    owner, name = parse_repository(repo)
    app.session_manager.ensure_authenticated()
    click.echo(app.repository_service.get_pull_request_diff(owner, name, number))


if __name__ == "__main__":
    main()
