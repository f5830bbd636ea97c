"""GitHub pull-request comment upsert.

One comment per pull request carries the gate summary. It is found again on
later runs by a hidden HTML marker and edited in place.
"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from typing import Mapping, Optional

import requests

from pixelgate.errors import GitHubAPIError, GitHubNotFoundError, GitHubPermissionError

logger = logging.getLogger(__name__)

COMMENT_MARKER = "<!-- gate-summary -->"
DEFAULT_API_URL = "https://api.github.com"
REQUEST_TIMEOUT = 10

_PR_REF_RE = re.compile(r"refs/pull/(\d+)/merge")

FORK_HINT = (
    "This may occur when the pull request comes from a forked repository, "
    "or when GITHUB_TOKEN lacks the pull-requests: write scope."
)


@dataclass(frozen=True)
class GitHubContext:
    owner: str
    repo: str
    pull_number: int
    sha: str
    token: str
    api_url: str = DEFAULT_API_URL


@dataclass(frozen=True)
class Comment:
    id: int
    body: str


def _pull_number_from_event(event_path: str) -> Optional[int]:
    try:
        with open(event_path) as f:
            event = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.debug("Could not read GitHub event payload %s: %s", event_path, e)
        return None
    number = (event.get("pull_request") or {}).get("number")
    return int(number) if number else None


def detect_github_context(env: Mapping[str, str] | None = None) -> Optional[GitHubContext]:
    """Build the PR context from GitHub Actions environment variables, or None outside a PR."""
    env = os.environ if env is None else env
    token = env.get("GITHUB_TOKEN")
    repository = env.get("GITHUB_REPOSITORY")
    sha = env.get("GITHUB_SHA")
    if not token or not repository or not sha:
        return None

    owner, _, repo = repository.partition("/")
    if not owner or not repo:
        return None

    pull_number = None
    if env.get("GITHUB_EVENT_PATH"):
        pull_number = _pull_number_from_event(env["GITHUB_EVENT_PATH"])
    if not pull_number and env.get("GITHUB_REF"):
        match = _PR_REF_RE.search(env["GITHUB_REF"])
        if match:
            pull_number = int(match.group(1))
    if not pull_number:
        return None

    return GitHubContext(
        owner=owner,
        repo=repo,
        pull_number=pull_number,
        sha=sha,
        token=token,
        api_url=env.get("GITHUB_API_URL", DEFAULT_API_URL),
    )


def find_existing_comment(comments: list[Comment]) -> Optional[Comment]:
    for comment in comments:
        if comment.body and COMMENT_MARKER in comment.body:
            return comment
    return None


def _headers(context: GitHubContext) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {context.token}",
        "Accept": "application/vnd.github.v3+json",
    }


def _raise_for_response(response: requests.Response, operation: str) -> None:
    if response.ok:
        return
    status = response.status_code
    if status == 403:
        raise GitHubPermissionError(
            f"Permission denied when {operation}. {FORK_HINT}",
            status_code=status, operation=operation,
        )
    if status == 404 and operation == "listing comments":
        raise GitHubNotFoundError(
            "Pull request not found. This may occur when the pull request comes "
            "from a forked repository without read access.",
            status_code=status, operation=operation,
        )
    raise GitHubAPIError(
        f"Failed {operation}: {status} {response.reason}",
        status_code=status, operation=operation,
    )


def post_or_update_pr_comment(
    context: GitHubContext,
    body: str,
    session: requests.Session | None = None,
) -> Comment:
    """Edit the marked summary comment if there is one, otherwise create it.

    The list and the write are two sequential calls; concurrent runs on the
    same pull request can both create a comment.
    """
    session = session or requests.Session()
    body_with_marker = f"{COMMENT_MARKER}\n{body}"
    base = context.api_url.rstrip("/")
    comments_url = f"{base}/repos/{context.owner}/{context.repo}/issues/{context.pull_number}/comments"
    headers = _headers(context)

    try:
        response = session.get(comments_url, headers=headers, timeout=REQUEST_TIMEOUT)
        _raise_for_response(response, "listing comments")
        comments = [Comment(id=c["id"], body=c.get("body") or "") for c in response.json()]
        existing = find_existing_comment(comments)

        if existing is not None:
            url = f"{base}/repos/{context.owner}/{context.repo}/issues/comments/{existing.id}"
            response = session.patch(url, headers=headers, json={"body": body_with_marker}, timeout=REQUEST_TIMEOUT)
            _raise_for_response(response, "updating comment")
            logger.info("Updated PR #%d summary comment %d", context.pull_number, existing.id)
        else:
            response = session.post(comments_url, headers=headers, json={"body": body_with_marker}, timeout=REQUEST_TIMEOUT)
            _raise_for_response(response, "creating comment")
            logger.info("Created PR #%d summary comment", context.pull_number)
    except requests.RequestException as e:
        raise GitHubAPIError(f"GitHub request failed: {e}") from e

    data = response.json()
    return Comment(id=data.get("id", existing.id if existing else 0), body=data.get("body", body_with_marker))
