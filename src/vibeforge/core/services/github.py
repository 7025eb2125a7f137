"""
Minimal GitHub REST client.

Only what opening a pull request needs. Requests go through httpx; HTTP
and network failures surface as GitHubError with the API's message when
it sends one.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

import httpx
from pydantic import BaseModel

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"

_REPO_URL = re.compile(r"github\.com[/:]([^/]+)/([^/]+?)(?:\.git)?/?$")


class GitHubError(Exception):
    """A GitHub API call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class PullRequest(BaseModel):
    """The fields of GitHub's pull request response that callers use."""

    number: int
    html_url: str


def parse_repo(url: str) -> tuple[str, str]:
    """
    Owner and repository name from a GitHub URL.

    Accepts https and ssh forms, with or without a ``.git`` suffix.

    Raises:
        GitHubError: If the URL is not a GitHub repository URL
    """
    match = _REPO_URL.search(url.strip())
    if match is None:
        raise GitHubError(f"Not a GitHub repository URL: {url}")
    return match.group(1), match.group(2)


class GitHubClient:
    """
    GitHub API client authenticated with one access token.

    Example:
        client = GitHubClient(token)
        pr = await client.create_pull_request("acme", "web", title="Add dark mode",
                                              body="...", head="feature", base="main")
    """

    def __init__(
        self,
        token: str,
        *,
        base_url: str = GITHUB_API_URL,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._token = token
        self._base_url = base_url
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
            headers={
                "Authorization": f"Bearer {self._token}",
                "Accept": "application/vnd.github+json",
            },
        )

    async def create_pull_request(
        self,
        owner: str,
        repo: str,
        *,
        title: str,
        body: str,
        head: str,
        base: str,
    ) -> PullRequest:
        """
        Open a pull request.

        Raises:
            GitHubError: On an error response or a network failure
        """
        payload = {"title": title, "body": body, "head": head, "base": base}
        async with self._client() as client:
            try:
                response = await client.post(f"/repos/{owner}/{repo}/pulls", json=payload)
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                status_code = e.response.status_code
                raise GitHubError(_error_message(e.response), status_code) from e
            except httpx.RequestError as e:
                raise GitHubError(f"Network error: {e}") from e

        pr = PullRequest.model_validate(response.json())
        logger.info("Opened pull request #%d on %s/%s", pr.number, owner, repo)
        return pr


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    message = data.get("message") if isinstance(data, dict) else None
    return message or f"GitHub API error: {response.status_code}"
