"""
GitHub REST client for branch, file, search and pull-request operations.

Transport failures (timeouts, refused connections) are retried with exponential
backoff; HTTP error statuses are not retried and surface as SourceControlError.
"""

import base64
from typing import Any

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..config.settings import GitHubConfig
from ..core.errors import SourceControlError
from ..observability.logging import get_logger
from ..observability.probe import probe
from .base import BranchRef, CodeSearchHit, CommitRef, DirectoryEntry, PullRequestRef

logger = get_logger(__name__)

_RETRYABLE = (httpx.TimeoutException, httpx.ConnectError)


class GitHubClient:
    """Async GitHub client bound to one repository."""

    def __init__(self, config: GitHubConfig, http_client: httpx.AsyncClient | None = None):
        self.config = config
        self._http_client = http_client
        self._owned_client = http_client is None
        if not config.token:
            logger.warning("GitHub token not set; source-control operations will fail")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        if self._owned_client and self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=httpx.Timeout(self.config.timeout))
        return self._http_client

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.token or ''}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": self.config.api_version,
        }

    def _repo_url(self, endpoint: str) -> str:
        return f"{self.config.base_url}/repos/{self.config.owner}/{self.config.repo}{endpoint}"

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        @retry(
            stop=stop_after_attempt(self.config.max_retries),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type(_RETRYABLE),
            reraise=True,
        )
        async def _send() -> httpx.Response:
            return await self.client.request(method, url, headers=self._headers(), **kwargs)

        with probe("github.request", method=method):
            response = await _send()

        if response.is_error:
            try:
                message = response.json().get("message") or response.reason_phrase
            except ValueError:
                message = response.reason_phrase
            raise SourceControlError(message, response.status_code)

        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    # Branches

    async def get_default_branch(self) -> str:
        repo = await self._request("GET", self._repo_url(""))
        return repo["default_branch"]

    async def get_branch(self, name: str) -> BranchRef | None:
        try:
            data = await self._request("GET", self._repo_url(f"/branches/{name}"))
        except SourceControlError as e:
            if e.status_code == 404:
                return None
            raise
        return BranchRef(name=data["name"], sha=data["commit"]["sha"], protected=data.get("protected", False))

    async def create_branch(self, name: str, base: str | None = None) -> BranchRef:
        base_name = base or await self.get_default_branch()
        base_branch = await self.get_branch(base_name)
        if base_branch is None:
            raise SourceControlError(f"Base branch '{base_name}' not found", 404)

        await self._request(
            "POST",
            self._repo_url("/git/refs"),
            json={"ref": f"refs/heads/{name}", "sha": base_branch.sha},
        )
        logger.info("Branch created", branch=name, base=base_name)
        return BranchRef(name=name, sha=base_branch.sha)

    # Files

    async def _get_content(self, path: str, branch: str | None) -> dict[str, Any] | None:
        params = {"ref": branch} if branch else None
        try:
            return await self._request("GET", self._repo_url(f"/contents/{path}"), params=params)
        except SourceControlError as e:
            if e.status_code == 404:
                return None
            raise

    async def get_file_content(self, path: str, branch: str | None = None) -> str | None:
        data = await self._get_content(path, branch)
        if not isinstance(data, dict) or data.get("type") != "file" or "content" not in data:
            return None
        return base64.b64decode(data["content"] or "").decode("utf-8")

    async def create_or_update_file(
        self, path: str, content: str, message: str, branch: str
    ) -> CommitRef:
        existing = await self._get_content(path, branch)
        payload: dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            "branch": branch,
        }
        if isinstance(existing, dict) and existing.get("sha"):
            payload["sha"] = existing["sha"]

        result = await self._request("PUT", self._repo_url(f"/contents/{path}"), json=payload)
        commit = result["commit"]
        return CommitRef(sha=commit["sha"], message=commit.get("message", ""), url=commit.get("html_url", ""))

    async def list_directory(self, path: str, branch: str | None = None) -> list[DirectoryEntry]:
        params = {"ref": branch} if branch else None
        data = await self._request("GET", self._repo_url(f"/contents/{path}"), params=params)
        if not isinstance(data, list):
            return []
        return [
            DirectoryEntry(name=item["name"], type=item.get("type", "file"), path=item.get("path", ""))
            for item in data
        ]

    # Search

    async def search_code(
        self, query: str, path: str | None = None, extension: str | None = None
    ) -> list[CodeSearchHit]:
        q = f"{query} repo:{self.config.owner}/{self.config.repo}"
        if path:
            q += f" path:{path}"
        if extension:
            q += f" extension:{extension}"

        data = await self._request("GET", f"{self.config.base_url}/search/code", params={"q": q})
        return [CodeSearchHit(path=item["path"], url=item.get("html_url", "")) for item in data.get("items", [])]

    # Pull requests

    async def create_pull_request(
        self,
        title: str,
        body: str,
        head: str,
        base: str | None = None,
        draft: bool = False,
    ) -> PullRequestRef:
        base_name = base or await self.get_default_branch()
        data = await self._request(
            "POST",
            self._repo_url("/pulls"),
            json={"title": title, "body": body, "head": head, "base": base_name, "draft": draft},
        )
        logger.info("Pull request created", number=data["number"], head=head, base=base_name)
        return PullRequestRef(number=data["number"], html_url=data["html_url"], title=data.get("title", title))
