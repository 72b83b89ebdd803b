"""Source-control collaborator interface used by the tool executors and the orchestrator."""

from dataclasses import dataclass
from typing import Protocol


@dataclass
class BranchRef:
    name: str
    sha: str
    protected: bool = False


@dataclass
class CommitRef:
    sha: str
    message: str = ""
    url: str = ""


@dataclass
class DirectoryEntry:
    name: str
    type: str  # "file" or "dir"
    path: str = ""


@dataclass
class CodeSearchHit:
    path: str
    url: str = ""


@dataclass
class PullRequestRef:
    number: int
    html_url: str
    title: str = ""


class SourceControlClient(Protocol):
    async def create_branch(self, name: str, base: str | None = None) -> BranchRef: ...

    async def get_file_content(self, path: str, branch: str | None = None) -> str | None: ...

    async def create_or_update_file(
        self, path: str, content: str, message: str, branch: str
    ) -> CommitRef: ...

    async def list_directory(self, path: str, branch: str | None = None) -> list[DirectoryEntry]: ...

    async def search_code(
        self, query: str, path: str | None = None, extension: str | None = None
    ) -> list[CodeSearchHit]: ...

    async def create_pull_request(
        self,
        title: str,
        body: str,
        head: str,
        base: str | None = None,
        draft: bool = False,
    ) -> PullRequestRef: ...
