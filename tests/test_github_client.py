"""
Tests for the GitHub client against a mocked REST API.
"""

import base64
import json

import httpx
import pytest

from forgeagent.config.settings import GitHubConfig
from forgeagent.core.errors import SourceControlError
from forgeagent.integrations.github import GitHubClient

REPO = "https://api.github.com/repos/axori/axori-platform"


class FakeGitHub:
    def __init__(self):
        self.calls: list[httpx.Request] = []
        self.files = {"README.md": ("# Axori\n", "blob-1")}
        self.failures_before_success = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        if self.failures_before_success:
            self.failures_before_success -= 1
            raise httpx.ConnectError("connection reset")

        path = request.url.path.removeprefix("/repos/axori/axori-platform")
        if request.method == "GET" and path == "":
            return httpx.Response(200, json={"default_branch": "main"})
        if request.method == "GET" and path == "/branches/main":
            return httpx.Response(200, json={"name": "main", "commit": {"sha": "abc123"}, "protected": True})
        if request.method == "GET" and path.startswith("/branches/"):
            return httpx.Response(404, json={"message": "Branch not found"})
        if request.method == "POST" and path == "/git/refs":
            return httpx.Response(201, json={"ref": json.loads(request.content)["ref"]})
        if request.method == "GET" and path == "/contents/src":
            return httpx.Response(
                200,
                json=[
                    {"name": "app.ts", "type": "file", "path": "src/app.ts"},
                    {"name": "lib", "type": "dir", "path": "src/lib"},
                ],
            )
        if request.method == "GET" and path.startswith("/contents/"):
            name = path.removeprefix("/contents/")
            if name not in self.files:
                return httpx.Response(404, json={"message": "Not Found"})
            content, sha = self.files[name]
            return httpx.Response(
                200,
                json={"type": "file", "sha": sha, "content": base64.b64encode(content.encode()).decode()},
            )
        if request.method == "PUT" and path.startswith("/contents/"):
            return httpx.Response(
                201, json={"commit": {"sha": "commit-9", "message": json.loads(request.content)["message"]}}
            )
        if request.method == "POST" and path == "/pulls":
            body = json.loads(request.content)
            return httpx.Response(
                201,
                json={"number": 42, "html_url": "https://github.com/axori/axori-platform/pull/42", "title": body["title"]},
            )
        if request.method == "GET" and request.url.path == "/search/code":
            return httpx.Response(200, json={"items": [{"path": "src/app.ts", "html_url": "u"}]})
        return httpx.Response(500, json={"message": "unexpected"})


@pytest.fixture
def github():
    return FakeGitHub()


@pytest.fixture
def client(github):
    config = GitHubConfig(token="ghp_test", max_retries=2)
    return GitHubClient(config, http_client=httpx.AsyncClient(transport=httpx.MockTransport(github.handler)))


class TestGitHubClient:
    @pytest.mark.asyncio
    async def test_headers(self, client, github):
        await client.get_default_branch()
        headers = github.calls[0].headers
        assert headers["authorization"] == "Bearer ghp_test"
        assert headers["accept"] == "application/vnd.github+json"
        assert headers["x-github-api-version"] == "2022-11-28"

    @pytest.mark.asyncio
    async def test_create_branch_from_default(self, client, github):
        branch = await client.create_branch("feature/axo-1-x")

        assert branch.name == "feature/axo-1-x"
        assert branch.sha == "abc123"
        ref_call = github.calls[-1]
        assert ref_call.method == "POST"
        assert json.loads(ref_call.content) == {"ref": "refs/heads/feature/axo-1-x", "sha": "abc123"}

    @pytest.mark.asyncio
    async def test_create_branch_missing_base(self, client):
        with pytest.raises(SourceControlError) as exc_info:
            await client.create_branch("feature/x", base="develop")
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_get_branch_missing(self, client):
        assert await client.get_branch("nope") is None

    @pytest.mark.asyncio
    async def test_file_content(self, client, github):
        assert await client.get_file_content("README.md", "main") == "# Axori\n"
        assert github.calls[0].url.params["ref"] == "main"
        assert await client.get_file_content("missing.md") is None

    @pytest.mark.asyncio
    async def test_empty_file_is_not_missing(self, client, github):
        github.files["src/.gitkeep"] = ("", "blob-2")

        assert await client.get_file_content("src/.gitkeep") == ""
        assert await client.get_file_content("src/missing.ts") is None

    @pytest.mark.asyncio
    async def test_update_existing_file_sends_sha(self, client, github):
        commit = await client.create_or_update_file("README.md", "# New\n", "Update readme", "feature/x")

        assert commit.sha == "commit-9"
        payload = json.loads(github.calls[-1].content)
        assert payload["sha"] == "blob-1"
        assert payload["branch"] == "feature/x"
        assert base64.b64decode(payload["content"]).decode() == "# New\n"

    @pytest.mark.asyncio
    async def test_create_new_file_omits_sha(self, client, github):
        await client.create_or_update_file("src/new.ts", "x", "Add", "feature/x")
        assert "sha" not in json.loads(github.calls[-1].content)

    @pytest.mark.asyncio
    async def test_list_directory(self, client):
        entries = await client.list_directory("src")
        assert [(e.name, e.type) for e in entries] == [("app.ts", "file"), ("lib", "dir")]

    @pytest.mark.asyncio
    async def test_search_code_query(self, client, github):
        hits = await client.search_code("useAuth", path="src", extension="ts")
        assert [h.path for h in hits] == ["src/app.ts"]
        assert github.calls[0].url.params["q"] == "useAuth repo:axori/axori-platform path:src extension:ts"

    @pytest.mark.asyncio
    async def test_create_pull_request(self, client, github):
        pr = await client.create_pull_request("Title", "Body", "feature/x")

        assert pr.number == 42
        assert pr.html_url.endswith("/pull/42")
        assert json.loads(github.calls[-1].content) == {
            "title": "Title",
            "body": "Body",
            "head": "feature/x",
            "base": "main",
            "draft": False,
        }

    @pytest.mark.asyncio
    async def test_error_response(self, client):
        with pytest.raises(SourceControlError) as exc_info:
            await client._request("DELETE", f"{REPO}/anything")
        assert exc_info.value.status_code == 500
        assert "unexpected" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_retries_connection_errors(self, client, github):
        github.failures_before_success = 1
        assert await client.get_default_branch() == "main"
        assert len(github.calls) == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, client, github):
        github.failures_before_success = 5
        with pytest.raises(httpx.ConnectError):
            await client.get_default_branch()
        assert len(github.calls) == 2

    @pytest.mark.asyncio
    async def test_context_manager_closes_owned_client(self):
        async with GitHubClient(GitHubConfig(token="t")) as client:
            assert client.client is not None
        assert client._http_client is None
