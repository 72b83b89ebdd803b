"""
Tests for environment-driven settings and the service container.
"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from forgeagent.agents.gateway import ModelGateway
from forgeagent.config.container import Container, setup_container
from forgeagent.config.settings import ObservabilityConfig, Settings
from forgeagent.core.orchestrator import AgentOrchestrator
from forgeagent.integrations.github import GitHubClient


class TestSettings:
    def test_defaults(self):
        settings = Settings()
        assert settings.model.base_url == "https://api.anthropic.com/v1"
        assert settings.model.api_version == "2023-06-01"
        assert settings.github.owner == "axori"
        assert settings.budget.daily_limit_tokens == 500_000
        assert settings.budget.daily_limit_cents == 500
        assert settings.orchestrator.max_iterations == 50
        assert settings.orchestrator.checkpoint_interval == 5
        assert settings.orchestrator.default_branch == "main"
        assert settings.tools.command_workdir is None

    def test_environment_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("FORGE_MODEL__API_KEY", "sk-env")
        monkeypatch.setenv("FORGE_GITHUB__REPO", "other-repo")
        monkeypatch.setenv("FORGE_BUDGET__DAILY_LIMIT_TOKENS", "1000")
        monkeypatch.setenv("FORGE_TOOLS__COMMAND_WORKDIR", str(tmp_path))
        monkeypatch.setenv("FORGE_ENVIRONMENT", "staging")

        settings = Settings()

        assert settings.model.api_key == "sk-env"
        assert settings.github.repo == "other-repo"
        assert settings.budget.daily_limit_tokens == 1000
        assert settings.tools.command_workdir == Path(tmp_path)
        assert settings.environment == "staging"

    def test_invalid_environment(self):
        with pytest.raises(ValidationError):
            Settings(environment="moon")

    def test_log_level_normalised(self):
        assert ObservabilityConfig(log_level="debug").log_level == "DEBUG"
        with pytest.raises(ValidationError):
            ObservabilityConfig(log_level="chatty")

    def test_invalid_base_url(self, monkeypatch):
        monkeypatch.setenv("FORGE_MODEL__BASE_URL", "ftp://models")
        with pytest.raises(ValidationError):
            Settings()


class TestContainer:
    def test_wires_orchestrator(self, settings):
        container = setup_container(settings)
        orchestrator = container.get("orchestrator")

        assert isinstance(orchestrator, AgentOrchestrator)
        assert isinstance(orchestrator.gateway, ModelGateway)
        assert isinstance(orchestrator.source_control, GitHubClient)
        assert orchestrator.tickets is container.get("ticket_store")
        assert orchestrator.budget.config is settings.budget
        assert container.get("orchestrator") is orchestrator

    def test_containers_do_not_share_services(self, settings):
        first = setup_container(settings)
        second = setup_container(settings)

        assert first.get("orchestrator") is not second.get("orchestrator")
        assert first.get("execution_store") is not second.get("execution_store")

    def test_singletons_take_precedence(self, settings):
        container = Container(settings)
        container.register_factory("thing", lambda c: "from factory")
        container.register_singleton("thing", "singleton")
        assert container.get("thing") == "singleton"
        assert container.get("missing", "default") == "default"

    @pytest.mark.asyncio
    async def test_cleanup_closes_services(self, settings):
        container = setup_container(settings)
        gateway = container.get("gateway")
        gateway.client  # force the http client into existence

        async with container.lifespan():
            pass

        assert gateway._http_client is None
        assert container.get("gateway") is not gateway
