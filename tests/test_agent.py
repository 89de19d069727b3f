"""
Tests for the WidgetAgent facade
================================
The agent is assembled from an AgentConfig pointing at temporary folders,
with the LLM resolution patched to the offline NullLLM.
"""

from unittest.mock import patch

import pytest

from widget_agent.agent import WidgetAgent
from widget_agent.build_loop import BuildOutcome, CancellationToken
from widget_agent.llm_provider import NullLLM
from widget_agent.nucleus import PatternStore
from tests.conftest import MockLLM, ScriptedPackager

REACT_ERROR = "src/StatusBadge.tsx(3,5): error TS2304: Cannot find name 'React'."


def _missing_react(project_dir):
    component = project_dir / "src" / "StatusBadge.tsx"
    if "import * as React" not in component.read_text(encoding="utf-8"):
        return REACT_ERROR
    return None


@pytest.fixture
def agent_config(test_config, tmp_path):
    test_config.nucleus.patterns_path = str(tmp_path / "nucleus" / "dynamic-patterns.json")
    test_config.knowledge.knowledge_dir = str(tmp_path / "knowledge")
    test_config.build.work_folder = str(tmp_path / "work")
    return test_config


@pytest.fixture
def packager():
    return ScriptedPackager(_missing_react)


@pytest.fixture
def agent(agent_config, packager):
    with patch("widget_agent.agent.get_llm", return_value=NullLLM()):
        return WidgetAgent(config=agent_config, packager=packager)


class TestAssembly:
    def test_subsystems_follow_config(self, agent, agent_config):
        assert str(agent.store.path) == agent_config.nucleus.patterns_path
        assert agent.knowledge.enabled
        assert agent.helper.available is False
        assert agent.helper.max_retries == agent_config.production.max_retries
        assert agent.helper.backoff_factor == agent_config.production.retry_backoff_factor
        assert agent.helper.jitter is agent_config.production.retry_jitter
        assert agent.knowledge.max_search_results == agent_config.knowledge.max_search_results

    def test_resolves_llm_from_config(self, agent_config, packager):
        with patch("widget_agent.agent.get_llm", return_value=NullLLM()) as resolve:
            WidgetAgent(config=agent_config, packager=packager)
        resolve.assert_called_once_with(agent_config)

    def test_injected_llm_skips_resolution(self, agent_config, packager):
        llm = MockLLM("cause")
        with patch("widget_agent.agent.get_llm") as resolve:
            agent = WidgetAgent(config=agent_config, llm=llm, packager=packager)
        resolve.assert_not_called()
        assert agent.helper.available is True

    def test_disabled_breaker_never_opens(self, agent_config, packager):
        agent_config.production.circuit_breaker_enabled = False
        with patch("widget_agent.agent.get_llm", return_value=NullLLM()):
            agent = WidgetAgent(config=agent_config, packager=packager)
        assert agent.helper.breaker.failure_threshold == float("inf")

    def test_status(self, agent):
        status = agent.get_status()
        assert status["llm_available"] is False
        assert status["nucleus"]["error_fixes"] == 4
        assert status["knowledge"]["enabled"] is True


class TestBuild:
    def test_repairs_and_builds(self, agent, agent_config, widget_config, packager):
        result = agent.build(widget_config)

        assert result.outcome == BuildOutcome.SUCCEEDED
        assert result.fixes_applied == ["[NUCLEUS] Add missing React import"]
        assert len(packager.calls) == 2
        assert str(result.output_path).startswith(agent_config.build.work_folder)

        reloaded = PatternStore(path=agent_config.nucleus.patterns_path)
        assert reloaded.get_pattern("missing-react-import").success_count == 11

    def test_max_attempts_override(self, agent, widget_config, packager):
        result = agent.build(widget_config, max_attempts=1)
        assert result.outcome == BuildOutcome.EXHAUSTED
        assert len(packager.calls) == 1

    def test_progress_and_deploy(self, agent, widget_config, tmp_path):
        messages = []
        result = agent.build(widget_config, deploy_to=str(tmp_path / "app"),
                             progress=messages.append)
        assert result.deployed_to == tmp_path / "app" / "widgets" / "statusbadge.mpk"
        assert messages[0] == "Build attempt 1/3 for StatusBadge"

    def test_cancelled_before_start(self, agent, widget_config, packager):
        token = CancellationToken()
        token.cancel()
        result = agent.build(widget_config, cancel_token=token)
        assert result.outcome == BuildOutcome.CANCELLED
        assert packager.calls == []


class TestDiagnosis:
    def test_offline_analysis(self, agent):
        assert "React" in agent.analyze_error(REACT_ERROR)

    def test_offline_research(self, agent):
        result = agent.research("pluggable widget data source")
        assert result.summary
