"""Shared test fixtures for the widget agent test suite.

Provides mock LLMs, scripted packagers and executors, widget configs and
temporary stores.  Unit tests never need API keys, Node.js or a network.
"""

from pathlib import Path
from typing import Callable, List, Optional

import pytest

from widget_agent.config import AgentConfig
from widget_agent.executor import GenerationExecutor, GenerationResult
from widget_agent.knowledge_store import KnowledgeStore
from widget_agent.nucleus import PatternStore
from widget_agent.packager import PackageResult
from widget_agent.scaffolder import WidgetScaffolder
from widget_agent.widget_config import WidgetConfig, WidgetEvent, WidgetProperty, PropertyType


# ---------------------------------------------------------------------------
# Mock LLM
# ---------------------------------------------------------------------------

class MockLLMResponse:
    """Simulates a LlamaIndex LLM completion response."""

    def __init__(self, text: str):
        self.text = text


class MockLLM:
    """A fake LLM that returns a predetermined response.

    Usage in tests::

        llm = MockLLM('{"fixes": []}')
        resp = llm.complete("anything")
        assert resp.text == '{"fixes": []}'
    """

    def __init__(self, response_text: str = "OK"):
        self.response_text = response_text
        self.call_count = 0
        self.prompts: List[str] = []

    def complete(self, prompt: str, **kwargs):
        self.call_count += 1
        self.prompts.append(prompt)
        return MockLLMResponse(self.response_text)


class FailingLLM:
    """An LLM whose every call raises."""

    def __init__(self, error: Exception = None):
        self.error = error or ConnectionError("service unavailable")
        self.call_count = 0

    def complete(self, prompt: str, **kwargs):
        self.call_count += 1
        raise self.error


# ---------------------------------------------------------------------------
# Scripted build collaborators
# ---------------------------------------------------------------------------

class ScriptedPackager:
    """Packager double whose outcome is decided by inspecting the project.

    ``check`` receives the project folder and returns ``None`` for a clean
    build or the diagnostic text of a failed one.
    """

    def __init__(self, check: Callable[[Path], Optional[str]]):
        self.check = check
        self.calls: List[Path] = []

    def build(self, project_dir: Path) -> PackageResult:
        project_dir = Path(project_dir)
        self.calls.append(project_dir)
        problem = self.check(project_dir)
        if problem is None:
            artifact = project_dir / "dist" / "1.0.0" / f"{project_dir.name}.mpk"
            artifact.parent.mkdir(parents=True, exist_ok=True)
            artifact.write_bytes(b"PK")
            return PackageResult(success=True, stdout="Build finished", return_code=0,
                                 artifact_path=artifact)
        return PackageResult(success=False, stderr=problem, return_code=1)


class FakeExecutor:
    """Executor double replaying a list of results (the last one repeats)."""

    def __init__(self, results: List[GenerationResult]):
        self.results = list(results)
        self.calls = 0
        self.preserve_flags: List[bool] = []

    def run(self, config, work_folder, preserve_existing=False):
        self.calls += 1
        self.preserve_flags.append(preserve_existing)
        index = min(self.calls, len(self.results)) - 1
        return self.results[index]


class AlwaysFixChain:
    """Fix chain double that always reports an applied fix."""

    def __init__(self):
        self.calls = 0

    def try_fix(self, diagnostic_text, widget_path, config):
        from widget_agent.fix_strategies import FixResult
        self.calls += 1
        return FixResult(applied=True, description=f"fix {self.calls}", strategy="fake")


class NeverFixChain:
    """Fix chain double that never finds a fix."""

    def __init__(self):
        self.calls = 0

    def try_fix(self, diagnostic_text, widget_path, config):
        from widget_agent.fix_strategies import FixResult
        self.calls += 1
        return FixResult.not_applied("fake", "nothing to do")


def failed_result(text: str = "error TS2304: Cannot find name 'foo'.") -> GenerationResult:
    return GenerationResult(success=False, errors=[text])


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_llm():
    """Return a MockLLM with a simple OK response."""
    return MockLLM("OK")


@pytest.fixture
def test_config():
    """Return an AgentConfig with no API keys and no file logging."""
    return AgentConfig(anthropic_api_key=None, openai_api_key=None)


@pytest.fixture
def widget_config():
    """A small widget with a few property kinds and one event."""
    return WidgetConfig(
        name="StatusBadge",
        display_name="Status Badge",
        description="Displays a colored badge based on status value",
        properties=(
            WidgetProperty(key="status", type=PropertyType.ATTRIBUTE, caption="Status",
                           required=True, attribute_types=("String", "Enum")),
            WidgetProperty(key="size", type=PropertyType.ENUMERATION, caption="Size",
                           default_value="medium", enum_values=("small", "medium", "large")),
            WidgetProperty(key="showIcon", type=PropertyType.BOOLEAN, caption="Show Icon",
                           default_value="false"),
        ),
        events=(WidgetEvent(key="onClick", caption="On Click"),),
    )


@pytest.fixture
def patterns_path(tmp_path):
    return tmp_path / "nucleus" / "dynamic-patterns.json"


@pytest.fixture
def pattern_store(patterns_path):
    """A store seeded with the builtin patterns."""
    return PatternStore(path=patterns_path)


@pytest.fixture
def empty_store(tmp_path):
    """A store with no patterns at all."""
    return PatternStore(path=tmp_path / "empty" / "dynamic-patterns.json", seed_defaults=False)


@pytest.fixture
def knowledge(tmp_path):
    return KnowledgeStore(tmp_path / "knowledge")


@pytest.fixture
def work_folder(tmp_path):
    return tmp_path / "work"


@pytest.fixture
def scaffolded_widget(tmp_path, widget_config):
    """A freshly scaffolded widget project folder."""
    output = tmp_path / "widget" / widget_config.name_lower
    WidgetScaffolder().generate(widget_config, output)
    return output


@pytest.fixture
def make_executor():
    """Build a real executor around a scripted packager."""
    def _make(check):
        packager = ScriptedPackager(check)
        return GenerationExecutor(scaffolder=WidgetScaffolder(), packager=packager), packager
    return _make
