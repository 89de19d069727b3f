"""
Tests for the Build Loop
========================
Unit tests drive the loop with scripted executors and chains; the
end-to-end tests run the real scaffolder, fix chain and pattern store
against a packager double that inspects the generated files.
"""

import json
from unittest.mock import MagicMock

import pytest

from widget_agent.build_loop import (
    BuildLoop,
    BuildLoopOptions,
    BuildOutcome,
    CancellationToken,
)
from widget_agent.errors import WorkFolderError
from widget_agent.executor import GenerationExecutor, GenerationResult
from widget_agent.file_edits import REACT_IMPORT
from widget_agent.fix_strategies import FixResult, FixStrategyChain
from widget_agent.nucleus import PatternSource, PatternStore
from widget_agent.scaffolder import WidgetScaffolder
from tests.conftest import (
    AlwaysFixChain,
    FakeExecutor,
    NeverFixChain,
    ScriptedPackager,
    failed_result,
)


REACT_ERROR = "src/StatusBadge.tsx(3,5): error TS2304: Cannot find name 'React'."
BUILD_SCRIPT_ERROR = "npm ERR! missing script: build"


def _options(work_folder, **kwargs):
    return BuildLoopOptions(work_folder=work_folder, **kwargs)


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------

class TestOptions:
    def test_defaults(self):
        options = BuildLoopOptions()
        assert options.max_attempts == 3
        assert options.work_folder is None

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            BuildLoopOptions(max_attempts=0)


# ---------------------------------------------------------------------------
# Loop control
# ---------------------------------------------------------------------------

class TestOutcomes:
    """Terminal outcomes and attempt accounting."""

    def test_succeeds_first_try(self, widget_config, work_folder):
        executor = FakeExecutor([GenerationResult(success=True)])
        chain = NeverFixChain()

        result = BuildLoop(executor, chain).execute(widget_config, _options(work_folder))

        assert result.outcome == BuildOutcome.SUCCEEDED
        assert result.success is True
        assert result.attempts == 1
        assert chain.calls == 0
        assert result.output_path == work_folder / "statusbadge"

    def test_attempts_are_bounded(self, widget_config, work_folder):
        executor = FakeExecutor([failed_result()])
        chain = AlwaysFixChain()

        result = BuildLoop(executor, chain).execute(
            widget_config, _options(work_folder, max_attempts=3)
        )

        assert result.outcome == BuildOutcome.EXHAUSTED
        assert result.success is False
        assert result.attempts == 3
        assert executor.calls == 3
        # No fix is attempted after the final build
        assert chain.calls == 2

    def test_only_retries_keep_existing_files(self, widget_config, work_folder):
        executor = FakeExecutor([failed_result()])

        BuildLoop(executor, AlwaysFixChain()).execute(
            widget_config, _options(work_folder, max_attempts=3)
        )

        assert executor.preserve_flags == [False, True, True]

    def test_rebuild_picks_up_config_change(self, make_executor, widget_config, work_folder):
        executor, _ = make_executor(lambda project: None)
        loop = BuildLoop(executor, NeverFixChain())
        loop.execute(widget_config, _options(work_folder))
        changed = widget_config.from_dict({
            **widget_config.to_dict(),
            "properties": [
                *widget_config.to_dict()["properties"],
                {"key": "label", "type": "string", "caption": "Label"},
            ],
        })

        result = loop.execute(changed, _options(work_folder))

        assert result.success is True
        xml = (work_folder / "statusbadge" / "src" / "StatusBadge.xml").read_text(
            encoding="utf-8")
        assert 'key="label"' in xml
        assert result.fixes_applied == ["fix 1", "fix 2"]
        assert len(result.diagnostics) == 3

    def test_single_attempt_never_consults_chain(self, widget_config, work_folder):
        chain = AlwaysFixChain()
        result = BuildLoop(FakeExecutor([failed_result()]), chain).execute(
            widget_config, _options(work_folder, max_attempts=1)
        )
        assert result.outcome == BuildOutcome.EXHAUSTED
        assert chain.calls == 0

    def test_no_fix_fails_early(self, widget_config, work_folder):
        executor = FakeExecutor([failed_result("weird")])
        chain = NeverFixChain()

        result = BuildLoop(executor, chain).execute(
            widget_config, _options(work_folder, max_attempts=5)
        )

        assert result.outcome == BuildOutcome.FAILED
        assert result.attempts == 1
        assert executor.calls == 1
        assert chain.calls == 1
        assert result.diagnostics == ["weird"]

    def test_succeeds_after_fix(self, widget_config, work_folder):
        executor = FakeExecutor([failed_result(), GenerationResult(success=True)])
        result = BuildLoop(executor, AlwaysFixChain()).execute(
            widget_config, _options(work_folder)
        )
        assert result.outcome == BuildOutcome.SUCCEEDED
        assert result.attempts == 2
        assert [a.outcome for a in result.history] == ["failed", "succeeded"]
        assert result.history[0].fix_applied == "fix 1"

    def test_chain_receives_diagnostics_and_widget_path(self, widget_config, work_folder):
        chain = MagicMock()
        chain.try_fix.return_value = FixResult.not_applied("x")
        BuildLoop(FakeExecutor([failed_result("boom")]), chain).execute(
            widget_config, _options(work_folder)
        )
        chain.try_fix.assert_called_once_with("boom", work_folder / "statusbadge",
                                              widget_config)


class TestCancellation:
    def test_cancel_before_start(self, widget_config, work_folder):
        token = CancellationToken()
        token.cancel()
        executor = FakeExecutor([GenerationResult(success=True)])

        result = BuildLoop(executor, NeverFixChain()).execute(
            widget_config, _options(work_folder), token
        )

        assert result.outcome == BuildOutcome.CANCELLED
        assert result.attempts == 0
        assert executor.calls == 0

    def test_cancel_during_attempt(self, widget_config, work_folder):
        token = CancellationToken()

        def run(config, folder, **kwargs):
            token.cancel()
            return failed_result()

        executor = MagicMock()
        executor.run.side_effect = run
        chain = AlwaysFixChain()

        result = BuildLoop(executor, chain).execute(
            widget_config, _options(work_folder), token
        )

        assert result.outcome == BuildOutcome.CANCELLED
        assert result.attempts == 1
        assert chain.calls == 0

    def test_token_state(self):
        token = CancellationToken()
        assert token.cancelled is False
        token.cancel()
        assert token.cancelled is True


class TestErrors:
    def test_unusable_work_folder_is_fatal(self, widget_config, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a folder", encoding="utf-8")
        executor = FakeExecutor([GenerationResult(success=True)])

        with pytest.raises(WorkFolderError):
            BuildLoop(executor, NeverFixChain()).execute(widget_config, _options(blocker))
        assert executor.calls == 0

    def test_executor_exception_becomes_diagnostic(self, widget_config, work_folder):
        executor = MagicMock()
        executor.run.side_effect = [ConnectionError("toolchain down"),
                                    GenerationResult(success=True)]
        chain = MagicMock()
        chain.try_fix.return_value = FixResult(applied=True, description="retry",
                                               strategy="fake")
        events = MagicMock()

        result = BuildLoop(executor, chain, events=events).execute(
            widget_config, _options(work_folder)
        )

        assert result.outcome == BuildOutcome.SUCCEEDED
        assert result.diagnostics == ["toolchain down"]
        assert chain.try_fix.call_args[0][0] == "toolchain down"
        events.log_error.assert_called_once()


# ---------------------------------------------------------------------------
# Side effects
# ---------------------------------------------------------------------------

class TestReporting:
    """Progress lines, structured events and knowledge writes."""

    def test_progress_callback(self, widget_config, work_folder):
        lines = []
        BuildLoop(FakeExecutor([failed_result(), GenerationResult(success=True)]),
                  AlwaysFixChain(), progress=lines.append).execute(
            widget_config, _options(work_folder)
        )
        assert lines[0] == "Build attempt 1/3 for StatusBadge"
        assert "Fix applied: fix 1. Retrying build..." in lines
        assert lines[-1] == "Build succeeded on attempt 2."

    def test_structured_events(self, widget_config, work_folder):
        events = MagicMock()
        chain = MagicMock()
        chain.try_fix.return_value = FixResult(
            applied=True, description="Added scripts", strategy="heuristic",
            pattern_id="learned-1234abcd",
        )
        BuildLoop(FakeExecutor([failed_result(), GenerationResult(success=True)]),
                  chain, events=events).execute(widget_config, _options(work_folder))

        assert events.log_build_attempt.call_count == 2
        events.log_build_attempt.assert_any_call("StatusBadge", 1, 3, False)
        events.log_fix_applied.assert_called_once_with(
            "heuristic", "Added scripts", "learned-1234abcd"
        )
        events.log_pattern_learned.assert_called_once()

    def test_nucleus_fix_is_not_reported_as_learned(self, widget_config, work_folder):
        events = MagicMock()
        chain = MagicMock()
        chain.try_fix.return_value = FixResult(
            applied=True, description="[NUCLEUS] x", strategy="nucleus", pattern_id="p",
        )
        BuildLoop(FakeExecutor([failed_result(), GenerationResult(success=True)]),
                  chain, events=events).execute(widget_config, _options(work_folder))
        events.log_pattern_learned.assert_not_called()

    def test_success_is_saved_to_knowledge(self, widget_config, work_folder, knowledge):
        BuildLoop(FakeExecutor([GenerationResult(success=True, build_output="ok")]),
                  NeverFixChain(), knowledge=knowledge).execute(
            widget_config, _options(work_folder)
        )
        titles = [e.title for e in knowledge.entries()]
        assert titles == ["Successful Widget: StatusBadge"]

    def test_deploy_target_is_applied(self, widget_config, work_folder):
        executor = MagicMock()
        executor.run.return_value = GenerationResult(success=True)
        BuildLoop(executor, NeverFixChain()).execute(
            widget_config, _options(work_folder, auto_deploy_target="/projects/app")
        )
        config = executor.run.call_args[0][0]
        assert config.target_project_path == "/projects/app"
        # The caller's config is untouched
        assert widget_config.target_project_path is None


def _skipping(name, description=""):
    strategy = MagicMock()
    strategy.name = name
    strategy.try_fix.return_value = FixResult.not_applied(name, description)
    return strategy


class TestSummary:
    def test_success_summary(self, widget_config, work_folder, tmp_path):
        artifact = tmp_path / "StatusBadge.mpk"
        executor = FakeExecutor([failed_result(),
                                 GenerationResult(success=True, artifact_path=artifact)])
        result = BuildLoop(executor, AlwaysFixChain()).execute(
            widget_config, _options(work_folder)
        )
        summary = result.summary()
        assert summary.startswith("Build succeeded after 2 attempt(s)")
        assert f"Artifact: {artifact}" in summary
        assert "  1. fix 1" in summary
        assert "Last diagnostics" not in summary

    def test_failure_summary_truncates_diagnostics(self, widget_config, work_folder):
        executor = FakeExecutor([failed_result("x" * 600)])
        result = BuildLoop(executor, NeverFixChain()).execute(
            widget_config, _options(work_folder)
        )
        summary = result.summary()
        assert summary.startswith("Build failed after 1 attempt(s)")
        assert "x" * 500 + "..." in summary
        assert "x" * 501 not in summary

    def test_chain_verdicts_are_listed_on_failure(self, widget_config, work_folder):
        chain = FixStrategyChain([_skipping("cache", "No match"), _skipping("rules")])

        result = BuildLoop(FakeExecutor([failed_result()]), chain).execute(
            widget_config, _options(work_folder)
        )

        assert result.strategy_log == ["[cache] skipped: No match", "[rules] skipped: -"]
        assert "Strategies consulted:\n  [cache] skipped: No match\n  [rules] skipped: -" \
            in result.summary()

    def test_verdicts_are_hidden_on_success(self, widget_config, work_folder):
        strategy = MagicMock()
        strategy.name = "rules"
        strategy.try_fix.return_value = FixResult(applied=True, description="patched",
                                                  strategy="rules")
        executor = FakeExecutor([failed_result(), GenerationResult(success=True)])

        result = BuildLoop(executor, FixStrategyChain([strategy])).execute(
            widget_config, _options(work_folder)
        )

        assert result.strategy_log == ["[rules] applied: patched"]
        assert "Strategies consulted" not in result.summary()


# ---------------------------------------------------------------------------
# End-to-end repairs
# ---------------------------------------------------------------------------

def _missing_react(project_dir):
    component = project_dir / "src" / "StatusBadge.tsx"
    if "import * as React" not in component.read_text(encoding="utf-8"):
        return REACT_ERROR
    return None


def _missing_build_script(project_dir):
    manifest = json.loads((project_dir / "package.json").read_text(encoding="utf-8"))
    if not (manifest.get("scripts") or {}).get("build"):
        return BUILD_SCRIPT_ERROR
    return None


class ScriptlessScaffolder(WidgetScaffolder):
    """Renders a manifest without scripts, like an outdated template."""

    def render_project(self, config):
        files = super().render_project(config)
        manifest = json.loads(files["package.json"])
        manifest.pop("scripts")
        files["package.json"] = json.dumps(manifest, indent=2)
        return files


def _scriptless_executor():
    return GenerationExecutor(ScriptlessScaffolder(), ScriptedPackager(_missing_build_script))


class TestEndToEnd:
    def test_nucleus_repairs_missing_react_import(self, make_executor, pattern_store,
                                                  knowledge, widget_config, work_folder,
                                                  tmp_path, test_config):
        executor, packager = make_executor(_missing_react)
        chain = FixStrategyChain.default(pattern_store, knowledge, config=test_config)
        project = tmp_path / "project"

        result = BuildLoop(executor, chain, knowledge=knowledge).execute(
            widget_config, _options(work_folder, auto_deploy_target=str(project))
        )

        assert result.outcome == BuildOutcome.SUCCEEDED
        assert result.attempts == 2
        assert result.fixes_applied == ["[NUCLEUS] Add missing React import"]
        assert len(packager.calls) == 2
        component = work_folder / "statusbadge" / "src" / "StatusBadge.tsx"
        assert component.read_text(encoding="utf-8").startswith(REACT_IMPORT)
        assert result.deployed_to == project / "widgets" / "statusbadge.mpk"
        assert result.deployed_to.exists()

        reloaded = PatternStore(path=pattern_store.path)
        pattern = reloaded.get_pattern("missing-react-import")
        assert pattern.confidence == pytest.approx(1.0)
        assert pattern.success_count == 11

    def test_heuristic_fix_is_learned_and_reused(self, empty_store,
                                                 knowledge, widget_config, tmp_path,
                                                 test_config):
        first_work = tmp_path / "first"
        executor = _scriptless_executor()
        chain = FixStrategyChain.default(empty_store, knowledge, config=test_config)

        first = BuildLoop(executor, chain).execute(widget_config, _options(first_work))

        assert first.outcome == BuildOutcome.SUCCEEDED
        assert first.fixes_applied == ["Added missing build scripts to package.json"]
        manifest = json.loads((first_work / "statusbadge" / "package.json").read_text(
            encoding="utf-8"))
        assert {"build", "dev"} <= set(manifest["scripts"])
        learned = [p for p in empty_store.error_fixes if p.source == PatternSource.LEARNED]
        assert len(learned) == 1
        assert learned[0].confidence == pytest.approx(0.7)

        # A second widget with the same defect is repaired from the nucleus
        second_work = tmp_path / "second"
        store = PatternStore(path=empty_store.path, seed_defaults=False)
        chain = FixStrategyChain.default(store, knowledge, config=test_config)

        second = BuildLoop(executor, chain).execute(widget_config, _options(second_work))

        assert second.outcome == BuildOutcome.SUCCEEDED
        assert second.fixes_applied == [
            "[NUCLEUS] Added missing build scripts to package.json"
        ]
        pattern = store.get_pattern(learned[0].id)
        assert pattern.success_count == 2
        assert pattern.confidence == pytest.approx(0.75)

    def test_unfixable_error_fails(self, make_executor, pattern_store, widget_config,
                                   work_folder, test_config):
        executor, _ = make_executor(lambda project: "error TS9999: Something novel.")
        chain = FixStrategyChain.default(pattern_store, config=test_config)

        result = BuildLoop(executor, chain).execute(widget_config, _options(work_folder))

        assert result.outcome == BuildOutcome.FAILED
        assert result.attempts == 1
        summary = result.summary()
        assert "TS9999" in summary
        assert "Strategies consulted:" in summary
        assert "  [knowledge] skipped: Knowledge store disabled" in summary
        assert "  [heuristic] skipped: No heuristic rule matched" in summary
        assert "  [generative] skipped: No AI model available for analysis" in summary
        assert result.strategy_log[0].startswith("[nucleus] skipped")
