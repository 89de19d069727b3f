"""
Build Loop
==========
Self-healing generate → package → diagnose → repair → retry orchestrator.

For each attempt up to ``max_attempts``:

1. Stop with ``cancelled`` if cancellation was requested.
2. Make sure the work folder exists (the only fatal error).
3. Run the executor.  Success ends the loop with ``succeeded``.
4. Otherwise hand the diagnostic text to the fix chain once.  An applied
   fix is recorded and the loop retries; no fix ends the loop early with
   ``failed``.  The chain is not consulted after the final attempt.

Running out of attempts ends with ``exhausted``.  Attempts are strictly
sequential and an attempt in flight is never interrupted.

Usage::

    loop = BuildLoop(GenerationExecutor(), FixStrategyChain.default(store, knowledge, helper))
    result = loop.execute(config, BuildLoopOptions(max_attempts=3))
    print(result.summary())
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, List, Optional

from widget_agent.errors import WorkFolderError
from widget_agent.executor import GenerationResult, widget_output_dir
from widget_agent.fix_strategies import ChainReport, FixResult
from widget_agent.widget_config import WidgetConfig

logger = logging.getLogger("widget_agent.build_loop")

ProgressCallback = Callable[[str], None]

_SUMMARY_DIAGNOSTIC_CHARS = 500


class BuildOutcome(Enum):
    SUCCEEDED = "succeeded"
    CANCELLED = "cancelled"
    FAILED = "failed"
    EXHAUSTED = "exhausted"


class CancellationToken:
    """Cooperative cancellation flag, safe to set from another thread."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class BuildLoopOptions:
    """Options for one :meth:`BuildLoop.execute` call.

    Attributes:
        work_folder: Parent folder for generated widgets.  Defaults to
            ``AgentConfig.build.work_folder``.
        max_attempts: Upper bound on executor runs.
        auto_deploy_target: Project folder to copy the ``.mpk`` into;
            overrides the config's own target.
    """

    work_folder: Optional[Path] = None
    max_attempts: int = 3
    auto_deploy_target: Optional[str] = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")


@dataclass
class BuildAttempt:
    """Record of one executor run (never persisted)."""

    attempt_number: int
    config: WidgetConfig
    outcome: str
    diagnostic_text: str = ""
    fix_applied: Optional[str] = None
    fix_pattern_id: Optional[str] = None


@dataclass
class BuildLoopResult:
    """Terminal result of a build loop.

    Attributes:
        outcome: One of :class:`BuildOutcome`.
        success: True only for ``succeeded``.
        attempts: Executor runs performed.
        fixes_applied: Descriptions of every fix applied, in order.
        diagnostics: Diagnostic text of every failed attempt, in order.
        output_path: Widget project folder.
        artifact_path: Built ``.mpk`` on success.
        deployed_to: Deployed ``.mpk`` location on success.
        history: Per-attempt records.
        strategy_log: Verdict of every strategy consulted, one line each.
    """

    outcome: BuildOutcome
    success: bool
    attempts: int
    fixes_applied: List[str] = field(default_factory=list)
    diagnostics: List[str] = field(default_factory=list)
    output_path: Optional[Path] = None
    artifact_path: Optional[Path] = None
    deployed_to: Optional[Path] = None
    history: List[BuildAttempt] = field(default_factory=list)
    strategy_log: List[str] = field(default_factory=list)

    def summary(self) -> str:
        """Human-readable repair history."""
        lines = [f"Build {self.outcome.value} after {self.attempts} attempt(s)"]
        if self.artifact_path:
            lines.append(f"Artifact: {self.artifact_path}")
        if self.deployed_to:
            lines.append(f"Deployed to: {self.deployed_to}")
        if self.fixes_applied:
            lines.append("Fixes tried:")
            lines.extend(f"  {i}. {fix}" for i, fix in enumerate(self.fixes_applied, 1))
        if self.strategy_log and not self.success:
            lines.append("Strategies consulted:")
            lines.extend(f"  {line}" for line in self.strategy_log)
        if self.diagnostics and not self.success:
            last = self.diagnostics[-1]
            if len(last) > _SUMMARY_DIAGNOSTIC_CHARS:
                last = last[:_SUMMARY_DIAGNOSTIC_CHARS] + "..."
            lines.append("Last diagnostics:")
            lines.append(last)
        return "\n".join(lines)


class BuildLoop:
    """Drives bounded, self-repairing build attempts.

    Args:
        executor: Object with ``run(config, work_folder) -> GenerationResult``.
        chain: Object with ``try_fix(diagnostic_text, widget_path, config)
            -> FixResult``.
        knowledge: Optional knowledge store told about successful builds.
        progress: Optional callback receiving progress lines.
        events: Optional :class:`StructuredLogger` for build events.
    """

    def __init__(self, executor, chain, knowledge=None,
                 progress: Optional[ProgressCallback] = None, events=None):
        self.executor = executor
        self.chain = chain
        self.knowledge = knowledge
        self.progress = progress
        self.events = events

    def execute(
        self,
        config: WidgetConfig,
        options: Optional[BuildLoopOptions] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> BuildLoopResult:
        """Run the loop to a terminal outcome.

        Raises:
            WorkFolderError: If the work folder cannot be created.
        """
        options = options or BuildLoopOptions()
        if options.auto_deploy_target:
            config = config.with_target(options.auto_deploy_target)
        work_folder = Path(options.work_folder or self._default_work_folder())
        widget_path = widget_output_dir(config, work_folder)

        history: List[BuildAttempt] = []
        fixes: List[str] = []
        diagnostics: List[str] = []
        strategy_log: List[str] = []
        attempt = 0

        def finish(outcome: BuildOutcome, result: Optional[GenerationResult] = None):
            return BuildLoopResult(
                outcome=outcome,
                success=outcome == BuildOutcome.SUCCEEDED,
                attempts=attempt,
                fixes_applied=list(fixes),
                diagnostics=list(diagnostics),
                output_path=(result.output_path if result and result.output_path else widget_path),
                artifact_path=result.artifact_path if result else None,
                deployed_to=result.deployed_to if result else None,
                history=history,
                strategy_log=list(strategy_log),
            )

        while attempt < options.max_attempts:
            if cancel_token is not None and cancel_token.cancelled:
                self._report("Build cancelled.")
                return finish(BuildOutcome.CANCELLED)

            self._ensure_work_folder(work_folder)
            attempt += 1
            self._report(f"Build attempt {attempt}/{options.max_attempts} for {config.name}")

            # Fresh scaffold first; retries build on the repaired files
            result = self._run_executor(config, work_folder, preserve_existing=attempt > 1)
            self._log_attempt(config, attempt, options.max_attempts, result.success)

            if result.success:
                history.append(BuildAttempt(attempt, config, BuildOutcome.SUCCEEDED.value))
                self._report(f"Build succeeded on attempt {attempt}.")
                if self.knowledge is not None:
                    self.knowledge.save_successful_build(config, result.build_output)
                return finish(BuildOutcome.SUCCEEDED, result)

            diagnostic_text = result.diagnostic_text
            diagnostics.append(diagnostic_text)
            record = BuildAttempt(attempt, config, "failed", diagnostic_text)
            history.append(record)

            if cancel_token is not None and cancel_token.cancelled:
                self._report("Build cancelled.")
                return finish(BuildOutcome.CANCELLED, result)

            if attempt >= options.max_attempts:
                break

            fix = self._try_fix(diagnostic_text, result.output_path or widget_path, config)
            report = getattr(self.chain, "last_report", None)
            if isinstance(report, ChainReport):
                strategy_log.extend(report.as_lines())
            if not fix.applied:
                self._report("Could not determine an automatic fix.")
                return finish(BuildOutcome.FAILED, result)

            record.fix_applied = fix.description
            record.fix_pattern_id = fix.pattern_id
            fixes.append(fix.description)
            self._report(f"Fix applied: {fix.description}. Retrying build...")

        self._report(f"Build failed after {attempt} attempts.")
        return finish(BuildOutcome.EXHAUSTED)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _default_work_folder() -> str:
        from widget_agent.config import get_config
        return get_config().build.work_folder

    @staticmethod
    def _ensure_work_folder(work_folder: Path) -> None:
        try:
            work_folder.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise WorkFolderError(f"Cannot create work folder {work_folder}: {e}") from e

    def _run_executor(self, config: WidgetConfig, work_folder: Path,
                      preserve_existing: bool) -> GenerationResult:
        try:
            return self.executor.run(config, work_folder, preserve_existing=preserve_existing)
        except Exception as e:
            # An unreachable executor is a failed attempt, still eligible for repair
            logger.warning("Executor raised on %s: %s", config.name, e)
            if self.events is not None:
                self.events.log_error(e, {"widget": config.name})
            return GenerationResult(
                success=False,
                output_path=widget_output_dir(config, work_folder),
                errors=[str(e) or type(e).__name__],
            )

    def _try_fix(self, diagnostic_text: str, widget_path: Path, config: Any) -> FixResult:
        self._report("Analyzing errors and looking for a fix...")
        fix = self.chain.try_fix(diagnostic_text, widget_path, config)
        if fix.applied and self.events is not None:
            self.events.log_fix_applied(fix.strategy, fix.description, fix.pattern_id)
            # Fixes from outside the nucleus are learned into it when applied
            if fix.pattern_id and fix.strategy != "nucleus":
                self.events.log_pattern_learned(fix.pattern_id, diagnostic_text)
        return fix

    def _log_attempt(self, config: WidgetConfig, attempt: int, max_attempts: int,
                     success: bool) -> None:
        if self.events is not None:
            self.events.log_build_attempt(config.name, attempt, max_attempts, success)

    def _report(self, message: str) -> None:
        logger.info(message)
        if self.progress is not None:
            self.progress(message)
