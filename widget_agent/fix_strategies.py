"""
Fix Strategies
==============
The ordered repair chain consulted by the build loop after a failed
attempt:

1. :class:`NucleusStrategy`: confident patterns from the :class:`PatternStore`
2. :class:`KnowledgeCacheStrategy`: structured fixes saved in the knowledge store
3. :class:`HeuristicStrategy`: a small fixed rule table
4. :class:`GenerativeStrategy`: an edit plan requested from the LLM

Each strategy either applies a fix in place and says so, or defers to the
next.  Exceptions raised inside a strategy are caught by the chain and
treated as "not applied"; they never abort the build loop.  Fixes from the
last three strategies are learned back into the nucleus on success.

Usage::

    chain = FixStrategyChain.default(store, knowledge, helper)
    result = chain.try_fix(diagnostic_text, widget_path, config)
    if result.applied:
        ...  # retry the build
"""

from __future__ import annotations

import json
import logging
import re
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from widget_agent.file_edits import (
    REACT_IMPORT,
    FileEdit,
    apply_edit,
    apply_edits,
    ensure_build_scripts,
    ensure_react_import,
)
from widget_agent.errors import FixApplicationError
from widget_agent.nucleus import FixPattern, FixType, PatternStore

logger = logging.getLogger("widget_agent.fix_strategies")

# (command, cwd) -> (success, combined output)
CommandRunner = Callable[[List[str], Path], Tuple[bool, str]]


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass
class FixResult:
    """Outcome of one strategy (or of the whole chain).

    Attributes:
        applied: Whether files were changed.
        description: Human-readable description, prefixed by provenance.
        strategy: Name of the strategy that produced this result.
        pattern_id: Nucleus pattern applied or learned, if any.
    """

    applied: bool
    description: str = ""
    strategy: str = ""
    pattern_id: Optional[str] = None

    @classmethod
    def not_applied(cls, strategy: str, description: str = "") -> "FixResult":
        return cls(applied=False, description=description, strategy=strategy)


@dataclass
class ChainReport:
    """Every strategy result from one :meth:`FixStrategyChain.try_fix` call."""

    results: List[FixResult] = field(default_factory=list)

    def as_lines(self) -> List[str]:
        lines = []
        for r in self.results:
            mark = "applied" if r.applied else "skipped"
            lines.append(f"[{r.strategy}] {mark}: {r.description or '-'}")
        return lines


class FixStrategy:
    """Base class: one repair approach."""

    name = "strategy"

    def try_fix(self, diagnostic_text: str, widget_path: Path, config: Any) -> FixResult:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def run_command(command: List[str], cwd: Path, timeout: int = 600) -> Tuple[bool, str]:
    """Run a command in a child process.

    Returns:
        Tuple of (success, combined_stdout_stderr) with output truncated
        to its last 500 characters.
    """
    try:
        result = subprocess.run(
            command,
            cwd=str(cwd),
            capture_output=True,
            text=True,
            timeout=timeout,
        )
        output = (result.stdout + result.stderr).strip()
        return result.returncode == 0, output[-500:]
    except subprocess.TimeoutExpired:
        return False, f"{command[0]} timed out after {timeout} s"
    except OSError as exc:
        return False, f"{command[0]} failed to run: {exc}"


def _learn(store: Optional[PatternStore], error_text: str, description: str,
           payload: Dict[str, Any]) -> Optional[str]:
    if store is None:
        return None
    pattern = store.learn(error_text, description, payload, True)
    return pattern.id if pattern else None


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

class NucleusStrategy(FixStrategy):
    """Apply the best-ranked confident pattern that actually changes files.

    Every attempted pattern gets :meth:`PatternStore.record_outcome`, so a
    pattern that matches but never applies decays below the threshold.
    """

    name = "nucleus"

    def __init__(self, store: PatternStore, acceptance_threshold: float = 0.7):
        self.store = store
        self.acceptance_threshold = acceptance_threshold

    def try_fix(self, diagnostic_text, widget_path, config):
        candidates = self.store.match_fixes(diagnostic_text)
        if not candidates:
            return FixResult.not_applied(self.name, "No matching pattern")

        for pattern in candidates:
            if pattern.confidence < self.acceptance_threshold:
                continue

            logger.info(
                "Trying nucleus pattern %s (confidence %.2f)",
                pattern.id, pattern.confidence,
            )
            try:
                applied = self._apply(pattern, Path(widget_path))
            except (OSError, FixApplicationError) as e:
                logger.warning("Nucleus pattern %s failed: %s", pattern.id, e)
                applied = False

            self.store.record_outcome(pattern.id, applied)
            if applied:
                return FixResult(
                    applied=True,
                    description=f"[NUCLEUS] {pattern.fix.description}",
                    strategy=self.name,
                    pattern_id=pattern.id,
                )

        return FixResult.not_applied(self.name, "Nucleus patterns did not apply")

    @staticmethod
    def _apply(pattern: FixPattern, widget_path: Path) -> bool:
        fix = pattern.fix

        if fix.type == FixType.FILE_EDIT:
            if fix.replace is None:
                return False
            edit = FileEdit(
                file=fix.file,
                action="replace",
                search=fix.search or "",
                replace=fix.replace,
            )
            return apply_edit(widget_path, edit) > 0

        if fix.type == FixType.CONFIG_CHANGE:
            if fix.file not in (None, "package.json"):
                return False
            return ensure_build_scripts(widget_path)

        if fix.type == FixType.DEPENDENCY_ADD:
            if fix.commands:
                logger.info("Pattern %s requires running: %s",
                            pattern.id, ", ".join(fix.commands))
            return False

        logger.info("Manual fix needed: %s", fix.description)
        return False


class KnowledgeCacheStrategy(FixStrategy):
    """Apply structured fixes previously saved in the knowledge store.

    Only fixes stored as ``{"fixes": [...]}`` JSON are executable; plain
    text and metadata-only fixes are skipped.
    """

    name = "knowledge"

    def __init__(self, knowledge, store: Optional[PatternStore] = None):
        self.knowledge = knowledge
        self.store = store

    def try_fix(self, diagnostic_text, widget_path, config):
        if self.knowledge is None:
            return FixResult.not_applied(self.name, "Knowledge store disabled")

        known_fixes = self.knowledge.get_known_fixes(diagnostic_text)
        if not known_fixes:
            return FixResult.not_applied(self.name, "No known fixes")

        for known in known_fixes:
            try:
                data = json.loads(known.fix)
            except json.JSONDecodeError:
                logger.debug("Known fix is text-based, skipping: %.60s", known.fix)
                continue

            edits = data.get("fixes") if isinstance(data, dict) else None
            if not isinstance(edits, list) or not edits:
                continue

            if apply_edits(Path(widget_path), edits) == 0:
                continue

            description = data.get("description") or known.fix
            payload = _payload_for_edits(edits)
            pattern_id = _learn(self.store, known.error_pattern, description, payload)
            return FixResult(
                applied=True,
                description=f"[LEARNED] {description[:100]}",
                strategy=self.name,
                pattern_id=pattern_id,
            )

        return FixResult.not_applied(self.name, "Known fixes did not apply")


class HeuristicStrategy(FixStrategy):
    """Fixed rule table for the most common failure classes.

    Args:
        store: Nucleus to learn successful fixes into.
        knowledge: Knowledge store to record working fixes in.
        runner: Runs install commands; defaults to :func:`run_command`.
        npm_command: Package manager executable.
    """

    name = "heuristic"

    _MODULE_RE = re.compile(
        r"(?:Cannot find module|Can't resolve)\s+['\"]([^'\"]+)['\"]",
        re.IGNORECASE,
    )

    def __init__(self, store: Optional[PatternStore] = None, knowledge=None,
                 runner: Optional[CommandRunner] = None, npm_command: str = "npm"):
        self.store = store
        self.knowledge = knowledge
        self.runner = runner or run_command
        self.npm_command = npm_command

    def try_fix(self, diagnostic_text, widget_path, config):
        widget_path = Path(widget_path)
        lower = diagnostic_text.lower()

        for rule in (
            self._missing_module,
            self._missing_react_import,
            self._null_safety,
            self._missing_build_script,
        ):
            outcome = rule(diagnostic_text, lower, widget_path)
            if outcome is None:
                continue
            if isinstance(outcome, FixResult):
                return outcome

            description, payload = outcome
            if self.knowledge is not None:
                self.knowledge.save_working_fix(diagnostic_text, description, "success")
            pattern_id = _learn(self.store, diagnostic_text[:200], description, payload)
            return FixResult(
                applied=True,
                description=description,
                strategy=self.name,
                pattern_id=pattern_id,
            )

        return FixResult.not_applied(self.name, "No heuristic rule matched")

    # Each rule returns None (no match), a not-applied FixResult (stop here),
    # or (description, learn payload) after a successful fix.

    def _missing_module(self, text, lower, widget_path):
        if "cannot find module" not in lower and "module not found" not in lower:
            return None
        match = self._MODULE_RE.search(text)
        if not match:
            return None
        module = match.group(1)
        if module.startswith((".", "/")):
            return None

        command = [self.npm_command, "install", module]
        ok, output = self.runner(command, widget_path)
        if not ok:
            logger.warning("Installing %s failed: %s", module, output[:200])
            return None
        return (
            f"Installed missing module: {module}",
            {"type": FixType.DEPENDENCY_ADD.value, "commands": [" ".join(command)]},
        )

    def _missing_react_import(self, text, lower, widget_path):
        if ("'react' must be in scope" not in lower
                and "cannot find name 'react'" not in lower):
            return None
        if not ensure_react_import(widget_path):
            return None
        return (
            "Added missing React imports",
            {
                "type": FixType.FILE_EDIT.value,
                "file": "src/*.tsx",
                "search": "",
                "replace": REACT_IMPORT,
            },
        )

    def _null_safety(self, text, lower, widget_path):
        if ("object is possibly 'null'" not in lower
                and "object is possibly 'undefined'" not in lower):
            return None
        return FixResult.not_applied(
            self.name, "Null safety issue requires manual review"
        )

    def _missing_build_script(self, text, lower, widget_path):
        if "missing script: build" not in lower:
            return None
        if not ensure_build_scripts(widget_path):
            return None
        return (
            "Added missing build scripts to package.json",
            {"type": FixType.CONFIG_CHANGE.value, "file": "package.json"},
        )


class GenerativeStrategy(FixStrategy):
    """Last resort: apply an edit plan requested from the LLM.

    Any failure to get or parse a plan is "no fix found".
    """

    name = "generative"

    def __init__(self, helper, store: Optional[PatternStore] = None):
        self.helper = helper
        self.store = store

    def try_fix(self, diagnostic_text, widget_path, config):
        if self.helper is None or not self.helper.available:
            return FixResult.not_applied(self.name, "No AI model available for analysis")

        try:
            plan = self.helper.request_edit_plan(diagnostic_text, config, Path(widget_path))
        except Exception as e:
            logger.warning("AI analysis failed: %s", e)
            return FixResult.not_applied(self.name, f"AI analysis failed: {e}")

        if plan is None:
            return FixResult.not_applied(self.name, "Could not parse AI response")
        if not plan.fixes:
            return FixResult.not_applied(self.name, plan.analysis or "No fixes suggested")

        if plan.analysis:
            logger.info("AI analysis: %s", plan.analysis[:200])

        applied = apply_edits(Path(widget_path), plan.fixes)
        if applied == 0:
            return FixResult.not_applied(self.name, "Suggested edits did not match any file")

        description = plan.description or f"Applied {applied} fix(es)"
        pattern_id = _learn(
            self.store, diagnostic_text[:200], description, _payload_for_edits(plan.fixes)
        )
        return FixResult(
            applied=True,
            description=f"[AI] {description}",
            strategy=self.name,
            pattern_id=pattern_id,
        )


def _payload_for_edits(edits: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Typed nucleus payload for a list of edits.

    A single replace/prepend edit becomes a reusable file-edit; anything
    else is recorded as manual.
    """
    if len(edits) == 1 and isinstance(edits[0], dict):
        edit = FileEdit.from_dict(edits[0])
        if edit.action in ("replace", "prepend") and edit.replace:
            return {
                "type": FixType.FILE_EDIT.value,
                "file": edit.file,
                "search": edit.search if edit.action == "replace" else "",
                "replace": edit.replace,
            }
    return {"type": FixType.MANUAL.value}


# ---------------------------------------------------------------------------
# Chain
# ---------------------------------------------------------------------------

class FixStrategyChain:
    """Consults strategies in order and stops at the first applied fix."""

    def __init__(self, strategies: List[FixStrategy]):
        self.strategies = list(strategies)
        self.last_report = ChainReport()

    @classmethod
    def default(cls, store: Optional[PatternStore], knowledge=None, helper=None,
                runner: Optional[CommandRunner] = None, config=None) -> "FixStrategyChain":
        """The standard nucleus → knowledge → heuristic → generative chain."""
        if config is None:
            from widget_agent.config import get_config
            config = get_config()

        strategies: List[FixStrategy] = []
        if store is not None:
            strategies.append(
                NucleusStrategy(store, config.nucleus.acceptance_threshold)
            )
        strategies.append(KnowledgeCacheStrategy(knowledge, store))
        strategies.append(HeuristicStrategy(
            store, knowledge, runner=runner, npm_command=config.build.npm_command,
        ))
        strategies.append(GenerativeStrategy(helper, store))
        return cls(strategies)

    def try_fix(self, diagnostic_text: str, widget_path: Path, config: Any) -> FixResult:
        report = ChainReport()
        self.last_report = report

        for strategy in self.strategies:
            try:
                result = strategy.try_fix(diagnostic_text, Path(widget_path), config)
            except Exception as e:
                logger.warning("Fix strategy %s raised: %s", strategy.name, e)
                result = FixResult.not_applied(strategy.name, f"{type(e).__name__}: {e}")

            report.results.append(result)
            if result.applied:
                logger.info("Fix applied by %s: %s", strategy.name, result.description)
                return result
            logger.debug("Strategy %s: %s", strategy.name, result.description)

        return FixResult.not_applied("chain", "Could not determine automatic fix")
