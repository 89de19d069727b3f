"""
Widget Agent
============
Central orchestrator that wires all subsystems together.

Provides the ``WidgetAgent`` class that initialises logging, the LLM
fallback chain, the pattern store, the knowledge store, the fix strategy
chain and the build loop from one :class:`AgentConfig`, then exposes a
small ``build()`` / ``analyze_error()`` / ``research()`` API.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from widget_agent.build_loop import (
    BuildLoop,
    BuildLoopOptions,
    BuildLoopResult,
    CancellationToken,
    ProgressCallback,
)
from widget_agent.config import AgentConfig, get_config
from widget_agent.executor import GenerationExecutor
from widget_agent.fix_strategies import CommandRunner, FixStrategyChain
from widget_agent.knowledge_store import KnowledgeStore
from widget_agent.llm_provider import get_llm
from widget_agent.nucleus import PatternStore
from widget_agent.observability import initialize_observability
from widget_agent.packager import WidgetPackager
from widget_agent.research import DiagnosisHelper, ResearchResult
from widget_agent.resilience import CircuitBreaker
from widget_agent.scaffolder import WidgetScaffolder
from widget_agent.widget_config import WidgetConfig

logger = logging.getLogger("widget_agent.agent")


class WidgetAgent:
    """Self-healing widget builder.

    Every collaborator can be injected; anything left out is built from
    ``config``.

    Args:
        config: Optional ``AgentConfig``.  Falls back to the global
            singleton returned by ``get_config()`` when *None*.
        llm: LlamaIndex LLM.  Resolved with :func:`get_llm` when *None*.
        store: Pattern store (the nucleus).
        knowledge: Knowledge store.
        packager: Build toolchain wrapper.
        runner: Command runner for dependency installs.
    """

    def __init__(
        self,
        config: Optional[AgentConfig] = None,
        llm=None,
        store: Optional[PatternStore] = None,
        knowledge: Optional[KnowledgeStore] = None,
        packager: Optional[WidgetPackager] = None,
        runner: Optional[CommandRunner] = None,
    ) -> None:
        self.config: AgentConfig = config or get_config()

        # Observability -------------------------------------------------
        self.events = initialize_observability(self.config)

        # LLM -----------------------------------------------------------
        self.llm = llm if llm is not None else get_llm(self.config)

        # Stores --------------------------------------------------------
        self.store = store or PatternStore.from_config(self.config)
        self.knowledge = knowledge or KnowledgeStore.from_config(self.config)

        # Diagnosis -----------------------------------------------------
        production = self.config.production
        if production.circuit_breaker_enabled:
            breaker = CircuitBreaker.from_config(production, name="diagnosis")
        else:
            # never trips
            breaker = CircuitBreaker(name="diagnosis", failure_threshold=float("inf"))
        self.helper = DiagnosisHelper(
            llm=self.llm,
            knowledge=self.knowledge,
            breaker=breaker,
            max_retries=production.max_retries,
            max_file_chars=self.config.llm.max_file_context_chars,
            backoff_factor=production.retry_backoff_factor,
            jitter=production.retry_jitter,
        )

        # Build loop ----------------------------------------------------
        self.chain = FixStrategyChain.default(
            self.store, self.knowledge, self.helper, runner=runner, config=self.config,
        )
        self.executor = GenerationExecutor(
            scaffolder=WidgetScaffolder(),
            packager=packager or WidgetPackager.from_config(self.config),
        )

        logger.info(
            "Widget agent ready (patterns: %d, knowledge: %s, llm: %s)",
            len(self.store.error_fixes),
            "on" if self.knowledge.enabled else "off",
            "on" if self.helper.available else "offline",
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def build(
        self,
        widget: WidgetConfig,
        work_folder: Optional[str] = None,
        max_attempts: Optional[int] = None,
        deploy_to: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> BuildLoopResult:
        """Generate, package and repair ``widget`` until it builds.

        Raises:
            WorkFolderError: If the work folder cannot be created.
        """
        options = BuildLoopOptions(
            work_folder=Path(work_folder or self.config.build.work_folder),
            max_attempts=max_attempts or self.config.build.max_attempts,
            auto_deploy_target=deploy_to,
        )
        loop = BuildLoop(
            self.executor,
            self.chain,
            knowledge=self.knowledge,
            progress=progress,
            events=self.events,
        )
        return loop.execute(widget, options, cancel_token)

    def analyze_error(self, error_text: str) -> str:
        return self.helper.analyze_error(error_text)

    def research(self, topic: str) -> ResearchResult:
        return self.helper.research(topic)

    def get_status(self) -> Dict[str, Any]:
        """Snapshot of the agent's subsystems."""
        return {
            "llm_available": self.helper.available,
            "patterns_path": str(self.store.path),
            "nucleus": self.store.get_stats(),
            "knowledge": self.knowledge.get_status(),
            "npm_available": getattr(self.executor.packager, "available", False),
        }
