"""
Widget Agent - Self-Healing Widget Builder
==========================================
Generates pluggable widget projects from a declarative config, packages
them, and repairs failed builds with a learning fix-pattern store.
"""

from widget_agent.config import AgentConfig, get_config, reload_config
from widget_agent.agent import WidgetAgent
from widget_agent.errors import (
    WidgetAgentError,
    WidgetConfigError,
    WorkFolderError,
    GenerationError,
    FixApplicationError,
)
from widget_agent.widget_config import (
    WidgetConfig,
    WidgetProperty,
    WidgetEvent,
    PropertyType,
)
from widget_agent.nucleus import (
    PatternStore,
    FixPattern,
    FixAction,
    FixType,
    PatternSource,
    find_patterns_path,
)
from widget_agent.knowledge_store import KnowledgeStore, KnowledgeEntry, KnownFix
from widget_agent.fix_strategies import (
    FixResult,
    FixStrategy,
    FixStrategyChain,
    NucleusStrategy,
    KnowledgeCacheStrategy,
    HeuristicStrategy,
    GenerativeStrategy,
)
from widget_agent.build_loop import (
    BuildLoop,
    BuildLoopOptions,
    BuildLoopResult,
    BuildAttempt,
    BuildOutcome,
    CancellationToken,
)
from widget_agent.executor import GenerationExecutor, GenerationResult
from widget_agent.scaffolder import WidgetScaffolder
from widget_agent.packager import WidgetPackager, PackageResult, PackageDiagnostic
from widget_agent.research import DiagnosisHelper, ResearchResult
from widget_agent.llm_provider import NullLLM, get_llm
from widget_agent.resilience import (
    CircuitBreaker,
    CircuitBreakerOpen,
    FallbackChain,
    resilient_api_call,
)
from widget_agent.observability import (
    StructuredLogger,
    get_logger,
    initialize_observability,
)


__all__ = [
    # Agent
    "WidgetAgent",
    # Config
    "AgentConfig",
    "get_config",
    "reload_config",
    # Errors
    "WidgetAgentError",
    "WidgetConfigError",
    "WorkFolderError",
    "GenerationError",
    "FixApplicationError",
    # Widget model
    "WidgetConfig",
    "WidgetProperty",
    "WidgetEvent",
    "PropertyType",
    # Nucleus
    "PatternStore",
    "FixPattern",
    "FixAction",
    "FixType",
    "PatternSource",
    "find_patterns_path",
    # Knowledge
    "KnowledgeStore",
    "KnowledgeEntry",
    "KnownFix",
    # Fix strategies
    "FixResult",
    "FixStrategy",
    "FixStrategyChain",
    "NucleusStrategy",
    "KnowledgeCacheStrategy",
    "HeuristicStrategy",
    "GenerativeStrategy",
    # Build loop
    "BuildLoop",
    "BuildLoopOptions",
    "BuildLoopResult",
    "BuildAttempt",
    "BuildOutcome",
    "CancellationToken",
    # Executor
    "GenerationExecutor",
    "GenerationResult",
    "WidgetScaffolder",
    "WidgetPackager",
    "PackageResult",
    "PackageDiagnostic",
    # Diagnosis
    "DiagnosisHelper",
    "ResearchResult",
    "NullLLM",
    "get_llm",
    # Resilience
    "CircuitBreaker",
    "CircuitBreakerOpen",
    "FallbackChain",
    "resilient_api_call",
    # Observability
    "StructuredLogger",
    "get_logger",
    "initialize_observability",
]
