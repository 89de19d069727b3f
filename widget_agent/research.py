"""
Diagnosis & Research Helper
===========================
LLM-backed error analysis, topic research and repair-plan requests.

Local knowledge is consulted first; a high-confidence cached entry answers
a research request without touching the model.  Whenever no model is
available (missing, :class:`NullLLM`, or every call failing) the helper
returns canned offline advice instead of raising.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from widget_agent.llm_provider import is_null_llm
from widget_agent.resilience import CircuitBreaker, resilient_api_call

logger = logging.getLogger("widget_agent.research")

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_CODE_BLOCK_RE = re.compile(r"```(\w+)\n([\s\S]*?)```")

_DOCS_URL = "https://docs.mendix.com/howto/extensibility/pluggable-widgets/"
_TOOLS_URL = "https://www.npmjs.com/package/@mendix/pluggable-widgets-tools"
_EXAMPLES_URL = "https://github.com/mendix/widgets-resources"


@dataclass
class CodeExample:
    language: str
    code: str
    source: str
    description: str = ""


@dataclass
class ResearchResult:
    """Outcome of :meth:`DiagnosisHelper.research`.

    Attributes:
        summary: Markdown summary.
        code_examples: Extracted code snippets.
        sources: Where the findings came from.
        confidence: ``high``, ``medium`` or ``low``.
        from_cache: True when served from the local knowledge store.
    """

    summary: str
    code_examples: List[CodeExample] = field(default_factory=list)
    sources: List[str] = field(default_factory=list)
    confidence: str = "low"
    from_cache: bool = False


@dataclass
class EditPlan:
    """A parsed repair plan: what went wrong and the edits to make."""

    analysis: str = ""
    fixes: List[Dict[str, Any]] = field(default_factory=list)
    description: str = ""


# ---------------------------------------------------------------------------
# Prompt building & parsing
# ---------------------------------------------------------------------------

def build_fix_prompt(
    error_text: str,
    config: Any,
    widget_path: Path,
    max_file_chars: int = 2000,
) -> str:
    """Build the repair prompt: error output, config and current sources."""
    file_context = []
    src_dir = Path(widget_path) / "src"
    if src_dir.is_dir():
        for path in sorted(src_dir.iterdir()):
            if path.is_file() and path.suffix in (".tsx", ".ts", ".xml"):
                content = path.read_text(encoding="utf-8", errors="replace")
                file_context.append(
                    f"### {path.name}\n```\n{content[:max_file_chars]}\n```"
                )

    config_json = json.dumps(config.to_dict(), indent=2)
    files = "\n\n".join(file_context) or "(no source files)"

    return (
        "You are a Mendix pluggable widget expert. A widget build has failed.\n\n"
        f"## Error Output\n```\n{error_text}\n```\n\n"
        f"## Widget Config\n```json\n{config_json}\n```\n\n"
        f"## Current Files\n{files}\n\n"
        "## Your Task\n\n"
        "Analyze the error and provide a fix. Respond in this JSON format:\n"
        "{\n"
        '    "analysis": "What caused the error",\n'
        '    "fixes": [\n'
        "        {\n"
        f'            "file": "src/{config.name}.tsx",\n'
        '            "action": "replace | prepend | append",\n'
        '            "search": "text to find",\n'
        '            "replace": "text to replace with"\n'
        "        }\n"
        "    ],\n"
        '    "description": "Brief description of fix"\n'
        "}\n\n"
        "Be specific. Provide exact text to search for and replace."
    )


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Parse the outermost ``{...}`` block of ``text``, or ``None``."""
    match = _JSON_OBJECT_RE.search(text or "")
    if not match:
        return None
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def parse_edit_plan(text: str) -> Optional[EditPlan]:
    data = extract_json_object(text)
    if data is None:
        return None
    fixes = data.get("fixes") or []
    if not isinstance(fixes, list):
        fixes = []
    return EditPlan(
        analysis=str(data.get("analysis") or ""),
        fixes=[f for f in fixes if isinstance(f, dict)],
        description=str(data.get("description") or ""),
    )


def extract_code_examples(content: str, source: str = "Local Knowledge Base") -> List[CodeExample]:
    return [
        CodeExample(
            language=m.group(1),
            code=m.group(2).strip(),
            source=source,
            description="Cached from previous research",
        )
        for m in _CODE_BLOCK_RE.finditer(content)
    ]


# ---------------------------------------------------------------------------
# Offline advice
# ---------------------------------------------------------------------------

def offline_error_advice(error_text: str) -> str:
    """Canned troubleshooting advice keyed by common error classes."""
    if "Cannot find module" in error_text:
        return (
            "## Module Not Found Error\n\n"
            "**Problem:** A required module is missing.\n\n"
            "**Solution:**\n"
            "1. Run `npm install` to install dependencies\n"
            "2. Check if the import path is correct\n"
            "3. Verify the package is listed in package.json\n"
        )

    if "Type" in error_text and "is not assignable" in error_text:
        return (
            "## TypeScript Type Error\n\n"
            "**Problem:** Type mismatch in the widget code.\n\n"
            "**Solution:**\n"
            "1. Check the property types in the widget XML match the TypeScript props\n"
            "2. Use EditableValue<T> for attribute bindings\n"
            "3. Use ActionValue for action properties\n\n"
            "```typescript\nvalue: EditableValue<string>;\nonClick?: ActionValue;\n```\n"
        )

    if "xml" in error_text.lower():
        return (
            "## Widget XML Error\n\n"
            "**Problem:** Issue with the widget XML definition.\n\n"
            "**Solution:**\n"
            "1. Validate XML syntax\n"
            "2. Check property keys match the component props\n"
            "3. Ensure attribute and action types are correct\n"
        )

    excerpt = error_text[:500] + ("..." if len(error_text) > 500 else "")
    return (
        "## Build Error Analysis\n\n"
        f"**Error detected:**\n```\n{excerpt}\n```\n\n"
        "**General troubleshooting steps:**\n"
        "1. Run `npm install` to ensure dependencies are installed\n"
        "2. Check for TypeScript errors with `npm run lint`\n"
        "3. Verify the widget XML matches the component props\n\n"
        f"**Resources:**\n- {_DOCS_URL}\n- {_TOOLS_URL}\n"
    )


def offline_research(topic: str) -> ResearchResult:
    return ResearchResult(
        summary=(
            f"## Research on: {topic}\n\n"
            "No language model was available. Resources to check manually:\n\n"
            f"- Pluggable widgets how-to: {_DOCS_URL}\n"
            f"- Official widget examples: {_EXAMPLES_URL}\n"
            f"- Widget build tooling: {_TOOLS_URL}\n"
        ),
        sources=[_DOCS_URL, _EXAMPLES_URL],
        confidence="low",
    )


# ---------------------------------------------------------------------------
# Helper
# ---------------------------------------------------------------------------

class DiagnosisHelper:
    """Explains build errors and researches widget topics.

    Args:
        llm: LlamaIndex LLM.  ``None`` or a NullLLM means offline mode.
        knowledge: Optional :class:`KnowledgeStore` consulted first and
            updated with new findings.
        breaker: Circuit breaker shared across LLM calls.
        max_retries: Attempts per LLM call.
        backoff_factor: Exponential backoff multiplier between attempts.
        jitter: Randomise the wait between attempts.
    """

    def __init__(self, llm=None, knowledge=None, breaker: Optional[CircuitBreaker] = None,
                 max_retries: int = 3, max_file_chars: int = 2000,
                 backoff_factor: float = 1.0, jitter: bool = False):
        self.llm = llm
        self.knowledge = knowledge
        self.breaker = breaker or CircuitBreaker()
        self.max_retries = max_retries
        self.max_file_chars = max_file_chars
        self.backoff_factor = backoff_factor
        self.jitter = jitter

    @property
    def available(self) -> bool:
        return not is_null_llm(self.llm)

    def complete(self, prompt: str) -> str:
        """Run one prompt through the breaker with retries.

        Raises:
            RuntimeError: If no model is available.
        """
        if not self.available:
            raise RuntimeError("No language model available")

        @resilient_api_call(max_retries=self.max_retries, jitter=self.jitter,
                            backoff_factor=self.backoff_factor)
        def _call():
            return self.breaker.call(self.llm.complete, prompt)

        response = _call()
        return getattr(response, "text", str(response))

    def analyze_error(self, error_text: str) -> str:
        """Explain a build error: cause, fix and prevention."""
        if not self.available:
            return offline_error_advice(error_text)

        prompt = (
            "You are a Mendix pluggable widget expert. Analyze this build error "
            "and provide:\n"
            "1. What caused the error\n"
            "2. How to fix it (with code examples)\n"
            "3. How to prevent it in the future\n\n"
            f"Error:\n```\n{error_text}\n```"
        )
        try:
            return self.complete(prompt)
        except Exception as e:
            logger.warning("Error analysis failed, using offline advice: %s", e)
            return offline_error_advice(error_text)

    def research(self, topic: str) -> ResearchResult:
        """Research a topic, local knowledge first."""
        local = self.knowledge.search_knowledge(topic) if self.knowledge else []

        for entry in local:
            if entry.confidence == "high":
                logger.info("Research served from local knowledge: %s", entry.title)
                return ResearchResult(
                    summary=entry.content,
                    code_examples=extract_code_examples(entry.content),
                    sources=[f"Local Knowledge: {entry.title}", entry.source],
                    confidence="high",
                    from_cache=True,
                )

        if not self.available:
            return offline_research(topic)

        context = "".join(
            f"### {entry.title}\n{entry.content[:500]}\n\n" for entry in local[:3]
        )
        prompt = (
            f"Research Mendix pluggable widget development: {topic}\n\n"
            + (f"## Local knowledge\n{context}" if context else "")
            + "Respond in this JSON format:\n"
            '{"summary": "...", "codeExamples": [{"language": "typescript", '
            '"code": "...", "source": "...", "description": "..."}], '
            '"sources": ["..."], "confidence": "high|medium|low"}'
        )
        try:
            text = self.complete(prompt)
        except Exception as e:
            logger.warning("Research failed, using offline resources: %s", e)
            return offline_research(topic)

        data = extract_json_object(text)
        if data is None:
            result = ResearchResult(summary=text, confidence="low")
        else:
            examples = [
                CodeExample(
                    language=ex.get("language", "typescript"),
                    code=ex.get("code", ""),
                    source=ex.get("source", ""),
                    description=ex.get("description", ""),
                )
                for ex in data.get("codeExamples") or [] if isinstance(ex, dict)
            ]
            confidence = data.get("confidence")
            result = ResearchResult(
                summary=data.get("summary") or f"Research completed on: {topic}",
                code_examples=examples,
                sources=[f"Local: {entry.title}" for entry in local[:3]]
                + list(data.get("sources") or []),
                confidence=confidence if confidence in ("high", "medium", "low") else "medium",
            )

        if self.knowledge is not None:
            self.knowledge.save_research_findings(topic, result)
        return result

    def request_edit_plan(self, error_text: str, config: Any, widget_path: Path) -> Optional[EditPlan]:
        """Ask the model for a repair plan; ``None`` when there is none."""
        if not self.available:
            return None

        prompt = build_fix_prompt(error_text, config, widget_path, self.max_file_chars)
        text = self.complete(prompt)
        plan = parse_edit_plan(text)
        if plan is None:
            logger.info("Could not parse a repair plan from the model response")
        return plan
