"""
Knowledge Store
===============
Secondary, append-only knowledge cache shared with other tools: research
findings, successful builds and fixes that worked.  Each entry is one JSON
file inside the knowledge directory so several tools can drop entries side
by side.

When no directory is configured the store is disabled: saves return
``False`` and queries return nothing.  Nothing here raises.
"""

from __future__ import annotations

import json
import logging
import re
import time
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from widget_agent.nucleus import extract_keywords, keyword_similarity

logger = logging.getLogger("widget_agent.knowledge_store")

CATEGORY_RESEARCH = "widget-patterns"
CATEGORY_BUILDS = "successful-builds"
CATEGORY_FIXES = "error-fixes"

_TOPIC_TAGS = frozenset((
    "chart", "table", "input", "button", "card", "modal", "form",
    "list", "grid", "tree", "dropdown", "date", "file", "image",
))

# Minimum keyword overlap for a stored fix to count as known for an error
_FIX_SIMILARITY = 0.5


@dataclass
class KnowledgeEntry:
    """One knowledge file.

    Attributes:
        title: Short title.
        category: ``widget-patterns``, ``successful-builds`` or ``error-fixes``.
        content: Markdown text, or a JSON document for builds and fixes.
        source: Producer of the entry.
        timestamp: ISO timestamp.
        confidence: ``high``, ``medium`` or ``low``.
        tags: Free-form tags used by search.
    """

    title: str
    category: str
    content: str
    source: str
    timestamp: str = ""
    confidence: str = "medium"
    tags: List[str] = field(default_factory=list)


@dataclass
class KnownFix:
    """A previously recorded fix that matches an error."""

    error_pattern: str
    fix: str
    entry: KnowledgeEntry


def slugify(text: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug[:50]


class KnowledgeStore:
    """File-per-entry knowledge cache.

    Args:
        knowledge_dir: Directory holding the entry files.  ``None`` disables
            the store.
        max_search_results: Default cap for :meth:`search_knowledge`.
    """

    def __init__(self, knowledge_dir: Optional[Union[str, Path]] = None,
                 max_search_results: int = 5) -> None:
        self.knowledge_dir = Path(knowledge_dir) if knowledge_dir else None
        self.max_search_results = max_search_results
        if self.knowledge_dir is not None:
            try:
                self.knowledge_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.warning(
                    "Knowledge directory %s unusable, disabling: %s",
                    self.knowledge_dir, e,
                )
                self.knowledge_dir = None

    @classmethod
    def from_config(cls, config=None) -> "KnowledgeStore":
        if config is None:
            from widget_agent.config import get_config
            config = get_config()
        return cls(
            config.knowledge.knowledge_dir,
            max_search_results=config.knowledge.max_search_results,
        )

    @property
    def enabled(self) -> bool:
        return self.knowledge_dir is not None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def save_research_findings(self, topic: str, result: Any) -> bool:
        """Save a :class:`~widget_agent.research.ResearchResult`."""
        entry = KnowledgeEntry(
            title=f"Widget Pattern: {topic}",
            category=CATEGORY_RESEARCH,
            content=self._format_research(result),
            source="research",
            confidence=result.confidence,
            tags=self._topic_tags(topic, result.confidence),
        )
        return self._write(f"widget-pattern-{slugify(topic)}", entry)

    def save_successful_build(self, config: Any, build_output: str) -> bool:
        """Record a widget config that built cleanly.

        Args:
            config: A :class:`WidgetConfig`.
            build_output: Packager output; only the first 500 chars are kept.
        """
        content = json.dumps({
            "config": config.to_dict(),
            "buildNotes": "Widget built successfully",
            "buildOutput": (build_output or "")[:500],
        }, indent=2)
        prop_tags = sorted({f"prop-{p.type.value}" for p in config.properties})
        entry = KnowledgeEntry(
            title=f"Successful Widget: {config.name}",
            category=CATEGORY_BUILDS,
            content=content,
            source="widget-generator",
            confidence="high",
            tags=["successful", (config.category or "general").lower(), *prop_tags],
        )
        return self._write(f"successful-build-{slugify(config.name)}", entry)

    def save_working_fix(self, error_pattern: str, fix: str, result: str) -> bool:
        """Record a fix; only ``result == "success"`` is kept."""
        if result != "success":
            return False

        content = json.dumps({
            "errorPattern": error_pattern,
            "fix": fix,
            "result": result,
        }, indent=2)
        entry = KnowledgeEntry(
            title=f"Fix: {error_pattern[:50]}",
            category=CATEGORY_FIXES,
            content=content,
            source="auto-fix",
            confidence="high",
            tags=["fix", "error-handling", *extract_keywords(error_pattern, limit=5)],
        )
        return self._write(f"fix-{slugify(error_pattern[:30])}", entry)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def entries(self) -> List[KnowledgeEntry]:
        """All readable entries, oldest file name first."""
        if not self.enabled or not self.knowledge_dir.is_dir():
            return []

        entries = []
        for path in sorted(self.knowledge_dir.glob("*.json")):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    data = json.load(f)
                entries.append(KnowledgeEntry(
                    title=data["title"],
                    category=data.get("category", ""),
                    content=data.get("content", ""),
                    source=data.get("source", ""),
                    timestamp=data.get("timestamp", ""),
                    confidence=data.get("confidence", "medium"),
                    tags=list(data.get("tags") or []),
                ))
            except (OSError, json.JSONDecodeError, TypeError, KeyError,
                    AttributeError) as e:
                logger.debug("Skipping unreadable knowledge file %s: %s", path, e)
        return entries

    def search_knowledge(self, query: str,
                         max_results: Optional[int] = None) -> List[KnowledgeEntry]:
        """Rank entries by keyword overlap with ``query``.

        At most ``max_results`` entries are returned, defaulting to the
        store's ``max_search_results``.

        Each query keyword scores 3 when it matches a tag, 2 when it appears
        in the title and 1 when it appears in the content.
        """
        if max_results is None:
            max_results = self.max_search_results
        keywords = extract_keywords(query)
        if not keywords:
            return []

        scored = []
        for entry in self.entries():
            tags = {t.lower() for t in entry.tags}
            title = entry.title.lower()
            content = entry.content.lower()
            score = 0
            for keyword in keywords:
                if keyword in tags:
                    score += 3
                if keyword in title:
                    score += 2
                if keyword in content:
                    score += 1
            if score > 0:
                scored.append((score, entry))

        scored = sorted(scored, key=lambda item: item[0], reverse=True)
        return [entry for _, entry in scored[:max_results]]

    def get_known_fixes(self, error_text: str) -> List[KnownFix]:
        """Stored fixes whose error pattern overlaps ``error_text``.

        A fix matches when its pattern is contained in the error text, or
        their keyword sets overlap by at least half.  Best matches first.
        """
        error_keywords = extract_keywords(error_text)
        scored = []

        for entry in self.entries():
            if entry.category != CATEGORY_FIXES:
                continue
            try:
                payload = json.loads(entry.content)
                pattern = payload["errorPattern"]
                fix = payload["fix"]
            except (json.JSONDecodeError, TypeError, KeyError):
                continue
            if not pattern:
                continue

            if pattern in error_text:
                score = 1.0 + len(pattern) / 1000
            else:
                score = keyword_similarity(extract_keywords(pattern), error_keywords)
                if score < _FIX_SIMILARITY:
                    continue
            fix_text = fix if isinstance(fix, str) else json.dumps(fix)
            scored.append((score, KnownFix(pattern, fix_text, entry)))

        scored = sorted(scored, key=lambda item: item[0], reverse=True)
        return [known for _, known in scored]

    def get_status(self) -> Dict[str, Any]:
        if not self.enabled:
            return {"enabled": False}
        try:
            count = sum(1 for _ in self.knowledge_dir.glob("*.json"))
        except OSError:
            return {"enabled": False}
        return {
            "enabled": True,
            "path": str(self.knowledge_dir),
            "entries_count": count,
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _write(self, stem: str, entry: KnowledgeEntry) -> bool:
        if not self.enabled:
            return False

        entry.timestamp = entry.timestamp or datetime.now(timezone.utc).isoformat()
        filename = f"{stem}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}.json"
        filepath = self.knowledge_dir / filename
        try:
            with open(filepath, "w", encoding="utf-8") as f:
                json.dump(asdict(entry), f, indent=2, ensure_ascii=False)
        except OSError as e:
            logger.error("Failed to save knowledge entry %s: %s", filename, e)
            return False

        logger.debug("Saved knowledge entry %s", filepath)
        return True

    @staticmethod
    def _format_research(result: Any) -> str:
        lines = ["## Summary", result.summary, ""]
        if result.code_examples:
            lines.append("## Code Examples")
            lines.append("")
            for example in result.code_examples:
                lines.append(f"### {example.description or 'Example'}")
                lines.append(f"Source: {example.source}")
                lines.append(f"```{example.language}\n{example.code}\n```")
                lines.append("")
        if result.sources:
            lines.append("## Sources")
            lines.extend(f"- {source}" for source in result.sources)
        return "\n".join(lines)

    @staticmethod
    def _topic_tags(topic: str, confidence: str) -> List[str]:
        tags = [w for w in topic.lower().split() if w in _TOPIC_TAGS]
        tags.extend(extract_keywords(topic, limit=5))
        tags.append(f"confidence-{confidence}")
        # Keep order, drop duplicates
        return list(dict.fromkeys(tags))
