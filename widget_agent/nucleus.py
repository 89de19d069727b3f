"""
Pattern Store (the nucleus)
===========================
Persisted, versioned collection of learned knowledge that backs the repair
step of the build loop:

- error fix patterns, keyed by error signature, each with a confidence score
  and success/failure counters
- widget-shape templates
- SDK API usage notes
- best practices

Confidence is a smoothed success-rate proxy: +0.05 on success (capped at 1),
-0.10 on failure (floored at 0.1).  Patterns are never deleted, only
re-weighted, so a bad pattern decays but stays available for rare matches.
New patterns are only learned from an observed success.

Storage: a single JSON document, written through after every mutation.
"""

from __future__ import annotations

import json
import logging
import os
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

logger = logging.getLogger("widget_agent.nucleus")

STORE_VERSION = "1.0.0"
PATTERNS_FILENAME = "dynamic-patterns.json"

MIN_CONFIDENCE = 0.1
MAX_CONFIDENCE = 1.0
SUCCESS_NUDGE = 0.05
FAILURE_NUDGE = 0.10

# Lexical scoring weights for match_fixes()
SIGNATURE_WEIGHT = 10
KEYWORD_WEIGHT = 2

_STOP_WORDS = frozenset((
    "the", "a", "an", "is", "are", "was", "were", "be", "been", "being",
    "have", "has", "had", "do", "does", "did", "will", "would", "could",
    "should", "may", "might", "must", "shall", "can", "need", "to", "of",
    "in", "for", "on", "with", "at", "by", "from", "as", "into", "through",
    "during", "before", "after", "above", "below", "between", "under",
    "again", "further", "then", "once", "and", "but", "or", "nor", "so",
    "yet", "both", "either", "neither", "not", "only", "own", "same",
    "than", "too", "very", "just",
))


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def clamp_confidence(value: float) -> float:
    return round(min(MAX_CONFIDENCE, max(MIN_CONFIDENCE, float(value))), 6)


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


def extract_keywords(text: str, limit: int = 10) -> List[str]:
    """Extract up to ``limit`` meaningful lowercase keywords from ``text``."""
    words = re.sub(r"[^a-z0-9\s]", " ", text.lower()).split()
    return [w for w in words if len(w) > 2 and w not in _STOP_WORDS][:limit]


def keyword_similarity(first: Iterable[str], second: Iterable[str]) -> float:
    """Intersection over the larger set size (0 when either side is empty)."""
    set1 = {s.lower() for s in first}
    set2 = {s.lower() for s in second}
    if not set1 or not set2:
        return 0.0
    return len(set1 & set2) / max(len(set1), len(set2))


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

class FixType(Enum):
    """Typed repair actions a pattern can carry."""
    FILE_EDIT = "file-edit"
    CONFIG_CHANGE = "config-change"
    DEPENDENCY_ADD = "dependency-add"
    MANUAL = "manual"


class PatternSource(Enum):
    """Where a pattern came from."""
    BUILTIN = "builtin"
    LEARNED = "learned"
    USER = "user"
    DOCS = "docs"


@dataclass
class FixAction:
    """The repair carried by a :class:`FixPattern`.

    Attributes:
        type: Kind of action.
        description: Human-readable description of the fix.
        file: File spec relative to the widget (``src/*.tsx``,
            ``package.json``).  ``None`` means "any source file".
        search: Text to find.  Empty string means prepend-if-absent.
        replace: Replacement (or prepended) text.
        commands: Shell commands for ``dependency-add`` fixes.
    """

    type: FixType
    description: str
    file: Optional[str] = None
    search: Optional[str] = None
    replace: Optional[str] = None
    commands: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FixAction":
        return cls(
            type=FixType(data.get("type", FixType.MANUAL.value)),
            description=data.get("description", ""),
            file=data.get("file"),
            search=data.get("search"),
            replace=data.get("replace"),
            commands=list(data.get("commands") or []),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "type": self.type.value,
            "description": self.description,
        }
        for key in ("file", "search", "replace"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        if self.commands:
            data["commands"] = list(self.commands)
        return data


@dataclass
class FixPattern:
    """A learned or builtin error → fix mapping.

    Attributes:
        id: Stable identifier.
        error_pattern: Substring signature matched against diagnostic text.
        error_keywords: Keywords scanned case-insensitively.
        fix: The typed repair action.
        confidence: Score in [0.1, 1].
        success_count: Observed successful applications.
        failure_count: Observed failed applications.
        last_used: ISO timestamp of the last outcome.
        source: Provenance.
    """

    id: str
    error_pattern: str
    error_keywords: List[str]
    fix: FixAction
    confidence: float = 0.7
    success_count: int = 0
    failure_count: int = 0
    last_used: str = field(default_factory=_now)
    source: PatternSource = PatternSource.BUILTIN

    def apply_outcome(self, success: bool) -> None:
        """Nudge confidence and bump the matching counter."""
        if success:
            self.success_count += 1
            self.confidence = clamp_confidence(self.confidence + SUCCESS_NUDGE)
        else:
            self.failure_count += 1
            self.confidence = clamp_confidence(self.confidence - FAILURE_NUDGE)
        self.last_used = _now()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FixPattern":
        return cls(
            id=data["id"],
            error_pattern=data["errorPattern"],
            error_keywords=list(data.get("errorKeywords") or []),
            fix=FixAction.from_dict(data["fix"]),
            confidence=clamp_confidence(data.get("confidence", 0.7)),
            success_count=int(data.get("successCount", 0)),
            failure_count=int(data.get("failureCount", 0)),
            last_used=data.get("lastUsed") or _now(),
            source=PatternSource(data.get("source", PatternSource.LEARNED.value)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "errorPattern": self.error_pattern,
            "errorKeywords": list(self.error_keywords),
            "fix": self.fix.to_dict(),
            "confidence": self.confidence,
            "successCount": self.success_count,
            "failureCount": self.failure_count,
            "lastUsed": self.last_used,
            "source": self.source.value,
        }


@dataclass
class WidgetTemplatePattern:
    """A widget shape that produced a successful build."""

    id: str
    widget_type: str
    keywords: List[str]
    structure: str
    imports: List[str] = field(default_factory=list)
    props: List[Dict[str, str]] = field(default_factory=list)
    data_handling: str = ""
    examples: List[str] = field(default_factory=list)
    success_count: int = 0
    last_used: str = field(default_factory=_now)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WidgetTemplatePattern":
        template = data.get("template") or {}
        return cls(
            id=data["id"],
            widget_type=data["widgetType"],
            keywords=list(data.get("keywords") or []),
            structure=template.get("structure", ""),
            imports=list(template.get("imports") or []),
            props=list(template.get("props") or []),
            data_handling=template.get("mendixDataHandling", ""),
            examples=list(data.get("examples") or []),
            success_count=int(data.get("successCount", 0)),
            last_used=data.get("lastUsed") or _now(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "widgetType": self.widget_type,
            "keywords": list(self.keywords),
            "template": {
                "structure": self.structure,
                "imports": list(self.imports),
                "props": list(self.props),
                "mendixDataHandling": self.data_handling,
            },
            "examples": list(self.examples),
            "successCount": self.success_count,
            "lastUsed": self.last_used,
        }


@dataclass
class SdkApiPattern:
    """Correct usage notes for one widget SDK API."""

    id: str
    api_name: str
    correct_usage: str
    common_mistakes: List[str] = field(default_factory=list)
    min_version: str = "9.0.0"
    examples: List[str] = field(default_factory=list)
    source: PatternSource = PatternSource.DOCS

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SdkApiPattern":
        return cls(
            id=data["id"],
            api_name=data["apiName"],
            correct_usage=data.get("correctUsage", ""),
            common_mistakes=list(data.get("commonMistakes") or []),
            min_version=data.get("mendixVersion", "9.0.0"),
            examples=list(data.get("examples") or []),
            source=PatternSource(data.get("source", PatternSource.DOCS.value)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "apiName": self.api_name,
            "correctUsage": self.correct_usage,
            "commonMistakes": list(self.common_mistakes),
            "mendixVersion": self.min_version,
            "examples": list(self.examples),
            "source": self.source.value,
        }


@dataclass
class BestPractice:
    """A proven approach, with do/don't lists."""

    id: str
    category: str
    title: str
    description: str
    do_this: List[str] = field(default_factory=list)
    dont_do_this: List[str] = field(default_factory=list)
    code_example: Optional[str] = None
    source: PatternSource = PatternSource.DOCS

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BestPractice":
        return cls(
            id=data["id"],
            category=data.get("category", "general"),
            title=data["title"],
            description=data.get("description", ""),
            do_this=list(data.get("doThis") or []),
            dont_do_this=list(data.get("dontDoThis") or []),
            code_example=data.get("codeExample"),
            source=PatternSource(data.get("source", PatternSource.DOCS.value)),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "category": self.category,
            "title": self.title,
            "description": self.description,
            "doThis": list(self.do_this),
            "dontDoThis": list(self.dont_do_this),
            "source": self.source.value,
        }
        if self.code_example is not None:
            data["codeExample"] = self.code_example
        return data


# ---------------------------------------------------------------------------
# Builtin seed data
# ---------------------------------------------------------------------------

def builtin_error_fixes() -> List[FixPattern]:
    """Error fixes seeded into a fresh store."""
    return [
        FixPattern(
            id="missing-react-import",
            error_pattern="Cannot find name 'React'",
            error_keywords=["React", "cannot find", "name"],
            fix=FixAction(
                type=FixType.FILE_EDIT,
                file="src/*.tsx",
                search="",
                replace="import * as React from 'react';\n",
                description="Add missing React import",
            ),
            confidence=0.95,
            success_count=10,
        ),
        FixPattern(
            id="classname-type-error",
            error_pattern="Type 'string | undefined' is not assignable",
            error_keywords=["className", "undefined", "not assignable"],
            fix=FixAction(
                type=FixType.FILE_EDIT,
                search="className={props.class}",
                replace='className={props.class ?? ""}',
                description="Add nullish coalescing for className",
            ),
            confidence=0.9,
            success_count=5,
            failure_count=1,
        ),
        FixPattern(
            id="missing-build-script",
            error_pattern="missing script: build",
            error_keywords=["missing", "script", "build"],
            fix=FixAction(
                type=FixType.CONFIG_CHANGE,
                file="package.json",
                description="Add missing build scripts to package.json",
            ),
            confidence=0.95,
            success_count=8,
        ),
        FixPattern(
            id="strict-null-checks",
            error_pattern="Object is possibly",
            error_keywords=["possibly", "undefined", "null"],
            fix=FixAction(
                type=FixType.MANUAL,
                description=(
                    "Add null safety checks - use optional chaining (?.) "
                    "or nullish coalescing (??)"
                ),
            ),
            confidence=0.7,
            success_count=3,
            failure_count=2,
        ),
    ]


def builtin_widget_templates() -> List[WidgetTemplatePattern]:
    return [
        WidgetTemplatePattern(
            id="data-display-basic",
            widget_type="data-display",
            keywords=["display", "show", "view", "text", "label", "value"],
            structure=(
                "export function {{WidgetName}}({ value, class: className }: "
                "{{WidgetName}}ContainerProps) {\n"
                "  return (\n"
                "    <div className={className ?? \"\"}>\n"
                "      {value?.displayValue ?? \"No value\"}\n"
                "    </div>\n"
                "  );\n"
                "}"
            ),
            imports=["import { createElement } from 'react';"],
            props=[{
                "name": "value",
                "type": "EditableValue<string>",
                "description": "The value to display",
            }],
            data_handling="Use value.displayValue for read-only, value.value for raw value",
            examples=["show a text value", "display customer name", "view the price"],
            success_count=5,
        ),
        WidgetTemplatePattern(
            id="form-input-basic",
            widget_type="form-input",
            keywords=["input", "edit", "enter", "type", "form", "field", "textbox"],
            structure=(
                "export function {{WidgetName}}({ value, class: className }: "
                "{{WidgetName}}ContainerProps) {\n"
                "  const handleChange = (e: React.ChangeEvent<HTMLInputElement>) => {\n"
                "    if (value?.status === ValueStatus.Available) {\n"
                "      value.setValue(e.target.value);\n"
                "    }\n"
                "  };\n"
                "  return (\n"
                "    <input className={className ?? \"\"} value={value?.value ?? \"\"}\n"
                "      onChange={handleChange} disabled={value?.readOnly} />\n"
                "  );\n"
                "}"
            ),
            imports=[
                "import { createElement } from 'react';",
                "import { ValueStatus } from 'mendix';",
            ],
            props=[{
                "name": "value",
                "type": "EditableValue<string>",
                "description": "The editable value",
            }],
            data_handling="Check ValueStatus.Available before setValue, respect readOnly",
            examples=["create an input field", "editable text box", "form field for name"],
            success_count=3,
        ),
    ]


def builtin_sdk_apis() -> List[SdkApiPattern]:
    return [
        SdkApiPattern(
            id="editable-value",
            api_name="EditableValue<T>",
            correct_usage=(
                "if (props.value?.status === ValueStatus.Available) {\n"
                "  props.value.setValue(newValue);\n"
                "}\n"
                "const display = props.value?.displayValue ?? \"Loading...\";"
            ),
            common_mistakes=[
                "Accessing .value without checking status",
                "Not handling Loading state",
                "Ignoring readOnly property",
            ],
            examples=["EditableValue<string>", "EditableValue<Big>", "EditableValue<Date>"],
        ),
        SdkApiPattern(
            id="list-value",
            api_name="ListValue",
            correct_usage=(
                "if (props.dataSource?.status === ValueStatus.Available) {\n"
                "  const items = props.dataSource.items ?? [];\n"
                "  items.forEach(item => props.nameAttr?.get(item)?.displayValue);\n"
                "}"
            ),
            common_mistakes=[
                "Assuming items is always available",
                "Not using .get(item) for ListAttributeValue",
                "Forgetting null checks",
            ],
            examples=["data grid", "list view", "repeater"],
        ),
    ]


def builtin_best_practices() -> List[BestPractice]:
    return [
        BestPractice(
            id="null-safety",
            category="typescript",
            title="Always Use Null Safety",
            description="Widget props can be undefined during loading states",
            do_this=[
                "Use optional chaining (?.)",
                "Use nullish coalescing (??)",
                "Check ValueStatus",
            ],
            dont_do_this=[
                "Assume props are always defined",
                "Use non-null assertion (!) without checks",
            ],
            code_example=(
                "// Good\nconst value = props.attr?.value ?? defaultValue;\n\n"
                "// Bad\nconst value = props.attr!.value;"
            ),
        ),
    ]


# ---------------------------------------------------------------------------
# Location discovery
# ---------------------------------------------------------------------------

def find_patterns_path(knowledge_dir: Optional[str] = None) -> Path:
    """Resolve where the pattern document lives.

    Searches a short list of candidate knowledge directories and falls back
    to a file in the user's home directory.
    """
    candidates = []
    if knowledge_dir:
        candidates.append(Path(knowledge_dir))
    candidates.append(Path.home() / "mendix-mcp-server" / "knowledge")

    for directory in candidates:
        if directory.is_dir():
            return directory / PATTERNS_FILENAME

    return Path.home() / ".widget-agent" / PATTERNS_FILENAME


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class PatternStore:
    """The nucleus: ranks, applies and reinforces fix patterns.

    Loaded once at construction; every mutation is flushed to disk before
    the mutating call returns.  No locking: the store assumes a single
    writer at a time.

    Args:
        path: Location of the JSON document.  Resolved with
            :func:`find_patterns_path` when ``None``.
        seed_defaults: Seed builtin patterns when the document is absent
            or unreadable.  ``False`` starts from an empty store.
        similarity_threshold: Keyword overlap above which :meth:`learn`
            updates an existing pattern instead of appending one.
        learned_confidence: Starting confidence of a newly learned pattern.
    """

    def __init__(
        self,
        path: Optional[Union[str, Path]] = None,
        seed_defaults: bool = True,
        similarity_threshold: float = 0.7,
        learned_confidence: float = 0.7,
    ) -> None:
        self.path = Path(path) if path else find_patterns_path()
        self.seed_defaults = seed_defaults
        self.similarity_threshold = similarity_threshold
        self.learned_confidence = learned_confidence

        self.version = STORE_VERSION
        self.last_updated = _now()
        self.error_fixes: List[FixPattern] = []
        self.widget_templates: List[WidgetTemplatePattern] = []
        self.sdk_apis: List[SdkApiPattern] = []
        self.best_practices: List[BestPractice] = []
        self._dirty = False

        self.load()

    @classmethod
    def from_config(cls, config=None) -> "PatternStore":
        """Build a store from :class:`AgentConfig` settings."""
        if config is None:
            from widget_agent.config import get_config
            config = get_config()
        path = config.nucleus.patterns_path or find_patterns_path(
            config.knowledge.knowledge_dir
        )
        return cls(
            path=path,
            similarity_threshold=config.nucleus.similarity_threshold,
            learned_confidence=config.nucleus.learned_confidence,
        )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> None:
        """Read the persisted document, falling back to the defaults.

        Never raises: a missing or corrupt file is replaced in memory by the
        builtin seed (or an empty store when ``seed_defaults`` is off).
        """
        if self.path.exists():
            try:
                with open(self.path, "r", encoding="utf-8") as f:
                    data = json.load(f)
                self._from_document(data)
                self._dirty = False
                logger.info(
                    "Loaded %d error fixes, %d templates from %s",
                    len(self.error_fixes), len(self.widget_templates), self.path,
                )
                return
            except (OSError, json.JSONDecodeError, TypeError, KeyError,
                    ValueError, AttributeError) as e:
                logger.warning(
                    "Pattern store at %s is unreadable, using defaults: %s",
                    self.path, e,
                )

        self._reset_to_defaults()

    def save(self) -> None:
        """Write the full document if anything changed since the last save."""
        if not self._dirty:
            return

        try:
            self.last_updated = _now()
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_name(self.path.name + ".tmp")
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(self.to_document(), f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.path)
            self._dirty = False
            logger.debug("Saved pattern store to %s", self.path)
        except OSError as e:
            logger.error("Failed to save pattern store: %s", e)

    @property
    def dirty(self) -> bool:
        return self._dirty

    def to_document(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "lastUpdated": self.last_updated,
            "errorFixes": [p.to_dict() for p in self.error_fixes],
            "widgetTemplates": [t.to_dict() for t in self.widget_templates],
            "sdkApis": [a.to_dict() for a in self.sdk_apis],
            "bestPractices": [b.to_dict() for b in self.best_practices],
        }

    def _from_document(self, data: Dict[str, Any]) -> None:
        # Parse everything before assigning so a bad record leaves no partial state
        error_fixes = [FixPattern.from_dict(p) for p in data["errorFixes"]]
        templates = [
            WidgetTemplatePattern.from_dict(t) for t in data.get("widgetTemplates", [])
        ]
        sdk_apis = [SdkApiPattern.from_dict(a) for a in data.get("sdkApis", [])]
        practices = [BestPractice.from_dict(b) for b in data.get("bestPractices", [])]

        self.version = data.get("version", STORE_VERSION)
        self.last_updated = data.get("lastUpdated") or _now()
        self.error_fixes = error_fixes
        self.widget_templates = templates
        self.sdk_apis = sdk_apis
        self.best_practices = practices

    def _reset_to_defaults(self) -> None:
        self.version = STORE_VERSION
        self.last_updated = _now()
        if self.seed_defaults:
            self.error_fixes = builtin_error_fixes()
            self.widget_templates = builtin_widget_templates()
            self.sdk_apis = builtin_sdk_apis()
            self.best_practices = builtin_best_practices()
        else:
            self.error_fixes = []
            self.widget_templates = []
            self.sdk_apis = []
            self.best_practices = []
        self._dirty = False

    def _mark_dirty_and_save(self) -> None:
        self._dirty = True
        self.save()

    # ------------------------------------------------------------------
    # Error fixes
    # ------------------------------------------------------------------

    def get_pattern(self, pattern_id: str) -> Optional[FixPattern]:
        for pattern in self.error_fixes:
            if pattern.id == pattern_id:
                return pattern
        return None

    def score_pattern(self, pattern: FixPattern, diagnostic_text: str) -> float:
        """Lexical relevance of ``pattern`` to ``diagnostic_text``.

        Signature containment scores 10, each keyword hit scores 2; the raw
        score is weighted by ``confidence * (1 + success_count / 10)``.
        """
        text_lower = diagnostic_text.lower()
        score = 0.0

        if pattern.error_pattern and pattern.error_pattern in diagnostic_text:
            score += SIGNATURE_WEIGHT

        for keyword in pattern.error_keywords:
            if keyword and keyword.lower() in text_lower:
                score += KEYWORD_WEIGHT

        if score == 0:
            return 0.0
        return score * pattern.confidence * (1 + pattern.success_count / 10)

    def match_fixes(self, diagnostic_text: str) -> List[FixPattern]:
        """Return patterns relevant to ``diagnostic_text``, best first.

        Ties keep insertion order (``sorted`` is stable).
        """
        scored = []
        for pattern in self.error_fixes:
            score = self.score_pattern(pattern, diagnostic_text)
            if score > 0:
                scored.append((score, pattern))

        scored = sorted(scored, key=lambda item: item[0], reverse=True)
        return [pattern for _, pattern in scored]

    def record_outcome(self, pattern_id: str, success: bool) -> Optional[FixPattern]:
        """Apply the confidence nudge for one use of a pattern and save.

        Returns:
            The updated pattern, or ``None`` for an unknown id.
        """
        pattern = self.get_pattern(pattern_id)
        if pattern is None:
            logger.debug("record_outcome: unknown pattern id %s", pattern_id)
            return None

        pattern.apply_outcome(success)
        self._mark_dirty_and_save()
        return pattern

    def learn(
        self,
        error_text: str,
        fix_description: str,
        fix_payload: Optional[Union[Dict[str, Any], FixAction]] = None,
        success: bool = True,
    ) -> Optional[FixPattern]:
        """Fold one observed fix outcome into the nucleus.

        An existing pattern with the same signature, or with keyword
        similarity above the threshold, is updated like
        :meth:`record_outcome`.  Otherwise a new pattern is appended, but
        only when ``success`` is true: failed one-off fixes never become
        permanent patterns.

        Args:
            error_text: Diagnostic text the fix was applied to.
            fix_description: What the fix did.
            fix_payload: Typed fix details (``type``, ``file``, ``search``,
                ``replace``, ``commands``) or a :class:`FixAction`.
            success: Whether the fix worked.

        Returns:
            The updated or created pattern, or ``None`` if nothing changed.
        """
        keywords = extract_keywords(error_text)

        existing = None
        for pattern in self.error_fixes:
            if (pattern.error_pattern == error_text
                    or keyword_similarity(pattern.error_keywords, keywords)
                    > self.similarity_threshold):
                existing = pattern
                break

        if existing is not None:
            existing.apply_outcome(success)
            self._mark_dirty_and_save()
            return existing

        if not success:
            logger.debug("Not learning failed fix for: %.80s", error_text)
            return None

        action = self._coerce_action(fix_payload, fix_description)
        pattern = FixPattern(
            id=_new_id("learned"),
            error_pattern=error_text[:200],
            error_keywords=keywords,
            fix=action,
            confidence=self.learned_confidence,
            success_count=1,
            failure_count=0,
            source=PatternSource.LEARNED,
        )
        self.error_fixes.append(pattern)
        logger.info("Learned new error fix %s: %s", pattern.id, fix_description)
        self._mark_dirty_and_save()
        return pattern

    def add_pattern(self, pattern: FixPattern) -> FixPattern:
        """Append a user-supplied pattern, clamping its confidence."""
        pattern.confidence = clamp_confidence(pattern.confidence)
        self.error_fixes.append(pattern)
        self._mark_dirty_and_save()
        return pattern

    @staticmethod
    def _coerce_action(
        payload: Optional[Union[Dict[str, Any], FixAction]],
        description: str,
    ) -> FixAction:
        if isinstance(payload, FixAction):
            action = FixAction.from_dict(payload.to_dict())
        else:
            data = dict(payload or {})
            data.setdefault("type", FixType.MANUAL.value)
            action = FixAction.from_dict(data)
        action.description = description
        return action

    # ------------------------------------------------------------------
    # Widget templates, SDK APIs, best practices
    # ------------------------------------------------------------------

    def get_matching_templates(self, description: str) -> List[WidgetTemplatePattern]:
        """Rank widget templates by keyword and example overlap."""
        desc_lower = description.lower()
        scored = []

        for template in self.widget_templates:
            score = 0.0
            for keyword in template.keywords:
                if keyword.lower() in desc_lower:
                    score += 3
            for example in template.examples:
                example_lower = example.lower()
                if example_lower in desc_lower or (desc_lower and desc_lower in example_lower):
                    score += 5
            if score > 0:
                scored.append((score * (1 + template.success_count / 5), template))

        scored = sorted(scored, key=lambda item: item[0], reverse=True)
        return [template for _, template in scored]

    def learn_widget_template(
        self,
        widget_type: str,
        description: str,
        template_code: str,
        props: Optional[List[Dict[str, str]]] = None,
    ) -> WidgetTemplatePattern:
        """Record a widget shape that built successfully."""
        keywords = extract_keywords(description)

        for template in self.widget_templates:
            if (template.widget_type == widget_type
                    or keyword_similarity(template.keywords, keywords) > 0.6):
                template.success_count += 1
                template.examples.append(description)
                template.last_used = _now()
                self._mark_dirty_and_save()
                return template

        template = WidgetTemplatePattern(
            id=_new_id(f"learned-{widget_type}"),
            widget_type=widget_type,
            keywords=keywords,
            structure=template_code,
            props=list(props or []),
            data_handling="Learned from successful build",
            examples=[description],
            success_count=1,
        )
        self.widget_templates.append(template)
        logger.info("Learned new widget template: %s", widget_type)
        self._mark_dirty_and_save()
        return template

    def get_sdk_api_patterns(self) -> List[SdkApiPattern]:
        return list(self.sdk_apis)

    def learn_sdk_api(
        self, api_name: str, correct_usage: str, mistake: Optional[str] = None
    ) -> SdkApiPattern:
        """Record correct usage (and optionally a mistake) for an SDK API."""
        for api in self.sdk_apis:
            if api.api_name == api_name:
                if mistake and mistake not in api.common_mistakes:
                    api.common_mistakes.append(mistake)
                # Keep the more detailed usage note
                if len(correct_usage) > len(api.correct_usage):
                    api.correct_usage = correct_usage
                self._mark_dirty_and_save()
                return api

        api = SdkApiPattern(
            id=_new_id("learned-api"),
            api_name=api_name,
            correct_usage=correct_usage,
            common_mistakes=[mistake] if mistake else [],
            source=PatternSource.LEARNED,
        )
        self.sdk_apis.append(api)
        logger.info("Learned new SDK API pattern: %s", api_name)
        self._mark_dirty_and_save()
        return api

    def get_best_practices(self, category: Optional[str] = None) -> List[BestPractice]:
        if category:
            return [p for p in self.best_practices if p.category == category]
        return list(self.best_practices)

    def learn_best_practice(
        self,
        category: str,
        title: str,
        description: str,
        do_this: List[str],
        dont_do_this: List[str],
    ) -> Optional[BestPractice]:
        """Add a best practice unless one with the same title exists."""
        for practice in self.best_practices:
            if practice.title.lower() == title.lower():
                return None

        practice = BestPractice(
            id=_new_id("learned-bp"),
            category=category,
            title=title,
            description=description,
            do_this=list(do_this),
            dont_do_this=list(dont_do_this),
            source=PatternSource.LEARNED,
        )
        self.best_practices.append(practice)
        logger.info("Learned new best practice: %s", title)
        self._mark_dirty_and_save()
        return practice

    def get_stats(self) -> Dict[str, int]:
        """Counts per collection plus the number of learned records."""
        learned = (
            sum(1 for p in self.error_fixes if p.source == PatternSource.LEARNED)
            + sum(1 for a in self.sdk_apis if a.source == PatternSource.LEARNED)
            + sum(1 for b in self.best_practices if b.source == PatternSource.LEARNED)
        )
        return {
            "total_patterns": (
                len(self.error_fixes) + len(self.widget_templates)
                + len(self.sdk_apis) + len(self.best_practices)
            ),
            "learned_patterns": learned,
            "error_fixes": len(self.error_fixes),
            "templates": len(self.widget_templates),
            "sdk_apis": len(self.sdk_apis),
            "best_practices": len(self.best_practices),
        }
