"""
File Edits
==========
The edit primitives every fix strategy applies to a generated widget:
prepend-if-absent, replace-if-present, append-if-absent, and the
``package.json`` script repair.

All primitives are idempotent: applying the same edit twice changes the
file at most once.  Each returns ``True`` only when the file was modified.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from widget_agent.errors import FixApplicationError

logger = logging.getLogger("widget_agent.file_edits")

REACT_IMPORT = "import * as React from 'react';\n"
BUILD_SCRIPT = "pluggable-widgets-tools build:web"
DEV_SCRIPT = "pluggable-widgets-tools start:web"

_GLOB_CHARS = set("*?[")


@dataclass
class FileEdit:
    """One edit to a widget file.

    Attributes:
        file: Path relative to the widget root (``src/Foo.tsx``) or to
            ``src`` (``Foo.tsx``).  Globs are allowed.
        action: ``replace``, ``prepend`` or ``append``.
        search: Text to find (``replace`` only).
        replace: Replacement, prepended or appended text.
    """

    file: Optional[str]
    action: str = "replace"
    search: str = ""
    replace: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FileEdit":
        return cls(
            file=data.get("file"),
            action=str(data.get("action") or "replace").lower(),
            search=data.get("search") or "",
            replace=data.get("replace") or data.get("content") or "",
        )


# ---------------------------------------------------------------------------
# File selection
# ---------------------------------------------------------------------------

def _inside(root: Path, candidate: Path) -> bool:
    try:
        candidate.resolve().relative_to(root.resolve())
        return True
    except ValueError:
        return False


def find_source_files(widget_path: Path, file_spec: Optional[str] = None) -> List[Path]:
    """Resolve a file spec to existing files of a widget.

    ``None`` selects every ``.ts``/``.tsx`` file directly under ``src``.
    A leading ``src/`` is optional.  Paths that would leave the widget
    folder are ignored.
    """
    widget_path = Path(widget_path)
    src_dir = widget_path / "src"

    if not file_spec:
        if not src_dir.is_dir():
            return []
        return sorted(
            p for p in src_dir.iterdir()
            if p.is_file() and p.suffix in (".ts", ".tsx")
        )

    spec = file_spec.replace("\\", "/").lstrip("/")
    if _GLOB_CHARS & set(spec):
        if spec.startswith("src/"):
            matches = widget_path.glob(spec)
        else:
            matches = src_dir.glob(spec) if src_dir.is_dir() else []
        files = sorted(p for p in matches if p.is_file())
    else:
        candidates = [widget_path / spec]
        if not spec.startswith("src/"):
            candidates.append(src_dir / spec)
        files = [p for p in candidates if p.is_file()][:1]

    return [p for p in files if _inside(widget_path, p)]


# ---------------------------------------------------------------------------
# Primitives
# ---------------------------------------------------------------------------

def prepend_if_absent(path: Path, text: str) -> bool:
    """Prepend ``text`` unless the file already contains it."""
    content = path.read_text(encoding="utf-8")
    if not text or text.strip() in content:
        return False
    path.write_text(text + content, encoding="utf-8")
    logger.debug("Prepended to %s", path)
    return True


def replace_if_present(path: Path, search: str, replacement: str) -> bool:
    """Replace the first occurrence of ``search``; no-op when it is absent."""
    content = path.read_text(encoding="utf-8")
    if not search or search not in content:
        return False
    updated = content.replace(search, replacement, 1)
    if updated == content:
        return False
    path.write_text(updated, encoding="utf-8")
    logger.debug("Replaced %r in %s", search[:40], path)
    return True


def append_if_absent(path: Path, text: str) -> bool:
    """Append ``text`` unless the file already contains it."""
    content = path.read_text(encoding="utf-8")
    if not text or text.strip() in content:
        return False
    path.write_text(content + text, encoding="utf-8")
    logger.debug("Appended to %s", path)
    return True


def apply_edit(widget_path: Path, edit: FileEdit) -> int:
    """Apply one edit to every file it selects.

    An empty ``search`` on a ``replace`` edit means prepend-if-absent.

    Returns:
        Number of files modified.
    """
    action = edit.action
    if action == "replace" and not edit.search:
        action = "prepend"

    changed = 0
    for path in find_source_files(widget_path, edit.file):
        if action == "replace":
            modified = replace_if_present(path, edit.search, edit.replace)
        elif action == "prepend":
            modified = prepend_if_absent(path, edit.replace)
        elif action == "append":
            modified = append_if_absent(path, edit.replace)
        else:
            logger.debug("Unknown edit action %r for %s", edit.action, path)
            modified = False
        if modified:
            changed += 1
    return changed


def apply_edits(widget_path: Path, edits: Iterable[Any]) -> int:
    """Apply a list of edits (``FileEdit`` or plain dicts).

    Returns:
        Number of edits that modified at least one file.
    """
    applied = 0
    for raw in edits:
        edit = raw if isinstance(raw, FileEdit) else FileEdit.from_dict(raw)
        if apply_edit(Path(widget_path), edit) > 0:
            applied += 1
    return applied


def ensure_react_import(widget_path: Path) -> List[Path]:
    """Prepend the React import to every ``.tsx`` file in ``src`` lacking one."""
    fixed = []
    for path in find_source_files(widget_path, "src/*.tsx"):
        content = path.read_text(encoding="utf-8")
        if "import * as React" in content or "import React" in content:
            continue
        if prepend_if_absent(path, REACT_IMPORT):
            fixed.append(path)
    return fixed


def ensure_build_scripts(widget_path: Path) -> bool:
    """Make sure ``package.json`` has ``build`` and ``dev`` scripts.

    Returns:
        True if the manifest was modified.

    Raises:
        FixApplicationError: If the manifest is missing or not valid JSON.
    """
    manifest = Path(widget_path) / "package.json"
    if not manifest.is_file():
        raise FixApplicationError(f"No package.json in {widget_path}")

    try:
        data = json.loads(manifest.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise FixApplicationError(f"package.json is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise FixApplicationError("package.json is not a JSON object")

    scripts = data.get("scripts")
    if not isinstance(scripts, dict):
        scripts = {}

    changed = False
    for name, command in (("build", BUILD_SCRIPT), ("dev", DEV_SCRIPT)):
        if not scripts.get(name):
            scripts[name] = command
            changed = True

    if changed:
        data["scripts"] = scripts
        manifest.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
        logger.info("Added build scripts to %s", manifest)
    return changed
