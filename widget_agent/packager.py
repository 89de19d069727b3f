"""
Widget Packager
===============
Builds a scaffolded widget project into an ``.mpk`` with the Node.js
toolchain (``npm install`` then ``npm run build``).

Every failure mode (npm missing, timeout, non-zero exit) comes back as a
failed :class:`PackageResult` whose output is the diagnostic text handed
to the fix chain.  Nothing here raises.
"""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger("widget_agent.packager")

# TypeScript diagnostics, tsc style and pretty style:
#   src/Foo.tsx(12,5): error TS2304: Cannot find name 'React'.
#   src/Foo.tsx:12:5 - error TS2304: Cannot find name 'React'.
_TSC_DIAG_RE = re.compile(
    r"^\s*(.*?)\((\d+),(\d+)\):\s*(error|warning)\s+(TS\d+):\s*(.*)$",
    re.MULTILINE,
)
_PRETTY_DIAG_RE = re.compile(
    r"^\s*(.*?):(\d+):(\d+)\s+-\s+(error|warning)\s+(TS\d+):\s*(.*)$",
    re.MULTILINE,
)


@dataclass
class PackageDiagnostic:
    """A single TypeScript diagnostic.

    Attributes:
        file: Source file that produced the diagnostic.
        line: Line number.
        column: Column number.
        level: ``"error"`` or ``"warning"``.
        code: TypeScript code (e.g. ``"TS2304"``).
        message: Human-readable description.
    """

    file: str
    line: int
    column: int
    level: str
    code: str
    message: str

    def __str__(self) -> str:
        return f"{self.file}({self.line},{self.column}): {self.level} {self.code}: {self.message}"


@dataclass
class PackageResult:
    """Result of a packaging attempt.

    Attributes:
        success: Whether the build exited 0.
        stdout: Captured standard output.
        stderr: Captured standard error.
        return_code: Process return code (-1 when the process never ran).
        artifact_path: The built ``.mpk``, if any.
        errors: Parsed TypeScript errors.
        warnings: Parsed TypeScript warnings.
    """

    success: bool = False
    stdout: str = ""
    stderr: str = ""
    return_code: int = -1
    artifact_path: Optional[Path] = None
    errors: List[PackageDiagnostic] = field(default_factory=list)
    warnings: List[PackageDiagnostic] = field(default_factory=list)

    @property
    def diagnostic_text(self) -> str:
        return "\n".join(part for part in (self.stdout.strip(), self.stderr.strip()) if part)


def parse_diagnostics(output: str) -> tuple[List[PackageDiagnostic], List[PackageDiagnostic]]:
    """Parse TypeScript output into (errors, warnings)."""
    errors: List[PackageDiagnostic] = []
    warnings: List[PackageDiagnostic] = []
    seen = set()

    for regex in (_TSC_DIAG_RE, _PRETTY_DIAG_RE):
        for match in regex.finditer(output):
            diag = PackageDiagnostic(
                file=match.group(1).strip(),
                line=int(match.group(2)),
                column=int(match.group(3)),
                level=match.group(4),
                code=match.group(5),
                message=match.group(6).strip(),
            )
            key = (diag.file, diag.line, diag.column, diag.code)
            if key in seen:
                continue
            seen.add(key)
            (errors if diag.level == "error" else warnings).append(diag)

    return errors, warnings


def find_artifact(project_dir: Path) -> Optional[Path]:
    """Newest ``.mpk`` under ``dist``, or ``None``."""
    dist = Path(project_dir) / "dist"
    if not dist.is_dir():
        return None
    mpks = sorted(dist.rglob("*.mpk"), key=lambda p: p.stat().st_mtime, reverse=True)
    return mpks[0] if mpks else None


class WidgetPackager:
    """Runs the widget build toolchain.

    Args:
        npm_command: npm executable name or path.
        install_dependencies: Run ``npm install`` when ``node_modules`` is
            missing.
        build_timeout: Maximum seconds for ``npm run build``.
        install_timeout: Maximum seconds for ``npm install``.
    """

    def __init__(
        self,
        npm_command: str = "npm",
        install_dependencies: bool = True,
        build_timeout: int = 300,
        install_timeout: int = 600,
    ) -> None:
        self.npm_command = npm_command
        self.install_dependencies = install_dependencies
        self.build_timeout = build_timeout
        self.install_timeout = install_timeout

        self._npm = shutil.which(npm_command)
        self.available = self._npm is not None
        if not self.available:
            logger.warning("%s not found on PATH, packaging will fail", npm_command)

    @classmethod
    def from_config(cls, config=None) -> "WidgetPackager":
        if config is None:
            from widget_agent.config import get_config
            config = get_config()
        build = config.build
        return cls(
            npm_command=build.npm_command,
            install_dependencies=build.install_dependencies,
            build_timeout=build.build_timeout,
            install_timeout=build.install_timeout,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def build(self, project_dir: Path) -> PackageResult:
        """Install dependencies if needed, then build the widget."""
        project_dir = Path(project_dir)
        if not self.available:
            return PackageResult(
                success=False,
                stderr=f"{self.npm_command} not found. Install Node.js to build widgets.",
            )

        if self.install_dependencies and not (project_dir / "node_modules").is_dir():
            logger.info("Installing dependencies in %s", project_dir)
            installed = self._run(["install"], project_dir, self.install_timeout)
            if not installed.success:
                return installed

        logger.info("Building widget in %s", project_dir)
        result = self._run(["run", "build"], project_dir, self.build_timeout)
        result.errors, result.warnings = parse_diagnostics(result.diagnostic_text)
        if result.success:
            result.artifact_path = find_artifact(project_dir)
        return result

    def format_errors(self, result: PackageResult) -> str:
        """Multi-line summary of parsed errors."""
        if not result.errors:
            return "No TypeScript errors."

        lines = ["The following TypeScript errors were found:\n"]
        for i, err in enumerate(result.errors, 1):
            lines.append(f"{i}. {err.file} line {err.line}: {err.code}: {err.message}")
        if result.warnings:
            lines.append(f"\nAdditionally, {len(result.warnings)} warnings.")
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Subprocess
    # ------------------------------------------------------------------

    def _run(self, args: List[str], cwd: Path, timeout: int) -> PackageResult:
        command = [self._npm, *args]
        try:
            proc = subprocess.run(
                command,
                cwd=str(cwd),
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            return PackageResult(
                success=False,
                stderr=f"npm {' '.join(args)} timed out after {timeout}s",
            )
        except OSError as e:
            return PackageResult(success=False, stderr=f"npm {' '.join(args)} failed to run: {e}")

        return PackageResult(
            success=proc.returncode == 0,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
            return_code=proc.returncode,
        )
