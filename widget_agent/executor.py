"""
Generation Executor
===================
One generate + package + deploy pass over a widget config: the unit of
work the build loop retries.
"""

from __future__ import annotations

import json
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from widget_agent.errors import GenerationError
from widget_agent.packager import WidgetPackager
from widget_agent.scaffolder import WidgetScaffolder
from widget_agent.widget_config import WidgetConfig

logger = logging.getLogger("widget_agent.executor")


@dataclass
class GenerationResult:
    """Outcome of one executor run.

    Attributes:
        success: Whether the widget packaged cleanly.
        output_path: The widget project folder.
        artifact_path: The built ``.mpk``, if any.
        deployed_to: Where the ``.mpk`` was copied, if deployed.
        errors: Diagnostic text chunks (build output, exception messages).
        warnings: Non-fatal problems such as a failed deploy copy.
    """

    success: bool
    output_path: Optional[Path] = None
    artifact_path: Optional[Path] = None
    deployed_to: Optional[Path] = None
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    build_output: str = ""

    @property
    def diagnostic_text(self) -> str:
        return "\n".join(self.errors)


def widget_output_dir(config: WidgetConfig, work_folder: Path) -> Path:
    return Path(work_folder) / config.name_lower


def deploy_artifact(artifact: Path, project_path: Path) -> Path:
    """Copy an ``.mpk`` into ``<project>/widgets``.

    Raises:
        OSError: If the copy fails.
    """
    widgets_dir = Path(project_path) / "widgets"
    widgets_dir.mkdir(parents=True, exist_ok=True)
    target = widgets_dir / artifact.name
    shutil.copy2(artifact, target)
    logger.info("Deployed %s to %s", artifact.name, widgets_dir)
    return target


class GenerationExecutor:
    """Scaffolds, packages and optionally deploys a widget.

    Args:
        scaffolder: Template engine; a default :class:`WidgetScaffolder`
            when ``None``.
        packager: Build toolchain; built from config when ``None``.
    """

    def __init__(self, scaffolder: Optional[WidgetScaffolder] = None,
                 packager: Optional[WidgetPackager] = None):
        self.scaffolder = scaffolder or WidgetScaffolder()
        self.packager = packager or WidgetPackager.from_config()

    def run(self, config: WidgetConfig, work_folder: Path,
            preserve_existing: bool = False) -> GenerationResult:
        """Scaffold, package and deploy once.

        ``preserve_existing`` keeps files already in the project folder
        (used on retries); otherwise the scaffold is rendered fresh.
        """
        work_folder = Path(work_folder)
        output_path = widget_output_dir(config, work_folder)

        try:
            self._write_config(config, work_folder)
            self.scaffolder.generate(config, output_path, preserve_existing=preserve_existing)
        except (GenerationError, OSError) as e:
            logger.warning("Generation failed for %s: %s", config.name, e)
            return GenerationResult(success=False, output_path=output_path, errors=[str(e)])

        package = self.packager.build(output_path)
        if not package.success:
            return GenerationResult(
                success=False,
                output_path=output_path,
                errors=[package.diagnostic_text or f"Build failed with exit code {package.return_code}"],
                build_output=package.diagnostic_text,
            )

        result = GenerationResult(
            success=True,
            output_path=output_path,
            artifact_path=package.artifact_path,
            build_output=package.diagnostic_text,
        )
        if package.artifact_path is None:
            result.warnings.append("Build succeeded but no .mpk was found in dist/")

        if config.target_project_path and package.artifact_path is not None:
            try:
                result.deployed_to = deploy_artifact(
                    package.artifact_path, Path(config.target_project_path)
                )
            except OSError as e:
                result.warnings.append(f"Could not deploy to {config.target_project_path}: {e}")
        return result

    @staticmethod
    def _write_config(config: WidgetConfig, work_folder: Path) -> Path:
        path = work_folder / f"{config.name}-config.json"
        with open(path, "w", encoding="utf-8") as f:
            json.dump(config.to_dict(), f, indent=2, ensure_ascii=False)
        return path
