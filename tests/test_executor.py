"""Tests for GenerationExecutor: scaffold, package and deploy in one pass."""

import json
from unittest.mock import MagicMock

from widget_agent.executor import GenerationExecutor, deploy_artifact, widget_output_dir
from widget_agent.errors import GenerationError
from widget_agent.scaffolder import WidgetScaffolder
from tests.conftest import ScriptedPackager


def _ok(project_dir):
    return None


class TestRun:
    def test_success(self, widget_config, work_folder):
        work_folder.mkdir()
        packager = ScriptedPackager(_ok)
        result = GenerationExecutor(WidgetScaffolder(), packager).run(widget_config, work_folder)

        assert result.success is True
        assert result.output_path == work_folder / "statusbadge"
        assert result.artifact_path.name == "statusbadge.mpk"
        assert result.deployed_to is None
        assert packager.calls == [work_folder / "statusbadge"]

    def test_writes_config_snapshot(self, widget_config, work_folder):
        work_folder.mkdir()
        GenerationExecutor(WidgetScaffolder(), ScriptedPackager(_ok)).run(
            widget_config, work_folder
        )
        data = json.loads((work_folder / "StatusBadge-config.json").read_text(encoding="utf-8"))
        assert data["widget"]["name"] == "StatusBadge"
        assert len(data["properties"]) == 3

    def test_build_failure_carries_diagnostics(self, widget_config, work_folder):
        work_folder.mkdir()
        packager = ScriptedPackager(lambda project: "error TS2304: nope")
        result = GenerationExecutor(WidgetScaffolder(), packager).run(widget_config, work_folder)

        assert result.success is False
        assert result.diagnostic_text == "error TS2304: nope"

    def test_scaffold_failure_is_a_failed_result(self, widget_config, work_folder):
        work_folder.mkdir()
        scaffolder = MagicMock()
        scaffolder.generate.side_effect = GenerationError("disk full")
        packager = ScriptedPackager(_ok)

        result = GenerationExecutor(scaffolder, packager).run(widget_config, work_folder)

        assert result.success is False
        assert result.errors == ["disk full"]
        assert packager.calls == []

    def test_preserve_flag_reaches_scaffolder(self, widget_config, work_folder):
        work_folder.mkdir()
        scaffolder = MagicMock()
        executor = GenerationExecutor(scaffolder, ScriptedPackager(_ok))

        executor.run(widget_config, work_folder)
        executor.run(widget_config, work_folder, preserve_existing=True)

        flags = [c.kwargs["preserve_existing"] for c in scaffolder.generate.call_args_list]
        assert flags == [False, True]

    def test_deploys_to_target(self, widget_config, work_folder, tmp_path):
        work_folder.mkdir()
        project = tmp_path / "project"
        config = widget_config.with_target(str(project))

        result = GenerationExecutor(WidgetScaffolder(), ScriptedPackager(_ok)).run(
            config, work_folder
        )

        assert result.deployed_to == project / "widgets" / "statusbadge.mpk"
        assert result.deployed_to.read_bytes() == b"PK"

    def test_deploy_failure_is_a_warning(self, widget_config, work_folder, tmp_path):
        work_folder.mkdir()
        blocker = tmp_path / "blocker"
        blocker.write_text("file", encoding="utf-8")
        config = widget_config.with_target(str(blocker))

        result = GenerationExecutor(WidgetScaffolder(), ScriptedPackager(_ok)).run(
            config, work_folder
        )

        assert result.success is True
        assert result.deployed_to is None
        assert "Could not deploy" in result.warnings[0]


class TestHelpers:
    def test_widget_output_dir(self, widget_config, tmp_path):
        assert widget_output_dir(widget_config, tmp_path) == tmp_path / "statusbadge"

    def test_deploy_artifact(self, tmp_path):
        artifact = tmp_path / "A.mpk"
        artifact.write_bytes(b"PK")
        target = deploy_artifact(artifact, tmp_path / "app")
        assert target == tmp_path / "app" / "widgets" / "A.mpk"
        assert target.exists()
