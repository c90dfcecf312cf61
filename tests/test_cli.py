"""The ``buildforce upgrade`` command."""

import json

import pytest
from typer.testing import CliRunner

from buildforce_cli import app
from buildforce_cli.upgrade import UpgradeOrchestrator

runner = CliRunner()


@pytest.fixture
def releases(tmp_path):
    return tmp_path / ".genreleases"


@pytest.fixture(autouse=True)
def isolated_cache(tmp_path, monkeypatch):
    monkeypatch.setattr("buildforce_cli.upgrade.platformdirs.user_cache_dir", lambda *a, **k: str(tmp_path / "cache"))


def upgrade(*args):
    return runner.invoke(app, ["upgrade", *args])


class TestValidation:

    def test_not_a_buildforce_project(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        result = upgrade()
        assert result.exit_code == 1
        assert "directory not found" in result.output

    def test_invalid_agent(self, legacy_project, releases, monkeypatch):
        monkeypatch.chdir(legacy_project)
        result = upgrade("--ai", "vim", "--local", str(releases))
        assert result.exit_code == 1
        assert "Invalid AI assistant" in result.output

    def test_invalid_script_type(self, legacy_project, releases, monkeypatch):
        monkeypatch.chdir(legacy_project)
        result = upgrade("--script", "fish", "--local", str(releases))
        assert result.exit_code == 1
        assert "Invalid script type" in result.output

    def test_no_agent_without_terminal(self, legacy_project, releases, monkeypatch):
        config = legacy_project / ".buildforce" / "buildforce.json"
        config.write_text(json.dumps({"scriptType": "sh"}), encoding="utf-8")
        monkeypatch.chdir(legacy_project)
        result = upgrade("--local", str(releases))
        assert result.exit_code == 1
        assert "--ai" in result.output


class TestUpgradeCommand:

    def test_live_upgrade(self, legacy_project, releases, artifact_builder, monkeypatch):
        artifact_builder(releases, "claude")
        monkeypatch.chdir(legacy_project)

        result = upgrade("--local", str(releases))

        assert result.exit_code == 0, result.output
        assert "Upgrade complete!" in result.output
        config = json.loads((legacy_project / ".buildforce" / "buildforce.json").read_text())
        assert config["version"] == "v0.2.0"

    def test_agents_from_option(self, legacy_project, releases, artifact_builder, monkeypatch):
        artifact_builder(releases, "claude")
        artifact_builder(releases, "cursor")
        monkeypatch.chdir(legacy_project)

        result = upgrade("--ai", "claude,cursor", "--local", str(releases))

        assert result.exit_code == 0, result.output
        assert (legacy_project / ".cursor" / "commands" / "buildforce.plan.md").is_file()

    def test_dry_run(self, legacy_project, releases, artifact_builder, monkeypatch, take_snapshot):
        artifact_builder(releases, "claude")
        monkeypatch.chdir(legacy_project)
        before = take_snapshot(legacy_project)

        result = upgrade("--dry-run", "--local", str(releases))

        assert result.exit_code == 0, result.output
        assert "Preview complete." in result.output
        assert take_snapshot(legacy_project) == before

    def test_without_context_repository(self, tmp_path, releases, artifact_builder, monkeypatch):
        project = tmp_path / "bare"
        (project / ".buildforce").mkdir(parents=True)
        (project / ".buildforce" / "buildforce.json").write_text(
            json.dumps({"aiAssistant": ["claude"], "scriptType": "sh"}), encoding="utf-8"
        )
        artifact_builder(releases, "claude")
        monkeypatch.chdir(project)

        result = upgrade("--local", str(releases))

        assert result.exit_code == 0, result.output
        assert "no context repository" in result.output
        assert not (project / ".buildforce" / "context").exists()

    def test_missing_artifacts(self, legacy_project, releases, monkeypatch, take_snapshot):
        releases.mkdir()
        monkeypatch.chdir(legacy_project)
        before = take_snapshot(legacy_project)

        result = upgrade("--local", str(releases))

        assert result.exit_code == 1
        assert "Fetch Failure" in result.output
        assert take_snapshot(legacy_project) == before

    def test_failure_after_backup_rolls_back(self, legacy_project, releases, artifact_builder, monkeypatch,
                                             take_snapshot):
        artifact_builder(releases, "claude")
        monkeypatch.chdir(legacy_project)
        before = take_snapshot(legacy_project)
        original = UpgradeOrchestrator._replace

        def failing_replace(self, session, item):
            if item.key == "templates":
                raise OSError("No space left on device")
            return original(self, session, item)

        monkeypatch.setattr(UpgradeOrchestrator, "_replace", failing_replace)

        result = upgrade("--local", str(releases))

        assert result.exit_code == 1
        assert "Rollback: restored previous files from backup" in result.output
        assert "Upgrade Failure" in result.output
        assert take_snapshot(legacy_project) == before
