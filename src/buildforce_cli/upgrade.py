"""Upgrade an existing Buildforce project to the latest release artifacts.

Flow: fetch and extract one artifact per agent, then either preview the
changes (dry run) or back up, replace, merge settings, migrate the context
repository and persist the config. Any failure after the backup has started
restores every backed-up category before the error propagates. Temporary
folders are removed on every path.
"""

import logging
import os
import shutil
import tempfile
import zipfile
from dataclasses import dataclass, field
from pathlib import Path

import platformdirs

from .config import config_path, configured_agents, read_buildforce_config, save_buildforce_config
from .constants import (
    AGENT_COMMANDS_DIR,
    AGENT_FOLDER_MAP,
    AGENT_SKILLS_DIR,
    AGENT_SUBAGENTS_DIR,
    CLAUDE_HOOKS_TEMPLATE,
    CLAUDE_SETTINGS_FILE,
    SCRIPTS_DIR,
    SKILL_NAME_PREFIX,
    TEMPLATES_DIR,
)
from .github import ArtifactError, FetchedArtifact
from .migrations import MigrationRunner, MigrationRunnerResult, create_migration_runner, get_current_version
from .settings_merge import MergeResult, merge_claude_settings
from .ui import StepTracker, console

logger = logging.getLogger(__name__)

CACHE_APP_NAME = "buildforce-cli"


class UpgradeError(RuntimeError):
    """The upgrade was aborted."""


@dataclass
class AgentOutcome:
    agent: str
    ok: bool = False
    reason: str | None = None
    artifact: FetchedArtifact | None = None
    source_dir: Path | None = None


@dataclass
class BackupEntry:
    label: str
    target: Path
    # None when the target did not exist; restoring then removes it
    backup_path: Path | None = None


@dataclass
class Replacement:
    key: str
    label: str
    source: Path
    target: Path


@dataclass
class UpgradeSession:
    project_path: Path
    agents: list[str]
    script_type: str
    dry_run: bool = False
    outcomes: dict[str, AgentOutcome] = field(default_factory=dict)
    backup_dir: Path | None = None
    backups: list[BackupEntry] = field(default_factory=list)
    download_dir: Path | None = None
    extract_dirs: list[Path] = field(default_factory=list)
    release: str | None = None
    migration: MigrationRunnerResult | None = None
    settings: MergeResult | None = None
    saved_agents: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    rolled_back: bool = False

    @property
    def successful_agents(self) -> list[str]:
        return [a for a in self.agents if self.outcomes.get(a) and self.outcomes[a].ok]

    @property
    def failed_agents(self) -> list[str]:
        return [a for a in self.agents if a not in self.successful_agents]

    @property
    def primary(self) -> AgentOutcome | None:
        """First successful agent; shared folders are taken from its artifact."""
        for agent in self.successful_agents:
            return self.outcomes[agent]
        return None


def extract_artifact(zip_path: Path, extract_dir: Path) -> Path:
    """Extract ``zip_path`` and return the folder holding the project files.

    A lone wrapper folder is unwrapped; a lone dot-folder such as
    ``.buildforce`` is content, not a wrapper.
    """
    with zipfile.ZipFile(zip_path, "r") as zip_ref:
        zip_ref.extractall(extract_dir)
    items = list(extract_dir.iterdir())
    if len(items) == 1 and items[0].is_dir() and not items[0].name.startswith("."):
        return items[0]
    return extract_dir


def _with_exec_bits(mode: int) -> int:
    """Grant execute wherever read is granted; the owner always gets it."""
    for read_bit, exec_bit in ((0o400, 0o100), (0o040, 0o010), (0o004, 0o001)):
        if mode & read_bit:
            mode |= exec_bit
    return mode | 0o100


def _is_shebang_script(script: Path) -> bool:
    with script.open("rb") as f:
        return f.read(2) == b"#!"


def ensure_executable_scripts(scripts_root: Path, tracker: StepTracker) -> None:
    """Give shebang ``.sh`` files under ``scripts_root`` execute bits. No-op on Windows."""
    if os.name == "nt" or not scripts_root.is_dir():
        return
    tracker.add("chmod", "Set script permissions")
    failures: list[str] = []
    updated = 0
    for script in sorted(scripts_root.rglob("*.sh")):
        if script.is_symlink() or not script.is_file():
            continue
        try:
            mode = script.stat().st_mode
            if mode & 0o111 or not _is_shebang_script(script):
                continue
            os.chmod(script, _with_exec_bits(mode))
            updated += 1
        except OSError as e:
            failures.append(f"{script.relative_to(scripts_root)}: {e}")
            logger.debug("chmod failed for %s: %s", script, e)

    detail = f"{updated} updated"
    if failures:
        tracker.error("chmod", f"{detail}, {len(failures)} failed: " + "; ".join(failures))
    else:
        tracker.complete("chmod", detail)


def _remove_path(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    elif path.exists() or path.is_symlink():
        path.unlink()


def _copy_path(source: Path, target: Path) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    if source.is_dir():
        shutil.copytree(source, target, symlinks=True)
    else:
        shutil.copy2(source, target)


def _merge_agents(previous: list[str], upgraded: list[str]) -> list[str]:
    merged = list(previous)
    merged.extend(a for a in upgraded if a not in merged)
    return merged


class UpgradeOrchestrator:
    """Drives one upgrade run for a project.

    ``fetcher`` is any object with ``fetch(agent, script_type, download_dir)``
    returning a :class:`FetchedArtifact` or raising :class:`ArtifactError`.
    """

    def __init__(self, project_path: Path, fetcher, *, runner: MigrationRunner | None = None,
                 tracker: StepTracker | None = None, cache_dir: Path | None = None):
        self.project_path = Path(project_path)
        self.fetcher = fetcher
        self.runner = runner or create_migration_runner()
        self.tracker = tracker or StepTracker("Upgrade Buildforce Project")
        self.cache_dir = Path(cache_dir) if cache_dir else Path(platformdirs.user_cache_dir(CACHE_APP_NAME))
        self.session: UpgradeSession | None = None

    def run(self, agents: list[str], script_type: str, *, dry_run: bool = False) -> UpgradeSession:
        session = UpgradeSession(self.project_path, list(agents), script_type, dry_run=dry_run)
        self.session = session
        try:
            self._fetch_all(session)
            if dry_run:
                self._preview(session)
            else:
                self._apply(session)
        finally:
            self._cleanup(session)
        return session

    def _warn(self, session: UpgradeSession, message: str) -> None:
        logger.warning(message)
        session.warnings.append(message)

    # Fetching / extracting

    def _fetch_all(self, session: UpgradeSession) -> None:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        session.download_dir = Path(tempfile.mkdtemp(prefix="buildforce-download-", dir=self.cache_dir))

        for agent in session.agents:
            key = f"fetch-{agent}"
            self.tracker.add(key, f"Fetch {agent} template")
            self.tracker.start(key)
            outcome = AgentOutcome(agent)
            session.outcomes[agent] = outcome
            try:
                outcome.artifact = self.fetcher.fetch(agent, session.script_type, session.download_dir)
                extract_dir = Path(tempfile.mkdtemp(prefix="buildforce-upgrade-"))
                session.extract_dirs.append(extract_dir)
                outcome.source_dir = extract_artifact(outcome.artifact.zip_path, extract_dir)
            except (ArtifactError, zipfile.BadZipFile, OSError, RuntimeError, NotImplementedError) as e:
                outcome.reason = str(e)
                self.tracker.error(key, str(e).splitlines()[0] if str(e) else type(e).__name__)
                self._warn(session, f"[{agent}] {e}")
                continue

            outcome.ok = True
            meta = outcome.artifact.metadata
            self.tracker.complete(key, f"{meta.filename} ({meta.release}, {meta.size:,} bytes)")

        primary = session.primary
        if primary is None:
            raise UpgradeError(
                "Could not fetch a release artifact for any agent: " + ", ".join(session.agents)
            )
        session.release = primary.artifact.metadata.release
        if session.failed_agents:
            self._warn(
                session,
                f"Continuing with {', '.join(session.successful_agents)}; skipped {', '.join(session.failed_agents)}",
            )

    # Planning

    def plan_replacements(self, session: UpgradeSession) -> list[Replacement]:
        """Replacement categories in the order they are applied."""
        plan: list[Replacement] = []
        successful = [session.outcomes[a] for a in session.successful_agents]

        for outcome in successful:
            folder = AGENT_FOLDER_MAP[outcome.agent]
            commands = Path(folder) / AGENT_COMMANDS_DIR.get(outcome.agent, "commands")
            plan.append(Replacement(f"commands-{outcome.agent}", f"{commands.as_posix()}/",
                                    outcome.source_dir / commands, self.project_path / commands))

        for outcome in successful:
            if outcome.agent not in AGENT_SUBAGENTS_DIR:
                continue
            subagents = Path(AGENT_FOLDER_MAP[outcome.agent]) / AGENT_SUBAGENTS_DIR[outcome.agent]
            plan.append(Replacement(f"subagents-{outcome.agent}", f"{subagents.as_posix()}/",
                                    outcome.source_dir / subagents, self.project_path / subagents))

        primary = session.primary
        for key, rel in (("templates", TEMPLATES_DIR), ("scripts", SCRIPTS_DIR)):
            plan.append(Replacement(key, f"{rel.as_posix()}/", primary.source_dir / rel, self.project_path / rel))

        for outcome in successful:
            if outcome.agent not in AGENT_SKILLS_DIR:
                continue
            skills = Path(AGENT_FOLDER_MAP[outcome.agent]) / AGENT_SKILLS_DIR[outcome.agent]
            source_root = outcome.source_dir / skills
            if not source_root.is_dir():
                continue
            for skill in sorted(source_root.iterdir()):
                # Skills without the prefix belong to the user
                if not skill.is_dir() or not skill.name.startswith(SKILL_NAME_PREFIX):
                    continue
                rel = skills / skill.name
                plan.append(Replacement(f"skill-{skill.name}", f"{rel.as_posix()}/", skill, self.project_path / rel))

        return plan

    # Dry run

    def _preview(self, session: UpgradeSession) -> None:
        self.tracker.add("backup", "Backup current files")
        self.tracker.skip("backup", "dry-run mode")

        for item in self.plan_replacements(session):
            self.tracker.add(item.key, f"Replace {item.label}")
            if not item.source.exists():
                self.tracker.skip(item.key, "not in release")
            elif item.target.exists():
                self.tracker.complete(item.key, f"would update {item.label}")
            else:
                self.tracker.complete(item.key, f"would create {item.label}")

        if "claude" in session.successful_agents:
            self.tracker.add("settings", "Merge Claude settings")
            self.tracker.skip("settings", "dry-run mode")

        self.tracker.add("migrate", "Migrate context repository")
        current = get_current_version(self.project_path)
        if current is None:
            self.tracker.skip("migrate", "no context repository")
        else:
            pending = self.runner.get_migrations_to_apply(current)
            if pending:
                versions = ", ".join(f"v{m.version}" for m in pending)
                self.tracker.complete("migrate", f"would migrate {current} -> {versions}")
            else:
                self.tracker.complete("migrate", f"already at {current}")

        self.tracker.add("config", "Update buildforce.json")
        self.tracker.skip("config", "dry-run mode")
        self.tracker.add("final", "Finalize")
        self.tracker.complete("final", "preview complete")

    # Live run

    def _apply(self, session: UpgradeSession) -> None:
        self.tracker.add("backup", "Backup current files")
        self.tracker.start("backup")
        session.backup_dir = Path(tempfile.mkdtemp(prefix="buildforce-backup-"))
        self.tracker.complete("backup", str(session.backup_dir))

        try:
            for item in self.plan_replacements(session):
                self.tracker.add(item.key, f"Replace {item.label}")
                if not item.source.exists():
                    self.tracker.skip(item.key, "not in release")
                    continue
                self.tracker.start(item.key)
                self._replace(session, item)
                self.tracker.complete(item.key, item.label)

            ensure_executable_scripts(self.project_path / SCRIPTS_DIR, self.tracker)

            if "claude" in session.successful_agents:
                self._merge_settings(session)

            self._migrate(session)
            self._save_config(session)
        except Exception as e:
            self.tracker.add("final", "Finalize")
            self.tracker.error("final", str(e))
            self.rollback(session)
            raise

        self.tracker.add("final", "Finalize")
        self.tracker.complete("final", "upgrade complete")

    def _backup(self, session: UpgradeSession, target: Path, label: str) -> BackupEntry:
        entry = BackupEntry(label=label, target=target)
        if target.exists() or target.is_symlink():
            entry.backup_path = session.backup_dir / f"{len(session.backups):02d}-{target.name}"
            _copy_path(target, entry.backup_path)
        session.backups.append(entry)
        logger.debug("Backed up %s -> %s", target, entry.backup_path)
        return entry

    def _replace(self, session: UpgradeSession, item: Replacement) -> None:
        self._backup(session, item.target, item.label)
        _remove_path(item.target)
        _copy_path(item.source, item.target)

    def _merge_settings(self, session: UpgradeSession) -> None:
        self.tracker.add("settings", "Merge Claude settings")
        self.tracker.start("settings")
        template = session.outcomes["claude"].source_dir / CLAUDE_HOOKS_TEMPLATE
        self._backup(session, self.project_path / CLAUDE_SETTINGS_FILE, CLAUDE_SETTINGS_FILE.as_posix())
        session.settings = merge_claude_settings(self.project_path, template)
        if session.settings.merged:
            self.tracker.complete("settings", f"{session.settings.reason} (+{session.settings.hooks_added} hooks)")
        else:
            self.tracker.skip("settings", session.settings.reason)

    def _migrate(self, session: UpgradeSession) -> None:
        self.tracker.add("migrate", "Migrate context repository")
        self.tracker.start("migrate")
        result = self.runner.run(self.project_path, session.primary.source_dir)
        session.migration = result

        for error in result.errors:
            self._warn(session, error)

        if result.no_repository:
            self.tracker.skip("migrate", "no context repository")
        elif result.already_latest:
            self.tracker.complete("migrate", f"already at {result.from_version}")
        elif result.halted:
            # The version marker was not advanced past the failure; the next run retries
            self.tracker.error("migrate", f"halted at {result.to_version}")
        else:
            self.tracker.complete("migrate", f"{result.from_version} -> {result.to_version}")

    def _save_config(self, session: UpgradeSession) -> None:
        self.tracker.add("config", "Update buildforce.json")
        self.tracker.start("config")
        previous = configured_agents(read_buildforce_config(self.project_path))
        session.saved_agents = _merge_agents(previous, session.successful_agents)
        self._backup(session, config_path(self.project_path), "buildforce.json")
        save_buildforce_config(self.project_path, {
            "aiAssistant": session.saved_agents,
            "scriptType": session.script_type,
            "version": session.release,
        })
        self.tracker.complete("config", f"version {session.release}")

    def rollback(self, session: UpgradeSession) -> list[str]:
        """Restore every backup entry, newest first. Returns restore failures."""
        failures = []
        for entry in reversed(session.backups):
            try:
                _remove_path(entry.target)
                if entry.backup_path is not None:
                    _copy_path(entry.backup_path, entry.target)
            except OSError as e:
                failures.append(f"{entry.label}: {e}")
                console.print(f"[red]Rollback failed for {entry.label}:[/red] {e}")
        session.rolled_back = True
        if session.backups:
            console.print("[yellow]Rollback: restored previous files from backup[/yellow]")
        return failures

    def _cleanup(self, session: UpgradeSession) -> None:
        paths = list(session.extract_dirs)
        if session.backup_dir:
            paths.append(session.backup_dir)
        if session.download_dir:
            paths.append(session.download_dir)
        for path in paths:
            shutil.rmtree(path, ignore_errors=True)
        for outcome in session.outcomes.values():
            artifact = outcome.artifact
            if artifact and artifact.temporary and artifact.zip_path.exists():
                artifact.zip_path.unlink()
        logger.debug("Removed %d temporary folders", len(paths))
