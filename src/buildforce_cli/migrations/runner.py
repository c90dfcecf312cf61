import logging
from dataclasses import dataclass, field
from functools import cmp_to_key
from pathlib import Path

from ..context import LEGACY_DEFAULT_VERSION
from .base import Migration, compare_versions, get_current_version

logger = logging.getLogger(__name__)


@dataclass
class MigrationRunnerResult:
    migrated: bool = False
    already_latest: bool = False
    no_repository: bool = False
    halted: bool = False
    from_version: str | None = None
    to_version: str | None = None
    applied_migrations: list[str] = field(default_factory=list)
    actions: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class MigrationRunner:
    """Runs every registered migration newer than the project's version.

    There is no applied-migrations table: the root index ``version`` is the
    only record, and each migration advances it as its last write.
    """

    def __init__(self):
        self._migrations: list[Migration] = []

    def register(self, migration: Migration) -> None:
        self._migrations.append(migration)
        # Python's sort is stable, so equal versions keep registration order
        self._migrations.sort(key=cmp_to_key(lambda a, b: compare_versions(a.version, b.version)))

    @property
    def migrations(self) -> list[Migration]:
        return list(self._migrations)

    @property
    def latest_version(self) -> str:
        if not self._migrations:
            return LEGACY_DEFAULT_VERSION
        return self._migrations[-1].version

    def get_migrations_to_apply(self, current_version: str | None) -> list[Migration]:
        effective = current_version or LEGACY_DEFAULT_VERSION
        return [m for m in self._migrations if compare_versions(m.version, effective) > 0]

    def run(self, project_path: Path, template_source_dir: Path) -> MigrationRunnerResult:
        result = MigrationRunnerResult()

        try:
            current = get_current_version(project_path)
        except Exception as exc:
            logger.exception("Could not read the context repository version")
            result.errors.append(f"Could not read context version - {exc}")
            result.halted = True
            return result
        result.from_version = current
        result.to_version = current

        if current is None:
            result.no_repository = True
            result.actions.append("No context repository found - nothing to migrate")
            return result

        to_apply = self.get_migrations_to_apply(current)
        if not to_apply:
            result.already_latest = True
            result.actions.append(f"Already at version {current} - no migrations needed")
            return result

        for migration in to_apply:
            logger.debug("Running context migration v%s", migration.version)
            try:
                outcome = migration.execute(project_path, template_source_dir)
            except Exception as exc:
                # An unexpected exception leaves the repository in an unknown
                # state; later migrations must not reason about it.
                logger.exception("Context migration v%s failed", migration.version)
                result.errors.append(f"v{migration.version}: Migration failed - {exc}")
                result.halted = True
                break

            if outcome.migrated:
                result.migrated = True
                result.applied_migrations.append(migration.version)
                result.to_version = migration.version
                result.actions.append(f"v{migration.version}: {migration.description}")
                result.actions.extend(f"  - {action}" for action in outcome.actions)
            elif outcome.skipped:
                reason = outcome.actions[0] if outcome.actions else "already applied"
                result.actions.append(f"v{migration.version}: skipped - {reason}")

            for error in outcome.errors:
                logger.warning("v%s: %s", migration.version, error)
                result.errors.append(f"v{migration.version}: {error}")

        return result
