from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path

from ..context import ContextRepository


@dataclass
class MigrationResult:
    """Outcome of one migration.

    ``errors`` are non-fatal: they are reported but never stop later
    migrations. Unexpected failures are raised instead.
    """
    migrated: bool = False
    skipped: bool = False
    actions: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def skip(self, reason: str) -> "MigrationResult":
        self.skipped = True
        self.actions.append(reason)
        return self


class Migration(ABC):
    """A versioned, idempotent transform of the context repository.

    ``version`` is the schema version the migration produces. Re-running
    ``execute`` on a project that already reached it must report
    ``skipped`` and write nothing.
    """

    version: str = ""
    description: str = ""

    @abstractmethod
    def execute(self, project_path: Path, template_source_dir: Path) -> MigrationResult:
        ...

    def __repr__(self) -> str:
        return f"<{type(self).__name__} v{self.version}>"


def _segments(version: str) -> list[int]:
    parts = []
    for piece in str(version).strip().split("."):
        try:
            parts.append(int(piece))
        except ValueError:
            parts.append(0)
    return parts


def compare_versions(a: str, b: str) -> int:
    """Compare dot-decimal versions; missing trailing segments count as 0.

    >>> compare_versions("2", "2.0")
    0
    >>> compare_versions("2.0", "2.1")
    -1
    """
    parts_a = _segments(a)
    parts_b = _segments(b)
    for i in range(max(len(parts_a), len(parts_b))):
        num_a = parts_a[i] if i < len(parts_a) else 0
        num_b = parts_b[i] if i < len(parts_b) else 0
        if num_a < num_b:
            return -1
        if num_a > num_b:
            return 1
    return 0


def get_current_version(project_path: Path) -> str | None:
    return ContextRepository.for_project(project_path).read_version()


def today() -> str:
    return date.today().isoformat()
