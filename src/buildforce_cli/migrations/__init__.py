"""Context repository schema migrations.

Add a migration by subclassing :class:`Migration` and registering it in
:func:`create_migration_runner`; the runner orders them by version.
"""

from .base import Migration, MigrationResult, compare_versions, get_current_version
from .runner import MigrationRunner, MigrationRunnerResult
from .v2_0 import TaxonomySplitMigration
from .v2_1 import IndexConsolidationMigration

__all__ = [
    "Migration",
    "MigrationResult",
    "MigrationRunner",
    "MigrationRunnerResult",
    "TaxonomySplitMigration",
    "IndexConsolidationMigration",
    "compare_versions",
    "create_migration_runner",
    "get_current_version",
]


def create_migration_runner() -> MigrationRunner:
    runner = MigrationRunner()
    runner.register(TaxonomySplitMigration())
    runner.register(IndexConsolidationMigration())
    return runner
