"""v1.0 -> v2.0: split the flat context repository into domain folders."""

import logging
import shutil
from pathlib import Path
from typing import Any

from ruamel.yaml.comments import CommentedSeq

from .. import yamlio
from ..context import (
    DOMAINS,
    INDEX_FILENAME,
    SCHEMA_FILENAME,
    ContextRepository,
    index_version,
    template_context_path,
)
from .base import Migration, MigrationResult, compare_versions, today
from .conventions import ConventionFlattener, empty_domain_index

logger = logging.getLogger(__name__)

GUIDELINES_FILENAME = "_guidelines.yaml"
GRAPH_FILENAME = "_graph.yaml"
# A _graph.yaml shorter than this never held more than the empty scaffold
GRAPH_PLACEHOLDER_LIMIT = 100

SKELETON_HEADER = (
    "Buildforce context repository index\n"
    "Each domain folder owns its own _schema.yaml and _index.yaml"
)


def v20_skeleton(stamp: str):
    context_types = yamlio.new_map(
        (key, yamlio.new_map([
            ("folder", f"{folder}/"),
            ("schema", f"{folder}/{SCHEMA_FILENAME}"),
            ("index", f"{folder}/{INDEX_FILENAME}"),
        ]))
        for folder, key in DOMAINS.items()
    )
    doc = yamlio.new_map([
        ("version", yamlio.quoted("2.0")),
        ("last_updated", yamlio.quoted(stamp)),
        ("context_types", context_types),
    ])
    doc.yaml_set_start_comment(SKELETON_HEADER)
    return doc


def _normalize_yaml_name(filename: str) -> str:
    if filename.endswith(".yml"):
        return filename[: -len(".yml")] + ".yaml"
    return filename


def _set_field(doc, key: str, value: Any, after: str | None = None) -> None:
    """Assign ``key`` in place, or insert it after ``after`` when absent."""
    if key in doc:
        doc[key] = value
        return
    keys = list(doc)
    position = keys.index(after) + 1 if after in keys else len(keys)
    doc.insert(position, key, value)


class TaxonomySplitMigration(Migration):
    version = "2.0"
    description = "Migrate to v2.0 taxonomy (architecture/conventions/verification structure)"

    def execute(self, project_path: Path, template_source_dir: Path) -> MigrationResult:
        result = MigrationResult()
        repo = ContextRepository.for_project(project_path)
        template_context = template_context_path(template_source_dir)
        stamp = today()

        if not repo.exists():
            return result.skip("No .buildforce/context/ folder found - skipping migration")

        root_index = None
        if repo.has_index():
            try:
                root_index = repo.load_index()
            except yamlio.LOAD_ERRORS as exc:
                result.errors.append(f"Error reading _index.yaml: {exc}")
            version = index_version(root_index)
            if version and compare_versions(version, self.version) >= 0:
                return result.skip(f"Already at version {version} - skipping v2.0 migration")

        if all(
            repo.domain_schema_path(d).is_file() and repo.domain_index_path(d).is_file()
            for d in DOMAINS
        ):
            return result.skip("Context structure already exists - skipping folder creation")

        self._create_domains(repo, template_context, result)
        self._flatten_guidelines(repo, stamp, result)
        self._relocate_context_files(repo, stamp, result)
        self._migrate_index_entries(repo, root_index, result)

        if self._write_root_index(repo, template_context, stamp, result):
            self._remove_obsolete_files(repo, result)
            result.migrated = True
        return result

    def _create_domains(self, repo: ContextRepository, template_context: Path, result: MigrationResult) -> None:
        # mkdir failures propagate
        for domain in DOMAINS:
            repo.domain_path(domain).mkdir(parents=True, exist_ok=True)
        result.actions.append("Created context type folders: " + ", ".join(f"{d}/" for d in DOMAINS))

        for domain in DOMAINS:
            schema_src = template_context / domain / SCHEMA_FILENAME
            index_src = template_context / domain / INDEX_FILENAME
            index_dest = repo.domain_index_path(domain)
            try:
                if schema_src.is_file():
                    shutil.copy2(schema_src, repo.domain_schema_path(domain))
                    result.actions.append(f"Copied {domain}/{SCHEMA_FILENAME} from template")
                if not index_dest.exists() and index_src.is_file():
                    shutil.copy2(index_src, index_dest)
                    result.actions.append(f"Copied {domain}/{INDEX_FILENAME} from template")
                if not index_dest.exists():
                    yamlio.dump(empty_domain_index(), index_dest)
                    result.actions.append(f"Created empty {domain}/{INDEX_FILENAME}")
            except OSError as exc:
                result.errors.append(f"Error preparing {domain}/: {exc}")

    def _flatten_guidelines(self, repo: ContextRepository, stamp: str, result: MigrationResult) -> None:
        guidelines_path = repo.context_path / GUIDELINES_FILENAME
        if not guidelines_path.is_file():
            result.actions.append(f"No {GUIDELINES_FILENAME} found to migrate")
            return

        flattened = ConventionFlattener(repo.domain_path("conventions"), stamp).flatten(guidelines_path)
        result.errors.extend(flattened.errors)
        if not flattened.files:
            result.errors.append(f"No conventions written - {GUIDELINES_FILENAME} left in place")
            return

        result.actions.append(
            f"Converted {GUIDELINES_FILENAME} to {len(flattened.files)} convention files: "
            + ", ".join(flattened.files)
        )
        if flattened.indexed:
            result.actions.append(f"Added {flattened.indexed} entries to conventions/{INDEX_FILENAME}")
        try:
            guidelines_path.unlink()
            result.actions.append(f"Deleted {GUIDELINES_FILENAME}")
        except OSError as exc:
            result.errors.append(f"Error deleting {GUIDELINES_FILENAME}: {exc}")

    def _relocate_context_files(self, repo: ContextRepository, stamp: str, result: MigrationResult) -> None:
        architecture = repo.domain_path("architecture")
        moved = []
        for source in sorted(repo.context_path.iterdir()):
            if not source.is_file() or source.name.startswith("_"):
                continue
            if source.suffix not in (".yaml", ".yml"):
                continue

            target_name = _normalize_yaml_name(source.name)
            target = architecture / target_name
            if target.exists():
                result.errors.append(f"Skipping {source.name} - {target_name} already exists in architecture/")
                continue

            try:
                doc = yamlio.load(source)
            except yamlio.LOAD_ERRORS as exc:
                result.errors.append(f"Error reading {source.name}: {exc}")
                continue
            if not isinstance(doc, dict):
                result.errors.append(f"Skipping {source.name} - not a YAML mapping")
                continue

            _set_field(doc, "type", "structural", after="id")
            _set_field(doc, "last_updated", yamlio.quoted(stamp))

            try:
                yamlio.dump(doc, target)
                source.unlink()
            except OSError as exc:
                result.errors.append(f"Error moving {source.name}: {exc}")
                continue
            moved.append(target_name)

        if moved:
            result.actions.append(f"Moved {len(moved)} context files to architecture/: " + ", ".join(moved))

    def _migrate_index_entries(self, repo: ContextRepository, root_index: Any, result: MigrationResult) -> None:
        if not isinstance(root_index, dict):
            return
        contexts = root_index.get("contexts")
        if not isinstance(contexts, list) or not contexts:
            return

        arch_index_path = repo.domain_index_path("architecture")
        try:
            arch_index = yamlio.load(arch_index_path) if arch_index_path.is_file() else None
        except yamlio.LOAD_ERRORS as exc:
            result.errors.append(f"Error reading architecture/{INDEX_FILENAME}: {exc}")
            return
        if arch_index is None:
            arch_index = empty_domain_index()
        if not isinstance(arch_index, dict):
            result.errors.append(f"architecture/{INDEX_FILENAME} is not a mapping - entries not migrated")
            return

        entries = arch_index.get("contexts")
        if not isinstance(entries, list):
            entries = CommentedSeq()
            arch_index["contexts"] = entries
        yamlio.block_style(entries)
        known = {e.get("id") for e in entries if isinstance(e, dict)}

        added = 0
        for entry in contexts:
            if not isinstance(entry, dict):
                continue
            entry_id = entry.get("id")
            if entry_id == "guidelines" or entry.get("file") == GUIDELINES_FILENAME:
                continue
            if not entry_id:
                result.errors.append(f"Skipping index entry without id ({entry.get('file')})")
                continue
            if entry_id in known:
                result.errors.append(f"Skipping entry {entry_id} - already exists in architecture/{INDEX_FILENAME}")
                continue

            entries.append(self._architecture_entry(entry))
            known.add(entry_id)
            added += 1

        try:
            yamlio.dump(arch_index, arch_index_path)
        except OSError as exc:
            result.errors.append(f"Error writing architecture/{INDEX_FILENAME}: {exc}")
            return
        if added:
            result.actions.append(f"Migrated {added} index entries to architecture/{INDEX_FILENAME}")

    @staticmethod
    def _architecture_entry(entry: dict):
        migrated = yamlio.new_map([
            ("id", entry["id"]),
            ("file", _normalize_yaml_name(str(entry.get("file") or ""))),
            ("type", "structural"),
        ])
        for key, value in entry.items():
            if key in migrated:
                continue
            if key == "related_context" and isinstance(value, list):
                value = [ref for ref in value if ref != "guidelines"]
            migrated[key] = value
        yamlio.apply_flow_style(migrated)
        return migrated

    def _write_root_index(self, repo: ContextRepository, template_context: Path, stamp: str, result: MigrationResult) -> bool:
        template_index = template_context / INDEX_FILENAME
        use_template = False
        if template_index.is_file():
            try:
                template_version = index_version(yamlio.load(template_index))
            except yamlio.LOAD_ERRORS as exc:
                result.errors.append(f"Error reading template {INDEX_FILENAME}: {exc}")
                template_version = None
            use_template = template_version is not None and compare_versions(template_version, self.version) == 0
            if not use_template:
                logger.debug("Template root index is version %s, writing a v2.0 skeleton", template_version)

        try:
            if use_template:
                shutil.copy2(template_index, repo.index_path)
            else:
                repo.write_index(v20_skeleton(stamp))
        except OSError as exc:
            result.errors.append(f"Error writing root {INDEX_FILENAME}: {exc}")
            return False
        result.actions.append(f"Updated root {INDEX_FILENAME} to version 2.0 format")
        return True

    def _remove_obsolete_files(self, repo: ContextRepository, result: MigrationResult) -> None:
        schema = repo.context_path / SCHEMA_FILENAME
        graph = repo.context_path / GRAPH_FILENAME
        try:
            if schema.is_file():
                schema.unlink()
                result.actions.append(f"Removed obsolete root {SCHEMA_FILENAME}")
            if graph.is_file() and len(graph.read_text(encoding="utf-8").strip()) < GRAPH_PLACEHOLDER_LIMIT:
                graph.unlink()
                result.actions.append(f"Removed empty {GRAPH_FILENAME}")
        except OSError as exc:
            result.errors.append(f"Error removing obsolete files: {exc}")
