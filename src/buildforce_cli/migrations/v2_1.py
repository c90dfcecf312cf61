"""v2.0 -> v2.1: fold the per-domain indexes into the root coverage map."""

import logging
from pathlib import Path
from typing import Any

from ruamel.yaml.comments import CommentedMap, CommentedSeq

from .. import yamlio
from ..context import DOMAINS, INDEX_FILENAME, SCHEMA_FILENAME, ContextRepository, index_version, template_context_path
from .base import Migration, MigrationResult, compare_versions, today

logger = logging.getLogger(__name__)

DOMAIN_DESCRIPTIONS = {
    "structural": "Architecture, components, data models and how the system fits together",
    "conventions": "Coding standards, patterns and rules the codebase follows",
    "verification": "Test strategy, quality gates and how changes are verified",
}

# Fields kept in addition to the common ones, per domain folder
DOMAIN_EXTRA_FIELDS = {
    "architecture": (),
    "conventions": ("sub_type", "enforcement"),
    "verification": ("source",),
}

DEFAULT_ITEM_TYPES = {
    "architecture": "structural",
    "conventions": "convention",
    "verification": "verification",
}

MIGRATED_STATUS = "extracted"
# The v2.0 indexes carry no depth signal; every migrated item gets the same one
MIGRATED_DEPTH = "shallow"

SKELETON_HEADER = (
    "Buildforce context repository index\n"
    "Unified coverage map: every knowledge item is listed under its domain"
)


def v21_skeleton(stamp: str):
    domains = yamlio.new_map(
        (key, yamlio.new_map([
            ("description", DOMAIN_DESCRIPTIONS[key]),
            ("schema", f"{folder}/{SCHEMA_FILENAME}"),
            ("coverage", 0),
            ("average_depth", "none"),
            ("items", CommentedSeq()),
        ]))
        for folder, key in DOMAINS.items()
    )
    doc = yamlio.new_map([
        ("version", yamlio.quoted("2.1")),
        ("generated_at", None),
        ("last_updated", yamlio.quoted(stamp)),
        ("codebase_profile", yamlio.new_map([
            ("languages", yamlio.flow_seq([])),
            ("frameworks", yamlio.flow_seq([])),
            ("project_type", None),
            ("scale", None),
        ])),
        ("domains", domains),
        ("summary", yamlio.new_map([
            ("overall_coverage", 0),
            ("total_items", 0),
            ("extracted_items", 0),
            ("iterations_completed", 0),
        ])),
        ("extraction", yamlio.new_map([
            ("needs_clarification", yamlio.flow_seq([])),
            ("recommended_focus", yamlio.flow_seq([])),
            ("new_discoveries", yamlio.flow_seq([])),
        ])),
    ])
    doc.yaml_set_start_comment(SKELETON_HEADER)
    return doc


def looks_legacy(index: Any) -> bool:
    """True for a root index still in the flat v1.0 shape."""
    if not isinstance(index, dict) or index_version(index) is None:
        return True
    return "contexts" in index and "context_types" not in index and "domains" not in index


def _child_map(parent: CommentedMap, key: str) -> CommentedMap:
    child = parent.get(key)
    if not isinstance(child, dict):
        child = CommentedMap()
        parent[key] = child
    return child


class IndexConsolidator:
    """Moves each domain's flat ``contexts[]`` into ``domains.*.items[]``."""

    def __init__(self, repo: ContextRepository):
        self.repo = repo

    @staticmethod
    def to_item(folder: str, entry: dict) -> CommentedMap:
        file = entry.get("file")
        if file and not str(file).startswith(f"{folder}/"):
            file = f"{folder}/{file}"

        item = yamlio.new_map([
            ("id", entry.get("id")),
            ("file", file),
            ("type", entry.get("type") or DEFAULT_ITEM_TYPES[folder]),
        ])
        for key in ("description", "tags", "related_context") + DOMAIN_EXTRA_FIELDS[folder]:
            if key in entry:
                item[key] = entry[key]
        item["status"] = MIGRATED_STATUS
        item["depth"] = MIGRATED_DEPTH
        return item

    def read_items(self, folder: str, errors: list[str]) -> list[CommentedMap] | None:
        index_path = self.repo.domain_index_path(folder)
        if not index_path.is_file():
            return None
        index = yamlio.load(index_path)
        if index is not None and not isinstance(index, dict):
            errors.append(f"{folder}/{INDEX_FILENAME} is not a mapping - left in place")
            return None
        contexts = index.get("contexts") if index else None
        if not isinstance(contexts, list):
            return []

        items = []
        for entry in contexts:
            if not isinstance(entry, dict):
                errors.append(f"Skipping malformed entry in {folder}/{INDEX_FILENAME}: {entry!r}")
                continue
            items.append(self.to_item(folder, entry))
        return items

    def consolidate(self, doc: CommentedMap, result: MigrationResult) -> int:
        domains = _child_map(doc, "domains")
        total = 0
        for folder, key in DOMAINS.items():
            try:
                items = self.read_items(folder, result.errors)
            except yamlio.LOAD_ERRORS as exc:
                result.errors.append(f"Error migrating {folder}/{INDEX_FILENAME}: {exc}")
                continue
            if items is None:
                continue

            _child_map(domains, key)["items"] = CommentedSeq(items)
            total += len(items)
            result.actions.append(f"Migrated {len(items)} entries from {folder}/{INDEX_FILENAME}")

            try:
                self.repo.domain_index_path(folder).unlink()
            except OSError as exc:
                result.errors.append(f"Error deleting {folder}/{INDEX_FILENAME}: {exc}")
                continue
            result.actions.append(f"Deleted {folder}/{INDEX_FILENAME}")
        return total


class IndexConsolidationMigration(Migration):
    version = "2.1"
    description = "Migrate to v2.1 unified coverage map (consolidate domain indexes into root)"

    def execute(self, project_path: Path, template_source_dir: Path) -> MigrationResult:
        result = MigrationResult()
        repo = ContextRepository.for_project(project_path)
        stamp = today()

        if not repo.exists():
            return result.skip("No .buildforce/context/ folder found - skipping migration")
        if not repo.has_index():
            return result.skip(f"No root {INDEX_FILENAME} found - skipping migration")

        try:
            root_index = repo.load_index()
        except yamlio.LOAD_ERRORS as exc:
            result.errors.append(f"Error reading {INDEX_FILENAME}: {exc}")
            return result

        version = index_version(root_index)
        if version and compare_versions(version, self.version) >= 0:
            return result.skip(f"Already at version {version} - skipping v2.1 migration")
        if looks_legacy(root_index):
            return result.skip("Project appears to be v1.0 - run v2.0 migration first")

        doc = self._root_skeleton(template_context_path(template_source_dir), stamp, result)
        doc["version"] = yamlio.quoted(self.version)
        doc["last_updated"] = yamlio.quoted(stamp)

        total = IndexConsolidator(repo).consolidate(doc, result)
        summary = _child_map(doc, "summary")
        summary["total_items"] = total
        summary["extracted_items"] = total

        yamlio.apply_flow_style(doc)
        try:
            repo.write_index(doc)
        except OSError as exc:
            result.errors.append(f"Error writing root {INDEX_FILENAME}: {exc}")
            return result

        result.actions.append(f"Updated root {INDEX_FILENAME} to version 2.1 with {total} items")
        result.migrated = True
        return result

    def _root_skeleton(self, template_context: Path, stamp: str, result: MigrationResult) -> CommentedMap:
        template_index = template_context / INDEX_FILENAME
        if not template_index.is_file():
            result.errors.append(f"Template {INDEX_FILENAME} not found - using minimal structure")
            return v21_skeleton(stamp)

        try:
            doc = yamlio.load(template_index)
        except yamlio.LOAD_ERRORS as exc:
            result.errors.append(f"Error reading template {INDEX_FILENAME}: {exc} - using minimal structure")
            return v21_skeleton(stamp)

        template_version = index_version(doc)
        if template_version is None or compare_versions(template_version, self.version) != 0:
            result.errors.append(
                f"Template {INDEX_FILENAME} is version {template_version} - using minimal structure"
            )
            return v21_skeleton(stamp)

        logger.debug("Using template root index from %s", template_index)
        return doc
