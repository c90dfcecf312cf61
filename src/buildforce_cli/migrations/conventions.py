"""Flatten a legacy ``_guidelines.yaml`` into one file per convention.

Pre-2.0 projects kept every coding standard in a single document grouped by
section. Each item named itself through one of several alias keys. Since 2.0
every convention lives in ``conventions/{id}.yaml`` and is listed in
``conventions/_index.yaml``.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Union

from ruamel.yaml.comments import CommentedSeq

from .. import yamlio

# Keys a legacy item may use for its human-readable name, in priority order
NAME_ALIASES = (
    "pattern",
    "convention",
    "standard",
    "rule",
    "requirement",
    "guideline",
    "quirk",
)

NAMING_SECTION = "naming_conventions"

# Legacy section -> canonical sub_type
SECTION_SUB_TYPES = {
    "architectural_patterns": "architectural-pattern",
    "code_conventions": "code-convention",
    "testing_standards": "testing-standard",
    "dependency_rules": "dependency-rule",
    "security_requirements": "security-requirement",
    "performance_guidelines": "performance-guideline",
    "accessibility_standards": "accessibility-standard",
    "project_quirks": "project-quirk",
    NAMING_SECTION: "naming-convention",
}
DEFAULT_SUB_TYPE = "code-convention"

ENFORCEMENT_LEVELS = ("strict", "recommended", "reference")
DEFAULT_ENFORCEMENT = "recommended"

NAMING_GROUPS = (
    ("files", "Files"),
    ("variables", "Variables"),
    ("constants", "Constants"),
    ("functions", "Functions"),
)


@dataclass
class LegacyItem:
    """A named rule from one of the list-shaped legacy sections."""
    section: str
    data: dict


@dataclass
class LegacyNamingRules:
    """The object form of ``naming_conventions``: grouped lists of plain rules."""
    groups: dict[str, list[str]]


LegacyConvention = Union[LegacyItem, LegacyNamingRules]


@dataclass
class ConventionItem:
    id: str
    name: str
    sub_type: str
    enforcement: str
    created: str
    last_updated: str
    description: str
    type: str = "convention"
    examples: list[dict] = field(default_factory=list)
    violations: list[str] = field(default_factory=list)
    reference_files: list[str] = field(default_factory=list)
    template: str | None = None
    migration_guide: str | None = None

    @property
    def filename(self) -> str:
        return f"{self.id}.yaml"

    def to_yaml(self):
        doc = yamlio.new_map([
            ("id", self.id),
            ("name", yamlio.quoted(self.name)),
            ("type", self.type),
            ("sub_type", self.sub_type),
            ("enforcement", self.enforcement),
            ("created", yamlio.quoted(self.created)),
            ("last_updated", yamlio.quoted(self.last_updated)),
            ("description", yamlio.text_scalar(self.description)),
        ])
        if self.examples:
            doc["examples"] = CommentedSeq(
                yamlio.new_map([("file", ex["file"]), ("snippet", yamlio.text_scalar(ex["snippet"]))])
                for ex in self.examples
            )
        if self.violations:
            doc["violations"] = CommentedSeq(yamlio.text_scalar(v) for v in self.violations)
        if self.reference_files:
            doc["reference_files"] = CommentedSeq(self.reference_files)
        if self.template:
            doc["template"] = yamlio.text_scalar(self.template)
        if self.migration_guide:
            doc["migration_guide"] = yamlio.text_scalar(self.migration_guide)
        return doc

    def index_entry(self):
        return yamlio.new_map([
            ("id", self.id),
            ("file", self.filename),
            ("sub_type", self.sub_type),
            ("enforcement", self.enforcement),
            ("description", self.name),
        ])


@dataclass
class FlattenResult:
    files: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    indexed: int = 0


def to_kebab_case(value: str) -> str:
    value = value.lower()
    value = re.sub(r"[^a-z0-9\s-]", "", value)
    value = re.sub(r"\s+", "-", value)
    value = re.sub(r"-+", "-", value)
    return value.strip("-")


def get_item_name(item: Any) -> str | None:
    """Resolve a legacy item's name through the alias table."""
    if not isinstance(item, dict):
        return None
    for alias in NAME_ALIASES:
        value = item.get(alias)
        if value is None or isinstance(value, (dict, list)):
            continue
        name = str(value).strip()
        if name:
            return name
    return None


def section_to_sub_type(section: str) -> str:
    return SECTION_SUB_TYPES.get(section, DEFAULT_SUB_TYPE)


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v is not None]


def convert_item(item: LegacyItem, stamp: str) -> ConventionItem | None:
    data = item.data
    name = get_item_name(data)
    if name is None:
        return None

    enforcement = data.get("enforcement")
    if enforcement not in ENFORCEMENT_LEVELS:
        enforcement = DEFAULT_ENFORCEMENT

    convention = ConventionItem(
        id=to_kebab_case(name),
        name=name,
        sub_type=section_to_sub_type(item.section),
        enforcement=str(enforcement),
        created=stamp,
        last_updated=stamp,
        description=str(data.get("description") or f"Convention: {name}"),
    )

    examples = data.get("examples")
    if isinstance(examples, list):
        convention.examples = [
            {"file": str(ex.get("file") or "example"), "snippet": str(ex.get("snippet") or "")}
            for ex in examples
            if isinstance(ex, dict)
        ]
    elif isinstance(data.get("example"), str):
        convention.examples = [{"file": "example", "snippet": data["example"]}]

    if isinstance(data.get("violations"), list):
        convention.violations = _string_list(data["violations"])
    elif data.get("violation_example"):
        convention.violations = [str(data["violation_example"])]

    convention.reference_files = _string_list(data.get("reference_files"))

    if data.get("template"):
        convention.template = str(data["template"])
    if data.get("migration_guide"):
        convention.migration_guide = str(data["migration_guide"])

    return convention


def convert_naming_rules(rules: LegacyNamingRules, stamp: str) -> ConventionItem:
    blocks = []
    for key, title in NAMING_GROUPS:
        entries = rules.groups.get(key)
        if entries:
            blocks.append(title + ":\n" + "\n".join(f"  - {e}" for e in entries))
    return ConventionItem(
        id="naming-conventions",
        name="Naming Conventions",
        sub_type=section_to_sub_type(NAMING_SECTION),
        enforcement=DEFAULT_ENFORCEMENT,
        created=stamp,
        last_updated=stamp,
        description="\n\n".join(blocks),
    )


def read_legacy_conventions(guidelines: dict) -> tuple[list[LegacyConvention], list[str]]:
    """Split a parsed guidelines document into its legacy convention shapes."""
    found: list[LegacyConvention] = []
    errors: list[str] = []

    for section in SECTION_SUB_TYPES:
        if section == NAMING_SECTION:
            continue
        items = guidelines.get(section)
        if items is None:
            continue
        if not isinstance(items, list):
            errors.append(f"Section {section} is not a list - skipped")
            continue
        found.extend(LegacyItem(section, item if isinstance(item, dict) else {}) for item in items)

    naming = guidelines.get(NAMING_SECTION)
    if isinstance(naming, list):
        found.extend(LegacyItem(NAMING_SECTION, item if isinstance(item, dict) else {}) for item in naming)
    elif isinstance(naming, dict):
        groups = {key: _string_list(naming.get(key)) for key, _ in NAMING_GROUPS}
        if any(groups.values()):
            found.append(LegacyNamingRules(groups))
        elif get_item_name(naming):
            found.append(LegacyItem(NAMING_SECTION, naming))
        else:
            errors.append(f"Section {NAMING_SECTION} has no recognizable entries - skipped")

    return found, errors


class ConventionFlattener:
    """Writes one canonical convention file per legacy item and indexes it."""

    def __init__(self, conventions_path: Path, stamp: str):
        self.conventions_path = Path(conventions_path)
        self.index_path = self.conventions_path / "_index.yaml"
        self.stamp = stamp

    def flatten(self, guidelines_path: Path) -> FlattenResult:
        result = FlattenResult()

        try:
            guidelines = yamlio.load(guidelines_path)
        except yamlio.LOAD_ERRORS as exc:
            result.errors.append(f"Error parsing _guidelines.yaml: {exc}")
            return result
        if not isinstance(guidelines, dict):
            result.errors.append("Invalid _guidelines.yaml structure")
            return result

        legacy, errors = read_legacy_conventions(guidelines)
        result.errors.extend(errors)

        conventions = []
        for entry in legacy:
            if isinstance(entry, LegacyNamingRules):
                conventions.append(convert_naming_rules(entry, self.stamp))
                continue
            converted = convert_item(entry, self.stamp)
            if converted is None:
                result.errors.append(
                    f"Skipping item in {entry.section} - no name field ({', '.join(NAME_ALIASES)})"
                )
            elif not converted.id:
                result.errors.append(f"Skipping '{converted.name}' in {entry.section} - name yields an empty id")
            else:
                conventions.append(converted)

        self._write_files(conventions, result)
        self._update_index(conventions, result)
        return result

    def _write_files(self, conventions: list[ConventionItem], result: FlattenResult) -> None:
        written: set[str] = set()
        for convention in conventions:
            target = self.conventions_path / convention.filename
            if convention.id in written:
                result.errors.append(
                    f"Skipping {convention.filename} - duplicate convention id '{convention.id}' ({convention.name})"
                )
                continue
            if target.exists():
                result.errors.append(f"Skipping {convention.filename} - file already exists")
                continue
            try:
                yamlio.dump(convention.to_yaml(), target)
            except OSError as exc:
                result.errors.append(f"Error writing {convention.filename}: {exc}")
                continue
            written.add(convention.id)
            result.files.append(convention.filename)

    def _update_index(self, conventions: list[ConventionItem], result: FlattenResult) -> None:
        if not conventions:
            return
        try:
            index = yamlio.load(self.index_path) if self.index_path.is_file() else None
        except yamlio.LOAD_ERRORS as exc:
            result.errors.append(f"Error updating conventions/_index.yaml: {exc}")
            return
        if index is None:
            index = empty_domain_index()
        if not isinstance(index, dict):
            result.errors.append("conventions/_index.yaml is not a mapping - index not updated")
            return

        contexts = index.get("contexts")
        if not isinstance(contexts, list):
            contexts = CommentedSeq()
            index["contexts"] = contexts
        yamlio.block_style(contexts)

        indexed = {ctx.get("id") for ctx in contexts if isinstance(ctx, dict)}
        for convention in conventions:
            if convention.id in indexed:
                continue
            contexts.append(convention.index_entry())
            indexed.add(convention.id)
            result.indexed += 1

        try:
            yamlio.dump(index, self.index_path)
        except OSError as exc:
            result.errors.append(f"Error updating conventions/_index.yaml: {exc}")


def empty_domain_index():
    return yamlio.new_map([("version", yamlio.quoted("2.0")), ("contexts", CommentedSeq())])
