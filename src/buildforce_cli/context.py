"""Handle on a project's context repository (``.buildforce/context``)."""

import logging
from pathlib import Path
from typing import Any


from . import yamlio
from .constants import CONTEXT_DIR

logger = logging.getLogger(__name__)

INDEX_FILENAME = "_index.yaml"
SCHEMA_FILENAME = "_schema.yaml"
LEGACY_DEFAULT_VERSION = "1.0"

# Domain folder -> key under ``domains`` in the v2.1 root index
DOMAINS = {
    "architecture": "structural",
    "conventions": "conventions",
    "verification": "verification",
}


def index_version(index: Any) -> str | None:
    """Version declared by a parsed index document, if any."""
    if not isinstance(index, dict):
        return None
    version = index.get("version")
    if version is None or str(version).strip() == "":
        return None
    return str(version).strip()


def template_context_path(template_source_dir: Path) -> Path:
    """Context folder inside an extracted release artifact."""
    return Path(template_source_dir) / CONTEXT_DIR


class ContextRepository:
    """Paths and index access for one project's context repository.

    The root ``_index.yaml`` ``version`` field is the only state migrations
    consult; it is read and written exclusively through this handle.
    """

    def __init__(self, project_path: Path):
        self.project_path = Path(project_path)
        self.context_path = self.project_path / CONTEXT_DIR
        self.index_path = self.context_path / INDEX_FILENAME

    @classmethod
    def for_project(cls, project_path: Path) -> "ContextRepository":
        return cls(project_path)

    def exists(self) -> bool:
        return self.context_path.is_dir()

    def has_index(self) -> bool:
        return self.index_path.is_file()

    def domain_path(self, domain: str) -> Path:
        return self.context_path / domain

    def domain_index_path(self, domain: str) -> Path:
        return self.domain_path(domain) / INDEX_FILENAME

    def domain_schema_path(self, domain: str) -> Path:
        return self.domain_path(domain) / SCHEMA_FILENAME

    def load_index(self) -> Any:
        return yamlio.load(self.index_path)

    def write_index(self, doc: Any) -> None:
        yamlio.dump(doc, self.index_path)

    def read_version(self) -> str | None:
        """Declared schema version, ``"1.0"`` for legacy indexes, ``None`` without a repository."""
        if not self.exists() or not self.has_index():
            return None
        try:
            index = self.load_index()
        except yamlio.LOAD_ERRORS as exc:
            logger.warning("Could not parse %s, assuming version %s: %s", self.index_path, LEGACY_DEFAULT_VERSION, exc)
            return LEGACY_DEFAULT_VERSION
        return index_version(index) or LEGACY_DEFAULT_VERSION
