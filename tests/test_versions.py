"""Version comparison and detection of the context repository's schema version."""

import pytest

from buildforce_cli.context import ContextRepository
from buildforce_cli.migrations import compare_versions, get_current_version


class TestCompareVersions:

    @pytest.mark.parametrize("a, b, expected", [
        ("2", "2.0", 0),
        ("2.0", "2.1", -1),
        ("2.1", "2.0", 1),
        ("1.0", "1.0.0", 0),
        ("2.10", "2.9", 1),
        ("1.x", "1.0", 0),
    ])
    def test_compare(self, a, b, expected):
        assert compare_versions(a, b) == expected

    def test_is_antisymmetric(self):
        assert compare_versions("2.0", "2.1") == -compare_versions("2.1", "2.0")


class TestGetCurrentVersion:

    def test_no_context_folder(self, tmp_path):
        assert get_current_version(tmp_path) is None

    def test_context_folder_without_index(self, tmp_path):
        (tmp_path / ".buildforce" / "context").mkdir(parents=True)
        assert get_current_version(tmp_path) is None

    def test_index_without_version_is_legacy(self, legacy_project):
        assert get_current_version(legacy_project) == "1.0"

    def test_empty_index_is_legacy(self, tmp_path):
        index = tmp_path / ".buildforce" / "context" / "_index.yaml"
        index.parent.mkdir(parents=True)
        index.write_text("", encoding="utf-8")
        assert get_current_version(tmp_path) == "1.0"

    def test_unparseable_index_is_legacy(self, tmp_path):
        index = tmp_path / ".buildforce" / "context" / "_index.yaml"
        index.parent.mkdir(parents=True)
        index.write_text("version: [unclosed\n", encoding="utf-8")
        assert get_current_version(tmp_path) == "1.0"

    def test_undecodable_index_is_legacy(self, tmp_path):
        index = tmp_path / ".buildforce" / "context" / "_index.yaml"
        index.parent.mkdir(parents=True)
        index.write_bytes(b"contexts:\n  - id: cv\n    description: r\xe9sum\xe9\n")
        assert get_current_version(tmp_path) == "1.0"

    def test_declared_version(self, v20_project):
        assert get_current_version(v20_project) == "2.0"

    def test_numeric_version_is_stringified(self, tmp_path):
        index = tmp_path / ".buildforce" / "context" / "_index.yaml"
        index.parent.mkdir(parents=True)
        index.write_text("version: 2.1\n", encoding="utf-8")
        assert ContextRepository(tmp_path).read_version() == "2.1"
