"""v2.0 -> v2.1 index consolidation, and the full 1.0 -> 2.1 chain."""

from buildforce_cli import yamlio
from buildforce_cli.migrations import IndexConsolidationMigration, create_migration_runner, get_current_version


def context_of(project):
    return project / ".buildforce" / "context"


def domain_entry_count(project):
    total = 0
    for domain in ("architecture", "conventions", "verification"):
        index = context_of(project) / domain / "_index.yaml"
        if index.is_file():
            total += len(yamlio.load(index).get("contexts") or [])
    return total


def item_count(root):
    return sum(len(d.get("items") or []) for d in root["domains"].values())


class TestIndexConsolidation:

    def test_consolidates_every_entry(self, v20_project, template_dir):
        expected = domain_entry_count(v20_project)

        result = IndexConsolidationMigration().execute(v20_project, template_dir)

        assert result.migrated
        assert result.errors == []
        root = yamlio.load(context_of(v20_project) / "_index.yaml")
        assert item_count(root) == expected == 4
        assert root["summary"]["total_items"] == 4
        assert root["summary"]["extracted_items"] == 4
        assert get_current_version(v20_project) == "2.1"
        for domain in ("architecture", "conventions", "verification"):
            assert not (context_of(v20_project) / domain / "_index.yaml").exists()
            assert (context_of(v20_project) / domain / "_schema.yaml").exists()

    def test_item_shape(self, v20_project, template_dir):
        IndexConsolidationMigration().execute(v20_project, template_dir)
        domains = yamlio.load(context_of(v20_project) / "_index.yaml")["domains"]

        auth = domains["structural"]["items"][0]
        assert auth["id"] == "auth-flow"
        assert auth["file"] == "architecture/auth-flow.yaml"
        assert auth["description"] == "Login and session handling"
        assert list(auth["tags"]) == ["auth", "session"]
        assert list(auth["related_context"]) == ["data-model"]
        assert auth["status"] == "extracted"
        assert auth["depth"] == "shallow"

        # already prefixed paths are left alone
        assert domains["structural"]["items"][1]["file"] == "architecture/data-model.yaml"

        convention = domains["conventions"]["items"][0]
        assert convention["type"] == "convention"
        assert convention["sub_type"] == "architectural-pattern"
        assert convention["enforcement"] == "strict"

        verification = domains["verification"]["items"][0]
        assert verification["source"] == "pytest.ini"
        assert verification["file"] == "verification/unit-tests.yaml"

    def test_template_comments_and_flow_style(self, v20_project, template_dir):
        IndexConsolidationMigration().execute(v20_project, template_dir)
        text = (context_of(v20_project) / "_index.yaml").read_text(encoding="utf-8")
        assert text.startswith("# Buildforce coverage map (template)")
        assert 'version: "2.1"' in text
        assert "tags: [auth, session]" in text

    def test_missing_template_uses_minimal_structure(self, v20_project, tmp_path):
        empty_template = tmp_path / "empty-template"
        empty_template.mkdir()

        result = IndexConsolidationMigration().execute(v20_project, empty_template)

        assert result.migrated
        assert any("minimal structure" in e for e in result.errors)
        root = yamlio.load(context_of(v20_project) / "_index.yaml")
        assert set(root["domains"]) == {"structural", "conventions", "verification"}
        assert item_count(root) == 4

    def test_outdated_template_uses_minimal_structure(self, v20_project, template_dir):
        (template_dir / ".buildforce" / "context" / "_index.yaml").write_text('version: "2.0"\n', encoding="utf-8")
        result = IndexConsolidationMigration().execute(v20_project, template_dir)
        assert result.migrated
        assert get_current_version(v20_project) == "2.1"
        assert any("minimal structure" in e for e in result.errors)

    def test_no_domain_indexes(self, tmp_path, template_dir):
        index = context_of(tmp_path) / "_index.yaml"
        index.parent.mkdir(parents=True)
        index.write_text('version: "2.0"\ncontext_types: {}\n', encoding="utf-8")

        result = IndexConsolidationMigration().execute(tmp_path, template_dir)

        assert result.migrated
        root = yamlio.load(index)
        assert item_count(root) == 0
        assert root["summary"]["total_items"] == 0

    def test_skips_legacy_shaped_index(self, tmp_path, template_dir):
        index = context_of(tmp_path) / "_index.yaml"
        index.parent.mkdir(parents=True)
        index.write_text('version: "2.0"\ncontexts:\n  - id: a\n    file: a.yaml\n', encoding="utf-8")

        result = IndexConsolidationMigration().execute(tmp_path, template_dir)

        assert result.skipped
        assert "v2.0 migration first" in result.actions[0]

    def test_skips_when_current(self, v20_project, template_dir):
        IndexConsolidationMigration().execute(v20_project, template_dir)
        again = IndexConsolidationMigration().execute(v20_project, template_dir)
        assert again.skipped and not again.migrated

    def test_malformed_domain_index_is_left_in_place(self, v20_project, template_dir):
        verification = context_of(v20_project) / "verification" / "_index.yaml"
        verification.write_text("- just\n- a list\n", encoding="utf-8")

        result = IndexConsolidationMigration().execute(v20_project, template_dir)

        assert result.migrated
        assert verification.exists()
        assert any("verification/_index.yaml" in e for e in result.errors)


class TestFullChain:

    def test_legacy_project_reaches_latest(self, legacy_project, template_dir):
        result = create_migration_runner().run(legacy_project, template_dir)

        assert result.migrated
        assert not result.halted
        assert result.from_version == "1.0"
        assert result.to_version == "2.1"
        assert result.applied_migrations == ["2.0", "2.1"]

        root = yamlio.load(context_of(legacy_project) / "_index.yaml")
        ids = {key: [i["id"] for i in d["items"]] for key, d in root["domains"].items()}
        assert ids["structural"] == ["auth-flow", "data-model"]
        assert ids["conventions"] == ["repository-pattern", "use-type-hints", "naming-conventions"]
        assert ids["verification"] == []
        assert (context_of(legacy_project) / "conventions" / "repository-pattern.yaml").is_file()

    def test_second_run_changes_nothing(self, legacy_project, template_dir, take_snapshot):
        runner = create_migration_runner()
        runner.run(legacy_project, template_dir)
        before = take_snapshot(legacy_project)

        again = runner.run(legacy_project, template_dir)

        assert again.already_latest
        assert take_snapshot(legacy_project) == before

    def test_errors_carry_version_prefix(self, legacy_project, template_dir):
        result = create_migration_runner().run(legacy_project, template_dir)
        assert result.errors
        assert all(e.startswith("v2.") for e in result.errors)
