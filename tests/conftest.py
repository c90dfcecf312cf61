"""Shared fixtures for buildforce-cli tests."""

import json
import zipfile
from pathlib import Path
from textwrap import dedent

import pytest


def write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dedent(text).lstrip("\n"), encoding="utf-8")
    return path


LEGACY_INDEX = """
# Context index for the project
contexts:
  - id: auth-flow
    file: auth-flow.yaml
    type: feature
    description: Login and session handling
    tags: [auth, session]
    related_context: [guidelines, data-model]
  - id: data-model
    file: data-model.yml
    type: module
    description: Core entities
  - id: guidelines
    file: _guidelines.yaml
    type: guidelines
    description: Project guidelines
"""

LEGACY_GUIDELINES = """
version: "1.0"
architectural_patterns:
  - pattern: Repository Pattern
    enforcement: strict
    description: Data access goes through repositories
    examples:
      - file: src/repos/user.py
        snippet: class UserRepository
    reference_files: [src/repos/user.py]
code_conventions:
  - convention: Use type hints
    enforcement: mandatory
    example: "def area(r: float) -> float"
    violation_example: "def area(r)"
naming_conventions:
  files: [snake_case modules]
  variables: [snake_case locals]
  functions: [verbs first]
project_quirks:
  - description: A quirk that never got a name
"""

TEMPLATE_ROOT_INDEX = """
# Buildforce coverage map (template)
version: "2.1"
generated_at:
last_updated: "2025-01-01"
codebase_profile:
  languages: []
  frameworks: []
domains:
  structural:
    description: Architecture and components
    schema: architecture/_schema.yaml
    coverage: 0
    average_depth: none
    items: []
  conventions:
    description: Coding standards
    schema: conventions/_schema.yaml
    coverage: 0
    average_depth: none
    items: []
  verification:
    description: Testing strategy
    schema: verification/_schema.yaml
    coverage: 0
    average_depth: none
    items: []
summary:
  overall_coverage: 0
  total_items: 0
  extracted_items: 0
"""

DOMAIN_INDEX = """
version: "2.0"
contexts: []
"""

HOOKS_CONFIG = {
    "Stop": [{"hooks": [{"type": "command", "command": ".buildforce/scripts/bash/on-stop.sh"}]}],
}


def build_template(root: Path, agents=("claude",)) -> Path:
    """Lay out the contents of a release artifact under ``root``."""
    context = root / ".buildforce" / "context"
    write(context / "_index.yaml", TEMPLATE_ROOT_INDEX)
    for domain in ("architecture", "conventions", "verification"):
        write(context / domain / "_schema.yaml", f"# {domain} schema\nrequired: [id, file]\n")
        write(context / domain / "_index.yaml", DOMAIN_INDEX)

    write(root / ".buildforce" / "templates" / "spec-template.md", "# Spec template v2\n")
    write(root / ".buildforce" / "scripts" / "bash" / "common.sh", "#!/usr/bin/env bash\necho common\n")

    folders = {"claude": ".claude", "gemini": ".gemini", "cursor": ".cursor"}
    for agent in agents:
        folder = root / folders[agent]
        write(folder / "commands" / "buildforce.plan.md", f"# plan command for {agent} v2\n")
        write(folder / "commands" / "buildforce.build.md", f"# build command for {agent} v2\n")
        if agent == "claude":
            write(folder / "agents" / "context-explorer.md", "# sub-agent v2\n")
            write(folder / "skills" / "buildforce-context" / "SKILL.md", "# buildforce skill v2\n")
            write(folder / "skills" / "other-skill" / "SKILL.md", "# not ours\n")
            write(folder / "hooks" / "config.json", json.dumps(HOOKS_CONFIG))
    return root


def build_artifact(out_dir: Path, staging: Path, agent: str, *, script="sh", version="v0.2.0", wrap=False) -> Path:
    """Zip a template for ``agent`` as ``buildforce-cli-template-{agent}-{script}-{version}.zip``."""
    source = build_template(staging / f"{agent}-{script}-{version}", agents=(agent,))
    out_dir.mkdir(parents=True, exist_ok=True)
    zip_path = out_dir / f"buildforce-cli-template-{agent}-{script}-{version}.zip"
    with zipfile.ZipFile(zip_path, "w") as zf:
        for file in sorted(source.rglob("*")):
            if file.is_file():
                arcname = file.relative_to(source).as_posix()
                if wrap:
                    arcname = f"buildforce-cli-{version}/{arcname}"
                zf.write(file, arcname)
    return zip_path


def snapshot(root: Path) -> dict:
    """Relative path -> bytes for every file under ``root``."""
    if not root.exists():
        return {}
    return {p.relative_to(root).as_posix(): p.read_bytes() for p in sorted(root.rglob("*")) if p.is_file()}


@pytest.fixture
def take_snapshot():
    return snapshot


@pytest.fixture
def template_dir(tmp_path):
    """An extracted release artifact for claude."""
    return build_template(tmp_path / "template")


@pytest.fixture
def artifact_builder(tmp_path):
    staging = tmp_path / "staging"

    def _build(out_dir: Path, agent: str, **kwargs) -> Path:
        return build_artifact(out_dir, staging, agent, **kwargs)

    return _build


@pytest.fixture
def legacy_project(tmp_path):
    """A v1.0 project: flat context repository with a _guidelines.yaml."""
    project = tmp_path / "project"
    write(project / ".buildforce" / "buildforce.json", json.dumps({
        "aiAssistant": "claude",
        "scriptType": "sh",
        "version": "v0.1.0",
        "specsFolder": "./specs",
    }, indent=2))

    context = project / ".buildforce" / "context"
    write(context / "_index.yaml", LEGACY_INDEX)
    write(context / "_guidelines.yaml", LEGACY_GUIDELINES)
    write(context / "_schema.yaml", "# old flat schema\nrequired: [id]\n")
    write(context / "_graph.yaml", "nodes: []\nedges: []\n")
    write(context / "auth-flow.yaml", """
        # Auth flow notes
        id: auth-flow
        name: Auth Flow
        type: feature
        last_updated: "2024-01-01"
        summary: Users log in with email.
        """)
    write(context / "data-model.yml", """
        id: data-model
        type: module
        entities:
          - User
        """)

    write(project / ".claude" / "commands" / "buildforce.plan.md", "# plan command v1\n")
    write(project / ".claude" / "commands" / "custom.md", "# user command\n")
    write(project / ".claude" / "skills" / "buildforce-context" / "SKILL.md", "# buildforce skill v1\n")
    write(project / ".claude" / "skills" / "my-skill" / "SKILL.md", "# user skill\n")
    write(project / ".claude" / "settings.local.json", json.dumps({
        "permissions": {"allow": ["Bash(git status)"]},
        "hooks": {"Stop": [{"hooks": [{"type": "command", "command": "echo user"}]}]},
    }, indent=2))
    write(project / ".buildforce" / "templates" / "spec-template.md", "# Spec template v1\n")
    write(project / ".buildforce" / "scripts" / "bash" / "common.sh", "#!/usr/bin/env bash\necho old\n")
    write(project / "specs" / "001-feature" / "spec.md", "# user spec\n")
    return project


@pytest.fixture
def v20_project(tmp_path):
    """A v2.0 project: domain folders with their own indexes."""
    project = tmp_path / "project20"
    context = project / ".buildforce" / "context"
    write(project / ".buildforce" / "buildforce.json", json.dumps({"aiAssistant": ["claude"], "scriptType": "sh"}))
    write(context / "_index.yaml", """
        version: "2.0"
        last_updated: "2025-02-01"
        context_types:
          structural:
            folder: architecture/
        """)
    write(context / "architecture" / "_index.yaml", """
        version: "2.0"
        contexts:
          - id: auth-flow
            file: auth-flow.yaml
            type: structural
            description: Login and session handling
            tags: [auth, session]
            related_context: [data-model]
          - id: data-model
            file: architecture/data-model.yaml
            type: structural
            description: Core entities
        """)
    write(context / "conventions" / "_index.yaml", """
        version: "2.0"
        contexts:
          - id: repository-pattern
            file: repository-pattern.yaml
            sub_type: architectural-pattern
            enforcement: strict
            description: Repository Pattern
        """)
    write(context / "verification" / "_index.yaml", """
        version: "2.0"
        contexts:
          - id: unit-tests
            file: unit-tests.yaml
            type: verification
            source: pytest.ini
            description: Unit test suite
        """)
    for domain in ("architecture", "conventions", "verification"):
        write(context / domain / "_schema.yaml", f"# {domain} schema\n")
    return project
