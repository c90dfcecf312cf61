"""Project configuration in ``.buildforce/buildforce.json``."""

import json
from dataclasses import dataclass
from pathlib import Path

from .constants import BUILDFORCE_DIR, CONFIG_FILENAME


def config_path(project_path: Path) -> Path:
    return Path(project_path) / BUILDFORCE_DIR / CONFIG_FILENAME


def read_buildforce_config(project_path: Path) -> dict:
    """Parsed config, or an empty dict when the file is missing or unreadable."""
    target = config_path(project_path)
    if not target.is_file():
        return {}
    try:
        with target.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


def save_buildforce_config(project_path: Path, updates: dict) -> dict:
    """Merge ``updates`` into the existing config; unknown keys are kept."""
    config = read_buildforce_config(project_path)
    config.update(updates)
    target = config_path(project_path)
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("w", encoding="utf-8") as fh:
        json.dump(config, fh, indent=2)
        fh.write("\n")
    return config


def configured_agents(config: dict) -> list[str]:
    """``aiAssistant`` as a list; older configs stored a single string."""
    value = config.get("aiAssistant")
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, list):
        return [str(v) for v in value if isinstance(v, str) and v.strip()]
    return []


@dataclass
class ValidationResult:
    valid: bool
    error: str | None = None
    suggestion: str | None = None


def validate_upgrade_prerequisites(project_path: Path) -> ValidationResult:
    if not (Path(project_path) / BUILDFORCE_DIR).is_dir():
        return ValidationResult(
            valid=False,
            error=".buildforce/ directory not found",
            suggestion="This doesn't appear to be a Buildforce project. Run 'buildforce init .' to initialize.",
        )

    target = config_path(project_path)
    if not target.is_file():
        return ValidationResult(
            valid=False,
            error=".buildforce/buildforce.json not found",
            suggestion="Configuration file is missing. Run 'buildforce init .' to reinitialize this directory.",
        )

    try:
        json.loads(target.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return ValidationResult(
            valid=False,
            error=".buildforce/buildforce.json is not valid JSON",
            suggestion="Check the file for syntax errors or restore from git history.",
        )

    return ValidationResult(valid=True)
