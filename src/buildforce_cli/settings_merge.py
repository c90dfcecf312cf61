"""Additive merge of the template hooks into ``.claude/settings.local.json``.

Nothing the user already has is ever removed: arrays only gain entries that
are not already present, compared by their JSON serialization.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from .constants import CLAUDE_SETTINGS_FILE

logger = logging.getLogger(__name__)

PERMISSION_LISTS = ("allow", "deny", "ask")


@dataclass
class MergeResult:
    merged: bool
    skipped: bool
    reason: str
    hooks_added: int = 0


def _fingerprint(item) -> str:
    return json.dumps(item, sort_keys=True)


def merge_arrays_unique(existing: list, incoming: list) -> list:
    result = list(existing)
    seen = {_fingerprint(item) for item in existing}
    for item in incoming:
        key = _fingerprint(item)
        if key not in seen:
            result.append(item)
            seen.add(key)
    return result


def merge_settings(existing: dict, incoming: dict) -> dict:
    result = dict(existing)

    if isinstance(incoming.get("permissions"), dict):
        permissions = dict(result.get("permissions") or {})
        for name in PERMISSION_LISTS:
            if isinstance(incoming["permissions"].get(name), list):
                permissions[name] = merge_arrays_unique(permissions.get(name) or [], incoming["permissions"][name])
        result["permissions"] = permissions

    if isinstance(incoming.get("hooks"), dict):
        hooks = dict(result.get("hooks") or {})
        for hook_type, entries in incoming["hooks"].items():
            if isinstance(entries, list):
                hooks[hook_type] = merge_arrays_unique(hooks.get(hook_type) or [], entries)
        result["hooks"] = hooks

    return result


def _count_hooks(settings: dict) -> int:
    value = settings.get("hooks")
    if not isinstance(value, dict):
        return 0
    return sum(len(v) for v in value.values() if isinstance(v, list))


def merge_claude_settings(project_path: Path, template_config_path: Path) -> MergeResult:
    """Merge the hooks file at ``template_config_path`` into the project's Claude settings.

    The template holds the hooks mapping directly (``{"Stop": [...]}``), not a
    full settings document.
    """
    settings_path = Path(project_path) / CLAUDE_SETTINGS_FILE
    template_config_path = Path(template_config_path)

    if not template_config_path.is_file():
        logger.debug("Template hooks config not found: %s", template_config_path)
        return MergeResult(merged=False, skipped=True, reason="no template config")

    try:
        template_hooks = json.loads(template_config_path.read_text(encoding="utf-8"))
    except ValueError as e:
        logger.debug("Failed to parse template hooks config: %s", e)
        return MergeResult(merged=False, skipped=True, reason=f"invalid template JSON: {e}")
    if not isinstance(template_hooks, dict):
        return MergeResult(merged=False, skipped=True, reason="template config is not a JSON object")

    existing: dict = {}
    settings_existed = settings_path.is_file()
    if settings_existed:
        try:
            existing = json.loads(settings_path.read_text(encoding="utf-8"))
        except ValueError as e:
            # Leave a file we cannot parse untouched
            return MergeResult(merged=False, skipped=True, reason=f"invalid existing settings JSON: {e}")
        if not isinstance(existing, dict):
            return MergeResult(merged=False, skipped=True, reason="existing settings are not a JSON object")

    incoming = {"hooks": template_hooks}
    merged = merge_settings(existing, incoming)

    settings_path.parent.mkdir(parents=True, exist_ok=True)
    settings_path.write_text(json.dumps(merged, indent=2) + "\n", encoding="utf-8")

    hooks_added = _count_hooks(merged) - _count_hooks(existing)
    logger.debug("Wrote merged settings to %s (+%d hooks)", settings_path, hooks_added)

    return MergeResult(
        merged=True,
        skipped=False,
        reason="merged with existing" if settings_existed else "created new",
        hooks_added=hooks_added,
    )
