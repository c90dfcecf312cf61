from pathlib import Path

REPO_OWNER = "berserkdisruptors"
REPO_NAME = "buildforce-cli"
ARTIFACT_PREFIX = "buildforce-cli-template"

TAGLINE = "Context-first Spec-Driven Development framework"

AI_CHOICES = {
    "copilot": "GitHub Copilot",
    "claude": "Claude Code",
    "gemini": "Gemini CLI",
    "cursor": "Cursor",
    "qwen": "Qwen Code",
    "opencode": "opencode",
    "codex": "Codex CLI",
    "windsurf": "Windsurf",
    "kilocode": "Kilo Code",
    "auggie": "Auggie CLI",
    "roo": "Roo Code",
}
SCRIPT_TYPE_CHOICES = {"sh": "POSIX Shell (bash/zsh)", "ps": "PowerShell"}

AGENT_FOLDER_MAP = {
    "claude": ".claude",
    "gemini": ".gemini",
    "copilot": ".github",
    "cursor": ".cursor",
    "qwen": ".qwen",
    "opencode": ".opencode",
    "codex": ".codex",
    "windsurf": ".windsurf",
    "kilocode": ".kilocode",
    "auggie": ".augment",
    "roo": ".roo",
}

# Where each agent keeps its slash commands, relative to its folder
AGENT_COMMANDS_DIR = {
    "claude": "commands",
    "gemini": "commands",
    "copilot": "prompts",
    "cursor": "commands",
    "qwen": "commands",
    "opencode": "command",
    "codex": "prompts",
    "windsurf": "workflows",
    "kilocode": "workflows",
    "auggie": "commands",
    "roo": "commands",
}

# Only Claude Code ships sub-agent definitions and skills today
AGENT_SUBAGENTS_DIR = {"claude": "agents"}
AGENT_SKILLS_DIR = {"claude": "skills"}

# Skills owned by Buildforce; anything else in the skills folder is user-authored
SKILL_NAME_PREFIX = "buildforce"

BUILDFORCE_DIR = Path(".buildforce")
CONFIG_FILENAME = "buildforce.json"
CONTEXT_DIR = BUILDFORCE_DIR / "context"
TEMPLATES_DIR = BUILDFORCE_DIR / "templates"
SCRIPTS_DIR = BUILDFORCE_DIR / "scripts"

CLAUDE_HOOKS_TEMPLATE = Path(".claude") / "hooks" / "config.json"
CLAUDE_SETTINGS_FILE = Path(".claude") / "settings.local.json"

DEFAULT_LOCAL_ARTIFACTS_DIR = ".genreleases"
