"""Console output shared by the CLI and the upgrade engine."""

import logging

import readchar
import typer
from rich.align import Align
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from .constants import TAGLINE

logger = logging.getLogger(__name__)

console = Console()

STATUS_SYMBOLS = {
    "done": "[green]●[/green]",
    "pending": "[green dim]○[/green dim]",
    "running": "[cyan]○[/cyan]",
    "error": "[red]●[/red]",
    "skipped": "[yellow]○[/yellow]",
}

BANNER = """
╔╗ ╦ ╦╦╦  ╔╦╗╔═╗╔═╗╦═╗╔═╗╔═╗
╠╩╗║ ║║║   ║║╠╣ ║ ║╠╦╝║  ║╣
╚═╝╚═╝╩╩═╝═╩╝╚  ╚═╝╩╚═╚═╝╚═╝
"""


def show_banner():
    """Display the ASCII art banner."""
    banner_lines = BANNER.strip().split('\n')
    colors = ["bright_green", "green", "cyan"]

    styled_banner = Text()
    for i, line in enumerate(banner_lines):
        styled_banner.append(line + "\n", style=colors[i % len(colors)])

    console.print(Align.center(styled_banner))
    console.print(Align.center(Text(TAGLINE, style="italic bright_yellow")))
    console.print()


class StepTracker:
    """Ordered upgrade steps rendered as a rich tree.

    Each step is a dict with ``key``, ``label``, ``status`` and ``detail``.
    Updating an unknown key appends it with the key as its label. An attached
    callback redraws the live display after every change.
    """

    def __init__(self, title: str):
        self.title = title
        self.steps: list[dict] = []
        self._refresh_cb = None

    def attach_refresh(self, cb):
        self._refresh_cb = cb

    def _find(self, key: str) -> dict | None:
        return next((s for s in self.steps if s["key"] == key), None)

    def add(self, key: str, label: str):
        if self._find(key) is None:
            self.steps.append({"key": key, "label": label, "status": "pending", "detail": ""})
            self._maybe_refresh()

    def start(self, key: str, detail: str = ""):
        self._update(key, "running", detail)

    def complete(self, key: str, detail: str = ""):
        self._update(key, "done", detail)

    def error(self, key: str, detail: str = ""):
        self._update(key, "error", detail)

    def skip(self, key: str, detail: str = ""):
        self._update(key, "skipped", detail)

    def status_of(self, key: str) -> str | None:
        step = self._find(key)
        return step["status"] if step else None

    def _update(self, key: str, status: str, detail: str):
        step = self._find(key)
        if step is None:
            step = {"key": key, "label": key, "status": status, "detail": ""}
            self.steps.append(step)
        step["status"] = status
        if detail:
            step["detail"] = detail
        self._maybe_refresh()

    def _maybe_refresh(self):
        if self._refresh_cb:
            try:
                self._refresh_cb()
            except Exception as exc:
                # Live display errors are logged and ignored
                logger.debug("tracker refresh failed: %s", exc)

    def render(self):
        tree = Tree(f"[cyan]{self.title}[/cyan]", guide_style="grey50")
        for step in self.steps:
            label = step["label"]
            detail = step["detail"].strip() if step["detail"] else ""
            symbol = STATUS_SYMBOLS.get(step["status"], " ")

            if step["status"] == "pending":
                text = f"{label} ({detail})" if detail else label
                tree.add(f"{symbol} [bright_black]{text}[/bright_black]")
            elif detail:
                tree.add(f"{symbol} [white]{label}[/white] [bright_black]({detail})[/bright_black]")
            else:
                tree.add(f"{symbol} [white]{label}[/white]")
        return tree


KEY_NAMES = {
    readchar.key.UP: "up",
    readchar.key.DOWN: "down",
    readchar.key.ENTER: "enter",
    readchar.key.ESC: "escape",
}


def get_key():
    """Read one keypress; arrow, enter and escape keys come back by name."""
    key = readchar.readkey()
    if key == readchar.key.CTRL_C:
        raise KeyboardInterrupt
    return KEY_NAMES.get(key, key)


def _cancel_selection():
    console.print("\n[yellow]Selection cancelled[/yellow]")
    raise typer.Exit(1)


def select_with_arrows(options: dict, prompt_text: str = "Select an option", default_key: str = None) -> str:
    """
    Interactive selection using arrow keys with Rich Live display.

    Args:
        options: Dict with keys as option keys and values as descriptions
        prompt_text: Text to show above the options
        default_key: Default option key to start with

    Returns:
        Selected option key
    """
    option_keys = list(options)
    selected_index = option_keys.index(default_key) if default_key in option_keys else 0

    def create_selection_panel():
        table = Table.grid(padding=(0, 2))
        table.add_column(style="cyan", justify="left", width=3)
        table.add_column(style="white", justify="left")
        for i, key in enumerate(option_keys):
            table.add_row("▶" if i == selected_index else " ", f"[cyan]{key}[/cyan] [dim]({options[key]})[/dim]")
        table.add_row("", "")
        table.add_row("", "[dim]Use ↑/↓ to navigate, Enter to select, Esc to cancel[/dim]")
        return Panel(table, title=f"[bold]{prompt_text}[/bold]", border_style="cyan", padding=(1, 2))

    console.print()
    with Live(create_selection_panel(), console=console, transient=True, auto_refresh=False) as live:
        while True:
            try:
                key = get_key()
            except KeyboardInterrupt:
                _cancel_selection()
            if key == "enter":
                return option_keys[selected_index]
            if key == "escape":
                _cancel_selection()
            if key in ("up", "down"):
                step = -1 if key == "up" else 1
                selected_index = (selected_index + step) % len(option_keys)
                live.update(create_selection_panel(), refresh=True)
