"""
Modal screens for the nixforge TUI.
"""

import logging
from typing import List

from rich.markup import escape
from textual.app import ComposeResult
from textual.containers import Grid
from textual.screen import ModalScreen
from textual.widgets import Button, Label

from ..commands.update.git import LocalChangesAction

logger = logging.getLogger(__name__)

# Files listed in the local-changes dialog before "... and N more"
MAX_LISTED_FILES = 8


class LocalChangesScreen(ModalScreen[LocalChangesAction]):
    """Ask what to do with uncommitted changes before updating."""

    CSS = """
    LocalChangesScreen {
        align: center middle;
    }

    #dialog {
        grid-size: 3;
        grid-gutter: 1 2;
        grid-rows: 1fr 3;
        padding: 0 2;
        width: 72;
        height: auto;
        max-height: 24;
        border: thick $background 80%;
        background: $surface;
    }

    #question {
        column-span: 3;
        height: auto;
    }

    Button {
        width: 100%;
    }
    """

    BINDINGS = [
        ("o", "choose('overwrite')", "Overwrite"),
        ("s", "choose('stash')", "Stash"),
        ("escape", "choose('cancel')", "Cancel"),
    ]

    def __init__(self, files: List[str]):
        super().__init__()
        self.files = files

    def compose(self) -> ComposeResult:
        listed = [f"  {escape(name)}" for name in self.files[:MAX_LISTED_FILES]]
        if len(self.files) > MAX_LISTED_FILES:
            listed.append(f"  ... and {len(self.files) - MAX_LISTED_FILES} more")
        with Grid(id="dialog"):
            yield Label(
                "[bold]The configuration has local changes:[/bold]\n\n"
                + "\n".join(listed)
                + "\n\n[dim]Stash them for the update, discard them, or cancel.[/dim]",
                id="question",
            )
            yield Button("Overwrite (o)", variant="error", id="overwrite")
            yield Button("Stash (s)", variant="primary", id="stash")
            yield Button("Cancel (esc)", id="cancel")

    def on_button_pressed(self, event: Button.Pressed) -> None:
        self.action_choose(event.button.id or "cancel")

    def action_choose(self, choice: str) -> None:
        action = LocalChangesAction(choice)
        logger.info("Local changes action: %s", action.label)
        self.dismiss(action)


class RebootConfirmScreen(ModalScreen[bool]):
    """Offer a reboot after an update that recommends one."""

    CSS = """
    RebootConfirmScreen {
        align: center middle;
    }

    #dialog {
        grid-size: 2;
        grid-gutter: 1 2;
        grid-rows: 1fr 3;
        padding: 0 2;
        width: 60;
        height: 12;
        border: thick $background 80%;
        background: $surface;
    }

    #question {
        column-span: 2;
        height: 1fr;
        content-align: center middle;
    }

    Button {
        width: 100%;
    }
    """

    BINDINGS = [
        ("y", "reboot", "Reboot"),
        ("n", "later", "Later"),
        ("escape", "later", "Later"),
    ]

    def __init__(self, reasons: List[str]):
        super().__init__()
        self.reasons = reasons

    def compose(self) -> ComposeResult:
        with Grid(id="dialog"):
            yield Label(
                "[bold]Reboot recommended[/bold]\n"
                f"{escape(', '.join(self.reasons))}\n\n"
                "[dim]Press [bold]y[/bold] to reboot now, [bold]n[/bold] for later[/dim]",
                id="question",
            )
            yield Button("Later (n)", variant="primary", id="later")
            yield Button("Reboot (y)", variant="warning", id="reboot")

    def on_button_pressed(self, event: Button.Pressed) -> None:
        self.dismiss(event.button.id == "reboot")

    def action_reboot(self) -> None:
        self.dismiss(True)

    def action_later(self) -> None:
        self.dismiss(False)
