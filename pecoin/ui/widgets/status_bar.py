"""Status bar: ecosystem state, last action, warnings."""

from __future__ import annotations

from datetime import datetime

from textual.widgets import Static

from pecoin.services.ecosystem import EcosystemStats

KEY_HELP = "[dim]q:Quit  r:Refresh  b:Balances  c:Cleanup  x:Clear[/dim]"


class StatusBar(Static):
    """Bottom status bar showing ecosystem state, last action time, and warnings."""

    DEFAULT_CSS = """
    StatusBar {
        height: 1;
        dock: bottom;
        background: #1a1a2e;
        color: #aaaaaa;
        padding: 0 1;
    }
    """

    def __init__(self, **kwargs) -> None:
        super().__init__(f"[bold]Ecosystem: --[/bold]  |  {KEY_HELP}", **kwargs)
        self._state = "Ecosystem: --"
        self._last_action = ""
        self._warning = ""
        self._busy = ""

    def update_state(self, stats: EcosystemStats) -> None:
        label = stats.state
        if stats.stale:
            label += " (stale)"
        self._state = f"Ecosystem: {label}"
        self._warning = stats.error or ""
        self._refresh_content()

    def update_action(self, action: str) -> None:
        self._last_action = f"{action} @ {datetime.now().strftime('%H:%M:%S')}"
        self._refresh_content()

    def set_warning(self, text: str) -> None:
        self._warning = text
        self._refresh_content()

    def set_busy(self, text: str) -> None:
        self._busy = text
        self._refresh_content()

    def _refresh_content(self) -> None:
        parts: list[str] = [f"[bold]{self._state}[/bold]"]
        if self._busy:
            parts.append(f"[bold yellow]{self._busy}...[/bold yellow]")
        if self._last_action:
            parts.append(self._last_action)
        if self._warning:
            parts.append(f"[bold red]{self._warning}[/bold red]")
        parts.append(KEY_HELP)
        self.update("  |  ".join(parts))
