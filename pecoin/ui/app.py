"""CacheAdminApp: terminal console for inspecting and maintaining the caches."""

from __future__ import annotations

import logging

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.widgets import Static

from pecoin.config import Settings, load_settings
from pecoin.services.data_service import DataService
from pecoin.ui.widgets.cache_panel import CachePanel
from pecoin.ui.widgets.status_bar import StatusBar

log = logging.getLogger(__name__)

STATS_INTERVAL = 2.0


class CacheAdminApp(App):
    """PEcoin cache administration console."""

    TITLE = "PEcoin caches"

    BINDINGS = [
        Binding("q", "quit", "Quit", priority=True),
        Binding("r", "refresh_ecosystem", "Refresh", show=False),
        Binding("b", "refresh_balances", "Balances", show=False),
        Binding("c", "cleanup", "Cleanup", show=False),
        Binding("x", "clear_all", "Clear", show=False),
    ]

    def __init__(self, settings: Settings | None = None, data_service: DataService | None = None) -> None:
        super().__init__()
        self.settings: Settings = settings or load_settings()
        self.data_service = data_service or DataService(self.settings)

    def compose(self) -> ComposeResult:
        yield Static(f"[bold]PEcoin[/bold]  [dim]mint {self.settings.pecoin_mint}[/dim]", id="title")
        yield CachePanel(id="cache-panel")
        yield StatusBar(id="status-bar")

    async def on_mount(self) -> None:
        if not self.settings.supabase_url:
            self.query_one("#status-bar", StatusBar).set_warning(
                "No entity store configured! Add SUPABASE_URL to .env"
            )
        self.data_service.start_background_tasks()
        self.set_interval(STATS_INTERVAL, self._render_stats)
        self._render_stats()

    async def on_unmount(self) -> None:
        await self.data_service.close()

    def _render_stats(self) -> None:
        ecosystem = self.data_service.ecosystem_stats()
        self.query_one("#cache-panel", CachePanel).update_stats(
            self.data_service.cache_stats(), ecosystem
        )
        self.query_one("#status-bar", StatusBar).update_state(ecosystem)

    def action_refresh_ecosystem(self) -> None:
        self.run_worker(self._refresh_ecosystem(), exclusive=True, group="refresh")

    def action_refresh_balances(self) -> None:
        self.run_worker(self._refresh_balances(), exclusive=True, group="balances")

    def action_cleanup(self) -> None:
        removed = sum(self.data_service.cleanup().values())
        self.query_one("#status-bar", StatusBar).update_action(f"Cleaned {removed} expired")
        self._render_stats()

    def action_clear_all(self) -> None:
        self.data_service.clear_all()
        self.query_one("#status-bar", StatusBar).update_action("Cleared all caches")
        self._render_stats()

    async def _refresh_ecosystem(self) -> None:
        status = self.query_one("#status-bar", StatusBar)
        status.set_busy("Refreshing ecosystem")
        try:
            stats = await self.data_service.refresh_ecosystem()
            status.update_action(f"Ecosystem: {stats.total_participants} participants")
        except Exception as e:
            log.exception("Ecosystem refresh failed")
            status.set_warning(f"Error: {e}")
        finally:
            status.set_busy("")
            self._render_stats()

    async def _refresh_balances(self) -> None:
        status = self.query_one("#status-bar", StatusBar)
        status.set_busy("Refreshing balances")
        try:
            outcome = await self.data_service.refresh_all_balances()
            status.update_action(f"Refreshed {outcome['refreshed']} balances")
            if outcome["error"]:
                status.set_warning(outcome["error"])
        except Exception as e:
            log.exception("Balance refresh failed")
            status.set_warning(f"Error: {e}")
        finally:
            status.set_busy("")
            self._render_stats()
