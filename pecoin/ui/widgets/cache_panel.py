"""Per-cache statistics and ecosystem totals."""

from __future__ import annotations

from typing import Any

from rich.console import Group
from rich.rule import Rule
from rich.text import Text
from textual.app import ComposeResult
from textual.containers import VerticalScroll
from textual.widgets import Static

from pecoin.services.ecosystem import EcosystemStats

CACHE_ORDER = ["balances", "native_balances", "nfts", "transactions", "signed_urls", "images"]


def _age(seconds: float | None) -> str:
    if seconds is None:
        return "never"
    if seconds < 60:
        return f"{int(seconds)}s ago"
    return f"{int(seconds // 60)}m ago"


def _hit_style(rate: float, total: int) -> str:
    if not total:
        return "dim"
    if rate >= 90:
        return "bold #00ff00"
    if rate >= 50:
        return "#ffcc00"
    return "bold red"


def _build_header() -> Text:
    h = Text()
    h.append("CACHE".ljust(16), style="bold #00bfff")
    h.append("  ")
    h.append("TOTAL".rjust(6), style="bold #00bfff")
    h.append("  ")
    h.append("VALID".rjust(6), style="bold #00bfff")
    h.append("  ")
    h.append("EXPIRED".rjust(7), style="bold #00bfff")
    h.append("  ")
    h.append("HIT%".rjust(6), style="bold #00bfff")
    return h


def _build_row(name: str, stats: dict[str, Any]) -> Text:
    total = stats.get("total_entries", 0)
    rate = stats.get("hit_rate", 0.0)
    line = Text()
    line.append(name.ljust(16), style="bold")
    line.append("  ")
    line.append(str(total).rjust(6), style="white")
    line.append("  ")
    line.append(str(stats.get("valid_entries", 0)).rjust(6), style="white")
    line.append("  ")
    line.append(str(stats.get("expired_entries", 0)).rjust(7), style="dim")
    line.append("  ")
    line.append(f"{rate:.0f}%".rjust(6), style=_hit_style(rate, total))
    if name == "images" and stats.get("total_bytes"):
        line.append(f"  {stats['total_bytes'] / 1024:.0f} KiB", style="dim")
    return line


def _build_ecosystem(stats: EcosystemStats) -> Text:
    line = Text()
    line.append("ECOSYSTEM  ", style="bold #00bfff")
    line.append(
        f"{stats.total_participants} participants "
        f"({stats.teams} teams, {stats.startups} startups, {stats.staff} staff)  "
    )
    line.append(f"{stats.total_balance:,.2f} PEcoin  ", style="bold #00ff00")
    line.append(f"{stats.total_nfts} NFTs  {stats.total_transactions} txs  ")
    line.append(f"updated {_age(stats.cache_age)}", style="yellow" if stats.stale else "dim")
    return line


def build_cache_display(cache_stats: dict[str, Any]) -> Group:
    elements: list = [_build_header(), Rule(style="#00bfff")]
    for name in CACHE_ORDER:
        if name in cache_stats:
            elements.append(_build_row(name, cache_stats[name]))

    names = cache_stats.get("wallet_names")
    if names:
        elements.append(Text(
            f"wallet names: {names['total']} cached, {names['found']} found, "
            f"{names['participants']} in snapshot",
            style="dim",
        ))

    for op in cache_stats.get("slow_operations", []):
        elements.append(Text(f"slow: {op['operation']} {op['duration_ms']:.0f}ms", style="bold red"))

    integration = cache_stats.get("integration")
    if integration:
        elements.append(Text(f"routing: {integration['recommendation']}", style="dim"))
    return Group(*elements)


class CachePanel(VerticalScroll):
    """Panel showing every cache's entry counts and the ecosystem aggregate."""

    DEFAULT_CSS = """
    CachePanel {
        height: 1fr;
        border-top: thick #00bfff;
        padding: 0 1;
    }
    """

    def compose(self) -> ComposeResult:
        yield Static("[dim]Loading ecosystem...[/dim]", id="ecosystem-content")
        yield Static("[dim]No cache activity yet[/dim]", id="cache-content")

    def update_stats(self, cache_stats: dict[str, Any], ecosystem: EcosystemStats) -> None:
        try:
            eco = self.query_one("#ecosystem-content", Static)
            content = self.query_one("#cache-content", Static)
        except Exception:
            return

        if ecosystem.state == "empty" and not ecosystem.total_participants:
            eco.update(f"[dim]  No ecosystem data[/dim] {ecosystem.error or ''}")
        else:
            eco.update(_build_ecosystem(ecosystem))
        content.update(build_cache_display(cache_stats))
