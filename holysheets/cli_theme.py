# holysheets/cli_theme.py
"""Terminal theme for the HolySheets CLI.

Ledger-green & sand palette:
  - Compact wordmark banner with the active model badges
  - Numbered section headers ("01 · SECTION NAME")
  - Rounded tables with sand borders
  - Status badges with reverse styling
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Callable, Generator

from rich import box
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.style import Style
from rich.table import Table
from rich.text import Text

# ── Brand ─────────────────────────────────────────────────────────

BRAND = "H O L Y S H E E T S"
TAGLINE = "Ask your spreadsheet anything"

# ── Palette ───────────────────────────────────────────────────────

LEDGER = "#2E9E6B"
SAND = "#C9B48A"
MUTED = "dim"

KPI_STATUS_STYLES = {
    "positive": "bold green",
    "negative": "bold red",
    "neutral": MUTED,
}


# ── Banner ────────────────────────────────────────────────────────


def print_banner(version: str, console: Console, lm: str = "", mode: str = "") -> None:
    """Print the wordmark, tagline and active model."""
    console.print()
    console.print(f"  [bold {LEDGER}]{BRAND}[/bold {LEDGER}]")
    console.print(f"  [{SAND}]{TAGLINE}[/{SAND}]  [{MUTED}]v{version}[/{MUTED}]")

    if lm:
        lm_short = lm.split("/", 1)[-1] if "/" in lm else lm
        rule = "─" * len(TAGLINE)
        console.print(f"  [{SAND}]{rule}[/{SAND}]")
        label = mode or "remote"
        console.print(
            f"  [reverse {LEDGER}] {label} [/reverse {LEDGER}] [{MUTED}]▸[/{MUTED}] [{LEDGER}]{lm_short}[/{LEDGER}]"
        )

    console.print()


def print_version(version: str, console: Console) -> None:
    """Print a compact branded version line."""
    t = Text()
    t.append(BRAND, style=f"bold {LEDGER}")
    t.append(f"  v{version}", style=MUTED)
    console.print(t)


# ── Section headers ──────────────────────────────────────────────


def section(
    title: str,
    console: Console,
    number: str | None = None,
    uppercase: bool = True,
) -> None:
    """Print a numbered section header."""
    console.print()
    t = Text()
    if number:
        t.append(f"  {number}", style=f"bold {LEDGER}")
        t.append(" · ", style=MUTED)
    else:
        t.append("  ", style="")
    display = title.upper() if uppercase else title
    t.append(display, style="bold")
    console.print(t)
    rule = "─" * max(len(TAGLINE), len(display) + 4)
    console.print(f"  {rule}", style=SAND)


# ── Tables ───────────────────────────────────────────────────────


def make_table(title: str | None = None, **kwargs: object) -> Table:
    """Create a rounded table with a sand border."""
    return Table(
        title=title,
        box=box.ROUNDED,
        border_style=SAND,
        title_style=f"bold {LEDGER}",
        header_style="bold",
        padding=(0, 1),
        **kwargs,
    )


def make_kv_table() -> Table:
    """Create a headerless two-column key–value table."""
    t = make_table(show_header=False)
    t.add_column("Key", style=f"bold {LEDGER}", no_wrap=True)
    t.add_column("Value")
    return t


def make_clean_table(**kwargs: object) -> Table:
    """Create a borderless table with dim headers and clean spacing."""
    return Table(
        box=None,
        show_edge=False,
        pad_edge=False,
        header_style=MUTED,
        padding=(0, 2),
        **kwargs,
    )


# ── Inline badges ────────────────────────────────────────────────


def badge(label: str, variant: str = "default") -> str:
    """Return Rich markup for a filled status badge."""
    colors = {
        "default": LEDGER,
        "ok": "green",
        "warn": "yellow",
        "error": "red",
    }
    c = colors.get(variant, LEDGER)
    return f"[reverse {c}] {label} [/reverse {c}]"


# ── Status lines ─────────────────────────────────────────────────


def info(msg: str) -> str:
    """Info-level status line (green arrow, dim text)."""
    return f"  [{LEDGER}]›[/{LEDGER}] [{MUTED}]{msg}[/{MUTED}]"


def ok(msg: str) -> str:
    """Success status line (green check)."""
    return f"  [bold green]✓[/bold green] {msg}"


def warn(msg: str) -> str:
    """Warning status line (yellow bang)."""
    return f"  [bold yellow]![/bold yellow] [yellow]{msg}[/yellow]"


def err(msg: str) -> str:
    """Error status line (red cross)."""
    return f"  [bold red]✗[/bold red] {msg}"


# ── Progress helpers ────────────────────────────────────────────


@contextmanager
def spinner(label: str, console: Console) -> Generator[None, None, None]:
    """Dots spinner for indeterminate operations (model calls, script runs)."""
    p = Progress(
        TextColumn(" "),
        SpinnerColumn("dots", style=Style(color=LEDGER)),
        TextColumn(f"[{MUTED}]{label}[/{MUTED}]"),
        console=console,
        transient=True,
    )
    with p:
        p.add_task(label, total=None)
        yield


@contextmanager
def percent_progress(label: str, console: Console) -> Generator[Callable[[int], None], None, None]:
    """Progress bar driven by absolute percentages (local model loading)."""
    p = Progress(
        TextColumn(f"  [{LEDGER}]▸[/{LEDGER}]"),
        BarColumn(complete_style=Style(color=LEDGER), finished_style=Style(color=LEDGER)),
        TextColumn("{task.percentage:>3.0f}%"),
        TextColumn(f"[{MUTED}]{label}[/{MUTED}]"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    )
    with p:
        task = p.add_task(label, total=100)
        yield lambda pct: p.update(task, completed=pct)
