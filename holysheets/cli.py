# holysheets/cli.py
"""
HolySheets CLI -- Click commands with a rich terminal UI.

Provides the ``holysheets`` console entry-point declared in pyproject.toml as
``holysheets.cli:cli``.

- ask:     one-shot (-q) or multi-turn (--chat) analysis of a CSV/Excel file
- model:   status and loading of the on-device GGUF model
- config:  HolySheetsConfig display
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

import click
from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape as _esc
from rich.padding import Padding
from rich.prompt import Prompt
from rich.syntax import Syntax

from . import __version__
from . import cli_theme as theme
from .config import get_config

console = Console()


def _print_version(
    ctx: click.Context,
    _param: click.Parameter,
    value: bool,
) -> None:
    if not value or ctx.resilient_parsing:
        return
    theme.print_version(__version__, console)
    ctx.exit()


# ---------------------------------------------------------------------------
# Main CLI group
# ---------------------------------------------------------------------------


@click.group(invoke_without_command=True)
@click.option(
    "--version",
    is_flag=True,
    callback=_print_version,
    expose_value=False,
    is_eager=True,
    help="Show version and exit.",
)
@click.pass_context
def cli(ctx: click.Context) -> None:
    """HolySheets -- ask questions about spreadsheets in plain language."""
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


# ---------------------------------------------------------------------------
# Result rendering
# ---------------------------------------------------------------------------


def _cell(value: Any) -> str:
    if value is None:
        return "—"
    if isinstance(value, float):
        return f"{value:,.4g}" if abs(value) < 1e4 else f"{value:,.2f}"
    return _esc(str(value))


def _render_result(result: Any, *, show_code: bool = False) -> None:
    """Print one Output Contract value to the terminal."""
    console.print()
    if result.type == "markdown":
        console.print(Padding(Markdown(result.summary), (0, 2)))
        return

    console.print(Padding(Markdown(result.summary), (0, 2)))
    console.print()

    if result.type == "table":
        t = theme.make_table()
        for header in result.data.headers:
            t.add_column(_esc(str(header)))
        for row in result.data.rows:
            t.add_row(*[_cell(v) for v in row])
        console.print(Padding(t, (0, 0, 0, 2)))

    elif result.type == "kpi":
        t = theme.make_kv_table()
        for kpi in result.data:
            style = theme.KPI_STATUS_STYLES.get(kpi.status or "neutral", "")
            value = f"[{style}]{_cell(kpi.value)}[/{style}]" if style else _cell(kpi.value)
            if kpi.trend:
                value += f"  [{theme.MUTED}]{_esc(kpi.trend)}[/{theme.MUTED}]"
            t.add_row(_esc(kpi.label), value)
        console.print(Padding(t, (0, 0, 0, 2)))

    elif result.type == "chart":
        config = result.data.config
        title = config.title or f"{config.type} chart"
        console.print(theme.info(f"{config.type} chart · x = {config.x_axis_key}"))
        keys = [config.x_axis_key] + [s.data_key for s in config.series]
        labels = [config.x_axis_key] + [s.label for s in config.series]
        t = theme.make_table(title=_esc(title))
        for label in labels:
            t.add_column(_esc(label))
        for point in result.data.data:
            t.add_row(*[_cell(point.get(k)) for k in keys])
        console.print(Padding(t, (0, 0, 0, 2)))

    if show_code and getattr(result, "code", None):
        console.print()
        console.print(Padding(Syntax(result.code, "python", theme="ansi_dark", line_numbers=False), (0, 2)))


def _render_trace(outcome: Any) -> None:
    t = theme.make_clean_table()
    t.add_column("#", justify="right")
    t.add_column("State")
    t.add_column("Extract")
    t.add_column("Failure")
    t.add_column("Detail")
    for attempt in outcome.attempts:
        t.add_row(
            str(attempt.number),
            attempt.state.value,
            attempt.tier.value if attempt.tier else "—",
            attempt.failure_kind.value if attempt.failure_kind else "—",
            _esc((attempt.error or "")[:120]) or "—",
        )
    console.print()
    console.print(theme.info(f"Trace · {outcome.state.value} · backend {outcome.backend or '—'}"))
    console.print(Padding(t, (0, 0, 0, 2)))
    m = outcome.metrics
    console.print(
        theme.info(
            f"generate {m.duration_for('generate'):.2f}s · execute {m.duration_for('execute'):.2f}s"
            f" · total {m.total_duration_s:.2f}s"
        )
    )


def _turn_payload(question: str, outcome: Any) -> dict[str, Any]:
    return {
        "question": question,
        "state": outcome.state.value,
        "attempts": len(outcome.attempts),
        "result": outcome.result.to_wire(),
        "metrics": outcome.metrics.to_dict(),
    }


def _save_output(output: Path, output_data: dict[str, Any]) -> None:
    suffix = output.suffix.lower()
    output.parent.mkdir(parents=True, exist_ok=True)
    if suffix in (".yaml", ".yml"):
        import yaml

        output.write_text(
            yaml.dump(output_data, default_flow_style=False, sort_keys=False, allow_unicode=True),
            encoding="utf-8",
        )
    else:
        if not suffix:
            output = output.with_suffix(".json")
        output.write_text(json.dumps(output_data, indent=2, default=str, ensure_ascii=False), encoding="utf-8")
    console.print(theme.ok(f"Saved to {output}"))


def _load_local_manager(cfg: Any) -> Any:
    from .analyst.backends import make_local_manager
    from .analyst.errors import ModelNotDownloadedError

    manager = make_local_manager(cfg)
    try:
        with theme.percent_progress("Loading local model", console) as report:
            manager.ensure_loaded(report)
    except ModelNotDownloadedError as exc:
        raise click.ClickException(f"{exc}. Download the GGUF file or set HOLYSHEETS_LOCAL_MODEL_PATH.")
    except ImportError:
        raise click.ClickException(
            "llama-cpp-python is required for local mode. Install with: pip install 'holysheets[local]'"
        )
    console.print(theme.ok(f"Local model ready: {manager.model_path.name}"))
    return manager


# ---------------------------------------------------------------------------
# ask
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--data", "data", type=click.Path(exists=True, dir_okay=False, path_type=Path), default=None, help="CSV, TSV or Excel file to analyze.")
@click.option("--question", "-q", type=str, default=None, help="Ask a single question (non-interactive).")
@click.option("--chat", is_flag=True, default=False, help="Start a multi-turn chat session.")
@click.option("--local", "use_local", is_flag=True, default=False, help="Use the on-device model instead of the remote API.")
@click.option("--model", type=str, default=None, help="Remote model override (LiteLLM model string).")
@click.option("--provider", type=click.Choice(["litellm", "openai_compatible", "custom"]), default=None, help="Remote provider override.")
@click.option("--max-retries", type=click.IntRange(min=0), default=None, help="Self-correction retries after the first attempt.")
@click.option("--trace", "show_trace", is_flag=True, default=False, help="Show attempts, failures and timings per turn.")
@click.option("--show-code", is_flag=True, default=False, help="Print the script that produced each answer.")
@click.option("--output", "-o", type=click.Path(path_type=Path), default=None, help="Save answers to file (.json or .yaml/.yml).")
def ask(
    data: Optional[Path],
    question: Optional[str],
    chat: bool,
    use_local: bool,
    model: Optional[str],
    provider: Optional[str],
    max_retries: Optional[int],
    show_trace: bool,
    show_code: bool,
    output: Optional[Path],
) -> None:
    """Ask questions about a spreadsheet.

    \b
    Examples:
      holysheets ask --data sales.csv -q "total sales by region"
      holysheets ask --data sales.xlsx --chat
      holysheets ask --data sales.csv -q "monthly trend" --local --trace
      holysheets ask --data sales.csv -q "top 5 products" -o answer.json
    """
    from .analyst.errors import DatasetLoadError
    from .sdk import make_backend, open_session

    if question is None and not chat:
        raise click.ClickException("Provide a question with -q or start a chat with --chat.")

    cfg = get_config()
    theme.print_banner(__version__, console, lm=model or cfg.lm, mode="local" if use_local else provider or cfg.provider)

    local_backend = None
    if use_local:
        manager = _load_local_manager(cfg)
        local_backend = make_backend(local=True, manager=manager, config=cfg)

    remote_backend = None
    if not use_local and (model or provider):
        try:
            remote_backend = make_backend(provider=provider, model=model, config=cfg)
        except Exception as exc:
            raise click.ClickException(str(exc))

    try:
        session = open_session(
            data,
            backend=remote_backend,
            local_backend=local_backend,
            max_retries=max_retries,
            config=cfg,
        )
    except (DatasetLoadError, FileNotFoundError) as exc:
        raise click.ClickException(str(exc))

    theme.section("Dataset", console, "01")
    if session.schema is not None:
        schema = session.schema
        t = theme.make_kv_table()
        t.add_row("file", _esc(schema.file_name))
        t.add_row("rows", f"{schema.row_count:,}")
        t.add_row("columns", _esc(", ".join(schema.columns)))
        console.print(t)
    else:
        console.print(theme.warn("No dataset attached. Pass --data to analyze a file."))

    output_data: dict[str, Any] = {"dataset": str(data) if data else None, "turns": []}

    def _ask_once(q: str) -> None:
        with theme.spinner("Analyzing...", console):
            outcome = session.ask(q, use_local_model=use_local)
        _render_result(outcome.result, show_code=show_code)
        if outcome.succeeded:
            if outcome.retries:
                console.print(theme.info(f"Self-corrected after {outcome.retries} retr{'y' if outcome.retries == 1 else 'ies'}"))
        else:
            console.print(theme.warn(f"Turn ended: {outcome.state.value}"))
        if show_trace:
            _render_trace(outcome)
        output_data["turns"].append(_turn_payload(q, outcome))

    theme.section("Answers", console, "02")
    try:
        if question is not None:
            _ask_once(question)

        if chat:
            console.print()
            console.print(theme.info("Chat mode active. Type /exit to finish."))
            while True:
                try:
                    prompt_text = Prompt.ask(f"  [bold {theme.LEDGER}]You[/bold {theme.LEDGER}]")
                except (EOFError, KeyboardInterrupt):
                    console.print()
                    break

                q = prompt_text.strip()
                if not q:
                    continue
                if q.lower() in {"/exit", "exit", "quit", ":q"}:
                    break
                _ask_once(q)
    finally:
        session.close()

    if output is not None:
        _save_output(output, output_data)
    console.print()


# ---------------------------------------------------------------------------
# model
# ---------------------------------------------------------------------------


@cli.group()
def model() -> None:
    """Inspect and load the on-device model."""


@model.command("status")
def model_status() -> None:
    """Show where the local model is expected and whether it exists."""
    cfg = get_config()
    path = Path(cfg.local_model_path).expanduser()
    theme.section("Local Model", console, "01")
    t = theme.make_kv_table()
    t.add_row("path", str(path))
    if path.is_file():
        t.add_row("status", theme.badge("DOWNLOADED", "ok"))
        t.add_row("size", f"{path.stat().st_size / 1e6:,.1f} MB")
    else:
        t.add_row("status", theme.badge("MISSING", "warn"))
    t.add_row("chat_template", cfg.local_chat_template)
    t.add_row("n_threads", str(cfg.local_n_threads))
    t.add_row("n_ctx", str(cfg.local_n_ctx))
    console.print(t)
    console.print()


@model.command("load")
def model_load() -> None:
    """Load the local model once to check that it works."""
    cfg = get_config()
    manager = _load_local_manager(cfg)
    manager.unload()


# ---------------------------------------------------------------------------
# config
# ---------------------------------------------------------------------------


@cli.group()
def config() -> None:
    """View HolySheets configuration."""


@config.command("show")
def config_show() -> None:
    """Show current configuration.

    \b
    Examples:
      holysheets config show
    """
    cfg = get_config()
    dump = cfg.model_dump()

    theme.section("Language Model", console, "01")
    t = theme.make_kv_table()
    t.add_row("provider", dump["provider"])
    t.add_row("lm", dump["lm"])
    t.add_row("api_base", dump["api_base"] or "[dim]default[/dim]")
    t.add_row("lm_temperature", str(dump["lm_temperature"]))
    t.add_row("request_timeout", f"{dump['request_timeout']}s")
    if dump["custom_endpoint_url"]:
        t.add_row("custom_endpoint_url", dump["custom_endpoint_url"])
    api_key = dump["api_key"]
    if api_key:
        masked = api_key[:4] + "···" + api_key[-4:] if len(api_key) > 8 else "***"
    else:
        masked = "[dim]not set[/dim]"
    t.add_row("api_key", masked)
    console.print(t)

    theme.section("Analysis", console, "02")
    t = theme.make_kv_table()
    t.add_row("max_retries", str(dump["max_retries"]))
    t.add_row("history_turns", str(dump["history_turns"]))
    t.add_row("sample_rows", str(dump["sample_rows"]))
    console.print(t)

    theme.section("Local Model", console, "03")
    t = theme.make_kv_table()
    t.add_row("local_model_path", str(dump["local_model_path"]))
    t.add_row("local_chat_template", dump["local_chat_template"])
    t.add_row("local_n_threads", str(dump["local_n_threads"]))
    t.add_row("local_n_ctx", str(dump["local_n_ctx"]))
    console.print(t)

    theme.section("Paths", console, "04")
    t = theme.make_kv_table()
    t.add_row("home_dir", str(dump["home_dir"]))
    t.add_row("models_dir", str(cfg.models_dir))
    t.add_row("log_dir", str(cfg.log_dir))
    console.print(t)
    console.print()
