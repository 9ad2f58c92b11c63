"""
interfaces/cli.py — Terminal Front-End

Usage:
    orama-answer ask "What is Orama?"
    orama-answer ask "What is Orama?" --plain          # raw text only, no panels
    orama-answer ask "..." --provider openai --model gpt-4o-mini
    orama-answer ask "..." --config path/to/config.yaml --log-level DEBUG

Renders every interaction snapshot live with rich. Ctrl+C aborts the turn;
the partial answer stays on screen and the process exits 130.
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from contextlib import aclosing
from typing import Optional

from dotenv import load_dotenv
from pydantic import ValidationError
from rich.console import Console, Group
from rich.live import Live
from rich.markdown import Markdown
from rich.panel import Panel
from rich.text import Text

from orama_answer.collection import CollectionManager
from orama_answer.config.settings import Settings, load_settings
from orama_answer.exceptions import ConfigurationError
from orama_answer.observability.logger import get_logger, setup_logging
from orama_answer.session.types import Interaction, InteractionState, LLMConfig, StepStatus
from orama_answer.utils import format_duration

_STATE_STYLE = {
    InteractionState.PENDING: "dim",
    InteractionState.STREAMING: "cyan",
    InteractionState.DONE: "green",
    InteractionState.ERROR: "red",
}

_STEP_ICON = {
    StepStatus.PENDING: "·",
    StepStatus.RUNNING: "▸",
    StepStatus.DONE: "✓",
    StepStatus.FAILED: "✗",
    StepStatus.SKIPPED: "–",
}


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="orama-answer",
        description="Ask questions against an Orama collection and stream the answer",
    )
    parser.add_argument("command", choices=["ask"], help="'ask' — run one answer turn.")
    parser.add_argument("query", nargs="+", help="The question to ask.")
    parser.add_argument(
        "--plain",
        action="store_true",
        default=False,
        help="Print answer text only, as it arrives",
    )
    parser.add_argument("--provider", default=None, help="LLM provider override")
    parser.add_argument("--model", default=None, help="LLM model override")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: $ORAMA_ANSWER_CONFIG or config/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override log level from config",
    )
    return parser.parse_args(argv)


def bootstrap(args: argparse.Namespace) -> Settings:
    """
    Load config, validate it fully, and set up logging.

    Exits with code 1 (after printing a clear message) on invalid field
    values or cross-field problems.
    """
    try:
        settings = load_settings(args.config)
    except ValidationError as exc:
        problems = "\n".join(
            f"  • {e['loc'][-1] if e['loc'] else '?'}: {e['msg']}" for e in exc.errors()
        )
        print(
            f"\nConfig validation failed:\n\n{problems}\n\n"
            f"    Fix config/config.yaml or your .env file and retry.\n",
            file=sys.stderr,
        )
        sys.exit(1)
    except OSError as exc:
        print(f"\nFailed to load config: {type(exc).__name__}: {exc}\n", file=sys.stderr)
        sys.exit(1)

    try:
        settings.validate_all()
    except ConfigurationError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)

    setup_logging(
        level=args.log_level or settings.log_level,
        log_dir=settings.log_dir,
        json_format=settings.logging.json_format,
        console_output=settings.logging.console_output,
        max_bytes=settings.logging.max_file_size_mb * 1024 * 1024,
        backup_count=settings.logging.backup_count,
    )
    return settings


# ─────────────────────────────────────────────────────────────────────────────
# Rendering
# ─────────────────────────────────────────────────────────────────────────────


def render_interaction(interaction: Interaction) -> Panel:
    parts = []
    if interaction.plan is not None:
        steps = Text()
        for step in interaction.plan.steps:
            icon = _STEP_ICON[step.status]
            style = "bold" if step.status is StepStatus.RUNNING else ""
            steps.append(f"{icon} {step.kind.value}", style=style)
            if step.error:
                steps.append(f"  ({step.error})", style="red")
            steps.append("\n")
        parts.append(steps)

    if interaction.response:
        parts.append(Markdown(interaction.response))
    elif not interaction.is_terminal:
        parts.append(Text("…", style="dim"))

    if interaction.error is not None:
        parts.append(Text(f"\n{interaction.error}", style="bold red"))

    subtitle = interaction.state.value
    if interaction.aborted:
        subtitle += " (aborted)"
    if interaction.sources:
        subtitle += f" · {len(interaction.sources)} sources"
    if interaction.duration_ms is not None:
        subtitle += f" · {format_duration(interaction.duration_ms)}"

    return Panel(
        Group(*parts) if parts else Text(""),
        title=Text(interaction.query, style="bold"),
        subtitle=subtitle,
        border_style=_STATE_STYLE[interaction.state],
    )


# ─────────────────────────────────────────────────────────────────────────────
# Commands
# ─────────────────────────────────────────────────────────────────────────────


async def run_ask(
    settings: Settings,
    query: str,
    *,
    plain: bool = False,
    llm_config: Optional[LLMConfig] = None,
    console: Optional[Console] = None,
) -> int:
    """Run one turn. Returns the process exit code."""
    console = console or Console()
    log = get_logger("orama_answer.cli")

    async with CollectionManager.from_settings(settings) as manager:
        session = manager.create_answer_session(llm_config=llm_config)
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, session.abort)
            handles_sigint = True
        except (NotImplementedError, RuntimeError):
            handles_sigint = False

        final: Optional[Interaction] = None
        try:
            if plain:
                printed = 0
                async with aclosing(session.ask_stream(query)) as snapshots:
                    async for snapshot in snapshots:
                        console.out(snapshot.response[printed:], end="", highlight=False)
                        printed = len(snapshot.response)
                        final = snapshot
                console.out("")
            else:
                with Live(console=console, refresh_per_second=12, transient=False) as live:
                    async with aclosing(session.ask_stream(query)) as snapshots:
                        async for snapshot in snapshots:
                            live.update(render_interaction(snapshot))
                            final = snapshot
        finally:
            if handles_sigint:
                loop.remove_signal_handler(signal.SIGINT)

    if final is None:
        return 1
    log.info("cli.ask_finished", state=final.state.value, aborted=final.aborted)
    if final.aborted:
        console.print("[yellow]Interrupted.[/yellow]")
        return 130
    if final.state is InteractionState.ERROR:
        if plain:
            console.print(f"[red]{final.error}[/red]")
        return 1
    return 0


async def main(argv: Optional[list[str]] = None) -> int:
    load_dotenv()
    args = parse_args(argv)
    settings = bootstrap(args)

    # CLI flags override the answer section of config.yaml
    provider = args.provider or settings.answer.llm_provider
    model = args.model or settings.answer.llm_model
    llm_config = None
    if provider or model:
        try:
            llm_config = LLMConfig(provider=provider, model=model)
        except ValidationError as exc:
            print(f"Invalid --provider/--model: {exc.errors()[0]['msg']}", file=sys.stderr)
            return 2

    query = " ".join(args.query)
    return await run_ask(settings, query, plain=args.plain, llm_config=llm_config)


def main_sync() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(130)
