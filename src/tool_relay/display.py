# display.py
# All terminal output for the tool relay.
#
# This module owns presentation entirely. The harness, the invoker and the
# host never format strings; they call named functions here. Output goes to
# stderr: the capability host's stdout carries the wire protocol.
#
# Colour language:
#   cyan    orchestration / routing events
#   blue    oracle calls and responses
#   magenta tool calls and results
#   yellow  host lifecycle
#   green   success / final answer
#   red     failures, halts, error envelopes

import json
from typing import Any

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from tool_relay.models import CapabilityDescriptor, Envelope, StopCondition, ToolResult

console = Console(stderr=True)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _label(tag: str, color: str) -> Text:
    t = Text()
    t.append(f" {tag} ", style=f"bold white on {color}")
    return t


def _mono(value: str, max_len: int = 120) -> str:
    value = value.replace("\n", " ")
    if len(value) > max_len:
        value = value[:max_len] + "…"
    return escape(value)


def _args_summary(args: Any, max_len: int = 120) -> str:
    try:
        rendered = json.dumps(args, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        rendered = repr(args)
    return _mono(rendered, max_len)


# ---------------------------------------------------------------------------
# Client: startup
# ---------------------------------------------------------------------------


def banner(model: str, capability_count: int) -> None:
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]Tool Relay Agent[/bold cyan]\n"
            "[dim]Oracle-driven tool calling over a line-delimited capability host[/dim]\n\n"
            f"[dim]Model        :[/dim] [white]{escape(model)}[/white]\n"
            f"[dim]Capabilities :[/dim] [white]{capability_count}[/white]",
            border_style="cyan",
            padding=(1, 4),
        )
    )


def catalogue(descriptors: list[CapabilityDescriptor]) -> None:
    table = Table(
        box=box.SIMPLE_HEAVY,
        border_style="cyan",
        show_header=True,
        header_style="bold cyan",
        padding=(0, 1),
    )
    table.add_column("Capability", style="bold white", width=20)
    table.add_column("Description", style="white")

    for descriptor in descriptors:
        table.add_row(descriptor.name, _mono(descriptor.description, 90))

    console.print(
        Panel(
            table,
            title=_label("CAPABILITIES DISCOVERED", "cyan"),
            border_style="cyan",
            padding=(0, 1),
        )
    )


# ---------------------------------------------------------------------------
# Client: agent loop
# ---------------------------------------------------------------------------


def prompt_received(prompt: str) -> None:
    console.print()
    console.print(Rule("[cyan]NEW QUERY[/cyan]", style="cyan"))
    console.print(
        Panel(
            f"[white]{escape(prompt)}[/white]",
            title=_label("USER", "cyan"),
            border_style="cyan",
            padding=(0, 2),
        )
    )


def calling_oracle(iteration: int, max_iterations: int) -> None:
    console.print(
        _label("LOOP", "blue"),
        f"[blue] → Calling oracle[/blue] [dim]round {iteration + 1}/{max_iterations}[/dim]",
    )


def oracle_stopped(stop: StopCondition, request_count: int) -> None:
    if stop is StopCondition.TOOL_REQUESTS:
        console.print(f"  [blue]↳ stop={stop.value}[/blue] [dim]{request_count} request(s)[/dim]")
    else:
        console.print(f"  [blue]↳ stop={stop.value}[/blue]")


def tool_call(name: str, args: dict) -> None:
    console.print(
        f"  [magenta]Call[/magenta]     [bold white]{escape(name)}[/bold white]"
        f"  [dim]{_args_summary(args)}[/dim]"
    )


def tool_result(result: ToolResult) -> None:
    if result.is_error:
        console.print(f"  [red]Error[/red]    [white]{_mono(result.joined_text(), 140)}[/white]")
    else:
        console.print(f"  [magenta]Result[/magenta]   [white]{_mono(result.joined_text(), 140)}[/white]")


def iteration_limit(max_iterations: int) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold yellow]No final answer after {max_iterations} round trip(s).[/bold yellow]\n"
            "[dim]Loop terminated to prevent runaway tool calling.[/dim]",
            title=_label("ITERATION LIMIT", "yellow"),
            border_style="yellow",
            padding=(0, 2),
        )
    )


def final_result(result: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[white]{escape(result)}[/white]",
            title=_label("ASSISTANT", "green"),
            border_style="green",
            padding=(1, 2),
        )
    )
    console.print()


def halt(reason: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold white]{escape(reason)}[/bold white]",
            title=_label("HALT", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )
    console.print()


# ---------------------------------------------------------------------------
# Host: operational log
# ---------------------------------------------------------------------------


def host_started(workspace: str, db_path: str, capability_count: int) -> None:
    console.print(
        _label("HOST", "yellow"),
        f"[yellow] Ready[/yellow] [dim]workspace={escape(workspace)} db={escape(db_path)} "
        f"capabilities={capability_count}[/dim]",
    )


def host_stopped() -> None:
    console.print(_label("HOST", "yellow"), "[yellow] Input closed, shutting down.[/yellow]")


def invocation_start(name: str, args: Any) -> None:
    console.print(f"[dim]>>>[/dim] [bold white]{escape(name)}[/bold white]  [dim]{_args_summary(args)}[/dim]")


def invocation_done(name: str, envelope: Envelope) -> None:
    text = _mono(envelope.joined_text(), 100)
    if envelope.is_error:
        console.print(f"[dim]<<<[/dim] [bold white]{escape(name)}[/bold white]  [red]ERROR: {text}[/red]")
    else:
        console.print(f"[dim]<<<[/dim] [bold white]{escape(name)}[/bold white]  [green]OK[/green] [dim]{text}[/dim]")
