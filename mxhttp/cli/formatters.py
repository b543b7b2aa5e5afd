"""
Rich renderables for errors, configuration and response summaries.
"""

from pathlib import Path
from typing import Any, Optional

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from mxhttp.core.response import Response
from mxhttp.exceptions import MxHttpError
from mxhttp.models.config import ClientConfig

# Most specific class first; the first isinstance match wins
SUGGESTIONS: list[tuple[str, list[str]]] = [
    ("InvalidURL", ["URLs must be absolute and start with http:// or https://."]),
    ("BuildError", ["Check the request options; files passed with -F must exist."]),
    (
        "TransportError",
        [
            "Check the host name, the proxy settings and your connection.",
            "Use --insecure only if the server certificate is self-signed.",
        ],
    ),
    ("CancellationError", ["The request did not finish in time. Try a larger --timeout."]),
    ("StatusError", ["The server answered with an unexpected status. Re-run with -v to see the exchange."]),
    ("DecodeError", ["The body is not in the expected format. Re-run without --json to see it raw."]),
    ("ConfigurationError", ["Check the configuration file, or run `mxhttp init --force`."]),
]


def _suggestions_for(error: BaseException) -> list[str]:
    names = {cls.__name__ for cls in type(error).__mro__}
    for name, hints in SUGGESTIONS:
        if name in names:
            return hints
    return ["Run the command with -VV for detailed logs."]


def format_error_with_suggestions(error: BaseException, context: Optional[dict] = None) -> Panel:
    """Builds a panel describing error, its cause and what to try next."""
    headline = Text()
    headline.append(f"{type(error).__name__}: ", style="bold red")
    if isinstance(error, MxHttpError):
        headline.append(error.message)
    else:
        headline.append(str(error))

    parts: list[Any] = [headline]
    if isinstance(error, MxHttpError) and error.op:
        parts.append(Text(f"operation: {error.op}", style="dim"))
    if error.__cause__ is not None:
        parts.append(Text(f"caused by: {type(error.__cause__).__name__}: {error.__cause__}", style="dim"))

    parts.append(Text())
    parts.append(Text("Try:", style="bold yellow"))
    parts.extend(Text(f"  • {hint}") for hint in _suggestions_for(error))
    if context:
        parts.append(Text())
        parts.append(Text(" ".join(f"{k}={v}" for k, v in context.items()), style="dim"))

    return Panel(Group(*parts), title="[bold red]Request failed[/bold red]", border_style="red", expand=False)


def print_config(config_path: Path, config: ClientConfig, console: Optional[Console] = None):
    """Displays the effective configuration, hiding credentials."""
    console = console or Console()
    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column(style="cyan")
    table.add_column()
    for key, value in config.model_dump().items():
        if key == "headers":
            value = ", ".join(
                f"{k}: {'[hidden]' if k.lower() == 'authorization' else v}" for k, v in value.items()
            )
        elif isinstance(value, list):
            value = ", ".join(value)
        table.add_row(key, Text("" if value is None else str(value)))

    state = "" if config_path.is_file() else " (defaults, file not found)"
    console.print(Panel(table, title=f"Configuration [dim]{config_path}{state}[/dim]", border_style="cyan"))


def print_response_summary(resp: Response, duration_s: float, console: Optional[Console] = None):
    """Displays the status line and headers of a response."""
    console = console or Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()

    style = "green" if 200 <= resp.status < 300 else "yellow" if resp.status < 400 else "red"
    table.add_row("Status:", f"[{style}]{resp.status} {resp.reason}[/{style}]")
    table.add_row("URL:", str(resp.url))
    table.add_row("Time:", f"{duration_s * 1000:.0f} ms")
    for key, value in resp.headers.items():
        table.add_row(f"{key}:", Text(value, style="dim"))

    console.print(Panel(table, title="[bold]Response[/bold]", border_style=style, expand=False))


def describe_body(data: Any) -> str:
    """Returns a short description of a decoded body for the summary line."""
    if isinstance(data, dict):
        return f"JSON object with {len(data)} keys"
    if isinstance(data, list):
        return f"JSON array with {len(data)} items"
    return type(data).__name__
