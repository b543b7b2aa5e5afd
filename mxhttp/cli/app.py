"""
Defines the command-line interface for sending ad-hoc requests using Typer.
"""

import asyncio
import json
import logging
import os
import sys
import time
from pathlib import Path
from typing import Any, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.syntax import Syntax

from mxhttp import __version__
from mxhttp.core.client import Client
from mxhttp.core.hooks import ensure_status_2xx, logging_hooks
from mxhttp.core.request import Request
from mxhttp.exceptions import ConfigurationError, MxHttpError
from mxhttp.models.config import ClientConfig
from mxhttp.models.values import File
from mxhttp.storage.config_manager import ConfigManager
from mxhttp.utils.structured_logger import create_structured_logger

from .formatters import describe_body, format_error_with_suggestions, print_config, print_response_summary

console = Console()
err_console = Console(stderr=True)

logging.basicConfig(
    level="WARNING",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=err_console,
            rich_tracebacks=True,
            show_path=False,
            show_level=False,
            markup=True,
        )
    ],
)
log = logging.getLogger("mxhttp")

app = typer.Typer(
    name="mxhttp",
    help="Send HTTP requests from the command line. Use 'mxhttp <command> --help' for more info.",
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)


def get_config_dir() -> Path:
    if os.name == "nt":
        base_dir = Path(os.getenv("APPDATA", "~\\AppData\\Roaming"))
    else:
        base_dir = Path(os.getenv("XDG_CONFIG_HOME", "~/.config"))
    return base_dir.expanduser() / "mxhttp"


CONFIG_DIR = get_config_dir()
CONFIG_FILE = CONFIG_DIR / "config.ini"


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-V",
        count=True,
        help="Increase logging verbosity (-VV for debug).",
    ),
    version: bool = typer.Option(False, "--version", help="Show version and exit.", is_eager=True),
    show_config: bool = typer.Option(False, "--show-config", help="Display the current configuration."),
):
    """mxhttp command line"""
    if version:
        console.print(f"[bold]mxhttp[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    log_level = "WARNING"
    if verbose == 1:
        log_level = "INFO"
    elif verbose >= 2:
        log_level = "DEBUG"
    log.setLevel(log_level)

    if show_config:
        config = ConfigManager(CONFIG_FILE).load_config() if CONFIG_FILE.is_file() else ClientConfig()
        print_config(CONFIG_FILE, config, console)
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@app.command()
def init(
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing file without asking."),
    user_agent: Optional[str] = typer.Option(None, "--user-agent", help="Default User-Agent header."),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Default request timeout in seconds."),
    proxy: Optional[str] = typer.Option(None, "--proxy", help="Proxy URL for all requests."),
):
    """Write a configuration file with default client settings."""
    if CONFIG_FILE.exists() and not force and not typer.confirm("Configuration file already exists. Overwrite it?"):
        raise typer.Abort()

    settings = {
        key: value
        for key, value in {"user_agent": user_agent, "timeout": timeout, "proxy": proxy}.items()
        if value is not None
    }
    path = ConfigManager(CONFIG_FILE).save_new_config(settings)
    console.print(f"\n[bold green]✓ Configuration saved to '{path}'[/bold green]")


def _parse_pairs(items: list[str], sep: str, what: str) -> dict[str, Any]:
    """Parses 'key<sep>value' arguments, collecting repeated keys into lists."""
    result: dict[str, Any] = {}
    for item in items:
        key, found, value = item.partition(sep)
        if not found or not key.strip():
            console.print(f"[red]✗ Invalid {what} '{item}', expected 'key{sep}value'.[/red]")
            raise typer.Exit(code=2)
        key, value = key.strip(), value.strip()
        if key in result:
            existing = result[key]
            result[key] = (existing if isinstance(existing, list) else [existing]) + [value]
        else:
            result[key] = value
    return result


def _load_client_config(config_file: Optional[Path], overrides: dict[str, Any]) -> ClientConfig:
    path = config_file or CONFIG_FILE
    overrides = {k: v for k, v in overrides.items() if v is not None}
    if path.is_file():
        return ConfigManager(path).load_config(overrides)
    if config_file is not None:
        # An explicitly requested file must exist
        return ConfigManager(path).load_config(overrides)
    try:
        return ClientConfig(**overrides)
    except ValidationError as e:
        raise ConfigurationError(f"invalid client options: {e}", op="mxhttp send") from e


@app.command(name="send")
def send_command(
    method: str = typer.Argument(..., help="HTTP method, e.g. GET or POST."),
    url: str = typer.Argument(..., help="Absolute http(s) URL."),
    header: list[str] = typer.Option([], "-H", "--header", help="Request header 'Name: value'."),  # noqa: B008
    query: list[str] = typer.Option([], "-q", "--query", help="Query parameter 'key=value'."),  # noqa: B008
    form: list[str] = typer.Option([], "-f", "--form", help="Form field 'key=value'."),  # noqa: B008
    upload: list[str] = typer.Option([], "-F", "--file", help="Multipart file 'field=@path'."),  # noqa: B008
    data: Optional[str] = typer.Option(None, "-d", "--data", help="Raw request body; '@path' reads a file."),
    as_json: bool = typer.Option(False, "--json", help="Send the body as JSON and pretty-print a JSON response."),
    retry: Optional[int] = typer.Option(None, "--retry", help="Maximum number of attempts."),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Give up after this many seconds."),
    insecure: bool = typer.Option(False, "-k", "--insecure", help="Skip TLS certificate verification."),
    fail: bool = typer.Option(False, "--fail", help="Treat non-2xx statuses as errors."),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Print the full exchange like curl -v."),
    curl: bool = typer.Option(False, "--curl", help="Print the equivalent curl command and exit."),
    output: Optional[Path] = typer.Option(None, "-o", "--output", help="Save the response body to a file."),
    config_file: Optional[Path] = typer.Option(None, "--config", help="Path to an INI configuration file."),
    log_dir: Optional[Path] = typer.Option(None, "--log-dir", help="Write JSON-lines request logs to this directory."),
):
    """Send a single request and print the response."""
    options: dict[str, Any] = {}
    if header:
        options["headers"] = _parse_pairs(header, ":", "header")
    if query:
        options["query"] = _parse_pairs(query, "=", "query parameter")
    if form:
        options["form"] = _parse_pairs(form, "=", "form field")
    if upload:
        files = {}
        for field, path in _parse_pairs(upload, "=", "file").items():
            files[field] = File(Path(str(path).lstrip("@")))
        options["multipart"] = (files, options.pop("form", None))
    if data is not None:
        body: Any = data
        if data.startswith("@"):
            try:
                body = Path(data[1:]).read_bytes()
            except OSError as e:
                console.print(f"[red]✗ Can't read --data file '{data[1:]}': {e.strerror or e}[/red]")
                raise typer.Exit(code=2) from e
        if as_json:
            try:
                options["json"] = json.loads(body)
            except ValueError as e:
                console.print(f"[red]✗ --data is not valid JSON: {e}[/red]")
                raise typer.Exit(code=2) from e
        else:
            options["body"] = body
    if retry is not None:
        options["retry"] = retry
    if timeout is not None:
        options["timeout"] = timeout

    async def _send_async() -> int:
        config = _load_client_config(config_file, {"verify": False if insecure else None})
        request = Request.new(method, url, **options)
        if curl:
            console.print(request.to_curl(), highlight=False, soft_wrap=True)
            return 0

        before, after = [], []
        base_logger = None
        if log_dir is not None:
            base_logger, http_logger = create_structured_logger(log_dir, enable_json=True)
            log_before, log_after = logging_hooks(http_logger)
            before.append(log_before)
            after.append(log_after)
        if fail:
            after.append(ensure_status_2xx())

        try:
            async with Client(config, before_request=before, after_response=after) as client:
                start = time.monotonic()
                async with await client.do(request) as resp:
                    duration = time.monotonic() - start
                    if verbose:
                        await resp.verbose(sys.stdout, with_body=output is None)
                        resp.raise_for_error()
                        return 0
                    if resp.raw is not None:
                        print_response_summary(resp, duration, err_console)
                    resp.raise_for_error()
                    if output is not None:
                        await resp.save(output)
                        err_console.print(f"[green]✓ Saved body to '{output}'[/green]")
                    elif as_json:
                        payload = await resp.json()
                        log.info(f"Received {describe_body(payload)}")
                        console.print(Syntax(json.dumps(payload, indent=2, ensure_ascii=False), "json"))
                    else:
                        console.print(await resp.text(), highlight=False, markup=False)
        finally:
            if base_logger is not None:
                base_logger.close()
        return 0

    try:
        code = asyncio.run(_send_async())
    except MxHttpError as e:
        err_console.print(format_error_with_suggestions(e, {"method": method, "url": url}))
        raise typer.Exit(code=1) from e
    raise typer.Exit(code=code)
