"""
Entry point for ``python -m mxhttp`` and the ``mxhttp`` console script.
"""

import asyncio
import logging
import os
import sys

import typer
from rich.console import Console

from mxhttp.cli.app import app
from mxhttp.cli.formatters import format_error_with_suggestions
from mxhttp.exceptions import MxHttpError

EXIT_INTERRUPTED = 130


def main() -> None:
    if os.name == "nt":
        # Windows consoles default to a legacy code page
        for stream in (sys.stdout, sys.stderr):
            try:
                stream.reconfigure(encoding="utf-8")
            except (TypeError, AttributeError):
                pass

    err = Console(stderr=True)
    try:
        app()
    except (typer.Exit, typer.Abort):
        pass
    except (KeyboardInterrupt, asyncio.CancelledError):
        err.print("\n[yellow]Interrupted.[/yellow]")
        sys.exit(EXIT_INTERRUPTED)
    except MxHttpError as e:
        err.print(format_error_with_suggestions(e))
        sys.exit(1)
    except Exception as e:
        err.print(format_error_with_suggestions(e, {"type": "unexpected"}))
        logging.getLogger("mxhttp").debug("Full traceback:", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
