"""
Structured logging for HTTP exchanges.

Each event goes to the stdlib logger as a one-line summary and, when a log
directory is configured, to a JSON-lines file for later analysis.
"""

import json
import logging
import sys
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any, Optional

SENSITIVE_HEADERS = {"authorization", "cookie", "proxy-authorization"}
REDACTED = "<redacted>"


def redact_headers(headers: dict[str, str]) -> dict[str, str]:
    return {k: (REDACTED if k.lower() in SENSITIVE_HEADERS else v) for k, v in headers.items()}


class StructuredLogger:
    """
    Emits named events with keyword fields.

    Usage:
        with StructuredLogger("mxhttp", log_dir=Path("logs")) as events:
            events.info("request_completed", method="GET", status=200)
    """

    def __init__(
        self,
        name: str,
        log_dir: Optional[Path] = None,
        enable_json: bool = True,
        enable_console: bool = True,
    ):
        """
        Args:
            name: Name of the stdlib logger that receives the summaries.
            log_dir: Directory for the JSON-lines file; None disables it.
            enable_json: Write events to the JSON-lines file.
            enable_console: Forward summaries to the stdlib logger.
        """
        self._logger = logging.getLogger(name)
        self.enable_console = enable_console
        self.json_log_path: Optional[Path] = None
        self._sink: Optional[IO[str]] = None
        if enable_json and log_dir is not None:
            log_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            self.json_log_path = log_dir / f"mxhttp_{stamp}.jsonl"
            self._sink = open(self.json_log_path, "a", encoding="utf-8")  # noqa: SIM115

        # Shared by every event of this logger
        self.run_id = uuid.uuid4().hex[:12]
        self._started = time.monotonic()

    @staticmethod
    def _summary(event: str, fields: dict[str, Any]) -> str:
        details = " ".join(f"{key}={value}" for key, value in fields.items())
        return f"[{event}] {details}".rstrip()

    def _append(self, level: str, event: str, fields: dict[str, Any]) -> None:
        if self._sink is None or self._sink.closed:
            return
        record = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "event": event,
            "run_id": self.run_id,
            "uptime_s": round(time.monotonic() - self._started, 3),
            **fields,
        }
        try:
            self._sink.write(json.dumps(record, default=str, ensure_ascii=False) + "\n")
            self._sink.flush()
        except OSError as e:
            print(f"Can't write structured log {self.json_log_path}: {e}", file=sys.stderr)

    def log(self, level: int, event: str, **fields: Any) -> None:
        if self.enable_console:
            self._logger.log(level, self._summary(event, fields))
        self._append(logging.getLevelName(level), event, fields)

    def debug(self, event: str, **fields: Any) -> None:
        self.log(logging.DEBUG, event, **fields)

    def info(self, event: str, **fields: Any) -> None:
        self.log(logging.INFO, event, **fields)

    def error(self, event: str, **fields: Any) -> None:
        self.log(logging.ERROR, event, **fields)

    def close(self) -> None:
        if self._sink is not None and not self._sink.closed:
            self._sink.close()

    def __enter__(self) -> "StructuredLogger":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False


class HTTPLogger:
    """Request lifecycle events on top of a StructuredLogger."""

    def __init__(self, events: StructuredLogger):
        self.events = events

    def request_started(self, method: str, url: str, headers: dict[str, str]) -> None:
        self.events.debug("request_started", method=method, url=url, headers=redact_headers(headers))

    def request_completed(self, method: str, url: str, status: int, duration_ms: float) -> None:
        self.events.info(
            "request_completed", method=method, url=url, status=status, duration_ms=round(duration_ms, 2)
        )

    def request_failed(self, method: str, url: str, status: int, error: str, duration_ms: float) -> None:
        self.events.error(
            "request_failed",
            method=method,
            url=url,
            status=status,
            error=error,
            duration_ms=round(duration_ms, 2),
        )


def create_structured_logger(
    log_dir: Optional[Path] = None, enable_json: bool = False
) -> tuple[StructuredLogger, HTTPLogger]:
    """Returns the base logger and the HTTP event logger wrapping it."""
    base = StructuredLogger("mxhttp.http", log_dir=log_dir, enable_json=enable_json)
    return base, HTTPLogger(base)
