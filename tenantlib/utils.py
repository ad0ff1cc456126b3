"""
Utility functions for the M365 reporting scripts.

Logging Level Standards:
------------------------
- ERROR: Failures that stop a report (Graph fetch, missing reference data)
         "Failed to fetch users: {e}"
- WARNING: Degraded results the operator should know about
           "Unknown product {id} - reporting raw identifier"
           "Skipping user {upn}: {e}"
- INFO: Progress messages, counts
        "Fetched 1,204 users"
        "Loaded 512 products from skus.csv"
- DEBUG: Per-item detail that doesn't affect the overall report
         "Could not resolve group {id}: {e}"
"""
import csv
import hashlib
import json
import logging
import os
import re
import sys
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

logger = logging.getLogger(__name__)


# =============================================================================
# Progress Tracking
# =============================================================================

class ProgressTracker:
    """
    Progress tracker for report runs with rich display.

    Falls back to simple print statements if stdout is not a TTY (e.g. when
    piping output or running from a scheduled task).

    Usage:
        with ProgressTracker("License Report", total_stages=4) as tracker:
            tracker.start_stage("Fetching users...")
            users = fetch_users(...)
            tracker.complete_stage(f"{len(users)} users")

            tracker.start_items("Resolving licenses", total=len(users))
            for user in users:
                ...
                tracker.advance()
    """

    def __init__(self, report_name: str, total_stages: int = 0, show_progress: bool = True):
        self.report_name = report_name
        self.total_stages = total_stages
        self.show_progress = show_progress and sys.stdout.isatty()

        # Counters
        self.completed_stages = 0
        self.items_done = 0
        self.current_stage = ""
        self.notes: List[str] = []

        self._console: Optional[Console] = None
        self._progress: Optional[Progress] = None
        self._main_task = None
        self._item_task = None

    def __enter__(self):
        if self.show_progress:
            self._console = Console()
            self._progress = Progress(
                SpinnerColumn(),
                TextColumn("[bold blue]{task.description}"),
                BarColumn(),
                MofNCompleteColumn(),
                TimeElapsedColumn(),
                console=self._console,
                transient=False,
            )
            self._main_task = self._progress.add_task(self.report_name, total=self.total_stages or 1)
            self._progress.start()
        else:
            print(f"\n{'='*60}")
            print(f"{self.report_name} Starting")
            print(f"{'='*60}")
            if self.total_stages:
                print(f"Stages: {self.total_stages}")
            print()

        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._progress is not None:
            self._progress.stop()
            assert self._console is not None
            self._console.print()
            self._print_summary_rich()
        else:
            self._print_summary_plain()
        return False

    def start_stage(self, description: str):
        """Mark the start of a pipeline stage."""
        self.current_stage = description
        if self._progress is not None:
            self._progress.update(self._main_task, description=f"{self.report_name}: {description}")
        else:
            print(f"  {description}")

    def complete_stage(self, note: str = ""):
        """Mark the current stage as complete."""
        self.completed_stages += 1
        if note:
            self.notes.append(f"{self.current_stage.rstrip('.')} - {note}")
        if self._progress is not None:
            self._progress.update(self._main_task, advance=1)
        elif note:
            print(f"  Complete - {note}")

    def start_items(self, description: str, total: int):
        """Start a per-item progress bar (e.g. one tick per user)."""
        self.items_done = 0
        if self._progress is not None:
            self._item_task = self._progress.add_task(description, total=max(total, 1))
        else:
            print(f"  {description} ({total:,} items)...")

    def advance(self, count: int = 1):
        self.items_done += count
        if self._progress is not None and self._item_task is not None:
            self._progress.update(self._item_task, advance=count)

    def _print_summary_rich(self):
        table = Table(title=f"{self.report_name} Summary", show_header=False)
        table.add_column("Stage", style="cyan")
        table.add_column("Result", style="green")
        for note in self.notes:
            stage, _, result = note.partition(" - ")
            table.add_row(stage, result)
        table.add_row("Stages completed", f"{self.completed_stages}/{self.total_stages or self.completed_stages}")

        assert self._console is not None
        self._console.print(Panel(table))

    def _print_summary_plain(self):
        print(f"\n{'='*60}")
        print(f"{self.report_name} Complete")
        print(f"{'='*60}")
        for note in self.notes:
            print(f"  {note}")
        print(f"  Stages completed: {self.completed_stages}/{self.total_stages or self.completed_stages}")
        print()


def generate_run_id() -> str:
    """Generate a unique run ID."""
    return f"{datetime.now(timezone.utc).strftime('%Y%m%d-%H%M%S')}-{str(uuid.uuid4())[:8]}"


def get_timestamp() -> str:
    """Get current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


def mask_tenant_id(tenant_id: str) -> str:
    """Shorten a tenant id for console output: 'a1b2c3d4...9f0e'."""
    if not tenant_id or len(tenant_id) <= 12:
        return tenant_id
    return f"{tenant_id[:8]}...{tenant_id[-4:]}"


# =============================================================================
# Auth Errors
# =============================================================================

class AuthError(Exception):
    """Custom exception for authentication/authorization failures.

    Raised when Graph returns an auth error that should stop the report
    rather than being silently caught and logged.
    """
    def __init__(self, message: str, provider: str = "m365", original_error: Optional[Exception] = None):
        self.provider = provider
        self.original_error = original_error
        super().__init__(message)


# Graph error codes that indicate auth/permission issues
M365_AUTH_ERROR_CODES = {
    'Authorization_RequestDenied',
    'InvalidAuthenticationToken',
    'Authentication_RequestFromNonPremiumTenantOrB2CTenant',
    'Forbidden',
    'accessDenied',
}

# azure-identity / azure-core status codes that indicate auth/permission issues
AUTH_STATUS_CODES = {401, 403}


def is_auth_error(exc: Exception) -> bool:
    """
    Check if an exception represents an authentication/authorization error.

    Detects:
    - msgraph-sdk ODataError with auth-related codes or a 401/403 status
    - azure-identity ClientAuthenticationError (bad secret, wrong tenant)

    Args:
        exc: The exception to check

    Returns:
        True if the exception is an authentication/authorization error
    """
    exc_type_name = type(exc).__name__

    if exc_type_name == 'ClientAuthenticationError':
        return True

    if exc_type_name == 'ODataError':
        if getattr(exc, 'response_status_code', None) in AUTH_STATUS_CODES:
            return True
        error = getattr(exc, 'error', None)
        if error:
            return getattr(error, 'code', '') in M365_AUTH_ERROR_CODES

    if exc_type_name == 'HttpResponseError':
        return getattr(exc, 'status_code', None) in AUTH_STATUS_CODES

    return False


def check_and_raise_auth_error(exc: Exception, context: str, provider: str = "m365") -> None:
    """
    Check if exception is an auth error and raise AuthError if so.

    Call this in exception handlers before logging and continuing.

    Args:
        exc: The caught exception
        context: Description of what was being attempted (e.g., "fetch users")
        provider: Service name used in the error

    Raises:
        AuthError: If exc is an authentication/authorization error
    """
    if is_auth_error(exc):
        raise AuthError(
            f"Authentication/authorization error while trying to {context}: {exc}",
            provider=provider,
            original_error=exc
        ) from exc


# =============================================================================
# Log Redaction
# =============================================================================

def hash_sensitive_id(value: str, prefix: str = "") -> str:
    """
    Hash a sensitive ID using consistent hashing.

    Uses first 8 chars of SHA256 so the same value always maps to the same
    token, allowing correlation within a run.

    Example: 0d4c8a52-...-9c1e -> id-a3f8b2c1
    """
    if not value:
        return value
    hash_val = hashlib.sha256(value.encode()).hexdigest()[:8]
    return f"{prefix}{hash_val}" if prefix else hash_val


_LOG_REDACT_PATTERNS = [
    # GUIDs (user ids, group ids, tenant ids)
    (re.compile(r'\b([0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})\b', re.IGNORECASE),
     lambda m: f"id-{hash_sensitive_id(m.group(1).lower())}"),
    # Email addresses / UPNs - keep the domain
    (re.compile(r'\b([A-Za-z0-9._%+\'-]+)@([A-Za-z0-9.-]+\.[A-Za-z]{2,})\b'),
     lambda m: f"user-{hash_sensitive_id(m.group(1).lower())}@{m.group(2)}"),
]


def redact_log_message(message: str) -> str:
    """Redact GUIDs and email addresses from a log message using consistent hashing."""
    if not message:
        return message

    for pattern, replacer in _LOG_REDACT_PATTERNS:
        message = pattern.sub(replacer, message)

    return message


class RedactingFilter(logging.Filter):
    """
    Logging filter that redacts sensitive data from log messages.

    Applied to persisted log files; console output stays readable for the
    operator running the report.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        """Redact sensitive data from the log record message."""
        if record.msg:
            record.msg = redact_log_message(str(record.msg))
        if record.args:
            record.args = tuple(
                redact_log_message(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )
        return True


def setup_logging(level: str = "INFO", output_dir: Optional[str] = None) -> logging.Logger:
    """
    Setup logging configuration with console and optional file output.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        output_dir: If provided, also write logs to a file in this directory

    Returns:
        Logger instance
    """
    numeric_level = getattr(logging, str(level).upper(), logging.INFO)

    formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Clear existing handlers to avoid duplicates
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if output_dir:
        os.makedirs(output_dir, exist_ok=True)
        timestamp = datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')
        log_file = os.path.join(output_dir, f"m365_report_log_{timestamp}.log")

        file_handler = logging.FileHandler(log_file, mode='w', encoding='utf-8')
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(RedactingFilter())
        root_logger.addHandler(file_handler)

        root_logger.info(f"Logging to: {log_file}")

    # The SDK transport logs every request at INFO
    for noisy in ('azure', 'httpx', 'kiota_http', 'msal'):
        logging.getLogger(noisy).setLevel(max(numeric_level, logging.WARNING))

    return logging.getLogger(__name__)


# =============================================================================
# Output Writers
# =============================================================================

def write_json(data: Any, filepath: str) -> None:
    """Write data to JSON file with secure permissions."""
    # Reports list every licensed user; keep them owner read/write only
    fd = os.open(filepath, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, default=str)
    except Exception:
        os.close(fd)
        raise
    print(f"Wrote {filepath}")


def write_csv(data: List[Dict], filepath: str, fieldnames: Optional[List[str]] = None) -> None:
    """Write data to CSV file."""
    if not data:
        return

    if not fieldnames:
        fieldnames = list(data[0].keys())

    # utf-8-sig so Excel picks up non-ASCII names correctly
    with open(filepath, 'w', newline='', encoding='utf-8-sig') as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames, extrasaction='ignore')
        writer.writeheader()
        writer.writerows(data)
    print(f"Wrote {filepath}")


def write_text(content: str, filepath: str) -> None:
    """Write a text document (e.g. an HTML report)."""
    with open(filepath, 'w', encoding='utf-8') as f:
        f.write(content)
    print(f"Wrote {filepath}")


def print_summary_table(title: str, rows: Sequence[Sequence[Any]], headers: Sequence[str] = ("Metric", "Value")) -> None:
    """Print a two-or-more column summary table to the console."""
    if not rows:
        print("Nothing to report.")
        return

    table = Table(title=title)
    for i, header in enumerate(headers):
        table.add_column(header, style="cyan" if i == 0 else "green", justify="left" if i == 0 else "right")
    for row in rows:
        table.add_row(*(str(cell) for cell in row))

    Console().print(table)
