"""
Unified logging utilities for SeedMix.

All entrypoints should call configure_logging() once at startup.
"""
import inspect
import logging
import os
import re
import sys
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, List, Optional

# Track whether logging has been configured
_logging_configured = False
_run_context = threading.local()
_HANDLER_TAG = "_seedmix_handler"
_CONSOLE_FMT = '%(asctime)s | %(levelname)-5s | %(name)s | run_id=%(run_id)s | %(message)s'
_FILE_FMT = '%(asctime)s | %(levelname)-5s | %(name)s | %(funcName)s:%(lineno)d | %(threadName)s | run_id=%(run_id)s | %(message)s'


class RunIdFilter(logging.Filter):
    """Inject the calling thread's run_id into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = get_run_id() or "-"
        return True


def set_run_id(run_id: Optional[str]) -> None:
    """Set the run_id for log records emitted from the current thread."""
    _run_context.run_id = run_id


def get_run_id() -> Optional[str]:
    return getattr(_run_context, "run_id", None)


def configure_logging(
    level: str = 'INFO',
    log_file: Optional[str] = None,
    file_level: str = 'DEBUG',
    force: bool = False,
    console: bool = True,
) -> None:
    """
    Configure logging for the entire application.

    Should be called once at application startup (in main entrypoint).
    Subsequent calls are ignored unless force=True.

    Args:
        level: Console log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional path to log file
        file_level: Log level for file output (default DEBUG)
        force: If True, reconfigure even if already configured
        console: Whether to add a console handler

    Environment variable overrides:
        LOG_LEVEL: Override the level parameter
        LOG_FILE: Override the log_file parameter
    """
    global _logging_configured

    if _logging_configured and not force:
        return

    level = os.getenv('LOG_LEVEL', level).upper()
    if log_file is None:
        log_file = os.getenv('LOG_FILE')

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)  # Capture all, filter at handler level

    # Remove handlers we previously installed (tagged)
    for handler in root.handlers[:]:
        if getattr(handler, _HANDLER_TAG, False):
            root.removeHandler(handler)

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(getattr(logging, level, logging.INFO))
        console_handler.setFormatter(logging.Formatter(_CONSOLE_FMT, datefmt='%H:%M:%S'))
        console_handler.addFilter(RunIdFilter())
        setattr(console_handler, _HANDLER_TAG, True)
        root.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setLevel(getattr(logging, file_level.upper(), logging.DEBUG))
        file_handler.setFormatter(logging.Formatter(_FILE_FMT, datefmt='%Y-%m-%d %H:%M:%S'))
        file_handler.addFilter(RunIdFilter())
        setattr(file_handler, _HANDLER_TAG, True)
        root.addHandler(file_handler)

    # Quiet noisy third-party loggers
    for noisy in ['urllib3', 'requests', 'httpx', 'openai']:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    _logging_configured = True

    logging.getLogger(__name__).debug(
        f"Logging configured: level={level}, file={redact(log_file) if log_file else 'none'}"
    )


@contextmanager
def stage_timer(stage_name: str, logger: Optional[logging.Logger] = None):
    """
    Context manager for timing pipeline stages.

    Logs stage start at DEBUG, completion with timing at INFO.

    Usage:
        with stage_timer("Candidate generation"):
            pool = generator.generate(seed, 30)
        # Logs: "Candidate generation completed in 2.3s"
    """
    if logger is None:
        frame = inspect.currentframe()
        caller = frame.f_back.f_back if frame and frame.f_back else None
        module = caller.f_globals.get('__name__', __name__) if caller else __name__
        logger = logging.getLogger(module)

    logger.debug(f"{stage_name} starting...")
    start = time.perf_counter()

    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        if elapsed < 1:
            logger.info(f"{stage_name} completed in {elapsed*1000:.0f}ms")
        elif elapsed < 60:
            logger.info(f"{stage_name} completed in {elapsed:.1f}s")
        else:
            minutes = int(elapsed // 60)
            seconds = elapsed % 60
            logger.info(f"{stage_name} completed in {minutes}m {seconds:.0f}s")


_REDACT_PATTERNS = [
    # API keys and tokens
    (r'(["\']?(?:api[_-]?key|token|secret|password|auth)["\']?\s*[:=]\s*["\']?)([^"\'\s&]+)(["\']?)', r'\1***REDACTED***\3'),
    # Provider key prefixes
    (r'sk-[A-Za-z0-9_\-]{8,}', r'sk-***REDACTED***'),
    # User home directories
    (r'/home/[^/]+', r'/home/***'),
    (r'/Users/[^/]+', r'/Users/***'),
    # Email addresses
    (r'[\w.-]+@[\w.-]+\.\w+', r'***@***.***'),
]


def redact(value: Any, keys: Optional[List[str]] = None) -> str:
    """
    Redact sensitive information from a value before logging.

    Args:
        value: Value to redact (string, path, or dict)
        keys: Additional dict keys to redact

    Usage:
        logger.debug(f"Request params: {redact(params)}")
    """
    if value is None:
        return "None"

    text = str(value)
    for pattern, replacement in _REDACT_PATTERNS:
        text = re.sub(pattern, replacement, text, flags=re.IGNORECASE)

    for key in keys or []:
        text = re.sub(
            rf'(["\']?{re.escape(key)}["\']?\s*[:=]\s*["\']?)([^"\'\s,}}]+)(["\']?)',
            r'\1***REDACTED***\3',
            text,
            flags=re.IGNORECASE,
        )
    return text


def format_count(n: int, singular: str, plural: Optional[str] = None) -> str:
    """Format a count like "1 track" or "5 tracks"."""
    if plural is None:
        plural = singular + 's'
    return f"{n:,} {singular if n == 1 else plural}"


def truncate_list(items: List[Any], max_items: int = 3, format_fn=str) -> str:
    """Format a list for logging, e.g. "rock, pop, jazz (+5 more)"."""
    if not items:
        return "(none)"

    formatted = [format_fn(item) for item in items[:max_items]]
    result = ', '.join(formatted)

    if len(items) > max_items:
        result += f" (+{len(items) - max_items} more)"

    return result


def propagate_run_id(fn):
    """Wrap fn so a worker thread logs under the submitting thread's run_id."""
    run_id = get_run_id()

    def wrapper(*args, **kwargs):
        set_run_id(run_id)
        try:
            return fn(*args, **kwargs)
        finally:
            set_run_id(None)
    return wrapper
