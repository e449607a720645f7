"""Logging and optional Logfire tracing shared by the ranking and optimization runs."""

import logging
import os
from contextlib import contextmanager

import logfire
from rich.logging import RichHandler

logger = logging.getLogger(__name__)

# Configure logfire only if token is available
_logfire_enabled = bool(os.environ.get("LOGFIRE_TOKEN"))
if _logfire_enabled:
    try:
        logfire.configure()
        logfire.instrument_pydantic_ai()
    except Exception as e:
        # If configuration fails, disable logfire
        logger.warning(f"Logfire disabled: {e}")
        _logfire_enabled = False


@contextmanager
def logfire_span(name: str, **kwargs):
    """Context manager for logfire spans that works even when logfire is disabled."""
    if _logfire_enabled:
        with logfire.span(name, **kwargs):
            yield
    else:
        yield


def configure_logging(debug: bool = False) -> None:
    """Set up logging with Rich handler."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )
