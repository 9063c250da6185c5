"""
Logging setup.

Modules log through ``logging.getLogger(__name__)``; the CLI calls
``configure_logging`` once to route records through rich.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler


def configure_logging(level: str = "INFO", console: Console | None = None) -> None:
    """
    Configure the root logger with a rich handler.

    Args:
        level: Log level name.
        console: Console to log to. Defaults to stderr.
    """
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(
                console=console or Console(stderr=True),
                rich_tracebacks=True,
                show_path=False,
            )
        ],
        force=True,
    )
    # The SDK's HTTP client is noisy at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)
