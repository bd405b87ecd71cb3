"""Console logging for the command-line tools."""

import logging

from rich.logging import RichHandler

from event_face_search.config import LOG_LEVEL


def setup_logging(level: str = LOG_LEVEL) -> None:
    """Route library logs through rich, once per process."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )
