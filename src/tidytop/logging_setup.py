"""Logging configuration for tidytop."""

import logging

logger = logging.getLogger("tidytop")


def setup_logging(verbose: bool = False, log_file: str | None = None) -> None:
    """
    Configure logging system.

    The terminal is owned by the TUI, so records only go to ``log_file``.
    Without a log file the package logger gets a NullHandler.

    Args:
        verbose: If True, set DEBUG level. Otherwise INFO.
        log_file: Optional path to log file.
    """
    level = logging.DEBUG if verbose else logging.INFO
    handlers: list[logging.Handler] = []

    if log_file:
        try:
            file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
            file_handler.setFormatter(
                logging.Formatter("%(asctime)s - [%(levelname)s] - %(name)s - %(message)s")
            )
            handlers.append(file_handler)
        except OSError as e:
            logger.warning(f"Failed to create log file {log_file}: {e}")

    if not handlers:
        handlers.append(logging.NullHandler())

    logging.basicConfig(level=level, handlers=handlers, force=True)
    logger.setLevel(level)

    if log_file and verbose:
        logger.debug("Verbose logging enabled")
