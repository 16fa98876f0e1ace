"""Logger configuration for the ingestion service.

Every line carries the request id and ingest id bound with
``logger.contextualize()``; lines logged outside a request or a pipeline run
show ``-`` in those columns.
"""

import sys
from pathlib import Path

from loguru import logger

UNBOUND = "-"

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<magenta>req={extra[request_id]}</magenta> <magenta>ingest={extra[ingest_id]}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)

FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | req={extra[request_id]} ingest={extra[ingest_id]} | "
    "{name}:{function}:{line} - {message}"
)


def setup_logger(
    level: str = "INFO",
    log_file: str | None = None,
    rotation: str = "10 MB",
    retention: str = "7 days",
) -> None:
    """Configure loguru with a console sink and an optional rotating file sink.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file. If None, only console logging.
        rotation: Log rotation size (e.g., "10 MB", "1 day")
        retention: Log retention period (e.g., "7 days", "1 month")
    """
    logger.remove()
    logger.configure(extra={"request_id": UNBOUND, "ingest_id": UNBOUND})

    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=level, colorize=True)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        # Uploaded file names and athlete ids end up in locals; keep them out of tracebacks
        logger.add(
            log_path,
            format=FILE_FORMAT,
            level=level,
            rotation=rotation,
            retention=retention,
            compression="zip",
            backtrace=True,
            diagnose=False,
        )

    logger.info(f"Logger initialized with level={level}" + (f", file={log_file}" if log_file else ""))
