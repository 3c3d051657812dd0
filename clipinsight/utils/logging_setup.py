from loguru import logger
from pathlib import Path
import sys

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "{name}:{function}:{line} | {extra} - <level>{message}</level>"
)


def setup_logging(log_dir: str = "logs", level: str = "INFO"):
    """Route loguru to stderr and a rotating ``orchestrator.log``; bound job/run/stage ids show up in ``extra``."""
    Path(log_dir).mkdir(parents=True, exist_ok=True)
    logger.remove()
    logger.add(sys.stderr, level=level, format=LOG_FORMAT)
    logger.add(Path(log_dir) / "orchestrator.log", level=level, format=LOG_FORMAT, rotation="5 MB", retention=10)
    return logger
