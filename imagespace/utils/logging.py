from loguru import logger
import sys
import os

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level} | {module}:{function}:{line} | {message}"
DEFAULT_LOG_DIR = os.path.join(os.path.dirname(__file__), "..", "logs")


def setup_logging(level="INFO", log_dir=None):
    """Point loguru at stdout and a rotating file under log_dir."""
    log_dir = log_dir or DEFAULT_LOG_DIR
    os.makedirs(log_dir, exist_ok=True)

    logger.remove()
    logger.add(sys.stdout, level=level)
    logger.add(
        os.path.join(log_dir, "imagespace.log"),
        rotation="1 MB",
        retention="7 days",
        level=level,
        format=LOG_FORMAT,
    )
    return logger
