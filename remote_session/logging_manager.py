"""File logging for the remote_session package."""
import logging
from pathlib import Path
from typing import Optional, Union

LOGGER_NAME = 'remote_session'
DEFAULT_LOG_DIR = Path('/tmp/remote_session_logs')
LOG_FORMAT = '%(asctime)s - [%(threadName)s] - %(name)s - %(levelname)s - %(message)s'


def configure_logging(log_dir: Optional[Union[str, Path]] = None,
                      level: int = logging.DEBUG) -> logging.Logger:
    """Send ``remote_session.*`` records to ``<log_dir>/remote_session.log``.

    Only a file handler is installed: the MCP server talks over stdout, so
    nothing may be logged there. Calling this again with the same directory
    does not add a second handler.
    """
    log_dir = Path(log_dir) if log_dir is not None else DEFAULT_LOG_DIR
    log_dir.mkdir(exist_ok=True, parents=True)
    log_file = log_dir / 'remote_session.log'

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False

    for handler in logger.handlers:
        if isinstance(handler, logging.FileHandler) and handler.baseFilename == str(log_file.absolute()):
            return logger

    file_handler = logging.FileHandler(str(log_file))
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(file_handler)
    logger.info("remote_session logging initialized")
    return logger
