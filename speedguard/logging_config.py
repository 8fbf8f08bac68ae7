import logging
from logging.handlers import RotatingFileHandler
import os

from speedguard.config import LOG_BACKUPS, LOG_DIR, LOG_LEVEL, LOG_MAX_BYTES

NAMESPACE = "speedguard"
FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _namespace_logger():
    """
    Parent of every component logger. Console output lives here once,
    so component records are printed a single time however many exist.
    """
    root = logging.getLogger(NAMESPACE)
    if not root.handlers:
        root.setLevel(LOG_LEVEL)
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter(FORMAT))
        root.addHandler(console)
        root.propagate = False
    return root


def get_logger(name, filename=None, log_dir=None):
    """
    Component logger `speedguard.<name>`.

    When a log directory is configured (LOG_DIR, or `log_dir`) the component
    also writes its own rotating `filename`. An empty LOG_DIR keeps logs on
    the console only.
    """
    _namespace_logger()
    logger = logging.getLogger(f"{NAMESPACE}.{name}")

    log_dir = LOG_DIR if log_dir is None else log_dir
    if not filename or not log_dir:
        return logger

    path = os.path.abspath(os.path.join(log_dir, filename))
    # Avoid duplicated handlers
    if any(getattr(h, "baseFilename", None) == path for h in logger.handlers):
        return logger

    os.makedirs(log_dir, exist_ok=True)
    file_handler = RotatingFileHandler(path, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUPS)
    file_handler.setFormatter(logging.Formatter(FORMAT))
    logger.addHandler(file_handler)
    return logger
