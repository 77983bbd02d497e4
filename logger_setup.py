import os
import errno
import logging
import sys
import traceback
from datetime import datetime

LOG_FORMAT = '%(asctime)s [%(levelname)s] [%(name)s:%(lineno)d] %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def setup_logger(name, log_prefix='foldermark', log_dir='logs'):
    """
    Set up a logger with file and console handlers.
    File: {log_dir}/{prefix}_{timestamp}.log (DEBUG level)
    Console: stdout (INFO level)
    """
    timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
    log_filename = os.path.join(log_dir, f"{log_prefix}_{timestamp}.log")

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)

    # Avoid duplicate handlers if already setup
    if not logger.handlers:
        try:
            os.makedirs(log_dir, exist_ok=True)
            file_handler = logging.FileHandler(log_filename, encoding='utf-8')
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
            logger.addHandler(file_handler)
        except OSError as e:
            print(f"Warning: Could not create log file {log_filename}: {e}")
            log_filename = None

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
        logger.addHandler(console_handler)

    return logger, log_filename


def format_fs_error(e):
    """
    Format a filesystem error for a user-facing message.
    Pulls errno name, the offending path(s) and the OS message out of an OSError.
    """
    if not isinstance(e, OSError):
        return str(e)

    parts = []
    if e.errno is not None:
        parts.append(errno.errorcode.get(e.errno, str(e.errno)))
    parts.append(e.strerror or str(e))
    msg = ": ".join(parts)

    if e.filename:
        msg += f" ({e.filename}"
        if getattr(e, 'filename2', None):
            msg += f" -> {e.filename2}"
        msg += ")"
    return msg


def log_exception(logger, message, exc=None):
    """Helper to log an exception with full context."""
    if exc:
        logger.error(f"{message}: {format_fs_error(exc)}")
        logger.debug(traceback.format_exc())
    else:
        logger.exception(message)
