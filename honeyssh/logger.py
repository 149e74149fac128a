import logging
import sys

def setup_logger(name="honeyssh", level=logging.INFO):
    """
    Sets up a centralized logger with valid formatting:
    Date/Time - File - Function - Line - Message
    """
    logger = logging.getLogger(name)

    # Prevent adding multiple handlers if setup is called multiple times
    if logger.hasHandlers():
        return logger

    logger.setLevel(level)

    # Console Handler
    ch = logging.StreamHandler(sys.stdout)
    ch.setLevel(logging.DEBUG)

    # Format: 2026-01-01 19:42:59   session.py   handle   88   Message
    formatter = logging.Formatter(
        '%(asctime)s   %(filename)s   %(funcName)s   %(lineno)d   %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    ch.setFormatter(formatter)

    logger.addHandler(ch)

    return logger

def set_level(level_name):
    """Applies a level name from config ('DEBUG', 'info', ...) to the shared logger."""
    level = logging.getLevelName(str(level_name).upper())
    if not isinstance(level, int):
        log.warning(f"[!] Unknown log level '{level_name}', keeping {logging.getLevelName(log.level)}")
        return
    log.setLevel(level)

# Global instance for easy import
log = setup_logger()
