import os, logging

LOGGER_NAME = 'neotex'
LOG_FORMAT = '%(asctime)s - %(levelname)s - %(threadName)s - %(message)s'

_LOGGER = None

def _file_handler(log_file):
    path = os.path.abspath(os.path.expanduser(os.path.expandvars(log_file)))
    os.makedirs(os.path.dirname(path), exist_ok=True)
    handler = logging.FileHandler(path, mode='a', encoding='utf-8')
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return handler

def set_logging(log_file=None, debug=False):
    """
    (Re)configures the plugin logger.

    With a log_file, records go to that file (its directory is created if
    needed); without one the logger is silenced with a NullHandler. Worker
    threads log too, so the thread name is part of every record.

    Args:
        log_file (str, optional): Path of the log file; ~ and $VARS expand.
        debug (bool): Also record DEBUG messages.
    """
    global _LOGGER

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    logger.propagate = False
    logger.handlers.clear()

    handler = logging.NullHandler()
    if log_file:
        try:
            handler = _file_handler(log_file)
        except OSError as e:
            # An unusable path leaves logging off rather than failing startup.
            print(f"neotex: cannot open log file {log_file}: {e}")
    logger.addHandler(handler)

    _LOGGER = logger
    return logger

def get_logger():
    if _LOGGER is None:
        return set_logging()
    return _LOGGER

def log_info(message):
    """Writes a message to the log file, if logging is enabled."""
    get_logger().info(str(message))

def log_debug(message):
    get_logger().debug(str(message))

def log_error(message):
    get_logger().error(str(message))
