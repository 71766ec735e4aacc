import os
import sys
import logging
from logging.handlers import RotatingFileHandler

from runpad.config import LOG_FILE_NAME

LOG_FORMAT = '%(asctime)s - %(levelname)-8s - [%(name)s:%(funcName)s:%(lineno)d] - %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def setup_logging(log_dir, console_level=logging.INFO, file_level=logging.DEBUG,
                  max_bytes=2 * 1024 * 1024, backup_count=3):
    """Configure the root logger with a console handler and a rotating file handler.

    Handlers installed by an earlier call are removed first, so calling this
    twice does not duplicate every record.
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    root.setLevel(min(console_level, file_level))

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(formatter)
    root.addHandler(console)

    # APScheduler logs every executed job at INFO; at 10 ticks a second that drowns the log
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    log_path = os.path.join(log_dir, LOG_FILE_NAME)
    try:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(log_path, maxBytes=max_bytes,
                                           backupCount=backup_count, encoding='utf-8')
    except OSError as e:
        root.error("File logging disabled, cannot open '%s': %s", log_path, e)
        return None
    file_handler.setLevel(file_level)
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)
    return log_path
