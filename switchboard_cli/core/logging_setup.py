import logging
import sys
from . import config  # To get DATA_DIR

LOG_FILE_PATH = config.DATA_DIR / "switchboard_session.log"


def setup_logging(log_level=logging.INFO, testing_mode=False):
    """Configures logging for the switchboard_cli package."""

    logger = logging.getLogger("switchboard_cli")
    logger.setLevel(log_level)

    # Prevent multiple handlers if setup_logging is called more than once
    if logger.hasHandlers():
        logger.handlers.clear()

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(module)s.%(funcName)s:%(lineno)d - %(message)s"
    )

    # Console output would mix with CliRunner output in tests
    if not testing_mode:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    try:
        file_handler = logging.FileHandler(LOG_FILE_PATH, mode="a")
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    except OSError as e:
        # The logger can't report its own file handler failure
        print(f"CRITICAL LOGGING ERROR during file_handler setup: {e}", file=sys.stderr)

    if not testing_mode or log_level <= logging.DEBUG:
        logger.info(f"Logging initialized. Log file: {LOG_FILE_PATH}")

    return logger
