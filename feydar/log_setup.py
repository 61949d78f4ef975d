"""
Logging setup shared by the bot and the batch scripts
"""

import logging
import os

LOGGER_NAME = 'feydar'


def setup_logging(log_file: str = 'logs/feydar.log', console_level: str = 'INFO') -> logging.Logger:
    """Setup file + console logging on the package logger"""
    logger = logging.getLogger(LOGGER_NAME)
    if logger.handlers:
        return logger

    log_dir = os.path.dirname(log_file)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    logger.setLevel(logging.DEBUG)

    file_handler = logging.FileHandler(log_file, encoding='utf-8')
    file_handler.setLevel(logging.DEBUG)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(getattr(logging, console_level.upper(), logging.INFO))

    formatter = logging.Formatter(
        '%(asctime)s | %(levelname)s | %(message)s'
    )
    file_handler.setFormatter(formatter)
    console_handler.setFormatter(formatter)

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

    # web3 is chatty at DEBUG
    logging.getLogger('web3').setLevel(logging.WARNING)
    logging.getLogger('websockets').setLevel(logging.WARNING)
    return logger
