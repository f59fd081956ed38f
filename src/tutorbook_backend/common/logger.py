'''
universal logger
'''
import logging
import sys

def setup_logger():
    """
    Configures and returns the application logger.
    """
    logger = logging.getLogger('TB-backend')
    logger.setLevel(logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter(
        '%(asctime)s - %(module)s - %(levelname)s\n - %(message)s'
    )
    handler.setFormatter(formatter)

    if not logger.handlers:
        logger.addHandler(handler)

    return logger

# Single logger instance imported by every module
log = setup_logger()
