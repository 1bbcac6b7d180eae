import logging
from typing import Union

from pythonjsonlogger import jsonlogger


def setup_logger(level: Union[int, str] = logging.INFO,
                 structured: bool = True) -> None:
    logHandler = logging.StreamHandler()
    if structured:
        formatter = jsonlogger.JsonFormatter(
            '%(asctime)s %(levelname)s %(name)s %(message)s',
            rename_fields={'levelname': 'level', 'asctime': 'timestamp'}
        )
    else:
        formatter = logging.Formatter(
            '%(asctime)s %(levelname)s %(name)s %(message)s'
        )
    logHandler.setFormatter(formatter)
    logger = logging.getLogger()
    # Repeated app creation (e.g. in tests) must not stack handlers.
    for handler in list(logger.handlers):
        if getattr(handler, '_clinic_auth', False):
            logger.removeHandler(handler)
    logHandler._clinic_auth = True  # type: ignore
    logger.addHandler(logHandler)
    logger.setLevel(level)
